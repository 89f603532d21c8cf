import unittest
from decimal import Decimal

from cotiz.contexts.approvals.domain.authorization import SYSTEM_APPROVER_ID, is_authorized_approver
from cotiz.domain.contracts import ApprovalLevel


def _level(approvers) -> ApprovalLevel:
    return ApprovalLevel(
        id=1,
        client_id="client-a",
        name="Diretoria",
        order_level=1,
        amount_threshold=Decimal("1000.00"),
        approvers=tuple(approvers),
    )


class ApproverAuthorizationTest(unittest.TestCase):
    def test_listed_approver_is_authorized(self) -> None:
        self.assertTrue(is_authorized_approver(_level(["u1", "u2"]), "u2"))

    def test_unlisted_approver_is_denied(self) -> None:
        self.assertFalse(is_authorized_approver(_level(["u1"]), "u2"))

    def test_membership_is_exact(self) -> None:
        level = _level(["u1"])
        self.assertFalse(is_authorized_approver(level, "U1"))
        self.assertFalse(is_authorized_approver(level, "u10"))
        self.assertTrue(is_authorized_approver(level, " u1 "))

    def test_degenerate_inputs_return_false_without_raising(self) -> None:
        self.assertFalse(is_authorized_approver(None, "u1"))
        self.assertFalse(is_authorized_approver(_level([]), "u1"))
        self.assertFalse(is_authorized_approver(_level(["u1"]), None))
        self.assertFalse(is_authorized_approver(_level(["u1"]), "   "))

    def test_role_tag_matches_actor_role(self) -> None:
        level = _level(["role:manager"])
        self.assertTrue(is_authorized_approver(level, "any-user", roles=("manager",)))
        self.assertFalse(is_authorized_approver(level, "any-user", roles=("approver",)))
        self.assertFalse(is_authorized_approver(level, "any-user"))

    def test_unknown_roles_never_match_tags(self) -> None:
        level = _level(["role:client"])
        self.assertFalse(is_authorized_approver(level, "u5", roles=("financeiro",)))

    def test_system_identity_cannot_decide(self) -> None:
        self.assertFalse(is_authorized_approver(_level([SYSTEM_APPROVER_ID]), SYSTEM_APPROVER_ID))


if __name__ == "__main__":
    unittest.main()
