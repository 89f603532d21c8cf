import unittest

from cotiz.db import QUOTE_STATUSES
from cotiz.procurement.flow_policy import (
    ACTION_LABELS,
    FLOW_POLICY,
    action_allowed,
    flow_meta,
    statuses_allowing,
)


class FlowPolicyTest(unittest.TestCase):
    def test_every_quote_status_has_a_policy(self) -> None:
        self.assertEqual(set(FLOW_POLICY["cotacao"].keys()), set(QUOTE_STATUSES))

    def test_all_stage_statuses_have_actions(self) -> None:
        for stage_name, status_map in FLOW_POLICY.items():
            self.assertTrue(status_map, f"stage sem status: {stage_name}")
            for status_name, policy in status_map.items():
                actions = policy.get("allowed_actions") or []
                self.assertTrue(actions, f"acoes vazias em {stage_name}:{status_name}")

    def test_primary_action_is_in_allowed_actions(self) -> None:
        for stage_name, status_map in FLOW_POLICY.items():
            for status_name, policy in status_map.items():
                primary_action = policy.get("primary_action")
                allowed_actions = policy.get("allowed_actions") or []
                if primary_action:
                    self.assertIn(primary_action, allowed_actions, f"primary fora de allowed em {stage_name}:{status_name}")

    def test_every_action_has_a_label(self) -> None:
        for status_map in FLOW_POLICY.values():
            for policy in status_map.values():
                for action in policy.get("allowed_actions") or []:
                    self.assertIn(action, ACTION_LABELS)

    def test_approval_can_be_requested_only_before_decision(self) -> None:
        self.assertEqual(statuses_allowing("cotacao", "request_approval"), ["draft", "sent", "received"])
        self.assertFalse(action_allowed("cotacao", "pending_approval", "edit_quote"))
        self.assertTrue(action_allowed("cotacao", "rejected", "reopen"))
        self.assertFalse(action_allowed("cotacao", "approved", "reopen"))

    def test_unknown_status_has_no_actions(self) -> None:
        meta = flow_meta("cotacao", "archived")
        self.assertEqual(meta["allowed_actions"], [])
        self.assertIsNone(meta["primary_action"])
        self.assertFalse(action_allowed("cotacao", None, "view_history"))


if __name__ == "__main__":
    unittest.main()
