import sqlite3
import unittest
from unittest.mock import patch

from cotiz.contexts.approvals.domain.authorization import SYSTEM_APPROVER_ID
from cotiz.contexts.approvals.infrastructure.repositories.quote_repository import QuoteRepository
from cotiz.contexts.notifications.application.notifier import register_notification_handlers
from cotiz.contexts.notifications.infrastructure.repository import NotificationRepository
from cotiz.core import QuoteApprovalDecided, QuoteApprovalRequested
from cotiz.db import close_db, get_db
from cotiz.domain.contracts import ApprovalLevelInput
from cotiz.errors import ConfigurationError, InvalidStateError, NotFoundError, UnauthorizedError, ValidationError
from tests.approval_utils import ApprovalServices, build_test_app
from tests.helpers.temp_db import TempDbSandbox


class ApprovalWorkflowTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="approval_workflow")
        self.app = build_test_app(self._temp_db)
        self.client_id = "client-workflow"
        self.services = ApprovalServices()
        self._ctx = self.app.app_context()
        self._ctx.push()
        self.db = get_db()

    def tearDown(self) -> None:
        close_db()
        self._ctx.pop()
        self._temp_db.cleanup()

    def _decision_rows(self, quote_id: int) -> list:
        return self.services.workflow.list_decisions(self.db, client_id=self.client_id, quote_id=quote_id)

    def _pending_quote(self, total="2500.00", approvers=("u1",), threshold="1000"):
        self.services.create_level(self.db, self.client_id, threshold=threshold, approvers=approvers)
        quote = self.services.create_quote(self.db, self.client_id, total=total)
        outcome = self.services.workflow.request_approval(
            self.db,
            client_id=self.client_id,
            quote_id=quote.id,
            requested_by="buyer-1",
        )
        self.assertEqual(outcome.quote.status, "pending_approval")
        return outcome

    def test_single_level_above_threshold_is_approved_by_listed_approver(self) -> None:
        pending = self._pending_quote()
        self.assertEqual(pending.quote.approval_level_id, pending.level.id)
        self.assertEqual(pending.quote.approval_cycle, 1)

        outcome = self.services.workflow.decide(
            self.db,
            client_id=self.client_id,
            quote_id=pending.quote.id,
            approver_id="u1",
            decision="approved",
        )

        self.assertEqual(outcome.quote.status, "approved")
        decisions = self._decision_rows(pending.quote.id)
        self.assertEqual(len(decisions), 1)
        self.assertEqual(decisions[0].approver_id, "u1")
        self.assertEqual(decisions[0].amount_at_decision, "2500.00")
        self.assertEqual(decisions[0].level_id, pending.level.id)

    def test_below_all_thresholds_is_auto_approved_with_system_decision(self) -> None:
        events = self.services.record_events(QuoteApprovalDecided, QuoteApprovalRequested)
        self.services.create_level(self.db, self.client_id, threshold="1000", approvers=["u1"])
        quote = self.services.create_quote(self.db, self.client_id, total="500")

        outcome = self.services.workflow.request_approval(
            self.db, client_id=self.client_id, quote_id=quote.id, requested_by="buyer-1"
        )

        self.assertTrue(outcome.auto_approved)
        self.assertEqual(outcome.quote.status, "approved")
        self.assertIsNone(outcome.quote.approval_level_id)
        decisions = self._decision_rows(quote.id)
        self.assertEqual(len(decisions), 1)
        self.assertEqual(decisions[0].approver_id, SYSTEM_APPROVER_ID)
        self.assertIsNone(decisions[0].level_id)
        self.assertEqual([type(event) for event in events], [QuoteApprovalDecided])
        self.assertTrue(events[0].auto_approved)

    def test_tiered_selection_uses_lower_tier(self) -> None:
        low = self.services.create_level(self.db, self.client_id, threshold="1000", approvers=["u1"])
        self.services.create_level(self.db, self.client_id, threshold="5000", approvers=["u5"])
        quote = self.services.create_quote(self.db, self.client_id, total="4000")

        outcome = self.services.workflow.request_approval(
            self.db, client_id=self.client_id, quote_id=quote.id, requested_by="buyer-1"
        )

        self.assertEqual(outcome.quote.approval_level_id, low.id)

    def test_unauthorized_decision_keeps_quote_pending(self) -> None:
        pending = self._pending_quote()

        with self.assertRaises(UnauthorizedError) as ctx:
            self.services.workflow.decide(
                self.db,
                client_id=self.client_id,
                quote_id=pending.quote.id,
                approver_id="u2",
                decision="approved",
            )

        self.assertEqual(ctx.exception.http_status, 403)
        quote = self.services.quotes.get_quote(self.db, client_id=self.client_id, quote_id=pending.quote.id)
        self.assertEqual(quote.status, "pending_approval")
        self.assertEqual(self._decision_rows(pending.quote.id), [])

    def test_blank_approver_is_unauthorized(self) -> None:
        pending = self._pending_quote()
        with self.assertRaises(UnauthorizedError):
            self.services.workflow.decide(
                self.db,
                client_id=self.client_id,
                quote_id=pending.quote.id,
                approver_id="",
                decision="approved",
            )

    def test_role_tag_approver_can_decide(self) -> None:
        pending = self._pending_quote(approvers=("role:manager",))
        outcome = self.services.workflow.decide(
            self.db,
            client_id=self.client_id,
            quote_id=pending.quote.id,
            approver_id="gerente-7",
            decision="approved",
            roles=("manager",),
        )
        self.assertEqual(outcome.quote.status, "approved")

    def test_decide_requires_pending_status(self) -> None:
        quote = self.services.create_quote(self.db, self.client_id, total="2500")
        with self.assertRaises(InvalidStateError) as ctx:
            self.services.workflow.decide(
                self.db,
                client_id=self.client_id,
                quote_id=quote.id,
                approver_id="u1",
                decision="approved",
            )
        self.assertEqual(ctx.exception.http_status, 409)
        self.assertEqual(ctx.exception.payload.get("status"), "draft")

    def test_second_decision_on_decided_quote_is_invalid_state(self) -> None:
        pending = self._pending_quote(approvers=("u1", "u2"))
        self.services.workflow.decide(
            self.db, client_id=self.client_id, quote_id=pending.quote.id, approver_id="u1", decision="approved"
        )
        with self.assertRaises(InvalidStateError):
            self.services.workflow.decide(
                self.db,
                client_id=self.client_id,
                quote_id=pending.quote.id,
                approver_id="u2",
                decision="rejected",
                comment="fora do orcamento",
            )

    def test_stale_read_loses_compare_and_swap(self) -> None:
        pending = self._pending_quote(approvers=("u1", "u2"))
        stale_row = QuoteRepository(client_id=self.client_id).get_by_id(self.db, pending.quote.id)

        self.services.workflow.decide(
            self.db, client_id=self.client_id, quote_id=pending.quote.id, approver_id="u1", decision="approved"
        )

        original_get_by_id = QuoteRepository.get_by_id
        calls = {"count": 0}

        def stale_then_real(repository, db, quote_id):
            calls["count"] += 1
            if calls["count"] == 1:
                return dict(stale_row)
            return original_get_by_id(repository, db, quote_id)

        with patch.object(QuoteRepository, "get_by_id", new=stale_then_real):
            with self.assertRaises(InvalidStateError) as ctx:
                self.services.workflow.decide(
                    self.db,
                    client_id=self.client_id,
                    quote_id=pending.quote.id,
                    approver_id="u2",
                    decision="rejected",
                    comment="atrasado",
                )

        self.assertEqual(ctx.exception.message_key, "decision_conflict")
        self.assertEqual(ctx.exception.payload.get("status"), "approved")
        quote = self.services.quotes.get_quote(self.db, client_id=self.client_id, quote_id=pending.quote.id)
        self.assertEqual(quote.status, "approved")
        decisions = self._decision_rows(pending.quote.id)
        self.assertEqual([decision.approver_id for decision in decisions], ["u1"])

    def test_rejection_requires_comment(self) -> None:
        pending = self._pending_quote()
        with self.assertRaises(ValidationError) as ctx:
            self.services.workflow.decide(
                self.db,
                client_id=self.client_id,
                quote_id=pending.quote.id,
                approver_id="u1",
                decision="rejected",
                comment="   ",
            )
        self.assertEqual(ctx.exception.code, "rejection_comment_required")

    def test_invalid_decision_value_is_rejected(self) -> None:
        pending = self._pending_quote()
        with self.assertRaises(ValidationError) as ctx:
            self.services.workflow.decide(
                self.db,
                client_id=self.client_id,
                quote_id=pending.quote.id,
                approver_id="u1",
                decision="maybe",
            )
        self.assertEqual(ctx.exception.code, "decision_invalid")

    def test_level_changes_do_not_move_frozen_quote(self) -> None:
        pending = self._pending_quote(approvers=("u1",))
        self.services.create_level(self.db, self.client_id, threshold="2000", approvers=["u9"])
        self.services.levels.update_level(
            self.db,
            client_id=self.client_id,
            actor_id="admin-1",
            level_id=pending.level.id,
            data=ApprovalLevelInput.from_payload({"amount_threshold": "3000"}),
        )
        self.services.levels.deactivate_level(
            self.db, client_id=self.client_id, actor_id="admin-1", level_id=pending.level.id
        )

        quote = self.services.quotes.get_quote(self.db, client_id=self.client_id, quote_id=pending.quote.id)
        self.assertEqual(quote.approval_level_id, pending.level.id)
        outcome = self.services.workflow.decide(
            self.db, client_id=self.client_id, quote_id=quote.id, approver_id="u1", decision="approved"
        )
        self.assertEqual(outcome.decision.level_id, pending.level.id)

    def test_decision_checks_current_approvers_of_frozen_level(self) -> None:
        pending = self._pending_quote(approvers=("u1",))
        self.services.levels.update_level(
            self.db,
            client_id=self.client_id,
            actor_id="admin-1",
            level_id=pending.level.id,
            data=ApprovalLevelInput.from_payload({"approvers": ["u3"]}),
        )
        with self.assertRaises(UnauthorizedError):
            self.services.workflow.decide(
                self.db, client_id=self.client_id, quote_id=pending.quote.id, approver_id="u1", decision="approved"
            )

    def test_configuration_error_leaves_quote_untouched(self) -> None:
        quote = self.services.create_quote(self.db, self.client_id, total="2500")
        with self.assertRaises(ConfigurationError):
            self.services.workflow.request_approval(
                self.db, client_id=self.client_id, quote_id=quote.id, requested_by="buyer-1"
            )
        reloaded = self.services.quotes.get_quote(self.db, client_id=self.client_id, quote_id=quote.id)
        self.assertEqual(reloaded.status, "draft")
        self.assertEqual(reloaded.approval_cycle, 0)

    def test_request_approval_rejects_pending_quote(self) -> None:
        pending = self._pending_quote()
        with self.assertRaises(InvalidStateError):
            self.services.workflow.request_approval(
                self.db, client_id=self.client_id, quote_id=pending.quote.id, requested_by="buyer-1"
            )

    def test_quote_from_another_client_is_not_found(self) -> None:
        pending = self._pending_quote()
        with self.assertRaises(NotFoundError):
            self.services.workflow.decide(
                self.db, client_id="client-intruder", quote_id=pending.quote.id, approver_id="u1", decision="approved"
            )

    def test_reopen_after_rejection_starts_new_cycle_with_fresh_resolution(self) -> None:
        pending = self._pending_quote(approvers=("u1",))
        high = self.services.create_level(self.db, self.client_id, threshold="10000", approvers=["u10"])
        self.services.workflow.decide(
            self.db,
            client_id=self.client_id,
            quote_id=pending.quote.id,
            approver_id="u1",
            decision="rejected",
            comment="revisar valores",
        )
        self.services.quotes.reopen_quote(
            self.db, client_id=self.client_id, quote_id=pending.quote.id, actor_id="buyer-1"
        )
        self.services.quotes.update_quote(
            self.db, client_id=self.client_id, quote_id=pending.quote.id, payload={"total": "12000"}
        )

        second = self.services.workflow.request_approval(
            self.db, client_id=self.client_id, quote_id=pending.quote.id, requested_by="buyer-1"
        )

        self.assertEqual(second.quote.approval_cycle, 2)
        self.assertEqual(second.quote.approval_level_id, high.id)
        final = self.services.workflow.decide(
            self.db, client_id=self.client_id, quote_id=pending.quote.id, approver_id="u10", decision="approved"
        )
        self.assertEqual(final.decision.amount_at_decision, "12000.00")
        decisions = self._decision_rows(pending.quote.id)
        self.assertEqual([d.approval_cycle for d in decisions], [1, 2])
        self.assertEqual(decisions[0].amount_at_decision, "2500.00")

    def test_every_decided_quote_has_a_decision_record(self) -> None:
        self.services.create_level(self.db, self.client_id, threshold="1000", approvers=["u1"])
        totals = ["10", "999.99", "1000", "2500", "7000"]
        for index, total in enumerate(totals):
            quote = self.services.create_quote(self.db, self.client_id, total=total)
            outcome = self.services.workflow.request_approval(
                self.db, client_id=self.client_id, quote_id=quote.id, requested_by="buyer-1"
            )
            if outcome.quote.status == "pending_approval":
                decision = "approved" if index % 2 else "rejected"
                self.services.workflow.decide(
                    self.db,
                    client_id=self.client_id,
                    quote_id=quote.id,
                    approver_id="u1",
                    decision=decision,
                    comment="motivo",
                )
            final = self.services.quotes.get_quote(self.db, client_id=self.client_id, quote_id=quote.id)
            self.assertIn(final.status, {"approved", "rejected"})
            self.assertGreaterEqual(len(self._decision_rows(quote.id)), 1)

    def test_decision_chain_verifies_and_detects_tampering(self) -> None:
        pending = self._pending_quote(approvers=("u1",))
        self.services.workflow.decide(
            self.db,
            client_id=self.client_id,
            quote_id=pending.quote.id,
            approver_id="u1",
            decision="rejected",
            comment="sem orcamento",
        )
        self.services.quotes.reopen_quote(self.db, client_id=self.client_id, quote_id=pending.quote.id, actor_id="b")
        self.services.workflow.request_approval(
            self.db, client_id=self.client_id, quote_id=pending.quote.id, requested_by="buyer-1"
        )
        self.services.workflow.decide(
            self.db, client_id=self.client_id, quote_id=pending.quote.id, approver_id="u1", decision="approved"
        )

        report = self.services.workflow.verify_decision_chain(
            self.db, client_id=self.client_id, quote_id=pending.quote.id
        )
        self.assertEqual(report, {"valid": True, "entries": 2, "broken_at": None})

        decisions = self._decision_rows(pending.quote.id)
        self.assertEqual(decisions[1].previous_hash, decisions[0].entry_hash)

        self.db.execute("DROP TRIGGER trg_approval_decisions_no_update")
        self.db.execute(
            "UPDATE approval_decisions SET comment = ? WHERE id = ?",
            ("aprovado sem ressalvas", decisions[0].id),
        )
        self.db.commit()
        report = self.services.workflow.verify_decision_chain(
            self.db, client_id=self.client_id, quote_id=pending.quote.id
        )
        self.assertFalse(report["valid"])
        self.assertEqual(report["broken_at"], decisions[0].id)

    def test_decisions_table_is_append_only(self) -> None:
        pending = self._pending_quote()
        outcome = self.services.workflow.decide(
            self.db, client_id=self.client_id, quote_id=pending.quote.id, approver_id="u1", decision="approved"
        )
        with self.assertRaises(sqlite3.DatabaseError):
            self.db.execute("UPDATE approval_decisions SET decision = 'rejected' WHERE id = ?", (outcome.decision.id,))
        self.db.rollback()
        with self.assertRaises(sqlite3.DatabaseError):
            self.db.execute("DELETE FROM approval_decisions WHERE id = ?", (outcome.decision.id,))
        self.db.rollback()
        self.assertEqual(len(self._decision_rows(pending.quote.id)), 1)

    def test_status_events_record_each_transition(self) -> None:
        pending = self._pending_quote()
        self.services.workflow.decide(
            self.db, client_id=self.client_id, quote_id=pending.quote.id, approver_id="u1", decision="approved"
        )
        events = self.services.quotes.list_status_events(self.db, client_id=self.client_id, quote_id=pending.quote.id)
        self.assertEqual(
            [(event["from_status"], event["to_status"]) for event in events],
            [(None, "draft"), ("draft", "pending_approval"), ("pending_approval", "approved")],
        )

    def test_events_published_after_commit(self) -> None:
        events = self.services.record_events(QuoteApprovalRequested, QuoteApprovalDecided)
        pending = self._pending_quote(approvers=("u1", "role:manager"))
        self.services.workflow.decide(
            self.db, client_id=self.client_id, quote_id=pending.quote.id, approver_id="u1", decision="approved"
        )

        self.assertEqual([type(event) for event in events], [QuoteApprovalRequested, QuoteApprovalDecided])
        requested, decided = events
        self.assertEqual(requested.approvers, ("u1", "role:manager"))
        self.assertEqual(requested.amount, "2500.00")
        self.assertEqual(decided.decision, "approved")
        self.assertEqual(decided.approver_id, "u1")
        self.assertEqual(decided.requester_id, "buyer-1")

    def test_notifier_writes_rows_for_approvers_and_requester(self) -> None:
        register_notification_handlers(self.services.bus)
        pending = self._pending_quote(approvers=("u1", "role:manager"))
        self.services.workflow.decide(
            self.db,
            client_id=self.client_id,
            quote_id=pending.quote.id,
            approver_id="u1",
            decision="rejected",
            comment="fornecedor sem cadastro",
        )

        repository = NotificationRepository(client_id=self.client_id)
        approver_inbox = repository.list_for_user(self.db, "u1")
        self.assertEqual([item["type"] for item in approver_inbox], ["approval_request"])
        self.assertIn("2500.00", approver_inbox[0]["message"])
        requester_inbox = repository.list_for_user(self.db, "buyer-1")
        self.assertEqual([item["type"] for item in requester_inbox], ["approval_rejected"])
        self.assertIn("fornecedor sem cadastro", requester_inbox[0]["message"])
        self.assertEqual(repository.list_for_user(self.db, "role:manager"), [])

    def test_list_pending_for_approver(self) -> None:
        pending = self._pending_quote(approvers=("u1",))
        visible = self.services.workflow.list_pending_for_approver(self.db, client_id=self.client_id, approver_id="u1")
        hidden = self.services.workflow.list_pending_for_approver(self.db, client_id=self.client_id, approver_id="u2")
        self.assertEqual([quote.id for quote in visible], [pending.quote.id])
        self.assertEqual(hidden, [])


if __name__ == "__main__":
    unittest.main()
