import unittest

from cotiz.core import ApprovalLevelChanged, DomainEvent, QuoteApprovalDecided, QuoteApprovalRequested
from cotiz.core.event_schemas import EVENT_SCHEMAS, validate_event
from cotiz.observability import prometheus_metrics_text, reset_metrics_for_tests


class EventSchemaValidationTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()

    def tearDown(self) -> None:
        reset_metrics_for_tests()

    def test_every_published_event_has_a_schema(self) -> None:
        for event_type in (QuoteApprovalRequested, QuoteApprovalDecided, ApprovalLevelChanged):
            self.assertIn(event_type.__name__, EVENT_SCHEMAS)

    def test_valid_events_pass(self) -> None:
        self.assertTrue(
            validate_event(
                QuoteApprovalDecided(
                    client_id="client-a",
                    quote_id=3,
                    decision="approved",
                    approver_id="system",
                    auto_approved=True,
                )
            )
        )
        self.assertTrue(validate_event(ApprovalLevelChanged(client_id="client-a", level_id=1, action="deactivated")))

    def test_events_without_schema_pass(self) -> None:
        self.assertTrue(validate_event(DomainEvent(client_id="client-a")))

    def test_missing_client_marks_invalid_and_updates_metric(self) -> None:
        event = ApprovalLevelChanged(client_id="", level_id=1, action="created")

        with self.assertLogs("cotiz", level="ERROR"):
            self.assertFalse(validate_event(event))

        metrics = prometheus_metrics_text()
        self.assertIn('domain_event_schema_invalid_total{schema_name="ApprovalLevelChanged"} 1', metrics)

    def test_unknown_action_is_invalid(self) -> None:
        with self.assertLogs("cotiz", level="ERROR") as logs:
            self.assertFalse(
                validate_event(ApprovalLevelChanged(client_id="client-a", level_id=1, action="purged"))
            )
        self.assertTrue(any("domain_event_schema_invalid" in line for line in logs.output))


if __name__ == "__main__":
    unittest.main()
