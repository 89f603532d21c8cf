from cotiz.core.event_bus import (
    ApprovalLevelChanged,
    DomainEvent,
    EventBus,
    QuoteApprovalDecided,
    QuoteApprovalRequested,
    get_event_bus,
)

__all__ = [
    "DomainEvent",
    "EventBus",
    "QuoteApprovalRequested",
    "QuoteApprovalDecided",
    "ApprovalLevelChanged",
    "get_event_bus",
]
