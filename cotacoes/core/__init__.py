from cotacoes.core.event_bus import (
    ApprovalDecided,
    ApprovalRequested,
    DeliveryConfirmed,
    DocumentReviewed,
    DomainEvent,
    EventBus,
    InvitationLetterSent,
    PaymentStatusChanged,
    ProposalApproved,
    ProposalRejected,
    ProposalSubmitted,
    QuoteItemsChanged,
    QuoteSentToSuppliers,
    QuoteStatusChanged,
    get_event_bus,
    reset_event_bus_for_tests,
)

__all__ = [
    "DomainEvent",
    "EventBus",
    "QuoteStatusChanged",
    "QuoteSentToSuppliers",
    "QuoteItemsChanged",
    "ProposalSubmitted",
    "ProposalApproved",
    "ProposalRejected",
    "ApprovalRequested",
    "ApprovalDecided",
    "PaymentStatusChanged",
    "DeliveryConfirmed",
    "DocumentReviewed",
    "InvitationLetterSent",
    "get_event_bus",
    "reset_event_bus_for_tests",
]
