from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import RLock
from typing import Callable, Dict, List, Tuple, Type

from cotacoes.observability import observe_domain_event_emitted


EventHandler = Callable[["DomainEvent"], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, kw_only=True)
class DomainEvent:
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    occurred_at: datetime = field(default_factory=_utc_now)
    tenant_id: str = ""
    actor: str | None = None

    def __post_init__(self) -> None:
        normalized_event_id = str(self.event_id or "").strip() or uuid.uuid4().hex
        normalized_occurred_at = self.occurred_at if isinstance(self.occurred_at, datetime) else _utc_now()
        if normalized_occurred_at.tzinfo is None:
            normalized_occurred_at = normalized_occurred_at.replace(tzinfo=timezone.utc)
        normalized_occurred_at = normalized_occurred_at.astimezone(timezone.utc)

        object.__setattr__(self, "event_id", normalized_event_id)
        object.__setattr__(self, "occurred_at", normalized_occurred_at)
        object.__setattr__(self, "tenant_id", str(self.tenant_id or "").strip() or "unknown")


@dataclass(frozen=True, kw_only=True)
class QuoteStatusChanged(DomainEvent):
    quote_id: int
    from_status: str | None
    to_status: str
    reason: str = ""


@dataclass(frozen=True, kw_only=True)
class QuoteSentToSuppliers(DomainEvent):
    quote_id: int
    title: str
    supplier_ids: Tuple[int, ...] = ()


@dataclass(frozen=True, kw_only=True)
class QuoteItemsChanged(DomainEvent):
    quote_id: int


@dataclass(frozen=True, kw_only=True)
class ProposalSubmitted(DomainEvent):
    quote_id: int
    response_id: int
    supplier_id: int
    supplier_name: str
    total_amount: float
    quote_owner: str | None = None


@dataclass(frozen=True, kw_only=True)
class ProposalApproved(DomainEvent):
    quote_id: int
    response_id: int
    supplier_id: int
    total_amount: float
    quote_title: str = ""
    rejected_supplier_ids: Tuple[int, ...] = ()


@dataclass(frozen=True, kw_only=True)
class ProposalRejected(DomainEvent):
    quote_id: int
    response_id: int
    supplier_id: int
    quote_title: str = ""
    note: str | None = None


@dataclass(frozen=True, kw_only=True)
class ApprovalRequested(DomainEvent):
    approval_id: int
    quote_id: int
    amount: float
    approvers: Tuple[str, ...] = ()


@dataclass(frozen=True, kw_only=True)
class ApprovalDecided(DomainEvent):
    approval_id: int
    quote_id: int
    status: str
    quote_title: str = ""
    quote_owner: str | None = None
    comments: str | None = None


@dataclass(frozen=True, kw_only=True)
class PaymentStatusChanged(DomainEvent):
    payment_id: int
    quote_id: int
    supplier_id: int | None
    from_status: str | None
    to_status: str


@dataclass(frozen=True, kw_only=True)
class DeliveryConfirmed(DomainEvent):
    delivery_id: int
    payment_id: int
    supplier_id: int | None
    amount: float


@dataclass(frozen=True, kw_only=True)
class DocumentReviewed(DomainEvent):
    document_id: int
    supplier_id: int
    document_type: str
    status: str
    rejection_reason: str | None = None


@dataclass(frozen=True, kw_only=True)
class InvitationLetterSent(DomainEvent):
    letter_id: int
    letter_number: str
    title: str
    supplier_ids: Tuple[int, ...] = ()


class EventBus:
    def __init__(self) -> None:
        self._lock = RLock()
        self._handlers: Dict[Type[DomainEvent], List[EventHandler]] = {}
        self._logger = logging.getLogger("cotacoes")

    def subscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        with self._lock:
            handlers = self._handlers.setdefault(event_type, [])
            if handler not in handlers:
                handlers.append(handler)

    def publish(self, event: DomainEvent) -> None:
        observe_domain_event_emitted(type(event).__name__)
        with self._lock:
            handlers = list(self._handlers.get(type(event), []))
        for handler in handlers:
            try:
                handler(event)
            except Exception:  # noqa: BLE001
                self._logger.exception(
                    "event_handler_failed",
                    extra={"event_type": type(event).__name__, "event_id": event.event_id},
                )

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()


_DEFAULT_EVENT_BUS = EventBus()


def get_event_bus() -> EventBus:
    return _DEFAULT_EVENT_BUS


def reset_event_bus_for_tests() -> None:
    _DEFAULT_EVENT_BUS.clear()
