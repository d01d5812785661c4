from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List

from cotacoes.application.base import ApplicationService
from cotacoes.application.category_service import invalidate_category_usage_on_commit
from cotacoes.clock import utc_now_iso
from cotacoes.core import (
    ApprovalDecided,
    ApprovalRequested,
    DeliveryConfirmed,
    DocumentReviewed,
    EventBus,
    InvitationLetterSent,
    PaymentStatusChanged,
    ProposalApproved,
    ProposalRejected,
    ProposalSubmitted,
    QuoteItemsChanged,
    QuoteSentToSuppliers,
    QuoteStatusChanged,
)
from cotacoes.db import get_db
from cotacoes.domain.contracts import Actor, ServiceOutput
from cotacoes.infrastructure.repositories.quoting import AuditLogRepository, NotificationRepository
from cotacoes.quoting.validators import parse_optional_int
from cotacoes.ui_strings import document_type_label, get_ui_text, status_label


logger = logging.getLogger("cotacoes")


def supplier_recipient(supplier_id: int | None) -> str | None:
    if supplier_id is None:
        return None
    return f"supplier:{int(supplier_id)}"


def recipients_for(actor: Actor) -> List[str]:
    """Addresses a user reads notifications from: own email plus the supplier inbox."""
    recipients: List[str] = []
    if actor.email:
        recipients.append(actor.email.lower())
    inbox = supplier_recipient(actor.supplier_id) if actor.is_supplier else None
    if inbox:
        recipients.append(inbox)
    return recipients


def _notify(
    tenant_id: str,
    recipients: Iterable[str | None],
    *,
    notification_type: str,
    title_key: str,
    message: str,
    entity: str,
    entity_id: int,
) -> int:
    repo = NotificationRepository(tenant_id=tenant_id)
    db = get_db()
    created = 0
    for recipient in dict.fromkeys(value for value in recipients if value):
        repo.create(
            db,
            recipient=str(recipient).lower(),
            notification_type=notification_type,
            title=get_ui_text(title_key),
            message=message,
            entity=entity,
            entity_id=entity_id,
        )
        created += 1
    return created


def _money(value: float) -> str:
    formatted = f"{float(value or 0):,.2f}"
    return "R$ " + formatted.replace(",", "X").replace(".", ",").replace("X", ".")


def on_quote_status_changed(event: QuoteStatusChanged) -> None:
    invalidate_category_usage_on_commit(get_db(), event.tenant_id)


def on_quote_items_changed(event: QuoteItemsChanged) -> None:
    invalidate_category_usage_on_commit(get_db(), event.tenant_id)


def on_quote_sent(event: QuoteSentToSuppliers) -> None:
    _notify(
        event.tenant_id,
        (supplier_recipient(supplier_id) for supplier_id in event.supplier_ids),
        notification_type="quote_received",
        title_key="notification.quote_received.title",
        message=f"Voce recebeu a cotacao \"{event.title}\". Envie sua proposta.",
        entity="quote",
        entity_id=event.quote_id,
    )


def on_proposal_submitted(event: ProposalSubmitted) -> None:
    _notify(
        event.tenant_id,
        [event.quote_owner],
        notification_type="proposal_received",
        title_key="notification.proposal_received.title",
        message=f"{event.supplier_name} enviou proposta de {_money(event.total_amount)}.",
        entity="quote",
        entity_id=event.quote_id,
    )


def on_proposal_approved(event: ProposalApproved) -> None:
    _notify(
        event.tenant_id,
        [supplier_recipient(event.supplier_id)],
        notification_type="proposal_approved",
        title_key="notification.proposal_approved.title",
        message=f"Sua proposta para \"{event.quote_title}\" foi aprovada.",
        entity="quote",
        entity_id=event.quote_id,
    )
    _notify(
        event.tenant_id,
        (supplier_recipient(supplier_id) for supplier_id in event.rejected_supplier_ids),
        notification_type="proposal_rejected",
        title_key="notification.proposal_rejected.title",
        message=f"Sua proposta para \"{event.quote_title}\" nao foi selecionada.",
        entity="quote",
        entity_id=event.quote_id,
    )


def on_proposal_rejected(event: ProposalRejected) -> None:
    suffix = f" Motivo: {event.note}" if event.note else ""
    _notify(
        event.tenant_id,
        [supplier_recipient(event.supplier_id)],
        notification_type="proposal_rejected",
        title_key="notification.proposal_rejected.title",
        message=f"Sua proposta para \"{event.quote_title}\" nao foi selecionada.{suffix}",
        entity="quote",
        entity_id=event.quote_id,
    )


def on_approval_requested(event: ApprovalRequested) -> None:
    _notify(
        event.tenant_id,
        event.approvers,
        notification_type="approval_requested",
        title_key="notification.approval_requested.title",
        message=f"Cotacao #{event.quote_id} aguarda sua aprovacao ({_money(event.amount)}).",
        entity="approval",
        entity_id=event.approval_id,
    )


def on_approval_decided(event: ApprovalDecided) -> None:
    label = status_label("aprovacao", event.status).lower()
    _notify(
        event.tenant_id,
        [event.quote_owner],
        notification_type="approval_decided",
        title_key="notification.approval_decided.title",
        message=f"A cotacao \"{event.quote_title}\" foi {label}.",
        entity="quote",
        entity_id=event.quote_id,
    )


def on_payment_status_changed(event: PaymentStatusChanged) -> None:
    _notify(
        event.tenant_id,
        [supplier_recipient(event.supplier_id)],
        notification_type="payment_status",
        title_key="notification.payment_status.title",
        message=f"Pagamento #{event.payment_id}: {status_label('pagamento', event.to_status)}.",
        entity="payment",
        entity_id=event.payment_id,
    )


def on_delivery_confirmed(event: DeliveryConfirmed) -> None:
    _notify(
        event.tenant_id,
        [supplier_recipient(event.supplier_id)],
        notification_type="delivery_confirmed",
        title_key="notification.delivery_confirmed.title",
        message=f"Entrega confirmada. {_money(event.amount)} liberado para pagamento.",
        entity="payment",
        entity_id=event.payment_id,
    )


def on_document_reviewed(event: DocumentReviewed) -> None:
    message = f"{document_type_label(event.document_type)}: {status_label('documento', event.status)}."
    if event.rejection_reason:
        message = f"{message} Motivo: {event.rejection_reason}"
    _notify(
        event.tenant_id,
        [supplier_recipient(event.supplier_id)],
        notification_type="document_reviewed",
        title_key="notification.document_reviewed.title",
        message=message,
        entity="supplier_document",
        entity_id=event.document_id,
    )


def on_invitation_letter_sent(event: InvitationLetterSent) -> None:
    _notify(
        event.tenant_id,
        (supplier_recipient(supplier_id) for supplier_id in event.supplier_ids),
        notification_type="invitation_letter",
        title_key="notification.invitation_letter.title",
        message=f"Carta convite {event.letter_number}: {event.title}.",
        entity="invitation_letter",
        entity_id=event.letter_id,
    )


_HANDLERS = (
    (QuoteStatusChanged, on_quote_status_changed),
    (QuoteItemsChanged, on_quote_items_changed),
    (QuoteSentToSuppliers, on_quote_sent),
    (ProposalSubmitted, on_proposal_submitted),
    (ProposalApproved, on_proposal_approved),
    (ProposalRejected, on_proposal_rejected),
    (ApprovalRequested, on_approval_requested),
    (ApprovalDecided, on_approval_decided),
    (PaymentStatusChanged, on_payment_status_changed),
    (DeliveryConfirmed, on_delivery_confirmed),
    (DocumentReviewed, on_document_reviewed),
    (InvitationLetterSent, on_invitation_letter_sent),
)


def register_notification_handlers(bus: EventBus) -> None:
    for event_type, handler in _HANDLERS:
        bus.subscribe(event_type, handler)


class NotificationService(ApplicationService):
    def list_notifications(self, db, *, tenant_id: str, actor: Actor, args: Dict[str, Any]) -> ServiceOutput:
        recipients = recipients_for(actor)
        unread_only = str(args.get("unread") or "").strip().lower() in {"1", "true", "yes", "on"}
        limit = parse_optional_int(args.get("limit")) or 100
        repo = NotificationRepository(tenant_id=tenant_id)
        items = repo.list_for_recipients(db, recipients, unread_only=unread_only, limit=max(1, min(limit, 500)))
        return ServiceOutput(payload={"items": items, "unread": repo.count_unread(db, recipients)})

    def mark_read(self, db, *, tenant_id: str, actor: Actor, notification_id: int) -> ServiceOutput:
        recipients = recipients_for(actor)
        repo = NotificationRepository(tenant_id=tenant_id)
        notification = repo.get_for_recipients(db, notification_id, recipients)
        if not notification:
            raise self._not_found("notification_not_found", notification_id=notification_id)
        repo.mark_read(db, notification_id, utc_now_iso())
        return ServiceOutput(
            payload={
                "id": notification_id,
                "unread": repo.count_unread(db, recipients),
                "message": self._ok("notification_read"),
            }
        )

    def mark_all_read(self, db, *, tenant_id: str, actor: Actor) -> ServiceOutput:
        recipients = recipients_for(actor)
        updated = NotificationRepository(tenant_id=tenant_id).mark_all_read(db, recipients, utc_now_iso())
        return ServiceOutput(payload={"updated": updated, "unread": 0, "message": self._ok("notifications_read")})

    def list_audit(self, db, *, tenant_id: str, actor: Actor, args: Dict[str, Any]) -> ServiceOutput:
        self._require_manager(actor)
        limit = parse_optional_int(args.get("limit")) or 200
        items = AuditLogRepository(tenant_id=tenant_id).list_recent(
            db,
            entity=str(args.get("entity") or "").strip() or None,
            action=str(args.get("action") or "").strip() or None,
            limit=max(1, min(limit, 1000)),
        )
        return ServiceOutput(payload={"items": items, "total": len(items)})
