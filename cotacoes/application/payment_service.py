from __future__ import annotations

import logging
import secrets
from typing import Any, Dict

from flask import current_app

from cotacoes.application.base import ApplicationService
from cotacoes.clock import is_past, iso_after, utc_now_iso
from cotacoes.core import DeliveryConfirmed, PaymentStatusChanged
from cotacoes.domain.contracts import Actor, ServiceOutput
from cotacoes.errors import AppError, ConflictError, NotFoundError, PermissionError, SystemError, ValidationError
from cotacoes.infrastructure.repositories.quoting import DeliveryRepository, PaymentRepository, QuoteRepository
from cotacoes.infrastructure.repositories.quoting.payment_repository import find_payment_tenant
from cotacoes.observability import observe_escrow_release
from cotacoes.quoting.filters import filter_rows
from cotacoes.quoting.flow_policy import QUOTE_STAGE, action_allowed, flow_meta
from cotacoes.quoting.validators import clean_text
from cotacoes.security import tokens_match
from cotacoes.ui_strings import status_keys_for_group, status_label


PAYMENT_STAGE = "pagamento"
DELIVERY_CODE_DIGITS = 6

# gateway event -> (target status, statuses it may come from)
WEBHOOK_TRANSITIONS: Dict[str, tuple[str, set[str]]] = {
    "PAYMENT_RECEIVED": ("in_escrow", {"pending", "overdue"}),
    "PAYMENT_CONFIRMED": ("in_escrow", {"pending", "overdue"}),
    "PAYMENT_OVERDUE": ("overdue", {"pending"}),
    "PAYMENT_REFUNDED": ("refunded", {"pending", "in_escrow", "overdue", "disputed"}),
}


logger = logging.getLogger("cotacoes")


def generate_delivery_code() -> str:
    return f"{secrets.randbelow(10 ** DELIVERY_CODE_DIGITS):0{DELIVERY_CODE_DIGITS}d}"


def _code_error(code: str, http_status: int, **payload) -> AppError:
    if http_status == 404:
        return NotFoundError(code=code, message_key=code, payload=payload)
    if http_status == 403:
        return PermissionError(code=code, message_key=code, payload=payload)
    return ValidationError(code=code, message_key=code, http_status=http_status, payload=payload)


def payment_view(payment: Dict[str, Any]) -> Dict[str, Any]:
    status = payment.get("status")
    return {
        **payment,
        "status_label": status_label(PAYMENT_STAGE, status),
        "flow": flow_meta(PAYMENT_STAGE, status),
    }


class PaymentService(ApplicationService):
    def _load_payment(self, db, tenant_id: str, payment_id: int) -> Dict[str, Any]:
        payment = PaymentRepository(tenant_id=tenant_id).get_by_id(db, payment_id)
        if not payment:
            raise self._not_found("payment_not_found", payment_id=payment_id)
        return payment

    def _set_status(
        self,
        db,
        tenant_id: str,
        actor: Actor | None,
        payment: Dict[str, Any],
        to_status: str,
        *,
        reason: str,
        extra: Dict[str, Any] | None = None,
    ) -> None:
        from_status = payment.get("status")
        PaymentRepository(tenant_id=tenant_id).update(db, int(payment["id"]), {"status": to_status, **(extra or {})})
        self._status_event(
            db,
            tenant_id,
            entity="payment",
            entity_id=int(payment["id"]),
            from_status=from_status,
            to_status=to_status,
            reason=reason,
        )
        self._publish(
            PaymentStatusChanged(
                tenant_id=tenant_id,
                actor=actor.email if actor else None,
                payment_id=int(payment["id"]),
                quote_id=int(payment["quote_id"]),
                supplier_id=payment.get("supplier_id"),
                from_status=from_status,
                to_status=to_status,
            )
        )

    def _issue_code(self, db, tenant_id: str, delivery_id: int, payment_id: int) -> Dict[str, str]:
        ttl_hours = int(current_app.config.get("DELIVERY_CODE_TTL_HOURS", 72) or 72)
        code = generate_delivery_code()
        expires_at = iso_after(hours=ttl_hours)
        DeliveryRepository(tenant_id=tenant_id).create_confirmation(
            db, delivery_id=delivery_id, payment_id=payment_id, code=code, expires_at=expires_at
        )
        return {"confirmation_code": code, "expires_at": expires_at}

    def create_payment(self, db, *, tenant_id: str, actor: Actor, quote_id: int) -> ServiceOutput:
        self._require_staff(actor)
        quote = QuoteRepository(tenant_id=tenant_id).get_by_id(db, quote_id)
        if not quote:
            raise self._not_found("quote_not_found", quote_id=quote_id)
        if not action_allowed(QUOTE_STAGE, quote.get("status"), "create_payment"):
            raise self._conflict("payment_quote_not_approved", status=quote.get("status"))
        amount = quote.get("approved_amount")
        if amount is None:
            raise self._invalid("approval_amount_missing")

        repo = PaymentRepository(tenant_id=tenant_id)
        existing = repo.find_active_for_quote(db, quote_id)
        if existing:
            raise self._conflict("payment_already_exists", payment_id=existing["id"])

        hold_days = int(current_app.config.get("ESCROW_HOLD_DAYS", 10) or 10)
        payment_id = repo.create(
            db,
            quote_id=quote_id,
            supplier_id=quote.get("supplier_id"),
            amount=float(amount),
            escrow_release_date=iso_after(days=hold_days),
        )
        repo.add_transaction(db, payment_id, "payment_created", float(amount), "Pagamento criado")
        self._status_event(
            db,
            tenant_id,
            entity="payment",
            entity_id=payment_id,
            from_status=None,
            to_status="pending",
            reason="payment_created",
        )
        self._audit(
            db,
            tenant_id,
            actor,
            action="create",
            entity="payment",
            entity_id=payment_id,
            details={"quote_id": quote_id, "amount": float(amount)},
        )
        payment = repo.get_by_id(db, payment_id) or {}
        self._publish(
            PaymentStatusChanged(
                tenant_id=tenant_id,
                actor=actor.email,
                payment_id=payment_id,
                quote_id=quote_id,
                supplier_id=payment.get("supplier_id"),
                from_status=None,
                to_status="pending",
            )
        )
        return ServiceOutput(payload={**payment_view(payment), "message": self._ok("payment_created")}, status_code=201)

    def process_webhook(self, db, *, payload: Dict[str, Any], token: str | None) -> ServiceOutput:
        """Applies a gateway event; the tenant comes from the payment reference."""
        if not tokens_match(current_app.config.get("PAYMENT_WEBHOOK_TOKEN"), token):
            raise ValidationError(code="webhook_unauthorized", message_key="webhook_unauthorized", http_status=401)

        event = str(payload.get("event") or "").strip().upper()
        payment_data = payload.get("payment")
        if not event or not isinstance(payment_data, dict):
            raise self._invalid("webhook_payload_invalid")
        reference = str(payment_data.get("externalReference") or "").strip()
        if not reference:
            raise self._invalid("webhook_payload_invalid")

        if event not in WEBHOOK_TRANSITIONS:
            logger.info("payment_webhook_ignored", extra={"event": event, "reference": reference})
            return ServiceOutput(payload={"received": True, "ignored": True, "event": event})

        tenant_id = find_payment_tenant(db, reference)
        if not tenant_id:
            raise self._not_found("payment_not_found", reference=reference)
        payment = PaymentRepository(tenant_id=tenant_id).get_by_external_reference(db, reference)
        if not payment:
            raise self._not_found("payment_not_found", reference=reference)

        target, sources = WEBHOOK_TRANSITIONS[event]
        current = payment.get("status")
        if current == target or current not in sources:
            logger.info(
                "payment_webhook_noop",
                extra={"event": event, "payment_id": payment["id"], "status": current, "tenant_id": tenant_id},
            )
            return ServiceOutput(
                payload={"received": True, "ignored": True, "event": event, "status": current}
            )

        result: Dict[str, Any] = {"received": True, "ignored": False, "event": event, "payment_id": payment["id"]}
        repo = PaymentRepository(tenant_id=tenant_id)
        amount = float(payment.get("amount") or 0)
        if target == "in_escrow":
            now = utc_now_iso()
            self._set_status(db, tenant_id, None, payment, "in_escrow", reason=event.lower(), extra={"paid_at": now})
            repo.add_transaction(db, int(payment["id"]), "payment_received", amount, "Pagamento recebido em custodia")
            deliveries = DeliveryRepository(tenant_id=tenant_id)
            delivery_id = deliveries.create(
                db,
                payment_id=int(payment["id"]),
                quote_id=int(payment["quote_id"]),
                supplier_id=payment.get("supplier_id"),
            )
            code = self._issue_code(db, tenant_id, delivery_id, int(payment["id"]))
            result.update({"delivery_id": delivery_id, "code_expires_at": code["expires_at"]})
        elif target == "refunded":
            self._set_status(db, tenant_id, None, payment, "refunded", reason=event.lower())
            repo.add_transaction(db, int(payment["id"]), "payment_refunded", amount, "Pagamento estornado")
        else:
            self._set_status(db, tenant_id, None, payment, target, reason=event.lower())

        self._audit(
            db,
            tenant_id,
            None,
            action="webhook",
            entity="payment",
            entity_id=int(payment["id"]),
            details={"event": event, "from": current, "to": target},
        )
        result["status"] = target
        result["message"] = self._ok("webhook_processed")
        return ServiceOutput(payload=result)

    def _release_escrow(
        self, db, tenant_id: str, actor: Actor | None, payment: Dict[str, Any], *, trigger: str
    ) -> None:
        if payment.get("status") != "in_escrow":
            raise ConflictError(
                code="escrow_release_failed",
                message_key="escrow_release_failed",
                payload={"payment_id": payment.get("id"), "status": payment.get("status")},
            )
        repo = PaymentRepository(tenant_id=tenant_id)
        amount = float(payment.get("amount") or 0)
        if trigger == "delivery_confirmed":
            repo.add_transaction(db, int(payment["id"]), "delivery_confirmed", amount, "Entrega confirmada")
        self._set_status(
            db,
            tenant_id,
            actor,
            payment,
            "completed",
            reason=trigger,
            extra={"released_at": utc_now_iso()},
        )
        repo.add_transaction(db, int(payment["id"]), "funds_released", amount, "Valor liberado ao fornecedor")
        observe_escrow_release(trigger)

    def confirm_delivery(self, db, *, tenant_id: str, actor: Actor, code: str) -> ServiceOutput:
        normalized = "".join(ch for ch in str(code or "") if ch.isdigit())
        if len(normalized) != DELIVERY_CODE_DIGITS:
            raise _code_error("CODE_NOT_FOUND", 404)

        confirmation = DeliveryRepository.find_confirmation_by_code(db, normalized)
        if not confirmation:
            raise _code_error("CODE_NOT_FOUND", 404)
        if confirmation.get("tenant_id") != tenant_id or actor.is_supplier:
            raise _code_error("PERMISSION_DENIED", 403)
        if confirmation.get("is_used"):
            raise _code_error("CODE_ALREADY_USED", 400, confirmed_at=confirmation.get("used_at"))
        if is_past(confirmation.get("expires_at")):
            raise _code_error("CODE_EXPIRED", 400, expired_at=confirmation.get("expires_at"))

        deliveries = DeliveryRepository(tenant_id=tenant_id)
        confirmation_id = int(confirmation["id"])
        now = utc_now_iso()
        deliveries.mark_confirmation_used(db, confirmation_id, used_at=now, used_by=actor.email)

        payment = PaymentRepository(tenant_id=tenant_id).get_by_id(db, int(confirmation["payment_id"]))
        try:
            if not payment:
                raise self._not_found("payment_not_found", payment_id=confirmation["payment_id"])
            self._release_escrow(db, tenant_id, actor, payment, trigger="delivery_confirmed")
        except AppError:
            deliveries.revert_confirmation(db, confirmation_id)
            raise
        except Exception as exc:
            deliveries.revert_confirmation(db, confirmation_id)
            logger.exception("escrow_release_failed", extra={"payment_id": confirmation["payment_id"]})
            raise SystemError(code="escrow_release_failed", message_key="escrow_release_failed") from exc

        delivery_id = int(confirmation["delivery_id"])
        deliveries.update(db, delivery_id, {"status": "delivered", "delivered_at": now, "confirmed_by": actor.email})
        self._status_event(
            db,
            tenant_id,
            entity="delivery",
            entity_id=delivery_id,
            from_status=confirmation.get("delivery_status"),
            to_status="delivered",
            reason="delivery_confirmed",
        )
        self._audit(
            db,
            tenant_id,
            actor,
            action="confirm_delivery",
            entity="delivery",
            entity_id=delivery_id,
            details={"payment_id": payment["id"], "amount": payment.get("amount")},
        )
        self._publish(
            DeliveryConfirmed(
                tenant_id=tenant_id,
                actor=actor.email,
                delivery_id=delivery_id,
                payment_id=int(payment["id"]),
                supplier_id=payment.get("supplier_id"),
                amount=float(payment.get("amount") or 0),
            )
        )
        updated = self._load_payment(db, tenant_id, int(payment["id"]))
        return ServiceOutput(
            payload={
                "success": True,
                "delivery_id": delivery_id,
                "payment": payment_view(updated),
                "message": self._ok("delivery_confirmed"),
            }
        )

    def regenerate_code(self, db, *, tenant_id: str, actor: Actor, payment_id: int) -> ServiceOutput:
        self._require_staff(actor)
        payment = self._load_payment(db, tenant_id, payment_id)
        if not action_allowed(PAYMENT_STAGE, payment.get("status"), "confirm_delivery"):
            raise self._forbidden_action(PAYMENT_STAGE, payment.get("status"), "confirm_delivery")
        deliveries = DeliveryRepository(tenant_id=tenant_id)
        delivery = deliveries.find_for_payment(db, payment_id)
        if not delivery or delivery.get("status") != "scheduled":
            raise self._not_found("not_found", payment_id=payment_id)

        deliveries.invalidate_open_confirmations(db, int(delivery["id"]), utc_now_iso())
        code = self._issue_code(db, tenant_id, int(delivery["id"]), payment_id)
        self._audit(
            db,
            tenant_id,
            actor,
            action="regenerate_code",
            entity="delivery",
            entity_id=int(delivery["id"]),
            details={"payment_id": payment_id},
        )
        return ServiceOutput(
            payload={
                "delivery_id": delivery["id"],
                **code,
                "message": self._ok("delivery_code_regenerated"),
            }
        )

    def open_dispute(
        self, db, *, tenant_id: str, actor: Actor, payment_id: int, reason: str | None
    ) -> ServiceOutput:
        self._require_staff(actor)
        payment = self._load_payment(db, tenant_id, payment_id)
        if not action_allowed(PAYMENT_STAGE, payment.get("status"), "open_dispute"):
            raise self._forbidden_action(PAYMENT_STAGE, payment.get("status"), "open_dispute")
        dispute_reason = clean_text(reason)
        if not dispute_reason:
            raise self._invalid("dispute_reason_required")

        self._set_status(
            db, tenant_id, actor, payment, "disputed", reason="dispute_opened", extra={"dispute_reason": dispute_reason}
        )
        PaymentRepository(tenant_id=tenant_id).add_transaction(
            db, payment_id, "dispute_opened", float(payment.get("amount") or 0), dispute_reason
        )
        self._audit(
            db,
            tenant_id,
            actor,
            action="dispute",
            entity="payment",
            entity_id=payment_id,
            details={"reason": dispute_reason},
        )
        updated = self._load_payment(db, tenant_id, payment_id)
        return ServiceOutput(payload={**payment_view(updated), "message": self._ok("payment_disputed")})

    def cancel_payment(self, db, *, tenant_id: str, actor: Actor, payment_id: int) -> ServiceOutput:
        self._require_staff(actor)
        payment = self._load_payment(db, tenant_id, payment_id)
        if payment.get("status") != "pending":
            raise self._forbidden_action(PAYMENT_STAGE, payment.get("status"), "cancel_payment")

        self._set_status(db, tenant_id, actor, payment, "cancelled", reason="payment_cancelled")
        PaymentRepository(tenant_id=tenant_id).add_transaction(
            db, payment_id, "payment_cancelled", float(payment.get("amount") or 0), "Pagamento cancelado"
        )
        self._audit(db, tenant_id, actor, action="cancel", entity="payment", entity_id=payment_id)
        updated = self._load_payment(db, tenant_id, payment_id)
        return ServiceOutput(payload={**payment_view(updated), "message": self._ok("payment_cancelled")})

    def release_due_escrow(self, db, *, tenant_id: str) -> int:
        """Releases in-escrow payments whose hold period is over. Returns how many."""
        released = 0
        for payment in PaymentRepository(tenant_id=tenant_id).list_in_escrow(db):
            if not is_past(payment.get("escrow_release_date")):
                continue
            self._release_escrow(db, tenant_id, None, payment, trigger="automatic")
            self._audit(
                db,
                tenant_id,
                None,
                action="auto_release",
                entity="payment",
                entity_id=int(payment["id"]),
                details={"escrow_release_date": payment.get("escrow_release_date")},
            )
            released += 1
        return released

    def list_payments(self, db, *, tenant_id: str, actor: Actor, args: Dict[str, Any]) -> ServiceOutput:
        repo = PaymentRepository(tenant_id=tenant_id)
        if actor.is_supplier:
            rows = repo.list_for_supplier(db, actor.supplier_id) if actor.supplier_id else []
        else:
            rows = repo.list_all(db)

        summary: Dict[str, Dict[str, float]] = {
            status: {"count": 0, "amount": 0.0} for status in status_keys_for_group(PAYMENT_STAGE)
        }
        for row in rows:
            bucket = summary.setdefault(str(row.get("status")), {"count": 0, "amount": 0.0})
            bucket["count"] += 1
            bucket["amount"] = round(bucket["amount"] + float(row.get("amount") or 0), 2)

        items = filter_rows(
            rows,
            search=args.get("search"),
            fields=("quote_title", "quote_code", "supplier_name", "external_reference"),
            status=args.get("status"),
        )
        return ServiceOutput(
            payload={
                "items": [payment_view(row) for row in items],
                "total": len(items),
                "summary": summary,
            }
        )

    def get_payment(self, db, *, tenant_id: str, actor: Actor, payment_id: int) -> ServiceOutput:
        payment = self._load_payment(db, tenant_id, payment_id)
        if actor.is_supplier and payment.get("supplier_id") != actor.supplier_id:
            raise self._not_found("payment_not_found", payment_id=payment_id)

        deliveries = DeliveryRepository(tenant_id=tenant_id)
        delivery = deliveries.find_for_payment(db, payment_id)
        detail = {
            **payment_view(payment),
            "transactions": PaymentRepository(tenant_id=tenant_id).list_transactions(db, payment_id),
            "delivery": delivery,
        }
        if delivery and not actor.is_supplier:
            confirmation = deliveries.latest_open_confirmation(db, int(delivery["id"]))
            if confirmation:
                detail["confirmation"] = {
                    "confirmation_code": confirmation.get("confirmation_code"),
                    "expires_at": confirmation.get("expires_at"),
                    "expired": is_past(confirmation.get("expires_at")),
                }
        return ServiceOutput(payload=detail)
