from __future__ import annotations

from flask import Blueprint, request

from cotacoes.application.payment_service import PaymentService
from cotacoes.db import get_db
from cotacoes.quoting.validators import clean_text, parse_optional_int
from cotacoes.routes.common import current_actor, json_payload, require_critical_confirmation, respond, tenant


payment_bp = Blueprint("payments", __name__)

_PAYMENT_SERVICE = PaymentService()


@payment_bp.route("/api/payments", methods=["GET"])
def list_payments():
    result = _PAYMENT_SERVICE.list_payments(get_db(), tenant_id=tenant(), actor=current_actor(), args=request.args)
    return respond(result)


@payment_bp.route("/api/payments", methods=["POST"])
def create_payment():
    db = get_db()
    result = _PAYMENT_SERVICE.create_payment(
        db,
        tenant_id=tenant(),
        actor=current_actor(),
        quote_id=parse_optional_int(json_payload().get("quote_id")) or 0,
    )
    db.commit()
    return respond(result)


@payment_bp.route("/api/payments/<int:payment_id>", methods=["GET"])
def get_payment(payment_id: int):
    result = _PAYMENT_SERVICE.get_payment(get_db(), tenant_id=tenant(), actor=current_actor(), payment_id=payment_id)
    return respond(result)


@payment_bp.route("/api/payments/<int:payment_id>/cancel", methods=["POST"])
def cancel_payment(payment_id: int):
    db = get_db()
    require_critical_confirmation("cancel_payment", entity="payment", entity_id=payment_id, payload=json_payload())
    result = _PAYMENT_SERVICE.cancel_payment(db, tenant_id=tenant(), actor=current_actor(), payment_id=payment_id)
    db.commit()
    return respond(result)


@payment_bp.route("/api/payments/<int:payment_id>/dispute", methods=["POST"])
def open_dispute(payment_id: int):
    db = get_db()
    result = _PAYMENT_SERVICE.open_dispute(
        db,
        tenant_id=tenant(),
        actor=current_actor(),
        payment_id=payment_id,
        reason=clean_text(json_payload().get("reason")),
    )
    db.commit()
    return respond(result)


@payment_bp.route("/api/payments/<int:payment_id>/delivery-code", methods=["POST"])
def regenerate_delivery_code(payment_id: int):
    db = get_db()
    result = _PAYMENT_SERVICE.regenerate_code(db, tenant_id=tenant(), actor=current_actor(), payment_id=payment_id)
    db.commit()
    return respond(result)


@payment_bp.route("/api/deliveries/confirm", methods=["POST"])
def confirm_delivery():
    db = get_db()
    payload = json_payload()
    code = str(payload.get("confirmation_code") or payload.get("code") or "").strip()
    require_critical_confirmation("confirm_delivery", entity="delivery", entity_id=0, payload=payload)
    result = _PAYMENT_SERVICE.confirm_delivery(db, tenant_id=tenant(), actor=current_actor(), code=code)
    db.commit()
    return respond(result)


@payment_bp.route("/api/webhooks/payments", methods=["POST"])
def payment_webhook():
    db = get_db()
    token = request.headers.get("X-Webhook-Token") or request.headers.get("asaas-access-token")
    result = _PAYMENT_SERVICE.process_webhook(db, payload=json_payload(), token=token)
    db.commit()
    return respond(result)
