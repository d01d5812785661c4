from __future__ import annotations

from flask import Blueprint, request

from cotacoes.application.approval_service import ApprovalService
from cotacoes.application.quote_response_service import QuoteResponseService
from cotacoes.application.quote_service import QuoteService, build_quote_input
from cotacoes.db import get_db
from cotacoes.infrastructure.repositories.quoting import QuoteRepository
from cotacoes.quoting.validators import clean_text, parse_id_list, parse_optional_int
from cotacoes.routes.common import current_actor, json_payload, require_critical_confirmation, respond, tenant


quote_bp = Blueprint("quotes", __name__)

_QUOTE_SERVICE = QuoteService()
_APPROVAL_SERVICE = ApprovalService(quote_service=_QUOTE_SERVICE)
_RESPONSE_SERVICE = QuoteResponseService(quote_service=_QUOTE_SERVICE)


@quote_bp.route("/api/quotes", methods=["GET"])
def list_quotes():
    result = _QUOTE_SERVICE.list_quotes(get_db(), tenant_id=tenant(), actor=current_actor(), args=request.args)
    return respond(result)


@quote_bp.route("/api/quotes", methods=["POST"])
def create_quote():
    db = get_db()
    result = _QUOTE_SERVICE.create_quote(
        db,
        tenant_id=tenant(),
        actor=current_actor(),
        create_input=build_quote_input(json_payload()),
    )
    db.commit()
    return respond(result)


@quote_bp.route("/api/quotes/<int:quote_id>", methods=["GET"])
def get_quote(quote_id: int):
    result = _QUOTE_SERVICE.get_quote(get_db(), tenant_id=tenant(), actor=current_actor(), quote_id=quote_id)
    return respond(result)


@quote_bp.route("/api/quotes/<int:quote_id>", methods=["PUT", "PATCH"])
def update_quote(quote_id: int):
    db = get_db()
    result = _QUOTE_SERVICE.update_quote(
        db, tenant_id=tenant(), actor=current_actor(), quote_id=quote_id, payload=json_payload()
    )
    db.commit()
    return respond(result)


@quote_bp.route("/api/quotes/<int:quote_id>", methods=["DELETE"])
def delete_quote(quote_id: int):
    db = get_db()
    tenant_id = tenant()
    payload = json_payload()
    quote = QuoteRepository(tenant_id=tenant_id).get_by_id(db, quote_id)
    # Drafts are removed; anything else is cancelled.
    action_key = "delete_quote" if quote and quote.get("status") == "draft" else "cancel_quote"
    require_critical_confirmation(action_key, entity="quote", entity_id=quote_id, payload=payload)
    result = _QUOTE_SERVICE.delete_quote(
        db,
        tenant_id=tenant_id,
        actor=current_actor(),
        quote_id=quote_id,
        reason=clean_text(payload.get("reason")) or clean_text(request.args.get("reason")),
    )
    db.commit()
    return respond(result)


@quote_bp.route("/api/quotes/<int:quote_id>/status", methods=["POST"])
def update_quote_status(quote_id: int):
    db = get_db()
    payload = json_payload()
    to_status = str(payload.get("status") or "").strip()
    if to_status == "cancelled":
        require_critical_confirmation("cancel_quote", entity="quote", entity_id=quote_id, payload=payload)
    result = _QUOTE_SERVICE.update_status(
        db,
        tenant_id=tenant(),
        actor=current_actor(),
        quote_id=quote_id,
        to_status=to_status,
        reason=clean_text(payload.get("reason")),
    )
    db.commit()
    return respond(result)


@quote_bp.route("/api/quotes/<int:quote_id>/send", methods=["POST"])
def send_quote(quote_id: int):
    db = get_db()
    result = _QUOTE_SERVICE.send_to_suppliers(
        db,
        tenant_id=tenant(),
        actor=current_actor(),
        quote_id=quote_id,
        supplier_ids=parse_id_list(json_payload().get("supplier_ids")),
    )
    db.commit()
    return respond(result)


@quote_bp.route("/api/quotes/<int:quote_id>/reminders", methods=["POST"])
def remind_suppliers(quote_id: int):
    db = get_db()
    result = _RESPONSE_SERVICE.remind_quote(db, tenant_id=tenant(), actor=current_actor(), quote_id=quote_id)
    db.commit()
    return respond(result)


@quote_bp.route("/api/quotes/<int:quote_id>/finalize", methods=["POST"])
def finalize_quote(quote_id: int):
    db = get_db()
    result = _QUOTE_SERVICE.finalize_quote(db, tenant_id=tenant(), actor=current_actor(), quote_id=quote_id)
    db.commit()
    return respond(result)


@quote_bp.route("/api/quotes/<int:quote_id>/proposals", methods=["POST"])
def submit_proposal(quote_id: int):
    db = get_db()
    result = _QUOTE_SERVICE.submit_proposal(
        db, tenant_id=tenant(), actor=current_actor(), quote_id=quote_id, payload=json_payload()
    )
    db.commit()
    return respond(result)


@quote_bp.route("/api/quotes/<int:quote_id>/proposals/compare", methods=["GET"])
def compare_proposals(quote_id: int):
    result = _QUOTE_SERVICE.compare_proposals(get_db(), tenant_id=tenant(), actor=current_actor(), quote_id=quote_id)
    return respond(result)


@quote_bp.route("/api/proposals/<int:response_id>/approve", methods=["POST"])
def approve_proposal(response_id: int):
    db = get_db()
    require_critical_confirmation(
        "approve_proposal", entity="quote_response", entity_id=response_id, payload=json_payload()
    )
    result = _QUOTE_SERVICE.approve_proposal(db, tenant_id=tenant(), actor=current_actor(), response_id=response_id)
    db.commit()
    return respond(result)


@quote_bp.route("/api/proposals/<int:response_id>/reject", methods=["POST"])
def reject_proposal(response_id: int):
    db = get_db()
    result = _QUOTE_SERVICE.reject_proposal(
        db,
        tenant_id=tenant(),
        actor=current_actor(),
        response_id=response_id,
        note=clean_text(json_payload().get("note")),
    )
    db.commit()
    return respond(result)


@quote_bp.route("/api/quotes/<int:quote_id>/approval", methods=["POST"])
def request_approval(quote_id: int):
    db = get_db()
    result = _APPROVAL_SERVICE.request_approval(
        db,
        tenant_id=tenant(),
        actor=current_actor(),
        quote_id=quote_id,
        response_id=parse_optional_int(json_payload().get("response_id")),
    )
    db.commit()
    return respond(result)


@quote_bp.route("/api/quotes/<int:quote_id>/approval/fix-status", methods=["POST"])
def fix_quote_approval_status(quote_id: int):
    db = get_db()
    result = _APPROVAL_SERVICE.fix_quote_approval_status(
        db, tenant_id=tenant(), actor=current_actor(), quote_id=quote_id
    )
    db.commit()
    return respond(result)


@quote_bp.route("/api/approvals", methods=["GET"])
def list_approvals():
    result = _APPROVAL_SERVICE.list_approvals(get_db(), tenant_id=tenant(), actor=current_actor(), args=request.args)
    return respond(result)


@quote_bp.route("/api/approvals/<int:approval_id>/decision", methods=["POST"])
def decide_approval(approval_id: int):
    db = get_db()
    payload = json_payload()
    result = _APPROVAL_SERVICE.decide(
        db,
        tenant_id=tenant(),
        actor=current_actor(),
        approval_id=approval_id,
        status=str(payload.get("status") or "").strip(),
        comments=clean_text(payload.get("comments")),
    )
    db.commit()
    return respond(result)


@quote_bp.route("/api/approval-levels", methods=["GET"])
def list_approval_levels():
    result = _APPROVAL_SERVICE.list_levels(
        get_db(), tenant_id=tenant(), actor=current_actor(), search=request.args.get("search")
    )
    return respond(result)


@quote_bp.route("/api/approval-levels", methods=["POST"])
def create_approval_level():
    db = get_db()
    result = _APPROVAL_SERVICE.create_level(db, tenant_id=tenant(), actor=current_actor(), payload=json_payload())
    db.commit()
    return respond(result)


@quote_bp.route("/api/approval-levels/<int:level_id>", methods=["PUT", "PATCH"])
def update_approval_level(level_id: int):
    db = get_db()
    result = _APPROVAL_SERVICE.update_level(
        db, tenant_id=tenant(), actor=current_actor(), level_id=level_id, payload=json_payload()
    )
    db.commit()
    return respond(result)


@quote_bp.route("/api/approval-levels/<int:level_id>", methods=["DELETE"])
def delete_approval_level(level_id: int):
    db = get_db()
    result = _APPROVAL_SERVICE.delete_level(db, tenant_id=tenant(), actor=current_actor(), level_id=level_id)
    db.commit()
    return respond(result)


# Public quick-response page addressed by the supplier's short code or full token.


@quote_bp.route("/api/resposta-rapida/<string:token>", methods=["GET"])
def view_quick_response(token: str):
    result = _RESPONSE_SERVICE.view_quick_response(get_db(), token=token)
    return respond(result)


@quote_bp.route("/api/resposta-rapida/<string:token>/proposta", methods=["POST"])
def submit_quick_response(token: str):
    db = get_db()
    result = _RESPONSE_SERVICE.submit_quick_response(db, token=token, payload=json_payload())
    db.commit()
    return respond(result)
