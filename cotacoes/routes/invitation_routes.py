from __future__ import annotations

from flask import Blueprint, request

from cotacoes.application.invitation_service import InvitationLetterService
from cotacoes.db import get_db
from cotacoes.routes.common import current_actor, json_payload, require_critical_confirmation, respond, tenant


invitation_bp = Blueprint("invitations", __name__)

_INVITATION_SERVICE = InvitationLetterService()


@invitation_bp.route("/api/invitation-letters", methods=["GET"])
def list_letters():
    result = _INVITATION_SERVICE.list_letters(get_db(), tenant_id=tenant(), actor=current_actor(), args=request.args)
    return respond(result)


@invitation_bp.route("/api/invitation-letters", methods=["POST"])
def create_letter():
    db = get_db()
    result = _INVITATION_SERVICE.create_letter(
        db,
        tenant_id=tenant(),
        actor=current_actor(),
        letter_input=InvitationLetterService.build_input(json_payload()),
    )
    db.commit()
    return respond(result)


@invitation_bp.route("/api/invitation-letters/<int:letter_id>", methods=["GET"])
def get_letter(letter_id: int):
    result = _INVITATION_SERVICE.get_letter(get_db(), tenant_id=tenant(), actor=current_actor(), letter_id=letter_id)
    return respond(result)


@invitation_bp.route("/api/invitation-letters/<int:letter_id>", methods=["PUT", "PATCH"])
def update_letter(letter_id: int):
    db = get_db()
    result = _INVITATION_SERVICE.update_letter(
        db, tenant_id=tenant(), actor=current_actor(), letter_id=letter_id, payload=json_payload()
    )
    db.commit()
    return respond(result)


@invitation_bp.route("/api/invitation-letters/<int:letter_id>", methods=["DELETE"])
def delete_letter(letter_id: int):
    db = get_db()
    result = _INVITATION_SERVICE.delete_letter(db, tenant_id=tenant(), actor=current_actor(), letter_id=letter_id)
    db.commit()
    return respond(result)


@invitation_bp.route("/api/invitation-letters/<int:letter_id>/send", methods=["POST"])
def send_letter(letter_id: int):
    db = get_db()
    result = _INVITATION_SERVICE.send_letter(db, tenant_id=tenant(), actor=current_actor(), letter_id=letter_id)
    db.commit()
    return respond(result)


@invitation_bp.route("/api/invitation-letters/<int:letter_id>/cancel", methods=["POST"])
def cancel_letter(letter_id: int):
    db = get_db()
    require_critical_confirmation(
        "cancel_invitation_letter", entity="invitation_letter", entity_id=letter_id, payload=json_payload()
    )
    result = _INVITATION_SERVICE.cancel_letter(db, tenant_id=tenant(), actor=current_actor(), letter_id=letter_id)
    db.commit()
    return respond(result)


@invitation_bp.route("/api/invitation-letters/<int:letter_id>/stats", methods=["GET"])
def letter_stats(letter_id: int):
    result = _INVITATION_SERVICE.stats(get_db(), tenant_id=tenant(), actor=current_actor(), letter_id=letter_id)
    return respond(result)


# Public pages addressed by the supplier's response token.


@invitation_bp.route("/api/convites/<string:token>", methods=["GET"])
def view_invitation(token: str):
    db = get_db()
    result = _INVITATION_SERVICE.view_invitation(db, token=token)
    db.commit()
    return respond(result)


@invitation_bp.route("/api/convites/<string:token>/resposta", methods=["POST"])
def respond_invitation(token: str):
    db = get_db()
    payload = json_payload()
    result = _INVITATION_SERVICE.respond_invitation(
        db,
        token=token,
        response_status=str(payload.get("response_status") or payload.get("status") or ""),
        notes=payload.get("notes"),
    )
    db.commit()
    return respond(result)
