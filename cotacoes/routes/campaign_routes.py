from __future__ import annotations

from flask import Blueprint, request

from cotacoes.application.campaign_service import CampaignService
from cotacoes.db import get_db
from cotacoes.routes.common import current_actor, json_payload, require_critical_confirmation, respond, tenant
from cotacoes.tenant import normalize_tenant_id


campaign_bp = Blueprint("campaigns", __name__)

_CAMPAIGN_SERVICE = CampaignService()


def _import_content() -> str | None:
    uploaded = request.files.get("file")
    if uploaded is not None:
        return uploaded.read().decode("utf-8-sig", errors="replace")
    payload = json_payload()
    if payload.get("csv"):
        return str(payload.get("csv"))
    if request.mimetype == "text/csv":
        return request.get_data(as_text=True)
    return None


@campaign_bp.route("/api/contacts", methods=["GET"])
def list_contacts():
    result = _CAMPAIGN_SERVICE.list_contacts(get_db(), tenant_id=tenant(), actor=current_actor(), args=request.args)
    return respond(result)


@campaign_bp.route("/api/contacts", methods=["POST"])
def create_contact():
    db = get_db()
    result = _CAMPAIGN_SERVICE.create_contact(db, tenant_id=tenant(), actor=current_actor(), payload=json_payload())
    db.commit()
    return respond(result)


@campaign_bp.route("/api/contacts/import", methods=["POST"])
def import_contacts():
    db = get_db()
    result = _CAMPAIGN_SERVICE.import_contacts(db, tenant_id=tenant(), actor=current_actor(), content=_import_content())
    db.commit()
    return respond(result)


@campaign_bp.route("/unsubscribe/<path:email>", methods=["GET", "POST"])
def unsubscribe(email: str):
    db = get_db()
    tenant_id = normalize_tenant_id(request.args.get("tenant")) or tenant()
    result = _CAMPAIGN_SERVICE.unsubscribe(db, tenant_id=tenant_id, email=email)
    db.commit()
    return respond(result)


@campaign_bp.route("/api/campaigns", methods=["GET"])
def list_campaigns():
    result = _CAMPAIGN_SERVICE.list_campaigns(get_db(), tenant_id=tenant(), actor=current_actor(), args=request.args)
    return respond(result)


@campaign_bp.route("/api/campaigns", methods=["POST"])
def create_campaign():
    db = get_db()
    result = _CAMPAIGN_SERVICE.create_campaign(
        db,
        tenant_id=tenant(),
        actor=current_actor(),
        campaign_input=CampaignService.build_input(json_payload()),
    )
    db.commit()
    return respond(result)


@campaign_bp.route("/api/campaigns/preview", methods=["POST"])
def preview_audience():
    result = _CAMPAIGN_SERVICE.preview_audience(
        get_db(), tenant_id=tenant(), actor=current_actor(), segment=json_payload().get("target_segment")
    )
    return respond(result)


@campaign_bp.route("/api/campaigns/<int:campaign_id>", methods=["GET"])
def get_campaign(campaign_id: int):
    result = _CAMPAIGN_SERVICE.get_campaign(get_db(), tenant_id=tenant(), actor=current_actor(), campaign_id=campaign_id)
    return respond(result)


@campaign_bp.route("/api/campaigns/<int:campaign_id>", methods=["PUT", "PATCH"])
def update_campaign(campaign_id: int):
    db = get_db()
    result = _CAMPAIGN_SERVICE.update_campaign(
        db, tenant_id=tenant(), actor=current_actor(), campaign_id=campaign_id, payload=json_payload()
    )
    db.commit()
    return respond(result)


@campaign_bp.route("/api/campaigns/<int:campaign_id>/send", methods=["POST"])
def send_campaign(campaign_id: int):
    db = get_db()
    require_critical_confirmation("send_campaign", entity="email_campaign", entity_id=campaign_id, payload=json_payload())
    result = _CAMPAIGN_SERVICE.send_campaign(db, tenant_id=tenant(), actor=current_actor(), campaign_id=campaign_id)
    db.commit()
    return respond(result)
