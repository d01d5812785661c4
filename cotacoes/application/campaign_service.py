from __future__ import annotations

import csv
import io
import logging
from typing import Any, Dict, List

from flask import current_app

from cotacoes import email_client
from cotacoes.application.base import ApplicationService
from cotacoes.clock import utc_now_iso
from cotacoes.domain.contracts import Actor, CampaignInput, ServiceOutput
from cotacoes.errors import IntegrationClientError, classify_integration_failure
from cotacoes.infrastructure.auth_repository import AuthRepository
from cotacoes.infrastructure.repositories.quoting import CampaignRepository, ContactRepository
from cotacoes.observability import observe_email
from cotacoes.quoting.filters import filter_rows
from cotacoes.quoting.flow_policy import action_allowed, flow_meta
from cotacoes.quoting.segmentation import (
    bounce_rate,
    normalize_criteria,
    recipient_variables,
    render_merge_tags,
    select_audience,
)
from cotacoes.quoting.validators import clean_text, is_valid_email, parse_string_list
from cotacoes.ui_strings import error_message, status_label


CAMPAIGN_STAGE = "campanha"
CONTACT_FIELDS = ("email", "name", "client_type", "group_id", "region", "state", "tags")
PREVIEW_LIMIT = 20

logger = logging.getLogger("cotacoes")


def campaign_view(campaign: Dict[str, Any]) -> Dict[str, Any]:
    return {
        **campaign,
        "status_label": status_label(CAMPAIGN_STAGE, campaign.get("status")),
        "flow": flow_meta(CAMPAIGN_STAGE, campaign.get("status")),
    }


def _contact_from_mapping(raw: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "email": str(raw.get("email") or "").strip().lower(),
        "name": clean_text(raw.get("name")),
        "client_type": clean_text(raw.get("client_type")),
        "group_id": clean_text(raw.get("group_id")),
        "region": clean_text(raw.get("region")),
        "state": (clean_text(raw.get("state")) or "").upper() or None,
        "tags": parse_string_list(raw.get("tags")),
    }


def parse_contacts_csv(content: str) -> List[Dict[str, Any]]:
    """Reads contact rows; the delimiter is taken from the header line."""
    text = content.lstrip("﻿")
    header = text.split("\n", 1)[0]
    delimiter = ";" if header.count(";") > header.count(",") else ","
    reader = csv.DictReader(io.StringIO(text), delimiter=delimiter)
    rows: List[Dict[str, Any]] = []
    for raw in reader:
        normalized = {str(key or "").strip().lower(): value for key, value in raw.items()}
        if not any(str(normalized.get(field) or "").strip() for field in CONTACT_FIELDS):
            continue
        rows.append(_contact_from_mapping(normalized))
    return rows


class CampaignService(ApplicationService):
    # -- contacts ----------------------------------------------------------

    def create_contact(self, db, *, tenant_id: str, actor: Actor, payload: Dict[str, Any]) -> ServiceOutput:
        self._require_staff(actor)
        contact = _contact_from_mapping(payload)
        if not is_valid_email(contact["email"]):
            raise self._invalid("email_invalid", email=contact["email"])
        repo = ContactRepository(tenant_id=tenant_id)
        existing = repo.find_by_email(db, contact["email"])
        if existing:
            raise self._conflict("contact_email_duplicated", contact_id=existing["id"])
        contact_id = repo.create(db, contact)
        self._audit(db, tenant_id, actor, action="create", entity="email_contact", entity_id=contact_id)
        created = repo.get_by_id(db, contact_id) or {}
        return ServiceOutput(payload={**created, "message": self._ok("contact_created")}, status_code=201)

    def import_contacts(self, db, *, tenant_id: str, actor: Actor, content: str | None) -> ServiceOutput:
        self._require_staff(actor)
        if not content or not content.strip():
            raise self._invalid("import_file_required")

        repo = ContactRepository(tenant_id=tenant_id)
        imported = 0
        skipped = 0
        errors: List[Dict[str, Any]] = []
        seen: set[str] = set()
        # Line 1 is the header.
        for line_number, contact in enumerate(parse_contacts_csv(content), start=2):
            email = contact["email"]
            if not is_valid_email(email):
                errors.append({"line": line_number, "email": email, "error": "email_invalid"})
                continue
            if email in seen or repo.find_by_email(db, email):
                skipped += 1
                continue
            seen.add(email)
            repo.create(db, contact)
            imported += 1

        self._audit(
            db,
            tenant_id,
            actor,
            action="import",
            entity="email_contact",
            entity_id=None,
            details={"imported": imported, "skipped": skipped, "errors": len(errors)},
        )
        return ServiceOutput(
            payload={
                "imported": imported,
                "skipped": skipped,
                "errors": errors,
                "message": self._ok("contacts_imported"),
            }
        )

    def list_contacts(self, db, *, tenant_id: str, actor: Actor, args: Dict[str, Any]) -> ServiceOutput:
        self._require_staff(actor)
        tag = str(args.get("tag") or "").strip().lower()
        extra = []
        if tag:
            extra.append(lambda row: tag in {str(item).lower() for item in row.get("tags") or []})
        items = filter_rows(
            ContactRepository(tenant_id=tenant_id).list_all(db),
            search=args.get("search"),
            fields=("email", "name", "client_type", "region", "state"),
            status=args.get("status"),
            extra=extra,
        )
        return ServiceOutput(payload={"items": items, "total": len(items)})

    def unsubscribe(self, db, *, tenant_id: str, email: str) -> ServiceOutput:
        repo = ContactRepository(tenant_id=tenant_id)
        contact = repo.find_by_email(db, str(email or "").strip().lower())
        if not contact:
            raise self._not_found("contact_not_found")
        if contact.get("status") != "unsubscribed":
            repo.update(db, int(contact["id"]), {"status": "unsubscribed", "unsubscribed_at": utc_now_iso()})
            self._audit(db, tenant_id, None, action="unsubscribe", entity="email_contact", entity_id=int(contact["id"]))
        return ServiceOutput(payload={"email": contact["email"], "message": self._ok("contact_unsubscribed")})

    # -- campaigns ---------------------------------------------------------

    def _load_campaign(self, db, tenant_id: str, campaign_id: int) -> Dict[str, Any]:
        campaign = CampaignRepository(tenant_id=tenant_id).get_by_id(db, campaign_id)
        if not campaign:
            raise self._not_found("campaign_not_found", campaign_id=campaign_id)
        return campaign

    def _audience(self, db, tenant_id: str, segment: Any) -> List[Dict[str, Any]]:
        criteria = normalize_criteria(segment or [])
        return select_audience(ContactRepository(tenant_id=tenant_id).list_all(db), criteria)

    @staticmethod
    def build_input(payload: Dict[str, Any]) -> CampaignInput:
        return CampaignInput(
            name=clean_text(payload.get("name")) or "",
            subject=clean_text(payload.get("subject")) or "",
            html_content=str(payload.get("html_content") or "").strip(),
            text_content=clean_text(payload.get("text_content")),
            target_segment={"criteria": normalize_criteria(payload.get("target_segment") or [])},
        )

    def create_campaign(
        self, db, *, tenant_id: str, actor: Actor, campaign_input: CampaignInput
    ) -> ServiceOutput:
        self._require_staff(actor)
        if not campaign_input.subject or not campaign_input.html_content:
            raise self._invalid("campaign_fields_required")
        repo = CampaignRepository(tenant_id=tenant_id)
        campaign_id = repo.create(
            db,
            name=campaign_input.name or campaign_input.subject,
            subject=campaign_input.subject,
            html_content=campaign_input.html_content,
            text_content=campaign_input.text_content,
            target_segment=campaign_input.target_segment,
            created_by=actor.email,
        )
        self._audit(db, tenant_id, actor, action="create", entity="email_campaign", entity_id=campaign_id)
        campaign = repo.get_by_id(db, campaign_id) or {}
        return ServiceOutput(payload={**campaign_view(campaign), "message": self._ok("campaign_created")}, status_code=201)

    def update_campaign(
        self, db, *, tenant_id: str, actor: Actor, campaign_id: int, payload: Dict[str, Any]
    ) -> ServiceOutput:
        self._require_staff(actor)
        campaign = self._load_campaign(db, tenant_id, campaign_id)
        if not action_allowed(CAMPAIGN_STAGE, campaign.get("status"), "edit_campaign"):
            raise self._conflict("campaign_already_sent", status=campaign.get("status"))

        fields: Dict[str, Any] = {}
        if "name" in payload:
            fields["name"] = clean_text(payload.get("name")) or campaign.get("name")
        for key in ("subject", "html_content"):
            if key in payload:
                value = str(payload.get(key) or "").strip()
                if not value:
                    raise self._invalid("campaign_fields_required")
                fields[key] = value
        if "text_content" in payload:
            fields["text_content"] = clean_text(payload.get("text_content"))
        if "target_segment" in payload:
            fields["target_segment"] = {"criteria": normalize_criteria(payload.get("target_segment") or [])}
        if not fields:
            raise self._invalid("no_changes")

        repo = CampaignRepository(tenant_id=tenant_id)
        repo.update(db, campaign_id, fields)
        self._audit(
            db,
            tenant_id,
            actor,
            action="update",
            entity="email_campaign",
            entity_id=campaign_id,
            details={"fields": sorted(fields)},
        )
        updated = repo.get_by_id(db, campaign_id) or {}
        return ServiceOutput(payload={**campaign_view(updated), "message": self._ok("campaign_updated")})

    def list_campaigns(self, db, *, tenant_id: str, actor: Actor, args: Dict[str, Any]) -> ServiceOutput:
        self._require_staff(actor)
        items = filter_rows(
            CampaignRepository(tenant_id=tenant_id).list_all(db),
            search=args.get("search"),
            fields=("name", "subject"),
            status=args.get("status"),
        )
        return ServiceOutput(payload={"items": [campaign_view(row) for row in items], "total": len(items)})

    def get_campaign(self, db, *, tenant_id: str, actor: Actor, campaign_id: int) -> ServiceOutput:
        self._require_staff(actor)
        campaign = self._load_campaign(db, tenant_id, campaign_id)
        recipients = CampaignRepository(tenant_id=tenant_id).list_recipients(db, campaign_id)
        return ServiceOutput(payload={**campaign_view(campaign), "recipients": recipients})

    def preview_audience(self, db, *, tenant_id: str, actor: Actor, segment: Any) -> ServiceOutput:
        self._require_staff(actor)
        audience = self._audience(db, tenant_id, segment)
        return ServiceOutput(
            payload={
                "total": len(audience),
                "sample": [
                    {"id": contact["id"], "email": contact["email"], "name": contact.get("name")}
                    for contact in audience[:PREVIEW_LIMIT]
                ],
            }
        )

    def send_campaign(self, db, *, tenant_id: str, actor: Actor, campaign_id: int) -> ServiceOutput:
        self._require_staff(actor)
        campaign = self._load_campaign(db, tenant_id, campaign_id)
        if not action_allowed(CAMPAIGN_STAGE, campaign.get("status"), "send_campaign"):
            raise self._conflict("campaign_already_sent", status=campaign.get("status"))
        audience = self._audience(db, tenant_id, campaign.get("target_segment"))
        if not audience:
            raise self._invalid("campaign_no_recipients")

        repo = CampaignRepository(tenant_id=tenant_id)
        contacts = ContactRepository(tenant_id=tenant_id)
        repo.update(db, campaign_id, {"status": "sending", "total_recipients": len(audience)})

        base_url = str(current_app.config.get("BASE_URL") or "")
        client_name = AuthRepository().tenant_name(db, tenant_id) or ""
        # A retry only goes to addresses that were not delivered yet.
        already_delivered = repo.delivered_emails(db, campaign_id)
        pending = [contact for contact in audience if str(contact["email"]).lower() not in already_delivered]
        previously_delivered = len(audience) - len(pending)
        delivered = 0
        bounced = 0
        failed = 0
        for contact in pending:
            variables = recipient_variables(
                contact, base_url=base_url, client_name=client_name, tenant_id=tenant_id
            )
            sent_at = utc_now_iso()
            try:
                email_client.send_email(
                    contact["email"],
                    render_merge_tags(campaign.get("subject"), variables),
                    render_merge_tags(campaign.get("html_content"), variables, html=True),
                    render_merge_tags(campaign.get("text_content"), variables) or None,
                )
            except IntegrationClientError as exc:
                logger.warning(
                    "campaign_email_failed",
                    extra={"campaign_id": campaign_id, "contact_id": contact["id"], "error": str(exc)},
                )
                repo.record_recipient(
                    db,
                    campaign_id=campaign_id,
                    contact_id=int(contact["id"]),
                    email=contact["email"],
                    status="bounced",
                    error=str(exc)[:500],
                    sent_at=sent_at,
                )
                code, _, _ = classify_integration_failure(exc.service, str(exc))
                if code == "email_rejected":
                    contacts.update(db, int(contact["id"]), {"status": "bounced"})
                    bounced += 1
                else:
                    failed += 1
                continue
            repo.record_recipient(
                db,
                campaign_id=campaign_id,
                contact_id=int(contact["id"]),
                email=contact["email"],
                status="delivered",
                error=None,
                sent_at=sent_at,
            )
            delivered += 1

        observe_email("sent", delivered)
        observe_email("bounced", bounced)
        observe_email("failed", failed)
        delivered += previously_delivered

        total = len(audience)
        final_status = "failed" if delivered == 0 and failed else "sent"
        repo.update(
            db,
            campaign_id,
            {
                "status": final_status,
                "sent_at": utc_now_iso(),
                "delivered_count": delivered,
                "bounced_count": bounced + failed,
                "bounce_rate": bounce_rate(bounced + failed, total),
            },
        )
        self._status_event(
            db,
            tenant_id,
            entity="email_campaign",
            entity_id=campaign_id,
            from_status=campaign.get("status"),
            to_status=final_status,
            reason="campaign_sent",
        )
        self._audit(
            db,
            tenant_id,
            actor,
            action="send",
            entity="email_campaign",
            entity_id=campaign_id,
            details={"total": total, "delivered": delivered, "bounced": bounced, "failed": failed},
        )
        updated = repo.get_by_id(db, campaign_id) or {}
        payload = {
            **campaign_view(updated),
            "total": total,
            "delivered": delivered,
            "bounced": bounced,
            "failed": failed,
        }
        if final_status == "failed":
            # Status is persisted as failed so the campaign can be retried.
            return ServiceOutput(
                payload={**payload, "error": "email_unavailable", "message": error_message("email_unavailable")},
                status_code=502,
            )
        return ServiceOutput(payload={**payload, "message": self._ok("campaign_sent")})
