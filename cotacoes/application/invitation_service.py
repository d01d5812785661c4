from __future__ import annotations

import logging
import secrets
from typing import Any, Dict, List

from flask import current_app
from markupsafe import escape

from cotacoes import email_client
from cotacoes.application.base import ApplicationService
from cotacoes.clock import is_past, iso_after, parse_timestamp, utc_now, utc_now_iso
from cotacoes.core import InvitationLetterSent
from cotacoes.domain.contracts import Actor, InvitationLetterInput, ServiceOutput
from cotacoes.errors import IntegrationClientError
from cotacoes.infrastructure.repositories.quoting import (
    InvitationLetterRepository,
    InvitationResponseRepository,
    NotificationRepository,
    QuoteRepository,
    SupplierRepository,
)
from cotacoes.observability import observe_email
from cotacoes.quoting.filters import filter_rows
from cotacoes.quoting.flow_policy import action_allowed, flow_meta
from cotacoes.quoting.validators import clean_text, parse_id_list, parse_optional_int
from cotacoes.ui_strings import get_ui_text, status_label


LETTER_STAGE = "carta_convite"
RESPONSE_STATUSES = ("accepted", "declined", "no_interest")

logger = logging.getLogger("cotacoes")


def letter_view(letter: Dict[str, Any]) -> Dict[str, Any]:
    return {
        **letter,
        "status_label": status_label(LETTER_STAGE, letter.get("status")),
        "flow": flow_meta(LETTER_STAGE, letter.get("status")),
    }


def letter_stats(rows: List[Dict[str, Any]]) -> Dict[str, int]:
    stats = {
        "total": len(rows),
        "sent": 0,
        "viewed": 0,
        "responded": 0,
        "accepted": 0,
        "declined": 0,
        "no_interest": 0,
        "pending": 0,
    }
    for row in rows:
        if row.get("sent_at"):
            stats["sent"] += 1
        if row.get("viewed_at"):
            stats["viewed"] += 1
        status = str(row.get("response_status") or "pending")
        if status == "pending":
            stats["pending"] += 1
        else:
            stats["responded"] += 1
            stats[status] = stats.get(status, 0) + 1
    return stats


def _public_row(row: Dict[str, Any]) -> Dict[str, Any]:
    hidden = {"response_token", "tenant_id", "letter_tenant_id", "letter_created_by"}
    return {key: value for key, value in row.items() if key not in hidden}


class InvitationLetterService(ApplicationService):
    def _load_letter(self, db, tenant_id: str, letter_id: int) -> Dict[str, Any]:
        letter = InvitationLetterRepository(tenant_id=tenant_id).get_by_id(db, letter_id)
        if not letter:
            raise self._not_found("invitation_letter_not_found", letter_id=letter_id)
        return letter

    def _validated_deadline(self, value: Any) -> str:
        parsed = parse_timestamp(value)
        if parsed is None or parsed <= utc_now():
            raise self._invalid("deadline_invalid")
        return str(value).strip()

    def _validated_suppliers(self, db, tenant_id: str, supplier_ids: List[int]) -> List[int]:
        if not supplier_ids:
            raise self._invalid("supplier_ids_required")
        found = SupplierRepository(tenant_id=tenant_id).list_by_ids(db, supplier_ids)
        found_ids = [int(row["id"]) for row in found if row.get("status") != "inactive"]
        if not found_ids:
            raise self._invalid("suppliers_not_found", supplier_ids=supplier_ids)
        return found_ids

    def _validated_quote(self, db, tenant_id: str, quote_id: int | None) -> int | None:
        if quote_id is None:
            return None
        if not QuoteRepository(tenant_id=tenant_id).get_by_id(db, quote_id):
            raise self._not_found("quote_not_found", quote_id=quote_id)
        return quote_id

    @staticmethod
    def build_input(payload: Dict[str, Any]) -> InvitationLetterInput:
        return InvitationLetterInput(
            title=clean_text(payload.get("title")) or "",
            deadline=clean_text(payload.get("deadline")) or "",
            supplier_ids=parse_id_list(payload.get("supplier_ids")),
            quote_id=parse_optional_int(payload.get("quote_id")),
            description=clean_text(payload.get("description")),
        )

    def create_letter(
        self, db, *, tenant_id: str, actor: Actor, letter_input: InvitationLetterInput
    ) -> ServiceOutput:
        self._require_staff(actor)
        if not letter_input.title:
            raise self._invalid("title_required")
        deadline = self._validated_deadline(letter_input.deadline)
        quote_id = self._validated_quote(db, tenant_id, letter_input.quote_id)
        supplier_ids = self._validated_suppliers(db, tenant_id, letter_input.supplier_ids)

        repo = InvitationLetterRepository(tenant_id=tenant_id)
        letter_number = repo.next_letter_number(db, utc_now().year)
        letter_id = repo.create(
            db,
            letter_number=letter_number,
            quote_id=quote_id,
            title=letter_input.title,
            description=letter_input.description,
            deadline=deadline,
            created_by=actor.email,
        )
        repo.replace_suppliers(db, letter_id, supplier_ids)
        self._status_event(
            db,
            tenant_id,
            entity="invitation_letter",
            entity_id=letter_id,
            from_status=None,
            to_status="draft",
            reason="invitation_letter_created",
        )
        self._audit(
            db,
            tenant_id,
            actor,
            action="create",
            entity="invitation_letter",
            entity_id=letter_id,
            details={"letter_number": letter_number, "supplier_ids": supplier_ids},
        )
        letter = repo.get_by_id(db, letter_id) or {}
        return ServiceOutput(
            payload={
                **letter_view(letter),
                "suppliers_count": len(supplier_ids),
                "message": self._ok("invitation_letter_created"),
            },
            status_code=201,
        )

    def update_letter(
        self, db, *, tenant_id: str, actor: Actor, letter_id: int, payload: Dict[str, Any]
    ) -> ServiceOutput:
        self._require_staff(actor)
        letter = self._load_letter(db, tenant_id, letter_id)
        if not action_allowed(LETTER_STAGE, letter.get("status"), "edit_letter"):
            raise self._conflict("invitation_letter_locked", status=letter.get("status"))

        fields: Dict[str, Any] = {}
        if "title" in payload:
            title = clean_text(payload.get("title"))
            if not title:
                raise self._invalid("title_required")
            fields["title"] = title
        if "description" in payload:
            fields["description"] = clean_text(payload.get("description"))
        if "deadline" in payload:
            fields["deadline"] = self._validated_deadline(payload.get("deadline"))
        if "quote_id" in payload:
            fields["quote_id"] = self._validated_quote(db, tenant_id, parse_optional_int(payload.get("quote_id")))

        supplier_ids = None
        if "supplier_ids" in payload:
            supplier_ids = self._validated_suppliers(db, tenant_id, parse_id_list(payload.get("supplier_ids")))
        if not fields and supplier_ids is None:
            raise self._invalid("no_changes")

        repo = InvitationLetterRepository(tenant_id=tenant_id)
        repo.update(db, letter_id, fields)
        if supplier_ids is not None:
            repo.replace_suppliers(db, letter_id, supplier_ids)
        self._audit(
            db,
            tenant_id,
            actor,
            action="update",
            entity="invitation_letter",
            entity_id=letter_id,
            details={"fields": sorted(fields), "suppliers_replaced": supplier_ids is not None},
        )
        updated = repo.get_by_id(db, letter_id) or {}
        return ServiceOutput(payload={**letter_view(updated), "message": self._ok("invitation_letter_updated")})

    def _invitation_email(self, letter: Dict[str, Any], row: Dict[str, Any], token: str) -> Dict[str, str]:
        base_url = str(current_app.config.get("BASE_URL") or "").rstrip("/")
        link = f"{base_url}/convites/{token}"
        subject = f"Carta convite {letter.get('letter_number')}: {letter.get('title')}"
        html = (
            f"<p>Ola {escape(str(row.get('supplier_name') or ''))},</p>"
            f"<p>Voce foi convidado a participar da carta convite "
            f"<strong>{escape(str(letter.get('letter_number') or ''))}</strong> - {escape(str(letter.get('title') or ''))}.</p>"
            f"<p>Prazo: {escape(str(letter.get('deadline') or ''))}</p>"
            f"<p><a href=\"{link}\">Responder convite</a></p>"
        )
        text = f"Carta convite {letter.get('letter_number')} - {letter.get('title')}. Responda em: {link}"
        return {"subject": subject, "html": html, "text": text}

    def send_letter(self, db, *, tenant_id: str, actor: Actor, letter_id: int) -> ServiceOutput:
        self._require_staff(actor)
        letter = self._load_letter(db, tenant_id, letter_id)
        if not action_allowed(LETTER_STAGE, letter.get("status"), "send_letter"):
            raise self._forbidden_action(LETTER_STAGE, letter.get("status"), "send_letter")

        repo = InvitationLetterRepository(tenant_id=tenant_id)
        rows = repo.list_suppliers(db, letter_id)
        if not rows:
            raise self._invalid("supplier_ids_required")

        ttl_days = int(current_app.config.get("INVITATION_TOKEN_TTL_DAYS", 15) or 15)
        sent_at = utc_now_iso()
        emails_sent = 0
        emails_failed: List[Dict[str, Any]] = []
        for row in rows:
            token = secrets.token_urlsafe(24)
            repo.mark_supplier_sent(
                db, int(row["id"]), sent_at=sent_at, token=token, token_expires_at=iso_after(days=ttl_days)
            )
            recipient = clean_text(row.get("supplier_email"))
            if not recipient:
                emails_failed.append({"supplier_id": row["supplier_id"], "error": "email_missing"})
                continue
            message = self._invitation_email(letter, row, token)
            try:
                email_client.send_email(recipient, message["subject"], message["html"], message["text"])
            except IntegrationClientError as exc:
                logger.warning(
                    "invitation_email_failed",
                    extra={"letter_id": letter_id, "supplier_id": row["supplier_id"], "error": str(exc)},
                )
                observe_email("failed")
                emails_failed.append({"supplier_id": row["supplier_id"], "error": str(exc)})
                continue
            observe_email("sent")
            emails_sent += 1

        repo.update(db, letter_id, {"status": "sent", "sent_at": sent_at})
        self._status_event(
            db,
            tenant_id,
            entity="invitation_letter",
            entity_id=letter_id,
            from_status=letter.get("status"),
            to_status="sent",
            reason="invitation_letter_sent",
        )
        self._audit(
            db,
            tenant_id,
            actor,
            action="send",
            entity="invitation_letter",
            entity_id=letter_id,
            details={"emails_sent": emails_sent, "emails_failed": len(emails_failed)},
        )
        self._publish(
            InvitationLetterSent(
                tenant_id=tenant_id,
                actor=actor.email,
                letter_id=letter_id,
                letter_number=str(letter.get("letter_number") or ""),
                title=str(letter.get("title") or ""),
                supplier_ids=tuple(int(row["supplier_id"]) for row in rows),
            )
        )
        updated = repo.get_by_id(db, letter_id) or {}
        return ServiceOutput(
            payload={
                **letter_view(updated),
                "emails_sent": emails_sent,
                "emails_failed": emails_failed,
                "message": self._ok("invitation_letter_sent"),
            }
        )

    def cancel_letter(self, db, *, tenant_id: str, actor: Actor, letter_id: int) -> ServiceOutput:
        self._require_staff(actor)
        letter = self._load_letter(db, tenant_id, letter_id)
        if letter.get("status") == "cancelled":
            raise self._conflict("invitation_letter_already_cancelled")

        repo = InvitationLetterRepository(tenant_id=tenant_id)
        repo.update(db, letter_id, {"status": "cancelled", "cancelled_at": utc_now_iso()})
        self._status_event(
            db,
            tenant_id,
            entity="invitation_letter",
            entity_id=letter_id,
            from_status=letter.get("status"),
            to_status="cancelled",
            reason="invitation_letter_cancelled",
        )
        self._audit(db, tenant_id, actor, action="cancel", entity="invitation_letter", entity_id=letter_id)
        updated = repo.get_by_id(db, letter_id) or {}
        return ServiceOutput(payload={**letter_view(updated), "message": self._ok("invitation_letter_cancelled")})

    def delete_letter(self, db, *, tenant_id: str, actor: Actor, letter_id: int) -> ServiceOutput:
        self._require_staff(actor)
        letter = self._load_letter(db, tenant_id, letter_id)
        if not action_allowed(LETTER_STAGE, letter.get("status"), "delete_letter"):
            raise self._conflict("invitation_letter_locked", status=letter.get("status"))
        InvitationLetterRepository(tenant_id=tenant_id).delete(db, letter_id)
        self._audit(
            db,
            tenant_id,
            actor,
            action="delete",
            entity="invitation_letter",
            entity_id=letter_id,
            details={"letter_number": letter.get("letter_number")},
        )
        return ServiceOutput(payload={"id": letter_id, "message": self._ok("invitation_letter_deleted")})

    def list_letters(self, db, *, tenant_id: str, actor: Actor, args: Dict[str, Any]) -> ServiceOutput:
        self._require_staff(actor)
        rows = InvitationLetterRepository(tenant_id=tenant_id).list_all(db)
        items = filter_rows(
            rows,
            search=args.get("search"),
            fields=("letter_number", "title", "quote_code"),
            status=args.get("status"),
        )
        return ServiceOutput(payload={"items": [letter_view(row) for row in items], "total": len(items)})

    def get_letter(self, db, *, tenant_id: str, actor: Actor, letter_id: int) -> ServiceOutput:
        self._require_staff(actor)
        letter = self._load_letter(db, tenant_id, letter_id)
        suppliers = InvitationLetterRepository(tenant_id=tenant_id).list_suppliers(db, letter_id)
        for row in suppliers:
            row["response_status_label"] = status_label("resposta_convite", row.get("response_status"))
            row.pop("response_token", None)
        return ServiceOutput(payload={**letter_view(letter), "suppliers": suppliers, "stats": letter_stats(suppliers)})

    def stats(self, db, *, tenant_id: str, actor: Actor, letter_id: int) -> ServiceOutput:
        self._require_staff(actor)
        self._load_letter(db, tenant_id, letter_id)
        suppliers = InvitationLetterRepository(tenant_id=tenant_id).list_suppliers(db, letter_id)
        return ServiceOutput(payload={"letter_id": letter_id, **letter_stats(suppliers)})

    # -- public, token addressed -------------------------------------------

    def _open_invitation(self, db, token: str) -> Dict[str, Any]:
        row = InvitationResponseRepository.find_by_token(db, str(token or "").strip()) if token else None
        if not row:
            raise self._not_found("invitation_token_invalid")
        if row.get("letter_status") == "cancelled":
            raise self._conflict("invitation_letter_already_cancelled")
        if is_past(row.get("token_expires_at")) or is_past(row.get("deadline")):
            raise self._invalid("invitation_token_expired", http_status=410)
        return row

    def view_invitation(self, db, *, token: str) -> ServiceOutput:
        row = self._open_invitation(db, token)
        if not row.get("viewed_at"):
            viewed_at = utc_now_iso()
            InvitationResponseRepository.mark_viewed(db, int(row["id"]), viewed_at)
            row["viewed_at"] = viewed_at
        return ServiceOutput(payload=_public_row(row))

    def respond_invitation(
        self, db, *, token: str, response_status: str, notes: str | None = None
    ) -> ServiceOutput:
        row = self._open_invitation(db, token)
        status = str(response_status or "").strip()
        if status not in RESPONSE_STATUSES:
            raise self._invalid("invitation_response_invalid", allowed=list(RESPONSE_STATUSES))
        if row.get("response_status") != "pending":
            raise self._conflict("invitation_already_answered", response_status=row.get("response_status"))

        responded_at = utc_now_iso()
        note = clean_text(notes)
        InvitationResponseRepository.save_response(db, int(row["id"]), status=status, notes=note, responded_at=responded_at)

        tenant_id = str(row["letter_tenant_id"])
        letter_id = int(row["invitation_letter_id"])
        self._audit(
            db,
            tenant_id,
            None,
            action="invitation_response",
            entity="invitation_letter",
            entity_id=letter_id,
            details={"supplier_id": row.get("supplier_id"), "response_status": status},
        )
        owner = clean_text(row.get("letter_created_by"))
        if owner:
            NotificationRepository(tenant_id=tenant_id).create(
                db,
                recipient=owner.lower(),
                notification_type="invitation_response",
                title=get_ui_text("notification.invitation_letter.title"),
                message=(
                    f"{row.get('supplier_name')} respondeu a carta {row.get('letter_number')}: "
                    f"{status_label('resposta_convite', status)}."
                ),
                entity="invitation_letter",
                entity_id=letter_id,
            )
        return ServiceOutput(
            payload={
                "letter_number": row.get("letter_number"),
                "response_status": status,
                "response_date": responded_at,
                "message": self._ok("invitation_response_saved"),
            }
        )

    def expire_tokens(self, db, *, tenant_id: str) -> int:
        return InvitationLetterRepository(tenant_id=tenant_id).expire_open_tokens(db, utc_now_iso())
