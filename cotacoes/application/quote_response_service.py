from __future__ import annotations

import logging
from typing import Any, Dict, List

from flask import current_app
from markupsafe import escape

from cotacoes import email_client
from cotacoes.application.base import ApplicationService
from cotacoes.application.quote_service import QuoteService
from cotacoes.clock import is_past, iso_after, utc_now_iso
from cotacoes.domain.contracts import Actor, ServiceOutput
from cotacoes.errors import IntegrationClientError
from cotacoes.infrastructure.repositories.quoting import (
    ProposalRepository,
    QuoteRepository,
    QuoteResponseTokenRepository,
)
from cotacoes.observability import observe_email
from cotacoes.quoting.flow_policy import QUOTE_STAGE, action_allowed
from cotacoes.quoting.response_tokens import next_reminder_status, normalize_token
from cotacoes.ui_strings import status_label


logger = logging.getLogger("cotacoes")


def response_link(short_code: str) -> str:
    base_url = str(current_app.config.get("BASE_URL") or "").rstrip("/")
    return f"{base_url}/s/{short_code}"


def _reminder_email(row: Dict[str, Any], ordinal: str) -> Dict[str, str]:
    link = response_link(str(row.get("short_code") or ""))
    title = str(row.get("title") or "")
    deadline = str(row.get("deadline") or "nao definido")
    subject = f"Lembrete: cotacao {row.get('local_code') or ''} aguarda sua proposta"
    html = (
        f"<p>Ola {escape(str(row.get('supplier_name') or ''))},</p>"
        f"<p>Este e o {ordinal} lembrete sobre a cotacao <strong>{escape(title)}</strong>.</p>"
        f"<p>Prazo: {escape(deadline)}</p>"
        f"<p><a href=\"{link}\">Enviar proposta</a></p>"
    )
    text = f"{ordinal.capitalize()} lembrete da cotacao {title}. Prazo: {deadline}. Responda em: {link}"
    return {"subject": subject, "html": html, "text": text}


class QuoteResponseService(ApplicationService):
    """Supplier-facing quick response by link, plus the reminders that chase missing proposals."""

    def __init__(self, event_bus=None, quote_service: QuoteService | None = None) -> None:
        super().__init__(event_bus)
        self.quote_service = quote_service or QuoteService(self.event_bus)

    # -- public, token addressed -------------------------------------------

    def _open_link(self, db, token: str) -> Dict[str, Any]:
        value = normalize_token(token)
        row = QuoteResponseTokenRepository.find_by_token(db, value) if value else None
        if not row:
            raise self._not_found("quote_token_invalid")
        if is_past(row.get("token_expires_at")) or is_past(row.get("deadline")):
            raise self._invalid("quote_token_expired", http_status=410)
        return row

    def view_quick_response(self, db, *, token: str) -> ServiceOutput:
        row = self._open_link(db, token)
        tenant_id = str(row["tenant_id"])
        quote_id = int(row["quote_id"])
        proposal = ProposalRepository(tenant_id=tenant_id).find_for_supplier(db, quote_id, int(row["supplier_id"]))
        return ServiceOutput(
            payload={
                "quote_id": quote_id,
                "local_code": row.get("local_code"),
                "title": row.get("title"),
                "description": row.get("description"),
                "deadline": row.get("deadline"),
                "status_label": status_label(QUOTE_STAGE, row.get("quote_status")),
                "accepting_proposals": action_allowed(QUOTE_STAGE, row.get("quote_status"), "submit_proposal"),
                "supplier_name": row.get("supplier_name"),
                "items": QuoteRepository(tenant_id=tenant_id).list_items(db, quote_id),
                "proposal": proposal,
            }
        )

    def submit_quick_response(self, db, *, token: str, payload: Dict[str, Any]) -> ServiceOutput:
        row = self._open_link(db, token)
        # O link identifica o fornecedor; supplier_id do corpo e ignorado.
        actor = Actor(email=row.get("supplier_email"), role="supplier", supplier_id=int(row["supplier_id"]))
        return self.quote_service.submit_proposal(
            db,
            tenant_id=str(row["tenant_id"]),
            actor=actor,
            quote_id=int(row["quote_id"]),
            payload={key: value for key, value in payload.items() if key != "supplier_id"},
        )

    # -- reminders ----------------------------------------------------------

    def _send_reminders(self, db, tenant_id: str, rows: List[Dict[str, Any]]) -> tuple[int, List[Dict[str, Any]]]:
        repo = QuoteRepository(tenant_id=tenant_id)
        sent = 0
        failed: List[Dict[str, Any]] = []
        for row in rows:
            if is_past(row.get("deadline")):
                continue
            next_status = next_reminder_status(row.get("reminder_status"))
            if next_status is None:
                continue
            recipient = str(row.get("supplier_email") or "").strip()
            if not recipient:
                failed.append({"quote_id": row["quote_id"], "supplier_id": row["supplier_id"], "error": "email_missing"})
                continue
            ordinal = "primeiro" if next_status == "reminded_once" else "segundo"
            message = _reminder_email(row, ordinal)
            try:
                email_client.send_email(recipient, message["subject"], message["html"], message["text"])
            except IntegrationClientError as exc:
                logger.warning(
                    "quote_reminder_failed",
                    extra={"quote_id": row["quote_id"], "supplier_id": row["supplier_id"], "error": str(exc)},
                )
                observe_email("failed")
                failed.append({"quote_id": row["quote_id"], "supplier_id": row["supplier_id"], "error": str(exc)})
                continue
            observe_email("sent")
            repo.mark_reminded(db, int(row["id"]), reminder_status=next_status, reminded_at=utc_now_iso())
            sent += 1
        return sent, failed

    def _reminded_before(self) -> str:
        hours = int(current_app.config.get("QUOTE_REMINDER_INTERVAL_HOURS", 24) or 24)
        return iso_after(hours=-hours)

    def send_due_reminders(self, db, *, tenant_id: str) -> int:
        """Maintenance task: reminds suppliers silent for longer than ``QUOTE_REMINDER_AFTER_HOURS``."""
        wait_hours = int(current_app.config.get("QUOTE_REMINDER_AFTER_HOURS", 48) or 48)
        rows = QuoteRepository(tenant_id=tenant_id).list_reminder_candidates(
            db,
            now=utc_now_iso(),
            sent_before=iso_after(hours=-wait_hours),
            reminded_before=self._reminded_before(),
        )
        sent, _failed = self._send_reminders(db, tenant_id, rows)
        return sent

    def remind_quote(self, db, *, tenant_id: str, actor: Actor, quote_id: int) -> ServiceOutput:
        self._require_staff(actor)
        quote = QuoteRepository(tenant_id=tenant_id).get_by_id(db, quote_id)
        if not quote:
            raise self._not_found("quote_not_found", quote_id=quote_id)
        if not action_allowed(QUOTE_STAGE, quote.get("status"), "submit_proposal"):
            raise self._conflict("proposal_closed", status=quote.get("status"))

        now = utc_now_iso()
        rows = QuoteRepository(tenant_id=tenant_id).list_reminder_candidates(
            db, now=now, sent_before=now, reminded_before=self._reminded_before(), quote_id=quote_id
        )
        sent, failed = self._send_reminders(db, tenant_id, rows)
        self._audit(
            db,
            tenant_id,
            actor,
            action="remind",
            entity="quote",
            entity_id=quote_id,
            details={"reminders_sent": sent, "reminders_failed": len(failed)},
        )
        return ServiceOutput(
            payload={
                "quote_id": quote_id,
                "reminders_sent": sent,
                "reminders_failed": failed,
                "message": self._ok("quote_reminders_sent"),
            }
        )
