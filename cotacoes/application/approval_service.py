from __future__ import annotations

from typing import Any, Dict

from cotacoes.application.base import ApplicationService
from cotacoes.application.quote_service import QuoteService, quote_view
from cotacoes.clock import utc_now_iso
from cotacoes.core import ApprovalDecided, ApprovalRequested
from cotacoes.domain.contracts import Actor, ApprovalLevelInput, ServiceOutput
from cotacoes.errors import PermissionError
from cotacoes.infrastructure.repositories.quoting import (
    ApprovalLevelRepository,
    ApprovalRepository,
    ProposalRepository,
    QuoteRepository,
)
from cotacoes.quoting.filters import filter_rows
from cotacoes.quoting.flow_policy import QUOTE_STAGE, action_allowed
from cotacoes.quoting.validators import clean_text, is_valid_email, parse_optional_float, parse_optional_int, parse_string_list
from cotacoes.ui_strings import status_label


APPROVAL_STAGE = "aprovacao"

# approval status -> quote status it implies
APPROVAL_TO_QUOTE_STATUS = {
    "pending": "under_review",
    "approved": "approved",
    "rejected": "rejected",
}


def _truthy(value: Any, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on", "sim"}


class ApprovalService(ApplicationService):
    def __init__(self, event_bus=None, quote_service: QuoteService | None = None) -> None:
        super().__init__(event_bus)
        self.quote_service = quote_service or QuoteService(self.event_bus)

    # -- levels -------------------------------------------------------------

    def _parse_level(self, payload: Dict[str, Any]) -> ApprovalLevelInput:
        name = clean_text(payload.get("name"))
        if not name:
            raise self._invalid("approval_level_name_required")
        threshold = parse_optional_float(payload.get("amount_threshold"))
        if threshold is None or threshold < 0:
            raise self._invalid("approval_level_threshold_invalid")
        order_level = parse_optional_int(payload.get("order_level"))
        if order_level is None:
            order_level = 1
        if order_level < 1:
            raise self._invalid("approval_level_order_invalid")
        approvers = [email.lower() for email in parse_string_list(payload.get("approvers"))]
        if not approvers:
            raise self._invalid("approval_level_approvers_required")
        invalid = [email for email in approvers if not is_valid_email(email)]
        if invalid:
            raise self._invalid("email_invalid", emails=invalid)
        return ApprovalLevelInput(
            name=name,
            amount_threshold=threshold,
            order_level=order_level,
            approvers=approvers,
            active=_truthy(payload.get("active")),
        )

    def _load_level(self, db, tenant_id: str, level_id: int) -> Dict[str, Any]:
        level = ApprovalLevelRepository(tenant_id=tenant_id).get_by_id(db, level_id)
        if not level:
            raise self._not_found("approval_level_not_found", level_id=level_id)
        return level

    def list_levels(self, db, *, tenant_id: str, actor: Actor, search: str | None = None) -> ServiceOutput:
        self._require_staff(actor)
        rows = ApprovalLevelRepository(tenant_id=tenant_id).list_all(db)
        items = filter_rows(rows, search=search, fields=("name", "approvers"))
        return ServiceOutput(payload={"items": items, "total": len(items)})

    def create_level(self, db, *, tenant_id: str, actor: Actor, payload: Dict[str, Any]) -> ServiceOutput:
        self._require_manager(actor)
        level_input = self._parse_level(payload)
        repo = ApprovalLevelRepository(tenant_id=tenant_id)
        level_id = repo.create(db, level_input)
        self._audit(
            db,
            tenant_id,
            actor,
            action="create",
            entity="approval_level",
            entity_id=level_id,
            details={"name": level_input.name, "amount_threshold": level_input.amount_threshold},
        )
        level = repo.get_by_id(db, level_id) or {}
        return ServiceOutput(payload={**level, "message": self._ok("approval_level_created")}, status_code=201)

    def update_level(
        self, db, *, tenant_id: str, actor: Actor, level_id: int, payload: Dict[str, Any]
    ) -> ServiceOutput:
        self._require_manager(actor)
        current = self._load_level(db, tenant_id, level_id)
        merged = {**current, **payload}
        level_input = self._parse_level(merged)
        repo = ApprovalLevelRepository(tenant_id=tenant_id)
        repo.update(db, level_id, level_input)
        self._audit(
            db,
            tenant_id,
            actor,
            action="update",
            entity="approval_level",
            entity_id=level_id,
            details={"fields": sorted(payload)},
        )
        level = repo.get_by_id(db, level_id) or {}
        return ServiceOutput(payload={**level, "message": self._ok("approval_level_updated")})

    def delete_level(self, db, *, tenant_id: str, actor: Actor, level_id: int) -> ServiceOutput:
        self._require_manager(actor)
        level = self._load_level(db, tenant_id, level_id)
        ApprovalLevelRepository(tenant_id=tenant_id).delete(db, level_id)
        self._audit(
            db,
            tenant_id,
            actor,
            action="delete",
            entity="approval_level",
            entity_id=level_id,
            details={"name": level.get("name")},
        )
        return ServiceOutput(payload={"id": level_id, "message": self._ok("approval_level_deleted")})

    # -- approvals ----------------------------------------------------------

    @staticmethod
    def can_decide(actor: Actor, approval: Dict[str, Any]) -> bool:
        if approval.get("status") != "pending":
            return False
        if actor.is_manager:
            return True
        approvers = [str(email).lower() for email in approval.get("approvers") or []]
        return bool(actor.email) and actor.email.lower() in approvers

    def _approval_view(self, actor: Actor, approval: Dict[str, Any]) -> Dict[str, Any]:
        return {
            **approval,
            "status_label": status_label(APPROVAL_STAGE, approval.get("status")),
            "can_decide": self.can_decide(actor, approval),
        }

    def request_approval(
        self, db, *, tenant_id: str, actor: Actor, quote_id: int, response_id: int | None
    ) -> ServiceOutput:
        self._require_staff(actor)
        quotes = QuoteRepository(tenant_id=tenant_id)
        quote = quotes.get_by_id(db, quote_id)
        if not quote:
            raise self._not_found("quote_not_found", quote_id=quote_id)
        if not action_allowed(QUOTE_STAGE, quote.get("status"), "request_approval"):
            raise self._forbidden_action(QUOTE_STAGE, quote.get("status"), "request_approval")
        if not response_id:
            raise self._invalid("approval_amount_missing")

        proposal = ProposalRepository(tenant_id=tenant_id).get_by_id(db, response_id)
        if not proposal or int(proposal.get("quote_id") or 0) != quote_id:
            raise self._not_found("proposal_not_found", response_id=response_id)
        if proposal.get("status") != "pending":
            raise self._conflict("proposal_already_decided", response_id=response_id)

        amount = float(proposal.get("total_amount") or 0)
        level = ApprovalLevelRepository(tenant_id=tenant_id).find_for_amount(db, amount)
        if level is None:
            self.quote_service.apply_proposal_approval(
                db, tenant_id=tenant_id, actor=actor, quote=quote, proposal=proposal, reason="auto_approved"
            )
            updated = quotes.get_by_id(db, quote_id) or {}
            return ServiceOutput(
                payload={
                    "auto_approved": True,
                    "approval": None,
                    "quote": quote_view(updated),
                    "message": self._ok("approval_auto_approved"),
                }
            )

        repo = ApprovalRepository(tenant_id=tenant_id)
        approval_id = repo.create(
            db,
            quote_id=quote_id,
            response_id=response_id,
            level=level,
            amount=amount,
            requested_by=actor.email,
        )
        self.quote_service.transition_quote(db, tenant_id, actor, quote, "under_review", reason="approval_requested")
        self._audit(
            db,
            tenant_id,
            actor,
            action="request_approval",
            entity="approval",
            entity_id=approval_id,
            details={"quote_id": quote_id, "level": level.get("name"), "amount": amount},
        )
        self._publish(
            ApprovalRequested(
                tenant_id=tenant_id,
                actor=actor.email,
                approval_id=approval_id,
                quote_id=quote_id,
                amount=amount,
                approvers=tuple(level.get("approvers") or ()),
            )
        )
        approval = repo.get_by_id(db, approval_id) or {}
        return ServiceOutput(
            payload={
                "auto_approved": False,
                "approval": self._approval_view(actor, approval),
                "message": self._ok("approval_requested"),
            },
            status_code=201,
        )

    def decide(
        self,
        db,
        *,
        tenant_id: str,
        actor: Actor,
        approval_id: int,
        status: str,
        comments: str | None = None,
    ) -> ServiceOutput:
        repo = ApprovalRepository(tenant_id=tenant_id)
        approval = repo.get_by_id(db, approval_id)
        if not approval:
            raise self._not_found("approval_not_found", approval_id=approval_id)
        if approval.get("status") != "pending":
            raise self._conflict("approval_already_decided", approval_id=approval_id)
        if not self.can_decide(actor, approval):
            raise PermissionError()

        decision = str(status or "").strip()
        if decision not in {"approved", "rejected"}:
            raise self._invalid("status_invalid", status=decision)
        note = clean_text(comments)
        if decision == "rejected" and not note:
            raise self._invalid("approval_comments_required")

        quote = QuoteRepository(tenant_id=tenant_id).get_by_id(db, int(approval["quote_id"]))
        if not quote:
            raise self._not_found("quote_not_found", quote_id=approval["quote_id"])
        if not action_allowed(QUOTE_STAGE, quote.get("status"), "decide_approval"):
            raise self._forbidden_action(QUOTE_STAGE, quote.get("status"), "decide_approval")

        repo.decide(db, approval_id, status=decision, comments=note, decided_by=actor.email, decided_at=utc_now_iso())

        if decision == "approved":
            proposal = None
            if approval.get("response_id"):
                proposal = ProposalRepository(tenant_id=tenant_id).get_by_id(db, int(approval["response_id"]))
            if proposal and proposal.get("status") == "pending":
                self.quote_service.apply_proposal_approval(
                    db, tenant_id=tenant_id, actor=actor, quote=quote, proposal=proposal, reason="approval_approved"
                )
            else:
                self.quote_service.transition_quote(
                    db,
                    tenant_id,
                    actor,
                    quote,
                    "approved",
                    reason="approval_approved",
                    extra={"approved_amount": approval.get("amount")},
                )
        else:
            self.quote_service.transition_quote(db, tenant_id, actor, quote, "rejected", reason="approval_rejected")

        self._audit(
            db,
            tenant_id,
            actor,
            action=decision,
            entity="approval",
            entity_id=approval_id,
            details={"quote_id": quote["id"], "comments": note},
        )
        self._publish(
            ApprovalDecided(
                tenant_id=tenant_id,
                actor=actor.email,
                approval_id=approval_id,
                quote_id=int(quote["id"]),
                status=decision,
                quote_title=str(quote.get("title") or ""),
                quote_owner=quote.get("created_by"),
                comments=note,
            )
        )
        decided = repo.get_by_id(db, approval_id) or {}
        message_key = "approval_approved" if decision == "approved" else "approval_rejected"
        return ServiceOutput(payload={**self._approval_view(actor, decided), "message": self._ok(message_key)})

    def list_approvals(self, db, *, tenant_id: str, actor: Actor, args: Dict[str, Any]) -> ServiceOutput:
        self._require_staff(actor)
        rows = ApprovalRepository(tenant_id=tenant_id).list_all(db)
        if not actor.is_manager:
            email = (actor.email or "").lower()
            rows = [row for row in rows if email and email in [str(a).lower() for a in row.get("approvers") or []]]
        items = filter_rows(
            rows,
            search=args.get("search"),
            fields=("quote_title", "quote_code", "level_name"),
            status=args.get("status"),
        )
        return ServiceOutput(
            payload={
                "items": [self._approval_view(actor, row) for row in items],
                "total": len(items),
                "pending": sum(1 for row in rows if row.get("status") == "pending"),
            }
        )

    def fix_quote_approval_status(self, db, *, tenant_id: str, actor: Actor, quote_id: int) -> ServiceOutput:
        """Re-syncs a quote stuck out of step with its latest approval."""
        self._require_manager(actor)
        quote = QuoteRepository(tenant_id=tenant_id).get_by_id(db, quote_id)
        if not quote:
            raise self._not_found("quote_not_found", quote_id=quote_id)

        approval = ApprovalRepository(tenant_id=tenant_id).latest_for_quote(db, quote_id)
        if approval:
            expected = APPROVAL_TO_QUOTE_STATUS.get(str(approval.get("status")), quote.get("status"))
        elif quote.get("status") == "under_review":
            expected = "received"
        else:
            expected = quote.get("status")

        changed = expected != quote.get("status")
        if changed:
            extra = {}
            if expected == "approved" and approval and quote.get("approved_amount") is None:
                extra["approved_amount"] = approval.get("amount")
            self.quote_service.transition_quote(
                db, tenant_id, actor, quote, str(expected), reason="approval_status_fixed", extra=extra
            )
            self._audit(
                db,
                tenant_id,
                actor,
                action="fix_status",
                entity="quote",
                entity_id=quote_id,
                details={"from": quote.get("status"), "to": expected},
            )
        return ServiceOutput(
            payload={
                "quote_id": quote_id,
                "previous_status": quote.get("status"),
                "status": expected,
                "changed": changed,
                "message": self._ok("approval_status_fixed"),
            }
        )
