from __future__ import annotations

from typing import Any, Dict, List

from flask import current_app

from cotacoes.application.base import ApplicationService
from cotacoes.clock import iso_after, utc_now_iso
from cotacoes.core import (
    ProposalApproved,
    ProposalRejected,
    ProposalSubmitted,
    QuoteItemsChanged,
    QuoteSentToSuppliers,
    QuoteStatusChanged,
)
from cotacoes.domain.contracts import Actor, ProposalInput, QuoteCreateInput, QuoteItemInput, ServiceOutput
from cotacoes.errors import ValidationError
from cotacoes.infrastructure.repositories.quoting import (
    ApprovalRepository,
    CategoryRepository,
    PaymentRepository,
    ProposalRepository,
    QuoteRepository,
    StatusEventRepository,
    SupplierRepository,
)
from cotacoes.quoting.filters import count_by, filter_rows, paginate
from cotacoes.quoting.flow_policy import (
    QUOTE_STAGE,
    TERMINAL_QUOTE_STATUSES,
    action_allowed,
    build_process_steps,
    can_transition,
    flow_meta,
    is_manual_transition,
    stage_for_quote_status,
    status_flow,
)
from cotacoes.quoting.response_tokens import new_response_token
from cotacoes.quoting.validators import clean_text, parse_optional_float, parse_optional_int
from cotacoes.ui_strings import get_ui_text, status_keys_for_group, status_label


QUOTE_SEARCH_FIELDS = ("title", "local_code", "description", "supplier_name")
TITLE_MIN_LENGTH = 3
TITLE_MAX_LENGTH = 200


def _invalid(code: str, **payload) -> ValidationError:
    return ValidationError(code=code, message_key=code, payload=payload)


def parse_quote_items(raw_items: Any) -> List[QuoteItemInput]:
    if not isinstance(raw_items, list):
        raise _invalid("items_required")
    items: List[QuoteItemInput] = []
    for idx, raw in enumerate(raw_items, start=1):
        if not isinstance(raw, dict):
            continue
        description = clean_text(raw.get("description"))
        if not description:
            continue
        quantity = parse_optional_float(raw.get("quantity"))
        if quantity is None or quantity <= 0:
            raise _invalid("quantity_invalid", line=idx)
        items.append(
            QuoteItemInput(
                description=description,
                quantity=quantity,
                unit=clean_text(raw.get("unit")) or "UN",
                category_id=parse_optional_int(raw.get("category_id")),
            )
        )
    if not items:
        raise _invalid("items_required")
    return items


def parse_title(value: Any) -> str:
    title = clean_text(value)
    if not title:
        raise _invalid("title_required")
    if not TITLE_MIN_LENGTH <= len(title) <= TITLE_MAX_LENGTH:
        raise _invalid("title_length_invalid")
    return title


def build_quote_input(payload: Dict[str, Any]) -> QuoteCreateInput:
    budget = parse_optional_float(payload.get("budget"))
    return QuoteCreateInput(
        title=parse_title(payload.get("title")),
        description=clean_text(payload.get("description")),
        deadline=clean_text(payload.get("deadline")),
        budget=budget if budget is not None and budget >= 0 else None,
        items=parse_quote_items(payload.get("items")),
    )


def quote_view(quote: Dict[str, Any]) -> Dict[str, Any]:
    status = quote.get("status")
    return {
        **quote,
        "status_label": status_label(QUOTE_STAGE, status),
        "flow": flow_meta(QUOTE_STAGE, status),
    }


class QuoteService(ApplicationService):
    def _load_quote(self, db, tenant_id: str, quote_id: int) -> Dict[str, Any]:
        quote = QuoteRepository(tenant_id=tenant_id).get_by_id(db, quote_id)
        if not quote:
            raise self._not_found("quote_not_found", quote_id=quote_id)
        return quote

    def _ensure_categories(self, db, tenant_id: str, items: List[QuoteItemInput]) -> None:
        categories = CategoryRepository(tenant_id=tenant_id)
        for item in items:
            if item.category_id is not None and not categories.get_by_id(db, item.category_id):
                raise self._not_found("category_not_found", category_id=item.category_id)

    def transition_quote(
        self,
        db,
        tenant_id: str,
        actor: Actor | None,
        quote: Dict[str, Any],
        to_status: str,
        *,
        reason: str,
        extra: Dict[str, Any] | None = None,
    ) -> None:
        from_status = quote.get("status")
        QuoteRepository(tenant_id=tenant_id).set_status(db, int(quote["id"]), to_status, **(extra or {}))
        self._status_event(
            db,
            tenant_id,
            entity="quote",
            entity_id=int(quote["id"]),
            from_status=from_status,
            to_status=to_status,
            reason=reason,
        )
        self._publish(
            QuoteStatusChanged(
                tenant_id=tenant_id,
                actor=actor.email if actor else None,
                quote_id=int(quote["id"]),
                from_status=from_status,
                to_status=to_status,
                reason=reason,
            )
        )

    def create_quote(self, db, *, tenant_id: str, actor: Actor, create_input: QuoteCreateInput) -> ServiceOutput:
        self._require_staff(actor)
        self._ensure_categories(db, tenant_id, create_input.items)

        repo = QuoteRepository(tenant_id=tenant_id)
        quote_id = repo.create(
            db,
            title=create_input.title,
            description=create_input.description,
            deadline=create_input.deadline,
            budget=create_input.budget,
            created_by=actor.email,
        )
        items_created = repo.replace_items(db, quote_id, create_input.items)
        self._status_event(
            db,
            tenant_id,
            entity="quote",
            entity_id=quote_id,
            from_status=None,
            to_status="draft",
            reason="quote_created",
        )
        self._audit(
            db,
            tenant_id,
            actor,
            action="create",
            entity="quote",
            entity_id=quote_id,
            details={"title": create_input.title, "items": items_created},
        )
        self._publish(QuoteItemsChanged(tenant_id=tenant_id, actor=actor.email, quote_id=quote_id))

        quote = repo.get_by_id(db, quote_id) or {}
        return ServiceOutput(
            payload={**quote_view(quote), "items_created": items_created, "message": self._ok("quote_created")},
            status_code=201,
        )

    def list_quotes(self, db, *, tenant_id: str, actor: Actor, args: Dict[str, Any]) -> ServiceOutput:
        repo = QuoteRepository(tenant_id=tenant_id)
        if actor.is_supplier:
            rows = repo.list_for_supplier(db, actor.supplier_id) if actor.supplier_id else []
        else:
            rows = repo.list_all(db)
        filtered = filter_rows(
            rows,
            search=args.get("search"),
            fields=QUOTE_SEARCH_FIELDS,
            status=args.get("status"),
        )
        page = paginate(filtered, args.get("page", 1), args.get("per_page", 50))
        page["items"] = [quote_view(row) for row in page["items"]]
        page["summary"] = count_by(rows)
        return ServiceOutput(payload=page)

    def get_quote(self, db, *, tenant_id: str, actor: Actor, quote_id: int) -> ServiceOutput:
        repo = QuoteRepository(tenant_id=tenant_id)
        quote = self._load_quote(db, tenant_id, quote_id)
        if actor.is_supplier and not (
            actor.supplier_id
            and (quote.get("supplier_id") == actor.supplier_id or repo.supplier_invited(db, quote_id, actor.supplier_id))
        ):
            raise self._not_found("quote_not_found", quote_id=quote_id)

        responses = ProposalRepository(tenant_id=tenant_id).list_for_quote(db, quote_id)
        if actor.is_supplier:
            responses = [row for row in responses if row.get("supplier_id") == actor.supplier_id]
        status = quote.get("status")
        detail = {
            **quote_view(quote),
            "items": repo.list_items(db, quote_id),
            "responses": responses,
            "next_statuses": status_flow(status),
            "process_steps": build_process_steps(stage_for_quote_status(status)),
        }
        if not actor.is_supplier:
            detail["suppliers"] = repo.list_suppliers(db, quote_id)
            detail["history"] = StatusEventRepository(tenant_id=tenant_id).list_for_entity(
                db, entity="quote", entity_id=quote_id
            )
            detail["approval"] = ApprovalRepository(tenant_id=tenant_id).latest_for_quote(db, quote_id)
            detail["payment"] = PaymentRepository(tenant_id=tenant_id).find_active_for_quote(db, quote_id)
        return ServiceOutput(payload=detail)

    def update_quote(
        self, db, *, tenant_id: str, actor: Actor, quote_id: int, payload: Dict[str, Any]
    ) -> ServiceOutput:
        self._require_staff(actor)
        repo = QuoteRepository(tenant_id=tenant_id)
        quote = self._load_quote(db, tenant_id, quote_id)
        if not action_allowed(QUOTE_STAGE, quote.get("status"), "edit_quote"):
            raise self._conflict("quote_locked", status=quote.get("status"))

        fields: Dict[str, Any] = {}
        if "title" in payload:
            fields["title"] = parse_title(payload.get("title"))
        if "description" in payload:
            fields["description"] = clean_text(payload.get("description"))
        if "deadline" in payload:
            fields["deadline"] = clean_text(payload.get("deadline"))
        if "budget" in payload:
            budget = parse_optional_float(payload.get("budget"))
            fields["budget"] = budget if budget is not None and budget >= 0 else None

        items = None
        if "items" in payload:
            items = parse_quote_items(payload.get("items"))
            self._ensure_categories(db, tenant_id, items)

        if not fields and items is None:
            raise self._invalid("no_changes")

        repo.update(db, quote_id, fields)
        if items is not None:
            repo.replace_items(db, quote_id, items)
            self._publish(QuoteItemsChanged(tenant_id=tenant_id, actor=actor.email, quote_id=quote_id))
        self._audit(
            db,
            tenant_id,
            actor,
            action="update",
            entity="quote",
            entity_id=quote_id,
            details={"fields": sorted(fields), "items_replaced": items is not None},
        )
        updated = repo.get_by_id(db, quote_id) or {}
        return ServiceOutput(payload={**quote_view(updated), "message": self._ok("quote_updated")})

    def update_status(
        self,
        db,
        *,
        tenant_id: str,
        actor: Actor,
        quote_id: int,
        to_status: str,
        reason: str | None = None,
    ) -> ServiceOutput:
        self._require_staff(actor)
        quote = self._load_quote(db, tenant_id, quote_id)
        target = str(to_status or "").strip()
        if target not in status_keys_for_group(QUOTE_STAGE):
            raise self._invalid("status_invalid", status=target)
        if not can_transition(quote.get("status"), target):
            raise self._conflict("status_transition_invalid", from_status=quote.get("status"), to_status=target)
        if not is_manual_transition(quote.get("status"), target):
            raise self._conflict("status_requires_workflow", from_status=quote.get("status"), to_status=target)

        extra: Dict[str, Any] = {}
        if target == "cancelled":
            cancellation_reason = clean_text(reason)
            if not cancellation_reason:
                raise self._invalid("cancellation_reason_required")
            extra["cancellation_reason"] = cancellation_reason

        self.transition_quote(db, tenant_id, actor, quote, target, reason="status_updated", extra=extra)
        self._audit(
            db,
            tenant_id,
            actor,
            action="status_change",
            entity="quote",
            entity_id=quote_id,
            details={"from": quote.get("status"), "to": target},
        )
        updated = self._load_quote(db, tenant_id, quote_id)
        return ServiceOutput(payload={**quote_view(updated), "message": self._ok("quote_status_updated")})

    def delete_quote(
        self, db, *, tenant_id: str, actor: Actor, quote_id: int, reason: str | None = None
    ) -> ServiceOutput:
        self._require_staff(actor)
        repo = QuoteRepository(tenant_id=tenant_id)
        quote = self._load_quote(db, tenant_id, quote_id)
        status = quote.get("status")

        if status == "draft":
            repo.delete(db, quote_id)
            self._audit(
                db,
                tenant_id,
                actor,
                action="delete",
                entity="quote",
                entity_id=quote_id,
                details={"title": quote.get("title")},
            )
            self._publish(QuoteItemsChanged(tenant_id=tenant_id, actor=actor.email, quote_id=quote_id))
            return ServiceOutput(payload={"id": quote_id, "deleted": True, "message": self._ok("quote_deleted")})

        if status in TERMINAL_QUOTE_STATUSES or not can_transition(status, "cancelled"):
            raise self._forbidden_action(QUOTE_STAGE, status, "cancel_quote")

        cancellation_reason = clean_text(reason)
        if not cancellation_reason:
            raise self._invalid("cancellation_reason_required")

        self.transition_quote(
            db,
            tenant_id,
            actor,
            quote,
            "cancelled",
            reason="quote_cancelled",
            extra={"cancellation_reason": cancellation_reason},
        )
        self._audit(
            db,
            tenant_id,
            actor,
            action="cancel",
            entity="quote",
            entity_id=quote_id,
            details={"reason": cancellation_reason},
        )
        return ServiceOutput(
            payload={"id": quote_id, "deleted": False, "status": "cancelled", "message": self._ok("quote_cancelled")}
        )

    def send_to_suppliers(
        self, db, *, tenant_id: str, actor: Actor, quote_id: int, supplier_ids: List[int]
    ) -> ServiceOutput:
        self._require_staff(actor)
        repo = QuoteRepository(tenant_id=tenant_id)
        quote = self._load_quote(db, tenant_id, quote_id)
        if not action_allowed(QUOTE_STAGE, quote.get("status"), "send_to_suppliers"):
            raise self._forbidden_action(QUOTE_STAGE, quote.get("status"), "send_to_suppliers")
        if not supplier_ids:
            raise self._invalid("supplier_ids_required")

        suppliers = SupplierRepository(tenant_id=tenant_id).list_by_ids(db, supplier_ids)
        active_ids = [int(row["id"]) for row in suppliers if row.get("status") == "active"]
        if not active_ids:
            raise self._invalid("suppliers_not_found", supplier_ids=supplier_ids)

        sent_at = utc_now_iso()
        ttl_days = int(current_app.config.get("QUOTE_TOKEN_TTL_DAYS", 15) or 15)
        newly_sent = []
        for supplier_id in active_ids:
            response_token, short_code = new_response_token()
            added = repo.add_supplier(
                db,
                quote_id,
                supplier_id,
                sent_at,
                response_token=response_token,
                short_code=short_code,
                token_expires_at=iso_after(days=ttl_days),
            )
            if added:
                newly_sent.append(supplier_id)
        if quote.get("status") == "draft":
            self.transition_quote(db, tenant_id, actor, quote, "sent", reason="quote_sent_to_suppliers")
        repo.refresh_counters(db, quote_id)

        if newly_sent:
            self._publish(
                QuoteSentToSuppliers(
                    tenant_id=tenant_id,
                    actor=actor.email,
                    quote_id=quote_id,
                    title=str(quote.get("title") or ""),
                    supplier_ids=tuple(newly_sent),
                )
            )
        self._audit(
            db,
            tenant_id,
            actor,
            action="send",
            entity="quote",
            entity_id=quote_id,
            details={"supplier_ids": newly_sent},
        )
        skipped = [supplier_id for supplier_id in supplier_ids if supplier_id not in active_ids]
        updated = self._load_quote(db, tenant_id, quote_id)
        return ServiceOutput(
            payload={
                **quote_view(updated),
                "sent_to": newly_sent,
                "skipped": skipped,
                "message": self._ok("quote_sent"),
            }
        )

    def finalize_quote(self, db, *, tenant_id: str, actor: Actor, quote_id: int) -> ServiceOutput:
        self._require_staff(actor)
        quote = self._load_quote(db, tenant_id, quote_id)
        if not action_allowed(QUOTE_STAGE, quote.get("status"), "finalize_quote"):
            raise self._forbidden_action(QUOTE_STAGE, quote.get("status"), "finalize_quote")
        self.transition_quote(db, tenant_id, actor, quote, "finalized", reason="quote_finalized")
        self._audit(db, tenant_id, actor, action="finalize", entity="quote", entity_id=quote_id)
        updated = self._load_quote(db, tenant_id, quote_id)
        return ServiceOutput(payload={**quote_view(updated), "message": self._ok("quote_finalized")})

    def submit_proposal(
        self, db, *, tenant_id: str, actor: Actor, quote_id: int, payload: Dict[str, Any]
    ) -> ServiceOutput:
        quote = self._load_quote(db, tenant_id, quote_id)
        if actor.is_supplier:
            supplier_id = actor.supplier_id
        else:
            self._require_staff(actor)
            supplier_id = parse_optional_int(payload.get("supplier_id"))
        if not supplier_id:
            raise self._invalid("supplier_not_found")

        if not action_allowed(QUOTE_STAGE, quote.get("status"), "submit_proposal"):
            raise self._conflict("proposal_closed", status=quote.get("status"))

        quotes = QuoteRepository(tenant_id=tenant_id)
        if not quotes.supplier_invited(db, quote_id, supplier_id):
            raise self._invalid("supplier_not_invited", http_status=403, supplier_id=supplier_id)

        total_amount = parse_optional_float(payload.get("total_amount"))
        if total_amount is None or total_amount <= 0:
            raise self._invalid("total_amount_invalid")
        delivery_time_days = parse_optional_int(payload.get("delivery_time_days"))
        if delivery_time_days is None:
            delivery_time_days = 0
        if delivery_time_days < 0:
            raise self._invalid("delivery_time_invalid")

        proposal = ProposalInput(
            quote_id=quote_id,
            supplier_id=supplier_id,
            total_amount=total_amount,
            delivery_time_days=delivery_time_days,
            payment_terms=clean_text(payload.get("payment_terms")),
            notes=clean_text(payload.get("notes")),
        )
        proposals = ProposalRepository(tenant_id=tenant_id)
        existing = proposals.find_for_supplier(db, quote_id, supplier_id)
        if existing:
            if existing.get("status") != "pending":
                raise self._conflict("proposal_already_decided", response_id=existing["id"])
            proposals.update_amounts(db, int(existing["id"]), proposal)
            response_id = int(existing["id"])
            status_code = 200
        else:
            supplier = SupplierRepository(tenant_id=tenant_id).get_by_id(db, supplier_id)
            if not supplier:
                raise self._not_found("supplier_not_found", supplier_id=supplier_id)
            response_id = proposals.create(db, proposal, str(supplier.get("name") or ""))
            status_code = 201

        quotes.mark_supplier_responded(db, quote_id, supplier_id)
        quotes.refresh_counters(db, quote_id)
        if quote.get("status") == "sent":
            self.transition_quote(db, tenant_id, actor, quote, "receiving", reason="first_proposal_received")

        saved = proposals.get_by_id(db, response_id) or {}
        self._publish(
            ProposalSubmitted(
                tenant_id=tenant_id,
                actor=actor.email,
                quote_id=quote_id,
                response_id=response_id,
                supplier_id=supplier_id,
                supplier_name=str(saved.get("supplier_name") or ""),
                total_amount=total_amount,
                quote_owner=quote.get("created_by"),
            )
        )
        self._audit(
            db,
            tenant_id,
            actor,
            action="submit" if status_code == 201 else "resubmit",
            entity="quote_response",
            entity_id=response_id,
            details={"quote_id": quote_id, "total_amount": total_amount},
        )
        return ServiceOutput(payload={**saved, "message": self._ok("proposal_sent")}, status_code=status_code)

    def _load_pending_proposal(self, db, tenant_id: str, response_id: int) -> Dict[str, Any]:
        proposal = ProposalRepository(tenant_id=tenant_id).get_by_id(db, response_id)
        if not proposal:
            raise self._not_found("proposal_not_found", response_id=response_id)
        if proposal.get("status") != "pending":
            raise self._conflict("proposal_already_decided", response_id=response_id)
        return proposal

    def apply_proposal_approval(
        self,
        db,
        *,
        tenant_id: str,
        actor: Actor | None,
        quote: Dict[str, Any],
        proposal: Dict[str, Any],
        reason: str,
    ) -> None:
        """Marks the winning proposal, rejects the rest and approves the quote."""
        proposals = ProposalRepository(tenant_id=tenant_id)
        decided_at = utc_now_iso()
        response_id = int(proposal["id"])
        proposals.set_decision(db, response_id, "approved", note=None, decided_at=decided_at)
        rejected_supplier_ids = proposals.reject_other_pending(
            db,
            int(quote["id"]),
            response_id,
            note=get_ui_text("proposal.not_selected"),
            decided_at=decided_at,
        )
        self.transition_quote(
            db,
            tenant_id,
            actor,
            quote,
            "approved",
            reason=reason,
            extra={
                "supplier_id": proposal.get("supplier_id"),
                "supplier_name": proposal.get("supplier_name"),
                "approved_amount": proposal.get("total_amount"),
            },
        )
        self._audit(
            db,
            tenant_id,
            actor,
            action="approve",
            entity="quote_response",
            entity_id=response_id,
            details={
                "quote_id": quote["id"],
                "total_amount": proposal.get("total_amount"),
                "rejected_supplier_ids": rejected_supplier_ids,
            },
        )
        self._publish(
            ProposalApproved(
                tenant_id=tenant_id,
                actor=actor.email if actor else None,
                quote_id=int(quote["id"]),
                response_id=response_id,
                supplier_id=int(proposal["supplier_id"]),
                total_amount=float(proposal.get("total_amount") or 0),
                quote_title=str(quote.get("title") or ""),
                rejected_supplier_ids=tuple(rejected_supplier_ids),
            )
        )

    def approve_proposal(self, db, *, tenant_id: str, actor: Actor, response_id: int) -> ServiceOutput:
        self._require_manager(actor)
        proposal = self._load_pending_proposal(db, tenant_id, response_id)
        quote = self._load_quote(db, tenant_id, int(proposal["quote_id"]))
        if not action_allowed(QUOTE_STAGE, quote.get("status"), "approve_proposal"):
            raise self._forbidden_action(QUOTE_STAGE, quote.get("status"), "approve_proposal")

        self.apply_proposal_approval(
            db, tenant_id=tenant_id, actor=actor, quote=quote, proposal=proposal, reason="proposal_approved"
        )
        updated = self._load_quote(db, tenant_id, int(quote["id"]))
        return ServiceOutput(
            payload={
                "quote": quote_view(updated),
                "response_id": response_id,
                "message": self._ok("proposal_approved"),
            }
        )

    def reject_proposal(
        self, db, *, tenant_id: str, actor: Actor, response_id: int, note: str | None = None
    ) -> ServiceOutput:
        self._require_staff(actor)
        proposal = self._load_pending_proposal(db, tenant_id, response_id)
        quote = self._load_quote(db, tenant_id, int(proposal["quote_id"]))
        if not action_allowed(QUOTE_STAGE, quote.get("status"), "reject_proposal"):
            raise self._forbidden_action(QUOTE_STAGE, quote.get("status"), "reject_proposal")

        decision_note = clean_text(note) or get_ui_text("proposal.not_selected")
        ProposalRepository(tenant_id=tenant_id).set_decision(
            db, response_id, "rejected", note=decision_note, decided_at=utc_now_iso()
        )
        self._audit(
            db,
            tenant_id,
            actor,
            action="reject",
            entity="quote_response",
            entity_id=response_id,
            details={"quote_id": quote["id"], "note": decision_note},
        )
        self._publish(
            ProposalRejected(
                tenant_id=tenant_id,
                actor=actor.email,
                quote_id=int(quote["id"]),
                response_id=response_id,
                supplier_id=int(proposal["supplier_id"]),
                quote_title=str(quote.get("title") or ""),
                note=decision_note,
            )
        )
        return ServiceOutput(
            payload={"id": response_id, "status": "rejected", "message": self._ok("proposal_rejected")}
        )

    def compare_proposals(self, db, *, tenant_id: str, actor: Actor, quote_id: int) -> ServiceOutput:
        self._require_staff(actor)
        quote = self._load_quote(db, tenant_id, quote_id)
        proposals = ProposalRepository(tenant_id=tenant_id).list_for_quote(db, quote_id)
        lowest = min((float(row.get("total_amount") or 0) for row in proposals), default=None)

        rows = []
        for row in proposals:
            amount = float(row.get("total_amount") or 0)
            difference = round((amount - lowest) / lowest * 100, 2) if lowest else 0.0
            rows.append({**row, "is_lowest": amount == lowest, "difference_pct": difference})
        return ServiceOutput(
            payload={
                "quote": quote_view(quote),
                "proposals": rows,
                "lowest_amount": lowest,
                "budget": quote.get("budget"),
            }
        )
