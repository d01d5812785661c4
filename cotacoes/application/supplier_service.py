from __future__ import annotations

from typing import Any, Dict, List

from cotacoes import cnpj_client
from cotacoes.application.base import ApplicationService
from cotacoes.domain.contracts import Actor, ServiceOutput, SupplierInput
from cotacoes.infrastructure.repositories.quoting import SupplierDocumentRepository, SupplierRepository
from cotacoes.quoting.cnpj import format_cnpj, is_valid_cnpj, normalize_cnpj
from cotacoes.quoting.documents import eligibility_status, summarize_documents
from cotacoes.quoting.filters import count_by, filter_rows
from cotacoes.quoting.validators import clean_text, is_valid_email, parse_string_list
from cotacoes.ui_strings import document_type_label, status_keys_for_group, status_label


SUPPLIER_STAGE = "fornecedor"
SUPPLIER_SEARCH_FIELDS = ("name", "trade_name", "cnpj", "email", "city")
ACTIVE_SITUATION = "ATIVA"


def supplier_view(supplier: Dict[str, Any], documents: List[Dict[str, Any]] | None = None) -> Dict[str, Any]:
    view = {
        **supplier,
        "cnpj_formatado": format_cnpj(supplier.get("cnpj")),
        "status_label": status_label(SUPPLIER_STAGE, supplier.get("status")),
    }
    if documents is not None:
        view["eligibility"] = eligibility_status(documents)
    return view


class CnpjLookupService(ApplicationService):
    def lookup(self, db, *, tenant_id: str, cnpj: Any) -> ServiceOutput:
        digits = normalize_cnpj(cnpj)
        if not digits:
            raise self._invalid("cnpj_required")
        if not is_valid_cnpj(digits):
            raise self._invalid("cnpj_invalid", cnpj=digits)

        company = cnpj_client.fetch_company(digits)
        situation = str(company.get("situacao_cadastral") or "").strip().upper()
        existing = SupplierRepository(tenant_id=tenant_id).find_by_cnpj(db, digits)
        return ServiceOutput(
            payload={
                "valid": situation == ACTIVE_SITUATION,
                "cnpj": digits,
                "data": company,
                "already_registered": existing is not None,
                "supplier_id": existing["id"] if existing else None,
                "message": self._ok("cnpj_found"),
            }
        )


class SupplierService(ApplicationService):
    def _load_supplier(self, db, tenant_id: str, supplier_id: int) -> Dict[str, Any]:
        supplier = SupplierRepository(tenant_id=tenant_id).get_by_id(db, supplier_id)
        if not supplier:
            raise self._not_found("supplier_not_found", supplier_id=supplier_id)
        return supplier

    def _validated_cnpj(self, db, tenant_id: str, value: Any, *, current_id: int | None = None) -> str:
        digits = normalize_cnpj(value)
        if not digits:
            raise self._invalid("cnpj_required")
        if not is_valid_cnpj(digits):
            raise self._invalid("cnpj_invalid", cnpj=digits)
        existing = SupplierRepository(tenant_id=tenant_id).find_by_cnpj(db, digits)
        if existing and existing["id"] != current_id:
            raise self._conflict("supplier_cnpj_duplicated", supplier_id=existing["id"])
        return digits

    def _validated_email(self, value: Any) -> str | None:
        email = clean_text(value)
        if email is None:
            return None
        email = email.lower()
        if not is_valid_email(email):
            raise self._invalid("email_invalid", email=email)
        return email

    def create_supplier(self, db, *, tenant_id: str, actor: Actor, payload: Dict[str, Any]) -> ServiceOutput:
        self._require_staff(actor)
        name = clean_text(payload.get("name"))
        if not name:
            raise self._invalid("supplier_name_required")
        cnpj = self._validated_cnpj(db, tenant_id, payload.get("cnpj"))
        supplier_input = SupplierInput(
            name=name,
            cnpj=cnpj,
            email=self._validated_email(payload.get("email")),
            trade_name=clean_text(payload.get("trade_name")),
            phone=clean_text(payload.get("phone")),
            city=clean_text(payload.get("city")),
            state=(clean_text(payload.get("state")) or "").upper() or None,
            specialties=parse_string_list(payload.get("specialties")),
            notes=clean_text(payload.get("notes")),
        )
        repo = SupplierRepository(tenant_id=tenant_id)
        supplier_id = repo.create(db, supplier_input, cnpj=cnpj)
        self._audit(
            db,
            tenant_id,
            actor,
            action="create",
            entity="supplier",
            entity_id=supplier_id,
            details={"name": name, "cnpj": cnpj},
        )
        supplier = repo.get_by_id(db, supplier_id) or {}
        return ServiceOutput(
            payload={**supplier_view(supplier, []), "message": self._ok("supplier_created")},
            status_code=201,
        )

    def update_supplier(
        self, db, *, tenant_id: str, actor: Actor, supplier_id: int, payload: Dict[str, Any]
    ) -> ServiceOutput:
        self._require_staff(actor)
        self._load_supplier(db, tenant_id, supplier_id)

        fields: Dict[str, Any] = {}
        if "name" in payload:
            name = clean_text(payload.get("name"))
            if not name:
                raise self._invalid("supplier_name_required")
            fields["name"] = name
        if "cnpj" in payload:
            fields["cnpj"] = self._validated_cnpj(db, tenant_id, payload.get("cnpj"), current_id=supplier_id)
        if "email" in payload:
            fields["email"] = self._validated_email(payload.get("email"))
        for key in ("trade_name", "phone", "city", "notes"):
            if key in payload:
                fields[key] = clean_text(payload.get(key))
        if "state" in payload:
            fields["state"] = (clean_text(payload.get("state")) or "").upper() or None
        if "specialties" in payload:
            fields["specialties"] = parse_string_list(payload.get("specialties"))
        if not fields:
            raise self._invalid("no_changes")

        repo = SupplierRepository(tenant_id=tenant_id)
        repo.update(db, supplier_id, fields)
        self._audit(
            db,
            tenant_id,
            actor,
            action="update",
            entity="supplier",
            entity_id=supplier_id,
            details={"fields": sorted(fields)},
        )
        supplier = repo.get_by_id(db, supplier_id) or {}
        return ServiceOutput(payload={**supplier_view(supplier), "message": self._ok("supplier_updated")})

    def set_status(
        self, db, *, tenant_id: str, actor: Actor, supplier_id: int, status: str
    ) -> ServiceOutput:
        self._require_manager(actor)
        supplier = self._load_supplier(db, tenant_id, supplier_id)
        target = str(status or "").strip()
        if target not in status_keys_for_group(SUPPLIER_STAGE):
            raise self._invalid("status_invalid", status=target)

        repo = SupplierRepository(tenant_id=tenant_id)
        if target != supplier.get("status"):
            repo.update(db, supplier_id, {"status": target})
            self._status_event(
                db,
                tenant_id,
                entity="supplier",
                entity_id=supplier_id,
                from_status=supplier.get("status"),
                to_status=target,
                reason="supplier_status_updated",
            )
            self._audit(
                db,
                tenant_id,
                actor,
                action="status_change",
                entity="supplier",
                entity_id=supplier_id,
                details={"from": supplier.get("status"), "to": target},
            )
        updated = repo.get_by_id(db, supplier_id) or {}
        return ServiceOutput(payload={**supplier_view(updated), "message": self._ok("supplier_status_updated")})

    def list_suppliers(self, db, *, tenant_id: str, actor: Actor, args: Dict[str, Any]) -> ServiceOutput:
        self._require_staff(actor)
        rows = SupplierRepository(tenant_id=tenant_id).list_all(db)
        documents_by_supplier: Dict[int, List[Dict[str, Any]]] = {}
        for document in SupplierDocumentRepository(tenant_id=tenant_id).list_all(db):
            documents_by_supplier.setdefault(int(document["supplier_id"]), []).append(document)

        items = filter_rows(
            rows,
            search=args.get("search"),
            fields=SUPPLIER_SEARCH_FIELDS,
            status=args.get("status"),
        )
        views = [supplier_view(row, documents_by_supplier.get(int(row["id"]), [])) for row in items]
        eligibility = str(args.get("eligibility") or "").strip()
        if eligibility:
            views = [view for view in views if view["eligibility"] == eligibility]
        return ServiceOutput(payload={"items": views, "total": len(views), "summary": count_by(rows)})

    def get_supplier(self, db, *, tenant_id: str, actor: Actor, supplier_id: int) -> ServiceOutput:
        if actor.is_supplier and actor.supplier_id != supplier_id:
            raise self._not_found("supplier_not_found", supplier_id=supplier_id)
        supplier = self._load_supplier(db, tenant_id, supplier_id)
        documents = SupplierDocumentRepository(tenant_id=tenant_id).list_for_supplier(db, supplier_id)
        for document in documents:
            document["document_type_label"] = document_type_label(document.get("document_type"))
        return ServiceOutput(
            payload={
                **supplier_view(supplier, documents),
                "documents": documents,
                "documents_summary": summarize_documents(documents),
            }
        )
