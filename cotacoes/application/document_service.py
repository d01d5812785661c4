from __future__ import annotations

import logging
from typing import Any, Dict, List, Tuple

from flask import current_app

from cotacoes import storage
from cotacoes.application.base import ApplicationService
from cotacoes.clock import parse_timestamp, utc_now_iso
from cotacoes.core import DocumentReviewed
from cotacoes.domain.contracts import Actor, DocumentUploadInput, ServiceOutput
from cotacoes.infrastructure.repositories.quoting import SupplierDocumentRepository, SupplierRepository
from cotacoes.quoting.documents import (
    ALLOWED_EXTENSIONS,
    DOCUMENT_TYPES,
    days_until_expiry,
    eligibility_status,
    file_extension,
    is_expired,
    is_expiring_soon,
    safe_filename,
    storage_key,
    summarize_documents,
)
from cotacoes.quoting.filters import filter_rows
from cotacoes.quoting.flow_policy import action_allowed, flow_meta
from cotacoes.quoting.validators import clean_text
from cotacoes.ui_strings import document_type_label, status_label


DOCUMENT_STAGE = "documento"

logger = logging.getLogger("cotacoes")


def _remove_stored_file(tenant_id: str, document_id: int, key: str) -> None:
    try:
        removed = storage.delete_file(tenant_id, key)
    except storage.StorageError:
        logger.warning("document_file_delete_failed", extra={"document_id": document_id})
        return
    if not removed:
        logger.info("document_file_missing", extra={"document_id": document_id})


def document_view(document: Dict[str, Any]) -> Dict[str, Any]:
    return {
        **document,
        "document_type_label": document_type_label(document.get("document_type")),
        "status_label": status_label(DOCUMENT_STAGE, document.get("status")),
        "days_until_expiry": days_until_expiry(document),
        "flow": flow_meta(DOCUMENT_STAGE, document.get("status")),
    }


class DocumentService(ApplicationService):
    def _load_document(self, db, tenant_id: str, actor: Actor, document_id: int) -> Dict[str, Any]:
        document = SupplierDocumentRepository(tenant_id=tenant_id).get_by_id(db, document_id)
        if not document or (actor.is_supplier and document.get("supplier_id") != actor.supplier_id):
            raise self._not_found("document_not_found", document_id=document_id)
        return document

    def _ensure_supplier_access(self, db, tenant_id: str, actor: Actor, supplier_id: int) -> Dict[str, Any]:
        if actor.is_supplier and actor.supplier_id != supplier_id:
            raise self._not_found("supplier_not_found", supplier_id=supplier_id)
        supplier = SupplierRepository(tenant_id=tenant_id).get_by_id(db, supplier_id)
        if not supplier:
            raise self._not_found("supplier_not_found", supplier_id=supplier_id)
        return supplier

    def upload(self, db, *, tenant_id: str, actor: Actor, upload: DocumentUploadInput) -> ServiceOutput:
        self._ensure_supplier_access(db, tenant_id, actor, upload.supplier_id)
        if upload.document_type not in DOCUMENT_TYPES:
            raise self._invalid("document_type_invalid", document_type=upload.document_type)
        if not upload.content:
            raise self._invalid("document_file_required")
        max_bytes = int(current_app.config.get("DOCUMENT_MAX_BYTES", 10 * 1024 * 1024) or 0)
        if max_bytes and len(upload.content) > max_bytes:
            raise self._invalid("document_file_too_large", http_status=413, max_bytes=max_bytes)
        extension = file_extension(upload.filename)
        if extension not in ALLOWED_EXTENSIONS:
            raise self._invalid("document_extension_invalid", extension=extension)

        expiry_date = None
        if upload.expiry_date:
            parsed = parse_timestamp(upload.expiry_date)
            if parsed is None:
                raise self._invalid("expiry_date_invalid")
            expiry_date = parsed.date().isoformat()

        key = storage_key(upload.supplier_id, upload.document_type, extension)
        repo = SupplierDocumentRepository(tenant_id=tenant_id)
        document_id = repo.create(
            db,
            supplier_id=upload.supplier_id,
            document_type=upload.document_type,
            document_name=safe_filename(upload.filename),
            file_path=key,
            file_size=len(upload.content),
            mime_type=upload.mime_type,
            expiry_date=expiry_date,
            notes=upload.notes,
        )
        # Row first, then the file.
        storage.save_file(tenant_id, key, upload.content)
        self._audit(
            db,
            tenant_id,
            actor,
            action="upload",
            entity="supplier_document",
            entity_id=document_id,
            details={"supplier_id": upload.supplier_id, "document_type": upload.document_type, "size": len(upload.content)},
        )
        document = repo.get_by_id(db, document_id) or {}
        return ServiceOutput(payload={**document_view(document), "message": self._ok("document_uploaded")}, status_code=201)

    def review(
        self,
        db,
        *,
        tenant_id: str,
        actor: Actor,
        document_id: int,
        decision: str,
        rejection_reason: str | None = None,
    ) -> ServiceOutput:
        self._require_staff(actor)
        document = self._load_document(db, tenant_id, actor, document_id)
        target = str(decision or "").strip()
        action = {"validated": "validate_document", "rejected": "reject_document"}.get(target)
        if action is None:
            raise self._invalid("status_invalid", status=target)
        if not action_allowed(DOCUMENT_STAGE, document.get("status"), action):
            raise self._conflict("document_already_reviewed", status=document.get("status"))
        reason = clean_text(rejection_reason)
        if target == "rejected" and not reason:
            raise self._invalid("rejection_reason_required")

        repo = SupplierDocumentRepository(tenant_id=tenant_id)
        repo.update(
            db,
            document_id,
            {
                "status": target,
                "validated_at": utc_now_iso(),
                "validated_by": actor.email,
                "rejection_reason": reason if target == "rejected" else None,
            },
        )
        self._status_event(
            db,
            tenant_id,
            entity="supplier_document",
            entity_id=document_id,
            from_status=document.get("status"),
            to_status=target,
            reason=action,
        )
        self._audit(
            db,
            tenant_id,
            actor,
            action=action,
            entity="supplier_document",
            entity_id=document_id,
            details={"supplier_id": document.get("supplier_id"), "reason": reason},
        )
        supplier_id = int(document["supplier_id"])
        self._publish(
            DocumentReviewed(
                tenant_id=tenant_id,
                actor=actor.email,
                document_id=document_id,
                supplier_id=supplier_id,
                document_type=str(document.get("document_type") or ""),
                status=target,
                rejection_reason=reason if target == "rejected" else None,
            )
        )
        self._activate_if_eligible(db, tenant_id, supplier_id)

        updated = repo.get_by_id(db, document_id) or {}
        message_key = "document_validated" if target == "validated" else "document_rejected"
        return ServiceOutput(payload={**document_view(updated), "message": self._ok(message_key)})

    def _activate_if_eligible(self, db, tenant_id: str, supplier_id: int) -> None:
        suppliers = SupplierRepository(tenant_id=tenant_id)
        supplier = suppliers.get_by_id(db, supplier_id)
        if not supplier or supplier.get("status") != "pending":
            return
        documents = SupplierDocumentRepository(tenant_id=tenant_id).list_for_supplier(db, supplier_id)
        if eligibility_status(documents) != "eligible":
            return
        suppliers.update(db, supplier_id, {"status": "active"})
        self._status_event(
            db,
            tenant_id,
            entity="supplier",
            entity_id=supplier_id,
            from_status="pending",
            to_status="active",
            reason="documents_validated",
        )

    def delete_document(self, db, *, tenant_id: str, actor: Actor, document_id: int) -> ServiceOutput:
        self._require_staff(actor)
        document = self._load_document(db, tenant_id, actor, document_id)
        SupplierDocumentRepository(tenant_id=tenant_id).delete(db, document_id)
        key = str(document.get("file_path") or "")
        db.after_commit(lambda: _remove_stored_file(tenant_id, document_id, key))
        self._audit(
            db,
            tenant_id,
            actor,
            action="delete",
            entity="supplier_document",
            entity_id=document_id,
            details={"supplier_id": document.get("supplier_id"), "document_name": document.get("document_name")},
        )
        return ServiceOutput(payload={"id": document_id, "message": self._ok("document_deleted")})

    def read_document(self, db, *, tenant_id: str, actor: Actor, document_id: int) -> Tuple[Dict[str, Any], bytes]:
        document = self._load_document(db, tenant_id, actor, document_id)
        try:
            content = storage.read_file(tenant_id, str(document.get("file_path") or ""))
        except storage.StorageError as exc:
            raise self._not_found("document_not_found", document_id=document_id) from exc
        return document, content

    def list_documents(self, db, *, tenant_id: str, actor: Actor, args: Dict[str, Any]) -> ServiceOutput:
        repo = SupplierDocumentRepository(tenant_id=tenant_id)
        if actor.is_supplier:
            rows = repo.list_for_supplier(db, actor.supplier_id) if actor.supplier_id else []
        else:
            rows = repo.list_all(db)

        extra = []
        supplier_id = args.get("supplier_id")
        if supplier_id not in (None, ""):
            extra.append(lambda row: str(row.get("supplier_id")) == str(supplier_id))
        document_type = str(args.get("document_type") or "").strip()
        if document_type:
            extra.append(lambda row: row.get("document_type") == document_type)

        items = filter_rows(
            rows,
            search=args.get("search"),
            fields=("document_name", "supplier_name", "document_type"),
            status=args.get("status"),
            extra=extra,
        )
        return ServiceOutput(payload={"items": [document_view(row) for row in items], "total": len(items)})

    def expire_documents(self, db, *, tenant_id: str) -> int:
        """Moves validated documents past their expiry date to ``expired``."""
        repo = SupplierDocumentRepository(tenant_id=tenant_id)
        expired = 0
        for document in repo.list_validated_with_expiry(db):
            if not is_expired(document):
                continue
            repo.update(db, int(document["id"]), {"status": "expired"})
            self._status_event(
                db,
                tenant_id,
                entity="supplier_document",
                entity_id=int(document["id"]),
                from_status="validated",
                to_status="expired",
                reason="document_expired",
            )
            self._publish(
                DocumentReviewed(
                    tenant_id=tenant_id,
                    document_id=int(document["id"]),
                    supplier_id=int(document["supplier_id"]),
                    document_type=str(document.get("document_type") or ""),
                    status="expired",
                )
            )
            expired += 1
        return expired

    def summary(self, db, *, tenant_id: str, actor: Actor) -> ServiceOutput:
        self._require_staff(actor)
        documents = SupplierDocumentRepository(tenant_id=tenant_id).list_all(db)
        warning_days = int(current_app.config.get("DOCUMENT_EXPIRY_WARNING_DAYS", 30) or 30)
        expiring: List[Dict[str, Any]] = [
            document_view(document) for document in documents if is_expiring_soon(document, warning_days)
        ]

        by_supplier: Dict[int, List[Dict[str, Any]]] = {}
        for document in documents:
            by_supplier.setdefault(int(document["supplier_id"]), []).append(document)
        suppliers = SupplierRepository(tenant_id=tenant_id).list_all(db)
        eligibility = [
            {
                "supplier_id": supplier["id"],
                "supplier_name": supplier.get("name"),
                "eligibility": eligibility_status(by_supplier.get(int(supplier["id"]), [])),
            }
            for supplier in suppliers
        ]
        return ServiceOutput(
            payload={
                "counts": summarize_documents(documents),
                "expiring_soon": expiring,
                "warning_days": warning_days,
                "eligibility": eligibility,
                "generated_at": utc_now_iso(),
            }
        )
