from __future__ import annotations

from flask import Blueprint, Response, request

from cotacoes.application.category_service import CategoryService
from cotacoes.application.document_service import DocumentService
from cotacoes.application.supplier_service import CnpjLookupService, SupplierService
from cotacoes.db import get_db
from cotacoes.routes.common import (
    current_actor,
    document_upload_input,
    json_payload,
    require_critical_confirmation,
    respond,
    tenant,
)


supplier_bp = Blueprint("suppliers", __name__)

_SUPPLIER_SERVICE = SupplierService()
_DOCUMENT_SERVICE = DocumentService()
_CATEGORY_SERVICE = CategoryService()
_CNPJ_SERVICE = CnpjLookupService()


@supplier_bp.route("/api/cnpj/<string:cnpj>", methods=["GET"])
def lookup_cnpj(cnpj: str):
    return respond(_CNPJ_SERVICE.lookup(get_db(), tenant_id=tenant(), cnpj=cnpj))


@supplier_bp.route("/api/suppliers", methods=["GET"])
def list_suppliers():
    result = _SUPPLIER_SERVICE.list_suppliers(get_db(), tenant_id=tenant(), actor=current_actor(), args=request.args)
    return respond(result)


@supplier_bp.route("/api/suppliers", methods=["POST"])
def create_supplier():
    db = get_db()
    result = _SUPPLIER_SERVICE.create_supplier(db, tenant_id=tenant(), actor=current_actor(), payload=json_payload())
    db.commit()
    return respond(result)


@supplier_bp.route("/api/suppliers/<int:supplier_id>", methods=["GET"])
def get_supplier(supplier_id: int):
    result = _SUPPLIER_SERVICE.get_supplier(get_db(), tenant_id=tenant(), actor=current_actor(), supplier_id=supplier_id)
    return respond(result)


@supplier_bp.route("/api/suppliers/<int:supplier_id>", methods=["PUT", "PATCH"])
def update_supplier(supplier_id: int):
    db = get_db()
    result = _SUPPLIER_SERVICE.update_supplier(
        db, tenant_id=tenant(), actor=current_actor(), supplier_id=supplier_id, payload=json_payload()
    )
    db.commit()
    return respond(result)


@supplier_bp.route("/api/suppliers/<int:supplier_id>/status", methods=["POST"])
def set_supplier_status(supplier_id: int):
    db = get_db()
    result = _SUPPLIER_SERVICE.set_status(
        db,
        tenant_id=tenant(),
        actor=current_actor(),
        supplier_id=supplier_id,
        status=str(json_payload().get("status") or ""),
    )
    db.commit()
    return respond(result)


@supplier_bp.route("/api/suppliers/<int:supplier_id>/documents", methods=["POST"])
def upload_document(supplier_id: int):
    db = get_db()
    result = _DOCUMENT_SERVICE.upload(
        db, tenant_id=tenant(), actor=current_actor(), upload=document_upload_input(supplier_id)
    )
    db.commit()
    return respond(result)


@supplier_bp.route("/api/documents", methods=["GET"])
def list_documents():
    result = _DOCUMENT_SERVICE.list_documents(get_db(), tenant_id=tenant(), actor=current_actor(), args=request.args)
    return respond(result)


@supplier_bp.route("/api/documents/summary", methods=["GET"])
def documents_summary():
    return respond(_DOCUMENT_SERVICE.summary(get_db(), tenant_id=tenant(), actor=current_actor()))


@supplier_bp.route("/api/documents/<int:document_id>/review", methods=["POST"])
def review_document(document_id: int):
    db = get_db()
    payload = json_payload()
    result = _DOCUMENT_SERVICE.review(
        db,
        tenant_id=tenant(),
        actor=current_actor(),
        document_id=document_id,
        decision=str(payload.get("status") or payload.get("decision") or ""),
        rejection_reason=payload.get("rejection_reason"),
    )
    db.commit()
    return respond(result)


@supplier_bp.route("/api/documents/<int:document_id>", methods=["DELETE"])
def delete_document(document_id: int):
    db = get_db()
    require_critical_confirmation(
        "delete_supplier_document", entity="supplier_document", entity_id=document_id, payload=json_payload()
    )
    result = _DOCUMENT_SERVICE.delete_document(db, tenant_id=tenant(), actor=current_actor(), document_id=document_id)
    db.commit()
    return respond(result)


@supplier_bp.route("/api/documents/<int:document_id>/file", methods=["GET"])
def download_document(document_id: int):
    document, content = _DOCUMENT_SERVICE.read_document(
        get_db(), tenant_id=tenant(), actor=current_actor(), document_id=document_id
    )
    filename = str(document.get("document_name") or f"documento-{document_id}")
    return Response(
        content,
        mimetype=document.get("mime_type") or "application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@supplier_bp.route("/api/categories", methods=["GET"])
def list_categories():
    return respond(_CATEGORY_SERVICE.list_categories(get_db(), tenant_id=tenant(), search=request.args.get("search")))


@supplier_bp.route("/api/categories", methods=["POST"])
def create_category():
    db = get_db()
    result = _CATEGORY_SERVICE.create_category(db, tenant_id=tenant(), actor=current_actor(), payload=json_payload())
    db.commit()
    return respond(result)


@supplier_bp.route("/api/categories/<int:category_id>/usage", methods=["GET"])
def category_usage(category_id: int):
    return respond(_CATEGORY_SERVICE.usage(get_db(), tenant_id=tenant(), category_id=category_id))


@supplier_bp.route("/api/categories/<int:category_id>", methods=["PUT", "PATCH"])
def update_category(category_id: int):
    db = get_db()
    result = _CATEGORY_SERVICE.update_category(
        db, tenant_id=tenant(), actor=current_actor(), category_id=category_id, payload=json_payload()
    )
    db.commit()
    return respond(result)


@supplier_bp.route("/api/categories/<int:category_id>", methods=["DELETE"])
def delete_category(category_id: int):
    db = get_db()
    result = _CATEGORY_SERVICE.delete_category(db, tenant_id=tenant(), actor=current_actor(), category_id=category_id)
    db.commit()
    return respond(result)
