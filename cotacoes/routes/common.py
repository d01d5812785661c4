from __future__ import annotations

import base64
import binascii

from flask import current_app, g, jsonify, request, session

from cotacoes.domain.contracts import Actor, DocumentUploadInput, ServiceOutput
from cotacoes.errors import ValidationError
from cotacoes.policies import current_role
from cotacoes.quoting.critical_actions import get_critical_action, resolve_confirmation
from cotacoes.quoting.validators import clean_text, parse_optional_int
from cotacoes.tenant import DEFAULT_TENANT_ID, current_supplier_id, current_tenant_id, current_user_email
from cotacoes.ui_strings import confirm_message, get_ui_text


def tenant() -> str:
    return current_tenant_id() or DEFAULT_TENANT_ID


def current_actor() -> Actor:
    role = current_role()
    return Actor(
        email=current_user_email(),
        role=role,
        supplier_id=current_supplier_id() if role == "supplier" else None,
    )


def json_payload() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def respond(result: ServiceOutput):
    return jsonify(result.payload), result.status_code


def critical_confirmation_details(action_key: str) -> dict | None:
    meta = get_critical_action(action_key)
    if not meta:
        return None

    confirm_key = meta.get("confirm_message_key") or action_key
    impact_key = meta.get("impact_text_key") or f"impact.{action_key}"
    return {
        "action_key": action_key,
        "confirm_key": confirm_key,
        "confirm_message": confirm_message(confirm_key, confirm_key),
        "impact_key": impact_key,
        "impact": get_ui_text(impact_key, impact_key),
    }


def _log_confirmation(action_key: str, entity: str, entity_id: int, mode: str) -> None:
    request_id = (getattr(g, "request_id", None) or "").strip() or "n/a"
    user = (session.get("user_email") or session.get("display_name") or "anonymous").strip() or "anonymous"
    current_app.logger.info(
        "confirmation_event",
        extra={
            "request_id": request_id,
            "user": user,
            "action": action_key,
            "entity": entity,
            "entity_id": entity_id,
            "mode": mode,
        },
    )


def require_critical_confirmation(
    action_key: str,
    *,
    entity: str,
    entity_id: int,
    payload: dict | None = None,
) -> None:
    meta = get_critical_action(action_key)
    if not meta:
        return

    confirmed, mode = resolve_confirmation(request, payload)
    if not confirmed:
        raise ValidationError(
            code="confirmation_required",
            message_key="confirmation_required",
            http_status=400,
            critical=False,
            payload={
                "action": action_key,
                "confirmation": critical_confirmation_details(action_key),
            },
        )

    _log_confirmation(action_key, entity, entity_id, mode)


def document_upload_input(supplier_id: int) -> DocumentUploadInput:
    """Builds an upload from multipart form data or a JSON body with base64 content."""
    uploaded = request.files.get("file")
    if uploaded is not None:
        form = request.form
        return DocumentUploadInput(
            supplier_id=supplier_id,
            document_type=str(form.get("document_type") or "").strip(),
            filename=uploaded.filename or "",
            content=uploaded.read(),
            mime_type=uploaded.mimetype or None,
            expiry_date=clean_text(form.get("expiry_date")),
            notes=clean_text(form.get("notes")),
        )

    payload = json_payload()
    raw = str(payload.get("content_base64") or "")
    try:
        content = base64.b64decode(raw, validate=True) if raw else b""
    except (binascii.Error, ValueError) as exc:
        raise ValidationError(
            code="document_file_required",
            message_key="document_file_required",
            http_status=400,
        ) from exc
    return DocumentUploadInput(
        supplier_id=supplier_id,
        document_type=str(payload.get("document_type") or "").strip(),
        filename=str(payload.get("filename") or "").strip(),
        content=content,
        mime_type=clean_text(payload.get("mime_type")),
        expiry_date=clean_text(payload.get("expiry_date")),
        notes=clean_text(payload.get("notes")),
    )


def int_arg(name: str) -> int | None:
    return parse_optional_int(request.args.get(name))
