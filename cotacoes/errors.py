from __future__ import annotations

import re
from typing import Any, Dict

from cotacoes.ui_strings import error_message


class AppError(Exception):
    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True

    def __init__(
        self,
        code: str | None = None,
        message_key: str | None = None,
        http_status: int | None = None,
        critical: bool | None = None,
        details: str | None = None,
        payload: Dict[str, Any] | None = None,
    ) -> None:
        self.code = (code or self.default_code).strip()
        self.message_key = (message_key or code or self.default_message_key).strip()
        self.http_status = int(http_status or self.default_http_status)
        self.critical = bool(self.default_critical if critical is None else critical)
        self.details = (details or "").strip() or None
        self.payload = dict(payload or {})
        super().__init__(self.details or self.code)

    def user_message(self) -> str:
        fallback = error_message("unexpected_error", "Nao foi possivel concluir a operacao.")
        return error_message(self.message_key, fallback)

    def to_response_payload(self, request_id: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "error": self.code,
            "message": self.user_message(),
            "request_id": request_id,
        }
        if self.payload:
            payload.update(self.payload)
        return payload


class UserActionError(AppError):
    default_code = "action_invalid"
    default_message_key = "action_invalid"
    default_http_status = 400
    default_critical = False


class ValidationError(UserActionError):
    default_code = "validation_error"
    default_message_key = "status_invalid"
    default_http_status = 400
    default_critical = False


class NotFoundError(UserActionError):
    default_code = "not_found"
    default_message_key = "not_found"
    default_http_status = 404
    default_critical = False


class ConflictError(UserActionError):
    default_code = "conflict"
    default_message_key = "action_not_allowed_for_status"
    default_http_status = 409
    default_critical = False


class PermissionError(UserActionError):
    default_code = "permission_denied"
    default_message_key = "permission_denied"
    default_http_status = 403
    default_critical = False


class IntegrationError(AppError):
    default_code = "integration_error"
    default_message_key = "integration_unavailable"
    default_http_status = 502
    default_critical = False


class SystemError(AppError):
    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True


class IntegrationClientError(RuntimeError):
    """Raised by outbound HTTP clients (CNPJ lookup, email gateway)."""

    def __init__(self, message: str, *, service: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.service = service
        self.status_code = status_code


_HTTP_CODE_PATTERN = re.compile(r"http\s+(\d{3})", re.IGNORECASE)


def classify_integration_failure(service: str, details: str | None) -> tuple[str, str, int]:
    normalized = (details or "").strip().lower()
    http_code = None
    code_match = _HTTP_CODE_PATTERN.search(normalized)
    if code_match:
        http_code = int(code_match.group(1))

    if service == "cnpj":
        if http_code == 404:
            return ("cnpj_not_found", "cnpj_not_found", 404)
        if http_code == 429:
            return ("cnpj_lookup_rate_limited", "cnpj_lookup_rate_limited", 503)
        return ("cnpj_lookup_unavailable", "cnpj_lookup_unavailable", 502)

    if service == "email":
        if http_code is not None and 400 <= http_code < 500 and http_code not in {408, 429}:
            return ("email_rejected", "email_rejected", 422)
        return ("email_unavailable", "email_unavailable", 502)

    return ("integration_unavailable", "integration_unavailable", 502)
