from __future__ import annotations

import json
import os
import threading
import urllib.error
import urllib.request
import uuid
from typing import List

from flask import current_app

from cotacoes.errors import IntegrationClientError
from cotacoes.observability import observe_integration_call


SERVICE = "email"

_MOCK_OUTBOX: List[dict] = []
_MOCK_LOCK = threading.Lock()


def send_email(to: str, subject: str, html: str, text: str | None = None) -> dict:
    mode = str(_get_config("EMAIL_MODE", "mock") or "mock").lower()
    if mode == "mock":
        return _send_mock(to, subject, html, text)
    if mode != "http":
        raise IntegrationClientError(f"EMAIL_MODE invalido: {mode}", service=SERVICE)
    return _send_http(to, subject, html, text)


def mock_outbox() -> List[dict]:
    with _MOCK_LOCK:
        return list(_MOCK_OUTBOX)


def reset_mock_outbox_for_tests() -> None:
    with _MOCK_LOCK:
        _MOCK_OUTBOX.clear()


def _send_mock(to: str, subject: str, html: str, text: str | None) -> dict:
    recipient = (to or "").strip().lower()
    # Reserved domain used to exercise bounce handling without a provider.
    if recipient.endswith("@bounce.test"):
        observe_integration_call(SERVICE, "mock_bounced")
        raise IntegrationClientError(
            f"Email HTTP 422: destinatario recusado {recipient}",
            service=SERVICE,
            status_code=422,
        )
    message = {
        "id": f"mock_{uuid.uuid4().hex[:12]}",
        "to": recipient,
        "from": _get_config("EMAIL_FROM"),
        "subject": subject,
        "html": html,
        "text": text,
    }
    with _MOCK_LOCK:
        _MOCK_OUTBOX.append(message)
    observe_integration_call(SERVICE, "mock_sent")
    return {"id": message["id"], "status": "sent"}


def _send_http(to: str, subject: str, html: str, text: str | None) -> dict:
    url = str(_get_config("EMAIL_API_URL") or "").strip()
    if not url:
        raise IntegrationClientError("EMAIL_API_URL nao configurado.", service=SERVICE)

    headers = {"Accept": "application/json", "Content-Type": "application/json"}
    token = _get_config("EMAIL_API_TOKEN")
    if token:
        headers["Authorization"] = f"Bearer {token}"

    payload = {"from": _get_config("EMAIL_FROM"), "to": [to], "subject": subject, "html": html}
    if text:
        payload["text"] = text
    data = json.dumps(payload, separators=(",", ":"), ensure_ascii=True).encode("utf-8")
    request = urllib.request.Request(url, data=data, headers=headers, method="POST")

    try:
        with urllib.request.urlopen(request, timeout=_int_config("EMAIL_TIMEOUT_SECONDS", 15)) as response:
            body = response.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        error_body = exc.read().decode("utf-8") if exc.fp else ""
        observe_integration_call(SERVICE, "http_error")
        raise IntegrationClientError(
            f"Email HTTP {exc.code}: {error_body[:200]}",
            service=SERVICE,
            status_code=exc.code,
        ) from exc
    except urllib.error.URLError as exc:
        observe_integration_call(SERVICE, "connection_error")
        raise IntegrationClientError(f"Erro de conexao email: {exc.reason}", service=SERVICE) from exc

    observe_integration_call(SERVICE, "http_sent")
    try:
        parsed = json.loads(body) if body else {}
    except json.JSONDecodeError:
        parsed = {}
    message_id = parsed.get("id") if isinstance(parsed, dict) else None
    return {"id": message_id, "status": "sent"}


def _get_config(key: str, default: object | None = None) -> object | None:
    try:
        return current_app.config.get(key, default)
    except RuntimeError:
        return os.environ.get(key, default)


def _int_config(key: str, default: int) -> int:
    value = _get_config(key, default)
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
