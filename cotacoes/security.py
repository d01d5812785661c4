"""Request throttling, shared-secret comparison and response hardening headers."""

from __future__ import annotations

import hmac
import threading
import time
from collections import deque
from typing import Deque, Dict

from flask import current_app, g, request, session

from cotacoes.errors import ValidationError


_HARDENING_HEADERS = (
    ("X-Content-Type-Options", "nosniff"),
    ("X-Frame-Options", "DENY"),
    ("Referrer-Policy", "strict-origin-when-cross-origin"),
    ("Cross-Origin-Opener-Policy", "same-origin"),
    ("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'"),
)

_MAX_TRACKED_CLIENTS = 10_000


class SlidingWindowLimiter:
    """Counts hits per client key inside a rolling window."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._hits: Dict[str, Deque[float]] = {}

    def hit(self, key: str, *, limit: int, window_seconds: int) -> tuple[bool, int]:
        now = time.monotonic()
        floor = now - window_seconds
        with self._lock:
            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= floor:
                hits.popleft()
            if len(hits) >= limit:
                return False, max(1, int(hits[0] - floor) + 1)
            hits.append(now)
            if len(self._hits) > _MAX_TRACKED_CLIENTS:
                self._hits = {name: times for name, times in self._hits.items() if times and times[-1] > floor}
            return True, 0

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


_LIMITER = SlidingWindowLimiter()


def _client_key() -> str:
    who = str(session.get("user_email") or "").strip().lower() or (request.remote_addr or "anon")
    tenant = getattr(g, "tenant_id", None) or "-"
    route = request.url_rule.rule if request.url_rule else request.path
    return f"{tenant}|{who}|{request.method} {route}"


def enforce_rate_limit() -> None:
    config = current_app.config
    if not config.get("RATE_LIMIT_ENABLED", True) or request.method == "OPTIONS":
        return
    allowed, retry_after = _LIMITER.hit(
        _client_key(),
        limit=max(1, int(config.get("RATE_LIMIT_MAX_REQUESTS") or 300)),
        window_seconds=max(1, int(config.get("RATE_LIMIT_WINDOW_SECONDS") or 60)),
    )
    if not allowed:
        raise ValidationError(
            code="rate_limit_exceeded",
            message_key="rate_limit_exceeded",
            http_status=429,
            critical=False,
            payload={"retry_after": retry_after},
        )


def tokens_match(expected: str | None, provided: str | None) -> bool:
    """Constant-time comparison; a blank secret never matches."""
    expected = (expected or "").strip()
    provided = (provided or "").strip()
    return bool(expected and provided) and hmac.compare_digest(expected.encode(), provided.encode())


def apply_security_headers(response):
    if not current_app.config.get("SECURITY_HEADERS_ENABLED", True):
        return response
    for header, value in _HARDENING_HEADERS:
        response.headers.setdefault(header, value)
    if request.is_secure:
        response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


def reset_rate_limiter_for_tests() -> None:
    _LIMITER.reset()
