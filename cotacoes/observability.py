"""JSON logging, request ids and the in-process counters reported by ``/health``."""

from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import threading
import time
import uuid
from collections import Counter
from datetime import datetime, timezone
from typing import Dict

from flask import g, has_request_context, request


# Request id seen by log records emitted outside a request (scheduler passes, CLI).
_LOG_REQUEST_ID: contextvars.ContextVar[str] = contextvars.ContextVar("cotacoes_request_id", default="")

# LogRecord attributes that are not ``extra=`` fields.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

_MAX_ROUTES_REPORTED = 40


@contextlib.contextmanager
def bind_request_id(request_id: str | None):
    token = _LOG_REQUEST_ID.set(str(request_id or "").strip())
    try:
        yield _LOG_REQUEST_ID.get()
    finally:
        _LOG_REQUEST_ID.reset(token)


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, object] = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if has_request_context():
            payload["request_id"] = getattr(g, "request_id", None) or "n/a"
            payload["method"] = request.method
            payload["path"] = request.path
        else:
            payload["request_id"] = getattr(record, "request_id", None) or _LOG_REQUEST_ID.get() or "n/a"

        extras = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_") and key not in payload
        }
        payload.update(extras)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, separators=(",", ":"), default=str)


def configure_json_logging(app) -> None:
    if not app.config.get("LOG_JSON", True):
        return
    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter())
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))
    app.logger.handlers = []
    app.logger.propagate = True


def ensure_request_id() -> str:
    """Request id for the current request: the caller's ``X-Request-Id`` or a new uuid."""
    if not getattr(g, "request_id", None):
        g.request_id = (request.headers.get("X-Request-Id") or "").strip() or str(uuid.uuid4())
    return g.request_id


class MetricsRegistry:
    """Thread-safe counters. Nothing is exported; ``/health`` shows a snapshot."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self._requests = 0
            self._errors = 0
            self._routes: Dict[str, Dict[str, float]] = {}
            self._events: Counter = Counter()
            self._integrations: Counter = Counter()
            self._emails: Counter = Counter()
            self._escrow_releases: Counter = Counter()

    def observe_http(self, method: str, route: str, status_code: int, elapsed_ms: float) -> None:
        key = f"{method.upper()} {route}"
        elapsed_ms = max(0.0, elapsed_ms)
        failed = status_code >= 400
        with self._lock:
            stats = self._routes.setdefault(key, {"requests": 0, "errors": 0, "total_ms": 0.0, "max_ms": 0.0})
            stats["requests"] += 1
            stats["errors"] += int(failed)
            stats["total_ms"] += elapsed_ms
            stats["max_ms"] = max(stats["max_ms"], elapsed_ms)
            self._requests += 1
            self._errors += int(failed)

    def count(self, counter: str, key: str, amount: int = 1) -> None:
        if amount <= 0:
            return
        with self._lock:
            getattr(self, counter)[key or "unknown"] += amount

    def snapshot(self) -> dict:
        with self._lock:
            routes = [
                {
                    "route": route,
                    "requests": int(stats["requests"]),
                    "errors": int(stats["errors"]),
                    "avg_latency_ms": round(stats["total_ms"] / stats["requests"], 2),
                    "max_latency_ms": round(stats["max_ms"], 2),
                }
                for route, stats in self._routes.items()
            ]
            routes.sort(key=lambda item: item["requests"], reverse=True)
            return {
                "requests_total": self._requests,
                "errors_total": self._errors,
                "by_route": routes[:_MAX_ROUTES_REPORTED],
                "domain_events": {"emitted_total": sum(self._events.values()), "by_type": dict(sorted(self._events.items()))},
                "integrations": dict(sorted(self._integrations.items())),
                "emails": dict(sorted(self._emails.items())),
                "escrow_released": dict(sorted(self._escrow_releases.items())),
            }


_METRICS = MetricsRegistry()


def mark_request_start() -> None:
    g._request_started_at = time.perf_counter()


def observe_response(response):
    started = getattr(g, "_request_started_at", None)
    elapsed_ms = (time.perf_counter() - started) * 1000.0 if started else 0.0
    route = request.url_rule.rule if request.url_rule is not None else request.path
    _METRICS.observe_http(request.method, route, response.status_code, elapsed_ms)
    response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.2f}"
    return response


def metrics_snapshot() -> dict:
    return _METRICS.snapshot()


def observe_domain_event_emitted(event_type: str) -> None:
    _METRICS.count("_events", event_type)


def observe_integration_call(service: str, result: str) -> None:
    _METRICS.count("_integrations", f"{service}:{result}")


def observe_email(status: str, count: int = 1) -> None:
    _METRICS.count("_emails", status, count)


def observe_escrow_release(trigger: str) -> None:
    _METRICS.count("_escrow_releases", trigger)


def reset_metrics_for_tests() -> None:
    _METRICS.reset()
