from __future__ import annotations

import logging
import os
import threading
import time
import uuid
from typing import Callable, Dict, Tuple

from flask import Flask

from cotacoes.application.document_service import DocumentService
from cotacoes.application.invitation_service import InvitationLetterService
from cotacoes.application.payment_service import PaymentService
from cotacoes.application.quote_response_service import QuoteResponseService
from cotacoes.db import close_db, get_db
from cotacoes.infrastructure.auth_repository import AuthRepository
from cotacoes.observability import bind_request_id


logger = logging.getLogger("cotacoes")

TaskFn = Callable[..., int]


def _maintenance_tasks() -> Dict[str, TaskFn]:
    return {
        "escrow_release": PaymentService().release_due_escrow,
        "document_expiry": DocumentService().expire_documents,
        "invitation_expiry": InvitationLetterService().expire_tokens,
        "quote_reminders": QuoteResponseService().send_due_reminders,
    }


class MaintenanceScheduler:
    """Runs the periodic per-tenant upkeep: escrow auto-release, expiries and supplier reminders."""

    def __init__(self, app: Flask, tasks: Dict[str, TaskFn] | None = None) -> None:
        self.app = app
        self.interval_seconds = _int_config(app, "MAINTENANCE_SCHEDULER_INTERVAL_SECONDS", 300, 10, 86_400)
        self.min_backoff_seconds = _int_config(app, "MAINTENANCE_SCHEDULER_MIN_BACKOFF_SECONDS", 30, 1, 3600)
        self.max_backoff_seconds = _int_config(
            app,
            "MAINTENANCE_SCHEDULER_MAX_BACKOFF_SECONDS",
            1800,
            self.min_backoff_seconds,
            86_400,
        )
        self.tasks = tasks if tasks is not None else _maintenance_tasks()

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._failure_counts: Dict[Tuple[str, str], int] = {}
        self._next_run_at: Dict[Tuple[str, str], float] = {}
        self._last_results: Dict[Tuple[str, str], int] = {}

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._run_loop, name="maintenance-scheduler", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()

    def status(self) -> dict:
        return {
            "running": bool(self._thread and self._thread.is_alive()),
            "interval_seconds": self.interval_seconds,
            "tasks": sorted(self.tasks),
            "backing_off": sorted(f"{tenant_id}:{task}" for tenant_id, task in self._failure_counts),
        }

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_once()
            self._stop_event.wait(self.interval_seconds)

    def run_once(self) -> Dict[str, Dict[str, int]]:
        """Runs every due task for every tenant. Returns processed counts per tenant."""
        summary: Dict[str, Dict[str, int]] = {}
        with self.app.app_context(), bind_request_id(f"maintenance-{uuid.uuid4().hex[:12]}"):
            db = get_db()
            try:
                for tenant_id in AuthRepository().list_tenant_ids(db):
                    for task_name, task in self.tasks.items():
                        processed = self._run_task(db, tenant_id, task_name, task)
                        if processed is not None:
                            summary.setdefault(tenant_id, {})[task_name] = processed
            finally:
                close_db()
        return summary

    def _run_task(self, db, tenant_id: str, task_name: str, task: TaskFn) -> int | None:
        key = (tenant_id, task_name)
        if not self._is_due(key):
            return None

        try:
            processed = int(task(db, tenant_id=tenant_id) or 0)
            db.commit()
        except Exception as exc:  # noqa: BLE001
            db.rollback()
            self._register_failure(key)
            logger.warning(
                "maintenance_task_failed",
                extra={
                    "tenant_id": tenant_id,
                    "task": task_name,
                    "failures": self._failure_counts.get(key, 0),
                    "error": str(exc)[:200],
                },
            )
            return None

        self._clear_backoff(key)
        self._last_results[key] = processed
        if processed:
            logger.info(
                "maintenance_task_done",
                extra={"tenant_id": tenant_id, "task": task_name, "processed": processed},
            )
        return processed

    def _is_due(self, key: Tuple[str, str]) -> bool:
        next_run_at = self._next_run_at.get(key)
        if next_run_at is None:
            return True
        return time.monotonic() >= next_run_at

    def _clear_backoff(self, key: Tuple[str, str]) -> None:
        self._failure_counts.pop(key, None)
        self._next_run_at.pop(key, None)

    def _register_failure(self, key: Tuple[str, str]) -> None:
        failure_count = self._failure_counts.get(key, 0) + 1
        self._failure_counts[key] = failure_count
        backoff_seconds = min(
            self.max_backoff_seconds,
            self.min_backoff_seconds * (2 ** (failure_count - 1)),
        )
        self._next_run_at[key] = time.monotonic() + backoff_seconds


def start_maintenance_scheduler(app: Flask) -> MaintenanceScheduler | None:
    if not _should_start_scheduler(app):
        return None
    scheduler = MaintenanceScheduler(app)
    scheduler.start()
    app.extensions["maintenance_scheduler"] = scheduler
    app.logger.info(
        "Maintenance scheduler started: interval=%ss tasks=%s",
        scheduler.interval_seconds,
        ", ".join(sorted(scheduler.tasks)),
    )
    return scheduler


def _should_start_scheduler(app: Flask) -> bool:
    if not app.config.get("MAINTENANCE_SCHEDULER_ENABLED", False):
        return False
    if app.config.get("TESTING"):
        return False
    if app.debug:
        run_main = os.environ.get("WERKZEUG_RUN_MAIN")
        if run_main and run_main.lower() != "true":
            return False
    return True


def _int_config(app: Flask, key: str, default: int, min_value: int, max_value: int) -> int:
    try:
        value = int(app.config.get(key, default))
    except (TypeError, ValueError):
        value = default
    return max(min_value, min(value, max_value))
