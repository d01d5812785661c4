from __future__ import annotations

import re
import threading
import time
from typing import Any, Callable, Dict, Tuple

from flask import current_app

from cotacoes.application.base import ApplicationService
from cotacoes.domain.contracts import Actor, ServiceOutput
from cotacoes.infrastructure.repositories.quoting import CategoryRepository
from cotacoes.quoting.filters import filter_rows
from cotacoes.quoting.validators import clean_text


_HEX_COLOR = re.compile(r"^#[0-9a-fA-F]{6}$")
DEFAULT_COLOR = "#6B7280"


class CategoryUsageCache:
    """Per-tenant usage counts kept for a short TTL."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[str, Tuple[float, Dict[int, int]]] = {}

    def get(self, tenant_id: str, loader: Callable[[], Dict[int, int]], *, ttl_seconds: int) -> Dict[int, int]:
        now = time.monotonic()
        with self._lock:
            cached = self._entries.get(tenant_id)
            if cached and cached[0] > now:
                return dict(cached[1])
        counts = loader()
        with self._lock:
            self._entries[tenant_id] = (now + max(0, ttl_seconds), dict(counts))
        return counts

    def invalidate(self, tenant_id: str | None = None) -> None:
        with self._lock:
            if tenant_id is None:
                self._entries.clear()
            else:
                self._entries.pop(tenant_id, None)


_USAGE_CACHE = CategoryUsageCache()


def invalidate_category_usage_on_commit(db, tenant_id: str) -> None:
    # Only after commit, otherwise a concurrent read re-caches the old counts.
    db.after_commit(lambda: _USAGE_CACHE.invalidate(tenant_id))


def clear_cache() -> None:
    _USAGE_CACHE.invalidate()


class CategoryService(ApplicationService):
    def _usage(self, db, tenant_id: str) -> Dict[int, int]:
        ttl = int(current_app.config.get("CATEGORY_USAGE_TTL_SECONDS", 30) or 0)
        repo = CategoryRepository(tenant_id=tenant_id)
        return _USAGE_CACHE.get(tenant_id, lambda: repo.usage_counts(db), ttl_seconds=ttl)

    def _load_category(self, db, tenant_id: str, category_id: int) -> Dict[str, Any]:
        category = CategoryRepository(tenant_id=tenant_id).get_by_id(db, category_id)
        if not category:
            raise self._not_found("category_not_found", category_id=category_id)
        return category

    def _validated_name(self, db, tenant_id: str, value: Any, *, current_id: int | None = None) -> str:
        name = clean_text(value)
        if not name:
            raise self._invalid("category_name_required")
        existing = CategoryRepository(tenant_id=tenant_id).find_by_name(db, name)
        if existing and existing["id"] != current_id:
            raise self._conflict("category_duplicated", category_id=existing["id"])
        return name

    @staticmethod
    def _color(value: Any) -> str:
        color = clean_text(value)
        return color if color and _HEX_COLOR.match(color) else DEFAULT_COLOR

    def list_categories(self, db, *, tenant_id: str, search: str | None = None) -> ServiceOutput:
        usage = self._usage(db, tenant_id)
        rows = filter_rows(
            CategoryRepository(tenant_id=tenant_id).list_all(db),
            search=search,
            fields=("name", "description"),
        )
        items = [{**row, "usage_count": usage.get(int(row["id"]), 0)} for row in rows]
        return ServiceOutput(payload={"items": items, "total": len(items)})

    def usage(self, db, *, tenant_id: str, category_id: int) -> ServiceOutput:
        self._load_category(db, tenant_id, category_id)
        count = self._usage(db, tenant_id).get(category_id, 0)
        return ServiceOutput(payload={"category_id": category_id, "usage_count": count, "in_use": count > 0})

    def create_category(self, db, *, tenant_id: str, actor: Actor, payload: Dict[str, Any]) -> ServiceOutput:
        self._require_staff(actor)
        repo = CategoryRepository(tenant_id=tenant_id)
        category_id = repo.create(
            db,
            name=self._validated_name(db, tenant_id, payload.get("name")),
            description=clean_text(payload.get("description")),
            color=self._color(payload.get("color")),
        )
        self._audit(db, tenant_id, actor, action="create", entity="category", entity_id=category_id)
        category = repo.get_by_id(db, category_id) or {}
        return ServiceOutput(
            payload={**category, "usage_count": 0, "message": self._ok("category_created")},
            status_code=201,
        )

    def update_category(
        self, db, *, tenant_id: str, actor: Actor, category_id: int, payload: Dict[str, Any]
    ) -> ServiceOutput:
        self._require_staff(actor)
        self._load_category(db, tenant_id, category_id)
        fields: Dict[str, Any] = {}
        if "name" in payload:
            fields["name"] = self._validated_name(db, tenant_id, payload.get("name"), current_id=category_id)
        if "description" in payload:
            fields["description"] = clean_text(payload.get("description"))
        if "color" in payload:
            fields["color"] = self._color(payload.get("color"))
        if not fields:
            raise self._invalid("no_changes")

        repo = CategoryRepository(tenant_id=tenant_id)
        repo.update(db, category_id, fields)
        self._audit(
            db,
            tenant_id,
            actor,
            action="update",
            entity="category",
            entity_id=category_id,
            details={"fields": sorted(fields)},
        )
        category = repo.get_by_id(db, category_id) or {}
        return ServiceOutput(payload={**category, "message": self._ok("category_updated")})

    def delete_category(self, db, *, tenant_id: str, actor: Actor, category_id: int) -> ServiceOutput:
        self._require_staff(actor)
        category = self._load_category(db, tenant_id, category_id)
        # Live count, bypassing the cache.
        count = CategoryRepository(tenant_id=tenant_id).usage_counts(db).get(category_id, 0)
        if count:
            raise self._conflict("category_in_use", usage_count=count)

        CategoryRepository(tenant_id=tenant_id).delete(db, category_id)
        invalidate_category_usage_on_commit(db, tenant_id)
        self._audit(
            db,
            tenant_id,
            actor,
            action="delete",
            entity="category",
            entity_id=category_id,
            details={"name": category.get("name")},
        )
        return ServiceOutput(payload={"id": category_id, "message": self._ok("category_deleted")})
