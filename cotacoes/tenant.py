import re

from flask import session, g


DEFAULT_TENANT_ID = "tenant-demo"

# Tenant ids end up in storage paths and gateway references.
TENANT_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,63}$")


def current_tenant_id() -> str | None:
    return normalize_tenant_id(session.get("tenant_id")) or normalize_tenant_id(getattr(g, "tenant_id", None))


def normalize_tenant_id(value: str | None) -> str | None:
    tenant_id = str(value or "").strip()
    return tenant_id or None


def is_valid_tenant_id(value: str | None) -> bool:
    return bool(TENANT_ID_PATTERN.match(str(value or "")))


def current_user_email() -> str | None:
    email = str(session.get("user_email") or "").strip().lower()
    if email:
        return email
    header_email = str(getattr(g, "user_email", "") or "").strip().lower()
    return header_email or None


def current_supplier_id() -> int | None:
    raw = session.get("supplier_id")
    if raw in (None, ""):
        raw = getattr(g, "supplier_id", None)
    try:
        return int(raw) if raw not in (None, "") else None
    except (TypeError, ValueError):
        return None
