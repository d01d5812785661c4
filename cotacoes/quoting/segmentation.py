"""Audience segmentation and merge tags for email campaigns."""

from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List
from urllib.parse import quote

from markupsafe import escape

from cotacoes.errors import ValidationError


# field -> operators accepted for it
SEGMENT_FIELDS: Dict[str, tuple[str, ...]] = {
    "group_id": ("equals", "not_equals"),
    "client_type": ("equals", "not_equals"),
    "state": ("equals", "contains"),
    "region": ("equals", "contains"),
}

_MERGE_TAG = re.compile(r"\{\{\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*\}\}")


def normalize_criteria(raw: object) -> List[Dict[str, str]]:
    """Accepts ``{"criteria": [...]}`` or a bare list; empty values are dropped."""
    if isinstance(raw, dict):
        raw = raw.get("criteria") or []
    if not isinstance(raw, list):
        raise ValidationError(code="segment_criteria_invalid", message_key="segment_criteria_invalid")

    criteria: List[Dict[str, str]] = []
    for entry in raw:
        if not isinstance(entry, dict):
            raise ValidationError(code="segment_criteria_invalid", message_key="segment_criteria_invalid")
        field = str(entry.get("field") or "").strip()
        operator = str(entry.get("operator") or "equals").strip()
        value = str(entry.get("value") if entry.get("value") is not None else "").strip()
        if field not in SEGMENT_FIELDS or operator not in SEGMENT_FIELDS[field]:
            raise ValidationError(
                code="segment_criteria_invalid",
                message_key="segment_criteria_invalid",
                payload={"field": field, "operator": operator},
            )
        if not value:
            continue
        criteria.append({"field": field, "operator": operator, "value": value})
    return criteria


def _matches_criterion(contact: Dict[str, Any], criterion: Dict[str, str]) -> bool:
    field = criterion["field"]
    operator = criterion["operator"]
    expected = criterion["value"]
    actual = str(contact.get(field) or "")

    if operator == "contains":
        return expected.lower() in actual.lower()
    if operator == "not_equals":
        return actual != expected
    return actual == expected


def contact_matches(contact: Dict[str, Any], criteria: Iterable[Dict[str, str]]) -> bool:
    return all(_matches_criterion(contact, criterion) for criterion in criteria)


def select_audience(contacts: Iterable[Dict[str, Any]], criteria: Iterable[Dict[str, str]]) -> List[Dict[str, Any]]:
    rules = list(criteria)
    return [
        contact
        for contact in contacts
        if str(contact.get("status") or "active") == "active" and contact_matches(contact, rules)
    ]


def render_merge_tags(template: str | None, variables: Dict[str, object], *, html: bool = False) -> str:
    """Replaces ``{{name}}`` tags; unknown tags are left untouched.

    With ``html`` the values are escaped, since contact names come from CSV imports.
    """
    if not template:
        return ""

    def _replace(match: re.Match) -> str:
        key = match.group(1)
        if key not in variables:
            return match.group(0)
        value = variables[key]
        if value is None:
            return ""
        return str(escape(value)) if html else str(value)

    return _MERGE_TAG.sub(_replace, template)


def recipient_variables(
    contact: Dict[str, Any], *, base_url: str, client_name: str = "", tenant_id: str | None = None
) -> Dict[str, object]:
    email = str(contact.get("email") or "")
    unsubscribe_url = f"{base_url.rstrip('/')}/unsubscribe/{quote(email)}"
    if tenant_id:
        unsubscribe_url = f"{unsubscribe_url}?tenant={quote(tenant_id)}"
    return {
        "recipient_name": contact.get("name") or "",
        "recipient_email": email,
        "recipient_type": contact.get("client_type") or "",
        "unsubscribe_url": unsubscribe_url,
        "client_name": client_name,
    }


def bounce_rate(bounced: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(bounced / total * 100, 2)
