from __future__ import annotations

import os
import re
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable

from cotacoes.clock import parse_timestamp, utc_now
from cotacoes.ui_strings import DOCUMENT_TYPE_LABELS


DOCUMENT_TYPES = tuple(DOCUMENT_TYPE_LABELS.keys())
DOCUMENT_STATUSES = ("pending", "validated", "rejected", "expired")
ALLOWED_EXTENSIONS = {"pdf", "png", "jpg", "jpeg", "webp", "doc", "docx"}

_SAFE_NAME = re.compile(r"[^A-Za-z0-9._-]+")
_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def file_extension(filename: str | None) -> str:
    _, ext = os.path.splitext(str(filename or ""))
    return ext.lstrip(".").lower()


def safe_filename(filename: str | None) -> str:
    cleaned = _SAFE_NAME.sub("_", os.path.basename(str(filename or "")).strip())
    return cleaned.strip("._") or "documento"


def storage_key(supplier_id: int, document_type: str, extension: str, *, now: datetime | None = None) -> str:
    """Relative path ``<supplier>/<type>_<millis>.<ext>``."""
    timestamp = int((now or utc_now()).timestamp() * 1000)
    return f"{supplier_id}/{document_type}_{timestamp}.{extension}"


def expiry_moment(document: Dict[str, Any]) -> datetime | None:
    """A plain date is valid through the whole day, so it ends at next midnight UTC."""
    raw = document.get("expiry_date")
    expiry = parse_timestamp(raw)
    if expiry is None:
        return None
    date_only = isinstance(raw, date) and not isinstance(raw, datetime)
    if date_only or (isinstance(raw, str) and _DATE_ONLY.match(raw.strip())):
        return expiry + timedelta(days=1)
    return expiry


def days_until_expiry(document: Dict[str, Any], *, now: datetime | None = None) -> int | None:
    expiry = expiry_moment(document)
    if expiry is None:
        return None
    return (expiry - (now or utc_now())).days


def is_expired(document: Dict[str, Any], *, now: datetime | None = None) -> bool:
    expiry = expiry_moment(document)
    if expiry is None:
        return False
    return expiry < (now or utc_now())


def is_expiring_soon(document: Dict[str, Any], within_days: int, *, now: datetime | None = None) -> bool:
    if document.get("status") != "validated":
        return False
    expiry = expiry_moment(document)
    if expiry is None:
        return False
    reference = now or utc_now()
    return reference <= expiry <= reference + timedelta(days=within_days)


def summarize_documents(documents: Iterable[Dict[str, Any]]) -> Dict[str, int]:
    summary = {status: 0 for status in DOCUMENT_STATUSES}
    summary["total"] = 0
    for document in documents:
        status = str(document.get("status") or "pending")
        summary[status] = summary.get(status, 0) + 1
        summary["total"] += 1
    return summary


def eligibility_status(documents: Iterable[Dict[str, Any]]) -> str:
    summary = summarize_documents(documents)
    if summary["total"] == 0:
        return "not_checked"
    if summary["rejected"] or summary["expired"]:
        return "ineligible"
    if summary["pending"]:
        return "pending"
    return "eligible" if summary["validated"] else "not_checked"


def is_eligible(documents: Iterable[Dict[str, Any]]) -> bool:
    return eligibility_status(documents) == "eligible"
