from __future__ import annotations

import math
import re
from typing import Any, List


_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_valid_email(value: object) -> bool:
    return bool(_EMAIL_PATTERN.match(str(value or "").strip()))


def clean_text(value: object) -> str | None:
    text = str(value or "").strip()
    return text or None


def parse_optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    try:
        parsed = float(str(value).replace(",", ".") if isinstance(value, str) else value)
    except (TypeError, ValueError):
        return None
    # nan e inf nao sao valores monetarios nem quantidades.
    return parsed if math.isfinite(parsed) else None


def parse_optional_int(value: Any) -> int | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def parse_id_list(value: Any) -> List[int]:
    if value is None:
        return []
    if isinstance(value, str):
        raw_items: list = [part for part in value.split(",")]
    elif isinstance(value, (list, tuple, set)):
        raw_items = list(value)
    else:
        raw_items = [value]
    ids: List[int] = []
    for item in raw_items:
        parsed = parse_optional_int(item)
        if parsed and parsed > 0 and parsed not in ids:
            ids.append(parsed)
    return ids


def parse_string_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        raw_items = re.split(r"[;,]", value)
    elif isinstance(value, (list, tuple, set)):
        raw_items = [str(item) for item in value]
    else:
        return []
    items: List[str] = []
    for item in raw_items:
        text = item.strip()
        if text and text not in items:
            items.append(text)
    return items
