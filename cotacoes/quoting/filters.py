from __future__ import annotations

import unicodedata
from typing import Any, Callable, Dict, Iterable, List, Sequence


ALL_STATUSES = {"", "all", "todos", "todas"}


def fold_text(value: object) -> str:
    text = unicodedata.normalize("NFKD", str(value or ""))
    return "".join(ch for ch in text if not unicodedata.combining(ch)).casefold().strip()


def parse_csv_values(value: object) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return [str(part).strip() for part in value if str(part).strip()]
    return [part.strip() for part in str(value).split(",") if part.strip()]


def matches_search(row: Dict[str, Any], term: object, fields: Sequence[str]) -> bool:
    needle = fold_text(term)
    if not needle:
        return True
    for field in fields:
        value = row.get(field)
        if isinstance(value, (list, tuple)):
            haystack = " ".join(str(item) for item in value)
        else:
            haystack = value
        if needle in fold_text(haystack):
            return True
    return False


def matches_status(row: Dict[str, Any], status: object, field: str = "status") -> bool:
    wanted = [value.lower() for value in parse_csv_values(status)]
    if not wanted or any(value in ALL_STATUSES for value in wanted):
        return True
    return str(row.get(field) or "").lower() in wanted


def filter_rows(
    rows: Iterable[Dict[str, Any]],
    *,
    search: object = None,
    fields: Sequence[str] = (),
    status: object = None,
    status_field: str = "status",
    extra: Iterable[Callable[[Dict[str, Any]], bool]] = (),
) -> List[Dict[str, Any]]:
    predicates = list(extra)
    result: List[Dict[str, Any]] = []
    for row in rows:
        if not matches_status(row, status, status_field):
            continue
        if not matches_search(row, search, fields):
            continue
        if not all(predicate(row) for predicate in predicates):
            continue
        result.append(row)
    return result


def paginate(rows: Sequence[Dict[str, Any]], page: object = 1, per_page: object = 50) -> Dict[str, Any]:
    page_number = _bounded_int(page, default=1, min_value=1, max_value=100_000)
    size = _bounded_int(per_page, default=50, min_value=1, max_value=200)
    total = len(rows)
    start = (page_number - 1) * size
    return {
        "items": list(rows[start : start + size]),
        "page": page_number,
        "per_page": size,
        "total": total,
        "pages": (total + size - 1) // size if total else 0,
    }


def count_by(rows: Iterable[Dict[str, Any]], field: str = "status") -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for row in rows:
        key = str(row.get(field) or "")
        counts[key] = counts.get(key, 0) + 1
    return counts


def _bounded_int(value: object, *, default: int, min_value: int, max_value: int) -> int:
    try:
        parsed = int(str(value).strip()) if value not in (None, "") else default
    except (TypeError, ValueError):
        parsed = default
    return max(min_value, min(parsed, max_value))
