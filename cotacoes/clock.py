from __future__ import annotations

from datetime import date, datetime, timedelta, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def utc_now_iso() -> str:
    return to_iso(utc_now())


def iso_after(*, days: int = 0, hours: int = 0, now: datetime | None = None) -> str:
    base = now or utc_now()
    return to_iso(base + timedelta(days=days, hours=hours))


def parse_timestamp(value) -> datetime | None:
    """Accepts datetimes (postgres), ISO strings and plain dates (sqlite)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        raw = str(value).strip()
        if not raw:
            return None
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def is_past(value, *, now: datetime | None = None) -> bool:
    parsed = parse_timestamp(value)
    if parsed is None:
        return False
    return parsed <= (now or utc_now())
