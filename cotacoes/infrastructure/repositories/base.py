from __future__ import annotations

import json
from datetime import date, datetime
from typing import Any, Iterable, Sequence

from cotacoes.clock import to_iso


class TenantScopeRequiredError(ValueError):
    """Raised when a repository is instantiated without tenant scope."""


class BaseRepository:
    json_columns: Sequence[str] = ()
    bool_columns: Sequence[str] = ()

    def __init__(self, *, tenant_id: str | None = None) -> None:
        scope = str(tenant_id or "").strip()
        if not scope:
            raise TenantScopeRequiredError("tenant_id is required for repository access")
        self.tenant_id = scope

    def row_to_dict(self, row) -> dict | None:
        if row is None:
            return None
        data = dict(row)
        for key, value in list(data.items()):
            if isinstance(value, datetime):
                data[key] = to_iso(value)
            elif isinstance(value, date):
                data[key] = value.isoformat()
        for column in self.json_columns:
            if column in data:
                data[column] = _load_json(data[column])
        for column in self.bool_columns:
            if column in data and data[column] is not None:
                data[column] = bool(data[column])
        return data

    def rows_to_dicts(self, rows: Iterable[Any]) -> list[dict]:
        return [self.row_to_dict(row) for row in rows]

    @staticmethod
    def dump_json(value: Any) -> str:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)

    @staticmethod
    def inserted_id(cursor) -> int:
        row = cursor.fetchone()
        return int(row["id"] if isinstance(row, dict) else row[0])

    def update_fields(self, db, table: str, row_id: int, fields: dict, *, touch: bool = True) -> None:
        if not fields:
            return
        assignments = [f"{column} = ?" for column in fields]
        if touch:
            assignments.append("updated_at = CURRENT_TIMESTAMP")
        db.execute(
            f"UPDATE {table} SET {', '.join(assignments)} WHERE id = ? AND tenant_id = ?",
            (*fields.values(), row_id, self.tenant_id),
        )


def _load_json(value: Any) -> Any:
    if value is None or isinstance(value, (list, dict)):
        return value
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return value
