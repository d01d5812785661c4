from __future__ import annotations

from typing import Any, Dict

from cotacoes.infrastructure.repositories.base import BaseRepository


class StatusEventRepository(BaseRepository):
    def add_event(
        self,
        db,
        *,
        entity: str,
        entity_id: int,
        from_status: str | None,
        to_status: str,
        reason: str | None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO status_events (entity, entity_id, from_status, to_status, reason, tenant_id)
            VALUES (?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (entity, entity_id, from_status, to_status, reason, self.tenant_id),
        )
        return self.inserted_id(cursor)

    def list_for_entity(self, db, *, entity: str, entity_id: int, limit: int = 120) -> list[dict]:
        rows = db.execute(
            """
            SELECT id, entity, entity_id, from_status, to_status, reason, occurred_at
            FROM status_events
            WHERE entity = ? AND entity_id = ? AND tenant_id = ?
            ORDER BY occurred_at DESC, id DESC
            LIMIT ?
            """,
            (entity, entity_id, self.tenant_id, int(limit)),
        ).fetchall()
        return self.rows_to_dicts(rows)


class AuditLogRepository(BaseRepository):
    json_columns = ("details",)

    def record(
        self,
        db,
        *,
        action: str,
        entity: str,
        entity_id: int | None,
        user_email: str | None,
        details: Dict[str, Any] | None = None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO audit_logs (action, entity, entity_id, user_email, details, tenant_id)
            VALUES (?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (action, entity, entity_id, user_email, self.dump_json(details or {}), self.tenant_id),
        )
        return self.inserted_id(cursor)

    def list_recent(self, db, *, entity: str | None = None, action: str | None = None, limit: int = 200) -> list[dict]:
        clauses = ["tenant_id = ?"]
        params: list[object] = [self.tenant_id]
        if entity:
            clauses.append("entity = ?")
            params.append(entity)
        if action:
            clauses.append("action = ?")
            params.append(action)
        params.append(int(limit))
        rows = db.execute(
            f"""
            SELECT id, action, entity, entity_id, user_email, details, created_at
            FROM audit_logs
            WHERE {" AND ".join(clauses)}
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            tuple(params),
        ).fetchall()
        return self.rows_to_dicts(rows)


class NotificationRepository(BaseRepository):
    def create(
        self,
        db,
        *,
        recipient: str,
        notification_type: str,
        title: str,
        message: str,
        entity: str | None = None,
        entity_id: int | None = None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO notifications (recipient, notification_type, title, message, entity, entity_id, tenant_id)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (recipient, notification_type, title, message, entity, entity_id, self.tenant_id),
        )
        return self.inserted_id(cursor)

    def list_for_recipients(self, db, recipients: list[str], *, unread_only: bool = False, limit: int = 100) -> list[dict]:
        if not recipients:
            return []
        placeholders = ", ".join("?" for _ in recipients)
        unread_clause = "AND read_at IS NULL" if unread_only else ""
        rows = db.execute(
            f"""
            SELECT id, recipient, notification_type, title, message, entity, entity_id, read_at, created_at
            FROM notifications
            WHERE tenant_id = ? AND recipient IN ({placeholders}) {unread_clause}
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            (self.tenant_id, *recipients, int(limit)),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def count_unread(self, db, recipients: list[str]) -> int:
        if not recipients:
            return 0
        placeholders = ", ".join("?" for _ in recipients)
        row = db.execute(
            f"""
            SELECT COUNT(*) AS total
            FROM notifications
            WHERE tenant_id = ? AND recipient IN ({placeholders}) AND read_at IS NULL
            """,
            (self.tenant_id, *recipients),
        ).fetchone()
        return int(row["total"] or 0) if row else 0

    def get_for_recipients(self, db, notification_id: int, recipients: list[str]) -> dict | None:
        if not recipients:
            return None
        placeholders = ", ".join("?" for _ in recipients)
        row = db.execute(
            f"""
            SELECT *
            FROM notifications
            WHERE id = ? AND tenant_id = ? AND recipient IN ({placeholders})
            LIMIT 1
            """,
            (notification_id, self.tenant_id, *recipients),
        ).fetchone()
        return self.row_to_dict(row)

    def mark_read(self, db, notification_id: int, read_at: str) -> None:
        db.execute(
            "UPDATE notifications SET read_at = ? WHERE id = ? AND tenant_id = ? AND read_at IS NULL",
            (read_at, notification_id, self.tenant_id),
        )

    def mark_all_read(self, db, recipients: list[str], read_at: str) -> int:
        if not recipients:
            return 0
        placeholders = ", ".join("?" for _ in recipients)
        cursor = db.execute(
            f"""
            UPDATE notifications
            SET read_at = ?
            WHERE tenant_id = ? AND recipient IN ({placeholders}) AND read_at IS NULL
            """,
            (read_at, self.tenant_id, *recipients),
        )
        return int(cursor.rowcount or 0)
