from __future__ import annotations

from cotacoes.domain.contracts import ApprovalLevelInput
from cotacoes.infrastructure.repositories.base import BaseRepository


class ApprovalLevelRepository(BaseRepository):
    json_columns = ("approvers",)
    bool_columns = ("active",)

    def get_by_id(self, db, level_id: int) -> dict | None:
        row = db.execute(
            "SELECT * FROM approval_levels WHERE id = ? AND tenant_id = ? LIMIT 1",
            (level_id, self.tenant_id),
        ).fetchone()
        return self.row_to_dict(row)

    def list_all(self, db) -> list[dict]:
        rows = db.execute(
            """
            SELECT *
            FROM approval_levels
            WHERE tenant_id = ?
            ORDER BY order_level ASC, amount_threshold ASC, id ASC
            """,
            (self.tenant_id,),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def find_for_amount(self, db, amount: float) -> dict | None:
        row = db.execute(
            """
            SELECT *
            FROM approval_levels
            WHERE tenant_id = ? AND active = 1 AND amount_threshold <= ?
            ORDER BY amount_threshold DESC, order_level DESC, id DESC
            LIMIT 1
            """,
            (self.tenant_id, amount),
        ).fetchone()
        return self.row_to_dict(row)

    def create(self, db, level: ApprovalLevelInput) -> int:
        cursor = db.execute(
            """
            INSERT INTO approval_levels (name, amount_threshold, order_level, approvers, active, tenant_id)
            VALUES (?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                level.name,
                level.amount_threshold,
                level.order_level,
                self.dump_json(level.approvers),
                1 if level.active else 0,
                self.tenant_id,
            ),
        )
        return self.inserted_id(cursor)

    def update(self, db, level_id: int, level: ApprovalLevelInput) -> None:
        self.update_fields(
            db,
            "approval_levels",
            level_id,
            {
                "name": level.name,
                "amount_threshold": level.amount_threshold,
                "order_level": level.order_level,
                "approvers": self.dump_json(level.approvers),
                "active": 1 if level.active else 0,
            },
        )

    def delete(self, db, level_id: int) -> None:
        db.execute(
            "DELETE FROM approval_levels WHERE id = ? AND tenant_id = ?",
            (level_id, self.tenant_id),
        )


class ApprovalRepository(BaseRepository):
    json_columns = ("approvers",)

    _SELECT = """
        SELECT a.*, q.title AS quote_title, q.local_code AS quote_code, q.status AS quote_status,
               q.created_by AS quote_owner
        FROM approvals a
        JOIN quotes q ON q.id = a.quote_id AND q.tenant_id = a.tenant_id
    """

    def get_by_id(self, db, approval_id: int) -> dict | None:
        row = db.execute(
            self._SELECT + " WHERE a.id = ? AND a.tenant_id = ? LIMIT 1",
            (approval_id, self.tenant_id),
        ).fetchone()
        return self.row_to_dict(row)

    def list_all(self, db) -> list[dict]:
        rows = db.execute(
            self._SELECT + " WHERE a.tenant_id = ? ORDER BY a.created_at DESC, a.id DESC",
            (self.tenant_id,),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def latest_for_quote(self, db, quote_id: int) -> dict | None:
        row = db.execute(
            self._SELECT + " WHERE a.quote_id = ? AND a.tenant_id = ? ORDER BY a.id DESC LIMIT 1",
            (quote_id, self.tenant_id),
        ).fetchone()
        return self.row_to_dict(row)

    def create(
        self,
        db,
        *,
        quote_id: int,
        response_id: int | None,
        level: dict,
        amount: float,
        requested_by: str | None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO approvals (
                quote_id, approval_level_id, response_id, level_name, amount, approvers,
                status, requested_by, tenant_id
            )
            VALUES (?, ?, ?, ?, ?, ?, 'pending', ?, ?)
            RETURNING id
            """,
            (
                quote_id,
                level["id"],
                response_id,
                level["name"],
                amount,
                self.dump_json(level.get("approvers") or []),
                requested_by,
                self.tenant_id,
            ),
        )
        return self.inserted_id(cursor)

    def decide(self, db, approval_id: int, *, status: str, comments: str | None, decided_by: str | None, decided_at: str) -> None:
        self.update_fields(
            db,
            "approvals",
            approval_id,
            {"status": status, "comments": comments, "decided_by": decided_by, "decided_at": decided_at},
        )
