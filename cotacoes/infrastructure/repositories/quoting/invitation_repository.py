from __future__ import annotations

from typing import Iterable

from cotacoes.clock import is_past, parse_timestamp
from cotacoes.infrastructure.repositories.base import BaseRepository


class InvitationLetterRepository(BaseRepository):
    def get_by_id(self, db, letter_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT l.*, q.local_code AS quote_code, q.title AS quote_title
            FROM invitation_letters l
            LEFT JOIN quotes q ON q.id = l.quote_id
            WHERE l.id = ? AND l.tenant_id = ?
            LIMIT 1
            """,
            (letter_id, self.tenant_id),
        ).fetchone()
        return self.row_to_dict(row)

    def list_all(self, db) -> list[dict]:
        rows = db.execute(
            """
            SELECT l.*, q.local_code AS quote_code,
                   (SELECT COUNT(*) FROM invitation_letter_suppliers ls
                    WHERE ls.invitation_letter_id = l.id) AS suppliers_count
            FROM invitation_letters l
            LEFT JOIN quotes q ON q.id = l.quote_id
            WHERE l.tenant_id = ?
            ORDER BY l.created_at DESC, l.id DESC
            """,
            (self.tenant_id,),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def next_letter_number(self, db, year: int) -> str:
        prefix = f"CC-{year}-"
        row = db.execute(
            """
            SELECT letter_number
            FROM invitation_letters
            WHERE tenant_id = ? AND letter_number LIKE ?
            ORDER BY letter_number DESC
            LIMIT 1
            """,
            (self.tenant_id, prefix + "%"),
        ).fetchone()
        sequence = 1
        if row:
            try:
                sequence = int(str(row["letter_number"]).rsplit("-", 1)[-1]) + 1
            except ValueError:
                sequence = 1
        return f"{prefix}{sequence:04d}"

    def create(
        self,
        db,
        *,
        letter_number: str,
        quote_id: int | None,
        title: str,
        description: str | None,
        deadline: str,
        created_by: str | None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO invitation_letters (
                letter_number, quote_id, title, description, deadline, status, created_by, tenant_id
            )
            VALUES (?, ?, ?, ?, ?, 'draft', ?, ?)
            RETURNING id
            """,
            (letter_number, quote_id, title, description, deadline, created_by, self.tenant_id),
        )
        return self.inserted_id(cursor)

    def update(self, db, letter_id: int, fields: dict) -> None:
        self.update_fields(db, "invitation_letters", letter_id, fields)

    def delete(self, db, letter_id: int) -> None:
        db.execute(
            "DELETE FROM invitation_letter_suppliers WHERE invitation_letter_id = ? AND tenant_id = ?",
            (letter_id, self.tenant_id),
        )
        db.execute(
            "DELETE FROM invitation_letters WHERE id = ? AND tenant_id = ?",
            (letter_id, self.tenant_id),
        )

    def replace_suppliers(self, db, letter_id: int, supplier_ids: Iterable[int]) -> int:
        db.execute(
            "DELETE FROM invitation_letter_suppliers WHERE invitation_letter_id = ? AND tenant_id = ?",
            (letter_id, self.tenant_id),
        )
        count = 0
        for supplier_id in sorted({int(value) for value in supplier_ids}):
            db.execute(
                """
                INSERT INTO invitation_letter_suppliers (invitation_letter_id, supplier_id, response_status, tenant_id)
                VALUES (?, ?, 'pending', ?)
                """,
                (letter_id, supplier_id, self.tenant_id),
            )
            count += 1
        return count

    def list_suppliers(self, db, letter_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT ls.*, s.name AS supplier_name, s.email AS supplier_email
            FROM invitation_letter_suppliers ls
            JOIN suppliers s ON s.id = ls.supplier_id
            WHERE ls.invitation_letter_id = ? AND ls.tenant_id = ?
            ORDER BY s.name, ls.id
            """,
            (letter_id, self.tenant_id),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def mark_supplier_sent(self, db, row_id: int, *, sent_at: str, token: str, token_expires_at: str) -> None:
        db.execute(
            """
            UPDATE invitation_letter_suppliers
            SET sent_at = ?, response_token = ?, token_expires_at = ?
            WHERE id = ? AND tenant_id = ?
            """,
            (sent_at, token, token_expires_at, row_id, self.tenant_id),
        )

    def expire_open_tokens(self, db, now_iso: str) -> int:
        rows = db.execute(
            """
            SELECT id, token_expires_at
            FROM invitation_letter_suppliers
            WHERE tenant_id = ? AND response_status = 'pending' AND response_token IS NOT NULL
            """,
            (self.tenant_id,),
        ).fetchall()

        reference = parse_timestamp(now_iso)
        expired_ids = [int(row["id"]) for row in rows if is_past(row["token_expires_at"], now=reference)]
        for row_id in expired_ids:
            db.execute(
                """
                UPDATE invitation_letter_suppliers
                SET response_token = NULL
                WHERE id = ? AND tenant_id = ?
                """,
                (row_id, self.tenant_id),
            )
        return len(expired_ids)


class InvitationResponseRepository:
    """Token-addressed access for the public response pages, which have no tenant session."""

    @staticmethod
    def find_by_token(db, token: str) -> dict | None:
        row = db.execute(
            """
            SELECT ls.*, l.letter_number, l.title, l.description, l.deadline, l.status AS letter_status,
                   l.tenant_id AS letter_tenant_id, l.created_by AS letter_created_by, s.name AS supplier_name
            FROM invitation_letter_suppliers ls
            JOIN invitation_letters l ON l.id = ls.invitation_letter_id
            JOIN suppliers s ON s.id = ls.supplier_id
            WHERE ls.response_token = ?
            LIMIT 1
            """,
            (token,),
        ).fetchone()
        return dict(row) if row else None

    @staticmethod
    def mark_viewed(db, row_id: int, viewed_at: str) -> None:
        db.execute(
            "UPDATE invitation_letter_suppliers SET viewed_at = ? WHERE id = ? AND viewed_at IS NULL",
            (viewed_at, row_id),
        )

    @staticmethod
    def save_response(db, row_id: int, *, status: str, notes: str | None, responded_at: str) -> None:
        db.execute(
            """
            UPDATE invitation_letter_suppliers
            SET response_status = ?, response_notes = ?, response_date = ?,
                viewed_at = COALESCE(viewed_at, ?)
            WHERE id = ?
            """,
            (status, notes, responded_at, responded_at, row_id),
        )
