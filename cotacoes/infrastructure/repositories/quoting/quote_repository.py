from __future__ import annotations

from typing import List

from cotacoes.domain.contracts import QuoteItemInput
from cotacoes.infrastructure.repositories.base import BaseRepository


class QuoteRepository(BaseRepository):
    def get_by_id(self, db, quote_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT *
            FROM quotes
            WHERE id = ? AND tenant_id = ?
            LIMIT 1
            """,
            (quote_id, self.tenant_id),
        ).fetchone()
        return self.row_to_dict(row)

    def list_all(self, db) -> list[dict]:
        rows = db.execute(
            """
            SELECT *
            FROM quotes
            WHERE tenant_id = ?
            ORDER BY created_at DESC, id DESC
            """,
            (self.tenant_id,),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_for_supplier(self, db, supplier_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT q.*
            FROM quotes q
            WHERE q.tenant_id = ?
              AND (
                q.supplier_id = ?
                OR EXISTS (
                    SELECT 1 FROM quote_suppliers qs
                    WHERE qs.quote_id = q.id AND qs.supplier_id = ? AND qs.tenant_id = q.tenant_id
                )
              )
            ORDER BY q.created_at DESC, q.id DESC
            """,
            (self.tenant_id, supplier_id, supplier_id),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def create(
        self,
        db,
        *,
        title: str,
        description: str | None,
        deadline: str | None,
        budget: float | None,
        created_by: str | None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO quotes (title, description, deadline, budget, status, created_by, tenant_id)
            VALUES (?, ?, ?, ?, 'draft', ?, ?)
            RETURNING id
            """,
            (title, description, deadline, budget, created_by, self.tenant_id),
        )
        quote_id = self.inserted_id(cursor)
        db.execute(
            "UPDATE quotes SET local_code = ? WHERE id = ? AND tenant_id = ?",
            (f"RFQ{quote_id:06d}", quote_id, self.tenant_id),
        )
        return quote_id

    def update(self, db, quote_id: int, fields: dict) -> None:
        self.update_fields(db, "quotes", quote_id, fields)

    def set_status(self, db, quote_id: int, status: str, **extra) -> None:
        self.update_fields(db, "quotes", quote_id, {"status": status, **extra})

    def delete(self, db, quote_id: int) -> None:
        db.execute("DELETE FROM quote_items WHERE quote_id = ? AND tenant_id = ?", (quote_id, self.tenant_id))
        db.execute("DELETE FROM quote_suppliers WHERE quote_id = ? AND tenant_id = ?", (quote_id, self.tenant_id))
        db.execute("DELETE FROM status_events WHERE entity = 'quote' AND entity_id = ? AND tenant_id = ?", (quote_id, self.tenant_id))
        db.execute("DELETE FROM quotes WHERE id = ? AND tenant_id = ?", (quote_id, self.tenant_id))

    def replace_items(self, db, quote_id: int, items: List[QuoteItemInput]) -> int:
        db.execute("DELETE FROM quote_items WHERE quote_id = ? AND tenant_id = ?", (quote_id, self.tenant_id))
        for line_no, item in enumerate(items, start=1):
            db.execute(
                """
                INSERT INTO quote_items (quote_id, line_no, description, quantity, unit, category_id, tenant_id)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (quote_id, line_no, item.description, item.quantity, item.unit, item.category_id, self.tenant_id),
            )
        db.execute(
            "UPDATE quotes SET items_count = ? WHERE id = ? AND tenant_id = ?",
            (len(items), quote_id, self.tenant_id),
        )
        return len(items)

    def list_items(self, db, quote_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT qi.id, qi.line_no, qi.description, qi.quantity, qi.unit, qi.category_id,
                   pc.name AS category_name
            FROM quote_items qi
            LEFT JOIN product_categories pc ON pc.id = qi.category_id AND pc.tenant_id = qi.tenant_id
            WHERE qi.quote_id = ? AND qi.tenant_id = ?
            ORDER BY qi.line_no, qi.id
            """,
            (quote_id, self.tenant_id),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def add_supplier(
        self,
        db,
        quote_id: int,
        supplier_id: int,
        sent_at: str,
        *,
        response_token: str,
        short_code: str,
        token_expires_at: str,
    ) -> bool:
        existing = db.execute(
            "SELECT id FROM quote_suppliers WHERE quote_id = ? AND supplier_id = ? AND tenant_id = ?",
            (quote_id, supplier_id, self.tenant_id),
        ).fetchone()
        if existing:
            return False
        db.execute(
            """
            INSERT INTO quote_suppliers (
                quote_id, supplier_id, status, sent_at, response_token, short_code, token_expires_at, tenant_id
            )
            VALUES (?, ?, 'sent', ?, ?, ?, ?, ?)
            """,
            (quote_id, supplier_id, sent_at, response_token, short_code, token_expires_at, self.tenant_id),
        )
        return True

    def list_suppliers(self, db, quote_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT qs.supplier_id, qs.status, qs.sent_at, qs.short_code, qs.token_expires_at,
                   qs.reminder_status, qs.last_reminder_at, s.name, s.email, s.cnpj
            FROM quote_suppliers qs
            JOIN suppliers s ON s.id = qs.supplier_id
            WHERE qs.quote_id = ? AND qs.tenant_id = ?
            ORDER BY s.name, qs.supplier_id
            """,
            (quote_id, self.tenant_id),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_reminder_candidates(
        self, db, *, now: str, sent_before: str, reminded_before: str, quote_id: int | None = None
    ) -> list[dict]:
        """Invited suppliers that have not answered a quote still open to proposals."""
        sql = """
            SELECT qs.id, qs.quote_id, qs.supplier_id, qs.short_code, qs.reminder_status, qs.token_expires_at,
                   q.title, q.local_code, q.deadline, s.name AS supplier_name, s.email AS supplier_email
            FROM quote_suppliers qs
            JOIN quotes q ON q.id = qs.quote_id AND q.tenant_id = qs.tenant_id
            JOIN suppliers s ON s.id = qs.supplier_id
            WHERE qs.tenant_id = ?
              AND qs.status = 'sent'
              AND qs.reminder_status IN ('pending', 'reminded_once')
              AND q.status IN ('sent', 'receiving')
              AND qs.sent_at <= ?
              AND (qs.last_reminder_at IS NULL OR qs.last_reminder_at <= ?)
              AND (qs.token_expires_at IS NULL OR qs.token_expires_at > ?)
        """
        params: list = [self.tenant_id, sent_before, reminded_before, now]
        if quote_id is not None:
            sql += " AND qs.quote_id = ?"
            params.append(quote_id)
        rows = db.execute(sql + " ORDER BY qs.quote_id, qs.id", params).fetchall()
        return self.rows_to_dicts(rows)

    def mark_reminded(self, db, row_id: int, *, reminder_status: str, reminded_at: str) -> None:
        db.execute(
            """
            UPDATE quote_suppliers
            SET reminder_status = ?, last_reminder_at = ?
            WHERE id = ? AND tenant_id = ?
            """,
            (reminder_status, reminded_at, row_id, self.tenant_id),
        )

    def supplier_invited(self, db, quote_id: int, supplier_id: int) -> bool:
        row = db.execute(
            "SELECT 1 FROM quote_suppliers WHERE quote_id = ? AND supplier_id = ? AND tenant_id = ?",
            (quote_id, supplier_id, self.tenant_id),
        ).fetchone()
        return row is not None

    def mark_supplier_responded(self, db, quote_id: int, supplier_id: int) -> None:
        db.execute(
            """
            UPDATE quote_suppliers
            SET status = 'responded'
            WHERE quote_id = ? AND supplier_id = ? AND tenant_id = ?
            """,
            (quote_id, supplier_id, self.tenant_id),
        )

    def refresh_counters(self, db, quote_id: int) -> None:
        db.execute(
            """
            UPDATE quotes
            SET suppliers_sent_count = (
                    SELECT COUNT(*) FROM quote_suppliers WHERE quote_id = ? AND tenant_id = ?
                ),
                responses_count = (
                    SELECT COUNT(*) FROM quote_responses WHERE quote_id = ? AND tenant_id = ?
                )
            WHERE id = ? AND tenant_id = ?
            """,
            (quote_id, self.tenant_id, quote_id, self.tenant_id, quote_id, self.tenant_id),
        )


class QuoteResponseTokenRepository:
    """Lookups by the supplier's quick-response link, which carries no tenant session."""

    @staticmethod
    def find_by_token(db, token: str) -> dict | None:
        row = db.execute(
            """
            SELECT qs.id, qs.quote_id, qs.supplier_id, qs.status, qs.token_expires_at, qs.tenant_id,
                   q.title, q.description, q.local_code, q.deadline, q.status AS quote_status,
                   s.name AS supplier_name, s.email AS supplier_email
            FROM quote_suppliers qs
            JOIN quotes q ON q.id = qs.quote_id AND q.tenant_id = qs.tenant_id
            JOIN suppliers s ON s.id = qs.supplier_id
            WHERE qs.short_code = ? OR qs.response_token = ?
            LIMIT 1
            """,
            (token, token),
        ).fetchone()
        return dict(row) if row else None
