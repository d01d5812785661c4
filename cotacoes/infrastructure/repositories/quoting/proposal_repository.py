from __future__ import annotations

from cotacoes.domain.contracts import ProposalInput
from cotacoes.infrastructure.repositories.base import BaseRepository


class ProposalRepository(BaseRepository):
    def get_by_id(self, db, response_id: int) -> dict | None:
        row = db.execute(
            "SELECT * FROM quote_responses WHERE id = ? AND tenant_id = ? LIMIT 1",
            (response_id, self.tenant_id),
        ).fetchone()
        return self.row_to_dict(row)

    def find_for_supplier(self, db, quote_id: int, supplier_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT *
            FROM quote_responses
            WHERE quote_id = ? AND supplier_id = ? AND tenant_id = ?
            LIMIT 1
            """,
            (quote_id, supplier_id, self.tenant_id),
        ).fetchone()
        return self.row_to_dict(row)

    def list_for_quote(self, db, quote_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT *
            FROM quote_responses
            WHERE quote_id = ? AND tenant_id = ?
            ORDER BY total_amount ASC, id ASC
            """,
            (quote_id, self.tenant_id),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def create(self, db, proposal: ProposalInput, supplier_name: str) -> int:
        cursor = db.execute(
            """
            INSERT INTO quote_responses (
                quote_id, supplier_id, supplier_name, total_amount, delivery_time_days,
                payment_terms, notes, status, tenant_id
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, 'pending', ?)
            RETURNING id
            """,
            (
                proposal.quote_id,
                proposal.supplier_id,
                supplier_name,
                proposal.total_amount,
                proposal.delivery_time_days,
                proposal.payment_terms,
                proposal.notes,
                self.tenant_id,
            ),
        )
        return self.inserted_id(cursor)

    def update_amounts(self, db, response_id: int, proposal: ProposalInput) -> None:
        self.update_fields(
            db,
            "quote_responses",
            response_id,
            {
                "total_amount": proposal.total_amount,
                "delivery_time_days": proposal.delivery_time_days,
                "payment_terms": proposal.payment_terms,
                "notes": proposal.notes,
            },
        )

    def set_decision(self, db, response_id: int, status: str, *, note: str | None, decided_at: str) -> None:
        self.update_fields(
            db,
            "quote_responses",
            response_id,
            {"status": status, "decision_note": note, "decided_at": decided_at},
        )

    def reject_other_pending(self, db, quote_id: int, keep_response_id: int, *, note: str, decided_at: str) -> list[int]:
        rows = db.execute(
            """
            SELECT id, supplier_id
            FROM quote_responses
            WHERE quote_id = ? AND id <> ? AND status = 'pending' AND tenant_id = ?
            """,
            (quote_id, keep_response_id, self.tenant_id),
        ).fetchall()
        supplier_ids = [int(row["supplier_id"]) for row in rows]
        db.execute(
            """
            UPDATE quote_responses
            SET status = 'rejected', decision_note = ?, decided_at = ?, updated_at = CURRENT_TIMESTAMP
            WHERE quote_id = ? AND id <> ? AND status = 'pending' AND tenant_id = ?
            """,
            (note, decided_at, quote_id, keep_response_id, self.tenant_id),
        )
        return supplier_ids
