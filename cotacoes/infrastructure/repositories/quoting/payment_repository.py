from __future__ import annotations

from cotacoes.infrastructure.repositories.base import BaseRepository


class PaymentRepository(BaseRepository):
    _SELECT = """
        SELECT p.*, q.title AS quote_title, q.local_code AS quote_code, q.created_by AS quote_owner,
               s.name AS supplier_name
        FROM payments p
        JOIN quotes q ON q.id = p.quote_id AND q.tenant_id = p.tenant_id
        LEFT JOIN suppliers s ON s.id = p.supplier_id
    """

    def get_by_id(self, db, payment_id: int) -> dict | None:
        row = db.execute(
            self._SELECT + " WHERE p.id = ? AND p.tenant_id = ? LIMIT 1",
            (payment_id, self.tenant_id),
        ).fetchone()
        return self.row_to_dict(row)

    def get_by_external_reference(self, db, reference: str) -> dict | None:
        row = db.execute(
            self._SELECT + " WHERE p.external_reference = ? AND p.tenant_id = ? LIMIT 1",
            (reference, self.tenant_id),
        ).fetchone()
        return self.row_to_dict(row)

    def list_all(self, db) -> list[dict]:
        rows = db.execute(
            self._SELECT + " WHERE p.tenant_id = ? ORDER BY p.created_at DESC, p.id DESC",
            (self.tenant_id,),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_for_supplier(self, db, supplier_id: int) -> list[dict]:
        rows = db.execute(
            self._SELECT + " WHERE p.tenant_id = ? AND p.supplier_id = ? ORDER BY p.created_at DESC, p.id DESC",
            (self.tenant_id, supplier_id),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_in_escrow(self, db) -> list[dict]:
        rows = db.execute(
            self._SELECT + " WHERE p.tenant_id = ? AND p.status = 'in_escrow' ORDER BY p.id",
            (self.tenant_id,),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def find_active_for_quote(self, db, quote_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT id, status
            FROM payments
            WHERE quote_id = ? AND tenant_id = ? AND status NOT IN ('cancelled', 'refunded')
            LIMIT 1
            """,
            (quote_id, self.tenant_id),
        ).fetchone()
        return self.row_to_dict(row)

    def create(self, db, *, quote_id: int, supplier_id: int | None, amount: float, escrow_release_date: str) -> int:
        cursor = db.execute(
            """
            INSERT INTO payments (quote_id, supplier_id, amount, status, escrow_release_date, tenant_id)
            VALUES (?, ?, ?, 'pending', ?, ?)
            RETURNING id
            """,
            (quote_id, supplier_id, amount, escrow_release_date, self.tenant_id),
        )
        payment_id = self.inserted_id(cursor)
        db.execute(
            "UPDATE payments SET external_reference = ? WHERE id = ? AND tenant_id = ?",
            (f"pay_{self.tenant_id}_{payment_id}", payment_id, self.tenant_id),
        )
        return payment_id

    def update(self, db, payment_id: int, fields: dict) -> None:
        self.update_fields(db, "payments", payment_id, fields)

    def add_transaction(self, db, payment_id: int, transaction_type: str, amount: float, description: str) -> int:
        cursor = db.execute(
            """
            INSERT INTO payment_transactions (payment_id, transaction_type, amount, description, tenant_id)
            VALUES (?, ?, ?, ?, ?)
            RETURNING id
            """,
            (payment_id, transaction_type, amount, description, self.tenant_id),
        )
        return self.inserted_id(cursor)

    def list_transactions(self, db, payment_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT id, transaction_type, amount, description, created_at
            FROM payment_transactions
            WHERE payment_id = ? AND tenant_id = ?
            ORDER BY id
            """,
            (payment_id, self.tenant_id),
        ).fetchall()
        return self.rows_to_dicts(rows)


class DeliveryRepository(BaseRepository):
    bool_columns = ("is_used",)

    def get_by_id(self, db, delivery_id: int) -> dict | None:
        row = db.execute(
            "SELECT * FROM deliveries WHERE id = ? AND tenant_id = ? LIMIT 1",
            (delivery_id, self.tenant_id),
        ).fetchone()
        return self.row_to_dict(row)

    def find_for_payment(self, db, payment_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT *
            FROM deliveries
            WHERE payment_id = ? AND tenant_id = ?
            ORDER BY id DESC
            LIMIT 1
            """,
            (payment_id, self.tenant_id),
        ).fetchone()
        return self.row_to_dict(row)

    def create(self, db, *, payment_id: int, quote_id: int, supplier_id: int | None) -> int:
        cursor = db.execute(
            """
            INSERT INTO deliveries (payment_id, quote_id, supplier_id, status, tenant_id)
            VALUES (?, ?, ?, 'scheduled', ?)
            RETURNING id
            """,
            (payment_id, quote_id, supplier_id, self.tenant_id),
        )
        return self.inserted_id(cursor)

    def update(self, db, delivery_id: int, fields: dict) -> None:
        self.update_fields(db, "deliveries", delivery_id, fields)

    def create_confirmation(self, db, *, delivery_id: int, payment_id: int, code: str, expires_at: str) -> int:
        cursor = db.execute(
            """
            INSERT INTO delivery_confirmations (delivery_id, payment_id, confirmation_code, expires_at, is_used, tenant_id)
            VALUES (?, ?, ?, ?, 0, ?)
            RETURNING id
            """,
            (delivery_id, payment_id, code, expires_at, self.tenant_id),
        )
        return self.inserted_id(cursor)

    def invalidate_open_confirmations(self, db, delivery_id: int, used_at: str) -> None:
        db.execute(
            """
            UPDATE delivery_confirmations
            SET is_used = 1, used_at = ?, used_by = 'regenerated'
            WHERE delivery_id = ? AND tenant_id = ? AND is_used = 0
            """,
            (used_at, delivery_id, self.tenant_id),
        )

    def latest_open_confirmation(self, db, delivery_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT *
            FROM delivery_confirmations
            WHERE delivery_id = ? AND tenant_id = ? AND is_used = 0
            ORDER BY id DESC
            LIMIT 1
            """,
            (delivery_id, self.tenant_id),
        ).fetchone()
        return self.row_to_dict(row)

    @staticmethod
    def find_confirmation_by_code(db, code: str) -> dict | None:
        # Codes are looked up across tenants so a foreign code yields 403 instead of 404.
        row = db.execute(
            """
            SELECT dc.*, d.supplier_id, d.quote_id, d.status AS delivery_status
            FROM delivery_confirmations dc
            JOIN deliveries d ON d.id = dc.delivery_id
            WHERE dc.confirmation_code = ?
            ORDER BY dc.is_used ASC, dc.id DESC
            LIMIT 1
            """,
            (code,),
        ).fetchone()
        if row is None:
            return None
        data = dict(row)
        data["is_used"] = bool(data.get("is_used"))
        return data

    def mark_confirmation_used(self, db, confirmation_id: int, *, used_at: str, used_by: str | None) -> None:
        db.execute(
            """
            UPDATE delivery_confirmations
            SET is_used = 1, used_at = ?, used_by = ?
            WHERE id = ? AND tenant_id = ?
            """,
            (used_at, used_by, confirmation_id, self.tenant_id),
        )

    def revert_confirmation(self, db, confirmation_id: int) -> None:
        db.execute(
            """
            UPDATE delivery_confirmations
            SET is_used = 0, used_at = NULL, used_by = NULL
            WHERE id = ? AND tenant_id = ?
            """,
            (confirmation_id, self.tenant_id),
        )


def find_payment_tenant(db, external_reference: str) -> str | None:
    """Webhooks carry no tenant; the gateway reference resolves it."""
    row = db.execute(
        "SELECT tenant_id FROM payments WHERE external_reference = ? LIMIT 1",
        (external_reference,),
    ).fetchone()
    return str(row["tenant_id"]) if row else None
