from __future__ import annotations

from typing import Iterable

from cotacoes.domain.contracts import SupplierInput
from cotacoes.infrastructure.repositories.base import BaseRepository


class SupplierRepository(BaseRepository):
    json_columns = ("specialties",)

    def get_by_id(self, db, supplier_id: int) -> dict | None:
        row = db.execute(
            "SELECT * FROM suppliers WHERE id = ? AND tenant_id = ? LIMIT 1",
            (supplier_id, self.tenant_id),
        ).fetchone()
        return self.row_to_dict(row)

    def find_by_cnpj(self, db, cnpj: str) -> dict | None:
        row = db.execute(
            "SELECT * FROM suppliers WHERE cnpj = ? AND tenant_id = ? LIMIT 1",
            (cnpj, self.tenant_id),
        ).fetchone()
        return self.row_to_dict(row)

    def list_all(self, db) -> list[dict]:
        rows = db.execute(
            """
            SELECT *
            FROM suppliers
            WHERE tenant_id = ?
            ORDER BY name, id
            """,
            (self.tenant_id,),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_by_ids(self, db, supplier_ids: Iterable[int]) -> list[dict]:
        ids = sorted({int(value) for value in supplier_ids})
        if not ids:
            return []
        placeholders = ", ".join("?" for _ in ids)
        rows = db.execute(
            f"""
            SELECT *
            FROM suppliers
            WHERE tenant_id = ? AND id IN ({placeholders})
            ORDER BY name, id
            """,
            (self.tenant_id, *ids),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def create(self, db, supplier: SupplierInput, *, cnpj: str) -> int:
        cursor = db.execute(
            """
            INSERT INTO suppliers (
                name, trade_name, cnpj, email, phone, city, state, specialties, status, notes, tenant_id
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'pending', ?, ?)
            RETURNING id
            """,
            (
                supplier.name,
                supplier.trade_name,
                cnpj,
                supplier.email,
                supplier.phone,
                supplier.city,
                supplier.state,
                self.dump_json(list(supplier.specialties or [])),
                supplier.notes,
                self.tenant_id,
            ),
        )
        return self.inserted_id(cursor)

    def update(self, db, supplier_id: int, fields: dict) -> None:
        if "specialties" in fields:
            fields = {**fields, "specialties": self.dump_json(list(fields["specialties"] or []))}
        self.update_fields(db, "suppliers", supplier_id, fields)


class SupplierDocumentRepository(BaseRepository):
    _SELECT = """
        SELECT d.*, s.name AS supplier_name
        FROM supplier_documents d
        JOIN suppliers s ON s.id = d.supplier_id
    """

    def get_by_id(self, db, document_id: int) -> dict | None:
        row = db.execute(
            self._SELECT + " WHERE d.id = ? AND d.tenant_id = ? LIMIT 1",
            (document_id, self.tenant_id),
        ).fetchone()
        return self.row_to_dict(row)

    def list_all(self, db) -> list[dict]:
        rows = db.execute(
            self._SELECT + " WHERE d.tenant_id = ? ORDER BY d.created_at DESC, d.id DESC",
            (self.tenant_id,),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_for_supplier(self, db, supplier_id: int) -> list[dict]:
        rows = db.execute(
            self._SELECT + " WHERE d.tenant_id = ? AND d.supplier_id = ? ORDER BY d.created_at DESC, d.id DESC",
            (self.tenant_id, supplier_id),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_validated_with_expiry(self, db) -> list[dict]:
        rows = db.execute(
            self._SELECT
            + " WHERE d.tenant_id = ? AND d.status = 'validated' AND d.expiry_date IS NOT NULL ORDER BY d.id",
            (self.tenant_id,),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def create(
        self,
        db,
        *,
        supplier_id: int,
        document_type: str,
        document_name: str,
        file_path: str,
        file_size: int,
        mime_type: str | None,
        expiry_date: str | None,
        notes: str | None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO supplier_documents (
                supplier_id, document_type, document_name, file_path, file_size, mime_type,
                status, expiry_date, notes, tenant_id
            )
            VALUES (?, ?, ?, ?, ?, ?, 'pending', ?, ?, ?)
            RETURNING id
            """,
            (
                supplier_id,
                document_type,
                document_name,
                file_path,
                file_size,
                mime_type,
                expiry_date,
                notes,
                self.tenant_id,
            ),
        )
        return self.inserted_id(cursor)

    def update(self, db, document_id: int, fields: dict) -> None:
        self.update_fields(db, "supplier_documents", document_id, fields)

    def delete(self, db, document_id: int) -> None:
        db.execute(
            "DELETE FROM supplier_documents WHERE id = ? AND tenant_id = ?",
            (document_id, self.tenant_id),
        )
