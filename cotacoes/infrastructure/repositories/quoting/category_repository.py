from __future__ import annotations

from typing import Dict

from cotacoes.infrastructure.repositories.base import BaseRepository


class CategoryRepository(BaseRepository):
    def get_by_id(self, db, category_id: int) -> dict | None:
        row = db.execute(
            "SELECT * FROM product_categories WHERE id = ? AND tenant_id = ? LIMIT 1",
            (category_id, self.tenant_id),
        ).fetchone()
        return self.row_to_dict(row)

    def find_by_name(self, db, name: str) -> dict | None:
        row = db.execute(
            "SELECT * FROM product_categories WHERE LOWER(name) = LOWER(?) AND tenant_id = ? LIMIT 1",
            (name, self.tenant_id),
        ).fetchone()
        return self.row_to_dict(row)

    def list_all(self, db) -> list[dict]:
        rows = db.execute(
            "SELECT * FROM product_categories WHERE tenant_id = ? ORDER BY name, id",
            (self.tenant_id,),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def create(self, db, *, name: str, description: str | None, color: str | None) -> int:
        cursor = db.execute(
            """
            INSERT INTO product_categories (name, description, color, tenant_id)
            VALUES (?, ?, ?, ?)
            RETURNING id
            """,
            (name, description, color, self.tenant_id),
        )
        return self.inserted_id(cursor)

    def update(self, db, category_id: int, fields: dict) -> None:
        self.update_fields(db, "product_categories", category_id, fields)

    def delete(self, db, category_id: int) -> None:
        db.execute(
            "DELETE FROM product_categories WHERE id = ? AND tenant_id = ?",
            (category_id, self.tenant_id),
        )

    def usage_counts(self, db) -> Dict[int, int]:
        rows = db.execute(
            """
            SELECT category_id, COUNT(*) AS total
            FROM quote_items
            WHERE tenant_id = ? AND category_id IS NOT NULL
            GROUP BY category_id
            """,
            (self.tenant_id,),
        ).fetchall()
        return {int(row["category_id"]): int(row["total"]) for row in rows}
