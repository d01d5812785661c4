from __future__ import annotations

from werkzeug.security import generate_password_hash

from cotacoes.db import ensure_tenant


class AuthRepository:
    def find_user_by_email(self, db, email: str) -> dict | None:
        row = db.execute(
            """
            SELECT email, password_hash, display_name, role, supplier_id, tenant_id
            FROM auth_users
            WHERE email = ?
            """,
            (email,),
        ).fetchone()
        if not row:
            return None
        return dict(row)

    def tenant_exists(self, db, tenant_id: str) -> bool:
        row = db.execute("SELECT 1 FROM tenants WHERE id = ? LIMIT 1", (tenant_id,)).fetchone()
        return bool(row)

    def create_user(
        self,
        db,
        *,
        email: str,
        password: str,
        display_name: str | None,
        tenant_id: str,
        role: str = "collaborator",
        supplier_id: int | None = None,
    ) -> None:
        db.execute(
            """
            INSERT INTO auth_users (email, password_hash, display_name, role, supplier_id, tenant_id)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (email, generate_password_hash(password), display_name, role, supplier_id, tenant_id),
        )

    def tenant_name(self, db, tenant_id: str) -> str | None:
        row = db.execute("SELECT name FROM tenants WHERE id = ? LIMIT 1", (tenant_id,)).fetchone()
        return str(row["name"]) if row else None

    def ensure_tenant(self, db, tenant_id: str, name: str | None = None) -> None:
        ensure_tenant(db, tenant_id, name)

    def list_tenant_ids(self, db) -> list[str]:
        # Tenants reached only through the X-Tenant-Id header own rows without a tenants entry.
        rows = db.execute(
            """
            SELECT id FROM tenants
            UNION SELECT DISTINCT tenant_id FROM payments
            UNION SELECT DISTINCT tenant_id FROM supplier_documents
            UNION SELECT DISTINCT tenant_id FROM invitation_letters
            UNION SELECT DISTINCT tenant_id FROM quote_suppliers
            """
        ).fetchall()
        return sorted({str(row["id"]) for row in rows if row["id"]})
