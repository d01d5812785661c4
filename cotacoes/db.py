import sqlite3
from typing import Iterable, List

try:
    import psycopg2
    import psycopg2.extras
except ImportError:  # pragma: no cover - optional dependency for postgres
    psycopg2 = None

from flask import current_app, g


DEFAULT_TENANT_ID = "tenant-demo"


class Database:
    def __init__(self, backend: str, connection):
        self.backend = backend
        self._conn = connection
        self._after_commit = []

    def after_commit(self, callback):
        """Runs ``callback`` once the current transaction commits; dropped on rollback."""
        self._after_commit.append(callback)

    def execute(self, sql: str, params: Iterable | None = None):
        if self.backend == "postgres":
            cursor = self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            if params:
                sql = _convert_qmark_to_pg(sql)
                cursor.execute(sql, list(params))
            else:
                cursor.execute(sql)
            return cursor
        return self._conn.execute(sql, params or ())

    def executescript(self, sql: str):
        if self.backend != "postgres":
            return self._conn.executescript(sql)
        for statement in _split_sql_statements(sql):
            if statement.strip():
                self.execute(statement)

    def commit(self):
        self._conn.commit()
        callbacks, self._after_commit = self._after_commit, []
        for callback in callbacks:
            callback()

    def rollback(self):
        self._conn.rollback()
        self._after_commit = []

    def close(self):
        self._after_commit = []
        self._conn.close()


def _split_sql_statements(sql: str) -> List[str]:
    statements = []
    current = []
    in_single = False
    in_dollar = False
    i = 0
    while i < len(sql):
        ch = sql[i]
        if not in_single and sql[i : i + 2] == "$$":
            in_dollar = not in_dollar
            current.append("$$")
            i += 2
            continue
        if not in_dollar:
            if ch == "'":
                in_single = not in_single
            elif ch == ";" and not in_single:
                statements.append("".join(current))
                current = []
                i += 1
                continue
        current.append(ch)
        i += 1
    if current:
        statements.append("".join(current))
    return statements


def _convert_qmark_to_pg(sql: str) -> str:
    return sql.replace("?", "%s")


def _connect_database(db_path: str) -> Database:
    if db_path.lower().startswith("postgres"):
        if psycopg2 is None:
            raise RuntimeError("psycopg2 nao instalado.")
        conn = psycopg2.connect(db_path)
        conn.autocommit = False
        return Database("postgres", conn)

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return Database("sqlite", conn)


def get_db():
    if "db" not in g:
        db_path = current_app.config["DB_PATH"]
        g.db = _connect_database(db_path)
    return g.db


def close_db(_error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db():
    db = get_db()
    if db.backend == "postgres":
        _init_db_postgres(db)
        return

    _init_db_sqlite(db)


# Column placeholders resolved per backend by _render_ddl.
_SQLITE_TYPES = {
    "pk": "INTEGER PRIMARY KEY AUTOINCREMENT",
    "ts": "TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP",
    "money": "REAL",
}
_POSTGRES_TYPES = {
    "pk": "SERIAL PRIMARY KEY",
    "ts": "TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP",
    "money": "DOUBLE PRECISION",
}


SCHEMA_TABLES: List[tuple[str, str]] = [
    (
        "tenants",
        """
        CREATE TABLE IF NOT EXISTS tenants (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            subdomain TEXT UNIQUE,
            created_at {ts}
        )
        """,
    ),
    (
        "auth_users",
        """
        CREATE TABLE IF NOT EXISTS auth_users (
            id {pk},
            email TEXT NOT NULL UNIQUE,
            password_hash TEXT NOT NULL,
            display_name TEXT,
            role TEXT NOT NULL DEFAULT 'collaborator' CHECK (
                role IN ('admin','manager','collaborator','supplier')
            ),
            supplier_id INTEGER,
            tenant_id TEXT NOT NULL,
            created_at {ts},
            updated_at {ts}
        )
        """,
    ),
    (
        "suppliers",
        """
        CREATE TABLE IF NOT EXISTS suppliers (
            id {pk},
            name TEXT NOT NULL,
            trade_name TEXT,
            cnpj TEXT NOT NULL,
            email TEXT,
            phone TEXT,
            city TEXT,
            state TEXT,
            specialties TEXT NOT NULL DEFAULT '[]',
            status TEXT NOT NULL DEFAULT 'pending' CHECK (
                status IN ('pending','active','inactive')
            ),
            notes TEXT,
            tenant_id TEXT NOT NULL,
            created_at {ts},
            updated_at {ts},
            UNIQUE (tenant_id, cnpj)
        )
        """,
    ),
    (
        "supplier_documents",
        """
        CREATE TABLE IF NOT EXISTS supplier_documents (
            id {pk},
            supplier_id INTEGER NOT NULL REFERENCES suppliers(id) ON DELETE CASCADE,
            document_type TEXT NOT NULL,
            document_name TEXT NOT NULL,
            file_path TEXT NOT NULL,
            file_size INTEGER NOT NULL DEFAULT 0,
            mime_type TEXT,
            status TEXT NOT NULL DEFAULT 'pending' CHECK (
                status IN ('pending','validated','rejected','expired')
            ),
            expiry_date TEXT,
            validated_at TEXT,
            validated_by TEXT,
            rejection_reason TEXT,
            notes TEXT,
            tenant_id TEXT NOT NULL,
            created_at {ts},
            updated_at {ts}
        )
        """,
    ),
    (
        "product_categories",
        """
        CREATE TABLE IF NOT EXISTS product_categories (
            id {pk},
            name TEXT NOT NULL,
            description TEXT,
            color TEXT,
            tenant_id TEXT NOT NULL,
            created_at {ts},
            updated_at {ts},
            UNIQUE (tenant_id, name)
        )
        """,
    ),
    (
        "quotes",
        """
        CREATE TABLE IF NOT EXISTS quotes (
            id {pk},
            local_code TEXT,
            title TEXT NOT NULL,
            description TEXT,
            status TEXT NOT NULL DEFAULT 'draft' CHECK (
                status IN ('draft','sent','receiving','received','under_review','approved','rejected','finalized','cancelled')
            ),
            deadline TEXT,
            budget {money},
            items_count INTEGER NOT NULL DEFAULT 0,
            responses_count INTEGER NOT NULL DEFAULT 0,
            suppliers_sent_count INTEGER NOT NULL DEFAULT 0,
            supplier_id INTEGER,
            supplier_name TEXT,
            approved_amount {money},
            cancellation_reason TEXT,
            created_by TEXT,
            tenant_id TEXT NOT NULL,
            created_at {ts},
            updated_at {ts}
        )
        """,
    ),
    (
        "quote_items",
        """
        CREATE TABLE IF NOT EXISTS quote_items (
            id {pk},
            quote_id INTEGER NOT NULL REFERENCES quotes(id) ON DELETE CASCADE,
            line_no INTEGER NOT NULL DEFAULT 1,
            description TEXT NOT NULL,
            quantity {money} NOT NULL DEFAULT 1,
            unit TEXT NOT NULL DEFAULT 'UN',
            category_id INTEGER REFERENCES product_categories(id),
            tenant_id TEXT NOT NULL,
            created_at {ts}
        )
        """,
    ),
    (
        "quote_suppliers",
        """
        CREATE TABLE IF NOT EXISTS quote_suppliers (
            id {pk},
            quote_id INTEGER NOT NULL REFERENCES quotes(id) ON DELETE CASCADE,
            supplier_id INTEGER NOT NULL REFERENCES suppliers(id),
            status TEXT NOT NULL DEFAULT 'sent' CHECK (status IN ('sent','responded')),
            sent_at TEXT,
            response_token TEXT UNIQUE,
            short_code TEXT UNIQUE,
            token_expires_at TEXT,
            reminder_status TEXT NOT NULL DEFAULT 'pending' CHECK (
                reminder_status IN ('pending','reminded_once','reminded_twice')
            ),
            last_reminder_at TEXT,
            tenant_id TEXT NOT NULL,
            UNIQUE (quote_id, supplier_id)
        )
        """,
    ),
    (
        "quote_responses",
        """
        CREATE TABLE IF NOT EXISTS quote_responses (
            id {pk},
            quote_id INTEGER NOT NULL REFERENCES quotes(id) ON DELETE CASCADE,
            supplier_id INTEGER NOT NULL REFERENCES suppliers(id),
            supplier_name TEXT,
            total_amount {money} NOT NULL,
            delivery_time_days INTEGER NOT NULL DEFAULT 0,
            payment_terms TEXT,
            notes TEXT,
            status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending','approved','rejected')),
            decision_note TEXT,
            decided_at TEXT,
            tenant_id TEXT NOT NULL,
            created_at {ts},
            updated_at {ts},
            UNIQUE (quote_id, supplier_id)
        )
        """,
    ),
    (
        "approval_levels",
        """
        CREATE TABLE IF NOT EXISTS approval_levels (
            id {pk},
            name TEXT NOT NULL,
            amount_threshold {money} NOT NULL DEFAULT 0,
            order_level INTEGER NOT NULL DEFAULT 1,
            approvers TEXT NOT NULL DEFAULT '[]',
            active INTEGER NOT NULL DEFAULT 1,
            tenant_id TEXT NOT NULL,
            created_at {ts},
            updated_at {ts}
        )
        """,
    ),
    (
        "approvals",
        """
        CREATE TABLE IF NOT EXISTS approvals (
            id {pk},
            quote_id INTEGER NOT NULL REFERENCES quotes(id) ON DELETE CASCADE,
            approval_level_id INTEGER REFERENCES approval_levels(id) ON DELETE SET NULL,
            response_id INTEGER REFERENCES quote_responses(id) ON DELETE SET NULL,
            level_name TEXT,
            amount {money} NOT NULL DEFAULT 0,
            approvers TEXT NOT NULL DEFAULT '[]',
            status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending','approved','rejected')),
            comments TEXT,
            requested_by TEXT,
            decided_by TEXT,
            decided_at TEXT,
            tenant_id TEXT NOT NULL,
            created_at {ts},
            updated_at {ts}
        )
        """,
    ),
    (
        "payments",
        """
        CREATE TABLE IF NOT EXISTS payments (
            id {pk},
            quote_id INTEGER NOT NULL REFERENCES quotes(id),
            supplier_id INTEGER REFERENCES suppliers(id),
            amount {money} NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending' CHECK (
                status IN ('pending','in_escrow','completed','disputed','cancelled','overdue','refunded')
            ),
            escrow_release_date TEXT,
            paid_at TEXT,
            released_at TEXT,
            dispute_reason TEXT,
            external_reference TEXT,
            tenant_id TEXT NOT NULL,
            created_at {ts},
            updated_at {ts}
        )
        """,
    ),
    (
        "payment_transactions",
        """
        CREATE TABLE IF NOT EXISTS payment_transactions (
            id {pk},
            payment_id INTEGER NOT NULL REFERENCES payments(id) ON DELETE CASCADE,
            transaction_type TEXT NOT NULL,
            amount {money} NOT NULL DEFAULT 0,
            description TEXT,
            tenant_id TEXT NOT NULL,
            created_at {ts}
        )
        """,
    ),
    (
        "deliveries",
        """
        CREATE TABLE IF NOT EXISTS deliveries (
            id {pk},
            payment_id INTEGER NOT NULL REFERENCES payments(id) ON DELETE CASCADE,
            quote_id INTEGER NOT NULL REFERENCES quotes(id),
            supplier_id INTEGER REFERENCES suppliers(id),
            status TEXT NOT NULL DEFAULT 'scheduled' CHECK (status IN ('scheduled','delivered','cancelled')),
            delivered_at TEXT,
            confirmed_by TEXT,
            tenant_id TEXT NOT NULL,
            created_at {ts},
            updated_at {ts}
        )
        """,
    ),
    (
        "delivery_confirmations",
        """
        CREATE TABLE IF NOT EXISTS delivery_confirmations (
            id {pk},
            delivery_id INTEGER NOT NULL REFERENCES deliveries(id) ON DELETE CASCADE,
            payment_id INTEGER NOT NULL REFERENCES payments(id) ON DELETE CASCADE,
            confirmation_code TEXT NOT NULL,
            expires_at TEXT NOT NULL,
            is_used INTEGER NOT NULL DEFAULT 0,
            used_at TEXT,
            used_by TEXT,
            tenant_id TEXT NOT NULL,
            created_at {ts}
        )
        """,
    ),
    (
        "invitation_letters",
        """
        CREATE TABLE IF NOT EXISTS invitation_letters (
            id {pk},
            letter_number TEXT NOT NULL,
            quote_id INTEGER REFERENCES quotes(id) ON DELETE SET NULL,
            title TEXT NOT NULL,
            description TEXT,
            deadline TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'draft' CHECK (status IN ('draft','sent','cancelled')),
            sent_at TEXT,
            cancelled_at TEXT,
            created_by TEXT,
            tenant_id TEXT NOT NULL,
            created_at {ts},
            updated_at {ts},
            UNIQUE (tenant_id, letter_number)
        )
        """,
    ),
    (
        "invitation_letter_suppliers",
        """
        CREATE TABLE IF NOT EXISTS invitation_letter_suppliers (
            id {pk},
            invitation_letter_id INTEGER NOT NULL REFERENCES invitation_letters(id) ON DELETE CASCADE,
            supplier_id INTEGER NOT NULL REFERENCES suppliers(id),
            sent_at TEXT,
            viewed_at TEXT,
            response_status TEXT NOT NULL DEFAULT 'pending' CHECK (
                response_status IN ('pending','accepted','declined','no_interest')
            ),
            response_date TEXT,
            response_notes TEXT,
            response_token TEXT UNIQUE,
            token_expires_at TEXT,
            tenant_id TEXT NOT NULL,
            UNIQUE (invitation_letter_id, supplier_id)
        )
        """,
    ),
    (
        "email_contacts",
        """
        CREATE TABLE IF NOT EXISTS email_contacts (
            id {pk},
            email TEXT NOT NULL,
            name TEXT,
            client_type TEXT,
            group_id TEXT,
            region TEXT,
            state TEXT,
            tags TEXT NOT NULL DEFAULT '[]',
            status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active','unsubscribed','bounced')),
            unsubscribed_at TEXT,
            tenant_id TEXT NOT NULL,
            created_at {ts},
            updated_at {ts},
            UNIQUE (tenant_id, email)
        )
        """,
    ),
    (
        "email_campaigns",
        """
        CREATE TABLE IF NOT EXISTS email_campaigns (
            id {pk},
            name TEXT NOT NULL,
            subject TEXT NOT NULL,
            html_content TEXT NOT NULL,
            text_content TEXT,
            target_segment TEXT NOT NULL DEFAULT '{{}}',
            status TEXT NOT NULL DEFAULT 'draft' CHECK (status IN ('draft','sending','sent','failed')),
            sent_at TEXT,
            total_recipients INTEGER NOT NULL DEFAULT 0,
            delivered_count INTEGER NOT NULL DEFAULT 0,
            bounced_count INTEGER NOT NULL DEFAULT 0,
            bounce_rate {money} NOT NULL DEFAULT 0,
            created_by TEXT,
            tenant_id TEXT NOT NULL,
            created_at {ts},
            updated_at {ts}
        )
        """,
    ),
    (
        "email_campaign_recipients",
        """
        CREATE TABLE IF NOT EXISTS email_campaign_recipients (
            id {pk},
            campaign_id INTEGER NOT NULL REFERENCES email_campaigns(id) ON DELETE CASCADE,
            contact_id INTEGER REFERENCES email_contacts(id) ON DELETE SET NULL,
            email TEXT NOT NULL,
            status TEXT NOT NULL CHECK (status IN ('delivered','bounced')),
            error TEXT,
            sent_at TEXT,
            tenant_id TEXT NOT NULL
        )
        """,
    ),
    (
        "notifications",
        """
        CREATE TABLE IF NOT EXISTS notifications (
            id {pk},
            recipient TEXT NOT NULL,
            notification_type TEXT NOT NULL,
            title TEXT NOT NULL,
            message TEXT NOT NULL,
            entity TEXT,
            entity_id INTEGER,
            read_at TEXT,
            tenant_id TEXT NOT NULL,
            created_at {ts}
        )
        """,
    ),
    (
        "audit_logs",
        """
        CREATE TABLE IF NOT EXISTS audit_logs (
            id {pk},
            action TEXT NOT NULL,
            entity TEXT NOT NULL,
            entity_id INTEGER,
            user_email TEXT,
            details TEXT NOT NULL DEFAULT '{{}}',
            tenant_id TEXT NOT NULL,
            created_at {ts}
        )
        """,
    ),
    (
        "status_events",
        """
        CREATE TABLE IF NOT EXISTS status_events (
            id {pk},
            entity TEXT NOT NULL,
            entity_id INTEGER NOT NULL,
            from_status TEXT,
            to_status TEXT NOT NULL,
            reason TEXT,
            tenant_id TEXT NOT NULL,
            occurred_at {ts}
        )
        """,
    ),
]


SCHEMA_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_quotes_tenant_status ON quotes (tenant_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_quote_items_category ON quote_items (tenant_id, category_id)",
    "CREATE INDEX IF NOT EXISTS idx_supplier_documents_supplier ON supplier_documents (tenant_id, supplier_id)",
    "CREATE INDEX IF NOT EXISTS idx_payments_tenant_status ON payments (tenant_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_delivery_confirmations_code ON delivery_confirmations (confirmation_code)",
    "CREATE INDEX IF NOT EXISTS idx_notifications_recipient ON notifications (tenant_id, recipient, read_at)",
    "CREATE INDEX IF NOT EXISTS idx_audit_logs_entity ON audit_logs (tenant_id, entity, entity_id)",
    "CREATE INDEX IF NOT EXISTS idx_status_events_entity ON status_events (tenant_id, entity, entity_id)",
]


UPDATED_AT_TABLES = [
    name for name, ddl in SCHEMA_TABLES if "updated_at" in ddl
]


def _render_ddl(ddl: str, backend: str) -> str:
    types = _POSTGRES_TYPES if backend == "postgres" else _SQLITE_TYPES
    return ddl.format(**types)


def _create_schema(db, backend: str) -> None:
    for _name, ddl in SCHEMA_TABLES:
        db.execute(_render_ddl(ddl, backend))
    for statement in SCHEMA_INDEXES:
        db.execute(statement)
    _ensure_default_tenant(db)


def _init_db_sqlite(db):
    _create_schema(db, "sqlite")
    db.commit()


def _init_db_postgres(db) -> None:
    _create_schema(db, "postgres")
    _create_postgres_updated_at_triggers(db)
    db.commit()


def _create_postgres_updated_at_triggers(db) -> None:
    db.execute(
        """
        CREATE OR REPLACE FUNCTION set_updated_at()
        RETURNS TRIGGER AS $$
        BEGIN
            NEW.updated_at = CURRENT_TIMESTAMP;
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
        """
    )

    for table in UPDATED_AT_TABLES:
        db.execute(f"DROP TRIGGER IF EXISTS trg_{table}_updated_at ON {table}")
        db.execute(
            f"""
            CREATE TRIGGER trg_{table}_updated_at
            BEFORE UPDATE ON {table}
            FOR EACH ROW
            EXECUTE FUNCTION set_updated_at()
            """
        )


def _ensure_default_tenant(db) -> None:
    db.execute(
        """
        INSERT INTO tenants (id, name, subdomain)
        VALUES (?, ?, ?)
        ON CONFLICT DO NOTHING
        """,
        (DEFAULT_TENANT_ID, "Condominio Demo", DEFAULT_TENANT_ID),
    )


def ensure_tenant(db, tenant_id: str, name: str | None = None) -> None:
    db.execute(
        """
        INSERT INTO tenants (id, name, subdomain)
        VALUES (?, ?, ?)
        ON CONFLICT DO NOTHING
        """,
        (tenant_id, name or f"Tenant {tenant_id}", tenant_id),
    )
