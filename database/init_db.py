import os
import sys

BASE_DIR = os.path.dirname(os.path.dirname(__file__))
if BASE_DIR not in sys.path:
    sys.path.insert(0, BASE_DIR)

from cotacoes import create_app
from cotacoes.db import ensure_tenant, get_db, init_db


app = create_app()


if __name__ == "__main__":
    with app.app_context():
        init_db()
        # Tenants extras para ambientes de demonstracao (lista separada por virgula).
        extra_tenants = [
            tenant_id.strip()
            for tenant_id in os.environ.get("INIT_DB_TENANTS", "").split(",")
            if tenant_id.strip()
        ]
        if extra_tenants:
            db = get_db()
            for tenant_id in extra_tenants:
                ensure_tenant(db, tenant_id)
            db.commit()
    print("Database initialized.")
