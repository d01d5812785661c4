from __future__ import annotations

from typing import Iterable

from werkzeug.security import check_password_hash

from cotacoes.domain.contracts import AuthLoginInput, AuthUser
from cotacoes.errors import NotFoundError, PermissionError
from cotacoes.infrastructure.auth_repository import AuthRepository
from cotacoes.policies import normalize_role
from cotacoes.quoting.validators import parse_optional_int
from cotacoes.tenant import normalize_tenant_id


class AuthService:
    def __init__(self, repository: AuthRepository | None = None) -> None:
        self.repository = repository or AuthRepository()

    def login(self, db, auth_input: AuthLoginInput, raw_users: object) -> AuthUser | None:
        email = (auth_input.email or "").strip().lower()
        password = auth_input.password or ""
        if not email or not password:
            return None

        db_user = self.repository.find_user_by_email(db, email)
        if db_user and check_password_hash(db_user["password_hash"], password):
            return AuthUser(
                email=db_user["email"],
                display_name=db_user.get("display_name") or db_user["email"].split("@")[0],
                tenant_id=db_user["tenant_id"],
                role=normalize_role(db_user.get("role")),
                supplier_id=parse_optional_int(db_user.get("supplier_id")),
            )

        for user in self._parse_users(raw_users):
            if user["email"] == email and user["password"] == password:
                self.repository.ensure_tenant(db, user["tenant_id"])
                return AuthUser(
                    email=user["email"],
                    display_name=user["display_name"],
                    tenant_id=user["tenant_id"],
                    role=user["role"],
                    supplier_id=user["supplier_id"],
                )
        return None

    def switch_tenant(self, db, *, role: str, tenant_id: str | None) -> str:
        if normalize_role(role) != "admin":
            raise PermissionError()
        target = normalize_tenant_id(tenant_id)
        if not target or not self.repository.tenant_exists(db, target):
            raise NotFoundError(code="tenant_not_found", message_key="not_found", payload={"tenant_id": target})
        return target

    @staticmethod
    def _parse_users(raw_users: object) -> Iterable[dict]:
        """Parses ``email:password:tenant[:display[:role[:supplier_id]]]`` entries."""
        if not raw_users:
            return []
        if isinstance(raw_users, str):
            entries = []
            for chunk in raw_users.replace("\n", ",").replace(";", ",").split(","):
                entry = chunk.strip()
                if entry:
                    entries.append(entry)
        elif isinstance(raw_users, (list, tuple, set)):
            entries = [str(item).strip() for item in raw_users if str(item).strip()]
        else:
            return []

        users = []
        for entry in entries:
            parts = [part.strip() for part in entry.split(":")]
            if len(parts) < 3:
                continue
            email, password, tenant_id = parts[0].lower(), parts[1], parts[2]
            display_name = parts[3] if len(parts) > 3 and parts[3] else email.split("@")[0]
            role = normalize_role(parts[4] if len(parts) > 4 else "collaborator")
            supplier_id = parse_optional_int(parts[5]) if len(parts) > 5 else None
            users.append(
                {
                    "email": email,
                    "password": password,
                    "tenant_id": tenant_id,
                    "display_name": display_name,
                    "role": role,
                    "supplier_id": supplier_id if role == "supplier" else None,
                }
            )
        return users
