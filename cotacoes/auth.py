from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request, session

from cotacoes.application.auth_service import AuthService
from cotacoes.db import get_db
from cotacoes.domain.contracts import AuthLoginInput
from cotacoes.errors import PermissionError as AppPermissionError
from cotacoes.errors import ValidationError
from cotacoes.policies import current_role, normalize_role
from cotacoes.tenant import current_supplier_id, current_tenant_id, current_user_email
from cotacoes.ui_strings import success_message


auth_bp = Blueprint("auth", __name__)
_auth_service = AuthService()

_PUBLIC_PATHS = {"/login", "/logout", "/health", "/api/auth/login", "/api/auth/logout", "/api/webhooks/payments"}
_PUBLIC_PREFIXES = ("/api/convites/", "/api/resposta-rapida/", "/unsubscribe/")


def register_auth(app) -> None:
    app.register_blueprint(auth_bp)

    @app.before_request
    def _require_login():
        if not app.config.get("AUTH_ENABLED", True):
            return None
        if app.config.get("TESTING"):
            return None

        path = request.path or "/"
        if path in _PUBLIC_PATHS or path.startswith(_PUBLIC_PREFIXES):
            return None
        if session.get("user_email"):
            return None

        raise AppPermissionError(
            code="auth_required",
            message_key="auth_required",
            http_status=401,
            critical=False,
        )


def _user_payload() -> dict:
    return {
        "email": current_user_email(),
        "display_name": session.get("display_name"),
        "role": current_role(),
        "tenant_id": current_tenant_id(),
        "supplier_id": current_supplier_id(),
    }


@auth_bp.route("/api/auth/login", methods=["POST"])
def login():
    payload = request.get_json(silent=True) or {}
    email = str(payload.get("email") or "").strip().lower()
    password = str(payload.get("password") or "")
    if not email or not password:
        raise ValidationError(code="auth_missing_credentials", message_key="auth_missing_credentials")

    user = _auth_service.login(
        get_db(),
        AuthLoginInput(email=email, password=password),
        current_app.config.get("APP_USERS"),
    )
    if not user:
        raise ValidationError(code="auth_invalid_credentials", message_key="auth_invalid_credentials", http_status=401)

    session.clear()
    session["user_email"] = user.email
    session["display_name"] = user.display_name
    session["tenant_id"] = user.tenant_id
    session["user_role"] = normalize_role(user.role)
    if user.supplier_id is not None:
        session["supplier_id"] = user.supplier_id
    get_db().commit()
    return jsonify({"user": _user_payload(), "message": success_message("login_ok")}), 200


@auth_bp.route("/api/auth/logout", methods=["POST"])
def logout():
    session.clear()
    return jsonify({"message": success_message("logout_ok")}), 200


@auth_bp.route("/api/auth/me", methods=["GET"])
def me():
    return jsonify({"user": _user_payload()}), 200


@auth_bp.route("/api/auth/tenant", methods=["POST"])
def switch_tenant():
    payload = request.get_json(silent=True) or {}
    tenant_id = _auth_service.switch_tenant(get_db(), role=current_role(), tenant_id=payload.get("tenant_id"))
    session["tenant_id"] = tenant_id
    return jsonify({"user": _user_payload()}), 200
