import os

from flask import Flask, g, jsonify, request, session
from werkzeug.exceptions import HTTPException

from cotacoes.config import Config
from cotacoes.db import close_db, init_db
from cotacoes.db_migrations import register_db_cli
from cotacoes.observability import (
    configure_json_logging,
    ensure_request_id,
    mark_request_start,
    metrics_snapshot,
    observe_response,
)
from cotacoes.security import apply_security_headers, enforce_rate_limit


def create_app(config_class=Config):
    app = Flask(__name__)
    # Instancia para rodar as validacoes de producao do Config.
    app.config.from_object(config_class() if isinstance(config_class, type) else config_class)
    configure_json_logging(app)

    _ensure_directories(app)
    _register_error_handlers(app)
    _register_security(app)
    _register_auth(app)
    _register_tenant(app)
    _register_blueprints(app)
    _register_event_handlers(app)
    _register_health(app)
    register_db_cli(app)
    _maybe_init_schema(app)

    _register_scheduler(app)
    app.teardown_appcontext(close_db)
    return app


def _ensure_directories(app: Flask) -> None:
    for key in ("DATABASE_DIR", "STORAGE_DIR"):
        path = app.config.get(key)
        if path:
            os.makedirs(path, exist_ok=True)


def _maybe_init_schema(app: Flask) -> None:
    auto_init = bool(app.config.get("DB_AUTO_INIT", False))
    if app.testing:
        # Testes sobem o schema direto, sem depender de migration externa.
        auto_init = True
    if not auto_init:
        return

    flask_env = (os.environ.get("FLASK_ENV", "development") or "development").strip().lower()
    if not app.testing and flask_env != "development":
        app.logger.warning("DB_AUTO_INIT ignorado fora de development.")
        return

    with app.app_context():
        init_db()


def _register_blueprints(app: Flask) -> None:
    from cotacoes.routes.campaign_routes import campaign_bp
    from cotacoes.routes.home_routes import home_bp
    from cotacoes.routes.invitation_routes import invitation_bp
    from cotacoes.routes.notification_routes import notification_bp
    from cotacoes.routes.payment_routes import payment_bp
    from cotacoes.routes.quote_routes import quote_bp
    from cotacoes.routes.supplier_routes import supplier_bp

    app.register_blueprint(home_bp)
    app.register_blueprint(quote_bp)
    app.register_blueprint(payment_bp)
    app.register_blueprint(supplier_bp)
    app.register_blueprint(invitation_bp)
    app.register_blueprint(campaign_bp)
    app.register_blueprint(notification_bp)


def _register_event_handlers(app: Flask) -> None:
    from cotacoes.application.notification_service import register_notification_handlers
    from cotacoes.core.event_bus import get_event_bus

    register_notification_handlers(get_event_bus())


def _register_auth(app: Flask) -> None:
    from cotacoes.auth import register_auth

    register_auth(app)


def _register_scheduler(app: Flask) -> None:
    from cotacoes.scheduler import start_maintenance_scheduler

    start_maintenance_scheduler(app)


def _register_error_handlers(app: Flask) -> None:
    from cotacoes.errors import (
        AppError,
        IntegrationClientError,
        IntegrationError,
        SystemError,
        classify_integration_failure,
    )

    @app.before_request
    def _ensure_request_id() -> None:
        ensure_request_id()
        mark_request_start()

    @app.after_request
    def _append_request_id(response):
        response.headers["X-Request-Id"] = ensure_request_id()
        response = observe_response(response)
        return apply_security_headers(response)

    def _log_error(error: AppError, request_id: str) -> None:
        log_method = app.logger.error if error.critical else app.logger.warning
        log_method(
            "application_error",
            extra={
                "request_id": request_id,
                "error_code": error.code,
                "http_status": error.http_status,
                "message_key": error.message_key,
                "details": error.details,
                "request_path": request.path,
                "http_method": request.method,
            },
            exc_info=error.critical,
        )

    @app.errorhandler(AppError)
    def _handle_app_error(exc: AppError):
        request_id = ensure_request_id()
        _log_error(exc, request_id)
        return jsonify(exc.to_response_payload(request_id)), exc.http_status

    @app.errorhandler(IntegrationClientError)
    def _handle_integration_error(exc: IntegrationClientError):
        request_id = ensure_request_id()
        code, message_key, http_status = classify_integration_failure(exc.service, str(exc))
        mapped = IntegrationError(
            code=code,
            message_key=message_key,
            http_status=http_status,
            critical=False,
            details=str(exc),
            payload={"service": exc.service},
        )
        _log_error(mapped, request_id)
        return jsonify(mapped.to_response_payload(request_id)), mapped.http_status

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc

        request_id = ensure_request_id()
        mapped = SystemError(
            code="unexpected_error",
            message_key="unexpected_error",
            http_status=500,
            critical=True,
            details=str(exc),
        )
        app.logger.exception(
            "unexpected_exception",
            extra={
                "request_id": request_id,
                "error_code": mapped.code,
                "request_path": request.path,
                "http_method": request.method,
            },
        )
        return jsonify(mapped.to_response_payload(request_id)), mapped.http_status


def _register_security(app: Flask) -> None:
    @app.before_request
    def _rate_limit_guard():
        return enforce_rate_limit()


def _register_tenant(app: Flask) -> None:
    @app.before_request
    def load_tenant() -> None:
        session_tenant = (session.get("tenant_id") or "").strip()
        if session_tenant:
            g.tenant_id = session_tenant
            return

        from cotacoes.errors import ValidationError
        from cotacoes.tenant import DEFAULT_TENANT_ID, is_valid_tenant_id

        # Chamadas de API sem sessao podem indicar o tenant por header.
        header_tenant = (request.headers.get("X-Tenant-Id") or "").strip()
        if header_tenant:
            if not is_valid_tenant_id(header_tenant):
                raise ValidationError(code="tenant_invalid", message_key="tenant_invalid")
            g.tenant_id = header_tenant
            return

        g.tenant_id = DEFAULT_TENANT_ID


def _register_health(app: Flask) -> None:
    @app.route("/health")
    def health():
        from cotacoes.db import get_db

        db_path = app.config.get("DB_PATH") or "unknown"
        backend = "postgres" if str(db_path).startswith("postgres") else "sqlite"
        payload = {
            "status": "ok",
            "db": backend,
            "env": app.config.get("ENV", "unknown"),
            "metrics": metrics_snapshot(),
        }
        scheduler = app.extensions.get("maintenance_scheduler")
        payload["scheduler"] = scheduler.status() if scheduler else {"running": False}
        try:
            get_db().execute("SELECT 1").fetchone()
        except Exception:  # noqa: BLE001
            app.logger.exception("health_db_check_failed")
            payload["status"] = "degraded"
        return payload, 200
