import os


def _bool_env(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


class Config:
    BASE_DIR = os.path.dirname(os.path.dirname(__file__))
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_DIR = None if DATABASE_URL else os.path.join(BASE_DIR, "database")
    DB_PATH = DATABASE_URL or os.path.join(DATABASE_DIR, "plataforma_cotacoes.db")
    DB_AUTO_INIT = _bool_env("DB_AUTO_INIT", True)
    STORAGE_DIR = os.environ.get("STORAGE_DIR") or os.path.join(BASE_DIR, "storage")
    BASE_URL = os.environ.get("BASE_URL", "http://localhost:5000")

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-plataforma-cotacoes")
    AUTH_ENABLED = _bool_env("AUTH_ENABLED", True)
    APP_USERS = os.environ.get(
        "APP_USERS",
        "admin@demo.com:admin123:tenant-demo:Administrador:admin",
    )

    LOG_JSON = _bool_env("LOG_JSON", True)
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    RATE_LIMIT_ENABLED = _bool_env("RATE_LIMIT_ENABLED", True)
    RATE_LIMIT_WINDOW_SECONDS = _int_env("RATE_LIMIT_WINDOW_SECONDS", 60)
    RATE_LIMIT_MAX_REQUESTS = _int_env("RATE_LIMIT_MAX_REQUESTS", 300)
    SECURITY_HEADERS_ENABLED = _bool_env("SECURITY_HEADERS_ENABLED", True)

    CNPJ_LOOKUP_MODE = os.environ.get("CNPJ_LOOKUP_MODE", "mock")
    CNPJ_LOOKUP_TIMEOUT_SECONDS = _int_env("CNPJ_LOOKUP_TIMEOUT_SECONDS", 10)
    BRASILAPI_BASE_URL = os.environ.get("BRASILAPI_BASE_URL", "https://brasilapi.com.br/api/cnpj/v1")
    RECEITAWS_BASE_URL = os.environ.get("RECEITAWS_BASE_URL", "https://receitaws.com.br/v1/cnpj")

    EMAIL_MODE = os.environ.get("EMAIL_MODE", "mock")
    EMAIL_API_URL = os.environ.get("EMAIL_API_URL")
    EMAIL_API_TOKEN = os.environ.get("EMAIL_API_TOKEN")
    EMAIL_FROM = os.environ.get("EMAIL_FROM", "Plataforma Cotacoes <noreply@cotacoes.local>")
    EMAIL_TIMEOUT_SECONDS = _int_env("EMAIL_TIMEOUT_SECONDS", 15)

    PAYMENT_WEBHOOK_TOKEN = os.environ.get("PAYMENT_WEBHOOK_TOKEN")
    ESCROW_HOLD_DAYS = _int_env("ESCROW_HOLD_DAYS", 10)
    DELIVERY_CODE_TTL_HOURS = _int_env("DELIVERY_CODE_TTL_HOURS", 72)
    INVITATION_TOKEN_TTL_DAYS = _int_env("INVITATION_TOKEN_TTL_DAYS", 15)
    QUOTE_TOKEN_TTL_DAYS = _int_env("QUOTE_TOKEN_TTL_DAYS", 15)
    QUOTE_REMINDER_AFTER_HOURS = _int_env("QUOTE_REMINDER_AFTER_HOURS", 48)
    QUOTE_REMINDER_INTERVAL_HOURS = _int_env("QUOTE_REMINDER_INTERVAL_HOURS", 24)
    DOCUMENT_EXPIRY_WARNING_DAYS = _int_env("DOCUMENT_EXPIRY_WARNING_DAYS", 30)
    DOCUMENT_MAX_BYTES = _int_env("DOCUMENT_MAX_BYTES", 10 * 1024 * 1024)
    CATEGORY_USAGE_TTL_SECONDS = _int_env("CATEGORY_USAGE_TTL_SECONDS", 30)

    MAINTENANCE_SCHEDULER_ENABLED = _bool_env("MAINTENANCE_SCHEDULER_ENABLED", True)
    MAINTENANCE_SCHEDULER_INTERVAL_SECONDS = _int_env("MAINTENANCE_SCHEDULER_INTERVAL_SECONDS", 300)
    MAINTENANCE_SCHEDULER_MIN_BACKOFF_SECONDS = _int_env("MAINTENANCE_SCHEDULER_MIN_BACKOFF_SECONDS", 30)
    MAINTENANCE_SCHEDULER_MAX_BACKOFF_SECONDS = _int_env("MAINTENANCE_SCHEDULER_MAX_BACKOFF_SECONDS", 1800)

    def __init__(self):
        env = os.environ.get("FLASK_ENV", "development").lower()
        if env == "production" and not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL nao definida para ambiente de producao.")
        if env == "production" and self.SECRET_KEY == "dev-secret-plataforma-cotacoes":
            raise RuntimeError("SECRET_KEY insegura para producao.")
