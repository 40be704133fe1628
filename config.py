import os

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _env_int_list(name: str, default: str) -> tuple[int, ...]:
    raw = os.getenv(name, default) or default
    out = []
    for part in raw.split(","):
        part = part.strip()
        if part.isdigit():
            out.append(int(part))
    return tuple(out)


CIELO_ENDPOINTS = {
    "sandbox": (
        "https://apisandbox.cieloecommerce.cielo.com.br",
        "https://apiquerysandbox.cieloecommerce.cielo.com.br",
    ),
    "production": (
        "https://api.cieloecommerce.cielo.com.br",
        "https://apiquery.cieloecommerce.cielo.com.br",
    ),
}


class Config:
    # Ambiente: APP_ENV (ou NODE_ENV herdado do deploy antigo)
    APP_ENV = (
        os.getenv("APP_ENV")
        or os.getenv("NODE_ENV")
        or os.getenv("FLASK_ENV")
        or "development"
    ).lower()
    IS_PRODUCTION = APP_ENV in {"prod", "production"}

    def _is_weak_secret(value: str) -> bool:
        if not value:
            return True
        if value == "dev-secret-change-me":
            return True
        if len(value) < 32:
            return True
        return False

    SECRET_KEY = os.getenv("SECRET_KEY", "")
    if not SECRET_KEY:
        SECRET_KEY = "dev-secret-change-me"
    if IS_PRODUCTION and _is_weak_secret(SECRET_KEY):
        raise RuntimeError("SECRET_KEY ausente ou fraco em produção.")

    # Banco:
    # - Local: sqlite
    # - Produção: DATABASE_URL (Postgres)
    DATABASE_URL = os.getenv("DATABASE_URL")

    if DATABASE_URL:
        # Alguns provedores usam "postgres://", SQLAlchemy prefere "postgresql://"
        if DATABASE_URL.startswith("postgres://"):
            DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

        # Força psycopg (v3)
        if DATABASE_URL.startswith("postgresql+psycopg2://"):
            DATABASE_URL = DATABASE_URL.replace(
                "postgresql+psycopg2://", "postgresql+psycopg://", 1
            )
        if DATABASE_URL.startswith("postgresql://"):
            DATABASE_URL = DATABASE_URL.replace(
                "postgresql://", "postgresql+psycopg://", 1
            )

        SQLALCHEMY_DATABASE_URI = DATABASE_URL
    else:
        SQLALCHEMY_DATABASE_URI = "sqlite:///" + os.path.join(BASE_DIR, "unipet.db")

    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Evita conexoes reutilizadas mortas
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": int(os.getenv("DB_POOL_RECYCLE", "280")),
        "pool_timeout": int(os.getenv("DB_POOL_TIMEOUT", "30")),
    }
    if not DATABASE_URL:
        SQLALCHEMY_ENGINE_OPTIONS["connect_args"] = {
            "check_same_thread": False,
            "timeout": int(os.getenv("SQLITE_TIMEOUT", "30")),
        }

    DEBUG = _env_bool("DEBUG", default=not IS_PRODUCTION)
    if IS_PRODUCTION:
        DEBUG = False
    TESTING = _env_bool("TESTING", default=False)

    LOG_LEVEL = (os.getenv("LOG_LEVEL") or ("INFO" if IS_PRODUCTION else "DEBUG")).upper()

    # URL pública do app (links nos e-mails)
    _app_base_url = os.getenv("APP_BASE_URL")
    if not _app_base_url:
        if IS_PRODUCTION:
            raise RuntimeError("APP_BASE_URL deve estar configurado em produção.")
        _app_base_url = "http://127.0.0.1:5000"
    APP_BASE_URL = _app_base_url.rstrip("/")

    # Cielo E-commerce 3.0
    CIELO_MERCHANT_ID = os.getenv("CIELO_MERCHANT_ID", "")
    CIELO_MERCHANT_KEY = os.getenv("CIELO_MERCHANT_KEY", "")
    CIELO_ENVIRONMENT = (os.getenv("CIELO_ENVIRONMENT") or "sandbox").strip().lower()
    if CIELO_ENVIRONMENT not in CIELO_ENDPOINTS:
        CIELO_ENVIRONMENT = "sandbox"
    CIELO_API_URL = (os.getenv("CIELO_API_URL") or CIELO_ENDPOINTS[CIELO_ENVIRONMENT][0]).rstrip("/")
    CIELO_QUERY_URL = (os.getenv("CIELO_QUERY_URL") or CIELO_ENDPOINTS[CIELO_ENVIRONMENT][1]).rstrip("/")
    CIELO_TIMEOUT = int(os.getenv("CIELO_TIMEOUT", "30"))
    # vale apenas para consultas (GET); cobranças nunca são repetidas
    CIELO_MAX_RETRIES = int(os.getenv("CIELO_MAX_RETRIES", "3"))

    # Webhook
    CIELO_WEBHOOK_SECRET = os.getenv("CIELO_WEBHOOK_SECRET", "")
    # Lista CIDR separada por vírgula; vazio = faixas oficiais da Cielo
    CIELO_WEBHOOK_ALLOWED_IPS = os.getenv("CIELO_WEBHOOK_ALLOWED_IPS", "")
    # Rate limiting (em memória - produção multi-instância exige Redis)
    WEBHOOK_RATE_LIMIT = int(os.getenv("WEBHOOK_RATE_LIMIT", "100"))
    WEBHOOK_RATE_LIMIT_WINDOW = int(os.getenv("WEBHOOK_RATE_LIMIT_WINDOW", "60"))

    # E-mail: SMTP tem prioridade; Resend como alternativa HTTP
    SMTP_HOST = os.getenv("SMTP_HOST", "")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USER = os.getenv("SMTP_USER", "")
    SMTP_PASS = os.getenv("SMTP_PASS", "")
    SMTP_FROM = os.getenv("SMTP_FROM_EMAIL") or os.getenv("SMTP_FROM", "")
    RESEND_API_KEY = os.getenv("RESEND_API_KEY", "")
    EMAIL_FROM = os.getenv("EMAIL_FROM", "UNIPET PLAN <noreply@unipetplan.com.br>")
    EMAIL_SEND_ENABLED = _env_bool("EMAIL_SEND_ENABLED", default=True)

    # Checkout / renovação
    PIX_EXPIRATION_HOURS = int(os.getenv("PIX_EXPIRATION_HOURS", "24"))
    REMINDER_DAYS_AHEAD = int(os.getenv("REMINDER_DAYS_AHEAD", "3"))
    OVERDUE_NOTIFICATION_DAYS = _env_int_list("OVERDUE_NOTIFICATION_DAYS", "1,3,7,15,30")
    CONTRACT_SUSPEND_AFTER_DAYS = int(os.getenv("CONTRACT_SUSPEND_AFTER_DAYS", "15"))
    CONTRACT_CANCEL_AFTER_DAYS = int(os.getenv("CONTRACT_CANCEL_AFTER_DAYS", "60"))
    ENABLE_CRON_JOBS = _env_bool("ENABLE_CRON_JOBS", default=True)
