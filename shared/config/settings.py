import os
import warnings
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


def _env(name: str, default: str = "") -> str:
    value = os.getenv(name, default)
    return value.strip() if isinstance(value, str) else default


def _env_int(name: str, default: int) -> int:
    try:
        return int(_env(name, str(default)))
    except ValueError:
        return default


def _env_flag(name: str) -> bool:
    return _env(name).lower() in {"1", "true", "yes", "on"}


def _database_url() -> str:
    explicit = _env("DATABASE_URL")
    if explicit:
        return explicit

    user = _env("POSTGRES_USER", "postgres")
    password = _env("POSTGRES_PASSWORD", "postgres")
    host = _env("POSTGRES_HOST", "localhost")  # In Docker, this will be 'postgres'
    port = _env("POSTGRES_PORT", "5433")
    name = _env("POSTGRES_DB", "carparts")
    return f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{name}"


def _scalapay_base_url() -> str:
    explicit = _env("SCALAPAY_BASE_URL")
    if explicit:
        return explicit.rstrip("/")

    env = _env("SCALAPAY_ENV").lower()
    if env in {"production", "prod", "live"}:
        return "https://api.scalapay.com"
    if env in {"sandbox", "test", "integration"}:
        return "https://integration.api.scalapay.com"

    if _env("APP_ENV").lower() == "production":
        return "https://api.scalapay.com"
    return "https://integration.api.scalapay.com"


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite+aiosqlite:///:memory:"
    db_echo: bool = False
    app_env: str = "development"

    public_base_url: str = ""
    order_confirmation_path: str = "/account/orders/{order_id}"
    orders_list_path: str = "/account/orders"
    payment_page_path: str = "/checkout/payment"

    mollie_api_key: str = ""
    mollie_base_url: str = "https://api.mollie.com/v2"
    mollie_profile_id: str = ""
    scalapay_api_key: str = ""
    scalapay_base_url: str = "https://integration.api.scalapay.com"
    provider_timeout_seconds: float = 10.0
    payment_webhook_url: str = ""
    payment_webhook_token: str = ""

    promo_reservation_ttl_minutes: int = 120
    consigne_reminder_days: int = 7
    consigne_sweep_limit: int = 200
    dry_run: bool = False

    mailersend_api_key: str = ""
    mail_from_email: str = ""
    mail_from_name: str = "CarParts France"
    mail_force_to: str = ""
    mail_test_to: str = ""

    legal_terms_slug: str = "cgv"
    checkout_rate_limit: str = "10/minute"
    currency: str = "EUR"

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    """Reads the environment once per process."""
    settings = Settings(
        database_url=_database_url(),
        db_echo=_env_flag("DB_ECHO"),
        app_env=_env("APP_ENV", "development") or "development",
        public_base_url=_env("PUBLIC_BASE_URL").rstrip("/"),
        mollie_api_key=_env("MOLLIE_API_KEY"),
        mollie_base_url=_env("MOLLIE_BASE_URL", "https://api.mollie.com/v2").rstrip("/"),
        mollie_profile_id=_env("MOLLIE_PROFILE_ID"),
        scalapay_api_key=_env("SCALAPAY_API_KEY"),
        scalapay_base_url=_scalapay_base_url(),
        provider_timeout_seconds=float(_env_int("PROVIDER_TIMEOUT_SECONDS", 10)),
        payment_webhook_url=_env("PAYMENT_WEBHOOK_URL").rstrip("/"),
        payment_webhook_token=_env("PAYMENT_WEBHOOK_TOKEN"),
        promo_reservation_ttl_minutes=_env_int("PROMO_RESERVATION_TTL_MINUTES", 120),
        consigne_reminder_days=_env_int("CONSIGNE_REMINDER_DAYS", 7),
        consigne_sweep_limit=_env_int("CONSIGNE_SWEEP_LIMIT", 200),
        dry_run=_env_flag("DRY_RUN"),
        mailersend_api_key=_env("MAILERSEND_API_KEY"),
        mail_from_email=_env("MAIL_FROM_EMAIL"),
        mail_from_name=_env("MAIL_FROM_NAME", "CarParts France") or "CarParts France",
        mail_force_to=_env("MAIL_FORCE_TO"),
        mail_test_to=_env("MAIL_TEST_TO"),
        legal_terms_slug=_env("LEGAL_TERMS_SLUG", "cgv") or "cgv",
        checkout_rate_limit=_env("CHECKOUT_RATE_LIMIT", "10/minute") or "10/minute",
    )

    if settings.is_production and not settings.mollie_api_key:
        warnings.warn(
            "MOLLIE_API_KEY is not set. Card payments will be reported as unavailable.",
            stacklevel=2,
        )
    return settings
