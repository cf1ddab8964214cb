# ----------------------------------------------------------------
# Import configuration variables to be used throughout the project
# ----------------------------------------------------------------
import os
from dotenv import load_dotenv

from vendorhub.errors import ConfigurationError

# Load .env (allow container env to override file values)
load_dotenv(override=True)


def _get_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return str(v).strip().lower() in {"1", "true", "yes", "on", "y"}


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        return int(float(str(raw).strip()))
    except ValueError:
        return default


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        return float(str(raw).strip())
    except ValueError:
        return default


def clamp(value, lo: int, hi: int) -> int:
    """Clamp to [lo, hi]; anything that is not a finite number becomes ``lo``."""
    try:
        n = int(value)
    except (TypeError, ValueError, OverflowError):
        return lo
    return max(lo, min(hi, n))


class Settings:
    """
    Environment-backed settings. Values are read when the instance is built so
    tests can construct their own after patching the environment.
    """

    def __init__(self) -> None:
        # ── Runtime ──────────────────────────────────────────────────────────
        self.APP_ENV: str = (os.getenv("APP_ENV") or os.getenv("ENVIRONMENT") or "development").strip().lower()
        self.DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./data/vendorhub.db")

        # ── Shopify webhooks ─────────────────────────────────────────────────
        self.SHOPIFY_WEBHOOK_SECRET: str = os.getenv("SHOPIFY_WEBHOOK_SECRET", "")
        self.SHOPIFY_API_VERSION: str = os.getenv("SHOPIFY_API_VERSION", "2025-10")
        self.SHOPIFY_WEBHOOK_DEBUG: bool = _get_bool("SHOPIFY_WEBHOOK_DEBUG", False)
        self.SHOPIFY_HTTP_TIMEOUT: float = _get_float("SHOPIFY_HTTP_TIMEOUT", 20.0)
        # raw ingress archive is off unless a directory is given
        self.WEBHOOK_ARCHIVE_DIR: str = os.getenv("WEBHOOK_ARCHIVE_DIR", "").strip()

        # ── Job trigger auth ─────────────────────────────────────────────────
        self.JOB_WORKER_SECRET: str = os.getenv("JOB_WORKER_SECRET", "")
        self.CRON_SECRET: str = os.getenv("CRON_SECRET", "")

        # ── Webhook jobs ─────────────────────────────────────────────────────
        self.WEBHOOK_JOB_LIMIT_MAX: int = max(1, _get_int("WEBHOOK_JOB_LIMIT_MAX", 50))
        self.WEBHOOK_JOB_LIMIT: int = clamp(_get_int("WEBHOOK_JOB_LIMIT", 5), 1, self.WEBHOOK_JOB_LIMIT_MAX)
        self.WEBHOOK_JOB_MAX_ATTEMPTS: int = max(1, _get_int("WEBHOOK_JOB_MAX_ATTEMPTS", 5))

        # ── Shipment import jobs ─────────────────────────────────────────────
        self.SHIPMENT_JOB_LIMIT: int = clamp(_get_int("SHIPMENT_JOB_LIMIT", 1), 1, 5)
        self.SHIPMENT_JOB_ITEM_LIMIT_MAX: int = max(1, _get_int("SHIPMENT_JOB_ITEM_LIMIT_MAX", 100))
        self.SHIPMENT_JOB_ITEM_LIMIT: int = clamp(
            _get_int("SHIPMENT_JOB_ITEM_LIMIT", 50), 1, self.SHIPMENT_JOB_ITEM_LIMIT_MAX
        )
        self.SHIPMENT_JOB_MAX_ATTEMPTS: int = max(1, _get_int("SHIPMENT_JOB_MAX_ATTEMPTS", 3))

        # ── Retry scheduling / store ─────────────────────────────────────────
        self.JOB_RETRY_DELAY_SECONDS: float = max(0.0, _get_float("JOB_RETRY_DELAY_SECONDS", 30.0))
        self.JOB_RETRY_DELAY_MAX_SECONDS: float = max(0.0, _get_float("JOB_RETRY_DELAY_MAX_SECONDS", 900.0))
        self.JOB_LOCK_STALE_SECONDS: int = clamp(_get_int("JOB_LOCK_STALE_SECONDS", 90), 30, 3600)
        self.STORE_TIMEOUT_SECONDS: float = max(0.1, _get_float("STORE_TIMEOUT_SECONDS", 10.0))
        self.JOB_EXECUTION_TIMEOUT_SECONDS: float = max(1.0, _get_float("JOB_EXECUTION_TIMEOUT_SECONDS", 60.0))

        # ── Admin Panel ──────────────────────────────────────────────────────
        self.ADMIN_USER: str = os.getenv("ADMIN_USER", "admin")
        self.ADMIN_PASS: str = os.getenv("ADMIN_PASS", "changeme")

        # ── CORS ─────────────────────────────────────────────────────────────
        # Comma-separated list in .env, e.g. "https://example.com, https://foo.bar"
        self.CORS_ORIGINS: list[str] = [
            o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()
        ]

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    def validate(self) -> None:
        """Fail closed at startup instead of on the first request."""
        problems: list[str] = []
        if not self.DATABASE_URL:
            problems.append("DATABASE_URL is empty")
        if self.is_production:
            if not self.SHOPIFY_WEBHOOK_SECRET:
                problems.append("SHOPIFY_WEBHOOK_SECRET is required in production")
            if not (self.JOB_WORKER_SECRET or self.CRON_SECRET):
                problems.append("JOB_WORKER_SECRET or CRON_SECRET is required in production")
            if self.ADMIN_PASS == "changeme":
                problems.append("ADMIN_PASS must be changed in production")
        if problems:
            raise ConfigurationError("; ".join(problems))


settings = Settings()
