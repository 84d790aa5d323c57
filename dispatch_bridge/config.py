# ----------------------------------------------------------------
# Import configuration variables to be used throughout the project
# ----------------------------------------------------------------
import os
from dotenv import load_dotenv

# Load .env (allow container env to override file values)
load_dotenv(override=True)


def _rstrip_slash(s: str) -> str:
    return (s or "").rstrip("/")


def _get_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return str(v).strip().lower() in {"1", "true", "yes", "on", "y"}


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    if not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


class Settings:
    # ── Marketplace partner API ─────────────────────────────────────────────
    PARTNER_API_URL: str = _rstrip_slash(os.getenv("PARTNER_API_URL", "https://merchant-api.ifood.com.br"))
    PARTNER_HTTP_TIMEOUT: float = _get_float("PARTNER_HTTP_TIMEOUT", 15.0)
    PARTNER_VERIFY_TLS: bool = _get_bool("PARTNER_VERIFY_TLS", True)

    # Cached tokens are considered expired this many seconds early
    TOKEN_SAFETY_MARGIN_SECONDS: float = _get_float("TOKEN_SAFETY_MARGIN_SECONDS", 60.0)

    # ── Polling worker ──────────────────────────────────────────────────────
    WORKER_ENABLED: bool = _get_bool("WORKER_ENABLED", True)
    POLLING_INTERVAL_SECONDS: float = _get_float("POLLING_INTERVAL_SECONDS", 30.0)

    # ── Dispatch defaults (used when the system_settings row has no value) ──
    AVERAGE_SPEED_KMH: float = _get_float("AVERAGE_SPEED_KMH", 40.0)
    DEFAULT_SEARCH_RADIUS_KM: float = _get_float("DEFAULT_SEARCH_RADIUS_KM", 10.0)
    DEFAULT_ACCEPTANCE_TIMEOUT_SECONDS: float = _get_float("DEFAULT_ACCEPTANCE_TIMEOUT_SECONDS", 30.0)
    DEFAULT_COMMISSION_PERCENTAGE: float = _get_float("DEFAULT_COMMISSION_PERCENTAGE", 20.0)
    DEFAULT_BASE_PRICE: float = _get_float("DEFAULT_BASE_PRICE", 10.0)
    DEFAULT_PRICE_PER_KM: float = _get_float("DEFAULT_PRICE_PER_KM", 3.0)

    # ── Push gateway ────────────────────────────────────────────────────────
    # Leave empty to log notifications instead of sending them
    PUSH_GATEWAY_URL: str = _rstrip_slash(os.getenv("PUSH_GATEWAY_URL", ""))
    PUSH_GATEWAY_KEY: str = os.getenv("PUSH_GATEWAY_KEY", "")

    # ── Database ────────────────────────────────────────────────────────────
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")

    # ── Admin Panel ─────────────────────────────────────────────────────────
    ADMIN_USER: str = os.getenv("ADMIN_USER", "admin")
    ADMIN_PASS: str = os.getenv("ADMIN_PASS", "changeme")

    # ── CORS ────────────────────────────────────────────────────────────────
    # Comma-separated list in .env, e.g. "https://example.com, https://foo.bar"
    CORS_ORIGINS: list[str] = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]


settings = Settings()
