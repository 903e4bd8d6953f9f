import os

from dotenv import load_dotenv

load_dotenv()


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default)).strip()
    try:
        return int(raw)
    except Exception:
        return int(default)


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "1" if default else "0").strip().lower()
    if raw in {"1", "true", "yes", "on"}:
        return True
    if raw in {"0", "false", "no", "off"}:
        return False
    return bool(default)


class Settings:
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./bookings.db")
    DB_AUTO_CREATE_ALL = _get_bool("DB_AUTO_CREATE_ALL", False)
    DEFAULT_TENANT_SLUG = os.getenv("DEFAULT_TENANT_SLUG", "demo-business").strip().lower()
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    LOG_JSON = _get_bool("LOG_JSON", True)

    BUSINESS_TIMEZONE = os.getenv("BUSINESS_TIMEZONE", "Asia/Manila").strip()

    CONTEXT_CACHE_DIR = os.getenv("CONTEXT_CACHE_DIR", "./.cache/business-context").strip()
    CONTEXT_CACHE_TTL_SECONDS = _get_int("CONTEXT_CACHE_TTL_SECONDS", 60)

    ALTERNATIVE_SLOTS_LIMIT = _get_int("ALTERNATIVE_SLOTS_LIMIT", 6)
    CONFLICT_SCAN_LIMIT = _get_int("CONFLICT_SCAN_LIMIT", 120)
    CONFLICT_SWEEP_BATCH_SIZE = _get_int("CONFLICT_SWEEP_BATCH_SIZE", 60)

    BOOKING_METRICS_ENABLED = _get_bool("BOOKING_METRICS_ENABLED", True)


settings = Settings()
