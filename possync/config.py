# ----------------------------------------------------------------
# Import configuration variables to be used throughout the project
# ----------------------------------------------------------------
import os
import json as _json
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


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        return int(str(raw).strip())
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


def _get_json_map(name: str, default: dict | None = None) -> dict:
    raw = os.getenv(name, "")
    if not raw:
        return default or {}
    try:
        return _json.loads(raw)
    except Exception:
        return default or {}


class Settings:
    # ── Local store ──────────────────────────────────────────────────────────
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./data/possync.db")

    # ── Remote authority (backend) ───────────────────────────────────────────
    REMOTE_URL: str = _rstrip_slash(os.getenv("REMOTE_URL", ""))
    REMOTE_API_KEY: str = os.getenv("REMOTE_API_KEY", "")
    REMOTE_TIMEOUT: float = _get_float("REMOTE_TIMEOUT", 15.0)

    # ── Sync engine (milliseconds) ───────────────────────────────────────────
    SYNC_INTERVAL_MS: int = _get_int("SYNC_INTERVAL_MS", 6000)
    SYNC_BACKOFF_FLOOR_MS: int = _get_int("SYNC_BACKOFF_FLOOR_MS", 1000)
    SYNC_BACKOFF_MAX_MS: int = _get_int("SYNC_BACKOFF_MAX_MS", 30000)
    SYNC_AUTO_START: bool = _get_bool("SYNC_AUTO_START", True)

    # ── Print dispatch queue (milliseconds) ──────────────────────────────────
    PRINT_TICK_MS: int = _get_int("PRINT_TICK_MS", 2000)
    PRINT_MAX_RETRIES: int = _get_int("PRINT_MAX_RETRIES", 5)
    PRINT_BASE_DELAY_MS: int = _get_int("PRINT_BASE_DELAY_MS", 500)
    PRINT_MAX_DELAY_MS: int = _get_int("PRINT_MAX_DELAY_MS", 30000)

    # Destination → printer endpoint, e.g. {"receipt": "http://10.0.0.5/print"}
    # Empty map means jobs are only written to the log.
    PRINTER_ENDPOINTS: dict = _get_json_map("PRINTER_ENDPOINTS", {})
    PRINTER_TIMEOUT: float = _get_float("PRINTER_TIMEOUT", 10.0)

    # ── Connectivity ─────────────────────────────────────────────────────────
    # Empty URL → terminal is treated as always online.
    CONNECTIVITY_PROBE_URL: str = os.getenv("CONNECTIVITY_PROBE_URL", "")
    CONNECTIVITY_PROBE_INTERVAL: float = _get_float("CONNECTIVITY_PROBE_INTERVAL", 5.0)

    # ── Admin (operator endpoints) ───────────────────────────────────────────
    ADMIN_USER: str = os.getenv("ADMIN_USER", "admin")
    ADMIN_PASS: str = os.getenv("ADMIN_PASS", "changeme")

    # ── CORS ─────────────────────────────────────────────────────────────────
    # Comma-separated list in .env, e.g. "https://example.com, https://foo.bar"
    CORS_ORIGINS: list[str] = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]


settings = Settings()
