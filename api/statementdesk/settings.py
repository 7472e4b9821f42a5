# api/statementdesk/settings.py
import os
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).resolve().parents[2] / "config" / ".env"
if env_path.exists():
    load_dotenv(env_path.as_posix(), override=False, encoding="utf-8-sig")


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


DB_URL = os.getenv("DB_URL")

OWNER_EMAIL = os.getenv("IC_OWNER_EMAIL", "admin@statementdesk.local").strip().lower()

# ---------- document numbering ----------
DOCUMENT_NUMBER_PREFIX = os.getenv("DOCUMENT_NUMBER_PREFIX", "ST-")
DOCUMENT_NUMBER_WIDTH  = _int("DOCUMENT_NUMBER_WIDTH", 6)
ALLOCATION_MAX_RETRIES = _int("ALLOCATION_MAX_RETRIES", 8)

# ---------- background generation ----------
GENERATION_MAX_WORKERS     = _int("GENERATION_MAX_WORKERS", 4)
LEDGER_MAX_ATTEMPTS        = _int("LEDGER_MAX_ATTEMPTS", 3)
LEDGER_BACKOFF_SECONDS     = _float("LEDGER_BACKOFF_SECONDS", 0.5)
LEDGER_BACKOFF_CAP_SECONDS = _float("LEDGER_BACKOFF_CAP_SECONDS", 8.0)
GENERATION_STALE_SECONDS   = _int("GENERATION_STALE_SECONDS", 300)

# client polling hint returned with every accepted generation request
POLL_INTERVAL_MS    = _int("POLL_INTERVAL_MS", 1000)
POLL_WINDOW_SECONDS = _int("POLL_WINDOW_SECONDS", 30)

# ---------- interest policy ----------
INTEREST_METHOD = os.getenv("INTEREST_METHOD", "simple").strip().lower()
INTEREST_RATE   = Decimal(os.getenv("INTEREST_RATE", "0.02").strip() or "0")
INTEREST_BASIS  = os.getenv("INTEREST_BASIS", "per_bucket").strip().lower()

# ---------- delivery collaborators ----------
PLATFORM_FROM_NAME  = os.getenv("PLATFORM_FROM_NAME", "Statement Desk")
PLATFORM_FROM_EMAIL = os.getenv("PLATFORM_FROM_EMAIL", "accounts@statementdesk.local")
POSTMARK_SERVER_TOKEN = os.getenv("POSTMARK_SERVER_TOKEN_DEFAULT", "").strip()
WKHTMLTOPDF_PATH    = os.getenv("WKHTMLTOPDF_PATH") or None

PROJECT_ROOT     = Path(__file__).resolve().parents[2]
ATTACHMENTS_DIR  = Path(os.getenv("ATTACHMENTS_DIR") or (PROJECT_ROOT / "web" / "static" / "statements"))
ATTACHMENTS_BASE_URL = (os.getenv("ATTACHMENTS_BASE_URL") or "/static/statements").rstrip("/")
