from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

APP_NAME = "Thesis Defense Evaluation - Rankings"

BASE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = BASE_DIR.parent

load_dotenv(PROJECT_ROOT / ".env")


def _read_int_env(name: str, default: int, *, min_value: int = 0) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        value = default
    return max(min_value, value)


def _read_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw not in {"0", "false", "off", "no"}


DATABASE_URL = os.getenv("DATABASE_URL", "").strip() or f"sqlite:///{(BASE_DIR / 'app.db').as_posix()}"

# Scan cap for every entity read of one ranking computation.
MAX_SCAN_LIMIT = _read_int_env("RANKING_MAX_SCAN_LIMIT", 50_000, min_value=1)

DEFAULT_RANKING_LIMIT = _read_int_env("DEFAULT_RANKING_LIMIT", 50, min_value=1)
MAX_RANKING_LIMIT = _read_int_env("MAX_RANKING_LIMIT", 500, min_value=1)

RANKING_VIEW_ENABLED = _read_bool_env("RANKING_VIEW_ENABLED", True)
POSTGRES_CONFIGURED = bool(os.getenv("POSTGRES_DB", "").strip())
GROUP_RANKING_VIEW = "v_thesis_group_rankings"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip() or "INFO"


def setup_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(message)s",
    )
