"""
config.py – centralised configuration loaded from environment variables.
"""

from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()


def parse_app_list(raw: str | None) -> list[str] | None:
    """Split a comma-separated provider list.  Blank or unset means None."""
    if raw is None:
        return None
    names = [part.strip() for part in raw.split(",") if part.strip()]
    return names or None


SUPABASE_URL: str | None = os.getenv("SUPABASE_URL")
SUPABASE_KEY: str | None = os.getenv("SUPABASE_KEY")
SUPABASE_TABLE: str = os.getenv("SUPABASE_TABLE", "kv_store")

ENABLED_APPS: list[str] | None = parse_app_list(os.getenv("ENABLED_APPS"))
HOURLY_APPS: list[str] = parse_app_list(os.getenv("HOURLY_APPS", "counter")) or []

FMP_API_KEY: str | None = os.getenv("FMP_API_KEY")

TICK_MINUTES: int = int(os.getenv("TICK_MINUTES", "5"))
HTTP_TIMEOUT: int = int(os.getenv("HTTP_TIMEOUT", "15"))

HOST: str = os.getenv("HOST", "0.0.0.0")
PORT: int = int(os.getenv("PORT", "8787"))

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
