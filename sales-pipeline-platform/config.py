"""
Application configuration.

Values come from the environment, after loading the `.env` file that sits in
the sales-pipeline-platform directory (if any). Nothing here connects to
anything; the Supabase client is created on first use by
repositories/client.py.

Environment variables:
- SUPABASE_URL, SUPABASE_KEY: Supabase project credentials
- STORE_BACKEND: "supabase" (default) or "memory" for local runs
- REPORT_MAX_WORKERS: thread pool size for report and alert fan-out (default 8)
- BATCH_LOOKUP_CHUNK_SIZE: ids per `in` lookup (default 10)
- LOG_LEVEL: root log level (default INFO)
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).parent / ".env"
load_dotenv(dotenv_path=env_path)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise RuntimeError(f"Invalid environment variable: {name} must be an integer, got {raw!r}") from e
    if value < 1:
        raise RuntimeError(f"Invalid environment variable: {name} must be >= 1, got {value}")
    return value


SUPABASE_URL: str | None = os.getenv("SUPABASE_URL")
SUPABASE_KEY: str | None = os.getenv("SUPABASE_KEY")

STORE_BACKEND: str = os.getenv("STORE_BACKEND", "supabase").strip().lower()
if STORE_BACKEND not in ("supabase", "memory"):
    raise RuntimeError(
        f"Invalid environment variable: STORE_BACKEND must be 'supabase' or 'memory', got {STORE_BACKEND!r}"
    )

REPORT_MAX_WORKERS: int = _int_env("REPORT_MAX_WORKERS", 8)
BATCH_LOOKUP_CHUNK_SIZE: int = _int_env("BATCH_LOOKUP_CHUNK_SIZE", 10)

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").strip().upper()

__all__ = [
    "BATCH_LOOKUP_CHUNK_SIZE",
    "LOG_LEVEL",
    "REPORT_MAX_WORKERS",
    "STORE_BACKEND",
    "SUPABASE_KEY",
    "SUPABASE_URL",
]
