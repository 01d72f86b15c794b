"""
Supabase client initialization.

This module contains *only* the database connection setup. The client is
created on first call to `get_supabase()` so that importing the repositories
(e.g. from tests running against the in-memory store) never requires
credentials.

Environment variables required (see config.py):
- SUPABASE_URL: Your Supabase project URL
- SUPABASE_KEY: Your Supabase API key (use a server-side key only on the backend)
"""

from __future__ import annotations

import threading
from typing import Optional

from supabase import Client, create_client  # type: ignore[import-not-found]

import config

_client: Optional[Client] = None
_lock = threading.Lock()


def get_supabase() -> Client:
    """Return the shared Supabase client, creating it on first use."""

    global _client
    if _client is not None:
        return _client

    with _lock:
        if _client is None:
            if not config.SUPABASE_URL:
                raise RuntimeError(
                    "Missing environment variable: SUPABASE_URL. "
                    "Set SUPABASE_URL to your Supabase project URL."
                )
            if not config.SUPABASE_KEY:
                raise RuntimeError(
                    "Missing environment variable: SUPABASE_KEY. "
                    "Set SUPABASE_KEY to your Supabase API key."
                )
            _client = create_client(config.SUPABASE_URL, config.SUPABASE_KEY)
    return _client


__all__ = ["get_supabase"]
