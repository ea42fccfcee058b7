"""
Supabase client access for the campaign store and video storage.
"""

from datetime import datetime, timezone
from typing import Optional

from supabase import create_client, Client

from .config import Config


_client: Optional[Client] = None


def get_supabase_client() -> Client:
    """
    Return the shared Supabase client, creating it on first use.

    Raises:
        ValueError: If SUPABASE_URL / SUPABASE_SERVICE_KEY are not configured
    """
    global _client

    if _client is None:
        Config.validate()
        _client = create_client(Config.SUPABASE_URL, Config.SUPABASE_SERVICE_KEY)

    return _client


def reset_supabase_client() -> None:
    """Drop the cached client so the next call reconnects (tests, key rotation)."""
    global _client
    _client = None


def utc_now_iso() -> str:
    """Timestamp format used for every *_at column we write."""
    return datetime.now(timezone.utc).isoformat()
