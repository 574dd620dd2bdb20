"""Supabase client used by the snapshot store."""

import logging
from functools import lru_cache
from typing import Optional

from supabase import Client, create_client

from ..config import settings


@lru_cache()
def get_supabase_client(url: Optional[str] = None, key: Optional[str] = None) -> Client | None:
    """Cached Supabase client, or None when credentials are missing.

    Creating the client does not contact the server; snapshot reads and writes
    may still fail with network errors.
    """
    url = url or settings.supabase_url
    key = key or settings.supabase_key
    if not url or not key:
        logging.info("Supabase credentials not configured; session snapshots stay on the filesystem")
        return None

    try:
        return create_client(url, key)
    except Exception as e:
        logging.error(f"Failed to create Supabase client for session snapshots: {e}")
        return None
