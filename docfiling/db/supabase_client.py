"""
Supabase client initialization.

Provides a thread-safe singleton client for the optional persistent store.
The service role key is preferred so backend writes bypass RLS; the anon
key is used otherwise.
"""

import asyncio
import threading
from typing import Any, Callable

from supabase import Client, create_client

from docfiling.config import get_settings
from docfiling.utils.retry import retry_with_backoff

_client: Client | None = None
_lock = threading.Lock()


def get_supabase_client() -> Client:
    """
    Return the shared Supabase client, initializing it once.

    Returns:
        Client: Shared Supabase client instance

    Raises:
        ValueError: If Supabase is not configured or the client cannot be created
    """
    global _client
    if _client is not None:
        return _client
    with _lock:
        if _client is not None:
            return _client
        settings = get_settings()
        if not settings.supabase_configured:
            raise ValueError("Supabase is not configured (set SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY)")
        key = settings.supabase_service_role_key or settings.supabase_key
        try:
            _client = create_client(settings.supabase_url, key)
            return _client
        except Exception as e:
            raise ValueError(f"Failed to create Supabase client: {str(e)}") from e


def reset_supabase_client() -> None:
    """Drop the cached client (used when settings change, e.g. in tests)."""
    global _client
    with _lock:
        _client = None


@retry_with_backoff()
async def execute_query(query: Callable[[], Any]) -> Any:
    """Run a synchronous Supabase query in a worker thread.

    Transient failures (429, 5xx, network errors) are retried with backoff;
    anything else propagates unchanged.
    """
    return await asyncio.to_thread(query)
