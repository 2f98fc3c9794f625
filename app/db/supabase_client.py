"""Supabase client for the canvas store."""

from functools import lru_cache
from typing import Any

from supabase import Client, create_client

from app.core.config import get_settings


@lru_cache(maxsize=1)
def get_supabase() -> Client:
    """
    Get Supabase client instance (cached singleton).

    Returns:
        Supabase client configured with service role key

    Raises:
        RuntimeError: If client initialization fails
    """
    try:
        settings = get_settings()
        return create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)
    except Exception as e:
        raise RuntimeError(f"Failed to initialize Supabase client: {e}") from e


def first_row(response: Any) -> dict[str, Any] | None:
    """First row of a PostgREST/RPC response, or None when empty.

    RPC functions returning a single composite come back as a dict rather
    than a list; both shapes are accepted.
    """
    data = getattr(response, "data", None)
    if not data:
        return None
    if isinstance(data, list):
        return data[0]
    return data
