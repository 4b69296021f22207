"""Supabase client initialization."""

from functools import lru_cache

from supabase import Client, ClientOptions, create_client

from assistant_engine.core.config import get_settings


@lru_cache(maxsize=1)
def get_supabase() -> Client:
    """
    Get the shared Supabase client (service role).

    The client is stateless with respect to requests; thread, message, quota
    and corpus access all go through it. PostgREST calls are bounded by
    DB_TIMEOUT_SECONDS so a stuck store surfaces as an infrastructure error
    instead of hanging the request past its deadline.

    Raises:
        RuntimeError: If client initialization fails
    """
    settings = get_settings()
    try:
        options = ClientOptions(postgrest_client_timeout=settings.DB_TIMEOUT_SECONDS)
        return create_client(
            settings.SUPABASE_URL,
            settings.SUPABASE_SERVICE_ROLE_KEY,
            options=options,
        )
    except Exception as e:
        raise RuntimeError(f"Failed to initialize Supabase client: {e}") from e
