"""Server-side PostHog wrapper for events and error tracking.

No-op if POSTHOG_API_KEY is not set, so dev and test runs never send anything.
Nothing here raises: a broken analytics sink must not break a request.
"""

from typing import Any

from assistant_engine.core.logging import get_logger

logger = get_logger(__name__)

_posthog_client = None
_initialized = False


def _get_client():
    """Lazy-initialize PostHog client."""
    global _posthog_client, _initialized
    if _initialized:
        return _posthog_client

    _initialized = True
    try:
        from assistant_engine.core.config import get_settings

        settings = get_settings()
        if not settings.POSTHOG_API_KEY:
            logger.debug("PostHog API key not set, analytics disabled")
            return None

        import posthog

        posthog.api_key = settings.POSTHOG_API_KEY
        posthog.host = settings.POSTHOG_HOST
        _posthog_client = posthog
        logger.info("PostHog analytics initialized")
    except Exception as e:
        logger.warning(f"Failed to initialize PostHog: {e}")

    return _posthog_client


def track_server_event(
    user_id: str,
    event: str,
    properties: dict[str, Any] | None = None,
) -> None:
    """Track a server-side event in PostHog.

    Args:
        user_id: The user ID (UUID string) to associate with the event
        event: Event name (e.g., 'assistant_answered', 'assistant_quota_exceeded')
        properties: Optional event properties dict
    """
    client = _get_client()
    if not client:
        return

    try:
        client.capture(
            distinct_id=user_id,
            event=event,
            properties=properties or {},
        )
    except Exception as e:
        logger.warning(f"Failed to track event '{event}': {e}")


def capture_exception(
    error: BaseException,
    user_id: str | None = None,
    properties: dict[str, Any] | None = None,
) -> None:
    """Report an unexpected exception to PostHog error tracking.

    Args:
        error: The exception that aborted the request
        user_id: Requesting user, when known
        properties: Extra context (stage, capability, ...)
    """
    client = _get_client()
    if not client:
        return

    try:
        client.capture_exception(
            error,
            distinct_id=user_id,
            properties=properties or {},
        )
    except Exception as e:
        logger.warning(f"Failed to report exception to PostHog: {e}")
