"""Per-user monthly quota ledger backed by the use_quota RPC.

The RPC increments the counter and rolls the increment back when it would
pass the plan limit, inside one statement block. Two concurrent requests can
never both take the last unit, so no lock is held on this side.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any
from uuid import UUID

from assistant_engine.core.logging import get_logger
from assistant_engine.core.outcomes import InfraFailure, QuotaExceeded, QuotaGranted, QuotaOutcome
from assistant_engine.db.supabase_client import get_supabase

logger = get_logger(__name__)

UNLIMITED = -1


@dataclass(frozen=True)
class QuotaUsage:
    key: str
    used: int
    limit: int
    period_start: date

    @property
    def remaining(self) -> int | None:
        if self.limit == UNLIMITED:
            return None
        return max(self.limit - self.used, 0)


def current_period_start(now: datetime | None = None) -> date:
    """First day of the current calendar month (UTC)."""
    now = now or datetime.now(timezone.utc)
    return now.date().replace(day=1)


def _first_row(data: Any) -> dict[str, Any]:
    if isinstance(data, list):
        if not data:
            raise ValueError("use_quota returned no rows")
        return data[0]
    if isinstance(data, dict):
        return data
    raise ValueError(f"Unexpected use_quota result: {data!r}")


def consume(user_id: str | UUID, key: str, amount: int = 1) -> QuotaOutcome:
    """Atomically take ``amount`` units of ``key`` for this month.

    Returns:
        QuotaGranted, QuotaExceeded (with used/limit), or InfraFailure when the
        data store could not be reached. Never raises for store errors.
    """
    if amount < 1:
        raise ValueError("amount must be >= 1")

    try:
        response = (
            get_supabase()
            .rpc("use_quota", {"p_user": str(user_id), "p_key": key, "p_amount": amount})
            .execute()
        )
        row = _first_row(response.data)
        allowed = bool(row["allowed"])
        used = int(row["used"])
        limit = int(row["limit"])
    except Exception as e:
        logger.error(f"Quota check failed for user {user_id} ({key}): {e}")
        return InfraFailure(stage="quota", error=e)

    if not allowed:
        logger.info(f"Quota exceeded for user {user_id}: {key} {used}/{limit}")
        return QuotaExceeded(key=key, used=used, limit=limit)

    logger.debug(f"Quota consumed for user {user_id}: {key} {used}/{limit}")
    return QuotaGranted(key=key, used=used, limit=limit)


def get_usage(user_id: str | UUID, key: str) -> QuotaUsage:
    """Read this month's usage and the plan limit without consuming anything."""
    supabase = get_supabase()
    period = current_period_start()

    counter = (
        supabase.table("usage_counters")
        .select("value")
        .eq("user_id", str(user_id))
        .eq("key", key)
        .eq("period_start", period.isoformat())
        .limit(1)
        .execute()
    )
    used = int(counter.data[0]["value"]) if counter.data else 0

    limit_response = (
        supabase.rpc("get_quota_limit", {"p_user": str(user_id), "p_key": key}).execute()
    )
    limit = int(limit_response.data) if limit_response.data is not None else 0

    return QuotaUsage(key=key, used=used, limit=limit, period_start=period)
