"""Tests for the quota ledger."""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from assistant_engine.core.outcomes import InfraFailure, QuotaExceeded, QuotaGranted
from assistant_engine.db import quota as quota_db
from tests.fakes.fake_supabase import make_use_quota

USER = "11111111-1111-1111-1111-111111111111"


def test_granted_within_limit(fake_db):
    fake_db.rpc_handlers["use_quota"] = make_use_quota({USER: 3})

    outcome = quota_db.consume(USER, "rag_messages")

    assert outcome == QuotaGranted(key="rag_messages", used=1, limit=3)
    name, params = fake_db.rpc_calls[0]
    assert name == "use_quota"
    assert params == {"p_user": USER, "p_key": "rag_messages", "p_amount": 1}


def test_exceeded_carries_used_and_limit(fake_db):
    fake_db.rpc_handlers["use_quota"] = make_use_quota({USER: 2})
    quota_db.consume(USER, "rag_messages")
    quota_db.consume(USER, "rag_messages")

    outcome = quota_db.consume(USER, "rag_messages")

    assert isinstance(outcome, QuotaExceeded)
    assert (outcome.used, outcome.limit) == (2, 2)
    assert "2/2" in outcome.message


def test_unlimited_plan(fake_db):
    fake_db.rpc_handlers["use_quota"] = make_use_quota({USER: -1})
    outcomes = [quota_db.consume(USER, "rag_messages") for _ in range(25)]
    assert all(isinstance(o, QuotaGranted) and o.unlimited for o in outcomes)


def test_store_failure_is_infra_failure(fake_db):
    fake_db.failing.add("use_quota")
    outcome = quota_db.consume(USER, "rag_messages")
    assert isinstance(outcome, InfraFailure)
    assert outcome.stage == "quota"


def test_rejects_non_positive_amount():
    with pytest.raises(ValueError):
        quota_db.consume(USER, "rag_messages", amount=0)


@pytest.mark.parametrize("limit", [1, 5, 20])
def test_concurrent_consumers_never_exceed_limit(fake_db, limit):
    """2N simultaneous requests against a limit of N: exactly N succeed."""
    handler = make_use_quota({USER: limit})
    fake_db.rpc_handlers["use_quota"] = handler

    with ThreadPoolExecutor(max_workers=2 * limit) as pool:
        outcomes = list(pool.map(lambda _: quota_db.consume(USER, "rag_messages"), range(2 * limit)))

    granted = [o for o in outcomes if isinstance(o, QuotaGranted)]
    refused = [o for o in outcomes if isinstance(o, QuotaExceeded)]
    assert len(granted) == limit
    assert len(refused) == limit
    assert sorted(o.used for o in granted) == list(range(1, limit + 1))
    assert handler.counters[(USER, "rag_messages")] == limit


@pytest.mark.asyncio
async def test_concurrent_consumers_from_event_loop(fake_db):
    fake_db.rpc_handlers["use_quota"] = make_use_quota({USER: 4})

    outcomes = await asyncio.gather(
        *[asyncio.to_thread(quota_db.consume, USER, "rag_messages") for _ in range(8)]
    )

    assert sum(isinstance(o, QuotaGranted) for o in outcomes) == 4


def test_get_usage_reads_counter_and_limit(fake_db):
    period = quota_db.current_period_start()
    fake_db.seed(
        "usage_counters",
        [{"user_id": USER, "key": "rag_messages", "period_start": period.isoformat(), "value": 7}],
    )
    fake_db.rpc_handlers["get_quota_limit"] = lambda params: 50

    usage = quota_db.get_usage(USER, "rag_messages")

    assert (usage.used, usage.limit, usage.remaining) == (7, 50, 43)
    assert usage.period_start == period


def test_get_usage_without_counter(fake_db):
    fake_db.rpc_handlers["get_quota_limit"] = lambda params: -1
    usage = quota_db.get_usage(USER, "rag_messages")
    assert usage.used == 0
    assert usage.remaining is None


def test_period_start_is_first_of_month():
    assert quota_db.current_period_start(datetime(2026, 3, 17, 23, 59, tzinfo=timezone.utc)).isoformat() == "2026-03-01"


def test_rpc_returning_single_object():
    sb = MagicMock()
    sb.rpc.return_value.execute.return_value = MagicMock(data={"allowed": True, "used": 1, "limit": 10})
    with patch("assistant_engine.db.quota.get_supabase", return_value=sb):
        outcome = quota_db.consume(USER, "rag_messages")
    assert outcome == QuotaGranted(key="rag_messages", used=1, limit=10)
