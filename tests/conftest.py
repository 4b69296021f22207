"""Pytest configuration and fixtures."""

import os

import pytest

_TEST_ENV = {
    "SUPABASE_URL": "https://test.supabase.co",
    "SUPABASE_SERVICE_ROLE_KEY": "test-key",
    "OPENAI_API_KEY": "test-openai-key",
    "ANTHROPIC_API_KEY": "test-anthropic-key",
    "ASSISTANT_ENV": "test",
    "TRAINING_CAPTURE_ENABLED": "true",
}

# Modules read settings at import time in a few places (loggers)
for _key, _value in _TEST_ENV.items():
    os.environ.setdefault(_key, _value)


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    os.environ.update(_TEST_ENV)
    os.environ.pop("POSTHOG_API_KEY", None)


@pytest.fixture
def fake_db():
    """Empty in-memory Supabase wired into every db call site."""
    from tests.fakes.fake_supabase import FakeSupabase, patched_supabase

    with patched_supabase(FakeSupabase()) as fake:
        yield fake
