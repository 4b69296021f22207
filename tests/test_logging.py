"""Tests for structured log lines and request correlation fields."""

import logging

import pytest

from assistant_engine.core.logging import StructuredFormatter, log_with_context


class _ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


@pytest.fixture
def captured():
    logger = logging.getLogger("tests.structured")
    logger.setLevel(logging.DEBUG)
    handler = _ListHandler()
    logger.addHandler(handler)
    yield logger, handler
    logger.removeHandler(handler)


def test_correlation_fields_follow_message_in_fixed_order(captured):
    logger, handler = captured

    log_with_context(
        logger,
        logging.INFO,
        "Ask finished",
        elapsed_ms=812,
        stage="persist",
        user_id="user-1",
        request_id="3f9a1c0e7b2d",
    )

    line = StructuredFormatter().format(handler.records[0])
    tail = line.split("message=Ask finished ", 1)[1]
    assert tail == "request_id=3f9a1c0e7b2d user_id=user-1 stage=persist elapsed_ms=812"


def test_missing_correlation_fields_are_omitted(captured):
    logger, handler = captured

    log_with_context(logger, logging.WARNING, "Quota check failed", key="rag_messages")

    line = StructuredFormatter().format(handler.records[0])
    assert "request_id=" not in line
    assert "stage=" not in line
    assert line.endswith("message=Quota check failed key=rag_messages")


def test_exc_info_appends_traceback(captured):
    logger, handler = captured

    try:
        raise ConnectionError("db down")
    except ConnectionError:
        log_with_context(logger, logging.ERROR, "Ask pipeline failed", exc_info=True, stage="retrieval")

    line = StructuredFormatter().format(handler.records[0])
    first, _, trace = line.partition("\n")
    assert first.endswith("stage=retrieval")
    assert "ConnectionError: db down" in trace
