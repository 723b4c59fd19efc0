import logging

import structlog

from store_insights.utils.logger import (
    MAX_VALUE_CHARS,
    LogContext,
    get_logger,
    setup_logging,
    truncate_long_values,
)


def test_get_logger_returns_bound_logger():
    logger = get_logger("store_insights.test")
    assert hasattr(logger, "info")
    assert hasattr(logger, "bind")


def test_log_context_binds_and_unbinds():
    with LogContext(analysis_id="a-1", store_id=7):
        context = structlog.contextvars.get_contextvars()
        assert context["analysis_id"] == "a-1"
        assert context["store_id"] == 7
    assert "analysis_id" not in structlog.contextvars.get_contextvars()


def test_nested_log_context_restores_outer_values():
    with LogContext(analysis_id="a-1", stage="analyst"):
        with LogContext(stage="critic"):
            assert structlog.contextvars.get_contextvars()["stage"] == "critic"
        context = structlog.contextvars.get_contextvars()
        assert context["stage"] == "analyst"
        assert context["analysis_id"] == "a-1"
    assert "stage" not in structlog.contextvars.get_contextvars()


def test_truncate_long_values():
    event = {"event": "x" * 1000, "response": "y" * 1000, "count": 3, "short": "ok"}
    truncated = truncate_long_values(None, "info", event)
    assert truncated["event"] == "x" * 1000
    assert truncated["response"].startswith("y" * MAX_VALUE_CHARS + "...")
    assert truncated["response"].endswith("[1000 chars]")
    assert truncated["count"] == 3
    assert truncated["short"] == "ok"


def test_setup_logging_writes_json(capsys):
    setup_logging(level="INFO", json_format=True)
    with LogContext(analysis_id="a-1"):
        structlog.get_logger("store_insights.test").info("Stage completed", stage="analyst")
    out = capsys.readouterr().out
    assert '"stage": "analyst"' in out
    assert '"analysis_id": "a-1"' in out
    structlog.reset_defaults()


def test_setup_logging_routes_console_output_through_handler():
    records: list[logging.LogRecord] = []

    class Collect(logging.Handler):
        def emit(self, record):
            records.append(record)

    setup_logging(level="WARNING", json_format=False, handler=Collect())
    logger = structlog.get_logger("store_insights.test")
    logger.info("hidden")
    logger.warning("Stage failed", stage="critic")

    assert len(records) == 1
    message = records[0].getMessage()
    assert "Stage failed" in message
    assert "stage=critic" in message
    assert logging.getLogger("httpx").level == logging.WARNING
    structlog.reset_defaults()
