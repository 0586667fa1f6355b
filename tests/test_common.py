"""Tests for the shared logging and warehouse helpers."""

import io
import json
import logging

import pytest

from roadgrid.common import (
    SnowflakeConnection,
    TimedLogger,
    get_logger,
    setup_logging,
    split_sql_statements,
)


@pytest.fixture
def log_stream():
    stream = io.StringIO()
    yield stream
    setup_logging()


class TestLogging:
    def test_module_loggers_share_one_handler(self, log_stream):
        setup_logging(level="INFO", enable_structured=False, stream=log_stream)
        setup_logging(level="INFO", enable_structured=False, stream=log_stream)

        get_logger("ingest.features").info("hello")

        assert len(logging.getLogger("roadgrid").handlers) == 1
        assert log_stream.getvalue().count("hello") == 1

    def test_level_change_reaches_module_loggers(self, log_stream):
        setup_logging(level="INFO", enable_structured=False, stream=log_stream)
        get_logger("routing.travel").debug("hidden")
        setup_logging(level="DEBUG", enable_structured=False, stream=log_stream)
        get_logger("routing.travel").debug("shown")

        output = log_stream.getvalue()
        assert "hidden" not in output
        assert "shown" in output

    def test_structured_records(self, log_stream):
        setup_logging(level="INFO", enable_structured=True, stream=log_stream)
        get_logger("pipeline").info("phase done", extra={"phase": "roads"})

        record = json.loads(log_stream.getvalue().strip())
        assert record["message"] == "phase done"
        assert record["phase"] == "roads"
        assert record["service"] == "roadgrid"
        assert record["logger"] == "roadgrid.pipeline"
        assert record["level"] == "INFO"

    def test_timed_logger_reraises(self, log_stream):
        setup_logging(level="INFO", enable_structured=True, stream=log_stream)
        with pytest.raises(KeyError):
            with TimedLogger(get_logger("pipeline"), "broken step", region_id="demo"):
                raise KeyError("x")

        failed = json.loads(log_stream.getvalue().strip().splitlines()[-1])
        assert failed["event"] == "operation_failed"
        assert failed["error_type"] == "KeyError"
        assert failed["region_id"] == "demo"
        assert failed["success"] is False


def test_split_sql_statements():
    sql = """
    -- regions; one row per playable area
    CREATE TABLE A (ID INT);

    -- edges
    CREATE TABLE B (ID INT);
    """
    assert split_sql_statements(sql) == ["CREATE TABLE A (ID INT)", "CREATE TABLE B (ID INT)"]


def test_connect_params_carry_query_tag():
    params = SnowflakeConnection(schema="CORE")._connect_params("ingest demo: roads")
    assert params["schema"] == "CORE"
    assert params["session_parameters"] == {"QUERY_TAG": "roadgrid:ingest demo: roads"}
    assert "password" in params
