"""Tests for JSON log formatter.

Tests verify that logs are formatted correctly with:
- Required schema fields (timestamp, level, service, run_id, message)
- Context taken from ``extra``, with NaN mapped to null
- Exception information and source location
"""

import json
import logging
import sys
from datetime import UTC, datetime

import pytest

from libs.common.logging.formatter import JSONFormatter


def _record(msg: str = "Test message", level: int = logging.INFO, **attrs: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="libs.multifactor.engine",
        level=level,
        pathname="/path/to/engine.py",
        lineno=42,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in attrs.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    """Test suite for JSONFormatter."""

    @pytest.fixture
    def formatter(self) -> JSONFormatter:
        return JSONFormatter(service_name="factor_research")

    def test_basic_log_format(self, formatter: JSONFormatter) -> None:
        """Basic log is valid JSON with the required fields."""
        log_dict = json.loads(formatter.format(_record(run_id="run-123")))

        assert "timestamp" in log_dict
        assert log_dict["level"] == "INFO"
        assert log_dict["service"] == "factor_research"
        assert log_dict["run_id"] == "run-123"
        assert log_dict["logger"] == "libs.multifactor.engine"
        assert log_dict["message"] == "Test message"

    def test_timestamp_format(self, formatter: JSONFormatter) -> None:
        """Timestamp is ISO 8601 in UTC with milliseconds."""
        record = _record()
        record.created = datetime(2025, 10, 21, 10, 30, 0, 123000, tzinfo=UTC).timestamp()

        log_dict = json.loads(formatter.format(record))

        assert log_dict["timestamp"] == "2025-10-21T10:30:00.123Z"

    def test_missing_run_id(self, formatter: JSONFormatter) -> None:
        log_dict = json.loads(formatter.format(_record()))
        assert log_dict["run_id"] is None

    def test_context_dict(self, formatter: JSONFormatter) -> None:
        record = _record(context={"factor_name": "value_momentum", "n_dates": 252})

        log_dict = json.loads(formatter.format(record))

        assert log_dict["context"] == {"factor_name": "value_momentum", "n_dates": 252}

    def test_extra_fields_as_context(self, formatter: JSONFormatter) -> None:
        """Non-reserved attributes passed via ``extra`` become context."""
        record = _record(ndays=5, n_dates=40, run_id="run-1")

        log_dict = json.loads(formatter.format(record))

        assert log_dict["context"] == {"ndays": 5, "n_dates": 40}

    def test_nan_context_is_null(self, formatter: JSONFormatter) -> None:
        """Undefined statistics are emitted as JSON null, not NaN."""
        record = _record(mean_ic=float("nan"), icir=float("inf"), n_periods=0)

        formatted = formatter.format(record)
        log_dict = json.loads(formatted)

        assert "NaN" not in formatted
        assert log_dict["context"] == {"mean_ic": None, "icir": None, "n_periods": 0}

    def test_already_formatted_record(self, formatter: JSONFormatter) -> None:
        """Attributes set by another formatter do not leak into context."""
        record = _record()
        logging.Formatter("%(asctime)s %(message)s").format(record)

        log_dict = json.loads(formatter.format(record))

        assert "context" not in log_dict

    def test_no_context_when_disabled(self) -> None:
        formatter = JSONFormatter(service_name="factor_research", include_context=False)

        log_dict = json.loads(formatter.format(_record(ndays=5)))

        assert "context" not in log_dict

    def test_exception_logging(self, formatter: JSONFormatter) -> None:
        try:
            raise ValueError("ir_n must be >= 2")
        except ValueError:
            record = logging.LogRecord(
                name="test",
                level=logging.ERROR,
                pathname="/path/to/file.py",
                lineno=42,
                msg="Pipeline failed",
                args=(),
                exc_info=sys.exc_info(),
            )

        log_dict = json.loads(formatter.format(record))

        assert log_dict["exception"]["type"] == "ValueError"
        assert log_dict["exception"]["message"] == "ir_n must be >= 2"
        assert "Traceback" in log_dict["exception"]["traceback"]

    def test_source_location(self, formatter: JSONFormatter) -> None:
        log_dict = json.loads(formatter.format(_record()))

        assert log_dict["source"]["file"] == "/path/to/engine.py"
        assert log_dict["source"]["line"] == 42

    @pytest.mark.parametrize(
        ("level", "name"),
        [
            (logging.DEBUG, "DEBUG"),
            (logging.INFO, "INFO"),
            (logging.WARNING, "WARNING"),
            (logging.ERROR, "ERROR"),
        ],
    )
    def test_different_log_levels(self, formatter: JSONFormatter, level: int, name: str) -> None:
        log_dict = json.loads(formatter.format(_record(level=level)))
        assert log_dict["level"] == name

    def test_message_with_args(self, formatter: JSONFormatter) -> None:
        record = logging.LogRecord(
            name="test",
            level=logging.INFO,
            pathname="/path/to/file.py",
            lineno=1,
            msg="Computed IC for %d dates",
            args=(40,),
            exc_info=None,
        )

        log_dict = json.loads(formatter.format(record))

        assert log_dict["message"] == "Computed IC for 40 dates"
