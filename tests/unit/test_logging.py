"""Unit tests for DSS logging module."""

import json
import logging
import sys
import threading
from pathlib import Path

from dss.logging import (
    ConsoleFormatter,
    JsonFormatter,
    LoggerAdapter,
    clear_worker_context,
    get_logger,
    get_worker_logger,
    set_worker_context,
    setup_logging,
)


def _record(msg: str = "Test message", level: int = logging.INFO, exc_info=None) -> logging.LogRecord:
    return logging.LogRecord(
        name="dss.test",
        level=level,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


class TestJsonFormatter:
    """Tests for JSON log formatter."""

    def test_format_basic_message(self) -> None:
        """Test formatting basic log message."""
        data = json.loads(JsonFormatter().format(_record()))

        assert data["message"] == "Test message"
        assert data["level"] == "info"
        assert data["logger"] == "dss.test"
        assert data["ts"].endswith("Z")

    def test_format_with_exception(self) -> None:
        """Test formatting message with exception."""
        try:
            raise ValueError("Test error")
        except ValueError:
            exc_info = sys.exc_info()

        data = json.loads(JsonFormatter().format(_record("Error occurred", logging.ERROR, exc_info)))

        assert data["level"] == "error"
        assert "ValueError" in data["exception"]

    def test_format_with_worker_fields(self) -> None:
        """Worker fields passed as extra end up in the JSON document."""
        record = _record()
        record.label = "dss-42-7"
        record.build_number = 7

        data = json.loads(JsonFormatter().format(record))

        assert data["label"] == "dss-42-7"
        assert data["build_number"] == 7
        assert "project" not in data

    def test_format_with_context(self) -> None:
        """Thread context set via set_worker_context is included."""
        set_worker_context(label="dss-1-1", project="p")
        try:
            data = json.loads(JsonFormatter().format(_record()))
        finally:
            clear_worker_context()

        assert data["label"] == "dss-1-1"
        assert data["project"] == "p"

    def test_context_is_per_thread(self) -> None:
        """Context set on a pool thread does not leak into other threads."""
        seen: list[dict] = []

        def worker_thread() -> None:
            set_worker_context(label="dss-9-9")
            seen.append(json.loads(JsonFormatter().format(_record())))

        thread = threading.Thread(target=worker_thread)
        thread.start()
        thread.join()

        assert seen[0]["label"] == "dss-9-9"
        assert "label" not in json.loads(JsonFormatter().format(_record()))


class TestConsoleFormatter:
    """Tests for console formatter."""

    def test_includes_level_and_message(self) -> None:
        result = ConsoleFormatter().format(_record(level=logging.WARNING))
        assert "WARNING" in result
        assert "Test message" in result

    def test_includes_label(self) -> None:
        record = _record()
        record.label = "dss-42-7"
        assert "[dss-42-7]" in ConsoleFormatter().format(record)

    def test_includes_traceback(self) -> None:
        try:
            raise RuntimeError("kaput")
        except RuntimeError:
            exc_info = sys.exc_info()
        result = ConsoleFormatter().format(_record(exc_info=exc_info))
        assert "RuntimeError: kaput" in result


class TestGetLogger:
    """Tests for logger naming."""

    def test_prefixes_namespace(self) -> None:
        assert get_logger("worker").name == "dss.worker"

    def test_keeps_qualified_names(self) -> None:
        assert get_logger("dss.hooks").name == "dss.hooks"
        assert get_logger("dss").name == "dss"


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_console_only(self) -> None:
        setup_logging(level="warn", json_output=False)
        root = logging.getLogger("dss")

        assert root.level == logging.WARNING
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, ConsoleFormatter)
        assert root.propagate is False

    def test_json_file_output(self, tmp_path: Path) -> None:
        setup_logging(level="debug", log_dir=tmp_path / "logs", json_output=True, console_output=False)
        logger = get_logger("test")
        logger.info("written to file")
        for handler in logging.getLogger("dss").handlers:
            handler.flush()

        lines = (tmp_path / "logs" / "dss.log").read_text().strip().splitlines()
        assert json.loads(lines[-1])["message"] == "written to file"

    def test_repeated_setup_replaces_handlers(self) -> None:
        setup_logging(json_output=False)
        setup_logging(json_output=False)
        assert len(logging.getLogger("dss").handlers) == 1


class TestWorkerLogger:
    """Tests for worker-bound logger adapters."""

    def test_adapter_adds_context(self) -> None:
        adapter = get_worker_logger("dss-42-7", "proj", 7)
        assert isinstance(adapter, LoggerAdapter)

        _, kwargs = adapter.process("hello", {})
        assert kwargs["extra"] == {"label": "dss-42-7", "project": "proj", "build_number": 7}

    def test_records_carry_label(self, caplog) -> None:
        adapter = get_worker_logger("dss-42-7")
        with caplog.at_level(logging.INFO, logger="dss"):
            adapter.info("container started")

        record = caplog.records[-1]
        assert record.label == "dss-42-7"
        assert record.getMessage() == "container started"
