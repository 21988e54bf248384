"""Tests for the service-wide logging configuration."""

from __future__ import annotations

import logging

import pytest

from auditlog.logging_setup import (
    RequestContextFilter,
    TimestampedLogFileHandler,
    resolve_level,
    resolve_log_dir,
    start_log,
)


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


def _record(message: str = "hello") -> logging.LogRecord:
    return logging.LogRecord("auditlog.test", logging.INFO, __file__, 1, message, None, None)


class TestResolveLevel:
    @pytest.mark.parametrize("value, expected", [("debug", logging.DEBUG), ("15", 15), (30, 30), ("nonsense", logging.INFO)])
    def test_explicit(self, value, expected) -> None:
        assert resolve_level(value) == expected

    def test_environment_fallback(self, monkeypatch) -> None:
        monkeypatch.setenv("LOG_LEVEL", "WARNING")
        assert resolve_level() == logging.WARNING
        monkeypatch.delenv("LOG_LEVEL")
        assert resolve_level() == logging.INFO

    def test_log_dir_from_environment(self, monkeypatch, tmp_path) -> None:
        monkeypatch.setenv("LOG_DIR", str(tmp_path))
        assert resolve_log_dir() == tmp_path
        assert resolve_log_dir(tmp_path / "explicit") == tmp_path / "explicit"


class TestRequestContextFilter:
    def test_outside_a_request(self) -> None:
        record = _record()
        assert RequestContextFilter().filter(record)
        assert record.request == "-"

    def test_inside_a_request(self, app) -> None:
        record = _record()
        with app.test_request_context("/api/auditlogs/search", method="POST"):
            RequestContextFilter().filter(record)
        assert record.request == "POST /api/auditlogs/search"


class TestTimestampedLogFileHandler:
    def test_rollover_starts_a_new_file(self, tmp_path) -> None:
        handler = TimestampedLogFileHandler(tmp_path, prefix="roll", max_bytes=64)
        handler.setFormatter(logging.Formatter("%(message)s"))
        try:
            for index in range(5):
                handler.emit(_record(f"line {index} " + "x" * 40))
        finally:
            handler.close()

        files = sorted(tmp_path.glob("roll-*.log"))
        assert len(files) >= 2
        assert all(path.stat().st_size <= 64 for path in files)


class TestStartLog:
    def test_writes_to_file_with_request_field(self, tmp_path, restore_root_logger) -> None:
        root = start_log(app_name="svc", log_dir=tmp_path, level="INFO", to_console=False)
        logging.getLogger("auditlog.test").warning("something happened")
        for handler in root.handlers:
            handler.flush()

        (log_file,) = tmp_path.glob("svc-*.log")
        content = log_file.read_text(encoding="utf-8")
        assert "auditlog.test {-}: something happened" in content

    def test_second_call_replaces_only_its_own_handlers(self, tmp_path, restore_root_logger) -> None:
        foreign = logging.NullHandler()
        restore_root_logger.addHandler(foreign)

        start_log(app_name="one", log_dir=tmp_path, to_console=True)
        start_log(app_name="two", log_dir=tmp_path, to_console=False)

        handlers = restore_root_logger.handlers
        assert foreign in handlers
        owned = [h for h in handlers if isinstance(h, TimestampedLogFileHandler)]
        assert len(owned) == 1
        assert owned[0].prefix == "two"
        assert [h for h in handlers if getattr(h, "_auditlog_owned", False)] == owned
