"""Tests for pkgsmith.utils logging and file helpers."""

import json
import logging

from pkgsmith.utils import (
    SessionLogger,
    StructuredFormatter,
    copy_file,
    format_duration,
    get_file_checksum,
    setup_logging,
)


class TestStructuredFormatter:
    def test_extra_fields_emitted(self):
        record = logging.LogRecord("pkgsmith", logging.INFO, __file__, 1, "running %s", ("make",), None)
        record.step = "make"
        record.event = "step_started"
        record.package = "hello"
        data = json.loads(StructuredFormatter().format(record))
        assert data["message"] == "running make"
        assert data["level"] == "INFO"
        assert data["step"] == "make"
        assert data["event"] == "step_started"
        assert data["package"] == "hello"
        assert data["timestamp"].endswith("Z")


class TestSessionLogger:
    def test_prefix_and_extra_merge(self, caplog):
        logger = SessionLogger(logging.getLogger("pkgsmith.test"), "hello", "x86_64")
        with caplog.at_level(logging.INFO, logger="pkgsmith.test"):
            logger.info("building", extra={"event": "build_started"})
        record = caplog.records[-1]
        assert record.getMessage() == "hello/x86_64: building"
        assert record.package == "hello"
        assert record.arch == "x86_64"
        assert record.event == "build_started"


class TestSetupLogging:
    def test_structured_log_file(self, tmp_path):
        log_file = tmp_path / "logs" / "build.log"
        logger = setup_logging(log_file=log_file, log_format="structured", console_output=False)
        logger.info("hello", extra={"event": "test"})
        for handler in logger.handlers:
            handler.flush()
        line = json.loads(log_file.read_text().splitlines()[0])
        assert line["event"] == "test"
        assert logger.propagate is False


class TestFileHelpers:
    def test_copy_file_with_mode(self, tmp_path):
        (tmp_path / "src" / "a").mkdir(parents=True)
        (tmp_path / "src" / "a" / "f.txt").write_text("data")
        dest = copy_file(tmp_path / "src", "a/f.txt", tmp_path / "dst", mode=0o640)
        assert dest.read_text() == "data"
        assert dest.stat().st_mode & 0o777 == 0o640

    def test_checksum(self, tmp_path):
        path = tmp_path / "f"
        path.write_bytes(b"")
        assert get_file_checksum(path) == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"

    def test_format_duration(self):
        assert format_duration(5) == "5s"
        assert format_duration(83) == "1m 23s"
        assert format_duration(3725) == "1h 2m 5s"
