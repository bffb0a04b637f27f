"""Tests for logging setup and helpers."""

from __future__ import annotations

import pytest

from appliance_installer import logging as logging_module


@pytest.fixture
def records():
    logging_module.logger.remove()
    captured: list[dict] = []

    def sink(message):
        captured.append(message.record)

    logging_module.logger.add(sink, level="TRACE", enqueue=False)
    yield captured
    logging_module.logger.remove()


def test_setup_logging_creates_log_files(tmp_path):
    """Test file sinks are created in the requested directory."""
    log_dir = tmp_path / "logs"
    logging_module.setup_logging(debug=True, log_dir=log_dir)

    logging_module.get_logger(source="test", tags=["unit"]).info("hello")
    logging_module.logger.complete()
    logging_module.logger.remove()

    assert (log_dir / "operations.log").exists()
    assert (log_dir / "debug.log").exists()
    assert (log_dir / "structured.jsonl").exists()


def test_setup_logging_without_debug_has_no_debug_log(tmp_path):
    log_dir = tmp_path / "logs"
    logging_module.setup_logging(log_dir=log_dir)
    logging_module.logger.complete()
    logging_module.logger.remove()

    assert not (log_dir / "debug.log").exists()


def test_get_logger_preserves_context_metadata(records):
    """Test bound logger keeps job_id, tags, and source metadata."""
    log = logging_module.get_logger(job_id="job-123", tags=["install"], source="install")
    log.info("Context test")

    record = records[0]
    assert record["extra"]["job_id"] == "job-123"
    assert record["extra"]["tags"] == ["install"]
    assert record["extra"]["source"] == "install"


def test_progress_filter_blocks_debug_progress():
    """Test console filter suppresses per-chunk progress below INFO."""
    record = {
        "message": "Copied 1MB",
        "extra": {"tags": ["disk", "progress"]},
        "level": logging_module.logger.level("DEBUG"),
    }
    assert logging_module._should_log_progress(record) is False

    record["level"] = logging_module.logger.level("INFO")
    assert logging_module._should_log_progress(record) is True


def test_progress_filter_passes_other_records():
    record = {
        "message": "Running command",
        "extra": {"tags": ["command"]},
        "level": logging_module.logger.level("DEBUG"),
    }
    assert logging_module._should_log_progress(record) is True


def test_logger_factory_sources(records):
    logging_module.LoggerFactory.for_disk().info("disk")
    logging_module.LoggerFactory.for_command().info("command")
    logging_module.LoggerFactory.for_system().info("system")

    assert [r["extra"]["source"] for r in records] == ["disk", "command", "system"]


def test_operation_context_logs_success(records):
    with logging_module.operation_context("install", disk="/dev/sdb") as log:
        log.debug("inside")

    messages = [r["message"] for r in records]
    assert messages[0] == "Install started"
    assert messages[-1] == "Install completed"
    assert records[-1]["level"].name == "SUCCESS"
    assert records[0]["extra"]["job_id"].startswith("install-")


def test_operation_context_logs_failure_and_reraises(records):
    with pytest.raises(ValueError):
        with logging_module.operation_context("install"):
            raise ValueError("boom")

    assert records[-1]["message"] == "Install failed"
    assert records[-1]["extra"]["error"] == "boom"
    assert records[-1]["extra"]["error_type"] == "ValueError"


def test_throttled_logger_limits_frequency(records, mocker):
    clock = mocker.patch.object(logging_module.time, "time", return_value=100.0)
    throttled = logging_module.ThrottledLogger(logging_module.logger, interval_seconds=5.0)

    throttled.debug("copy", "first")
    throttled.debug("copy", "second")
    clock.return_value = 106.0
    throttled.debug("copy", "third")
    throttled.debug("other", "fourth")

    assert [r["message"] for r in records] == ["first", "third", "fourth"]
