from __future__ import annotations

import json
import logging

import pytest

from daily_discovery.utils.logging_config import (
    ColoredConsoleFormatter,
    StructuredFormatter,
    log_pipeline_metrics,
    setup_logging,
)


def make_record(message: str = "fetched 4 items", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        "daily_discovery.services.source_fetcher", logging.WARNING, __file__, 10, message, None, None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_structured_formatter_includes_extra_data() -> None:
    line = StructuredFormatter().format(make_record(extra_data={"stage": "tech:dedupe+recency"}))

    entry = json.loads(line)
    assert entry["level"] == "WARNING"
    assert entry["message"] == "fetched 4 items"
    assert entry["extra"] == {"stage": "tech:dedupe+recency"}


def test_console_formatter_skips_color_off_terminal() -> None:
    plain = ColoredConsoleFormatter(use_color=False).format(make_record())
    colored = ColoredConsoleFormatter(use_color=True).format(make_record())

    assert "\033[" not in plain
    assert "[services.source_fetcher" in plain
    assert colored.startswith("\033[33m")


def test_setup_logging_writes_log_file(tmp_path, restore_root_logger) -> None:
    setup_logging(log_level="debug", log_dir=str(tmp_path / "logs"), structured=True)

    log_pipeline_metrics(logging.getLogger("daily_discovery.pipeline.discovery_aggregator"), "tech:merge", 10, 4, 1.5)
    for handler in restore_root_logger.handlers:
        handler.flush()

    lines = (tmp_path / "logs" / "daily_discovery.log").read_text(encoding="utf-8").splitlines()
    entry = json.loads(lines[-1])
    assert entry["extra"]["input_count"] == 10
    assert entry["extra"]["reduction_rate"] == 0.6
    assert not (tmp_path / "logs" / "errors.log").exists()
