"""
scrypture-store: unit tests for structured logging setup

File: tests/unit/observability/test_logging.py

Purpose
- Validate level filtering and the json/console renderers configured through structlog.
"""

from __future__ import annotations

import io
import json

import pytest
import structlog

from scrypture.observability.logging import configure_logging


def test_json_lines_carry_event_level_and_context() -> None:
    stream = io.StringIO()
    configure_logging("INFO", "json", stream=stream)

    structlog.get_logger("scrypture.test").info("backup_saved", key="scrypture_backup")

    [line] = stream.getvalue().splitlines()
    record = json.loads(line)
    assert record["event"] == "backup_saved"
    assert record["level"] == "info"
    assert record["key"] == "scrypture_backup"
    assert record["timestamp"].endswith("Z")


def test_level_filtering_drops_lower_levels() -> None:
    stream = io.StringIO()
    configure_logging("warning", "json", stream=stream)
    logger = structlog.get_logger("scrypture.test")

    logger.info("ignored")
    logger.warning("kept")

    lines = stream.getvalue().splitlines()
    assert [json.loads(line)["event"] for line in lines] == ["kept"]


def test_console_format_renders_event_name() -> None:
    stream = io.StringIO()
    configure_logging("DEBUG", "console", stream=stream)

    structlog.get_logger("scrypture.test").debug("tutorial_started", current_step="B")

    output = stream.getvalue()
    assert "tutorial_started" in output
    assert "current_step" in output


@pytest.mark.parametrize(
    ("level", "fmt"),
    [("TRACE", "json"), (True, "json"), ("INFO", "xml")],
)
def test_invalid_settings_are_rejected(level: object, fmt: str) -> None:
    with pytest.raises(ValueError):
        configure_logging(level, fmt)  # type: ignore[arg-type]
