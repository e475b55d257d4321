from __future__ import annotations

import json
import logging
import logging.handlers
from pathlib import Path
from typing import Any, Mapping, cast

import pytest

from unionstore.logging_config import (
    HumanReadableFormatter,
    JSONFormatter,
    get_log_level_from_env,
    get_logger,
    log_exception,
    parse_log_level,
    setup_logging,
)


def test_setup_logging_writes_json_file(tmp_path: Path, restore_root_logger) -> None:
    """Ensure logging setup adds JSON console output and a rotating file handler."""
    log_path = tmp_path / "logs" / "union.log"
    setup_logging(
        level=logging.DEBUG,
        format_type="json",
        log_file=log_path,
        include_context=True,
    )
    handlers = list(restore_root_logger.handlers)
    file_handler = next(
        handler
        for handler in handlers
        if isinstance(handler, logging.handlers.RotatingFileHandler)
    )
    console_handler = next(
        handler
        for handler in handlers
        if not isinstance(handler, logging.handlers.RotatingFileHandler)
    )

    assert isinstance(console_handler.formatter, JSONFormatter)
    assert isinstance(file_handler.formatter, JSONFormatter)
    logging.getLogger("unionstore.test").info("hello union", extra={"key": "s3:/k"})

    file_handler.flush()
    records = [
        json.loads(line)
        for line in log_path.read_text(encoding="utf-8").splitlines()
        if line.strip()
    ]
    record = next(r for r in records if r.get("message") == "hello union")
    assert record["level"] == "INFO"
    assert record["key"] == "s3:/k"


def test_setup_logging_reads_environment(monkeypatch, restore_root_logger) -> None:
    monkeypatch.setenv("UNIONSTORE_LOG_LEVEL", "debug")
    monkeypatch.setenv("UNIONSTORE_LOG_FORMAT", "human")
    monkeypatch.delenv("UNIONSTORE_LOG_FILE", raising=False)

    setup_logging()

    assert restore_root_logger.level == logging.DEBUG
    assert len(restore_root_logger.handlers) == 1
    assert isinstance(restore_root_logger.handlers[0].formatter, HumanReadableFormatter)


def test_log_level_falls_back_to_log_level_then_warning(monkeypatch) -> None:
    monkeypatch.delenv("UNIONSTORE_LOG_LEVEL", raising=False)
    monkeypatch.setenv("LOG_LEVEL", "ERROR")
    assert get_log_level_from_env() == logging.ERROR

    monkeypatch.delenv("LOG_LEVEL")
    assert get_log_level_from_env() == logging.WARNING


@pytest.mark.parametrize(
    "name, level",
    [("debug", logging.DEBUG), ("WARN", logging.WARNING), ("bogus", logging.WARNING)],
)
def test_parse_log_level(name: str, level: int) -> None:
    assert parse_log_level(name) == level


def test_get_logger_with_extra_returns_adapter() -> None:
    adapter = get_logger("unionstore.store", extra={"protocol": "s3"})
    assert isinstance(adapter, logging.LoggerAdapter)
    extra = cast(Mapping[str, Any], adapter.extra)
    assert extra["protocol"] == "s3"


def test_get_logger_without_extra_returns_logger() -> None:
    assert isinstance(get_logger("unionstore.store"), logging.Logger)


def test_log_exception_records_type(caplog: pytest.LogCaptureFixture) -> None:
    logger = logging.getLogger("unionstore.test.exc")
    try:
        raise ValueError("bad value")
    except ValueError as exc:
        with caplog.at_level(logging.ERROR, logger="unionstore.test.exc"):
            log_exception(logger, "Operation failed", exc)

    record = caplog.records[-1]
    assert record.getMessage() == "Operation failed: bad value"
    assert record.exception_type == "ValueError"


def test_human_formatter_appends_extra_fields() -> None:
    record = logging.LogRecord("unionstore.cli", logging.INFO, __file__, 1, "cat done", (), None)
    record.command = "cat"

    line = HumanReadableFormatter().format(record)

    assert line.endswith("unionstore.cli: cat done [command=cat]")


def test_sdk_loggers_are_quiet_unless_debugging(restore_root_logger) -> None:
    botocore = logging.getLogger("botocore")
    previous = botocore.level
    try:
        setup_logging(level=logging.INFO, format_type="simple")
        assert botocore.level == logging.WARNING

        setup_logging(level=logging.DEBUG, format_type="simple")
        assert botocore.level == logging.DEBUG
    finally:
        botocore.setLevel(previous)
