"""Tests for logging setup and secret redaction."""

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path
from typing import Iterator

import pytest

from blockpilot.ai.orchestration.session import ChatSession
from blockpilot.services.session_store import SessionStore
from blockpilot.services.settings import Settings
from blockpilot.utils import logging as logging_utils

from tests.helpers import make_document

API_KEY = "sk-live-1234567890"


def _flush() -> None:
    for handler in logging.getLogger(logging_utils.PACKAGE_LOGGER).handlers:
        handler.flush()


@pytest.fixture(autouse=True)
def isolated_package_logger(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    logger = logging.getLogger(logging_utils.PACKAGE_LOGGER)
    handlers, level = list(logger.handlers), logger.level
    monkeypatch.delenv(logging_utils.LOG_DIR_ENV, raising=False)
    yield
    logging_utils._remove_handlers(logger)
    logging_utils._REDACTOR.clear()
    logger.handlers[:] = handlers
    logger.setLevel(level)


def test_setup_logging_writes_rotating_file_on_package_logger(tmp_path: Path) -> None:
    root_handlers = list(logging.getLogger().handlers)

    path = logging_utils.setup_logging(logging_utils.LogConfig(level=logging.DEBUG, log_dir=tmp_path))
    logging.getLogger("blockpilot.tests").info("hello from tests")
    _flush()

    assert path == tmp_path / "blockpilot.log"
    assert logging_utils.get_log_path() == path
    assert "hello from tests" in path.read_text(encoding="utf-8")
    package_handlers = logging.getLogger(logging_utils.PACKAGE_LOGGER).handlers
    assert any(isinstance(handler, logging.handlers.RotatingFileHandler) for handler in package_handlers)
    assert logging.getLogger().handlers == root_handlers
    assert logging.getLogger("httpx").level == logging.WARNING


def test_repeated_setup_updates_level_until_forced(tmp_path: Path) -> None:
    first = logging_utils.setup_logging(logging_utils.LogConfig(log_dir=tmp_path / "a"))
    second = logging_utils.setup_logging(logging_utils.LogConfig(level=logging.DEBUG, log_dir=tmp_path / "b"))

    assert second == first
    assert logging.getLogger(logging_utils.PACKAGE_LOGGER).level == logging.DEBUG

    forced = logging_utils.setup_logging(logging_utils.LogConfig(log_dir=tmp_path / "b"), force=True)

    assert forced == tmp_path / "b" / "blockpilot.log"
    file_handlers = [
        handler
        for handler in logging.getLogger(logging_utils.PACKAGE_LOGGER).handlers
        if isinstance(handler, logging.handlers.RotatingFileHandler)
    ]
    assert len(file_handlers) == 1


def test_log_dir_env_override(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv(logging_utils.LOG_DIR_ENV, str(tmp_path / "env"))

    path = logging_utils.setup_logging()

    assert path.parent == tmp_path / "env"


def test_log_config_from_settings() -> None:
    config = logging_utils.LogConfig.from_settings(Settings(api_key=API_KEY, debug_logging=True), console=True)

    assert config.level == logging.DEBUG
    assert config.secrets == (API_KEY,)
    assert config.console is True
    assert logging_utils.LogConfig.from_settings(Settings()).level == logging.INFO


def test_api_key_is_redacted_in_log_file(tmp_path: Path) -> None:
    settings = Settings(api_key=API_KEY)
    path = logging_utils.setup_logging(logging_utils.LogConfig.from_settings(settings, log_dir=tmp_path))

    logging.getLogger("blockpilot.ai.client").warning("Request with key %s failed", API_KEY)
    _flush()

    contents = path.read_text(encoding="utf-8")
    assert API_KEY not in contents
    assert "sk**************90" in contents


def test_short_secrets_are_not_registered() -> None:
    redactor = logging_utils.SecretRedactionFilter(["abc", ""])
    record = logging.LogRecord("blockpilot", logging.INFO, __file__, 1, "abc stays", None, None)

    assert redactor.filter(record) is True
    assert record.getMessage() == "abc stays"


@pytest.mark.asyncio
async def test_session_from_settings_applies_debug_logging(tmp_path: Path) -> None:
    path = logging_utils.setup_logging(logging_utils.LogConfig(log_dir=tmp_path))
    settings = Settings(api_key=API_KEY, debug_logging=True, site_url="https://demo.test")

    session = ChatSession.from_settings(
        settings, make_document(), store=SessionStore(settings.site_url, directory=tmp_path)
    )
    logging.getLogger("blockpilot.ai.orchestration.session").debug("Using key %s", API_KEY)
    _flush()

    assert logging.getLogger(logging_utils.PACKAGE_LOGGER).level == logging.DEBUG
    contents = path.read_text(encoding="utf-8")
    assert "Using key sk" in contents
    assert API_KEY not in contents
    await session.aclose()
