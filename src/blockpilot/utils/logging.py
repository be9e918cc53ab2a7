"""Logging for hosts that embed a BlockPilot chat session.

Handlers are attached to the ``blockpilot`` package logger, never to the root
logger, so the host application's own logging setup stays untouched. Every
handler installed here carries a :class:`SecretRedactionFilter`; API keys
registered through :func:`apply_settings` or :class:`LogConfig` never reach a
log file in clear text.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

from ..services.settings import redact_secret

if TYPE_CHECKING:
    from ..services.settings import Settings

__all__ = [
    "LogConfig",
    "PACKAGE_LOGGER",
    "SecretRedactionFilter",
    "apply_settings",
    "get_log_path",
    "setup_logging",
]

PACKAGE_LOGGER = "blockpilot"
LOG_DIR_ENV = "BLOCKPILOT_LOG_DIR"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
TRANSPORT_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "openai")

_LOG_PATH: Path | None = None
_HANDLERS: list[logging.Handler] = []


class SecretRedactionFilter(logging.Filter):
    """Masks registered secrets in formatted log messages."""

    def __init__(self, secrets: Iterable[str] = ()) -> None:
        super().__init__()
        self._secrets: set[str] = set()
        self.update(secrets)

    def update(self, secrets: Iterable[str]) -> None:
        # Very short values would mask unrelated text.
        self._secrets.update(secret for secret in secrets if secret and len(secret.strip()) > 4)

    def clear(self) -> None:
        self._secrets.clear()

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._secrets:
            return True
        message = record.getMessage()
        redacted = message
        for secret in self._secrets:
            redacted = redacted.replace(secret, redact_secret(secret))
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


_REDACTOR = SecretRedactionFilter()


@dataclass(slots=True)
class LogConfig:
    level: int = logging.INFO
    log_dir: Path | None = None
    console: bool = False
    max_bytes: int = 1_000_000
    backup_count: int = 3
    secrets: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_settings(cls, settings: "Settings", **overrides) -> "LogConfig":
        """Debug level when ``settings.debug_logging`` is on; the API key is redacted."""

        level = logging.DEBUG if settings.debug_logging else logging.INFO
        secrets = tuple(value for value in (settings.api_key,) if value)
        return cls(level=level, secrets=secrets, **overrides)

    def resolved_dir(self) -> Path:
        env_override = os.environ.get(LOG_DIR_ENV)
        return Path(self.log_dir or env_override or Path.home() / ".blockpilot" / "logs").expanduser()


def setup_logging(config: LogConfig | None = None, *, force: bool = False) -> Path:
    """Install the rotating file handler (and optionally a console handler).

    Repeated calls only update the level and the redacted secrets unless
    ``force`` is set, in which case the handlers are rebuilt for the new
    configuration.
    """

    global _LOG_PATH
    config = config or LogConfig()
    logger = logging.getLogger(PACKAGE_LOGGER)
    _REDACTOR.update(config.secrets)
    if _LOG_PATH is not None and not force:
        _set_level(logger, config.level)
        return _LOG_PATH

    _remove_handlers(logger)
    target_dir = config.resolved_dir()
    target_dir.mkdir(parents=True, exist_ok=True)
    log_path = target_dir / "blockpilot.log"

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    file_handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=config.max_bytes, backupCount=config.backup_count, encoding="utf-8"
    )
    _HANDLERS.append(file_handler)
    if config.console:
        _HANDLERS.append(logging.StreamHandler())
    for handler in _HANDLERS:
        handler.setFormatter(formatter)
        handler.addFilter(_REDACTOR)
        logger.addHandler(handler)

    _set_level(logger, config.level)
    _LOG_PATH = log_path
    logger.debug("Logging to %s", log_path)
    return log_path


def apply_settings(settings: "Settings") -> None:
    """Apply the logging-related settings of a chat session.

    Registers the API key for redaction and switches the package logger to
    DEBUG when ``debug_logging`` is on. Handlers are left alone, so hosts
    still decide where records go.
    """

    if settings.api_key:
        _REDACTOR.update((settings.api_key,))
    if settings.debug_logging:
        _set_level(logging.getLogger(PACKAGE_LOGGER), logging.DEBUG)


def get_log_path() -> Path | None:
    return _LOG_PATH


def _set_level(logger: logging.Logger, level: int) -> None:
    logger.setLevel(level)
    for handler in _HANDLERS:
        handler.setLevel(level)
    # Streamed responses make the HTTP stack very chatty below WARNING.
    quiet_level = max(level, logging.WARNING)
    for name in TRANSPORT_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)


def _remove_handlers(logger: logging.Logger) -> None:
    global _LOG_PATH
    for handler in _HANDLERS:
        logger.removeHandler(handler)
        handler.close()
    _HANDLERS.clear()
    _LOG_PATH = None
