# src/llmbridge/logging_config.py
"""
Logging setup for applications embedding LLMBridge.

The library itself only creates module loggers; an application calls
`configure_logging()` once at startup to attach handlers. Settings come from
the `[logging]` section of the layered configuration (see
`llmbridge.config.loader`) unless a dictionary is passed in.

Key concepts:

    **Display filter**: With ``console_enabled=False`` (the default) the
    console handler only passes records logged with ``extra={"display": True}``
    (see `log_display()`), so status messages still reach the user while
    request chatter stays in the log file.

    **File modes**: ``file_mode="per_run"`` writes a new timestamped file
    per process; ``file_mode="single"`` appends to one file rotated by size.

Usage:
    from llmbridge.logging_config import configure_logging, log_display

    configure_logging(app_name="mindmap")
    log_display(logging.getLogger("mindmap"), logging.INFO, "Local model server ready")
"""

import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

from pydantic import TypeAdapter

from .config.loader import load_settings

DEFAULT_LOGGING_CONFIG: dict[str, Any] = {
    "console_enabled": False,
    "console_level": "WARNING",
    "console_format": "%(levelname)s - %(message)s",
    "file_enabled": False,
    "file_level": "DEBUG",
    "file_directory": "~/.local/share/llmbridge/logs",
    "file_mode": "per_run",
    "file_name_pattern": "{app}_{timestamp:%Y%m%d_%H%M%S}.log",
    "file_single_name": "{app}.log",
    "file_format": "%(asctime)s [%(levelname)-8s] %(name)-30s - %(message)s (%(filename)s:%(lineno)d)",
    "rotation_max_bytes": 10 * 1024 * 1024,
    "rotation_backup_count": 5,
    "display_min_level": "INFO",
    "components": {
        "llmbridge": "INFO",
        "aiohttp": "WARNING",
        "asyncio": "WARNING",
    },
}

# Environment values arrive as strings such as "false".
_FLAG = TypeAdapter(bool)


def _level(value: Any, default: int) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        level = logging.getLevelName(value.upper())
        if isinstance(level, int):
            return level
    return default


class DisplayFilter(logging.Filter):
    """Console gate.

    When the console is globally enabled every record passes and the handler
    level decides. Otherwise only records flagged ``display=True`` at or above
    ``display_min_level`` pass.
    """

    def __init__(self, console_globally_enabled: bool = False, display_min_level: int = logging.INFO) -> None:
        super().__init__()
        self.console_globally_enabled = console_globally_enabled
        self.display_min_level = display_min_level

    def filter(self, record: logging.LogRecord) -> bool:
        if self.console_globally_enabled:
            return True
        if getattr(record, "display", False):
            return record.levelno >= self.display_min_level
        return False


class LoggingManager:
    """Process-wide singleton that owns the handlers installed on the root logger."""

    _instance: Optional["LoggingManager"] = None

    def __init__(self) -> None:
        self.configured = False
        self.log_file_path: Path | None = None
        self.console_handler: logging.Handler | None = None
        self.file_handler: logging.Handler | None = None

    @classmethod
    def get_instance(cls) -> "LoggingManager":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def configure(
        self,
        app_name: str = "llmbridge",
        config: dict[str, Any] | None = None,
        config_file_path: str | Path | None = None,
        force_reconfigure: bool = False,
    ) -> Path | None:
        if self.configured and not force_reconfigure:
            return self.log_file_path

        if config is None:
            config = load_settings(config_file_path).logging
        log_config = {**DEFAULT_LOGGING_CONFIG, **config}

        root_logger = logging.getLogger()
        for handler in (self.console_handler, self.file_handler):
            if handler is not None:
                root_logger.removeHandler(handler)
                handler.close()
        self.console_handler = None
        self.file_handler = None
        self.log_file_path = None
        root_logger.setLevel(logging.DEBUG)

        console_enabled = _FLAG.validate_python(log_config.get("console_enabled", False))
        console = logging.StreamHandler(sys.stderr)
        # With the console off the filter is the only gate.
        console.setLevel(_level(log_config.get("console_level"), logging.WARNING) if console_enabled else logging.DEBUG)
        console.setFormatter(logging.Formatter(log_config["console_format"]))
        console.addFilter(DisplayFilter(console_enabled, _level(log_config.get("display_min_level"), logging.INFO)))
        root_logger.addHandler(console)
        self.console_handler = console

        if _FLAG.validate_python(log_config.get("file_enabled", False)):
            self.file_handler, self.log_file_path = self._create_file_handler(log_config, app_name)
            if self.file_handler is not None:
                root_logger.addHandler(self.file_handler)

        for component, level in (log_config.get("components") or {}).items():
            logging.getLogger(component).setLevel(_level(level, logging.INFO))

        self.configured = True
        if self.log_file_path:
            logging.getLogger(__name__).debug(f"Logging configured. Log file: {self.log_file_path}")
        return self.log_file_path

    def _create_file_handler(
        self, config: dict[str, Any], app_name: str
    ) -> tuple[logging.Handler | None, Path | None]:
        log_dir = Path(os.path.expanduser(config["file_directory"]))
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            sys.stderr.write(f"Warning: Cannot create log directory {log_dir}: {e}\n")
            return None, None

        try:
            if config.get("file_mode") == "single":
                path = log_dir / config["file_single_name"].format(app=app_name)
                handler: logging.Handler = RotatingFileHandler(
                    path,
                    maxBytes=int(config["rotation_max_bytes"]),
                    backupCount=int(config["rotation_backup_count"]),
                    encoding="utf-8",
                )
            else:
                path = log_dir / config["file_name_pattern"].format(app=app_name, timestamp=datetime.now())
                handler = logging.FileHandler(path, encoding="utf-8")
        except (KeyError, ValueError) as e:
            sys.stderr.write(f"Warning: Invalid log file name pattern: {e}\n")
            return None, None
        except OSError as e:
            sys.stderr.write(f"Warning: Cannot create log file in {log_dir}: {e}\n")
            return None, None

        handler.setLevel(_level(config.get("file_level"), logging.DEBUG))
        handler.setFormatter(logging.Formatter(config["file_format"]))
        return handler, path

    def set_console_level(self, level: str | int) -> None:
        if self.console_handler is not None:
            self.console_handler.setLevel(_level(level, logging.WARNING))

    def set_file_level(self, level: str | int) -> None:
        if self.file_handler is not None:
            self.file_handler.setLevel(_level(level, logging.DEBUG))


def configure_logging(
    app_name: str = "llmbridge",
    config: dict[str, Any] | None = None,
    config_file_path: str | Path | None = None,
    force_reconfigure: bool = False,
) -> Path | None:
    """
    Installs console and file handlers on the root logger.

    Args:
        app_name: Used in the log file name.
        config: Logging settings; read from the layered configuration when omitted.
        config_file_path: User config file to read the `[logging]` section from.
        force_reconfigure: Replace handlers installed by an earlier call.

    Returns:
        Path of the log file, or None when file logging is disabled.
    """
    return LoggingManager.get_instance().configure(app_name, config, config_file_path, force_reconfigure)


def log_display(logger: logging.Logger, level: int, msg: str, *args: Any, **kwargs: Any) -> None:
    """Logs `msg` with ``extra={"display": True}`` so it passes the console display filter."""
    extra = kwargs.pop("extra", None) or {}
    extra["display"] = True
    kwargs["extra"] = extra
    logger.log(level, msg, *args, **kwargs)


def get_log_file_path() -> Path | None:
    return LoggingManager.get_instance().log_file_path


def set_console_level(level: str | int) -> None:
    LoggingManager.get_instance().set_console_level(level)


def set_file_level(level: str | int) -> None:
    LoggingManager.get_instance().set_file_level(level)


def set_component_level(component: str, level: str | int) -> None:
    logging.getLogger(component).setLevel(_level(level, logging.INFO))
