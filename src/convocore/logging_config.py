# src/convocore/logging_config.py
"""
Logging setup for applications embedding ConvoCore.

The library itself only creates module loggers (``logging.getLogger(__name__)``)
and never installs handlers. Applications that want ConvoCore's conventions
call ``configure_logging`` once at startup. The settings come from the
``logging`` table of the ConvoCore configuration (see ``convocore.config``),
an explicit dict, or a TOML file.

Key concepts:

    **Display filter**: with ``console_enabled=False`` (the default) the
    console handler is still installed, but only records logged with
    ``extra={"display": True}`` (see ``log_display``) get through, and only
    at or above ``display_min_level``. Everything else goes to the file.

    **File modes**: ``file_mode="per_run"`` (default) writes a new
    timestamped file per process; ``file_mode="single"`` appends to one file
    rotated by size with ``RotatingFileHandler``.

Usage:
    from convocore.logging_config import configure_logging, log_display

    configure_logging(app_name="chat-ui", config={"console_enabled": True})

    logger = logging.getLogger("chat-ui.startup")
    log_display(logger, logging.INFO, "Loaded %d sessions", count)
"""

import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

DEFAULT_LOGGING_CONFIG: dict[str, Any] = {
    "console_enabled": False,
    "console_level": "WARNING",
    "console_format": "%(levelname)s - %(message)s",
    "file_enabled": True,
    "file_level": "DEBUG",
    "file_directory": "~/.local/share/convocore/logs",
    "file_mode": "per_run",
    "file_name_pattern": "{app}_{timestamp:%Y%m%d_%H%M%S}.log",
    "file_single_name": "{app}.log",
    "file_format": "%(asctime)s [%(levelname)-8s] %(name)-30s - %(message)s (%(filename)s:%(lineno)d)",
    "rotation_max_bytes": 10 * 1024 * 1024,
    "rotation_backup_count": 5,
    "display_min_level": "INFO",
    "components": {
        "convocore": "INFO",
        "convocore.streaming": "INFO",
        "aiohttp": "WARNING",
        "asyncio": "WARNING",
    },
}


def _resolve_level(level: str | int | None, default: int) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if isinstance(resolved, int):
            return resolved
    return default


class DisplayFilter(logging.Filter):
    """Console gate.

    In verbose mode (``verbose=True``) every record passes. Otherwise only
    records flagged ``display=True`` pass, and only at or above
    ``display_min_level``.
    """

    def __init__(self, verbose: bool = False, display_min_level: int = logging.INFO) -> None:
        super().__init__()
        self.verbose = verbose
        self.display_min_level = display_min_level

    def filter(self, record: logging.LogRecord) -> bool:
        if self.verbose:
            return True
        return bool(getattr(record, "display", False)) and record.levelno >= self.display_min_level


class LoggingManager:
    """
    Process-wide logging configuration holder.

    Configures the root logger once and keeps references to the handlers it
    installed so levels can be changed at runtime.
    """

    _instance: Optional["LoggingManager"] = None

    def __init__(self) -> None:
        self.configured = False
        self.log_file_path: Path | None = None
        self.console_handler: logging.Handler | None = None
        self.file_handler: logging.Handler | None = None
        self.display_filter: DisplayFilter | None = None

    @classmethod
    def get_instance(cls) -> "LoggingManager":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Forget the current manager (handlers already installed stay on the root logger)."""
        cls._instance = None

    def configure(
        self,
        app_name: str = "convocore",
        config: dict[str, Any] | None = None,
        config_file_path: str | Path | None = None,
        force_reconfigure: bool = False,
    ) -> Path | None:
        """
        Install console and file handlers on the root logger.

        Args:
            app_name: Used in the log file name.
            config: Logging settings; merged over ``DEFAULT_LOGGING_CONFIG``.
            config_file_path: TOML file whose ConvoCore ``logging`` table is
                used when ``config`` is not given.
            force_reconfigure: Reconfigure even if already configured.

        Returns:
            Path of the log file, or None when file logging is off or failed.
        """
        if self.configured and not force_reconfigure:
            return self.log_file_path

        log_config = self._load_config(config, config_file_path)

        root_logger = logging.getLogger()
        for handler in (self.console_handler, self.file_handler):
            if handler is not None:
                root_logger.removeHandler(handler)
                handler.close()
        self.console_handler = None
        self.file_handler = None
        self.log_file_path = None
        root_logger.setLevel(logging.DEBUG)

        verbose = bool(log_config.get("console_enabled", False))
        self.display_filter = DisplayFilter(
            verbose=verbose,
            display_min_level=_resolve_level(log_config.get("display_min_level"), logging.INFO),
        )
        self.console_handler = self._create_console_handler(log_config)
        if not verbose:
            # the filter is the only gate
            self.console_handler.setLevel(logging.DEBUG)
        self.console_handler.addFilter(self.display_filter)
        root_logger.addHandler(self.console_handler)

        if log_config.get("file_enabled", True):
            self.file_handler, self.log_file_path = self._create_file_handler(log_config, app_name)
            if self.file_handler is not None:
                root_logger.addHandler(self.file_handler)

        for component, level in log_config.get("components", {}).items():
            resolved = _resolve_level(level, -1)
            if resolved >= 0:
                logging.getLogger(component).setLevel(resolved)

        self.configured = True
        if self.log_file_path:
            logging.getLogger(__name__).debug(f"Logging configured. Log file: {self.log_file_path}")
        return self.log_file_path

    @staticmethod
    def _load_config(config: dict[str, Any] | None, config_file_path: str | Path | None) -> dict[str, Any]:
        if config is not None:
            return {**DEFAULT_LOGGING_CONFIG, **config}
        if config_file_path is not None:
            from .config import load_config

            section = load_config(config_path=Path(config_file_path), section_path="convocore").logging
            return {**DEFAULT_LOGGING_CONFIG, **section}
        return dict(DEFAULT_LOGGING_CONFIG)

    @staticmethod
    def _create_console_handler(config: dict[str, Any]) -> logging.Handler:
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(_resolve_level(config.get("console_level"), logging.WARNING))
        handler.setFormatter(logging.Formatter(config.get("console_format", DEFAULT_LOGGING_CONFIG["console_format"])))
        return handler

    @staticmethod
    def _create_file_handler(config: dict[str, Any], app_name: str) -> tuple[logging.Handler | None, Path | None]:
        log_dir = Path(os.path.expanduser(config.get("file_directory", DEFAULT_LOGGING_CONFIG["file_directory"])))
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            sys.stderr.write(f"Warning: Cannot create log directory {log_dir}: {e}\n")
            return None, None

        handler: logging.Handler
        if config.get("file_mode", "per_run") == "single":
            try:
                filename = config.get("file_single_name", "{app}.log").format(app=app_name)
            except (KeyError, ValueError):
                filename = f"{app_name}.log"
            log_file_path = log_dir / filename
            try:
                handler = RotatingFileHandler(
                    log_file_path,
                    maxBytes=config.get("rotation_max_bytes", DEFAULT_LOGGING_CONFIG["rotation_max_bytes"]),
                    backupCount=config.get("rotation_backup_count", DEFAULT_LOGGING_CONFIG["rotation_backup_count"]),
                    encoding="utf-8",
                )
            except OSError as e:
                sys.stderr.write(f"Warning: Cannot create log file {log_file_path}: {e}\n")
                return None, None
        else:
            timestamp = datetime.now()
            pattern = config.get("file_name_pattern", DEFAULT_LOGGING_CONFIG["file_name_pattern"])
            try:
                filename = pattern.format(app=app_name, timestamp=timestamp)
            except (KeyError, ValueError):
                filename = f"{app_name}_{timestamp.strftime('%Y%m%d_%H%M%S')}.log"
            log_file_path = log_dir / filename
            try:
                handler = logging.FileHandler(log_file_path, encoding="utf-8")
            except OSError as e:
                sys.stderr.write(f"Warning: Cannot create log file {log_file_path}: {e}\n")
                return None, None

        handler.setLevel(_resolve_level(config.get("file_level"), logging.DEBUG))
        handler.setFormatter(logging.Formatter(config.get("file_format", DEFAULT_LOGGING_CONFIG["file_format"])))
        return handler, log_file_path

    def set_console_level(self, level: str | int) -> None:
        if self.console_handler is not None:
            self.console_handler.setLevel(_resolve_level(level, self.console_handler.level))

    def set_file_level(self, level: str | int) -> None:
        if self.file_handler is not None:
            self.file_handler.setLevel(_resolve_level(level, self.file_handler.level))

    @staticmethod
    def set_component_level(component: str, level: str | int) -> None:
        component_logger = logging.getLogger(component)
        component_logger.setLevel(_resolve_level(level, component_logger.level))


def configure_logging(
    app_name: str = "convocore",
    config: dict[str, Any] | None = None,
    config_file_path: str | Path | None = None,
    force_reconfigure: bool = False,
) -> Path | None:
    """
    Configure logging for the application. Call once, early at startup.

    Example:
        configure_logging(
            app_name="chat-ui",
            config={"console_enabled": False, "file_directory": "/var/log/chat-ui"},
        )
    """
    return LoggingManager.get_instance().configure(
        app_name=app_name,
        config=config,
        config_file_path=config_file_path,
        force_reconfigure=force_reconfigure,
    )


def log_display(logger: logging.Logger, level: int, msg: str, *args: Any, **kwargs: Any) -> None:
    """Log a message that also reaches the console in quiet mode.

    Sets ``extra={"display": True}`` (merged into any ``extra`` the caller
    passes). ``display_min_level`` still applies.
    """
    extra = dict(kwargs.pop("extra", None) or {})
    extra["display"] = True
    kwargs["extra"] = extra
    logger.log(level, msg, *args, **kwargs)


def get_log_file_path() -> Path | None:
    return LoggingManager.get_instance().log_file_path


def set_console_level(level: str | int) -> None:
    """Change the console handler's level at runtime."""
    LoggingManager.get_instance().set_console_level(level)


def set_file_level(level: str | int) -> None:
    """Change the file handler's level at runtime."""
    LoggingManager.get_instance().set_file_level(level)


def set_component_level(component: str, level: str | int) -> None:
    """Change one logger's level at runtime."""
    LoggingManager.set_component_level(component, level)
