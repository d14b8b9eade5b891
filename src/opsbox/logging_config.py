# src/opsbox/logging_config.py
"""
Logging Configuration for opsbox.

This module provides the logging setup used by applications embedding the
container task runner. Every opsbox module logs through a plain
``logging.getLogger(__name__)`` logger; this module decides where those
records go.

Key concepts:

    **Display filter**: When ``console_enabled=False`` (the default), the
    console handler still exists but only passes through log records that
    carry ``extra={"display": True}``. Task progress messages (e.g.
    "Starting container task with image ...") reach the user while
    per-command debug chatter stays file-only.

    **File rotation**: ``file_mode="single"`` uses a
    ``RotatingFileHandler`` with configurable max size and backup count.
    ``file_mode="per_run"`` creates a new timestamped file each
    invocation.

Usage:
    from opsbox.logging_config import configure_logging, log_display

    configure_logging(app_name="opsbox")

    import logging
    logger = logging.getLogger("opsbox.task")
    log_display(logger, logging.INFO, "Container task finished: %s", summary)
"""

import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional


# ---------------------------------------------------------------------------
# Default logging configuration
# ---------------------------------------------------------------------------

DEFAULT_LOGGING_CONFIG: dict[str, Any] = {
    "console_enabled": False,
    "console_level": "WARNING",
    "console_format": "%(levelname)s - %(message)s",
    "file_enabled": True,
    "file_level": "DEBUG",
    "file_directory": "~/.local/share/opsbox/logs",
    "file_mode": "single",
    "file_name_pattern": "{app}_{timestamp:%Y%m%d_%H%M%S}.log",
    "file_single_name": "{app}.log",
    "file_format": "%(asctime)s [%(levelname)-8s] %(name)-30s - %(message)s (%(filename)s:%(lineno)d)",
    "rotation_max_bytes": 10 * 1024 * 1024,  # 10 MB
    "rotation_backup_count": 5,
    "display_min_level": "INFO",
    "components": {
        "opsbox": "INFO",
        "docker": "WARNING",
        "urllib3": "WARNING",
        "asyncio": "WARNING",
    },
}


# ---------------------------------------------------------------------------
# DisplayFilter
# ---------------------------------------------------------------------------


class DisplayFilter(logging.Filter):
    """Controls which log records pass through to the console handler.

    When the console is globally enabled (verbose mode) everything passes
    and the handler's own level does the filtering. Otherwise only records
    with ``record.display = True`` at or above ``display_min_level`` pass.
    """

    def __init__(
        self,
        console_globally_enabled: bool = False,
        display_min_level: int = logging.INFO,
    ) -> None:
        super().__init__()
        self.console_globally_enabled = console_globally_enabled
        self.display_min_level = display_min_level

    def filter(self, record: logging.LogRecord) -> bool:
        """Determine if the record should pass to console."""
        if self.console_globally_enabled:
            return True

        if getattr(record, "display", False):
            return record.levelno >= self.display_min_level

        return False


# ---------------------------------------------------------------------------
# LoggingManager
# ---------------------------------------------------------------------------


def _level_from_name(name: str | int, default: int) -> int:
    if isinstance(name, int):
        return name
    level = logging.getLevelName(str(name).upper())
    return level if isinstance(level, int) else default


class LoggingManager:
    """
    Singleton manager for opsbox logging configuration.

    Ensures logging is only configured once and provides methods
    for runtime adjustment of log levels.
    """

    _instance: Optional["LoggingManager"] = None
    _configured: bool = False
    _log_file_path: Path | None = None
    _console_handler: logging.Handler | None = None
    _file_handler: logging.Handler | None = None
    _display_filter: DisplayFilter | None = None

    def __new__(cls) -> "LoggingManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @classmethod
    def get_instance(cls) -> "LoggingManager":
        """Get the singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def is_configured(cls) -> bool:
        """Check if logging has been configured."""
        return cls._configured

    @classmethod
    def get_log_file_path(cls) -> Path | None:
        """Get the current log file path."""
        return cls._log_file_path

    def configure(
        self,
        app_name: str = "opsbox",
        config: dict[str, Any] | None = None,
        force_reconfigure: bool = False,
    ) -> Path | None:
        """
        Configure logging for the application.

        Args:
            app_name: Name of the application (used in log filename)
            config: Logging section of the opsbox configuration; keys not
                given fall back to DEFAULT_LOGGING_CONFIG
            force_reconfigure: If True, reconfigure even if already configured

        Returns:
            Path to the log file, or None when file logging is disabled
        """
        if self._configured and not force_reconfigure:
            return self._log_file_path

        log_config = {**DEFAULT_LOGGING_CONFIG, **(config or {})}

        # Environment level override wins over file configuration
        env_level = os.environ.get("OPSBOX_LOGGING_LEVEL")
        if env_level:
            log_config["components"] = {**log_config["components"], "opsbox": env_level}

        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
            handler.close()
        root_logger.setLevel(logging.DEBUG)

        console_globally_enabled = bool(log_config.get("console_enabled", False))
        self._display_filter = DisplayFilter(
            console_globally_enabled=console_globally_enabled,
            display_min_level=_level_from_name(log_config.get("display_min_level", "INFO"), logging.INFO),
        )

        self._console_handler = self._create_console_handler(log_config)
        if not console_globally_enabled:
            # The filter is the sole gate in quiet mode
            self._console_handler.setLevel(logging.DEBUG)
        self._console_handler.addFilter(self._display_filter)
        root_logger.addHandler(self._console_handler)

        self._file_handler = None
        self._log_file_path = None
        if log_config.get("file_enabled", True):
            self._file_handler, self._log_file_path = self._create_file_handler(log_config, app_name)
            if self._file_handler:
                root_logger.addHandler(self._file_handler)

        for component_name, level_str in log_config.get("components", {}).items():
            logging.getLogger(component_name).setLevel(_level_from_name(level_str, logging.INFO))

        LoggingManager._configured = True
        LoggingManager._log_file_path = self._log_file_path

        if self._log_file_path:
            logging.getLogger("opsbox.logging_config").debug(
                f"Logging configured. Log file: {self._log_file_path}"
            )

        return self._log_file_path

    def _create_console_handler(self, config: dict[str, Any]) -> logging.Handler:
        """Create and configure the console handler."""
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(_level_from_name(config.get("console_level", "WARNING"), logging.WARNING))
        handler.setFormatter(
            logging.Formatter(config.get("console_format", DEFAULT_LOGGING_CONFIG["console_format"]))
        )
        return handler

    def _create_file_handler(
        self, config: dict[str, Any], app_name: str
    ) -> tuple[logging.Handler | None, Path | None]:
        """Create the file handler in ``single`` (rotating) or ``per_run`` mode."""
        log_dir = Path(os.path.expanduser(config.get("file_directory", DEFAULT_LOGGING_CONFIG["file_directory"])))

        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            sys.stderr.write(f"Warning: Cannot create log directory {log_dir}: {e}\n")
            return None, None

        if config.get("file_mode", "single") == "single":
            try:
                filename = config.get("file_single_name", "{app}.log").format(app=app_name)
            except (KeyError, ValueError):
                filename = f"{app_name}.log"
            log_file_path = log_dir / filename

            try:
                handler: logging.Handler = RotatingFileHandler(
                    log_file_path,
                    maxBytes=config.get("rotation_max_bytes", 10 * 1024 * 1024),
                    backupCount=config.get("rotation_backup_count", 5),
                    encoding="utf-8",
                )
            except OSError as e:
                sys.stderr.write(f"Warning: Cannot create log file {log_file_path}: {e}\n")
                return None, None
        else:
            timestamp = datetime.now()
            try:
                filename = config.get("file_name_pattern", DEFAULT_LOGGING_CONFIG["file_name_pattern"]).format(
                    app=app_name, timestamp=timestamp
                )
            except (KeyError, ValueError):
                filename = f"{app_name}_{timestamp.strftime('%Y%m%d_%H%M%S')}.log"
            log_file_path = log_dir / filename

            try:
                handler = logging.FileHandler(log_file_path, encoding="utf-8")
            except OSError as e:
                sys.stderr.write(f"Warning: Cannot create log file {log_file_path}: {e}\n")
                return None, None

        handler.setLevel(_level_from_name(config.get("file_level", "DEBUG"), logging.DEBUG))
        handler.setFormatter(logging.Formatter(config.get("file_format", DEFAULT_LOGGING_CONFIG["file_format"])))
        return handler, log_file_path

    def set_console_level(self, level: str | int) -> None:
        """Change the console handler's log level at runtime."""
        if self._console_handler is not None:
            self._console_handler.setLevel(_level_from_name(level, logging.WARNING))

    def set_component_level(self, component: str, level: str | int) -> None:
        """Change a specific component's log level at runtime."""
        logging.getLogger(component).setLevel(_level_from_name(level, logging.INFO))


# ---------------------------------------------------------------------------
# Public module-level functions
# ---------------------------------------------------------------------------


def configure_logging(
    app_name: str = "opsbox",
    config: dict[str, Any] | None = None,
    force_reconfigure: bool = False,
) -> Path | None:
    """
    Configure logging for the application.

    Call this early in application startup. ``config`` is usually the
    ``logging`` section of :func:`opsbox.config.load_config`'s result
    (``OpsboxConfig.logging``).

    Example:
        from opsbox.config import load_config
        from opsbox.logging_config import configure_logging

        cfg = load_config()
        configure_logging(config=cfg.logging)
    """
    return LoggingManager.get_instance().configure(
        app_name=app_name,
        config=config,
        force_reconfigure=force_reconfigure,
    )


def log_display(
    logger: logging.Logger,
    level: int,
    msg: str,
    *args: Any,
    **kwargs: Any,
) -> None:
    """Log a message that also appears on console even in quiet mode.

    Wrapper around ``logger.log()`` that merges ``display=True`` into the
    record's ``extra`` mapping.
    """
    extra = kwargs.pop("extra", None) or {}
    extra["display"] = True
    kwargs["extra"] = extra
    logger.log(level, msg, *args, **kwargs)


def get_log_file_path() -> Path | None:
    """Get the current log file path."""
    return LoggingManager.get_log_file_path()


def set_console_level(level: str | int) -> None:
    """Change console log level at runtime."""
    LoggingManager.get_instance().set_console_level(level)


def set_component_level(component: str, level: str | int) -> None:
    """Change a specific component's log level at runtime."""
    LoggingManager.get_instance().set_component_level(component, level)
