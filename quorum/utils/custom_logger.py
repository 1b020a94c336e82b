"""
Loguru-based logger for Quorum
- Process-specific colors and prefixes
- Method/file/line tracking
- Split stdout/stderr sinks by severity
- Optional rotating file sink
"""

import sys
import os
import multiprocessing as mp
from typing import Optional, Dict, Any
from loguru import logger
from pathlib import Path
import logging


# ANSI color codes for worker processes (avoid loguru tag conflicts)
PROCESS_COLORS = [
    "\033[36m",    # Cyan
    "\033[32m",    # Green
    "\033[33m",    # Yellow
    "\033[35m",    # Magenta
    "\033[34m",    # Blue
    "\033[31m",    # Red
]

# ANSI color codes for levels
LEVEL_COLORS = {
    "TRACE": "\033[2m",      # Dim
    "DEBUG": "\033[34m",     # Blue
    "INFO": "\033[32m",      # Green
    "SUCCESS": "\033[1m\033[32m",  # Bold Green
    "WARNING": "\033[33m",   # Yellow
    "ERROR": "\033[31m",     # Red
    "CRITICAL": "\033[1m\033[31m", # Bold Red
}

RESET = "\033[0m"

_process_color_registry: Dict[str, str] = {}

# Libraries that log at INFO on every request; only their warnings are kept
NOISY_LOGGERS = [
    "httpx",
    "httpcore",
    "substrateinterface",
    "websocket",
]


def _get_process_info() -> tuple[Optional[str], Optional[str]]:
    """Get current process name and assigned color."""
    try:
        current_process = mp.current_process()
        process_name = current_process.name
        if process_name == "MainProcess":
            return "MAIN", "\033[1m"

        if process_name not in _process_color_registry:
            color_index = len(_process_color_registry) % len(PROCESS_COLORS)
            _process_color_registry[process_name] = PROCESS_COLORS[color_index]
        return process_name, _process_color_registry[process_name]
    except Exception:
        return None, None


def _get_caller_info(record: Dict[str, Any]) -> str:
    """Get caller function and file info from loguru record."""
    try:
        filename = record["file"].path
        func_name = record["function"]
        line_no = record["line"]

        try:
            file_display = str(Path(filename).relative_to(Path.cwd()))
        except ValueError:
            file_display = Path(filename).name

        return f"{file_display}:{func_name}:{line_no}"
    except Exception:
        return "unknown:unknown:0"


def _format_log_record(record: Dict[str, Any]) -> str:
    """Custom formatter with ANSI colors."""
    process_name, process_color = _get_process_info()
    caller_info = _get_caller_info(record)

    timestamp = record["time"].strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
    level = record["level"].name

    if process_name and process_color:
        prefix = f"{process_color}[{process_name}]{RESET}"
    else:
        prefix = f"\033[1m[MAIN]{RESET}"

    level_color = LEVEL_COLORS.get(level, "")
    level_colored = f"{level_color}{level:<8}{RESET}" if level_color else f"{level:<8}"

    dim_color = "\033[2m"
    timestamp_colored = f"{dim_color}{timestamp}{RESET}"
    caller_colored = f"{dim_color}{caller_info}{RESET}"

    # Escape braces so loguru does not treat message content as format fields
    message = str(record["message"]).replace("{", "{{").replace("}", "}}")

    line = f"{prefix} {timestamp_colored} | {level_colored} | {caller_colored} - {message}\n"
    if record["exception"] is not None:
        line += "{exception}\n"
    return line


class CustomLogger:
    """
    Thin wrapper over the shared loguru logger exposing the familiar
    logging.Logger surface (debug/info/warning/error/exception/...).
    """

    def __init__(self, name: str):
        self.name = name
        self._logger = logger.bind(logger_name=name)

        if not getattr(logger, "_quorum_configured", False):
            self._configure_loguru()

    def _configure_loguru(self):
        """Configure loguru sinks once per process."""
        logger.remove()

        log_level = os.getenv("LOGGING_LEVEL", "INFO").upper()

        def stdout_filter(record):
            return record["level"].no < 30

        logger.add(
            sys.stdout,
            format=_format_log_record,
            level=log_level,
            colorize=True,
            filter=stdout_filter,
        )

        def stderr_filter(record):
            return record["level"].no >= 30

        logger.add(
            sys.stderr,
            format=_format_log_record,
            level="WARNING",
            colorize=True,
            backtrace=True,
            diagnose=False,
            catch=True,
            filter=stderr_filter,
        )

        log_file = os.getenv("LOG_FILE", "")
        if log_file:
            log_dir = os.path.dirname(log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            logger.add(
                log_file,
                format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} - {message}",
                level="DEBUG",
                rotation="100 MB",
                retention="7 days",
                compression="gz",
                catch=True,
                enqueue=True,
            )

        self._quiet_library_loggers()
        logger._quorum_configured = True

    def _quiet_library_loggers(self):
        for logger_name in NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    def debug(self, message: str, *args, **kwargs):
        self._logger.opt(depth=1).debug(message, *args, **kwargs)

    def info(self, message: str, *args, **kwargs):
        self._logger.opt(depth=1).info(message, *args, **kwargs)

    def warning(self, message: str, *args, **kwargs):
        self._logger.opt(depth=1).warning(message, *args, **kwargs)

    def warn(self, message: str, *args, **kwargs):
        self._logger.opt(depth=1).warning(message, *args, **kwargs)

    def error(self, message: str, *args, **kwargs):
        self._logger.opt(depth=1).error(message, *args, **kwargs)

    def critical(self, message: str, *args, **kwargs):
        self._logger.opt(depth=1).critical(message, *args, **kwargs)

    def exception(self, message: str, *args, **kwargs):
        self._logger.opt(depth=1).exception(message, *args, **kwargs)

    def success(self, message: str, *args, **kwargs):
        self._logger.opt(depth=1).success(message, *args, **kwargs)

    def trace(self, message: str, *args, **kwargs):
        self._logger.opt(depth=1).trace(message, *args, **kwargs)


_logger_cache: Dict[str, CustomLogger] = {}


def get_logger(name: str) -> CustomLogger:
    """
    Return the cached CustomLogger for ``name`` (usually ``__name__``).
    """
    if name not in _logger_cache:
        _logger_cache[name] = CustomLogger(name)
    return _logger_cache[name]


def set_log_level(level: str) -> None:
    """Re-create the console sinks at ``level``. Used once settings are loaded."""
    os.environ["LOGGING_LEVEL"] = level.upper()
    logger._quorum_configured = False
    CustomLogger(__name__)
