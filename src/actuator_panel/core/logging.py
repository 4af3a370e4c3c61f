"""
Unified logging setup for the Actuator Panel.

This module provides centralized logging configuration with:
- Custom VERBOSE logging level (level 9, more verbose than DEBUG)
- verbose() method added to the standard Logger class
- A separate "serial" logger recording every protocol line sent or received

Usage:
    from actuator_panel.core.logging import setup_logging, get_logger

    # In your CLI or main entry point:
    setup_logging(verbosity_level=2, quiet=False)  # VERBOSE level

    # Use verbose logging anywhere:
    logger = get_logger()
    logger.verbose("This is a verbose message")
"""

import logging
from pathlib import Path
from typing import Any

# Define custom VERBOSE level (9 is between DEBUG (10) and NOTSET (0))
VERBOSE = 9
logging.addLevelName(VERBOSE, "VERBOSE")

SERIAL_LOGGER_ID = "serial"

DATE_FMT = "%Y-%m-%d %H:%M:%S"
LOG_FMT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
COMM_LOG_FMT = "%(asctime)s - %(source)s: %(message)s"


class VerboseLogger(logging.Logger):
    def verbose(self: logging.Logger, message: str, *args: Any, **kwargs: Any) -> None:
        """
        Log a message with severity 'VERBOSE'.

        VERBOSE is a custom level that is more verbose than DEBUG. Raw serial
        chunks and per-line dispatch decisions are logged at this level.

        Args:
            self: The logger instance (injected via method binding).
            message: The log message.
            *args: Arguments for message formatting.
            **kwargs: Additional keyword arguments passed to log().
        """
        if self.isEnabledFor(VERBOSE):
            self._log(VERBOSE, message, args, **kwargs)


def setup_logging(
    verbosity_level: int = 0,
    quiet: bool = False,
    serial_log_file: str | None = None,
) -> None:
    """
    Configure logging based on verbosity settings.

    Args:
        verbosity_level: Verbosity counter from CLI (e.g., from Click's count=True).
            - 0: INFO level (default)
            - 1: DEBUG level (-v flag)
            - 2+: VERBOSE level (-vv or more flags)
        quiet: If True, set log level to ERROR (takes precedence over verbosity_level).
        serial_log_file: Optional path to a file to log all serial communication.
            If provided, a separate logger named 'serial' is configured to write
            messages only to this file (propagate=False).
    """
    if quiet:
        level = logging.ERROR
    elif verbosity_level >= 2:
        level = VERBOSE
    elif verbosity_level == 1:
        level = logging.DEBUG
    else:
        level = logging.INFO

    logging.setLoggerClass(VerboseLogger)

    logging.basicConfig(level=level, format=LOG_FMT, datefmt=DATE_FMT)

    setup_file_logger(serial_log_file, SERIAL_LOGGER_ID)


def setup_file_logger(log_file: str | None, logger_id: str) -> None:
    file_logger = logging.getLogger(logger_id)

    # Already configured
    if file_logger.handlers and \
        any(isinstance(h, logging.FileHandler) for h in file_logger.handlers):
        return

    try:
        fh: logging.Handler = logging.NullHandler()
        if log_file:
            log_path = Path(log_file)
            if log_path.parent:
                log_path.parent.mkdir(parents=True, exist_ok=True)

            fh = logging.FileHandler(str(log_path), encoding="utf-8", mode="a")
            fh.setFormatter(logging.Formatter(COMM_LOG_FMT, datefmt=DATE_FMT))
            fh.setLevel(logging.INFO)

        file_logger.addHandler(fh)
        file_logger.setLevel(logging.INFO)

        # Do not propagate to root logger - only write to file
        file_logger.propagate = False

    except OSError as e:
        logging.getLogger(__name__).error(
            f"Failed to set up log file '{log_file}' for logger '{logger_id}': {e}"
        )


def get_logger(name: str | None = None) -> VerboseLogger:
    """
    Get a logger instance, ensuring it is a VerboseLogger.

    Args:
        name: The name of the logger to get. Defaults to the calling module.

    Returns:
        An instance of VerboseLogger.
    """
    if name is None:
        import inspect

        frame = inspect.stack()[1]
        module = inspect.getmodule(frame[0])
        name = module.__name__ if module else "__main__"

    logger = logging.getLogger(name)

    # Loggers created before setLoggerClass() need their class swapped
    if not isinstance(logger, VerboseLogger):
        logger.__class__ = VerboseLogger

    return logger  # type: ignore


def get_serial_logger() -> logging.Logger:
    return logging.getLogger(SERIAL_LOGGER_ID)


def log_serial_communication(content: str, sent: bool = True) -> None:
    get_serial_logger().info(content, extra={"source": "Sent" if sent else "Recv"})


def log_serial_sent(line: str) -> None:
    log_serial_communication(line, sent=True)


def log_serial_recv(line: str) -> None:
    log_serial_communication(line, sent=False)
