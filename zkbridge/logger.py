"""
zkbridge Logging
================

Every module logs through ``get_logger(__name__)``. On first use the root
logger gets a rich console handler at INFO so that imports, tests and the
user-facing CLI helpers log sensibly without any configuration. The ``run``
command then calls :func:`configure_logging` with the ``[bridge]`` section of
the loaded config, which sets the level and attaches the rotating log file.

Memos, addresses and note ids are chain data chosen by whoever built the
transaction, so every record is scrubbed of terminal control sequences before
it is written anywhere.

Usage:
    >>> from zkbridge.logger import get_logger
    >>> logger = get_logger(__name__)
    >>> logger.info("Relayer started")
"""

import logging
import logging.handlers
import re
import threading
import time
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.highlighter import RegexHighlighter
from rich.logging import RichHandler
from rich.theme import Theme

from .constants import (
    LOG_BACKUP_COUNT,
    LOG_DATE_FORMAT,
    LOG_FORMAT,
    LOG_MAX_FILE_SIZE,
)

# Quiet by default; the RPC client would otherwise log every poll
NOISY_LOGGERS = ("httpx", "httpcore", "aiosqlite")

BRIDGE_THEME = Theme(
    {
        "zkbridge.commitment": "bold cyan",
        "zkbridge.amount":     "bold white",
        "zkbridge.success":    "bold green",
        "zkbridge.failure":    "bold red",
        "zkbridge.height":     "yellow",
        "zkbridge.url":        "cyan",
    }
)


class TerminalSafeFormatter(logging.Formatter):
    """
    Formatter that drops ANSI escapes and control characters (CWE-117).

    Tabs and newlines survive so multi-line tracebacks stay readable.
    """

    _escape_re = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]|\x1b[@-Z\\-_]")
    _control_re = re.compile(r"[\x00-\x08\x0B-\x1F\x7F]")

    @classmethod
    def sanitize(cls, text: str) -> str:
        if not text:
            return text
        return cls._control_re.sub("", cls._escape_re.sub("", text))

    def format(self, record: logging.LogRecord) -> str:
        return self.sanitize(super().format(record))


class BridgeLogHighlighter(RegexHighlighter):
    """Rich highlighter for relayer logs: commitments, amounts, outcomes."""

    base_style = "zkbridge."
    highlights = [
        r"(?P<commitment>\b0x[0-9a-fA-F]{16,}\b)",
        r"(?P<amount>\b\d+(?:\.\d+)?\s(?:TAZ|base units)\b)",
        r"(?P<success>\b(?:Minted|Paid|Recorded|Reconciled)\b)",
        r"(?P<failure>\b(?:Failed|Skipping|Refusing)\b)",
        r"(?P<height>\b(?:block|height) \d+\b)",
        r"(?P<url>https?://\S+)",
    ]


class LogManager:
    """
    Owns the handlers zkbridge installs on the root logger.

    Reconfiguring swaps only those handlers, so handlers added by a host
    application or by pytest stay attached.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: List[logging.Handler] = []
        self._configured = False
        self.level = logging.INFO
        self.log_file: Optional[Path] = None

    @property
    def is_configured(self) -> bool:
        return self._configured

    def _formatter(self) -> TerminalSafeFormatter:
        formatter = TerminalSafeFormatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT + " UTC")
        # UTC so logs from several relayer hosts line up
        formatter.converter = time.gmtime
        return formatter

    def configure(
        self,
        log_level: str = "INFO",
        log_file: Optional[str] = None,
        console_output: bool = True,
    ) -> None:
        """
        Install (or replace) the console and file handlers.

        Args:
            log_level: Level name, e.g. ``"DEBUG"``
            log_file: Rotating log file path; no file output when empty
            console_output: Attach the rich console handler
        """
        level = logging.getLevelName(str(log_level).upper())
        if not isinstance(level, int):
            raise ValueError(f"Unknown log level: {log_level}")

        handlers: List[logging.Handler] = []
        formatter = self._formatter()

        if console_output:
            console = RichHandler(
                console=Console(theme=BRIDGE_THEME, stderr=True),
                highlighter=BridgeLogHighlighter(),
                show_time=False,
                show_level=True,
                show_path=False,
                markup=False,
                rich_tracebacks=True,
            )
            console.setFormatter(TerminalSafeFormatter(fmt="%(name)s - %(message)s"))
            handlers.append(console)

        path = Path(log_file) if log_file else None
        if path is not None:
            path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                filename=str(path),
                maxBytes=LOG_MAX_FILE_SIZE,
                backupCount=LOG_BACKUP_COUNT,
                encoding="utf-8",
            )
            file_handler.setFormatter(formatter)
            handlers.append(file_handler)

        root = logging.getLogger()
        with self._lock:
            for handler in self._handlers:
                root.removeHandler(handler)
                handler.close()
            for handler in handlers:
                handler.setLevel(level)
                root.addHandler(handler)
            root.setLevel(level)
            for name in NOISY_LOGGERS:
                logging.getLogger(name).setLevel(max(level, logging.WARNING))
            self._handlers = handlers
            self.level = level
            self.log_file = path
            self._configured = True

    def get_logger(self, name: str) -> logging.Logger:
        if not self.is_configured:
            self.configure()
        return logging.getLogger(name)


_manager = LogManager()


def get_logger(name: str) -> logging.Logger:
    """Module logger; installs the default console handler on first use."""
    return _manager.get_logger(name)


def configure_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    console_output: bool = True,
) -> None:
    """Apply the ``[bridge]`` logging settings; safe to call more than once."""
    _manager.configure(log_level=log_level, log_file=log_file, console_output=console_output)
