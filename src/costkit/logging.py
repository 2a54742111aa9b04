"""Logging utilities for costkit.

This module provides a custom FIT log level and a context manager for
enabling/disabling costkit logging with loguru.

Note:
    Importing this module removes loguru's default stderr handler (ID 0) to
    prevent duplicate output when ``enable_logging()`` adds its own handler.
    If your application configures loguru handlers *before* importing costkit,
    handler 0 may no longer be the default; in that case the removal is a
    no-op (the ``ValueError`` is suppressed). Configure loguru handlers
    *after* importing costkit, or re-add a stderr handler explicitly if needed.
"""

from __future__ import annotations

import contextlib
import sys
import threading
import warnings
from typing import TYPE_CHECKING, ClassVar, Final, Literal

from loguru import logger

if TYPE_CHECKING:
    from types import TracebackType

    from loguru import Record

PACKAGE_NAME: Final[str] = __name__.split(".")[0]

# Handler 0 is loguru's default stderr handler created at import time.
with contextlib.suppress(ValueError):
    logger.remove(0)

# FIT sits between INFO=20 and WARNING=30 so fit lifecycle events stay visible
# while per-tree DEBUG detail is hidden.
FIT_LEVEL: Final[str] = "FIT"
FIT_LEVEL_NUMBER: Final[int] = 25


def _register_fit_level() -> None:
    """Register the FIT custom log level with loguru.

    If the level already exists with a different numeric value, emits a
    UserWarning because loguru does not permit changing it.
    """
    try:
        existing_level = logger.level(FIT_LEVEL)
    except ValueError:
        logger.level(FIT_LEVEL, no=FIT_LEVEL_NUMBER, icon="🌲")
    else:
        if existing_level.no != FIT_LEVEL_NUMBER:
            msg = f"FIT level already registered with numeric value {existing_level.no}, expected {FIT_LEVEL_NUMBER}"
            warnings.warn(msg, stacklevel=2)


_register_fit_level()

type LogLevel = Literal[
    "TRACE",
    "DEBUG",
    "INFO",
    "FIT",
    "WARNING",
    "ERROR",
    "CRITICAL",
]

type LogFormat = Literal["short", "full"]


class LoggingHandle:
    """Handle for managing costkit logging lifecycle.

    Stores the handler ID from logger.add() and provides cleanup via disable()
    or automatically through the context manager protocol.

    Examples:
        >>> with enable_logging():  # doctest: +SKIP
        ...     tree.fit(train)

        >>> handle = enable_logging(level="DEBUG")  # doctest: +SKIP
        >>> forest.fit(train)  # doctest: +SKIP
        >>> handle.disable()  # doctest: +SKIP
    """

    _active_ids: ClassVar[set[int]] = set()
    _lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(self, handler_id: int) -> None:
        """Initialize the logging handle.

        Args:
            handler_id (int): The loguru handler ID from logger.add().
        """
        self.handler_id: int | None = handler_id
        with LoggingHandle._lock:
            LoggingHandle._active_ids.add(handler_id)

    def disable(self) -> None:
        """Remove the handler associated with this logging handle.

        When this is the last active handle, ``logger.disable("costkit")`` is
        called to suppress costkit log messages again.
        """
        with LoggingHandle._lock:
            if self.handler_id is None:
                return
            LoggingHandle._active_ids.discard(self.handler_id)
            with contextlib.suppress(ValueError):
                logger.remove(self.handler_id)
            self.handler_id = None
            if not LoggingHandle._active_ids:
                logger.disable(PACKAGE_NAME)

    def __enter__(self) -> LoggingHandle:
        """Enter context manager.

        Returns:
            LoggingHandle: This handle instance.
        """
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit context manager and disable logging."""
        self.disable()

    @classmethod
    def get_active_handle_count(cls) -> int:
        """Return the number of currently active logging handles.

        Returns:
            int: Count of active handles that have not been disabled.
        """
        with cls._lock:
            return len(cls._active_ids)


def enable_logging(
    *,
    level: LogLevel = FIT_LEVEL,
    log_format: LogFormat = "short",
) -> LoggingHandle:
    """Enable costkit logging on stderr.

    Args:
        level (LogLevel): Minimum log level to display. Defaults to "FIT",
            which surfaces estimator fit start/finish events. Use "DEBUG" to
            see per-member and per-fold progress.
        log_format (LogFormat): "short" shows the function name only; "full"
            shows module:function:line.

    Returns:
        LoggingHandle: Independent handle for managing the logging handler.
    """
    logger.enable(PACKAGE_NAME)

    if log_format == "short":
        format_str = (
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "  # noqa: RUF027 - loguru format string
            "<cyan>{function}</cyan> - "
            "<level>{message}</level> {extra}"
        )
    else:
        format_str = (
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "  # noqa: RUF027 - loguru format string
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level> {extra}"
        )

    handler_id = logger.add(
        sys.stderr,
        level=level,
        filter=_is_costkit_record,
        format=format_str,
    )

    return LoggingHandle(handler_id)


def _is_costkit_record(record: Record) -> bool:
    """Pass only records emitted from the costkit package.

    Args:
        record (Record): The loguru Record object to filter.

    Returns:
        bool: True if the record is from the costkit package.
    """
    name = record["name"]
    return name is not None and name.startswith(PACKAGE_NAME)
