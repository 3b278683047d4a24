"""Client log dispatch with a replaceable handler."""

from __future__ import annotations

from typing import Any, Callable, Optional

LogHandler = Callable[[Any, int, int, str], None]

_MAX_MESSAGE = 1023


def stdout_log_for_client(priv: Any, loglevel: int, logtype: int, message: str) -> None:
    """Default handler: print the message to standard output."""
    print(message)


_handler: LogHandler = stdout_log_for_client


def set_log_handler(handler: Optional[LogHandler]) -> LogHandler:
    """Install a log handler (None restores the default); return the previous one."""
    global _handler
    previous = _handler
    _handler = handler if handler is not None else stdout_log_for_client
    return previous


def log_for_client(priv: Any, loglevel: int, logtype: int, fmt: str, *args: Any) -> None:
    """Format a message printf-style and pass it to the current handler."""
    message = fmt % args if args else fmt
    _handler(priv, loglevel, logtype, message[:_MAX_MESSAGE])