"""Adapts stdlib ``logging.LogRecord`` objects to ``LogEvent``.

Also holds the request-scoped context map (the "MDC"): key/value pairs
bound here are copied into the ``details`` of every record logged from
the same thread or asyncio task.
"""

from __future__ import annotations

import contextvars
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from cloud_json_logging.models.schemas import Level, LogEvent, StackFrame

# ``extra=`` keys read from a LogRecord.
DETAILS_ATTR = "details"
ATTACHMENTS_ATTR = "attachments"

_log_context: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "cloud_json_logging_context", default={}
)


def get_context() -> dict[str, Any]:
    """Return a copy of the context map bound in the current context."""
    return dict(_log_context.get())


def bind_context(**values: Any) -> None:
    """Add *values* to the context map of the current thread / task."""
    _log_context.set({**_log_context.get(), **values})


def unbind_context(*keys: str) -> None:
    current = _log_context.get()
    _log_context.set({k: v for k, v in current.items() if k not in keys})


def clear_context() -> None:
    _log_context.set({})


@contextmanager
def log_context(**values: Any) -> Iterator[None]:
    """Bind *values* for the duration of a ``with`` block."""
    token = _log_context.set({**_log_context.get(), **values})
    try:
        yield
    finally:
        _log_context.reset(token)


# Only resolved paths are cached, so a module imported later is still found.
_resolved_modules: dict[str, str] = {}


def _module_for_path(pathname: str, fallback: str) -> str:
    """Dotted module name for a source path, or *fallback* if it is not imported."""
    name = _resolved_modules.get(pathname)
    if name is not None:
        return name
    for name, module in list(sys.modules.items()):
        if getattr(module, "__file__", None) == pathname:
            _resolved_modules[pathname] = name
            return name
    return fallback


def caller_frame(record: logging.LogRecord) -> StackFrame | None:
    """The frame that issued the log call, from the record's location fields."""
    if not record.pathname or not record.funcName:
        return None
    return StackFrame(
        declaring_type=_module_for_path(record.pathname, record.module),
        method_name=record.funcName,
        file_name=record.filename or None,
        line_number=record.lineno,
    )


def _message(record: logging.LogRecord) -> str:
    try:
        message = record.getMessage()
    except Exception:
        message = str(record.msg)
    if record.stack_info:
        message = message + "\n" + record.stack_info
    return message


def _exception(record: logging.LogRecord) -> BaseException | str | None:
    if record.exc_info and record.exc_info[1] is not None:
        return record.exc_info[1]
    return record.exc_text or None


def _arguments(record: logging.LogRecord) -> list[Any]:
    arguments: list[Any] = []
    if isinstance(record.args, tuple):
        arguments.extend(record.args)
    attachments = getattr(record, ATTACHMENTS_ATTR, None)
    if attachments:
        arguments.extend(attachments)
    return arguments


def _context(record: logging.LogRecord) -> dict[str, Any]:
    context = get_context()
    details = getattr(record, DETAILS_ATTR, None)
    if isinstance(details, dict):
        context.update(details)
    return context


def event_from_record(record: logging.LogRecord) -> LogEvent:
    """Build a ``LogEvent`` describing *record*."""
    frame = caller_frame(record)
    return LogEvent(
        level=Level.from_levelno(record.levelno),
        timestamp=max(round(record.created * 1000), 0),
        message=_message(record),
        exception=_exception(record),
        caller_data=[frame] if frame is not None else [],
        thread_name=record.threadName or "",
        logger_name=record.name,
        context=_context(record),
        arguments=_arguments(record),
    )
