"""
Shared error-handling helpers for backend services.

Request paths decide a caller-visible outcome first; bookkeeping that runs
afterwards (trigger statistics, audit rows) goes through ``guarded_call``
so that its failure is logged instead of changing that outcome.
"""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

T = TypeVar("T")


def error_text(exc: BaseException) -> str:
    """Message for an exception, falling back to its class name when it has none."""
    return str(exc) or exc.__class__.__name__


def _context_suffix(extra: dict | None) -> str:
    pairs = [f"{key}={value}" for key, value in (extra or {}).items() if value is not None]
    return " " + " ".join(pairs) if pairs else ""


def log_exception(logger: logging.Logger, msg: str, *, extra: dict | None = None, exc: Exception | None = None) -> None:
    """
    Log an exception with key=value context and its stack trace.

    Without ``exc`` the exception currently being handled is used.
    """
    line = f"{msg}{_context_suffix(extra)}"
    if exc is None:
        logger.exception(line)
    else:
        logger.error(f"{line}: {exc}", exc_info=exc)


def guarded_call(
    name: str,
    fn: Callable[[], T],
    *,
    fallback: T | None = None,
    logger: logging.Logger | None = None,
    context: dict | None = None,
) -> T | None:
    """Run ``fn``; on failure log ``"<name> failed"`` and return ``fallback``."""
    try:
        return fn()
    except Exception as exc:
        if logger is not None:
            log_exception(logger, f"{name} failed", extra=context, exc=exc)
        return fallback
