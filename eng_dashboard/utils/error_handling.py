#!/usr/bin/env python3
"""
Error Handling Utility Module

Upstream failure taxonomy plus reusable logging patterns for failures that
must not propagate (per-service fetch errors, best-effort warm steps).

Taxonomy:
- UpstreamUnavailableError: network, auth or 5xx failure of one service
- RateLimitedError: HTTP 429 from an upstream quota
- FetchTimeoutError: a per-user fetch exceeded its time budget

A cache miss is not an error.
"""

import logging
from typing import Any


class UpstreamError(Exception):
    """Base class for failures reported by an upstream service adapter."""

    def __init__(self, message: str, service: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.service = service
        self.status_code = status_code


class UpstreamUnavailableError(UpstreamError):
    """Network, authentication or server-side failure of one upstream service."""

    pass


class RateLimitedError(UpstreamError):
    """Upstream quota exceeded (HTTP 429)."""

    def __init__(self, message: str = "Rate limited (HTTP 429)", service: str | None = None):
        super().__init__(message, service=service, status_code=429)


class FetchTimeoutError(UpstreamError):
    """A per-user fetch did not finish within its deadline."""

    pass


def _status_of(obj: Any) -> Any:
    if obj is None:
        return None
    for attr in ("status_code", "status"):
        value = getattr(obj, attr, None)
        if value is not None:
            return value
    return None


def is_rate_limit_error(error: Any) -> bool:
    """
    Detect an HTTP 429 signal in a rejected fetch.

    Checks, in order: a 429 status on ``error.response`` (httpx, requests and
    aiohttp shapes), a 429 status on the error itself, and finally the
    string "429" in the message. Plain strings (the ``error`` field of a
    StatsResult) are checked by message only.

    Args:
        error: Exception or error message

    Returns:
        True if the error signals rate limiting
    """
    if error is None:
        return False

    if isinstance(error, str):
        return "429" in error

    if _status_of(getattr(error, "response", None)) == 429:
        return True

    if _status_of(error) == 429:
        return True

    return "429" in str(error)


def error_message(error: BaseException) -> str:
    """Message recorded in a LeaderboardEntry's errors map."""
    return str(error) or error.__class__.__name__


def log_and_continue(
    logger: logging.Logger,
    error: Exception,
    context: dict[str, Any],
    error_type: str = "Operation",
) -> None:
    """
    Log an error with structured context and continue execution gracefully.

    Use this when encountering expected errors that should not halt execution
    (e.g., one warm step failing while the rest of the run continues).

    Args:
        logger: Logger instance from get_logger(__name__)
        error: The caught exception
        context: Structured data about what failed (cache key, service, user)
        error_type: Human-readable description of the operation

    Example:
        try:
            await self._warm_list("prs", ...)
        except Exception as e:
            log_and_continue(logger, e, context={"cache_key": key}, error_type="PR list warm")
    """
    logger.warning(
        f"{error_type} failed: {error}",
        extra={
            "error_type": error_type,
            "exception_class": error.__class__.__name__,
            "context": context,
        },
    )


def log_and_return_default(
    logger: logging.Logger,
    error: Exception,
    context: dict[str, Any],
    default_value: Any = None,
    error_type: str = "Operation",
) -> Any:
    """
    Log an error and return a default value (for functions that need to return something).

    Args:
        logger: Logger instance
        error: The caught exception
        context: Structured data about what failed
        default_value: Value to return on error (None, [], {}, etc.)
        error_type: Human-readable description

    Returns:
        default_value

    Example:
        try:
            return load_users_file(path)
        except OSError as e:
            return log_and_return_default(
                logger, e, context={"file_path": str(path)}, default_value=None, error_type="Users file loading"
            )
    """
    logger.warning(
        f"{error_type} failed, returning default value: {error}",
        extra={
            "error_type": error_type,
            "exception_class": error.__class__.__name__,
            "context": context,
            "default_value": str(default_value),
        },
    )
    return default_value
