"""
Error taxonomy and result envelopes.

Every gateway operation answers with a plain dict carrying ``ok``; failures
add a stable ``error`` code and a human-readable ``message``. Exceptions are
converted at component boundaries by ``guarded``.
"""

import functools
import logging
from enum import Enum
from typing import Any, Awaitable, Optional

from .logs import logm


class ErrorKind(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    DEVICE_NOT_FOUND = "DEVICE_NOT_FOUND"
    CONFIG_ERROR = "CONFIG_ERROR"
    UNREACHABLE = "UNREACHABLE"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    AUTH_FAILED = "AUTH_FAILED"
    RPC_ERROR = "RPC_ERROR"
    SESSION_INVALID = "SESSION_INVALID"
    FACTORY_CREATE_FAILED = "FACTORY_CREATE_FAILED"
    START_FIND_FAILED = "START_FIND_FAILED"
    LOAD_FILE_FAILED = "LOAD_FILE_FAILED"
    FETCH_ERROR = "FETCH_ERROR"
    DEVICE_FETCH_ERROR = "DEVICE_FETCH_ERROR"
    INVALID_IMAGE = "INVALID_IMAGE"
    UNKNOWN_RESPONSE = "UNKNOWN_RESPONSE"
    UNSUPPORTED_COMMAND = "UNSUPPORTED_COMMAND"
    ROUTE_NOT_FOUND = "ROUTE_NOT_FOUND"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# Caller mistakes, answered with 400 instead of 502
CLIENT_ERRORS = {
    ErrorKind.VALIDATION_ERROR.value,
    ErrorKind.CONFIG_ERROR.value,
    ErrorKind.UNSUPPORTED_COMMAND.value,
}


def ok_result(**fields) -> dict:
    return {"ok": True, **fields}


def error_result(kind, message: Optional[str] = None, **details) -> dict:
    """Failure envelope. ``kind`` is an ErrorKind or a free-form device error string."""
    code = kind.value if isinstance(kind, ErrorKind) else str(kind)
    result = {"ok": False, "error": code}
    if message is not None:
        result["message"] = message
    result.update(details)
    return result


def http_status_for(result: dict) -> int:
    """Map a failure envelope to the façade's HTTP status."""
    if result.get("ok"):
        return 200
    error = result.get("error")
    if error in CLIENT_ERRORS:
        return 400
    if error == ErrorKind.INTERNAL_ERROR.value:
        return 500
    return 502


def guarded(label: str, cat: str = "SYS"):
    """Decorator for async component operations: unexpected exceptions become INTERNAL_ERROR."""
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                logm(logging.ERROR, f"{label}: unexpected {type(e).__name__}: {e}", cat)
                return error_result(ErrorKind.INTERNAL_ERROR, str(e) or type(e).__name__)
        return wrapper
    return decorator


async def best_effort(label: str, awaitable: Awaitable[Any], cat: str = "SYS") -> bool:
    """Await a cleanup step whose failure is logged but never propagated.

    Returns True when the step reported success. Envelopes with ``ok: False``
    and raised exceptions both count as failure.
    """
    try:
        outcome = await awaitable
    except Exception as e:
        logm(logging.WARNING, f"{label}: best-effort step raised {type(e).__name__}: {e}", cat)
        return False
    if isinstance(outcome, dict):
        succeeded = bool(outcome.get("ok")) and bool(outcome.get("result", True))
    else:
        succeeded = bool(outcome)
    if not succeeded:
        logm(logging.WARNING, f"{label}: best-effort step failed (ignored)", cat)
    return succeeded
