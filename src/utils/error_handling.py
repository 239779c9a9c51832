"""Error kinds, exceptions and the structured result returned by services."""

from __future__ import annotations

import functools
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

from utils.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
    "Content-Type": "application/json",
}


class ErrorKind(str, Enum):
    """The four failure kinds that may cross the client/server boundary."""

    NOT_FOUND = "not_found"
    INVALID_REQUEST = "invalid_request"
    INVALID_STATE = "invalid_state"
    INTERNAL = "internal"


class AppError(Exception):
    """Base class for application errors."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(AppError):
    """Unknown or expired token, unknown shop, unknown or inactive popup."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, status_code=404)


class InvalidRequestError(AppError):
    """Missing required field or malformed action."""

    kind = ErrorKind.INVALID_REQUEST

    def __init__(self, message: str = "Invalid request"):
        super().__init__(message, status_code=400)


class InvalidStateError(AppError):
    """Operation not applicable to this popup kind or step."""

    kind = ErrorKind.INVALID_STATE

    def __init__(self, message: str = "Operation not allowed in current state"):
        super().__init__(message, status_code=409)


class ConcurrentModificationError(InvalidStateError):
    """Raised by stores when a record changed since it was read."""

    def __init__(self, message: str = "Session was modified concurrently"):
        super().__init__(message)


class InternalError(AppError):
    """Unexpected failure in the record store or elsewhere."""

    kind = ErrorKind.INTERNAL

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message, status_code=500)


STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_REQUEST: 400,
    ErrorKind.INVALID_STATE: 409,
    ErrorKind.INTERNAL: 500,
}


@dataclass
class OperationResult(Generic[T]):
    """Either a value or an error, never both."""

    value: Optional[T] = None
    error: Optional[AppError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error else None

    @classmethod
    def success(cls, value: T) -> "OperationResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: AppError) -> "OperationResult[T]":
        return cls(error=error)

    def unwrap(self) -> T:
        """Return the value or re-raise the stored error."""
        if self.error is not None:
            raise self.error
        return self.value


def guarded(operation: str) -> Callable:
    """
    Wrap a service method so failures come back as an OperationResult.

    AppErrors keep their kind; anything else becomes INTERNAL and is logged
    with its traceback.
    """

    def decorator(func: Callable[..., T]) -> Callable[..., OperationResult[T]]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> OperationResult[T]:
            try:
                return OperationResult.success(func(*args, **kwargs))
            except AppError as exc:
                logger.info(
                    "Operation rejected",
                    extra={"operation": operation, "kind": exc.kind.value, "reason": str(exc)},
                )
                return OperationResult.failure(exc)
            except Exception:
                logger.exception("Operation failed", extra={"operation": operation})
                return OperationResult.failure(InternalError())

        return wrapper

    return decorator


def json_response(status: int, body: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Format a JSON API Gateway HTTP API response with CORS headers."""
    return {
        "statusCode": status,
        "headers": dict(CORS_HEADERS),
        "body": "" if body is None else json.dumps(body, default=str),
    }


def to_response(error: AppError, correlation_id: Optional[str] = None) -> Dict[str, Any]:
    """Convert an AppError into a Lambda proxy integration response."""
    body: Dict[str, Any] = {
        "success": False,
        "error": str(error),
        "code": error.kind.value,
    }
    if correlation_id:
        body["correlationId"] = correlation_id
    return json_response(STATUS_BY_KIND.get(error.kind, error.status_code), body)
