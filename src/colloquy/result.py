"""Tagged results returned by every request.

A call either produced a value (:class:`Success`) or it did not
(:class:`Failure`). There is no in-between: an empty response is a
failure with a code, not a success with empty content.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")

NETWORK_ERROR = "NETWORK_ERROR"
TIMEOUT = "TIMEOUT"
DECODE_ERROR = "DECODE_ERROR"
INVALID_RESPONSE = "INVALID_RESPONSE"
EMPTY_RESPONSE = "EMPTY_RESPONSE"


@dataclass(frozen=True)
class ErrorInfo:
    """Structured description of a failed call.

    Args:
        message: Server-provided or locally generated message.
        status: HTTP status, or ``0`` for a transport-level failure.
        code: Server error code, or one of the module-level codes.
    """

    message: str
    status: int = 0
    code: str | None = None

    @property
    def retryable(self) -> bool:
        return self.status == 0 or self.status >= 500


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    """A failed call.

    ``partial`` is set when a stream failed after delivering output; it
    holds everything decoded before the failure.
    """

    error: ErrorInfo
    partial: Any = None

    @property
    def ok(self) -> bool:
        return False


Result = Union[Success[T], Failure]
