"""Exceptions raised by colloquy.

Ordinary request failures (bad key, rate limit, server error, dropped
connection) are never raised to the caller; they come back as a
:class:`~colloquy.result.Failure`. The exceptions here cover caller
mistakes and the internal signals the dispatcher converts into failures.
"""


class ColloquyError(Exception):
    """Base class for all colloquy exceptions."""


class InvalidRequestError(ColloquyError, ValueError):
    """The caller built a request that can never succeed.

    Raised before anything is sent, e.g. a ``tool`` message that answers
    no earlier tool call, or generation options outside their range.
    """


class TransportError(ColloquyError):
    """The transport could not complete the exchange.

    Args:
        message: Human readable reason.
        timeout: ``True`` when the failure was a timeout.
    """

    def __init__(self, message: str, timeout: bool = False):
        super().__init__(message)
        self.timeout = timeout


class StreamDecodeError(ColloquyError):
    """Too many malformed records in one stream."""
