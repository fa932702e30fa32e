"""Exception hierarchy shared by the inspection engine and its adapters."""

from __future__ import annotations


class InspectorError(Exception):
    """Base class for every failure surfaced by the viewer."""


class InvalidAddress(InspectorError, ValueError):
    """The user supplied text that is not a usable hexadecimal address."""

    def __init__(self, text: str, reason: str = "not a hexadecimal address") -> None:
        self.text = text
        self.reason = reason
        super().__init__(f"{text!r}: {reason}")


class TransportFailure(InspectorError):
    """A page could not be read from the remote agent."""

    def __init__(self, message: str, status: int | None = None) -> None:
        self.status = status
        super().__init__(message)


class ShortRead(TransportFailure):
    """The agent answered with a body of the wrong length."""

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"short read: expected {expected} bytes, got {actual}")
