"""Failure taxonomy for streaming sessions. Cancellation is not an error and has no class here."""

from __future__ import annotations

from typing import Optional


class StreamError(Exception):
    """Base for every failure surfaced to on_error / raised from stream()."""

    retryable = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AuthenticationError(StreamError):
    """No credential available. Caller configuration error, never retried."""


class TransportError(StreamError):
    """Network drop, non-2xx status or a body that ended without a terminal frame."""

    retryable = True

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StreamTimeoutError(TransportError):
    """No chunk and no terminal event within the inactivity deadline."""


class ServerStreamError(StreamError):
    """The server sent an error frame. Terminal, surfaced as-is."""
