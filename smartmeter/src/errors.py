"""
Exception hierarchy for the meter telemetry engine.

Every component raises a subclass of :class:`MeterError` at its own seam.
The telemetry scheduler is the only place these are caught; it converts them
into a tick outcome so that a single bad tick never reaches the host loop.

CHANGELOG:
- 2026-10-12: Initial creation (STORY-002)

TODO:
- None
"""

from __future__ import annotations


class MeterError(Exception):
    """Base exception for all meter engine errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidWindow(MeterError):
    """Malformed waveform input: empty, mismatched, too short or non-finite."""


class EncodeError(MeterError):
    """Externally supplied quantities cannot be encoded (e.g. non-finite)."""


class ConnectError(MeterError):
    """Transport session could not be established."""

    def __init__(self, message: str, host: str | None = None, port: int | None = None) -> None:
        self.host = host
        self.port = port
        super().__init__(message)


class NotConnected(MeterError):
    """Send attempted on a session that is not established."""


class SendError(MeterError):
    """Write failure (or write timeout) on an established session."""

    def __init__(self, message: str, host: str | None = None, port: int | None = None) -> None:
        self.host = host
        self.port = port
        super().__init__(message)
