"""Exception hierarchy for voicetutor sessions."""

from __future__ import annotations

__all__ = [
    "DevicePermissionError",
    "NegotiationError",
    "ProviderError",
    "SessionConnectError",
    "TransportError",
    "VoiceTutorError",
]


class VoiceTutorError(Exception):
    """Base exception for all voicetutor errors."""


class SessionConnectError(VoiceTutorError):
    """``connect()`` failed; the session has been torn down to Idle."""


class DevicePermissionError(SessionConnectError):
    """Microphone or speaker access was denied or no device is present."""


class NegotiationError(SessionConnectError):
    """Credential exchange, dial, or offer/answer negotiation failed.

    Attributes:
        status_code: HTTP status code of the failed exchange, if any.
        details: Response body or other diagnostic text from the remote side.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        details: str = "",
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class TransportError(VoiceTutorError):
    """The duplex channel failed or closed while the session was established."""


class ProviderError(VoiceTutorError):
    """The remote voice provider signaled an error.

    Attributes:
        code: Provider error code (e.g. ``server_error``).
    """

    def __init__(self, message: str, *, code: str = "unknown") -> None:
        super().__init__(message)
        self.code = code
