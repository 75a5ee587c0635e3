"""Exceptions raised by chat adapters."""

from typing import Any, Optional


class ChatAdapterError(Exception):
    """Base exception for chat adapter errors."""
    pass


class ConfigError(ChatAdapterError):
    """A required config key is missing or empty."""
    pass


class ChatConnectionError(ChatAdapterError):
    """Exception raised when the platform handshake fails."""
    pass


class ChatAuthenticationError(ChatConnectionError):
    """Exception raised when the platform rejects the supplied credentials."""
    pass


class TransportError(ChatAdapterError):
    """Network failure while sending or fetching."""
    pass


class ApiError(TransportError):
    """A REST call answered with a non-2xx status."""

    def __init__(self, status: int, payload: Any = None, message: Optional[str] = None):
        self.status = status
        self.payload = payload
        super().__init__(message or f"HTTP {status}: {self.error_message or 'request failed'}")

    @property
    def error(self) -> dict:
        """The ``error`` object of a Google/Graph style error body, if any."""
        if isinstance(self.payload, dict) and isinstance(self.payload.get("error"), dict):
            return self.payload["error"]
        return {}

    @property
    def code(self) -> Optional[int]:
        """Platform error code, falling back to the HTTP status."""
        code = self.error.get("code")
        try:
            return int(code) if code is not None else self.status
        except (TypeError, ValueError):
            return self.status

    @property
    def error_message(self) -> Optional[str]:
        return self.error.get("message")


class CredentialsExpiredError(TransportError):
    """Auth-class failure; the caller must refresh credentials and resume."""
    pass


class NotConnectedError(ChatAdapterError):
    """Operation requires a connected adapter."""
    pass


class WritePermissionDenied(ChatAdapterError):
    """Sending requires credentials the adapter does not have."""
    pass


class ProtocolError(ChatAdapterError):
    """The server sent a malformed or unexpected payload."""
    pass
