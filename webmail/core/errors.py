from __future__ import annotations

from typing import Optional


class WebmailError(Exception):
    """Base class for every failure the core reports."""


class DiscoveryError(WebmailError):
    """The discovery resource could not be resolved."""


class DiscoveryUnreachable(DiscoveryError):
    """Transport failure, timeout, server error or redirect loop."""


class DiscoveryUnauthorized(DiscoveryError):
    """The remote service rejected the credentials."""


class DiscoveryMalformed(DiscoveryError):
    """The response did not parse or lacks a mail account."""


class TransportError(WebmailError):
    """A batch could not be delivered or the server answered with a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProtocolError(WebmailError):
    """The batch response body is not a valid, fully correlated response."""


class MethodError(WebmailError):
    """The server answered a method call with an error object."""

    def __init__(self, type: str, detail: Optional[str] = None, call_id: Optional[str] = None) -> None:
        message = f"{type}: {detail}" if detail else type
        super().__init__(message)
        self.type = type
        self.detail = detail
        self.call_id = call_id


class SessionNotFound(WebmailError):
    """No live session for the presented identifier."""


class LoginError(WebmailError):
    """Login failed; subclasses tell the user what happened without server detail."""


class InvalidCredentials(LoginError):
    def __init__(self, message: str = "Invalid username or password") -> None:
        super().__init__(message)


class ServiceUnavailable(LoginError):
    def __init__(self, message: str = "Mail service is unavailable, try again later") -> None:
        super().__init__(message)


class EmailNotFound(WebmailError):
    def __init__(self, email_id: str) -> None:
        super().__init__(f"Email {email_id} not found")
        self.email_id = email_id
