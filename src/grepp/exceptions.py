"""
EPP Client Exceptions

Exception hierarchy for registry, notification and job errors.
"""

from typing import Optional


class EPPError(Exception):
    """Base exception for all client errors."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code

    def __str__(self) -> str:
        if self.code is not None:
            return f"{self.message} (code {self.code})"
        return self.message


class EPPConnectionError(EPPError):
    """Transport failure: connection, TLS, timeout or non-200 HTTP status.

    Always reported with code 0 so callers can tell it apart from a
    registry result code.
    """

    def __init__(self, message: str, http_status: Optional[int] = None):
        super().__init__(message, 0)
        self.http_status = http_status


class EPPXMLError(EPPError):
    """Response could not be parsed as an EPP document."""


class EPPCommandError(EPPError):
    """Registry answered with a result code other than the expected one."""


class EPPAuthenticationError(EPPCommandError):
    """Login rejected (2200, 2202)."""


class EPPAuthorizationError(EPPCommandError):
    """Authorization error (2201), usually a domain held by another registrar."""


class EPPObjectNotFound(EPPCommandError):
    """Object does not exist (2303)."""


class EPPObjectExists(EPPCommandError):
    """Object already exists (2302)."""


class EPPSessionError(EPPCommandError):
    """Command use error (2002), returned when the server side session is gone."""


class EPPValidationError(EPPError):
    """Local precondition failed before anything was sent to the registry."""


class NameserversRemovedError(EPPCommandError):
    """
    Nameserver replacement failed half way.

    The old nameservers were removed but adding the new set failed, so the
    domain is currently delegated to no nameservers. Callers should retry
    the add with ``nameservers``.
    """

    def __init__(self, message: str, code: Optional[int], nameservers=None):
        super().__init__(message, code)
        self.nameservers = list(nameservers or [])


class NotificationError(Exception):
    """Base exception for the notification queue."""


class DeliveryError(NotificationError):
    """A channel sender could not deliver a notification."""


class DnsLookupError(Exception):
    """DNS records could not be fetched for a domain."""


class LockError(Exception):
    """Run lock could not be created or inspected."""


class ConfigError(Exception):
    """Configuration missing or invalid."""
