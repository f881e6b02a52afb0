"""
Exceptions raised by the extraction-and-reconciliation pipeline.

Adapters translate transport failures (HTTP status codes, network errors,
Google API errors) into these types at their boundary, so the application
layer only ever reasons about the taxonomy below.
"""

from __future__ import annotations

from typing import Any


class LeadSyncError(Exception):
    """Base exception for all LeadSync errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ValidationError(LeadSyncError):
    """Malformed input. Fatal for the message, which is skip-marked."""

    pass


# =============================================================================
# Credentials
# =============================================================================


class AuthError(LeadSyncError):
    """Expired, invalid or revoked credential.

    ``needs_reauthorization`` is True when no retry can help and a human has
    to reconnect the account (revoked refresh token, undecryptable tokens).
    """

    def __init__(
        self,
        message: str,
        needs_reauthorization: bool = False,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.needs_reauthorization = needs_reauthorization


class CredentialMissingError(AuthError):
    """No stored credential for the tenant."""

    def __init__(self, tenant_id: str) -> None:
        super().__init__(
            f"No Google credentials stored for tenant {tenant_id}",
            needs_reauthorization=True,
            details={"tenant_id": tenant_id},
        )


# =============================================================================
# External services
# =============================================================================


class TransientExternalError(LeadSyncError):
    """Network failure or 5xx from an external service. Worth one retry."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.status_code = status_code


class UpstreamRequestError(LeadSyncError):
    """Non-retryable rejection (4xx) from the language model service."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message, {"status_code": status_code} if status_code else None)
        self.status_code = status_code


class DestinationError(LeadSyncError):
    """Base exception for destination table failures."""

    pass


class DestinationPermissionError(DestinationError):
    """The connected account may not read or write the destination."""

    def __init__(self, table_id: str, action: str = "accessing") -> None:
        super().__init__(
            f"Permission denied {action} sheet {table_id}. Please check Google permissions.",
            {"table_id": table_id},
        )
        self.table_id = table_id


class DestinationNotFoundError(DestinationError):
    """The destination table does not exist or is not shared with the account."""

    def __init__(self, table_id: str) -> None:
        super().__init__(
            f"Sheet {table_id} not found or inaccessible.",
            {"table_id": table_id},
        )
        self.table_id = table_id


# =============================================================================
# Internal
# =============================================================================


class ParseError(LeadSyncError):
    """Model output could not be parsed. Never escapes the extraction client."""

    pass


class UnexpectedError(LeadSyncError):
    """Anything not covered above, caught at the top of message processing."""

    @classmethod
    def wrap(cls, exc: Exception) -> "UnexpectedError":
        err = cls(f"Critical processing failure: {exc}", {"type": type(exc).__name__})
        err.__cause__ = exc
        return err
