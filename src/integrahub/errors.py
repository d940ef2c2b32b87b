"""Domain errors raised by the integration orchestrator.

Every error carries the HTTP status the API layer answers with, so routers
can translate them without knowing the individual kinds.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from integrahub.models.integration import Integration


class IntegrationError(Exception):
    """Base class for classified orchestration failures."""

    status_code = 500
    title = "Integration Error"


class NotFoundError(IntegrationError):
    """No integration exists where one was expected."""

    status_code = 404
    title = "Not Found"


class WrongStateError(NotFoundError):
    """Operation attempted while the integration is not in the required status."""

    title = "Wrong Integration Status"

    def __init__(self, expected: str, actual: str, message: str | None = None) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            message
            or f"Integration must be in '{expected}' status, found '{actual}'"
        )


class InvalidInputError(IntegrationError):
    """A required field is missing or unusable."""

    status_code = 400
    title = "Invalid Input"


class DuplicateConflictError(IntegrationError):
    """Unique-constraint race while creating an integration."""

    status_code = 409
    title = "Duplicate Integration"


class UpstreamRejectedError(IntegrationError):
    """The external platform rejected or failed the credential exchange."""

    status_code = 502
    title = "Bad Gateway"


class StorageError(IntegrationError):
    """The integration store failed in a way no other kind describes."""

    status_code = 500
    title = "Storage Error"


class DispatchFailedError(IntegrationError):
    """Integration saved, but processing not triggered.

    Raised after a successful commit when notifying the worker fails. The
    committed integration is attached so callers can still report it.
    """

    status_code = 503
    title = "Processing Not Triggered"

    def __init__(self, integration: Integration, message: str | None = None) -> None:
        self.integration = integration
        super().__init__(
            message
            or f"Integration {integration.id} saved, but processing was not triggered"
        )
