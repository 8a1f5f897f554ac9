"""AgilePM exception hierarchy.

Provides structured exceptions for error handling throughout the codebase.
All exceptions inherit from AgilePMError for easy catching.

Webhook delivery never lets these escape into the business flow that fired
the event; they surface only through the management API.
"""

from __future__ import annotations


class AgilePMError(Exception):
    """Base exception for all AgilePM errors.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code for API responses.
    """

    code: str = "agilepm_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }


class ValidationError(AgilePMError):
    """Invalid input provided.

    Attributes:
        field: The field that failed validation.
        message: Description of the validation failure.
    """

    code: str = "validation_error"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"{field}: {message}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "field": self.field,
                "message": self.message,
            }
        }


class NotFoundError(AgilePMError):
    """Resource not found.

    Attributes:
        resource_type: Type of resource (e.g., "webhook", "project").
        resource_id: ID of the missing resource.
    """

    code: str = "not_found"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "resource_type": self.resource_type,
                "resource_id": self.resource_id,
                "message": self.message,
            }
        }


class StorageError(AgilePMError):
    """Storage operation failed.

    Raised when a Qdrant read or write fails after retries.
    """

    code: str = "storage_error"


class ConfigurationError(AgilePMError):
    """Required configuration is missing or invalid."""

    code: str = "configuration_error"


class AuthenticationError(AgilePMError):
    """Authentication credentials are invalid or missing."""

    code: str = "authentication_error"


class AuthorizationError(AgilePMError):
    """Authorization failed.

    Raised when the caller is not an OWNER or ADMIN of the company
    whose webhooks they are trying to manage.
    """

    code: str = "authorization_error"
