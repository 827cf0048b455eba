"""Relay exception hierarchy.

Provides structured exceptions for error handling throughout the codebase.
All exceptions inherit from RelayError for easy catching.

Management errors (NotFoundError, ValidationError) propagate to the
administrative caller and carry an HTTP status hint. Delivery errors are
raised and caught inside the attempt executor only; they never reach
the code that triggered an event.
"""

from __future__ import annotations


class RelayError(Exception):
    """Base exception for all Relay errors.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code for API responses.
        http_status: HTTP status an API layer should answer with.
    """

    code: str = "relay_error"
    http_status: int = 500

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


class ValidationError(RelayError):
    """Invalid input provided.

    Raised when a webhook URL is malformed or the event set is empty.

    Attributes:
        field: The field that failed validation.
        message: Description of the validation failure.
    """

    code: str = "validation_error"
    http_status: int = 400

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


class NotFoundError(RelayError):
    """Resource not found.

    Raised when a tenant-scoped lookup finds no row, e.g. a webhook ID
    that belongs to another tenant.

    Attributes:
        resource_type: Type of resource (e.g., "webhook").
        resource_id: ID of the missing resource.
    """

    code: str = "not_found"
    http_status: int = 404

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


class StorageError(RelayError):
    """Storage operation failed.

    Raised when a database operation fails after transient-error retries.
    """

    code: str = "storage_error"


class ConfigurationError(RelayError):
    """Configuration error.

    Raised when required configuration is missing or invalid, including
    a webhook with no signing secret at sign time.
    """

    code: str = "configuration_error"


class DeliveryStateError(RelayError):
    """Illegal delivery state transition.

    Raised when something tries to move a delivery out of a terminal
    state or past the maximum number of attempts.
    """

    code: str = "delivery_state_error"
    http_status: int = 409


class DeliveryError(RelayError):
    """A single delivery attempt failed."""

    code: str = "delivery_error"
    http_status: int = 502


class DeliveryTransportError(DeliveryError):
    """Network failure or timeout while talking to the subscriber."""

    code: str = "delivery_transport_error"


class DeliveryProtocolError(DeliveryError):
    """Subscriber answered with a non-2xx HTTP status.

    Attributes:
        status_code: HTTP status returned by the subscriber.
        reason: HTTP reason phrase, if any.
    """

    code: str = "delivery_protocol_error"

    def __init__(self, status_code: int, reason: str | None = None) -> None:
        self.status_code = status_code
        self.reason = reason
        message = f"HTTP {status_code}: {reason}" if reason else f"HTTP {status_code}"
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "status_code": self.status_code,
                "message": self.message,
            }
        }
