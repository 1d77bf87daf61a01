"""
Service-layer exception hierarchy.

Services raise these; blueprints register handlers against them once and
get consistent HTTP status codes everywhere.

Usage:
    from labstock.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="ExportJob", resource_id=job_id)
    raise ValidationError("include_empty_lots must be a boolean")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the caller's scope.

    Used for both genuinely missing records and records owned by another
    user, so a caller cannot tell the two apart.

    Args:
        resource: Human-readable model/entity name (e.g. "ExportJob").
        resource_id: The key that was looked up. Included in logs, not in HTTP response.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails validation in the service layer.

    Maps to HTTP 400 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation is not allowed in the resource's current state.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} cannot transition with {field}={value!r}")


class DigestLoadError(Exception):
    """Subscriber list or shared inventory data could not be loaded.

    Fatal to a digest run: nothing is sent.
    """


class MailDeliveryError(Exception):
    """The mail provider rejected or failed to deliver a message.

    ``str(exc)`` is the human-readable reason recorded on the failed
    notification row.
    """


class PersistenceError(Exception):
    """A notification record could not be written."""
