"""Error taxonomy shared by the store clients, resolvers, controllers and tools."""

from __future__ import annotations

from typing import Any

GENERIC_FAILURE_MESSAGE = "Operation failed."


class DealerError(Exception):
    """Base class for every error raised by dealer_mcp."""


class ValidationError(DealerError, ValueError):
    """Input rejected before any network call."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field
        self.message = message


class NotFoundError(DealerError, LookupError):
    """Requested record does not exist."""

    def __init__(self, collection: str, record_id: str) -> None:
        super().__init__(f"{_singular(collection).capitalize()} with ID {record_id} not found")
        self.collection = collection
        self.record_id = record_id


class AuthenticationError(DealerError):
    """The operation needs a logged-in session."""


class RecordStoreError(DealerError, RuntimeError):
    """Raised for record-store request/config errors with structured metadata."""

    def __init__(
        self,
        message: str,
        *,
        code: str,
        status: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status
        self.details = details or {}

    @property
    def is_not_found(self) -> bool:
        return self.status == 404


class ReferenceCreationError(DealerError):
    """A find-or-create step failed after earlier steps may already have written.

    ``completed`` maps entity name to the id resolved before the failure. Those
    records are left in place.
    """

    def __init__(
        self,
        entity: str,
        cause: BaseException,
        *,
        completed: dict[str, str] | None = None,
        created: tuple[str, ...] = (),
    ) -> None:
        super().__init__(f"Failed to resolve {entity}: {cause}")
        self.entity = entity
        self.cause = cause
        self.completed = dict(completed or {})
        self.created = created


def _singular(collection: str) -> str:
    name = collection.replace("_", " ")
    return name[:-1] if name.endswith("s") else name


def user_message(exc: BaseException, default: str = GENERIC_FAILURE_MESSAGE) -> str:
    """Render the user-facing text for an error.

    Validation, auth and not-found errors are shown verbatim; store errors keep their
    original message appended to the generic one. Anything else only gets the
    generic text.
    """
    if isinstance(exc, (ValidationError, NotFoundError, AuthenticationError)):
        return str(exc)
    if isinstance(exc, RecordStoreError):
        if exc.is_not_found:
            return "The requested record was not found."
        return f"{default} {exc.message}"
    if isinstance(exc, ReferenceCreationError):
        return f"{default} Could not save {exc.entity}: {exc.cause}"
    return default
