"""Exceptions for soft delete operations."""

from typing import Optional


class ParanoiaError(Exception):
    """Base exception for soft delete operations."""

    def __init__(self, message: str, entity_id: Optional[str] = None):
        self.entity_id = entity_id
        super().__init__(message)


class HookAborted(ParanoiaError):
    """Raised by a lifecycle hook to veto the running operation.

    Never escapes the service: the operation is rolled back and the caller
    receives ``False``.
    """

    def __init__(self, event: str, entity_id: Optional[str] = None):
        self.event = event
        super().__init__(f"Operation halted by {event} hook", entity_id=entity_id)


class ReadOnlyViolation(ParanoiaError):
    """Raised when a mutation is attempted on a read-only record."""

    def __init__(self, entity_id: str):
        super().__init__(
            f"Entity {entity_id} is marked read-only and cannot be modified",
            entity_id=entity_id,
        )


class RecordNotFound(ParanoiaError):
    """Raised when a record cannot be found in the requested scope."""

    def __init__(self, entity_type: str, entity_id: str, scope: str = "deleted"):
        self.entity_type = entity_type
        self.scope = scope
        super().__init__(
            f"{entity_type} with ID {entity_id} not found in {scope} scope",
            entity_id=entity_id,
        )


class AlreadyHardDeleted(ParanoiaError):
    """Raised when an operation targets a record that was physically removed."""

    def __init__(self, entity_id: str):
        super().__init__(
            f"Entity {entity_id} has been permanently deleted",
            entity_id=entity_id,
        )


class TransactionFailure(ParanoiaError):
    """Raised when the storage layer fails during a lifecycle operation."""

    def __init__(self, message: str, original: Exception):
        self.original = original
        super().__init__(f"{message}: {original}")


class DetachedRecordError(ParanoiaError):
    """Raised when an operation needs a session and the record has none."""

    def __init__(self, entity_type: str):
        super().__init__(
            f"{entity_type} instance is not attached to a session; "
            "pass session= or add it to a session first"
        )


class InvalidDependentError(ParanoiaError):
    """Raised when a dependent declaration does not match its relationship."""


class DuplicateRecordError(ParanoiaError):
    """Raised when a live record with the same unique values already exists."""

    def __init__(self, entity_type: str, values: dict):
        self.values = values
        rendered = ", ".join(f"{k}={v!r}" for k, v in values.items())
        super().__init__(f"{entity_type} with {rendered} already exists")


def entity_id(entity: object) -> str:
    """Readable identifier of an entity for messages and logs."""
    return str(getattr(entity, "id", "unknown"))
