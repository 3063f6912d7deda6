"""Error taxonomy raised by the service layer.

Storage-engine exceptions never leave a service; they are rolled back and
re-raised as one of these with enough context (entity, key, field) for the
caller to act on.
"""
from typing import Optional


class DomainError(Exception):
    """Base class for all service-level failures."""

    status_code = 500

    def __init__(
        self,
        message: str,
        entity: Optional[str] = None,
        key: Optional[str] = None,
        field: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.entity = entity
        self.key = key
        self.field = field

    def to_dict(self) -> dict:
        body = {"detail": self.message}
        if self.entity:
            body["entity"] = self.entity
        if self.field:
            body["field"] = self.field
        return body


class ValidationError(DomainError):
    """Malformed or missing input."""

    status_code = 400


class NotFoundError(DomainError):
    """Referenced entity does not exist or has expired."""

    status_code = 404

    def __init__(self, entity: str, key: Optional[str] = None, message: Optional[str] = None):
        super().__init__(message or f"{entity} not found", entity=entity, key=key)


class ConflictError(DomainError):
    """A uniqueness constraint would be violated."""

    status_code = 409


class PermissionDeniedError(DomainError):
    """The acting user may not perform the operation."""

    status_code = 403


class ScoringFailure(DomainError):
    """The scoring collaborator did not return a usable result."""

    status_code = 502


class CascadeFailure(DomainError):
    """A multi-row delete could not complete and was rolled back."""

    status_code = 500


class StorageError(DomainError):
    """The database refused or failed a write; nothing was saved."""

    status_code = 503
