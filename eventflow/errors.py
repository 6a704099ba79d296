"""Domain errors raised by EventFlow operations.

Every error carries a stable machine-readable ``code`` and a human message.
The HTTP layer maps each subclass to a status code; nothing below the API
knows about HTTP.
"""

from __future__ import annotations


class ServiceError(Exception):
    status_code = 400

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    def as_dict(self) -> dict[str, str]:
        return {"error": self.code, "message": self.message}


class ValidationError(ServiceError):
    """Input violates a rule of the operation."""

    status_code = 422


class ConflictError(ServiceError):
    """Operation conflicts with the current state of an entity."""

    status_code = 409


class ForbiddenError(ServiceError):
    """Caller lacks the required relation, role, or standing."""

    status_code = 403


class NotFoundError(ServiceError):
    status_code = 404

    def __init__(self, entity: str, code: str | None = None):
        super().__init__(code or f"{entity.upper()}_NOT_FOUND", f"{entity} not found")
        self.entity = entity
