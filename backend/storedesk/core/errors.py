# backend/storedesk/core/errors.py
"""
Domain error taxonomy.

Services raise these; storedesk.main renders them as
{"detail": {"error": <kind>, "message": <text>}} with the mapped status code.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import status


class DomainError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_kind: str = "INTERNAL_ERROR"

    def __init__(self, message: str, *, kind: Optional[str] = None, extra: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.kind = kind or self.default_kind
        self.extra = extra or {}

    def to_detail(self) -> dict[str, Any]:
        detail: dict[str, Any] = {"error": self.kind, "message": self.message}
        detail.update(self.extra)
        return detail


class ValidationError(DomainError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_kind = "VALIDATION_ERROR"


class Unauthenticated(DomainError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_kind = "UNAUTHENTICATED"


class Forbidden(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    default_kind = "FORBIDDEN"


class LastOwnerViolation(Forbidden):
    default_kind = "LAST_OWNER_VIOLATION"


class NotAMember(Forbidden):
    default_kind = "NOT_A_MEMBER"


class NotFound(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    default_kind = "NOT_FOUND"


class ConflictError(DomainError):
    status_code = status.HTTP_409_CONFLICT
    default_kind = "CONFLICT"


class DuplicateMembership(ConflictError):
    """A write would break (email, organization) or (externalId, organization) uniqueness."""

    default_kind = "DUPLICATE_MEMBERSHIP"
