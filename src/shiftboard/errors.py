"""Error taxonomy shared by every scheduling and notification operation.

Each error carries a short machine-readable ``code`` and the HTTP status an
outer surface should map it to. Authorization and validation errors are
raised before any mutation happens.
"""

from __future__ import annotations


class ShiftboardError(Exception):
    """Base exception for scheduling and notification errors."""

    code = "internal"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class UnauthorizedError(ShiftboardError):
    """No caller identity, or the identity could not be verified."""

    code = "unauthorized"
    status_code = 401


class ForbiddenError(ShiftboardError):
    """The caller lacks the role or scope the operation requires."""

    code = "forbidden"
    status_code = 403


class ValidationError(ShiftboardError):
    """Required fields are missing or malformed."""

    code = "validation"
    status_code = 400


class NotFoundError(ShiftboardError):
    """A referenced unit, registration, template, user or task is absent."""

    code = "not_found"
    status_code = 404


class ConflictError(ShiftboardError):
    """The write would duplicate existing state (e.g. a shift tuple already registered)."""

    code = "conflict"
    status_code = 409


class InternalError(ShiftboardError):
    """An unexpected downstream failure."""

    code = "internal"
    status_code = 500
