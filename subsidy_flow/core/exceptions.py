"""Workflow error taxonomy.

Hard failures are exceptions: the operation did not happen (or, for
``PersistenceError``, its primary mutation was not committed). Soft failures
are ``WorkflowWarning`` values attached to an otherwise successful outcome.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass


class WorkflowError(Exception):
    kind: str = "WorkflowError"
    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class UnauthenticatedError(WorkflowError):
    kind = "Unauthenticated"
    status_code = 401


class ForbiddenError(WorkflowError):
    kind = "Forbidden"
    status_code = 403


class NotFoundError(WorkflowError):
    kind = "NotFound"
    status_code = 404


class InvalidStateError(WorkflowError):
    kind = "InvalidState"
    status_code = 409

    def __init__(self, current: str | None, required: Iterable[str], *, subject: str = "application") -> None:
        self.current = current
        self.required = tuple(required)
        super().__init__(
            f"Invalid {subject} state: {current}. Expected: {' or '.join(self.required)}."
        )


class WorkflowValidationError(WorkflowError):
    kind = "ValidationError"
    status_code = 422


class PersistenceError(WorkflowError):
    kind = "PersistenceFailure"
    status_code = 500


AUDIT_WARNING = "AuditWarning"
NOTIFICATION_WARNING = "NotificationWarning"


@dataclass(frozen=True)
class WorkflowWarning:
    kind: str
    message: str

    def __str__(self) -> str:
        return self.message


def join_warnings(warnings: Iterable[WorkflowWarning]) -> str | None:
    messages = [w.message for w in warnings]
    return " | ".join(messages) if messages else None
