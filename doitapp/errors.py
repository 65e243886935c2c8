"""Error taxonomy for the task store and its collaborators.

Store operations never raise these past the store boundary; they are
carried inside an :class:`~doitapp.models.Outcome` instead.  The gateway
raises :class:`PersistenceError` and the store catches it.
"""

from __future__ import annotations

from typing import Optional


class DoItError(Exception):
    """Base class for every known, recoverable error."""

    def __init__(self, message: str, hint: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint

    def get_user_message(self) -> str:
        """Return the message with its hint appended, if any."""
        if self.hint:
            return f"{self.message} ({self.hint})"
        return self.message


class TaskValidationError(DoItError):
    """Malformed input to add/update, or an illegal status transition."""

    def __init__(self, message: str, fields: Optional[list[str]] = None) -> None:
        super().__init__(message, hint="Check the task fields and try again.")
        self.fields = fields or []


class NotFoundError(DoItError):
    """The targeted task id is not in the current collection."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} not found.", hint="Run `doit list` to see task ids.")
        self.task_id = task_id


class PersistenceError(DoItError):
    """A gateway call failed; nothing was applied in memory."""

    def __init__(self, message: str, operation: Optional[str] = None) -> None:
        super().__init__(message, hint="Retry the action.")
        self.operation = operation


class AuthRequiredError(DoItError):
    """No user is signed in for this session."""

    def __init__(self, message: str = "Not signed in.") -> None:
        super().__init__(message, hint="Run `doit login <name>` first.")
