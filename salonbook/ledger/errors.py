"""Exception types shared by the ledger modules."""

from __future__ import annotations

from typing import Sequence


class ValidationError(RuntimeError):
    """Raised when incoming data fails validation."""


class PersistenceError(RuntimeError):
    """Raised when a round trip to the store fails.

    ``step`` names the write or read that failed (``"insert_services"``,
    ``"delete_products"``...) and ``action`` the user level operation it was
    part of (``"create_activity"``).
    """

    def __init__(self, message: str, *, step: str | None = None, action: str | None = None) -> None:
        super().__init__(message)
        self.step = step
        self.action = action


class PartialWriteError(PersistenceError):
    """Raised when a multi-step write stopped after committing some steps."""

    def __init__(
        self,
        message: str,
        *,
        step: str | None = None,
        action: str | None = None,
        completed_steps: Sequence[str] = (),
        record_id: int | None = None,
    ) -> None:
        super().__init__(message, step=step, action=action)
        self.completed_steps = tuple(completed_steps)
        self.record_id = record_id


class OperationInProgressError(RuntimeError):
    """Raised when an operation on the same entity is already running."""
