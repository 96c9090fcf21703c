"""Error taxonomy shared by the stores, the coordinator, and the CLI."""

from __future__ import annotations

from typing import Optional, Sequence


class SettlementError(Exception):
    """Base class for every error raised by the settlement engine."""


class ValidationError(SettlementError, ValueError):
    """Raised when caller input is rejected before any collaborator is called."""


class CollaboratorError(SettlementError):
    """Raised when an external store fails a read or a write.

    The message is the collaborator's own. When the failure happens inside a
    reversal operation the coordinator records the step that failed and the
    steps that had already completed, since no rollback is attempted.
    """

    def __init__(self, message: str, *, step: Optional[str] = None) -> None:
        super().__init__(message)
        self.step = step
        self.completed_steps: tuple[str, ...] = ()


class CollaboratorReadError(CollaboratorError):
    """Raised when a store cannot return the requested data."""


class CollaboratorWriteError(CollaboratorError):
    """Raised when a store rejects an update, insert, or delete."""


class MissingRecordError(CollaboratorReadError):
    """Raised when a referenced line, product, or booking is unknown."""


class DuplicateRiskError(CollaboratorWriteError):
    """Raised when a cancel archived the booking but could not delete it.

    Retrying the cancel would insert a second archive copy, so the caller must
    delete the original by hand instead.
    """

    def __init__(self, message: str, *, record_id: str) -> None:
        super().__init__(message, step="DELETE_ORIGINAL")
        self.record_id = record_id


class PartialReversalError(SettlementError):
    """Raised when a multi-line operation stops after some lines succeeded."""

    def __init__(
        self,
        message: str,
        *,
        succeeded: Sequence[str],
        failed: str,
        remaining: Sequence[str],
    ) -> None:
        super().__init__(message)
        self.succeeded = tuple(succeeded)
        self.failed = failed
        self.remaining = tuple(remaining)


__all__ = [
    "SettlementError",
    "ValidationError",
    "CollaboratorError",
    "CollaboratorReadError",
    "CollaboratorWriteError",
    "MissingRecordError",
    "DuplicateRiskError",
    "PartialReversalError",
]
