"""
Unit-of-work exceptions.

These exceptions do not depend on Flask or HTTP. Persistence failures raised
by SQLAlchemy while flushing are *not* wrapped here; they reach the caller
unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass

# --------------------------------------------------------------------------- #
# Base types
# --------------------------------------------------------------------------- #


class UnitOfWorkError(Exception):
    """
    Base class for all unit-of-work coordination errors.

    Notes
    -----
    - Raised by the coordination layer only, never by a resource backend.
    - Callers can catch this to tell coordination bugs apart from database
      errors.
    """

    pass


# --------------------------------------------------------------------------- #
# Specific errors
# --------------------------------------------------------------------------- #


@dataclass(slots=True)
class ChildCommitPendingError(UnitOfWorkError):
    """
    Raised when an owning unit of work is disposed while a nested unit of work
    asked for a commit that was never honoured.

    :param uow_id: Identifier of the owning unit of work.
    :type uow_id: str
    """

    uow_id: str

    def __str__(self) -> str:
        return (
            f"Unit of work {self.uow_id} was disposed while a child commit was still "
            "pending; call commit() on the owning unit of work before leaving it."
        )


class CommitCancelledError(UnitOfWorkError):
    """Raised when an asynchronous commit is cancelled through its cancellation event."""

    def __init__(self, message: str = "Commit was cancelled before the flush completed.") -> None:
        super().__init__(message)


@dataclass(slots=True)
class UnitOfWorkNestingError(UnitOfWorkError):
    """
    Raised when units of work are disposed out of creation order, or when a
    registry is asked to remove a unit it does not hold.

    :param uow_id: Identifier of the unit being removed.
    :type uow_id: str
    :param detail: Short explanation.
    :type detail: str
    """

    uow_id: str
    detail: str

    def __str__(self) -> str:
        return f"Invalid unit of work nesting for {self.uow_id}: {self.detail}"


@dataclass(slots=True)
class UnitOfWorkDisposedError(UnitOfWorkError):
    """
    Raised when an operation is attempted on a disposed unit of work.

    :param uow_id: Identifier of the disposed unit.
    :type uow_id: str
    :param operation: Operation attempted (e.g., ``"commit"``).
    :type operation: str
    """

    uow_id: str
    operation: str

    def __str__(self) -> str:
        return f"Cannot {self.operation} unit of work {self.uow_id}: it is already disposed."


class NoAmbientUnitOfWorkError(UnitOfWorkError):
    """Raised when a resource is requested but no compatible unit of work is active."""

    def __init__(self, resource_type: object) -> None:
        super().__init__(f"No active unit of work holds a resource of type {resource_type!r}.")
        self.resource_type = resource_type


__all__ = [
    "UnitOfWorkError",
    "ChildCommitPendingError",
    "CommitCancelledError",
    "UnitOfWorkNestingError",
    "UnitOfWorkDisposedError",
    "NoAmbientUnitOfWorkError",
]
