"""
Registries tracking the stack of active units of work.

A registry answers "which unit of work is ambient right now?" for the current
logical execution context. Every flavor stores an immutable tuple (most recent
first) so that a copied context never shares a mutable stack with the context
it was copied from.

Flavors
-------
* :class:`ThreadLocalUnitOfWorkRegistry`: one stack per physical thread.
* :class:`ContextVarUnitOfWorkRegistry`: one stack per asyncio call chain.
  The stack survives ``await`` points; tasks spawned from the chain start with
  a snapshot and their own pushes never leak back.
* :class:`InMemoryUnitOfWorkRegistry`: a single explicit stack, meant to be
  injected in tests.

The Flask request flavor lives in :mod:`persistkit.ext.flask`.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from contextvars import ContextVar
from itertools import count
from typing import TYPE_CHECKING

from persistkit.uow.errors import UnitOfWorkNestingError

if TYPE_CHECKING:
    from persistkit.uow.base import UnitOfWork

Stack = tuple["UnitOfWork", ...]

_registry_ids = count(1)


class UnitOfWorkRegistry(ABC):
    """
    Ordered record of active units of work, most recent first.

    Subclasses only decide *where* the stack lives by implementing
    :meth:`_get_stack` and :meth:`_set_stack`; nesting rules are enforced here.
    """

    @abstractmethod
    def _get_stack(self) -> Stack: ...
    @abstractmethod
    def _set_stack(self, stack: Stack) -> None: ...

    def get_current(self, depth: int = 0) -> UnitOfWork | None:
        """Return the unit ``depth`` positions below the top of the stack.

        :param depth: 0 for the most recent unit, 1 for its parent, and so on.
        :type depth: int
        :returns: The unit of work, or ``None`` when the stack is too short.
        :rtype: UnitOfWork | None
        :raises ValueError: If ``depth`` is negative.
        """
        if depth < 0:
            raise ValueError("depth must be >= 0")
        stack = self._get_stack()
        return stack[depth] if depth < len(stack) else None

    def push(self, uow: UnitOfWork) -> None:
        """Register ``uow`` as the new ambient unit of work."""
        self._set_stack((uow, *self._get_stack()))

    def pop(self, uow: UnitOfWork) -> None:
        """Remove ``uow`` from the top of the stack.

        :raises UnitOfWorkNestingError: If ``uow`` is not on top (disposed out
            of order) or not registered at all.
        """
        self.ensure_on_top(uow)
        self._set_stack(self._get_stack()[1:])

    def ensure_on_top(self, uow: UnitOfWork) -> None:
        """Check that ``uow`` is the ambient unit without changing the stack.

        :raises UnitOfWorkNestingError: If ``uow`` is not on top or not
            registered at all.
        """
        stack = self._get_stack()
        if stack and stack[0] is uow:
            return
        if any(item is uow for item in stack):
            raise UnitOfWorkNestingError(
                uow_id=uow.id, detail="a nested unit of work is still active"
            )
        raise UnitOfWorkNestingError(
            uow_id=uow.id, detail="not registered in the current context"
        )

    def __len__(self) -> int:
        return len(self._get_stack())

    def __iter__(self):
        return iter(self._get_stack())


class ThreadLocalUnitOfWorkRegistry(UnitOfWorkRegistry):
    """Keep one stack per physical thread."""

    def __init__(self) -> None:
        self._local = threading.local()

    def _get_stack(self) -> Stack:
        return getattr(self._local, "stack", ())

    def _set_stack(self, stack: Stack) -> None:
        self._local.stack = stack


class ContextVarUnitOfWorkRegistry(UnitOfWorkRegistry):
    """
    Keep one stack per logical execution context.

    Backed by :class:`contextvars.ContextVar`, so asyncio tasks (and threads
    started with :func:`contextvars.copy_context`) observe the stack that
    was current when they were created. Each registry instance owns its own
    variable, so two registries never see each other's units.
    """

    def __init__(self, name: str | None = None) -> None:
        self._var: ContextVar[Stack] = ContextVar(
            name or f"persistkit_uow_stack_{next(_registry_ids)}", default=()
        )

    def _get_stack(self) -> Stack:
        return self._var.get()

    def _set_stack(self, stack: Stack) -> None:
        self._var.set(stack)


class InMemoryUnitOfWorkRegistry(UnitOfWorkRegistry):
    """Single explicit stack shared by every caller of this instance."""

    def __init__(self) -> None:
        self._stack: Stack = ()

    def _get_stack(self) -> Stack:
        return self._stack

    def _set_stack(self, stack: Stack) -> None:
        self._stack = stack


__all__ = [
    "UnitOfWorkRegistry",
    "ThreadLocalUnitOfWorkRegistry",
    "ContextVarUnitOfWorkRegistry",
    "InMemoryUnitOfWorkRegistry",
]
