"""
Unit of Work contracts and the nested-scope coordination logic.

A unit of work wraps a *resource* (a persistence handle such as a SQLAlchemy
session). Units created while another unit of the same resource type is active
may reuse that resource instead of opening their own. Only the unit that
created (owns) a resource ever flushes or releases it.

Responsibilities:
- Decide, per unit, whether ``commit()`` persists now or defers to the parent.
- Propagate deferred commit requests up the chain on disposal.
- Fail loudly when an owning unit closes with a child commit never honoured.
- Keep the registry stack in sync on every exit path.

Backends only implement :class:`Resource`; they never override the
coordination below.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Hashable
from contextlib import suppress
from typing import TYPE_CHECKING, Generic, Protocol, TypeVar, runtime_checkable
from uuid import uuid4

from persistkit.uow.errors import (
    ChildCommitPendingError,
    CommitCancelledError,
    UnitOfWorkDisposedError,
)

if TYPE_CHECKING:
    from persistkit.uow.registry import UnitOfWorkRegistry

log = logging.getLogger(__name__)


@runtime_checkable
class Resource(Protocol):
    """Persistence handle wrapped by a unit of work."""

    def flush(self) -> None: ...
    async def flush_async(self) -> None: ...
    def release(self) -> None: ...
    async def release_async(self) -> None: ...


R = TypeVar("R", bound=Resource)


@runtime_checkable
class SupportsChildCommit(Protocol):
    """Unit of work that records commit requests coming from nested units."""

    @property
    def commit_pending(self) -> bool: ...
    def request_commit(self) -> None: ...


async def _await_cancellable(awaitable: Awaitable[None], cancellation: asyncio.Event | None) -> None:
    """Await ``awaitable`` unless ``cancellation`` fires first.

    :raises CommitCancelledError: If the event is set before the flush finishes.
    """
    if cancellation is None:
        await awaitable
        return

    flush = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancellation.wait())
    try:
        done, _ = await asyncio.wait({flush, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        flush.cancel()
        raise
    finally:
        waiter.cancel()

    if flush in done:
        flush.result()
        return

    # Best effort: the store decides whether a half-sent commit landed.
    flush.cancel()
    with suppress(asyncio.CancelledError):
        await flush
    raise CommitCancelledError()


class UnitOfWork(Generic[R]):
    """
    Transactional scope over a resource that may be shared with ancestors.

    Instances are created by :class:`~persistkit.uow.provider.UnitOfWorkProvider`,
    which also pushes them onto the registry. Use them as (async) context
    managers or call :meth:`dispose` explicitly; disposal must happen innermost
    first.

    This base class does not track child commit requests. A nested unit whose
    parent is a plain :class:`UnitOfWork` drops its commit request: such a
    parent manages its own persistence timing.

    :param registry: Registry the unit was pushed onto.
    :type registry: UnitOfWorkRegistry
    :param resource: Resource the unit operates on.
    :type resource: Resource
    :param resource_type: Identity key compared by exact match when looking up
        a reusable ancestor.
    :type resource_type: Hashable
    :param owns_resource: ``True`` when the unit created ``resource`` itself.
    :type owns_resource: bool
    :param parent: Unit that was ambient when this one was created.
    :type parent: UnitOfWork | None
    """

    def __init__(
        self,
        *,
        registry: UnitOfWorkRegistry,
        resource: R,
        resource_type: Hashable,
        owns_resource: bool,
        parent: UnitOfWork | None = None,
    ) -> None:
        self.id = uuid4().hex[:12]
        self.resource = resource
        self.resource_type = resource_type
        self.owns_resource = owns_resource
        self.parent = parent
        self._registry = registry
        self._commit_pending = False
        self._committed = False
        self._disposed = False

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__} id={self.id} owns_resource={self.owns_resource} "
            f"committed={self._committed} disposed={self._disposed}>"
        )

    # ------------------------------- State -------------------------------------

    @property
    def committed(self) -> bool:
        """Whether this unit flushed its own resource at least once."""
        return self._committed

    @property
    def disposed(self) -> bool:
        return self._disposed

    # ----------------------------- Context Manager -----------------------------

    def __enter__(self) -> UnitOfWork[R]:
        self._ensure_active("enter")
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        # Never mask the caller's exception with the pending guard.
        self._dispose(unwinding=exc_type is not None)

    async def __aenter__(self) -> UnitOfWork[R]:
        self._ensure_active("enter")
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self._dispose_async(unwinding=exc_type is not None)

    # ------------------------------- Commit ------------------------------------

    def commit(self) -> None:
        """Signal that the work of this unit is complete.

        Owning units flush their resource; non-owning units ask their parent to
        commit instead. Persistence errors propagate unchanged.

        :raises UnitOfWorkDisposedError: If the unit is already disposed.
        """
        self._ensure_active("commit")
        if not self.owns_resource:
            self._request_parent_commit()
            return
        if not self._flush_required():
            log.debug("Unit of work %s already committed; skipping flush", self.id)
            return
        self._commit_pending = False
        self.resource.flush()
        self._committed = True
        log.debug("Unit of work %s committed", self.id, extra={"uow_id": self.id})

    async def commit_async(self, cancellation: asyncio.Event | None = None) -> None:
        """Asynchronous variant of :meth:`commit`.

        :param cancellation: Optional event; when already set the call fails
            before touching the resource, when set during the flush the flush
            is cancelled on a best-effort basis.
        :type cancellation: asyncio.Event | None
        :raises CommitCancelledError: If ``cancellation`` is or becomes set.
        :raises UnitOfWorkDisposedError: If the unit is already disposed.
        """
        self._ensure_active("commit")
        if cancellation is not None and cancellation.is_set():
            raise CommitCancelledError()
        if not self.owns_resource:
            self._request_parent_commit()
            return
        if not self._flush_required():
            log.debug("Unit of work %s already committed; skipping flush", self.id)
            return
        self._commit_pending = False
        await _await_cancellable(self.resource.flush_async(), cancellation)
        self._committed = True
        log.debug("Unit of work %s committed", self.id, extra={"uow_id": self.id})

    # ------------------------------- Dispose -----------------------------------

    def dispose(self) -> None:
        """Release the resource when owned and leave the registry.

        Calling it again is a no-op.

        :raises ChildCommitPendingError: If this unit owns its resource and a
            nested unit's commit request was never honoured.
        :raises UnitOfWorkNestingError: If a nested unit is still active.
        """
        self._dispose(unwinding=False)

    async def dispose_async(self) -> None:
        """Asynchronous variant of :meth:`dispose`."""
        await self._dispose_async(unwinding=False)

    # ------------------------------- Internals ---------------------------------

    def _dispose(self, *, unwinding: bool) -> None:
        if self._disposed:
            return
        # Out-of-order disposal must leave the unit active and its resource open.
        self._registry.ensure_on_top(self)
        self._disposed = True
        try:
            if self.owns_resource:
                self.resource.release()
        finally:
            self._registry.pop(self)
        self._settle_pending(unwinding=unwinding)

    async def _dispose_async(self, *, unwinding: bool) -> None:
        if self._disposed:
            return
        self._registry.ensure_on_top(self)
        self._disposed = True
        try:
            if self.owns_resource:
                await self.resource.release_async()
        finally:
            self._registry.pop(self)
        self._settle_pending(unwinding=unwinding)

    def _ensure_active(self, operation: str) -> None:
        if self._disposed:
            raise UnitOfWorkDisposedError(uow_id=self.id, operation=operation)

    def _flush_required(self) -> bool:
        return not self._committed

    def _request_parent_commit(self) -> None:
        if isinstance(self.parent, SupportsChildCommit):
            log.debug(
                "Unit of work %s defers commit to parent %s",
                self.id,
                getattr(self.parent, "id", None),
                extra={"uow_id": self.id},
            )
            self.parent.request_commit()
        else:
            log.debug("Unit of work %s has no tracking parent; commit dropped", self.id)

    def _settle_pending(self, *, unwinding: bool) -> None:
        log.debug("Unit of work %s disposed", self.id, extra={"uow_id": self.id})


class ChildCommitAwareUnitOfWork(UnitOfWork[R]):
    """
    Unit of work that tracks commit requests from nested units sharing its
    resource.

    * A nested, non-owning unit that commits sets ``commit_pending`` on its
      parent.
    * A non-owning unit disposed while pending forwards the request to its own
      parent, so the flag climbs to the owner even through units that never
      commit themselves.
    * An owning unit disposed while pending raises
      :class:`ChildCommitPendingError` after releasing the resource. A nested
      unit's changes can then never be lost silently.
    * An owning unit flushes again on ``commit()`` when a request arrived after
      its previous flush, and otherwise only once.
    """

    @property
    def commit_pending(self) -> bool:
        return self._commit_pending

    def request_commit(self) -> None:
        """Record that a nested unit wants its changes persisted."""
        self._commit_pending = True

    def _flush_required(self) -> bool:
        return not self._committed or self._commit_pending

    def _settle_pending(self, *, unwinding: bool) -> None:
        super()._settle_pending(unwinding=unwinding)
        if not self._commit_pending:
            return
        if not self.owns_resource:
            self._request_parent_commit()
            return
        if unwinding:
            log.warning(
                "Unit of work %s closed by an exception with a child commit pending; "
                "nested changes were discarded",
                self.id,
                extra={"uow_id": self.id},
            )
            return
        raise ChildCommitPendingError(uow_id=self.id)


__all__ = [
    "Resource",
    "SupportsChildCommit",
    "UnitOfWork",
    "ChildCommitAwareUnitOfWork",
]
