"""
SQLAlchemy implementation of the nested Unit of Work.

The session is the resource: the owning unit commits and closes it, nested
units reuse it so every repository in the chain works inside one transaction.
"""

from __future__ import annotations

from collections.abc import Callable, Hashable
from typing import cast

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Session, sessionmaker

from persistkit.uow.base import ChildCommitAwareUnitOfWork
from persistkit.uow.provider import ResourceReuse, UnitOfWorkProvider
from persistkit.uow.registry import UnitOfWorkRegistry

_ASYNC_ONLY = "AsyncSession units require commit_async(), dispose_async() or 'async with'."


class SessionResource:
    """Adapt a synchronous :class:`~sqlalchemy.orm.Session` to :class:`Resource`."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def flush(self) -> None:
        self.session.commit()

    async def flush_async(self) -> None:
        # Blocks the event loop for the duration of the commit; use
        # AsyncSessionResource when the caller runs inside asyncio.
        self.session.commit()

    def release(self) -> None:
        self.session.close()

    async def release_async(self) -> None:
        self.session.close()


class AsyncSessionResource:
    """Adapt an :class:`~sqlalchemy.ext.asyncio.AsyncSession` to :class:`Resource`.

    Only the asynchronous half of the protocol is usable; use
    ``commit_async()`` and ``async with`` on units holding this resource.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def flush(self) -> None:
        raise TypeError("AsyncSession requires commit_async(); commit() is not supported.")

    async def flush_async(self) -> None:
        await self.session.commit()

    def release(self) -> None:
        raise TypeError("AsyncSession requires dispose_async() or 'async with'.")

    async def release_async(self) -> None:
        await self.session.close()


class SQLAlchemyUnitOfWork(ChildCommitAwareUnitOfWork[SessionResource]):
    """
    SQLAlchemy-backed UoW exposing the (possibly shared) session.

    All repositories resolving the ambient session while this unit is on top
    of the registry operate on the identical transactional context.
    """

    @property
    def session(self) -> Session:
        return self.resource.session

    def __enter__(self) -> SQLAlchemyUnitOfWork:
        super().__enter__()
        return self


class AsyncSQLAlchemyUnitOfWork(ChildCommitAwareUnitOfWork[AsyncSessionResource]):
    """Asynchronous counterpart of :class:`SQLAlchemyUnitOfWork`.

    The synchronous API (``with``, ``commit()``, ``dispose()``) is rejected
    with :class:`TypeError` before any state changes, so the unit can still
    be committed and disposed asynchronously afterwards.
    """

    def __enter__(self) -> AsyncSQLAlchemyUnitOfWork:
        raise TypeError(_ASYNC_ONLY)

    def commit(self) -> None:
        raise TypeError(_ASYNC_ONLY)

    def _dispose(self, *, unwinding: bool) -> None:
        if self.disposed:
            return
        raise TypeError(_ASYNC_ONLY)

    @property
    def session(self) -> AsyncSession:
        return self.resource.session

    async def __aenter__(self) -> AsyncSQLAlchemyUnitOfWork:
        await super().__aenter__()
        return self


class SQLAlchemyUnitOfWorkProvider(UnitOfWorkProvider[SessionResource]):
    """
    Provider opening one :class:`Session` per owning unit of work.

    Parameters
    ----------
    session_factory:
        Callable returning a new session, typically a :class:`sessionmaker`.
    registry:
        Registry holding the ambient stack.
    reuse:
        Default reuse policy (``reuse-if-available`` by default).
    key:
        Resource identity key. Defaults to ``session_factory`` itself, so units
        created by providers bound to different databases never share sessions.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | Callable[[], Session],
        *,
        registry: UnitOfWorkRegistry,
        reuse: ResourceReuse | str = ResourceReuse.REUSE_IF_AVAILABLE,
        key: Hashable | None = None,
    ) -> None:
        self.session_factory = session_factory
        super().__init__(
            registry=registry,
            resource_factory=lambda: SessionResource(self.session_factory()),
            resource_type=key if key is not None else session_factory,
            reuse=reuse,
            unit_of_work_class=SQLAlchemyUnitOfWork,
        )

    def create(self, reuse: ResourceReuse | str | None = None) -> SQLAlchemyUnitOfWork:
        return cast(SQLAlchemyUnitOfWork, super().create(reuse))

    def try_get_session(self) -> Session | None:
        """Return the ambient session of this provider, if any."""
        resource = self.try_get_resource()
        return resource.session if resource is not None else None

    def get_session(self) -> Session:
        """Return the ambient session of this provider.

        :raises NoAmbientUnitOfWorkError: If no unit of this provider is active.
        """
        return self.get_resource().session


class AsyncSQLAlchemyUnitOfWorkProvider(UnitOfWorkProvider[AsyncSessionResource]):
    """Provider opening one :class:`AsyncSession` per owning unit of work."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | Callable[[], AsyncSession],
        *,
        registry: UnitOfWorkRegistry,
        reuse: ResourceReuse | str = ResourceReuse.REUSE_IF_AVAILABLE,
        key: Hashable | None = None,
    ) -> None:
        self.session_factory = session_factory
        super().__init__(
            registry=registry,
            resource_factory=lambda: AsyncSessionResource(self.session_factory()),
            resource_type=key if key is not None else session_factory,
            reuse=reuse,
            unit_of_work_class=AsyncSQLAlchemyUnitOfWork,
        )

    def create(self, reuse: ResourceReuse | str | None = None) -> AsyncSQLAlchemyUnitOfWork:
        return cast(AsyncSQLAlchemyUnitOfWork, super().create(reuse))

    def try_get_session(self) -> AsyncSession | None:
        resource = self.try_get_resource()
        return resource.session if resource is not None else None

    def get_session(self) -> AsyncSession:
        return self.get_resource().session


__all__ = [
    "SessionResource",
    "AsyncSessionResource",
    "SQLAlchemyUnitOfWork",
    "AsyncSQLAlchemyUnitOfWork",
    "SQLAlchemyUnitOfWorkProvider",
    "AsyncSQLAlchemyUnitOfWorkProvider",
]
