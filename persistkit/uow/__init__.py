"""Unit of Work abstractions and concrete implementations.

This package re-exports the nested unit-of-work coordination (registries,
provider, child-commit tracking) alongside the SQLAlchemy-backed resources
that repositories and query objects depend on.
"""

from .base import ChildCommitAwareUnitOfWork, Resource, SupportsChildCommit, UnitOfWork
from .errors import (
    ChildCommitPendingError,
    CommitCancelledError,
    NoAmbientUnitOfWorkError,
    UnitOfWorkDisposedError,
    UnitOfWorkError,
    UnitOfWorkNestingError,
)
from .provider import ResourceReuse, UnitOfWorkProvider
from .registry import (
    ContextVarUnitOfWorkRegistry,
    InMemoryUnitOfWorkRegistry,
    ThreadLocalUnitOfWorkRegistry,
    UnitOfWorkRegistry,
)
from .sqlalchemy_uow import (
    AsyncSessionResource,
    AsyncSQLAlchemyUnitOfWork,
    AsyncSQLAlchemyUnitOfWorkProvider,
    SessionResource,
    SQLAlchemyUnitOfWork,
    SQLAlchemyUnitOfWorkProvider,
)

__all__ = [
    "Resource",
    "SupportsChildCommit",
    "UnitOfWork",
    "ChildCommitAwareUnitOfWork",
    "UnitOfWorkError",
    "ChildCommitPendingError",
    "CommitCancelledError",
    "NoAmbientUnitOfWorkError",
    "UnitOfWorkDisposedError",
    "UnitOfWorkNestingError",
    "ResourceReuse",
    "UnitOfWorkProvider",
    "UnitOfWorkRegistry",
    "ThreadLocalUnitOfWorkRegistry",
    "ContextVarUnitOfWorkRegistry",
    "InMemoryUnitOfWorkRegistry",
    "SessionResource",
    "AsyncSessionResource",
    "SQLAlchemyUnitOfWork",
    "AsyncSQLAlchemyUnitOfWork",
    "SQLAlchemyUnitOfWorkProvider",
    "AsyncSQLAlchemyUnitOfWorkProvider",
]
