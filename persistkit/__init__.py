"""Nested unit of work, repository and query-object infrastructure for SQLAlchemy."""

from persistkit.query import QueryBase, SortDirection
from persistkit.repositories import BaseRepository
from persistkit.uow import (
    AsyncSQLAlchemyUnitOfWorkProvider,
    ChildCommitAwareUnitOfWork,
    ChildCommitPendingError,
    CommitCancelledError,
    ContextVarUnitOfWorkRegistry,
    InMemoryUnitOfWorkRegistry,
    ResourceReuse,
    SQLAlchemyUnitOfWorkProvider,
    ThreadLocalUnitOfWorkRegistry,
    UnitOfWork,
    UnitOfWorkError,
    UnitOfWorkProvider,
)

__version__ = "0.1.0"

__all__ = [
    "QueryBase",
    "SortDirection",
    "BaseRepository",
    "UnitOfWork",
    "ChildCommitAwareUnitOfWork",
    "UnitOfWorkProvider",
    "ResourceReuse",
    "ContextVarUnitOfWorkRegistry",
    "ThreadLocalUnitOfWorkRegistry",
    "InMemoryUnitOfWorkRegistry",
    "SQLAlchemyUnitOfWorkProvider",
    "AsyncSQLAlchemyUnitOfWorkProvider",
    "UnitOfWorkError",
    "ChildCommitPendingError",
    "CommitCancelledError",
]
