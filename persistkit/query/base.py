"""Query object base over SQLAlchemy ``Select`` statements.

A query object encapsulates one read use case: subclasses build the base
statement in :meth:`QueryBase.get_queryable`, callers tune paging and sort
order, and :meth:`QueryBase.execute` runs it against the session of the
ambient unit of work.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Generic, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import InstrumentedAttribute, RelationshipProperty, Session

from persistkit.uow.sqlalchemy_uow import (
    AsyncSQLAlchemyUnitOfWorkProvider,
    SQLAlchemyUnitOfWorkProvider,
)

T = TypeVar("T")


class SortDirection(str, Enum):
    ASCENDING = "asc"
    DESCENDING = "desc"


class QueryBase(ABC, Generic[T]):
    """
    Base implementation of the query object pattern.

    Parameters
    ----------
    provider:
        Provider whose ambient session runs the query. Pass an
        :class:`AsyncSQLAlchemyUnitOfWorkProvider` to use the ``*_async``
        methods.

    Attributes
    ----------
    skip:
        Number of rows to skip; ``None`` disables the offset.
    take:
        Page size; ``None`` disables the limit.
    sort_criteria:
        ``ORDER BY`` clauses in priority order (first added sorts first).
    """

    def __init__(
        self,
        provider: SQLAlchemyUnitOfWorkProvider | AsyncSQLAlchemyUnitOfWorkProvider,
    ) -> None:
        self._provider = provider
        self.skip: int | None = None
        self.take: int | None = None
        self.sort_criteria: list[Any] = []

    # ------------------------------ Extensibility ----------------------------

    @abstractmethod
    def get_queryable(self) -> Select[Any]:
        """Return the filtered base statement, without paging or sorting."""

    def post_process_results(self, results: list[Any]) -> list[T]:
        """Modify materialized rows before they are returned (identity by default)."""
        return results

    # ------------------------------- Sorting ---------------------------------

    def add_sort_criteria(
        self,
        field: str | InstrumentedAttribute[Any],
        direction: SortDirection | str = SortDirection.ASCENDING,
    ) -> None:
        """Append a sort criterion.

        :param field: Mapped attribute, or the name of an attribute of the
            statement's first entity. Dotted names such as
            ``"customer.name"`` follow many-to-one relationships and sort by
            a correlated scalar subquery, so no join is needed.
        :param direction: ``SortDirection`` or ``"asc"`` / ``"desc"``.
        :raises ValueError: If ``field`` does not name a mapped attribute.
        """
        column = self._resolve_field(field) if isinstance(field, str) else field
        if SortDirection(direction) is SortDirection.DESCENDING:
            self.sort_criteria.append(column.desc())
        else:
            self.sort_criteria.append(column.asc())

    def clear_sort_criteria(self) -> None:
        self.sort_criteria.clear()

    def _resolve_field(self, name: str) -> Any:
        descriptions = self.get_queryable().column_descriptions
        entity = descriptions[0].get("entity") if descriptions else None
        if entity is None:
            raise ValueError(f"Cannot sort by {name!r}: the statement selects no entity")

        *path, leaf = name.split(".")
        current = entity
        conditions = []
        targets = []
        for part in path:
            prop = getattr(getattr(current, part, None), "property", None)
            if not isinstance(prop, RelationshipProperty) or prop.uselist:
                raise ValueError(
                    f"Cannot sort by {name!r}: {part!r} is not a many-to-one relationship of {current!r}"
                )
            if prop.mapper.class_ is current or prop.mapper.class_ is entity:
                raise ValueError(f"Cannot sort by {name!r}: self-referential paths are not supported")
            current = prop.mapper.class_
            conditions.append(prop.primaryjoin)
            targets.append(prop.target)

        column = getattr(current, leaf, None)
        if not isinstance(column, InstrumentedAttribute) or isinstance(
            column.property, RelationshipProperty
        ):
            raise ValueError(f"Cannot sort by {name!r}: not a mapped attribute of {current!r}")
        if not targets:
            return column
        return select(column).where(*conditions).correlate_except(*targets).scalar_subquery()

    # ------------------------------ Statements -------------------------------

    def build_statement(self) -> Select[Any]:
        """Return the statement with sorting and paging applied."""
        stmt = self.get_queryable()
        if self.sort_criteria:
            stmt = stmt.order_by(*self.sort_criteria)
        if self.skip is not None:
            stmt = stmt.offset(self.skip)
        if self.take is not None:
            stmt = stmt.limit(self.take)
        return stmt

    def build_count_statement(self) -> Select[Any]:
        return select(func.count()).select_from(self.get_queryable().order_by(None).subquery())

    # ------------------------------- Execution -------------------------------

    @property
    def session(self) -> Session | AsyncSession:
        return self._provider.get_session()

    def execute(self) -> list[T]:
        """Execute the query in the ambient session and return the results."""
        rows = list(self.session.execute(self.build_statement()).scalars().all())
        return self.post_process_results(rows)

    def get_total_row_count(self) -> int:
        """Return the row count of the base statement, ignoring paging."""
        return int(self.session.execute(self.build_count_statement()).scalar_one())

    async def execute_async(self) -> list[T]:
        """Asynchronous variant of :meth:`execute` (requires an ``AsyncSession``)."""
        result = await self.session.execute(self.build_statement())
        return self.post_process_results(list(result.scalars().all()))

    async def get_total_row_count_async(self) -> int:
        result = await self.session.execute(self.build_count_statement())
        return int(result.scalar_one())


__all__ = ["QueryBase", "SortDirection"]
