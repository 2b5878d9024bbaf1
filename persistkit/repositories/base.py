"""Generic repository base bound to the ambient unit of work.

Repositories never own a session. Each call resolves the session of the
innermost active unit of work created by their provider, so repositories used
by nested use cases write into one transaction and are committed by whichever
unit owns it.

Conventions
-----------
* Public sort tokens are ``"field"`` or ``"-field"``; only keys exposed by
  ``_sortable_fields`` are honoured and the primary key breaks ties.
* Equality filters go through ``_filterable_fields`` when it returns a mapping.
* Updates are limited to ``_updatable_fields``; an empty whitelist rejects
  every update.
* Nothing here commits or rolls back.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any, Generic, NamedTuple, TypeVar, cast

from sqlalchemy import Select, select
from sqlalchemy.orm import InstrumentedAttribute, Session

from persistkit.query.base import SortDirection
from persistkit.uow.sqlalchemy_uow import SQLAlchemyUnitOfWorkProvider

E = TypeVar("E")


class SortToken(NamedTuple):
    field: str
    direction: SortDirection


def parse_sort_tokens(raw: Iterable[str]) -> list[SortToken]:
    """Turn ``["-created_at", "name"]`` into :class:`SortToken` values.

    Blank tokens and a bare ``"-"`` are skipped.
    """
    tokens: list[SortToken] = []
    for item in raw:
        name = item.strip()
        direction = SortDirection.ASCENDING
        if name.startswith("-"):
            name, direction = name[1:].strip(), SortDirection.DESCENDING
        if name:
            tokens.append(SortToken(name, direction))
    return tokens


def apply_sorting(
    stmt: Select[Any],
    sortable_fields: Mapping[str, InstrumentedAttribute[Any]],
    tokens: Iterable[str],
    *,
    pk_attr: InstrumentedAttribute[Any] | None,
) -> Select[Any]:
    """Order ``stmt`` by the whitelisted tokens, then by ``pk_attr``.

    Tokens missing from ``sortable_fields`` are dropped.
    """
    clauses = [
        column.desc() if token.direction is SortDirection.DESCENDING else column.asc()
        for token in parse_sort_tokens(tokens)
        if (column := sortable_fields.get(token.field)) is not None
    ]
    if pk_attr is not None:
        clauses.append(pk_attr.asc())
    return stmt.order_by(*clauses) if clauses else stmt


class BaseRepository(Generic[E]):
    """
    Persistence-only repository for one mapped class.

    Subclasses set ``model`` and may override the ``_sortable_fields``,
    ``_filterable_fields``, ``_updatable_fields`` and ``_soft_delete`` hooks.

    :param provider: Provider whose ambient session every call uses.
    :type provider: SQLAlchemyUnitOfWorkProvider
    """

    model: type[E]

    def __init__(self, provider: SQLAlchemyUnitOfWorkProvider) -> None:
        self._provider = provider

    @property
    def session(self) -> Session:
        """Session of the innermost active unit of work.

        :raises NoAmbientUnitOfWorkError: Outside of a unit of work.
        """
        return self._provider.get_session()

    # -------------------------------- Hooks -----------------------------------

    def _soft_delete(self, instance: E) -> bool:
        """Mark ``instance`` deleted in place; return ``True`` when handled."""
        return False

    def _pk_attr(self) -> InstrumentedAttribute[Any] | None:
        return getattr(self.model, "id", None)

    def _sortable_fields(self) -> Mapping[str, InstrumentedAttribute[Any]]:
        return {}

    def _filterable_fields(self) -> Mapping[str, InstrumentedAttribute[Any]] | None:
        """Columns allowed in equality filters.

        ``None`` (the default) resolves every key on ``model``; a mapping
        ignores keys it does not contain.
        """
        return None

    def _updatable_fields(self) -> set[str]:
        return set()

    # ------------------------------ Statements --------------------------------

    def _filter_clauses(self, filters: Mapping[str, Any] | None) -> list[Any]:
        if not filters:
            return []
        allowed = self._filterable_fields()
        if allowed is None:
            return [getattr(self.model, key) == value for key, value in filters.items()]
        return [allowed[key] == value for key, value in filters.items() if key in allowed]

    def _select(self, filters: Mapping[str, Any] | None = None) -> Select[Any]:
        return select(self.model).where(*self._filter_clauses(filters))

    def _require_pk(self, operation: str) -> InstrumentedAttribute[Any]:
        pk_attr = self._pk_attr()
        if pk_attr is None:
            raise RuntimeError(f"BaseRepository.{operation} requires a detectable PK attribute.")
        return pk_attr

    def _updates(self, fields: Mapping[str, Any], *, strict: bool) -> dict[str, Any]:
        allowed = self._updatable_fields()
        if not allowed:
            if fields and strict:
                raise ValueError("No updatable fields configured for this repository.")
            return {}
        rejected = sorted(set(fields) - allowed)
        if rejected and strict:
            raise ValueError(f"Unknown or non-updatable fields: {rejected}")
        return {key: value for key, value in fields.items() if key in allowed}

    # --------------------------------- Reads ----------------------------------

    def get(self, entity_id: Any) -> E | None:
        """Return the entity with primary key ``entity_id``, or ``None``."""
        self._require_pk("get")
        return self.session.get(self.model, entity_id)

    def get_many(self, entity_ids: Iterable[Any]) -> list[E]:
        """Return the entities whose keys are in ``entity_ids``, in key order."""
        pk_attr = self._require_pk("get_many")
        ids = list(entity_ids)
        if not ids:
            return []
        stmt = select(self.model).where(pk_attr.in_(ids)).order_by(pk_attr.asc())
        return cast(list[E], list(self.session.scalars(stmt)))

    def find_one(self, **filters: Any) -> E | None:
        return cast(E | None, self.session.scalars(self._select(filters)).first())

    def exists(self, **filters: Any) -> bool:
        return bool(self.session.scalar(select(self._select(filters).exists())))

    def list(
        self,
        *,
        filters: Mapping[str, Any] | None = None,
        sort: Iterable[str] | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[E]:
        """Return filtered entities ordered by ``sort`` tokens, sliced by
        ``limit`` / ``offset``."""
        stmt = apply_sorting(
            self._select(filters), self._sortable_fields(), sort or [], pk_attr=self._pk_attr()
        )
        if offset is not None:
            stmt = stmt.offset(int(offset))
        if limit is not None:
            stmt = stmt.limit(int(limit))
        return cast(list[E], list(self.session.scalars(stmt)))

    # -------------------------------- Writes ----------------------------------

    def add(self, instance: E) -> E:
        """Stage ``instance`` and flush so its primary key is populated."""
        self.session.add(instance)
        self.flush()
        return instance

    def delete(self, instance: E) -> None:
        if not self._soft_delete(instance):
            self.session.delete(instance)
        self.flush()

    def flush(self) -> None:
        """Send pending changes to the database inside the ambient transaction."""
        self.session.flush()

    def assign_updates(
        self,
        instance: E,
        fields: Mapping[str, Any],
        *,
        strict: bool = True,
        flush: bool = True,
    ) -> E:
        """Set whitelisted ``fields`` on ``instance`` through ``setattr``.

        ``setattr`` keeps SQLAlchemy ``@validates`` hooks in play.

        :raises ValueError: When ``strict`` and a key is not updatable, or when
            the repository allows no updates at all.
        """
        for key, value in self._updates(fields, strict=strict).items():
            setattr(instance, key, value)
        if flush:
            self.flush()
        return instance

    def update(self, instance: E, **fields: Any) -> E:
        return self.assign_updates(instance, fields)
