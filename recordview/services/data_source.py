"""SQLAlchemy-backed record source for widgets.

Rows leave this module as plain dicts: mapped column values keyed by
attribute name, plus any relationship named by a dot-path field converted
into nested dicts (or lists of dicts for collections).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session, selectinload
from sqlalchemy.orm.attributes import InstrumentedAttribute

from recordview.services.exceptions import BuilderError
from recordview.services.paths import PATH_SEPARATOR

logger = logging.getLogger(__name__)

RawRow = dict[str, Any]


@dataclass
class QueryResult:
    rows: list[RawRow] = field(default_factory=list)
    last_error: str | None = None


@dataclass(frozen=True)
class ResolvedColumn:
    column: InstrumentedAttribute
    relation: InstrumentedAttribute | None = None


def _relation_tree(paths: Iterable[str]) -> dict[str, dict]:
    tree: dict[str, dict] = {}
    for path in paths:
        node = tree
        for part in path.split(PATH_SEPARATOR)[:-1]:
            node = node.setdefault(part, {})
    return tree


def record_to_row(record: Any, relations: dict[str, dict] | None = None) -> RawRow:
    """Convert a mapped instance to a raw row dict."""
    mapper = sa_inspect(record).mapper
    row: RawRow = {attr.key: getattr(record, attr.key) for attr in mapper.column_attrs}
    for name, children in (relations or {}).items():
        if name not in mapper.relationships:
            continue
        related = getattr(record, name)
        if related is None:
            row[name] = None
        elif isinstance(related, (list, tuple, set)):
            row[name] = [record_to_row(item, children) for item in related]
        else:
            row[name] = record_to_row(related, children)
    return row


class SqlAlchemyDataSource:
    """Read, count and delete records of one mapped model.

    Failures are recorded in ``last_error`` instead of raised so that callers
    decide whether to degrade or escalate.
    """

    def __init__(self, db: Session, model: type, *, relation_paths: Iterable[str] = ()):
        self.db = db
        self.model = model
        self._mapper = sa_inspect(model)
        self.relation_paths: list[str] = list(relation_paths)
        self.last_error: str | None = None
        self.last_exception: SQLAlchemyError | None = None

    @property
    def primary_key(self) -> str:
        return self._mapper.primary_key[0].key

    def _primary_column(self) -> InstrumentedAttribute:
        return getattr(self.model, self.primary_key)

    def is_relation(self, name: str) -> bool:
        return name in self._mapper.relationships

    def set_relation_paths(self, paths: Iterable[str]) -> None:
        self.relation_paths = [path for path in paths if PATH_SEPARATOR in path]

    def _loader_options(self) -> list[Any]:
        options = []
        tree = _relation_tree(self.relation_paths)
        for name, children in tree.items():
            if name not in self._mapper.relationships:
                logger.debug("Skipping unknown relation %s on %s", name, self.model.__name__)
                continue
            loader = selectinload(getattr(self.model, name))
            target = self._mapper.relationships[name].mapper
            for child in children:
                if child in target.relationships:
                    loader = loader.selectinload(getattr(target.class_, child))
            options.append(loader)
        return options

    def base_query(self) -> Query:
        return self.db.query(self.model)

    def resolve_column(self, path: str) -> ResolvedColumn:
        """Resolve ``field`` or ``relation.field`` to a mapped column."""
        if PATH_SEPARATOR not in path:
            column = getattr(self.model, path, None)
            if column is None or path not in self._mapper.column_attrs:
                raise BuilderError.unknown_field(path)
            return ResolvedColumn(column=column)

        relation_name, _, column_name = path.partition(PATH_SEPARATOR)
        relationship = self._mapper.relationships.get(relation_name)
        if relationship is None or PATH_SEPARATOR in column_name:
            raise BuilderError.unknown_field(path)
        target = relationship.mapper
        if column_name not in target.column_attrs:
            raise BuilderError.unknown_field(path)
        return ResolvedColumn(
            column=getattr(target.class_, column_name),
            relation=getattr(self.model, relation_name),
        )

    def apply_order(self, query: Query, path: str, direction: str) -> Query:
        resolved = self.resolve_column(path)
        if resolved.relation is not None:
            query = query.outerjoin(resolved.relation)
        column = resolved.column
        return query.order_by(column.desc() if direction == "desc" else column.asc())

    def _record_failure(self, operation: str, exc: SQLAlchemyError) -> None:
        self.db.rollback()
        message = str(getattr(exc, "orig", None) or exc).strip()
        self.last_error = message.splitlines()[0] if message else type(exc).__name__
        self.last_exception = exc
        logger.warning(
            "Data source %s failed for %s: %s",
            operation,
            self.model.__name__,
            self.last_error,
            exc_info=True,
        )

    def _to_rows(self, records: Sequence[Any]) -> list[RawRow]:
        tree = _relation_tree(self.relation_paths)
        return [record_to_row(record, tree) for record in records]

    def query(self, query: Query) -> QueryResult:
        self.last_error = None
        self.last_exception = None
        try:
            records = query.options(*self._loader_options()).all()
        except SQLAlchemyError as exc:
            self._record_failure("query", exc)
            return QueryResult(rows=[], last_error=self.last_error)
        return QueryResult(rows=self._to_rows(records))

    def total(self, query: Query) -> int:
        try:
            return query.limit(None).offset(None).order_by(None).count()
        except SQLAlchemyError as exc:
            self._record_failure("count", exc)
            return 0

    def _coerce_id(self, value: Any) -> Any:
        column = self._mapper.primary_key[0]
        try:
            python_type = column.type.python_type
        except NotImplementedError:
            return value
        if isinstance(value, python_type):
            return value
        try:
            return python_type(str(value).strip())
        except (TypeError, ValueError):
            return None

    def get_by_ids(self, ids: Iterable[Any]) -> list[RawRow]:
        """Return rows for ``ids`` in the requested order; unknown ids are skipped."""
        requested = [(raw, self._coerce_id(raw)) for raw in ids]
        keys = [key for _, key in requested if key is not None]
        if not keys:
            return []
        try:
            records = (
                self.base_query()
                .options(*self._loader_options())
                .filter(self._primary_column().in_(keys))
                .all()
            )
        except SQLAlchemyError as exc:
            self._record_failure("get_by_ids", exc)
            return []
        by_key = {getattr(record, self.primary_key): record for record in records}
        ordered = [by_key[key] for _, key in requested if key in by_key]
        return self._to_rows(ordered)

    def get_by_id(self, record_id: Any) -> RawRow | None:
        rows = self.get_by_ids([record_id])
        return rows[0] if rows else None

    def delete(self, record_id: Any) -> bool:
        self.last_error = None
        key = self._coerce_id(record_id)
        record = self.db.get(self.model, key) if key is not None else None
        if record is None:
            self.last_error = f"Record {record_id} not found"
            return False
        try:
            self.db.delete(record)
            self.db.commit()
        except SQLAlchemyError as exc:
            self._record_failure("delete", exc)
            return False
        return True
