"""Field descriptors for a widget and the catalog that orders and locks them.

Descriptors start from the model's column rules (see ``ModelRuleSource``) and
are then adjusted through ``DataBuilder.field(key)`` until the first fetch.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect

from recordview.services.exceptions import BuilderError
from recordview.services.links import substitute_placeholders
from recordview.services.paths import PATH_SEPARATOR, extract_path, scalar_text
from recordview.services.request_context import filters_match

if TYPE_CHECKING:
    from recordview.services.builders import DataBuilder

logger = logging.getLogger(__name__)

RawRow = dict[str, Any]
Formatter = Callable[[RawRow], Any]
RowPredicate = Callable[[RawRow], bool]


class FieldType(enum.Enum):
    text = "text"
    number = "number"
    date = "date"
    datetime = "datetime"
    time = "time"
    select = "select"
    html = "html"
    file = "file"
    image = "image"
    array = "array"

    @classmethod
    def coerce(cls, value: "FieldType | str") -> "FieldType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise BuilderError(f"Unsupported field type: {value!r}") from exc


@dataclass(frozen=True)
class Truncate:
    length: int
    suffix: str = "..."


@dataclass
class FieldDescriptor:
    key: str
    label: str
    field_type: FieldType = FieldType.text
    options: dict[Any, str] = field(default_factory=dict)
    formatter: Formatter | None = None
    sortable: bool = True
    sort_mapping: str | None = None
    hidden: bool = False
    truncate: Truncate | None = None
    show_if: RowPredicate | None = None
    show_if_else: Any = ""
    show_if_filter: dict[str, str] | None = None
    virtual: bool = False

    @property
    def is_path(self) -> bool:
        return PATH_SEPARATOR in self.key

    def visible_for(self, filters: Mapping[str, Any]) -> bool:
        return not self.hidden and filters_match(self.show_if_filter, filters)


def default_label(key: str) -> str:
    return key.replace(PATH_SEPARATOR, " ").replace("_", " ").title()


class FieldRuleSource(Protocol):
    def get_rules(self, scope: str) -> list[FieldDescriptor]: ...


_COLUMN_TYPE_MAP: tuple[tuple[type, FieldType], ...] = (
    (sa.DateTime, FieldType.datetime),
    (sa.Date, FieldType.date),
    (sa.Time, FieldType.time),
    (sa.Enum, FieldType.select),
    (sa.Boolean, FieldType.select),
    (sa.JSON, FieldType.array),
    (sa.Integer, FieldType.number),
    (sa.Numeric, FieldType.number),
)


def _column_field_type(column_type: Any) -> FieldType:
    for sa_type, field_type in _COLUMN_TYPE_MAP:
        if isinstance(column_type, sa_type):
            return field_type
    return FieldType.text


def _column_options(column_type: Any) -> dict[Any, str]:
    if isinstance(column_type, sa.Boolean):
        return {True: "Yes", False: "No"}
    if isinstance(column_type, sa.Enum):
        enum_class = getattr(column_type, "enum_class", None)
        if enum_class is not None:
            return {member.value: default_label(str(member.value)) for member in enum_class}
        return {value: default_label(value) for value in column_type.enums}
    return {}


class ModelRuleSource:
    """Derive field descriptors from a SQLAlchemy mapped class.

    A model may declare ``__field_rules__`` to override the introspected
    defaults, e.g. ``{"notes": {"label": "Notes", "list": False}}``. Keys
    supported per rule: label, type, form_type (file/image), options, hidden,
    sortable, list (False drops the field from the list scope). Dot-path keys
    declare fields read from related records.
    """

    def __init__(self, model: type):
        self.model = model

    def get_rules(self, scope: str = "list") -> list[FieldDescriptor]:
        mapper = sa_inspect(self.model)
        overrides: Mapping[str, Mapping[str, Any]] = getattr(self.model, "__field_rules__", {})
        descriptors: list[FieldDescriptor] = []
        seen: set[str] = set()

        for attr in mapper.column_attrs:
            key = attr.key
            column = attr.columns[0]
            rule = overrides.get(key, {})
            if scope == "list" and rule.get("list", True) is False:
                continue
            descriptors.append(self._descriptor(key, column.type, rule))
            seen.add(key)

        for key, rule in overrides.items():
            if key in seen:
                continue
            if PATH_SEPARATOR not in key:
                logger.debug("Ignoring rule for unmapped field %s on %s", key, self.model.__name__)
                continue
            if scope == "list" and rule.get("list", True) is False:
                continue
            descriptors.append(self._descriptor(key, None, rule))
        return descriptors

    @staticmethod
    def _descriptor(key: str, column_type: Any, rule: Mapping[str, Any]) -> FieldDescriptor:
        field_type = _column_field_type(column_type) if column_type is not None else FieldType.text
        options = _column_options(column_type) if column_type is not None else {}
        form_type = rule.get("form_type")
        if field_type is FieldType.array and form_type in {"file", "image"}:
            field_type = FieldType(form_type)
        if "type" in rule:
            field_type = FieldType.coerce(rule["type"])
        return FieldDescriptor(
            key=key,
            label=rule.get("label", default_label(key)),
            field_type=field_type,
            options=dict(rule.get("options", options)),
            sortable=bool(rule.get("sortable", field_type not in {FieldType.array, FieldType.file, FieldType.image})),
            hidden=bool(rule.get("hidden", False)),
        )


class FieldCatalog:
    """Ordered, per-widget set of field descriptors.

    Mutable while the widget is being configured; ``lock()`` is called on first
    execution and any later change raises ``BuilderError``.
    """

    def __init__(self, fields: Iterable[FieldDescriptor] = (), *, widget_id: str = ""):
        self.widget_id = widget_id
        self._fields: dict[str, FieldDescriptor] = {}
        self._locked = False
        for descriptor in fields:
            self.add(descriptor)

    @classmethod
    def from_rule_source(
        cls, source: FieldRuleSource, *, scope: str = "list", widget_id: str = ""
    ) -> "FieldCatalog":
        return cls(source.get_rules(scope), widget_id=widget_id)

    def __contains__(self, key: object) -> bool:
        return key in self._fields

    def __iter__(self) -> Iterator[FieldDescriptor]:
        return iter(list(self._fields.values()))

    def __len__(self) -> int:
        return len(self._fields)

    @property
    def locked(self) -> bool:
        return self._locked

    def lock(self) -> None:
        self._locked = True

    def keys(self) -> list[str]:
        return list(self._fields)

    def get(self, key: str) -> FieldDescriptor | None:
        return self._fields.get(key)

    def require(self, key: str) -> FieldDescriptor:
        descriptor = self._fields.get(key)
        if descriptor is None:
            raise BuilderError.unknown_field(key)
        return descriptor

    def _require_unlocked(self) -> None:
        if self._locked:
            raise BuilderError.locked(self.widget_id)

    def add(self, descriptor: FieldDescriptor) -> FieldDescriptor:
        self._require_unlocked()
        if not descriptor.key or not descriptor.key.strip():
            raise BuilderError.invalid_field(descriptor.key)
        if descriptor.key in self._fields:
            raise BuilderError(f"Duplicate field key: {descriptor.key}")
        self._fields[descriptor.key] = descriptor
        return descriptor

    def ensure(self, key: str) -> FieldDescriptor:
        """Return the descriptor for ``key``, declaring a virtual field if needed."""
        if not key or not key.strip():
            raise BuilderError.invalid_field(key)
        existing = self._fields.get(key)
        if existing is not None:
            return existing
        return self.add(
            FieldDescriptor(
                key=key,
                label=default_label(key),
                virtual=PATH_SEPARATOR not in key,
            )
        )

    def configure(self, key: str, **changes: Any) -> FieldDescriptor:
        self._require_unlocked()
        descriptor = self.ensure(key)
        for attr, value in changes.items():
            if not hasattr(descriptor, attr):
                raise BuilderError(f"Unknown field attribute: {attr}")
            setattr(descriptor, attr, value)
        return descriptor

    def delete(self, key: str) -> None:
        self._require_unlocked()
        self._fields.pop(key, None)

    def reorder(self, keys: Iterable[str]) -> None:
        self._require_unlocked()
        ordered = list(dict.fromkeys(keys))
        for key in ordered:
            if key not in self._fields:
                raise BuilderError.unknown_field(key)
        remaining = [key for key in self._fields if key not in ordered]
        self._fields = {key: self._fields[key] for key in ordered + remaining}

    def path_keys(self) -> list[str]:
        return [descriptor.key for descriptor in self._fields.values() if descriptor.is_path]

    def relation_names(self) -> list[str]:
        return list(dict.fromkeys(key.split(PATH_SEPARATOR, 1)[0] for key in self.path_keys()))

    def sort_target(self, key: str) -> str | None:
        """Resolve the real sort field for a requested order field.

        Returns None when the field is undeclared or not sortable.
        """
        descriptor = self._fields.get(key)
        if descriptor is None or not descriptor.sortable:
            return None
        return descriptor.sort_mapping or descriptor.key


class FieldConfigurator:
    """Short-lived configuration chain scoped to a single field.

    Returned by ``DataBuilder.field(key)``; every method applies to ``key`` only.
    ``field(other)`` hops to another field and ``end()`` returns the builder.
    """

    def __init__(self, builder: "DataBuilder", key: str):
        if not key or not key.strip():
            raise BuilderError.invalid_field(key)
        self._builder = builder
        self._catalog = builder.catalog
        self.key = key
        self._catalog.ensure(key)

    def _set(self, **changes: Any) -> "FieldConfigurator":
        self._catalog.configure(self.key, **changes)
        return self

    def label(self, label: str) -> "FieldConfigurator":
        return self._set(label=label)

    def type(self, field_type: FieldType | str) -> "FieldConfigurator":
        return self._set(field_type=FieldType.coerce(field_type))

    def options(self, options: Mapping[Any, str]) -> "FieldConfigurator":
        return self._set(options=dict(options))

    def format(self, formatter: Formatter) -> "FieldConfigurator":
        if not callable(formatter):
            raise BuilderError(f"Formatter for {self.key!r} must be callable")
        return self._set(formatter=formatter)

    def link(self, template: str) -> "FieldConfigurator":
        """Render the field as ``{"href", "text"}`` with ``%field%`` placeholders."""
        key = self.key
        separator = self._builder.settings.list_separator

        def _link(raw: RawRow) -> dict[str, str]:
            return {
                "href": substitute_placeholders(template, raw),
                "text": scalar_text(extract_path(raw, key, separator)),
            }

        return self._set(field_type=FieldType.html, formatter=_link)

    def file(self) -> "FieldConfigurator":
        return self._set(field_type=FieldType.file)

    def image(self) -> "FieldConfigurator":
        return self._set(field_type=FieldType.image)

    def truncate(self, length: int, suffix: str | None = None) -> "FieldConfigurator":
        if length < 0:
            raise BuilderError(f"Truncate length for {self.key!r} must be >= 0")
        if suffix is None:
            suffix = self._builder.settings.truncate_suffix
        return self._set(truncate=Truncate(length=length, suffix=suffix))

    def hide(self) -> "FieldConfigurator":
        return self._set(hidden=True)

    def show(self) -> "FieldConfigurator":
        return self._set(hidden=False)

    def no_sort(self) -> "FieldConfigurator":
        return self._set(sortable=False)

    def sort_by(self, real_field: str) -> "FieldConfigurator":
        if not real_field:
            raise BuilderError(f"Sort mapping for {self.key!r} requires a field")
        return self._set(sortable=True, sort_mapping=real_field)

    def show_if(self, predicate: RowPredicate, else_value: Any = "") -> "FieldConfigurator":
        return self._set(show_if=predicate, show_if_else=else_value)

    def show_if_filter(self, **condition: str) -> "FieldConfigurator":
        return self._set(show_if_filter={name: str(value) for name, value in condition.items()})

    def field(self, key: str) -> "FieldConfigurator":
        return FieldConfigurator(self._builder, key)

    def end(self) -> "DataBuilder":
        return self._builder
