"""Default display formatting keyed by field type."""

from __future__ import annotations

import enum
import posixpath
from collections.abc import Callable, Mapping
from typing import Any

from recordview.config import Settings
from recordview.services.datetimes import parse_date, parse_datetime, parse_time
from recordview.services.field_catalog import FieldDescriptor, FieldType
from recordview.services.paths import is_file_descriptor, is_scalar, reduce_list, scalar_text

TypeFormatter = Callable[[Any, FieldDescriptor, Settings], Any]


class FormatterRegistry:
    """Maps a ``FieldType`` to the function producing its display value.

    Types without a registered formatter fall back to ``text``.
    """

    def __init__(self, formatters: Mapping[FieldType, TypeFormatter] | None = None):
        self._formatters: dict[FieldType, TypeFormatter] = dict(formatters or {})

    def register(self, *field_types: FieldType) -> Callable[[TypeFormatter], TypeFormatter]:
        def decorator(func: TypeFormatter) -> TypeFormatter:
            for field_type in field_types:
                self._formatters[field_type] = func
            return func

        return decorator

    def get(self, field_type: FieldType) -> TypeFormatter:
        return self._formatters.get(field_type) or self._formatters[FieldType.text]

    def copy(self) -> "FormatterRegistry":
        return FormatterRegistry(self._formatters)

    def format(self, value: Any, descriptor: FieldDescriptor, settings: Settings) -> Any:
        return self.get(descriptor.field_type)(value, descriptor, settings)


default_registry = FormatterRegistry()


@default_registry.register(FieldType.text)
def format_text(value: Any, descriptor: FieldDescriptor, settings: Settings) -> Any:
    if is_scalar(value):
        return scalar_text(value)
    return value


@default_registry.register(FieldType.html)
def format_html(value: Any, descriptor: FieldDescriptor, settings: Settings) -> Any:
    return "" if value is None else value


@default_registry.register(FieldType.number)
def format_number(value: Any, descriptor: FieldDescriptor, settings: Settings) -> Any:
    if value is None or value == "":
        return ""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    return scalar_text(value)


@default_registry.register(FieldType.date)
def format_date(value: Any, descriptor: FieldDescriptor, settings: Settings) -> str:
    parsed = parse_date(value)
    return parsed.strftime(settings.date_format) if parsed is not None else ""


@default_registry.register(FieldType.datetime)
def format_datetime(value: Any, descriptor: FieldDescriptor, settings: Settings) -> str:
    parsed = parse_datetime(value)
    return parsed.strftime(settings.datetime_format) if parsed is not None else ""


@default_registry.register(FieldType.time)
def format_time(value: Any, descriptor: FieldDescriptor, settings: Settings) -> str:
    parsed = parse_time(value)
    return parsed.strftime(settings.time_format) if parsed is not None else ""


@default_registry.register(FieldType.select)
def format_select(value: Any, descriptor: FieldDescriptor, settings: Settings) -> Any:
    if isinstance(value, enum.Enum):
        value = value.value
    if value is None:
        return ""
    options = descriptor.options
    if isinstance(value, bool) or value in options:
        return options.get(value, scalar_text(value))
    return options.get(str(value), scalar_text(value))


@default_registry.register(FieldType.array)
def format_array(value: Any, descriptor: FieldDescriptor, settings: Settings) -> Any:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return reduce_list(list(value), settings.list_separator)
    return value


def _file_entry(value: Any) -> dict[str, Any] | None:
    if is_file_descriptor(value):
        entry = dict(value)
        entry.setdefault("name", posixpath.basename(str(entry.get("url", ""))))
        return entry
    if isinstance(value, str) and value.strip():
        url = value.strip()
        return {"url": url, "name": posixpath.basename(url)}
    return None


@default_registry.register(FieldType.file, FieldType.image)
def format_files(value: Any, descriptor: FieldDescriptor, settings: Settings) -> list[dict[str, Any]]:
    items = value if isinstance(value, (list, tuple)) else [value]
    entries = [_file_entry(item) for item in items]
    return [entry for entry in entries if entry is not None]
