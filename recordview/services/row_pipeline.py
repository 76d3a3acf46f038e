"""Multi-pass transformation from raw records to display rows.

Passes run in a fixed order over every row:

1. dot-path extraction for fields such as ``resource.name``;
2. conditional display (``show_if``) and custom column formatters;
3. default formatting by field type;
4. truncation of string values.

Each pass annotates the formatted row in place. Rows are never dropped or
reordered, so ``raw_rows[i]`` always describes ``formatted_rows[i]``.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from recordview.config import Settings, settings as default_settings
from recordview.services.exceptions import BuilderError
from recordview.services.field_catalog import FieldCatalog, FieldDescriptor
from recordview.services.formatting import FormatterRegistry, default_registry
from recordview.services.paths import extract_path

RawRow = dict[str, Any]


@dataclass
class Row:
    raw: RawRow
    formatted: RawRow


def truncate_text(value: Any, length: int, suffix: str) -> Any:
    if not isinstance(value, str) or len(value) <= length:
        return value
    return value[:length] + suffix


class RowPipeline:
    def __init__(
        self,
        catalog: FieldCatalog,
        settings: Settings | None = None,
        registry: FormatterRegistry | None = None,
    ):
        self.catalog = catalog
        self.settings = settings or default_settings
        self.registry = registry or default_registry

    def transform(self, raw_rows: Sequence[RawRow], formatted_rows: Sequence[RawRow]) -> list[RawRow]:
        if len(raw_rows) != len(formatted_rows):
            raise BuilderError(
                f"Row sets are misaligned: {len(raw_rows)} raw vs {len(formatted_rows)} formatted"
            )
        rows = [Row(raw=raw, formatted=formatted) for raw, formatted in zip(raw_rows, formatted_rows)]
        descriptors = list(self.catalog)

        self._extract_paths(rows, descriptors)
        settled = self._apply_custom(rows, descriptors)
        self._apply_type_formatting(rows, descriptors, settled)
        self._post_process(rows, descriptors, settled)
        return [row.formatted for row in rows]

    def _present(self, row: Row, descriptor: FieldDescriptor) -> bool:
        return descriptor.virtual or descriptor.key in row.formatted

    def _extract_paths(self, rows: list[Row], descriptors: list[FieldDescriptor]) -> None:
        separator = self.settings.list_separator
        path_fields = [descriptor for descriptor in descriptors if descriptor.is_path]
        for row in rows:
            for descriptor in path_fields:
                row.formatted[descriptor.key] = extract_path(row.raw, descriptor.key, separator)

    def _apply_custom(self, rows: list[Row], descriptors: list[FieldDescriptor]) -> set[tuple[int, str]]:
        """Run show_if and custom formatters; return the cells later passes must skip."""
        settled: set[tuple[int, str]] = set()
        for index, row in enumerate(rows):
            for descriptor in descriptors:
                if not self._present(row, descriptor):
                    continue
                if descriptor.show_if is not None and not descriptor.show_if(row.raw):
                    row.formatted[descriptor.key] = descriptor.show_if_else
                    settled.add((index, descriptor.key))
                    continue
                if descriptor.formatter is not None:
                    row.formatted[descriptor.key] = descriptor.formatter(row.raw)
        return settled

    def _apply_type_formatting(
        self,
        rows: list[Row],
        descriptors: list[FieldDescriptor],
        settled: set[tuple[int, str]],
    ) -> None:
        for index, row in enumerate(rows):
            for descriptor in descriptors:
                if descriptor.formatter is not None or (index, descriptor.key) in settled:
                    continue
                if not self._present(row, descriptor):
                    continue
                row.formatted[descriptor.key] = self.registry.format(
                    row.formatted.get(descriptor.key), descriptor, self.settings
                )

    def _post_process(
        self,
        rows: list[Row],
        descriptors: list[FieldDescriptor],
        settled: set[tuple[int, str]],
    ) -> None:
        truncated = [descriptor for descriptor in descriptors if descriptor.truncate is not None]
        for index, row in enumerate(rows):
            for descriptor in truncated:
                if (index, descriptor.key) in settled or descriptor.key not in row.formatted:
                    continue
                row.formatted[descriptor.key] = truncate_text(
                    row.formatted[descriptor.key],
                    descriptor.truncate.length,
                    descriptor.truncate.suffix,
                )
