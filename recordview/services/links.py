"""Placeholder substitution for row link templates (``%field%``)."""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import date, datetime
from typing import Any
from urllib.parse import quote

_PLACEHOLDER = re.compile(r"%([A-Za-z_][A-Za-z0-9_]*)%")


def _flatten_value(value: Any) -> str | None:
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    if isinstance(value, date):
        return value.isoformat()
    if hasattr(value, "value") and not isinstance(value, (str, bytes)):
        value = value.value
    if isinstance(value, (str, int, float, bool)):
        return str(value)
    if value is None:
        return None
    # UUID, Decimal and similar scalar-like values
    if not isinstance(value, (Mapping, list, tuple, set)):
        return str(value)
    return None


def substitute_placeholders(template: str, row: Mapping[str, Any]) -> str:
    """Replace ``%name%`` tokens with URL-quoted row values.

    Placeholders without a scalar value in the row are replaced with an empty
    string.
    """

    def _replace(match: re.Match[str]) -> str:
        flat = _flatten_value(row.get(match.group(1)))
        if flat is None:
            return ""
        return quote(flat, safe="")

    return _PLACEHOLDER.sub(_replace, template)
