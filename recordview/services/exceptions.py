"""Exception types raised by the record presentation services."""

from __future__ import annotations


class BuilderError(ValueError):
    """Raised when a widget builder is configured incorrectly."""

    @classmethod
    def invalid_field(cls, key: str) -> "BuilderError":
        return cls(f"Invalid field key: {key!r}")

    @classmethod
    def unknown_field(cls, key: str) -> "BuilderError":
        return cls(f"Field {key!r} is not declared on this widget")

    @classmethod
    def locked(cls, widget_id: str) -> "BuilderError":
        return cls(
            f"Widget {widget_id!r} has already executed; configure it before fetching data"
        )


class FilterValidationError(ValueError):
    """Raised when a filter payload or value from the request is invalid."""


class DataSourceError(RuntimeError):
    """Raised when the record source fails to answer a query."""


class ActionError(RuntimeError):
    """Raised by an action callback to signal a per-record failure."""
