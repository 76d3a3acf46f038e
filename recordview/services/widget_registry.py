from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from fastapi import HTTPException
from sqlalchemy.orm import Session

from recordview.services.builders import DataBuilder

WidgetFactory = Callable[[Session, Mapping[str, Any]], DataBuilder]


@dataclass(frozen=True)
class WidgetDefinition:
    widget_id: str
    title: str
    factory: WidgetFactory
    kind: str = "table"


class WidgetRegistry:
    _widgets: dict[str, WidgetDefinition] = {}

    @classmethod
    def register(
        cls,
        *,
        widget_id: str,
        title: str,
        factory: WidgetFactory,
        kind: str = "table",
    ) -> None:
        if not widget_id:
            raise ValueError("widget_id is required")
        if widget_id in cls._widgets:
            raise ValueError(f"Duplicate widget in registry: {widget_id}")
        cls._widgets[widget_id] = WidgetDefinition(
            widget_id=widget_id,
            title=title,
            factory=factory,
            kind=kind,
        )

    @classmethod
    def widget(cls, widget_id: str, title: str, kind: str = "table") -> Callable[[WidgetFactory], WidgetFactory]:
        def decorator(factory: WidgetFactory) -> WidgetFactory:
            cls.register(widget_id=widget_id, title=title, factory=factory, kind=kind)
            return factory

        return decorator

    @classmethod
    def get(cls, widget_id: str) -> WidgetDefinition:
        definition = cls._widgets.get(widget_id)
        if not definition:
            raise HTTPException(status_code=404, detail="Unregistered widget")
        return definition

    @classmethod
    def exists(cls, widget_id: str) -> bool:
        return widget_id in cls._widgets

    @classmethod
    def all(cls) -> list[WidgetDefinition]:
        return list(cls._widgets.values())

    @classmethod
    def build(cls, db: Session, widget_id: str, params: Mapping[str, Any]) -> DataBuilder:
        """Instantiate the widget's builder with params already scoped to it."""
        definition = cls.get(widget_id)
        return definition.factory(db, params)
