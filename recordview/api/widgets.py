from typing import Any

from fastapi import APIRouter, Body, Depends, Request
from sqlalchemy.orm import Session

from recordview.db import get_db
from recordview.schemas.widget import WidgetResponse, WidgetSummary
from recordview.services.request_context import widget_params
from recordview.services.widget_registry import WidgetRegistry

router = APIRouter(prefix="/widgets", tags=["widgets"])


def _scoped_params(source: Any, widget_id: str) -> dict[str, Any]:
    """Namespaced params when present, otherwise the plain parameter map."""
    params = widget_params(source, widget_id)
    if params:
        return params
    if hasattr(source, "multi_items"):
        plain: dict[str, Any] = {}
        for key, value in source.multi_items():
            if key.endswith("[]"):
                plain.setdefault(key[:-2], []).append(value)
            elif key in plain:
                existing = plain[key]
                plain[key] = (existing if isinstance(existing, list) else [existing]) + [value]
            else:
                plain[key] = value
        return plain
    return dict(source or {})


@router.get("", response_model=list[WidgetSummary])
def list_widgets():
    return [
        WidgetSummary(widget_id=definition.widget_id, kind=definition.kind, title=definition.title)
        for definition in WidgetRegistry.all()
    ]


@router.get("/{widget_id}", response_model=WidgetResponse)
def get_widget(
    widget_id: str,
    request: Request,
    db: Session = Depends(get_db),
):
    params = _scoped_params(request.query_params, widget_id)
    builder = WidgetRegistry.build(db, widget_id, params)
    return builder.get_response()


@router.post("/{widget_id}", response_model=WidgetResponse)
def post_widget(
    widget_id: str,
    payload: dict[str, Any] | None = Body(default=None),
    db: Session = Depends(get_db),
):
    params = _scoped_params(payload or {}, widget_id)
    builder = WidgetRegistry.build(db, widget_id, params)
    return builder.get_response()
