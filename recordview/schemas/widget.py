from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class WidgetField(BaseModel):
    key: str
    label: str
    type: str
    options: dict[str, str] = Field(default_factory=dict)
    sortable: bool = True
    visible: bool = True
    virtual: bool = False


class RowAction(BaseModel):
    key: str
    label: str
    kind: str
    confirm: str | None = None
    links: list[str] | None = None


class PageInfo(BaseModel):
    limit: int
    offset: int
    total: int
    page: int
    pages: int
    has_next: bool
    order_field: str | None = None
    order_dir: str | None = None
    filters: str = "[]"
    bulk_actions: dict[str, str] = Field(default_factory=dict)
    primary_key: str
    action: str | None = None


class WidgetMessage(BaseModel):
    level: str
    text: str


class BulkResult(BaseModel):
    succeeded: list[str] = Field(default_factory=list)
    failed_id: str | None = None
    error: str | None = None


class ScheduleEvent(BaseModel):
    id: Any = None
    row_id: str
    lane_key: str
    track_index: int
    start: str
    end: str
    label: str = ""
    css_class: str | None = None
    color: str | None = None


class SchedulePayload(BaseModel):
    period: dict[str, Any]
    events: list[ScheduleEvent]
    lanes: dict[str, int]


class WidgetResponse(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    widget_id: str
    fields: list[WidgetField]
    rows: list[dict[str, Any]]
    row_actions: list[RowAction] = Field(default_factory=list)
    page_info: PageInfo
    action_result: dict[str, Any] = Field(default_factory=dict)
    bulk_result: BulkResult | None = None
    messages: list[WidgetMessage] = Field(default_factory=list)
    update_table: bool = True
    custom_data: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    schedule: SchedulePayload | None = None


class WidgetSummary(BaseModel):
    widget_id: str
    kind: str
    title: str
