from prometheus_client import Counter, Histogram

WIDGET_FETCHES = Counter(
    "recordview_widget_fetches_total",
    "Widget data fetches",
    ["widget", "status"],
)
WIDGET_FETCH_DURATION = Histogram(
    "recordview_widget_fetch_duration_seconds",
    "Widget query and transformation latency",
    ["widget"],
)
DATA_SOURCE_ERRORS = Counter(
    "recordview_data_source_errors_total",
    "Data source errors degraded to empty results",
    ["widget"],
)
ACTIONS_EXECUTED = Counter(
    "recordview_actions_executed_total",
    "Row and bulk actions executed",
    ["widget", "action", "outcome"],
)


def observe_fetch(widget_id: str, status: str, duration: float) -> None:
    WIDGET_FETCHES.labels(widget=widget_id, status=status).inc()
    WIDGET_FETCH_DURATION.labels(widget=widget_id).observe(duration)


def observe_action(widget_id: str, action: str, outcome: str) -> None:
    ACTIONS_EXECUTED.labels(widget=widget_id, action=action, outcome=outcome).inc()
