import uuid

from fastapi import FastAPI, Request
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from recordview.api.widgets import router as widgets_router
from recordview.config import settings
from recordview.db import init_db
from recordview.errors import register_error_handlers
from recordview.logging import configure_logging

# registers the booking widgets
from recordview.services import booking_widgets  # noqa: F401

REQUEST_ID_HEADER = "X-Request-ID"


def create_app() -> FastAPI:
    configure_logging(settings.log_level, settings.log_json)
    app = FastAPI(title="recordview")
    register_error_handlers(app)

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        request.state.request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request.state.request_id
        return response

    app.include_router(widgets_router)

    @app.on_event("startup")
    def _create_tables():
        init_db()

    @app.get("/health")
    def health_check():
        return {"status": "ok"}

    @app.get("/metrics")
    def metrics():
        data = generate_latest()
        return Response(content=data, media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()
