from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from oonjai.core.config import settings as core_settings
from oonjai.core.logging_config import configure_logging
from .api import router as dispatch_router
from .config import settings


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Oonjai Notification Dispatcher",
        docs_url=None if core_settings.is_production else "/docs",
    )
    app.include_router(dispatch_router, prefix=f"{core_settings.API_V1_STR}/dispatch", tags=["dispatch"])

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    if settings.METRICS_ENABLED:
        Instrumentator().instrument(app).expose(app, endpoint="/metrics")
    return app


app = create_app()
