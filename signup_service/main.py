import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .cms_routes import auth_router, router as cms_router
from .config import Settings, get_settings
from .logging_setup import configure_logging
from .record_store import InMemoryRecordStore, RecordStore
from .reload_routes import router as reload_router
from .ws_events import utc_timestamp
from .ws_hub import ReloadHub

logger = logging.getLogger("signup.app")


def create_app(
    settings: Optional[Settings] = None,
    hub: Optional[ReloadHub] = None,
    store: Optional[RecordStore] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level, version=settings.service_version)

    app = FastAPI(title="signup-service", version=settings.service_version)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.hub = hub if hub is not None else ReloadHub()
    app.state.store = store if store is not None else InMemoryRecordStore()

    app.include_router(reload_router)
    app.include_router(cms_router)
    app.include_router(auth_router)

    @app.get("/health")
    def health():
        current: Optional[ReloadHub] = app.state.hub
        return {
            "status": "OK",
            "timestamp": utc_timestamp(),
            "version": settings.service_version,
            "clients": len(current) if current is not None else 0,
        }

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.error("unhandled_error path=%s error=%s", request.url.path, repr(exc), exc_info=exc)
        content = {"error": "Internal server error"}
        if not settings.is_production:
            content["details"] = str(exc)
        return JSONResponse(status_code=500, content=content)

    @app.on_event("shutdown")
    def on_shutdown():
        current: Optional[ReloadHub] = app.state.hub
        if current is None:
            return
        try:
            closed = current.close_all()
            logger.info("ws_hub status=stopped closed=%s", closed)
        except Exception as e:
            logger.error("ws_hub_stop status=error error=%s", repr(e))

    logger.info(
        "service_start version=%s env=%s origins=%s",
        settings.service_version,
        settings.environment,
        ",".join(settings.cors_origins),
    )
    return app


app = create_app()
