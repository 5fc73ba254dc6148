# syncbridge/main.py
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from syncbridge.context import EngineContext, build_context
from syncbridge.core.config import get_settings
from syncbridge.core.logging_config import configure_logging
from syncbridge.routes import events, rate_limits, rollback, sync
from syncbridge.scheduler import create_scheduler, start_scheduler, stop_scheduler

logger = logging.getLogger(__name__)


def create_app(context: Optional[EngineContext] = None) -> FastAPI:
    """
    Application factory. Tests pass a prebuilt context; otherwise one is
    built from settings when the app starts.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings = context.settings if context else get_settings()
        configure_logging(settings.LOG_LEVEL)

        engine_context = context or build_context(settings)
        app.state.context = engine_context

        await engine_context.event_bus.start()
        scheduler = create_scheduler(engine_context)
        start_scheduler(scheduler)
        logger.info(f"syncbridge started ({settings.ENVIRONMENT})")
        try:
            yield
        finally:
            stop_scheduler(scheduler)
            await engine_context.event_bus.stop()
            if context is None:
                await engine_context.close()
            logger.info("syncbridge stopped")

    app = FastAPI(
        title="syncbridge",
        description="Shopify / NetSuite synchronization service",
        lifespan=lifespan,
    )
    if context is not None:
        app.state.context = context

    app.include_router(sync.router)
    app.include_router(events.router)
    app.include_router(rollback.router)
    app.include_router(rate_limits.router)

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    return app


app = create_app()
