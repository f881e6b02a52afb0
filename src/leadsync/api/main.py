"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from leadsync.infrastructure.logging import setup_logging
from leadsync.infrastructure.settings import get_settings
from leadsync.infrastructure.wiring import Pipeline, get_pipeline


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    settings = get_settings()
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Environment: {settings.environment}")

    if getattr(app.state, "pipeline", None) is None:
        app.state.pipeline = get_pipeline()
    pipeline: Pipeline = app.state.pipeline

    app.state.subscription = None
    if settings.listener_enabled:
        app.state.subscription = pipeline.listener.start()
    else:
        logger.info("Change feed listener disabled by configuration")

    yield

    # Cleanup on shutdown
    logger.info("Shutting down...")
    subscription = app.state.subscription
    if subscription is not None:
        subscription.stop()
    logger.info("Shutdown complete")


def create_app(pipeline: Pipeline | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Turns inbound chat messages into rows in Google Sheets",
        lifespan=lifespan,
    )
    app.state.pipeline = pipeline

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from leadsync.api.routes import router

    app.include_router(router)

    return app


# Create app instance
app = create_app()


def run() -> None:
    """Serve the API with uvicorn."""
    import uvicorn

    setup_logging()
    settings = get_settings()
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    run()
