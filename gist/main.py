import logging
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from gist.api.entries import router as entries_router
from gist.api.health import router as health_router
from gist.config import settings
from gist.core.container import build_services
from gist.core.database import async_session, init_db
from gist.core.log_context import RequestIDMiddleware
from gist.core.logging_config import configure_logging
from gist.services.scheduler import RefreshScheduler

# Configure structured logging (must happen before any logger is created)
configure_logging(log_format=settings.LOG_FORMAT, log_level=settings.LOG_LEVEL)

# Initialize Sentry error tracking
if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        environment=settings.SENTRY_ENVIRONMENT,
        release=f"gist@{settings.APP_VERSION}",
    )

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    await init_db()

    services = build_services(async_session)
    app.state.readability = services.readability
    app.state.scheduler = None
    if settings.REFRESH_ENABLED:
        app.state.scheduler = RefreshScheduler(services.refresh)
        app.state.scheduler.start()

    try:
        yield
    finally:
        logger.info("Shutting down...")
        if app.state.scheduler is not None:
            await app.state.scheduler.stop()
        await services.aclose()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Gist - self-hosted feed reader backend. "
    "Fetches full article text behind proof-of-work challenges.",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Request ID middleware (must be added before other middleware)
app.add_middleware(RequestIDMiddleware)

app.add_middleware(GZipMiddleware, minimum_size=500)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(entries_router)
app.include_router(health_router)


@app.get("/")
async def root():
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "status": "running",
    }
