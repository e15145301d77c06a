# ABOUTME: FastAPI application factory with database and HTTP client lifespan.
# ABOUTME: Maps the error taxonomy onto structured JSON responses.

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from feed_tune.config import get_settings
from feed_tune.db.session import close_db, get_session_factory, init_db
from feed_tune.errors import FeedTuneError
from feed_tune.services.fetcher import build_http_client
from feed_tune.services.ingestion import build_ingestion_service

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan context for database and outbound client setup/teardown."""
    logger.info("app_startup")
    settings = get_settings()
    await init_db()
    async with build_http_client(settings) as client:
        app.state.settings = settings
        app.state.ingestion = build_ingestion_service(settings, client, get_session_factory())
        yield
    logger.info("app_shutdown")
    await close_db()


async def feed_tune_error_handler(request: Request, exc: FeedTuneError) -> JSONResponse:
    logger.warning(
        "request_failed",
        path=request.url.path,
        error_type=type(exc).__name__,
        error=exc.message,
    )
    return JSONResponse({"success": False, "error": exc.message}, status_code=exc.status_code)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}"
        for err in exc.errors()
    )
    logger.info("request_invalid", path=request.url.path, error=details)
    return JSONResponse({"success": False, "error": details or "Invalid request"}, status_code=400)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="feed-tune",
        description="RSS and YouTube feed aggregator",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_exception_handler(FeedTuneError, feed_tune_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    from feed_tune.web.routes import router

    app.include_router(router)

    return app


app = create_app()
