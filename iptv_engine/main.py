from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging

from fastapi import FastAPI, Request

from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from iptv_engine.config import settings, setup_logging
from iptv_engine.database import close_db, init_db
from iptv_engine.dependencies import get_session
from iptv_engine.exceptions import (
    ChannelNotFoundError,
    ChunkProcessingCancelled,
    EmptyResultError,
    FetchError,
    InvalidStreamUrlError,
    IPTVEngineError,
    SourceReadError,
)
from iptv_engine.schemas import ErrorDetail, StandardErrorResponse
from iptv_engine.services.scheduler_service import epg_scheduler

from iptv_engine.routers import main_router


setup_logging()
logger = logging.getLogger(__name__)

# Exception type -> (HTTP status, error code); first match wins
ERROR_STATUS = (
    (ChannelNotFoundError, 404, "CHANNEL_NOT_FOUND"),
    (EmptyResultError, 422, "EMPTY_RESULT"),
    (FetchError, 502, "FETCH_FAILED"),
    (SourceReadError, 400, "READ_FAILED"),
    (InvalidStreamUrlError, 400, "INVALID_URL"),
    (ChunkProcessingCancelled, 409, "SUPERSEDED"),
)


async def _load_startup_sources() -> None:
    """Load the configured playlist/guide URLs, if any"""
    session = get_session()
    if settings.playlist_url:
        try:
            await session.load_playlist_url(settings.playlist_url)
            await session.save_playlist()
        except IPTVEngineError as e:
            logger.error(f"Startup playlist load failed: {e}")
    if settings.epg_url:
        try:
            await session.load_epg_url(settings.epg_url)
            await session.save_epg()
        except IPTVEngineError as e:
            logger.error(f"Startup EPG load failed: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events"""
    logger.info("Starting IPTV Engine...")

    try:
        logger.info("Initializing database...")
        await init_db()

        logger.info("Restoring saved session...")
        await get_session().restore()

        await _load_startup_sources()

        if settings.epg_refresh_enabled:
            logger.info("Starting scheduler...")
            epg_scheduler.start(get_session())

        logger.info("IPTV Engine started successfully")
    except Exception as e:
        logger.error(f"Failed to start IPTV Engine: {e}", exc_info=True)
        raise

    yield

    logger.info("Shutting down IPTV Engine...")

    try:
        epg_scheduler.shutdown()
    except Exception as e:
        logger.error(f"Error during scheduler shutdown: {e}", exc_info=True)

    await close_db()
    logger.info("IPTV Engine stopped")


app = FastAPI(
    title="IPTV Engine",
    version="0.1.0",
    lifespan=lifespan
)

app.include_router(main_router)


@app.exception_handler(IPTVEngineError)
async def engine_exception_handler(request: Request, exc: IPTVEngineError):
    """Translate engine errors into the standard error response"""
    status_code, code = 500, "INTERNAL_ERROR"
    for exc_type, mapped_status, mapped_code in ERROR_STATUS:
        if isinstance(exc, exc_type):
            status_code, code = mapped_status, mapped_code
            break

    context = None
    if isinstance(exc, FetchError):
        context = {"status_code": exc.status_code}

    logger.warning(f"{request.method} {request.url.path} failed ({code}): {exc}")

    body = StandardErrorResponse(
        timestamp=datetime.now(timezone.utc).isoformat(),
        error=ErrorDetail(code=code, message=str(exc), context=context),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Log validation errors and return them in the standard error body"""
    logger.error(f"Validation error for {request.method} {request.url.path}")
    logger.debug(f"Validation details: {exc.errors()}")

    # Inputs are truncated; some are not JSON-serializable
    errors = [
        {
            "type": error.get("type"),
            "loc": list(error.get("loc", ())),
            "msg": error.get("msg"),
            "input": str(error.get("input", ""))[:100],
        }
        for error in exc.errors()
    ]

    body = StandardErrorResponse(
        timestamp=datetime.now(timezone.utc).isoformat(),
        error=ErrorDetail(code="VALIDATION_ERROR", message="Invalid request", context={"errors": errors}),
    )
    return JSONResponse(status_code=422, content=body.model_dump())
