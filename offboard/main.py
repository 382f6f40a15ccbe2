"""FastAPI application: tenant-scoped API plus the in-process poller."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from offboard.api.router import api_router
from offboard.config import get_settings
from offboard.core.logging import get_logger, setup_logging
from offboard.core.scheduler import start_scheduler, stop_scheduler
from offboard.services.errors import ScheduledActionError

logger = get_logger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    poller = await start_scheduler()
    logger.bind(poller=poller is not None).info("app_started")
    try:
        yield
    finally:
        await stop_scheduler()
        logger.info("app_stopped")


app = FastAPI(
    title="Offboard",
    description="Scheduled offboarding actions against the tenant directory",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.debug else None,
    redoc_url="/api/redoc" if settings.debug else None,
)

# Admin console origin only
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.base_url],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.exception_handler(ScheduledActionError)
async def scheduled_action_error_handler(request: Request, exc: ScheduledActionError) -> JSONResponse:
    """Map service errors to their HTTP status."""
    logger.bind(path=request.url.path, status_code=exc.status_code, error=str(exc)).info("request_rejected")
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


@app.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "healthy"}
