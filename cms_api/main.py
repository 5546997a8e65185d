import asyncio
from contextlib import asynccontextmanager
import os

from fastapi import FastAPI, Depends, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
import structlog

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from cms_api.config import settings
from cms_api.database import init_db, close_db, get_db
from cms_api.logging_config import setup_logging
from cms_api.middleware.correlation import CorrelationIdMiddleware
from cms_api.services.storage import UPLOADS_URL_PREFIX

# Import models so they are registered with Base.metadata
import cms_api.models  # noqa: F401

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("starting_bank_cms", env=settings.ENVIRONMENT, storage=settings.STORAGE_BACKEND)
    await init_db()

    fx_timer = None
    if settings.FX_SYNC_SCHEDULER_ENABLED:
        fx_timer = asyncio.create_task(daily_fx_sync_loop())
    yield
    if fx_timer is not None:
        fx_timer.cancel()
        try:
            await fx_timer
        except asyncio.CancelledError:
            pass
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Global exception handlers: normalize all errors to structured format:
# {"error": {"code": "...", "message": "..."}}
# ---------------------------------------------------------------------------

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, str):
        detail = {"error": {"code": "HTTP_ERROR", "message": detail}}
    elif isinstance(detail, dict) and "error" not in detail:
        detail = {"error": detail}
    return JSONResponse(status_code=exc.status_code, content=detail, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Request validation failed",
                "details": exc.errors(),
            }
        },
    )


app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Requested-With", "X-Request-ID"],
)


@app.get("/health", tags=["System"])
async def health(response: Response, db: AsyncSession = Depends(get_db)):
    health_status = {"status": "healthy", "version": settings.APP_VERSION, "checks": {}}

    try:
        await db.execute(text("SELECT 1"))
        health_status["checks"]["db"] = "ok"
    except Exception as e:
        logger.error("health_check_db_failed", error=str(e))
        health_status["checks"]["db"] = "error"
        health_status["status"] = "unhealthy"

    if settings.STORAGE_BACKEND == "local":
        writable = os.access(settings.UPLOAD_DIR, os.W_OK)
        health_status["checks"]["uploads"] = "ok" if writable else "error"
        if not writable:
            health_status["status"] = "unhealthy"

    if health_status["status"] == "unhealthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return health_status


if settings.STORAGE_BACKEND == "local":
    os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
    app.mount(
        UPLOADS_URL_PREFIX,
        StaticFiles(directory=settings.UPLOAD_DIR),
        name="uploads",
    )


# --- Routers ---
from cms_api.routes.fx_rates import router as fx_rates_router  # noqa: E402
from cms_api.routes.carousel import router as carousel_router  # noqa: E402
from cms_api.routes.board_of_directors import router as board_router  # noqa: E402
from cms_api.jobs.scheduled import daily_fx_sync_loop, router as jobs_router  # noqa: E402

app.include_router(fx_rates_router, prefix="/api/v1/foreign-exchange", tags=["Foreign Exchange"])
app.include_router(carousel_router, prefix="/api/v1/carousel", tags=["Carousel"])
app.include_router(board_router, prefix="/api/v1/board-of-directors", tags=["Board of Directors"])
app.include_router(jobs_router, prefix="/internal/jobs", tags=["Internal Jobs"])
