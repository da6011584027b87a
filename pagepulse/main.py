from contextlib import asynccontextmanager
from typing import Any, cast

from fastapi import Depends, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pagepulse.api import track
from pagepulse.api.deps import get_stores
from pagepulse.core.config import settings
from pagepulse.core.db_utils import check_db_connection
from pagepulse.core.errors import PageviewNotFound, PayloadValidationError, capture_exception, init_sentry
from pagepulse.core.logging_config import get_logger
from pagepulse.core.scheduler import shutdown_scheduler, start_scheduler
from pagepulse.middleware.context import RequestContextMiddleware
from pagepulse.middleware.security import CONTENT_SECURITY_POLICY, SecurityHeadersMiddleware
from pagepulse.stores import Stores

logger = get_logger(__name__)

LOCAL_ORIGIN_REGEX = r"^http://(localhost|127\.0\.0\.1)(:\d+)?$"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("PagePulse API starting", environment=settings.ENVIRONMENT)
    init_sentry(settings.SENTRY_DSN, environment=settings.ENVIRONMENT)

    stores = Stores.open(settings)
    app.state.stores = stores

    if settings.RUN_SCHEDULER:
        start_scheduler(stores.engine)
    else:
        logger.info("RUN_SCHEDULER is false, skipping scheduler startup in this process")

    try:
        yield
    finally:
        shutdown_scheduler()
        stores.close()
        logger.info("PagePulse API stopped")


app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

# Last added is outermost; CORS preflight responses still pass through SecurityHeaders
app.add_middleware(
    cast(Any, CORSMiddleware),
    allow_origins=settings.allowed_origins,
    allow_origin_regex=LOCAL_ORIGIN_REGEX if settings.is_development else None,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
    max_age=86400,
)
app.add_middleware(cast(Any, SecurityHeadersMiddleware))
app.add_middleware(cast(Any, RequestContextMiddleware))

app.include_router(track.router, prefix="/api/track", tags=["tracking"])
# Older tracker builds post here
app.include_router(track.router, prefix="/api/metrics", include_in_schema=False)


@app.exception_handler(PayloadValidationError)
async def validation_error_handler(request: Request, exc: PayloadValidationError):
    logger.info("Payload rejected", fields=[e.field for e in exc.errors])
    return JSONResponse(
        status_code=400,
        content={"error": "Validation failed", "details": [e.to_dict() for e in exc.errors]},
    )


@app.exception_handler(PageviewNotFound)
async def not_found_handler(request: Request, exc: PageviewNotFound):
    logger.info("Append for unknown pageview", page_id=exc.page_id)
    return JSONResponse(
        status_code=404,
        content={"error": "Not found", "message": str(exc)},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    capture_exception(exc, context={"path": request.url.path})
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "message": "Unable to process request"},
        # Served outside the user middleware stack
        headers={"Content-Security-Policy": CONTENT_SECURITY_POLICY},
    )


@app.get("/health")
def health():
    """Basic health check endpoint."""
    return {"status": "healthy"}


@app.get("/health/ready")
async def health_ready(stores: Stores = Depends(get_stores)):
    """Readiness: both backing stores must answer."""
    database_ok = await run_in_threadpool(check_db_connection, stores.engine)
    try:
        redis_ok = bool(await run_in_threadpool(stores.redis.ping))
    except Exception as e:
        logger.warning("Redis health check failed", error=str(e))
        redis_ok = False

    ready = database_ok and redis_ok
    return JSONResponse(
        status_code=200 if ready else 503,
        content={
            "status": "ready" if ready else "unavailable",
            "database": database_ok,
            "redis": redis_ok,
        },
    )
