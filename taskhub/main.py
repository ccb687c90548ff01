"""FastAPI application entry point."""
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.api.v1 import tasks
from taskhub.config import settings
from taskhub.core.logging import setup_logging
from taskhub.database import close_db, get_db, init_db
from taskhub.localization.helpers import current_locale, get_locale_from_request
from taskhub.middleware.metrics import MetricsMiddleware, setup_metrics
from taskhub.services.storage_service import storage_service


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    setup_logging()
    await init_db()
    storage_service.ensure_bucket_exists()
    yield
    # Shutdown
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(MetricsMiddleware)
setup_metrics(app)


@app.middleware("http")
async def locale_middleware(request: Request, call_next):
    """Localize error messages from the Accept-Language header."""
    token = current_locale.set(get_locale_from_request(request))
    try:
        return await call_next(request)
    finally:
        current_locale.reset(token)


# Include routers
app.include_router(tasks.router, prefix=f"{settings.API_V1_PREFIX}/tasks", tags=["tasks"])


@app.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    """Health check endpoint."""
    import redis

    health_status = {
        "status": "ok",
        "checks": {
            "database": "unknown",
            "redis": "unknown",
            "s3": "unknown",
        }
    }

    # Check database
    try:
        await db.execute(select(1))
        health_status["checks"]["database"] = "ok"
    except Exception as e:
        health_status["checks"]["database"] = f"error: {str(e)}"
        health_status["status"] = "degraded"

    # Check Redis
    try:
        r = redis.from_url(settings.REDIS_URL)
        r.ping()
        health_status["checks"]["redis"] = "ok"
    except Exception as e:
        health_status["checks"]["redis"] = f"error: {str(e)}"
        health_status["status"] = "degraded"

    # Check S3
    try:
        storage_service.file_exists("health-check")
        health_status["checks"]["s3"] = "ok"
    except Exception as e:
        health_status["checks"]["s3"] = f"error: {str(e)}"
        health_status["status"] = "degraded"

    return health_status
