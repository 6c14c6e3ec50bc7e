"""
Main FastAPI application entry point
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException as FastAPIHTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from explore.api.routes import explore as explore_routes
from explore.api.routes import health, metrics
from explore.core.config import get_settings
from explore.core.database import get_engine, init_db, wait_for_database
from explore.core.errors import DecisionStoreError
from explore.core.logging_config import LoggingConfig
from explore.core.middleware import LoggingContextMiddleware
from explore.core.middleware_metrics import MetricsMiddleware
from explore.core.tracing import configure_tracing, shutdown_tracing

LoggingConfig.configure()

logger = LoggingConfig.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan events for FastAPI app"""
    settings = get_settings()
    logger.info(f"Starting {settings.app_name} in {settings.app_env} mode...")

    engine = await run_in_threadpool(wait_for_database)
    await run_in_threadpool(init_db, engine)
    configure_tracing(app, engine)
    logger.info("Database ready")

    yield

    logger.info(f"Shutting down {settings.app_name}...")
    shutdown_tracing()
    get_engine().dispose()


_settings = get_settings()
app = FastAPI(
    title=_settings.app_name,
    description="Liked-you feeds and like/pass decisions",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(LoggingContextMiddleware)
app.add_middleware(MetricsMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DecisionStoreError)
async def decision_store_exception_handler(request: Request, exc: DecisionStoreError):
    """Translate store failures into their HTTP classification"""
    logger.warning(
        "Decision store error",
        extra={
            "error_type": type(exc).__name__,
            "operation": exc.operation,
            "path": request.url.path,
        }
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler to log all unhandled errors"""
    if isinstance(exc, FastAPIHTTPException):
        raise exc

    logger.error(
        "Unhandled exception",
        exc_info=exc,
        extra={
            "error_type": type(exc).__name__,
            "path": request.url.path,
            "method": request.method,
        }
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "type": type(exc).__name__}
    )


app.include_router(explore_routes.router)
app.include_router(health.router)
app.include_router(metrics.router)
