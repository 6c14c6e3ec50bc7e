"""
Health check endpoints
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import exc as sa_exc
from sqlalchemy import text
from sqlalchemy.orm import Session
from sqlalchemy.pool import QueuePool

from explore.core.config import get_settings
from explore.core.database import get_db
from explore.core.logging_config import LoggingConfig

logger = LoggingConfig.get_logger(__name__)
router = APIRouter(tags=["health"])


@router.get("/health")
def health_check():
    """
    Basic health check endpoint

    Returns:
        dict: Health status
    """
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": get_settings().app_name,
    }


@router.get("/health/detailed")
def detailed_health_check(db: Session = Depends(get_db)):
    """
    Detailed health check with database status

    Returns:
        dict: Health status of the service and its database
    """
    settings = get_settings()
    health_status = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": settings.app_name,
        "version": "0.1.0",
        "environment": settings.app_env,
        "components": {},
    }

    try:
        db.execute(text("SELECT 1"))
        db.commit()
        database = {
            "status": "healthy",
            "message": "Database connection successful",
            "dialect": db.get_bind().dialect.name,
        }
        pool = db.get_bind().pool
        if isinstance(pool, QueuePool):
            database["pool"] = {
                "size": pool.size(),
                "checked_out": pool.checkedout(),
                "overflow": pool.overflow(),
            }
    except sa_exc.SQLAlchemyError as e:
        logger.warning(f"Database health check failed: {type(e).__name__}")
        health_status["status"] = "unhealthy"
        database = {
            "status": "unhealthy",
            "message": "Database connection failed",
            "error": type(e).__name__,
        }
    health_status["components"]["database"] = database

    status_code = 200 if health_status["status"] == "healthy" else 503
    return JSONResponse(content=health_status, status_code=status_code)
