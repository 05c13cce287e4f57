"""Health check and metrics endpoints."""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ehr_onboarding.config import get_settings
from ehr_onboarding.core.database import get_db
from ehr_onboarding.utils.logging import get_logger

router = APIRouter(tags=["health"])
logger = get_logger(__name__)

db_dependency = Depends(get_db)


@router.get("/health")
async def health_check(db: Session = db_dependency) -> Dict[str, Any]:
    """Liveness plus database reachability."""
    settings = get_settings()
    try:
        database_ok = db.execute(text("SELECT 1")).scalar() == 1
    except SQLAlchemyError as e:
        logger.error("database_check_failed", error=str(e))
        database_ok = False

    return {
        "status": "healthy" if database_ok else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "database": database_ok,
    }


@router.get("/metrics")
async def metrics() -> Response:
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
