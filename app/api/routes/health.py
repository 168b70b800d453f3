from __future__ import annotations

import logging
from pathlib import Path

from fastapi import APIRouter, HTTPException

from app.config import settings

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("")
async def health_check():
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
    }


@router.get("/ready")
async def readiness_check():
    """Readiness check: the company dataset must exist and the history directory be present."""
    dataset = Path(settings.companies_dataset_path)
    history_dir = Path(settings.narrative_history_path).parent

    if not dataset.is_file():
        logger.warning("health.dataset_missing", extra={"path": str(dataset)})
        raise HTTPException(status_code=503, detail="Company dataset is not available")
    if not history_dir.is_dir():
        logger.warning("health.history_dir_missing", extra={"path": str(history_dir)})
        raise HTTPException(status_code=503, detail="History directory is not available")

    return {
        "status": "ready",
        "version": settings.app_version,
        "environment": settings.environment,
        "historyBackend": "database" if settings.database_url else "json",
    }
