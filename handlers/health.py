"""Service banner and health check"""

import logging
import time

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from config import Config

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/")
async def root():
    """Root endpoint"""
    return {
        "success": True,
        "message": "STUDEX marketplace API is running",
        "environment": Config.CURRENT_ENVIRONMENT,
    }


@router.get("/health")
async def health_check(request: Request):
    """Uptime plus database reachability; 503 while the database is unreachable"""
    started_at = getattr(request.app.state, "started_at", None)
    uptime = time.time() - started_at if started_at else 0

    database_ok = await request.app.state.db.ping()
    if not database_ok:
        logger.warning("⚠️ Health check: database unreachable")

    scheduler = getattr(request.app.state, "scheduler", None)
    return JSONResponse(
        status_code=200 if database_ok else 503,
        content={
            "success": database_ok,
            "status": "healthy" if database_ok else "degraded",
            "uptime_seconds": round(uptime, 2),
            "database": "ok" if database_ok else "unreachable",
            "scheduler": "running" if scheduler is not None and scheduler.scheduler.running else "stopped",
        },
    )
