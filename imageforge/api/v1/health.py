"""Health check endpoint."""

import platform
import sys

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Service health and in-flight job count."""
    ledger = getattr(request.app.state, "ledger", None)
    return {
        "status": "healthy" if ledger is not None else "starting",
        "running_jobs": ledger.running_job_count if ledger is not None else 0,
        "python_version": sys.version,
        "platform": platform.platform(),
    }
