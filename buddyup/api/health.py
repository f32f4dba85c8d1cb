"""
Health and diagnostics API.

Provides lightweight endpoints for operational monitoring without exposing secrets.
"""

import logging
import time

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from buddyup.core.logging import get_request_id, latency_bucket_ms

logger = logging.getLogger("buddyup")

root_router = APIRouter(tags=["health"])


@root_router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@root_router.get("/readyz")
def readyz(request: Request):
    """Readiness check: the engine is built and its store answers."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        return JSONResponse(status_code=503, content={"status": "error", "detail": "engine not initialized"})

    start = time.perf_counter()
    try:
        engine.store.ping()
    except Exception as e:
        logger.error(f"[readyz] readiness check failed: {e}", extra={"request_id": get_request_id()})
        return JSONResponse(status_code=503, content={"status": "error", "detail": "store unreachable"})

    latency_ms = (time.perf_counter() - start) * 1000
    logger.info(
        "health.ready",
        extra={
            "request_id": get_request_id(),
            "store": type(engine.store).__name__,
            "latency_bucket": latency_bucket_ms(latency_ms),
        },
    )
    return {"status": "ok", "store": type(engine.store).__name__}
