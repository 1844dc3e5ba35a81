"""Health check endpoints."""

import asyncio
import logging
import time
from typing import Any

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from studyspace.api.deps import get_db_client, get_store
from studyspace.db.postgrest import PostgrestClient
from studyspace.services.session_store import SessionStore

logger = logging.getLogger(__name__)

router = APIRouter()


async def _timed_check(name: str, probe: Any) -> dict[str, Any]:
    """Run a ping coroutine with a timeout and report latency."""
    start = time.time()
    try:
        ok = await asyncio.wait_for(probe, timeout=5.0)
    except asyncio.TimeoutError:
        return {"status": "unhealthy", "error": f"{name} timeout (>5s)"}
    if not ok:
        logger.warning(f"{name} health check failed")
        return {"status": "unhealthy", "error": f"{name} unavailable"}
    return {"status": "healthy", "latency_ms": round((time.time() - start) * 1000, 2)}


@router.get("/health")
async def health_check(
    store: SessionStore = Depends(get_store),
    db: PostgrestClient = Depends(get_db_client),
) -> JSONResponse:
    """Check the session store and the persistence service.

    Returns 200 when both answer, 503 otherwise.
    """
    start_time = time.time()

    store_result, db_result = await asyncio.gather(
        _timed_check("Session store", store.ping()),
        _timed_check("Persistence service", db.ping()),
    )

    healthy = all(check["status"] == "healthy" for check in (store_result, db_result))
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "timestamp": time.time(),
            "response_time_ms": round((time.time() - start_time) * 1000, 2),
            "checks": {
                "session_store": store_result,
                "persistence": db_result,
            },
        },
    )
