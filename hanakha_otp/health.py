"""
Health Checks
=============
Liveness and readiness endpoints backed by the OTP store.
"""

import time
from typing import Dict, Optional
from enum import Enum

from fastapi import APIRouter, Response
from pydantic import BaseModel
import structlog

from .store.base import OTPStore

logger = structlog.get_logger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class ComponentHealth(BaseModel):
    status: str
    latency_ms: Optional[float] = None
    error: Optional[str] = None


class HealthResponse(BaseModel):
    status: HealthStatus
    service: str
    version: str
    components: Dict[str, ComponentHealth]
    timestamp: float


async def check_store(store: OTPStore) -> ComponentHealth:
    """Check store reachability and latency."""
    start = time.time()
    reachable = await store.ping()
    latency = (time.time() - start) * 1000
    if not reachable:
        return ComponentHealth(status="error", error=f"{store.name} store unreachable")
    return ComponentHealth(status="connected", latency_ms=round(latency, 2))


def create_health_router(
    service_name: str,
    store: OTPStore,
    version: str = "1.0.0",
) -> APIRouter:
    """
    Create the health router.

    The service keeps answering from its cache when the store is down, so an
    unreachable store makes /health degraded rather than unhealthy; only
    readiness refuses traffic.

    Returns:
        FastAPI router with /health, /health/live, and /health/ready endpoints
    """
    router = APIRouter(tags=["Health"])

    @router.get("/health", response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        store_health = await check_store(store)
        overall_status = HealthStatus.HEALTHY
        if store_health.status == "error":
            overall_status = HealthStatus.DEGRADED

        return HealthResponse(
            status=overall_status,
            service=service_name,
            version=version,
            components={"store": store_health},
            timestamp=time.time(),
        )

    @router.get("/health/live")
    async def liveness_probe():
        """Always 200 while the process is running."""
        return {"status": "alive"}

    @router.get("/health/ready")
    async def readiness_probe():
        store_health = await check_store(store)
        if store_health.status == "error":
            logger.warning("readiness_check_failed", store=store.name)
            return Response(
                content='{"status": "not_ready", "reason": "store_unavailable"}',
                status_code=503,
                media_type="application/json",
            )
        return {"status": "ready"}

    return router
