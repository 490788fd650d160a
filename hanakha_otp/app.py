"""
Application Factory
===================
Builds the FastAPI app around one shared orchestrator.

Usage:
    uvicorn hanakha_otp.app:create_app --factory
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Response
import structlog

from . import __version__
from .api import create_otp_router
from .config import OTPSettings
from .health import create_health_router
from .logging_setup import setup_logging
from .metrics import CONTENT_TYPE_LATEST, get_metrics_text
from .otp.service import OTPOrchestrator, build_orchestrator

logger = structlog.get_logger(__name__)


def create_app(
    settings: Optional[OTPSettings] = None,
    orchestrator: Optional[OTPOrchestrator] = None,
    configure_logging: bool = True,
) -> FastAPI:
    """
    Create the OTP service app.

    Args:
        settings: Service settings (read from the environment if omitted)
        orchestrator: Prebuilt orchestrator, mainly for tests
        configure_logging: Install the structlog configuration

    Returns:
        FastAPI application
    """
    settings = settings or (orchestrator.settings if orchestrator else OTPSettings())
    if configure_logging:
        setup_logging(settings.service_name, level=settings.log_level, json_output=settings.log_json)

    orchestrator = orchestrator or build_orchestrator(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("otp_service_starting", environment=settings.environment)
        yield
        await orchestrator.aclose()
        logger.info("otp_service_stopped")

    app = FastAPI(title="Hanakha OTP Service", version=__version__, lifespan=lifespan)
    app.state.orchestrator = orchestrator

    app.include_router(create_otp_router(orchestrator))
    app.include_router(
        create_health_router(settings.service_name, orchestrator.store, version=__version__)
    )

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        return Response(content=get_metrics_text(), media_type=CONTENT_TYPE_LATEST)

    return app
