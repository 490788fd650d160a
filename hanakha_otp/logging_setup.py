"""
Structured Logging Setup
========================
structlog configuration shared by the OTP service and its HTTP surface.

Usage:
    from hanakha_otp.logging_setup import setup_logging, bind_request_context

    setup_logging(service_name="hanakha-otp", json_output=True)

    with bind_request_context(request_id="req_123", user_id="u1"):
        ...
"""

import logging
import sys
import uuid
from contextlib import contextmanager
from typing import Iterator, Optional

import structlog


def setup_logging(
    service_name: str,
    level: str = "INFO",
    json_output: bool = True,
) -> None:
    """
    Configure stdlib logging and structlog for the service.

    Args:
        service_name: Name bound to every log line (e.g., "hanakha-otp")
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Render JSON (production) instead of console lines
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(service=service_name)
    structlog.get_logger(__name__).info("logging.configured", service=service_name, level=level)


@contextmanager
def bind_request_context(
    request_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> Iterator[str]:
    """Bind request and user ids to every log line emitted inside the block."""
    request_id = request_id or uuid.uuid4().hex
    context = {"request_id": request_id}
    if user_id:
        context["user_id"] = user_id
    with structlog.contextvars.bound_contextvars(**context):
        yield request_id
