"""
Simulated Sender
================
No-op delivery for development and test environments.
"""

import asyncio
import structlog

from ..otp.codes import mask_destination
from .base import NotificationSender

logger = structlog.get_logger(__name__)


class SimulatedSender(NotificationSender):
    """Logs the code instead of delivering it. Always reports success."""

    name = "simulated"
    simulated = True

    def __init__(self, channel: str, delay: float = 0.0, log_codes: bool = True):
        self.channel = channel
        self.delay = delay
        self.log_codes = log_codes

    async def send(self, user_id: str, destination: str, code: str) -> bool:
        if self.delay:
            await asyncio.sleep(self.delay)
        logger.info(
            "otp_delivery_simulated",
            channel=self.channel,
            destination=mask_destination(destination),
            code=code if self.log_codes else None,
        )
        return True
