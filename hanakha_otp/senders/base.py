"""
Notification Sender Base
========================
Capability interface for OTP delivery and the provider fallback chain.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Sequence
import structlog

from ..errors import SenderError
from ..otp.codes import mask_destination

logger = structlog.get_logger(__name__)


@dataclass
class DeliveryResult:
    """Outcome of one pass through a fallback chain."""
    delivered: bool
    provider: str
    simulated: bool = False
    error: Optional[str] = None
    attempted: List[str] = field(default_factory=list)


class NotificationSender(ABC):
    """
    Abstract base class for a single delivery backend.

    send() returns False when the provider answered but did not accept the
    message, and raises on transport errors or timeouts.
    """

    name: str = "base"
    simulated: bool = False

    @abstractmethod
    async def send(self, user_id: str, destination: str, code: str) -> bool:
        """
        Deliver an OTP.

        Args:
            user_id: Owner of the challenge
            destination: Email address or E.164 phone number
            code: The OTP code

        Returns:
            True if the provider accepted the message
        """

    async def aclose(self) -> None:
        pass


class FallbackSender(NotificationSender):
    """
    Tries candidate senders in a fixed preference order.

    Each candidate is tried at most once; the first one that does not raise
    decides the outcome. This is a resilience strategy, not a retry loop.
    """

    def __init__(self, channel: str, senders: Sequence[NotificationSender]):
        self.channel = channel
        self.senders = list(senders)
        self.name = "+".join(s.name for s in self.senders) or "none"

    async def dispatch(self, user_id: str, destination: str, code: str) -> DeliveryResult:
        """
        Run the chain and report which provider answered.

        Raises:
            SenderError: If every candidate raised, or the chain is empty
        """
        attempted: List[str] = []
        last_error: Optional[Exception] = None

        for sender in self.senders:
            attempted.append(sender.name)
            try:
                delivered = await sender.send(user_id, destination, code)
            except Exception as e:
                last_error = e
                logger.warning(
                    "otp_provider_failed",
                    channel=self.channel,
                    provider=sender.name,
                    destination=mask_destination(destination),
                    error=str(e),
                )
                continue

            if not delivered:
                logger.warning(
                    "otp_provider_rejected",
                    channel=self.channel,
                    provider=sender.name,
                    destination=mask_destination(destination),
                )
            return DeliveryResult(
                delivered=bool(delivered),
                provider=sender.name,
                simulated=sender.simulated,
                attempted=attempted,
            )

        if last_error is None:
            raise SenderError("No delivery provider configured", provider=self.name)
        raise SenderError(f"All providers failed: {last_error}", provider=self.name)

    async def send(self, user_id: str, destination: str, code: str) -> bool:
        result = await self.dispatch(user_id, destination, code)
        return result.delivered

    async def aclose(self) -> None:
        for sender in self.senders:
            await sender.aclose()
