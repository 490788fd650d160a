"""
OTP Store Interface
===================
Operations the orchestrator needs from the durable store.
"""

from abc import ABC, abstractmethod
from typing import Optional

from ..otp.models import Channel, OTPChallenge


USER_FLAG_COLUMNS = {
    Channel.EMAIL: ("email_verified",),
    # Mobile proves identity in this domain, so it also sets the overall flag.
    Channel.MOBILE: ("mobile_verified", "is_verified"),
}


class OTPStore(ABC):
    """
    Abstract base class for durable OTP storage.

    Implementations raise RemoteStoreError (or a subclass) when the backend
    cannot complete an operation.
    """

    name: str = "base"

    @abstractmethod
    async def invalidate_prior_challenges(self, user_id: str, channel: Channel) -> int:
        """Mark every unverified challenge for (user, channel) as used. Returns the count."""

    @abstractmethod
    async def insert_challenge(self, challenge: OTPChallenge) -> OTPChallenge:
        """Persist a new challenge."""

    @abstractmethod
    async def find_latest_active_challenge(
        self,
        user_id: str,
        code: str,
        channel: Channel,
    ) -> Optional[OTPChallenge]:
        """Newest unverified, unexpired challenge matching (user, code, channel)."""

    @abstractmethod
    async def increment_attempts(self, user_id: str, channel: Channel) -> Optional[int]:
        """
        Count a failed attempt against the newest unverified challenge for
        (user, channel). Returns the new count, or None if there is no such challenge.
        """

    @abstractmethod
    async def atomic_verify_and_update_user(
        self,
        challenge_id: str,
        user_id: str,
        channel: Channel,
    ) -> bool:
        """
        In one transaction: mark the challenge verified, bump its attempt
        counter and set the user's verification flags.

        Raises:
            ChallengeStateError: If the challenge is missing, used, expired or exhausted
        """

    @abstractmethod
    async def set_user_channel_verified(self, user_id: str, channel: Channel) -> None:
        """Set the user's verification flags for a channel."""

    @abstractmethod
    async def delete_challenge(self, challenge_id: str) -> None:
        pass

    @abstractmethod
    async def delete_all_challenges(self, user_id: str, channel: Channel) -> int:
        pass

    @abstractmethod
    async def purge_expired_challenges(self, grace_seconds: int = 3600) -> int:
        """Delete unverified challenges that expired more than grace_seconds ago."""

    async def ping(self) -> bool:
        """Cheap reachability check for health endpoints."""
        return True

    async def close(self) -> None:
        pass
