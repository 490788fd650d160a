"""
In-Memory OTP Store
===================
Dictionary-backed store for development and testing.
Use SQLAlchemyOTPStore in production.
"""

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional
import structlog

from ..errors import ChallengeStateError
from ..otp.models import Channel, OTPChallenge
from .base import OTPStore, USER_FLAG_COLUMNS

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryOTPStore(OTPStore):
    """
    In-process store with the same semantics as the SQL store.

    A single asyncio lock stands in for the database transaction.
    """

    name = "memory"

    def __init__(self, max_attempts: int = 5, clock: Optional[Callable[[], datetime]] = None):
        self.max_attempts = max_attempts
        self._clock = clock or _utcnow
        self._challenges: Dict[str, OTPChallenge] = {}
        self.users: Dict[str, Dict[str, bool]] = {}
        self._lock = asyncio.Lock()

    def _matching(self, user_id: str, channel: Channel) -> List[OTPChallenge]:
        return [
            c for c in self._challenges.values()
            if c.user_id == user_id and c.channel == channel
        ]

    def _newest(self, challenges: List[OTPChallenge]) -> Optional[OTPChallenge]:
        if not challenges:
            return None
        return max(challenges, key=lambda c: c.created_at)

    def _set_flags(self, user_id: str, channel: Channel) -> None:
        flags = self.users.setdefault(user_id, {})
        for column in USER_FLAG_COLUMNS[Channel(channel)]:
            flags[column] = True

    def get_challenge(self, challenge_id: str) -> Optional[OTPChallenge]:
        return self._challenges.get(challenge_id)

    async def invalidate_prior_challenges(self, user_id: str, channel: Channel) -> int:
        async with self._lock:
            count = 0
            for challenge in self._matching(user_id, channel):
                if not challenge.is_verified:
                    challenge.is_verified = True
                    count += 1
            return count

    async def insert_challenge(self, challenge: OTPChallenge) -> OTPChallenge:
        async with self._lock:
            stored = replace(challenge)
            self._challenges[stored.id] = stored
            return replace(stored)

    async def find_latest_active_challenge(
        self,
        user_id: str,
        code: str,
        channel: Channel,
    ) -> Optional[OTPChallenge]:
        async with self._lock:
            now = self._clock()
            candidates = [
                c for c in self._matching(user_id, channel)
                if c.code == code and c.is_active(now)
            ]
            newest = self._newest(candidates)
            return replace(newest) if newest else None

    async def increment_attempts(self, user_id: str, channel: Channel) -> Optional[int]:
        async with self._lock:
            unverified = [c for c in self._matching(user_id, channel) if not c.is_verified]
            newest = self._newest(unverified)
            if newest is None:
                return None
            newest.attempts += 1
            return newest.attempts

    async def atomic_verify_and_update_user(
        self,
        challenge_id: str,
        user_id: str,
        channel: Channel,
    ) -> bool:
        async with self._lock:
            challenge = self._challenges.get(challenge_id)
            if challenge is None:
                raise ChallengeStateError("OTP not found", operation="verify_otp_and_update_user")
            if challenge.is_verified:
                raise ChallengeStateError("OTP already used", operation="verify_otp_and_update_user")
            if challenge.is_expired(self._clock()):
                raise ChallengeStateError("OTP expired", operation="verify_otp_and_update_user")
            if challenge.attempts >= self.max_attempts:
                raise ChallengeStateError("Too many attempts", operation="verify_otp_and_update_user")

            challenge.is_verified = True
            challenge.attempts += 1
            self._set_flags(user_id, channel)
            return True

    async def set_user_channel_verified(self, user_id: str, channel: Channel) -> None:
        async with self._lock:
            self._set_flags(user_id, channel)

    async def delete_challenge(self, challenge_id: str) -> None:
        async with self._lock:
            self._challenges.pop(challenge_id, None)

    async def delete_all_challenges(self, user_id: str, channel: Channel) -> int:
        async with self._lock:
            doomed = [c.id for c in self._matching(user_id, channel)]
            for challenge_id in doomed:
                del self._challenges[challenge_id]
            return len(doomed)

    async def purge_expired_challenges(self, grace_seconds: int = 3600) -> int:
        async with self._lock:
            cutoff = self._clock() - timedelta(seconds=grace_seconds)
            doomed = [
                c.id for c in self._challenges.values()
                if not c.is_verified and c.expires_at < cutoff
            ]
            for challenge_id in doomed:
                del self._challenges[challenge_id]
            if doomed:
                logger.info("expired_challenges_purged", count=len(doomed), store=self.name)
            return len(doomed)
