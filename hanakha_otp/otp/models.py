"""
OTP Models
==========
Data models and enums for challenges, cache entries and service responses.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple
from dataclasses import dataclass, field, asdict
from enum import Enum


class Channel(str, Enum):
    """Verification media."""
    EMAIL = "email"
    MOBILE = "mobile"

    @property
    def label(self) -> str:
        return "SMS" if self is Channel.MOBILE else "Email"


class CacheStatus(str, Enum):
    """Local state of an outstanding challenge."""
    PENDING = "pending"
    SENT = "sent"
    VERIFIED = "verified"
    EXPIRED = "expired"


CacheKey = Tuple[str, Channel]


@dataclass
class OTPChallenge:
    """A durable OTP record owned by the remote store."""
    id: str
    user_id: str
    code: str
    channel: Channel
    destination: str
    expires_at: datetime
    is_verified: bool = False
    attempts: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now > self.expires_at

    def is_active(self, now: Optional[datetime] = None) -> bool:
        return not self.is_verified and not self.is_expired(now)


@dataclass
class OTPCacheEntry:
    """Process-local shadow of the latest challenge for a (user, channel) key."""
    code: str
    expires_at_ms: int
    attempts: int = 0
    status: CacheStatus = CacheStatus.PENDING
    last_sent_ms: int = 0

    def is_expired(self, now_ms: int) -> bool:
        return now_ms > self.expires_at_ms

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["status"] = self.status.value
        return d


@dataclass
class ResendStatus:
    """Resend cooldown answer for the UI timer."""
    can_send: bool
    wait_time_seconds: int = 0


def _compact(d: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None}


@dataclass
class SendResponse:
    """Result of a send request."""
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    expires_at: Optional[str] = None
    wait_time_seconds: Optional[int] = None
    delivered: Optional[bool] = None
    debug_info: Optional[Dict[str, Any]] = None

    @classmethod
    def failure(cls, error: str, error_code: str) -> "SendResponse":
        return cls(success=False, error=error, error_code=error_code)

    def to_dict(self) -> Dict[str, Any]:
        return _compact(asdict(self))


@dataclass
class VerifyResponse:
    """Result of a verification request."""
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    verification_complete: Optional[bool] = None
    next_step: Optional[str] = None

    @classmethod
    def failure(cls, error: str, error_code: str) -> "VerifyResponse":
        return cls(success=False, error=error, error_code=error_code)

    def to_dict(self) -> Dict[str, Any]:
        return _compact(asdict(self))
