"""
Hanakha OTP Service
===================
One-time-password orchestration for the HanakhaDeals signup flow.
"""

__version__ = "0.1.0"

# Configuration
from hanakha_otp.config import OTPSettings

# Errors
from hanakha_otp.errors import (
    OTPErrorCode,
    OTPError,
    ValidationError,
    RemoteStoreError,
    StoreTimeoutError,
    ChallengeStateError,
    SenderError,
    OperationTimeout,
)

# Core
from hanakha_otp.otp import (
    Channel,
    CacheStatus,
    OTPChallenge,
    OTPCacheEntry,
    ResendStatus,
    SendResponse,
    VerifyResponse,
    VerificationRequirement,
    VerificationProgress,
    generate_otp,
)
from hanakha_otp.otp.service import OTPOrchestrator, build_orchestrator

# Stores
from hanakha_otp.store import OTPStore, InMemoryOTPStore, SQLAlchemyOTPStore

# Senders
from hanakha_otp.senders import (
    NotificationSender,
    FallbackSender,
    DeliveryResult,
    build_email_sender,
    build_sms_sender,
)

# Logging
from hanakha_otp.logging_setup import setup_logging, bind_request_context

__all__ = [
    "__version__",
    "OTPSettings",
    "OTPErrorCode",
    "OTPError",
    "ValidationError",
    "RemoteStoreError",
    "StoreTimeoutError",
    "ChallengeStateError",
    "SenderError",
    "OperationTimeout",
    "Channel",
    "CacheStatus",
    "OTPChallenge",
    "OTPCacheEntry",
    "ResendStatus",
    "SendResponse",
    "VerifyResponse",
    "VerificationRequirement",
    "VerificationProgress",
    "generate_otp",
    "OTPOrchestrator",
    "build_orchestrator",
    "OTPStore",
    "InMemoryOTPStore",
    "SQLAlchemyOTPStore",
    "NotificationSender",
    "FallbackSender",
    "DeliveryResult",
    "build_email_sender",
    "build_sms_sender",
    "setup_logging",
    "bind_request_context",
]
