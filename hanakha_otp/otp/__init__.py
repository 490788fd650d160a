"""
OTP Core
========
Models, code generation, validation and the process-local tables.
The orchestrator lives in hanakha_otp.otp.service.
"""

from .models import (
    Channel,
    CacheStatus,
    OTPChallenge,
    OTPCacheEntry,
    ResendStatus,
    SendResponse,
    VerifyResponse,
)
from .codes import generate_otp, codes_match, mask_destination
from .validation import (
    validate_email,
    validate_mobile,
    validate_send_request,
    validate_verify_request,
)
from .cache import OTPCache
from .inflight import InFlightRequests
from .progress import VerificationRequirement, VerificationProgress

__all__ = [
    "Channel",
    "CacheStatus",
    "OTPChallenge",
    "OTPCacheEntry",
    "ResendStatus",
    "SendResponse",
    "VerifyResponse",
    "generate_otp",
    "codes_match",
    "mask_destination",
    "validate_email",
    "validate_mobile",
    "validate_send_request",
    "validate_verify_request",
    "OTPCache",
    "InFlightRequests",
    "VerificationRequirement",
    "VerificationProgress",
]
