"""
OTP Errors
==========
Exception taxonomy used inside the service and the user-facing error codes
that replace them at the public boundary.

Internal details stay in the logs; callers only ever see the short messages below.
"""

from enum import Enum
from typing import Optional


class OTPErrorCode(str, Enum):
    """Failure codes returned in structured responses."""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_OTP = "INVALID_OTP"
    TOO_MANY_ATTEMPTS = "TOO_MANY_ATTEMPTS"
    VERIFICATION_FAILED = "VERIFICATION_FAILED"
    SEND_FAILED = "SEND_FAILED"
    TIMEOUT = "TIMEOUT"


USER_MESSAGES = {
    OTPErrorCode.INVALID_OTP: "Invalid or expired OTP. Please request a new code.",
    OTPErrorCode.TOO_MANY_ATTEMPTS: "Too many failed attempts. Please request a new OTP.",
    OTPErrorCode.VERIFICATION_FAILED: "Verification failed. Please try again.",
    OTPErrorCode.SEND_FAILED: "Failed to send OTP. Please try again.",
    OTPErrorCode.TIMEOUT: "The request took too long. Please try again.",
}


def user_message(code: OTPErrorCode) -> str:
    return USER_MESSAGES.get(code, "Something went wrong. Please try again.")


class OTPError(Exception):
    """Base exception for the OTP service."""

    code: OTPErrorCode = OTPErrorCode.VERIFICATION_FAILED

    def __init__(self, message: str, details: Optional[str] = None):
        self.message = message
        self.details = details
        super().__init__(message)


class ValidationError(OTPError):
    """Bad input shape. Never retried, the caller must fix the input."""
    code = OTPErrorCode.VALIDATION_ERROR


class RemoteStoreError(OTPError):
    """The durable store could not complete an operation."""

    def __init__(self, message: str, operation: str = "unknown", details: Optional[str] = None):
        self.operation = operation
        super().__init__(f"[{operation}] {message}", details=details)


class StoreTimeoutError(RemoteStoreError):
    """Raised specifically on store timeouts."""
    pass


class ChallengeStateError(RemoteStoreError):
    """The atomic verify procedure rejected the challenge (missing, used, expired, exhausted)."""
    pass


class SenderError(OTPError):
    """A notification provider failed to accept the message."""
    code = OTPErrorCode.SEND_FAILED

    def __init__(self, message: str, provider: str = "unknown", status_code: Optional[int] = None):
        self.provider = provider
        self.status_code = status_code
        super().__init__(f"[{provider}] {message}")


class OperationTimeout(OTPError):
    """A bounded sub-step ran past its deadline."""
    code = OTPErrorCode.TIMEOUT

    def __init__(self, operation: str, timeout: float):
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"{operation} timeout after {int(timeout * 1000)}ms")
