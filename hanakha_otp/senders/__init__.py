"""
Notification Senders
====================
Delivery backends for OTP codes and the fallback chain that composes them.
"""

from .base import NotificationSender, FallbackSender, DeliveryResult
from .managed_function import ManagedFunctionSender
from .resend import ResendEmailSender
from .twilio import TwilioSMSSender
from .simulated import SimulatedSender
from .factory import build_email_sender, build_sms_sender, build_senders

__all__ = [
    "NotificationSender",
    "FallbackSender",
    "DeliveryResult",
    "ManagedFunctionSender",
    "ResendEmailSender",
    "TwilioSMSSender",
    "SimulatedSender",
    "build_email_sender",
    "build_sms_sender",
    "build_senders",
]
