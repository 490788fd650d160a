"""
Sender Factory
==============
Builds the per-channel fallback chains from settings.
"""

from typing import Dict, List
import structlog

from ..config import OTPSettings
from ..otp.models import Channel
from .base import FallbackSender, NotificationSender
from .managed_function import ManagedFunctionSender
from .resend import ResendEmailSender
from .simulated import SimulatedSender
from .twilio import TwilioSMSSender

logger = structlog.get_logger(__name__)


def _managed(settings: OTPSettings, channel: Channel) -> List[NotificationSender]:
    if not settings.managed_function_configured:
        return []
    return [
        ManagedFunctionSender(
            base_url=settings.managed_function_url,
            api_key=settings.managed_function_key,
            channel=channel.value,
            timeout=settings.send_timeout_for(channel),
        )
    ]


def _simulated(settings: OTPSettings, channel: Channel) -> List[NotificationSender]:
    if not settings.allow_simulated_delivery:
        return []
    return [SimulatedSender(channel.value, log_codes=not settings.is_production)]


def build_email_sender(settings: OTPSettings) -> FallbackSender:
    """Managed endpoint, then Resend, then simulated (when allowed)."""
    chain = _managed(settings, Channel.EMAIL)
    if settings.resend_configured:
        chain.append(
            ResendEmailSender(
                api_key=settings.resend_api_key,
                from_address=settings.email_from,
                site_name=settings.site_name,
                validity_minutes=settings.ttl_seconds // 60,
                timeout=settings.email_send_timeout,
            )
        )
    chain.extend(_simulated(settings, Channel.EMAIL))
    sender = FallbackSender(Channel.EMAIL.value, chain)
    logger.info("email_sender_chain", providers=[s.name for s in chain])
    return sender


def build_sms_sender(settings: OTPSettings) -> FallbackSender:
    """Managed endpoint, then Twilio, then simulated (when allowed)."""
    chain = _managed(settings, Channel.MOBILE)
    if settings.twilio_configured:
        chain.append(
            TwilioSMSSender(
                account_sid=settings.twilio_account_sid,
                auth_token=settings.twilio_auth_token,
                from_number=settings.twilio_from_number,
                messaging_service_sid=settings.twilio_messaging_service_sid,
                site_name=settings.site_name,
                validity_minutes=settings.ttl_seconds // 60,
                timeout=settings.mobile_send_timeout,
            )
        )
    chain.extend(_simulated(settings, Channel.MOBILE))
    sender = FallbackSender(Channel.MOBILE.value, chain)
    logger.info("sms_sender_chain", providers=[s.name for s in chain])
    return sender


def build_senders(settings: OTPSettings) -> Dict[Channel, FallbackSender]:
    return {
        Channel.EMAIL: build_email_sender(settings),
        Channel.MOBILE: build_sms_sender(settings),
    }
