"""
Request Validation
==================
Shape checks run before any side effect.
"""

import re
from typing import Union

from ..errors import ValidationError
from .models import Channel


EMAIL_PATTERN = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")
MOBILE_PATTERN = re.compile(r"\+[0-9]{10,15}")


def validate_email(email: str) -> bool:
    return bool(EMAIL_PATTERN.fullmatch(email))


def validate_mobile(mobile: str) -> bool:
    """Country-code prefixed number, 10-15 digits after the '+'."""
    return bool(MOBILE_PATTERN.fullmatch(mobile))


def parse_channel(channel: Union[str, Channel, None]) -> Channel:
    if not channel:
        raise ValidationError("Missing required parameters")
    try:
        return Channel(channel)
    except ValueError:
        raise ValidationError("Invalid OTP type. Must be 'email' or 'mobile'") from None


def validate_send_request(user_id: str, destination: str, channel: Union[str, Channel]) -> Channel:
    """
    Validate a send request.

    Returns:
        The parsed channel

    Raises:
        ValidationError: On missing or malformed input
    """
    if not user_id or not destination or not channel:
        raise ValidationError("Missing required parameters")

    parsed = parse_channel(channel)

    if parsed is Channel.EMAIL and not validate_email(destination):
        raise ValidationError("Invalid email format")
    if parsed is Channel.MOBILE and not validate_mobile(destination):
        raise ValidationError("Invalid mobile format. Should include country code")

    return parsed


def validate_verify_request(
    user_id: str,
    code: str,
    channel: Union[str, Channel],
    code_length: int = 6,
) -> Channel:
    """Validate a verification request and return the parsed channel."""
    if not user_id or not code or not channel:
        raise ValidationError("Missing required parameters")

    parsed = parse_channel(channel)

    if len(code) != code_length or not code.isascii() or not code.isdigit():
        raise ValidationError(f"Invalid OTP format. Must be {code_length} digits")

    return parsed
