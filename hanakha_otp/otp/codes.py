"""
OTP Codes
=========
Code generation and masking helpers.
"""

import secrets


def generate_otp(length: int = 6) -> str:
    """
    Generate a uniformly random numeric OTP.

    Leading zeros are kept, so every value in 000000-999999 is equally likely.

    Args:
        length: Number of digits

    Returns:
        OTP string
    """
    return str(secrets.randbelow(10 ** length)).zfill(length)


def codes_match(expected: str, supplied: str) -> bool:
    return secrets.compare_digest(expected.encode(), supplied.encode())


def mask_destination(destination: str) -> str:
    """
    Mask an email address or phone number for display and logs.

    "alice@example.com" -> "al***@example.com", "+911234567890" -> "+91******7890"
    """
    if not destination:
        return ""
    if "@" in destination:
        local, _, domain = destination.partition("@")
        return f"{local[:2]}***@{domain}"
    if len(destination) <= 7:
        return destination[:2] + "*" * (len(destination) - 2)
    return destination[:3] + "*" * (len(destination) - 7) + destination[-4:]
