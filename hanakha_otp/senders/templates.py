"""
Message Templates
=================
Email and SMS bodies for OTP delivery.
"""

from datetime import datetime, timezone
from html import escape


def email_subject(site_name: str) -> str:
    return f"Your OTP Code - {site_name}"


def email_html(code: str, site_name: str, validity_minutes: int = 10) -> str:
    site = escape(site_name)
    year = datetime.now(timezone.utc).year
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>OTP Verification</title></head>
<body style="font-family: 'Segoe UI', Tahoma, Geneva, Verdana, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
  <h1>Email Verification</h1>
  <p>Secure your {site} account.</p>
  <p>You have requested an OTP for email verification. Please use the code below:</p>
  <div style="font-size: 36px; font-weight: bold; letter-spacing: 8px; font-family: 'Courier New', monospace;">{escape(code)}</div>
  <p><strong>Valid for {validity_minutes} minutes only</strong></p>
  <p>Thank you for choosing {site}!</p>
  <hr>
  <p style="color: #6c757d; font-size: 14px;">This is an automated email. Please do not reply to this message.</p>
  <p style="color: #6c757d; font-size: 14px;">&copy; {year} {site}. All rights reserved.</p>
</body>
</html>"""


def sms_text(code: str, site_name: str, validity_minutes: int = 10) -> str:
    return (
        f"{code} is your {site_name} verification code. "
        f"It is valid for {validity_minutes} minutes. Do not share it with anyone."
    )
