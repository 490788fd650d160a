"""
OTP Service Configuration
=========================
Settings for the OTP orchestrator, its store and notification providers.
"""

import os
import re
from dataclasses import dataclass, field
from typing import Optional


PRODUCTION = "production"


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    return value.strip()


def _env_bool(name: str, default: bool) -> bool:
    value = _env(name)
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    value = _env(name)
    return float(value) if value is not None else default


def _not_production() -> bool:
    return _env("HANAKHA_ENV", "development") != PRODUCTION


@dataclass
class OTPSettings:
    """Configuration for OTP generation, verification and delivery."""
    environment: str = field(default_factory=lambda: _env("HANAKHA_ENV", "development"))
    service_name: str = field(default_factory=lambda: _env("SERVICE_NAME", "hanakha-otp"))

    # Challenge lifecycle
    code_length: int = 6
    ttl_seconds: int = field(default_factory=lambda: int(_env_float("OTP_TTL_SECONDS", 600)))
    resend_interval_seconds: int = field(
        default_factory=lambda: int(_env_float("OTP_RESEND_INTERVAL_SECONDS", 30))
    )
    max_attempts: int = field(default_factory=lambda: int(_env_float("OTP_MAX_ATTEMPTS", 5)))
    failed_send_hold_seconds: int = 30
    purge_grace_seconds: int = 3600

    # Timeouts (seconds)
    inflight_wait_timeout: float = 15.0
    request_timeout: float = 15.0
    store_cleanup_timeout: float = 3.0
    store_timeout: float = 8.0
    email_send_timeout: float = 10.0
    mobile_send_timeout: float = 8.0

    # Non-production escape hatches
    bypass_code: Optional[str] = field(default_factory=lambda: _env("HANAKHA_OTP_BYPASS_CODE"))
    expose_debug_info: bool = field(
        default_factory=lambda: _env_bool("OTP_EXPOSE_DEBUG_INFO", _not_production())
    )
    allow_simulated_delivery: bool = field(
        default_factory=lambda: _env_bool("OTP_ALLOW_SIMULATED_DELIVERY", _not_production())
    )
    require_durable_record: bool = field(
        default_factory=lambda: _env_bool("OTP_REQUIRE_DURABLE_RECORD", False)
    )
    purge_verified_challenges: bool = False

    # Managed function endpoint
    managed_function_url: Optional[str] = field(default_factory=lambda: _env("SUPABASE_URL"))
    managed_function_key: Optional[str] = field(default_factory=lambda: _env("SUPABASE_ANON_KEY"))

    # Direct providers
    resend_api_key: Optional[str] = field(default_factory=lambda: _env("RESEND_API_KEY"))
    email_from: str = field(
        default_factory=lambda: _env("OTP_EMAIL_FROM", "HanakhaDeals <no-reply@hanakhadeals.com>")
    )
    twilio_account_sid: Optional[str] = field(default_factory=lambda: _env("TWILIO_ACCOUNT_SID"))
    twilio_auth_token: Optional[str] = field(default_factory=lambda: _env("TWILIO_AUTH_TOKEN"))
    twilio_from_number: Optional[str] = field(default_factory=lambda: _env("TWILIO_FROM_NUMBER"))
    twilio_messaging_service_sid: Optional[str] = field(
        default_factory=lambda: _env("TWILIO_MESSAGING_SERVICE_SID")
    )
    site_name: str = field(default_factory=lambda: _env("SITE_NAME", "HanakhaDeals"))

    # Persistence
    database_url: Optional[str] = field(default_factory=lambda: _env("DATABASE_URL"))

    # Logging
    log_level: str = field(default_factory=lambda: _env("LOG_LEVEL", "INFO"))
    log_json: bool = field(default_factory=lambda: _env_bool("LOG_JSON", not _not_production()))

    def __post_init__(self):
        if self.bypass_code is not None and not re.fullmatch(r"\d{%d}" % self.code_length, self.bypass_code):
            raise ValueError(f"bypass_code must be {self.code_length} digits")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.is_production:
            self.expose_debug_info = False
            self.allow_simulated_delivery = False

    @property
    def is_production(self) -> bool:
        return self.environment == PRODUCTION

    @property
    def bypass_enabled(self) -> bool:
        """The bypass code only works outside production and only when configured."""
        return self.bypass_code is not None and not self.is_production

    @property
    def twilio_configured(self) -> bool:
        return bool(
            self.twilio_account_sid
            and self.twilio_auth_token
            and (self.twilio_from_number or self.twilio_messaging_service_sid)
        )

    @property
    def resend_configured(self) -> bool:
        return bool(self.resend_api_key)

    @property
    def managed_function_configured(self) -> bool:
        return bool(self.managed_function_url and self.managed_function_key)

    def send_timeout_for(self, channel: str) -> float:
        return self.mobile_send_timeout if channel == "mobile" else self.email_send_timeout
