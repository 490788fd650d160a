"""
Shared test helpers.
"""

import time

import pytest


def make_settings(**overrides):
    """Settings isolated from the host environment."""
    from hanakha_otp.config import OTPSettings

    values = dict(
        environment="test",
        bypass_code=None,
        expose_debug_info=True,
        allow_simulated_delivery=True,
        require_durable_record=False,
        managed_function_url=None,
        managed_function_key=None,
        resend_api_key=None,
        twilio_account_sid=None,
        twilio_auth_token=None,
        twilio_from_number=None,
        twilio_messaging_service_sid=None,
        database_url=None,
        log_json=False,
    )
    values.update(overrides)
    return OTPSettings(**values)


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start_ms=None):
        self.now = start_ms if start_ms is not None else int(time.time() * 1000)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += int(seconds * 1000)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def settings_factory():
    return make_settings


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_orchestrator():
    """Factory for an orchestrator over the in-memory store and simulated senders."""
    from hanakha_otp.otp.service import OTPOrchestrator
    from hanakha_otp.senders.base import FallbackSender
    from hanakha_otp.senders.simulated import SimulatedSender
    from hanakha_otp.store.memory import InMemoryOTPStore

    def _make(store=None, email_senders=None, sms_senders=None, clock=None, **overrides):
        cfg = make_settings(**overrides)
        store = store if store is not None else InMemoryOTPStore(max_attempts=cfg.max_attempts)
        email = FallbackSender(
            "email",
            email_senders if email_senders is not None else [SimulatedSender("email")],
        )
        sms = FallbackSender(
            "mobile",
            sms_senders if sms_senders is not None else [SimulatedSender("mobile")],
        )
        return OTPOrchestrator(store, email, sms, settings=cfg, clock=clock)

    return _make
