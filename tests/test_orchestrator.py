"""
Orchestrator Tests
==================
Send/verify flows over the in-memory store and simulated senders.
"""

import asyncio
from collections import Counter

import pytest

from hanakha_otp.store.memory import InMemoryOTPStore
from hanakha_otp.senders.base import NotificationSender


class CountingStore(InMemoryOTPStore):
    """In-memory store that counts every call by operation name."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = Counter()

    async def invalidate_prior_challenges(self, user_id, channel):
        self.calls["invalidate_prior_challenges"] += 1
        return await super().invalidate_prior_challenges(user_id, channel)

    async def insert_challenge(self, challenge):
        self.calls["insert_challenge"] += 1
        return await super().insert_challenge(challenge)

    async def find_latest_active_challenge(self, user_id, code, channel):
        self.calls["find_latest_active_challenge"] += 1
        return await super().find_latest_active_challenge(user_id, code, channel)

    async def increment_attempts(self, user_id, channel):
        self.calls["increment_attempts"] += 1
        return await super().increment_attempts(user_id, channel)

    async def atomic_verify_and_update_user(self, challenge_id, user_id, channel):
        self.calls["atomic_verify_and_update_user"] += 1
        return await super().atomic_verify_and_update_user(challenge_id, user_id, channel)

    async def set_user_channel_verified(self, user_id, channel):
        self.calls["set_user_channel_verified"] += 1
        return await super().set_user_channel_verified(user_id, channel)


class UnreachableStore(InMemoryOTPStore):
    """Every durable operation fails as if the database were down."""

    async def _fail(self, operation):
        from hanakha_otp.errors import RemoteStoreError

        raise RemoteStoreError("connection refused", operation=operation)

    async def invalidate_prior_challenges(self, user_id, channel):
        await self._fail("invalidate_prior_challenges")

    async def insert_challenge(self, challenge):
        await self._fail("insert_challenge")

    async def find_latest_active_challenge(self, user_id, code, channel):
        await self._fail("find_latest_active_challenge")

    async def increment_attempts(self, user_id, channel):
        await self._fail("increment_attempts")

    async def atomic_verify_and_update_user(self, challenge_id, user_id, channel):
        await self._fail("verify_otp_and_update_user")

    async def set_user_channel_verified(self, user_id, channel):
        await self._fail("set_user_channel_verified")

    async def purge_expired_challenges(self, grace_seconds=3600):
        await self._fail("purge_expired_challenges")


class RecordingSender(NotificationSender):
    name = "recording"

    def __init__(self, result=True, error=None, delay=0.0):
        self.result = result
        self.error = error
        self.delay = delay
        self.sent = []

    async def send(self, user_id, destination, code):
        if self.delay:
            await asyncio.sleep(self.delay)
        self.sent.append((user_id, destination, code))
        if self.error is not None:
            raise self.error
        return self.result


def _other_code(code):
    return f"{(int(code) + 1) % 1_000_000:06d}"


class TestSendOTP:
    """Tests for send_otp."""

    @pytest.mark.asyncio
    async def test_send_returns_code_and_expiry(self, make_orchestrator):
        orchestrator = make_orchestrator()

        result = await orchestrator.send_otp("u1", "a@b.co", "email")

        assert result.success is True
        assert result.message == "OTP sent to a@b.co"
        assert result.expires_at is not None
        assert result.delivered is True
        code = result.debug_info["otp_code"]
        assert len(code) == 6 and code.isdigit()
        assert result.debug_info["otp_type"] == "email"

    @pytest.mark.asyncio
    async def test_double_send_within_cooldown_returns_same_code(self, make_orchestrator):
        store = CountingStore()
        orchestrator = make_orchestrator(store=store)

        first = await orchestrator.send_otp("u1", "+911234567890", "mobile")
        second = await orchestrator.send_otp("u1", "+911234567890", "mobile")

        assert first.success is True
        assert second.success is True
        assert second.debug_info["otp_code"] == first.debug_info["otp_code"]
        assert second.debug_info["rate_limited"] is True
        assert second.debug_info["otp_type"] == first.debug_info["otp_type"] == "mobile"
        assert second.wait_time_seconds == 30
        assert "Please wait 30 seconds" in second.message
        assert store.calls["insert_challenge"] == 1

    @pytest.mark.asyncio
    async def test_concurrent_sends_collapse_into_one(self, make_orchestrator):
        store = CountingStore()
        sender = RecordingSender(delay=0.05)
        orchestrator = make_orchestrator(store=store, email_senders=[sender])

        results = await asyncio.gather(
            *[orchestrator.send_otp("u1", "a@b.co", "email") for _ in range(10)]
        )

        assert all(r.success for r in results)
        assert len({r.debug_info["otp_code"] for r in results}) == 1
        assert store.calls["insert_challenge"] == 1
        assert store.calls["invalidate_prior_challenges"] == 1
        assert len(sender.sent) == 1
        assert len(orchestrator.inflight) == 0

    @pytest.mark.asyncio
    async def test_follower_sends_on_its_own_when_leader_hangs(self, make_orchestrator):
        from hanakha_otp.senders.simulated import SimulatedSender

        store = CountingStore()
        orchestrator = make_orchestrator(
            store=store,
            sms_senders=[SimulatedSender("mobile", delay=0.3)],
            inflight_wait_timeout=0.05,
        )

        leader, follower = await asyncio.gather(
            orchestrator.send_otp("u1", "+911234567890", "mobile"),
            orchestrator.send_otp("u1", "+911234567890", "mobile"),
        )

        assert leader.success is True
        assert follower.success is True
        assert follower.debug_info.get("rate_limited") is None
        assert store.calls["insert_challenge"] == 2
        assert len(orchestrator.inflight) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "destination,channel",
        [
            ("+911234567890\n", "mobile"),
            ("+٩١١٢٣٤٥٦٧٨٩٠", "mobile"),
            ("a@b.co\n", "email"),
        ],
    )
    async def test_malformed_destination_has_no_side_effects(self, make_orchestrator, destination, channel):
        store = CountingStore()
        sender = RecordingSender()
        orchestrator = make_orchestrator(store=store, email_senders=[sender], sms_senders=[sender])

        result = await orchestrator.send_otp("u1", destination, channel)

        assert result.success is False
        assert result.error_code == "VALIDATION_ERROR"
        assert sum(store.calls.values()) == 0
        assert sender.sent == []

    @pytest.mark.asyncio
    async def test_different_keys_do_not_share_sends(self, make_orchestrator):
        store = CountingStore()
        orchestrator = make_orchestrator(store=store)

        await asyncio.gather(
            orchestrator.send_otp("u1", "a@b.co", "email"),
            orchestrator.send_otp("u1", "+911234567890", "mobile"),
            orchestrator.send_otp("u2", "c@d.co", "email"),
        )

        assert store.calls["insert_challenge"] == 3

    @pytest.mark.asyncio
    async def test_invalid_email_has_no_side_effects(self, make_orchestrator):
        store = CountingStore()
        sender = RecordingSender()
        orchestrator = make_orchestrator(store=store, email_senders=[sender])

        result = await orchestrator.send_otp("u1", "not-an-email", "email")

        assert result.success is False
        assert result.error == "Invalid email format"
        assert result.error_code == "VALIDATION_ERROR"
        assert sum(store.calls.values()) == 0
        assert sender.sent == []
        assert orchestrator.get_cache_status("u1", "email") is None

    @pytest.mark.asyncio
    async def test_simulated_delivery_is_noted(self, make_orchestrator):
        orchestrator = make_orchestrator()

        result = await orchestrator.send_otp("u1", "+911234567890", "mobile")

        assert result.success is True
        assert "simulated" in result.debug_info["note"]
        assert result.debug_info["provider"] == "simulated"

    @pytest.mark.asyncio
    async def test_sender_failure_still_issues_code(self, make_orchestrator):
        from hanakha_otp.errors import SenderError

        sender = RecordingSender(error=SenderError("down", provider="twilio"))
        orchestrator = make_orchestrator(sms_senders=[sender])

        result = await orchestrator.send_otp("u1", "+911234567890", "mobile")

        assert result.success is True
        assert result.delivered is False
        assert result.debug_info["note"].startswith("OTP stored but SMS sending failed")

        verified = await orchestrator.verify_otp("u1", result.debug_info["otp_code"], "mobile")
        assert verified.success is True

    @pytest.mark.asyncio
    async def test_store_outage_degrades_to_cache_only(self, make_orchestrator):
        orchestrator = make_orchestrator(store=UnreachableStore())

        result = await orchestrator.send_otp("u1", "a@b.co", "email")
        assert result.success is True

        verified = await orchestrator.verify_otp("u1", result.debug_info["otp_code"], "email")
        assert verified.success is True
        await orchestrator.drain()

    @pytest.mark.asyncio
    async def test_require_durable_record_fails_send(self, make_orchestrator):
        from hanakha_otp.otp.models import CacheStatus

        orchestrator = make_orchestrator(store=UnreachableStore(), require_durable_record=True)

        result = await orchestrator.send_otp("u1", "a@b.co", "email")

        assert result.success is False
        assert result.error_code == "SEND_FAILED"
        entry = orchestrator.get_cache_status("u1", "email")
        assert entry.status is CacheStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_slow_send_times_out_but_completes(self, make_orchestrator):
        from hanakha_otp.otp.models import CacheStatus

        sender = RecordingSender(delay=0.2)
        orchestrator = make_orchestrator(sms_senders=[sender], request_timeout=0.05)

        result = await orchestrator.send_otp("u1", "+911234567890", "mobile")

        assert result.success is False
        assert result.error_code == "TIMEOUT"

        await asyncio.sleep(0.3)
        entry = orchestrator.get_cache_status("u1", "mobile")
        assert entry.status is CacheStatus.SENT
        assert entry.code == sender.sent[0][2]

    @pytest.mark.asyncio
    async def test_resend_after_cooldown_invalidates_prior_code(self, make_orchestrator, clock):
        orchestrator = make_orchestrator(clock=clock)

        first = await orchestrator.send_otp("u1", "a@b.co", "email")
        clock.advance(31)
        second = await orchestrator.send_otp("u1", "a@b.co", "email")

        assert second.debug_info.get("rate_limited") is None
        old_code = first.debug_info["otp_code"]
        if old_code != second.debug_info["otp_code"]:
            stale = await orchestrator.verify_otp("u1", old_code, "email")
            assert stale.success is False

    @pytest.mark.asyncio
    async def test_debug_info_hidden_in_production(self, make_orchestrator):
        orchestrator = make_orchestrator(environment="production")

        result = await orchestrator.send_otp("u1", "a@b.co", "email")

        assert result.success is True
        assert result.debug_info is None
        assert "debug_info" not in result.to_dict()


class TestVerifyOTP:
    """Tests for verify_otp."""

    @pytest.mark.asyncio
    async def test_round_trip(self, make_orchestrator):
        store = CountingStore()
        orchestrator = make_orchestrator(store=store)

        sent = await orchestrator.send_otp("u1", "+911234567890", "mobile")
        result = await orchestrator.verify_otp("u1", sent.debug_info["otp_code"], "mobile")
        await orchestrator.drain()

        assert result.success is True
        assert result.verification_complete is True
        assert result.next_step == "subscription_plans"
        assert store.users["u1"] == {"mobile_verified": True, "is_verified": True}
        assert store.calls["atomic_verify_and_update_user"] == 1

    @pytest.mark.asyncio
    async def test_email_does_not_set_overall_flag(self, make_orchestrator):
        store = InMemoryOTPStore()
        orchestrator = make_orchestrator(store=store)

        sent = await orchestrator.send_otp("u1", "a@b.co", "email")
        result = await orchestrator.verify_otp("u1", sent.debug_info["otp_code"], "email")
        await orchestrator.drain()

        assert result.next_step == "continue_verification"
        assert store.users["u1"] == {"email_verified": True}

    @pytest.mark.asyncio
    async def test_code_is_single_use(self, make_orchestrator):
        orchestrator = make_orchestrator()

        sent = await orchestrator.send_otp("u1", "a@b.co", "email")
        code = sent.debug_info["otp_code"]

        assert (await orchestrator.verify_otp("u1", code, "email")).success is True
        await orchestrator.drain()

        again = await orchestrator.verify_otp("u1", code, "email")
        assert again.success is False
        assert again.error_code == "INVALID_OTP"

        orchestrator.clear_cache("u1", "email")
        after_restart = await orchestrator.verify_otp("u1", code, "email")
        assert after_restart.success is False
        assert after_restart.error.startswith("Invalid or expired OTP")

    @pytest.mark.asyncio
    async def test_attempt_ceiling(self, make_orchestrator):
        orchestrator = make_orchestrator()

        sent = await orchestrator.send_otp("u1", "a@b.co", "email")
        code = sent.debug_info["otp_code"]
        wrong = _other_code(code)

        for _ in range(5):
            failed = await orchestrator.verify_otp("u1", wrong, "email")
            assert failed.success is False
            assert failed.error_code == "INVALID_OTP"

        result = await orchestrator.verify_otp("u1", code, "email")

        assert result.success is False
        assert result.error_code == "TOO_MANY_ATTEMPTS"
        assert result.error == "Too many failed attempts. Please request a new OTP."

    @pytest.mark.asyncio
    async def test_unknown_code_without_send(self, make_orchestrator):
        orchestrator = make_orchestrator()

        result = await orchestrator.verify_otp("u1", "000000", "email")

        assert result.success is False
        assert result.error.startswith("Invalid or expired OTP")

    @pytest.mark.asyncio
    async def test_malformed_code(self, make_orchestrator):
        orchestrator = make_orchestrator()

        result = await orchestrator.verify_otp("u1", "12ab", "email")

        assert result.success is False
        assert result.error_code == "VALIDATION_ERROR"
        assert result.error == "Invalid OTP format. Must be 6 digits"

    @pytest.mark.asyncio
    async def test_slow_path_after_cache_loss(self, make_orchestrator):
        store = CountingStore()
        orchestrator = make_orchestrator(store=store)

        sent = await orchestrator.send_otp("u1", "+911234567890", "mobile")
        orchestrator.clear_all_cache()

        result = await orchestrator.verify_otp("u1", sent.debug_info["otp_code"], "mobile")

        assert result.success is True
        assert store.calls["find_latest_active_challenge"] == 1
        assert store.users["u1"]["is_verified"] is True

    @pytest.mark.asyncio
    async def test_atomic_procedure_failure(self, make_orchestrator):
        from hanakha_otp.errors import ChallengeStateError

        class RejectingStore(InMemoryOTPStore):
            async def atomic_verify_and_update_user(self, challenge_id, user_id, channel):
                raise ChallengeStateError("deadlock", operation="verify_otp_and_update_user")

        orchestrator = make_orchestrator(store=RejectingStore())
        sent = await orchestrator.send_otp("u1", "a@b.co", "email")
        orchestrator.clear_cache("u1", "email")

        result = await orchestrator.verify_otp("u1", sent.debug_info["otp_code"], "email")

        assert result.success is False
        assert result.error_code == "VERIFICATION_FAILED"

    @pytest.mark.asyncio
    async def test_store_lookup_failure_is_invalid_otp(self, make_orchestrator):
        orchestrator = make_orchestrator(store=UnreachableStore())

        result = await orchestrator.verify_otp("u1", "123456", "mobile")

        assert result.success is False
        assert result.error_code == "INVALID_OTP"

    @pytest.mark.asyncio
    async def test_bypass_code(self, make_orchestrator):
        store = InMemoryOTPStore()
        orchestrator = make_orchestrator(store=store, bypass_code="424242")

        result = await orchestrator.verify_otp("u1", "424242", "mobile")
        await orchestrator.drain()

        assert result.success is True
        assert store.users["u1"]["mobile_verified"] is True

    @pytest.mark.asyncio
    async def test_bypass_code_ignored_in_production(self, make_orchestrator):
        orchestrator = make_orchestrator(bypass_code="424242", environment="production")

        result = await orchestrator.verify_otp("u1", "424242", "mobile")

        assert result.success is False
        assert result.error_code == "INVALID_OTP"


class TestControlSurface:
    """Tests for cache inspection, resend cooldown and cleanup."""

    @pytest.mark.asyncio
    async def test_can_resend_cooldown(self, make_orchestrator, clock):
        orchestrator = make_orchestrator(clock=clock)

        assert orchestrator.can_resend_otp("u1", "email").can_send is True

        await orchestrator.send_otp("u1", "a@b.co", "email")
        status = orchestrator.can_resend_otp("u1", "email")
        assert status.can_send is False
        assert status.wait_time_seconds == 30

        clock.advance(31)
        status = orchestrator.can_resend_otp("u1", "email")
        assert status.can_send is True
        assert status.wait_time_seconds == 0

    @pytest.mark.asyncio
    async def test_cache_status_and_clear(self, make_orchestrator):
        from hanakha_otp.otp.models import CacheStatus

        orchestrator = make_orchestrator()
        await orchestrator.send_otp("u1", "a@b.co", "email")

        entry = orchestrator.get_cache_status("u1", "email")
        assert entry.status is CacheStatus.SENT
        assert entry.attempts == 0

        assert orchestrator.clear_cache("u1", "email") is True
        assert orchestrator.get_cache_status("u1", "email") is None
        assert orchestrator.clear_cache("u1", "email") is False

    @pytest.mark.asyncio
    async def test_reset_challenges(self, make_orchestrator):
        store = InMemoryOTPStore()
        orchestrator = make_orchestrator(store=store)

        sent = await orchestrator.send_otp("u1", "a@b.co", "email")
        removed = await orchestrator.reset_challenges("u1", "email")

        assert removed == 1
        result = await orchestrator.verify_otp("u1", sent.debug_info["otp_code"], "email")
        assert result.success is False

    @pytest.mark.asyncio
    async def test_purge_expired(self, make_orchestrator):
        from datetime import datetime, timedelta, timezone
        from hanakha_otp.otp.models import Channel, OTPChallenge

        store = InMemoryOTPStore()
        orchestrator = make_orchestrator(store=store)
        old = datetime.now(timezone.utc) - timedelta(hours=2)
        await store.insert_challenge(
            OTPChallenge(
                id="old",
                user_id="u1",
                code="111111",
                channel=Channel.EMAIL,
                destination="a@b.co",
                expires_at=old,
                created_at=old,
            )
        )

        assert await orchestrator.purge_expired() == 1
        assert store.get_challenge("old") is None

    @pytest.mark.asyncio
    async def test_purge_expired_survives_store_outage(self, make_orchestrator):
        orchestrator = make_orchestrator(store=UnreachableStore())

        assert await orchestrator.purge_expired() == 0
