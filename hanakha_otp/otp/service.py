"""
OTP Orchestrator
================
Issues and verifies one-time codes across the email and mobile channels.

One instance is built at startup and shared by every caller. It owns the
process-local cache and the in-flight table; the durable store and the
notification senders are injected.

Usage:
    orchestrator = build_orchestrator(OTPSettings())

    result = await orchestrator.send_otp("u1", "+911234567890", "mobile")
    result = await orchestrator.verify_otp("u1", "123456", "mobile")
"""

import asyncio
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Coroutine, Dict, Optional, Set, Union
import structlog

from ..config import OTPSettings
from ..errors import (
    OTPError,
    OTPErrorCode,
    OperationTimeout,
    RemoteStoreError,
    ValidationError,
    user_message,
)
from ..metrics import observe_send_latency, record_delivery, record_send, record_verify
from ..senders.base import DeliveryResult, FallbackSender
from ..store.base import OTPStore
from ..timeouts import with_timeout
from .cache import OTPCache
from .codes import codes_match, generate_otp, mask_destination
from .inflight import InFlightRequests
from .models import (
    CacheKey,
    CacheStatus,
    Channel,
    OTPCacheEntry,
    OTPChallenge,
    ResendStatus,
    SendResponse,
    VerifyResponse,
)
from .validation import parse_channel, validate_send_request, validate_verify_request

logger = structlog.get_logger(__name__)


NEXT_STEPS = {
    Channel.MOBILE: "subscription_plans",
    Channel.EMAIL: "continue_verification",
}


def _iso(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat()


def _channel_label(channel: Union[str, Channel, None]) -> str:
    # Metric label for rejected input; keeps arbitrary strings out of the label set.
    value = getattr(channel, "value", channel)
    return value if value in ("email", "mobile") else "unknown"


class OTPOrchestrator:
    """
    OTP send/verify orchestration.

    Concurrent send_otp calls for the same (user, channel) collapse into one
    underlying send; verify_otp prefers the local cache and falls back to the
    durable store, which stays authoritative for the attempt ceiling.
    """

    def __init__(
        self,
        store: OTPStore,
        email_sender: FallbackSender,
        sms_sender: FallbackSender,
        settings: Optional[OTPSettings] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        """
        Args:
            store: Durable challenge store
            email_sender: Delivery chain for the email channel
            sms_sender: Delivery chain for the mobile channel
            settings: Service settings (read from the environment if omitted)
            clock: Epoch milliseconds, shared with the cache
        """
        self.settings = settings or OTPSettings()
        self.store = store
        self.senders: Dict[Channel, FallbackSender] = {
            Channel.EMAIL: email_sender,
            Channel.MOBILE: sms_sender,
        }
        self.cache = OTPCache(clock=clock)
        self.inflight = InFlightRequests()
        self._background: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Send
    # ------------------------------------------------------------------

    async def send_otp(
        self,
        user_id: str,
        destination: str,
        channel: Union[str, Channel],
    ) -> SendResponse:
        """
        Issue a code for (user, channel) and deliver it to destination.

        Never raises: every failure comes back as a SendResponse with
        success=False and an error code.
        """
        try:
            parsed = validate_send_request(user_id, destination, channel)
        except ValidationError as e:
            logger.info("otp_send_rejected", reason=e.message)
            record_send(_channel_label(channel), "invalid")
            return SendResponse.failure(e.message, OTPErrorCode.VALIDATION_ERROR.value)

        key: CacheKey = (user_id, parsed)
        self.cache.sweep()

        pending = self.inflight.get(key)
        if pending is not None:
            logger.debug("otp_send_joining_inflight", user_id=user_id, channel=parsed.value)
            try:
                return await asyncio.wait_for(
                    asyncio.shield(pending), self.settings.inflight_wait_timeout
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "otp_inflight_wait_timed_out",
                    user_id=user_id,
                    channel=parsed.value,
                    timeout=self.settings.inflight_wait_timeout,
                )
                self.inflight.discard(key, pending)
            except Exception as e:
                return self._send_failure(e, parsed)

        limited = self._rate_limited_response(key, destination)
        if limited is not None:
            record_send(parsed.value, "rate_limited")
            return limited

        task = asyncio.ensure_future(self._execute_send(key, destination))
        self.inflight.track(key, task)

        try:
            return await asyncio.wait_for(asyncio.shield(task), self.settings.request_timeout)
        except asyncio.TimeoutError:
            logger.error(
                "otp_send_timed_out",
                user_id=user_id,
                channel=parsed.value,
                timeout=self.settings.request_timeout,
            )
            record_send(parsed.value, "timeout")
            return SendResponse.failure(
                user_message(OTPErrorCode.TIMEOUT), OTPErrorCode.TIMEOUT.value
            )
        except Exception as e:
            return self._send_failure(e, parsed)

    @staticmethod
    def _send_failure(error: Exception, channel: Channel) -> SendResponse:
        if isinstance(error, OperationTimeout):
            code = OTPErrorCode.TIMEOUT
        else:
            if not isinstance(error, OTPError):
                logger.error("otp_send_unexpected_error", channel=channel.value, error=repr(error))
            code = OTPErrorCode.SEND_FAILED
        record_send(channel.value, "failed")
        return SendResponse.failure(user_message(code), code.value)

    def _rate_limited_response(self, key: CacheKey, destination: str) -> Optional[SendResponse]:
        entry = self.cache.get(key)
        if entry is None or entry.status is not CacheStatus.SENT:
            return None

        now = self.cache.now_ms()
        interval_ms = self.settings.resend_interval_seconds * 1000
        elapsed = now - entry.last_sent_ms
        if entry.is_expired(now) or elapsed >= interval_ms:
            return None

        wait_seconds = -(-(interval_ms - elapsed) // 1000)
        logger.info(
            "otp_send_rate_limited",
            user_id=key[0],
            channel=key[1].value,
            wait_seconds=wait_seconds,
        )

        response = SendResponse(
            success=True,
            message=(
                f"OTP already sent to {destination}. "
                f"Please wait {wait_seconds} seconds before requesting again."
            ),
            expires_at=_iso(entry.expires_at_ms),
            wait_time_seconds=wait_seconds,
        )
        if self.settings.expose_debug_info:
            response.debug_info = {
                "otp_code": entry.code,
                "otp_type": key[1].value,
                "cached": True,
                "expires_in": max(0, (entry.expires_at_ms - now) // 1000),
                "wait_time": wait_seconds,
                "rate_limited": True,
            }
        return response

    async def _execute_send(self, key: CacheKey, destination: str) -> SendResponse:
        """Core send procedure. Runs once per key at a time, as the in-flight leader."""
        user_id, channel = key
        started = time.perf_counter()
        try:
            return await self._issue_and_deliver(user_id, channel, destination)
        except Exception as e:
            now = self.cache.now_ms()
            self.cache.put(
                key,
                OTPCacheEntry(
                    code="",
                    expires_at_ms=now + self.settings.failed_send_hold_seconds * 1000,
                    status=CacheStatus.EXPIRED,
                    last_sent_ms=now,
                ),
            )
            logger.error("otp_send_failed", user_id=user_id, channel=channel.value, error=str(e))
            raise
        finally:
            observe_send_latency(channel.value, time.perf_counter() - started)

    async def _issue_and_deliver(
        self,
        user_id: str,
        channel: Channel,
        destination: str,
    ) -> SendResponse:
        settings = self.settings
        code = generate_otp(settings.code_length)
        now_ms = self.cache.now_ms()
        expires_at_ms = now_ms + settings.ttl_seconds * 1000
        expires_at = datetime.fromtimestamp(expires_at_ms / 1000, tz=timezone.utc)

        try:
            invalidated = await with_timeout(
                self.store.invalidate_prior_challenges(user_id, channel),
                settings.store_cleanup_timeout,
                "invalidate_prior_challenges",
            )
            logger.debug("otp_prior_challenges_invalidated", user_id=user_id, count=invalidated)
        except (RemoteStoreError, OperationTimeout) as e:
            logger.warning("otp_cleanup_failed", user_id=user_id, channel=channel.value, error=str(e))

        challenge = OTPChallenge(
            id=uuid.uuid4().hex,
            user_id=user_id,
            code=code,
            channel=channel,
            destination=destination,
            expires_at=expires_at,
            created_at=datetime.fromtimestamp(now_ms / 1000, tz=timezone.utc),
        )
        try:
            await with_timeout(
                self.store.insert_challenge(challenge),
                settings.store_timeout,
                "insert_challenge",
            )
        except (RemoteStoreError, OperationTimeout) as e:
            if settings.require_durable_record:
                raise
            logger.warning(
                "otp_record_not_stored",
                user_id=user_id,
                channel=channel.value,
                error=str(e),
                fallback="cache_only",
            )

        sender = self.senders[channel]
        send_error: Optional[str] = None
        try:
            result = await with_timeout(
                sender.dispatch(user_id, destination, code),
                settings.send_timeout_for(channel),
                f"{channel.label} send",
            )
        except OTPError as e:
            send_error = e.message
            result = DeliveryResult(delivered=False, provider=sender.name, error=send_error)
            logger.error(
                "otp_delivery_failed",
                user_id=user_id,
                channel=channel.value,
                destination=mask_destination(destination),
                error=send_error,
            )
        record_delivery(channel.value, result.provider, result.delivered)

        self.cache.put(
            (user_id, channel),
            OTPCacheEntry(
                code=code,
                expires_at_ms=expires_at_ms,
                attempts=0,
                status=CacheStatus.SENT,
                last_sent_ms=self.cache.now_ms(),
            ),
        )

        logger.info(
            "otp_issued",
            user_id=user_id,
            channel=channel.value,
            destination=mask_destination(destination),
            delivered=result.delivered,
            provider=result.provider,
            simulated=result.simulated,
        )
        record_send(channel.value, "sent" if result.delivered else "undelivered")

        response = SendResponse(
            success=True,
            message=f"OTP sent to {destination}",
            expires_at=expires_at.isoformat(),
            delivered=result.delivered,
        )
        if settings.expose_debug_info:
            response.debug_info = {
                "otp_code": code,
                "contact_info": destination,
                "otp_type": channel.value,
                "send_result": result.delivered,
                "send_error": send_error,
                "provider": result.provider,
                "note": self._delivery_note(channel, result, send_error),
            }
        return response

    @staticmethod
    def _delivery_note(channel: Channel, result: DeliveryResult, send_error: Optional[str]) -> str:
        if result.simulated:
            return f"{channel.label} delivery simulated (no provider configured). Use the code above."
        if result.delivered:
            return f"{channel.label} OTP sent successfully"
        return f"OTP stored but {channel.label} sending failed: {send_error or 'provider rejected'}"

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    async def verify_otp(
        self,
        user_id: str,
        code: str,
        channel: Union[str, Channel],
    ) -> VerifyResponse:
        """
        Check a code for (user, channel).

        Never raises: every failure comes back as a VerifyResponse with
        success=False and an error code.
        """
        try:
            parsed = validate_verify_request(user_id, code, channel, self.settings.code_length)
        except ValidationError as e:
            record_verify(_channel_label(channel), "invalid")
            return VerifyResponse.failure(e.message, OTPErrorCode.VALIDATION_ERROR.value)

        key: CacheKey = (user_id, parsed)
        settings = self.settings

        if settings.bypass_enabled and codes_match(settings.bypass_code, code):
            logger.warning("otp_bypass_code_used", user_id=user_id, channel=parsed.value)
            self.cache.mark_verified(key)
            self._spawn(
                with_timeout(
                    self.store.set_user_channel_verified(user_id, parsed),
                    settings.store_timeout,
                    "set_user_channel_verified",
                ),
                "set_user_channel_verified",
            )
            record_verify(parsed.value, "bypass")
            return self._verified(parsed)

        entry = self.cache.get(key)
        now = self.cache.now_ms()

        if entry is not None and entry.status is CacheStatus.VERIFIED and codes_match(entry.code, code):
            logger.info("otp_reuse_rejected", user_id=user_id, channel=parsed.value)
            record_verify(parsed.value, "reused")
            return self._failure(OTPErrorCode.INVALID_OTP)

        if (
            entry is not None
            and entry.status is CacheStatus.SENT
            and not entry.is_expired(now)
            and codes_match(entry.code, code)
        ):
            self.cache.mark_verified(key)
            self._spawn(self._propagate_verified(user_id, code, parsed), "propagate_verified")
            logger.info("otp_verified", user_id=user_id, channel=parsed.value, path="cache")
            record_verify(parsed.value, "verified_cache")
            return self._verified(parsed)

        return await self._verify_remote(key, code)

    async def _verify_remote(self, key: CacheKey, code: str) -> VerifyResponse:
        user_id, channel = key
        settings = self.settings

        try:
            record = await with_timeout(
                self.store.find_latest_active_challenge(user_id, code, channel),
                settings.store_timeout,
                "find_latest_active_challenge",
            )
        except (RemoteStoreError, OperationTimeout) as e:
            logger.warning("otp_lookup_failed", user_id=user_id, channel=channel.value, error=str(e))
            record = None

        if record is None:
            self.cache.record_failure(key, settings.max_attempts)
            await self._count_failed_attempt(user_id, channel)
            logger.info("otp_verify_failed", user_id=user_id, channel=channel.value, reason="no_match")
            record_verify(channel.value, "invalid")
            return self._failure(OTPErrorCode.INVALID_OTP)

        if record.attempts >= settings.max_attempts:
            self.cache.record_failure(key, settings.max_attempts)
            logger.warning(
                "otp_attempts_exhausted",
                user_id=user_id,
                channel=channel.value,
                attempts=record.attempts,
            )
            record_verify(channel.value, "too_many_attempts")
            return self._failure(OTPErrorCode.TOO_MANY_ATTEMPTS)

        try:
            await with_timeout(
                self.store.atomic_verify_and_update_user(record.id, user_id, channel),
                settings.store_timeout,
                "atomic_verify_and_update_user",
            )
        except (RemoteStoreError, OperationTimeout) as e:
            self.cache.record_failure(key, settings.max_attempts)
            logger.error(
                "otp_atomic_verify_failed",
                user_id=user_id,
                channel=channel.value,
                challenge_id=record.id,
                error=str(e),
            )
            record_verify(channel.value, "failed")
            return self._failure(OTPErrorCode.VERIFICATION_FAILED)

        self.cache.mark_verified(key)
        if settings.purge_verified_challenges:
            self._spawn(self.store.delete_challenge(record.id), "delete_challenge")

        logger.info("otp_verified", user_id=user_id, channel=channel.value, path="store")
        record_verify(channel.value, "verified_store")
        return self._verified(channel)

    async def _count_failed_attempt(self, user_id: str, channel: Channel) -> None:
        try:
            attempts = await with_timeout(
                self.store.increment_attempts(user_id, channel),
                self.settings.store_cleanup_timeout,
                "increment_attempts",
            )
        except (RemoteStoreError, OperationTimeout) as e:
            logger.warning("otp_attempt_count_failed", user_id=user_id, channel=channel.value, error=str(e))
            return
        if attempts is not None:
            logger.debug("otp_remote_attempts", user_id=user_id, channel=channel.value, attempts=attempts)

    async def _propagate_verified(self, user_id: str, code: str, channel: Channel) -> None:
        """Mirror a cache-path verification into the durable store."""
        timeout = self.settings.store_timeout
        record = None
        try:
            record = await with_timeout(
                self.store.find_latest_active_challenge(user_id, code, channel),
                timeout,
                "find_latest_active_challenge",
            )
        except (RemoteStoreError, OperationTimeout) as e:
            logger.warning("otp_propagate_lookup_failed", user_id=user_id, error=str(e))

        if record is not None:
            try:
                await with_timeout(
                    self.store.atomic_verify_and_update_user(record.id, user_id, channel),
                    timeout,
                    "atomic_verify_and_update_user",
                )
                return
            except (RemoteStoreError, OperationTimeout) as e:
                logger.warning("otp_propagate_atomic_failed", user_id=user_id, error=str(e))

        await with_timeout(
            self.store.set_user_channel_verified(user_id, channel),
            timeout,
            "set_user_channel_verified",
        )

    @staticmethod
    def _verified(channel: Channel) -> VerifyResponse:
        return VerifyResponse(
            success=True,
            message=f"{channel.value.capitalize()} verified successfully",
            verification_complete=True,
            next_step=NEXT_STEPS[channel],
        )

    @staticmethod
    def _failure(code: OTPErrorCode) -> VerifyResponse:
        return VerifyResponse.failure(user_message(code), code.value)

    # ------------------------------------------------------------------
    # Background work
    # ------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, Any], operation: str) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)

        def _done(t: asyncio.Task) -> None:
            self._background.discard(t)
            if t.cancelled():
                return
            error = t.exception()
            if error is not None:
                logger.error("otp_background_task_failed", operation=operation, error=str(error))

        task.add_done_callback(_done)
        return task

    async def drain(self) -> None:
        """Wait for pending background side effects (shutdown and tests)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    def clear_cache(self, user_id: str, channel: Union[str, Channel]) -> bool:
        key = (user_id, parse_channel(channel))
        removed = self.cache.discard(key)
        self.inflight.discard(key)
        return removed

    def clear_all_cache(self) -> None:
        self.cache.clear()
        self.inflight.clear()
        logger.info("otp_cache_cleared")

    def get_cache_status(self, user_id: str, channel: Union[str, Channel]) -> Optional[OTPCacheEntry]:
        return self.cache.get((user_id, parse_channel(channel)))

    def can_resend_otp(self, user_id: str, channel: Union[str, Channel]) -> ResendStatus:
        return self.cache.resend_status(
            (user_id, parse_channel(channel)),
            self.settings.resend_interval_seconds * 1000,
        )

    async def reset_challenges(self, user_id: str, channel: Union[str, Channel]) -> int:
        """Drop the cached entry and best-effort delete every durable challenge for the key."""
        parsed = parse_channel(channel)
        self.clear_cache(user_id, parsed)
        try:
            return await with_timeout(
                self.store.delete_all_challenges(user_id, parsed),
                self.settings.store_cleanup_timeout,
                "delete_all_challenges",
            )
        except (RemoteStoreError, OperationTimeout) as e:
            logger.warning("otp_reset_failed", user_id=user_id, channel=parsed.value, error=str(e))
            return 0

    async def purge_expired(self) -> int:
        """Best-effort purge of long-expired durable challenges. Returns 0 if the store fails."""
        self.cache.sweep()
        try:
            return await with_timeout(
                self.store.purge_expired_challenges(self.settings.purge_grace_seconds),
                self.settings.store_cleanup_timeout,
                "purge_expired_challenges",
            )
        except (RemoteStoreError, OperationTimeout) as e:
            logger.warning("otp_purge_failed", error=str(e))
            return 0

    async def aclose(self) -> None:
        await self.drain()
        for sender in self.senders.values():
            await sender.aclose()
        await self.store.close()


def build_orchestrator(settings: Optional[OTPSettings] = None) -> OTPOrchestrator:
    """
    Wire the orchestrator from settings.

    Uses the SQL store when database_url is set and the in-memory store otherwise.
    """
    from ..senders.factory import build_email_sender, build_sms_sender
    from ..store.memory import InMemoryOTPStore

    settings = settings or OTPSettings()

    if settings.database_url:
        from ..store.database import create_engine_and_sessionmaker
        from ..store.sql import SQLAlchemyOTPStore

        engine, sessions = create_engine_and_sessionmaker(settings.database_url)
        store: OTPStore = SQLAlchemyOTPStore(sessions, engine=engine, max_attempts=settings.max_attempts)
    else:
        if settings.is_production:
            logger.warning("otp_store_in_memory", environment=settings.environment)
        store = InMemoryOTPStore(max_attempts=settings.max_attempts)

    logger.info(
        "otp_orchestrator_built",
        store=store.name,
        environment=settings.environment,
        bypass_enabled=settings.bypass_enabled,
    )
    return OTPOrchestrator(
        store=store,
        email_sender=build_email_sender(settings),
        sms_sender=build_sms_sender(settings),
        settings=settings,
    )
