"""
SQL OTP Store
=============
SQLAlchemy async implementation of the durable OTP store.
"""

import logging
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Optional

from sqlalchemy import delete, select, text, update
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type, before_sleep_log
import structlog

from ..errors import ChallengeStateError, RemoteStoreError, StoreTimeoutError
from ..otp.models import Channel, OTPChallenge
from .base import OTPStore, USER_FLAG_COLUMNS
from .database import OTPVerification, UserRecord

logger = structlog.get_logger(__name__)
retry_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is written in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _store_operation(operation: str):
    """
    Retry transient driver errors, then map whatever is left to RemoteStoreError.
    """
    def decorator(func):
        retrying = retry(
            retry=retry_if_exception_type((OperationalError, InterfaceError)),
            stop=stop_after_attempt(3),
            wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
            before_sleep=before_sleep_log(retry_logger, logging.WARNING),
            reraise=True,
        )(func)

        @wraps(func)
        async def wrapper(self, *args, **kwargs):
            try:
                return await retrying(self, *args, **kwargs)
            except PoolTimeoutError as e:
                logger.error("store_pool_exhausted", operation=operation, error=str(e))
                raise StoreTimeoutError("connection pool timeout", operation=operation, details=str(e)) from e
            except SQLAlchemyError as e:
                logger.error("store_operation_failed", operation=operation, error=str(e))
                raise RemoteStoreError(type(e).__name__, operation=operation, details=str(e)) from e

        return wrapper
    return decorator


class SQLAlchemyOTPStore(OTPStore):
    """
    Durable store over tbl_otp_verifications and tbl_users.

    Example:
        engine, sessions = create_engine_and_sessionmaker(settings.database_url)
        store = SQLAlchemyOTPStore(sessions, engine=engine)
    """

    name = "sql"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: Optional[AsyncEngine] = None,
        max_attempts: int = 5,
    ):
        self._sessions = session_factory
        self._engine = engine
        self.max_attempts = max_attempts

    @staticmethod
    def _to_challenge(row: OTPVerification) -> OTPChallenge:
        return OTPChallenge(
            id=row.id,
            user_id=row.user_id,
            code=row.code,
            channel=Channel(row.channel),
            destination=row.destination,
            expires_at=_as_utc(row.expires_at),
            is_verified=row.is_verified,
            attempts=row.attempts,
            created_at=_as_utc(row.created_at),
        )

    @_store_operation("invalidate_prior_challenges")
    async def invalidate_prior_challenges(self, user_id: str, channel: Channel) -> int:
        async with self._sessions() as session:
            async with session.begin():
                result = await session.execute(
                    update(OTPVerification)
                    .where(
                        OTPVerification.user_id == user_id,
                        OTPVerification.channel == Channel(channel).value,
                        OTPVerification.is_verified.is_(False),
                    )
                    .values(is_verified=True)
                )
            return result.rowcount or 0

    @_store_operation("insert_challenge")
    async def insert_challenge(self, challenge: OTPChallenge) -> OTPChallenge:
        row = OTPVerification(
            id=challenge.id,
            user_id=challenge.user_id,
            code=challenge.code,
            channel=Channel(challenge.channel).value,
            destination=challenge.destination,
            expires_at=challenge.expires_at,
            is_verified=challenge.is_verified,
            attempts=challenge.attempts,
            created_at=challenge.created_at,
        )
        async with self._sessions() as session:
            async with session.begin():
                session.add(row)
            return self._to_challenge(row)

    @_store_operation("find_latest_active_challenge")
    async def find_latest_active_challenge(
        self,
        user_id: str,
        code: str,
        channel: Channel,
    ) -> Optional[OTPChallenge]:
        async with self._sessions() as session:
            result = await session.execute(
                select(OTPVerification)
                .where(
                    OTPVerification.user_id == user_id,
                    OTPVerification.code == code,
                    OTPVerification.channel == Channel(channel).value,
                    OTPVerification.is_verified.is_(False),
                    OTPVerification.expires_at >= _utcnow(),
                )
                .order_by(OTPVerification.created_at.desc())
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return self._to_challenge(row) if row is not None else None

    @_store_operation("increment_attempts")
    async def increment_attempts(self, user_id: str, channel: Channel) -> Optional[int]:
        async with self._sessions() as session:
            async with session.begin():
                result = await session.execute(
                    select(OTPVerification)
                    .where(
                        OTPVerification.user_id == user_id,
                        OTPVerification.channel == Channel(channel).value,
                        OTPVerification.is_verified.is_(False),
                    )
                    .order_by(OTPVerification.created_at.desc())
                    .limit(1)
                    .with_for_update()
                )
                row = result.scalar_one_or_none()
                if row is None:
                    return None
                row.attempts = row.attempts + 1
                attempts = row.attempts
            return attempts

    @_store_operation("verify_otp_and_update_user")
    async def atomic_verify_and_update_user(
        self,
        challenge_id: str,
        user_id: str,
        channel: Channel,
    ) -> bool:
        operation = "verify_otp_and_update_user"
        async with self._sessions() as session:
            async with session.begin():
                result = await session.execute(
                    select(OTPVerification)
                    .where(OTPVerification.id == challenge_id)
                    .with_for_update()
                )
                row = result.scalar_one_or_none()

                if row is None:
                    raise ChallengeStateError("OTP not found", operation=operation)
                if row.is_verified:
                    raise ChallengeStateError("OTP already used", operation=operation)
                if _as_utc(row.expires_at) < _utcnow():
                    raise ChallengeStateError("OTP expired", operation=operation)
                if row.attempts >= self.max_attempts:
                    raise ChallengeStateError("Too many attempts", operation=operation)

                row.is_verified = True
                row.attempts = row.attempts + 1
                await self._apply_user_flags(session, user_id, channel)
        return True

    @_store_operation("set_user_channel_verified")
    async def set_user_channel_verified(self, user_id: str, channel: Channel) -> None:
        async with self._sessions() as session:
            async with session.begin():
                await self._apply_user_flags(session, user_id, channel)

    @staticmethod
    async def _apply_user_flags(session: AsyncSession, user_id: str, channel: Channel) -> None:
        values = {column: True for column in USER_FLAG_COLUMNS[Channel(channel)]}
        await session.execute(
            update(UserRecord).where(UserRecord.id == user_id).values(**values)
        )

    @_store_operation("delete_challenge")
    async def delete_challenge(self, challenge_id: str) -> None:
        async with self._sessions() as session:
            async with session.begin():
                await session.execute(
                    delete(OTPVerification).where(OTPVerification.id == challenge_id)
                )

    @_store_operation("delete_all_challenges")
    async def delete_all_challenges(self, user_id: str, channel: Channel) -> int:
        async with self._sessions() as session:
            async with session.begin():
                result = await session.execute(
                    delete(OTPVerification).where(
                        OTPVerification.user_id == user_id,
                        OTPVerification.channel == Channel(channel).value,
                    )
                )
            return result.rowcount or 0

    @_store_operation("purge_expired_challenges")
    async def purge_expired_challenges(self, grace_seconds: int = 3600) -> int:
        cutoff = _utcnow() - timedelta(seconds=grace_seconds)
        async with self._sessions() as session:
            async with session.begin():
                result = await session.execute(
                    delete(OTPVerification).where(
                        OTPVerification.expires_at < cutoff,
                        OTPVerification.is_verified.is_(False),
                    )
                )
            count = result.rowcount or 0
        if count:
            logger.info("expired_challenges_purged", count=count, store=self.name)
        return count

    async def ping(self) -> bool:
        try:
            async with self._sessions() as session:
                await session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error("Database health check failed", error=str(e))
            return False

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            logger.info("Database engine closed")
