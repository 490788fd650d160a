"""
Database Module
===============
Async engine, session factory and table definitions for the SQL store.
"""

import uuid
from datetime import datetime, timezone
from typing import Tuple

from sqlalchemy import Boolean, DateTime, Index, Integer, String
from sqlalchemy.ext.asyncio import (
    create_async_engine as sa_create_async_engine,
    AsyncSession,
    async_sessionmaker,
    AsyncEngine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
import structlog

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""
    pass


class OTPVerification(Base):
    """Row in tbl_otp_verifications."""
    __tablename__ = "tbl_otp_verifications"

    id: Mapped[str] = mapped_column(
        "tov_id", String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column("tov_user_id", String(64), nullable=False)
    code: Mapped[str] = mapped_column("tov_otp_code", String(12), nullable=False)
    channel: Mapped[str] = mapped_column("tov_otp_type", String(10), nullable=False)
    destination: Mapped[str] = mapped_column("tov_contact_info", String(255), nullable=False)
    is_verified: Mapped[bool] = mapped_column("tov_is_verified", Boolean, default=False, nullable=False)
    expires_at: Mapped[datetime] = mapped_column("tov_expires_at", DateTime(timezone=True), nullable=False)
    attempts: Mapped[int] = mapped_column("tov_attempts", Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        "tov_created_at", DateTime(timezone=True), default=_utcnow, nullable=False
    )


class UserRecord(Base):
    """Verification flags in tbl_users. Other user columns are not touched here."""
    __tablename__ = "tbl_users"

    id: Mapped[str] = mapped_column("tu_id", String(64), primary_key=True)
    email_verified: Mapped[bool] = mapped_column("tu_email_verified", Boolean, default=False, nullable=False)
    mobile_verified: Mapped[bool] = mapped_column("tu_mobile_verified", Boolean, default=False, nullable=False)
    is_verified: Mapped[bool] = mapped_column("tu_is_verified", Boolean, default=False, nullable=False)


Index(
    "idx_otp_verification_lookup",
    OTPVerification.user_id,
    OTPVerification.channel,
    OTPVerification.is_verified,
    OTPVerification.expires_at,
)
Index(
    "idx_otp_code_verification",
    OTPVerification.user_id,
    OTPVerification.code,
    OTPVerification.channel,
    OTPVerification.is_verified,
)


def create_engine_and_sessionmaker(
    database_url: str,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_pre_ping: bool = True,
    echo: bool = False,
) -> Tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """
    Create the async engine and its session factory.

    Call this once during application startup.

    Args:
        database_url: Async connection string (postgresql+asyncpg://...)
        pool_size: Connection pool size (ignored for SQLite)
        max_overflow: Max overflow connections (ignored for SQLite)
        pool_pre_ping: Enable connection health checks
        echo: Log SQL statements

    Returns:
        (engine, session factory)
    """
    engine_kwargs = {"pool_pre_ping": pool_pre_ping, "echo": echo}
    if not database_url.startswith("sqlite"):
        engine_kwargs.update(pool_size=pool_size, max_overflow=max_overflow)

    engine = sa_create_async_engine(database_url, **engine_kwargs)
    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    logger.info("Database engine initialized", dialect=engine.dialect.name)
    return engine, session_factory


async def create_tables(engine: AsyncEngine) -> None:
    """Create the OTP tables if they are missing (development and tests)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
