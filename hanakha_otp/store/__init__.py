"""
OTP Stores
==========
Durable storage for OTP challenges and user verification flags.
"""

from .base import OTPStore, USER_FLAG_COLUMNS
from .memory import InMemoryOTPStore
from .sql import SQLAlchemyOTPStore
from .database import (
    Base,
    OTPVerification,
    UserRecord,
    create_engine_and_sessionmaker,
    create_tables,
)

__all__ = [
    "OTPStore",
    "USER_FLAG_COLUMNS",
    "InMemoryOTPStore",
    "SQLAlchemyOTPStore",
    "Base",
    "OTPVerification",
    "UserRecord",
    "create_engine_and_sessionmaker",
    "create_tables",
]
