"""
Bounded Awaits
==============
Deadline wrapper for store and provider calls.
"""

import asyncio
from typing import Awaitable, TypeVar

from .errors import OperationTimeout

T = TypeVar("T")


async def with_timeout(awaitable: Awaitable[T], timeout: float, operation: str) -> T:
    """
    Await with a deadline.

    Args:
        awaitable: Coroutine or future to await
        timeout: Deadline in seconds
        operation: Name used in the timeout message

    Returns:
        Result of the awaitable

    Raises:
        OperationTimeout: If the deadline passes first
    """
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError:
        raise OperationTimeout(operation, timeout) from None
