"""
In-Flight Requests
==================
De-duplication table for concurrent sends on the same (user, channel) key.
"""

import asyncio
from typing import Dict, Optional

from .models import CacheKey


class InFlightRequests:
    """
    Maps a key to the task currently performing its send.

    Followers await the leader's task instead of issuing their own remote
    mutation. A task removes itself from the table when it settles, whatever
    the outcome.
    """

    def __init__(self):
        self._tasks: Dict[CacheKey, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, key: CacheKey) -> bool:
        return key in self._tasks

    def get(self, key: CacheKey) -> Optional[asyncio.Task]:
        task = self._tasks.get(key)
        if task is not None and task.done():
            self._tasks.pop(key, None)
            return None
        return task

    def track(self, key: CacheKey, task: asyncio.Task) -> asyncio.Task:
        self._tasks[key] = task
        task.add_done_callback(lambda t: self.discard(key, t))
        return task

    def discard(self, key: CacheKey, task: Optional[asyncio.Task] = None) -> None:
        """Remove the entry for key; with a task, only if it is still the tracked one."""
        if task is None or self._tasks.get(key) is task:
            self._tasks.pop(key, None)

    def clear(self) -> None:
        self._tasks.clear()
