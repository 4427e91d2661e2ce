from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Protocol

from portal.infra.redis_state import get_async_redis

SYNC_LOCK_BACKEND = os.getenv("SYNC_LOCK_BACKEND", "local")
SYNC_LOCK_TIMEOUT_SECONDS = float(os.getenv("SYNC_LOCK_TIMEOUT_SECONDS", "60"))


class KeyedLock(Protocol):
    def hold(self, key: str) -> AbstractAsyncContextManager[None]: ...


class LocalKeyedLock:
    """One asyncio.Lock per key, dropped once nobody waits on it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    def is_held(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                self._waiters.pop(key, None)
                self._locks.pop(key, None)


class RedisKeyedLock:
    """Cross-process lock for deployments running several workers."""

    def __init__(self, prefix: str = "portal:sync-lock", timeout: float = SYNC_LOCK_TIMEOUT_SECONDS) -> None:
        self._prefix = prefix
        self._timeout = timeout

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = get_async_redis().lock(f"{self._prefix}:{key}", timeout=self._timeout)
        async with lock:
            yield


def build_sync_lock(backend: str | None = None) -> LocalKeyedLock | RedisKeyedLock:
    selected = (backend or SYNC_LOCK_BACKEND).lower()
    if selected == "redis":
        return RedisKeyedLock()
    if selected == "local":
        return LocalKeyedLock()
    raise ValueError(f"unknown sync lock backend: {selected}")
