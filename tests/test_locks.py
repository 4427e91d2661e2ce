from __future__ import annotations

import asyncio

import pytest

from portal.infra.locks import LocalKeyedLock, RedisKeyedLock, build_sync_lock


def test_build_sync_lock_backends() -> None:
    assert isinstance(build_sync_lock("local"), LocalKeyedLock)
    assert isinstance(build_sync_lock("Redis"), RedisKeyedLock)
    with pytest.raises(ValueError):
        build_sync_lock("zookeeper")


def test_local_lock_serializes_same_key_only() -> None:
    lock = LocalKeyedLock()
    order: list[str] = []

    async def _worker(key: str, name: str) -> None:
        async with lock.hold(key):
            order.append(f"{name}:start")
            await asyncio.sleep(0.02)
            order.append(f"{name}:end")

    async def _run() -> None:
        await asyncio.gather(_worker("user-1", "a"), _worker("user-1", "b"), _worker("user-2", "c"))

    asyncio.run(_run())

    assert order.index("a:end") < order.index("b:start")
    assert order.index("c:start") < order.index("a:end")
    assert lock.is_held("user-1") is False
