from __future__ import annotations

import asyncio

import asyncpg

_pool_lock = asyncio.Lock()
_pool: asyncpg.Pool | None = None


async def get_pool(dsn: str, *, min_size: int = 1, max_size: int = 10) -> asyncpg.Pool:
    global _pool
    if _pool is not None:
        return _pool
    async with _pool_lock:
        if _pool is None:
            _pool = await asyncpg.create_pool(dsn=dsn, min_size=min_size, max_size=max_size)
        return _pool


async def close_pool() -> None:
    global _pool
    async with _pool_lock:
        if _pool is not None:
            await _pool.close()
            _pool = None
