import asyncio
import inspect
import threading
import time
from typing import Protocol

import httpx
from redis.asyncio import Redis

from pairwatch.config import settings
from pairwatch.utils.logging import get_logger

logger = get_logger(__name__)


class CacheClient(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def setex(self, key: str, ttl_seconds: int, value: str) -> None: ...

    async def set_if_absent(self, key: str, ttl_seconds: int, value: str) -> bool: ...

    async def pop(self, key: str) -> str | None: ...

    async def close(self) -> None: ...


class RedisTcpCache:
    def __init__(self, client: Redis):
        self.client = client

    async def get(self, key: str) -> str | None:
        return await self.client.get(key)

    async def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        await self.client.setex(key, ttl_seconds, value)

    async def set_if_absent(self, key: str, ttl_seconds: int, value: str) -> bool:
        return bool(await self.client.set(key, value, ex=ttl_seconds, nx=True))

    async def pop(self, key: str) -> str | None:
        # GETDEL is atomic: with concurrent callers exactly one gets the value.
        return await self.client.getdel(key)

    async def close(self) -> None:
        close_result = self.client.aclose()
        if inspect.isawaitable(close_result):
            await close_result


class UpstashRestCache:
    def __init__(self, rest_url: str, token: str):
        self.client = httpx.AsyncClient(
            base_url=rest_url.rstrip("/"),
            headers={"Authorization": f"Bearer {token}"},
            timeout=5.0,
        )

    async def _run(self, *command: str) -> object | None:
        response = await self.client.post("/", json=list(command))
        response.raise_for_status()
        payload = response.json()
        if isinstance(payload, dict):
            if payload.get("error"):
                raise RuntimeError(str(payload["error"]))
            return payload.get("result")
        return None

    async def ping(self) -> None:
        result = await self._run("PING")
        if str(result).upper() != "PONG":
            raise RuntimeError("Upstash REST ping failed")

    async def get(self, key: str) -> str | None:
        result = await self._run("GET", key)
        return None if result is None else str(result)

    async def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        await self._run("SETEX", key, str(ttl_seconds), value)

    async def set_if_absent(self, key: str, ttl_seconds: int, value: str) -> bool:
        result = await self._run("SET", key, value, "NX", "EX", str(ttl_seconds))
        return str(result).upper() == "OK"

    async def pop(self, key: str) -> str | None:
        result = await self._run("GETDEL", key)
        return None if result is None else str(result)

    async def close(self) -> None:
        await self.client.aclose()


class MemoryCache:
    """Single-process backend. Every operation holds one lock, so pop() is a claim."""

    def __init__(self):
        self._data: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if time.monotonic() >= expires_at:
            del self._data[key]
            return None
        return value

    async def get(self, key: str) -> str | None:
        with self._lock:
            return self._live(key)

    async def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        with self._lock:
            self._data[key] = (value, time.monotonic() + ttl_seconds)

    async def set_if_absent(self, key: str, ttl_seconds: int, value: str) -> bool:
        with self._lock:
            if self._live(key) is not None:
                return False
            self._data[key] = (value, time.monotonic() + ttl_seconds)
            return True

    async def pop(self, key: str) -> str | None:
        with self._lock:
            value = self._live(key)
            self._data.pop(key, None)
            return value

    async def close(self) -> None:
        with self._lock:
            self._data.clear()


_cache_client: CacheClient | None = None
_cache_lock = asyncio.Lock()


async def _build_redis_cache() -> RedisTcpCache:
    redis = Redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        await redis.ping()
        return RedisTcpCache(redis)
    except Exception:
        await redis.aclose()
        raise


async def _build_cache_client() -> CacheClient:
    backend = settings.CACHE_BACKEND.strip().lower()
    if backend not in {"auto", "memory", "redis", "upstash_rest"}:
        logger.warning(f"Unknown CACHE_BACKEND={backend!r}, falling back to auto")
        backend = "auto"

    if backend == "memory":
        logger.info("Cache backend: in-process memory")
        return MemoryCache()

    if backend in {"auto", "upstash_rest"}:
        if settings.UPSTASH_REDIS_REST_URL and settings.UPSTASH_REDIS_REST_TOKEN:
            upstash_cache = UpstashRestCache(
                settings.UPSTASH_REDIS_REST_URL, settings.UPSTASH_REDIS_REST_TOKEN
            )
            try:
                await upstash_cache.ping()
                logger.info("Cache backend: Upstash REST")
                return upstash_cache
            except Exception as error:
                await upstash_cache.close()
                if backend == "upstash_rest":
                    raise
                logger.warning(f"Upstash REST unavailable: {error}")
        elif backend == "upstash_rest":
            raise RuntimeError("CACHE_BACKEND=upstash_rest but Upstash credentials are missing")

    cache = await _build_redis_cache()
    logger.info("Cache backend: Redis TCP")
    return cache


async def init_cache() -> CacheClient:
    return await get_cache_client()


async def shutdown_cache() -> None:
    global _cache_client
    async with _cache_lock:
        if _cache_client is not None:
            await _cache_client.close()
            _cache_client = None


async def get_cache_client() -> CacheClient:
    global _cache_client
    if _cache_client is not None:
        return _cache_client

    async with _cache_lock:
        if _cache_client is None:
            _cache_client = await _build_cache_client()
        return _cache_client
