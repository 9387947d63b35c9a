import redis.asyncio as redis
from app.core.config import REDIS_URL


async def create_redis() -> redis.Redis:
    return redis.from_url(
        REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        health_check_interval=30,
        retry_on_timeout=True,
        socket_connect_timeout=10,
        socket_timeout=None,
        socket_keepalive=True
    )


async def claim_once(r: redis.Redis, key: str, ttl_seconds: int) -> bool:
    """SET NX: True for the first caller, False while the key is alive."""
    return bool(await r.set(key, "1", nx=True, ex=ttl_seconds))


async def forget(r: redis.Redis, key: str) -> None:
    await r.delete(key)
