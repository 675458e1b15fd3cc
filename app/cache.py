import json
from uuid import UUID

from loguru import logger
from redis.asyncio import Redis

from app.settings import REDIS_URL, SWEEP_LOCK_TTL_SECONDS

_redis: Redis | None = None
BALANCE_TTL = 60  # 1 minute
SWEEP_LOCK_KEY = "lock:booking-sweep"

# Delete the key only while it still holds the caller's token
_RELEASE_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


def get_redis() -> Redis:
    global _redis
    if _redis is None:
        _redis = Redis.from_url(REDIS_URL, decode_responses=True)
    return _redis


def _balance_key(host_id: UUID) -> str:
    return f"host-balance:{host_id}"


async def get_balance_cache(host_id: UUID) -> dict | None:
    try:
        data = await get_redis().get(_balance_key(host_id))
        return json.loads(data) if data else None
    except Exception:
        logger.warning("Redis get failed — skipping balance cache", exc_info=True)
        return None


async def set_balance_cache(host_id: UUID, summary: dict) -> None:
    try:
        await get_redis().setex(_balance_key(host_id), BALANCE_TTL, json.dumps(summary))
    except Exception:
        logger.warning("Redis set failed — skipping balance cache", exc_info=True)


async def invalidate_balance_cache(host_id: UUID) -> None:
    try:
        await get_redis().delete(_balance_key(host_id))
    except Exception:
        logger.warning("Redis invalidate failed for balance cache", exc_info=True)


async def acquire_sweep_lock(token: str) -> bool:
    """Try to take the sweep lock. An unreachable Redis counts as acquired."""
    try:
        acquired = await get_redis().set(
            SWEEP_LOCK_KEY, token, nx=True, ex=SWEEP_LOCK_TTL_SECONDS
        )
        return bool(acquired)
    except Exception:
        logger.warning(
            "Redis unavailable — running sweep without lock", exc_info=True
        )
        return True


async def release_sweep_lock(token: str) -> None:
    try:
        release = get_redis().register_script(_RELEASE_LOCK_SCRIPT)
        await release(keys=[SWEEP_LOCK_KEY], args=[token])
    except Exception:
        logger.warning("Redis release failed for sweep lock", exc_info=True)
