"""Owner-checked Redis locks for per-key statistics aggregation."""

from __future__ import annotations

import uuid
from functools import lru_cache

import redis

from ..config import settings
from ..logging import logger

# Deletes the key only while it still holds the caller's token, so a lock
# that expired and was taken by another worker is left alone.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


@lru_cache(maxsize=1)
def get_redis() -> redis.Redis:
    return redis.Redis.from_url(settings.redis_url)


def statistics_lock_name(class_name: str, spec_name: str, encounter_id: int) -> str:
    return f"lock:statistics:{class_name}:{spec_name}:{encounter_id}"


def acquire_redis_lock(lock_name: str, timeout: int) -> str | None:
    """Take ``lock_name`` for ``timeout`` seconds.

    Returns the owner token, or None when another holder has it. When Redis
    is unreachable the caller proceeds unlocked with a fresh token.
    """
    token = uuid.uuid4().hex
    try:
        acquired = get_redis().set(lock_name, token, nx=True, ex=timeout)
    except redis.RedisError as exc:
        logger.warning("redis_lock_unavailable", lock=lock_name, error=str(exc))
        return token
    return token if acquired else None


def release_redis_lock(lock_name: str, token: str) -> bool:
    """Release ``lock_name`` if ``token`` still owns it."""
    try:
        released = get_redis().eval(_RELEASE_SCRIPT, 1, lock_name, token)
    except redis.RedisError as exc:
        logger.warning("redis_unlock_failed", lock=lock_name, error=str(exc))
        return False
    if not released:
        logger.warning("redis_lock_lost", lock=lock_name)
    return bool(released)
