from uuid import uuid4

from loguru import logger
from redis.asyncio import Redis

from app.settings import REDIS_URL

LOCK_PREFIX = "marketplace:job-lock:"


def redis_from_url(url: str = REDIS_URL) -> Redis:
    return Redis.from_url(url, decode_responses=True)


class RedisJobLock:
    """
    Cross-instance mutex for periodic jobs: ``SET key token NX EX ttl``.
    ``acquire`` returns None when Redis itself is unreachable so the caller
    can decide whether to run unlocked.
    """

    def __init__(self, redis: Redis, ttl_seconds: int = 600) -> None:
        self.redis = redis
        self.ttl_seconds = ttl_seconds
        self._tokens: dict[str, str] = {}

    @staticmethod
    def _key(name: str) -> str:
        return f"{LOCK_PREFIX}{name}"

    async def acquire(self, name: str) -> bool | None:
        token = uuid4().hex
        try:
            acquired = await self.redis.set(
                self._key(name), token, nx=True, ex=self.ttl_seconds
            )
        except Exception:
            logger.opt(exception=True).warning(
                "Redis lock acquire failed for job {}", name
            )
            return None
        if acquired:
            self._tokens[name] = token
            return True
        return False

    async def release(self, name: str) -> None:
        token = self._tokens.pop(name, None)
        if token is None:
            return
        try:
            # Only delete the key while it still holds our token
            if await self.redis.get(self._key(name)) == token:
                await self.redis.delete(self._key(name))
        except Exception:
            logger.opt(exception=True).warning(
                "Redis lock release failed for job {}", name
            )
