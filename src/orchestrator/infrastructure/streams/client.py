from __future__ import annotations

import logging

from redis import Redis as SyncRedis
from redis.asyncio import Redis
from redis.exceptions import ResponseError

logger = logging.getLogger(__name__)


class StreamsClient:
    """Async Redis connection used by the API-side event consumer."""

    def __init__(self, url: str, *, socket_timeout: float = 10.0) -> None:
        self._redis = Redis.from_url(
            url,
            socket_timeout=socket_timeout,
            retry_on_timeout=True,
            decode_responses=True,
        )

    @property
    def redis(self) -> Redis:
        return self._redis

    async def ensure_consumer_group(self, *, stream: str, group: str, start_id: str = "0") -> None:
        try:
            await self._redis.xgroup_create(name=stream, groupname=group, id=start_id, mkstream=True)
            logger.info("Created Redis consumer group", extra={"stream": stream, "group": group})
        except ResponseError as exc:
            if "BUSYGROUP" not in str(exc):
                raise

    async def close(self) -> None:
        await self._redis.aclose()


class SyncStreamsClient:
    """Blocking Redis connection for Celery workers."""

    def __init__(self, url: str, *, socket_timeout: float = 10.0) -> None:
        self._redis = SyncRedis.from_url(
            url,
            socket_timeout=socket_timeout,
            retry_on_timeout=True,
            decode_responses=True,
        )

    @property
    def redis(self) -> SyncRedis:
        return self._redis
