"""
Cache invalidation broadcast.

The engine invalidates its own cache first, then publishes the org id so
other worker processes can do the same. ``NullNotifier`` is enough for a
single process; ``RedisNotifier`` fans out over Redis pub/sub.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import uuid
from typing import Optional

import redis.asyncio as redis
import structlog
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from slotguard.core.metrics import MetricsCollector

from .cache import ResolutionCache

log = structlog.get_logger()


class NullNotifier:
    async def publish(self, org_id: Optional[uuid.UUID]) -> None:
        return None


class RedisNotifier:
    """Publishes invalidations on a channel and applies those of other processes."""

    def __init__(
        self,
        client: redis.Redis,
        channel: str,
        *,
        origin: str | None = None,
        metrics: MetricsCollector | None = None,
        retry_delay: float = 0.5,
        max_retry_delay: float = 30.0,
    ):
        self._client = client
        self._channel = channel
        self.origin = origin or uuid.uuid4().hex
        self._metrics = metrics or MetricsCollector()
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self.subscribed = False

    async def publish(self, org_id: Optional[uuid.UUID]) -> None:
        payload = json.dumps({"org_id": str(org_id) if org_id else None, "origin": self.origin})
        await self._client.publish(self._channel, payload)

    def apply(self, cache: ResolutionCache, data: str) -> bool:
        """Apply one received message to *cache*. Returns False for our own or bad messages."""
        try:
            payload = json.loads(data)
            if not isinstance(payload, dict):
                raise TypeError("invalidation message must be an object")
            org_id = uuid.UUID(payload["org_id"]) if payload.get("org_id") else None
        except (ValueError, KeyError, TypeError):
            log.warning("access.invalidation_message_invalid", data=data)
            return False
        if payload.get("origin") == self.origin:
            return False
        cache.invalidate(org_id)
        return True

    async def listen(self, cache: ResolutionCache) -> None:
        """Subscribe and apply invalidations until cancelled.

        A dropped connection is logged, the whole cache is expired (messages
        may have been missed) and the subscription is retried with backoff.
        """
        delay = self.retry_delay
        while True:
            self.subscribed = False
            try:
                await self._listen_once(cache)
                return
            except (RedisConnectionError, RedisTimeoutError) as exc:
                if self.subscribed:
                    delay = self.retry_delay
                self._metrics.inc("invalidation_listener_failures_total")
                log.warning(
                    "access.invalidation_listener_failed",
                    channel=self._channel,
                    error=repr(exc),
                    retry_in=delay,
                )
                cache.invalidate()
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.max_retry_delay)

    async def _listen_once(self, cache: ResolutionCache) -> None:
        pubsub = self._client.pubsub()
        try:
            await pubsub.subscribe(self._channel)
            self.subscribed = True
            log.info("access.invalidation_listener_started", channel=self._channel)
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                self.apply(cache, message["data"])
        finally:
            with contextlib.suppress(RedisError):
                await pubsub.unsubscribe(self._channel)
                await pubsub.aclose()
