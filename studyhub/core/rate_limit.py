from __future__ import annotations

import logging
import threading
from time import monotonic
from typing import Dict, Tuple

import redis

logger = logging.getLogger("studyhub")


class RateLimiter:
    """Fixed window rate limiter per client, shared through Redis when one is configured."""

    def __init__(self, limit: int, window_seconds: int = 60, redis_url: str = "") -> None:
        self.limit = max(limit, 1)
        self.window_seconds = window_seconds
        self._redis_client = self._connect(redis_url)
        self._clients: Dict[str, Tuple[int, float]] = {}
        self._lock = threading.Lock()

    @property
    def use_redis(self) -> bool:
        return self._redis_client is not None

    def _connect(self, redis_url: str):
        if not redis_url:
            return None
        try:
            client = redis.from_url(redis_url)
            client.ping()
            return client
        except redis.RedisError as e:
            logger.warning("event=rate_limit_redis_unavailable error=%s", str(e))
            return None

    def hit(self, key: str) -> Tuple[bool, int]:
        """
        Register a hit for the given key.
        Returns (allowed, retry_after_seconds).
        """
        if self.use_redis:
            try:
                return self._hit_redis(key)
            except redis.RedisError as e:
                logger.warning("event=rate_limit_redis_error error=%s", str(e))
        return self._hit_memory(key)

    def _hit_redis(self, key: str) -> Tuple[bool, int]:
        redis_key = f"rate_limit:{key}"
        pipe = self._redis_client.pipeline()
        pipe.incr(redis_key)
        pipe.expire(redis_key, self.window_seconds, nx=True)
        pipe.ttl(redis_key)
        count, _, ttl = pipe.execute()

        retry_after = ttl if ttl and ttl > 0 else self.window_seconds
        if count > self.limit:
            return False, retry_after
        return True, retry_after

    def _hit_memory(self, key: str) -> Tuple[bool, int]:
        now = monotonic()
        with self._lock:
            self._prune(now)
            count, reset_at = self._clients.get(key, (0, now + self.window_seconds))
            if now > reset_at:
                count = 0
                reset_at = now + self.window_seconds
            if count >= self.limit:
                retry_after = max(0, int(reset_at - now))
                return False, retry_after or 1

            self._clients[key] = (count + 1, reset_at)
            retry_after = max(0, int(reset_at - now))
            return True, retry_after

    def _prune(self, now: float) -> None:
        expired = [client for client, (_, reset_at) in self._clients.items() if now > reset_at]
        for client in expired:
            del self._clients[client]
