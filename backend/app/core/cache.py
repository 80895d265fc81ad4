import pickle
import threading
import time
from typing import Any

from redis import Redis
from redis.exceptions import RedisError


class UserReadCache:
    """Short-lived cache for per-user read endpoints (account and transaction lists).

    Entries are grouped under the owning user so a single mutation can drop
    everything that user might see. Redis is the source of truth when
    reachable, so an invalidation on one worker is seen by all of them. The
    in-process dict is only read when Redis is not configured or a Redis call
    fails.
    """

    def __init__(self, redis_url: str | None = None, key_prefix: str = "wallet") -> None:
        self._local: dict[str, dict[str, tuple[float, Any]]] = {}
        self._lock = threading.Lock()
        self._key_prefix = key_prefix
        self._redis: Redis | None = None
        if redis_url:
            try:
                client = Redis.from_url(redis_url, decode_responses=False)
                client.ping()
                self._redis = client
            except (RedisError, ValueError):
                self._redis = None

    @property
    def uses_redis(self) -> bool:
        return self._redis is not None

    def _redis_key(self, user_id: str, key: str) -> str:
        return f"{self._key_prefix}:reads:{user_id}:{key}"

    def get(self, user_id: str, key: str) -> Any | None:
        if self._redis is not None:
            try:
                raw = self._redis.get(self._redis_key(user_id, key))
                if raw is None:
                    return None
                return pickle.loads(raw)
            except (RedisError, pickle.PickleError, EOFError):
                pass

        with self._lock:
            entries = self._local.get(user_id)
            if not entries or key not in entries:
                return None
            expires_at, value = entries[key]
            if time.monotonic() > expires_at:
                entries.pop(key, None)
                if not entries:
                    self._local.pop(user_id, None)
                return None
            return value

    def set(self, user_id: str, key: str, value: Any, ttl: int) -> None:
        ttl = max(1, int(ttl))
        if self._redis is not None:
            try:
                self._redis.setex(
                    self._redis_key(user_id, key),
                    ttl,
                    pickle.dumps(value, protocol=pickle.HIGHEST_PROTOCOL),
                )
            except (RedisError, pickle.PickleError, TypeError):
                pass

        with self._lock:
            self._local.setdefault(user_id, {})[key] = (time.monotonic() + ttl, value)

    def invalidate_user(self, user_id: str) -> None:
        if self._redis is not None:
            try:
                pattern = self._redis_key(user_id, "*")
                for stale_key in self._redis.scan_iter(match=pattern, count=200):
                    self._redis.delete(stale_key)
            except RedisError:
                pass

        with self._lock:
            self._local.pop(user_id, None)

    def close(self) -> None:
        if self._redis is not None:
            try:
                self._redis.close()
            except RedisError:
                pass
            self._redis = None
