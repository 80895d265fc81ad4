import fnmatch
import pathlib
import sys
import time
import unittest
from unittest import mock

BACKEND_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from app.core.cache import UserReadCache


class SharedRedisStore:
    """Minimal stand-in for one Redis server reached by several workers."""

    def __init__(self) -> None:
        self.data: dict[str, bytes] = {}

    def client(self, *_args, **_kwargs):
        return SharedRedisClient(self)


class SharedRedisClient:
    def __init__(self, store: SharedRedisStore) -> None:
        self._data = store.data

    def ping(self):
        return True

    def get(self, key):
        return self._data.get(key)

    def setex(self, key, _ttl, value):
        self._data[key] = value

    def scan_iter(self, match="*", count=None):
        return [key for key in list(self._data) if fnmatch.fnmatchcase(key, match)]

    def delete(self, *keys):
        for key in keys:
            self._data.pop(key, None)

    def close(self):
        pass


class UserReadCacheTests(unittest.TestCase):
    def test_local_set_get_and_invalidate_user(self):
        cache = UserReadCache(redis_url=None, key_prefix="test")
        cache.set("alice", "accounts", {"accounts": []}, ttl=30)
        cache.set("bob", "accounts", {"accounts": [1]}, ttl=30)

        self.assertFalse(cache.uses_redis)
        self.assertEqual(cache.get("alice", "accounts"), {"accounts": []})

        cache.invalidate_user("alice")
        self.assertIsNone(cache.get("alice", "accounts"))
        self.assertEqual(cache.get("bob", "accounts"), {"accounts": [1]})

    def test_local_expiry(self):
        cache = UserReadCache(redis_url=None, key_prefix="test")
        cache.set("alice", "tx:*:*:*:*", 123, ttl=1)
        self.assertEqual(cache.get("alice", "tx:*:*:*:*"), 123)
        time.sleep(1.05)
        self.assertIsNone(cache.get("alice", "tx:*:*:*:*"))

    def test_unreachable_redis_falls_back_to_local(self):
        cache = UserReadCache(redis_url="redis://127.0.0.1:1/0", key_prefix="test")
        self.assertFalse(cache.uses_redis)
        cache.set("alice", "k", "v", ttl=30)
        self.assertEqual(cache.get("alice", "k"), "v")


class SharedRedisCacheTests(unittest.TestCase):
    def setUp(self):
        store = SharedRedisStore()
        patcher = mock.patch("app.core.cache.Redis.from_url", side_effect=store.client)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.worker_a = UserReadCache(redis_url="redis://cache:6379/0", key_prefix="test")
        self.worker_b = UserReadCache(redis_url="redis://cache:6379/0", key_prefix="test")

    def test_invalidation_on_one_worker_is_seen_by_another(self):
        self.assertTrue(self.worker_b.uses_redis)
        self.worker_b.set("alice", "accounts", {"balance": "1000"}, ttl=30)
        self.assertEqual(self.worker_a.get("alice", "accounts"), {"balance": "1000"})

        self.worker_a.invalidate_user("alice")

        self.assertIsNone(self.worker_b.get("alice", "accounts"))
        self.assertIsNone(self.worker_a.get("alice", "accounts"))

    def test_invalidation_keeps_other_users(self):
        self.worker_a.set("alice", "accounts", 1, ttl=30)
        self.worker_a.set("bob", "accounts", 2, ttl=30)

        self.worker_b.invalidate_user("alice")

        self.assertEqual(self.worker_b.get("bob", "accounts"), 2)

if __name__ == "__main__":
    unittest.main()
