# checkout/services/lock_service.py
import math
import threading
import time

import redis

from checkout.utils.retry import redis_retry
from checkout.utils.settings import REDIS_URL
from checkout.utils.logging import get_logger

logger = get_logger(__name__)

#compare-and-delete in one atomic step: only the holder may release
_RELEASE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
else
    return 0
end
"""


def _submit_key(user_id: str) -> str:
    return f"checkout:{user_id}:submit"


def _cooldown_key(order_id: str) -> str:
    return f"order:{order_id}:payment-cooldown"


def _settled_key(order_id: str) -> str:
    return f"order:{order_id}:settled"


class LockService:
    """
    -submit lock per user (one checkout submission in flight)
    -payment resource cooldown per order
    -settlement marker per order (exactly once)
    """

    def __init__(self, url: str | None = None, client: redis.Redis | None = None):
        self.redis = client or redis.Redis.from_url(
            url or REDIS_URL,
            decode_responses=True,
        )

    @redis_retry()
    def acquire_submit_lock(self, user_id: str, token: str, ttl: int) -> bool:
        key = _submit_key(user_id)
        logger.info(f"Acquire lock {key}")
        return bool(self.redis.set(name=key, value=token, nx=True, ex=ttl))

    @redis_retry()
    def release_submit_lock(self, user_id: str, token: str) -> bool:
        key = _submit_key(user_id)
        logger.info(f"Release lock {key}")
        return bool(self.redis.eval(_RELEASE_LUA, 1, key, token))

    @redis_retry()
    def start_cooldown(self, order_id: str, seconds: int) -> None:
        self.redis.set(name=_cooldown_key(order_id), value="1", ex=seconds)

    @redis_retry()
    def cooldown_remaining(self, order_id: str) -> int:
        #TTL is -2 for a missing key, -1 without expiry
        ttl = self.redis.ttl(_cooldown_key(order_id))
        return max(int(ttl or 0), 0)

    @redis_retry()
    def claim_settlement(self, order_id: str, ttl: int) -> bool:
        return bool(self.redis.set(name=_settled_key(order_id), value="1", nx=True, ex=ttl))

    @redis_retry()
    def release_settlement(self, order_id: str) -> None:
        self.redis.delete(_settled_key(order_id))


class LocalLockService:
    """In-process LockService for a single worker and for tests."""

    def __init__(self, clock=time.monotonic):
        self.clock = clock
        self._keys: dict[str, tuple[str, float]] = {}
        self._mutex = threading.Lock()

    def _live(self, key: str) -> tuple[str, float] | None:
        entry = self._keys.get(key)
        if entry and entry[1] <= self.clock():
            del self._keys[key]
            return None
        return entry

    def _set_nx(self, key: str, value: str, ttl: float) -> bool:
        with self._mutex:
            if self._live(key):
                return False
            self._keys[key] = (value, self.clock() + ttl)
            return True

    def acquire_submit_lock(self, user_id: str, token: str, ttl: int) -> bool:
        return self._set_nx(_submit_key(user_id), token, ttl)

    def release_submit_lock(self, user_id: str, token: str) -> bool:
        key = _submit_key(user_id)
        with self._mutex:
            entry = self._live(key)
            if entry and entry[0] == token:
                del self._keys[key]
                return True
            return False

    def start_cooldown(self, order_id: str, seconds: int) -> None:
        with self._mutex:
            self._keys[_cooldown_key(order_id)] = ("1", self.clock() + seconds)

    def cooldown_remaining(self, order_id: str) -> int:
        with self._mutex:
            entry = self._live(_cooldown_key(order_id))
            if not entry:
                return 0
            return max(math.ceil(entry[1] - self.clock()), 0)

    def claim_settlement(self, order_id: str, ttl: int) -> bool:
        return self._set_nx(_settled_key(order_id), "1", ttl)

    def release_settlement(self, order_id: str) -> None:
        with self._mutex:
            self._keys.pop(_settled_key(order_id), None)
