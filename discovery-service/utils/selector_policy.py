import random
import threading
from collections.abc import Sequence

from models.models import RANDOM, ROUND_ROBIN, CacheKey
from repositories.address_cache import AddressCache


class AddressNotFoundError(LookupError):
    """缓存中没有该服务的可用地址（从未轮询成功或列表为空）"""

    def __init__(self, key: CacheKey):
        super().__init__(f"no address available for {key}")
        self.key = key


def pick_random(addresses: Sequence[str]) -> str | None:
    """均匀随机选择地址"""
    if not addresses:
        return None
    return addresses[random.randrange(len(addresses))]


def pick_round_robin(addresses: Sequence[str], counter: int = 0) -> str | None:
    """轮询选择地址"""
    if not addresses:
        return None
    return addresses[counter % len(addresses)]


class RoundRobinCursor:
    """按 CacheKey 维护的轮询游标；加锁自增，并发调用者各自拿到不同的步进"""

    def __init__(self):
        self._counters: dict[CacheKey, int] = {}
        self._lock = threading.Lock()

    def advance(self, key: CacheKey) -> int:
        with self._lock:
            n = self._counters.get(key, 0)
            self._counters[key] = n + 1
            return n


class Selector:
    """
    从地址缓存中为服务挑选一个地址
    在任意调用方的热路径上执行，只读缓存快照，不等待 watch 循环
    """

    def __init__(
        self,
        cache: AddressCache,
        policies: dict[CacheKey, str] | None = None,
        default_policy: str = RANDOM,
    ):
        self._cache = cache
        self._policies = dict(policies or {})
        self._default_policy = default_policy
        self._cursor = RoundRobinCursor()

    def policy_for(self, key: CacheKey) -> str:
        return self._policies.get(key, self._default_policy)

    def select(self, service_name: str, tag: str | None = None) -> str:
        """返回一个 "host:port"；没有可用地址时抛出 AddressNotFoundError"""
        key = CacheKey(service_name, tag or "")
        entry = self._cache.get(key)
        addresses = entry.addresses if entry is not None else ()

        if self.policy_for(key) == ROUND_ROBIN and addresses:
            chosen = pick_round_robin(addresses, self._cursor.advance(key))
        else:
            chosen = pick_random(addresses)
        if chosen is None:
            raise AddressNotFoundError(key)
        return chosen
