import asyncio
import contextlib
import logging
from collections.abc import Iterable, Sequence

from msgspec import Struct

from models.health import aggregated_status
from models.models import AddressEntry, CacheKey, HealthResult, ServiceEntry, WatchTarget
from repositories.address_cache import AddressCache
from repositories.consul_client import ConsulAsyncClient, ConsulError
from utils.backoff import Backoff

logger = logging.getLogger(__name__)


class RoundResult(Struct):
    """一轮轮询的结果汇总（按完成顺序记录）"""

    committed: list[CacheKey] = []
    unchanged: list[CacheKey] = []
    empty: list[CacheKey] = []
    failed: list[CacheKey] = []


def extract_addresses(entries: Iterable[ServiceEntry]) -> list[str]:
    """按响应顺序提取 "host:port"，跳过缺少地址或端口的记录"""
    out: list[str] = []
    for entry in entries:
        host = entry.address()
        port = entry.service.port if entry.service else None
        if not host or not port or port <= 0:
            continue
        out.append(f"{host}:{port}")
    return out


def health_summary(entries: Iterable[ServiceEntry]) -> dict[str, int]:
    """按实例聚合检查状态计数，如 {"passing": 2, "critical": 1}；状态未知记为 "unknown" """
    summary: dict[str, int] = {}
    for entry in entries:
        status = aggregated_status(entry.checks or ()) or "unknown"
        summary[status] = summary.get(status, 0) + 1
    return summary


def build_entry(result: HealthResult, previous_index: int) -> AddressEntry | None:
    """
    由一次查询结果构造新的缓存条目；没有可用地址时返回 None
    index 取各记录 ModifyIndex 与响应索引中的最大值，不低于 previous_index
    """
    addresses = extract_addresses(result.entries)
    if not addresses:
        return None
    indices = [i for e in result.entries if (i := e.modify_index()) is not None]
    if result.index > 0:
        indices.append(result.index)
    index = max(indices, default=previous_index)
    return AddressEntry(index=max(index, previous_index), addresses=tuple(addresses))


class WatchLoop:
    """
    对每个 watch 目标并发发起阻塞查询，结果按完成顺序提交到地址缓存，循环往复
    单个目标失败只影响自身：记录日志、指数退避，下一轮自然重试
    """

    def __init__(
        self,
        client: ConsulAsyncClient,
        cache: AddressCache,
        targets: Sequence[WatchTarget],
        backoff_base: float = 0.2,
        backoff_max: float = 5.0,
        backoff_jitter: float = 0.2,
    ):
        self.client = client
        self.cache = cache
        self.targets = tuple(targets)
        self.rounds = 0
        self._backoffs = {
            t.cache_key: Backoff(backoff_base, backoff_max, backoff_jitter)
            for t in self.targets
        }
        # 每个目标最近一次响应的 X-Consul-Index，用作阻塞游标；存在时优先于缓存索引
        self._cursors: dict[CacheKey, int] = {}
        # 索引回退后尚未提交新条目的目标，下一次提交不以旧索引为下限
        self._reset_keys: set[CacheKey] = set()
        self._health: dict[CacheKey, dict[str, int]] = {}
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None

    def backoff_for(self, key: CacheKey) -> Backoff:
        return self._backoffs[key]

    def health_of(self, key: CacheKey) -> dict[str, int]:
        """最近一次响应中各实例的聚合健康状态计数"""
        return dict(self._health.get(key, {}))

    def poll_index(self, key: CacheKey) -> int:
        if key in self._cursors:
            return self._cursors[key]
        return self.cache.index_of(key)

    async def run_round(self) -> RoundResult:
        """执行一轮：所有目标并发轮询，等待全部结束"""
        result = RoundResult()
        await asyncio.gather(*(self._watch_once(t, result) for t in self.targets))
        self.rounds += 1
        return result

    async def _watch_once(self, target: WatchTarget, result: RoundResult) -> None:
        key = target.cache_key
        backoff = self._backoffs[key]
        delay = backoff.delay()
        if delay > 0 and await self._sleep(delay):
            return

        index = self.poll_index(key)
        try:
            health = await self.client.health_service(target, index)
        except ConsulError as e:
            retry_in = backoff.record_failure()
            logger.warning(
                "poll failed key=%s failures=%d retry_in=%.2fs: %s",
                key,
                backoff.failures,
                retry_in,
                e,
            )
            result.failed.append(key)
            return
        except Exception:
            backoff.record_failure()
            logger.exception("unexpected error while polling key=%s", key)
            result.failed.append(key)
            return

        backoff.record_success()
        self._commit(key, index, health, result)

    def _commit(
        self, key: CacheKey, poll_index: int, health: HealthResult, result: RoundResult
    ) -> None:
        previous = self.cache.get(key)
        reset = 0 < health.index < poll_index
        if reset:
            # 注册中心索引回退（例如重建了数据），放弃旧游标
            logger.warning(
                "index went backwards key=%s %d -> %d, resetting watch",
                key,
                poll_index,
                health.index,
            )
            self._cursors[key] = 0
            self._reset_keys.add(key)
        elif health.index > 0:
            self._cursors[key] = health.index

        self._health[key] = health_summary(health.entries)

        stale = key in self._reset_keys
        floor = 0 if stale or previous is None else previous.index
        entry = build_entry(health, floor)
        if entry is None:
            # 空结果不覆盖上一次的有效地址
            logger.debug("no usable instances key=%s, keeping last known entry", key)
            result.empty.append(key)
            return
        if entry == previous:
            result.unchanged.append(key)
            return

        self.cache.put(key, entry)
        self._reset_keys.discard(key)
        result.committed.append(key)
        logger.info(
            "addresses updated key=%s index=%d count=%d",
            key,
            entry.index,
            len(entry.addresses),
        )

    async def _sleep(self, delay: float) -> bool:
        """可被 stop 打断的等待；返回 True 表示已停止"""
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._stop.wait(), timeout=delay)
        return self._stop.is_set()

    async def run(self) -> None:
        """循环执行直到 stop 被调用"""
        if not self.targets:
            logger.info("no watch targets configured")
            await self._stop.wait()
            return
        logger.info("watch loop started targets=%d", len(self.targets))
        while not self._stop.is_set():
            await self.run_round()
        logger.info("watch loop stopped after %d rounds", self.rounds)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._stop.clear()
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        """设置停止信号并取消进行中的查询"""
        self._stop.set()
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
