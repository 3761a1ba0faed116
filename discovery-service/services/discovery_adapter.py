from collections.abc import Sequence

from msgspec import Struct

from config import DiscoveryConfig
from models.models import RANDOM, WatchTarget
from repositories.address_cache import AddressCache
from repositories.consul_client import ConsulAsyncClient
from services.watch_service import WatchLoop
from utils.selector_policy import Selector


class CatalogItem(Struct, frozen=True):
    service_name: str
    tag: str | None
    policy: str
    index: int
    addresses: tuple[str, ...]
    health: dict[str, int]  # 最近一次响应中各聚合状态的实例数


class DiscoveryAdapter:
    """服务发现：后台 watch 循环维护地址缓存，调用方按服务名/标签取地址"""

    def __init__(
        self,
        client: ConsulAsyncClient,
        cache: AddressCache,
        targets: Sequence[WatchTarget],
        default_policy: str = RANDOM,
        backoff_base: float = 0.2,
        backoff_max: float = 5.0,
    ):
        self.client = client
        self.cache = cache
        self.targets = tuple(targets)
        self.watcher = WatchLoop(
            client, cache, self.targets, backoff_base=backoff_base, backoff_max=backoff_max
        )
        policies = {
            t.cache_key: t.selection_policy for t in self.targets if t.selection_policy
        }
        self.selector = Selector(cache, policies, default_policy)

    @classmethod
    def from_config(
        cls, client: ConsulAsyncClient, cache: AddressCache, cfg: DiscoveryConfig
    ) -> "DiscoveryAdapter":
        return cls(
            client,
            cache,
            cfg.WATCHES,
            default_policy=cfg.DEFAULT_POLICY,
            backoff_base=cfg.BACKOFF_BASE,
            backoff_max=cfg.BACKOFF_MAX,
        )

    async def start(self) -> None:
        """启动后台 watch 循环"""
        self.watcher.start()

    async def stop(self) -> None:
        await self.watcher.stop()

    def choose_endpoint(self, service_name: str, tag: str | None = None) -> str:
        """选择服务的一个 "host:port"；无可用地址时抛出 AddressNotFoundError"""
        return self.selector.select(service_name, tag)

    def catalog(self) -> list[CatalogItem]:
        """当前所有 watch 目标及其缓存地址"""
        items: list[CatalogItem] = []
        for target in self.targets:
            key = target.cache_key
            entry = self.cache.get(key)
            items.append(
                CatalogItem(
                    service_name=target.service_name,
                    tag=target.tag,
                    policy=self.selector.policy_for(key),
                    index=entry.index if entry else 0,
                    addresses=entry.addresses if entry else (),
                    health=self.watcher.health_of(key),
                )
            )
        return items
