from typing import Any, Literal

from msgspec import Struct, field

SelectionPolicy = Literal["random", "round_robin"]

RANDOM: SelectionPolicy = "random"
ROUND_ROBIN: SelectionPolicy = "round_robin"
SELECTION_POLICIES: tuple[str, ...] = (RANDOM, ROUND_ROBIN)


class CacheKey(Struct, frozen=True):
    """
    地址缓存的键：服务名 + 标签（无标签时为空串）
    结构化组合键，("ab", "c") 与 ("a", "bc") 不会冲突
    """

    service_name: str
    tag: str = ""

    def __str__(self) -> str:
        return f"{self.service_name}[{self.tag}]" if self.tag else self.service_name


class QueryOptions(Struct, frozen=True, kw_only=True):
    """
    单个 watch 目标的查询参数覆盖项（为空的字段沿用全局配置）
    """

    datacenter: str | None = None
    namespace: str | None = None
    allow_stale: bool = False
    require_consistent: bool = False
    use_cache: bool = False
    near: str | None = None
    node_meta: dict[str, str] = {}
    filter: str | None = None
    token: str | None = None

    def to_params(self) -> dict[str, str | list[str]]:
        params: dict[str, str | list[str]] = {}
        if self.datacenter:
            params["dc"] = self.datacenter
        if self.namespace:
            params["ns"] = self.namespace
        if self.allow_stale:
            params["stale"] = ""
        if self.require_consistent:
            params["consistent"] = ""
        if self.use_cache:
            params["cached"] = ""
        if self.near:
            params["near"] = self.near
        if self.node_meta:
            params["node-meta"] = [f"{k}:{v}" for k, v in self.node_meta.items()]
        if self.filter:
            params["filter"] = self.filter
        return params


class WatchTarget(Struct, frozen=True, kw_only=True):
    """
    需要持续监听的服务；启动时读取一次，之后只读
    """

    service_name: str
    tag: str | None = None
    passing_only: bool | None = None
    selection_policy: str | None = None  # random / round_robin，为空使用默认策略
    query: QueryOptions | None = None

    @property
    def cache_key(self) -> CacheKey:
        return CacheKey(self.service_name, self.tag or "")


class AddressEntry(Struct, frozen=True):
    """
    某个 CacheKey 最近一次成功观测到的健康地址集合
    整体替换，从不原地修改
    """

    index: int
    addresses: tuple[str, ...]  # "host:port"，保持注册中心返回的顺序


# ---- 以下为注册中心 JSON 结构的映射（字段名为 PascalCase，未知字段忽略） ----


class Node(Struct, frozen=True, rename="pascal"):
    id: str | None = field(default=None, name="ID")
    node: str | None = None
    address: str | None = None
    datacenter: str | None = None
    tagged_addresses: dict[str, str] | None = None
    meta: dict[str, str] | None = None
    create_index: int | None = None
    modify_index: int | None = None


class ServiceAddress(Struct, frozen=True, rename="pascal"):
    address: str | None = None
    port: int | None = None


class AgentWeights(Struct, frozen=True, rename="pascal"):
    passing: int | None = None
    warning: int | None = None


class AgentService(Struct, frozen=True, rename="pascal"):
    """注册中心中的服务实例描述"""

    kind: str | None = None
    id: str | None = field(default=None, name="ID")
    service: str | None = None
    tags: list[str] | None = None
    meta: dict[str, str] | None = None
    port: int | None = None
    address: str | None = None
    tagged_addresses: dict[str, Any] | None = None
    weights: AgentWeights | None = None
    enable_tag_override: bool | None = None
    create_index: int | None = None
    modify_index: int | None = None
    content_hash: str | None = None
    proxy: dict[str, Any] | None = None
    connect: dict[str, Any] | None = None
    namespace: str | None = None
    datacenter: str | None = None


class HealthCheck(Struct, frozen=True, rename="pascal"):
    node: str | None = None
    check_id: str | None = field(default=None, name="CheckID")
    name: str | None = None
    status: str | None = None
    notes: str | None = None
    output: str | None = None
    service_id: str | None = field(default=None, name="ServiceID")
    service_name: str | None = None
    service_tags: list[str] | None = None
    type: str | None = None
    namespace: str | None = None
    definition: dict[str, Any] | None = None
    create_index: int | None = None
    modify_index: int | None = None


class AgentCheck(Struct, frozen=True, rename="pascal"):
    """本地 agent 上注册的检查"""

    node: str | None = None
    check_id: str | None = field(default=None, name="CheckID")
    name: str | None = None
    status: str | None = None
    notes: str | None = None
    output: str | None = None
    service_id: str | None = field(default=None, name="ServiceID")
    service_name: str | None = None
    type: str | None = None
    definition: dict[str, Any] | None = None
    namespace: str | None = None


class ServiceEntry(Struct, frozen=True, rename="pascal"):
    """/health/service 接口返回的单条记录"""

    node: Node | None = None
    service: AgentService | None = None
    checks: list[HealthCheck] | None = None

    def address(self) -> str | None:
        """服务地址为空时回退到节点地址"""
        if self.service and self.service.address:
            return self.service.address
        if self.node and self.node.address:
            return self.node.address
        return None

    def modify_index(self) -> int | None:
        return self.service.modify_index if self.service else None


class HealthResult(Struct, frozen=True):
    """一次阻塞查询的结果：实例列表 + X-Consul-Index"""

    index: int
    entries: list[ServiceEntry]


class AgentServiceCheck(Struct, frozen=True, kw_only=True, rename="pascal", omit_defaults=True):
    """注册服务时附带的检查定义"""

    check_id: str | None = field(default=None, name="CheckID")
    name: str | None = None
    args: list[str] | None = None
    interval: str | None = None
    timeout: str | None = None
    ttl: str | None = field(default=None, name="TTL")
    http: str | None = field(default=None, name="HTTP")
    header: dict[str, list[str]] | None = None
    method: str | None = None
    body: str | None = None
    tcp: str | None = field(default=None, name="TCP")
    grpc: str | None = field(default=None, name="GRPC")
    grpc_use_tls: bool | None = field(default=None, name="GRPCUseTLS")
    status: str | None = None
    notes: str | None = None
    tls_server_name: str | None = field(default=None, name="TLSServerName")
    tls_skip_verify: bool | None = field(default=None, name="TLSSkipVerify")
    success_before_passing: int | None = None
    failures_before_critical: int | None = None
    deregister_critical_service_after: str | None = None


class AgentServiceRegistration(Struct, frozen=True, kw_only=True, rename="pascal", omit_defaults=True):
    """PUT /agent/service/register 的请求体"""

    id: str | None = field(default=None, name="ID")
    name: str
    kind: str | None = None
    tags: list[str] | None = None
    port: int | None = None
    address: str | None = None
    tagged_addresses: dict[str, ServiceAddress] | None = None
    enable_tag_override: bool | None = None
    meta: dict[str, str] | None = None
    weights: AgentWeights | None = None
    check: AgentServiceCheck | None = None
    checks: list[AgentServiceCheck] | None = None
    proxy: dict[str, Any] | None = None
    connect: dict[str, Any] | None = None

    @property
    def service_id(self) -> str:
        return self.id or self.name
