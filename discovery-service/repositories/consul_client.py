import logging
from typing import Any, TypeVar
from urllib.parse import quote

import httpx
from msgspec import DecodeError, json

from config import ConsulConfig
from models.models import (
    AgentCheck,
    AgentService,
    AgentServiceRegistration,
    HealthResult,
    QueryOptions,
    ServiceEntry,
    WatchTarget,
)
from utils.durations import parse_duration

logger = logging.getLogger(__name__)

T = TypeVar("T")

# 请求未携带 wait 时，注册中心对阻塞查询的默认上限
DEFAULT_MAX_WAIT = 300.0
INDEX_HEADER = "X-Consul-Index"
TOKEN_HEADER = "X-Consul-Token"


class ConsulError(RuntimeError):
    """与注册中心交互失败的基类"""


class ConsulConnectionError(ConsulError):
    """网络错误或超时"""


class ConsulStatusError(ConsulError):
    """注册中心返回非 2xx 状态码"""

    def __init__(self, method: str, path: str, status: int, body: str):
        super().__init__(f"{method} {path} -> {status}: {body[:200]}")
        self.status = status
        self.body = body


class ConsulDecodeError(ConsulError):
    """响应体无法解析"""


def parse_index(raw: str | None) -> int:
    """解析 X-Consul-Index 头；缺失或非数字时返回 0"""
    if raw is None or not raw.strip().isdigit():
        return 0
    return int(raw.strip())


def blocking_timeout(wait: float | None, margin: float) -> float:
    """客户端超时：wait + 注册中心附加的最多 wait/16 抖动 + 余量"""
    wait = DEFAULT_MAX_WAIT if wait is None else wait
    return wait + wait / 16 + margin


class ConsulAsyncClient:
    """基于 httpx 的异步 Consul HTTP 客户端

    仅实现本项目需要的接口：
      - connect / close
      - health_service（阻塞查询）
      - service_register / service_deregister
      - agent_self / node_name / agent_services / agent_checks

    transport 仅用于测试注入（httpx.MockTransport）。
    """

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._cfg: ConsulConfig | None = None
        self._node_name: str | None = None
        self._wait_s: float = 5.0

    async def connect(self, cfg: ConsulConfig) -> None:
        """创建 HTTP 连接池"""
        self._cfg = cfg
        headers = {TOKEN_HEADER: cfg.TOKEN} if cfg.TOKEN else {}
        self._client = httpx.AsyncClient(
            base_url=cfg.ADDRESS.rstrip("/"),
            headers=headers,
            verify=cfg.VERIFY_TLS,
            transport=self._transport,
            timeout=httpx.Timeout(10.0),
        )
        self._wait_s = parse_duration(cfg.WAIT_TIME)
        logger.info("consul client ready address=%s", cfg.ADDRESS)

    async def close(self) -> None:
        """关闭连接，释放资源。"""
        if self._client is not None:
            await self._client.aclose()
        self._client = None
        self._node_name = None

    @property
    def connected(self) -> bool:
        return self._client is not None

    def _query_params(self, query: QueryOptions | None) -> dict[str, Any]:
        assert self._cfg, "consul client not connected"
        params: dict[str, Any] = {}
        if self._cfg.DATACENTER:
            params["dc"] = self._cfg.DATACENTER
        if self._cfg.NAMESPACE:
            params["ns"] = self._cfg.NAMESPACE
        if query is not None:
            params.update(query.to_params())
        return params

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        content: bytes | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        assert self._client, "consul client not connected"
        kwargs: dict[str, Any] = {"params": params, "headers": headers, "content": content}
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise ConsulConnectionError(f"{method} {path} timed out") from e
        except httpx.HTTPError as e:
            raise ConsulConnectionError(f"{method} {path} failed: {e}") from e
        if not resp.is_success:
            raise ConsulStatusError(method, path, resp.status_code, resp.text)
        return resp

    @staticmethod
    def _decode(resp: httpx.Response, typ: type[T]) -> T:
        try:
            return json.decode(resp.content, type=typ)
        except DecodeError as e:
            raise ConsulDecodeError(f"malformed response body: {e}") from e

    async def health_service(self, target: WatchTarget, index: int = 0) -> HealthResult:
        """对 /health/service/{name} 发起一次阻塞查询

        index: 上次观测到的索引；注册中心会挂起请求直到状态变化或 wait 到期。
        wait 与 passing 仅在 passing_only 时携带。
        """
        assert self._cfg, "consul client not connected"
        params = self._query_params(target.query)
        if target.tag:
            params["tag"] = target.tag
        params["index"] = str(max(index, 0))

        wait: float | None = None
        if target.passing_only:
            params["passing"] = "1"
            params["wait"] = self._cfg.WAIT_TIME
            wait = self._wait_s

        headers = None
        if target.query is not None and target.query.token:
            headers = {TOKEN_HEADER: target.query.token}

        path = f"/v1/health/service/{quote(target.service_name, safe='')}"
        resp = await self._request(
            "GET",
            path,
            params=params,
            headers=headers,
            timeout=blocking_timeout(wait, self._cfg.TIMEOUT_MARGIN),
        )
        entries = self._decode(resp, list[ServiceEntry] | None) or []
        return HealthResult(index=parse_index(resp.headers.get(INDEX_HEADER)), entries=entries)

    async def service_register(
        self,
        registration: AgentServiceRegistration,
        replace_existing_checks: bool = False,
    ) -> int:
        """向本地 agent 注册服务，返回状态码"""
        params = {"replace-existing-checks": "true"} if replace_existing_checks else None
        resp = await self._request(
            "PUT",
            "/v1/agent/service/register",
            params=params,
            headers={"Content-Type": "application/json"},
            content=json.encode(registration),
        )
        return resp.status_code

    async def service_deregister(self, service_id: str) -> int:
        """从本地 agent 注销服务，返回状态码"""
        resp = await self._request(
            "PUT", f"/v1/agent/service/deregister/{quote(service_id, safe='')}"
        )
        return resp.status_code

    async def agent_self(self) -> dict[str, Any]:
        """查询当前 agent 自身信息"""
        resp = await self._request("GET", "/v1/agent/self")
        return self._decode(resp, dict[str, Any])

    async def node_name(self) -> str:
        """agent 所在节点名（首次查询后缓存）"""
        if self._node_name:
            return self._node_name
        info = await self.agent_self()
        try:
            name = info["Config"]["NodeName"]
        except (KeyError, TypeError) as e:
            raise ConsulDecodeError("agent self response has no Config.NodeName") from e
        self._node_name = str(name)
        return self._node_name

    async def agent_services(self, filter_expr: str | None = None) -> dict[str, AgentService]:
        """本地 agent 上注册的服务；filter 为注册中心的过滤表达式"""
        params = {"filter": filter_expr} if filter_expr else None
        resp = await self._request("GET", "/v1/agent/services", params=params)
        return self._decode(resp, dict[str, AgentService])

    async def agent_checks(self, filter_expr: str | None = None) -> dict[str, AgentCheck]:
        """本地 agent 上注册的检查"""
        params = {"filter": filter_expr} if filter_expr else None
        resp = await self._request("GET", "/v1/agent/checks", params=params)
        return self._decode(resp, dict[str, AgentCheck])
