from collections.abc import Callable
from typing import Any

import httpx
import pytest
from msgspec import json

from config import ConsulConfig
from models.models import HealthResult, ServiceEntry
from repositories.consul_client import ConsulAsyncClient


def _record(
    address: str | None,
    port: int | None,
    modify_index: int | None = None,
    node_address: str | None = "10.9.9.9",
    service: str = "web",
) -> dict[str, Any]:
    return {
        "Node": {"ID": "node-1", "Node": "node-1", "Address": node_address},
        "Service": {
            "ID": f"{service}-{address}-{port}",
            "Service": service,
            "Address": address,
            "Port": port,
            "ModifyIndex": modify_index,
            "Tags": ["primary"],
        },
        "Checks": [{"CheckID": "serfHealth", "Status": "passing"}],
    }


@pytest.fixture
def record() -> Callable[..., dict[str, Any]]:
    """构造一条 /health/service 响应记录（JSON 字典）"""
    return _record


@pytest.fixture
def health_result() -> Callable[..., HealthResult]:
    """构造已解码的 HealthResult"""

    def _make(index: int, *records: dict[str, Any]) -> HealthResult:
        entries = json.decode(json.encode(list(records)), type=list[ServiceEntry])
        return HealthResult(index=index, entries=entries)

    return _make


@pytest.fixture
def consul_config() -> ConsulConfig:
    return ConsulConfig(ADDRESS="http://consul.test:8500", DATACENTER="dc1", WAIT_TIME="5s")


@pytest.fixture
def make_client(consul_config: ConsulConfig):
    """返回一个以 MockTransport 为后端的客户端工厂"""

    async def _make(handler, cfg: ConsulConfig | None = None) -> ConsulAsyncClient:
        client = ConsulAsyncClient(transport=httpx.MockTransport(handler))
        await client.connect(cfg or consul_config)
        return client

    return _make


def json_response(data: Any, status_code: int = 200, index: int | None = None) -> httpx.Response:
    headers = {"content-type": "application/json"}
    if index is not None:
        headers["X-Consul-Index"] = str(index)
    return httpx.Response(status_code, content=json.encode(data), headers=headers)


@pytest.fixture
def respond() -> Callable[..., httpx.Response]:
    return json_response
