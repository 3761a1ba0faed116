from lihil import Annotated, Param, Route, status

from endpoints.http_errors import AddressUnavailable
from services.discovery_adapter import CatalogItem, DiscoveryAdapter
from utils.selector_policy import AddressNotFoundError

discovery = Route("discovery", deps=[DiscoveryAdapter])


@discovery.sub("catalog").get
async def get_discovery_catalog(
    adapter: DiscoveryAdapter,
) -> Annotated[list[CatalogItem], status.OK]:
    """获取服务发现目录：所有 watch 目标及当前缓存的地址"""
    return adapter.catalog()


@discovery.sub("resolve").get
async def resolve_endpoint(
    service: Annotated[str, Param("query")],
    adapter: DiscoveryAdapter,
    tag: Annotated[str | None, Param("query")] = None,
) -> Annotated[dict, status.OK]:
    """按服务名称、标签解析并返回一个可用地址"""
    try:
        address = adapter.choose_endpoint(service, tag)
    except AddressNotFoundError as e:
        raise AddressUnavailable(str(e)) from e
    return {"service": service, "tag": tag, "address": address}
