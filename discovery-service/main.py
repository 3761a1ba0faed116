import logging
from typing import Literal

from lihil import Lihil, Request, Response, Route
from lihil.problems import problem_solver
from starlette.middleware.cors import CORSMiddleware

from config import ProjectConfig, read_config, validate_config
from endpoints.discovery import discovery
from endpoints.http_errors import InternalError
from repositories.address_cache import AddressCache
from repositories.consul_client import ConsulAsyncClient
from services.discovery_adapter import DiscoveryAdapter
from services.registry_service import ServiceRegistrar

logger = logging.getLogger(__name__)

CONFIG_FILES = ("settings.toml", ".env")


@problem_solver
def handle_error(req: Request, exc: Literal[500] | InternalError) -> Response:
    return Response(f"Internal Error: {str(exc)}", 500)


def build_adapter(config: ProjectConfig, client: ConsulAsyncClient) -> DiscoveryAdapter:
    """组装地址缓存与 watch 循环（进程内唯一，由此处持有）"""
    cache = AddressCache()
    if config.discovery is None:
        return DiscoveryAdapter(client, cache, [])
    return DiscoveryAdapter.from_config(client, cache, config.discovery)


async def lifespan(app: Lihil):
    config = read_config(*CONFIG_FILES)
    validate_config(config)
    assert config.consul

    client = ConsulAsyncClient()
    await client.connect(config.consul)
    adapter = build_adapter(config, client)
    registrar = ServiceRegistrar(client)

    reg = config.registration
    if reg is not None:
        await registrar.register(
            reg.SERVICE, replace_existing_checks=reg.REPLACE_EXISTING_CHECKS
        )
    await adapter.start()
    logger.info("discovery service ready watches=%d", len(adapter.targets))

    app.graph.register_singleton(client, ConsulAsyncClient)
    app.graph.register_singleton(adapter, DiscoveryAdapter)
    app.graph.register_singleton(registrar, ServiceRegistrar)

    yield

    await adapter.stop()
    if reg is not None and reg.DEREGISTER_ON_SHUTDOWN:
        await registrar.deregister_all()
    await client.close()


def app_factory() -> Lihil:
    app_config = read_config(*CONFIG_FILES)

    root = Route(f"/api/v{app_config.API_VERSION}", deps=[])
    root.include_subroutes(discovery)
    root.sub("health").get(lambda: "ok")

    lhl = Lihil(root, app_config=app_config, lifespan=lifespan)
    lhl.add_middleware(
        [
            lambda app: CORSMiddleware(
                app,
                allow_origins=["*"],
                allow_credentials=True,
                allow_methods=["*"],
                allow_headers=["*"],
            ),
        ]
    )
    return lhl


app = app_factory()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    app.run(__file__)
