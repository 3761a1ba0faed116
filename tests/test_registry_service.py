import httpx
import pytest

from models.models import AgentServiceRegistration
from services.registry_service import ServiceRegistrar


@pytest.mark.asyncio
async def test_register_then_deregister_all(make_client):
    seen: list[tuple[str, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path))
        return httpx.Response(200)

    registrar = ServiceRegistrar(await make_client(handler))
    await registrar.register(AgentServiceRegistration(id="web-1", name="web", port=80))
    await registrar.register(AgentServiceRegistration(name="api", port=81))
    assert registrar.registered == ["web-1", "api"]

    await registrar.deregister_all()

    assert registrar.registered == []
    assert seen == [
        ("PUT", "/v1/agent/service/register"),
        ("PUT", "/v1/agent/service/register"),
        ("PUT", "/v1/agent/service/deregister/web-1"),
        ("PUT", "/v1/agent/service/deregister/api"),
    ]


@pytest.mark.asyncio
async def test_register_is_idempotent(make_client):
    client = await make_client(lambda request: httpx.Response(200))
    registrar = ServiceRegistrar(client)
    reg = AgentServiceRegistration(id="web-1", name="web")

    assert await registrar.register(reg) == 200
    assert await registrar.register(reg, replace_existing_checks=True) == 200
    assert registrar.registered == ["web-1"]


@pytest.mark.asyncio
async def test_deregister_all_continues_after_failure(make_client):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/web-1"):
            return httpx.Response(500, text="agent down")
        return httpx.Response(200)

    registrar = ServiceRegistrar(await make_client(handler))
    await registrar.register(AgentServiceRegistration(id="web-1", name="web"))
    await registrar.register(AgentServiceRegistration(id="web-2", name="web"))

    await registrar.deregister_all()

    assert registrar.registered == ["web-1"]
