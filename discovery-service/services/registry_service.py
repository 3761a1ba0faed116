import logging

from models.models import AgentServiceRegistration
from repositories.consul_client import ConsulAsyncClient

logger = logging.getLogger(__name__)


class ServiceRegistrar:
    """
    实例注册 / 注销（幂等的 PUT 调用）
    记录已注册的实例 ID，便于关闭时统一注销
    """

    def __init__(self, client: ConsulAsyncClient):
        self.client = client
        self._registered: dict[str, AgentServiceRegistration] = {}

    @property
    def registered(self) -> list[str]:
        return list(self._registered)

    async def register(
        self,
        registration: AgentServiceRegistration,
        replace_existing_checks: bool = False,
    ) -> int:
        """将服务注册到本地 agent"""
        status = await self.client.service_register(
            registration, replace_existing_checks=replace_existing_checks
        )
        self._registered[registration.service_id] = registration
        logger.info(
            "service registered id=%s name=%s status=%d",
            registration.service_id,
            registration.name,
            status,
        )
        return status

    async def deregister(self, service_id: str) -> int:
        """从本地 agent 注销服务"""
        status = await self.client.service_deregister(service_id)
        self._registered.pop(service_id, None)
        logger.info("service deregistered id=%s status=%d", service_id, status)
        return status

    async def deregister_all(self) -> None:
        """注销本进程注册过的全部实例；单个失败不影响其余"""
        for service_id in list(self._registered):
            try:
                await self.deregister(service_id)
            except Exception:
                logger.exception("failed to deregister id=%s", service_id)
