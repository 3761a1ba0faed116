from urllib.parse import urlsplit

from lihil.config import AppConfig, ConfigBase, lhl_read_config

from models.models import SELECTION_POLICIES, AgentServiceRegistration, WatchTarget
from utils.durations import parse_duration


class ConfigError(ValueError):
    """配置不合法（启动时直接失败，而不是在轮询时才暴露）"""


class ConsulConfig(ConfigBase, kw_only=True):
    """Consul 注册中心连接配置"""

    ADDRESS: str = "http://127.0.0.1:8500"
    DATACENTER: str | None = None
    NAMESPACE: str | None = None
    TOKEN: str | None = None  # ACL token，经 X-Consul-Token 头发送
    WAIT_TIME: str = "5s"  # 阻塞查询的默认 wait
    TIMEOUT_MARGIN: float = 5.0  # 客户端超时 = wait + 抖动 + 该余量（秒）
    VERIFY_TLS: bool = True


class DiscoveryConfig(ConfigBase, kw_only=True):
    """服务发现配置

    - WATCHES: 需要持续监听的服务列表，启动时读取一次
    - DEFAULT_POLICY: 未指定 selection_policy 的目标所用策略（random/round_robin）
    - BACKOFF_BASE / BACKOFF_MAX: 单个目标连续失败时的指数退避（秒）
    """

    WATCHES: list[WatchTarget] = []
    DEFAULT_POLICY: str = "random"
    BACKOFF_BASE: float = 0.2
    BACKOFF_MAX: float = 5.0


class RegistrationConfig(ConfigBase, kw_only=True):
    """本服务启动时向 agent 注册自身（可选）"""

    SERVICE: AgentServiceRegistration
    REPLACE_EXISTING_CHECKS: bool = False
    DEREGISTER_ON_SHUTDOWN: bool = True


class ProjectConfig(AppConfig, kw_only=True):
    """项目配置模型"""

    API_VERSION: str = "1"
    consul: ConsulConfig | None = None
    discovery: DiscoveryConfig | None = None
    registration: RegistrationConfig | None = None


def validate_consul(cfg: ConsulConfig) -> None:
    parts = urlsplit(cfg.ADDRESS)
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise ConfigError(f"invalid consul address: {cfg.ADDRESS!r}")
    try:
        parts.port
    except ValueError as e:
        raise ConfigError(f"invalid consul address: {cfg.ADDRESS!r}") from e
    try:
        parse_duration(cfg.WAIT_TIME)
    except ValueError as e:
        raise ConfigError(f"invalid WAIT_TIME: {cfg.WAIT_TIME!r}") from e
    if cfg.TIMEOUT_MARGIN < 0:
        raise ConfigError("TIMEOUT_MARGIN must be >= 0")


def validate_discovery(cfg: DiscoveryConfig) -> None:
    if cfg.DEFAULT_POLICY not in SELECTION_POLICIES:
        raise ConfigError(f"unknown selection policy: {cfg.DEFAULT_POLICY!r}")
    if cfg.BACKOFF_BASE <= 0 or cfg.BACKOFF_MAX < cfg.BACKOFF_BASE:
        raise ConfigError("backoff requires 0 < BACKOFF_BASE <= BACKOFF_MAX")

    seen = set()
    for target in cfg.WATCHES:
        if not target.service_name or not target.service_name.strip():
            raise ConfigError("watch target with empty service_name")
        policy = target.selection_policy
        if policy is not None and policy not in SELECTION_POLICIES:
            raise ConfigError(
                f"unknown selection policy {policy!r} for {target.service_name}"
            )
        key = target.cache_key
        if key in seen:
            raise ConfigError(f"duplicate watch target: {key}")
        seen.add(key)


def validate_config(cfg: ProjectConfig) -> None:
    """启动时校验配置；任何问题都抛出 ConfigError"""
    if cfg.consul is None:
        raise ConfigError("consul config missing")
    validate_consul(cfg.consul)
    if cfg.discovery is not None:
        validate_discovery(cfg.discovery)
    if cfg.registration is not None and not cfg.registration.SERVICE.name:
        raise ConfigError("registration service name is empty")


def read_config(*config_files: str) -> ProjectConfig:
    """读取应用配置"""
    app_config = lhl_read_config(
        *config_files, config_type=ProjectConfig, raise_on_not_found=False
    )
    assert app_config
    return app_config
