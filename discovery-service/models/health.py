from collections.abc import Iterable

from models.models import HealthCheck

HEALTH_ANY = "any"  # 通配，不是具体状态
HEALTH_PASSING = "passing"
HEALTH_WARNING = "warning"
HEALTH_CRITICAL = "critical"
HEALTH_MAINT = "maintenance"

NODE_MAINT = "_node_maintenance"
SERVICE_MAINT_PREFIX = "_service_maintenance:"


def is_maintenance(check: HealthCheck) -> bool:
    cid = check.check_id
    return bool(cid) and (cid == NODE_MAINT or cid.startswith(SERVICE_MAINT_PREFIX))


def aggregated_status(checks: Iterable[HealthCheck]) -> str:
    """
    将一组检查归并为一个代表性状态：
        maintenance > critical > warning > passing
    无检查视为 passing；出现未知/缺失状态时返回空串
    """
    warning = critical = maintenance = False
    for check in checks:
        if is_maintenance(check):
            maintenance = True
            continue
        match check.status:
            case "passing":
                continue
            case "warning":
                warning = True
            case "critical":
                critical = True
            case _:
                return ""

    if maintenance:
        return HEALTH_MAINT
    if critical:
        return HEALTH_CRITICAL
    if warning:
        return HEALTH_WARNING
    return HEALTH_PASSING
