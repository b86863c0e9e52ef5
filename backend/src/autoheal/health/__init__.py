"""Per-service health pollers."""
from .base import BaseHealthPoller, HealthSnapshot
from .empire import EmpireHealthPoller
from .network import NetworkHealthPoller
from .redis import RedisHealthPoller
from .reportapp import ReportAppHealthPoller
from .sysreptor import SysreptorHttpPoller
from .system import SystemHealthPoller

POLLERS = {
    "redis": RedisHealthPoller,
    "reportapp": ReportAppHealthPoller,
    "sysreptor": SysreptorHttpPoller,
    "empire": EmpireHealthPoller,
    "system": SystemHealthPoller,
    "network": NetworkHealthPoller,
}

__all__ = [
    "BaseHealthPoller",
    "EmpireHealthPoller",
    "HealthSnapshot",
    "NetworkHealthPoller",
    "POLLERS",
    "RedisHealthPoller",
    "ReportAppHealthPoller",
    "SysreptorHttpPoller",
    "SystemHealthPoller",
]
