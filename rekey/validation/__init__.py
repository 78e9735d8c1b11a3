"""Consistency and service health checks for rekey."""

from .consistency import ConsistencyChecker, ConsistencyReport, InvariantResult, InvariantStatus
from .health import EndpointHealth, HealthReport, ServiceHealth, ServiceHealthChecker, ServiceStatus

__all__ = [
    "ConsistencyChecker",
    "ConsistencyReport",
    "InvariantResult",
    "InvariantStatus",
    "EndpointHealth",
    "HealthReport",
    "ServiceHealth",
    "ServiceHealthChecker",
    "ServiceStatus",
]
