"""Read-only service health: container state and API endpoint reachability."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import requests
from requests.exceptions import RequestException

from ..containers.runner import CommandRunner
from ..utils.errors import BackendUnreachable

logger = logging.getLogger(__name__)


class ServiceStatus(Enum):
    HEALTHY = "healthy"
    RUNNING = "running (no healthcheck)"
    STARTING = "starting"
    UNHEALTHY = "unhealthy"
    NOT_RUNNING = "not running"
    NOT_FOUND = "not found"
    UNKNOWN = "unknown"


# Statuses that fail the check; the rest are informational or warnings
FAILING_STATUSES = {ServiceStatus.UNHEALTHY, ServiceStatus.NOT_RUNNING}
PASSING_STATUSES = {ServiceStatus.HEALTHY, ServiceStatus.RUNNING}


@dataclass
class ServiceHealth:
    name: str
    status: ServiceStatus
    details: Optional[str] = None

    @property
    def failing(self) -> bool:
        return self.status in FAILING_STATUSES


@dataclass
class EndpointHealth:
    name: str
    url: str
    reachable: bool
    details: Optional[str] = None


@dataclass
class HealthReport:
    """Container and endpoint results, kept apart from the store invariants."""

    services: List[ServiceHealth] = field(default_factory=list)
    endpoints: List[EndpointHealth] = field(default_factory=list)

    @property
    def failures(self) -> List[str]:
        names = [s.name for s in self.services if s.failing]
        names.extend(f"{e.name} endpoint" for e in self.endpoints if not e.reachable)
        return names

    @property
    def healthy(self) -> bool:
        return not self.failures


class ServiceHealthChecker:
    """Reports container health and whether the API gateway answers.

    Only inspects containers and sends GET requests; nothing is started,
    stopped or written.
    """

    def __init__(
        self,
        runner: CommandRunner,
        containers: List[str],
        endpoints: Dict[str, str],
        timeout: int = 5,
        http_get: Optional[Callable[..., Any]] = None,
    ):
        """
        Initialize service health checker.

        Args:
            runner: Runner used to inspect containers
            containers: Container names to report on
            endpoints: Endpoint name to absolute URL
            timeout: Per-request timeout in seconds
            http_get: HTTP GET function (defaults to requests.get)
        """
        self.runner = runner
        self.containers = containers
        self.endpoints = endpoints
        self.timeout = timeout
        self.http_get = http_get or requests.get

    @classmethod
    def from_settings(cls, settings: Any, runner: CommandRunner, instance_name: Optional[str]) -> "ServiceHealthChecker":
        return cls(
            runner,
            settings.health_containers(instance_name),
            settings.health_endpoints(),
            timeout=settings.health.endpoint_timeout_seconds,
        )

    def check(self) -> HealthReport:
        return HealthReport(services=self.check_containers(), endpoints=self.check_endpoints())

    def check_containers(self) -> List[ServiceHealth]:
        results: List[ServiceHealth] = []

        for index, name in enumerate(self.containers):
            try:
                attrs = self.runner.inspect(name)
            except BackendUnreachable as e:
                # Without the engine no container can be inspected
                logger.warning("Cannot inspect containers: %s", e.message)
                results.extend(ServiceHealth(n, ServiceStatus.UNKNOWN, e.message) for n in self.containers[index:])
                break
            results.append(self._container_health(name, attrs))

        return results

    def _container_health(self, name: str, attrs: Optional[Dict[str, Any]]) -> ServiceHealth:
        if attrs is None:
            return ServiceHealth(name, ServiceStatus.NOT_FOUND)

        state = attrs.get("State") or {}
        health = state.get("Health") or {}
        status = health.get("Status")

        if status == "healthy":
            return ServiceHealth(name, ServiceStatus.HEALTHY)
        if status == "starting":
            return ServiceHealth(name, ServiceStatus.STARTING)
        if status == "unhealthy":
            log = health.get("Log") or []
            output = (log[-1].get("Output") or "").strip() if log else ""
            return ServiceHealth(name, ServiceStatus.UNHEALTHY, output or None)

        if state.get("Running"):
            return ServiceHealth(name, ServiceStatus.RUNNING)
        return ServiceHealth(name, ServiceStatus.NOT_RUNNING, state.get("Status"))

    def check_endpoints(self) -> List[EndpointHealth]:
        return [self._endpoint_health(name, url) for name, url in self.endpoints.items()]

    def _endpoint_health(self, name: str, url: str) -> EndpointHealth:
        try:
            response = self.http_get(url, timeout=self.timeout)
        except RequestException as e:
            return EndpointHealth(name, url, False, type(e).__name__)

        # 401 and 404 still prove the gateway routed the request
        reachable = response.status_code < 500
        return EndpointHealth(name, url, reachable, f"HTTP {response.status_code}")
