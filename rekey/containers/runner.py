"""Command execution inside the database container."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import docker
from docker.errors import APIError, DockerException, NotFound
from requests.exceptions import RequestException

from ..utils.errors import BackendUnreachable, create_error_suggestions

logger = logging.getLogger(__name__)

# Exit status of coreutils timeout(1) when the command ran out of time
TIMEOUT_EXIT_CODE = 124

# Seconds the engine API call may outlive the command it runs
CLIENT_TIMEOUT_MARGIN = 10


@dataclass
class CommandResult:
    """Outcome of a command run in a container."""

    exit_code: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def timed_out(self) -> bool:
        return self.exit_code == TIMEOUT_EXIT_CODE


class CommandRunner:
    """Runs commands inside a named container."""

    def run(
        self,
        container: str,
        command: List[str],
        environment: Optional[Dict[str, str]] = None,
        user: Optional[str] = None,
        timeout: Optional[int] = None,
    ) -> CommandResult:
        """
        Run a command in a container.

        Args:
            container: Container name
            command: Command and arguments
            environment: Extra environment for the command
            user: User to run as
            timeout: Seconds before the command is killed

        Returns:
            CommandResult: Exit code and combined output

        Raises:
            BackendUnreachable: If the container cannot be reached
        """
        raise NotImplementedError

    def inspect(self, container: str) -> Optional[Dict[str, Any]]:
        """Engine attributes of a container, or None when no such container exists."""
        raise NotImplementedError


class DockerCommandRunner(CommandRunner):
    """Runs commands through the Docker Engine API (docker exec)."""

    def __init__(self, timeout: int = 15, verbose: bool = False):
        """
        Initialize docker command runner.

        Args:
            timeout: Default command timeout in seconds
            verbose: Whether to enable verbose output
        """
        self.timeout = timeout
        self.verbose = verbose
        self._client = None

    @property
    def client(self) -> Any:
        """Get Docker client, creating it if necessary."""
        if self._client is None:
            try:
                self._client = docker.from_env(timeout=self.timeout + CLIENT_TIMEOUT_MARGIN)
                # Test connection
                self._client.ping()
            except (DockerException, RequestException) as e:
                self._client = None
                raise BackendUnreachable(
                    "Cannot connect to Docker daemon",
                    details=str(e),
                    suggestions=create_error_suggestions("backend_unreachable"),
                ) from e

        return self._client

    def _get_container(self, name: str) -> Any:
        try:
            container = self.client.containers.get(name)
        except NotFound as e:
            raise BackendUnreachable(
                f"Container '{name}' not found",
                suggestions=create_error_suggestions("backend_unreachable", container=name),
            ) from e
        except (APIError, RequestException) as e:
            raise BackendUnreachable(f"Cannot inspect container '{name}'", details=str(e)) from e

        if container.status != "running":
            raise BackendUnreachable(
                f"Container '{name}' is not running (status: {container.status})",
                suggestions=create_error_suggestions("backend_unreachable", container=name),
            )

        return container

    def inspect(self, container: str) -> Optional[Dict[str, Any]]:
        try:
            return self.client.containers.get(container).attrs
        except NotFound:
            return None
        except (APIError, RequestException, OSError) as e:
            raise BackendUnreachable(f"Cannot inspect container '{container}'", details=str(e)) from e

    def run(
        self,
        container: str,
        command: List[str],
        environment: Optional[Dict[str, str]] = None,
        user: Optional[str] = None,
        timeout: Optional[int] = None,
    ) -> CommandResult:
        seconds = timeout or self.timeout
        target = self._get_container(container)

        # Wrap in timeout(1) so a hung statement exits 124 instead of blocking
        wrapped = ["timeout", str(seconds)] + list(command)
        logger.debug("Running %s in %s (timeout %ss)", command[0], container, seconds)

        kwargs: Dict[str, Any] = {"environment": environment or {}}
        if user:
            kwargs["user"] = user

        # The API read must outlast the command, or a long dump times out the socket first
        self.client.api.timeout = max(self.timeout, seconds) + CLIENT_TIMEOUT_MARGIN

        try:
            exit_code, output = target.exec_run(wrapped, **kwargs)
        except (APIError, RequestException, OSError) as e:
            raise BackendUnreachable(
                f"Command execution in '{container}' failed",
                details=str(e),
                suggestions=create_error_suggestions("backend_unreachable", container=container),
            ) from e

        text = output.decode("utf-8", errors="replace") if isinstance(output, bytes) else (output or "")
        result = CommandResult(exit_code=exit_code if exit_code is not None else 1, output=text.strip())

        if self.verbose:
            print(f"{command[0]} in {container} exited with {result.exit_code}")

        return result
