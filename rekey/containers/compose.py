"""Docker Compose orchestration of the instance's services."""

import logging
import subprocess
from typing import List, Optional

from ..utils.errors import OrchestrationError, create_error_suggestions

logger = logging.getLogger(__name__)


class ComposeOrchestrator:
    """Stops, starts and restarts services of the instance's compose project."""

    def __init__(self, project_dir: str, timeout: int = 300, verbose: bool = False):
        """
        Initialize compose orchestrator.

        Args:
            project_dir: Directory holding the compose file
            timeout: Seconds allowed per compose invocation
            verbose: Whether to enable verbose output
        """
        self.project_dir = project_dir
        self.timeout = timeout
        self.verbose = verbose

    def restart(self, services: List[str]) -> None:
        """Restart the given services."""
        self._compose(["restart"] + list(services), f"restart {', '.join(services)}")

    def stop(self, services: List[str]) -> None:
        """Stop the given services, leaving their containers in place."""
        self._compose(["stop"] + list(services), f"stop {', '.join(services)}")

    def up(self, services: Optional[List[str]] = None) -> None:
        """Start services (all when none are given) in the background."""
        self._compose(["up", "-d"] + list(services or []), "start services")

    def down(self) -> None:
        """Stop and remove all containers of the project."""
        self._compose(["down"], "stop all services")

    def restart_all(self) -> None:
        """Full restart: down, then up."""
        self.down()
        self.up()

    def _compose(self, args: List[str], action: str) -> None:
        cmd = ["docker", "compose"] + args

        if self.verbose:
            print(f"Running: {' '.join(cmd)}")
        logger.debug("Running %s in %s", cmd, self.project_dir)

        try:
            result = subprocess.run(
                cmd,
                cwd=self.project_dir,
                capture_output=not self.verbose,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise OrchestrationError(
                f"Could not {action}: docker compose timed out after {self.timeout}s",
                suggestions=create_error_suggestions("restart_failed"),
            ) from e
        except FileNotFoundError as e:
            raise OrchestrationError(
                "docker command not found. Please install Docker with the compose plugin.",
            ) from e

        if result.returncode != 0:
            raise OrchestrationError(
                f"Could not {action}: docker compose exited with {result.returncode}",
                details=(result.stderr or "").strip() or None,
                suggestions=create_error_suggestions("restart_failed"),
            )
