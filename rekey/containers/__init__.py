"""Container access for rekey."""

from .compose import ComposeOrchestrator
from .runner import CommandResult, CommandRunner, DockerCommandRunner

__all__ = ["ComposeOrchestrator", "CommandResult", "CommandRunner", "DockerCommandRunner"]
