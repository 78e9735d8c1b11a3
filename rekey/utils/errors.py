"""Error handling utilities for rekey."""

import sys
import traceback
from typing import List, Optional

import click


class RekeyError(Exception):
    """Base exception for rekey errors."""

    # Step report of the rotation that raised, when there is one
    report = None

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        suggestions: Optional[list] = None,
    ):
        self.message = message
        self.details = details
        self.suggestions = suggestions or []
        super().__init__(message)


class ConfigurationError(RekeyError):
    """Raised when tool settings or the managed config record are invalid or missing."""

    pass


class EntropySourceUnavailable(RekeyError):
    """Raised when the operating system's secure random source cannot be read.

    This is fatal. Secret generation never falls back to a weaker source.
    """

    pass


class BackendUnreachable(RekeyError):
    """Raised when the database or its container cannot be reached in time."""

    pass


class StoreOperationError(RekeyError):
    """Raised when a backing store is reachable but rejects an operation."""

    pass


class OrchestrationError(RekeyError):
    """Raised when a dependent service cannot be stopped or started."""

    pass


class BackupError(RekeyError):
    """Raised when a requested backup could not be created."""

    pass


class RotationIntentRequired(RekeyError):
    """Raised when a rotation is requested without choosing preview or execute."""

    pass


class ConfirmationDeclined(RekeyError):
    """Raised when the operator declines a confirmation step.

    Not an error state: nothing has been changed when this is raised.
    """

    pass


class InvariantViolation(RekeyError):
    """Raised when the consistency check finds drift between stores."""

    def __init__(self, message: str, report=None, **kwargs):
        self.report = report
        super().__init__(message, **kwargs)


class PartialRotationFailure(RekeyError):
    """Raised when some backing-store writes of a rotation succeeded and others did not."""

    def __init__(
        self,
        message: str,
        updated: Optional[List[str]] = None,
        not_updated: Optional[List[str]] = None,
        report=None,
        **kwargs,
    ):
        self.updated = list(updated or [])
        self.not_updated = list(not_updated or [])
        self.report = report
        super().__init__(message, **kwargs)


class ErrorHandler:
    """Handles and formats errors for user-friendly display."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose

    def handle_error(self, error: Exception, context: Optional[str] = None) -> None:
        """
        Handle and display error with appropriate formatting.

        Args:
            error: Exception to handle
            context: Optional context about when/where error occurred
        """
        if isinstance(error, RekeyError):
            self._handle_rekey_error(error, context)
        else:
            self._handle_generic_error(error, context)

    def _handle_rekey_error(self, error: RekeyError, context: Optional[str]) -> None:
        """Handle rekey-specific errors."""
        click.echo(f"✗ {error.message}", err=True)

        if context:
            click.echo(f"Context: {context}", err=True)

        if error.details:
            click.echo(f"Details: {error.details}", err=True)

        if isinstance(error, PartialRotationFailure):
            if error.updated:
                click.echo(f"Updated: {', '.join(error.updated)}", err=True)
            if error.not_updated:
                click.echo(f"Not updated: {', '.join(error.not_updated)}", err=True)

        if error.suggestions:
            click.echo("\nSuggestions:", err=True)
            for suggestion in error.suggestions:
                click.echo(f"  • {suggestion}", err=True)

        if self.verbose:
            click.echo("\nFull traceback:", err=True)
            traceback.print_exc()

    def _handle_generic_error(self, error: Exception, context: Optional[str]) -> None:
        """Handle generic Python exceptions."""
        error_type = type(error).__name__

        if isinstance(error, FileNotFoundError):
            message = f"File not found: {error}"
            suggestions = [
                "Check that the file path is correct",
                "Run 'rekey init' to create the config record",
            ]
        elif isinstance(error, PermissionError):
            message = f"Permission denied: {error}"
            suggestions = [
                "Check file/directory permissions",
                "Try running with appropriate privileges",
            ]
        else:
            message = f"{error_type}: {error}"
            suggestions = []

        click.echo(f"✗ {message}", err=True)

        if context:
            click.echo(f"Context: {context}", err=True)

        if suggestions:
            click.echo("\nSuggestions:", err=True)
            for suggestion in suggestions:
                click.echo(f"  • {suggestion}", err=True)

        if self.verbose:
            click.echo("\nFull traceback:", err=True)
            traceback.print_exc()

    def exit_with_error(self, error: Exception, context: Optional[str] = None, exit_code: int = 1) -> None:
        """Handle error and exit with specified code."""
        self.handle_error(error, context)
        sys.exit(exit_code)


def create_error_suggestions(error_type: str, **kwargs) -> list:
    """
    Create contextual error suggestions based on error type and context.

    Args:
        error_type: Type of error
        **kwargs: Additional context (container, snapshot, role)

    Returns:
        list: List of suggestion strings
    """
    container = kwargs.get("container", "the database container")
    snapshot = kwargs.get("snapshot")

    suggestions = {
        "backend_unreachable": [
            f"Check that {container} is running (docker ps)",
            "Verify the Docker daemon is reachable by the current user",
            "Retry once the database is healthy; nothing was changed",
        ],
        "not_initialized": [
            "Run 'rekey init' to generate the initial secrets",
        ],
        "config_missing": [
            "Check --project-dir points at the instance directory",
            "Run 'rekey init' to create the config record",
        ],
        "restore_config": [
            f"Restore the config record from the pre-rotation backup: {snapshot}"
            if snapshot
            else "Restore the config record from the most recent pre-rotation backup",
        ],
        "restart_failed": [
            "Restart the dependent services manually (docker compose restart)",
            "Run 'rekey check' once the services are back",
        ],
    }

    return suggestions.get(error_type, [])
