"""Main CLI entry point for rekey.

This module provides the command-line interface for rekey, a tool that
bootstraps and rotates the secrets of a self-hosted database platform
instance. It keeps the config record (.env), the database roles and
settings, and the connection pooler's encrypted data consistent with
each other.

The CLI is built using Click. Every command works on one instance
directory (--project-dir) and reports failures through ErrorHandler.
"""

from dataclasses import dataclass
from typing import Any, Optional

import click

from rekey import __version__
from rekey.utils.errors import ConfirmationDeclined, ErrorHandler
from rekey.utils.logging import setup_logging


@dataclass
class InstanceContext:
    """Collaborators for one instance directory, built on first use."""

    settings: Any
    config_manager: Any
    adapter: Any
    runner: Any
    container: str


def _build_context(ctx: click.Context) -> InstanceContext:
    """Wire settings, stores and the container runner for the selected instance."""
    if "instance" in ctx.obj:
        return ctx.obj["instance"]

    from rekey.config import ConfigManager
    from rekey.containers import DockerCommandRunner
    from rekey.stores import DatabaseStore, EnvFileConfigStore, SecretStoreAdapter
    from rekey.utils import FileManager

    verbose = ctx.obj["verbose"]
    config_manager = ConfigManager(ctx.obj["project_dir"])
    settings = config_manager.load_settings(ctx.obj["config_path"])

    file_manager = FileManager(verbose=verbose)
    config_store = EnvFileConfigStore(settings.env_path, file_manager)
    container = settings.database_container(config_store.read("INSTANCE_NAME"))

    runner = DockerCommandRunner(timeout=settings.timeout_seconds, verbose=verbose)
    database = DatabaseStore(
        runner,
        container,
        superuser=settings.database.superuser,
        database=settings.database.name,
        timeout=settings.timeout_seconds,
    )
    adapter = SecretStoreAdapter(config_store, database, settings, file_manager)

    instance = InstanceContext(settings, config_manager, adapter, runner, container)
    ctx.obj["instance"] = instance
    return instance


def _backup_manager(ctx: click.Context, instance: InstanceContext):
    from rekey.backup import BackupManager

    settings = instance.settings
    return BackupManager(
        instance.runner,
        instance.container,
        settings.backup_path,
        superuser=settings.database.superuser,
        keep=settings.keep_database_dumps,
        timeout=settings.dump_timeout_seconds,
        verbose=ctx.obj["verbose"],
    )


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--log-file", help="Log to file in addition to console")
@click.option(
    "--project-dir",
    "-C",
    default=".",
    type=click.Path(file_okay=False),
    help="Instance directory holding the config record (default: current directory)",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    help="rekey settings file (default: rekey.yml in the instance directory)",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    log_file: Optional[str],
    project_dir: str,
    config_path: Optional[str],
) -> None:
    """rekey - secret bootstrap and rotation for a self-hosted instance.

    rekey generates the instance's database password, token signing secret
    and encryption key, and rotates each of them without leaving the config
    record and the database disagreeing about the current value.

    Args:
        ctx: Click context object containing shared state
        verbose: Enable verbose output for detailed logging
        log_file: Optional path to log file for additional logging
        project_dir: Instance directory
        config_path: Optional settings file
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["log_file"] = log_file
    ctx.obj["project_dir"] = project_dir
    ctx.obj["config_path"] = config_path
    ctx.obj["error_handler"] = ErrorHandler(verbose=verbose)

    # Setup logging
    setup_logging(verbose=verbose, log_file=log_file)


@cli.command()
@click.option("--force", is_flag=True, help="Re-scan for placeholder values even if already initialized")
@click.pass_context
def init(ctx: click.Context, force: bool) -> None:
    """Generate all secrets that still hold placeholder values.

    Creates the config record from .env.example (or a built-in template)
    when it does not exist yet, generates every missing secret, mints the
    anon and service_role tokens and writes the initialization marker.
    Running it again is a no-op.
    """
    try:
        from rekey.secrets import InitializationController

        instance = _build_context(ctx)
        controller = InitializationController(
            instance.adapter,
            config_manager=instance.config_manager,
            verbose=ctx.obj["verbose"],
        )
        controller.initialize(force=force)

    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Instance initialization")


@cli.command()
@click.argument("secret", type=click.Choice(["password", "jwt-secret", "vault-key"]))
@click.option("--dry-run", is_flag=True, help="Show the rotation plan without changing anything")
@click.option(
    "--execute",
    "--allow-destructive",
    "execute",
    is_flag=True,
    help="Perform the rotation",
)
@click.option("--skip-backup", is_flag=True, help="Do not create a database backup first")
@click.pass_context
def rotate(ctx: click.Context, secret: str, dry_run: bool, execute: bool, skip_backup: bool) -> None:
    """Rotate a secret across the config record and the database.

    \b
    password    new password for all five database roles (data preserved)
    jwt-secret  new signing secret and tokens (all sessions invalidated)
    vault-key   new pooler encryption key (pooler tenant data deleted)

    One of --dry-run or --execute is required.
    """
    if dry_run and execute:
        raise click.UsageError("--dry-run and --execute cannot be combined")

    has_failures = False
    try:
        from rekey.containers import ComposeOrchestrator
        from rekey.secrets import RotationController, RotationMode, SecretClass

        mode = RotationMode.PREVIEW if dry_run else RotationMode.EXECUTE if execute else None

        instance = _build_context(ctx)
        controller = RotationController(
            instance.adapter,
            _backup_manager(ctx, instance),
            ComposeOrchestrator(instance.settings.project_dir, verbose=ctx.obj["verbose"]),
            verbose=ctx.obj["verbose"],
        )
        report = controller.rotate(SecretClass.from_cli_name(secret), mode, skip_backup=skip_backup)
        has_failures = report.has_failures

    except ConfirmationDeclined:
        click.echo("Aborted. No changes were made.")
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, f"Rotation of {secret}")

    if has_failures:
        ctx.exit(1)


def _echo_health(health: Any) -> None:
    from rekey.validation.health import PASSING_STATUSES

    click.echo("\nService health:")
    for service in health.services:
        if service.failing:
            symbol = "✗"
        elif service.status in PASSING_STATUSES:
            symbol = "✓"
        else:
            symbol = "⚠"
        line = f"{symbol} {service.name}: {service.status.value}"
        if service.details:
            line += f" ({service.details})"
        click.echo(line)

    for endpoint in health.endpoints:
        symbol = "✓" if endpoint.reachable else "✗"
        click.echo(f"{symbol} {endpoint.name} endpoint {endpoint.url}: {endpoint.details}")


@cli.command()
@click.option("--no-health", is_flag=True, help="Only check the stores, not container and endpoint health")
@click.pass_context
def check(ctx: click.Context, no_health: bool) -> None:
    """Check that every store agrees with the config record.

    Also reports container health and API endpoint reachability, separately
    from the store results. Exits with status 1 when drift is found or a
    service check fails. Nothing is changed.
    """
    symbols = {"match": "✓", "mismatch": "✗", "unknown": "?"}
    failed_services = []

    try:
        from rekey.validation import ConsistencyChecker, InvariantStatus, ServiceHealthChecker

        instance = _build_context(ctx)
        report = ConsistencyChecker(instance.adapter).verify()

        for result in report.results:
            line = f"{symbols[result.status.value]} [{result.invariant}] {result.name}: {result.status.value}"
            if result.details:
                line += f" ({result.details})"
            click.echo(line)

        if any(r.status is InvariantStatus.UNKNOWN for r in report.results):
            click.echo("\nSome stores could not be checked; see the reasons above.")

        if not no_health:
            health = ServiceHealthChecker.from_settings(
                instance.settings, instance.runner, instance.adapter.read_config("INSTANCE_NAME")
            ).check()
            _echo_health(health)
            failed_services = health.failures

        report.raise_for_violations()
        click.echo("\n✓ All stores are consistent")

        if failed_services:
            click.echo(f"✗ {len(failed_services)} service check(s) failed: {', '.join(failed_services)}")

    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Consistency check")

    if failed_services:
        ctx.exit(1)


@cli.command()
@click.pass_context
def backup(ctx: click.Context) -> None:
    """Create a full database dump in the backup directory."""
    try:
        from rekey.utils.errors import BackupError

        instance = _build_context(ctx)
        result = _backup_manager(ctx, instance).create_database_backup()

        if not result.success:
            raise BackupError("Database backup failed", details=result.error)

        click.echo(f"✓ Database backup written to {result.path}")

    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Database backup")


@cli.command()
@click.option("--unmasked", is_flag=True, help="Print full secret values")
@click.pass_context
def show(ctx: click.Context, unmasked: bool) -> None:
    """Show the managed secrets of the instance (masked by default)."""
    try:
        from rekey.secrets.model import AUXILIARY_SECRETS, MANAGED_SECRETS, TOKEN_FIELDS, is_placeholder, mask
        from rekey.utils.errors import ConfigurationError, create_error_suggestions

        instance = _build_context(ctx)
        adapter = instance.adapter

        if not adapter.config_exists():
            raise ConfigurationError(
                f"Config record not found: {instance.settings.env_path}",
                suggestions=create_error_suggestions("config_missing"),
            )

        values = adapter.read_all_config()

        def render(name: str) -> str:
            value = values.get(name)
            if is_placeholder(value):
                return "<placeholder>"
            return value if unmasked else mask(value)

        click.echo(f"Instance: {values.get('INSTANCE_NAME') or 'supabase'} (container {instance.container})")
        click.echo(f"Initialized: {'yes' if adapter.is_initialized() else 'no'}")

        click.echo("\nManaged secrets:")
        for descriptor in MANAGED_SECRETS.values():
            click.echo(f"  {descriptor.name}: {render(descriptor.name)}")
        for name in TOKEN_FIELDS.values():
            click.echo(f"  {name}: {render(name)}")

        click.echo("\nAuxiliary secrets:")
        for descriptor in AUXILIARY_SECRETS:
            click.echo(f"  {descriptor.name}: {render(descriptor.name)}")

        if unmasked:
            click.echo("\n⚠ Secret values printed in full; clear your terminal history if needed.", err=True)

    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Show secrets")


if __name__ == "__main__":
    cli()
