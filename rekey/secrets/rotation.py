"""Rotation of managed secrets across the config record and its backing stores."""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Union

import click

from ..backup.manager import BackupManager
from ..containers.compose import ComposeOrchestrator
from ..stores.adapter import SecretStoreAdapter
from ..utils.errors import (
    BackendUnreachable,
    BackupError,
    ConfigurationError,
    OrchestrationError,
    PartialRotationFailure,
    RekeyError,
    RotationIntentRequired,
    StoreOperationError,
    create_error_suggestions,
)
from ..utils.files import FileManager
from .confirmation import ClickPrompter, ConfirmationFlow, Prompter, policy_for
from .generator import SecretGenerator
from .model import MANAGED_SECRETS, TOKEN_FIELDS, Secret, SecretClass, TokenRole, is_placeholder, mask
from .tokens import TokenMinter

logger = logging.getLogger(__name__)

CONFIG_RECORD = "config record"


class RotationMode(Enum):
    PREVIEW = "preview"
    EXECUTE = "execute"


class StepStatus(Enum):
    OK = "ok"
    FAIL = "fail"
    SKIPPED = "skipped"
    PLANNED = "planned"


STATUS_SYMBOLS = {
    StepStatus.OK: "✓",
    StepStatus.FAIL: "✗",
    StepStatus.SKIPPED: "-",
    StepStatus.PLANNED: "•",
}


@dataclass
class RotationStep:
    """One action of a rotation.

    store names the store the step writes to; steps with no store (stopping
    a service, for instance) do not count towards updated/not-updated stores.
    """

    name: str
    action: Callable[[], None]
    store: Optional[str] = None


@dataclass
class StepResult:
    name: str
    status: StepStatus
    store: Optional[str] = None
    detail: Optional[str] = None


@dataclass
class RotationReport:
    """Per-step outcome of a rotation."""

    secret_class: SecretClass
    mode: RotationMode
    steps: List[StepResult] = field(default_factory=list)
    previous: Optional[Secret] = None
    rotated: Optional[Secret] = None
    config_snapshot: Optional[str] = None
    database_backup: Optional[str] = None

    def add(self, name: str, status: StepStatus, store: Optional[str] = None, detail: Optional[str] = None) -> StepResult:
        result = StepResult(name, status, store, detail)
        self.steps.append(result)
        return result

    @property
    def updated(self) -> List[str]:
        return [s.store for s in self.steps if s.store and s.status is StepStatus.OK]

    @property
    def not_updated(self) -> List[str]:
        return [s.store for s in self.steps if s.store and s.status in (StepStatus.FAIL, StepStatus.SKIPPED)]

    @property
    def has_failures(self) -> bool:
        return any(s.status is StepStatus.FAIL for s in self.steps)

    @property
    def completed(self) -> bool:
        return self.mode is RotationMode.EXECUTE and not self.not_updated


class SecretRotation:
    """Rotation plan for one secret class."""

    secret_class: SecretClass

    def __init__(
        self,
        adapter: SecretStoreAdapter,
        generator: SecretGenerator,
        minter: TokenMinter,
        orchestrator: ComposeOrchestrator,
    ):
        self.adapter = adapter
        self.generator = generator
        self.minter = minter
        self.orchestrator = orchestrator
        self.settings = adapter.settings

    @property
    def config_field(self) -> str:
        return MANAGED_SECRETS[self.secret_class].name

    def plan(self) -> List[str]:
        """Literal list of stores and tables the rotation modifies."""
        raise NotImplementedError

    def new_values(self) -> Dict[str, str]:
        """Generate the config values the rotation will write."""
        return {self.config_field: self.generator.generate(self.secret_class)}

    def backing_steps(self, values: Dict[str, str]) -> List[RotationStep]:
        raise NotImplementedError

    def after_config_steps(self, values: Dict[str, str]) -> List[RotationStep]:
        return []

    def recovery_steps(self) -> List[RotationStep]:
        """Steps undoing service interruptions when the rotation stops early."""
        return []

    def restart_step(self) -> RotationStep:
        return RotationStep("restart all services", self.orchestrator.restart_all)


class PasswordRotation(SecretRotation):
    """New password for every managed database role."""

    secret_class = SecretClass.PASSWORD

    def plan(self) -> List[str]:
        roles = [f"database role {role}: ALTER ROLE ... PASSWORD" for role in self.settings.database.roles]
        return roles + [f"{CONFIG_RECORD}: {self.config_field}"]

    def backing_steps(self, values: Dict[str, str]) -> List[RotationStep]:
        password = values[self.config_field]
        return [
            RotationStep(
                f"set password of role {role}",
                lambda role=role: self.adapter.write_database_role_password(role, password),
                store=f"role {role}",
            )
            for role in self.settings.database.roles
        ]

    def restart_step(self) -> RotationStep:
        services = self.settings.password_dependents
        return RotationStep(f"restart {', '.join(services)}", lambda: self.orchestrator.restart(services))


class SigningSecretRotation(SecretRotation):
    """New token signing secret plus re-minted anon and service_role tokens."""

    secret_class = SecretClass.SIGNING_SECRET

    def plan(self) -> List[str]:
        fields = [self.config_field] + list(TOKEN_FIELDS.values())
        return [
            f'database setting "{self.settings.database.jwt_setting}" on {self.settings.database.name}',
            f"{CONFIG_RECORD}: {', '.join(fields)}",
        ]

    def new_values(self) -> Dict[str, str]:
        secret = self.generator.generate(self.secret_class)
        tokens = self.minter.mint_pair(secret)
        values = {self.config_field: secret}
        for role in TokenRole:
            values[TOKEN_FIELDS[role]] = tokens[role].value
        return values

    def backing_steps(self, values: Dict[str, str]) -> List[RotationStep]:
        secret = values[self.config_field]
        key = self.settings.database.jwt_setting
        return [
            RotationStep(
                f"set database setting {key}",
                lambda: self.adapter.write_database_setting(secret),
                store=f"setting {key}",
            )
        ]


class EncryptionKeyRotation(SecretRotation):
    """New pooler encryption key; discards the data encrypted under the old one."""

    secret_class = SecretClass.ENCRYPTION_KEY

    def plan(self) -> List[str]:
        store = self.settings.encrypted_store
        return [
            f"service {store.service}: stopped",
            f"table {store.table} in {store.database}: TRUNCATE ... CASCADE",
            f"{CONFIG_RECORD}: {self.config_field}",
        ]

    def backing_steps(self, values: Dict[str, str]) -> List[RotationStep]:
        store = self.settings.encrypted_store
        return [
            RotationStep(f"stop {store.service}", lambda: self.orchestrator.stop([store.service])),
            RotationStep(
                f"truncate {store.table}",
                self._truncate,
                store=f"table {store.table}",
            ),
        ]

    def _truncate(self) -> None:
        self.adapter.truncate_encrypted_subsystem_state()

    def after_config_steps(self, values: Dict[str, str]) -> List[RotationStep]:
        key = values[self.config_field]
        service = self.settings.encrypted_store.service
        return [
            RotationStep("record encryption key fingerprint", lambda: self.adapter.write_marker(key)),
            RotationStep(f"start {service}", lambda: self.orchestrator.up([service])),
        ]

    def recovery_steps(self) -> List[RotationStep]:
        service = self.settings.encrypted_store.service
        return [RotationStep(f"start {service} again", lambda: self.orchestrator.up([service]))]


ROTATIONS = {
    SecretClass.PASSWORD: PasswordRotation,
    SecretClass.SIGNING_SECRET: SigningSecretRotation,
    SecretClass.ENCRYPTION_KEY: EncryptionKeyRotation,
}

STORE_ERRORS = (BackendUnreachable, StoreOperationError, OrchestrationError)


class RotationController:
    """Runs rotations with previews, staged confirmation and ordered writes.

    Backing stores are always written before the config record, so a failed
    run never leaves the config record ahead of the stores that depend on it.
    """

    def __init__(
        self,
        adapter: SecretStoreAdapter,
        backup_manager: BackupManager,
        orchestrator: ComposeOrchestrator,
        generator: Optional[SecretGenerator] = None,
        minter: Optional[TokenMinter] = None,
        echo: Callable[[str], None] = click.echo,
        verbose: bool = False,
    ):
        """
        Initialize rotation controller.

        Args:
            adapter: Access to every secret store
            backup_manager: Database backup trigger
            orchestrator: Dependent service control
            generator: Secret generator
            minter: Token minter
            echo: Output function for operator-facing messages
            verbose: Enable verbose output
        """
        self.adapter = adapter
        self.backup_manager = backup_manager
        self.orchestrator = orchestrator
        self.generator = generator or SecretGenerator(verbose=verbose)
        self.minter = minter or TokenMinter(issuer=adapter.settings.token_issuer)
        self.echo = echo
        self.verbose = verbose
        self.file_manager = FileManager(verbose=verbose)

    def rotate(
        self,
        secret_class: SecretClass,
        mode: Optional[Union[RotationMode, str]],
        prompter: Optional[Prompter] = None,
        skip_backup: bool = False,
        restart_services: bool = True,
    ) -> RotationReport:
        """
        Rotate one secret class.

        Args:
            secret_class: Class to rotate
            mode: PREVIEW prints the plan only, EXECUTE performs it
            prompter: Source of confirmation answers (terminal by default)
            skip_backup: Skip the database backup
            restart_services: Restart dependent services after the config update

        Returns:
            RotationReport: Per-step outcome

        Raises:
            RotationIntentRequired: If mode is not given
            ConfigurationError: If the secret has not been initialized
            ConfirmationDeclined: If the operator refused a stage (nothing changed)
            BackupError: If the requested database backup failed (nothing changed)
            PartialRotationFailure: If some backing stores were updated and others not
            BackendUnreachable: If the first backing write could not reach the database
        """
        if mode is None:
            raise RotationIntentRequired(
                "Choose preview or execute explicitly",
                suggestions=[
                    f"rekey rotate {secret_class.cli_name} --dry-run",
                    f"rekey rotate {secret_class.cli_name} --execute",
                ],
            )
        mode = RotationMode(mode)

        rotation = ROTATIONS[secret_class](self.adapter, self.generator, self.minter, self.orchestrator)
        report = RotationReport(secret_class=secret_class, mode=mode)

        current = self._current_value(rotation)
        report.previous = Secret(rotation.config_field, secret_class, current)
        self._print_plan(rotation, current, restart_services)

        if mode is RotationMode.PREVIEW:
            for line in rotation.plan():
                report.add(line, StepStatus.PLANNED)
            self.echo("[DRY-RUN] No changes were made.")
            return report

        outcome = ConfirmationFlow(policy_for(secret_class, skip_backup), prompter or ClickPrompter(), self.echo).run()

        if outcome.backup_requested:
            report.database_backup = self._backup_database()

        report.config_snapshot = self.adapter.snapshot_config()
        self.echo(f"✓ Config record saved to {report.config_snapshot}")

        values = rotation.new_values()
        self._run_backing_steps(rotation, values, report)
        self._write_config(rotation, values, report)
        report.rotated = report.previous.next_epoch(values[rotation.config_field])

        for step in rotation.after_config_steps(values):
            self._run_followup(step, report)

        if restart_services:
            self._run_followup(rotation.restart_step(), report, guidance="restart_failed")

        if report.has_failures:
            self.echo(f"⚠ {secret_class.cli_name} rotated with warnings; see the failed steps above.")
        else:
            self.echo(f"✓ {secret_class.cli_name} rotation complete. Run 'rekey check' to verify.")

        return report

    def _current_value(self, rotation: SecretRotation) -> str:
        if not self.adapter.config_exists():
            raise ConfigurationError(
                "Config record not found",
                suggestions=create_error_suggestions("config_missing"),
            )

        current = self.adapter.read_config(rotation.config_field)
        if is_placeholder(current):
            raise ConfigurationError(
                f"{rotation.config_field} has not been initialized",
                suggestions=create_error_suggestions("not_initialized"),
            )
        return current

    def _print_plan(self, rotation: SecretRotation, current: str, restart_services: bool) -> None:
        self.echo(f"Rotation of {rotation.config_field} ({rotation.secret_class.cli_name})")
        self.echo(f"  Current value: {mask(current)}")
        self.echo(f"  New value: {rotation.secret_class.length} generated characters")
        self.echo("  Will modify:")
        for line in rotation.plan():
            self.echo(f"    • {line}")
        if restart_services:
            self.echo(f"  Then: {rotation.restart_step().name}")

    def _backup_database(self) -> str:
        self.echo("Creating database backup...")
        result = self.backup_manager.create_database_backup()
        if not result.success:
            raise BackupError(
                "Database backup failed; rotation aborted before any change",
                details=result.error,
                suggestions=[
                    "Check the database container and free disk space, then retry",
                    "Use --skip-backup to rotate without a backup",
                ],
            )
        self.echo(f"✓ Database backup written to {result.path}")
        return result.path

    def _run_backing_steps(self, rotation: SecretRotation, values: Dict[str, str], report: RotationReport) -> None:
        steps = rotation.backing_steps(values)

        for index, step in enumerate(steps):
            try:
                step.action()
            except STORE_ERRORS as e:
                self._record(report, step.name, StepStatus.FAIL, step.store, e.message)
                for remaining in steps[index + 1 :]:
                    self._record(report, remaining.name, StepStatus.SKIPPED, remaining.store)
                self._record(report, f"update {rotation.config_field}", StepStatus.SKIPPED, CONFIG_RECORD)

                failure = self._backing_failure(rotation, report, e)
                self._recover(rotation, report, failure)
                if failure is e:
                    raise
                raise failure from e
            self._record(report, step.name, StepStatus.OK, step.store)

    def _backing_failure(self, rotation: SecretRotation, report: RotationReport, error: RekeyError) -> RekeyError:
        guidance = [f"The config record was left unchanged; the snapshot is {report.config_snapshot}"]

        if report.updated:
            guidance.append(
                f"Stores already holding the new {rotation.config_field}: {', '.join(report.updated)}. "
                "Re-run the rotation once the failure is fixed; it writes a fresh value to every store."
            )
            return PartialRotationFailure(
                f"Rotation of {rotation.config_field} stopped part way",
                updated=report.updated,
                not_updated=report.not_updated,
                report=report,
                details=error.message,
                suggestions=guidance,
            )

        error.report = report
        error.suggestions = list(error.suggestions) + guidance
        return error

    def _write_config(self, rotation: SecretRotation, values: Dict[str, str], report: RotationReport) -> None:
        name = f"update {', '.join(values)}"
        try:
            self.adapter.write_config_many(values)
        except OSError as e:
            self._record(report, name, StepStatus.FAIL, CONFIG_RECORD, str(e))
            recovery = self._write_pending_values(values)
            suggestions = [f"Copy the values from {recovery} into the config record"] if recovery else [
                "Re-run the rotation once the config record is writable"
            ]
            suggestions += create_error_suggestions("restore_config", snapshot=report.config_snapshot)
            failure = PartialRotationFailure(
                "Backing stores were updated but the config record could not be written",
                updated=report.updated,
                not_updated=report.not_updated,
                report=report,
                details=str(e),
                suggestions=suggestions,
            )
            self._recover(rotation, report, failure)
            raise failure from e
        self._record(report, name, StepStatus.OK, CONFIG_RECORD)

    def _write_pending_values(self, values: Dict[str, str]) -> Optional[str]:
        stamp = datetime.now().strftime("%Y%m%d%H%M%S")
        path = os.path.join(self.adapter.settings.backup_path, f"pending.{stamp}.env")
        content = "".join(f"{key}={value}\n" for key, value in values.items())
        try:
            return self.file_manager.write_atomic(path, content)
        except OSError as e:
            logger.error("Could not write pending values to %s: %s", path, e)
            return None

    def _recover(self, rotation: SecretRotation, report: RotationReport, failure: RekeyError) -> None:
        """Run the rotation's recovery steps after it stopped early; failed ones become guidance."""
        for step in rotation.recovery_steps():
            if not self._run_followup(step, report):
                failure.suggestions = list(failure.suggestions) + [
                    f"The rotation could not {step.name}; do it manually (docker compose up -d)"
                ]

    def _run_followup(self, step: RotationStep, report: RotationReport, guidance: Optional[str] = None) -> bool:
        try:
            step.action()
        except (OrchestrationError, OSError) as e:
            detail = e.message if isinstance(e, OrchestrationError) else str(e)
            self._record(report, step.name, StepStatus.FAIL, step.store, detail)
            for suggestion in create_error_suggestions(guidance) if guidance else []:
                self.echo(f"  • {suggestion}")
            return False
        self._record(report, step.name, StepStatus.OK, step.store)
        return True

    def _record(
        self,
        report: RotationReport,
        name: str,
        status: StepStatus,
        store: Optional[str] = None,
        detail: Optional[str] = None,
    ) -> None:
        report.add(name, status, store, detail)
        line = f"{STATUS_SYMBOLS[status]} {name}"
        if status is StepStatus.SKIPPED:
            line += " (skipped)"
        if detail:
            line += f": {detail}"
        self.echo(line)
        logger.info("Rotation step %s: %s", name, status.value)
