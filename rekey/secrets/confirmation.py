"""Staged operator confirmation for destructive rotations."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import click

from ..utils.errors import ConfirmationDeclined
from .model import SecretClass

logger = logging.getLogger(__name__)


class ConfirmationState(Enum):
    AWAITING_BACKUP_CHOICE = "awaiting_backup_choice"
    AWAITING_LOSS_ACK = "awaiting_loss_ack"
    AWAITING_REGENERABILITY_ACK = "awaiting_regenerability_ack"
    AWAITING_TYPED_PHRASE = "awaiting_typed_phrase"
    EXECUTING = "executing"
    DECLINED = "declined"


STATE_ORDER = (
    ConfirmationState.AWAITING_BACKUP_CHOICE,
    ConfirmationState.AWAITING_LOSS_ACK,
    ConfirmationState.AWAITING_REGENERABILITY_ACK,
    ConfirmationState.AWAITING_TYPED_PHRASE,
    ConfirmationState.EXECUTING,
)


class BackupPolicy(Enum):
    OFFER = "offer"
    REQUIRED = "required"
    SKIP = "skip"


@dataclass
class ConfirmationPolicy:
    """What the operator must acknowledge before a rotation runs.

    A None message or phrase skips the corresponding state.
    """

    backup: BackupPolicy = BackupPolicy.OFFER
    loss_ack: Optional[str] = None
    regenerability_ack: Optional[str] = None
    typed_phrase: Optional[str] = None


@dataclass
class ConfirmationOutcome:
    backup_requested: bool


class Prompter:
    """Source of operator answers."""

    def confirm(self, message: str, default: bool = False) -> bool:
        raise NotImplementedError

    def prompt(self, message: str) -> str:
        raise NotImplementedError


class ClickPrompter(Prompter):
    """Interactive prompter on the terminal. End of input counts as a refusal."""

    def confirm(self, message: str, default: bool = False) -> bool:
        try:
            return click.confirm(message, default=default)
        except click.Abort:
            return False

    def prompt(self, message: str) -> str:
        try:
            return click.prompt(message, default="", show_default=False)
        except click.Abort:
            return ""


def policy_for(secret_class: SecretClass, skip_backup: bool = False) -> ConfirmationPolicy:
    """
    Confirmation policy for rotating a secret class.

    Args:
        secret_class: Class being rotated
        skip_backup: Operator chose to skip the database backup

    Returns:
        ConfirmationPolicy: Stages the operator must pass
    """
    if secret_class is SecretClass.PASSWORD:
        return ConfirmationPolicy(
            backup=BackupPolicy.SKIP if skip_backup else BackupPolicy.OFFER,
            loss_ack="Rotate the database password and restart the dependent services?",
        )

    if secret_class is SecretClass.SIGNING_SECRET:
        return ConfirmationPolicy(
            backup=BackupPolicy.SKIP if skip_backup else BackupPolicy.REQUIRED,
            loss_ack=(
                "Every issued token becomes invalid: all users are logged out and "
                "clients must be updated with the new anon and service_role keys. Continue?"
            ),
            typed_phrase="rotate-jwt-secret",
        )

    return ConfirmationPolicy(
        backup=BackupPolicy.SKIP if skip_backup else BackupPolicy.REQUIRED,
        loss_ack=(
            "All connection pooler tenant data encrypted under the current key "
            "will be permanently deleted. Continue?"
        ),
        regenerability_ack=(
            "Confirm the pooler tenant configuration can be recreated from the "
            "config record after the restart."
        ),
        typed_phrase="rotate-vault-key",
    )


class ConfirmationFlow:
    """Drives the operator through the stages of a ConfirmationPolicy.

    Stages not required by the policy are passed through. Any refusal moves
    the flow to DECLINED and raises ConfirmationDeclined; nothing has been
    changed at that point.
    """

    def __init__(
        self,
        policy: ConfirmationPolicy,
        prompter: Prompter,
        echo: Callable[[str], None] = click.echo,
    ):
        self.policy = policy
        self.prompter = prompter
        self.echo = echo
        self.state = ConfirmationState.AWAITING_BACKUP_CHOICE
        self.backup_requested = False

    def advance(self) -> ConfirmationState:
        """
        Handle the current stage and move to the next one.

        Returns:
            ConfirmationState: The new state

        Raises:
            ConfirmationDeclined: If the operator refused the current stage
        """
        if self.state in (ConfirmationState.EXECUTING, ConfirmationState.DECLINED):
            return self.state

        handler = {
            ConfirmationState.AWAITING_BACKUP_CHOICE: self._backup_choice,
            ConfirmationState.AWAITING_LOSS_ACK: self._loss_ack,
            ConfirmationState.AWAITING_REGENERABILITY_ACK: self._regenerability_ack,
            ConfirmationState.AWAITING_TYPED_PHRASE: self._typed_phrase,
        }[self.state]
        handler()

        self.state = STATE_ORDER[STATE_ORDER.index(self.state) + 1]
        logger.debug("Confirmation advanced to %s", self.state.value)
        return self.state

    def run(self) -> ConfirmationOutcome:
        """Advance until EXECUTING."""
        while self.state is not ConfirmationState.EXECUTING:
            self.advance()
        return ConfirmationOutcome(backup_requested=self.backup_requested)

    def _decline(self, reason: str) -> None:
        self.state = ConfirmationState.DECLINED
        raise ConfirmationDeclined(reason)

    def _backup_choice(self) -> None:
        if self.policy.backup is BackupPolicy.REQUIRED:
            self.echo("A database backup will be created before any change.")
            self.backup_requested = True
        elif self.policy.backup is BackupPolicy.SKIP:
            self.echo("⚠ Database backup skipped at operator request.")
            self.backup_requested = False
        else:
            self.backup_requested = self.prompter.confirm("Create a database backup first?", default=True)

    def _loss_ack(self) -> None:
        if self.policy.loss_ack and not self.prompter.confirm(self.policy.loss_ack):
            self._decline("Operator declined the rotation")

    def _regenerability_ack(self) -> None:
        if self.policy.regenerability_ack and not self.prompter.confirm(self.policy.regenerability_ack):
            self._decline("Operator did not confirm the encrypted data can be recreated")

    def _typed_phrase(self) -> None:
        phrase = self.policy.typed_phrase
        if not phrase:
            return
        answer = self.prompter.prompt(f"Type '{phrase}' to proceed")
        if answer.strip() != phrase:
            self._decline("Confirmation phrase did not match")
