"""Read-only drift detection between the config record and its backing stores."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from ..secrets.model import MANAGED_SECRETS, TOKEN_FIELDS, SecretClass, TokenRole, is_placeholder
from ..secrets.tokens import TokenMinter
from ..stores.adapter import SecretStoreAdapter, fingerprint
from ..utils.errors import BackendUnreachable, InvariantViolation, StoreOperationError

logger = logging.getLogger(__name__)


class InvariantStatus(Enum):
    MATCH = "match"
    MISMATCH = "mismatch"
    UNKNOWN = "unknown"


@dataclass
class InvariantResult:
    """Outcome of one invariant check."""

    invariant: int
    name: str
    status: InvariantStatus
    details: Optional[str] = None


@dataclass
class ConsistencyReport:
    results: List[InvariantResult] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return all(r.status is not InvariantStatus.MISMATCH for r in self.results)

    @property
    def mismatches(self) -> List[InvariantResult]:
        return [r for r in self.results if r.status is InvariantStatus.MISMATCH]

    def get(self, invariant: int) -> InvariantResult:
        return next(r for r in self.results if r.invariant == invariant)

    def raise_for_violations(self) -> None:
        """Raise InvariantViolation if any invariant is a mismatch."""
        if self.consistent:
            return
        names = ", ".join(r.name for r in self.mismatches)
        raise InvariantViolation(
            f"Drift detected: {names}",
            report=self,
            details="; ".join(f"{r.name}: {r.details}" for r in self.mismatches if r.details),
            suggestions=[
                "Re-run the rotation of the drifted secret to write one value to every store",
                "Or restore the config record from its latest backup in the backup directory",
            ],
        )


class ConsistencyChecker:
    """Compares every store holding a managed secret against the config record.

    Never writes. Stores that cannot be read are reported UNKNOWN rather than
    failing the whole check.
    """

    def __init__(self, adapter: SecretStoreAdapter, minter: Optional[TokenMinter] = None):
        self.adapter = adapter
        self.settings = adapter.settings
        self.minter = minter or TokenMinter(issuer=self.settings.token_issuer)

    def verify(self) -> ConsistencyReport:
        """
        Check all four invariants.

        Returns:
            ConsistencyReport: One result per invariant
        """
        config = self.adapter.read_all_config()
        report = ConsistencyReport()
        report.results.append(self._check_role_passwords(config.get(MANAGED_SECRETS[SecretClass.PASSWORD].name)))
        report.results.append(self._check_signing_setting(config.get(MANAGED_SECRETS[SecretClass.SIGNING_SECRET].name)))
        report.results.append(self._check_tokens(config))
        report.results.append(self._check_encryption_key(config.get(MANAGED_SECRETS[SecretClass.ENCRYPTION_KEY].name)))

        for result in report.results:
            logger.debug("Invariant %d (%s): %s", result.invariant, result.name, result.status.value)

        return report

    def _check_role_passwords(self, password: Optional[str]) -> InvariantResult:
        name = "role passwords"
        if is_placeholder(password):
            return InvariantResult(1, name, InvariantStatus.MISMATCH, "POSTGRES_PASSWORD is not set in the config record")

        failed = []
        for role in self.settings.database.roles:
            try:
                if not self.adapter.verify_role_login(role, password):
                    failed.append(role)
            except (BackendUnreachable, StoreOperationError) as e:
                return InvariantResult(1, name, InvariantStatus.UNKNOWN, e.message)

        if failed:
            return InvariantResult(1, name, InvariantStatus.MISMATCH, f"login refused for {', '.join(failed)}")
        return InvariantResult(1, name, InvariantStatus.MATCH)

    def _check_signing_setting(self, secret: Optional[str]) -> InvariantResult:
        key = self.settings.database.jwt_setting
        name = "signing secret setting"
        if is_placeholder(secret):
            return InvariantResult(2, name, InvariantStatus.MISMATCH, "JWT_SECRET is not set in the config record")

        try:
            stored = self.adapter.read_database_setting()
        except (BackendUnreachable, StoreOperationError) as e:
            return InvariantResult(2, name, InvariantStatus.UNKNOWN, e.message)

        if stored is None:
            return InvariantResult(2, name, InvariantStatus.MISMATCH, f"{key} is not set on the database")
        if stored != secret:
            return InvariantResult(2, name, InvariantStatus.MISMATCH, f"{key} differs from JWT_SECRET")
        return InvariantResult(2, name, InvariantStatus.MATCH)

    def _check_tokens(self, config: dict) -> InvariantResult:
        name = "derived tokens"
        secret = config.get(MANAGED_SECRETS[SecretClass.SIGNING_SECRET].name)
        if is_placeholder(secret):
            return InvariantResult(3, name, InvariantStatus.MISMATCH, "JWT_SECRET is not set in the config record")

        problems = []
        for role in TokenRole:
            field_name = TOKEN_FIELDS[role]
            token = config.get(field_name)
            if is_placeholder(token):
                problems.append(f"{field_name} is not set")
            elif not self.minter.verify(token, secret):
                problems.append(f"{field_name} does not verify under JWT_SECRET")
            elif (self.minter.decode_claims(token) or {}).get("role") != role.value:
                problems.append(f"{field_name} does not carry role {role.value}")

        if problems:
            return InvariantResult(3, name, InvariantStatus.MISMATCH, "; ".join(problems))
        return InvariantResult(3, name, InvariantStatus.MATCH)

    def _check_encryption_key(self, key: Optional[str]) -> InvariantResult:
        name = "encryption key"
        if is_placeholder(key):
            return InvariantResult(4, name, InvariantStatus.MISMATCH, "VAULT_ENC_KEY is not set in the config record")

        recorded = self.adapter.recorded_key_fingerprint()
        if recorded is None:
            return InvariantResult(
                4, name, InvariantStatus.UNKNOWN, "encrypted data cannot be inspected and no key fingerprint is recorded"
            )
        if recorded != fingerprint(key):
            return InvariantResult(
                4,
                name,
                InvariantStatus.MISMATCH,
                "VAULT_ENC_KEY changed outside rekey; pooler data encrypted under the old key is unreadable",
            )
        return InvariantResult(4, name, InvariantStatus.MATCH)
