"""Secret model: which secrets exist, where they are kept, and what counts as a placeholder."""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

TOKEN_LIFETIME_SECONDS = 315360000  # 10 years

PLACEHOLDER_PREFIXES = ("your-", "CHANGE", "change", "placeholder", "example")
PLACEHOLDER_VALUES = ("auto-generated",)
PLACEHOLDER_FRAGMENTS = ("super-secret",)


class SecretClass(Enum):
    """Classes of managed secrets, each with its own length and blast radius."""

    PASSWORD = "password"
    SIGNING_SECRET = "signing_secret"
    ENCRYPTION_KEY = "encryption_key"

    @property
    def length(self) -> int:
        return SECRET_LENGTHS[self]

    @property
    def cli_name(self) -> str:
        return CLI_NAMES[self]

    @classmethod
    def from_cli_name(cls, name: str) -> "SecretClass":
        for secret_class, cli_name in CLI_NAMES.items():
            if cli_name == name:
                return secret_class
        raise ValueError(f"Unknown secret class: {name}")


SECRET_LENGTHS = {
    SecretClass.PASSWORD: 32,
    SecretClass.SIGNING_SECRET: 48,
    SecretClass.ENCRYPTION_KEY: 32,
}

CLI_NAMES = {
    SecretClass.PASSWORD: "password",
    SecretClass.SIGNING_SECRET: "jwt-secret",
    SecretClass.ENCRYPTION_KEY: "vault-key",
}


class TokenRole(Enum):
    """Role claims carried by the derived access tokens."""

    ANON = "anon"
    SERVICE_ROLE = "service_role"


@dataclass(frozen=True)
class SecretDescriptor:
    """A named config field and the class of material it holds."""

    name: str
    secret_class: Optional[SecretClass]
    description: str
    insecure_defaults: Tuple[str, ...] = ()

    def needs_value(self, value: Optional[str]) -> bool:
        """Whether the current value must be replaced by a generated one."""
        return is_placeholder(value) or value in self.insecure_defaults


@dataclass
class Secret:
    """A managed secret at a given epoch."""

    name: str
    secret_class: SecretClass
    current_value: str
    epoch: int = 0

    def next_epoch(self, new_value: str) -> "Secret":
        return Secret(self.name, self.secret_class, new_value, self.epoch + 1)


@dataclass(frozen=True)
class DerivedToken:
    """A signed, role-scoped access token computed from a signing secret."""

    role: str
    issuer: str
    issued_at: int
    expires_at: int
    value: str

    def __str__(self) -> str:
        return self.value


MANAGED_SECRETS: Dict[SecretClass, SecretDescriptor] = {
    SecretClass.PASSWORD: SecretDescriptor(
        "POSTGRES_PASSWORD", SecretClass.PASSWORD, "Database role password"
    ),
    SecretClass.SIGNING_SECRET: SecretDescriptor(
        "JWT_SECRET", SecretClass.SIGNING_SECRET, "Token signing secret"
    ),
    SecretClass.ENCRYPTION_KEY: SecretDescriptor(
        "VAULT_ENC_KEY", SecretClass.ENCRYPTION_KEY, "Connection pooler encryption key"
    ),
}

TOKEN_FIELDS: Dict[TokenRole, str] = {
    TokenRole.ANON: "ANON_KEY",
    TokenRole.SERVICE_ROLE: "SERVICE_ROLE_KEY",
}

# Bootstrapped once, never rotated, no backing store.
# secret_class None marks the pooler tenant id, which is not random material.
AUXILIARY_SECRETS = (
    SecretDescriptor("PG_META_CRYPTO_KEY", SecretClass.PASSWORD, "Meta service crypto key"),
    SecretDescriptor(
        "SECRET_KEY_BASE",
        SecretClass.SIGNING_SECRET,
        "Realtime and pooler secret key base",
        insecure_defaults=("UpNVntn3cDxHJpq99YMc1T1AQgQpc8kfYTuRgBiYa15BLrx8etQoXz3gZv1/u2oq",),
    ),
    SecretDescriptor(
        "DASHBOARD_PASSWORD",
        SecretClass.PASSWORD,
        "Dashboard login password",
        insecure_defaults=("this_password_is_insecure_and_should_be_updated",),
    ),
    SecretDescriptor("POOLER_TENANT_ID", None, "Connection pooler tenant id"),
    SecretDescriptor("LOGFLARE_PUBLIC_ACCESS_TOKEN", SecretClass.SIGNING_SECRET, "Analytics public token"),
    SecretDescriptor("LOGFLARE_PRIVATE_ACCESS_TOKEN", SecretClass.SIGNING_SECRET, "Analytics private token"),
)


def is_placeholder(value: Optional[str]) -> bool:
    """
    Check whether a config value is a placeholder rather than real material.

    Args:
        value: Value read from the config record (None when absent)

    Returns:
        bool: True for absent, empty or template values
    """
    if value is None:
        return True

    value = value.strip()
    if not value or value in PLACEHOLDER_VALUES:
        return True
    if value.startswith(PLACEHOLDER_PREFIXES):
        return True
    return any(fragment in value for fragment in PLACEHOLDER_FRAGMENTS)


def mask(value: Optional[str], visible: int = 4) -> str:
    """Mask a secret for display, keeping a few characters at each end."""
    if not value:
        return "<unset>"
    if len(value) > visible * 2:
        return f"{value[:visible]}...{value[-visible:]}"
    return "*" * len(value)
