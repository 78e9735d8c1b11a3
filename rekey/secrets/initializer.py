"""First-run bootstrap of the instance's secrets."""

import logging
import os
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import click

from .. import __version__
from ..config.manager import ConfigManager
from ..stores.adapter import SecretStoreAdapter
from .generator import SecretGenerator
from .model import (
    AUXILIARY_SECRETS,
    MANAGED_SECRETS,
    TOKEN_FIELDS,
    SecretClass,
    SecretDescriptor,
    TokenRole,
    is_placeholder,
)
from .tokens import TokenMinter

logger = logging.getLogger(__name__)


@dataclass
class InitializationResult:
    """What an initialization run changed."""

    generated: List[str] = field(default_factory=list)
    tokens_minted: bool = False
    database_data_cleared: bool = False
    config_created: bool = False
    already_initialized: bool = False


class InitializationController:
    """Replaces placeholder secrets with generated ones, once per deployment.

    The database is not written to: a fresh database initializes its roles
    and settings from the config record on first boot. When a stale database
    data directory would keep the old password, it is cleared instead.
    """

    def __init__(
        self,
        adapter: SecretStoreAdapter,
        generator: Optional[SecretGenerator] = None,
        minter: Optional[TokenMinter] = None,
        config_manager: Optional[ConfigManager] = None,
        echo: Callable[[str], None] = click.echo,
        verbose: bool = False,
    ):
        self.adapter = adapter
        self.settings = adapter.settings
        self.generator = generator or SecretGenerator(verbose=verbose)
        self.minter = minter or TokenMinter(issuer=self.settings.token_issuer)
        self.config_manager = config_manager or ConfigManager(self.settings.project_dir)
        self.echo = echo
        self.verbose = verbose

    def initialize(self, force: bool = False) -> InitializationResult:
        """
        Generate every managed and auxiliary secret still holding a placeholder.

        Args:
            force: Re-scan for placeholders even if the instance is initialized

        Returns:
            InitializationResult: Generated field names and side effects
        """
        result = InitializationResult()

        if self.adapter.is_initialized() and not force:
            result.already_initialized = True
            self.echo("Instance already initialized; nothing to do.")
            return result

        if not self.adapter.config_exists():
            self._create_config_record()
            result.config_created = True

        current = self.adapter.read_all_config()
        values = self._generate_missing(current)
        result.generated = list(values)

        signing_field = MANAGED_SECRETS[SecretClass.SIGNING_SECRET].name
        signing_secret = values.get(signing_field) or current.get(signing_field)
        tokens_missing = any(is_placeholder(current.get(name)) for name in TOKEN_FIELDS.values())
        if signing_field in values or tokens_missing:
            tokens = self.minter.mint_pair(signing_secret)
            for role in TokenRole:
                values[TOKEN_FIELDS[role]] = tokens[role].value
            result.tokens_minted = True

        password_field = MANAGED_SECRETS[SecretClass.PASSWORD].name
        if password_field in values and self.adapter.database_data_present():
            # Cleared before the new password is written, so a failed clear is retried on the next run
            self.adapter.clear_database_data()
            result.database_data_cleared = True
            self.echo(f"⚠ Cleared stale database data in {self.settings.data_dir_path}")

        if values:
            self.adapter.write_config_many(values)
            for name in result.generated:
                self.echo(f"✓ Generated {name}")
            if result.tokens_minted:
                self.echo(f"✓ Minted {', '.join(TOKEN_FIELDS.values())}")

        key_field = MANAGED_SECRETS[SecretClass.ENCRYPTION_KEY].name
        if key_field in values or self.adapter.recorded_key_fingerprint() is None:
            self.adapter.write_marker(values.get(key_field) or current.get(key_field))
        else:
            # Keep the recorded fingerprint so a key edited by hand still shows as drift
            self.adapter.write_marker()

        if not values:
            self.echo("No placeholder secrets found.")
        self.echo("✓ Instance initialized")
        return result

    def _create_config_record(self) -> None:
        example = self.settings.env_example_path
        if os.path.isfile(example):
            with open(example, encoding="utf-8") as f:
                self.adapter.create_config(f.read())
            self.echo(f"Created {self.settings.env_file} from {self.settings.env_example}")
        else:
            content = self.config_manager.render_env_template({"version": __version__})
            self.adapter.create_config(content)
            self.echo(f"Created {self.settings.env_file} from the default template")

    def _generate_missing(self, current: Dict[str, Optional[str]]) -> Dict[str, str]:
        values: Dict[str, str] = {}
        descriptors: List[SecretDescriptor] = list(MANAGED_SECRETS.values()) + list(AUXILIARY_SECRETS)

        for descriptor in descriptors:
            if not descriptor.needs_value(current.get(descriptor.name)):
                continue
            values[descriptor.name] = self._generate(descriptor)
            logger.info("Generated %s", descriptor.name)

        return values

    def _generate(self, descriptor: SecretDescriptor) -> str:
        if descriptor.secret_class is None:
            return self.generator.generate_tenant_id()
        return self.generator.generate(descriptor.secret_class)
