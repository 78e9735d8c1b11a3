"""Pytest configuration and shared fixtures."""

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import pytest

from rekey.backup.manager import BackupResult
from rekey.config.manager import Settings
from rekey.secrets.confirmation import Prompter
from rekey.secrets.generator import SecretGenerator
from rekey.secrets.model import SecretClass, TokenRole
from rekey.secrets.tokens import TokenMinter
from rekey.stores.adapter import SecretStoreAdapter
from rekey.stores.config_store import ConfigStore
from rekey.utils.errors import BackendUnreachable, OrchestrationError, StoreOperationError
from rekey.utils.files import FileManager

ISSUED_AT = 1700000000

ROLES = [
    "authenticator",
    "pgbouncer",
    "supabase_auth_admin",
    "supabase_functions_admin",
    "supabase_storage_admin",
]


class InMemoryConfigStore(ConfigStore):
    """Config record kept in a dict. None means the record does not exist."""

    def __init__(self, values: Optional[Dict[str, str]] = None):
        self.values = dict(values) if values is not None else None
        self.writes: List[Dict[str, str]] = []
        self.snapshots: List[Dict[str, str]] = []
        self.fail_writes = False

    def exists(self):
        return self.values is not None

    def read(self, name):
        return (self.values or {}).get(name)

    def read_all(self):
        return dict(self.values or {})

    def write_many(self, values):
        if self.fail_writes:
            raise OSError("No space left on device")
        self.values = {**(self.values or {}), **values}
        self.writes.append(dict(values))

    def create(self, content):
        self.values = {}
        for line in content.splitlines():
            line = line.strip()
            if line and not line.startswith("#") and "=" in line:
                key, value = line.split("=", 1)
                self.values[key] = value

    def snapshot(self, backup_dir):
        self.snapshots.append(dict(self.values))
        return os.path.join(backup_dir, f".env.bak.{len(self.snapshots)}")


class FakeDatabaseStore:
    """In-memory role, setting and encrypted-table stores."""

    def __init__(self):
        self.roles: Dict[str, str] = {}
        self.settings: Dict[str, str] = {}
        self.tenants: List[str] = ["tenant-1"]
        self.fail_on_roles: set = set()
        self.unreachable = False
        self.calls: List[str] = []

    def _reach(self):
        if self.unreachable:
            raise BackendUnreachable("Could not connect to the database")

    def set_role_password(self, role, password):
        self._reach()
        if role in self.fail_on_roles:
            raise StoreOperationError(f"Database refused to set the password of role {role}")
        self.calls.append(f"role:{role}")
        self.roles[role] = password

    def read_setting(self, key):
        self._reach()
        return self.settings.get(key)

    def write_setting(self, key, value):
        self._reach()
        self.calls.append(f"setting:{key}")
        self.settings[key] = value

    def truncate_table(self, database, table):
        self._reach()
        self.calls.append(f"truncate:{database}:{table}")
        self.tenants.clear()
        return True

    def verify_login(self, role, password):
        self._reach()
        return self.roles.get(role) == password


class FakeOrchestrator:
    def __init__(self):
        self.calls: List[tuple] = []
        self.fail = False

    def _record(self, *call):
        if self.fail:
            raise OrchestrationError(f"Could not {call[0]}")
        self.calls.append(call)

    def restart(self, services):
        self._record("restart", tuple(services))

    def stop(self, services):
        self._record("stop", tuple(services))

    def up(self, services=None):
        self._record("up", tuple(services or ()))

    def down(self):
        self._record("down")

    def restart_all(self):
        self.down()
        self.up()


class FakeBackupManager:
    def __init__(self):
        self.calls = 0
        self.result = BackupResult(success=True, path="/backups/backup_20240101_000000.sql")

    def create_database_backup(self):
        self.calls += 1
        return self.result


class ScriptedPrompter(Prompter):
    """Answers prompts from a fixed script and records what was asked."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.asked: List[str] = []

    def confirm(self, message, default=False):
        self.asked.append(message)
        return bool(self.answers.pop(0))

    def prompt(self, message):
        self.asked.append(message)
        return str(self.answers.pop(0))


@dataclass
class FakeInstance:
    settings: Settings
    config: InMemoryConfigStore
    database: FakeDatabaseStore
    adapter: SecretStoreAdapter
    orchestrator: FakeOrchestrator = field(default_factory=FakeOrchestrator)
    backups: FakeBackupManager = field(default_factory=FakeBackupManager)


@pytest.fixture
def settings(tmp_path):
    """Default settings rooted in a temporary instance directory."""
    return Settings(project_dir=str(tmp_path))


@pytest.fixture
def generator():
    return SecretGenerator()


@pytest.fixture
def minter():
    return TokenMinter()


@pytest.fixture
def empty_instance(settings):
    """An instance whose config record does not exist yet."""
    config = InMemoryConfigStore()
    database = FakeDatabaseStore()
    adapter = SecretStoreAdapter(config, database, settings, FileManager())
    return FakeInstance(settings, config, database, adapter)


@pytest.fixture
def instance(settings, generator, minter):
    """An initialized instance whose stores all agree with the config record."""
    password = generator.generate(SecretClass.PASSWORD)
    secret = generator.generate(SecretClass.SIGNING_SECRET)
    key = generator.generate(SecretClass.ENCRYPTION_KEY)
    tokens = minter.mint_pair(secret, now=ISSUED_AT)

    config = InMemoryConfigStore(
        {
            "INSTANCE_NAME": "supabase",
            "POSTGRES_PASSWORD": password,
            "JWT_SECRET": secret,
            "ANON_KEY": tokens[TokenRole.ANON].value,
            "SERVICE_ROLE_KEY": tokens[TokenRole.SERVICE_ROLE].value,
            "VAULT_ENC_KEY": key,
        }
    )
    database = FakeDatabaseStore()
    database.roles = {role: password for role in ROLES}
    database.settings = {"app.settings.jwt_secret": secret}

    adapter = SecretStoreAdapter(config, database, settings, FileManager())
    adapter.write_marker(key)
    return FakeInstance(settings, config, database, adapter)


@pytest.fixture
def make_prompter():
    """Factory for prompters answering from a script."""
    return ScriptedPrompter
