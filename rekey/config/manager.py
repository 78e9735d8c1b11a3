"""Settings management for rekey."""

import copy
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml
from jinja2 import Environment, FileSystemLoader

from ..utils.errors import ConfigurationError
from .validator import ConfigValidator

SETTINGS_FILENAME = "rekey.yml"

DEFAULT_ROLES = [
    "authenticator",
    "pgbouncer",
    "supabase_auth_admin",
    "supabase_functions_admin",
    "supabase_storage_admin",
]

DEFAULT_PASSWORD_DEPENDENTS = [
    "auth",
    "rest",
    "storage",
    "meta",
    "functions",
    "supavisor",
    "realtime",
]

# {instance} is replaced with INSTANCE_NAME from the config record
DEFAULT_HEALTH_CONTAINERS = [
    "{instance}-db",
    "{instance}-kong",
    "{instance}-auth",
    "{instance}-rest",
    "realtime-dev.{instance}-realtime",
    "{instance}-storage",
    "{instance}-meta",
    "{instance}-edge-functions",
    "{instance}-pooler",
    "{instance}-studio",
    "{instance}-analytics",
    "{instance}-imgproxy",
    "{instance}-vector",
]

DEFAULT_HEALTH_ENDPOINTS = {
    "Kong Gateway": "/",
    "Auth": "/auth/v1/health",
    "REST": "/rest/v1/",
    "Storage": "/storage/v1/status",
}

DEFAULT_SETTINGS: Dict[str, Any] = {
    "env_file": ".env",
    "env_example": ".env.example",
    "init_marker": ".initialized",
    "backup_dir": "backups",
    "timeout_seconds": 15,
    "token_issuer": "supabase",
    "database": {
        "container": None,
        "superuser": "postgres",
        "name": "postgres",
        "roles": DEFAULT_ROLES,
        "jwt_setting": "app.settings.jwt_secret",
        "data_dir": "volumes/db/data",
    },
    "encrypted_store": {
        "database": "_supabase",
        "table": "supavisor.tenants",
        "service": "supavisor",
    },
    "services": {
        "password_dependents": DEFAULT_PASSWORD_DEPENDENTS,
    },
    "backups": {
        "keep_database_dumps": 10,
        "dump_timeout_seconds": 600,
    },
    "health": {
        "containers": DEFAULT_HEALTH_CONTAINERS,
        "api_url": "http://localhost:8000",
        "endpoints": DEFAULT_HEALTH_ENDPOINTS,
        "endpoint_timeout_seconds": 5,
    },
}


@dataclass
class DatabaseSettings:
    """Where the database role and setting stores live."""

    container: Optional[str] = None
    superuser: str = "postgres"
    name: str = "postgres"
    roles: List[str] = field(default_factory=lambda: list(DEFAULT_ROLES))
    jwt_setting: str = "app.settings.jwt_secret"
    data_dir: str = "volumes/db/data"


@dataclass
class EncryptedStoreSettings:
    """Location of the data encrypted under the encryption key."""

    database: str = "_supabase"
    table: str = "supavisor.tenants"
    service: str = "supavisor"


@dataclass
class HealthSettings:
    """Containers and HTTP endpoints covered by the service health check."""

    containers: List[str] = field(default_factory=lambda: list(DEFAULT_HEALTH_CONTAINERS))
    api_url: str = "http://localhost:8000"
    endpoints: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_HEALTH_ENDPOINTS))
    endpoint_timeout_seconds: int = 5


@dataclass
class Settings:
    """Resolved rekey settings for one instance directory."""

    project_dir: str
    env_file: str = ".env"
    env_example: str = ".env.example"
    init_marker: str = ".initialized"
    backup_dir: str = "backups"
    timeout_seconds: int = 15
    token_issuer: str = "supabase"
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    encrypted_store: EncryptedStoreSettings = field(default_factory=EncryptedStoreSettings)
    password_dependents: List[str] = field(default_factory=lambda: list(DEFAULT_PASSWORD_DEPENDENTS))
    keep_database_dumps: int = 10
    dump_timeout_seconds: int = 600
    health: HealthSettings = field(default_factory=HealthSettings)

    def path(self, relative: str) -> str:
        """Resolve a settings path against the project directory."""
        if os.path.isabs(relative):
            return relative
        return os.path.join(self.project_dir, relative)

    @property
    def env_path(self) -> str:
        return self.path(self.env_file)

    @property
    def env_example_path(self) -> str:
        return self.path(self.env_example)

    @property
    def marker_path(self) -> str:
        return self.path(self.init_marker)

    @property
    def backup_path(self) -> str:
        return self.path(self.backup_dir)

    @property
    def data_dir_path(self) -> str:
        return self.path(self.database.data_dir)

    def database_container(self, instance_name: Optional[str]) -> str:
        """Database container name, derived from the instance name unless configured."""
        if self.database.container:
            return self.database.container
        return f"{instance_name or 'supabase'}-db"

    def health_containers(self, instance_name: Optional[str]) -> List[str]:
        return [name.format(instance=instance_name or "supabase") for name in self.health.containers]

    def health_endpoints(self) -> Dict[str, str]:
        """Endpoint name to absolute URL under the API gateway."""
        base = self.health.api_url.rstrip("/")
        return {name: base + path for name, path in self.health.endpoints.items()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any], project_dir: str) -> "Settings":
        """Build settings from a validated dictionary merged over the defaults."""
        database = data.get("database", {})
        encrypted = data.get("encrypted_store", {})
        services = data.get("services", {})
        backups = data.get("backups", {})
        health = data.get("health", {})

        return cls(
            project_dir=os.path.abspath(project_dir),
            env_file=data["env_file"],
            env_example=data["env_example"],
            init_marker=data["init_marker"],
            backup_dir=data["backup_dir"],
            timeout_seconds=data["timeout_seconds"],
            token_issuer=data["token_issuer"],
            database=DatabaseSettings(
                container=database.get("container"),
                superuser=database["superuser"],
                name=database["name"],
                roles=list(database["roles"]),
                jwt_setting=database["jwt_setting"],
                data_dir=database["data_dir"],
            ),
            encrypted_store=EncryptedStoreSettings(
                database=encrypted["database"],
                table=encrypted["table"],
                service=encrypted["service"],
            ),
            password_dependents=list(services["password_dependents"]),
            keep_database_dumps=backups["keep_database_dumps"],
            dump_timeout_seconds=backups["dump_timeout_seconds"],
            health=HealthSettings(
                containers=list(health["containers"]),
                api_url=health["api_url"],
                endpoints=dict(health["endpoints"]),
                endpoint_timeout_seconds=health["endpoint_timeout_seconds"],
            ),
        )


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ConfigManager:
    """Loads rekey settings and renders the default config record."""

    def __init__(self, path: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            path: Optional instance directory (defaults to current directory)
        """
        self.path = path or os.getcwd()
        self.validator = ConfigValidator()

        templates_dir = os.path.join(os.path.dirname(__file__), "..", "templates")
        self.jinja_env = Environment(
            loader=FileSystemLoader(templates_dir),
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )

    def get_settings_path(self, settings_path: Optional[str] = None) -> Optional[str]:
        """Get path to the settings file, if one exists."""
        if settings_path:
            return settings_path

        candidate = os.path.join(self.path, SETTINGS_FILENAME)
        if os.path.exists(candidate):
            return candidate

        return None

    def load_settings(self, settings_path: Optional[str] = None) -> Settings:
        """
        Load settings for the instance directory.

        Args:
            settings_path: Optional explicit settings file

        Returns:
            Settings: Resolved settings (defaults when no file exists)

        Raises:
            ConfigurationError: If the file is unreadable or invalid
        """
        path = self.get_settings_path(settings_path)
        overrides: Dict[str, Any] = {}

        if path:
            try:
                with open(path, encoding="utf-8") as f:
                    overrides = yaml.safe_load(f) or {}
            except FileNotFoundError as e:
                raise ConfigurationError(f"Settings file not found: {path}") from e
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {path}", details=str(e)) from e

            if not isinstance(overrides, dict):
                raise ConfigurationError(f"Settings file {path} must contain a mapping")

            errors = self.validator.validate_settings(overrides)
            if errors:
                raise ConfigurationError(
                    f"Invalid settings in {path}",
                    details="; ".join(errors),
                    suggestions=["Compare the file against the documented settings keys"],
                )

        merged = _deep_merge(DEFAULT_SETTINGS, overrides)
        return Settings.from_dict(merged, self.path)

    def render_env_template(self, template_vars: Optional[Dict[str, Any]] = None) -> str:
        """
        Render the bundled default config record.

        Args:
            template_vars: Variables for template rendering

        Returns:
            str: Rendered .env content
        """
        template = self.jinja_env.get_template("env.j2")
        return template.render(**(template_vars or {}))
