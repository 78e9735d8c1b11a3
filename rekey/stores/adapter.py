"""Uniform access to every store that holds a copy of a managed secret."""

import hashlib
import json
import logging
import os
from datetime import datetime
from typing import Any, Dict, Optional

from ..config.manager import Settings
from ..utils.errors import ConfigurationError, create_error_suggestions
from ..utils.files import FileManager
from .config_store import ConfigStore
from .database import DatabaseStore

logger = logging.getLogger(__name__)

FINGERPRINT_KEY = "encryption_key_fingerprint"


def fingerprint(value: str) -> str:
    """Short SHA-256 fingerprint of a secret, safe to persist and display."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:16]


class SecretStoreAdapter:
    """Reads and writes secrets across the config record and the database.

    The config record is the source of truth. Database writes are issued by
    the rotation workflow before the config record is updated.
    """

    def __init__(
        self,
        config_store: ConfigStore,
        database: DatabaseStore,
        settings: Settings,
        file_manager: Optional[FileManager] = None,
    ):
        self.config_store = config_store
        self.database = database
        self.settings = settings
        self.file_manager = file_manager or FileManager()

    # Config record

    def config_exists(self) -> bool:
        return self.config_store.exists()

    def read_config(self, name: str) -> Optional[str]:
        return self.config_store.read(name)

    def read_all_config(self) -> Dict[str, Optional[str]]:
        return self.config_store.read_all()

    def write_config(self, name: str, value: str) -> None:
        self.config_store.write(name, value)

    def write_config_many(self, values: Dict[str, str]) -> None:
        self.config_store.write_many(values)

    def create_config(self, content: str) -> None:
        self.config_store.create(content)

    def snapshot_config(self) -> str:
        """Copy the config record into the backup directory before a mutation."""
        if not self.config_store.exists():
            raise ConfigurationError(
                "Config record not found; nothing to snapshot",
                suggestions=create_error_suggestions("config_missing"),
            )
        return self.config_store.snapshot(self.settings.backup_path)

    # Database role and setting stores

    def read_database_setting(self, key: Optional[str] = None) -> Optional[str]:
        return self.database.read_setting(key or self.settings.database.jwt_setting)

    def write_database_setting(self, value: str, key: Optional[str] = None) -> None:
        self.database.write_setting(key or self.settings.database.jwt_setting, value)

    def write_database_role_password(self, role: str, value: str) -> None:
        """
        Set the password of one managed database role.

        Args:
            role: One of the configured roles
            value: New password

        Raises:
            ConfigurationError: If the role is not a managed role
        """
        if role not in self.settings.database.roles:
            raise ConfigurationError(f"Role '{role}' is not a managed database role")
        self.database.set_role_password(role, value)

    def verify_role_login(self, role: str, value: str) -> bool:
        return self.database.verify_login(role, value)

    # Encrypted subsystem

    def truncate_encrypted_subsystem_state(self) -> bool:
        """Discard all data encrypted under the current encryption key."""
        store = self.settings.encrypted_store
        return self.database.truncate_table(store.database, store.table)

    # Local database data

    def database_data_present(self) -> bool:
        return self.file_manager.directory_has_content(self.settings.data_dir_path)

    def clear_database_data(self) -> int:
        """Wipe the persisted database data directory so it re-initializes on boot."""
        removed = self.file_manager.clear_directory(self.settings.data_dir_path)
        logger.warning("Cleared database data directory %s", self.settings.data_dir_path)
        return removed

    # Initialization marker

    def is_initialized(self) -> bool:
        return os.path.exists(self.settings.marker_path)

    def read_marker(self) -> Optional[Dict[str, Any]]:
        """
        Read the initialization marker.

        Returns:
            Optional[Dict[str, Any]]: Marker data ({} for an empty or non-JSON
            marker), or None when the instance is not initialized
        """
        if not self.is_initialized():
            return None

        with open(self.settings.marker_path, encoding="utf-8") as f:
            content = f.read().strip()

        if not content:
            return {}
        try:
            data = json.loads(content)
        except json.JSONDecodeError:
            logger.debug("Marker %s is not JSON; treating it as a bare marker", self.settings.marker_path)
            return {}
        return data if isinstance(data, dict) else {}

    def write_marker(self, encryption_key: Optional[str] = None) -> None:
        """Write the initialization marker, recording the encryption key fingerprint."""
        data = self.read_marker() or {}
        data.setdefault("initialized_at", datetime.now().isoformat(timespec="seconds"))
        if encryption_key:
            data[FINGERPRINT_KEY] = fingerprint(encryption_key)

        self.file_manager.write_atomic(self.settings.marker_path, json.dumps(data, indent=2) + "\n")

    def recorded_key_fingerprint(self) -> Optional[str]:
        marker = self.read_marker()
        if not marker:
            return None
        return marker.get(FINGERPRINT_KEY)
