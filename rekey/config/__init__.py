"""Settings management for rekey."""

from .manager import ConfigManager, DatabaseSettings, EncryptedStoreSettings, HealthSettings, Settings
from .schemas import SETTINGS_SCHEMA

__all__ = ["ConfigManager", "Settings", "DatabaseSettings", "EncryptedStoreSettings", "HealthSettings", "SETTINGS_SCHEMA"]
