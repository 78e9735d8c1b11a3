"""Secret stores for rekey."""

from .adapter import SecretStoreAdapter
from .config_store import ConfigStore, EnvFileConfigStore
from .database import DatabaseStore

__all__ = ["SecretStoreAdapter", "ConfigStore", "EnvFileConfigStore", "DatabaseStore"]
