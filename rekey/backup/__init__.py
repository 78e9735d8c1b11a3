"""Database backups for rekey."""

from .manager import BackupManager, BackupResult

__all__ = ["BackupManager", "BackupResult"]
