"""The managed config record (.env file), the source of truth for every secret."""

import logging
import os
import re
from typing import Dict, List, Optional

from dotenv import dotenv_values

from ..utils.files import FileManager

logger = logging.getLogger(__name__)

_NEEDS_QUOTING = re.compile(r"[\s#'\"\\$]")


def _assignment_pattern(name: str) -> "re.Pattern[str]":
    return re.compile(rf"^\s*(?:export\s+)?{re.escape(name)}\s*=")


def format_value(value: str) -> str:
    """Format a value for a KEY=value line, quoting only when needed."""
    if not _NEEDS_QUOTING.search(value):
        return value
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class ConfigStore:
    """Key/value record of the instance's secrets."""

    def exists(self) -> bool:
        raise NotImplementedError

    def read(self, name: str) -> Optional[str]:
        raise NotImplementedError

    def read_all(self) -> Dict[str, Optional[str]]:
        raise NotImplementedError

    def write(self, name: str, value: str) -> None:
        self.write_many({name: value})

    def write_many(self, values: Dict[str, str]) -> None:
        raise NotImplementedError

    def create(self, content: str) -> None:
        raise NotImplementedError

    def snapshot(self, backup_dir: str) -> str:
        raise NotImplementedError


class EnvFileConfigStore(ConfigStore):
    """Config record kept as a dotenv file.

    Updates rewrite only the assignment lines being changed; comments,
    ordering and unrelated keys are preserved. Every write replaces the file
    atomically and leaves it readable by the owner only.
    """

    def __init__(self, path: str, file_manager: Optional[FileManager] = None):
        self.path = path
        self.file_manager = file_manager or FileManager()

    def exists(self) -> bool:
        return os.path.isfile(self.path)

    def read(self, name: str) -> Optional[str]:
        return self.read_all().get(name)

    def read_all(self) -> Dict[str, Optional[str]]:
        if not self.exists():
            return {}
        return dict(dotenv_values(self.path))

    def write_many(self, values: Dict[str, str]) -> None:
        """
        Update several keys in one atomic write.

        Args:
            values: Mapping of key to new value; missing keys are appended
        """
        lines: List[str] = []
        if self.exists():
            with open(self.path, encoding="utf-8") as f:
                lines = f.read().splitlines()

        patterns = {name: _assignment_pattern(name) for name in values}
        seen = set()
        for index, line in enumerate(lines):
            for name, pattern in patterns.items():
                if pattern.match(line):
                    # Duplicate assignments are all rewritten so the last one still wins
                    lines[index] = f"{name}={format_value(values[name])}"
                    seen.add(name)
                    break

        for name, value in values.items():
            if name not in seen:
                lines.append(f"{name}={format_value(value)}")

        self.file_manager.write_atomic(self.path, "\n".join(lines) + "\n")
        logger.debug("Updated %s in %s", ", ".join(values), self.path)

    def create(self, content: str) -> None:
        """Create the record from full file content."""
        self.file_manager.write_atomic(self.path, content)
        logger.debug("Created config record %s", self.path)

    def snapshot(self, backup_dir: str) -> str:
        """Copy the record to a timestamped file in backup_dir."""
        return self.file_manager.snapshot_file(self.path, backup_dir)
