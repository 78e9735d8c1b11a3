"""File operations utilities for rekey."""

import os
import shutil
import stat
import tempfile
from datetime import datetime
from typing import Optional


class FileManager:
    """Manages file operations for rekey."""

    def __init__(self, verbose: bool = False):
        """Initialize file manager."""
        self.verbose = verbose

    def write_atomic(self, path: str, content: str, mode: int = stat.S_IRUSR | stat.S_IWUSR) -> str:
        """
        Write a file so that readers see either the old or the new content.

        The content is written to a temporary file in the same directory and
        moved over the target with os.replace.

        Args:
            path: Target file path
            content: Full file content
            mode: Permission mode for the written file (default 600)

        Returns:
            str: Path to written file
        """
        directory = os.path.dirname(os.path.abspath(path))
        os.makedirs(directory, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(prefix=f".{os.path.basename(path)}.", suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, mode)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

        if self.verbose:
            print(f"Wrote {path}")

        return path

    def snapshot_file(self, file_path: str, backup_dir: str, timestamp: Optional[datetime] = None) -> str:
        """
        Copy a file to a timestamped backup location.

        Args:
            file_path: Path to file to back up
            backup_dir: Directory receiving the snapshot
            timestamp: Snapshot time (defaults to now)

        Returns:
            str: Path to backup file
        """
        if not os.path.exists(file_path):
            raise FileNotFoundError(f"File not found: {file_path}")

        os.makedirs(backup_dir, exist_ok=True)

        stamp = (timestamp or datetime.now()).strftime("%Y%m%d%H%M%S")
        backup_path = os.path.join(backup_dir, f"{os.path.basename(file_path)}.bak.{stamp}")

        # If backup already exists, add number
        counter = 1
        original_backup = backup_path
        while os.path.exists(backup_path):
            backup_path = f"{original_backup}.{counter}"
            counter += 1

        shutil.copy2(file_path, backup_path)
        os.chmod(backup_path, stat.S_IRUSR | stat.S_IWUSR)

        if self.verbose:
            print(f"Created backup: {backup_path}")

        return backup_path

    def directory_has_content(self, path: str) -> bool:
        """Check whether a directory exists and holds at least one entry."""
        if not os.path.isdir(path):
            return False
        with os.scandir(path) as entries:
            return any(entries)

    def clear_directory(self, path: str) -> int:
        """
        Remove everything inside a directory, keeping the directory itself.

        Args:
            path: Directory to empty

        Returns:
            int: Number of top-level entries removed
        """
        if not os.path.isdir(path):
            return 0

        removed = 0
        with os.scandir(path) as entries:
            for entry in entries:
                if entry.is_dir(follow_symlinks=False):
                    shutil.rmtree(entry.path)
                else:
                    os.unlink(entry.path)
                removed += 1

        if self.verbose:
            print(f"Cleared {removed} entries from {path}")

        return removed

