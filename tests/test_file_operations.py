"""Tests for file operations."""

import gc
import os
import stat
import warnings
from datetime import datetime
from unittest.mock import patch

import pytest

from rekey.utils.files import FileManager


class TestFileManager:
    """Test file manager functionality."""

    def setup_method(self):
        """Setup test environment."""
        self.file_manager = FileManager(verbose=False)

    def test_write_atomic_creates_file(self, tmp_path):
        """The file is created with owner-only permissions."""
        path = tmp_path / "nested" / ".env"

        self.file_manager.write_atomic(str(path), "A=1\n")

        assert path.read_text() == "A=1\n"
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    def test_write_atomic_replaces_content(self, tmp_path):
        """An existing file is replaced without leaving temporary files."""
        path = tmp_path / ".env"
        path.write_text("A=1\n")

        self.file_manager.write_atomic(str(path), "A=2\n")

        assert path.read_text() == "A=2\n"
        assert os.listdir(tmp_path) == [".env"]

    def test_write_atomic_failure_keeps_original(self, tmp_path):
        """A failed replace leaves the original content and no temporary file."""
        path = tmp_path / ".env"
        path.write_text("A=1\n")

        with patch("rekey.utils.files.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                self.file_manager.write_atomic(str(path), "A=2\n")

        assert path.read_text() == "A=1\n"
        assert os.listdir(tmp_path) == [".env"]

    def test_snapshot_file(self, tmp_path):
        """Snapshots are timestamped copies with owner-only permissions."""
        source = tmp_path / ".env"
        source.write_text("A=1\n")
        stamp = datetime(2024, 1, 2, 3, 4, 5)

        backup = self.file_manager.snapshot_file(str(source), str(tmp_path / "backups"), timestamp=stamp)

        assert os.path.basename(backup) == ".env.bak.20240102030405"
        with open(backup) as f:
            assert f.read() == "A=1\n"
        assert stat.S_IMODE(os.stat(backup).st_mode) == 0o600

    def test_snapshot_name_collision(self, tmp_path):
        """Two snapshots in the same second do not overwrite each other."""
        source = tmp_path / ".env"
        source.write_text("A=1\n")
        stamp = datetime(2024, 1, 2, 3, 4, 5)

        first = self.file_manager.snapshot_file(str(source), str(tmp_path / "backups"), timestamp=stamp)
        second = self.file_manager.snapshot_file(str(source), str(tmp_path / "backups"), timestamp=stamp)

        assert first != second
        assert second == first + ".1"

    def test_snapshot_missing_file(self, tmp_path):
        """Snapshotting a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            self.file_manager.snapshot_file(str(tmp_path / ".env"), str(tmp_path / "backups"))

    def test_clear_directory(self, tmp_path):
        """Every entry is removed but the directory stays."""
        data = tmp_path / "data"
        (data / "base").mkdir(parents=True)
        (data / "base" / "1").write_text("x")
        (data / "PG_VERSION").write_text("15")

        assert self.file_manager.directory_has_content(str(data))
        assert self.file_manager.clear_directory(str(data)) == 2
        assert data.is_dir()
        assert not self.file_manager.directory_has_content(str(data))

    def test_clear_missing_directory(self, tmp_path):
        """Clearing a directory that does not exist removes nothing."""
        assert self.file_manager.clear_directory(str(tmp_path / "missing")) == 0
        assert not self.file_manager.directory_has_content(str(tmp_path / "missing"))

    def test_directory_has_content_closes_iterator(self, tmp_path):
        """Checking a directory leaves no open scandir iterator behind."""
        (tmp_path / "PG_VERSION").write_text("15")

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            assert self.file_manager.directory_has_content(str(tmp_path))
            gc.collect()

        assert not [w for w in caught if issubclass(w.category, ResourceWarning)]
