"""Tests for database backups."""

import os
import socket
from unittest.mock import MagicMock

from rekey.backup.manager import BackupManager
from rekey.containers.runner import CommandResult, DockerCommandRunner
from rekey.utils.errors import BackendUnreachable


class TestBackupManager:
    """Test pg_dumpall backups."""

    def setup_method(self):
        """Setup test environment."""
        self.runner = MagicMock()

    def make_manager(self, tmp_path, keep=10):
        return BackupManager(self.runner, "supabase-db", str(tmp_path / "backups"), keep=keep)

    def test_successful_backup(self, tmp_path):
        """The dump is copied out of the container into a mode 600 file."""
        self.runner.run.side_effect = [
            CommandResult(0, ""),
            CommandResult(0, "-- PostgreSQL database cluster dump"),
            CommandResult(0, ""),
        ]
        result = self.make_manager(tmp_path).create_database_backup()

        assert result.success
        assert os.path.basename(result.path).startswith("backup_")
        assert result.path.endswith(".sql")
        with open(result.path) as f:
            assert "cluster dump" in f.read()
        assert os.stat(result.path).st_mode & 0o777 == 0o600

        dump_command = self.runner.run.call_args_list[0][0][1]
        assert dump_command[:3] == ["pg_dumpall", "-U", "postgres"]

    def test_failed_dump(self, tmp_path):
        """A failing pg_dumpall reports failure without writing a file."""
        self.runner.run.return_value = CommandResult(1, "pg_dumpall: error: connection failed")

        result = self.make_manager(tmp_path).create_database_backup()

        assert not result.success
        assert "connection failed" in result.error
        assert not os.path.exists(tmp_path / "backups")

    def test_unreachable_container(self, tmp_path):
        """An unreachable container is a failed backup, not an exception."""
        self.runner.run.side_effect = BackendUnreachable("Container 'supabase-db' not found")

        result = self.make_manager(tmp_path).create_database_backup()

        assert not result.success
        assert "not found" in result.error

    def test_prune_keeps_most_recent(self, tmp_path):
        """Only the configured number of dumps is kept."""
        backup_dir = tmp_path / "backups"
        backup_dir.mkdir()
        for day in range(1, 6):
            (backup_dir / f"backup_2024010{day}_000000.sql").write_text("dump")

        removed = self.make_manager(tmp_path, keep=2).prune()

        assert len(removed) == 3
        assert sorted(os.listdir(backup_dir)) == ["backup_20240104_000000.sql", "backup_20240105_000000.sql"]

    def test_slow_dump_through_docker_runner(self, tmp_path):
        """A socket timeout during a long dump is a failed backup, not a crash."""
        container = MagicMock()
        container.status = "running"
        container.exec_run.side_effect = socket.timeout("timed out")
        runner = DockerCommandRunner(timeout=15)
        runner._client = MagicMock()
        runner._client.containers.get.return_value = container

        manager = BackupManager(runner, "supabase-db", str(tmp_path / "backups"), timeout=600)
        result = manager.create_database_backup()

        assert not result.success
        assert "supabase-db" in result.error
        assert runner._client.api.timeout == 610
