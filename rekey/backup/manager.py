"""Database backups taken before destructive operations."""

import glob
import logging
import os
import stat
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from ..containers.runner import CommandRunner
from ..utils.errors import BackendUnreachable
from ..utils.files import FileManager

logger = logging.getLogger(__name__)

DUMP_PREFIX = "backup_"
DUMP_SUFFIX = ".sql"
CONTAINER_DUMP_PATH = "/tmp/rekey_dumpall.sql"


@dataclass
class BackupResult:
    """Outcome of a backup trigger: success flag plus the dump path or the error."""

    success: bool
    path: Optional[str] = None
    error: Optional[str] = None


class BackupManager:
    """Creates full database dumps in the instance's backup directory."""

    def __init__(
        self,
        runner: CommandRunner,
        container: str,
        backup_dir: str,
        superuser: str = "postgres",
        keep: int = 10,
        timeout: int = 600,
        verbose: bool = False,
    ):
        """
        Initialize backup manager.

        Args:
            runner: Command runner reaching the database container
            container: Database container name
            backup_dir: Directory receiving the dumps
            superuser: Role running pg_dumpall
            keep: Number of most recent dumps to keep
            timeout: Seconds allowed for the dump
            verbose: Enable verbose output
        """
        self.runner = runner
        self.container = container
        self.backup_dir = backup_dir
        self.superuser = superuser
        self.keep = keep
        self.timeout = timeout
        self.verbose = verbose
        self.file_manager = FileManager(verbose=verbose)

    def create_database_backup(self) -> BackupResult:
        """
        Dump every database and role of the instance with pg_dumpall.

        Returns:
            BackupResult: Path of the written dump, or the reason it failed
        """
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        backup_path = os.path.join(self.backup_dir, f"{DUMP_PREFIX}{timestamp}{DUMP_SUFFIX}")

        if self.verbose:
            print(f"Creating database backup: {backup_path}")

        try:
            dump = self.runner.run(
                self.container,
                ["pg_dumpall", "-U", self.superuser, "-f", CONTAINER_DUMP_PATH],
                timeout=self.timeout,
            )
            if not dump.ok:
                reason = "timed out" if dump.timed_out else f"exited with {dump.exit_code}"
                error = f"pg_dumpall {reason}"
                if dump.output:
                    error += f": {dump.output}"
                return BackupResult(success=False, error=error)

            content = self.runner.run(self.container, ["cat", CONTAINER_DUMP_PATH], timeout=self.timeout)
            self.runner.run(self.container, ["rm", "-f", CONTAINER_DUMP_PATH])
            if not content.ok or not content.output:
                return BackupResult(success=False, error="Database dump is empty")

        except BackendUnreachable as e:
            return BackupResult(success=False, error=e.message)

        self.file_manager.write_atomic(backup_path, content.output + "\n", mode=stat.S_IRUSR | stat.S_IWUSR)
        logger.info("Database backup written to %s", backup_path)

        self.prune()
        return BackupResult(success=True, path=backup_path)

    def list_backups(self) -> List[str]:
        """Existing dumps, oldest first."""
        pattern = os.path.join(self.backup_dir, f"{DUMP_PREFIX}*{DUMP_SUFFIX}")
        return sorted(glob.glob(pattern))

    def prune(self) -> List[str]:
        """Delete all but the most recent dumps."""
        backups = self.list_backups()
        removed = backups[: max(len(backups) - self.keep, 0)]

        for path in removed:
            os.unlink(path)
            logger.debug("Removed old backup %s", path)

        return removed
