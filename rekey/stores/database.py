"""Database role and setting stores, reached through psql in the database container."""

import logging
from typing import List, Optional

from ..containers.runner import CommandResult, CommandRunner
from ..utils.errors import BackendUnreachable, StoreOperationError, create_error_suggestions

logger = logging.getLogger(__name__)

# psql: 2 = connection to the server went bad
PSQL_CONNECTION_FAILURE = 2

AUTH_FAILURE_MARKERS = ("password authentication failed", "authentication failed")
UNKNOWN_SETTING_MARKER = "unrecognized configuration parameter"
MISSING_RELATION_MARKERS = ("does not exist",)


def quote_identifier(name: str) -> str:
    """Quote a SQL identifier, doubling embedded double quotes."""
    return '"' + name.replace('"', '""') + '"'


def quote_qualified(name: str) -> str:
    """Quote a possibly schema-qualified name such as supavisor.tenants."""
    return ".".join(quote_identifier(part) for part in name.split("."))


def quote_literal(value: str) -> str:
    """Quote a SQL string literal, doubling embedded single quotes."""
    return "'" + value.replace("'", "''") + "'"


class DatabaseStore:
    """Reads and writes database roles and settings as the superuser."""

    def __init__(
        self,
        runner: CommandRunner,
        container: str,
        superuser: str = "postgres",
        database: str = "postgres",
        timeout: int = 15,
    ):
        """
        Initialize database store.

        Args:
            runner: Command runner reaching the database container
            container: Database container name
            superuser: Role used for administrative statements
            database: Database holding the role settings
            timeout: Seconds allowed per statement
        """
        self.runner = runner
        self.container = container
        self.superuser = superuser
        self.database = database
        self.timeout = timeout

    def _psql(self, sql: str, database: Optional[str] = None, tuples_only: bool = False) -> CommandResult:
        command: List[str] = ["psql", "-v", "ON_ERROR_STOP=1", "-U", self.superuser, "-d", database or self.database]
        if tuples_only:
            command += ["-t", "-A"]
        command += ["-c", sql]
        return self.runner.run(self.container, command, timeout=self.timeout)

    def _check(self, result: CommandResult, action: str) -> CommandResult:
        if result.ok:
            return result

        if result.timed_out:
            raise BackendUnreachable(
                f"Database did not respond within {self.timeout}s while trying to {action}",
                suggestions=create_error_suggestions("backend_unreachable", container=self.container),
            )
        if result.exit_code == PSQL_CONNECTION_FAILURE:
            raise BackendUnreachable(
                f"Could not connect to the database to {action}",
                details=result.output or None,
                suggestions=create_error_suggestions("backend_unreachable", container=self.container),
            )

        raise StoreOperationError(f"Database refused to {action}", details=result.output or None)

    def set_role_password(self, role: str, password: str) -> None:
        """
        Set a role's login password.

        Args:
            role: Database role name
            password: New password (never logged)
        """
        sql = f"ALTER ROLE {quote_identifier(role)} WITH PASSWORD {quote_literal(password)};"
        self._check(self._psql(sql), f"set the password of role {role}")
        logger.info("Updated password of role %s", role)

    def read_setting(self, key: str) -> Optional[str]:
        """
        Read a database-level setting.

        Args:
            key: Setting name, e.g. app.settings.jwt_secret

        Returns:
            Optional[str]: Current value, or None when the setting is not defined
        """
        result = self._psql(f"SHOW {quote_identifier(key)};", tuples_only=True)
        if not result.ok and UNKNOWN_SETTING_MARKER in result.output:
            return None

        self._check(result, f"read setting {key}")
        value = result.output.strip()
        return value or None

    def write_setting(self, key: str, value: str) -> None:
        """Persist a setting on the database so new sessions pick it up."""
        sql = f"ALTER DATABASE {quote_identifier(self.database)} SET {quote_identifier(key)} TO {quote_literal(value)};"
        self._check(self._psql(sql), f"update setting {key}")
        logger.info("Updated database setting %s", key)

    def truncate_table(self, database: str, table: str) -> bool:
        """
        Remove all rows of a table and everything referencing it.

        Args:
            database: Database holding the table
            table: Schema-qualified table name

        Returns:
            bool: True if rows were truncated, False if the table does not exist
        """
        result = self._psql(f"TRUNCATE TABLE {quote_qualified(table)} CASCADE;", database=database)
        if not result.ok and any(marker in result.output for marker in MISSING_RELATION_MARKERS):
            logger.warning("%s does not exist in %s; nothing to truncate", table, database)
            return False

        self._check(result, f"truncate {table}")
        logger.info("Truncated %s in %s", table, database)
        return True

    def verify_login(self, role: str, password: str) -> bool:
        """
        Check that a role can log in over TCP with a password.

        Args:
            role: Database role name
            password: Password to try

        Returns:
            bool: True if the login succeeded, False if authentication was refused

        Raises:
            BackendUnreachable: If the server could not be reached at all
        """
        command = ["psql", "-U", role, "-h", "localhost", "-d", self.database, "-t", "-A", "-c", "SELECT 1;"]
        result = self.runner.run(
            self.container,
            command,
            environment={"PGPASSWORD": password, "PGCONNECT_TIMEOUT": str(self.timeout)},
            timeout=self.timeout,
        )

        if result.ok:
            return True

        output = result.output.lower()
        if any(marker in output for marker in AUTH_FAILURE_MARKERS):
            logger.debug("Login refused for role %s", role)
            return False

        self._check(result, f"log in as {role}")
        return False
