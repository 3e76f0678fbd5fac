"""Provisioning of the application database container."""

import asyncio
import logging
import socket
from typing import Awaitable, Callable, Optional

from pydantic import SecretStr

from bootstrapper.models.errors import (
    ContainerStartFailed,
    PortUnavailable,
    ProvisionError,
    ReadinessTimeout,
    RuntimeNotRunning,
    SchemaInitFailed,
    SupervisorError,
)
from bootstrapper.services.process import CommandOutput, LineCallback, ProcessSupervisor

CREATE_NOTES_TABLE = """
CREATE TABLE IF NOT EXISTS notes (
    id BIGINT AUTO_INCREMENT PRIMARY KEY,
    title VARCHAR(255) NOT NULL,
    content TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP
)"""


def schema_statements(database: str) -> list[str]:
    """Schema initialization, every statement safe to re-run."""
    return [
        f"CREATE DATABASE IF NOT EXISTS `{database}`",
        f"USE `{database}`",
        CREATE_NOTES_TABLE.strip(),
    ]


def is_port_free(port: int, host: str = "127.0.0.1") -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.settimeout(1.0)
        return sock.connect_ex((host, port)) != 0


class ContainerProvisioner:
    """Creates, starts and initializes the MySQL container.

    Every step is idempotent so a failed provisioning attempt can be retried
    from the start: an existing container is reused, and the schema uses
    create-if-not-exists statements.
    """

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        runtime_binary: str = "docker",
        container_name: str = "app-mysql",
        image: str = "mysql:8.0",
        volume_name: str = "mysql_data",
        host_port: int = 3306,
        database_name: str = "app_db",
        database_user: str = "app",
        database_password: SecretStr = SecretStr("app-password"),
        root_password: SecretStr = SecretStr("password"),
        readiness_attempts: int = 10,
        readiness_delay: float = 3.0,
        readiness_max_delay: float = 15.0,
        port_check: Callable[[int], bool] = is_port_free,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.logger = logging.getLogger("bootstrapper.provisioner")
        self.supervisor = supervisor
        self.runtime = runtime_binary
        self.container_name = container_name
        self.image = image
        self.volume_name = volume_name
        self.host_port = host_port
        self.database_name = database_name
        self.database_user = database_user
        self.database_password = database_password
        self.root_password = root_password
        self.readiness_attempts = readiness_attempts
        self.readiness_delay = readiness_delay
        self.readiness_max_delay = readiness_max_delay
        self._port_check = port_check
        self._sleep = sleep

    async def provision(self, on_line: LineCallback) -> None:
        """Start the container and initialize the schema."""
        await self.start_container(on_line)
        await self.initialize_schema(on_line)

    async def start_container(self, on_line: LineCallback) -> None:
        """Create or reuse the database container and wait until it is ready.

        Raises:
            RuntimeNotRunning: If the runtime daemon does not answer
            PortUnavailable: If a new container cannot bind its host port
            ContainerStartFailed: If create/start commands fail
            ReadinessTimeout: If the database never accepts connections
        """
        info = await self._query(["info", "--format", "{{.ServerVersion}}"])
        if not info.success:
            raise RuntimeNotRunning(
                f"{self.runtime} daemon is not responding: {info.stderr.strip()}"
            )

        await self._run(
            ["volume", "create", self.volume_name],
            on_line,
            f"Ensuring data volume {self.volume_name}",
        )

        status = await self.container_status()
        if status is None:
            if not self._port_check(self.host_port):
                raise PortUnavailable(self.host_port)
            await self._run(
                self._create_args(),
                on_line,
                f"Creating container {self.container_name} from {self.image}",
                env=self._password_env(),
            )
        elif status != "running":
            await self._run(
                ["start", self.container_name],
                on_line,
                f"Starting existing container {self.container_name} ({status})",
            )
        else:
            on_line(f"Container {self.container_name} already running")

        await self.wait_until_ready(on_line)

    async def container_status(self) -> Optional[str]:
        """Return the container state (``running``, ``exited``...) or None if absent."""
        result = await self._query(
            ["inspect", "--format", "{{.State.Status}}", self.container_name]
        )
        if not result.success:
            return None
        return result.stdout.strip() or None

    async def wait_until_ready(self, on_line: LineCallback) -> None:
        """Poll until MySQL accepts TCP connections, with linear capped backoff.

        Raises:
            ReadinessTimeout: After ``readiness_attempts`` failed checks
        """
        on_line("Verifying MySQL connectivity...")
        last_error = None
        for attempt in range(1, self.readiness_attempts + 1):
            result = await self._mysql("SELECT 1")
            if result.success:
                on_line("✓ Successfully connected to MySQL")
                self.logger.info(f"Database ready after {attempt} attempt(s)")
                return

            last_error = result.stderr.strip().splitlines()[-1] if result.stderr.strip() else None
            on_line(
                f"Database not ready ({attempt}/{self.readiness_attempts})"
                + (f": {last_error}" if last_error else "")
            )
            if attempt < self.readiness_attempts:
                await self._sleep(min(self.readiness_delay * attempt, self.readiness_max_delay))

        self.logger.error(f"Database not ready after {self.readiness_attempts} attempts")
        raise ReadinessTimeout(self.readiness_attempts, last_error)

    async def initialize_schema(self, on_line: LineCallback) -> None:
        """Create the application database and tables if they do not exist.

        Raises:
            SchemaInitFailed: If a statement fails or the table is missing afterwards
        """
        on_line(f"Initializing schema in database {self.database_name}")
        result = await self._mysql("; ".join(schema_statements(self.database_name)))
        if not result.success:
            raise SchemaInitFailed(result.stderr.strip() or f"exit code {result.exit_code}")

        check = await self._mysql(f"SHOW TABLES FROM `{self.database_name}` LIKE 'notes'")
        if not check.success or "notes" not in check.stdout:
            raise SchemaInitFailed(f"table notes missing in {self.database_name}")
        on_line("✓ Schema ready")
        self.logger.info(f"Schema initialized in {self.database_name}")

    def _create_args(self) -> list[str]:
        return [
            "run",
            "-d",
            "--name", self.container_name,
            "-v", f"{self.volume_name}:/var/lib/mysql",
            "-e", "MYSQL_ROOT_PASSWORD",
            "-e", f"MYSQL_DATABASE={self.database_name}",
            "-e", f"MYSQL_USER={self.database_user}",
            "-e", "MYSQL_PASSWORD",
            "-p", f"{self.host_port}:3306",
            self.image,
        ]

    def _password_env(self) -> dict[str, str]:
        # Bare "-e NAME" makes docker copy the value from its own environment
        return {
            "MYSQL_ROOT_PASSWORD": self.root_password.get_secret_value(),
            "MYSQL_PASSWORD": self.database_password.get_secret_value(),
            "MYSQL_PWD": self.root_password.get_secret_value(),
        }

    async def _mysql(self, sql: str) -> CommandOutput:
        # TCP to 127.0.0.1 skips the socket-only server MySQL runs while initializing
        return await self._query(
            [
                "exec",
                "-e", "MYSQL_PWD",
                self.container_name,
                "mysql", "-uroot", "-h127.0.0.1", "--batch", "-e", sql,
            ],
            env=self._password_env(),
        )

    async def _run(
        self,
        args: list[str],
        on_line: LineCallback,
        description: str,
        env: Optional[dict[str, str]] = None,
    ) -> None:
        # Log a description rather than the raw argv
        on_line(f"▶ {description}...")
        try:
            await self.supervisor.run(self.runtime, args, on_line=on_line, env=env)
        except SupervisorError as e:
            raise ContainerStartFailed(f"{description} failed: {e}") from e

    async def _query(
        self, args: list[str], env: Optional[dict[str, str]] = None
    ) -> CommandOutput:
        try:
            return await self.supervisor.output(self.runtime, args, env=env)
        except SupervisorError as e:
            raise ProvisionError(str(e)) from e
