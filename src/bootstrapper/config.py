"""Runtime configuration for the bootstrapper service."""

from functools import lru_cache
from typing import Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Bootstrapper settings.

    Every field can be overridden with a ``BOOTSTRAP_``-prefixed environment
    variable or a ``.env`` file in the working directory.
    """

    model_config = SettingsConfigDict(
        env_prefix="BOOTSTRAP_",
        env_file=".env",
        extra="ignore",
    )

    # HTTP surface
    host: str = Field(default="127.0.0.1", description="Bind address")
    port: int = Field(default=12316, description="Bind port")

    # Logging
    log_file: str = Field(default="./logs/bootstrapper.log")
    log_level: str = Field(default="INFO")
    log_max_bytes: int = Field(default=5 * 1024 * 1024, ge=1024, description="Rotate at this size")
    log_backup_count: int = Field(default=3, ge=0)
    log_console: bool = Field(default=True, description="Echo log records to stderr")
    data_dir: str = Field(
        default="./data", description="Scratch space for installer downloads and scripts"
    )

    # Container runtime
    runtime_binary: str = Field(default="docker")
    runtime_wait_attempts: int = Field(
        default=6, ge=1, description="Checks for a responding daemon after install"
    )
    runtime_wait_delay: float = Field(default=10.0, ge=0)
    install_timeout: Optional[float] = Field(
        default=1800.0, description="Upper bound for the runtime installer run"
    )
    credential_timeout: float = Field(
        default=120.0, gt=0, description="Seconds to wait for an administrator password"
    )
    supported_ubuntu_versions: list[str] = Field(default=["20.04", "22.04", "24.04"])
    required_tools: list[str] = Field(default=["curl"])
    windows_installer_url: str = Field(
        default="https://desktop.docker.com/win/main/amd64/Docker%20Desktop%20Installer.exe"
    )

    # Database container
    container_name: str = Field(default="app-mysql")
    container_image: str = Field(default="mysql:8.0")
    volume_name: str = Field(default="mysql_data")
    host_port: int = Field(default=3306)
    database_name: str = Field(default="app_db", pattern=r"^[A-Za-z0-9_]+$")
    database_user: str = Field(default="app")
    database_password: SecretStr = Field(default=SecretStr("app-password"))
    root_password: SecretStr = Field(default=SecretStr("password"))
    readiness_attempts: int = Field(default=10, ge=1)
    readiness_delay: float = Field(default=3.0, ge=0)
    readiness_max_delay: float = Field(default=15.0, ge=0)

    # Events
    event_buffer_size: int = Field(default=256, ge=1)
    callback_url: Optional[str] = Field(
        default=None, description="POST stage transitions to this URL when set"
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
