"""Per-platform container runtime installation plans."""

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional

import aiofiles

from bootstrapper.models.errors import InstallerUnavailable, RuntimeVerificationFailed
from bootstrapper.models.platform import PlatformKind, PlatformProfile
from bootstrapper.services.download import InstallerDownloader
from bootstrapper.services.process import (
    CredentialProvider,
    ExitStatus,
    LineCallback,
    ProcessSupervisor,
)

# Runs as root behind sudo; one invocation so the password is used once.
LINUX_INSTALL_SCRIPT = r"""
set -e -o pipefail
export DEBIAN_FRONTEND=noninteractive
step() { printf '\n▶ %s...\n' "$1"; }

step "Removing old Docker packages"
apt-get remove --purge -y docker docker-engine docker.io containerd runc || true
step "Cleaning up unused dependencies"
apt-get autoremove -y || true
step "Updating package list"
apt-get update
step "Installing Docker engine"
curl -fsSL https://get.docker.com | sh
step "Configuring user permissions"
usermod -aG docker "${SUDO_USER:-$USER}"
step "Enabling Docker service"
systemctl enable --now docker
step "Setting Docker socket permissions"
chmod 666 /var/run/docker.sock || true
printf '\n✓ Docker installed\n'
"""

WINDOWS_INSTALL_SCRIPT = r"""
$ErrorActionPreference = 'Stop'
$installerPath = '{installer_path}'

function Wait-DockerService {{
    $retries = 0
    $maxRetries = 12
    Write-Host "Waiting for Docker service to start..."
    do {{
        $service = Get-Service -Name "com.docker.service" -ErrorAction SilentlyContinue
        if ($service -and $service.Status -eq 'Running') {{
            Write-Host "Docker service is running."
            return $true
        }}
        Start-Sleep -Seconds 10
        $retries++
        Write-Host "Waiting... Attempt $retries of $maxRetries"
    }} while ($retries -lt $maxRetries)
    return $false
}}

try {{
    Write-Host "Installing Docker Desktop..."
    $process = Start-Process -FilePath $installerPath -ArgumentList "install --quiet" -Wait -PassThru -Verb RunAs
    if ($process.ExitCode -ne 0) {{
        throw "Installation failed with exit code $($process.ExitCode)"
    }}
    Write-Host "Installation completed. Starting Docker..."
    Start-Process -FilePath "$env:ProgramFiles\Docker\Docker\Docker Desktop.exe"
    if (Wait-DockerService) {{
        Write-Host "Docker Desktop installation and startup successful."
        exit 0
    }}
    throw "Docker service failed to start after installation."
}} catch {{
    Write-Error "Installation failed: $_"
    exit 1
}}
"""


class RuntimeInstaller:
    """Installs the container runtime through the process supervisor."""

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        downloader: Optional[InstallerDownloader] = None,
        work_dir: str = "./data",
        windows_installer_url: str = "",
        install_timeout: Optional[float] = None,
        credential_timeout: Optional[float] = None,
        runtime_wait_attempts: int = 6,
        runtime_wait_delay: float = 10.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.logger = logging.getLogger("bootstrapper.installer")
        self.supervisor = supervisor
        self.downloader = downloader or InstallerDownloader()
        self.work_dir = Path(work_dir)
        self.windows_installer_url = windows_installer_url
        self.install_timeout = install_timeout
        self.credential_timeout = credential_timeout
        self.runtime_wait_attempts = runtime_wait_attempts
        self.runtime_wait_delay = runtime_wait_delay
        self._sleep = sleep

    async def install(
        self,
        profile: PlatformProfile,
        on_line: LineCallback,
        credential_provider: Optional[CredentialProvider] = None,
    ) -> ExitStatus:
        """Run the install plan for the host platform.

        Args:
            profile: Resolved platform profile
            on_line: Receives installer output
            credential_provider: Supplies the sudo password on platforms that
                require interactive elevation

        Raises:
            InstallerUnavailable: If there is no plan for the platform
            SupervisorError: If the installer process fails
            DownloadFailed: If the Windows installer cannot be fetched
        """
        kind = profile.os.kind
        self.logger.info(f"Installing container runtime for {kind.value}")
        if kind is PlatformKind.LINUX:
            return await self._install_linux(profile, on_line, credential_provider)
        if kind is PlatformKind.WINDOWS:
            return await self._install_windows(on_line)
        raise InstallerUnavailable(f"no runtime installer for platform {kind.value}")

    async def wait_for_runtime(
        self,
        is_ready: Callable[[], Awaitable[bool]],
        on_line: LineCallback,
    ) -> None:
        """Poll until the freshly installed runtime answers.

        Raises:
            RuntimeVerificationFailed: After ``runtime_wait_attempts`` failed checks
        """
        for attempt in range(1, self.runtime_wait_attempts + 1):
            if await is_ready():
                on_line("✓ Container runtime is responding")
                return
            on_line(
                f"Waiting for container runtime... ({attempt}/{self.runtime_wait_attempts})"
            )
            if attempt < self.runtime_wait_attempts:
                await self._sleep(self.runtime_wait_delay)
        raise RuntimeVerificationFailed(
            f"runtime not responding after {self.runtime_wait_attempts} checks"
        )

    async def _install_linux(
        self,
        profile: PlatformProfile,
        on_line: LineCallback,
        credential_provider: Optional[CredentialProvider],
    ) -> ExitStatus:
        provider = credential_provider if profile.requires_interactive_elevation else None
        return await self.supervisor.run(
            "bash",
            ["-c", LINUX_INSTALL_SCRIPT],
            privileged=True,
            on_line=on_line,
            credential_provider=provider,
            credential_timeout=self.credential_timeout,
            timeout=self.install_timeout,
        )

    async def _install_windows(self, on_line: LineCallback) -> ExitStatus:
        installer_path = self.work_dir / "DockerDesktopInstaller.exe"
        script_path = self.work_dir / "docker_install.ps1"

        await self.downloader.download(self.windows_installer_url, installer_path, on_line)
        async with aiofiles.open(script_path, "w", encoding="utf-8") as f:
            await f.write(WINDOWS_INSTALL_SCRIPT.format(installer_path=installer_path.resolve()))

        try:
            return await self.supervisor.run(
                "powershell",
                ["-ExecutionPolicy", "Bypass", "-NoProfile", "-File", str(script_path.resolve())],
                privileged=True,
                on_line=on_line,
                timeout=self.install_timeout,
            )
        finally:
            script_path.unlink(missing_ok=True)
            installer_path.unlink(missing_ok=True)
