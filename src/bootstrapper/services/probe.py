"""Capability queries about the host: OS, privileges, container runtime."""

import logging
import os
import platform
import shutil
from typing import Optional, Sequence

from bootstrapper.models.errors import LaunchFailed, PreflightFailed, ProbeFailed, ProcessTimeout
from bootstrapper.models.platform import OSInfo, PlatformKind, PlatformProfile
from bootstrapper.services.process import ProcessSupervisor

_SYSTEM_KINDS = {
    "Linux": PlatformKind.LINUX,
    "Windows": PlatformKind.WINDOWS,
    "Darwin": PlatformKind.MACOS,
}

WINDOWS_EDITION_QUERY = (
    "Get-CimInstance -ClassName Win32_OperatingSystem | "
    "Select-Object Caption,OperatingSystemSKU"
)
SUPPORTED_WINDOWS_EDITIONS = ("pro", "enterprise", "education")


def is_privileged_user() -> bool:
    """True when the process already runs as root."""
    geteuid = getattr(os, "geteuid", None)
    return geteuid is not None and geteuid() == 0


class CapabilityProbe:
    """Side-effect free queries about the host."""

    def __init__(
        self,
        supervisor: Optional[ProcessSupervisor] = None,
        runtime_binary: str = "docker",
        supported_ubuntu_versions: Sequence[str] = ("20.04", "22.04", "24.04"),
        required_tools: Sequence[str] = ("curl",),
    ):
        self.logger = logging.getLogger("bootstrapper.probe")
        self.supervisor = supervisor or ProcessSupervisor()
        self.runtime_binary = runtime_binary
        self.supported_ubuntu_versions = tuple(supported_ubuntu_versions)
        self.required_tools = tuple(required_tools)

    def detect_os(self) -> OSInfo:
        """Identify the operating system.

        Raises:
            ProbeFailed: If the underlying system queries fail
        """
        try:
            system = platform.system()
            release = platform.release()
        except OSError as e:
            raise ProbeFailed(f"cannot determine operating system: {e}") from e

        kind = _SYSTEM_KINDS.get(system, PlatformKind.UNKNOWN)
        distro_id = distro_version = None
        if kind is PlatformKind.LINUX:
            try:
                os_release = platform.freedesktop_os_release()
            except OSError:
                self.logger.warning("No os-release file found, distribution unknown")
            else:
                distro_id = os_release.get("ID")
                distro_version = os_release.get("VERSION_ID")

        info = OSInfo(
            kind=kind,
            version=release or "unknown",
            distro_id=distro_id,
            distro_version=distro_version,
        )
        self.logger.debug(f"Detected OS: {info.model_dump()}")
        return info

    def platform_profile(self, os_info: Optional[OSInfo] = None) -> PlatformProfile:
        """Resolve the capability flags that drive the setup transition table.

        Linux needs a sudo password unless already root. Windows pauses for
        operator confirmation because the runtime installer raises its own
        elevation prompt.
        """
        os_info = os_info or self.detect_os()
        return PlatformProfile(
            os=os_info,
            requires_interactive_elevation=(
                os_info.kind is PlatformKind.LINUX and not is_privileged_user()
            ),
            requires_start_confirmation=os_info.kind is PlatformKind.WINDOWS,
        )

    async def is_runtime_installed(self) -> bool:
        """Check whether the container runtime CLI is present.

        Raises:
            ProbeFailed: If the check itself could not be carried out
        """
        if shutil.which(self.runtime_binary) is None:
            self.logger.info(f"{self.runtime_binary} not found on PATH")
            return False
        result = await self._query(self.runtime_binary, ["--version"])
        if result is None:
            return False
        installed = result.success
        self.logger.info(f"{self.runtime_binary} installed: {installed}")
        return installed

    async def is_runtime_ready(self) -> bool:
        """Check whether the runtime daemon answers requests."""
        result = await self._query(self.runtime_binary, ["info"])
        return result is not None and result.success

    async def check_install_prerequisites(self, os_info: OSInfo) -> None:
        """Verify the host can take a runtime installation.

        Raises:
            PreflightFailed: If a prerequisite is not met
        """
        if os_info.kind is PlatformKind.LINUX:
            if os_info.distro_id == "ubuntu":
                if os_info.distro_version not in self.supported_ubuntu_versions:
                    raise PreflightFailed(
                        f"unsupported Ubuntu version: {os_info.distro_version}"
                    )
            else:
                self.logger.warning(
                    f"Distribution {os_info.distro_id!r} is not tested, continuing"
                )
            missing = [tool for tool in self.required_tools if shutil.which(tool) is None]
            if missing:
                raise PreflightFailed(f"required tools not found: {', '.join(missing)}")

        elif os_info.kind is PlatformKind.WINDOWS:
            result = await self._query(
                "powershell", ["-NoProfile", "-Command", WINDOWS_EDITION_QUERY]
            )
            if result is None or not result.success:
                raise ProbeFailed("cannot determine Windows edition")
            caption = result.stdout.lower()
            if not any(edition in caption for edition in SUPPORTED_WINDOWS_EDITIONS):
                raise PreflightFailed(
                    "Docker Desktop requires Windows 10/11 Pro, Enterprise, or Education"
                )

    async def _query(self, command: str, args: list[str]):
        try:
            return await self.supervisor.output(command, args)
        except LaunchFailed as e:
            if isinstance(e.__cause__, FileNotFoundError):
                return None
            raise ProbeFailed(str(e)) from e
        except ProcessTimeout as e:
            raise ProbeFailed(str(e)) from e
