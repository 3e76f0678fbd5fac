"""Unit tests for RuntimeInstaller."""

from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from pydantic import SecretStr

from bootstrapper.models.errors import (
    DownloadFailed,
    InstallerUnavailable,
    NonZeroExit,
    RuntimeVerificationFailed,
)
from bootstrapper.models.platform import PlatformKind
from bootstrapper.services.installer import LINUX_INSTALL_SCRIPT, RuntimeInstaller
from conftest import FakeSupervisor, make_profile


async def _provider():
    return SecretStr("pw")


@pytest.mark.unit
class TestLinuxInstall:
    """Test the Linux install plan."""

    @pytest.mark.asyncio
    async def test_runs_script_with_credential_provider(self):
        """Test non-root Linux runs the script privileged with the provider."""
        # Arrange
        supervisor = FakeSupervisor()
        installer = RuntimeInstaller(supervisor, credential_timeout=30.0)
        lines = []

        # Act
        await installer.install(make_profile(elevation=True), lines.append, _provider)

        # Assert
        (run,) = supervisor.run_calls
        assert run["command"] == "bash"
        assert run["args"] == ["-c", LINUX_INSTALL_SCRIPT]
        assert run["privileged"] is True
        assert run["credential_provider"] is _provider
        assert lines

    @pytest.mark.asyncio
    async def test_root_skips_credential_provider(self):
        """Test the provider is not used when elevation is not interactive."""
        supervisor = FakeSupervisor()
        installer = RuntimeInstaller(supervisor)

        await installer.install(make_profile(elevation=False), lambda line: None, _provider)

        assert supervisor.run_calls[0]["credential_provider"] is None

    def test_script_is_not_destructive(self):
        """Test the script never wipes existing runtime data."""
        assert "rm -rf" not in LINUX_INSTALL_SCRIPT
        assert "set -e" in LINUX_INSTALL_SCRIPT

    @pytest.mark.asyncio
    async def test_script_failure_propagates(self):
        """Test supervisor errors reach the caller unchanged."""
        supervisor = FakeSupervisor()
        supervisor.run_errors["-c"] = NonZeroExit("bash", 100)
        installer = RuntimeInstaller(supervisor)

        with pytest.raises(NonZeroExit):
            await installer.install(make_profile(), lambda line: None)


@pytest.mark.unit
class TestWindowsInstall:
    """Test the Windows install plan."""

    @pytest.mark.asyncio
    async def test_downloads_and_runs_powershell(self, tmp_path):
        """Test the installer is downloaded and run through a script."""
        # Arrange
        supervisor = FakeSupervisor()
        async def fake_download(url, target, on_line):
            target.write_bytes(b"MZ")
            return target

        downloader = AsyncMock()
        downloader.download = AsyncMock(side_effect=fake_download)
        installer = RuntimeInstaller(
            supervisor,
            downloader=downloader,
            work_dir=str(tmp_path),
            windows_installer_url="https://example.test/installer.exe",
        )
        profile = make_profile(kind=PlatformKind.WINDOWS, confirmation=True)

        # Act
        await installer.install(profile, lambda line: None)

        # Assert
        downloader.download.assert_awaited_once()
        assert downloader.download.await_args.args[0] == "https://example.test/installer.exe"
        (run,) = supervisor.run_calls
        assert run["command"] == "powershell"
        assert run["args"][-2] == "-File"
        assert Path(run["args"][-1]).name == "docker_install.ps1"
        assert run["credential_provider"] is None
        # Scratch files are cleaned up
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_download_failure(self, tmp_path):
        """Test a failed download stops before running anything."""
        supervisor = FakeSupervisor()
        downloader = AsyncMock()
        downloader.download = AsyncMock(side_effect=DownloadFailed("404"))
        installer = RuntimeInstaller(supervisor, downloader=downloader, work_dir=str(tmp_path))

        with pytest.raises(DownloadFailed):
            await installer.install(make_profile(kind=PlatformKind.WINDOWS), lambda line: None)

        assert supervisor.run_calls == []


@pytest.mark.unit
class TestInstallerMisc:
    """Test unsupported platforms and runtime verification."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind", [PlatformKind.MACOS, PlatformKind.UNKNOWN])
    async def test_unsupported_platform(self, kind):
        """Test platforms without an install plan are rejected."""
        installer = RuntimeInstaller(FakeSupervisor())

        with pytest.raises(InstallerUnavailable) as exc_info:
            await installer.install(make_profile(kind=kind), lambda line: None)

        assert str(exc_info.value).startswith("UNSUPPORTED_PLATFORM:")

    @pytest.mark.asyncio
    async def test_wait_for_runtime_eventually_ready(self):
        """Test verification returns once the daemon answers."""
        sleep = AsyncMock()
        installer = RuntimeInstaller(
            FakeSupervisor(), runtime_wait_attempts=4, runtime_wait_delay=1.5, sleep=sleep
        )
        is_ready = AsyncMock(side_effect=[False, False, True])

        await installer.wait_for_runtime(is_ready, lambda line: None)

        assert is_ready.await_count == 3
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_wait_for_runtime_gives_up(self):
        """Test verification is bounded."""
        sleep = AsyncMock()
        installer = RuntimeInstaller(FakeSupervisor(), runtime_wait_attempts=3, sleep=sleep)
        is_ready = AsyncMock(return_value=False)

        with pytest.raises(RuntimeVerificationFailed):
            await installer.wait_for_runtime(is_ready, lambda line: None)

        assert is_ready.await_count == 3
        assert sleep.await_count == 2
