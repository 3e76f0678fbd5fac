"""Integration tests: orchestrator + real ProcessSupervisor + RuntimeInstaller."""

import asyncio
import shutil
import sys
from unittest.mock import AsyncMock, patch

import pytest

from bootstrapper.models.events import LogEvent, StageEvent
from bootstrapper.models.status import InstallationStage, LogSource
from bootstrapper.services.installer import RuntimeInstaller
from bootstrapper.services.orchestrator import InstallationOrchestrator
from bootstrapper.services.process import ProcessSupervisor
from conftest import FakeProbe, FakeProvisioner, make_profile

pytestmark = pytest.mark.skipif(
    sys.platform == "win32" or shutil.which("bash") is None, reason="needs bash"
)

# Stands in for the real install script: reads the password like sudo -S would
FAKE_INSTALL_SCRIPT = """
read -r pw
echo "credential length ${#pw}"
echo "installing runtime"
"""

FAILING_INSTALL_SCRIPT = """
echo "apt-get failed" >&2
exit 100
"""


def _orchestrator():
    # No sudo in tests: the credential goes straight to bash's stdin
    supervisor = ProcessSupervisor(elevation_prefix=(), credential_timeout=5.0)
    installer = RuntimeInstaller(
        supervisor, runtime_wait_attempts=2, runtime_wait_delay=0, sleep=AsyncMock()
    )
    probe = FakeProbe(profile=make_profile(elevation=True), runtime_present=False)
    return InstallationOrchestrator(probe=probe, installer=installer, provisioner=FakeProvisioner())


async def _pending_request(orchestrator):
    for _ in range(400):
        if orchestrator.session.pending_request is not None:
            return orchestrator.session.pending_request
        await asyncio.sleep(0.005)
    raise AssertionError("no credential request")


@pytest.mark.integration
class TestSetupFlow:
    """Test the install phase through a real child process."""

    @pytest.mark.asyncio
    async def test_credential_reaches_installer_stdin(self):
        """Test the submitted credential is piped to the installer and never logged."""
        # Arrange
        secret = "correct horse"
        orchestrator = _orchestrator()
        subscription = orchestrator.subscribe_events()

        # Act
        with patch("bootstrapper.services.installer.LINUX_INSTALL_SCRIPT", FAKE_INSTALL_SCRIPT):
            await orchestrator.start_setup()
            request = await _pending_request(orchestrator)
            orchestrator.submit_credential(request.id, secret)
            await orchestrator.wait()

        # Assert
        assert orchestrator.stage is InstallationStage.SETUP_COMPLETE
        texts = [line.text for line in orchestrator.logs(LogSource.RUNTIME_INSTALL)]
        assert f"credential length {len(secret)}" in texts
        assert "installing runtime" in texts
        events = subscription.drain()
        assert all(secret not in e.text for e in events if isinstance(e, LogEvent))
        stages = [e.stage for e in events if isinstance(e, StageEvent)]
        assert stages.count(InstallationStage.AWAITING_PRIVILEGED_CREDENTIAL) == 1

    @pytest.mark.asyncio
    async def test_installer_failure_reports_exit_code(self):
        """Test a failing installer ends in RuntimeInstallFailed with its output kept."""
        orchestrator = _orchestrator()

        with patch("bootstrapper.services.installer.LINUX_INSTALL_SCRIPT", FAILING_INSTALL_SCRIPT):
            await orchestrator.start_setup()
            request = await _pending_request(orchestrator)
            orchestrator.submit_credential(request.id, "pw")
            await orchestrator.wait()

        assert orchestrator.stage is InstallationStage.RUNTIME_INSTALL_FAILED
        assert orchestrator.session.last_error == "NON_ZERO_EXIT: bash exited with code 100"
        texts = [line.text for line in orchestrator.logs(LogSource.RUNTIME_INSTALL)]
        assert "apt-get failed" in texts
