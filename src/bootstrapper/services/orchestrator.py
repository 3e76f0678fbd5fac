"""Installation state machine: the single owner of the setup session."""

import asyncio
import functools
import logging
from typing import Optional, Union

from pydantic import SecretStr

from bootstrapper.api.models import ProgressData
from bootstrapper.config import Settings
from bootstrapper.models.errors import (
    BootstrapError,
    InstallError,
    InvalidTransition,
    NotAwaitingConfirmation,
    NothingToRetry,
    ProbeFailed,
    ProvisionError,
    RetryStageMismatch,
    SetupAlreadyComplete,
    SetupAlreadyInProgress,
    SetupAlreadyStarted,
    SetupCancelled,
    SetupNotInProgress,
    SupervisorError,
)
from bootstrapper.models.session import LogLine, SetupSession
from bootstrapper.models.status import (
    ALLOWED_TRANSITIONS,
    FAILED_STAGES,
    FAILURE_STAGE,
    RETRY_ENTRY,
    InstallationStage,
    LogSource,
    stage_message,
    stage_progress,
    to_wire,
)
from bootstrapper.services.download import InstallerDownloader
from bootstrapper.services.elevation import PrivilegeChannel
from bootstrapper.services.installer import RuntimeInstaller
from bootstrapper.services.probe import CapabilityProbe
from bootstrapper.services.process import ProcessSupervisor
from bootstrapper.services.provisioner import ContainerProvisioner
from bootstrapper.services.reporter import EventReporter, Subscription

Stage = InstallationStage


class _PhaseFailed(Exception):
    """Internal: a phase failed and the session already moved to a failed stage."""


class InstallationOrchestrator:
    """Sequences probe, install and provisioning for one setup session.

    The orchestrator is the only writer of ``session.stage``. Every transition
    is validated against ALLOWED_TRANSITIONS and published before the next
    component call begins. At most one run is in flight; failures are sticky
    until ``retry`` or ``cancel``.
    """

    def __init__(
        self,
        probe: CapabilityProbe,
        installer: RuntimeInstaller,
        provisioner: ContainerProvisioner,
        channel: Optional[PrivilegeChannel] = None,
        reporter: Optional[EventReporter] = None,
        session: Optional[SetupSession] = None,
    ):
        self.logger = logging.getLogger("bootstrapper.orchestrator")
        self.probe = probe
        self.installer = installer
        self.provisioner = provisioner
        self.channel = channel or PrivilegeChannel()
        self.reporter = reporter or EventReporter()
        self.session = session or SetupSession()
        self._task: Optional[asyncio.Task] = None
        self._start_confirmed = False

    # ------------------------------------------------------------------
    # Inbound API
    # ------------------------------------------------------------------

    @property
    def stage(self) -> InstallationStage:
        return self.session.stage

    @property
    def is_active(self) -> bool:
        """True while a run is in flight or setup waits for confirmation."""
        running = self._task is not None and not self._task.done()
        return running or self.session.stage is Stage.AWAITING_START

    async def start_setup(self) -> None:
        """Begin setup for a fresh session.

        Raises:
            SetupAlreadyInProgress: If a run is active
            SetupAlreadyComplete: If setup already succeeded
            SetupAlreadyStarted: If the session left NotStarted (use retry)
        """
        if self.is_active:
            raise SetupAlreadyInProgress(f"setup is at {to_wire(self.session.stage)}")
        if self.session.stage is Stage.SETUP_COMPLETE:
            raise SetupAlreadyComplete("setup already completed")
        if self.session.stage is not Stage.NOT_STARTED:
            raise SetupAlreadyStarted(
                f"session is at {to_wire(self.session.stage)}, use retry"
            )

        self.logger.info("Setup requested")
        self.reporter.publish_stage(Stage.NOT_STARTED)
        self._enter_start()

    async def confirm_start(self) -> None:
        """Operator confirmation on platforms that pause at AwaitingStart.

        Raises:
            NotAwaitingConfirmation: If the session is not at AwaitingStart
        """
        if self.session.stage is not Stage.AWAITING_START:
            raise NotAwaitingConfirmation(f"setup is at {to_wire(self.session.stage)}")
        self.logger.info("Setup confirmed by operator")
        self._start_confirmed = True
        self._begin(Stage.PROBING_RUNTIME)

    def submit_credential(self, request_id: str, secret: Union[str, SecretStr]) -> None:
        """Deliver an operator credential.

        Raises:
            ChannelError: Stale, unknown or duplicate submissions; the session
                is left untouched
        """
        self.channel.submit_credential(request_id, secret)

    async def retry(self, stage_hint: Optional[InstallationStage] = None) -> None:
        """Re-enter the stage that failed.

        Args:
            stage_hint: The failed stage the caller expects to be current

        Raises:
            SetupAlreadyInProgress: If a run is active
            NothingToRetry: If the session is not at a failed stage
            RetryStageMismatch: If ``stage_hint`` is not the current failed stage
        """
        if self.is_active:
            raise SetupAlreadyInProgress(f"setup is at {to_wire(self.session.stage)}")
        current = self.session.stage
        if current not in FAILED_STAGES:
            raise NothingToRetry(f"setup is at {to_wire(current)}")
        if stage_hint is not None and stage_hint is not current:
            raise RetryStageMismatch(
                f"expected {to_wire(current)}, got {to_wire(stage_hint)}"
            )

        entry = self.session.failed_at or RETRY_ENTRY[current]
        self.logger.info(f"Retrying from {to_wire(current)}: re-entering {to_wire(entry)}")
        self.session.last_error = None
        self.session.failed_at = None
        if entry is Stage.PROBING_RUNTIME and self._needs_start_gate():
            # Never confirmed: resolve the platform and pause again if required
            self._enter_start()
            return
        self._begin(entry)

    async def cancel(self) -> None:
        """Abandon the in-flight run.

        Kills any running child process and resolves a pending credential
        request without credential. The session moves to the failure stage of
        the current phase.

        Raises:
            SetupNotInProgress: If nothing is running
        """
        if self.session.stage is Stage.AWAITING_START:
            self._fail(Stage.PROBING_RUNTIME, SetupCancelled("cancelled before start"))
            return
        task = self._task
        if task is None or task.done():
            raise SetupNotInProgress(f"setup is at {to_wire(self.session.stage)}")

        self.logger.info("Cancelling setup")
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        # A task cancelled before its first step never reaches its own handler
        self.session.pending_request = None
        self._fail(self._phase_entry(), SetupCancelled("setup cancelled"))

    async def wait(self) -> None:
        """Wait for the in-flight run, if any, to finish."""
        task = self._task
        if task is None:
            return
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.cancelled():
                raise

    def subscribe_events(self, buffer_size: Optional[int] = None) -> Subscription:
        return self.reporter.subscribe(buffer_size)

    def logs(self, source: LogSource) -> list[LogLine]:
        return self.session.logs(source)

    def snapshot(self) -> ProgressData:
        """Current status for the progress endpoint."""
        session = self.session
        pending = session.pending_request
        return ProgressData(
            stage=session.stage,
            progress=stage_progress(session.stage),
            message=stage_message(session.stage),
            error=session.last_error,
            failed_at=session.failed_at,
            pending_request_id=pending.id if pending else None,
            platform=session.platform.os.kind if session.platform else None,
        )

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def _enter_start(self) -> None:
        """Resolve the platform, then pause at AwaitingStart or begin probing."""
        try:
            profile = self.probe.platform_profile()
        except ProbeFailed as e:
            if self.session.stage in FAILED_STAGES:
                self._transition(Stage.PROBING_RUNTIME)
            self._fail(Stage.PROBING_RUNTIME, e)
            return
        self.session.platform = profile
        self.logger.info(
            f"Platform: {profile.os.kind.value} {profile.os.version}, "
            f"interactive_elevation={profile.requires_interactive_elevation}, "
            f"start_confirmation={profile.requires_start_confirmation}"
        )

        if profile.requires_start_confirmation and not self._start_confirmed:
            self._transition(Stage.AWAITING_START)
            return
        self._begin(Stage.PROBING_RUNTIME)

    def _needs_start_gate(self) -> bool:
        platform = self.session.platform
        if platform is None:
            return True
        return platform.requires_start_confirmation and not self._start_confirmed

    def _begin(self, entry: InstallationStage) -> None:
        self._transition(entry)
        self._task = asyncio.create_task(self._execute(entry), name="setup-run")

    async def _execute(self, entry: InstallationStage) -> None:
        try:
            if entry is Stage.PROBING_RUNTIME:
                if not await self._probe_runtime():
                    self._transition(Stage.RUNTIME_INSTALLING)
                    await self._install_runtime()
            elif entry is Stage.RUNTIME_INSTALLING:
                await self._install_runtime()
            await self._provision_container()
        except _PhaseFailed:
            pass
        except asyncio.CancelledError:
            self._fail(self._phase_entry(), SetupCancelled("setup cancelled"))
            raise
        except Exception as e:
            self.logger.exception(f"Unexpected error at {to_wire(self.session.stage)}")
            self._fail(self._phase_entry(), _UnexpectedError(f"{type(e).__name__}: {e}"))
        finally:
            self.session.pending_request = None

    async def _probe_runtime(self) -> bool:
        try:
            if self.session.platform is None:
                self.session.platform = self.probe.platform_profile()
            present = await self.probe.is_runtime_installed()
            if not present:
                await self.probe.check_install_prerequisites(self.session.platform.os)
        except ProbeFailed as e:
            self._fail(Stage.PROBING_RUNTIME, e)
            raise _PhaseFailed() from e

        if present:
            self._transition(Stage.RUNTIME_INSTALLED)
        else:
            self._transition(Stage.RUNTIME_ABSENT)
        return present

    async def _install_runtime(self) -> None:
        profile = self.session.platform
        on_line = functools.partial(self._record_line, LogSource.RUNTIME_INSTALL)
        provider = self._acquire_credential if profile.requires_interactive_elevation else None
        try:
            await self.installer.install(profile, on_line, provider)
            await self.installer.wait_for_runtime(self.probe.is_runtime_ready, on_line)
        except (SupervisorError, InstallError, ProbeFailed) as e:
            self._fail(Stage.RUNTIME_INSTALLING, e)
            raise _PhaseFailed() from e
        self._transition(Stage.RUNTIME_INSTALLED)

    async def _provision_container(self) -> None:
        on_line = functools.partial(self._record_line, LogSource.CONTAINER)
        self._transition(Stage.CONTAINER_PROVISIONING)
        try:
            await self.provisioner.start_container(on_line)
            self._transition(Stage.CONTAINER_STARTED)
            await self.provisioner.initialize_schema(on_line)
        except ProvisionError as e:
            self._fail(Stage.CONTAINER_PROVISIONING, e)
            raise _PhaseFailed() from e
        self._transition(Stage.SETUP_COMPLETE)
        self.logger.info("Setup complete")

    async def _acquire_credential(self) -> SecretStr:
        """Credential provider handed to the supervisor.

        Pauses at AwaitingPrivilegedCredential and resumes RuntimeInstalling
        once the operator answered.
        """
        request = self.channel.request_credential()
        self.session.pending_request = request
        self._transition(Stage.AWAITING_PRIVILEGED_CREDENTIAL)
        self.reporter.publish_privilege_request(request)
        try:
            secret = await self.channel.wait_for_credential(request.id)
        finally:
            self.session.pending_request = None
        self._transition(Stage.RUNTIME_INSTALLING)
        return secret

    # ------------------------------------------------------------------
    # Session bookkeeping
    # ------------------------------------------------------------------

    def _record_line(self, source: LogSource, text: str) -> None:
        line = self.session.append_log(source, text)
        self.reporter.publish_log(line)

    def _phase_entry(self) -> InstallationStage:
        """Stage a retry should re-enter for a failure at the current stage."""
        stage = self.session.stage
        if FAILURE_STAGE.get(stage) is Stage.CONTAINER_SETUP_FAILED:
            return Stage.CONTAINER_PROVISIONING
        if stage in (Stage.RUNTIME_INSTALLING, Stage.AWAITING_PRIVILEGED_CREDENTIAL):
            return Stage.RUNTIME_INSTALLING
        return Stage.PROBING_RUNTIME

    def _fail(self, failed_at: InstallationStage, error: BootstrapError) -> None:
        current = self.session.stage
        if current in FAILED_STAGES or current is Stage.SETUP_COMPLETE:
            return
        self.session.last_error = str(error)
        self.session.failed_at = failed_at
        self.logger.error(f"Setup failed at {to_wire(current)}: {error}")
        self._transition(FAILURE_STAGE[current])

    def _transition(self, target: InstallationStage) -> None:
        current = self.session.stage
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransition(f"{to_wire(current)} -> {to_wire(target)}")
        self.session.stage = target
        self.session.history.append(target)
        self.logger.info(f"Stage: {to_wire(current)} -> {to_wire(target)}")
        self.reporter.publish_stage(target)


class _UnexpectedError(BootstrapError):
    code = "UNEXPECTED_ERROR"


def build_orchestrator(settings: Settings) -> InstallationOrchestrator:
    """Wire the production components from settings."""
    supervisor = ProcessSupervisor(credential_timeout=settings.credential_timeout)
    probe = CapabilityProbe(
        supervisor,
        runtime_binary=settings.runtime_binary,
        supported_ubuntu_versions=settings.supported_ubuntu_versions,
        required_tools=settings.required_tools,
    )
    installer = RuntimeInstaller(
        supervisor,
        downloader=InstallerDownloader(),
        work_dir=settings.data_dir,
        windows_installer_url=settings.windows_installer_url,
        install_timeout=settings.install_timeout,
        credential_timeout=settings.credential_timeout,
        runtime_wait_attempts=settings.runtime_wait_attempts,
        runtime_wait_delay=settings.runtime_wait_delay,
    )
    provisioner = ContainerProvisioner(
        supervisor,
        runtime_binary=settings.runtime_binary,
        container_name=settings.container_name,
        image=settings.container_image,
        volume_name=settings.volume_name,
        host_port=settings.host_port,
        database_name=settings.database_name,
        database_user=settings.database_user,
        database_password=settings.database_password,
        root_password=settings.root_password,
        readiness_attempts=settings.readiness_attempts,
        readiness_delay=settings.readiness_delay,
        readiness_max_delay=settings.readiness_max_delay,
    )
    return InstallationOrchestrator(
        probe=probe,
        installer=installer,
        provisioner=provisioner,
        reporter=EventReporter(settings.event_buffer_size),
    )
