"""Typed failures raised by bootstrapper components.

Every error carries a stable ``code``; ``str(error)`` renders as
``"<CODE>: <detail>"`` and is what the session records as ``last_error``.
"""

from typing import Optional


class BootstrapError(Exception):
    """Base class for all bootstrapper failures."""

    code = "BOOTSTRAP_ERROR"

    def __init__(self, detail: str = ""):
        self.detail = detail
        super().__init__(f"{self.code}: {detail}" if detail else self.code)


# Capability probe


class ProbeFailed(BootstrapError):
    """Host facts could not be determined."""

    code = "PROBE_FAILED"


class PreflightFailed(ProbeFailed):
    """Host does not meet the runtime installation prerequisites."""

    code = "PREFLIGHT_FAILED"


# Process supervisor


class SupervisorError(BootstrapError):
    code = "SUPERVISOR_ERROR"


class LaunchFailed(SupervisorError):
    code = "LAUNCH_FAILED"

    def __init__(self, command: str, reason: object):
        self.command = command
        super().__init__(f"could not start {command}: {reason}")


class NonZeroExit(SupervisorError):
    """Process ended cleanly with a non-zero exit code."""

    code = "NON_ZERO_EXIT"

    def __init__(self, command: str, exit_code: int):
        self.command = command
        self.exit_code = exit_code
        super().__init__(f"{command} exited with code {exit_code}")


class AbnormalExit(SupervisorError):
    """Process was terminated by a signal or crashed."""

    code = "ABNORMAL_EXIT"

    def __init__(self, command: str, code_or_signal: int):
        self.command = command
        self.code_or_signal = code_or_signal
        super().__init__(f"{command} terminated abnormally ({code_or_signal})")


class CredentialTimeout(SupervisorError):
    code = "CREDENTIAL_TIMEOUT"

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"no credential supplied within {timeout:g}s")


class ProcessTimeout(SupervisorError):
    code = "PROCESS_TIMEOUT"

    def __init__(self, command: str, timeout: float):
        self.command = command
        self.timeout = timeout
        super().__init__(f"{command} did not finish within {timeout:g}s")


# Runtime installation


class InstallError(BootstrapError):
    code = "INSTALL_FAILED"


class InstallerUnavailable(InstallError):
    code = "UNSUPPORTED_PLATFORM"


class DownloadFailed(InstallError):
    code = "DOWNLOAD_FAILED"


class RuntimeVerificationFailed(InstallError):
    code = "RUNTIME_VERIFICATION_FAILED"


# Privilege elevation channel


class ChannelError(BootstrapError):
    code = "CHANNEL_ERROR"


class AlreadyPending(ChannelError):
    code = "ALREADY_PENDING"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"request {request_id} is still outstanding")


class UnknownOrStaleRequest(ChannelError):
    code = "UNKNOWN_OR_STALE_REQUEST"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"request {request_id} is not the outstanding request")


class AlreadyResolved(ChannelError):
    code = "ALREADY_RESOLVED"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"request {request_id} already received its credential")


# Container provisioner


class ProvisionError(BootstrapError):
    code = "PROVISION_FAILED"


class RuntimeNotRunning(ProvisionError):
    code = "RUNTIME_NOT_RUNNING"


class PortUnavailable(ProvisionError):
    code = "PORT_UNAVAILABLE"

    def __init__(self, port: int):
        self.port = port
        super().__init__(f"host port {port} is already in use")


class ContainerStartFailed(ProvisionError):
    code = "CONTAINER_START_FAILED"


class ReadinessTimeout(ProvisionError):
    code = "READINESS_TIMEOUT"

    def __init__(self, attempts: int, last_error: Optional[str] = None):
        self.attempts = attempts
        detail = f"database not ready after {attempts} attempts"
        if last_error:
            detail = f"{detail}: {last_error}"
        super().__init__(detail)


class SchemaInitFailed(ProvisionError):
    code = "SCHEMA_INIT_FAILED"


# Orchestrator


class OrchestratorError(BootstrapError):
    code = "ORCHESTRATOR_ERROR"


class SetupAlreadyInProgress(OrchestratorError):
    code = "SETUP_ALREADY_IN_PROGRESS"


class SetupAlreadyStarted(OrchestratorError):
    code = "SETUP_ALREADY_STARTED"


class SetupAlreadyComplete(OrchestratorError):
    code = "SETUP_ALREADY_COMPLETE"


class NothingToRetry(OrchestratorError):
    code = "NOTHING_TO_RETRY"


class RetryStageMismatch(OrchestratorError):
    code = "RETRY_STAGE_MISMATCH"


class NotAwaitingConfirmation(OrchestratorError):
    code = "NOT_AWAITING_CONFIRMATION"


class SetupNotInProgress(OrchestratorError):
    code = "SETUP_NOT_IN_PROGRESS"


class SetupCancelled(OrchestratorError):
    code = "SETUP_CANCELLED"


class InvalidTransition(RuntimeError):
    """A transition outside ALLOWED_TRANSITIONS was attempted."""
