"""Installation stages and their wire/progress mapping tables."""

from enum import Enum
from typing import NamedTuple


class InstallationStage(Enum):
    """Setup lifecycle stages.

    Happy path:
    NotStarted → (AwaitingStart) → ProbingRuntime → RuntimeAbsent → RuntimeInstalling
        ⇄ AwaitingPrivilegedCredential → RuntimeInstalled → ContainerProvisioning
        → ContainerStarted → SetupComplete

    Any stage of the runtime phase can fall into RuntimeInstallFailed, any stage
    of the container phase into ContainerSetupFailed. Failures are left only by
    an explicit retry.
    """

    NOT_STARTED = 0
    AWAITING_START = 1
    AWAITING_PRIVILEGED_CREDENTIAL = 2
    PROBING_RUNTIME = 3
    RUNTIME_ABSENT = 4
    RUNTIME_INSTALLING = 5
    RUNTIME_INSTALL_FAILED = 6
    RUNTIME_INSTALLED = 7
    CONTAINER_PROVISIONING = 8
    CONTAINER_STARTED = 9
    CONTAINER_SETUP_FAILED = 10
    SETUP_COMPLETE = 11


class LogSource(str, Enum):
    """Independently sequenced log streams of a setup session."""

    RUNTIME_INSTALL = "runtime-install"
    CONTAINER = "container"


class StageInfo(NamedTuple):
    wire_name: str
    progress: int
    message: str


_S = InstallationStage

# Single source for serialization and progress reporting.
STAGE_TABLE: dict[InstallationStage, StageInfo] = {
    _S.NOT_STARTED: StageInfo("NotStarted", 0, "Setup not started"),
    _S.AWAITING_START: StageInfo("AwaitingStart", 0, "Waiting for operator to confirm setup"),
    _S.PROBING_RUNTIME: StageInfo("ProbingRuntime", 10, "Checking container runtime..."),
    _S.RUNTIME_ABSENT: StageInfo("RuntimeAbsent", 15, "Container runtime not installed"),
    _S.AWAITING_PRIVILEGED_CREDENTIAL: StageInfo(
        "AwaitingPrivilegedCredential", 20, "Waiting for administrator password"
    ),
    _S.RUNTIME_INSTALLING: StageInfo("RuntimeInstalling", 30, "Installing container runtime..."),
    _S.RUNTIME_INSTALL_FAILED: StageInfo(
        "RuntimeInstallFailed", 0, "Container runtime installation failed"
    ),
    _S.RUNTIME_INSTALLED: StageInfo("RuntimeInstalled", 50, "Container runtime ready"),
    _S.CONTAINER_PROVISIONING: StageInfo(
        "ContainerProvisioning", 60, "Starting database container..."
    ),
    _S.CONTAINER_STARTED: StageInfo("ContainerStarted", 85, "Initializing database schema..."),
    _S.CONTAINER_SETUP_FAILED: StageInfo("ContainerSetupFailed", 0, "Database setup failed"),
    _S.SETUP_COMPLETE: StageInfo("SetupComplete", 100, "Setup complete"),
}

ALLOWED_TRANSITIONS: dict[InstallationStage, frozenset[InstallationStage]] = {
    _S.NOT_STARTED: frozenset({_S.AWAITING_START, _S.PROBING_RUNTIME, _S.RUNTIME_INSTALL_FAILED}),
    _S.AWAITING_START: frozenset({_S.PROBING_RUNTIME, _S.RUNTIME_INSTALL_FAILED}),
    _S.PROBING_RUNTIME: frozenset(
        {_S.RUNTIME_INSTALLED, _S.RUNTIME_ABSENT, _S.RUNTIME_INSTALL_FAILED}
    ),
    _S.RUNTIME_ABSENT: frozenset({_S.RUNTIME_INSTALLING, _S.RUNTIME_INSTALL_FAILED}),
    _S.RUNTIME_INSTALLING: frozenset(
        {_S.AWAITING_PRIVILEGED_CREDENTIAL, _S.RUNTIME_INSTALLED, _S.RUNTIME_INSTALL_FAILED}
    ),
    _S.AWAITING_PRIVILEGED_CREDENTIAL: frozenset(
        {_S.RUNTIME_INSTALLING, _S.RUNTIME_INSTALL_FAILED}
    ),
    _S.RUNTIME_INSTALLED: frozenset({_S.CONTAINER_PROVISIONING, _S.CONTAINER_SETUP_FAILED}),
    _S.CONTAINER_PROVISIONING: frozenset({_S.CONTAINER_STARTED, _S.CONTAINER_SETUP_FAILED}),
    _S.CONTAINER_STARTED: frozenset({_S.SETUP_COMPLETE, _S.CONTAINER_SETUP_FAILED}),
    _S.RUNTIME_INSTALL_FAILED: frozenset(
        {_S.AWAITING_START, _S.PROBING_RUNTIME, _S.RUNTIME_INSTALLING}
    ),
    _S.CONTAINER_SETUP_FAILED: frozenset({_S.CONTAINER_PROVISIONING}),
    _S.SETUP_COMPLETE: frozenset(),
}

FAILED_STAGES = frozenset({_S.RUNTIME_INSTALL_FAILED, _S.CONTAINER_SETUP_FAILED})

# Failure stage each non-terminal stage falls into.
FAILURE_STAGE: dict[InstallationStage, InstallationStage] = {
    _S.NOT_STARTED: _S.RUNTIME_INSTALL_FAILED,
    _S.AWAITING_START: _S.RUNTIME_INSTALL_FAILED,
    _S.PROBING_RUNTIME: _S.RUNTIME_INSTALL_FAILED,
    _S.RUNTIME_ABSENT: _S.RUNTIME_INSTALL_FAILED,
    _S.RUNTIME_INSTALLING: _S.RUNTIME_INSTALL_FAILED,
    _S.AWAITING_PRIVILEGED_CREDENTIAL: _S.RUNTIME_INSTALL_FAILED,
    _S.RUNTIME_INSTALLED: _S.CONTAINER_SETUP_FAILED,
    _S.CONTAINER_PROVISIONING: _S.CONTAINER_SETUP_FAILED,
    _S.CONTAINER_STARTED: _S.CONTAINER_SETUP_FAILED,
}

# Stage a retry re-enters when the failure did not record one.
RETRY_ENTRY: dict[InstallationStage, InstallationStage] = {
    _S.RUNTIME_INSTALL_FAILED: _S.PROBING_RUNTIME,
    _S.CONTAINER_SETUP_FAILED: _S.CONTAINER_PROVISIONING,
}

_WIRE_LOOKUP = {info.wire_name: stage for stage, info in STAGE_TABLE.items()}


def _check_exhaustive() -> None:
    members = set(InstallationStage)
    for name, table in (("STAGE_TABLE", STAGE_TABLE), ("ALLOWED_TRANSITIONS", ALLOWED_TRANSITIONS)):
        missing = members - set(table)
        if missing:
            raise RuntimeError(
                f"{name} is missing stages: {sorted(s.name for s in missing)}"
            )
    if len(_WIRE_LOOKUP) != len(STAGE_TABLE):
        raise RuntimeError("STAGE_TABLE wire names must be unique")
    for source, targets in ALLOWED_TRANSITIONS.items():
        if _S.NOT_STARTED in targets:
            raise RuntimeError(f"{source.name} may not transition back to NotStarted")


_check_exhaustive()


def to_wire(stage: InstallationStage) -> str:
    """Serialize a stage to its boundary name."""
    return STAGE_TABLE[stage].wire_name


def parse_stage(value) -> InstallationStage:
    """Parse a boundary name (or pass through a stage).

    Raises:
        ValueError: If the name does not belong to any stage
    """
    if isinstance(value, InstallationStage):
        return value
    try:
        return _WIRE_LOOKUP[value]
    except (KeyError, TypeError):
        raise ValueError(f"Unknown installation stage: {value!r}") from None


def stage_progress(stage: InstallationStage) -> int:
    return STAGE_TABLE[stage].progress


def stage_message(stage: InstallationStage) -> str:
    return STAGE_TABLE[stage].message
