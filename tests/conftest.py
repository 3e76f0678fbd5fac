"""Global pytest configuration and scripted component fakes."""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from bootstrapper.models.platform import OSInfo, PlatformKind, PlatformProfile  # noqa: E402
from bootstrapper.services.process import CommandOutput, ExitStatus  # noqa: E402


def make_profile(
    kind: PlatformKind = PlatformKind.LINUX,
    elevation: bool = False,
    confirmation: bool = False,
) -> PlatformProfile:
    return PlatformProfile(
        os=OSInfo(kind=kind, version="6.1.0", distro_id="ubuntu", distro_version="22.04"),
        requires_interactive_elevation=elevation,
        requires_start_confirmation=confirmation,
    )


class FakeProbe:
    """Scripted capability probe."""

    def __init__(self, profile=None, runtime_present=True, probe_error=None, ready=True):
        self.profile = profile or make_profile()
        self.runtime_present = runtime_present
        self.probe_error = probe_error
        self.ready = ready
        self.profile_error = None
        self.prerequisite_checks = 0

    def platform_profile(self):
        if self.profile_error is not None:
            raise self.profile_error
        return self.profile

    async def is_runtime_installed(self):
        if self.probe_error is not None:
            raise self.probe_error
        return self.runtime_present

    async def is_runtime_ready(self):
        return self.ready

    async def check_install_prerequisites(self, os_info):
        self.prerequisite_checks += 1


class FakeInstaller:
    """Scripted runtime installer.

    A given credential provider is awaited before any output, like the real
    supervisor does for privileged commands.
    """

    def __init__(self, error=None, lines=("Installing...", "Done")):
        self.error = error
        self.lines = lines
        self.calls = 0
        self.received_secrets = []

    async def install(self, profile, on_line, credential_provider=None):
        self.calls += 1
        if credential_provider is not None:
            secret = await credential_provider()
            self.received_secrets.append(secret.get_secret_value())
        for line in self.lines:
            on_line(line)
        if self.error is not None:
            raise self.error
        return ExitStatus(exit_code=0, duration=0.01)

    async def wait_for_runtime(self, is_ready, on_line):
        await is_ready()


class FakeProvisioner:
    """Scripted container provisioner; queued errors are raised one per call."""

    def __init__(self, start_errors=(), schema_errors=()):
        self.start_errors = list(start_errors)
        self.schema_errors = list(schema_errors)
        self.start_calls = 0
        self.schema_calls = 0

    async def start_container(self, on_line):
        self.start_calls += 1
        on_line(f"start attempt {self.start_calls}")
        if self.start_errors:
            error = self.start_errors.pop(0)
            if error is not None:
                raise error

    async def initialize_schema(self, on_line):
        self.schema_calls += 1
        on_line(f"schema attempt {self.schema_calls}")
        if self.schema_errors:
            error = self.schema_errors.pop(0)
            if error is not None:
                raise error


class FakeSupervisor:
    """Records commands; ``output`` answers from a handler, ``run`` fails per ``run_errors``."""

    def __init__(self, output_handler=None):
        self.output_handler = output_handler or (lambda command, args: CommandOutput(0, "", ""))
        self.run_calls = []
        self.output_calls = []
        self.output_envs = []
        self.run_errors = {}

    async def run(self, command, args=(), privileged=False, on_line=None,
                  credential_provider=None, credential_timeout=None, timeout=None, env=None):
        self.run_calls.append(
            {"command": command, "args": list(args), "privileged": privileged,
             "credential_provider": credential_provider, "env": env}
        )
        if on_line is not None:
            on_line(f"ran {command} {args[0] if args else ''}".strip())
        key = args[0] if args else command
        if key in self.run_errors:
            raise self.run_errors[key]
        return ExitStatus(exit_code=0, duration=0.0)

    async def output(self, command, args=(), timeout=30.0, env=None):
        self.output_calls.append([command, *args])
        self.output_envs.append(env)
        return self.output_handler(command, list(args))
