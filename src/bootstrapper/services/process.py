"""Supervision of external installer and runtime commands."""

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Mapping, Optional, Sequence

from pydantic import SecretStr

from bootstrapper.models.errors import (
    AbnormalExit,
    CredentialTimeout,
    LaunchFailed,
    NonZeroExit,
    ProcessTimeout,
)

LineCallback = Callable[[str], None]
CredentialProvider = Callable[[], Awaitable[SecretStr]]

# sudo reads the password from stdin and prints no prompt of its own
SUDO_PREFIX = ("sudo", "-S", "-p", "")


def _child_env(extra: Optional[Mapping[str, str]]) -> Optional[dict[str, str]]:
    if not extra:
        return None
    return {**os.environ, **extra}


@dataclass(frozen=True)
class ExitStatus:
    """Terminal result of a successful run."""

    exit_code: int
    duration: float


@dataclass(frozen=True)
class CommandOutput:
    """Captured result of a short query command."""

    exit_code: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class ProcessSupervisor:
    """Runs external commands and streams their output line by line."""

    STREAM_LIMIT = 1024 * 1024
    CREDENTIAL_TIMEOUT = 120.0

    def __init__(
        self,
        elevation_prefix: Sequence[str] = SUDO_PREFIX,
        credential_timeout: float = CREDENTIAL_TIMEOUT,
    ):
        """Initialize process supervisor.

        Args:
            elevation_prefix: Command prefix used when a credential is supplied
                on stdin (``sudo -S`` by default)
            credential_timeout: Default seconds to wait for a credential
        """
        self.logger = logging.getLogger("bootstrapper.process")
        self.elevation_prefix = tuple(elevation_prefix)
        self.credential_timeout = credential_timeout

    async def run(
        self,
        command: str,
        args: Sequence[str] = (),
        privileged: bool = False,
        on_line: Optional[LineCallback] = None,
        credential_provider: Optional[CredentialProvider] = None,
        credential_timeout: Optional[float] = None,
        timeout: Optional[float] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> ExitStatus:
        """Run a command to completion, streaming combined output.

        Lines are delivered to ``on_line`` as the process produces them. The
        order within stdout and within stderr is preserved; how the two
        interleave is not.

        When ``privileged`` is set and a ``credential_provider`` is given, the
        platform needs an interactive credential: the supervisor awaits the
        provider, launches the command behind the elevation prefix and writes
        the secret to its stdin once. Without a provider a privileged command
        runs as-is (the platform elevates on its own, or we already are root).

        Args:
            command: Executable name or path
            args: Command arguments
            privileged: Whether the command needs elevated privileges
            on_line: Callback receiving each output line (without newline)
            credential_provider: Coroutine function producing the credential
            credential_timeout: Seconds to wait for the credential
            timeout: Seconds the process may run before it is killed
            env: Extra environment variables for the child, added to ours;
                keeps secrets out of the argument list

        Returns:
            ExitStatus with exit code 0 and wall-clock duration

        Raises:
            CredentialTimeout: If no credential arrived in time
            LaunchFailed: If the process could not be started
            NonZeroExit: If the process exited with a non-zero code
            AbnormalExit: If the process was killed by a signal
            ProcessTimeout: If the process exceeded ``timeout``
        """
        argv = [command, *args]
        secret: Optional[SecretStr] = None

        if privileged and credential_provider is not None:
            wait = credential_timeout or self.credential_timeout
            self.logger.info(f"Waiting up to {wait:g}s for credential to run {command}")
            try:
                secret = await asyncio.wait_for(credential_provider(), timeout=wait)
            except asyncio.TimeoutError:
                self.logger.warning(f"Credential for {command} not supplied within {wait:g}s")
                raise CredentialTimeout(wait) from None
            argv = [*self.elevation_prefix, *argv]

        self.logger.info(f"Running: {command} (privileged={privileged})")
        started = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE if secret is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=self.STREAM_LIMIT,
                env=_child_env(env),
            )
        except OSError as e:
            self.logger.error(f"Failed to launch {command}: {e}")
            raise LaunchFailed(command, e) from e

        try:
            if secret is not None:
                await self._feed_secret(process, secret)
                secret = None
            returncode = await asyncio.wait_for(
                self._communicate(process, on_line), timeout=timeout
            )
        except asyncio.TimeoutError:
            await self._terminate(process)
            self.logger.error(f"{command} exceeded {timeout:g}s, killed")
            raise ProcessTimeout(command, timeout) from None
        except BaseException:
            # Cancellation included: never leave the child running
            await self._terminate(process)
            raise

        duration = time.monotonic() - started
        if returncode < 0:
            self.logger.error(f"{command} terminated by signal {-returncode}")
            raise AbnormalExit(command, returncode)
        if returncode != 0:
            self.logger.error(f"{command} exited with code {returncode}")
            raise NonZeroExit(command, returncode)

        self.logger.info(f"{command} finished in {duration:.1f}s")
        return ExitStatus(exit_code=returncode, duration=duration)

    async def output(
        self,
        command: str,
        args: Sequence[str] = (),
        timeout: Optional[float] = 30.0,
        env: Optional[Mapping[str, str]] = None,
    ) -> CommandOutput:
        """Run a short query command and capture its output.

        Non-zero exits are returned, not raised: callers interpret them.

        Raises:
            LaunchFailed: If the process could not be started
            ProcessTimeout: If the process exceeded ``timeout``
        """
        try:
            process = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=_child_env(env),
            )
        except OSError as e:
            raise LaunchFailed(command, e) from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            await self._terminate(process)
            raise ProcessTimeout(command, timeout) from None
        except BaseException:
            await self._terminate(process)
            raise

        result = CommandOutput(
            exit_code=process.returncode,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )
        self.logger.debug(f"{command} {' '.join(args[:2])} -> exit {result.exit_code}")
        return result

    async def _feed_secret(self, process, secret: SecretStr) -> None:
        try:
            process.stdin.write(secret.get_secret_value().encode("utf-8") + b"\n")
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            # Process exited before reading; its exit status tells the story
            pass
        finally:
            process.stdin.close()

    async def _communicate(self, process, on_line: Optional[LineCallback]) -> int:
        await asyncio.gather(
            self._pump(process.stdout, on_line),
            self._pump(process.stderr, on_line),
        )
        return await process.wait()

    async def _pump(self, stream, on_line: Optional[LineCallback]) -> None:
        while True:
            raw = await stream.readline()
            if not raw:
                break
            if on_line is not None:
                on_line(raw.decode("utf-8", errors="replace").rstrip("\r\n"))

    async def _terminate(self, process) -> None:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
