"""
Launch a command without masking its output.

Where the platform can replace the current process image, amber becomes the
child process. Elsewhere the child is spawned and amber exits with its code.
"""

import functools
import logging
import os
import shlex
import subprocess
import sys
import typing

import attr

from .utils import ChildProcessAbnormalTermination, IOFailure

log = logging.getLogger(__name__)


@attr.s(frozen=True)
class Command:
    argv: typing.Tuple[str, ...] = attr.ib(converter=tuple)
    env: typing.Dict[str, str] = attr.ib(factory=lambda: dict(os.environ))

    @argv.validator
    def _check_argv(self, attribute, value):
        if not value:
            raise ValueError("Command must have at least one argument")

    def __str__(self):
        return shlex.quote(self.argv[0])

    def with_env(self, variables: typing.Mapping[str, str]) -> 'Command':
        """Return a copy of this command with additional environment variables."""
        for name in variables:
            log.debug(f"Setting env var in child process: {name}")
        return attr.evolve(self, env={**self.env, **variables})


class Launcher:
    def launch(self, command: Command) -> typing.NoReturn:
        raise NotImplementedError


class ReplaceLauncher(Launcher):
    """Replace the current process with the command."""

    def launch(self, command: Command) -> typing.NoReturn:
        log.debug(f"Replacing the current process with {command}")
        sys.stdout.flush()
        sys.stderr.flush()
        try:
            os.execvpe(command.argv[0], command.argv, command.env)
        except OSError as error:
            raise IOFailure(f"Launching child process {command}: {error}") from error
        raise AssertionError("os.execvpe returned")  # pragma: no cover


class SpawnLauncher(Launcher):
    """Run the command as a child process and exit with its exit code."""

    def launch(self, command: Command) -> typing.NoReturn:
        log.debug(f"Spawning {command}")
        try:
            returncode = subprocess.call(command.argv, env=command.env)
        except OSError as error:
            raise IOFailure(f"Launching child process {command}: {error}") from error

        if returncode < 0:
            raise ChildProcessAbnormalTermination(
                f"Unexpected exit status from {command}: "
                f"terminated by signal {-returncode}")

        sys.exit(returncode)


@functools.lru_cache()
def platform_launcher() -> Launcher:
    if os.name == 'posix':
        return ReplaceLauncher()
    return SpawnLauncher()
