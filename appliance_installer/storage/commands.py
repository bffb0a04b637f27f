"""Synchronous external command execution.

Every privileged tool the installer drives (parted, mkfs.*, grub-*, mount)
goes through a CommandRunner so the pipeline can be exercised in tests
without spawning processes.
"""

from __future__ import annotations

import subprocess
from typing import Optional, Sequence

from appliance_installer.logging import LoggerFactory
from appliance_installer.storage.exceptions import CommandFailedError


log = LoggerFactory.for_command()


class CommandRunner:
    """Run a command, block until it exits, and check its exit status.

    There is no timeout: a hung tool hangs the caller.
    """

    def run(
        self,
        command: Sequence[str],
        *,
        check: bool = True,
        log_output: bool = True,
    ) -> subprocess.CompletedProcess:
        """Run command and return the completed process.

        Raises:
            CommandFailedError: If the executable is missing, or the exit
                status is non-zero and check is True
        """
        command = [str(arg) for arg in command]
        log.debug(f"Running command: {' '.join(command)}")
        try:
            result = subprocess.run(command, text=True, capture_output=True)
        except OSError as error:
            log.error(f"Unable to start {command[0]}: {error}")
            raise CommandFailedError(command, stderr=str(error)) from error
        stderr = result.stderr.strip() if result.stderr else ""
        if result.returncode != 0:
            log.error(
                f"Command failed ({' '.join(command)}) rc={result.returncode}: "
                f"{stderr or 'no error message'}"
            )
            if check:
                raise CommandFailedError(command, result.returncode, stderr)
            return result
        if log_output:
            if result.stdout and result.stdout.strip():
                log.debug(f"stdout: {result.stdout.strip()}")
            if stderr:
                log.debug(f"stderr: {stderr}")
        log.debug(f"Command completed with return code {result.returncode}")
        return result

    def output(self, command: Sequence[str]) -> str:
        """Run command and return its stdout."""
        return self.run(command, log_output=False).stdout or ""


def resolve_runner(runner: Optional[CommandRunner]) -> CommandRunner:
    return runner if runner is not None else CommandRunner()
