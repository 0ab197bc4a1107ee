"""
Command execution helpers.

Every external collaborator (apt, npm, nginx, certbot, systemctl, ufw, openssl,
curl) is invoked through CommandRunner so that steps stay thin adapters and
tests can substitute a recording fake.
"""

import os
import shutil
import subprocess
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Union

from .errors import CommandError, StepTimeoutError
from .log import logger

Command = Union[Sequence[str], str]


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a finished command."""

    args: Union[List[str], str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part).strip()


def format_command(cmd: Command) -> str:
    return cmd if isinstance(cmd, str) else " ".join(cmd)


def tail(text: str, lines: int = 20) -> str:
    """Return the last few lines of collaborator output for error reports."""
    return "\n".join(text.strip().splitlines()[-lines:])


def command_exists(cmd: str) -> bool:
    """Check if a command exists in the system PATH."""
    return shutil.which(cmd) is not None


class CommandRunner:
    """Runs external commands with logging, timeouts and error translation."""

    def __init__(
        self, default_timeout: int = 300, env: Optional[Dict[str, str]] = None
    ) -> None:
        self.default_timeout = default_timeout
        self.env = env

    def run(
        self,
        cmd: Command,
        timeout: Optional[int] = None,
        check: bool = True,
        input: Optional[str] = None,
        user: Optional[str] = None,
        cwd: Optional[str] = None,
    ) -> CommandResult:
        """
        Execute a system command.

        Args:
            cmd: argv list, or a string run through the shell
            timeout: seconds before the command is killed
            check: raise CommandError on a non-zero exit status
            input: text fed to the command's stdin
            user: run the command as this user via sudo
            cwd: working directory

        Returns:
            CommandResult with captured output

        Raises:
            CommandError: if the command is missing, or exits non-zero with check
            StepTimeoutError: if the command exceeds its timeout
        """
        shell = isinstance(cmd, str)
        args: Union[List[str], str] = cmd if shell else list(cmd)
        if user and user != "root":
            if shell:
                args = ["sudo", "-H", "-u", user, "bash", "-c", args]
                shell = False
            else:
                args = ["sudo", "-H", "-u", user] + list(args)

        cmd_str = format_command(args)
        limit = timeout or self.default_timeout
        logger.debug(f"Executing: {cmd_str}")
        try:
            proc = subprocess.run(
                args,
                shell=shell,
                env=self.env or os.environ.copy(),
                cwd=cwd,
                input=input,
                text=True,
                encoding="utf-8",
                errors="replace",
                capture_output=True,
                timeout=limit,
            )
        except subprocess.TimeoutExpired as e:
            raise StepTimeoutError(
                f"Command timed out after {limit}s: {cmd_str}",
                output=_decode(e.stdout) + _decode(e.stderr),
            ) from e
        except FileNotFoundError as e:
            raise CommandError(f"Command not found: {cmd_str}") from e

        result = CommandResult(args, proc.returncode, proc.stdout or "", proc.stderr or "")
        if check and not result.ok:
            logger.debug(f"Command failed (code {result.returncode}): {cmd_str}")
            raise CommandError(
                f"Command failed (code {result.returncode}): {cmd_str}",
                returncode=result.returncode,
                output=tail(result.output),
            )
        return result


def _decode(data: Union[bytes, str, None]) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode(errors="replace")
    return data
