"""
Exception hierarchy and exit codes for the deployment runner.

Step failures fall into two families that the runner treats identically for
control flow but logs distinctly: the collaborator invocation itself failed
(StepActionError) or it reported success and the post-condition does not hold
(StepVerificationError).
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Optional


class ExitCode(IntEnum):
    """Process exit codes, one per fatal category."""

    SUCCESS = 0
    FAILURE = 1
    PRIVILEGE = 3
    PREFLIGHT = 4
    BUILD = 5
    CERTIFICATE = 6
    PROXY = 7
    LOCKED = 8
    CONFIG = 9
    INTERRUPTED = 130


class DeployError(Exception):
    """Base exception for deployment errors."""

    exit_code: ExitCode = ExitCode.FAILURE


class ConfigurationError(DeployError):
    """Raised when the configuration is missing values or malformed."""

    exit_code = ExitCode.CONFIG


class PrivilegeError(DeployError):
    """Raised when the process lacks root privileges."""

    exit_code = ExitCode.PRIVILEGE


class LockHeldError(DeployError):
    """Raised when another run already holds the deployment lock."""

    exit_code = ExitCode.LOCKED


class DuplicateStepError(DeployError):
    """Raised when a step name or order position is registered twice."""


class StepActionError(DeployError):
    """The external collaborator invocation failed."""

    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(message)
        self.output = output


class CommandError(StepActionError):
    """A command exited non-zero or could not be started."""

    def __init__(
        self, message: str, returncode: Optional[int] = None, output: str = ""
    ) -> None:
        super().__init__(message, output)
        self.returncode = returncode


class StepTimeoutError(StepActionError):
    """A command exceeded its timeout."""


class ProxyReloadError(StepActionError):
    """The proxy refused to reload its configuration."""

    exit_code = ExitCode.PROXY


class StepVerificationError(DeployError):
    """The action reported success but its post-condition does not hold."""

    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(message)
        self.output = output


class BuildArtifactMissingError(StepVerificationError):
    """The build output directory is absent or empty."""

    exit_code = ExitCode.BUILD


class CertificateError(StepVerificationError):
    """The certificate is missing, unreadable or expired."""

    exit_code = ExitCode.CERTIFICATE


class ProxyConfigError(StepVerificationError):
    """The proxy configuration is invalid or not being served."""

    exit_code = ExitCode.PROXY


class FatalAbort(DeployError):
    """A non-recoverable step failed and the run halted."""

    def __init__(self, run: Any, exit_code: ExitCode = ExitCode.FAILURE) -> None:
        failed = getattr(run, "failed_step", None) or "unknown step"
        super().__init__(f"Deployment aborted at {failed}")
        self.run = run
        self.exit_code = exit_code


@dataclass(frozen=True)
class PreflightWarning:
    """A non-fatal observation made before any mutation."""

    kind: str
    message: str

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"
