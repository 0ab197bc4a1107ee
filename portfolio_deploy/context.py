"""Per-run state handed to every step action and verification."""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional

from .commands import Command, CommandResult, CommandRunner
from .config import DeployConfig
from .log import logger
from .probes import HttpProber, ProbeResult

if TYPE_CHECKING:
    from .pipeline import Step
    from .preflight import HostFacts


@dataclass
class DeployContext:
    """Configuration, collaborators and scratch state for one pipeline run."""

    config: DeployConfig
    runner: CommandRunner
    prober: HttpProber
    facts: Optional["HostFacts"] = None
    step: Optional["Step"] = None
    warnings: List[str] = field(default_factory=list)
    backups: Dict[str, Optional[str]] = field(default_factory=dict)
    probe_results: List["ProbeResult"] = field(default_factory=list)

    def run(self, cmd: Command, **kwargs) -> CommandResult:
        """Run a command with the active step's timeout unless one is given."""
        if "timeout" not in kwargs and self.step is not None:
            kwargs["timeout"] = self.config.timeout_for(
                self.step.name, self.step.timeout
            )
        return self.runner.run(cmd, **kwargs)

    def warn(self, message: str) -> None:
        """Record a non-fatal problem for the final summary."""
        logger.warning(message)
        self.warnings.append(message)

    def drain_warnings(self) -> List[str]:
        pending, self.warnings = self.warnings, []
        return pending
