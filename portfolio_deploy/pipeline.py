"""
Step registry and runner.

A pipeline is an ordered list of Step records. Each step pairs a side-effecting
action with a verify predicate that checks the action's post-condition. The
runner executes steps strictly in order, evaluates verify immediately after each
action, and either continues past a failed recoverable step or aborts on the
first non-recoverable failure.

Re-running after an abort is safe: a step whose verify already passes is
recorded as satisfied and its action is not repeated.
"""

import datetime
import signal
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

from rich.prompt import Confirm

from .errors import (
    DeployError,
    DuplicateStepError,
    ExitCode,
    FatalAbort,
    StepActionError,
    StepVerificationError,
)
from .log import logger
from .ui import console

if TYPE_CHECKING:
    from .context import DeployContext
    from .preflight import HostFacts

Action = Callable[["DeployContext"], None]
Predicate = Callable[["DeployContext"], bool]
Decision = Callable[[str], bool]
FactGatherer = Callable[["DeployContext"], "HostFacts"]

PREFLIGHT = "preflight"


class RunStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    ABORTED = "aborted"


class StepStatus(str, Enum):
    COMPLETED = "completed"
    SATISFIED = "satisfied"
    PLANNED = "planned"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class Step:
    """One named unit of the pipeline."""

    name: str
    order: int
    action: Action
    verify: Optional[Action] = None
    recoverable: bool = False
    description: str = ""
    timeout: Optional[int] = None
    exit_code: ExitCode = ExitCode.FAILURE
    requires: Tuple[str, ...] = ()
    force: Optional[Predicate] = None
    rollback: Optional[Action] = None

    @property
    def title(self) -> str:
        return self.description or self.name


@dataclass
class StepRecord:
    name: str
    status: StepStatus
    duration: float = 0.0
    message: str = ""
    classification: Optional[str] = None
    output: str = ""


@dataclass
class PipelineRun:
    """One execution attempt. Finalized exactly once."""

    started_at: datetime.datetime = field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc)
    )
    status: RunStatus = RunStatus.RUNNING
    completed_steps: List[str] = field(default_factory=list)
    failed_step: Optional[str] = None
    skipped: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    records: List[StepRecord] = field(default_factory=list)
    pending: List[str] = field(default_factory=list)
    facts: Optional["HostFacts"] = None
    finished_at: Optional[datetime.datetime] = None
    interrupted: bool = False
    dry_run: bool = False
    exit_code: ExitCode = ExitCode.SUCCESS
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status is RunStatus.SUCCEEDED

    @property
    def duration(self) -> float:
        end = self.finished_at or datetime.datetime.now(datetime.timezone.utc)
        return (end - self.started_at).total_seconds()

    def record(self, record: StepRecord) -> None:
        self.records.append(record)
        if record.status in (StepStatus.COMPLETED, StepStatus.SATISFIED):
            self.completed_steps.append(record.name)
        elif record.status is StepStatus.SKIPPED or (
            record.status is StepStatus.FAILED and record.name != self.failed_step
        ):
            self.skipped.append(record.name)

    def finalize(
        self,
        status: RunStatus,
        exit_code: ExitCode = ExitCode.SUCCESS,
        failed_step: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        if self.status is not RunStatus.RUNNING:
            raise RuntimeError(f"Run already finalized as {self.status.value}")
        self.status = status
        self.exit_code = exit_code
        self.failed_step = failed_step
        self.error = error
        self.finished_at = datetime.datetime.now(datetime.timezone.utc)

    def summary(self) -> str:
        return (
            f"{len(self.completed_steps)} steps completed, "
            f"{len(self.warnings)} warnings"
        )

    def raise_for_status(self) -> None:
        """Raise FatalAbort if the run was aborted."""
        if self.status is RunStatus.ABORTED:
            raise FatalAbort(self, self.exit_code)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "status": self.status.value,
            "completed_steps": list(self.completed_steps),
            "failed_step": self.failed_step,
            "skipped": list(self.skipped),
            "not_run": list(self.pending),
            "warnings": list(self.warnings),
            "interrupted": self.interrupted,
            "dry_run": self.dry_run,
            "exit_code": int(self.exit_code),
            "error": self.error,
            "steps": [
                {
                    "name": r.name,
                    "status": r.status.value,
                    "duration": round(r.duration, 3),
                    "message": r.message,
                }
                for r in self.records
            ],
        }


def fail_closed(question: str) -> bool:
    """Decision strategy for unattended runs: always decline."""
    logger.warning(f"No operator available to answer: {question} Declining.")
    return False


def confirm_prompt(question: str) -> bool:
    """Decision strategy for an operator at a terminal; defaults to no."""
    return Confirm.ask(f"[warning]{question}[/warning]", default=False, console=console)


class InterruptGuard:
    """
    Defers SIGINT/SIGTERM while a step runs.

    The first signal only sets `requested`; the runner finishes the current step
    before aborting. A second signal raises KeyboardInterrupt immediately.
    """

    SIGNALS = (signal.SIGINT, signal.SIGTERM)

    def __init__(self) -> None:
        self.requested = False
        self._previous: Dict[int, Any] = {}

    def _handle(self, signum: int, frame: Optional[Any]) -> None:
        if self.requested:
            raise KeyboardInterrupt
        self.requested = True
        logger.warning(
            f"Received {signal.Signals(signum).name}; finishing the current step "
            "before stopping."
        )

    def __enter__(self) -> "InterruptGuard":
        if threading.current_thread() is threading.main_thread():
            for sig in self.SIGNALS:
                self._previous[sig] = signal.signal(sig, self._handle)
        return self

    def __exit__(self, *exc: Any) -> None:
        for sig, previous in self._previous.items():
            signal.signal(sig, previous)
        self._previous.clear()


class Pipeline:
    """Ordered step registry and deterministic runner."""

    def __init__(
        self,
        preflight: Optional[FactGatherer] = None,
        decide: Decision = fail_closed,
    ) -> None:
        self.preflight = preflight
        self.decide = decide
        self._steps: Dict[str, Step] = {}

    @property
    def steps(self) -> List[Step]:
        return sorted(self._steps.values(), key=lambda s: s.order)

    def register(self, step: Step) -> Step:
        if step.name in self._steps:
            raise DuplicateStepError(f"Step already registered: {step.name}")
        for other in self._steps.values():
            if other.order == step.order:
                raise DuplicateStepError(
                    f"Order {step.order} already taken by {other.name}"
                )
        self._steps[step.name] = step
        return step

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    def run(self, ctx: "DeployContext") -> PipelineRun:
        """
        Execute every registered step in order against the context.

        Returns:
            The finalized PipelineRun (Succeeded or Aborted)
        """
        run = PipelineRun(dry_run=ctx.config.dry_run)
        steps = self.steps
        run.pending = [s.name for s in steps]
        logger.info(
            f"Starting pipeline with {len(steps)} steps"
            + (" (dry run)" if run.dry_run else "")
        )

        with InterruptGuard() as guard:
            if self.preflight is not None and not self._gate(run, ctx):
                if guard.requested:
                    run.interrupted = True
                    run.exit_code = ExitCode.INTERRUPTED
                return run
            for step in steps:
                if guard.requested:
                    self._interrupt(run, f"before step {step.name}")
                    break
                run.pending.remove(step.name)
                self._execute(step, run, ctx)
                if guard.requested:
                    if run.status is RunStatus.RUNNING:
                        self._interrupt(run, f"after step {step.name}")
                    else:
                        run.interrupted = True
                        run.exit_code = ExitCode.INTERRUPTED
                if run.status is RunStatus.ABORTED:
                    break

        if run.status is RunStatus.RUNNING:
            run.finalize(RunStatus.SUCCEEDED)
            logger.info(f"Pipeline succeeded: {run.summary()}")
        else:
            logger.error(
                f"Pipeline aborted at {run.failed_step or 'interrupt'}; "
                f"{len(run.pending)} later steps did not run"
            )
        return run

    @staticmethod
    def _interrupt(run: PipelineRun, where: str) -> None:
        logger.error(f"Interrupted {where}")
        run.interrupted = True
        run.finalize(
            RunStatus.ABORTED,
            ExitCode.INTERRUPTED,
            error="interrupted by signal",
        )

    def _gate(self, run: PipelineRun, ctx: "DeployContext") -> bool:
        """Gather host facts and decide whether mutation may begin."""
        facts = self.preflight(ctx)
        ctx.facts = facts
        run.facts = facts
        for warning in facts.warnings:
            logger.warning(f"Preflight: {warning}")
            run.warnings.append(str(warning))

        if facts.dns.resolved:
            return True
        config = ctx.config
        if config.continue_on_unresolved_dns:
            logger.warning(f"{config.domain} is unresolved; continuing as configured")
            return True
        if self.decide(f"{config.domain} does not resolve. Continue anyway?"):
            logger.warning(f"{config.domain} is unresolved; operator chose to continue")
            return True
        run.finalize(
            RunStatus.ABORTED,
            ExitCode.PREFLIGHT,
            failed_step=PREFLIGHT,
            error=f"{config.domain} does not resolve",
        )
        return False

    def _execute(self, step: Step, run: PipelineRun, ctx: "DeployContext") -> None:
        ctx.step = step
        start = time.monotonic()
        try:
            blocked = [name for name in step.requires if name in run.skipped]
            if blocked:
                message = f"skipped because {', '.join(blocked)} did not succeed"
                logger.warning(f"Step {step.name} {message}")
                run.warnings.append(f"{step.name}: {message}")
                run.record(StepRecord(step.name, StepStatus.SKIPPED, message=message))
                return

            forced = step.force is not None and step.force(ctx)
            if step.verify is not None and not forced and self._satisfied(step, ctx):
                logger.info(f"Step {step.name}: already satisfied")
                run.record(
                    StepRecord(
                        step.name,
                        StepStatus.SATISFIED,
                        time.monotonic() - start,
                        "already satisfied",
                    )
                )
                return

            if run.dry_run:
                logger.info(f"Step {step.name}: would run")
                run.record(StepRecord(step.name, StepStatus.PLANNED, message="would run"))
                return

            logger.info(f"Step {step.name}: {step.title}")
            try:
                step.action(ctx)
            except (StepActionError, StepVerificationError, OSError) as e:
                self._rollback(step, ctx)
                self._fail(step, run, ctx, e, "action", start)
                return

            if step.verify is not None:
                try:
                    step.verify(ctx)
                except (StepVerificationError, StepActionError, OSError) as e:
                    self._rollback(step, ctx)
                    self._fail(step, run, ctx, e, "verification", start)
                    return

            logger.info(f"Step {step.name}: completed")
            run.record(
                StepRecord(step.name, StepStatus.COMPLETED, time.monotonic() - start)
            )
        finally:
            run.warnings.extend(ctx.drain_warnings())
            ctx.step = None

    def _satisfied(self, step: Step, ctx: "DeployContext") -> bool:
        try:
            step.verify(ctx)
        except (StepVerificationError, StepActionError, OSError) as e:
            logger.debug(f"Step {step.name} not yet satisfied: {e}")
            return False
        return True

    def _rollback(self, step: Step, ctx: "DeployContext") -> None:
        if step.rollback is None:
            return
        logger.warning(f"Rolling back step {step.name}")
        try:
            step.rollback(ctx)
        except (DeployError, OSError) as e:
            ctx.warn(f"{step.name}: rollback failed: {e}")

    def _fail(
        self,
        step: Step,
        run: PipelineRun,
        ctx: "DeployContext",
        error: Exception,
        classification: str,
        start: float,
    ) -> None:
        output = getattr(error, "output", "")
        logger.error(f"Step {step.name} failed ({classification}): {error}")
        if output:
            logger.error(f"Output from {step.name}:\n{output}")
        record = StepRecord(
            step.name,
            StepStatus.FAILED,
            time.monotonic() - start,
            str(error),
            classification,
            output,
        )
        if step.recoverable:
            logger.warning(f"Step {step.name} is recoverable; continuing")
            run.warnings.append(f"{step.name}: {error}")
            run.record(record)
            return

        code = step.exit_code
        if code is ExitCode.FAILURE:
            code = getattr(error, "exit_code", ExitCode.FAILURE)
        run.finalize(RunStatus.ABORTED, code, failed_step=step.name, error=str(error))
        run.record(record)
