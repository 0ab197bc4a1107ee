import os
import signal
import threading

import pytest

from portfolio_deploy.errors import (
    CertificateError,
    DuplicateStepError,
    ExitCode,
    FatalAbort,
    PreflightWarning,
    StepActionError,
    StepVerificationError,
)
from portfolio_deploy.pipeline import (
    PREFLIGHT,
    Pipeline,
    PipelineRun,
    RunStatus,
    Step,
    StepStatus,
    fail_closed,
)
from portfolio_deploy.preflight import DnsResolution, HostFacts
from portfolio_deploy.steps import DEFAULT_STEPS, build_pipeline


class Host:
    """In-memory host whose steps record every action and verification."""

    def __init__(self):
        self.events = []
        self.done = set()

    def step(self, name, order, fail_action=False, fail_verify=False, **kwargs):
        def action(ctx):
            self.events.append(("action", name))
            if fail_action:
                raise StepActionError(f"{name} exploded", output="last lines")
            if not fail_verify:
                self.done.add(name)

        def verify(ctx):
            self.events.append(("verify", name))
            if name not in self.done:
                raise StepVerificationError(f"{name} not in effect")

        return Step(name=name, order=order, action=action, verify=verify, **kwargs)

    @property
    def actions(self):
        return [name for kind, name in self.events if kind == "action"]


def pipeline_of(*steps, **kwargs):
    pipeline = Pipeline(**kwargs)
    for step in steps:
        pipeline.register(step)
    return pipeline


def test_steps_execute_in_declared_order(ctx):
    host = Host()
    pipeline = pipeline_of(host.step("c", 30), host.step("a", 10), host.step("b", 20))

    run = pipeline.run(ctx)

    assert run.status is RunStatus.SUCCEEDED
    assert run.completed_steps == ["a", "b", "c"]
    assert host.actions == ["a", "b", "c"]


def test_later_action_never_precedes_earlier_verify(ctx):
    host = Host()
    pipeline = pipeline_of(host.step("a", 10), host.step("b", 20))

    pipeline.run(ctx)

    events = host.events
    last_verify_a = max(i for i, e in enumerate(events) if e == ("verify", "a"))
    assert events.index(("action", "b")) > last_verify_a


def test_second_run_is_satisfied_without_actions(ctx):
    host = Host()
    pipeline = pipeline_of(host.step("a", 10), host.step("b", 20))
    pipeline.run(ctx)
    before = list(host.actions)

    run = pipeline.run(ctx)

    assert run.succeeded
    assert host.actions == before
    assert [r.status for r in run.records] == [StepStatus.SATISFIED, StepStatus.SATISFIED]
    assert run.completed_steps == ["a", "b"]


def test_non_recoverable_failure_aborts(ctx):
    host = Host()
    pipeline = pipeline_of(
        host.step("a", 10), host.step("b", 20, fail_action=True), host.step("c", 30)
    )

    run = pipeline.run(ctx)

    assert run.status is RunStatus.ABORTED
    assert run.failed_step == "b"
    assert run.completed_steps == ["a"]
    assert run.pending == ["c"]
    assert "c" not in host.actions
    assert run.exit_code is ExitCode.FAILURE
    failed = run.records[-1]
    assert failed.classification == "action"
    assert failed.output == "last lines"
    with pytest.raises(FatalAbort) as exc:
        run.raise_for_status()
    assert exc.value.run is run


def test_verification_failure_is_classified(ctx):
    host = Host()
    pipeline = pipeline_of(host.step("a", 10, fail_verify=True))

    run = pipeline.run(ctx)

    assert run.failed_step == "a"
    assert run.records[-1].classification == "verification"


def test_abort_uses_step_exit_code(ctx):
    host = Host()
    pipeline = pipeline_of(host.step("build", 10, fail_action=True, exit_code=ExitCode.BUILD))

    assert pipeline.run(ctx).exit_code is ExitCode.BUILD


def test_abort_falls_back_to_error_exit_code(ctx):
    def verify(ctx):
        raise CertificateError("expired")

    pipeline = pipeline_of(Step(name="cert", order=10, action=lambda ctx: None, verify=verify))

    assert pipeline.run(ctx).exit_code is ExitCode.CERTIFICATE


def test_recoverable_failure_continues_with_warning(ctx):
    host = Host()
    pipeline = pipeline_of(
        host.step("a", 10),
        host.step("b", 20, fail_action=True, recoverable=True),
        host.step("c", 30),
    )

    run = pipeline.run(ctx)

    assert run.succeeded
    assert run.completed_steps == ["a", "c"]
    assert run.skipped == ["b"]
    assert run.warnings and "b" in run.warnings[0]
    assert run.summary() == "2 steps completed, 1 warnings"


def test_step_depending_on_failed_step_is_skipped(ctx):
    host = Host()
    pipeline = pipeline_of(
        host.step("a", 10, fail_action=True, recoverable=True),
        host.step("b", 20, requires=("a",)),
        host.step("c", 30),
    )

    run = pipeline.run(ctx)

    assert run.succeeded
    assert "b" not in host.actions
    assert run.skipped == ["a", "b"]
    assert run.completed_steps == ["c"]
    assert run.records[1].status is StepStatus.SKIPPED


def test_force_bypasses_satisfied_check(ctx):
    host = Host()
    host.done.add("cert")
    pipeline = pipeline_of(host.step("cert", 10, force=lambda ctx: True))

    run = pipeline.run(ctx)

    assert host.actions == ["cert"]
    assert run.records[0].status is StepStatus.COMPLETED


def test_step_without_verify_always_runs(ctx):
    calls = []
    pipeline = pipeline_of(Step(name="probe", order=10, action=lambda ctx: calls.append(1)))

    pipeline.run(ctx)
    pipeline.run(ctx)

    assert calls == [1, 1]


def test_rollback_runs_on_verify_failure(ctx):
    host = Host()
    rolled = []
    pipeline = pipeline_of(
        host.step("proxy", 10, fail_verify=True, rollback=lambda ctx: rolled.append("proxy"))
    )

    run = pipeline.run(ctx)

    assert rolled == ["proxy"]
    assert run.failed_step == "proxy"


def test_rollback_runs_on_action_failure(ctx):
    host = Host()
    rolled = []
    pipeline = pipeline_of(
        host.step("proxy", 10, fail_action=True, rollback=lambda ctx: rolled.append("proxy"))
    )

    pipeline.run(ctx)

    assert rolled == ["proxy"]


def test_failing_rollback_becomes_warning(ctx):
    host = Host()

    def rollback(ctx):
        raise StepActionError("reload refused")

    pipeline = pipeline_of(host.step("proxy", 10, fail_verify=True, rollback=rollback))

    run = pipeline.run(ctx)

    assert run.failed_step == "proxy"
    assert any("rollback failed" in w for w in run.warnings)


def test_context_warnings_reach_the_run(ctx):
    def action(ctx):
        ctx.warn("renewal dry run failed")

    pipeline = pipeline_of(Step(name="renewal", order=10, action=action))

    run = pipeline.run(ctx)

    assert run.warnings == ["renewal dry run failed"]
    assert ctx.warnings == []


def test_duplicate_name_rejected():
    pipeline = Pipeline()
    pipeline.register(Step(name="a", order=10, action=lambda ctx: None))
    with pytest.raises(DuplicateStepError):
        pipeline.register(Step(name="a", order=20, action=lambda ctx: None))


def test_duplicate_order_rejected():
    pipeline = Pipeline()
    pipeline.register(Step(name="a", order=10, action=lambda ctx: None))
    with pytest.raises(DuplicateStepError):
        pipeline.register(Step(name="b", order=10, action=lambda ctx: None))


def unresolved(ctx):
    return HostFacts(dns=DnsResolution.Unresolved(ctx.config.domain))


def test_unresolved_domain_aborts_before_any_step(ctx):
    host = Host()
    pipeline = pipeline_of(host.step("a", 10), host.step("b", 20), preflight=unresolved)

    run = pipeline.run(ctx)

    assert run.status is RunStatus.ABORTED
    assert run.failed_step == PREFLIGHT
    assert run.exit_code is ExitCode.PREFLIGHT
    assert run.completed_steps == []
    assert run.records == []
    assert host.events == []
    assert run.pending == ["a", "b"]


def test_unresolved_domain_continues_when_configured(make_ctx, make_config):
    ctx = make_ctx(make_config(continue_on_unresolved_dns=True))
    host = Host()
    pipeline = pipeline_of(host.step("a", 10), preflight=unresolved)

    assert pipeline.run(ctx).succeeded
    assert host.actions == ["a"]


def test_unresolved_domain_defers_to_decision(ctx):
    questions = []

    def decide(question):
        questions.append(question)
        return True

    host = Host()
    pipeline = pipeline_of(host.step("a", 10), preflight=unresolved, decide=decide)

    assert pipeline.run(ctx).succeeded
    assert "example.org" in questions[0]


def test_fail_closed_declines():
    assert fail_closed("Continue?") is False


def test_preflight_warnings_are_recorded(ctx):
    def facts(ctx):
        return HostFacts(
            dns=DnsResolution.Resolved("example.org", "203.0.113.7"),
            warnings=(PreflightWarning("ports", "Port 80 is in use by apache2"),),
        )

    run = pipeline_of(preflight=facts).run(ctx)

    assert run.succeeded
    assert run.warnings == ["ports: Port 80 is in use by apache2"]
    assert ctx.facts is run.facts


def test_dry_run_plans_without_acting(make_ctx, make_config):
    ctx = make_ctx(make_config(dry_run=True))
    host = Host()
    host.done.add("a")
    pipeline = pipeline_of(host.step("a", 10), host.step("b", 20))

    run = pipeline.run(ctx)

    assert run.succeeded
    assert run.dry_run
    assert host.actions == []
    assert [r.status for r in run.records] == [StepStatus.SATISFIED, StepStatus.PLANNED]


def test_interrupt_finishes_current_step_then_aborts(ctx):
    if threading.current_thread() is not threading.main_thread():
        pytest.skip("signal handlers need the main thread")
    host = Host()

    def action(ctx):
        os.kill(os.getpid(), signal.SIGTERM)
        host.done.add("a")

    def verify(ctx):
        if "a" not in host.done:
            raise StepVerificationError("a not done")

    first = Step(name="a", order=10, action=action, verify=verify)
    pipeline = pipeline_of(first, host.step("b", 20))

    run = pipeline.run(ctx)

    assert run.interrupted
    assert run.status is RunStatus.ABORTED
    assert run.exit_code is ExitCode.INTERRUPTED
    assert run.completed_steps == ["a"]
    assert run.pending == ["b"]
    assert host.actions == []


def test_interrupt_during_preflight_runs_no_step(ctx):
    if threading.current_thread() is not threading.main_thread():
        pytest.skip("signal handlers need the main thread")
    host = Host()

    def facts(ctx):
        os.kill(os.getpid(), signal.SIGINT)
        return HostFacts(dns=DnsResolution.Resolved("example.org", "203.0.113.7"))

    pipeline = pipeline_of(host.step("mutate", 10), host.step("later", 20), preflight=facts)

    run = pipeline.run(ctx)

    assert run.interrupted
    assert run.status is RunStatus.ABORTED
    assert run.exit_code is ExitCode.INTERRUPTED
    assert host.events == []
    assert run.completed_steps == []
    assert run.pending == ["mutate", "later"]


def test_finalize_only_once():
    run = PipelineRun()
    run.finalize(RunStatus.SUCCEEDED)
    with pytest.raises(RuntimeError):
        run.finalize(RunStatus.ABORTED, ExitCode.FAILURE)


def test_run_serialises(ctx):
    host = Host()
    run = pipeline_of(host.step("a", 10)).run(ctx)

    data = run.to_dict()

    assert data["status"] == "succeeded"
    assert data["completed_steps"] == ["a"]
    assert data["steps"][0]["status"] == "completed"
    assert data["exit_code"] == 0


def test_default_pipeline_order():
    pipeline = build_pipeline()

    assert [s.name for s in pipeline.steps] == [
        "packages",
        "nodejs",
        "firewall",
        "build",
        "publish",
        "proxy-provisional",
        "certificate",
        "proxy-final",
        "renewal",
        "services",
        "post-deploy",
        "helper-scripts",
    ]
    recoverable = {s.name for s in DEFAULT_STEPS if s.recoverable}
    assert recoverable == {"renewal", "post-deploy", "helper-scripts"}
