import os
import pwd
from typing import Any, Callable, Dict, List, Optional, Union

import pytest

from portfolio_deploy import preflight
from portfolio_deploy.commands import CommandResult, format_command
from portfolio_deploy.config import DeployConfig
from portfolio_deploy.context import DeployContext
from portfolio_deploy.errors import CommandError
from portfolio_deploy.probes import ProbeOutcome, ProbeResult

CURRENT_USER = pwd.getpwuid(os.getuid()).pw_name


class FakeRunner:
    """
    Records every command and replays scripted results.

    A script entry matches when its pattern is a substring of the rendered
    command line; the most recently added matching entry wins. Unmatched
    commands succeed with empty output.
    """

    def __init__(self) -> None:
        self.calls: List[Union[List[str], str]] = []
        self.users: List[Optional[str]] = []
        self._scripts: List[Dict[str, Any]] = []

    def script(
        self,
        pattern: str,
        stdout: str = "",
        returncode: int = 0,
        stderr: str = "",
        raises: Optional[Exception] = None,
        effect: Optional[Callable[[], None]] = None,
    ) -> None:
        self._scripts.append(
            {
                "pattern": pattern,
                "stdout": stdout,
                "returncode": returncode,
                "stderr": stderr,
                "raises": raises,
                "effect": effect,
            }
        )

    def run(
        self,
        cmd,
        timeout=None,
        check=True,
        input=None,
        user=None,
        cwd=None,
    ) -> CommandResult:
        args = cmd if isinstance(cmd, str) else list(cmd)
        self.calls.append(args)
        self.users.append(user)
        line = format_command(args)
        entry: Dict[str, Any] = {"stdout": "", "returncode": 0, "stderr": ""}
        for candidate in reversed(self._scripts):
            if candidate["pattern"] in line:
                entry = candidate
                break
        if entry.get("effect"):
            entry["effect"]()
        if entry.get("raises"):
            raise entry["raises"]
        result = CommandResult(args, entry["returncode"], entry["stdout"], entry["stderr"])
        if check and not result.ok:
            raise CommandError(
                f"Command failed (code {result.returncode}): {line}",
                returncode=result.returncode,
                output=result.output,
            )
        return result

    @property
    def lines(self) -> List[str]:
        return [format_command(c) for c in self.calls]

    def ran(self, pattern: str) -> bool:
        return any(pattern in line for line in self.lines)


class FakeProber:
    """Returns scripted probe results keyed by URL; anything else is confirmed."""

    def __init__(self) -> None:
        self.results: Dict[str, ProbeResult] = {}
        self.urls: List[str] = []

    def probe(self, url, expect=(2,)) -> ProbeResult:
        self.urls.append(url)
        if url in self.results:
            return self.results[url]
        return ProbeResult(url, ProbeOutcome.CONFIRMED, 200)


@pytest.fixture(autouse=True)
def no_host_lookups(monkeypatch):
    """Route DNS resolution through the fake runner's dig instead of the host resolver."""
    monkeypatch.setattr(preflight, "command_exists", lambda cmd: True)


@pytest.fixture
def make_config(tmp_path):
    def factory(**overrides) -> DeployConfig:
        values = dict(
            domain="example.org",
            email="admin@example.org",
            project_dir=str(tmp_path / "project"),
            web_root=str(tmp_path / "www" / "portfolio"),
            user=CURRENT_USER,
            web_user=CURRENT_USER,
            nginx_dir=str(tmp_path / "nginx"),
            letsencrypt_dir=str(tmp_path / "letsencrypt"),
            log_file=str(tmp_path / "logs" / "deploy.log"),
            lock_file=str(tmp_path / "deploy.lock"),
        )
        values.update(overrides)
        return DeployConfig(**values)

    return factory


@pytest.fixture
def config(make_config) -> DeployConfig:
    return make_config()


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def prober() -> FakeProber:
    return FakeProber()


@pytest.fixture
def make_ctx(runner, prober):
    def factory(config: DeployConfig) -> DeployContext:
        return DeployContext(config=config, runner=runner, prober=prober)

    return factory


@pytest.fixture
def ctx(make_ctx, config) -> DeployContext:
    return make_ctx(config)
