import json

import pytest

from portfolio_deploy.config import (
    DEFAULT_STEP_TIMEOUTS,
    DeployConfig,
    load_config,
    save_config,
)
from portfolio_deploy.errors import ConfigurationError, ExitCode


def write_json(path, data):
    path.write_text(json.dumps(data))
    return str(path)


def test_defaults():
    config = DeployConfig(domain="example.org", email="a@example.org", project_dir="/srv/site")

    assert config.www_domains == ("www.example.org",)
    assert config.server_names == ["example.org", "www.example.org"]
    assert str(config.certificate_path) == "/etc/letsencrypt/live/example.org/fullchain.pem"
    assert str(config.site_enabled) == "/etc/nginx/sites-enabled/portfolio"
    assert str(config.artifact_dir) == "/srv/site/dist"
    assert config.web_user == "www-data"


def test_missing_required_value():
    with pytest.raises(ConfigurationError, match="email") as exc:
        DeployConfig(domain="example.org", email="", project_dir="/srv/site")
    assert exc.value.exit_code is ExitCode.CONFIG


def test_server_names_skip_duplicates():
    config = DeployConfig(
        domain="example.org",
        email="a@example.org",
        project_dir="/srv/site",
        www_domains=("example.org", "www.example.org"),
    )

    assert config.server_names == ["example.org", "www.example.org"]


def test_timeouts():
    config = DeployConfig(
        domain="example.org",
        email="a@example.org",
        project_dir="/srv/site",
        command_timeout=60,
    )

    assert config.timeout_for("build") == DEFAULT_STEP_TIMEOUTS["build"]
    assert config.timeout_for("firewall") == 60
    assert config.timeout_for("firewall", 45) == 45


def test_load_merges_file_and_overrides(tmp_path):
    path = write_json(
        tmp_path / "deploy.json",
        {
            "domain": "example.org",
            "email": "a@example.org",
            "project_dir": "/srv/site",
            "web_root": "/var/www/site",
            "step_timeouts": {"build": 1200},
        },
    )

    config = load_config(path, domain="example.net", web_root=None)

    assert config.domain == "example.net"
    assert config.web_root == "/var/www/site"
    assert config.step_timeouts["build"] == 1200
    assert config.step_timeouts["certificate"] == DEFAULT_STEP_TIMEOUTS["certificate"]


def test_load_without_file_uses_overrides():
    config = load_config(None, domain="example.org", email="a@example.org", project_dir="/p")

    assert config.project_dir == "/p"


def test_unknown_key_rejected(tmp_path):
    path = write_json(
        tmp_path / "deploy.json",
        {"domain": "example.org", "email": "a@example.org", "project_dir": "/p", "colour": "red"},
    )

    with pytest.raises(ConfigurationError, match="colour"):
        load_config(path)


@pytest.mark.parametrize("content", ["{not json", "[1, 2]"])
def test_malformed_file_rejected(tmp_path, content):
    path = tmp_path / "deploy.json"
    path.write_text(content)

    with pytest.raises(ConfigurationError):
        load_config(str(path))


def test_missing_file_rejected(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        load_config(str(tmp_path / "absent.json"))


def test_save_then_load(tmp_path, config):
    path = str(tmp_path / "saved" / "deploy.json")

    save_config(config, path)

    assert load_config(path) == config


def test_with_overrides(config):
    changed = config.with_overrides(dry_run=True, web_root=None)

    assert changed.dry_run
    assert changed.web_root == config.web_root
    with pytest.raises(ConfigurationError):
        config.with_overrides(colour="red")
