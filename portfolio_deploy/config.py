"""
Deployment configuration.

All host-specific values live in a single immutable DeployConfig that is passed
explicitly into every step. Values come from defaults, an optional JSON file and
command-line overrides, in that order of precedence.
"""

import json
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import ConfigurationError

APP_NAME = "Portfolio Deploy"
APP_SUBTITLE = "HTTPS Deployment Pipeline"

DEFAULT_PACKAGES: Tuple[str, ...] = (
    "nginx",
    "certbot",
    "python3-certbot-nginx",
    "curl",
    "ufw",
    "git",
)

# Long-running collaborators get more headroom than the default command timeout.
DEFAULT_STEP_TIMEOUTS: Dict[str, int] = {
    "packages": 900,
    "nodejs": 900,
    "build": 900,
    "certificate": 600,
}

REQUIRED_KEYS = ("domain", "email", "project_dir")


@dataclass(frozen=True)
class DeployConfig:
    """Immutable configuration for one deployment run."""

    domain: str
    email: str
    project_dir: str
    www_domains: Tuple[str, ...] = ()
    web_root: str = "/var/www/portfolio"
    user: str = "root"
    web_user: str = "www-data"
    site_name: str = "portfolio"
    nginx_dir: str = "/etc/nginx"
    letsencrypt_dir: str = "/etc/letsencrypt"
    log_file: str = "/var/log/portfolio-deployment.log"
    lock_file: str = "/run/portfolio-deploy.lock"
    build_output: str = "dist"
    packages: Tuple[str, ...] = DEFAULT_PACKAGES
    node_major: int = 20
    allowed_ports: Tuple[int, ...] = (22, 80, 443)
    command_timeout: int = 300
    step_timeouts: Mapping[str, int] = field(
        default_factory=lambda: dict(DEFAULT_STEP_TIMEOUTS)
    )
    probe_timeout: int = 10
    force_renew: bool = False
    continue_on_unresolved_dns: bool = False
    dry_run: bool = False

    def __post_init__(self) -> None:
        for key in REQUIRED_KEYS:
            if not getattr(self, key):
                raise ConfigurationError(f"Missing required setting: {key}")
        if "/" in self.site_name:
            raise ConfigurationError(f"Invalid site name: {self.site_name!r}")
        if not self.www_domains:
            object.__setattr__(self, "www_domains", (f"www.{self.domain}",))
        object.__setattr__(self, "www_domains", tuple(self.www_domains))
        object.__setattr__(self, "packages", tuple(self.packages))
        object.__setattr__(
            self, "allowed_ports", tuple(int(p) for p in self.allowed_ports)
        )

    # ------------------------------------------------------------------
    # Derived paths
    # ------------------------------------------------------------------
    @property
    def server_names(self) -> List[str]:
        names = [self.domain]
        names.extend(d for d in self.www_domains if d and d != self.domain)
        return names

    @property
    def site_available(self) -> Path:
        return Path(self.nginx_dir) / "sites-available" / self.site_name

    @property
    def site_enabled(self) -> Path:
        return Path(self.nginx_dir) / "sites-enabled" / self.site_name

    @property
    def certificate_dir(self) -> Path:
        return Path(self.letsencrypt_dir) / "live" / self.domain

    @property
    def certificate_path(self) -> Path:
        return self.certificate_dir / "fullchain.pem"

    @property
    def artifact_dir(self) -> Path:
        return Path(self.project_dir) / self.build_output

    def timeout_for(self, step_name: str, default: Optional[int] = None) -> int:
        """Timeout in seconds for commands issued by the named step."""
        if step_name in self.step_timeouts:
            return int(self.step_timeouts[step_name])
        return int(default or self.command_timeout)

    def with_overrides(self, **overrides: Any) -> "DeployConfig":
        """Return a copy with the given non-None values replaced."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        unknown = set(changes) - {f.name for f in fields(self)}
        if unknown:
            raise ConfigurationError(f"Unknown settings: {', '.join(sorted(unknown))}")
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["step_timeouts"] = dict(self.step_timeouts)
        for key in ("www_domains", "packages", "allowed_ports"):
            data[key] = list(data[key])
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DeployConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown settings: {', '.join(sorted(unknown))}")
        values = dict(data)
        if "step_timeouts" in values:
            merged = dict(DEFAULT_STEP_TIMEOUTS)
            merged.update(values["step_timeouts"] or {})
            values["step_timeouts"] = merged
        try:
            return cls(**values)
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e


def load_config(path: Optional[str] = None, **overrides: Any) -> DeployConfig:
    """
    Build a DeployConfig from an optional JSON file plus overrides.

    Args:
        path: JSON file with configuration keys, or None
        overrides: values taking precedence over the file; None values are ignored

    Returns:
        The validated configuration

    Raises:
        ConfigurationError: if the file is unreadable or values are invalid
    """
    data: Dict[str, Any] = {}
    if path:
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except FileNotFoundError as e:
            raise ConfigurationError(f"Config file not found: {path}") from e
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"Failed to read config {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must hold a JSON object")
    data.update({k: v for k, v in overrides.items() if v is not None})
    return DeployConfig.from_dict(data)


def save_config(config: DeployConfig, path: str) -> None:
    """Write the configuration to a JSON file."""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w") as f:
        json.dump(config.to_dict(), f, indent=2)
