"""
Reverse-proxy configuration state machine.

    Unconfigured -> ProvisionalHTTP -> Certified -> FinalHTTPS

The site file carries a marker line naming the state it implements, so the
current state can be read back from disk. Each transition backs up the file it
replaces; when a transition fails its rollback restores that backup (or removes
the file it created) and reloads the proxy.
"""

import os
import shutil
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from .certs import verify_certificate
from .config import DeployConfig
from .context import DeployContext
from .errors import DeployError, ProxyConfigError, ProxyReloadError
from .files import backup_file, read_file, write_file
from .log import logger
from .templates import (
    FINAL,
    MARKER_PREFIX,
    PROVISIONAL,
    adapt_project_site,
    final_site,
    provisional_site,
)

SERVICE = "nginx"
PROVISIONAL_STEP = "proxy-provisional"
FINAL_STEP = "proxy-final"


class ProxyState(str, Enum):
    UNCONFIGURED = "unconfigured"
    PROVISIONAL_HTTP = "provisional-http"
    CERTIFIED = "certified"
    FINAL_HTTPS = "final-https"


def site_marker(config: DeployConfig) -> Optional[str]:
    """State recorded in the first line of the site file, if we wrote it."""
    text = read_file(str(config.site_available))
    if not text:
        return None
    first = text.splitlines()[0]
    if not first.startswith(MARKER_PREFIX):
        return None
    return first[len(MARKER_PREFIX):].strip()


def current_state(ctx: DeployContext) -> ProxyState:
    marker = site_marker(ctx.config)
    if marker == FINAL:
        return ProxyState.FINAL_HTTPS
    if marker != PROVISIONAL:
        return ProxyState.UNCONFIGURED
    try:
        verify_certificate(ctx)
    except DeployError:
        return ProxyState.PROVISIONAL_HTTP
    return ProxyState.CERTIFIED


def desired_final_site(config: DeployConfig) -> str:
    project_conf = Path(config.project_dir) / "nginx.conf"
    text = read_file(str(project_conf))
    if text:
        return adapt_project_site(config, text)
    return final_site(config)


# ------------------------------------------------------------------
# Collaborator wrappers
# ------------------------------------------------------------------
def config_test(ctx: DeployContext) -> None:
    result = ctx.run([SERVICE, "-t"], check=False)
    if not result.ok:
        raise ProxyConfigError("Proxy configuration test failed", output=result.output)


def service_active(ctx: DeployContext, unit: str = SERVICE) -> bool:
    result = ctx.run(["systemctl", "is-active", unit], check=False)
    return result.stdout.strip() == "active"


def reload_proxy(ctx: DeployContext, restart: bool = False) -> None:
    verb = "restart" if restart or not service_active(ctx) else "reload"
    result = ctx.run(["systemctl", verb, SERVICE], check=False)
    if not result.ok:
        raise ProxyReloadError(f"systemctl {verb} {SERVICE} failed", output=result.output)
    logger.info(f"Proxy {verb}ed")


def local_status(ctx: DeployContext, scheme: str) -> str:
    """HTTP status of the site as served locally, bypassing public DNS."""
    config = ctx.config
    port = 443 if scheme == "https" else 80
    result = ctx.run(
        [
            "curl",
            "-s",
            "-o",
            "/dev/null",
            "-w",
            "%{http_code}",
            "--max-time",
            str(config.probe_timeout),
            "--resolve",
            f"{config.domain}:{port}:127.0.0.1",
            f"{scheme}://{config.domain}/",
        ],
        check=False,
    )
    return result.stdout.strip() or "000"


def enable_site(config: DeployConfig) -> None:
    enabled = config.site_enabled
    enabled.parent.mkdir(parents=True, exist_ok=True)
    if enabled.is_symlink() or enabled.exists():
        if enabled.is_symlink() and os.readlink(enabled) == str(config.site_available):
            return
        enabled.unlink()
    os.symlink(config.site_available, enabled)
    default = enabled.parent / "default"
    if default.is_symlink() or default.exists():
        default.unlink()
        logger.info("Disabled the default site")


def _check_enabled(config: DeployConfig) -> None:
    if not config.site_available.is_file():
        raise ProxyConfigError(f"Site file missing: {config.site_available}")
    enabled = config.site_enabled
    if not enabled.is_symlink() or Path(os.path.realpath(enabled)) != Path(
        os.path.realpath(config.site_available)
    ):
        raise ProxyConfigError(f"Site not enabled: {enabled}")


def _install(ctx: DeployContext, step: str, content: str) -> None:
    path = str(ctx.config.site_available)
    ctx.backups[step] = backup_file(path)
    write_file(path, content)
    logger.info(f"Wrote {path}")
    enable_site(ctx.config)


def make_rollback(step: str) -> Callable[[DeployContext], None]:
    def rollback(ctx: DeployContext) -> None:
        if step not in ctx.backups:
            return
        config = ctx.config
        backup = ctx.backups.pop(step)
        if backup:
            shutil.copy2(backup, config.site_available)
            logger.warning(f"Restored {config.site_available} from {backup}")
        else:
            for path in (config.site_enabled, config.site_available):
                if path.is_symlink() or path.exists():
                    path.unlink()
            logger.warning(f"Removed {config.site_available}")
        if service_active(ctx):
            config_test(ctx)
            reload_proxy(ctx)

    return rollback


# ------------------------------------------------------------------
# Unconfigured -> ProvisionalHTTP
# ------------------------------------------------------------------
def install_provisional(ctx: DeployContext) -> None:
    logger.info(f"Proxy state: {current_state(ctx).value} -> {ProxyState.PROVISIONAL_HTTP.value}")
    _install(ctx, PROVISIONAL_STEP, provisional_site(ctx.config))
    config_test(ctx)
    reload_proxy(ctx, restart=True)


def verify_provisional(ctx: DeployContext) -> None:
    """Config is valid, the proxy runs, and it answers on port 80."""
    _check_enabled(ctx.config)
    config_test(ctx)
    if not service_active(ctx):
        raise ProxyConfigError(f"{SERVICE} is not running")
    status = local_status(ctx, "http")
    if status == "000":
        raise ProxyConfigError(f"{SERVICE} is not answering on port 80")


# ------------------------------------------------------------------
# Certified -> FinalHTTPS
# ------------------------------------------------------------------
def install_final(ctx: DeployContext) -> None:
    logger.info(f"Proxy state: {current_state(ctx).value} -> {ProxyState.FINAL_HTTPS.value}")
    _install(ctx, FINAL_STEP, desired_final_site(ctx.config))
    config_test(ctx)
    reload_proxy(ctx)


def verify_final(ctx: DeployContext) -> None:
    """Final config is in place and valid, and HTTPS answers with a 2xx."""
    config = ctx.config
    if read_file(str(config.site_available)) != desired_final_site(config):
        raise ProxyConfigError(f"Final HTTPS configuration not installed at {config.site_available}")
    _check_enabled(config)
    config_test(ctx)
    if not service_active(ctx):
        raise ProxyConfigError(f"{SERVICE} is not running")
    status = local_status(ctx, "https")
    if not status.startswith("2"):
        raise ProxyConfigError(f"HTTPS probe for {config.domain} returned {status}")
