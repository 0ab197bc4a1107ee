"""Host preparation steps: packages, Node.js, firewall and boot-time services."""

import re
from typing import List

from .context import DeployContext
from .errors import DeployError, StepVerificationError
from .log import logger

NODESOURCE_URL = "https://deb.nodesource.com/setup_{major}.x"
APT_ENV_PREFIX = "DEBIAN_FRONTEND=noninteractive"


# ------------------------------------------------------------------
# Packages
# ------------------------------------------------------------------
def missing_packages(ctx: DeployContext) -> List[str]:
    missing = []
    for pkg in ctx.config.packages:
        result = ctx.run(["dpkg-query", "-W", "-f=${Status}", pkg], check=False)
        if result.stdout.strip() != "install ok installed":
            missing.append(pkg)
    return missing


def install_packages(ctx: DeployContext) -> None:
    missing = missing_packages(ctx)
    if not missing:
        logger.info("All required packages already installed")
        return
    logger.info("Updating package index...")
    ctx.run(["apt-get", "update", "-qq"])
    logger.info(f"Installing {', '.join(missing)}...")
    ctx.run(
        ["env", APT_ENV_PREFIX, "apt-get", "install", "-y", "-qq"] + missing
    )


def verify_packages(ctx: DeployContext) -> None:
    missing = missing_packages(ctx)
    if missing:
        raise StepVerificationError(f"Packages not installed: {', '.join(missing)}")


# ------------------------------------------------------------------
# Node.js
# ------------------------------------------------------------------
def node_major(ctx: DeployContext) -> int:
    """Installed Node.js major version, or 0 when node is unavailable."""
    try:
        result = ctx.run(["node", "--version"], check=False)
    except DeployError:
        return 0
    match = re.match(r"v?(\d+)\.", result.stdout.strip())
    return int(match.group(1)) if result.ok and match else 0


def install_nodejs(ctx: DeployContext) -> None:
    url = NODESOURCE_URL.format(major=ctx.config.node_major)
    logger.info(f"Installing Node.js {ctx.config.node_major}.x from {url}")
    ctx.run(["bash", "-o", "pipefail", "-c", f"curl -fsSL {url} | bash -"])
    ctx.run(["env", APT_ENV_PREFIX, "apt-get", "install", "-y", "-qq", "nodejs"])


def verify_nodejs(ctx: DeployContext) -> None:
    major = node_major(ctx)
    if major < ctx.config.node_major:
        found = f"v{major}" if major else "none"
        raise StepVerificationError(
            f"Node.js {ctx.config.node_major}+ required, found {found}"
        )
    try:
        npm = ctx.run(["npm", "--version"], check=False)
    except DeployError as e:
        raise StepVerificationError(f"npm unavailable: {e}") from e
    if not npm.ok:
        raise StepVerificationError("npm unavailable")
    logger.debug(f"Node.js v{major}, npm {npm.stdout.strip()}")


# ------------------------------------------------------------------
# Firewall
# ------------------------------------------------------------------
def configure_firewall(ctx: DeployContext) -> None:
    for port in ctx.config.allowed_ports:
        ctx.run(["ufw", "allow", f"{port}/tcp"])
        logger.info(f"Port {port} allowed")
    ctx.run(["ufw", "--force", "enable"])
    ctx.run(["ufw", "reload"])
    logger.info("Firewall configured and reloaded")


def verify_firewall(ctx: DeployContext) -> None:
    result = ctx.run(["ufw", "status"], check=False)
    output = result.stdout
    if "Status: active" not in output:
        raise StepVerificationError("Firewall is not active")
    missing = []
    for port in ctx.config.allowed_ports:
        pattern = re.compile(rf"^{port}/tcp\s+ALLOW", re.MULTILINE)
        if not pattern.search(output):
            missing.append(str(port))
    if missing:
        raise StepVerificationError(f"Firewall does not allow ports: {', '.join(missing)}")


# ------------------------------------------------------------------
# Boot-time services
# ------------------------------------------------------------------
def enable_services(ctx: DeployContext) -> None:
    ctx.run(["systemctl", "enable", "nginx"])
    logger.info("Nginx enabled at boot")


def verify_services(ctx: DeployContext) -> None:
    result = ctx.run(["systemctl", "is-enabled", "nginx"], check=False)
    if result.stdout.strip() != "enabled":
        raise StepVerificationError("nginx is not enabled at boot")
