"""
Pre-flight fact gathering.

Observes the host before any mutating step runs: root privileges, DNS
resolution for the domain, occupancy of ports 80/443 and whether a certificate
already exists. The captured HostFacts are immutable for the rest of the run.
"""

import datetime
import os
import re
import socket
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Tuple

from .commands import CommandResult, command_exists
from .context import DeployContext
from .errors import CommandError, DeployError, PreflightWarning, PrivilegeError
from .log import logger

EXPECTED_SERVICES = ("nginx",)
WEB_PORTS = (80, 443)

_IPV4 = re.compile(r"^\d{1,3}(\.\d{1,3}){3}$")
_IPV6 = re.compile(r"^[0-9a-fA-F:]+:[0-9a-fA-F:]*$")


@dataclass(frozen=True)
class DnsResolution:
    """Resolved(ip) or Unresolved."""

    name: str
    address: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.address is not None

    @classmethod
    def Resolved(cls, name: str, address: str) -> "DnsResolution":
        return cls(name, address)

    @classmethod
    def Unresolved(cls, name: str) -> "DnsResolution":
        return cls(name, None)

    def __str__(self) -> str:
        return f"{self.name} -> {self.address}" if self.resolved else f"{self.name} unresolved"


class PortState(str, Enum):
    FREE = "free"
    EXPECTED = "occupied-by-expected-service"
    OTHER = "occupied-by-other"


@dataclass(frozen=True)
class PortStatus:
    port: int
    state: PortState
    process: Optional[str] = None

    def __str__(self) -> str:
        if self.state is PortState.FREE:
            return f"port {self.port} free"
        return f"port {self.port} used by {self.process or 'unknown process'}"


@dataclass(frozen=True)
class HostFacts:
    dns: DnsResolution
    ports: Tuple[PortStatus, ...] = ()
    certificate_present: bool = False
    captured_at: datetime.datetime = field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc)
    )
    warnings: Tuple[PreflightWarning, ...] = ()

    def port(self, number: int) -> Optional[PortStatus]:
        for status in self.ports:
            if status.port == number:
                return status
        return None


def check_root(geteuid: Callable[[], int] = os.geteuid) -> None:
    """
    Ensure the process runs as root.

    Raises:
        PrivilegeError: If not running as root
    """
    if geteuid() != 0:
        raise PrivilegeError("This tool must run with root privileges (use sudo)")
    logger.debug("Root privileges confirmed.")


def resolve_domain(ctx: DeployContext, name: str) -> DnsResolution:
    """Resolve a name with dig when available, else the system resolver."""
    if command_exists("dig"):
        try:
            result = ctx.run(["dig", "+short", name], check=False, timeout=15)
        except DeployError as e:
            logger.debug(f"dig failed for {name}: {e}")
        else:
            # dig prints CNAME targets before the address records
            addresses = [
                line.strip()
                for line in result.stdout.splitlines()
                if _IPV4.match(line.strip()) or _IPV6.match(line.strip())
            ]
            if addresses:
                return DnsResolution.Resolved(name, addresses[-1])
            return DnsResolution.Unresolved(name)
    try:
        return DnsResolution.Resolved(name, socket.gethostbyname(name))
    except OSError:
        return DnsResolution.Unresolved(name)


def parse_listeners(output: str) -> List[Tuple[int, Optional[str]]]:
    """
    Parse `ss -tlnp` output into (port, process) pairs.

    Lines look like:
      LISTEN 0 511 0.0.0.0:80 0.0.0.0:* users:(("nginx",pid=812,fd=6))
    """
    listeners = []
    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 4 or not parts[0].startswith("LISTEN"):
            continue
        local = parts[3]
        port_str = local.rsplit(":", 1)[-1]
        if not port_str.isdigit():
            continue
        process = None
        match = re.search(r'users:\(\("([^"]+)"', line)
        if match:
            process = match.group(1)
        listeners.append((int(port_str), process))
    return listeners


def probe_ports(
    ctx: DeployContext,
    ports: Tuple[int, ...] = WEB_PORTS,
    expected: Tuple[str, ...] = EXPECTED_SERVICES,
) -> Tuple[PortStatus, ...]:
    """Classify each port as free, held by an expected service, or held by another."""
    try:
        result: Optional[CommandResult] = ctx.run(["ss", "-tlnp"], check=False, timeout=15)
    except CommandError:
        result = None
    if result is not None and result.ok:
        listeners = parse_listeners(result.stdout)
    else:
        # netstat is the fallback on minimal hosts
        result = ctx.run(["netstat", "-tlnp"], check=False, timeout=15)
        listeners = []
        for line in result.stdout.splitlines():
            parts = line.split()
            if len(parts) >= 7 and "LISTEN" in parts:
                port_str = parts[3].rsplit(":", 1)[-1]
                if port_str.isdigit():
                    process = parts[-1].split("/")[-1] if "/" in parts[-1] else None
                    listeners.append((int(port_str), process))

    statuses = []
    for port in ports:
        holders = [proc for p, proc in listeners if p == port]
        if not holders:
            statuses.append(PortStatus(port, PortState.FREE))
        elif any(h in expected for h in holders if h):
            statuses.append(PortStatus(port, PortState.EXPECTED, holders[0]))
        else:
            statuses.append(PortStatus(port, PortState.OTHER, holders[0]))
    return tuple(statuses)


def gather_facts(ctx: DeployContext) -> HostFacts:
    """Capture DNS, port and certificate facts; never mutates the host."""
    config = ctx.config
    logger.info("Gathering pre-flight facts...")
    warnings: List[PreflightWarning] = []

    dns = resolve_domain(ctx, config.domain)
    if dns.resolved:
        logger.info(f"DNS configured: {dns}")
    else:
        warnings.append(
            PreflightWarning(
                "dns",
                f"{config.domain} does not resolve; make sure it points to this server",
            )
        )

    try:
        ports = probe_ports(ctx)
    except DeployError as e:
        warnings.append(PreflightWarning("ports", f"could not inspect listeners: {e}"))
        ports = ()
    for status in ports:
        if status.state is PortState.OTHER:
            holder = status.process or "another service"
            warnings.append(
                PreflightWarning("ports", f"Port {status.port} is in use by {holder}")
            )
        else:
            logger.debug(str(status))

    certificate_present = config.certificate_path.is_file()
    if certificate_present:
        logger.info(f"Existing certificate found at {config.certificate_path}")

    return HostFacts(
        dns=dns,
        ports=ports,
        certificate_present=certificate_present,
        warnings=tuple(warnings),
    )
