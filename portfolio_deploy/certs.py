"""
Certificate issuance and renewal scheduling.

Certificates are obtained with the certificate-authority client in
non-interactive mode. Verification parses the expiry date out of the
certificate itself; a file that merely exists is not accepted.
"""

import datetime
from typing import Callable, Optional

from .context import DeployContext
from .errors import CertificateError, DeployError, StepVerificationError
from .log import logger

RENEWAL_TIMER = "certbot.timer"
OPENSSL_DATE_FORMAT = "%b %d %H:%M:%S %Y %Z"

Clock = Callable[[], datetime.datetime]


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def parse_enddate(output: str) -> datetime.datetime:
    """
    Parse `openssl x509 -enddate -noout` output into an aware UTC datetime.

    Example input: "notAfter=Jan  5 12:00:00 2031 GMT"

    Raises:
        CertificateError: if the output holds no parseable date
    """
    for line in output.splitlines():
        line = line.strip()
        if not line.startswith("notAfter="):
            continue
        value = " ".join(line.split("=", 1)[1].split())
        try:
            parsed = datetime.datetime.strptime(value, OPENSSL_DATE_FORMAT)
        except ValueError as e:
            raise CertificateError(f"Unreadable certificate expiry: {value!r}") from e
        return parsed.replace(tzinfo=datetime.timezone.utc)
    raise CertificateError(f"No expiry date in openssl output: {output.strip()!r}")


def certificate_expiry(ctx: DeployContext, path: Optional[str] = None) -> datetime.datetime:
    """Read the expiry date of a PEM certificate."""
    cert = path or str(ctx.config.certificate_path)
    try:
        result = ctx.run(["openssl", "x509", "-enddate", "-noout", "-in", cert])
    except DeployError as e:
        raise CertificateError(f"Cannot read certificate {cert}: {e}") from e
    return parse_enddate(result.stdout)


# ------------------------------------------------------------------
# ProvisionalHTTP -> Certified
# ------------------------------------------------------------------
def force_renewal(ctx: DeployContext) -> bool:
    return ctx.config.force_renew


def obtain_certificate(ctx: DeployContext) -> None:
    config = ctx.config
    present = (
        ctx.facts.certificate_present
        if ctx.facts is not None
        else config.certificate_path.is_file()
    )
    if present and config.force_renew:
        logger.info(f"Forcing renewal of the certificate for {config.domain}")
        ctx.run(
            [
                "certbot",
                "renew",
                "--force-renewal",
                "--non-interactive",
                "--cert-name",
                config.domain,
            ]
        )
        return

    logger.info(f"Requesting certificate for {', '.join(config.server_names)}")
    cmd = [
        "certbot",
        "certonly",
        "--nginx",
        "--non-interactive",
        "--agree-tos",
        "--keep-until-expiring",
        "--email",
        config.email,
        "--cert-name",
        config.domain,
    ]
    for name in config.server_names:
        cmd.extend(["-d", name])
    ctx.run(cmd)


def make_certificate_verify(clock: Clock = utcnow) -> Callable[[DeployContext], None]:
    def verify_certificate(ctx: DeployContext) -> None:
        """The certificate exists and its expiry is in the future."""
        path = ctx.config.certificate_path
        if not path.is_file():
            raise CertificateError(f"Certificate not found: {path}")
        expires = certificate_expiry(ctx, str(path))
        now = clock()
        if expires <= now:
            raise CertificateError(
                f"Certificate {path} expired on {expires:%Y-%m-%d %H:%M} UTC"
            )
        days = (expires - now).days
        logger.info(f"Certificate valid until {expires:%Y-%m-%d %H:%M} UTC ({days} days)")

    return verify_certificate


verify_certificate = make_certificate_verify()


# ------------------------------------------------------------------
# Renewal scheduler
# ------------------------------------------------------------------
def enable_renewal_timer(ctx: DeployContext) -> None:
    ctx.run(["systemctl", "enable", "--now", RENEWAL_TIMER])


def verify_renewal(ctx: DeployContext) -> None:
    """
    The timer reports active, and a dry-run renewal succeeds.

    A failing dry run does not affect the current certificate, so it is only
    recorded as a warning.
    """
    state = ctx.run(["systemctl", "is-active", RENEWAL_TIMER], check=False)
    if state.stdout.strip() != "active":
        raise StepVerificationError(
            f"{RENEWAL_TIMER} is not active ({state.stdout.strip() or 'unknown'})"
        )

    timers = ctx.run(
        ["systemctl", "list-timers", RENEWAL_TIMER, "--no-pager"], check=False
    )
    for line in timers.stdout.splitlines():
        if "certbot" in line:
            logger.info(f"Next automatic renewal check: {' '.join(line.split()[:3])}")
            break

    try:
        dry = ctx.run(["certbot", "renew", "--dry-run", "--quiet"], check=False)
    except DeployError as e:
        ctx.warn(f"Renewal dry run could not run: {e}")
        return
    if not dry.ok:
        ctx.warn(f"Renewal dry run failed (code {dry.returncode}): {dry.output[-300:]}")
    else:
        logger.info("Certificate renewal dry run passed")
