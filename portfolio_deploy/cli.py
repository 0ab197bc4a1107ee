"""
Command-line entry point.

Loads the configuration, confirms with the operator, takes the host lock and
runs the deployment pipeline, translating the outcome into a process exit code.
"""

import json
import sys
from typing import Optional, Tuple

import click
from rich.prompt import Confirm
from rich.traceback import install as install_rich_traceback

from . import __version__
from .certs import certificate_expiry
from .commands import CommandRunner
from .config import APP_NAME, APP_SUBTITLE, DeployConfig, load_config, save_config
from .context import DeployContext
from .errors import DeployError, ExitCode, FatalAbort
from .lock import DeployLock
from .log import logger, setup_logging
from .pipeline import PipelineRun, confirm_prompt, fail_closed
from .preflight import check_root
from .probes import HttpProber
from .steps import build_pipeline
from .ui import (
    config_table,
    console,
    create_header,
    print_error,
    print_section,
    print_success,
    print_warning,
    status_report,
    summary_panel,
)

install_rich_traceback(show_locals=False)


def _config_rows(config: DeployConfig) -> dict:
    return {
        "Domain": ", ".join(config.server_names),
        "Project": config.project_dir,
        "Build output": str(config.artifact_dir),
        "Web root": config.web_root,
        "Build user": config.user,
        "Web user": config.web_user,
        "Email": config.email,
        "Log file": config.log_file,
        "Mode": "dry run" if config.dry_run else "apply",
    }


def _expiry(ctx: DeployContext, run: PipelineRun) -> Optional[str]:
    if not run.succeeded or run.dry_run:
        return None
    try:
        return certificate_expiry(ctx).strftime("%Y-%m-%d %H:%M UTC")
    except DeployError as e:
        logger.debug(f"Certificate expiry unavailable: {e}")
        return None


def report(ctx: DeployContext, run: PipelineRun) -> None:
    """Log the run record and render the final status table and summary."""
    logger.debug("Run record: " + json.dumps(run.to_dict(), sort_keys=True))
    status_report(run)
    urls = [f"https://{name}" for name in ctx.config.server_names]
    console.print(summary_panel(run, urls, ctx.config.log_file, _expiry(ctx, run)))


def deploy(config: DeployConfig, interactive: bool, assume_yes: bool) -> int:
    """
    Run the deployment pipeline once under the host lock.

    Returns:
        The process exit code
    """
    check_root()

    if interactive and not assume_yes:
        if not Confirm.ask(
            f"Deploy {config.domain} on this host?", default=True, console=console
        ):
            print_warning("Deployment cancelled by operator.")
            return ExitCode.SUCCESS

    ctx = DeployContext(
        config=config,
        runner=CommandRunner(config.command_timeout),
        prober=HttpProber(config.probe_timeout),
    )
    pipeline = build_pipeline(confirm_prompt if interactive else fail_closed)

    with DeployLock(config.lock_file):
        print_section("Running Deployment Steps")
        run = pipeline.run(ctx)

    report(ctx, run)
    try:
        run.raise_for_status()
    except FatalAbort as e:
        return e.exit_code
    return run.exit_code


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    help="JSON configuration file",
)
@click.option("--domain", help="Primary domain name")
@click.option(
    "--www-domain",
    "www_domains",
    multiple=True,
    help="Additional server name (repeatable; default www.<domain>)",
)
@click.option("--project-dir", help="Checked-out site project directory")
@click.option("--web-root", help="Directory the proxy serves")
@click.option("--email", help="Contact address for the certificate authority")
@click.option("--user", help="Owner of the project tree; runs the build")
@click.option("--log-file", help="Deployment log file")
@click.option(
    "--save-config",
    "save_path",
    type=click.Path(dir_okay=False),
    help="Write the effective configuration to this file and exit",
)
@click.option("--force-renew", is_flag=True, help="Renew the certificate even if valid")
@click.option(
    "--continue-on-unresolved-dns",
    is_flag=True,
    help="Proceed when the domain does not resolve",
)
@click.option("--dry-run", is_flag=True, help="Report what would change without acting")
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Skip the confirmation prompt")
@click.option("--non-interactive", is_flag=True, help="Run without prompts")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.version_option(__version__, prog_name="portfolio-deploy")
def main(
    config_path: Optional[str],
    domain: Optional[str],
    www_domains: Tuple[str, ...],
    project_dir: Optional[str],
    web_root: Optional[str],
    email: Optional[str],
    user: Optional[str],
    log_file: Optional[str],
    save_path: Optional[str],
    force_renew: bool,
    continue_on_unresolved_dns: bool,
    dry_run: bool,
    assume_yes: bool,
    non_interactive: bool,
    debug: bool,
) -> None:
    """
    Deploy a static portfolio site behind Nginx with a Let's Encrypt certificate.

    Safe to re-run: completed steps are detected and skipped.
    """
    try:
        config = load_config(
            config_path,
            domain=domain,
            www_domains=tuple(www_domains) or None,
            project_dir=project_dir,
            web_root=web_root,
            email=email,
            user=user,
            log_file=log_file,
            force_renew=force_renew or None,
            continue_on_unresolved_dns=continue_on_unresolved_dns or None,
            dry_run=dry_run or None,
        )
    except DeployError as e:
        print_error(str(e))
        sys.exit(int(e.exit_code))

    if save_path:
        save_config(config, save_path)
        print_success(f"Configuration written to {save_path}")
        sys.exit(int(ExitCode.SUCCESS))

    setup_logging(config.log_file, debug)
    console.print(create_header(APP_NAME, APP_SUBTITLE, __version__))
    console.print(config_table(_config_rows(config)))

    interactive = not non_interactive and sys.stdin.isatty()
    try:
        code = deploy(config, interactive, assume_yes)
    except DeployError as e:
        logger.error(str(e))
        print_error(str(e))
        code = e.exit_code
    except KeyboardInterrupt:
        print_warning("Operation cancelled by user.")
        code = ExitCode.INTERRUPTED
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        console.print_exception()
        code = ExitCode.FAILURE
    sys.exit(int(code))
