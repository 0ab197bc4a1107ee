"""Operator helper scripts written into the project directory."""

import os
import pwd

from .context import DeployContext
from .errors import StepVerificationError
from .files import read_file, write_file
from .log import logger
from .templates import status_script, update_script

UPDATE_SCRIPT = "update-portfolio.sh"
STATUS_SCRIPT = "check-status.sh"
OPERATOR_SCRIPTS = (UPDATE_SCRIPT, STATUS_SCRIPT)


def _chown(path: str, user: str) -> None:
    try:
        entry = pwd.getpwnam(user)
    except KeyError:
        logger.warning(f"Unknown user {user}; leaving {path} owned by root")
        return
    os.chown(path, entry.pw_uid, entry.pw_gid)


def write_scripts(ctx: DeployContext) -> None:
    """Create the update script if absent and refresh the status script."""
    config = ctx.config
    update_path = os.path.join(config.project_dir, UPDATE_SCRIPT)
    status_path = os.path.join(config.project_dir, STATUS_SCRIPT)

    if not os.path.exists(update_path):
        write_file(update_path, update_script(config), mode=0o755)
        _chown(update_path, config.user)
        logger.info(f"Update script created: {update_path}")
    else:
        logger.info(f"Keeping existing update script: {update_path}")

    content = status_script(config)
    if read_file(status_path) != content:
        write_file(status_path, content, mode=0o755)
        _chown(status_path, config.user)
        logger.info(f"Status check script written: {status_path}")


def verify_scripts(ctx: DeployContext) -> None:
    config = ctx.config
    for name in OPERATOR_SCRIPTS:
        path = os.path.join(config.project_dir, name)
        if not os.path.isfile(path):
            raise StepVerificationError(f"Helper script missing: {path}")
        if not os.access(path, os.X_OK):
            raise StepVerificationError(f"Helper script not executable: {path}")
    status_path = os.path.join(config.project_dir, STATUS_SCRIPT)
    if read_file(status_path) != status_script(config):
        raise StepVerificationError(f"Helper script out of date: {status_path}")
