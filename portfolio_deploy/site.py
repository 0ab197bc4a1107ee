"""
Build & publish steps.

The build turns the project source into a static artifact tree; publishing
places that tree at the serving root owned by the web server's user. Both
verifications inspect contents, not just directory existence, so stale or empty
output is never served.
"""

import grp
import os
import pwd
import shutil
import time
from typing import Tuple

from .context import DeployContext
from .errors import BuildArtifactMissingError, StepActionError, StepVerificationError
from .files import list_files, newest_mtime, tree_hashes
from .log import logger
from .scripts import OPERATOR_SCRIPTS

# Never treated as build inputs
NON_SOURCE_NAMES: Tuple[str, ...] = ("node_modules",) + OPERATOR_SCRIPTS


# ------------------------------------------------------------------
# Build
# ------------------------------------------------------------------
def build_action(ctx: DeployContext) -> None:
    config = ctx.config
    project = config.project_dir
    if not os.path.isdir(project):
        raise BuildArtifactMissingError(f"Project directory not found: {project}")

    if not os.path.isdir(os.path.join(project, "node_modules")):
        logger.info("Installing npm dependencies...")
        ctx.run(["npm", "install"], user=config.user, cwd=project)
    else:
        logger.info("Dependencies already installed")

    logger.info("Building project...")
    ctx.run(["npm", "run", "build"], user=config.user, cwd=project)


def build_verify(ctx: DeployContext) -> None:
    """
    Artifacts must exist, be non-empty, and be at least as new as the sources.

    Raises:
        BuildArtifactMissingError: output directory absent or empty
        StepVerificationError: output older than the newest source file
    """
    config = ctx.config
    artifacts = str(config.artifact_dir)
    if not os.path.isdir(artifacts):
        raise BuildArtifactMissingError(f"Build output not found: {artifacts}")
    files = list_files(artifacts)
    if not files:
        raise BuildArtifactMissingError(f"Build output is empty: {artifacts}")

    built = newest_mtime(artifacts)
    source = newest_mtime(
        config.project_dir, exclude=NON_SOURCE_NAMES + (config.build_output,)
    )
    if source > built:
        raise StepVerificationError(
            f"Build output in {artifacts} is older than the project sources"
        )
    logger.debug(f"Build output verified: {len(files)} files")


# ------------------------------------------------------------------
# Publish
# ------------------------------------------------------------------
def _ids(user: str) -> Tuple[int, int]:
    try:
        entry = pwd.getpwnam(user)
    except KeyError as e:
        raise StepActionError(f"Unknown user: {user}") from e
    try:
        gid = grp.getgrnam(user).gr_gid
    except KeyError:
        gid = entry.pw_gid
    return entry.pw_uid, gid


def _fix_ownership(root: str, uid: int, gid: int) -> None:
    os.chown(root, uid, gid)
    os.chmod(root, 0o755)
    for dirpath, dirnames, filenames in os.walk(root):
        for d in dirnames:
            path = os.path.join(dirpath, d)
            os.chown(path, uid, gid)
            os.chmod(path, 0o755)
        for f in filenames:
            path = os.path.join(dirpath, f)
            os.chown(path, uid, gid)
            os.chmod(path, 0o644)


def publish_action(ctx: DeployContext) -> None:
    """Stage the artifacts beside the serving root, then swap them into place."""
    config = ctx.config
    artifacts = str(config.artifact_dir)
    web_root = config.web_root.rstrip("/")
    parent = os.path.dirname(web_root) or "/"
    os.makedirs(parent, exist_ok=True)

    ts = time.strftime("%Y%m%d%H%M%S")
    staging = f"{web_root}.new-{ts}"
    retired = f"{web_root}.old-{ts}"
    shutil.rmtree(staging, ignore_errors=True)

    logger.info(f"Staging build output in {staging}")
    shutil.copytree(artifacts, staging)
    try:
        uid, gid = _ids(config.web_user)
        _fix_ownership(staging, uid, gid)
    except BaseException:
        shutil.rmtree(staging, ignore_errors=True)
        raise

    if os.path.exists(web_root):
        os.rename(web_root, retired)
    os.rename(staging, web_root)
    shutil.rmtree(retired, ignore_errors=True)
    logger.info(f"Deployed {len(list_files(web_root))} files to {web_root}")


def publish_verify(ctx: DeployContext) -> None:
    """The serving root holds every artifact byte-for-byte, owned by the web user."""
    config = ctx.config
    web_root = config.web_root
    if not os.path.isdir(web_root):
        raise StepVerificationError(f"Serving root missing: {web_root}")
    deployed = tree_hashes(web_root)
    if len(deployed) == 0:
        raise StepVerificationError(f"Serving root is empty: {web_root}")

    expected = tree_hashes(str(config.artifact_dir))
    missing = [rel for rel in expected if rel not in deployed]
    changed = [rel for rel, digest in expected.items() if deployed.get(rel, digest) != digest]
    if missing or changed:
        sample = ", ".join((missing + changed)[:5])
        raise StepVerificationError(
            f"Serving root out of date ({len(missing)} missing, "
            f"{len(changed)} changed): {sample}"
        )

    uid, _ = _ids(config.web_user)
    if os.stat(web_root).st_uid != uid:
        raise StepVerificationError(
            f"Serving root {web_root} is not owned by {config.web_user}"
        )
    logger.debug(f"Serving root verified: {len(deployed)} files")
