"""Filesystem helpers shared by the publish, proxy and script steps."""

import datetime
import hashlib
import os
import shutil
import tempfile
from typing import Dict, List, Optional

from .log import logger


def backup_file(fp: str) -> Optional[str]:
    """
    Copy a file aside with a timestamp suffix.

    Args:
        fp: Path to the file to backup

    Returns:
        Path to the backup file, or None if the file does not exist
    """
    if not os.path.isfile(fp):
        return None
    ts = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
    backup = f"{fp}.backup.{ts}"
    counter = 1
    while os.path.exists(backup):
        backup = f"{fp}.backup.{ts}.{counter}"
        counter += 1
    shutil.copy2(fp, backup)
    logger.info(f"Backed up {fp} to {backup}")
    return backup


def write_file(path: str, content: str, mode: int = 0o644) -> None:
    """Write a file via a temporary sibling and rename, never leaving it half-written."""
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=".tmp-", dir=directory)
    try:
        with os.fdopen(fd, "w") as f:
            f.write(content)
        os.chmod(tmp, mode)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


def read_file(path: str) -> Optional[str]:
    try:
        with open(path, "r") as f:
            return f.read()
    except FileNotFoundError:
        return None


def list_files(directory: str) -> List[str]:
    """List all regular files below a directory as sorted relative paths."""
    file_paths = []
    for root, _, files in os.walk(directory):
        for f in files:
            full_path = os.path.join(root, f)
            if os.path.isfile(full_path):
                file_paths.append(os.path.relpath(full_path, directory))
    return sorted(file_paths)


def file_hash(file_path: str) -> str:
    digest = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def tree_hashes(directory: str) -> Dict[str, str]:
    return {rel: file_hash(os.path.join(directory, rel)) for rel in list_files(directory)}


def newest_mtime(directory: str, exclude: tuple = ()) -> float:
    """Newest modification time of any file below directory, skipping excluded top-level names."""
    newest = 0.0
    for root, dirs, files in os.walk(directory):
        if root == directory:
            dirs[:] = [d for d in dirs if d not in exclude and not d.startswith(".")]
            files = [f for f in files if f not in exclude]
        for f in files:
            try:
                newest = max(newest, os.path.getmtime(os.path.join(root, f)))
            except OSError:
                continue
    return newest
