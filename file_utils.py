"""
Small filesystem helpers shared by the installer, the loader manager and the
downloader.
"""

from __future__ import annotations

import hashlib
import logging
import shutil
from pathlib import Path

_log = logging.getLogger(__name__)

HASH_CHUNK_SIZE = 1024 * 1024


def create_parent_dirs(path: Path) -> None:
    """Create every missing parent directory of ``path``."""
    parent = path.parent
    if parent == path:
        raise OSError(f"Failed to get parent directory of: '{path}'")
    parent.mkdir(parents=True, exist_ok=True)


def remove_file_or_dir(path: Path) -> None:
    """Remove a file or a whole directory tree.  A missing path is not an error."""
    if path.is_file() or path.is_symlink():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


def content_hash(path: Path) -> str:
    """BLAKE2s hex digest of a file, used to detect out-of-band modification."""
    digest = hashlib.blake2s()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(HASH_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def try_content_hash(path: Path) -> str | None:
    try:
        return content_hash(path)
    except OSError as exc:
        _log.warning("Could not hash %s: %s", path, exc)
        return None
