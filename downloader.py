"""
BepInEx Mod Manager - Download cache and archive extraction.

Downloads go either straight to a target file or through a shared per-user
cache keyed by a logical file name.  A cached file is trusted as-is: there is
no freshness or checksum check, so a stale cache entry is reused until it is
deleted by hand.
"""

from __future__ import annotations

import logging
import zipfile
import zlib
from pathlib import Path
from typing import Callable, Optional

import py7zr
import rarfile
import requests

from errors import DownloadFailed, ExtractionFailed, ModManagerError
from file_utils import create_parent_dirs

_log = logging.getLogger(__name__)

ARCHIVE_EXTENSIONS = (".zip", ".7z", ".rar")
CHUNK_SIZE = 256 * 1024

# Corrupt, truncated or encrypted members surface as any of these
EXTRACTION_ERRORS = (
    OSError,
    ValueError,
    EOFError,
    RuntimeError,
    NotImplementedError,
    zlib.error,
    zipfile.BadZipFile,
    py7zr.exceptions.ArchiveError,
    rarfile.Error,
)


def extract_archive(archive_path: Path, destination: Path) -> None:
    """Extract every member of ``archive_path`` into ``destination``.

    Existing files at the destination are overwritten silently.
    """
    _log.info("Extracting '%s' to '%s'", archive_path, destination)
    ext = archive_path.suffix.lower()
    try:
        create_parent_dirs(destination)
        if ext == ".zip":
            with zipfile.ZipFile(archive_path, "r") as zf:
                zf.extractall(destination)
        elif ext == ".7z":
            with py7zr.SevenZipFile(archive_path, "r") as sz:
                sz.extractall(path=destination)
        elif ext == ".rar":
            with rarfile.RarFile(archive_path, "r") as rf:
                rf.extractall(destination)
        else:
            raise ValueError(f"Unsupported archive format: {ext}")
    except EXTRACTION_ERRORS as exc:
        raise ExtractionFailed(archive_path, destination, exc) from exc


class Downloader:
    def __init__(
        self,
        session: Optional[requests.Session] = None,
        cache_dir: Optional[Path] = None,
        timeout: Optional[float] = None,
        error_callback: Optional[Callable[[str], None]] = None,
    ):
        self.session = session or requests.Session()
        self.cache_dir = Path(cache_dir) if cache_dir is not None else None
        self.timeout = timeout
        self._error_cb = error_callback or _log.error

    def show_error(self, msg: str):
        self._error_cb(msg)

    def download(self, url: str, path: Path) -> None:
        """Stream ``url`` into ``path``, creating missing parent directories."""
        _log.info("Downloading '%s' to '%s'", url, path)
        try:
            create_parent_dirs(path)
            with self.session.get(url, stream=True, timeout=self.timeout) as response:
                response.raise_for_status()
                with open(path, "wb") as fh:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            fh.write(chunk)
        except (requests.RequestException, OSError) as exc:
            raise DownloadFailed(url, path, exc) from exc

    def download_cached(self, url: str, name: str, fallback: Path) -> tuple[bool, Path]:
        """Fetch ``url`` through the cache.

        Returns ``(from_cache, path)``.  ``from_cache`` is True whenever the
        file lives in the persistent cache, whether it was already there or
        was just downloaded into it.  Without a cache directory the file is
        downloaded to ``fallback`` and ``from_cache`` is False.
        """
        if self.cache_dir is None:
            self.download(url, fallback)
            return False, fallback

        path = self.cache_dir / name
        if path.exists():
            _log.info("Found '%s' in cache", url)
        else:
            self.download(url, path)
        return True, path

    def download_cached_and_extract(
        self, url: str, name: str, archive_target: Path, extract_target: Path
    ) -> bool:
        """Download (or reuse) an archive and extract it.

        Failures are shown through the error callback and reported by
        returning False.  An archive that did not come from the persistent
        cache is deleted after a successful extraction.
        """
        try:
            from_cache, path = self.download_cached(url, name, archive_target)
        except ModManagerError as exc:
            self.show_error(f"Failed to download: {exc}")
            return False

        try:
            extract_archive(path, extract_target)
        except ExtractionFailed as exc:
            self.show_error(f"Failed to extract: {exc}")
            return False

        if not from_cache:
            try:
                path.unlink()
            except OSError as exc:
                _log.warning("Failed to cleanup '%s' after extraction: %s", path, exc)
        return True
