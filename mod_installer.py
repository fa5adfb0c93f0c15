"""
BepInEx Mod Manager - Mod install / remove / update for one configured game.

Workflow:
    1. install(descriptor) downloads the mod and places its files
    2. remove(mod_id) deletes the files the mod owns
    3. update(mod_id) is remove() followed by install() of the same descriptor

Nothing here is transactional.  A failed extraction leaves whatever was already
written, a failed removal leaves earlier paths removed, and an update whose
install step fails leaves the mod uninstalled.
"""

from __future__ import annotations

import logging
import os
import posixpath
from pathlib import Path, PurePosixPath
from urllib.parse import unquote, urlparse

from downloader import ARCHIVE_EXTENSIONS, Downloader
from errors import (
    AlreadyInstalled,
    InvalidDownloadUrl,
    IOFailure,
    NotInstalled,
    RemovalFailed,
    UnsupportedFileType,
)
from file_utils import remove_file_or_dir
from state_schema import GameRecord, InstalledMod, ModDescriptor

_log = logging.getLogger(__name__)

SINGLE_FILE_EXTENSIONS = (".dll",)


def download_file_name(url: str) -> str:
    """Return the last path segment of ``url``, or raise InvalidDownloadUrl."""
    try:
        parsed = urlparse(url)
    except ValueError as exc:
        raise InvalidDownloadUrl(url, str(exc)) from exc
    if not parsed.scheme or not parsed.netloc:
        raise InvalidDownloadUrl(url)
    name = posixpath.basename(unquote(parsed.path))
    if not name:
        raise InvalidDownloadUrl(url, "no file")
    return name


class ModInstaller:
    def __init__(self, game: GameRecord, downloader: Downloader):
        self.game = game
        self.downloader = downloader

    # ── Install ───────────────────────────────────────────────────────

    def install(self, descriptor: ModDescriptor) -> bool:
        """Install ``descriptor`` and record it.

        Returns False when the download/extract pipeline failed.  That failure
        has already been shown to the user and the mod is not recorded.
        """
        mod_id = descriptor.id
        if mod_id in self.game.mods:
            raise AlreadyInstalled(mod_id)

        file_name = download_file_name(descriptor.download_url)
        ext = PurePosixPath(file_name).suffix.lower()
        _log.info("Installing '%s' %s from %s", mod_id, descriptor.version, file_name)

        if ext in SINGLE_FILE_EXTENSIONS:
            target = self.game.plugins_dir / f"{mod_id}{ext}"
            self.downloader.download(descriptor.download_url, target)
        elif ext in ARCHIVE_EXTENSIONS:
            cache_name = f"{self.game.game_descriptor.id}_{mod_id}{ext}"
            if descriptor.extract_to_root:
                extract_to = self.game.install_dir
            else:
                extract_to = self.game.plugins_dir / mod_id
            ok = self.downloader.download_cached_and_extract(
                descriptor.download_url,
                cache_name,
                self.game.plugins_dir / cache_name,
                extract_to,
            )
            if not ok:
                return False
        else:
            raise UnsupportedFileType(
                descriptor.download_url, list(SINGLE_FILE_EXTENSIONS + ARCHIVE_EXTENSIONS)
            )

        self.game.mods[mod_id] = InstalledMod(
            descriptor=descriptor, version=descriptor.version, enabled=True
        )
        _log.info("Installed '%s'", mod_id)
        return True

    # ── Remove ────────────────────────────────────────────────────────

    def remove(self, mod_id: str) -> ModDescriptor:
        """Delete the files of ``mod_id`` and drop its record.

        Returns the descriptor that was installed.
        """
        installed = self.game.mods.get(mod_id)
        if installed is None:
            raise NotInstalled(mod_id)

        files = installed.descriptor.files
        if files is not None:
            targets = [(self._owned_path(relpath), relpath) for relpath in files]
            for path, relpath in targets:
                self._remove_path(path, relpath)
        else:
            self._remove_by_prefix(mod_id)

        del self.game.mods[mod_id]
        _log.info("Removed '%s'", mod_id)
        return installed.descriptor

    def _owned_path(self, relpath: str) -> Path:
        """Resolve a manifest entry, refusing anything outside the installation root."""
        root = self.game.install_dir.resolve()
        candidate = Path(os.path.normpath(root / relpath))
        # The entry itself may be a symlink the mod owns, so only its parent is resolved.
        path = candidate.parent.resolve() / candidate.name
        if path == root or not path.is_relative_to(root):
            raise RemovalFailed(relpath, "path is outside of the installation directory")
        return path

    def _remove_by_prefix(self, mod_id: str) -> None:
        # Any plugin entry whose name starts with the mod id belongs to the mod.
        # Ids that are prefixes of other ids match those mods' files too.
        shadowed = sorted(
            other for other in self.game.mods if other != mod_id and other.startswith(mod_id)
        )
        if shadowed:
            _log.warning(
                "Removing '%s' by name prefix also matches files of installed mod(s): %s",
                mod_id,
                shadowed,
            )

        plugins_dir = self.game.plugins_dir
        try:
            entries = sorted(plugins_dir.iterdir())
        except OSError as exc:
            raise IOFailure(f"Failed to list files in plugins directory: {exc}") from exc

        for entry in entries:
            if entry.name.startswith(mod_id):
                self._remove_path(entry, entry.name)

    @staticmethod
    def _remove_path(path: Path, label: str) -> None:
        try:
            remove_file_or_dir(path)
        except OSError as exc:
            raise RemovalFailed(label, exc) from exc
        _log.debug("  Removed: %s", label)

    # ── Update ────────────────────────────────────────────────────────

    def update(self, mod_id: str) -> bool:
        descriptor = self.remove(mod_id)
        return self.install(descriptor)
