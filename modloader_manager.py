"""
BepInEx Mod Manager - Mod loader (BepInEx) lifecycle for one configured game.

Status transitions (see ``state_schema``):

    Absent  --install-->            KnownVersion(enabled)
    Known/Drifted --uninstall-->    Absent           (confirmed, wipes all mods)
    Known/Drifted --set_enabled-->  same kind, enabled flipped
    reconcile():
        core binary missing         -> Absent
        Known, hash changed         -> Drifted
        Absent, binary present      -> ask: adopt as Drifted, or delete

Enabling and disabling moves the doorstop marker files between the game root
and the BepInEx directory.  The loader is enabled exactly when
``doorstop_config.ini`` sits in the game root.
"""

from __future__ import annotations

import logging
import os
import shutil
import sys
from pathlib import Path
from typing import Callable, Optional

from downloader import Downloader
from errors import (
    MarkerMoveFailed,
    ModLoaderAlreadyInstalled,
    ModLoaderNotInstalled,
    PartialMarkerMove,
)
from file_utils import try_content_hash
from state_schema import (
    GameRecord,
    ModLoaderAbsent,
    ModLoaderDriftedVersion,
    ModLoaderKnownVersion,
)

_log = logging.getLogger(__name__)

BEPINEX_VERSION = "5.4.4"
BEPINEX_FILE_NAME = "BepInEx_v5.4.4.0.zip"
if sys.platform == "win32":
    BEPINEX_DOWNLOAD_URL = (
        "https://github.com/BepInEx/BepInEx/releases/download/v5.4.4/BepInEx_x64_5.4.4.0.zip"
    )
else:
    BEPINEX_DOWNLOAD_URL = (
        "https://github.com/BepInEx/BepInEx/releases/download/v5.4.4/BepInEx_unix_5.4.4.0.zip"
    )

CORE_BINARY = Path("core") / "BepInEx.dll"
ENABLE_MARKER = "doorstop_config.ini"
INJECTOR_MARKER = "winhttp.dll"
MARKER_FILES = (ENABLE_MARKER, INJECTOR_MARKER)
PARTIAL_WIPE_DIRS = ("core", "cache")


class ModLoaderManager:
    def __init__(
        self,
        game: GameRecord,
        downloader: Downloader,
        confirm_callback: Optional[Callable[[str, str], bool]] = None,
        error_callback: Optional[Callable[[str], None]] = None,
    ):
        self.game = game
        self.downloader = downloader
        self._confirm_cb = confirm_callback or (lambda title, msg: False)
        self._error_cb = error_callback or _log.error

    def confirm(self, title: str, msg: str) -> bool:
        return self._confirm_cb(title, msg)

    def show_error(self, msg: str):
        self._error_cb(msg)

    @property
    def core_binary(self) -> Path:
        return self.game.loader_dir / CORE_BINARY

    def is_enabled_on_disk(self) -> bool:
        return (self.game.install_dir / ENABLE_MARKER).exists()

    # ── Install / Uninstall ───────────────────────────────────────────

    def install(self) -> bool:
        if self.game.mod_loader.installed:
            raise ModLoaderAlreadyInstalled()

        ok = self.downloader.download_cached_and_extract(
            BEPINEX_DOWNLOAD_URL,
            BEPINEX_FILE_NAME,
            self.game.install_dir / BEPINEX_FILE_NAME,
            self.game.install_dir,
        )
        if not ok:
            return False

        self.game.mod_loader = ModLoaderKnownVersion(
            enabled=True,
            version=BEPINEX_VERSION,
            content_hash=try_content_hash(self.core_binary),
        )
        _log.info("Installed BepInEx %s into %s", BEPINEX_VERSION, self.game.install_dir)
        return True

    def uninstall(self) -> bool:
        """Remove BepInEx with every mod and stored configuration.

        Returns False if the user declined.
        """
        if not self.game.mod_loader.installed:
            raise ModLoaderNotInstalled()

        if not self.confirm(
            "Are you sure?",
            "Are you sure?\n"
            "This will remove all mods and all stored configuration.\n"
            "You can disable the Mod Loader instead if you just want to start "
            "the game without loading any mods.",
        ):
            return False

        loader_dir = self.game.loader_dir
        if loader_dir.is_dir():
            self._remove_tree(loader_dir, "Failed to remove BepInEx directory")
        for name in MARKER_FILES:
            path = self.game.install_dir / name
            if path.is_file():
                try:
                    path.unlink()
                except OSError as exc:
                    self.show_error(f"Failed to remove {name}: {exc}")

        self.game.mods.clear()
        self.game.mod_loader = ModLoaderAbsent()
        _log.info("Uninstalled BepInEx from %s", self.game.install_dir)
        return True

    # ── Enable / Disable ──────────────────────────────────────────────

    def set_enabled(self, target: bool) -> None:
        status = self.game.mod_loader
        if not status.installed:
            raise ModLoaderNotInstalled()
        if status.enabled == target:
            return

        root = self.game.install_dir
        loader_dir = self.game.loader_dir
        moves = [
            (root / name, loader_dir / name) if not target else (loader_dir / name, root / name)
            for name in MARKER_FILES
        ]

        moved: Optional[str] = None
        for (src, dst), name in zip(moves, MARKER_FILES):
            try:
                os.replace(src, dst)
            except OSError as exc:
                if moved is None:
                    raise MarkerMoveFailed(name, exc) from exc
                raise PartialMarkerMove(name, moved, exc) from exc
            moved = name

        self.game.mod_loader = status.model_copy(update={"enabled": target})
        _log.info("BepInEx %s", "enabled" if target else "disabled")

    def toggle_enabled(self) -> None:
        status = self.game.mod_loader
        if not status.installed:
            raise ModLoaderNotInstalled()
        self.set_enabled(not status.enabled)

    # ── Reconcile ─────────────────────────────────────────────────────

    def reconcile(self) -> None:
        """Bring the recorded status in line with what is on disk."""
        if not self.core_binary.exists():
            if self.game.mod_loader.installed:
                _log.info("BepInEx core binary missing, marking as not installed")
            self.game.mod_loader = ModLoaderAbsent()
            return

        status = self.game.mod_loader
        if status.installed:
            if status.content_hash is not None:
                new_hash = try_content_hash(self.core_binary)
                if new_hash is not None and new_hash != status.content_hash:
                    _log.warning("BepInEx core binary changed on disk, version is now unknown")
                    status = ModLoaderDriftedVersion(enabled=status.enabled, content_hash=new_hash)
            self.game.mod_loader = status.model_copy(
                update={"enabled": self.is_enabled_on_disk()}
            )
            return

        self._handle_unknown_install()

    def _handle_unknown_install(self) -> None:
        if not self.confirm(
            "BepInEx detected",
            "An unknown existing installation of the BepInEx ModLoader was detected. "
            "Do you want to remove it?",
        ):
            self.game.mod_loader = ModLoaderDriftedVersion(
                enabled=self.is_enabled_on_disk(),
                content_hash=try_content_hash(self.core_binary),
            )
            _log.info("Adopted existing BepInEx installation")
            return

        loader_dir = self.game.loader_dir
        if self.confirm("Removing BepInEx", "Do you want to keep configs and mods?"):
            for name in PARTIAL_WIPE_DIRS:
                if (loader_dir / name).exists():
                    self._remove_tree(loader_dir / name, f"Failed to remove '{name}' directory")
        else:
            self._remove_tree(loader_dir, "Failed to remove 'BepInEx' directory")
        self.game.mod_loader = ModLoaderAbsent()

    def _remove_tree(self, path: Path, title: str) -> None:
        try:
            shutil.rmtree(path)
        except OSError as exc:
            self.show_error(f"{title}: {exc}")
