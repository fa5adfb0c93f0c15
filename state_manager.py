"""
BepInEx Mod Manager - State manager (aggregate root).

Owns the persisted state, binds the per-game ModInstaller / ModLoaderManager to
the game records, and saves the state through the StateStore after every
mutating operation.

Every public operation holds one lock from start to finish, including network
downloads and archive extraction, so operations never interleave.  Mutating
operations return ``(ok, message)``.  User input errors are only returned;
filesystem and network failures are also shown through the error callback.
"""

from __future__ import annotations

import logging
import sys
import threading
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional

from app_config import APP_VERSION
from downloader import Downloader
from errors import (
    AlreadyConfigured,
    InvalidInstallPath,
    ModManagerError,
    NoGameSelected,
    NotConfigured,
    UnknownDirectory,
    UserInputError,
)
from mod_installer import ModInstaller
from modloader_manager import ModLoaderManager
from state_schema import (
    CatalogMessage,
    GameDescriptor,
    GameRecord,
    ModDescriptor,
    PersistedState,
)
from state_store import StateStore

_log = logging.getLogger(__name__)

Result = tuple[bool, str]


class StateManager:
    """
    Main controller used by the request handler.

    Workflow:
        1. start() to load the state and select a game
        2. add_game() / select_game() to choose the installation
        3. mod and mod loader operations on the selected game
        4. close() on shutdown
    """

    def __init__(
        self,
        store: StateStore,
        downloader: Downloader,
        confirm_callback: Optional[Callable[[str, str], bool]] = None,
        error_callback: Optional[Callable[[str], None]] = None,
        message_callback: Optional[Callable[[str, str, str], None]] = None,
        app_version: str = APP_VERSION,
    ):
        self.store = store
        self.downloader = downloader
        self.app_version = app_version
        self._confirm_cb = confirm_callback or (lambda title, msg: False)
        self._error_cb = error_callback or _log.error
        self._message_cb = message_callback
        self._lock = threading.RLock()

        self.state = PersistedState()

    def show_error(self, msg: str):
        self._error_cb(msg)

    # ── Collaborators per game ────────────────────────────────────────

    def installer(self, game: GameRecord) -> ModInstaller:
        return ModInstaller(game, self.downloader)

    def modloader(self, game: GameRecord) -> ModLoaderManager:
        return ModLoaderManager(game, self.downloader, self._confirm_cb, self._error_cb)

    def _current_game(self) -> GameRecord:
        game = self.state.current_game()
        if game is None:
            raise NoGameSelected()
        return game

    # ── Persistence ───────────────────────────────────────────────────

    def start(self):
        with self._lock:
            self.state = self.store.load()
            self.ensure_game_selected()
            self._persist()

    def close(self):
        with self._lock:
            self._persist()

    def _persist(self) -> bool:
        return self.store.save(self.state)

    def _run(self, action: str, func: Callable[[], Result]) -> Result:
        """Run one mutating operation and persist whatever it changed."""
        with self._lock:
            try:
                result = func()
            except UserInputError as exc:
                _log.info("%s: %s", action, exc)
                result = (False, str(exc))
            except ModManagerError as exc:
                _log.error("%s: %s", action, exc)
                self.show_error(str(exc))
                result = (False, str(exc))
            finally:
                self._persist()
            return result

    # ── Games ─────────────────────────────────────────────────────────

    def add_game(self, game: GameDescriptor, install_path: str) -> Result:
        def op() -> Result:
            if game.id in self.state.games:
                raise AlreadyConfigured(game.id)
            if not Path(install_path).exists():
                raise InvalidInstallPath(install_path)
            self.state.games[game.id] = GameRecord(
                game_descriptor=game, install_path=install_path
            )
            self._select(game.id)
            return True, f"Added {game.name}"

        return self._run(f"Adding game '{game.id}'", op)

    def update_install_path(self, game_id: str, install_path: str) -> Result:
        def op() -> Result:
            game = self.state.games.get(game_id)
            if game is None:
                raise NotConfigured(game_id)
            if not Path(install_path).exists():
                raise InvalidInstallPath(install_path)
            game.install_path = install_path
            return True, f"Install path of {game.game_descriptor.name} updated"

        return self._run(f"Updating install path of '{game_id}'", op)

    def select_game(self, game_id: str) -> Result:
        def op() -> Result:
            if not self._select(game_id):
                raise NotConfigured(game_id)
            return True, f"Selected '{game_id}'"

        return self._run(f"Selecting '{game_id}'", op)

    def ensure_game_selected(self):
        with self._lock:
            selected = self.state.selected_game_id
            if selected is not None and selected in self.state.games:
                self._select(selected)
            elif self.state.games:
                self._select(next(iter(self.state.games)))

    def _select(self, game_id: str) -> bool:
        game = self.state.games.get(game_id)
        if game is None:
            return False
        self.state.selected_game_id = game_id
        self.modloader(game).reconcile()
        return True

    # ── Mods ──────────────────────────────────────────────────────────

    def install_mod(self, descriptor: ModDescriptor) -> Result:
        def op() -> Result:
            if not self.installer(self._current_game()).install(descriptor):
                return False, f"Failed to install '{descriptor.name}'"
            return True, f"Installed '{descriptor.name}'"

        return self._run(f"Installing '{descriptor.id}'", op)

    def remove_mod(self, mod_id: str) -> Result:
        def op() -> Result:
            removed = self.installer(self._current_game()).remove(mod_id)
            return True, f"Removed '{removed.name}'"

        return self._run(f"Removing '{mod_id}'", op)

    def update_mod(self, mod_id: str) -> Result:
        def op() -> Result:
            if not self.installer(self._current_game()).update(mod_id):
                return False, f"Failed to reinstall '{mod_id}', it is no longer installed"
            return True, f"Updated '{mod_id}'"

        return self._run(f"Updating '{mod_id}'", op)

    def update_mods_meta(self, catalog: Mapping[str, ModDescriptor]) -> Result:
        """Refresh the stored descriptors of installed mods from ``catalog``."""

        def op() -> Result:
            game = self._current_game()
            refreshed = 0
            for mod_id, installed in game.mods.items():
                descriptor = catalog.get(mod_id)
                if descriptor is not None:
                    installed.descriptor = descriptor
                    refreshed += 1
            return True, f"Refreshed {refreshed} mod(s)"

        return self._run("Refreshing mod metadata", op)

    # ── Mod loader ────────────────────────────────────────────────────

    def toggle_modloader_installed(self) -> Result:
        def op() -> Result:
            manager = self.modloader(self._current_game())
            if manager.game.mod_loader.installed:
                if not manager.uninstall():
                    return False, "Mod Loader removal cancelled"
                return True, "Mod Loader removed"
            if not manager.install():
                return False, "Failed to install the Mod Loader"
            return True, "Mod Loader installed"

        return self._run("Toggling Mod Loader installation", op)

    def toggle_modloader_enabled(self) -> Result:
        def op() -> Result:
            manager = self.modloader(self._current_game())
            manager.toggle_enabled()
            enabled = manager.game.mod_loader.enabled
            return True, "Mod Loader enabled" if enabled else "Mod Loader disabled"

        return self._run("Toggling Mod Loader", op)

    def set_modloader_enabled(self, enabled: bool) -> Result:
        def op() -> Result:
            self.modloader(self._current_game()).set_enabled(enabled)
            return True, "Mod Loader enabled" if enabled else "Mod Loader disabled"

        return self._run("Switching Mod Loader", op)

    # ── Messages ──────────────────────────────────────────────────────

    def show_messages(self, messages: Iterable[CatalogMessage]) -> list[str]:
        """Show catalog notices that apply to this version and were not shown yet."""
        shown: list[str] = []
        with self._lock:
            for msg in messages:
                if not msg.applies_to(self.app_version):
                    continue
                first_time = msg.id not in self.state.shown_message_ids
                self.state.shown_message_ids.add(msg.id)
                if first_time or msg.show_always:
                    if self._message_cb is not None:
                        self._message_cb(msg.id, msg.message, msg.icon)
                    shown.append(msg.id)
            self._persist()
        return shown

    # ── Queries ───────────────────────────────────────────────────────

    def directory(self, kind: str) -> Path:
        with self._lock:
            game = self._current_game()
            if kind == "game":
                return game.install_dir
            if kind == "mods":
                return game.plugins_dir
            if kind == "config":
                return game.config_dir
            raise UnknownDirectory(kind)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "version": self.app_version,
                "selectedGameId": self.state.selected_game_id,
                "games": {
                    game_id: game.model_dump(mode="json", by_alias=True)
                    for game_id, game in self.state.games.items()
                },
                "os": sys.platform,
            }
