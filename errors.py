"""
BepInEx Mod Manager - Error taxonomy.

Every failure the core can report derives from ``ModManagerError``.  The
operation boundary in ``state_manager`` decides what to do with each family:

    UserInputError   returned to the caller for display, nothing was changed
    IOFailure        logged and shown; in-memory state may now diverge from disk
    NetworkFailure   logged and shown; no automatic retry
    PartialFailure   an IOFailure raised after earlier steps already took effect
"""

from __future__ import annotations

from pathlib import Path


class ModManagerError(Exception):
    """Base class for all errors raised by the mod manager core."""


# ── User input ────────────────────────────────────────────────────────


class UserInputError(ModManagerError):
    pass


class AlreadyConfigured(UserInputError):
    def __init__(self, game_id: str):
        super().__init__(f"'{game_id}' is already configured")
        self.game_id = game_id


class NotConfigured(UserInputError):
    def __init__(self, game_id: str):
        super().__init__(f"'{game_id}' is not yet configured")
        self.game_id = game_id


class InvalidInstallPath(UserInputError):
    def __init__(self, path: str):
        super().__init__(f"Path is invalid or doesn't exist: '{path}'")
        self.path = path


class NoGameSelected(UserInputError):
    def __init__(self):
        super().__init__("No game set up or selected")


class AlreadyInstalled(UserInputError):
    def __init__(self, mod_id: str):
        super().__init__(f"Mod '{mod_id}' is already installed")
        self.mod_id = mod_id


class NotInstalled(UserInputError):
    def __init__(self, mod_id: str):
        super().__init__(f"Mod '{mod_id}' is not installed")
        self.mod_id = mod_id


class InvalidDownloadUrl(UserInputError):
    def __init__(self, url: str, reason: str = ""):
        detail = f" ({reason})" if reason else ""
        super().__init__(f"Invalid download url{detail}: '{url}'")
        self.url = url


class UnsupportedFileType(UserInputError):
    def __init__(self, url: str, supported: list[str]):
        super().__init__(
            f"Unrecognized file type in download URL: {url}\n"
            f"Valid types are only {', '.join(supported)}"
        )
        self.url = url


class ModLoaderNotInstalled(UserInputError):
    def __init__(self):
        super().__init__("The Mod Loader is not installed for this game")


class ModLoaderAlreadyInstalled(UserInputError):
    def __init__(self):
        super().__init__("The Mod Loader is already installed for this game")


class UnknownDirectory(UserInputError):
    def __init__(self, kind: str):
        super().__init__(f"Unknown directory: {kind}")
        self.kind = kind


# ── Filesystem ────────────────────────────────────────────────────────


class IOFailure(ModManagerError):
    pass


class RemovalFailed(IOFailure):
    def __init__(self, path: str | Path, reason: object):
        super().__init__(f"Failed to remove '{path}': {reason}")
        self.path = str(path)


class MarkerMoveFailed(IOFailure):
    def __init__(self, name: str, reason: object):
        super().__init__(f"Failed to move '{name}': {reason}")
        self.name = name


class ExtractionFailed(IOFailure):
    def __init__(self, archive: Path, destination: Path, reason: object):
        super().__init__(f"Failed to extract '{archive}' to '{destination}': {reason}")
        self.archive = archive
        self.destination = destination


class PartialFailure(IOFailure):
    """A multi-step operation failed after some of its steps already happened."""


class PartialMarkerMove(PartialFailure, MarkerMoveFailed):
    def __init__(self, name: str, moved: str, reason: object):
        MarkerMoveFailed.__init__(self, name, reason)
        self.args = (
            f"Failed to move '{name}' after '{moved}' was already moved: {reason}. "
            "The Mod Loader files are now in a mixed state.",
        )
        self.moved = moved


# ── Network ───────────────────────────────────────────────────────────


class NetworkFailure(ModManagerError):
    pass


class DownloadFailed(NetworkFailure):
    def __init__(self, url: str, path: Path, reason: object):
        super().__init__(f"Failed to download '{url}' to '{path}': {reason}")
        self.url = url
        self.path = path
