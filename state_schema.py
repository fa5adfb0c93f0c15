"""
Persisted state schema for BepInEx Mod Manager.

The whole installation state lives in one JSON document (``data.json`` in the
per-user data directory).  It is rewritten after every mutating operation.

Document layout example:

{
    "selectedGameId": "Desperados3",
    "games": {
        "Desperados3": {
            "gameDescriptor": {"id": "Desperados3", "name": "Desperados III", "appid": "610370"},
            "installPath": "C:/Games/Desperados III",
            "mods": {
                "d3_unlocker": {
                    "descriptor": {"id": "d3_unlocker", "downloadUrl": "...", ...},
                    "version": "1.2.0",
                    "enabled": true
                }
            },
            "modLoader": {"enabled": true, "version": "5.4.4", "contentHash": "9f1c..."}
        }
    },
    "shownMessageIds": ["welcome"]
}

``modLoader`` is ``null`` while the loader is absent, and ``version`` is ``null``
when the loader binary no longer matches what this tool installed.  In memory
the status is a tagged union (absent / known version / drifted version).
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Annotated, Any, Literal, Optional, Union

from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

_log = logging.getLogger(__name__)

LOADER_DIR_NAME = "BepInEx"


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _check_version(v: str) -> str:
    try:
        Version(v)
    except InvalidVersion:
        raise ValueError(f"Invalid version {v!r}")
    return v


def _check_specifier(v: str | None) -> str | None:
    if v is None:
        return None
    try:
        SpecifierSet(v)
    except InvalidSpecifier:
        raise ValueError(f"Invalid version range {v!r}")
    return v


# ── Catalog documents ─────────────────────────────────────────────────


class GameDescriptor(_Model):
    id: str
    name: str
    appid: Optional[str] = None
    recommended_mods: list[str] = Field(default_factory=list)

    def find_installation_dir(self) -> Optional[str]:
        """Return the default Steam library folder for this game if it exists."""
        if sys.platform == "win32":
            base = Path(r"C:\Program Files (x86)\Steam\steamapps\common")
        else:
            base = Path.home() / ".steam" / "steam" / "steamapps" / "common"
        path = base / self.name
        return str(path) if path.is_dir() else None


class ModDescriptor(_Model):
    """One installable mod as published in the catalog.

    ``files`` is the explicit manifest of paths (relative to the installation
    root) the mod owns.  Without it removal falls back to matching plugin
    entries by mod id prefix.
    """

    id: str
    name: str
    download_url: str = Field(
        validation_alias=AliasChoices("downloadUrl", "download_url", "download"),
        serialization_alias="downloadUrl",
    )
    version: str
    extract_to_root: bool = Field(
        default=False,
        validation_alias=AliasChoices("extractToRoot", "extract_to_root"),
        serialization_alias="extractToRoot",
    )
    files: Optional[list[str]] = None
    source: Optional[str] = None
    homepage: Optional[str] = None
    description: Optional[str] = None
    app_version: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("appVersion", "app_version", "ytinu_version"),
        serialization_alias="appVersion",
    )

    @field_validator("version")
    @classmethod
    def _validate_version(cls, v: str) -> str:
        return _check_version(v)

    @field_validator("app_version")
    @classmethod
    def _validate_range(cls, v: str | None) -> str | None:
        return _check_specifier(v)

    def is_compatible(self, app_version: str) -> bool:
        if not self.app_version:
            return True
        return Version(app_version) in SpecifierSet(self.app_version)


class CatalogMessage(_Model):
    id: str
    version: str = ""
    message: str
    icon: Literal["info", "question", "error", "warning"] = "info"
    show_always: bool = Field(
        default=False,
        validation_alias=AliasChoices("showAlways", "show_always"),
        serialization_alias="showAlways",
    )

    @field_validator("version")
    @classmethod
    def _check_range(cls, v: str) -> str:
        return _check_specifier(v) or ""

    def applies_to(self, app_version: str) -> bool:
        return Version(app_version) in SpecifierSet(self.version)


# ── Installed state ───────────────────────────────────────────────────


class InstalledMod(_Model):
    descriptor: ModDescriptor
    version: str
    enabled: bool = True

    @property
    def has_update(self) -> bool:
        return Version(self.descriptor.version) > Version(self.version)


class ModLoaderAbsent(_Model):
    kind: Literal["absent"] = "absent"

    @property
    def installed(self) -> bool:
        return False


class ModLoaderKnownVersion(_Model):
    kind: Literal["known"] = "known"
    enabled: bool
    version: str
    content_hash: Optional[str] = None

    @property
    def installed(self) -> bool:
        return True


class ModLoaderDriftedVersion(_Model):
    """Loader present, but not (or no longer) the build this tool installed."""

    kind: Literal["drifted"] = "drifted"
    enabled: bool
    content_hash: Optional[str] = None

    @property
    def installed(self) -> bool:
        return True


ModLoaderStatus = Annotated[
    Union[ModLoaderAbsent, ModLoaderKnownVersion, ModLoaderDriftedVersion],
    Field(discriminator="kind"),
]


class GameRecord(_Model):
    game_descriptor: GameDescriptor
    install_path: str
    mods: dict[str, InstalledMod] = Field(default_factory=dict)
    mod_loader: ModLoaderStatus = Field(default_factory=ModLoaderAbsent)

    @field_validator("mod_loader", mode="before")
    @classmethod
    def _read_loader(cls, v: Any) -> Any:
        if v is None:
            return {"kind": "absent"}
        if isinstance(v, dict) and "kind" not in v:
            kind = "known" if v.get("version") is not None else "drifted"
            return {**v, "kind": kind}
        return v

    @field_serializer("mod_loader")
    def _write_loader(self, status: Any) -> Optional[dict[str, Any]]:
        if isinstance(status, ModLoaderAbsent):
            return None
        return {
            "enabled": status.enabled,
            "version": getattr(status, "version", None),
            "contentHash": status.content_hash,
        }

    @property
    def install_dir(self) -> Path:
        return Path(self.install_path)

    @property
    def loader_dir(self) -> Path:
        return self.install_dir / LOADER_DIR_NAME

    @property
    def plugins_dir(self) -> Path:
        return self.loader_dir / "plugins"

    @property
    def config_dir(self) -> Path:
        return self.loader_dir / "config"


class PersistedState(_Model):
    selected_game_id: Optional[str] = None
    games: dict[str, GameRecord] = Field(default_factory=dict)
    shown_message_ids: set[str] = Field(default_factory=set)

    @field_serializer("shown_message_ids")
    def _write_sorted(self, ids: set[str]) -> list[str]:
        return sorted(ids)

    @model_validator(mode="after")
    def _heal_selection(self) -> PersistedState:
        if self.selected_game_id is not None and self.selected_game_id not in self.games:
            replacement = next(iter(self.games), None)
            _log.warning(
                "Selected game %r is not configured, selecting %r instead",
                self.selected_game_id,
                replacement,
            )
            self.selected_game_id = replacement
        return self

    def current_game(self) -> Optional[GameRecord]:
        if self.selected_game_id is None:
            return None
        return self.games.get(self.selected_game_id)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)
