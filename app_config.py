"""
BepInEx Mod Manager - Application configuration and per-user directories.

- data dir:   data.json (installation state), logs
- cache dir:  cache/ (downloaded archives, reused across games)
- config dir: config.json (this file's AppConfig)
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Callable, Optional

import appdirs
from pydantic import BaseModel, ValidationError

_log = logging.getLogger(__name__)

APP_NAME = "BepModManager"
APP_AUTHOR = "BepModManager"
APP_VERSION = "0.1.0"
CONFIG_FILE_NAME = "config.json"
STATE_FILE_NAME = "data.json"


def data_dir() -> Path:
    return Path(appdirs.user_data_dir(APP_NAME, APP_AUTHOR))


def config_dir() -> Path:
    return Path(appdirs.user_config_dir(APP_NAME, APP_AUTHOR))


def default_cache_dir() -> Path:
    return Path(appdirs.user_cache_dir(APP_NAME, APP_AUTHOR)) / "cache"


class AppConfig(BaseModel):
    use_download_cache: bool = True
    cache_dir: Optional[str] = None
    download_timeout: Optional[float] = None
    debug_logging: bool = False

    def resolved_cache_dir(self) -> Optional[Path]:
        """The shared download cache, or None when caching is switched off."""
        if not self.use_download_cache:
            return None
        if self.cache_dir:
            return Path(self.cache_dir)
        return default_cache_dir()


def load_config(
    path: Optional[Path] = None, error_callback: Optional[Callable[[str], None]] = None
) -> AppConfig:
    path = path or config_dir() / CONFIG_FILE_NAME
    if not path.is_file():
        return AppConfig()
    try:
        return AppConfig.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValidationError) as exc:
        (error_callback or _log.error)(f"Failed to load config file: {exc}")
        return AppConfig()


def store_config(
    config: AppConfig,
    path: Optional[Path] = None,
    error_callback: Optional[Callable[[str], None]] = None,
) -> bool:
    path = path or config_dir() / CONFIG_FILE_NAME
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(suffix=".json", prefix="config_", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(config.model_dump(), fh, indent=2)
            Path(temp_path).replace(path)
        except Exception:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise
    except OSError as exc:
        (error_callback or _log.error)(f"Failed to save config file: {exc}")
        return False
    return True
