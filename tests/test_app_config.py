"""
Tests for AppConfig loading / storing.
"""

from pathlib import Path

import app_config
from app_config import AppConfig, load_config, store_config


def test_defaults_when_missing(tmp_path):
    config = load_config(tmp_path / "config.json")
    assert config == AppConfig()
    assert config.resolved_cache_dir() == app_config.default_cache_dir()
    assert config.resolved_cache_dir().name == "cache"


def test_store_and_load(tmp_path):
    path = tmp_path / "nested" / "config.json"
    config = AppConfig(cache_dir=str(tmp_path / "dl"), download_timeout=30, debug_logging=True)
    assert store_config(config, path)
    assert load_config(path) == config
    assert load_config(path).resolved_cache_dir() == Path(tmp_path / "dl")
    assert [p.name for p in path.parent.iterdir()] == ["config.json"]


def test_cache_disabled():
    assert AppConfig(use_download_cache=False).resolved_cache_dir() is None


def test_invalid_file_reports_and_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text('{"download_timeout": "soon"}', encoding="utf-8")
    errors = []
    assert load_config(path, error_callback=errors.append) == AppConfig()
    assert len(errors) == 1
    assert errors[0].startswith("Failed to load config file")
