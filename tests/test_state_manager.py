"""
Tests for StateManager: the operation boundary, persistence after every
operation, catalog messages and the state snapshot.
"""

import json

import pytest

from errors import UnknownDirectory
from modloader_manager import BEPINEX_DOWNLOAD_URL, ENABLE_MARKER
from state_manager import StateManager
from state_schema import CatalogMessage, InstalledMod
from state_store import StateStore
from tests.conftest import make_corrupt_zip_bytes, make_mod, make_zip_bytes

BEPINEX_ZIP = {
    "BepInEx/core/BepInEx.dll": "core v5.4.4",
    "doorstop_config.ini": "",
    "winhttp.dll": "doorstop",
}


class Messages:
    def __init__(self):
        self.shown = []

    def __call__(self, title, msg, icon):
        self.shown.append((title, msg, icon))


@pytest.fixture
def data_file(tmp_path):
    return tmp_path / "data" / "data.json"


@pytest.fixture
def messages():
    return Messages()


@pytest.fixture
def manager(data_file, session, downloader, prompts, messages):
    session.files[BEPINEX_DOWNLOAD_URL] = make_zip_bytes(BEPINEX_ZIP)
    store = StateStore(data_file, prompts.confirm, prompts.error)
    sm = StateManager(
        store,
        downloader,
        confirm_callback=prompts.confirm,
        error_callback=prompts.error,
        message_callback=messages,
        app_version="0.1.0",
    )
    sm.start()
    return sm


@pytest.fixture
def configured(manager, game_descriptor, game_dir):
    ok, msg = manager.add_game(game_descriptor, str(game_dir))
    assert ok, msg
    return manager


def saved(data_file):
    return json.loads(data_file.read_text(encoding="utf-8"))


# ── end to end ───────────────────────────────────────────────────────────────

def test_full_lifecycle(manager, data_file, session, prompts, game_descriptor, game_dir):
    assert saved(data_file) == {"selectedGameId": None, "games": {}, "shownMessageIds": []}

    ok, msg = manager.add_game(game_descriptor, str(game_dir))
    assert ok, msg
    doc = saved(data_file)
    assert list(doc["games"]) == ["Desperados3"]
    assert doc["selectedGameId"] == "Desperados3"
    assert doc["games"]["Desperados3"]["modLoader"] is None

    ok, msg = manager.toggle_modloader_installed()
    assert ok, msg
    assert saved(data_file)["games"]["Desperados3"]["modLoader"]["version"] == "5.4.4"

    mod = make_mod("fastforward", url="https://example.com/FastForward.dll")
    session.files[mod.download_url] = b"MZ"
    ok, msg = manager.install_mod(mod)
    assert ok, msg
    plugins = game_dir / "BepInEx" / "plugins"
    assert [p.name for p in plugins.iterdir()] == ["fastforward.dll"]
    assert list(saved(data_file)["games"]["Desperados3"]["mods"]) == ["fastforward"]

    ok, msg = manager.remove_mod("fastforward")
    assert ok, msg
    assert list(plugins.iterdir()) == []
    assert saved(data_file)["games"]["Desperados3"]["mods"] == {}

    manager.install_mod(mod)
    prompts.answers = [False]
    ok, _ = manager.toggle_modloader_installed()
    assert not ok
    assert (game_dir / "BepInEx").is_dir()
    assert "fastforward" in saved(data_file)["games"]["Desperados3"]["mods"]

    prompts.answers = [True]
    ok, msg = manager.toggle_modloader_installed()
    assert ok, msg
    assert not (game_dir / "BepInEx").exists()
    record = saved(data_file)["games"]["Desperados3"]
    assert record["mods"] == {}
    assert record["modLoader"] is None


def test_restart_restores_state(configured, data_file, downloader, prompts):
    configured.toggle_modloader_installed()

    again = StateManager(StateStore(data_file), downloader, prompts.confirm, prompts.error)
    again.start()
    assert again.state.selected_game_id == "Desperados3"
    assert again.state.current_game().mod_loader.installed


# ── games ────────────────────────────────────────────────────────────────────

def test_add_game_twice(configured, game_descriptor, game_dir):
    ok, msg = configured.add_game(game_descriptor, str(game_dir))
    assert not ok
    assert "already configured" in msg


def test_add_game_invalid_path(manager, game_descriptor, tmp_path, prompts):
    ok, msg = manager.add_game(game_descriptor, str(tmp_path / "missing"))
    assert not ok
    assert "doesn't exist" in msg
    assert manager.state.games == {}
    assert prompts.errors == []


def test_update_install_path(configured, tmp_path):
    new_dir = tmp_path / "moved"
    new_dir.mkdir()
    ok, msg = configured.update_install_path("Desperados3", str(new_dir))
    assert ok, msg
    assert configured.state.current_game().install_dir == new_dir

    ok, _ = configured.update_install_path("Unknown", str(new_dir))
    assert not ok


def test_select_unknown_game_keeps_selection(configured):
    ok, _ = configured.select_game("Unknown")
    assert not ok
    assert configured.state.selected_game_id == "Desperados3"


def test_operations_without_game(manager):
    ok, msg = manager.install_mod(make_mod())
    assert not ok
    assert msg == "No game set up or selected"


def test_start_reconciles_selected_game(configured, data_file, downloader, prompts, game_dir):
    configured.toggle_modloader_installed()
    (game_dir / ENABLE_MARKER).unlink()

    again = StateManager(StateStore(data_file), downloader, prompts.confirm, prompts.error)
    again.start()
    assert not again.state.current_game().mod_loader.enabled


# ── error reporting ──────────────────────────────────────────────────────────

def test_user_input_errors_are_not_shown(configured, prompts):
    ok, msg = configured.remove_mod("ghost")
    assert not ok
    assert msg == "Mod 'ghost' is not installed"
    assert prompts.errors == []


def test_io_failures_are_shown(configured, prompts, game_dir):
    configured.toggle_modloader_installed()
    (game_dir / ENABLE_MARKER).unlink()

    ok, msg = configured.set_modloader_enabled(False)
    assert not ok
    assert prompts.errors == [msg]


def test_corrupt_archive_is_reported(configured, session, prompts, data_file):
    mod = make_mod("coolmod")
    session.files[mod.download_url] = make_corrupt_zip_bytes()

    ok, msg = configured.install_mod(mod)
    assert not ok
    assert prompts.errors and prompts.errors[0].startswith("Failed to extract:")
    assert saved(data_file)["games"]["Desperados3"]["mods"] == {}


def test_unexpected_error_still_persists(configured, monkeypatch, data_file):
    class Exploding:
        def __init__(self, game):
            self.game = game

        def install(self, descriptor):
            self.game.mods[descriptor.id] = InstalledMod(
                descriptor=descriptor, version=descriptor.version
            )
            raise RuntimeError("boom")

    monkeypatch.setattr(configured, "installer", Exploding)
    with pytest.raises(RuntimeError):
        configured.install_mod(make_mod("half"))
    assert "half" in saved(data_file)["games"]["Desperados3"]["mods"]


def test_update_mods_meta(configured, session):
    mod = make_mod("fast", url="https://example.com/fast.dll")
    session.files[mod.download_url] = b"MZ"
    configured.install_mod(mod)

    ok, msg = configured.update_mods_meta(
        {"fast": make_mod("fast", url=mod.download_url, version="1.1.0")}
    )
    assert ok, msg
    installed = configured.state.current_game().mods["fast"]
    assert installed.has_update
    assert installed.version == "1.0.0"


# ── messages ─────────────────────────────────────────────────────────────────

def test_show_messages(manager, messages, data_file):
    catalog = [
        CatalogMessage(id="welcome", message="Hello"),
        CatalogMessage(id="outage", message="Servers down", icon="warning", show_always=True),
        CatalogMessage(id="future", message="Later", version=">=9.0"),
    ]
    assert manager.show_messages(catalog) == ["welcome", "outage"]
    assert manager.show_messages(catalog) == ["outage"]
    assert messages.shown[1] == ("outage", "Servers down", "warning")
    assert saved(data_file)["shownMessageIds"] == ["outage", "welcome"]


# ── queries ──────────────────────────────────────────────────────────────────

def test_directory(configured, game_dir):
    assert configured.directory("game") == game_dir
    assert configured.directory("mods") == game_dir / "BepInEx" / "plugins"
    assert configured.directory("config") == game_dir / "BepInEx" / "config"
    with pytest.raises(UnknownDirectory):
        configured.directory("saves")


def test_snapshot(configured):
    snap = configured.snapshot()
    assert snap["version"] == "0.1.0"
    assert snap["selectedGameId"] == "Desperados3"
    assert snap["games"]["Desperados3"]["gameDescriptor"]["name"] == "Desperados III"
    assert snap["games"]["Desperados3"]["modLoader"] is None
    json.dumps(snap)
