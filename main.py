#!/usr/bin/env python3
"""BepInEx Mod Manager - Entry Point"""

import argparse
import faulthandler
import json
import logging
import sys
import traceback
from logging.handlers import RotatingFileHandler
from pathlib import Path

from pydantic import ValidationError

import app_config
from downloader import Downloader
from errors import ModManagerError
from state_manager import StateManager
from state_schema import GameDescriptor, ModDescriptor
from state_store import StateStore


def setup_logging(log_dir: Path, debug: bool = False) -> logging.Logger:
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "bepmodmanager.log"
    formatter = logging.Formatter("%(asctime)s  %(levelname)-8s  %(name)s: %(message)s")

    handler = RotatingFileHandler(
        log_file,
        maxBytes=1 * 1024 * 1024,  # 1 MB
        backupCount=2,
        encoding="utf-8",
    )
    handler.setFormatter(formatter)
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG if debug else logging.INFO)
    root.addHandler(handler)
    root.addHandler(console)
    return logging.getLogger("bepmodmanager")


def install_crash_handler(logger: logging.Logger, log_dir: Path):
    def handle_exception(exc_type, exc_value, exc_tb):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_tb)
            return
        logger.critical(
            "Unhandled exception:\n%s",
            "".join(traceback.format_exception(exc_type, exc_value, exc_tb)),
        )

    sys.excepthook = handle_exception
    # Native crashes bypass logging entirely
    faulthandler.enable(open(log_dir / "crash.log", "w"), all_threads=True)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="BepInEx Mod Manager")
    parser.add_argument("--data-dir", type=Path)
    parser.add_argument("--config", type=Path)
    parser.add_argument("--debug", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status")
    add = sub.add_parser("add-game")
    add.add_argument("descriptor", type=Path, help="game descriptor JSON file")
    add.add_argument("install_path", nargs="?", help="defaults to the Steam library folder")
    path = sub.add_parser("set-path")
    path.add_argument("game_id")
    path.add_argument("install_path")
    select = sub.add_parser("select")
    select.add_argument("game_id")
    install = sub.add_parser("install")
    install.add_argument("descriptor", type=Path, help="mod descriptor JSON file")
    for name in ("remove", "update"):
        cmd = sub.add_parser(name)
        cmd.add_argument("mod_id")
    sub.add_parser("toggle-loader")
    sub.add_parser("toggle-enabled")
    open_dir = sub.add_parser("open")
    open_dir.add_argument("kind", choices=["game", "mods", "config"])
    return parser.parse_args(argv)


def run_command(manager: StateManager, args: argparse.Namespace) -> tuple[bool, str]:
    command = args.command
    if command == "status":
        return True, json.dumps(manager.snapshot(), indent=2)
    if command == "add-game":
        game = GameDescriptor.model_validate_json(args.descriptor.read_text(encoding="utf-8"))
        install_path = args.install_path or game.find_installation_dir()
        if install_path is None:
            return False, f"Could not find {game.name}, pass its installation path"
        return manager.add_game(game, install_path)
    if command == "set-path":
        return manager.update_install_path(args.game_id, args.install_path)
    if command == "select":
        return manager.select_game(args.game_id)
    if command == "install":
        descriptor = ModDescriptor.model_validate_json(args.descriptor.read_text(encoding="utf-8"))
        return manager.install_mod(descriptor)
    if command == "remove":
        return manager.remove_mod(args.mod_id)
    if command == "update":
        return manager.update_mod(args.mod_id)
    if command == "toggle-loader":
        return manager.toggle_modloader_installed()
    if command == "toggle-enabled":
        return manager.toggle_modloader_enabled()
    if command == "open":
        import prompts

        path = manager.directory(args.kind)
        return prompts.open_directory(path), str(path)
    return False, f"Unknown command: {command}"


def main(argv=None) -> int:
    args = parse_args(argv)

    from PySide6.QtWidgets import QApplication

    import prompts

    app = QApplication.instance() or QApplication(sys.argv[:1])

    config = app_config.load_config(args.config, error_callback=prompts.show_error)
    data_dir = args.data_dir or app_config.data_dir()
    log_dir = data_dir / "logs"
    logger = setup_logging(log_dir, debug=args.debug or config.debug_logging)
    install_crash_handler(logger, log_dir)
    logger.info("Starting BepInEx Mod Manager %s", app_config.APP_VERSION)

    store = StateStore(
        data_dir / app_config.STATE_FILE_NAME,
        confirm_callback=prompts.confirm,
        error_callback=prompts.show_error,
    )
    downloader = Downloader(
        cache_dir=config.resolved_cache_dir(),
        timeout=config.download_timeout,
        error_callback=prompts.show_error,
    )
    manager = StateManager(
        store,
        downloader,
        confirm_callback=prompts.confirm,
        error_callback=prompts.show_error,
        message_callback=prompts.show_message,
    )
    manager.start()
    try:
        ok, message = run_command(manager, args)
    except (OSError, ValidationError) as exc:
        ok, message = False, f"Invalid descriptor file: {exc}"
    except ModManagerError as exc:
        ok, message = False, str(exc)
    finally:
        manager.close()
        app.quit()

    print(message)
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
