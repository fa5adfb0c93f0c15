"""
BepInEx Mod Manager - Dialog callbacks (PySide6).

These are the production implementations of the callbacks the core takes:

    confirm(title, message) -> bool      destructive-action confirmation
    show_error(message)                  error notification
    show_message(title, message, icon)   catalog notices

A QApplication must exist before any of them is called.
"""

from __future__ import annotations

import logging
from pathlib import Path

from PySide6.QtCore import QUrl
from PySide6.QtGui import QDesktopServices
from PySide6.QtWidgets import QMessageBox

_log = logging.getLogger(__name__)

_ICONS = {
    "info": "information",
    "question": "question",
    "warning": "warning",
    "error": "critical",
}


def confirm(title: str, message: str) -> bool:
    reply = QMessageBox.question(
        None,
        title,
        message,
        QMessageBox.Yes | QMessageBox.No,
        QMessageBox.No,
    )
    return reply == QMessageBox.Yes


def show_error(message: str):
    _log.error("%s", message)
    QMessageBox.critical(None, "Error", message)


def show_message(title: str, message: str, icon: str = "info"):
    _log.info("Message '%s': %s", title, message)
    getattr(QMessageBox, _ICONS.get(icon, "information"))(None, title, message)


def open_directory(path: Path) -> bool:
    if not path.exists():
        show_error(
            f"'{path}' doesn't exist. You might have to start the game once to generate it."
        )
        return False
    if not QDesktopServices.openUrl(QUrl.fromLocalFile(str(path))):
        show_error(f"Failed to open directory: {path}")
        return False
    return True
