"""
BepInEx Mod Manager - State persistence.

The state document is saved after every mutation.  Each save first moves the
previous document to ``<name>.bkp`` (falling back to a copy), then writes the
new document to a temporary sibling and replaces the target with it.  If the
write fails and a backup was made, the backup is put back in place.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Optional

from pydantic import ValidationError

from state_schema import PersistedState

_log = logging.getLogger(__name__)

BACKUP_SUFFIX = ".bkp"


class StateStore:
    def __init__(
        self,
        path: str | Path,
        confirm_callback: Optional[Callable[[str, str], bool]] = None,
        error_callback: Optional[Callable[[str], None]] = None,
    ):
        self.path = Path(path)
        self.backup_path = self.path.with_name(self.path.name + BACKUP_SUFFIX)
        self._confirm_cb = confirm_callback or (lambda title, msg: False)
        self._error_cb = error_callback or _log.error

    def show_error(self, msg: str):
        self._error_cb(msg)

    # ── Load ──────────────────────────────────────────────────────────

    def load(self) -> PersistedState:
        if not self.path.exists():
            _log.info("No %s found", self.path.name)
            return PersistedState()

        try:
            raw = self.path.read_bytes()
        except OSError as exc:
            self.show_error(f"Failed to read {self.path.name}: {exc}")
            return PersistedState()

        try:
            return PersistedState.model_validate_json(raw)
        except ValidationError as exc:
            # A corrupt document (bad JSON or bad UTF-8) resets to the empty
            # state without a dialog.
            _log.error("Failed to parse %s: %s", self.path.name, exc)
            return PersistedState()

    # ── Save ──────────────────────────────────────────────────────────

    def save(self, state: PersistedState) -> bool:
        """Persist ``state``.  Returns False if nothing was written."""
        proceed, backup = self.backup()
        if not proceed:
            return False

        try:
            self._write(state)
        except (OSError, ValueError) as exc:
            if backup is not None:
                self.show_error(
                    f"Failed to write to {self.path.name}: {exc}. Trying to restore backup."
                )
                self.restore_backup(backup)
            else:
                self.show_error(f"Failed to write to {self.path.name}: {exc}")
            return False
        return True

    def backup(self) -> tuple[bool, Optional[Path]]:
        """Move the current document aside.

        Returns ``(proceed, backup_path)``.  ``proceed`` is False when the
        backup failed and the user declined to overwrite without one.
        """
        if not self.path.exists():
            return True, None

        try:
            os.replace(self.path, self.backup_path)
            return True, self.backup_path
        except OSError as exc:
            _log.error("Failed to backup %s: %s. Trying to copy it instead.", self.path.name, exc)

        try:
            shutil.copyfile(self.path, self.backup_path)
            return True, self.backup_path
        except OSError as exc:
            _log.error("Failed to copy %s: %s", self.path.name, exc)

        overwrite = self._confirm_cb(
            f"Failed to backup {self.path.name}",
            f"Failed to backup {self.path.name}. Do you want to try and overwrite it anyway?",
        )
        if not overwrite:
            _log.info("User chose to NOT overwrite %s", self.path.name)
            return False, None
        _log.info("User chose to overwrite %s", self.path.name)
        return True, None

    def restore_backup(self, backup: Path) -> bool:
        if not backup.exists():
            self.show_error("Backup not found")
            return False

        try:
            os.replace(backup, self.path)
            return True
        except OSError as exc:
            _log.error("Failed to rename backup: %s. Trying to copy it instead.", exc)

        try:
            shutil.copyfile(backup, self.path)
            return True
        except OSError as exc:
            self.show_error(
                f"Failed to restore backup: {exc}\n\n"
                f"The state file '{self.path}' could not be restored. "
                f"The previous state is kept at '{backup}'."
            )
            return False

    def _write(self, state: PersistedState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = state.to_json()
        fd, temp_path = tempfile.mkstemp(
            prefix=self.path.name + ".", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(temp_path, self.path)
        except Exception:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise
