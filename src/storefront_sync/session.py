"""Persisted login session with the current account id as a reactive value."""

import json
import logging
import os
from pathlib import Path
from typing import Optional

from PySide6.QtCore import QObject, Signal

from storefront_sync.config import Config

logger = logging.getLogger(__name__)

SESSION_KEYS = ("account_id", "email", "role")


class SessionStore(QObject):
    """Current-session keys stored in a small JSON file.

    Every change is written with a single atomic file replace, so a
    reader never sees half of a login or half of a logout.
    """

    account_changed = Signal(object)  # account id, or None after logout

    def __init__(self, path: Optional[str | Path] = None, parent=None):
        super().__init__(parent)
        self.path = Path(path) if path is not None else Path(Config.SESSION_FILE)
        self._data = self._read()

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            logger.warning("Ignoring unreadable session file %s", self.path)
            return {}
        return {k: data[k] for k in SESSION_KEYS if k in data}

    def _write(self, data: dict):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
        os.replace(tmp, self.path)
        self._data = data

    @property
    def current_account_id(self) -> Optional[int]:
        return self._data.get("account_id")

    @property
    def email(self) -> Optional[str]:
        return self._data.get("email")

    @property
    def role(self) -> Optional[str]:
        return self._data.get("role")

    @property
    def is_logged_in(self) -> bool:
        return self.current_account_id is not None

    def login(self, account_id: int, email: str, role: str):
        self._write({"account_id": account_id, "email": email, "role": role})
        self.account_changed.emit(account_id)

    def set_role(self, role: str):
        if not self.is_logged_in:
            return
        self._write({**self._data, "role": role})

    def logout(self):
        """Clear every session key in one write."""
        self._write({})
        self.account_changed.emit(None)
