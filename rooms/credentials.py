"""Persisted username/token pair, read at startup and cleared on logout."""
from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from rooms.models import Credential
from security.policy import policy

_logger = logging.getLogger(__name__)


class CredentialStore:
    """Key-value JSON file holding ``username`` and ``token``."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path) if path is not None else policy.state_dir / "credentials.json"

    def load(self) -> Optional[Credential]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            _logger.warning("Ignoring unreadable credential store %s: %s", self.path, exc)
            return None
        if not isinstance(data, dict):
            return None
        username = data.get("username")
        token = data.get("token")
        if not isinstance(username, str) or not isinstance(token, str):
            return None
        if not username or not token:
            return None
        return Credential(username=username, token=token)

    def save(self, credential: Credential) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps({"username": credential.username, "token": credential.token})
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".credentials-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass


__all__ = ["CredentialStore"]
