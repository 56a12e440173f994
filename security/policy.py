"""Centralised runtime policy for the room host.

The trusted origin and the room API host are fixed constants: the host trusts
exactly one web origin. The remaining tunables can be overridden by
environment variables so that test rigs and development builds can adjust
them without code changes.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

TRUSTED_ORIGIN = "https://connectmeifucan.com"
API_BASE_URL = "https://api.connectmeifucan.com"


def _load_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        parsed = float(value)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _load_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _load_path(name: str, default: Path) -> Path:
    value = os.environ.get(name)
    if not value:
        return default
    return Path(value).expanduser()


@dataclass(frozen=True)
class RoomPolicy:
    """Holds the trust and network limits shared by UI, CLI and bridge."""

    trusted_origin: str = TRUSTED_ORIGIN
    api_base_url: str = API_BASE_URL
    auth_page_path: str = "/index.com.html"
    auth_complete_path: str = "/index.html"
    room_page_path: str = "/index.html"
    request_timeout: float = 8.0
    allow_loopback: bool = True
    state_dir: Path = Path.home() / ".connectme"

    @property
    def auth_page_url(self) -> str:
        return self.trusted_origin + self.auth_page_path

    @property
    def room_page_url(self) -> str:
        return self.trusted_origin + self.room_page_path


def load_policy() -> RoomPolicy:
    """Load the room policy considering environment overrides."""

    return RoomPolicy(
        request_timeout=_load_float("CMUC_REQUEST_TIMEOUT", 8.0),
        allow_loopback=_load_bool("CMUC_ALLOW_LOOPBACK", True),
        state_dir=_load_path("CMUC_STATE_DIR", Path.home() / ".connectme"),
    )


policy = load_policy()


__all__ = ["API_BASE_URL", "RoomPolicy", "TRUSTED_ORIGIN", "load_policy", "policy"]
