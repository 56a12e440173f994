"""Value types shared by the session state machine, API client and bridge."""
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Credential:
    username: str
    token: str = field(repr=False)


@dataclass(frozen=True)
class RoomSession:
    """An entered room. Never mutated; a new value is built per room entry."""

    room_id: str
    username: str
    token: str = field(repr=False)
    is_host: bool = False

    def describe(self) -> str:
        role = "Host" if self.is_host else "Player"
        return f"Room: {self.room_id} | {role} | {self.username}"
