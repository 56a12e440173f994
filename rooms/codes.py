"""Random 4-letter room codes."""
from __future__ import annotations

import random
import string
from typing import Optional

from security.validation import ROOM_ID_LENGTH

ROOM_CODE_ALPHABET = string.ascii_uppercase


class RoomCodeGenerator:
    """Draw room codes uniformly from ``A``-``Z``.

    Codes are public identifiers, not secrets, so a plain PRNG is enough. An
    explicit ``rng`` makes draws reproducible in tests.
    """

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self._rng = rng or random.Random()

    def generate(self) -> str:
        return "".join(self._rng.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_ID_LENGTH))


__all__ = ["ROOM_CODE_ALPHABET", "RoomCodeGenerator"]
