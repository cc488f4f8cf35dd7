"""
Seeded drawing of lots for final-mode tie-breaks.
Same seed and same tied group always give the same draw, so a recomputed
table is reproducible and auditable.
"""
from __future__ import annotations

import random
import zlib
from typing import Sequence


class SeededRNG:
    """Wrapper around random.Random for reproducible draws."""

    def __init__(self, seed: int | None = None) -> None:
        self._rng = random.Random(seed)
        self._seed = seed

    @property
    def seed(self) -> int | None:
        return self._seed

    def random(self) -> float:
        return self._rng.random()

    def shuffle(self, seq: list) -> None:
        self._rng.shuffle(seq)


def derive_lot_seed(season_id: str) -> int:
    """Default seed for a season without a recorded one: CRC32 of the season id."""
    return zlib.crc32(season_id.encode("utf-8"))


def draw_lots(team_ids: Sequence[str], seed: int) -> list[str]:
    """
    Order a tied group by lot. The group is sorted first and its members are
    mixed into the seed, so the draw depends only on (seed, group).
    """
    group = sorted(team_ids)
    group_seed = seed ^ zlib.crc32("|".join(group).encode("utf-8"))
    rng = SeededRNG(group_seed)
    rng.shuffle(group)
    return group
