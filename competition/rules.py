"""Season rules: card thresholds, ban lengths and squad composition limits."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields
from typing import Any, Mapping


@dataclass(frozen=True)
class SeasonRules:
    red_card_ban: int = 1
    second_yellow_ban: int = 1
    yellow_threshold: int = 2
    yellow_ban: int = 1
    # Team matches after which an unconverted yellow expires; None = whole season
    accumulation_window: int | None = None
    max_foreign_starters: int = 5
    starters_required: int = 11
    min_substitutes: int = 1
    max_substitutes: int = 5

    def __post_init__(self) -> None:
        for name in ("red_card_ban", "second_yellow_ban", "yellow_threshold", "yellow_ban"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1 (got {getattr(self, name)})")
        if self.accumulation_window is not None and self.accumulation_window < 1:
            raise ValueError("accumulation_window must be >= 1 or None")
        if self.min_substitutes > self.max_substitutes:
            raise ValueError("min_substitutes cannot exceed max_substitutes")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "SeasonRules":
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_json(cls, raw: str | None) -> "SeasonRules":
        return cls.from_dict(json.loads(raw) if raw else None)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)


DEFAULT_RULES = SeasonRules()
