"""
Data models for the competition engine.
Domain objects only; no persistence or API logic.

Season-centric architecture: teams register for a season; approved season teams
play scheduled matches; each match has two lineups (home/away) reviewed
independently; card events feed suspensions; finished matches feed standings.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


# ---------- Registration status (state machine) ----------
class RegistrationStatus(str, Enum):
    """Season registration: DRAFT_INVITE → INVITED → ACCEPTED → SUBMITTED → APPROVED."""
    DRAFT_INVITE = "DRAFT_INVITE"
    INVITED = "INVITED"
    ACCEPTED = "ACCEPTED"
    DECLINED = "DECLINED"  # terminal
    SUBMITTED = "SUBMITTED"
    REQUEST_CHANGE = "REQUEST_CHANGE"
    APPROVED = "APPROVED"  # terminal-success
    REJECTED = "REJECTED"  # terminal


class ReviewOutcome(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    REQUEST_CHANGE = "REQUEST_CHANGE"


# ---------- Match status (state machine) ----------
class MatchStatus(str, Enum):
    """Match lifecycle: SCHEDULED → PREPARING → READY → IN_PROGRESS → FINISHED → REPORTED → COMPLETED."""
    SCHEDULED = "SCHEDULED"
    PREPARING = "PREPARING"
    READY = "READY"
    IN_PROGRESS = "IN_PROGRESS"
    FINISHED = "FINISHED"
    REPORTED = "REPORTED"
    COMPLETED = "COMPLETED"


# Matches in these states count for standings and serve suspensions
PLAYED_STATUSES = frozenset({MatchStatus.FINISHED, MatchStatus.REPORTED, MatchStatus.COMPLETED})


# ---------- Lineup ----------
class Side(str, Enum):
    HOME = "home"
    AWAY = "away"


class LineupStatus(str, Enum):
    """Per-side approval track: PENDING → SUBMITTED → APPROVED | REJECTED."""
    PENDING = "PENDING"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"  # locked; only unlock moves it back to SUBMITTED
    REJECTED = "REJECTED"


class LineupOutcome(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"


# ---------- Discipline ----------
class CardType(str, Enum):
    YELLOW = "yellow"
    RED = "red"


class SuspensionReason(str, Enum):
    RED_CARD = "RED_CARD"
    TWO_YELLOW_CARDS = "TWO_YELLOW_CARDS"
    ACCUMULATION = "ACCUMULATION"
    OTHER = "OTHER"


class SuspensionStatus(str, Enum):
    ACTIVE = "active"
    SERVED = "served"
    CANCELLED = "cancelled"
    ARCHIVED = "archived"


# ---------- Standings ----------
class StandingsMode(str, Enum):
    LIVE = "live"
    FINAL = "final"


class OverridePolicy(str, Enum):
    """What recompute does with manual standings adjustments."""
    PRESERVE = "preserve"
    DISCARD = "discard"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


# ---------- Season ----------
@dataclass
class Season:
    """
    One edition of the competition. rules_json holds the season rules
    (see competition.rules.SeasonRules); lot_seed is recorded on the first
    final-mode standings recompute.
    """
    id: str
    name: str
    required_team_count: int
    rules_json: str
    created_at: datetime
    lot_seed: int | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "required_team_count": self.required_team_count,
            "created_at": self.created_at.isoformat(),
        }
        if self.lot_seed is not None:
            d["lot_seed"] = self.lot_seed
        return d


# ---------- SeasonRegistration ----------
@dataclass
class SeasonRegistration:
    """
    A team's participation record for one season. Its id doubles as the
    season team id used by matches, lineups, rosters and standings.
    Never deleted, only status-transitioned.
    """
    id: str
    season_id: str
    team_id: str
    status: str  # RegistrationStatus value
    reviewer_note: str | None
    submission_payload: dict[str, Any] | None
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "season_id": self.season_id,
            "team_id": self.team_id,
            "status": self.status,
            "reviewer_note": self.reviewer_note,
            "submission_payload": self.submission_payload,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


# ---------- SeasonPlayer (roster collaborator) ----------
@dataclass
class SeasonPlayer:
    """Approved season-player record. Read-only fact for the core."""
    season_id: str
    season_team_id: str
    player_id: str
    is_foreign: bool = False
    status: str = "approved"  # pending | approved | rejected

    def to_dict(self) -> dict[str, Any]:
        return {
            "season_id": self.season_id,
            "season_team_id": self.season_team_id,
            "player_id": self.player_id,
            "is_foreign": self.is_foreign,
            "status": self.status,
        }


# ---------- Match ----------
@dataclass
class Match:
    """
    One fixture between two season teams. Status moves forward only.
    officials_complete / missing_officials come from the officials collaborator;
    the report flags from the reporting collaborator.
    """
    id: str
    season_id: str
    home_team_id: str
    away_team_id: str
    status: str  # MatchStatus value
    scheduled_at: datetime
    round_number: int | None = None
    officials_complete: bool = False
    missing_officials: list[str] = field(default_factory=list)
    officials_assignment_started: bool = False
    referee_report_submitted: bool = False
    supervisor_report_submitted: bool = False
    home_score: int | None = None
    away_score: int | None = None
    result_processed: bool = False
    version: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def team_ids(self) -> tuple[str, str]:
        return (self.home_team_id, self.away_team_id)

    def team_for_side(self, side: str) -> str:
        return self.home_team_id if side == Side.HOME else self.away_team_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "season_id": self.season_id,
            "home_team_id": self.home_team_id,
            "away_team_id": self.away_team_id,
            "status": self.status,
            "scheduled_at": self.scheduled_at.isoformat(),
            "round_number": self.round_number,
            "officials_complete": self.officials_complete,
            "missing_officials": list(self.missing_officials),
            "referee_report_submitted": self.referee_report_submitted,
            "supervisor_report_submitted": self.supervisor_report_submitted,
            "home_score": self.home_score,
            "away_score": self.away_score,
            "version": self.version,
        }


# ---------- LineupSubmission ----------
@dataclass
class LineupSubmission:
    """One per (match, side). Created empty/PENDING when the match enters PREPARING."""
    id: str
    match_id: str
    side: str  # Side value
    season_team_id: str
    starters: list[str]
    substitutes: list[str]
    formation: str | None
    kit_type: str | None
    status: str  # LineupStatus value
    rejection_reason: str | None = None
    version: int = 1
    updated_at: datetime | None = None

    def player_ids(self) -> list[str]:
        return list(self.starters) + list(self.substitutes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "match_id": self.match_id,
            "side": self.side,
            "season_team_id": self.season_team_id,
            "starters": list(self.starters),
            "substitutes": list(self.substitutes),
            "formation": self.formation,
            "kit_type": self.kit_type,
            "status": self.status,
            "rejection_reason": self.rejection_reason,
            "version": self.version,
        }


# ---------- CardEvent ----------
@dataclass(frozen=True)
class CardEvent:
    """Immutable, append-only input to the suspension ledger."""
    match_id: str
    player_id: str
    team_id: str
    card_type: str  # CardType value
    minute: int
    id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "match_id": self.match_id,
            "player_id": self.player_id,
            "team_id": self.team_id,
            "card_type": self.card_type,
            "minute": self.minute,
        }


# ---------- Suspension ----------
@dataclass
class Suspension:
    """
    Ban for a number of upcoming team matches. key is deterministic
    ("{player}:{trigger_match}:{reason}") so recalculation never duplicates.
    served_matches never exceeds matches_banned.
    """
    key: str
    season_id: str
    player_id: str
    team_id: str
    reason: str  # SuspensionReason value
    matches_banned: int
    served_matches: int
    status: str  # SuspensionStatus value
    trigger_match_id: str | None
    manual: bool = False
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def remaining(self) -> int:
        return max(0, self.matches_banned - self.served_matches)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "season_id": self.season_id,
            "player_id": self.player_id,
            "team_id": self.team_id,
            "reason": self.reason,
            "matches_banned": self.matches_banned,
            "served_matches": self.served_matches,
            "status": self.status,
            "trigger_match_id": self.trigger_match_id,
            "manual": self.manual,
            "notes": self.notes,
        }


# ---------- StandingsRow ----------
@dataclass
class StandingsRow:
    """Fully derived table row. manual_override marks rows touched by an adjustment."""
    season_team_id: str
    played: int = 0
    won: int = 0
    draw: int = 0
    loss: int = 0
    goals_for: int = 0
    goals_against: int = 0
    points: int = 0
    rank: int = 0
    manual_override: bool = False

    @property
    def goal_difference(self) -> int:
        return self.goals_for - self.goals_against

    def to_dict(self) -> dict[str, Any]:
        return {
            "season_team_id": self.season_team_id,
            "rank": self.rank,
            "played": self.played,
            "won": self.won,
            "draw": self.draw,
            "loss": self.loss,
            "goals_for": self.goals_for,
            "goals_against": self.goals_against,
            "goal_difference": self.goal_difference,
            "points": self.points,
            "manual_override": self.manual_override,
        }


# ---------- StandingsAdjustment ----------
@dataclass
class StandingsAdjustment:
    """
    Administrative override. kind "reset" zeroes the row; kind "delta" adds
    the non-zero fields of delta to it.
    """
    id: str
    season_id: str
    season_team_id: str
    kind: str  # "reset" | "delta"
    delta: dict[str, int]
    note: str | None
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "season_id": self.season_id,
            "season_team_id": self.season_team_id,
            "kind": self.kind,
            "delta": dict(self.delta),
            "note": self.note,
            "created_at": self.created_at.isoformat(),
        }


# ---------- StatusChange (audit trail) ----------
@dataclass
class StatusChange:
    """One row of a registration/lineup/match status history."""
    entity_id: str
    from_status: str | None
    to_status: str
    note: str | None
    changed_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "note": self.note,
            "changed_at": _iso(self.changed_at),
        }
