"""
Lineup validator and per-side approval track.

Validation is a pure function that accumulates every violation. The approval
track runs PENDING → SUBMITTED → {APPROVED, REJECTED}; REJECTED → SUBMITTED on
resubmission; APPROVED → SUBMITTED only through the privileged unlock.
Home and away tracks never read or write each other. All track changes
require the match to be PREPARING: lineups freeze once the match is READY.
"""
from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Sequence

from competition.errors import ConcurrencyConflict, InvalidTransition, NotFound, ValidationFailed
from competition.models import (
    LineupOutcome,
    LineupStatus,
    LineupSubmission,
    Match,
    MatchStatus,
    SeasonPlayer,
    Side,
    StatusChange,
)
from competition.persistence.db import transaction
from competition.persistence.repositories import (
    LineupRepository,
    MatchRepository,
    SeasonPlayerRepository,
    SeasonRepository,
)
from competition.rules import SeasonRules
from competition.services.suspensions import SuspensionLedger

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    STARTER_COUNT = "STARTER_COUNT"
    SUBSTITUTE_COUNT = "SUBSTITUTE_COUNT"
    DUPLICATE_PLAYER = "DUPLICATE_PLAYER"
    FOREIGN_LIMIT = "FOREIGN_LIMIT"
    SUSPENDED_PLAYER = "SUSPENDED_PLAYER"
    NOT_IN_ROSTER = "NOT_IN_ROSTER"
    REJECTION_REASON_REQUIRED = "REJECTION_REASON_REQUIRED"


@dataclass
class LineupError:
    kind: ErrorKind
    message: str
    player_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, "player_ids": list(self.player_ids)}


@dataclass
class ValidationResult:
    errors: list[LineupError] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def kinds(self) -> list[ErrorKind]:
        return [e.kind for e in self.errors]

    def to_dict(self) -> dict[str, Any]:
        return {"valid": self.valid, "errors": [e.to_dict() for e in self.errors]}


# ---------- Pure validation ----------


def _duplicates(ids: Sequence[str]) -> list[str]:
    seen: set[str] = set()
    dupes: list[str] = []
    for pid in ids:
        if pid in seen and pid not in dupes:
            dupes.append(pid)
        seen.add(pid)
    return dupes


def check_editing(starters: Sequence[str], substitutes: Sequence[str], rules: SeasonRules) -> list[LineupError]:
    """Invariants that hold for every saved draft: no duplicates, disjoint, upper bounds."""
    errors: list[LineupError] = []
    if len(starters) > rules.starters_required:
        errors.append(LineupError(
            ErrorKind.STARTER_COUNT,
            f"at most {rules.starters_required} starters allowed (got {len(starters)})",
        ))
    if len(substitutes) > rules.max_substitutes:
        errors.append(LineupError(
            ErrorKind.SUBSTITUTE_COUNT,
            f"at most {rules.max_substitutes} substitutes allowed (got {len(substitutes)})",
        ))
    dupes = _duplicates(list(starters)) + _duplicates(list(substitutes))
    overlap = sorted(set(starters) & set(substitutes))
    repeated = sorted(set(dupes) | set(overlap))
    if repeated:
        errors.append(LineupError(
            ErrorKind.DUPLICATE_PLAYER, "players listed more than once", repeated,
        ))
    return errors


def validate_lineup(
    starters: Sequence[str],
    substitutes: Sequence[str],
    roster: Iterable[SeasonPlayer],
    rules: SeasonRules,
    is_suspended: Callable[[str], bool],
) -> ValidationResult:
    """
    Check a squad for submission. Every violated rule is reported, not just the first.
    roster is the team's approved season roster; is_suspended answers for the match at hand.
    """
    errors: list[LineupError] = []
    distinct_starters = set(starters)
    distinct_subs = set(substitutes)

    if len(starters) != rules.starters_required or len(distinct_starters) != len(starters):
        errors.append(LineupError(
            ErrorKind.STARTER_COUNT,
            f"exactly {rules.starters_required} distinct starters required (got {len(distinct_starters)})",
        ))
    if not (rules.min_substitutes <= len(distinct_subs) <= rules.max_substitutes) or len(distinct_subs) != len(substitutes):
        errors.append(LineupError(
            ErrorKind.SUBSTITUTE_COUNT,
            f"{rules.min_substitutes}-{rules.max_substitutes} distinct substitutes required (got {len(distinct_subs)})",
        ))
    repeated = sorted(set(_duplicates(list(starters)) + _duplicates(list(substitutes))) | (distinct_starters & distinct_subs))
    if repeated:
        errors.append(LineupError(ErrorKind.DUPLICATE_PLAYER, "players listed more than once", repeated))

    by_id = {p.player_id: p for p in roster if p.status == "approved"}
    foreign = sorted(pid for pid in distinct_starters if pid in by_id and by_id[pid].is_foreign)
    if len(foreign) > rules.max_foreign_starters:
        errors.append(LineupError(
            ErrorKind.FOREIGN_LIMIT,
            f"at most {rules.max_foreign_starters} foreign starters allowed (got {len(foreign)})",
            foreign,
        ))

    everyone = sorted(distinct_starters | distinct_subs)
    suspended = [pid for pid in everyone if is_suspended(pid)]
    if suspended:
        errors.append(LineupError(ErrorKind.SUSPENDED_PLAYER, "suspended players selected", suspended))

    outsiders = [pid for pid in everyone if pid not in by_id]
    if outsiders:
        errors.append(LineupError(ErrorKind.NOT_IN_ROSTER, "players not on the approved season roster", outsiders))
    return ValidationResult(errors)


# ---------- Approval track ----------

_EDITABLE = frozenset({LineupStatus.PENDING, LineupStatus.REJECTED})


class LineupService:
    """Draft, submit, review and unlock one side's lineup for a match."""

    def __init__(self, ledger: SuspensionLedger | None = None) -> None:
        self._season_repo = SeasonRepository()
        self._match_repo = MatchRepository()
        self._lineup_repo = LineupRepository()
        self._player_repo = SeasonPlayerRepository()
        self._ledger = ledger or SuspensionLedger()

    def get(self, conn: sqlite3.Connection, match_id: str, side: str) -> LineupSubmission:
        lineup = self._lineup_repo.get_by_match_side(conn, match_id, Side(side))
        if lineup is None:
            if self._match_repo.get(conn, match_id) is None:
                raise NotFound("match", match_id)
            raise NotFound("lineup", f"{match_id}/{Side(side).value}")
        return lineup

    def status(self, conn: sqlite3.Connection, match_id: str, side: str) -> str | None:
        """Accessor used by the match lifecycle; None when the lineup was never created."""
        lineup = self._lineup_repo.get_by_match_side(conn, match_id, Side(side))
        return lineup.status if lineup else None

    def suspended_players(self, conn: sqlite3.Connection, match: Match, side: str) -> list[str]:
        """Players in the side's current lineup who are suspended for this match."""
        lineup = self._lineup_repo.get_by_match_side(conn, match.id, Side(side))
        if lineup is None:
            return []
        return [
            pid for pid in lineup.player_ids()
            if self._ledger.is_suspended(conn, match.season_id, pid, match.id)["suspended"]
        ]

    def create_pending(self, conn: sqlite3.Connection, match: Match) -> list[LineupSubmission]:
        """Create empty PENDING lineups for both sides. Existing ones are kept."""
        created = []
        with transaction(conn):
            for side in (Side.HOME, Side.AWAY):
                lineup = self._lineup_repo.get_by_match_side(conn, match.id, side)
                if lineup is None:
                    lineup = self._lineup_repo.create(conn, match.id, side, match.team_for_side(side))
                    self._lineup_repo.add_history(conn, lineup.id, None, LineupStatus.PENDING)
                created.append(lineup)
        return created

    def validate(
        self,
        conn: sqlite3.Connection,
        match_id: str,
        side: str,
        starters: Sequence[str],
        substitutes: Sequence[str],
    ) -> ValidationResult:
        """Dry run of submission checks; changes nothing."""
        match = self._get_match(conn, match_id)
        return self._validate(conn, match, match.team_for_side(Side(side)), starters, substitutes)

    def save_draft(
        self,
        conn: sqlite3.Connection,
        match_id: str,
        side: str,
        starters: Sequence[str],
        substitutes: Sequence[str],
        formation: str | None = None,
        kit_type: str | None = None,
        expected_version: int | None = None,
    ) -> LineupSubmission:
        with transaction(conn):
            match = self._get_match(conn, match_id)
            self._require_preparing(match, "edit")
            lineup = self._get_for_write(conn, match_id, side, expected_version)
            if lineup.status not in _EDITABLE:
                raise InvalidTransition("lineup", lineup.status, "edit")
            errors = check_editing(starters, substitutes, self._rules(conn, match.season_id))
            if errors:
                raise ValidationFailed(errors)
            lineup.starters = list(starters)
            lineup.substitutes = list(substitutes)
            lineup.formation = formation
            lineup.kit_type = kit_type
            self._lineup_repo.update(conn, lineup)
        return lineup

    def submit(
        self,
        conn: sqlite3.Connection,
        match_id: str,
        side: str,
        starters: Sequence[str] | None = None,
        substitutes: Sequence[str] | None = None,
        formation: str | None = None,
        kit_type: str | None = None,
        expected_version: int | None = None,
    ) -> LineupSubmission:
        """
        Validate and move to SUBMITTED. Without a squad the saved draft is submitted.
        On any violation raises ValidationFailed and the lineup is left untouched.
        """
        with transaction(conn):
            match = self._get_match(conn, match_id)
            self._require_preparing(match, LineupStatus.SUBMITTED)
            lineup = self._get_for_write(conn, match_id, side, expected_version)
            if lineup.status not in _EDITABLE:
                self._reject(lineup, LineupStatus.SUBMITTED)
            squad_starters = list(starters) if starters is not None else list(lineup.starters)
            squad_subs = list(substitutes) if substitutes is not None else list(lineup.substitutes)
            result = self._validate(conn, match, lineup.season_team_id, squad_starters, squad_subs)
            if not result.valid:
                logger.warning(
                    "Lineup %s (%s) failed validation: %s",
                    lineup.id, lineup.side, [k.value for k in result.kinds()],
                )
                raise ValidationFailed(result.errors)
            previous = lineup.status
            lineup.starters = squad_starters
            lineup.substitutes = squad_subs
            if formation is not None:
                lineup.formation = formation
            if kit_type is not None:
                lineup.kit_type = kit_type
            lineup.status = LineupStatus.SUBMITTED.value
            self._lineup_repo.update(conn, lineup)
            self._lineup_repo.add_history(conn, lineup.id, previous, LineupStatus.SUBMITTED)
        logger.info("Lineup %s (%s) submitted for match %s", lineup.id, lineup.side, match_id)
        return lineup

    def review(
        self,
        conn: sqlite3.Connection,
        match_id: str,
        side: str,
        outcome: str,
        reason: str | None = None,
        expected_version: int | None = None,
    ) -> LineupSubmission:
        """APPROVE clears any rejection reason; REJECT requires a non-empty reason."""
        outcome = LineupOutcome(outcome)
        target = LineupStatus.APPROVED if outcome == LineupOutcome.APPROVE else LineupStatus.REJECTED
        if target == LineupStatus.REJECTED and not (reason and reason.strip()):
            raise ValidationFailed([LineupError(
                ErrorKind.REJECTION_REASON_REQUIRED, "a rejection needs a reason",
            )])
        with transaction(conn):
            match = self._get_match(conn, match_id)
            self._require_preparing(match, target)
            lineup = self._get_for_write(conn, match_id, side, expected_version)
            if lineup.status != LineupStatus.SUBMITTED:
                self._reject(lineup, target)
            lineup.status = target.value
            lineup.rejection_reason = None if target == LineupStatus.APPROVED else reason.strip()
            self._lineup_repo.update(conn, lineup)
            self._lineup_repo.add_history(conn, lineup.id, LineupStatus.SUBMITTED, target, reason)
        logger.info("Lineup %s (%s) for match %s: %s", lineup.id, lineup.side, match_id, target.value)
        return lineup

    def unlock(
        self,
        conn: sqlite3.Connection,
        match_id: str,
        side: str,
        note: str | None = None,
        expected_version: int | None = None,
    ) -> LineupSubmission:
        """Privileged: APPROVED → SUBMITTED so the squad can be reviewed again."""
        with transaction(conn):
            match = self._get_match(conn, match_id)
            self._require_preparing(match, "unlock")
            lineup = self._get_for_write(conn, match_id, side, expected_version)
            if lineup.status != LineupStatus.APPROVED:
                self._reject(lineup, "unlock")
            lineup.status = LineupStatus.SUBMITTED.value
            self._lineup_repo.update(conn, lineup)
            self._lineup_repo.add_history(conn, lineup.id, LineupStatus.APPROVED, LineupStatus.SUBMITTED, note or "unlock")
        logger.info("Lineup %s (%s) unlocked for match %s", lineup.id, lineup.side, match_id)
        return lineup

    def history(self, conn: sqlite3.Connection, match_id: str, side: str) -> list[StatusChange]:
        return self._lineup_repo.list_history(conn, self.get(conn, match_id, side).id)

    # ---------- Internal ----------

    def _validate(
        self,
        conn: sqlite3.Connection,
        match: Match,
        season_team_id: str,
        starters: Sequence[str],
        substitutes: Sequence[str],
    ) -> ValidationResult:
        rules = self._rules(conn, match.season_id)
        roster = self._player_repo.list_by_team(conn, season_team_id)

        def suspended(player_id: str) -> bool:
            return self._ledger.is_suspended(conn, match.season_id, player_id, match.id)["suspended"]

        return validate_lineup(starters, substitutes, roster, rules, suspended)

    def _rules(self, conn: sqlite3.Connection, season_id: str) -> SeasonRules:
        rules = self._season_repo.get_rules(conn, season_id)
        if rules is None:
            raise NotFound("season", season_id)
        return rules

    def _get_match(self, conn: sqlite3.Connection, match_id: str) -> Match:
        match = self._match_repo.get(conn, match_id)
        if match is None:
            raise NotFound("match", match_id)
        return match

    def _get_for_write(
        self, conn: sqlite3.Connection, match_id: str, side: str, expected_version: int | None
    ) -> LineupSubmission:
        lineup = self.get(conn, match_id, side)
        if expected_version is not None and lineup.version != expected_version:
            logger.warning("Stale lineup write %s: version %d, expected %d", lineup.id, lineup.version, expected_version)
            raise ConcurrencyConflict("lineup", lineup.id, expected_version)
        return lineup

    @staticmethod
    def _require_preparing(match: Match, attempted: str) -> None:
        if match.status != MatchStatus.PREPARING:
            logger.warning("Lineup change %s refused: match %s is %s", attempted, match.id, match.status)
            raise InvalidTransition("match", match.status, f"lineup {getattr(attempted, 'value', attempted)}")

    @staticmethod
    def _reject(lineup: LineupSubmission, attempted: str) -> None:
        logger.warning("Rejected lineup transition %s: %s -> %s", lineup.id, lineup.status, attempted)
        raise InvalidTransition("lineup", lineup.status, attempted)
