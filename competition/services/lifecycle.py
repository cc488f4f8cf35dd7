"""
Match lifecycle orchestrator.

SCHEDULED → PREPARING → READY → IN_PROGRESS → FINISHED → REPORTED → COMPLETED.
Forward only, one step at a time. Every entry is guarded: can_enter() lists
every unmet condition and the guard is re-checked inside the same
transaction as the status write, so a lineup change between check and write
cannot slip through.
"""
from __future__ import annotations

import logging
import sqlite3
from typing import Any

from competition.errors import ConcurrencyConflict, InvalidTransition, NotFound, PreconditionNotMet
from competition.models import (
    PLAYED_STATUSES,
    LineupStatus,
    Match,
    MatchStatus,
    RegistrationStatus,
    Side,
    StatusChange,
)
from competition.persistence.db import transaction
from competition.persistence.repositories import MatchRepository, RegistrationRepository
from competition.services.lineups import LineupService
from competition.services.suspensions import SuspensionLedger

logger = logging.getLogger(__name__)


# ---------- Valid transitions ----------

_VALID_TRANSITIONS: dict[str, set[str]] = {
    MatchStatus.SCHEDULED: {MatchStatus.PREPARING},
    MatchStatus.PREPARING: {MatchStatus.READY},
    MatchStatus.READY: {MatchStatus.IN_PROGRESS},
    MatchStatus.IN_PROGRESS: {MatchStatus.FINISHED},
    MatchStatus.FINISHED: {MatchStatus.REPORTED},
    MatchStatus.REPORTED: {MatchStatus.COMPLETED},
    MatchStatus.COMPLETED: set(),
}

REPORT_KINDS = ("referee", "supervisor")


class MatchLifecycle:
    """
    Top-level state machine per match. Reads registrations and both lineup
    tracks through their accessors; never edits a lineup itself.
    """

    def __init__(
        self,
        lineups: LineupService | None = None,
        ledger: SuspensionLedger | None = None,
    ) -> None:
        self._match_repo = MatchRepository()
        self._registration_repo = RegistrationRepository()
        self._ledger = ledger or SuspensionLedger()
        self._lineups = lineups or LineupService(self._ledger)

    def get(self, conn: sqlite3.Connection, match_id: str) -> Match:
        match = self._match_repo.get(conn, match_id)
        if match is None:
            raise NotFound("match", match_id)
        return match

    # ---------- Guards ----------

    def missing_conditions(self, conn: sqlite3.Connection, match: Match, target: str) -> list[str]:
        """Every condition that blocks entering target from the match's current state."""
        target = MatchStatus(target)
        missing: list[str] = []
        if target == MatchStatus.PREPARING:
            for label, team_id in (("home", match.home_team_id), ("away", match.away_team_id)):
                reg = self._registration_repo.get(conn, team_id)
                if reg is None or reg.status != RegistrationStatus.APPROVED:
                    missing.append(f"{label} registration not approved")
        elif target == MatchStatus.READY:
            for side in (Side.HOME, Side.AWAY):
                if self._lineups.status(conn, match.id, side) != LineupStatus.APPROVED:
                    missing.append(f"{side.value} lineup not approved")
                # A card recalculated after approval can still ban a selected player
                suspended = self._lineups.suspended_players(conn, match, side)
                if suspended:
                    missing.append(f"{side.value} lineup has suspended players: {', '.join(suspended)}")
            if not match.officials_complete:
                missing.append("officials not complete")
                missing.extend(f"no {role} assigned" for role in match.missing_officials)
        elif target == MatchStatus.IN_PROGRESS:
            # Both lineups approved and officials complete must still hold at kickoff
            missing.extend(self.missing_conditions(conn, match, MatchStatus.READY))
        elif target == MatchStatus.FINISHED:
            if match.home_score is None or match.away_score is None:
                missing.append("result not recorded")
        elif target == MatchStatus.REPORTED:
            if not match.referee_report_submitted:
                missing.append("referee report not submitted")
            if not match.supervisor_report_submitted:
                missing.append("supervisor report not submitted")
        return missing

    def can_enter(self, conn: sqlite3.Connection, match_id: str, target: str) -> dict[str, Any]:
        """Advisory check: {allowed, missing}. Transitions re-check it atomically."""
        match = self.get(conn, match_id)
        target = MatchStatus(target)
        if target not in _VALID_TRANSITIONS.get(match.status, set()):
            return {"allowed": False, "missing": [f"cannot move from {match.status} to {target.value}"]}
        missing = self.missing_conditions(conn, match, target)
        return {"allowed": not missing, "missing": missing}

    # ---------- Transitions ----------

    def transition(
        self,
        conn: sqlite3.Connection,
        match_id: str,
        target: str,
        note: str | None = None,
        expected_version: int | None = None,
    ) -> Match:
        """Move the match one step forward if the step is valid and its guard holds."""
        target = MatchStatus(target)
        with transaction(conn):
            match = self.get(conn, match_id)
            if expected_version is not None and match.version != expected_version:
                logger.warning("Stale match write %s: version %d, expected %d", match_id, match.version, expected_version)
                raise ConcurrencyConflict("match", match_id, expected_version)
            current = match.status
            if target not in _VALID_TRANSITIONS.get(current, set()):
                logger.warning("Rejected match transition %s: %s -> %s", match_id, current, target.value)
                raise InvalidTransition("match", current, target)
            missing = self.missing_conditions(conn, match, target)
            if missing:
                logger.warning("Match %s cannot enter %s: %s", match_id, target.value, missing)
                raise PreconditionNotMet(target, missing)
            match.status = target.value
            self._match_repo.update(conn, match)
            self._match_repo.add_history(conn, match_id, current, target, note)
            if target == MatchStatus.PREPARING:
                self._lineups.create_pending(conn, match)
        logger.info("Match %s: %s -> %s", match_id, current, target.value)
        return match

    def officials_assignment_started(self, conn: sqlite3.Connection, match_id: str) -> Match:
        """Officials collaborator signal; records it and moves a SCHEDULED match to PREPARING."""
        with transaction(conn):
            match = self.get(conn, match_id)
            if not match.officials_assignment_started:
                match.officials_assignment_started = True
                self._match_repo.update(conn, match)
            if match.status == MatchStatus.SCHEDULED:
                match = self.transition(conn, match_id, MatchStatus.PREPARING, note="officials assignment started")
        return match

    def auto_prepare(self, conn: sqlite3.Connection, season_id: str) -> list[Match]:
        """Move every SCHEDULED match whose two registrations are APPROVED to PREPARING."""
        moved: list[Match] = []
        with transaction(conn):
            for match in self._match_repo.list_by_season(conn, season_id, statuses=[MatchStatus.SCHEDULED]):
                if self.missing_conditions(conn, match, MatchStatus.PREPARING):
                    continue
                moved.append(self.transition(conn, match.id, MatchStatus.PREPARING, note="registrations approved"))
        logger.info("Auto-prepared %d matches in season %s", len(moved), season_id)
        return moved

    def update_officials(
        self,
        conn: sqlite3.Connection,
        match_id: str,
        complete: bool,
        missing_roles: list[str] | None = None,
        expected_version: int | None = None,
    ) -> Match:
        """Officials collaborator input: completeness and the roles still unfilled."""
        with transaction(conn):
            match = self.get(conn, match_id)
            if expected_version is not None and match.version != expected_version:
                raise ConcurrencyConflict("match", match_id, expected_version)
            match.officials_complete = bool(complete)
            match.missing_officials = [] if complete else list(missing_roles or [])
            self._match_repo.update(conn, match)
        logger.info("Match %s officials complete=%s missing=%s", match_id, match.officials_complete, match.missing_officials)
        return match

    def ready(self, conn: sqlite3.Connection, match_id: str, expected_version: int | None = None) -> Match:
        return self.transition(conn, match_id, MatchStatus.READY, expected_version=expected_version)

    def kickoff(self, conn: sqlite3.Connection, match_id: str, expected_version: int | None = None) -> Match:
        return self.transition(conn, match_id, MatchStatus.IN_PROGRESS, expected_version=expected_version)

    def finish(
        self,
        conn: sqlite3.Connection,
        match_id: str,
        home_score: int,
        away_score: int,
        expected_version: int | None = None,
    ) -> Match:
        """Store the result, enter FINISHED, then run the finished-match side effects."""
        if home_score < 0 or away_score < 0:
            raise ValueError("scores cannot be negative")
        with transaction(conn):
            match = self.get(conn, match_id)
            if match.status != MatchStatus.IN_PROGRESS:
                logger.warning("Rejected match transition %s: %s -> %s", match_id, match.status, MatchStatus.FINISHED.value)
                raise InvalidTransition("match", match.status, MatchStatus.FINISHED)
            if expected_version is not None and match.version != expected_version:
                raise ConcurrencyConflict("match", match_id, expected_version)
            match.home_score = home_score
            match.away_score = away_score
            self._match_repo.update(conn, match)
            self.transition(conn, match_id, MatchStatus.FINISHED, note=f"{home_score}-{away_score}")
            match = self.process_finished(conn, match_id)
            match = self._report_if_complete(conn, match)
        return match

    def process_finished(self, conn: sqlite3.Connection, match_id: str) -> Match:
        """
        Serve suspensions for both teams and mark the result processed.
        Safe to call again after a crash or retry: serves are idempotent per
        (suspension, match) and a processed match is skipped.
        """
        with transaction(conn):
            match = self.get(conn, match_id)
            if match.status not in PLAYED_STATUSES:
                raise InvalidTransition("match", match.status, "process result")
            if match.result_processed:
                return match
            served = self._ledger.serve_match(conn, match)
            match.result_processed = True
            self._match_repo.update(conn, match)
        logger.info("Match %s result processed (%d suspension matches served)", match_id, served)
        return match

    def record_report(self, conn: sqlite3.Connection, match_id: str, kind: str) -> Match:
        """Reporting collaborator signal. Enters REPORTED once both reports are in."""
        if kind not in REPORT_KINDS:
            raise ValueError(f"Unknown report kind: {kind}")
        with transaction(conn):
            match = self.get(conn, match_id)
            if match.status not in PLAYED_STATUSES and match.status != MatchStatus.IN_PROGRESS:
                raise InvalidTransition("match", match.status, f"{kind} report")
            setattr(match, f"{kind}_report_submitted", True)
            self._match_repo.update(conn, match)
            match = self._report_if_complete(conn, match)
        logger.info("Match %s: %s report submitted", match_id, kind)
        return match

    def _report_if_complete(self, conn: sqlite3.Connection, match: Match) -> Match:
        # Reports filed during play count once the match is FINISHED
        if (
            match.status == MatchStatus.FINISHED
            and match.referee_report_submitted
            and match.supervisor_report_submitted
        ):
            return self.transition(conn, match.id, MatchStatus.REPORTED, note="reports submitted")
        return match

    def complete(self, conn: sqlite3.Connection, match_id: str, note: str | None = None) -> Match:
        """Administrative confirmation. Terminal."""
        return self.transition(conn, match_id, MatchStatus.COMPLETED, note=note)

    def correct_result(
        self,
        conn: sqlite3.Connection,
        match_id: str,
        home_score: int,
        away_score: int,
        note: str | None = None,
    ) -> Match:
        """Administrative score correction on a played match. Standings pick it up on recompute."""
        if home_score < 0 or away_score < 0:
            raise ValueError("scores cannot be negative")
        with transaction(conn):
            match = self.get(conn, match_id)
            if match.status not in PLAYED_STATUSES:
                raise InvalidTransition("match", match.status, "correct result")
            previous = f"{match.home_score}-{match.away_score}"
            match.home_score = home_score
            match.away_score = away_score
            self._match_repo.update(conn, match)
            self._match_repo.add_history(
                conn, match_id, match.status, match.status,
                note or f"result corrected {previous} -> {home_score}-{away_score}",
            )
        logger.info("Match %s result corrected: %s -> %d-%d", match_id, previous, home_score, away_score)
        return match

    # ---------- Queries ----------

    def history(self, conn: sqlite3.Connection, match_id: str) -> list[StatusChange]:
        self.get(conn, match_id)
        return self._match_repo.list_history(conn, match_id)

    def season_status_counts(self, conn: sqlite3.Connection, season_id: str) -> dict[str, int]:
        counts = {s.value: 0 for s in MatchStatus}
        counts.update(self._match_repo.count_by_status(conn, season_id))
        return counts
