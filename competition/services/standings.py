"""
Standings calculator: aggregates played matches into a ranked table.

Points 3/1/0. Both modes order by points, goal difference, goals for.
- live: teams equal on all three share a rank (1, 2, 2, 4)
- final: still-tied teams are split by a head-to-head mini-table among the
  tied group (recursively on the subsets it cannot split), then by seeded lot

The table is always rebuilt in full from source matches. Manual adjustments
are stored separately and applied on top only when the caller asks to preserve them.
"""
from __future__ import annotations

import logging
import sqlite3
from typing import Iterable, Sequence

from competition.errors import NotFound
from competition.models import (
    PLAYED_STATUSES,
    Match,
    OverridePolicy,
    RegistrationStatus,
    StandingsAdjustment,
    StandingsMode,
    StandingsRow,
)
from competition.persistence.db import transaction
from competition.persistence.repositories import (
    MatchRepository,
    RegistrationRepository,
    SeasonRepository,
    StandingsRepository,
)
from competition.services.lots import derive_lot_seed, draw_lots

logger = logging.getLogger(__name__)

POINTS_WIN = 3
POINTS_DRAW = 1
POINTS_LOSS = 0

ADJUSTABLE_FIELDS = ("played", "won", "draw", "loss", "goals_for", "goals_against", "points")


# ---------- Pure computation ----------


def counted_matches(matches: Iterable[Match]) -> list[Match]:
    """Matches that count: played status and a recorded score."""
    return [
        m for m in matches
        if m.status in PLAYED_STATUSES and m.home_score is not None and m.away_score is not None
    ]


def _aggregate(team_ids: Iterable[str], matches: Iterable[Match]) -> dict[str, StandingsRow]:
    rows = {tid: StandingsRow(season_team_id=tid) for tid in team_ids}
    for m in matches:
        home = rows.setdefault(m.home_team_id, StandingsRow(season_team_id=m.home_team_id))
        away = rows.setdefault(m.away_team_id, StandingsRow(season_team_id=m.away_team_id))
        _apply_result(home, m.home_score, m.away_score)
        _apply_result(away, m.away_score, m.home_score)
    return rows


def _apply_result(row: StandingsRow, scored: int, conceded: int) -> None:
    row.played += 1
    row.goals_for += scored
    row.goals_against += conceded
    if scored > conceded:
        row.won += 1
        row.points += POINTS_WIN
    elif scored == conceded:
        row.draw += 1
        row.points += POINTS_DRAW
    else:
        row.loss += 1
        row.points += POINTS_LOSS


def _apply_adjustments(rows: dict[str, StandingsRow], adjustments: Iterable[StandingsAdjustment]) -> None:
    for adj in adjustments:
        row = rows.setdefault(adj.season_team_id, StandingsRow(season_team_id=adj.season_team_id))
        for name, value in adj.delta.items():
            if name in ADJUSTABLE_FIELDS:
                setattr(row, name, getattr(row, name) + int(value))
        row.manual_override = True


def _sort_key(row: StandingsRow) -> tuple[int, int, int]:
    return (-row.points, -row.goal_difference, -row.goals_for)


def _group_by_key(team_ids: Sequence[str], key_of) -> list[list[str]]:
    """Sort team ids by key (then id) and split into runs of equal key."""
    ordered = sorted(team_ids, key=lambda t: (key_of(t), t))
    groups: list[list[str]] = []
    last = None
    for tid in ordered:
        k = key_of(tid)
        if groups and k == last:
            groups[-1].append(tid)
        else:
            groups.append([tid])
        last = k
    return groups


def _resolve_final(group: list[str], matches: list[Match], lot_seed: int) -> list[str]:
    """Head-to-head among the group, recursing into subsets it still cannot split; lot last."""
    if len(group) == 1:
        return list(group)
    members = set(group)
    mutual = [m for m in matches if m.home_team_id in members and m.away_team_id in members]
    mini = _aggregate(group, mutual)
    subgroups = _group_by_key(group, lambda t: _sort_key(mini[t]))
    if len(subgroups) == 1:
        drawn = draw_lots(group, lot_seed)
        logger.info("Tie between %s decided by lot: %s", sorted(group), drawn)
        return drawn
    ordered: list[str] = []
    for sub in subgroups:
        ordered.extend(_resolve_final(sub, matches, lot_seed))
    return ordered


def compute_table(
    team_ids: Iterable[str],
    matches: Iterable[Match],
    mode: str = StandingsMode.LIVE,
    lot_seed: int | None = None,
    adjustments: Iterable[StandingsAdjustment] = (),
) -> list[StandingsRow]:
    """
    Build the ranked table. Only FINISHED/REPORTED/COMPLETED matches with a
    score count; input order does not matter. Final mode needs lot_seed.
    """
    mode = StandingsMode(mode)
    played = counted_matches(matches)
    rows = _aggregate(team_ids, played)
    _apply_adjustments(rows, adjustments)

    groups = _group_by_key(list(rows), lambda t: _sort_key(rows[t]))
    table: list[StandingsRow] = []
    position = 1
    for group in groups:
        if mode == StandingsMode.LIVE:
            for tid in group:
                rows[tid].rank = position
                table.append(rows[tid])
        else:
            if len(group) > 1 and lot_seed is None:
                raise ValueError("final standings need a lot seed to break ties")
            for offset, tid in enumerate(_resolve_final(group, played, lot_seed or 0)):
                rows[tid].rank = position + offset
                table.append(rows[tid])
        position += len(group)
    return table


# ---------- StandingsCalculator ----------


class StandingsCalculator:
    """Recomputes and stores season tables; holds the administrative overrides."""

    def __init__(self) -> None:
        self._season_repo = SeasonRepository()
        self._registration_repo = RegistrationRepository()
        self._match_repo = MatchRepository()
        self._standings_repo = StandingsRepository()

    def recompute(
        self,
        conn: sqlite3.Connection,
        season_id: str,
        mode: str,
        overrides: OverridePolicy,
    ) -> list[StandingsRow]:
        """
        Rebuild the full table from the season's matches and store it.
        overrides is required: PRESERVE applies stored adjustments, DISCARD deletes them.
        """
        mode = StandingsMode(mode)
        overrides = OverridePolicy(overrides)
        with transaction(conn):
            season = self._season_repo.get(conn, season_id)
            if season is None:
                raise NotFound("season", season_id)
            team_ids = self._team_ids(conn, season_id)
            matches = self._match_repo.list_by_season(conn, season_id, statuses=PLAYED_STATUSES)

            if overrides == OverridePolicy.PRESERVE:
                adjustments = self._standings_repo.list_adjustments(conn, season_id)
            else:
                dropped = self._standings_repo.clear_adjustments(conn, season_id)
                if dropped:
                    logger.info("Discarded %d standings adjustments for season %s", dropped, season_id)
                adjustments = []

            lot_seed = season.lot_seed
            if mode == StandingsMode.FINAL and lot_seed is None:
                lot_seed = derive_lot_seed(season_id)
                self._season_repo.update_lot_seed(conn, season_id, lot_seed)
                logger.info("Recorded lot seed %d for season %s", lot_seed, season_id)

            table = compute_table(team_ids, matches, mode, lot_seed=lot_seed, adjustments=adjustments)
            self._standings_repo.replace(conn, season_id, mode, table)
        logger.info(
            "Recomputed %s standings for season %s: %d teams, %d matches, %d adjustments",
            mode.value, season_id, len(table), len(matches), len(adjustments),
        )
        return table

    def get_table(self, conn: sqlite3.Connection, season_id: str, mode: str = StandingsMode.LIVE) -> list[StandingsRow]:
        return self._standings_repo.list_rows(conn, season_id, StandingsMode(mode))

    def reset_team(
        self, conn: sqlite3.Connection, season_id: str, season_team_id: str, note: str | None = None
    ) -> StandingsAdjustment:
        """Zero the team's row as it stands now; matches played later count again."""
        with transaction(conn):
            self._require_team(conn, season_id, season_team_id)
            matches = self._match_repo.list_by_season(conn, season_id, statuses=PLAYED_STATUSES)
            current = _aggregate([season_team_id], counted_matches(matches))
            _apply_adjustments(current, self._standings_repo.list_adjustments(conn, season_id))
            row = current[season_team_id]
            delta = {name: -getattr(row, name) for name in ADJUSTABLE_FIELDS if getattr(row, name)}
            adj = self._standings_repo.add_adjustment(conn, season_id, season_team_id, "reset", delta, note)
            self.recompute(conn, season_id, StandingsMode.LIVE, OverridePolicy.PRESERVE)
        logger.info("Standings reset for team %s in season %s", season_team_id, season_id)
        return adj

    def adjust_team(
        self,
        conn: sqlite3.Connection,
        season_id: str,
        season_team_id: str,
        delta: dict[str, int],
        note: str | None = None,
    ) -> StandingsAdjustment:
        unknown = set(delta) - set(ADJUSTABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown standings fields: {sorted(unknown)}")
        clean = {k: int(v) for k, v in delta.items() if int(v) != 0}
        with transaction(conn):
            self._require_team(conn, season_id, season_team_id)
            adj = self._standings_repo.add_adjustment(conn, season_id, season_team_id, "delta", clean, note)
            self.recompute(conn, season_id, StandingsMode.LIVE, OverridePolicy.PRESERVE)
        logger.info("Standings adjusted for team %s in season %s: %s", season_team_id, season_id, clean)
        return adj

    def list_adjustments(self, conn: sqlite3.Connection, season_id: str) -> list[StandingsAdjustment]:
        return self._standings_repo.list_adjustments(conn, season_id)

    # ---------- Internal ----------

    def _team_ids(self, conn: sqlite3.Connection, season_id: str) -> list[str]:
        regs = self._registration_repo.list_by_season(conn, season_id, RegistrationStatus.APPROVED)
        return [r.id for r in regs]

    def _require_team(self, conn: sqlite3.Connection, season_id: str, season_team_id: str) -> None:
        reg = self._registration_repo.get(conn, season_team_id)
        if reg is None or reg.season_id != season_id:
            raise NotFound("season_team", season_team_id)
