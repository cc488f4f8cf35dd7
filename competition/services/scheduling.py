"""
Deterministic round-robin schedule generation for a season.

Round-robin is used so every approved team plays every other team exactly once
(twice in a double round robin, with home and away swapped in the second half).
N-1 rounds for N even, N rounds for N odd.

BYE handling: when the number of teams is odd, a virtual BYE is added. Each round
one team is paired with BYE and does not play; no match is created for it.

Uses the circle method: fix first slot, rotate others each round. Same team list
ordering yields the same schedule.
"""
from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timedelta
from typing import Any

from competition.errors import NotFound, PreconditionNotMet
from competition.models import Match
from competition.persistence.db import transaction
from competition.persistence.repositories import MatchRepository, SeasonRepository
from competition.services.registration import RegistrationService

logger = logging.getLogger(__name__)

# Sentinel for bye when number of teams is odd
BYE = "BYE"


def round_robin_pairings(team_ids: list[str]) -> list[tuple[int, str, str | None]]:
    """
    Generate round-robin pairings: (round_number, home_team_id, away_team_id).
    away_team_id is None when home_team_id has a bye (odd number of teams).
    Deterministic: same team list => same schedule.
    """
    if not team_ids:
        return []
    ids = list(team_ids)
    if len(ids) % 2 == 1:
        ids.append(BYE)
    n = len(ids)
    result: list[tuple[int, str, str | None]] = []
    # Circle method: fix slot 0, rotate 1..n-1 each round; pair order[i] with order[n-1-i].
    order = list(range(n))
    for rnd in range(n - 1):
        for i in range(n // 2):
            home_id, away_id = ids[order[i]], ids[order[n - 1 - i]]
            # Alternate home advantage for the fixed slot so it is not always at home
            if i == 0 and rnd % 2 == 1:
                home_id, away_id = away_id, home_id
            if home_id == BYE:
                result.append((rnd + 1, away_id, None))
            elif away_id == BYE:
                result.append((rnd + 1, home_id, None))
            else:
                result.append((rnd + 1, home_id, away_id))
        order = [order[0]] + [order[n - 1]] + order[1 : n - 1]
    return result


def generate_fixtures(team_ids: list[str], double_round_robin: bool = False) -> list[dict[str, Any]]:
    """
    Return fixtures: { "round_number": int, "home_team_id": str, "away_team_id": str }.
    Byes are dropped. The second half of a double round robin mirrors the first.
    """
    first = [
        {"round_number": r, "home_team_id": h, "away_team_id": a}
        for r, h, a in round_robin_pairings(team_ids)
        if a is not None
    ]
    if not double_round_robin:
        return first
    rounds = max((f["round_number"] for f in first), default=0)
    second = [
        {"round_number": f["round_number"] + rounds, "home_team_id": f["away_team_id"], "away_team_id": f["home_team_id"]}
        for f in first
    ]
    return first + second


class SchedulingService:
    """Creates the season's SCHEDULED matches once enough registrations are approved."""

    def __init__(self, registrations: RegistrationService | None = None) -> None:
        self._season_repo = SeasonRepository()
        self._match_repo = MatchRepository()
        self._registrations = registrations or RegistrationService()

    def generate_season_schedule(
        self,
        conn: sqlite3.Connection,
        season_id: str,
        start: datetime,
        interval_days: int = 7,
        double_round_robin: bool = False,
    ) -> list[Match]:
        if interval_days < 1:
            raise ValueError("interval_days must be >= 1")
        with transaction(conn):
            if self._season_repo.get(conn, season_id) is None:
                raise NotFound("season", season_id)
            readiness = self._registrations.scheduling_readiness(conn, season_id)
            if not readiness["ready"]:
                raise PreconditionNotMet(
                    "SCHEDULED",
                    [f"{readiness['deficit']} more approved registrations required "
                     f"({readiness['approved']}/{readiness['required']})"],
                )
            if self._match_repo.list_by_season(conn, season_id):
                raise ValueError(f"Season {season_id} already has a schedule")
            team_ids = self._registrations.approved_team_ids(conn, season_id)
            if len(team_ids) < 2:
                raise ValueError("Need at least 2 approved teams to schedule a season")
            fixtures = generate_fixtures(team_ids, double_round_robin=double_round_robin)
            created = [
                self._match_repo.create(
                    conn, season_id,
                    home_team_id=f["home_team_id"],
                    away_team_id=f["away_team_id"],
                    scheduled_at=start + timedelta(days=interval_days * (f["round_number"] - 1)),
                    round_number=f["round_number"],
                )
                for f in fixtures
            ]
        logger.info("Scheduled %d matches for season %s (%d teams)", len(created), season_id, len(team_ids))
        return created
