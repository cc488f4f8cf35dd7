#!/usr/bin/env python3
"""
Season walkthrough: Register teams → Schedule → Play round 1 → Suspensions → Standings.
Run from project root: python3 scripts/season_walkthrough.py
"""
from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path

# Ensure project root on path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from competition.config import configure_logging
from competition.models import CardEvent, OverridePolicy, ReviewOutcome
from competition.persistence import SeasonPlayerRepository, SeasonRepository, get_connection, init_db
from competition.persistence.db import set_db_path
from competition.rules import SeasonRules
from competition.services import (
    LineupService,
    MatchLifecycle,
    RegistrationService,
    SchedulingService,
    StandingsCalculator,
    SuspensionLedger,
)

TEAMS = ["harbour", "quarry", "mill", "foundry"]


def main() -> None:
    configure_logging("WARNING")
    # Use data/walkthrough.db for demo (distinct from competition.db)
    db_path = PROJECT_ROOT / "data" / "walkthrough.db"
    set_db_path(db_path)
    init_db(db_path=db_path)

    conn = get_connection()
    try:
        ledger = SuspensionLedger()
        registrations = RegistrationService()
        lineups = LineupService(ledger)
        lifecycle = MatchLifecycle(lineups, ledger)
        scheduling = SchedulingService(registrations)
        standings = StandingsCalculator()
        players = SeasonPlayerRepository()

        # 1. Season with short squads
        rules = SeasonRules(starters_required=5, min_substitutes=1, max_substitutes=2, max_foreign_starters=2)
        season = SeasonRepository().create(conn, f"Walkthrough {datetime.now():%Y-%m-%d %H:%M}", len(TEAMS), rules=rules)
        print(f"Created season: {season.name} (id={season.id})")

        # 2. Registrations all the way to APPROVED, plus a roster per team
        rosters: dict[str, list[str]] = {}
        for team in TEAMS:
            reg = registrations.invite(conn, season.id, team)
            registrations.send_invitation(conn, reg.id)
            registrations.respond(conn, reg.id, accept=True)
            registrations.submit(conn, reg.id, {"stadium": f"{team.title()} Park"})
            registrations.review(conn, reg.id, ReviewOutcome.APPROVE, "ok")
            rosters[reg.id] = [f"{team}-{i}" for i in range(7)]
            for i, pid in enumerate(rosters[reg.id]):
                players.add(conn, season.id, reg.id, pid, is_foreign=i < 2)
        print(f"Readiness: {registrations.scheduling_readiness(conn, season.id)}")

        # 3. Schedule
        matches = scheduling.generate_season_schedule(conn, season.id, datetime(2026, 3, 7, 15, 0))
        print(f"Scheduled {len(matches)} matches over {max(m.round_number for m in matches)} rounds")

        # 4. Play round 1
        round_one = [m for m in matches if m.round_number == 1]
        for n, match in enumerate(round_one):
            lifecycle.officials_assignment_started(conn, match.id)
            lifecycle.update_officials(conn, match.id, complete=True)
            for side, team_id in (("home", match.home_team_id), ("away", match.away_team_id)):
                squad = rosters[team_id]
                lineups.submit(conn, match.id, side, squad[:5], squad[5:7], formation="2-2-1")
                lineups.review(conn, match.id, side, "APPROVE")
            lifecycle.ready(conn, match.id)
            lifecycle.kickoff(conn, match.id)
            offender = rosters[match.away_team_id][0]
            ledger.record_card(conn, CardEvent(match.id, offender, match.away_team_id, "red" if n == 0 else "yellow", 40))
            finished = lifecycle.finish(conn, match.id, 2, n)
            lifecycle.record_report(conn, match.id, "referee")
            lifecycle.record_report(conn, match.id, "supervisor")
            lifecycle.complete(conn, match.id)
            print(f"  {finished.home_team_id[:8]} {finished.home_score}-{finished.away_score} {finished.away_team_id[:8]}")

        # 5. Suspensions
        for s in ledger.recalculate(conn, season.id):
            print(f"Suspension {s.key}: {s.matches_banned} match(es), {s.status}")
        next_match = next(m for m in matches if m.round_number == 2)
        for team_id in next_match.team_ids():
            for pid in rosters[team_id][:1]:
                state = ledger.is_suspended(conn, season.id, pid, next_match.id)
                print(f"  {pid} eligible for round 2: {not state['suspended']}")

        # 6. Standings
        print("\nLive standings:")
        for row in standings.recompute(conn, season.id, "live", OverridePolicy.PRESERVE):
            print(f"  {row.rank}. {row.season_team_id[:8]}  P{row.played} Pts {row.points} GD {row.goal_difference:+d}")

        print("\nSeason walkthrough complete.")
    finally:
        conn.close()


if __name__ == "__main__":
    main()
