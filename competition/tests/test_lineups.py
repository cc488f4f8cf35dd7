"""
Tests for lineup validation and the per-side approval track.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path

import pytest

import sys
sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

from competition.errors import ConcurrencyConflict, InvalidTransition, ValidationFailed
from competition.models import CardEvent, LineupStatus, MatchStatus, ReviewOutcome, SeasonPlayer
from competition.persistence.db import get_connection, init_db, set_db_path
from competition.persistence.repositories import MatchRepository, SeasonPlayerRepository, SeasonRepository
from competition.rules import SeasonRules
from competition.services.lifecycle import MatchLifecycle
from competition.services.lineups import ErrorKind, LineupService, validate_lineup
from competition.services.registration import RegistrationService
from competition.services.suspensions import SuspensionLedger

KICKOFF = datetime(2026, 3, 8, 15, 0)


# ---------- Pure validation ----------

SMALL_RULES = SeasonRules(starters_required=3, min_substitutes=1, max_substitutes=2, max_foreign_starters=1)
ROSTER = [
    SeasonPlayer("s", "t", "a"),
    SeasonPlayer("s", "t", "b"),
    SeasonPlayer("s", "t", "c"),
    SeasonPlayer("s", "t", "d"),
    SeasonPlayer("s", "t", "f1", is_foreign=True),
    SeasonPlayer("s", "t", "f2", is_foreign=True),
    SeasonPlayer("s", "t", "p", status="pending"),
]


def _never(player_id: str) -> bool:
    return False


@pytest.mark.parametrize(
    "starters, substitutes, expected",
    [
        (["a", "b", "f1"], ["c"], []),
        (["a", "b", "f1"], ["c", "d"], []),
        (["a", "b"], ["c"], [ErrorKind.STARTER_COUNT]),
        (["a", "a", "b"], ["c"], [ErrorKind.STARTER_COUNT, ErrorKind.DUPLICATE_PLAYER]),
        (["a", "b", "c"], [], [ErrorKind.SUBSTITUTE_COUNT]),
        (["a", "b", "c"], ["c"], [ErrorKind.DUPLICATE_PLAYER]),
        (["a", "f1", "f2"], ["b"], [ErrorKind.FOREIGN_LIMIT]),
        (["a", "b", "z"], ["c"], [ErrorKind.NOT_IN_ROSTER]),
        (["a", "b", "p"], ["c"], [ErrorKind.NOT_IN_ROSTER]),
        (["a", "z"], [], [ErrorKind.STARTER_COUNT, ErrorKind.SUBSTITUTE_COUNT, ErrorKind.NOT_IN_ROSTER]),
    ],
)
def test_validate_lineup_table(starters, substitutes, expected):
    result = validate_lineup(starters, substitutes, ROSTER, SMALL_RULES, _never)
    assert result.kinds() == expected
    assert result.valid is (not expected)


def test_validate_lineup_names_suspended_players():
    result = validate_lineup(["a", "b", "f1"], ["c"], ROSTER, SMALL_RULES, lambda pid: pid in {"b", "c"})
    assert result.kinds() == [ErrorKind.SUSPENDED_PLAYER]
    assert result.errors[0].player_ids == ["b", "c"]


def test_validate_lineup_foreign_substitutes_do_not_count():
    result = validate_lineup(["a", "b", "f1"], ["f2"], ROSTER, SMALL_RULES, _never)
    assert result.valid


# ---------- Approval track ----------


@pytest.fixture
def db_conn(tmp_path):
    db_path = tmp_path / "lineups_test.db"
    set_db_path(db_path)
    init_db(db_path=db_path)
    conn = get_connection()
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture
def ledger():
    return SuspensionLedger()


@pytest.fixture
def service(ledger):
    return LineupService(ledger)


def _approve(conn, registrations: RegistrationService, season_id: str, team_id: str) -> str:
    reg = registrations.invite(conn, season_id, team_id)
    registrations.send_invitation(conn, reg.id)
    registrations.respond(conn, reg.id, accept=True)
    registrations.submit(conn, reg.id, {"stadium": f"{team_id} Park"})
    registrations.review(conn, reg.id, ReviewOutcome.APPROVE)
    return reg.id


@pytest.fixture
def prepared(db_conn, ledger):
    """
    A PREPARING match between two approved season teams with 18-player rosters.
    Players 0-6 of each roster are foreign. Returns (season, match, home players, away players).
    """
    season = SeasonRepository().create(db_conn, "2026", required_team_count=2)
    registrations = RegistrationService()
    home = _approve(db_conn, registrations, season.id, "lions")
    away = _approve(db_conn, registrations, season.id, "tigers")
    players = SeasonPlayerRepository()
    home_ids = [f"lion-{i:02d}" for i in range(18)]
    away_ids = [f"tiger-{i:02d}" for i in range(18)]
    for team, ids in ((home, home_ids), (away, away_ids)):
        for i, pid in enumerate(ids):
            players.add(db_conn, season.id, team, pid, is_foreign=i < 7)
    match = MatchRepository().create(db_conn, season.id, home, away, KICKOFF, round_number=2)
    MatchLifecycle(ledger=ledger).transition(db_conn, match.id, MatchStatus.PREPARING)
    return season, match, home_ids, away_ids


def _squad(ids):
    """11 starters with 3 foreigners, 3 substitutes."""
    return ids[4:15], ids[15:18]


def test_pending_lineups_created_on_preparing(db_conn, service, prepared):
    _, match, _, _ = prepared
    for side in ("home", "away"):
        lineup = service.get(db_conn, match.id, side)
        assert lineup.status == LineupStatus.PENDING
        assert lineup.starters == [] and lineup.substitutes == []


def test_ten_starters_rejected_and_left_pending(db_conn, service, prepared):
    _, match, home_ids, _ = prepared
    before = service.get(db_conn, match.id, "home")
    with pytest.raises(ValidationFailed) as exc:
        service.submit(db_conn, match.id, "home", home_ids[4:14], home_ids[15:18])
    assert ErrorKind.STARTER_COUNT.value in exc.value.error_kinds()
    after = service.get(db_conn, match.id, "home")
    assert after.status == LineupStatus.PENDING
    assert after.version == before.version
    assert after.starters == []


def test_valid_submission(db_conn, service, prepared):
    _, match, home_ids, _ = prepared
    starters, subs = _squad(home_ids)
    lineup = service.submit(db_conn, match.id, "home", starters, subs, formation="4-4-2", kit_type="home")
    assert lineup.status == LineupStatus.SUBMITTED
    assert lineup.starters == starters
    assert lineup.formation == "4-4-2"
    steps = [(h.from_status, h.to_status) for h in service.history(db_conn, match.id, "home")]
    assert steps == [(None, "PENDING"), ("PENDING", "SUBMITTED")]


def test_foreign_limit(db_conn, service, prepared):
    _, match, home_ids, _ = prepared
    # Players 0-10: seven foreigners among the starters
    with pytest.raises(ValidationFailed) as exc:
        service.submit(db_conn, match.id, "home", home_ids[0:11], home_ids[15:18])
    assert exc.value.error_kinds() == [ErrorKind.FOREIGN_LIMIT.value]
    assert len(exc.value.errors[0].player_ids) == 7


def test_player_from_other_team_not_in_roster(db_conn, service, prepared):
    _, match, home_ids, away_ids = prepared
    starters, subs = _squad(home_ids)
    starters = starters[:-1] + [away_ids[10]]
    with pytest.raises(ValidationFailed) as exc:
        service.submit(db_conn, match.id, "home", starters, subs)
    assert exc.value.error_kinds() == [ErrorKind.NOT_IN_ROSTER.value]
    assert exc.value.errors[0].player_ids == [away_ids[10]]


def test_suspended_player_blocks_submission(db_conn, service, ledger, prepared):
    season, match, home_ids, _ = prepared
    earlier = MatchRepository().create(
        db_conn, season.id, match.away_team_id, match.home_team_id, KICKOFF - timedelta(days=7), round_number=1,
    )
    starters, subs = _squad(home_ids)
    ledger.record_card(db_conn, CardEvent(earlier.id, starters[0], match.home_team_id, "red", 70))
    ledger.recalculate(db_conn, season.id)
    with pytest.raises(ValidationFailed) as exc:
        service.submit(db_conn, match.id, "home", starters, subs)
    assert exc.value.error_kinds() == [ErrorKind.SUSPENDED_PLAYER.value]
    assert exc.value.errors[0].player_ids == [starters[0]]


def test_validate_is_a_dry_run(db_conn, service, prepared):
    _, match, home_ids, _ = prepared
    starters, subs = _squad(home_ids)
    assert service.validate(db_conn, match.id, "home", starters, subs).valid
    assert not service.validate(db_conn, match.id, "home", starters[:5], subs).valid
    assert service.get(db_conn, match.id, "home").status == LineupStatus.PENDING


def test_reject_requires_reason(db_conn, service, prepared):
    _, match, home_ids, _ = prepared
    service.submit(db_conn, match.id, "home", *_squad(home_ids))
    for reason in (None, "", "   "):
        with pytest.raises(ValidationFailed) as exc:
            service.review(db_conn, match.id, "home", "REJECT", reason)
        assert exc.value.error_kinds() == [ErrorKind.REJECTION_REASON_REQUIRED.value]
    assert service.get(db_conn, match.id, "home").status == LineupStatus.SUBMITTED


def test_reject_resubmit_approve(db_conn, service, prepared):
    _, match, home_ids, _ = prepared
    starters, subs = _squad(home_ids)
    service.submit(db_conn, match.id, "home", starters, subs)
    rejected = service.review(db_conn, match.id, "home", "REJECT", "kit clash")
    assert rejected.status == LineupStatus.REJECTED
    assert rejected.rejection_reason == "kit clash"
    service.submit(db_conn, match.id, "home", starters, subs, kit_type="away")
    approved = service.review(db_conn, match.id, "home", "APPROVE")
    assert approved.status == LineupStatus.APPROVED
    assert approved.rejection_reason is None


def test_approved_lineup_is_locked_until_unlock(db_conn, service, prepared):
    _, match, home_ids, _ = prepared
    starters, subs = _squad(home_ids)
    service.submit(db_conn, match.id, "home", starters, subs)
    service.review(db_conn, match.id, "home", "APPROVE")
    with pytest.raises(InvalidTransition):
        service.submit(db_conn, match.id, "home", starters, subs)
    with pytest.raises(InvalidTransition):
        service.save_draft(db_conn, match.id, "home", starters, subs)
    unlocked = service.unlock(db_conn, match.id, "home")
    assert unlocked.status == LineupStatus.SUBMITTED
    assert service.history(db_conn, match.id, "home")[-1].note == "unlock"
    with pytest.raises(InvalidTransition):
        service.unlock(db_conn, match.id, "home")


def test_sides_are_independent(db_conn, service, prepared):
    _, match, home_ids, away_ids = prepared
    service.submit(db_conn, match.id, "home", *_squad(home_ids))
    service.review(db_conn, match.id, "home", "APPROVE")
    assert service.status(db_conn, match.id, "away") == LineupStatus.PENDING
    service.submit(db_conn, match.id, "away", *_squad(away_ids))
    service.review(db_conn, match.id, "away", "REJECT", "late")
    assert service.status(db_conn, match.id, "home") == LineupStatus.APPROVED


def test_lineups_freeze_once_match_ready(db_conn, service, ledger, prepared):
    _, match, home_ids, away_ids = prepared
    for side, ids in (("home", home_ids), ("away", away_ids)):
        service.submit(db_conn, match.id, side, *_squad(ids))
        service.review(db_conn, match.id, side, "APPROVE")
    lifecycle = MatchLifecycle(lineups=service, ledger=ledger)
    lifecycle.update_officials(db_conn, match.id, complete=True)
    lifecycle.ready(db_conn, match.id)
    with pytest.raises(InvalidTransition) as exc:
        service.unlock(db_conn, match.id, "home")
    assert exc.value.entity == "match"
    assert exc.value.from_status == "READY"
    assert service.status(db_conn, match.id, "home") == LineupStatus.APPROVED


def test_drafts_and_submitting_the_saved_draft(db_conn, service, prepared):
    _, match, home_ids, _ = prepared
    starters, subs = _squad(home_ids)
    with pytest.raises(ValidationFailed) as exc:
        service.save_draft(db_conn, match.id, "home", home_ids[0:12], [])
    assert exc.value.error_kinds() == [ErrorKind.STARTER_COUNT.value]

    service.save_draft(db_conn, match.id, "home", starters[:6], [])
    with pytest.raises(ValidationFailed):
        service.submit(db_conn, match.id, "home")
    service.save_draft(db_conn, match.id, "home", starters, subs, formation="4-3-3")
    lineup = service.submit(db_conn, match.id, "home")
    assert lineup.status == LineupStatus.SUBMITTED
    assert lineup.starters == starters
    assert lineup.formation == "4-3-3"


def test_stale_version_conflicts(db_conn, service, prepared):
    _, match, home_ids, _ = prepared
    starters, subs = _squad(home_ids)
    version = service.get(db_conn, match.id, "home").version
    saved = service.save_draft(db_conn, match.id, "home", starters, subs, expected_version=version)
    assert saved.version == version + 1
    with pytest.raises(ConcurrencyConflict):
        service.submit(db_conn, match.id, "home", expected_version=version)
    assert service.status(db_conn, match.id, "home") == LineupStatus.PENDING
