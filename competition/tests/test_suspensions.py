"""
Tests for the suspension ledger.
The fold is tested table-style on in-memory events; the ledger on a temp DB.
"""
from __future__ import annotations

import random
from datetime import datetime, timedelta
from pathlib import Path

import pytest

import sys
sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

from competition.errors import InvalidTransition, NotFound
from competition.models import CardEvent, Match, MatchStatus, SuspensionReason, SuspensionStatus
from competition.persistence.db import get_connection, init_db, set_db_path
from competition.persistence.repositories import MatchRepository, RegistrationRepository, SeasonRepository
from competition.rules import SeasonRules
from competition.services.suspensions import SuspensionLedger, build_ledger

KICKOFF = datetime(2026, 3, 1, 15, 0)


def _match(mid: str, round_no: int, home: str = "H", away: str = "A") -> Match:
    return Match(
        id=mid, season_id="s", home_team_id=home, away_team_id=away,
        status=MatchStatus.FINISHED.value, scheduled_at=KICKOFF + timedelta(days=7 * (round_no - 1)),
    )


def _card(match_id: str, card_type: str, minute: int = 30, player: str = "p1", team: str = "H") -> CardEvent:
    return CardEvent(match_id=match_id, player_id=player, team_id=team, card_type=card_type, minute=minute)


MATCHES = [_match(f"m{i}", i) for i in range(1, 7)]


def _summary(ledger):
    return [(s.trigger_match_id, s.reason, s.matches_banned) for s in ledger]


# ---------- Pure fold ----------


@pytest.mark.parametrize(
    "events, rules, expected",
    [
        # Straight red
        ([_card("m1", "red")], SeasonRules(), [("m1", "RED_CARD", 1)]),
        # Yellows in two matches reach threshold 2
        ([_card("m1", "yellow"), _card("m2", "yellow")], SeasonRules(), [("m2", "TWO_YELLOW_CARDS", 1)]),
        # Counter resets: the third yellow alone is not enough, the fourth is
        (
            [_card(f"m{i}", "yellow") for i in range(1, 5)],
            SeasonRules(),
            [("m2", "TWO_YELLOW_CARDS", 1), ("m4", "TWO_YELLOW_CARDS", 1)],
        ),
        # Two yellows in one match: ejection, ban from second_yellow_ban
        (
            [_card("m1", "yellow", 20), _card("m1", "yellow", 70)],
            SeasonRules(second_yellow_ban=2),
            [("m1", "RED_CARD", 2)],
        ),
        # ... and those yellows do not count toward accumulation
        (
            [_card("m1", "yellow", 20), _card("m1", "yellow", 70), _card("m2", "yellow")],
            SeasonRules(),
            [("m1", "RED_CARD", 1)],
        ),
        # Red and double yellow in one match: a single suspension, larger ban
        (
            [_card("m1", "yellow", 10), _card("m1", "yellow", 40), _card("m1", "red", 80)],
            SeasonRules(red_card_ban=3, second_yellow_ban=1),
            [("m1", "RED_CARD", 3)],
        ),
        # Threshold other than 2 is ACCUMULATION
        (
            [_card(f"m{i}", "yellow") for i in range(1, 4)],
            SeasonRules(yellow_threshold=3, yellow_ban=2),
            [("m3", "ACCUMULATION", 2)],
        ),
        # Window of 2 team matches: yellows in m1 and m4 never meet
        (
            [_card("m1", "yellow"), _card("m4", "yellow")],
            SeasonRules(accumulation_window=2),
            [],
        ),
        # ... but m1 and m2 do
        (
            [_card("m1", "yellow"), _card("m2", "yellow")],
            SeasonRules(accumulation_window=2),
            [("m2", "TWO_YELLOW_CARDS", 1)],
        ),
    ],
)
def test_fold_table(events, rules, expected):
    assert _summary(build_ledger(events, MATCHES, rules)) == expected


def test_fold_ignores_arrival_order():
    events = [
        _card("m1", "yellow", player="p1"),
        _card("m3", "yellow", player="p1"),
        _card("m2", "red", player="p2", team="A"),
        _card("m4", "yellow", 15, player="p3"),
        _card("m4", "yellow", 60, player="p3"),
        _card("m5", "yellow", player="p1"),
    ]
    baseline = [s.to_dict() for s in build_ledger(events, MATCHES, SeasonRules())]
    shuffled = list(events)
    for seed in range(5):
        random.Random(seed).shuffle(shuffled)
        assert [s.to_dict() for s in build_ledger(shuffled, list(reversed(MATCHES)), SeasonRules())] == baseline


def test_fold_skips_events_it_cannot_order():
    ledger = build_ledger([_card("ghost", "red"), _card("m1", "red")], MATCHES, SeasonRules())
    assert _summary(ledger) == [("m1", "RED_CARD", 1)]


def test_fold_keys_are_deterministic():
    ledger = build_ledger([_card("m2", "red", player="p9")], MATCHES, SeasonRules())
    assert ledger[0].key == "p9:m2:RED_CARD"


# ---------- Persisted ledger ----------


@pytest.fixture
def db_conn(tmp_path):
    db_path = tmp_path / "suspensions_test.db"
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
def season_setup(db_conn):
    """Season with two season teams and four matches between them, one week apart."""
    season = SeasonRepository().create(db_conn, "2026", required_team_count=2)
    reg_repo = RegistrationRepository()
    home = reg_repo.create(db_conn, season.id, "lions")
    away = reg_repo.create(db_conn, season.id, "tigers")
    match_repo = MatchRepository()
    matches = []
    for i in range(4):
        h, a = (home.id, away.id) if i % 2 == 0 else (away.id, home.id)
        matches.append(match_repo.create(
            db_conn, season.id, h, a, KICKOFF + timedelta(days=7 * i), round_number=i + 1, id=f"m{i + 1}",
        ))
    return season, home.id, away.id, matches


def _finish(db_conn, match_id):
    repo = MatchRepository()
    m = repo.get(db_conn, match_id)
    m.status = MatchStatus.FINISHED.value
    m.home_score, m.away_score = 1, 0
    return repo.update(db_conn, m)


def _red(team_id, match_id, player="p1"):
    return CardEvent(match_id=match_id, player_id=player, team_id=team_id, card_type="red", minute=55)


def _yellow(team_id, match_id, player="p1", minute=30):
    return CardEvent(match_id=match_id, player_id=player, team_id=team_id, card_type="yellow", minute=minute)


def test_red_card_bans_next_match_not_own(db_conn, ledger, season_setup):
    """Red in M1: suspended for M2, not for M1 itself."""
    season, home, _, _ = season_setup
    ledger.record_card(db_conn, _red(home, "m1"))
    ledger.recalculate(db_conn, season.id)
    assert ledger.is_suspended(db_conn, season.id, "p1", "m2")["suspended"] is True
    assert ledger.is_suspended(db_conn, season.id, "p1", "m1")["suspended"] is False
    result = ledger.is_suspended(db_conn, season.id, "p1", "m2")
    assert result["reason"] == "RED_CARD"
    assert result["suspension_key"] == "p1:m1:RED_CARD"


def test_record_card_has_no_side_effect(db_conn, ledger, season_setup):
    season, home, _, _ = season_setup
    ledger.record_card(db_conn, _red(home, "m1"))
    assert ledger.list_suspensions(db_conn, season.id) == []


def test_second_yellow_creates_one_suspension_and_resets(db_conn, ledger, season_setup):
    season, home, _, _ = season_setup
    ledger.record_card(db_conn, _yellow(home, "m1"))
    ledger.record_card(db_conn, _yellow(home, "m2"))
    ledger.record_card(db_conn, _yellow(home, "m3"))
    suspensions = ledger.recalculate(db_conn, season.id)
    assert len(suspensions) == 1
    s = suspensions[0]
    assert s.reason == SuspensionReason.TWO_YELLOW_CARDS
    assert s.matches_banned == 1
    assert s.trigger_match_id == "m2"


def test_recalculate_is_idempotent(db_conn, ledger, season_setup):
    season, home, away, _ = season_setup
    ledger.record_card(db_conn, _red(home, "m1"))
    ledger.record_card(db_conn, _yellow(away, "m1", player="p2"))
    ledger.record_card(db_conn, _yellow(away, "m2", player="p2"))
    _finish(db_conn, "m1")
    _finish(db_conn, "m2")
    first = [s.to_dict() for s in ledger.recalculate(db_conn, season.id)]
    second = [s.to_dict() for s in ledger.recalculate(db_conn, season.id)]
    assert first == second
    assert len(first) == 2


def test_serving_flips_status_at_threshold(db_conn, ledger, season_setup):
    season, home, _, _ = season_setup
    db_conn.execute(
        "UPDATE seasons SET rules_json = ? WHERE id = ?",
        (SeasonRules(red_card_ban=2).to_json(), season.id),
    )
    ledger.record_card(db_conn, _red(home, "m1"))
    ledger.recalculate(db_conn, season.id)

    m2 = _finish(db_conn, "m2")
    assert ledger.serve_match(db_conn, m2) == 1
    s = ledger.list_suspensions(db_conn, season.id)[0]
    assert (s.served_matches, s.status) == (1, SuspensionStatus.ACTIVE)
    assert ledger.is_suspended(db_conn, season.id, "p1", "m3")["suspended"] is True

    m3 = _finish(db_conn, "m3")
    ledger.serve_match(db_conn, m3)
    s = ledger.list_suspensions(db_conn, season.id)[0]
    assert (s.served_matches, s.status) == (2, SuspensionStatus.SERVED)
    assert ledger.is_suspended(db_conn, season.id, "p1", "m4")["suspended"] is False
    # Historical view: still suspended for the matches served
    assert ledger.is_suspended(db_conn, season.id, "p1", "m3")["suspended"] is True


def test_mark_served_idempotent_per_match(db_conn, ledger, season_setup):
    season, home, _, _ = season_setup
    db_conn.execute(
        "UPDATE seasons SET rules_json = ? WHERE id = ?",
        (SeasonRules(red_card_ban=3).to_json(), season.id),
    )
    ledger.record_card(db_conn, _red(home, "m1"))
    key = ledger.recalculate(db_conn, season.id)[0].key
    _finish(db_conn, "m2")
    ledger.mark_served(db_conn, key, "m2")
    s = ledger.mark_served(db_conn, key, "m2")
    assert s.served_matches == 1
    assert ledger.serve_match(db_conn, MatchRepository().get(db_conn, "m2")) == 0


def test_mark_served_needs_played_match_after_trigger(db_conn, ledger, season_setup):
    season, home, _, _ = season_setup
    ledger.record_card(db_conn, _red(home, "m3"))
    key = ledger.recalculate(db_conn, season.id)[0].key
    # m4 comes after the trigger but has not been played
    with pytest.raises(InvalidTransition):
        ledger.mark_served(db_conn, key, "m4")
    # m2 was played but comes before the trigger
    _finish(db_conn, "m2")
    with pytest.raises(ValueError):
        ledger.mark_served(db_conn, key, "m2")
    s = ledger.list_suspensions(db_conn, season.id)[0]
    assert (s.served_matches, s.status) == (0, SuspensionStatus.ACTIVE)
    _finish(db_conn, "m4")
    s = ledger.mark_served(db_conn, key, "m4")
    assert (s.served_matches, s.status) == (1, SuspensionStatus.SERVED)


def test_served_never_exceeds_banned(db_conn, ledger, season_setup):
    season, home, _, _ = season_setup
    ledger.record_card(db_conn, _red(home, "m1"))
    key = ledger.recalculate(db_conn, season.id)[0].key
    for mid in ("m2", "m3", "m4"):
        _finish(db_conn, mid)
        ledger.mark_served(db_conn, key, mid)
    s = ledger.list_suspensions(db_conn, season.id)[0]
    assert s.served_matches == s.matches_banned == 1
    assert s.status == SuspensionStatus.SERVED


def test_recalculate_backfills_serves_for_played_matches(db_conn, ledger, season_setup):
    season, home, _, _ = season_setup
    ledger.record_card(db_conn, _red(home, "m1"))
    _finish(db_conn, "m1")
    _finish(db_conn, "m2")
    suspensions = ledger.recalculate(db_conn, season.id)
    assert suspensions[0].served_matches == 1
    assert suspensions[0].status == SuspensionStatus.SERVED
    # Re-running does not serve again
    assert ledger.recalculate(db_conn, season.id)[0].served_matches == 1


def test_rule_change_archives_stale_suspension(db_conn, ledger, season_setup):
    season, home, _, _ = season_setup
    ledger.record_card(db_conn, _yellow(home, "m1"))
    ledger.record_card(db_conn, _yellow(home, "m2"))
    assert len(ledger.recalculate(db_conn, season.id)) == 1
    db_conn.execute(
        "UPDATE seasons SET rules_json = ? WHERE id = ?",
        (SeasonRules(yellow_threshold=3).to_json(), season.id),
    )
    suspensions = ledger.recalculate(db_conn, season.id)
    assert [s.status for s in suspensions] == [SuspensionStatus.ARCHIVED]
    assert ledger.is_suspended(db_conn, season.id, "p1", "m3")["suspended"] is False


def test_manual_suspension_survives_recalculate(db_conn, ledger, season_setup):
    season, home, _, _ = season_setup
    manual = ledger.add_manual_suspension(db_conn, season.id, "p7", home, 1, notes="conduct")
    assert manual.reason == SuspensionReason.OTHER
    assert manual.manual is True
    ledger.recalculate(db_conn, season.id)
    assert ledger.list_suspensions(db_conn, season.id)[0].status == SuspensionStatus.ACTIVE
    assert ledger.is_suspended(db_conn, season.id, "p7", "m1")["suspended"] is True

    cancelled = ledger.cancel_suspension(db_conn, manual.key, "appeal upheld")
    assert cancelled.status == SuspensionStatus.CANCELLED
    assert ledger.is_suspended(db_conn, season.id, "p7", "m1")["suspended"] is False
    with pytest.raises(InvalidTransition):
        ledger.cancel_suspension(db_conn, manual.key)


def test_cancelled_card_suspension_stays_cancelled(db_conn, ledger, season_setup):
    season, home, _, _ = season_setup
    ledger.record_card(db_conn, _red(home, "m1"))
    key = ledger.recalculate(db_conn, season.id)[0].key
    ledger.cancel_suspension(db_conn, key)
    assert ledger.recalculate(db_conn, season.id)[0].status == SuspensionStatus.CANCELLED


def test_record_card_validation(db_conn, ledger, season_setup):
    _, home, _, _ = season_setup
    with pytest.raises(NotFound):
        ledger.record_card(db_conn, _red(home, "nope"))
    with pytest.raises(ValueError):
        ledger.record_card(db_conn, _red("other-team", "m1"))
    with pytest.raises(ValueError):
        ledger.record_card(db_conn, CardEvent("m1", "p1", home, "green", 10))


def test_card_summary(db_conn, ledger, season_setup):
    season, home, away, _ = season_setup
    ledger.record_card(db_conn, _yellow(home, "m1"))
    ledger.record_card(db_conn, _red(home, "m2"))
    ledger.record_card(db_conn, _yellow(away, "m2", player="p2"))
    assert ledger.card_summary(db_conn, season.id) == [
        {"player_id": "p1", "team_id": home, "yellow": 1, "red": 1},
        {"player_id": "p2", "team_id": away, "yellow": 1, "red": 0},
    ]
