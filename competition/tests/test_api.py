"""
API integration tests.
Uses TestClient to avoid starting a server.
Requires: pip install httpx (for TestClient)
"""
from __future__ import annotations

from pathlib import Path

import pytest

try:
    from fastapi.testclient import TestClient
    HAS_HTTPX = True
except (ImportError, RuntimeError):
    HAS_HTTPX = False

# Ensure project root on path
import sys
sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

pytestmark = pytest.mark.skipif(not HAS_HTTPX, reason="httpx required for TestClient")

from competition.api import app
from competition.auth import create_access_token
from competition.persistence.db import init_db, set_db_path

SMALL_RULES = {"starters_required": 2, "min_substitutes": 1, "max_substitutes": 2, "max_foreign_starters": 1}


@pytest.fixture(autouse=True)
def isolated_db(tmp_path):
    """Use a temporary DB for each test."""
    db_path = tmp_path / "test.db"
    set_db_path(db_path)
    init_db(db_path=db_path)
    yield db_path


@pytest.fixture
def client():
    return TestClient(app)


def _auth(role: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token('tester', role)}"}


ADMIN = _auth("admin")
REVIEWER = _auth("reviewer")
TEAM = _auth("team")


def _create_season(client, required=2, **extra):
    resp = client.post(
        "/seasons",
        json={"name": "Spring 2026", "required_team_count": required, "rules": SMALL_RULES, **extra},
        headers=ADMIN,
    )
    assert resp.status_code == 200
    return resp.json()


def _approved_team(client, season_id, team_id):
    reg = client.post(f"/seasons/{season_id}/registrations", json={"team_id": team_id}, headers=ADMIN).json()
    client.post(f"/seasons/{season_id}/registrations/send-invitations", headers=ADMIN)
    assert client.post(f"/registrations/{reg['id']}/respond", json={"accept": True}, headers=TEAM).status_code == 200
    client.post(f"/registrations/{reg['id']}/submit", json={"payload": {"stadium": "Riverside"}}, headers=TEAM)
    resp = client.post(f"/registrations/{reg['id']}/review", json={"outcome": "APPROVE"}, headers=REVIEWER)
    assert resp.json()["status"] == "APPROVED"
    return reg["id"]


def _roster(client, season_id, season_team_id, prefix):
    ids = [f"{prefix}-{i}" for i in range(4)]
    for pid in ids:
        resp = client.post(
            f"/seasons/{season_id}/players",
            json={"season_team_id": season_team_id, "player_id": pid},
            headers=ADMIN,
        )
        assert resp.status_code == 200
    return ids


def test_create_season_requires_admin(client):
    body = {"name": "S", "required_team_count": 2}
    assert client.post("/seasons", json=body).status_code == 401
    assert client.post("/seasons", json=body, headers=TEAM).status_code == 403
    assert client.post("/seasons", json=body, headers={"Authorization": "Bearer not-a-token"}).status_code == 401
    resp = client.post("/seasons", json=body, headers=ADMIN)
    assert resp.status_code == 200
    assert resp.json()["rules"]["yellow_threshold"] == 2


def test_get_season(client):
    season = _create_season(client)
    resp = client.get(f"/seasons/{season['id']}")
    assert resp.status_code == 200
    assert resp.json()["rules"]["starters_required"] == 2


def test_unknown_season_is_404(client):
    resp = client.get("/seasons/nope")
    assert resp.status_code == 404
    assert resp.json() == {"kind": "NOT_FOUND", "message": "season not found: nope", "entity": "season", "id": "nope"}


def test_invalid_registration_transition_is_409(client):
    season = _create_season(client)
    reg = client.post(f"/seasons/{season['id']}/registrations", json={"team_id": "t1"}, headers=ADMIN).json()
    resp = client.post(f"/registrations/{reg['id']}/respond", json={"accept": True}, headers=TEAM)
    assert resp.status_code == 409
    body = resp.json()
    assert body["kind"] == "INVALID_TRANSITION"
    assert (body["from"], body["attempted"]) == ("DRAFT_INVITE", "ACCEPTED")
    history = client.get(f"/registrations/{reg['id']}").json()["history"]
    assert len(history) == 1


def test_duplicate_invite_is_400(client):
    season = _create_season(client)
    client.post(f"/seasons/{season['id']}/registrations", json={"team_id": "t1"}, headers=ADMIN)
    resp = client.post(f"/seasons/{season['id']}/registrations", json={"team_id": "t1"}, headers=ADMIN)
    assert resp.status_code == 400
    assert resp.json()["kind"] == "BAD_REQUEST"


def test_schedule_refused_until_ready(client):
    season = _create_season(client, required=3)
    _approved_team(client, season["id"], "t1")
    _approved_team(client, season["id"], "t2")
    assert client.get(f"/seasons/{season['id']}/readiness").json() == {
        "ready": False, "approved": 2, "required": 3, "deficit": 1,
    }
    resp = client.post(f"/seasons/{season['id']}/schedule", json={"start": "2026-03-01T15:00:00"}, headers=ADMIN)
    assert resp.status_code == 422
    body = resp.json()
    assert body["kind"] == "PRECONDITION_NOT_MET"
    assert body["missing"] == ["1 more approved registrations required (2/3)"]


def test_lineup_validation_errors_are_listed(client):
    season = _create_season(client)
    home = _approved_team(client, season["id"], "t1")
    _approved_team(client, season["id"], "t2")
    _roster(client, season["id"], home, "h")
    client.post(f"/seasons/{season['id']}/schedule", json={"start": "2026-03-01T15:00:00"}, headers=ADMIN)
    match = client.get(f"/seasons/{season['id']}/matches").json()["matches"][0]
    client.post(f"/matches/{match['id']}/officials-started", headers=ADMIN)
    side = "home" if match["home_team_id"] == home else "away"

    dry = client.post(f"/matches/{match['id']}/lineups/{side}/validate", json={"starters": ["h-0"], "substitutes": []})
    assert dry.status_code == 200
    assert [e["kind"] for e in dry.json()["errors"]] == ["STARTER_COUNT", "SUBSTITUTE_COUNT"]

    resp = client.post(
        f"/matches/{match['id']}/lineups/{side}/submit",
        json={"starters": ["h-0", "stranger"], "substitutes": ["h-1"]},
        headers=TEAM,
    )
    assert resp.status_code == 422
    body = resp.json()
    assert body["kind"] == "VALIDATION_FAILED"
    assert body["errors"] == [
        {"kind": "NOT_IN_ROSTER", "message": "players not on the approved season roster", "player_ids": ["stranger"]},
    ]
    assert client.get(f"/matches/{match['id']}/lineups/{side}").json()["status"] == "PENDING"


def test_lineup_review_needs_reviewer(client):
    season = _create_season(client)
    _approved_team(client, season["id"], "t1")
    _approved_team(client, season["id"], "t2")
    client.post(f"/seasons/{season['id']}/schedule", json={"start": "2026-03-01T15:00:00"}, headers=ADMIN)
    match = client.get(f"/seasons/{season['id']}/matches").json()["matches"][0]
    client.post(f"/seasons/{season['id']}/auto-prepare", headers=ADMIN)
    resp = client.post(f"/matches/{match['id']}/lineups/home/review", json={"outcome": "APPROVE"}, headers=TEAM)
    assert resp.status_code == 403
    resp = client.post(f"/matches/{match['id']}/lineups/home/review", json={"outcome": "REJECT"}, headers=REVIEWER)
    assert resp.status_code == 422
    assert resp.json()["errors"][0]["kind"] == "REJECTION_REASON_REQUIRED"


def test_can_enter_lists_missing(client):
    season = _create_season(client)
    _approved_team(client, season["id"], "t1")
    _approved_team(client, season["id"], "t2")
    client.post(f"/seasons/{season['id']}/schedule", json={"start": "2026-03-01T15:00:00"}, headers=ADMIN)
    match = client.get(f"/seasons/{season['id']}/matches").json()["matches"][0]
    client.post(f"/matches/{match['id']}/officials-started", headers=ADMIN)
    client.put(f"/matches/{match['id']}/officials", json={"complete": False, "missing_roles": ["referee"]}, headers=ADMIN)
    resp = client.get(f"/matches/{match['id']}/can-enter/READY")
    assert resp.json() == {
        "allowed": False,
        "missing": ["home lineup not approved", "away lineup not approved", "officials not complete", "no referee assigned"],
    }
    ready = client.post(f"/matches/{match['id']}/ready", headers=ADMIN)
    assert ready.status_code == 422
    assert ready.json()["target_state"] == "READY"


def test_stale_version_is_409(client):
    season = _create_season(client)
    _approved_team(client, season["id"], "t1")
    _approved_team(client, season["id"], "t2")
    client.post(f"/seasons/{season['id']}/schedule", json={"start": "2026-03-01T15:00:00"}, headers=ADMIN)
    match = client.get(f"/seasons/{season['id']}/matches").json()["matches"][0]
    first = client.put(
        f"/matches/{match['id']}/officials",
        json={"complete": True, "expected_version": match["version"]},
        headers=ADMIN,
    )
    assert first.status_code == 200
    second = client.put(
        f"/matches/{match['id']}/officials",
        json={"complete": False, "expected_version": match["version"]},
        headers=ADMIN,
    )
    assert second.status_code == 409
    assert second.json()["kind"] == "CONCURRENCY_CONFLICT"


def test_discard_overrides_requires_admin(client):
    season = _create_season(client)
    url = f"/seasons/{season['id']}/standings/recompute"
    assert client.post(url, json={"mode": "live"}).status_code == 422
    assert client.post(url, json={"mode": "live", "overrides": "discard"}, headers=REVIEWER).status_code == 403
    assert client.post(url, json={"mode": "live", "overrides": "discard"}, headers=ADMIN).status_code == 200
    assert client.post(url, json={"mode": "live", "overrides": "preserve"}).status_code == 200


def test_season_walkthrough(client):
    """Registration to completed match, then cards, suspensions and standings."""
    season = _create_season(client)
    sid = season["id"]
    teams = [_approved_team(client, sid, t) for t in ("lions", "tigers")]
    rosters = {teams[0]: _roster(client, sid, teams[0], "l"), teams[1]: _roster(client, sid, teams[1], "t")}

    resp = client.post(
        f"/seasons/{sid}/schedule",
        json={"start": "2026-03-01T15:00:00", "double_round_robin": True},
        headers=ADMIN,
    )
    assert resp.status_code == 200
    first, second = resp.json()["matches"]
    mid = first["id"]

    assert client.post(f"/matches/{mid}/officials-started", headers=ADMIN).json()["status"] == "PREPARING"
    client.put(f"/matches/{mid}/officials", json={"complete": True}, headers=ADMIN)
    for side, team in (("home", first["home_team_id"]), ("away", first["away_team_id"])):
        players = rosters[team]
        resp = client.post(
            f"/matches/{mid}/lineups/{side}/submit",
            json={"starters": players[:2], "substitutes": players[2:3], "formation": "1-1"},
            headers=TEAM,
        )
        assert resp.status_code == 200
        resp = client.post(f"/matches/{mid}/lineups/{side}/review", json={"outcome": "APPROVE"}, headers=REVIEWER)
        assert resp.json()["status"] == "APPROVED"

    assert client.post(f"/matches/{mid}/ready", headers=ADMIN).json()["status"] == "READY"
    assert client.post(f"/matches/{mid}/kickoff", headers=ADMIN).json()["status"] == "IN_PROGRESS"

    home_player = rosters[first["home_team_id"]][0]
    card = client.post(
        f"/matches/{mid}/cards",
        json={"player_id": home_player, "team_id": first["home_team_id"], "card_type": "red", "minute": 61},
        headers=REVIEWER,
    )
    assert card.status_code == 200

    finished = client.post(f"/matches/{mid}/finish", json={"home_score": 2, "away_score": 1}, headers=ADMIN)
    assert finished.json()["status"] == "FINISHED"
    client.post(f"/matches/{mid}/reports/referee", headers=ADMIN)
    assert client.post(f"/matches/{mid}/reports/supervisor", headers=ADMIN).json()["status"] == "REPORTED"
    assert client.post(f"/matches/{mid}/complete", headers=ADMIN).json()["status"] == "COMPLETED"

    suspensions = client.post(f"/seasons/{sid}/suspensions/recalculate", headers=REVIEWER).json()["suspensions"]
    assert [(s["player_id"], s["reason"], s["status"]) for s in suspensions] == [(home_player, "RED_CARD", "active")]
    eligibility = client.get(f"/seasons/{sid}/players/{home_player}/eligibility", params={"match_id": second["id"]})
    assert eligibility.json()["suspended"] is True
    eligibility = client.get(f"/seasons/{sid}/players/{home_player}/eligibility", params={"match_id": mid})
    assert eligibility.json()["suspended"] is False
    assert client.get(f"/seasons/{sid}/cards/summary").json()["players"] == [
        {"player_id": home_player, "team_id": first["home_team_id"], "yellow": 0, "red": 1},
    ]

    table = client.post(
        f"/seasons/{sid}/standings/recompute", json={"mode": "live", "overrides": "preserve"}
    ).json()["standings"]
    assert [(r["season_team_id"], r["points"], r["rank"]) for r in table] == [
        (first["home_team_id"], 3, 1),
        (first["away_team_id"], 0, 2),
    ]
    stored = client.get(f"/seasons/{sid}/standings").json()
    assert stored["mode"] == "live"
    assert stored["standings"] == table

    counts = client.get(f"/seasons/{sid}/matches").json()["status_counts"]
    assert counts["COMPLETED"] == 1
    assert counts["SCHEDULED"] == 1


def test_manual_suspension_and_cancel(client):
    season = _create_season(client)
    sid = season["id"]
    team = _approved_team(client, sid, "lions")
    resp = client.post(
        f"/seasons/{sid}/suspensions",
        json={"player_id": "p1", "team_id": team, "matches_banned": 2, "notes": "conduct"},
        headers=ADMIN,
    )
    assert resp.status_code == 200
    key = resp.json()["key"]
    assert resp.json()["reason"] == "OTHER"
    assert client.post(f"/suspensions/{key}/cancel", json={"note": "appeal"}, headers=REVIEWER).status_code == 403
    cancelled = client.post(f"/suspensions/{key}/cancel", json={"note": "appeal"}, headers=ADMIN)
    assert cancelled.json()["status"] == "cancelled"
    listed = client.get(f"/seasons/{sid}/suspensions", params={"status": "cancelled"}).json()["suspensions"]
    assert [s["key"] for s in listed] == [key]


def test_standings_adjust_and_reset(client):
    season = _create_season(client)
    sid = season["id"]
    a = _approved_team(client, sid, "a")
    _approved_team(client, sid, "b")
    resp = client.post(f"/seasons/{sid}/standings/{a}/adjust", json={"delta": {"points": 3}}, headers=ADMIN)
    assert resp.status_code == 200
    table = client.get(f"/seasons/{sid}/standings").json()["standings"]
    assert (table[0]["season_team_id"], table[0]["points"], table[0]["manual_override"]) == (a, 3, True)
    bad = client.post(f"/seasons/{sid}/standings/{a}/adjust", json={"delta": {"rank": 1}}, headers=ADMIN)
    assert bad.status_code == 400
    client.post(f"/seasons/{sid}/standings/{a}/reset", json={"note": "start over"}, headers=ADMIN)
    table = client.get(f"/seasons/{sid}/standings").json()["standings"]
    row = next(r for r in table if r["season_team_id"] == a)
    assert row["points"] == 0
