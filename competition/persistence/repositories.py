"""
Repository interfaces for competition data.
No business logic; only read/write operations. Callers own the transaction.
"""
from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable

from competition.errors import ConcurrencyConflict
from competition.models import (
    CardEvent,
    LineupStatus,
    LineupSubmission,
    Match,
    MatchStatus,
    RegistrationStatus,
    Season,
    SeasonPlayer,
    SeasonRegistration,
    StandingsAdjustment,
    StandingsRow,
    StatusChange,
    Suspension,
)
from competition.rules import SeasonRules


def _parse_datetime(s: str | None) -> datetime:
    if s is None:
        raise ValueError("expected datetime string")
    return datetime.fromisoformat(s.replace("Z", "+00:00"))


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _status_value(status: Any) -> str:
    return getattr(status, "value", status)


def _add_history(
    conn: sqlite3.Connection,
    table: str,
    fk_col: str,
    entity_id: str,
    from_status: str | None,
    to_status: str,
    note: str | None,
) -> None:
    conn.execute(
        f"INSERT INTO {table} ({fk_col}, from_status, to_status, note, changed_at) VALUES (?, ?, ?, ?, ?)",
        (entity_id, _status_value(from_status) if from_status else None, _status_value(to_status), note, _now()),
    )


def _list_history(conn: sqlite3.Connection, table: str, fk_col: str, entity_id: str) -> list[StatusChange]:
    rows = conn.execute(
        f"SELECT {fk_col} AS entity_id, from_status, to_status, note, changed_at FROM {table} WHERE {fk_col} = ? ORDER BY id",
        (entity_id,),
    ).fetchall()
    return [
        StatusChange(
            entity_id=r["entity_id"],
            from_status=r["from_status"],
            to_status=r["to_status"],
            note=r["note"],
            changed_at=_parse_datetime(r["changed_at"]),
        )
        for r in rows
    ]


# ---------- SeasonRepository ----------


class SeasonRepository:
    """CRUD for seasons. No business logic."""

    def create(
        self,
        conn: sqlite3.Connection,
        name: str,
        required_team_count: int,
        rules: SeasonRules | None = None,
        id: str | None = None,
        lot_seed: int | None = None,
    ) -> Season:
        sid = id or str(uuid.uuid4())
        now = _now()
        rules_json = (rules or SeasonRules()).to_json()
        conn.execute(
            "INSERT INTO seasons (id, name, required_team_count, rules_json, lot_seed, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (sid, name, required_team_count, rules_json, lot_seed, now),
        )
        return Season(
            id=sid, name=name, required_team_count=required_team_count,
            rules_json=rules_json, created_at=_parse_datetime(now), lot_seed=lot_seed,
        )

    def get(self, conn: sqlite3.Connection, season_id: str) -> Season | None:
        row = conn.execute(
            "SELECT id, name, required_team_count, rules_json, lot_seed, created_at FROM seasons WHERE id = ?",
            (season_id,),
        ).fetchone()
        if row is None:
            return None
        return Season(
            id=row["id"],
            name=row["name"],
            required_team_count=row["required_team_count"],
            rules_json=row["rules_json"],
            created_at=_parse_datetime(row["created_at"]),
            lot_seed=row["lot_seed"],
        )

    def get_rules(self, conn: sqlite3.Connection, season_id: str) -> SeasonRules | None:
        row = conn.execute("SELECT rules_json FROM seasons WHERE id = ?", (season_id,)).fetchone()
        if row is None:
            return None
        return SeasonRules.from_json(row["rules_json"])

    def update_lot_seed(self, conn: sqlite3.Connection, season_id: str, lot_seed: int) -> None:
        conn.execute("UPDATE seasons SET lot_seed = ? WHERE id = ?", (lot_seed, season_id))

    def list_all(self, conn: sqlite3.Connection) -> list[Season]:
        rows = conn.execute("SELECT id FROM seasons ORDER BY created_at").fetchall()
        return [s for s in (self.get(conn, r["id"]) for r in rows) if s is not None]


# ---------- RegistrationRepository ----------


def _row_to_registration(r: sqlite3.Row) -> SeasonRegistration:
    payload = r["submission_payload"]
    return SeasonRegistration(
        id=r["id"],
        season_id=r["season_id"],
        team_id=r["team_id"],
        status=r["status"],
        reviewer_note=r["reviewer_note"],
        submission_payload=json.loads(payload) if payload else None,
        created_at=_parse_datetime(r["created_at"]),
        updated_at=_parse_datetime(r["updated_at"]),
    )


_REGISTRATION_COLS = "id, season_id, team_id, status, reviewer_note, submission_payload, created_at, updated_at"


class RegistrationRepository:
    """CRUD for season_registrations and their status history."""

    def create(
        self,
        conn: sqlite3.Connection,
        season_id: str,
        team_id: str,
        id: str | None = None,
    ) -> SeasonRegistration:
        rid = id or str(uuid.uuid4())
        now = _now()
        conn.execute(
            f"INSERT INTO season_registrations ({_REGISTRATION_COLS}) VALUES (?, ?, ?, ?, NULL, NULL, ?, ?)",
            (rid, season_id, team_id, RegistrationStatus.DRAFT_INVITE.value, now, now),
        )
        return SeasonRegistration(
            id=rid, season_id=season_id, team_id=team_id,
            status=RegistrationStatus.DRAFT_INVITE.value, reviewer_note=None,
            submission_payload=None, created_at=_parse_datetime(now), updated_at=_parse_datetime(now),
        )

    def get(self, conn: sqlite3.Connection, registration_id: str) -> SeasonRegistration | None:
        row = conn.execute(
            f"SELECT {_REGISTRATION_COLS} FROM season_registrations WHERE id = ?",
            (registration_id,),
        ).fetchone()
        return _row_to_registration(row) if row else None

    def get_by_season_team(self, conn: sqlite3.Connection, season_id: str, team_id: str) -> SeasonRegistration | None:
        row = conn.execute(
            f"SELECT {_REGISTRATION_COLS} FROM season_registrations WHERE season_id = ? AND team_id = ?",
            (season_id, team_id),
        ).fetchone()
        return _row_to_registration(row) if row else None

    def list_by_season(
        self, conn: sqlite3.Connection, season_id: str, status: str | None = None
    ) -> list[SeasonRegistration]:
        if status is None:
            rows = conn.execute(
                f"SELECT {_REGISTRATION_COLS} FROM season_registrations WHERE season_id = ? ORDER BY created_at, id",
                (season_id,),
            ).fetchall()
        else:
            rows = conn.execute(
                f"SELECT {_REGISTRATION_COLS} FROM season_registrations WHERE season_id = ? AND status = ? ORDER BY created_at, id",
                (season_id, _status_value(status)),
            ).fetchall()
        return [_row_to_registration(r) for r in rows]

    def count_by_status(self, conn: sqlite3.Connection, season_id: str, status: str) -> int:
        row = conn.execute(
            "SELECT COUNT(*) AS n FROM season_registrations WHERE season_id = ? AND status = ?",
            (season_id, _status_value(status)),
        ).fetchone()
        return row["n"]

    def update_status(
        self,
        conn: sqlite3.Connection,
        registration_id: str,
        status: str,
        reviewer_note: str | None = None,
        submission_payload: dict[str, Any] | None = None,
    ) -> None:
        """Set status; reviewer_note and payload are written only when given."""
        sets = ["status = ?", "updated_at = ?"]
        args: list[Any] = [_status_value(status), _now()]
        if reviewer_note is not None:
            sets.append("reviewer_note = ?")
            args.append(reviewer_note)
        if submission_payload is not None:
            sets.append("submission_payload = ?")
            args.append(json.dumps(submission_payload, sort_keys=True))
        args.append(registration_id)
        conn.execute(f"UPDATE season_registrations SET {', '.join(sets)} WHERE id = ?", args)

    def add_history(
        self, conn: sqlite3.Connection, registration_id: str, from_status: str | None, to_status: str, note: str | None = None
    ) -> None:
        _add_history(conn, "registration_status_history", "registration_id", registration_id, from_status, to_status, note)

    def list_history(self, conn: sqlite3.Connection, registration_id: str) -> list[StatusChange]:
        return _list_history(conn, "registration_status_history", "registration_id", registration_id)


# ---------- SeasonPlayerRepository ----------


class SeasonPlayerRepository:
    """Season roster records. Written by the roster collaborator, read by the lineup validator."""

    def add(
        self,
        conn: sqlite3.Connection,
        season_id: str,
        season_team_id: str,
        player_id: str,
        is_foreign: bool = False,
        status: str = "approved",
    ) -> SeasonPlayer:
        conn.execute(
            "INSERT OR REPLACE INTO season_players (season_id, season_team_id, player_id, is_foreign, status) VALUES (?, ?, ?, ?, ?)",
            (season_id, season_team_id, player_id, int(is_foreign), status),
        )
        return SeasonPlayer(
            season_id=season_id, season_team_id=season_team_id, player_id=player_id,
            is_foreign=is_foreign, status=status,
        )

    def list_by_team(
        self, conn: sqlite3.Connection, season_team_id: str, status: str | None = "approved"
    ) -> list[SeasonPlayer]:
        """Roster of a season team. status=None returns every record."""
        sql = "SELECT season_id, season_team_id, player_id, is_foreign, status FROM season_players WHERE season_team_id = ?"
        args: tuple = (season_team_id,)
        if status is not None:
            sql += " AND status = ?"
            args = args + (status,)
        rows = conn.execute(sql + " ORDER BY player_id", args).fetchall()
        return [
            SeasonPlayer(
                season_id=r["season_id"],
                season_team_id=r["season_team_id"],
                player_id=r["player_id"],
                is_foreign=bool(r["is_foreign"]),
                status=r["status"],
            )
            for r in rows
        ]


# ---------- MatchRepository ----------


_MATCH_COLS = (
    "id, season_id, home_team_id, away_team_id, status, scheduled_at, round_number, "
    "officials_complete, missing_officials, officials_assignment_started, "
    "referee_report_submitted, supervisor_report_submitted, home_score, away_score, "
    "result_processed, version, created_at, updated_at"
)


def _row_to_match(r: sqlite3.Row) -> Match:
    return Match(
        id=r["id"],
        season_id=r["season_id"],
        home_team_id=r["home_team_id"],
        away_team_id=r["away_team_id"],
        status=r["status"],
        scheduled_at=_parse_datetime(r["scheduled_at"]),
        round_number=r["round_number"],
        officials_complete=bool(r["officials_complete"]),
        missing_officials=json.loads(r["missing_officials"] or "[]"),
        officials_assignment_started=bool(r["officials_assignment_started"]),
        referee_report_submitted=bool(r["referee_report_submitted"]),
        supervisor_report_submitted=bool(r["supervisor_report_submitted"]),
        home_score=r["home_score"],
        away_score=r["away_score"],
        result_processed=bool(r["result_processed"]),
        version=r["version"],
        created_at=_parse_datetime(r["created_at"]),
        updated_at=_parse_datetime(r["updated_at"]),
    )


class MatchRepository:
    """CRUD for matches. Updates are version-checked (optimistic lock)."""

    def create(
        self,
        conn: sqlite3.Connection,
        season_id: str,
        home_team_id: str,
        away_team_id: str,
        scheduled_at: datetime,
        round_number: int | None = None,
        id: str | None = None,
    ) -> Match:
        mid = id or str(uuid.uuid4())
        now = _now()
        conn.execute(
            "INSERT INTO matches (id, season_id, home_team_id, away_team_id, status, scheduled_at, round_number, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (mid, season_id, home_team_id, away_team_id, MatchStatus.SCHEDULED.value,
             scheduled_at.isoformat(), round_number, now, now),
        )
        return self.get(conn, mid)  # type: ignore[return-value]

    def get(self, conn: sqlite3.Connection, match_id: str) -> Match | None:
        row = conn.execute(f"SELECT {_MATCH_COLS} FROM matches WHERE id = ?", (match_id,)).fetchone()
        return _row_to_match(row) if row else None

    def list_by_season(
        self, conn: sqlite3.Connection, season_id: str, statuses: Iterable[str] | None = None
    ) -> list[Match]:
        """Matches of a season in chronological order (scheduled_at, id)."""
        sql = f"SELECT {_MATCH_COLS} FROM matches WHERE season_id = ?"
        args: list[Any] = [season_id]
        if statuses is not None:
            values = [_status_value(s) for s in statuses]
            sql += f" AND status IN ({', '.join('?' for _ in values)})"
            args.extend(values)
        rows = conn.execute(sql + " ORDER BY scheduled_at, id", args).fetchall()
        return [_row_to_match(r) for r in rows]

    def list_by_team(self, conn: sqlite3.Connection, season_team_id: str) -> list[Match]:
        rows = conn.execute(
            f"SELECT {_MATCH_COLS} FROM matches WHERE home_team_id = ? OR away_team_id = ? ORDER BY scheduled_at, id",
            (season_team_id, season_team_id),
        ).fetchall()
        return [_row_to_match(r) for r in rows]

    def count_by_status(self, conn: sqlite3.Connection, season_id: str) -> dict[str, int]:
        rows = conn.execute(
            "SELECT status, COUNT(*) AS n FROM matches WHERE season_id = ? GROUP BY status",
            (season_id,),
        ).fetchall()
        return {r["status"]: r["n"] for r in rows}

    def update(self, conn: sqlite3.Connection, match: Match) -> Match:
        """
        Write every mutable field if the stored version still equals match.version.
        Bumps the version in place; raises ConcurrencyConflict otherwise.
        """
        now = _now()
        cur = conn.execute(
            "UPDATE matches SET status = ?, scheduled_at = ?, round_number = ?, officials_complete = ?, "
            "missing_officials = ?, officials_assignment_started = ?, referee_report_submitted = ?, "
            "supervisor_report_submitted = ?, home_score = ?, away_score = ?, result_processed = ?, "
            "version = version + 1, updated_at = ? WHERE id = ? AND version = ?",
            (
                _status_value(match.status),
                match.scheduled_at.isoformat(),
                match.round_number,
                int(match.officials_complete),
                json.dumps(list(match.missing_officials)),
                int(match.officials_assignment_started),
                int(match.referee_report_submitted),
                int(match.supervisor_report_submitted),
                match.home_score,
                match.away_score,
                int(match.result_processed),
                now,
                match.id,
                match.version,
            ),
        )
        if cur.rowcount == 0:
            raise ConcurrencyConflict("match", match.id, match.version)
        match.version += 1
        match.updated_at = _parse_datetime(now)
        return match

    def add_history(
        self, conn: sqlite3.Connection, match_id: str, from_status: str | None, to_status: str, note: str | None = None
    ) -> None:
        _add_history(conn, "match_status_history", "match_id", match_id, from_status, to_status, note)

    def list_history(self, conn: sqlite3.Connection, match_id: str) -> list[StatusChange]:
        return _list_history(conn, "match_status_history", "match_id", match_id)


# ---------- LineupRepository ----------


_LINEUP_COLS = (
    "id, match_id, side, season_team_id, starters, substitutes, formation, kit_type, "
    "status, rejection_reason, version, updated_at"
)


def _row_to_lineup(r: sqlite3.Row) -> LineupSubmission:
    return LineupSubmission(
        id=r["id"],
        match_id=r["match_id"],
        side=r["side"],
        season_team_id=r["season_team_id"],
        starters=json.loads(r["starters"] or "[]"),
        substitutes=json.loads(r["substitutes"] or "[]"),
        formation=r["formation"],
        kit_type=r["kit_type"],
        status=r["status"],
        rejection_reason=r["rejection_reason"],
        version=r["version"],
        updated_at=_parse_datetime(r["updated_at"]),
    )


class LineupRepository:
    """CRUD for lineups. One row per (match, side); updates are version-checked."""

    def create(
        self,
        conn: sqlite3.Connection,
        match_id: str,
        side: str,
        season_team_id: str,
        id: str | None = None,
    ) -> LineupSubmission:
        lid = id or str(uuid.uuid4())
        conn.execute(
            "INSERT INTO lineups (id, match_id, side, season_team_id, status, updated_at) VALUES (?, ?, ?, ?, ?, ?)",
            (lid, match_id, _status_value(side), season_team_id, LineupStatus.PENDING.value, _now()),
        )
        return self.get(conn, lid)  # type: ignore[return-value]

    def get(self, conn: sqlite3.Connection, lineup_id: str) -> LineupSubmission | None:
        row = conn.execute(f"SELECT {_LINEUP_COLS} FROM lineups WHERE id = ?", (lineup_id,)).fetchone()
        return _row_to_lineup(row) if row else None

    def get_by_match_side(self, conn: sqlite3.Connection, match_id: str, side: str) -> LineupSubmission | None:
        row = conn.execute(
            f"SELECT {_LINEUP_COLS} FROM lineups WHERE match_id = ? AND side = ?",
            (match_id, _status_value(side)),
        ).fetchone()
        return _row_to_lineup(row) if row else None

    def list_by_match(self, conn: sqlite3.Connection, match_id: str) -> list[LineupSubmission]:
        rows = conn.execute(
            f"SELECT {_LINEUP_COLS} FROM lineups WHERE match_id = ? ORDER BY side DESC",
            (match_id,),
        ).fetchall()
        return [_row_to_lineup(r) for r in rows]

    def update(self, conn: sqlite3.Connection, lineup: LineupSubmission) -> LineupSubmission:
        now = _now()
        cur = conn.execute(
            "UPDATE lineups SET starters = ?, substitutes = ?, formation = ?, kit_type = ?, status = ?, "
            "rejection_reason = ?, version = version + 1, updated_at = ? WHERE id = ? AND version = ?",
            (
                json.dumps(list(lineup.starters)),
                json.dumps(list(lineup.substitutes)),
                lineup.formation,
                lineup.kit_type,
                _status_value(lineup.status),
                lineup.rejection_reason,
                now,
                lineup.id,
                lineup.version,
            ),
        )
        if cur.rowcount == 0:
            raise ConcurrencyConflict("lineup", lineup.id, lineup.version)
        lineup.version += 1
        lineup.updated_at = _parse_datetime(now)
        return lineup

    def add_history(
        self, conn: sqlite3.Connection, lineup_id: str, from_status: str | None, to_status: str, note: str | None = None
    ) -> None:
        _add_history(conn, "lineup_status_history", "lineup_id", lineup_id, from_status, to_status, note)

    def list_history(self, conn: sqlite3.Connection, lineup_id: str) -> list[StatusChange]:
        return _list_history(conn, "lineup_status_history", "lineup_id", lineup_id)


# ---------- CardEventRepository ----------


class CardEventRepository:
    """Append-only card events. Never updated or deleted here."""

    def create(self, conn: sqlite3.Connection, season_id: str, event: CardEvent) -> CardEvent:
        eid = event.id or str(uuid.uuid4())
        seq_row = conn.execute("SELECT COALESCE(MAX(seq), 0) + 1 AS seq FROM card_events").fetchone()
        conn.execute(
            "INSERT INTO card_events (id, seq, season_id, match_id, player_id, team_id, card_type, minute, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (eid, seq_row["seq"], season_id, event.match_id, event.player_id, event.team_id,
             _status_value(event.card_type), event.minute, _now()),
        )
        return CardEvent(
            match_id=event.match_id, player_id=event.player_id, team_id=event.team_id,
            card_type=_status_value(event.card_type), minute=event.minute, id=eid,
        )

    def list_by_season(self, conn: sqlite3.Connection, season_id: str) -> list[CardEvent]:
        """Card events ordered by match date, match id, minute, then arrival."""
        rows = conn.execute(
            "SELECT c.id, c.match_id, c.player_id, c.team_id, c.card_type, c.minute "
            "FROM card_events c LEFT JOIN matches m ON m.id = c.match_id "
            "WHERE c.season_id = ? ORDER BY m.scheduled_at, c.match_id, c.minute, c.seq",
            (season_id,),
        ).fetchall()
        return [
            CardEvent(
                match_id=r["match_id"], player_id=r["player_id"], team_id=r["team_id"],
                card_type=r["card_type"], minute=r["minute"], id=r["id"],
            )
            for r in rows
        ]


# ---------- SuspensionRepository ----------


_SUSPENSION_COLS = (
    "key, season_id, player_id, team_id, reason, matches_banned, served_matches, status, "
    "trigger_match_id, manual, notes, created_at, updated_at"
)


def _row_to_suspension(r: sqlite3.Row) -> Suspension:
    return Suspension(
        key=r["key"],
        season_id=r["season_id"],
        player_id=r["player_id"],
        team_id=r["team_id"],
        reason=r["reason"],
        matches_banned=r["matches_banned"],
        served_matches=r["served_matches"],
        status=r["status"],
        trigger_match_id=r["trigger_match_id"],
        manual=bool(r["manual"]),
        notes=r["notes"],
        created_at=_parse_datetime(r["created_at"]),
        updated_at=_parse_datetime(r["updated_at"]),
    )


class SuspensionRepository:
    """Materialized suspensions and their per-match serve records."""

    def get(self, conn: sqlite3.Connection, key: str) -> Suspension | None:
        row = conn.execute(f"SELECT {_SUSPENSION_COLS} FROM suspensions WHERE key = ?", (key,)).fetchone()
        return _row_to_suspension(row) if row else None

    def insert(self, conn: sqlite3.Connection, s: Suspension) -> Suspension:
        now = _now()
        conn.execute(
            f"INSERT INTO suspensions ({_SUSPENSION_COLS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (s.key, s.season_id, s.player_id, s.team_id, _status_value(s.reason), s.matches_banned,
             s.served_matches, _status_value(s.status), s.trigger_match_id, int(s.manual), s.notes, now, now),
        )
        return self.get(conn, s.key)  # type: ignore[return-value]

    def update(self, conn: sqlite3.Connection, s: Suspension) -> None:
        conn.execute(
            "UPDATE suspensions SET team_id = ?, reason = ?, matches_banned = ?, served_matches = ?, status = ?, "
            "notes = ?, updated_at = ? WHERE key = ?",
            (s.team_id, _status_value(s.reason), s.matches_banned, s.served_matches,
             _status_value(s.status), s.notes, _now(), s.key),
        )

    def list_by_season(
        self,
        conn: sqlite3.Connection,
        season_id: str,
        status: str | None = None,
        player_id: str | None = None,
    ) -> list[Suspension]:
        sql = f"SELECT {_SUSPENSION_COLS} FROM suspensions WHERE season_id = ?"
        args: list[Any] = [season_id]
        if status is not None:
            sql += " AND status = ?"
            args.append(_status_value(status))
        if player_id is not None:
            sql += " AND player_id = ?"
            args.append(player_id)
        rows = conn.execute(sql + " ORDER BY created_at, key", args).fetchall()
        return [_row_to_suspension(r) for r in rows]

    def add_serve(self, conn: sqlite3.Connection, key: str, match_id: str) -> bool:
        """Record one served match. Returns False if the pair already exists."""
        cur = conn.execute(
            "INSERT OR IGNORE INTO suspension_serves (suspension_key, match_id, served_at) VALUES (?, ?, ?)",
            (key, match_id, _now()),
        )
        return cur.rowcount > 0

    def list_served_match_ids(self, conn: sqlite3.Connection, key: str) -> list[str]:
        rows = conn.execute(
            "SELECT match_id FROM suspension_serves WHERE suspension_key = ? ORDER BY served_at, match_id",
            (key,),
        ).fetchall()
        return [r["match_id"] for r in rows]


# ---------- StandingsRepository ----------


class StandingsRepository:
    """Stored standings (replaced wholesale on recompute) and manual adjustments."""

    def replace(self, conn: sqlite3.Connection, season_id: str, mode: str, rows: list[StandingsRow]) -> None:
        now = _now()
        conn.execute("DELETE FROM standings WHERE season_id = ? AND mode = ?", (season_id, _status_value(mode)))
        conn.executemany(
            "INSERT INTO standings (season_id, season_team_id, mode, played, won, draw, loss, goals_for, "
            "goals_against, points, rank, manual_override, computed_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [
                (season_id, r.season_team_id, _status_value(mode), r.played, r.won, r.draw, r.loss,
                 r.goals_for, r.goals_against, r.points, r.rank, int(r.manual_override), now)
                for r in rows
            ],
        )

    def list_rows(self, conn: sqlite3.Connection, season_id: str, mode: str) -> list[StandingsRow]:
        rows = conn.execute(
            "SELECT season_team_id, played, won, draw, loss, goals_for, goals_against, points, rank, manual_override "
            "FROM standings WHERE season_id = ? AND mode = ? ORDER BY rank, season_team_id",
            (season_id, _status_value(mode)),
        ).fetchall()
        return [
            StandingsRow(
                season_team_id=r["season_team_id"],
                played=r["played"],
                won=r["won"],
                draw=r["draw"],
                loss=r["loss"],
                goals_for=r["goals_for"],
                goals_against=r["goals_against"],
                points=r["points"],
                rank=r["rank"],
                manual_override=bool(r["manual_override"]),
            )
            for r in rows
        ]

    def add_adjustment(
        self,
        conn: sqlite3.Connection,
        season_id: str,
        season_team_id: str,
        kind: str,
        delta: dict[str, int] | None = None,
        note: str | None = None,
    ) -> StandingsAdjustment:
        aid = str(uuid.uuid4())
        now = _now()
        seq_row = conn.execute("SELECT COALESCE(MAX(seq), 0) + 1 AS seq FROM standings_adjustments").fetchone()
        conn.execute(
            "INSERT INTO standings_adjustments (id, seq, season_id, season_team_id, kind, delta, note, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (aid, seq_row["seq"], season_id, season_team_id, kind, json.dumps(delta or {}, sort_keys=True), note, now),
        )
        return StandingsAdjustment(
            id=aid, season_id=season_id, season_team_id=season_team_id, kind=kind,
            delta=dict(delta or {}), note=note, created_at=_parse_datetime(now),
        )

    def list_adjustments(self, conn: sqlite3.Connection, season_id: str) -> list[StandingsAdjustment]:
        rows = conn.execute(
            "SELECT id, season_id, season_team_id, kind, delta, note, created_at FROM standings_adjustments "
            "WHERE season_id = ? ORDER BY seq",
            (season_id,),
        ).fetchall()
        return [
            StandingsAdjustment(
                id=r["id"],
                season_id=r["season_id"],
                season_team_id=r["season_team_id"],
                kind=r["kind"],
                delta=json.loads(r["delta"] or "{}"),
                note=r["note"],
                created_at=_parse_datetime(r["created_at"]),
            )
            for r in rows
        ]

    def clear_adjustments(self, conn: sqlite3.Connection, season_id: str) -> int:
        cur = conn.execute("DELETE FROM standings_adjustments WHERE season_id = ?", (season_id,))
        return cur.rowcount
