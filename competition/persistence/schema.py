"""
SQLite schema for competition entities.
Migration-friendly: each table created with IF NOT EXISTS.
"""
from __future__ import annotations


def seasons_schema() -> str:
    """One edition of the competition. rules_json = SeasonRules; lot_seed recorded on first final recompute."""
    return """
    CREATE TABLE IF NOT EXISTS seasons (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        required_team_count INTEGER NOT NULL,
        rules_json TEXT NOT NULL DEFAULT '{}',
        lot_seed INTEGER,
        created_at TEXT NOT NULL
    );
    """


def registrations_schema() -> str:
    """Season team participation. id doubles as season_team_id. One per (season, team)."""
    return """
    CREATE TABLE IF NOT EXISTS season_registrations (
        id TEXT PRIMARY KEY,
        season_id TEXT NOT NULL,
        team_id TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'DRAFT_INVITE',
        reviewer_note TEXT,
        submission_payload TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (season_id) REFERENCES seasons(id)
    );
    CREATE UNIQUE INDEX IF NOT EXISTS ix_registrations_season_team ON season_registrations(season_id, team_id);
    CREATE INDEX IF NOT EXISTS ix_registrations_status ON season_registrations(season_id, status);

    CREATE TABLE IF NOT EXISTS registration_status_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        registration_id TEXT NOT NULL,
        from_status TEXT,
        to_status TEXT NOT NULL,
        note TEXT,
        changed_at TEXT NOT NULL,
        FOREIGN KEY (registration_id) REFERENCES season_registrations(id)
    );
    CREATE INDEX IF NOT EXISTS ix_registration_history ON registration_status_history(registration_id);
    """


def season_players_schema() -> str:
    """Roster collaborator: season-player records with foreign flag."""
    return """
    CREATE TABLE IF NOT EXISTS season_players (
        season_id TEXT NOT NULL,
        season_team_id TEXT NOT NULL,
        player_id TEXT NOT NULL,
        is_foreign INTEGER NOT NULL DEFAULT 0,
        status TEXT NOT NULL DEFAULT 'approved',
        PRIMARY KEY (season_id, player_id),
        FOREIGN KEY (season_team_id) REFERENCES season_registrations(id)
    );
    CREATE INDEX IF NOT EXISTS ix_season_players_team ON season_players(season_team_id);
    """


def matches_schema() -> str:
    """Fixtures. version = optimistic lock; missing_officials = JSON list of role names."""
    return """
    CREATE TABLE IF NOT EXISTS matches (
        id TEXT PRIMARY KEY,
        season_id TEXT NOT NULL,
        home_team_id TEXT NOT NULL,
        away_team_id TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'SCHEDULED',
        scheduled_at TEXT NOT NULL,
        round_number INTEGER,
        officials_complete INTEGER NOT NULL DEFAULT 0,
        missing_officials TEXT NOT NULL DEFAULT '[]',
        officials_assignment_started INTEGER NOT NULL DEFAULT 0,
        referee_report_submitted INTEGER NOT NULL DEFAULT 0,
        supervisor_report_submitted INTEGER NOT NULL DEFAULT 0,
        home_score INTEGER,
        away_score INTEGER,
        result_processed INTEGER NOT NULL DEFAULT 0,
        version INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (season_id) REFERENCES seasons(id),
        FOREIGN KEY (home_team_id) REFERENCES season_registrations(id),
        FOREIGN KEY (away_team_id) REFERENCES season_registrations(id)
    );
    CREATE INDEX IF NOT EXISTS ix_matches_season_order ON matches(season_id, scheduled_at, id);
    CREATE INDEX IF NOT EXISTS ix_matches_status ON matches(season_id, status);

    CREATE TABLE IF NOT EXISTS match_status_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        match_id TEXT NOT NULL,
        from_status TEXT,
        to_status TEXT NOT NULL,
        note TEXT,
        changed_at TEXT NOT NULL,
        FOREIGN KEY (match_id) REFERENCES matches(id)
    );
    CREATE INDEX IF NOT EXISTS ix_match_history ON match_status_history(match_id);
    """


def lineups_schema() -> str:
    """One lineup per (match, side). starters/substitutes stored as JSON lists."""
    return """
    CREATE TABLE IF NOT EXISTS lineups (
        id TEXT PRIMARY KEY,
        match_id TEXT NOT NULL,
        side TEXT NOT NULL,
        season_team_id TEXT NOT NULL,
        starters TEXT NOT NULL DEFAULT '[]',
        substitutes TEXT NOT NULL DEFAULT '[]',
        formation TEXT,
        kit_type TEXT,
        status TEXT NOT NULL DEFAULT 'PENDING',
        rejection_reason TEXT,
        version INTEGER NOT NULL DEFAULT 1,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (match_id) REFERENCES matches(id),
        FOREIGN KEY (season_team_id) REFERENCES season_registrations(id)
    );
    CREATE UNIQUE INDEX IF NOT EXISTS ix_lineups_match_side ON lineups(match_id, side);

    CREATE TABLE IF NOT EXISTS lineup_status_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        lineup_id TEXT NOT NULL,
        from_status TEXT,
        to_status TEXT NOT NULL,
        note TEXT,
        changed_at TEXT NOT NULL,
        FOREIGN KEY (lineup_id) REFERENCES lineups(id)
    );
    CREATE INDEX IF NOT EXISTS ix_lineup_history ON lineup_status_history(lineup_id);
    """


def card_events_schema() -> str:
    """Append-only card events. seq keeps arrival order for same-minute cards."""
    return """
    CREATE TABLE IF NOT EXISTS card_events (
        id TEXT PRIMARY KEY,
        seq INTEGER NOT NULL,
        season_id TEXT NOT NULL,
        match_id TEXT NOT NULL,
        player_id TEXT NOT NULL,
        team_id TEXT NOT NULL,
        card_type TEXT NOT NULL,
        minute INTEGER NOT NULL,
        created_at TEXT NOT NULL,
        FOREIGN KEY (match_id) REFERENCES matches(id)
    );
    CREATE INDEX IF NOT EXISTS ix_card_events_season ON card_events(season_id);
    CREATE INDEX IF NOT EXISTS ix_card_events_player ON card_events(season_id, player_id);
    """


def suspensions_schema() -> str:
    """Materialized suspensions keyed by '{player}:{trigger_match}:{reason}'; serves = one row per served match."""
    return """
    CREATE TABLE IF NOT EXISTS suspensions (
        key TEXT PRIMARY KEY,
        season_id TEXT NOT NULL,
        player_id TEXT NOT NULL,
        team_id TEXT NOT NULL,
        reason TEXT NOT NULL,
        matches_banned INTEGER NOT NULL,
        served_matches INTEGER NOT NULL DEFAULT 0,
        status TEXT NOT NULL DEFAULT 'active',
        trigger_match_id TEXT,
        manual INTEGER NOT NULL DEFAULT 0,
        notes TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS ix_suspensions_season_status ON suspensions(season_id, status);
    CREATE INDEX IF NOT EXISTS ix_suspensions_player ON suspensions(season_id, player_id);

    CREATE TABLE IF NOT EXISTS suspension_serves (
        suspension_key TEXT NOT NULL,
        match_id TEXT NOT NULL,
        served_at TEXT NOT NULL,
        PRIMARY KEY (suspension_key, match_id),
        FOREIGN KEY (suspension_key) REFERENCES suspensions(key)
    );
    """


def standings_schema() -> str:
    """Stored table (always rebuilt in full) plus administrative adjustments."""
    return """
    CREATE TABLE IF NOT EXISTS standings (
        season_id TEXT NOT NULL,
        season_team_id TEXT NOT NULL,
        mode TEXT NOT NULL,
        played INTEGER NOT NULL DEFAULT 0,
        won INTEGER NOT NULL DEFAULT 0,
        draw INTEGER NOT NULL DEFAULT 0,
        loss INTEGER NOT NULL DEFAULT 0,
        goals_for INTEGER NOT NULL DEFAULT 0,
        goals_against INTEGER NOT NULL DEFAULT 0,
        points INTEGER NOT NULL DEFAULT 0,
        rank INTEGER NOT NULL DEFAULT 0,
        manual_override INTEGER NOT NULL DEFAULT 0,
        computed_at TEXT NOT NULL,
        PRIMARY KEY (season_id, mode, season_team_id)
    );

    CREATE TABLE IF NOT EXISTS standings_adjustments (
        id TEXT PRIMARY KEY,
        seq INTEGER NOT NULL,
        season_id TEXT NOT NULL,
        season_team_id TEXT NOT NULL,
        kind TEXT NOT NULL,
        delta TEXT NOT NULL DEFAULT '{}',
        note TEXT,
        created_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS ix_adjustments_season ON standings_adjustments(season_id, seq);
    """


def all_schema_sql() -> str:
    """Combine all schema DDL for a single execution. Order follows foreign keys."""
    return "\n".join([
        seasons_schema(),
        registrations_schema(),
        season_players_schema(),
        matches_schema(),
        lineups_schema(),
        card_events_schema(),
        suspensions_schema(),
        standings_schema(),
    ])
