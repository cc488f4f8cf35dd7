"""
Persistence layer for competition data.
No business logic; only connections, schema and read/write interfaces.
"""
from .db import get_connection, init_db, set_db_path, transaction
from .repositories import (
    SeasonRepository,
    RegistrationRepository,
    SeasonPlayerRepository,
    MatchRepository,
    LineupRepository,
    CardEventRepository,
    SuspensionRepository,
    StandingsRepository,
)

__all__ = [
    "get_connection",
    "init_db",
    "set_db_path",
    "transaction",
    "SeasonRepository",
    "RegistrationRepository",
    "SeasonPlayerRepository",
    "MatchRepository",
    "LineupRepository",
    "CardEventRepository",
    "SuspensionRepository",
    "StandingsRepository",
]
