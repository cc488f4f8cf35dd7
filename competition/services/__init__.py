"""
Service layer: registration workflow, suspension ledger, lineups, match lifecycle,
standings and scheduling. Persistence is delegated to the repositories.
"""
from .registration import RegistrationService, DuplicateRegistrationError
from .suspensions import SuspensionLedger, build_ledger
from .lineups import LineupService, ErrorKind, LineupError, validate_lineup
from .lifecycle import MatchLifecycle
from .standings import StandingsCalculator, compute_table
from .scheduling import SchedulingService, generate_fixtures, round_robin_pairings

__all__ = [
    "RegistrationService",
    "DuplicateRegistrationError",
    "SuspensionLedger",
    "build_ledger",
    "LineupService",
    "ErrorKind",
    "LineupError",
    "validate_lineup",
    "MatchLifecycle",
    "StandingsCalculator",
    "compute_table",
    "SchedulingService",
    "generate_fixtures",
    "round_robin_pairings",
]
