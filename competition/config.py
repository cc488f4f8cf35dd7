"""
Runtime configuration for the competition engine.
Everything comes from the environment; season rules live on the season row.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent

DB_PATH = Path(os.environ.get("COMPETITION_DB_PATH", PROJECT_ROOT / "data" / "competition.db"))
LOG_LEVEL = os.environ.get("COMPETITION_LOG_LEVEL", "INFO").upper()
JWT_SECRET_KEY = os.environ.get("COMPETITION_JWT_SECRET", "dev-secret-change-in-production")
CORS_ORIGINS = [
    o.strip()
    for o in os.environ.get("COMPETITION_CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
    if o.strip()
]

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Install one stream handler on the package logger. Safe to call twice."""
    logger = logging.getLogger("competition")
    logger.setLevel(level or LOG_LEVEL)
    if not any(getattr(h, "_competition", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._competition = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
