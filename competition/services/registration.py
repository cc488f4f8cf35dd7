"""
Season registration workflow: invite, respond, submit, review.

DRAFT_INVITE → INVITED → {ACCEPTED, DECLINED}; ACCEPTED → SUBMITTED →
{REQUEST_CHANGE, APPROVED, REJECTED}; REQUEST_CHANGE → SUBMITTED.
DECLINED and REJECTED are terminal, APPROVED is terminal-success.
"""
from __future__ import annotations

import logging
import sqlite3
from typing import Any

from competition.errors import InvalidTransition, NotFound
from competition.models import RegistrationStatus, ReviewOutcome, SeasonRegistration, StatusChange
from competition.persistence.db import transaction
from competition.persistence.repositories import RegistrationRepository, SeasonRepository

logger = logging.getLogger(__name__)


class DuplicateRegistrationError(ValueError):
    """A team already has a registration for this season."""


# ---------- Valid transitions ----------

_VALID_TRANSITIONS: dict[str, set[str]] = {
    RegistrationStatus.DRAFT_INVITE: {RegistrationStatus.INVITED},
    RegistrationStatus.INVITED: {RegistrationStatus.ACCEPTED, RegistrationStatus.DECLINED},
    RegistrationStatus.ACCEPTED: {RegistrationStatus.SUBMITTED},
    RegistrationStatus.DECLINED: set(),
    RegistrationStatus.SUBMITTED: {
        RegistrationStatus.APPROVED,
        RegistrationStatus.REJECTED,
        RegistrationStatus.REQUEST_CHANGE,
    },
    RegistrationStatus.REQUEST_CHANGE: {RegistrationStatus.SUBMITTED},
    RegistrationStatus.APPROVED: set(),
    RegistrationStatus.REJECTED: set(),
}

_REVIEW_TARGETS = {
    ReviewOutcome.APPROVE: RegistrationStatus.APPROVED,
    ReviewOutcome.REJECT: RegistrationStatus.REJECTED,
    ReviewOutcome.REQUEST_CHANGE: RegistrationStatus.REQUEST_CHANGE,
}


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in _VALID_TRANSITIONS.get(from_status, set())


# ---------- RegistrationService ----------


class RegistrationService:
    """
    Per-team, per-season participation state machine.
    Every transition is validated before any write and recorded in the status history.
    """

    def __init__(self) -> None:
        self._season_repo = SeasonRepository()
        self._registration_repo = RegistrationRepository()

    def get(self, conn: sqlite3.Connection, registration_id: str) -> SeasonRegistration:
        reg = self._registration_repo.get(conn, registration_id)
        if reg is None:
            raise NotFound("registration", registration_id)
        return reg

    def invite(self, conn: sqlite3.Connection, season_id: str, team_id: str) -> SeasonRegistration:
        """Create a DRAFT_INVITE registration. One registration per (season, team)."""
        with transaction(conn):
            if self._season_repo.get(conn, season_id) is None:
                raise NotFound("season", season_id)
            if self._registration_repo.get_by_season_team(conn, season_id, team_id) is not None:
                raise DuplicateRegistrationError(
                    f"Team {team_id} is already registered for season {season_id}"
                )
            reg = self._registration_repo.create(conn, season_id, team_id)
            self._registration_repo.add_history(conn, reg.id, None, RegistrationStatus.DRAFT_INVITE)
        logger.info("Registration %s created for team %s in season %s", reg.id, team_id, season_id)
        return reg

    def send_invitation(self, conn: sqlite3.Connection, registration_id: str) -> SeasonRegistration:
        return self._transition(conn, registration_id, RegistrationStatus.INVITED)

    def send_invitations(self, conn: sqlite3.Connection, season_id: str) -> list[SeasonRegistration]:
        """Batch: move every DRAFT_INVITE of the season to INVITED."""
        with transaction(conn):
            drafts = self._registration_repo.list_by_season(conn, season_id, RegistrationStatus.DRAFT_INVITE)
            sent = [self._transition(conn, r.id, RegistrationStatus.INVITED) for r in drafts]
        logger.info("Sent %d invitations for season %s", len(sent), season_id)
        return sent

    def respond(
        self, conn: sqlite3.Connection, registration_id: str, accept: bool, note: str | None = None
    ) -> SeasonRegistration:
        target = RegistrationStatus.ACCEPTED if accept else RegistrationStatus.DECLINED
        return self._transition(conn, registration_id, target, note=note)

    def submit(
        self, conn: sqlite3.Connection, registration_id: str, payload: dict[str, Any] | None = None
    ) -> SeasonRegistration:
        """Payload (stadium, kit, roster summary) is stored as-is; validating it is not this workflow's job."""
        return self._transition(conn, registration_id, RegistrationStatus.SUBMITTED, payload=payload or {})

    def review(
        self, conn: sqlite3.Connection, registration_id: str, outcome: str, note: str | None = None
    ) -> SeasonRegistration:
        target = _REVIEW_TARGETS[ReviewOutcome(outcome)]
        return self._transition(conn, registration_id, target, note=note, reviewer_note=note)

    def history(self, conn: sqlite3.Connection, registration_id: str) -> list[StatusChange]:
        self.get(conn, registration_id)
        return self._registration_repo.list_history(conn, registration_id)

    # ---------- Season-level queries ----------

    def scheduling_readiness(self, conn: sqlite3.Connection, season_id: str) -> dict[str, Any]:
        """ready = approved >= required; deficit is how many approvals are still missing."""
        season = self._season_repo.get(conn, season_id)
        if season is None:
            raise NotFound("season", season_id)
        approved = self._registration_repo.count_by_status(conn, season_id, RegistrationStatus.APPROVED)
        required = season.required_team_count
        return {
            "ready": approved >= required,
            "approved": approved,
            "required": required,
            "deficit": max(0, required - approved),
        }

    def approved_team_ids(self, conn: sqlite3.Connection, season_id: str) -> list[str]:
        """Season team ids (registration ids) of APPROVED registrations, in registration order."""
        return [
            r.id
            for r in self._registration_repo.list_by_season(conn, season_id, RegistrationStatus.APPROVED)
        ]

    def list_registrations(
        self, conn: sqlite3.Connection, season_id: str, status: str | None = None
    ) -> list[SeasonRegistration]:
        return self._registration_repo.list_by_season(conn, season_id, status)

    # ---------- Internal ----------

    def _transition(
        self,
        conn: sqlite3.Connection,
        registration_id: str,
        target: RegistrationStatus,
        note: str | None = None,
        reviewer_note: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> SeasonRegistration:
        with transaction(conn):
            reg = self.get(conn, registration_id)
            current = reg.status
            if not can_transition(current, target):
                logger.warning(
                    "Rejected registration transition %s: %s -> %s", registration_id, current, target.value
                )
                raise InvalidTransition("registration", current, target)
            self._registration_repo.update_status(
                conn, registration_id, target, reviewer_note=reviewer_note, submission_payload=payload
            )
            self._registration_repo.add_history(conn, registration_id, current, target, note)
            updated = self.get(conn, registration_id)
        logger.info("Registration %s: %s -> %s", registration_id, current, target.value)
        return updated
