"""
Suspension ledger: derives player suspensions from card events.

Suspensions are computed, not triggered. build_ledger() is a pure fold over
the season's card events in match-chronological order; recalculate() persists
its output under deterministic keys, so it can be re-run at any time without
duplicating or double-serving anything.

Fold rules per player:
- direct red → RED_CARD, red_card_ban matches
- two or more yellows in one match → RED_CARD-equivalent, second_yellow_ban matches;
  those yellows never count toward accumulation
- red and double yellow in one match → one suspension, the larger ban
- otherwise each yellow accumulates; reaching yellow_threshold creates
  TWO_YELLOW_CARDS (threshold 2) or ACCUMULATION, yellow_ban matches, and resets the counter
- with accumulation_window set, a yellow expires after that many of the team's matches
"""
from __future__ import annotations

import logging
import sqlite3
import uuid
from collections import defaultdict
from datetime import datetime
from typing import Any, Iterable

from competition.errors import InvalidTransition, NotFound
from competition.models import (
    PLAYED_STATUSES,
    CardEvent,
    CardType,
    Match,
    Suspension,
    SuspensionReason,
    SuspensionStatus,
)
from competition.persistence.db import transaction
from competition.persistence.repositories import (
    CardEventRepository,
    MatchRepository,
    SeasonRepository,
    SuspensionRepository,
)
from competition.rules import SeasonRules

logger = logging.getLogger(__name__)

# Statuses that still bind the player (a served one matters for historical queries)
_BINDING_STATUSES = frozenset({SuspensionStatus.ACTIVE, SuspensionStatus.SERVED})


def suspension_key(player_id: str, trigger_match_id: str, reason: str) -> str:
    return f"{player_id}:{trigger_match_id}:{getattr(reason, 'value', reason)}"


def match_order_key(match: Match) -> tuple[datetime, str]:
    """Chronological order of matches: (scheduled_at, id)."""
    return (match.scheduled_at, match.id)


# ---------- Pure fold ----------


def build_ledger(
    events: Iterable[CardEvent],
    matches: Iterable[Match],
    rules: SeasonRules,
    season_id: str = "",
) -> list[Suspension]:
    """
    Fold card events into the suspensions they imply. Events are re-sorted on
    (match date, match id, minute) first, so arrival order does not matter.
    Events for a match that is not in `matches` cannot be ordered and are skipped.
    """
    match_by_id = {m.id: m for m in matches}
    ordered_matches = sorted(match_by_id.values(), key=match_order_key)

    # Position of each match in each team's own schedule, for the accumulation window
    team_match_index: dict[tuple[str, str], int] = {}
    team_counter: dict[str, int] = defaultdict(int)
    for m in ordered_matches:
        for team_id in m.team_ids():
            team_match_index[(team_id, m.id)] = team_counter[team_id]
            team_counter[team_id] += 1

    orderable: list[CardEvent] = []
    for e in events:
        if e.match_id not in match_by_id:
            logger.warning("Skipping card %s: match %s unknown", e.id, e.match_id)
            continue
        orderable.append(e)
    orderable.sort(key=lambda e: (match_order_key(match_by_id[e.match_id]), e.minute))

    # player -> ordered list of (match_id, [events in that match])
    per_player: dict[str, list[tuple[str, list[CardEvent]]]] = defaultdict(list)
    for e in orderable:
        timeline = per_player[e.player_id]
        if timeline and timeline[-1][0] == e.match_id:
            timeline[-1][1].append(e)
        else:
            timeline.append((e.match_id, [e]))

    ledger: list[Suspension] = []
    for player_id in sorted(per_player):
        ledger.extend(_fold_player(player_id, per_player[player_id], team_match_index, rules, season_id))
    return ledger


def _fold_player(
    player_id: str,
    timeline: list[tuple[str, list[CardEvent]]],
    team_match_index: dict[tuple[str, str], int],
    rules: SeasonRules,
    season_id: str,
) -> list[Suspension]:
    result: list[Suspension] = []
    # Team-match positions of yellows not yet converted into a suspension
    pending_yellows: list[int] = []

    for match_id, cards in timeline:
        team_id = cards[-1].team_id
        position = team_match_index.get((team_id, match_id), 0)
        reds = [c for c in cards if c.card_type == CardType.RED]
        yellows = [c for c in cards if c.card_type == CardType.YELLOW]

        if rules.accumulation_window is not None:
            pending_yellows = [p for p in pending_yellows if position - p < rules.accumulation_window]

        ejection_ban = 0
        if reds:
            ejection_ban = rules.red_card_ban
        if len(yellows) >= 2:
            ejection_ban = max(ejection_ban, rules.second_yellow_ban)
        if ejection_ban:
            logger.debug("Fold %s: ejection in %s, ban %d", player_id, match_id, ejection_ban)
            result.append(_new_suspension(
                season_id, player_id, team_id, SuspensionReason.RED_CARD, ejection_ban, match_id
            ))

        # A lone yellow still goes on record, even when followed by a straight red
        if len(yellows) == 1:
            pending_yellows.append(position)
            logger.debug("Fold %s: yellow %d/%d in %s", player_id, len(pending_yellows), rules.yellow_threshold, match_id)
            if len(pending_yellows) >= rules.yellow_threshold:
                reason = (
                    SuspensionReason.TWO_YELLOW_CARDS
                    if rules.yellow_threshold == 2
                    else SuspensionReason.ACCUMULATION
                )
                result.append(_new_suspension(season_id, player_id, team_id, reason, rules.yellow_ban, match_id))
                pending_yellows = []
    return result


def _new_suspension(
    season_id: str,
    player_id: str,
    team_id: str,
    reason: SuspensionReason,
    matches_banned: int,
    trigger_match_id: str,
) -> Suspension:
    return Suspension(
        key=suspension_key(player_id, trigger_match_id, reason),
        season_id=season_id,
        player_id=player_id,
        team_id=team_id,
        reason=reason.value,
        matches_banned=matches_banned,
        served_matches=0,
        status=SuspensionStatus.ACTIVE.value,
        trigger_match_id=trigger_match_id,
    )


# ---------- SuspensionLedger ----------


class SuspensionLedger:
    """Persists the fold, tracks served matches and answers eligibility queries."""

    def __init__(self) -> None:
        self._season_repo = SeasonRepository()
        self._match_repo = MatchRepository()
        self._card_repo = CardEventRepository()
        self._suspension_repo = SuspensionRepository()

    def record_card(self, conn: sqlite3.Connection, event: CardEvent) -> CardEvent:
        """Append a card event. No suspension side effect; call recalculate() afterwards."""
        if event.card_type not in {c.value for c in CardType}:
            raise ValueError(f"Unknown card type: {event.card_type}")
        with transaction(conn):
            match = self._match_repo.get(conn, event.match_id)
            if match is None:
                raise NotFound("match", event.match_id)
            if event.team_id not in match.team_ids():
                raise ValueError(f"Team {event.team_id} does not play in match {match.id}")
            stored = self._card_repo.create(conn, match.season_id, event)
        logger.info(
            "Card recorded: %s %s for player %s in match %s (minute %d)",
            stored.card_type, stored.id, stored.player_id, stored.match_id, stored.minute,
        )
        return stored

    def recalculate(self, conn: sqlite3.Connection, season_id: str) -> list[Suspension]:
        """
        Rebuild the season's card-derived suspensions from its card events.
        Idempotent: existing keys are updated in place, suspensions the fold no
        longer produces are archived, cancelled ones stay cancelled and manual
        ones are never touched. Serves are backfilled for played team matches
        after each trigger.
        """
        with transaction(conn):
            rules = self._season_rules(conn, season_id)
            matches = self._match_repo.list_by_season(conn, season_id)
            events = self._card_repo.list_by_season(conn, season_id)
            ledger = build_ledger(events, matches, rules, season_id=season_id)

            existing = {s.key: s for s in self._suspension_repo.list_by_season(conn, season_id)}
            created = updated = archived = 0
            for derived in ledger:
                current = existing.get(derived.key)
                if current is None:
                    self._suspension_repo.insert(conn, derived)
                    created += 1
                    continue
                if current.status == SuspensionStatus.CANCELLED:
                    continue
                changed = (
                    current.matches_banned != derived.matches_banned
                    or current.team_id != derived.team_id
                    or current.status == SuspensionStatus.ARCHIVED
                )
                if changed:
                    current.matches_banned = derived.matches_banned
                    current.team_id = derived.team_id
                    current.served_matches = min(current.served_matches, current.matches_banned)
                    done = current.served_matches >= current.matches_banned
                    current.status = (SuspensionStatus.SERVED if done else SuspensionStatus.ACTIVE).value
                    self._suspension_repo.update(conn, current)
                    updated += 1

            derived_keys = {s.key for s in ledger}
            for key, current in existing.items():
                if current.manual or key in derived_keys:
                    continue
                if current.status in _BINDING_STATUSES:
                    current.status = SuspensionStatus.ARCHIVED.value
                    self._suspension_repo.update(conn, current)
                    archived += 1

            served = self._backfill_serves(conn, season_id, matches)
            result = self._suspension_repo.list_by_season(conn, season_id)
        logger.info(
            "Recalculated suspensions for season %s: %d events, %d created, %d updated, %d archived, %d serves",
            season_id, len(events), created, updated, archived, served,
        )
        return result

    def mark_served(self, conn: sqlite3.Connection, key: str, match_id: str) -> Suspension:
        """
        Count match_id toward the suspension. match_id must be a played match
        of the team that comes after the trigger. No-op if the suspension is
        not active or this (suspension, match) pair was already counted.
        """
        with transaction(conn):
            s = self._suspension_repo.get(conn, key)
            if s is None:
                raise NotFound("suspension", key)
            match = self._match_repo.get(conn, match_id)
            if match is None:
                raise NotFound("match", match_id)
            if s.team_id not in match.team_ids():
                raise ValueError(f"Team {s.team_id} does not play in match {match_id}")
            if match.status not in PLAYED_STATUSES:
                raise InvalidTransition("match", match.status, "serve suspension")
            if not self._triggered_before(conn, s, match_order_key(match)):
                raise ValueError(f"Match {match_id} is not after the trigger of suspension {key}")
            if s.status != SuspensionStatus.ACTIVE:
                return s
            if not self._suspension_repo.add_serve(conn, key, match_id):
                return s
            s.served_matches = min(s.matches_banned, s.served_matches + 1)
            if s.served_matches >= s.matches_banned:
                s.status = SuspensionStatus.SERVED.value
            self._suspension_repo.update(conn, s)
        logger.info(
            "Suspension %s served %d/%d (match %s)%s",
            key, s.served_matches, s.matches_banned, match_id,
            " - complete" if s.status == SuspensionStatus.SERVED else "",
        )
        return s

    def serve_match(self, conn: sqlite3.Connection, match: Match) -> int:
        """Mark the match served for every active suspension of either team triggered before it."""
        count = 0
        with transaction(conn):
            order = match_order_key(match)
            for s in self._suspension_repo.list_by_season(conn, match.season_id, status=SuspensionStatus.ACTIVE):
                if s.team_id not in match.team_ids():
                    continue
                if not self._triggered_before(conn, s, order):
                    continue
                if match.id in self._suspension_repo.list_served_match_ids(conn, s.key):
                    continue
                self.mark_served(conn, s.key, match.id)
                count += 1
        return count

    def is_suspended(
        self, conn: sqlite3.Connection, season_id: str, player_id: str, at_match_id: str
    ) -> dict[str, Any]:
        """
        Suspension state strictly before at_match: a suspension triggered in
        at_match itself does not bar the player from that match, and serves in
        at_match or later are not counted.
        """
        at_match = self._match_repo.get(conn, at_match_id)
        if at_match is None:
            raise NotFound("match", at_match_id)
        at_order = match_order_key(at_match)
        for s in self._suspension_repo.list_by_season(conn, season_id, player_id=player_id):
            if s.status not in _BINDING_STATUSES:
                continue
            if not self._triggered_before(conn, s, at_order):
                continue
            served_before = 0
            for served_id in self._suspension_repo.list_served_match_ids(conn, s.key):
                served_match = self._match_repo.get(conn, served_id)
                if served_match is not None and match_order_key(served_match) < at_order:
                    served_before += 1
            if served_before < s.matches_banned:
                return {"suspended": True, "reason": s.reason, "suspension_key": s.key}
        return {"suspended": False, "reason": None, "suspension_key": None}

    # ---------- Administrative ----------

    def add_manual_suspension(
        self,
        conn: sqlite3.Connection,
        season_id: str,
        player_id: str,
        team_id: str,
        matches_banned: int,
        notes: str | None = None,
        trigger_match_id: str | None = None,
    ) -> Suspension:
        """Disciplinary ban outside the card rules (reason OTHER). Never archived by recalculate()."""
        if matches_banned < 1:
            raise ValueError("matches_banned must be >= 1")
        with transaction(conn):
            if self._season_repo.get(conn, season_id) is None:
                raise NotFound("season", season_id)
            if trigger_match_id is not None and self._match_repo.get(conn, trigger_match_id) is None:
                raise NotFound("match", trigger_match_id)
            anchor = trigger_match_id or f"manual-{uuid.uuid4().hex[:12]}"
            s = self._suspension_repo.insert(conn, Suspension(
                key=suspension_key(player_id, anchor, SuspensionReason.OTHER),
                season_id=season_id,
                player_id=player_id,
                team_id=team_id,
                reason=SuspensionReason.OTHER.value,
                matches_banned=matches_banned,
                served_matches=0,
                status=SuspensionStatus.ACTIVE.value,
                trigger_match_id=trigger_match_id,
                manual=True,
                notes=notes,
            ))
        logger.info("Manual suspension %s: %d matches for player %s", s.key, matches_banned, player_id)
        return s

    def cancel_suspension(self, conn: sqlite3.Connection, key: str, note: str | None = None) -> Suspension:
        with transaction(conn):
            s = self._suspension_repo.get(conn, key)
            if s is None:
                raise NotFound("suspension", key)
            if s.status not in _BINDING_STATUSES:
                raise InvalidTransition("suspension", s.status, SuspensionStatus.CANCELLED)
            s.status = SuspensionStatus.CANCELLED.value
            if note:
                s.notes = note
            self._suspension_repo.update(conn, s)
        logger.info("Suspension %s cancelled", key)
        return s

    def list_suspensions(
        self,
        conn: sqlite3.Connection,
        season_id: str,
        status: str | None = None,
        player_id: str | None = None,
    ) -> list[Suspension]:
        return self._suspension_repo.list_by_season(conn, season_id, status=status, player_id=player_id)

    def card_summary(self, conn: sqlite3.Connection, season_id: str) -> list[dict[str, Any]]:
        """Yellow and red counts per player for the season, ordered by player id."""
        counts: dict[str, dict[str, Any]] = {}
        for e in self._card_repo.list_by_season(conn, season_id):
            row = counts.setdefault(e.player_id, {"player_id": e.player_id, "team_id": e.team_id, "yellow": 0, "red": 0})
            row["team_id"] = e.team_id
            row[CardType(e.card_type).value] += 1
        return [counts[p] for p in sorted(counts)]

    # ---------- Internal ----------

    def _season_rules(self, conn: sqlite3.Connection, season_id: str) -> SeasonRules:
        rules = self._season_repo.get_rules(conn, season_id)
        if rules is None:
            raise NotFound("season", season_id)
        return rules

    def _triggered_before(self, conn: sqlite3.Connection, s: Suspension, order: tuple[datetime, str]) -> bool:
        # Manual bans without a trigger match apply from the start
        if s.trigger_match_id is None:
            return True
        trigger = self._match_repo.get(conn, s.trigger_match_id)
        return trigger is not None and match_order_key(trigger) < order

    def _backfill_serves(self, conn: sqlite3.Connection, season_id: str, matches: list[Match]) -> int:
        played = [m for m in matches if m.status in PLAYED_STATUSES]
        by_id = {m.id: m for m in matches}
        count = 0
        for s in self._suspension_repo.list_by_season(conn, season_id, status=SuspensionStatus.ACTIVE):
            if s.trigger_match_id is None or s.trigger_match_id not in by_id:
                continue
            trigger_order = match_order_key(by_id[s.trigger_match_id])
            already = set(self._suspension_repo.list_served_match_ids(conn, s.key))
            served = s.served_matches
            for m in played:
                if served >= s.matches_banned:
                    break
                if s.team_id not in m.team_ids() or match_order_key(m) <= trigger_order:
                    continue
                if m.id in already:
                    continue
                s = self.mark_served(conn, s.key, m.id)
                served = s.served_matches
                count += 1
        return count
