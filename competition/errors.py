"""
Error taxonomy for the competition engine.

Every error carries a stable machine-readable kind and its full context via
to_dict(). Translation and HTTP status mapping belong to the transport layer.
"""
from __future__ import annotations

from typing import Any, Iterable


class CompetitionError(Exception):
    """Base class for all core errors."""

    kind = "COMPETITION_ERROR"

    def context(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"kind": self.kind, "message": str(self)}
        d.update(self.context())
        return d


class InvalidTransition(CompetitionError):
    """State change attempted from an incompatible source state (registration, lineup, match)."""

    kind = "INVALID_TRANSITION"

    def __init__(self, entity: str, from_status: str, attempted: str) -> None:
        self.entity = entity
        self.from_status = str(getattr(from_status, "value", from_status))
        self.attempted = str(getattr(attempted, "value", attempted))
        super().__init__(
            f"Invalid {entity} transition: {self.from_status} -> {self.attempted}"
        )

    def context(self) -> dict[str, Any]:
        return {"entity": self.entity, "from": self.from_status, "attempted": self.attempted}


class ValidationFailed(CompetitionError):
    """Lineup composition violations. Carries the full list, not just the first."""

    kind = "VALIDATION_FAILED"

    def __init__(self, errors: Iterable[Any]) -> None:
        self.errors = list(errors)
        summary = "; ".join(getattr(e, "message", str(e)) for e in self.errors)
        super().__init__(f"Validation failed: {summary}")

    def error_kinds(self) -> list[str]:
        return [getattr(e.kind, "value", e.kind) for e in self.errors]

    def context(self) -> dict[str, Any]:
        return {
            "errors": [e.to_dict() if hasattr(e, "to_dict") else str(e) for e in self.errors],
        }


class PreconditionNotMet(CompetitionError):
    """Lifecycle guard failure. missing lists every unmet condition."""

    kind = "PRECONDITION_NOT_MET"

    def __init__(self, target_state: str, missing: Iterable[str]) -> None:
        self.target_state = str(getattr(target_state, "value", target_state))
        self.missing = list(missing)
        super().__init__(
            f"Cannot enter {self.target_state}: {', '.join(self.missing)}"
        )

    def context(self) -> dict[str, Any]:
        return {"target_state": self.target_state, "missing": list(self.missing)}


class NotFound(CompetitionError):
    """Referenced match/team/player/season does not exist."""

    kind = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")

    def context(self) -> dict[str, Any]:
        return {"entity": self.entity, "id": self.entity_id}


class ConcurrencyConflict(CompetitionError):
    """Optimistic-lock mismatch on write. Caller must re-read and retry."""

    kind = "CONCURRENCY_CONFLICT"

    def __init__(self, entity: str, entity_id: str, expected_version: int | None) -> None:
        self.entity = entity
        self.entity_id = entity_id
        self.expected_version = expected_version
        super().__init__(
            f"{entity} {entity_id} was modified concurrently (expected version {expected_version})"
        )

    def context(self) -> dict[str, Any]:
        return {
            "entity": self.entity,
            "id": self.entity_id,
            "expected_version": self.expected_version,
        }
