"""
Workflow records — the value objects every store and service exchanges.

All records are frozen dataclasses with tuple-valued collections, so a record
handed out by a store can never be mutated in place.  State changes produce a
new record via ``dataclasses.replace`` and go back through the store.

``to_dict()`` is the single serialisation used by the gateway, the HTTP layer
and the SQL store's JSON columns.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from bcl_workflow.core.exceptions import ValidationError
from bcl_workflow.services.status_model import (
    ApprovalDecisionType,
    EvidenceStatus,
    EvidenceType,
    PeriodStatus,
    ReviewOutcome,
)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _as_number(value: Any, field_name: str) -> float | None:
    """Finite number, numeric string, or None.  Anything else is a validation error."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a number", details={field_name: "boolean"})
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be a number", details={field_name: repr(value)})
    if not math.isfinite(number):
        raise ValidationError(f"{field_name} must be finite", details={field_name: repr(value)})
    return number


# ═════════════════════════════════════════════════════════════════════════════
# Evidence
# ═════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class EvidenceItem:
    """One piece of evidence in a (project_id, period_id) scope.

    ``reviews_at_submit`` is the review-history length observed when the item
    was last (re)submitted; reviews beyond that index belong to the current
    submission.
    """

    id: str
    project_id: str
    period_id: str
    scope_key: str
    type: EvidenceType
    title: str
    status: EvidenceStatus
    version: int
    created_at: datetime
    updated_at: datetime
    created_by: str
    bim_use_id: str = ""
    indicator_ids: tuple[str, ...] = ()
    description: str = ""
    external_url: str | None = None
    text_content: str | None = None
    file_view_url: str | None = None
    file_download_url: str | None = None
    file_reference_url: str | None = None
    submitted_at: datetime | None = None
    reviews_at_submit: int = 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "period_id": self.period_id,
            "scope_key": self.scope_key,
            "bim_use_id": self.bim_use_id,
            "indicator_ids": list(self.indicator_ids),
            "type": self.type.value,
            "title": self.title,
            "description": self.description,
            "external_url": self.external_url,
            "text_content": self.text_content,
            "file_view_url": self.file_view_url,
            "file_download_url": self.file_download_url,
            "file_reference_url": self.file_reference_url,
            "status": self.status.value,
            "version": self.version,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "submitted_at": _iso(self.submitted_at),
        }


# ═════════════════════════════════════════════════════════════════════════════
# Review ledger
# ═════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class ReviewEntry:
    """One immutable review decision.  ``sequence`` is the 1-based ledger position."""

    evidence_id: str
    sequence: int
    outcome: ReviewOutcome
    reason: str
    reviewer_identity: str
    reviewed_at: datetime

    def to_dict(self) -> dict:
        return {
            "evidence_id": self.evidence_id,
            "sequence": self.sequence,
            "outcome": self.outcome.value,
            "reason": self.reason,
            "reviewer_identity": self.reviewer_identity,
            "reviewed_at": _iso(self.reviewed_at),
        }


@dataclass(frozen=True)
class ReviewLedger:
    """Append-only review history of one evidence item, in acceptance order."""

    evidence_id: str
    history: tuple[ReviewEntry, ...] = ()

    @property
    def current(self) -> ReviewEntry | None:
        """The effective review: always the last accepted entry."""
        return self.history[-1] if self.history else None

    @property
    def current_outcome(self) -> ReviewOutcome | None:
        entry = self.current
        return entry.outcome if entry else None

    def __len__(self) -> int:
        return len(self.history)

    def to_dict(self) -> dict:
        current = self.current
        return {
            "evidence_id": self.evidence_id,
            "current_outcome": current.outcome.value if current else None,
            "current": current.to_dict() if current else None,
            "review_history": [e.to_dict() for e in self.history],
        }


# ═════════════════════════════════════════════════════════════════════════════
# Approval & lock
# ═════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class ApprovalDecision:
    project_id: str
    period_id: str
    scope_key: str
    sequence: int
    decision: ApprovalDecisionType
    reason: str
    decided_by: str
    decided_at: datetime

    def to_dict(self) -> dict:
        return {
            "project_id": self.project_id,
            "period_id": self.period_id,
            "scope_key": self.scope_key,
            "sequence": self.sequence,
            "decision": self.decision.value,
            "reason": self.reason,
            "decided_by": self.decided_by,
            "decided_at": _iso(self.decided_at),
        }


@dataclass(frozen=True)
class PeriodLock:
    """Set exactly once per scope, on the first APPROVE_PERIOD."""

    project_id: str
    period_id: str
    scope_key: str
    locked_by: str
    locked_at: datetime
    status: PeriodStatus = PeriodStatus.LOCKED

    def to_dict(self) -> dict:
        return {
            "project_id": self.project_id,
            "period_id": self.period_id,
            "scope_key": self.scope_key,
            "status": self.status.value,
            "locked_by": self.locked_by,
            "locked_at": _iso(self.locked_at),
        }


def open_lock_state(project_id: str, period_id: str, scope_key: str) -> dict:
    """Lock-state dict for a scope that has not been locked."""
    return {
        "project_id": project_id,
        "period_id": period_id,
        "scope_key": scope_key,
        "status": PeriodStatus.OPEN.value,
        "locked_by": None,
        "locked_at": None,
    }


# ═════════════════════════════════════════════════════════════════════════════
# Scores & snapshots
# ═════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class BreakdownRow:
    perspective_id: str
    score: float | None = None
    weight: float | None = None

    def to_dict(self) -> dict:
        return {"perspective_id": self.perspective_id, "score": self.score, "weight": self.weight}

    @classmethod
    def from_dict(cls, row: Any) -> "BreakdownRow":
        if not isinstance(row, dict):
            raise ValidationError("breakdown rows must be objects")
        perspective_id = str(row.get("perspective_id") or row.get("id") or "").strip()
        if not perspective_id:
            raise ValidationError("breakdown row requires perspective_id", details={"perspective_id": "missing"})
        return cls(
            perspective_id=perspective_id,
            score=_as_number(row.get("score"), "score"),
            weight=_as_number(row.get("weight"), "weight"),
        )


@dataclass(frozen=True)
class ScoreInput:
    """Opaque score data supplied by the external scoring component."""

    final_score: float | None = None
    breakdown: tuple[BreakdownRow, ...] = ()
    confidence_coverage: float | None = None

    @classmethod
    def from_dict(cls, data: Any) -> "ScoreInput":
        if data is None:
            return cls()
        if isinstance(data, ScoreInput):
            return data
        if not isinstance(data, dict):
            raise ValidationError("score_input must be an object")
        rows = data.get("breakdown") or []
        if not isinstance(rows, (list, tuple)):
            raise ValidationError("breakdown must be a list", details={"breakdown": type(rows).__name__})
        return cls(
            final_score=_as_number(data.get("final_score"), "final_score"),
            breakdown=tuple(BreakdownRow.from_dict(r) for r in rows),
            confidence_coverage=_as_number(data.get("confidence_coverage"), "confidence_coverage"),
        )

    def to_dict(self) -> dict:
        return {
            "final_score": self.final_score,
            "breakdown": [r.to_dict() for r in self.breakdown],
            "confidence_coverage": self.confidence_coverage,
        }


@dataclass(frozen=True)
class EvidenceReviewCounts:
    acceptable: int = 0
    needs_revision: int = 0
    rejected: int = 0
    awaiting_review: int = 0

    @property
    def reviewed(self) -> int:
        return self.acceptable + self.needs_revision + self.rejected

    def to_dict(self) -> dict:
        return {
            "acceptable": self.acceptable,
            "needs_revision": self.needs_revision,
            "rejected": self.rejected,
            "awaiting_review": self.awaiting_review,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EvidenceReviewCounts":
        return cls(**{k: int(data.get(k, 0)) for k in ("acceptable", "needs_revision", "rejected", "awaiting_review")})


@dataclass(frozen=True)
class Snapshot:
    """Immutable point-in-time record of an approved period."""

    snapshot_id: str
    project_id: str
    period_id: str
    scope_key: str
    approved_by: str
    approved_at: datetime
    final_score: float | None
    breakdown: tuple[BreakdownRow, ...] = field(default_factory=tuple)
    evidence_review_counts: EvidenceReviewCounts = field(default_factory=EvidenceReviewCounts)

    def to_dict(self) -> dict:
        return {
            "snapshot_id": self.snapshot_id,
            "project_id": self.project_id,
            "period_id": self.period_id,
            "scope_key": self.scope_key,
            "approved_by": self.approved_by,
            "approved_at": _iso(self.approved_at),
            "final_score": self.final_score,
            "breakdown": [r.to_dict() for r in self.breakdown],
            "evidence_review_counts": self.evidence_review_counts.to_dict(),
        }


@dataclass(frozen=True)
class SnapshotPage:
    """One page of ``list_snapshots``; ``next_cursor`` is None on the last page."""

    items: tuple[Snapshot, ...]
    next_cursor: int | None

    def to_dict(self) -> dict:
        return {
            "items": [s.to_dict() for s in self.items],
            "next_cursor": self.next_cursor,
            "count": len(self.items),
        }
