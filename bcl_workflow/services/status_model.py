"""
Status Normalizer — closed enumerations for every status-like value.

Raw strings arriving from the transport boundary (headers, JSON bodies, stored
rows) are canonicalised here exactly once: trimmed, upper-cased and mapped
through an alias table.  Deeper layers only ever see the enum members below.

Also resolves the stable per-project-per-period scope key used to address
locks, decisions and snapshots.

Usage:
    from bcl_workflow.services.status_model import (
        ReviewOutcome, normalize_review_outcome, build_scope_key,
    )

    outcome = normalize_review_outcome(" needs revision ")   # ReviewOutcome.NEEDS_REVISION
    key = build_scope_key("p-1", "w6")                        # "proto:p-1:w6"
"""

from __future__ import annotations

from enum import Enum
from typing import Any

UNKNOWN_PROJECT_KEY = "UNKNOWN_PROJECT"
UNKNOWN_ACTIVE_PERIOD_KEY = "UNKNOWN_ACTIVE"
_NOT_AVAILABLE_SENTINEL = "__NOT_AVAILABLE__"


# ═════════════════════════════════════════════════════════════════════════════
# Enumerations
# ═════════════════════════════════════════════════════════════════════════════


class EvidenceStatus(str, Enum):
    """Stored lifecycle status of an evidence item."""

    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    NEEDS_REVISION = "NEEDS_REVISION"


class ReviewOutcome(str, Enum):
    ACCEPTABLE = "ACCEPTABLE"
    NEEDS_REVISION = "NEEDS_REVISION"
    REJECTED = "REJECTED"


class EffectiveStatus(str, Enum):
    """Display-facing status: stored status with the latest review overlaid."""

    DRAFT = "DRAFT"
    AWAITING_REVIEW = "AWAITING_REVIEW"
    ACCEPTABLE = "ACCEPTABLE"
    NEEDS_REVISION = "NEEDS_REVISION"
    REJECTED = "REJECTED"


class EvidenceType(str, Enum):
    URL = "URL"
    FILE = "FILE"
    TEXT = "TEXT"


class ApprovalDecisionType(str, Enum):
    APPROVE_PERIOD = "APPROVE_PERIOD"
    REJECT_APPROVAL = "REJECT_APPROVAL"


class PeriodStatus(str, Enum):
    OPEN = "OPEN"
    LOCKED = "LOCKED"


class ActorRole(str, Enum):
    """Roles recognised by the engine.

    SUBMITTER produces evidence, REVIEWER evaluates it, APPROVER decides the
    period, AUDITOR and ADMIN only read.
    """

    SUBMITTER = "SUBMITTER"
    REVIEWER = "REVIEWER"
    APPROVER = "APPROVER"
    AUDITOR = "AUDITOR"
    ADMIN = "ADMIN"


# ── Alias tables (keys are already trimmed + upper-cased) ─────────────────────

_EVIDENCE_STATUS_ALIASES = {
    "DRAFT": EvidenceStatus.DRAFT,
    "SUBMITTED": EvidenceStatus.SUBMITTED,
    "NEEDS_REVISION": EvidenceStatus.NEEDS_REVISION,
    "NEEDS REVISION": EvidenceStatus.NEEDS_REVISION,
}

_REVIEW_OUTCOME_ALIASES = {
    "ACCEPTABLE": ReviewOutcome.ACCEPTABLE,
    "NEEDS_REVISION": ReviewOutcome.NEEDS_REVISION,
    "NEEDS REVISION": ReviewOutcome.NEEDS_REVISION,
    "REJECTED": ReviewOutcome.REJECTED,
}

_DECISION_ALIASES = {
    "APPROVE_PERIOD": ApprovalDecisionType.APPROVE_PERIOD,
    "APPROVE PERIOD": ApprovalDecisionType.APPROVE_PERIOD,
    "APPROVE": ApprovalDecisionType.APPROVE_PERIOD,
    "REJECT_APPROVAL": ApprovalDecisionType.REJECT_APPROVAL,
    "REJECT APPROVAL": ApprovalDecisionType.REJECT_APPROVAL,
    "REJECT": ApprovalDecisionType.REJECT_APPROVAL,
}

_ROLE_ALIASES = {
    "SUBMITTER": ActorRole.SUBMITTER,
    "ROLE1": ActorRole.SUBMITTER,
    "REVIEWER": ActorRole.REVIEWER,
    "ROLE2": ActorRole.REVIEWER,
    "APPROVER": ActorRole.APPROVER,
    "ROLE3": ActorRole.APPROVER,
    "AUDITOR": ActorRole.AUDITOR,
    "VIEWER": ActorRole.AUDITOR,
    "ADMIN": ActorRole.ADMIN,
}


def _trimmed_upper(value: Any) -> str:
    if isinstance(value, Enum):
        value = value.value
    return value.strip().upper() if isinstance(value, str) else ""


# ═════════════════════════════════════════════════════════════════════════════
# Normalizers
# ═════════════════════════════════════════════════════════════════════════════


def normalize_evidence_status(raw: Any) -> EvidenceStatus:
    """Unknown or missing stored status falls back to DRAFT."""
    return _EVIDENCE_STATUS_ALIASES.get(_trimmed_upper(raw), EvidenceStatus.DRAFT)


def normalize_review_outcome(raw: Any) -> ReviewOutcome | None:
    return _REVIEW_OUTCOME_ALIASES.get(_trimmed_upper(raw))


def normalize_evidence_type(raw: Any) -> EvidenceType | None:
    value = _trimmed_upper(raw)
    try:
        return EvidenceType(value)
    except ValueError:
        return None


def normalize_decision(raw: Any) -> ApprovalDecisionType | None:
    return _DECISION_ALIASES.get(_trimmed_upper(raw))


def normalize_actor_role(raw: Any) -> ActorRole | None:
    return _ROLE_ALIASES.get(_trimmed_upper(raw))


def normalize_period_status(raw: Any) -> PeriodStatus | None:
    """Accepts "OPEN"/"LOCKED" strings or a boolean lock flag."""
    if isinstance(raw, bool):
        return PeriodStatus.LOCKED if raw else PeriodStatus.OPEN
    value = _trimmed_upper(raw)
    if value == "OPEN":
        return PeriodStatus.OPEN
    if value == "LOCKED":
        return PeriodStatus.LOCKED
    return None


def outcome_to_effective_status(outcome: ReviewOutcome) -> EffectiveStatus:
    return EffectiveStatus(outcome.value)


# ═════════════════════════════════════════════════════════════════════════════
# Scope keys
# ═════════════════════════════════════════════════════════════════════════════


def normalize_period_key(period_id: str | None) -> str:
    text = period_id.strip() if isinstance(period_id, str) else ""
    if not text or text == _NOT_AVAILABLE_SENTINEL:
        return UNKNOWN_ACTIVE_PERIOD_KEY
    return text


def normalize_project_key(project_id: str | None) -> str:
    text = project_id.strip() if isinstance(project_id, str) else ""
    return text or UNKNOWN_PROJECT_KEY


def build_scope_key(project_id: str | None, period_id: str | None) -> str:
    """Stable key for one (project_id, period_id) evaluation cycle."""
    return f"proto:{normalize_project_key(project_id)}:{normalize_period_key(period_id)}"


def is_known_scope(project_id: str | None, period_id: str | None) -> bool:
    """False when either half of the scope normalises to its UNKNOWN placeholder."""
    return (
        normalize_project_key(project_id) != UNKNOWN_PROJECT_KEY
        and normalize_period_key(period_id) != UNKNOWN_ACTIVE_PERIOD_KEY
    )
