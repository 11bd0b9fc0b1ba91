"""
Review Ledger — append-only review history per evidence item.

Each accepted ``apply_review`` appends one entry at the next sequence number
while holding the store transaction for the item's scope, so concurrent
reviews of the same item append in the order the ledger accepted them and
none is lost.  Entries are never edited or removed; the current outcome is
always the last entry (``ReviewLedger.current``).

A NEEDS_REVISION outcome also moves the item's stored status to
NEEDS_REVISION so the submitter can resubmit.  Other outcomes only change the
effective status derived at read time.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable

from bcl_workflow.core.exceptions import ConflictError, ValidationError
from bcl_workflow.services.evidence_lifecycle import EvidenceLifecycleManager
from bcl_workflow.services.records import ReviewEntry, ReviewLedger
from bcl_workflow.services.status_model import (
    EvidenceStatus,
    ReviewOutcome,
    normalize_review_outcome,
)
from bcl_workflow.services.store import WorkflowStore
from bcl_workflow.utils.helpers import utc_now

logger = logging.getLogger(__name__)

# Stored statuses in which an item can be reviewed
REVIEWABLE_STATUSES = frozenset({EvidenceStatus.SUBMITTED, EvidenceStatus.NEEDS_REVISION})


class ReviewLedgerService:
    def __init__(
        self,
        store: WorkflowStore,
        evidence: EvidenceLifecycleManager,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.evidence = evidence
        self.clock = clock or utc_now

    def get_ledger(self, evidence_id: str) -> ReviewLedger:
        """Full history; raises ``NotFoundError`` for an unknown item."""
        self.evidence.get(evidence_id)
        return self.store.get_review_ledger(evidence_id)

    def current_outcome(self, evidence_id: str) -> ReviewOutcome | None:
        return self.get_ledger(evidence_id).current_outcome

    def apply_review(
        self,
        evidence_id: str,
        outcome: Any,
        reason: str | None,
        reviewer_identity: str,
        *,
        if_match_version: int | None = None,
    ) -> ReviewEntry:
        """Append one review decision.

        ``if_match_version`` is the evidence version the reviewer looked at;
        when given, a review of a since-changed item is refused.

        Raises:
            ValidationError: blank reason or unknown outcome.
            NotFoundError: unknown evidence id.
            LockedError: the item's scope is LOCKED.
            ConflictError: the item is still a DRAFT, or ``if_match_version``
                is stale.
        """
        normalized = normalize_review_outcome(outcome)
        if normalized is None:
            raise ValidationError(
                "outcome must be ACCEPTABLE, NEEDS_REVISION or REJECTED",
                details={"outcome": str(outcome)},
            )
        reason_text = reason.strip() if isinstance(reason, str) else ""
        if not reason_text:
            raise ValidationError("Review reason is required", details={"reason": "blank"})

        item = self.evidence.get(evidence_id)
        with self.store.transaction(item.scope_key):
            item = self.evidence.get(evidence_id)
            self.evidence.assert_scope_open(item.project_id, item.period_id)
            if item.status not in REVIEWABLE_STATUSES:
                raise ConflictError(
                    "EvidenceItem", evidence_id,
                    reason=f"Cannot review evidence {evidence_id} (status={item.status.value})",
                )
            if if_match_version is not None and int(if_match_version) != item.version:
                raise ConflictError(
                    "EvidenceItem", evidence_id,
                    expected_version=int(if_match_version), actual_version=item.version,
                )

            ledger = self.store.get_review_ledger(evidence_id)
            entry = self.store.append_review(ReviewEntry(
                evidence_id=evidence_id,
                sequence=len(ledger) + 1,
                outcome=normalized,
                reason=reason_text,
                reviewer_identity=reviewer_identity,
                reviewed_at=self.clock(),
            ))
            if normalized == ReviewOutcome.NEEDS_REVISION:
                self.evidence.mark_needs_revision(item)

        logger.info(
            "Review appended",
            extra={
                "evidence_id": evidence_id,
                "project_id": item.project_id,
                "period_id": item.period_id,
                "outcome": normalized.value,
                "sequence": entry.sequence,
            },
        )
        return entry
