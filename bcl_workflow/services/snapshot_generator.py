"""
Snapshot Generator — immutable approval records.

Freezes the score data handed over by the external scoring component and the
evidence review counts of the scope at approval time.  Snapshots are
appended, never updated; the store refuses a second snapshot for a scope.

Only the approval manager creates snapshots, inside the transaction that sets
the period lock.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Iterable

from bcl_workflow.core.exceptions import NotFoundError
from bcl_workflow.services.evidence_lifecycle import EvidenceLifecycleManager
from bcl_workflow.services.records import (
    EvidenceItem,
    EvidenceReviewCounts,
    ScoreInput,
    Snapshot,
    SnapshotPage,
)
from bcl_workflow.services.status_model import EffectiveStatus, build_scope_key
from bcl_workflow.services.store import WorkflowStore

logger = logging.getLogger(__name__)


class SnapshotGenerator:
    """Builds, appends and serves approval snapshots."""

    def __init__(self, store: WorkflowStore, evidence: EvidenceLifecycleManager) -> None:
        self.store = store
        self.evidence = evidence

    # ── Counts ────────────────────────────────────────────────────────────

    def compute_evidence_review_counts(self, items: Iterable[EvidenceItem]) -> EvidenceReviewCounts:
        """Tally effective statuses; DRAFT items are not counted."""
        tally = {status: 0 for status in EffectiveStatus}
        for item in items:
            tally[self.evidence.effective_status(item)] += 1
        return EvidenceReviewCounts(
            acceptable=tally[EffectiveStatus.ACCEPTABLE],
            needs_revision=tally[EffectiveStatus.NEEDS_REVISION],
            rejected=tally[EffectiveStatus.REJECTED],
            awaiting_review=tally[EffectiveStatus.AWAITING_REVIEW],
        )

    def counts_for_scope(self, project_id: str, period_id: str) -> EvidenceReviewCounts:
        return self.compute_evidence_review_counts(self.evidence.list_scope(project_id, period_id))

    # ── Create ────────────────────────────────────────────────────────────

    def create_snapshot(
        self,
        project_id: str,
        period_id: str,
        approved_by: str,
        approved_at: datetime,
        score_input: ScoreInput | dict | None,
    ) -> Snapshot:
        """Construct and append the snapshot for a scope being locked.

        Counts are recomputed from the current evidence and review state.
        """
        score = ScoreInput.from_dict(score_input)
        snapshot = Snapshot(
            snapshot_id=uuid.uuid4().hex,
            project_id=project_id,
            period_id=period_id,
            scope_key=build_scope_key(project_id, period_id),
            approved_by=approved_by,
            approved_at=approved_at,
            final_score=score.final_score,
            breakdown=score.breakdown,
            evidence_review_counts=self.counts_for_scope(project_id, period_id),
        )
        self.store.append_snapshot(snapshot)
        logger.info(
            "Snapshot created",
            extra={"snapshot_id": snapshot.snapshot_id, "project_id": project_id, "period_id": period_id},
        )
        return snapshot

    # ── Query ─────────────────────────────────────────────────────────────

    def get_snapshot(self, snapshot_id: str) -> Snapshot:
        snapshot = self.store.get_snapshot(snapshot_id)
        if snapshot is None:
            raise NotFoundError("Snapshot", snapshot_id)
        return snapshot

    def list_snapshots(
        self,
        *,
        project_id: str | None = None,
        period_id: str | None = None,
        cursor: int = 0,
        limit: int = 50,
    ) -> SnapshotPage:
        """Append-ordered page; pass ``next_cursor`` back to continue."""
        return self.store.list_snapshots(
            project_id=project_id, period_id=period_id, cursor=cursor, limit=limit,
        )
