"""
Workflow ledger tables for the SQL-backed store.

Models:
    - EvidenceItemRow:      evidence items, version-guarded updates
    - ReviewEntryRow:       append-only review history per evidence item
    - ApprovalDecisionRow:  append-only approval decisions per scope
    - PeriodLockRow:        one row per LOCKED scope (scope_key is the PK)
    - SnapshotRow:          immutable approval snapshots, one per scope
    - IdempotencyRecordRow: first result of every keyed write

Business rules enforced at the table level:
    - review_entries (evidence_id, sequence) and approval_decisions
      (scope_key, sequence) are unique, so two writers cannot claim the same
      ledger slot.
    - snapshots.scope_key is unique: at most one snapshot per locked scope.
    - Append-only tables reject UPDATE and DELETE through ORM listeners.
"""

from datetime import datetime, timezone

from sqlalchemy import event

from bcl_workflow.models import db
from bcl_workflow.services.records import (
    ApprovalDecision,
    BreakdownRow,
    EvidenceItem,
    EvidenceReviewCounts,
    PeriodLock,
    ReviewEntry,
    Snapshot,
)
from bcl_workflow.services.status_model import (
    ApprovalDecisionType,
    EvidenceStatus,
    EvidenceType,
    ReviewOutcome,
)


class AppendOnlyViolation(RuntimeError):
    """Raised when code tries to UPDATE or DELETE an append-only row."""


def _utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on the way back; stored values are always UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class EvidenceItemRow(db.Model):
    """Evidence item.  ``version`` is the optimistic-concurrency token."""

    __tablename__ = "evidence_items"

    id = db.Column(db.String(64), primary_key=True)
    project_id = db.Column(db.String(64), nullable=False)
    period_id = db.Column(db.String(128), nullable=False)
    scope_key = db.Column(db.String(255), nullable=False, index=True)
    bim_use_id = db.Column(db.String(64), nullable=False, default="")
    indicator_ids = db.Column(db.JSON, nullable=False, default=list)
    type = db.Column(db.String(10), nullable=False, comment="URL | FILE | TEXT")
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    external_url = db.Column(db.Text, nullable=True)
    text_content = db.Column(db.Text, nullable=True)
    file_view_url = db.Column(db.Text, nullable=True)
    file_download_url = db.Column(db.Text, nullable=True)
    file_reference_url = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, comment="DRAFT | SUBMITTED | NEEDS_REVISION")
    version = db.Column(db.Integer, nullable=False)
    reviews_at_submit = db.Column(db.Integer, nullable=False, default=0)
    created_by = db.Column(db.String(128), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Columns copied from / to the record verbatim
    _PLAIN = (
        "id", "project_id", "period_id", "scope_key", "bim_use_id", "title",
        "description", "external_url", "text_content", "file_view_url",
        "file_download_url", "file_reference_url", "version",
        "reviews_at_submit", "created_by", "created_at", "updated_at", "submitted_at",
    )

    @classmethod
    def column_values(cls, item: EvidenceItem) -> dict:
        values = {name: getattr(item, name) for name in cls._PLAIN}
        values["indicator_ids"] = list(item.indicator_ids)
        values["type"] = item.type.value
        values["status"] = item.status.value
        return values

    @classmethod
    def from_record(cls, item: EvidenceItem) -> "EvidenceItemRow":
        return cls(**cls.column_values(item))

    def to_record(self) -> EvidenceItem:
        return EvidenceItem(
            id=self.id,
            project_id=self.project_id,
            period_id=self.period_id,
            scope_key=self.scope_key,
            bim_use_id=self.bim_use_id or "",
            indicator_ids=tuple(self.indicator_ids or ()),
            type=EvidenceType(self.type),
            title=self.title,
            description=self.description or "",
            external_url=self.external_url,
            text_content=self.text_content,
            file_view_url=self.file_view_url,
            file_download_url=self.file_download_url,
            file_reference_url=self.file_reference_url,
            status=EvidenceStatus(self.status),
            version=self.version,
            reviews_at_submit=self.reviews_at_submit or 0,
            created_by=self.created_by,
            created_at=_utc(self.created_at),
            updated_at=_utc(self.updated_at),
            submitted_at=_utc(self.submitted_at),
        )

    def __repr__(self) -> str:
        return f"<EvidenceItemRow {self.id} {self.status} v{self.version}>"


class ReviewEntryRow(db.Model):
    """One immutable review decision."""

    __tablename__ = "review_entries"

    id = db.Column(db.Integer, primary_key=True)
    evidence_id = db.Column(db.String(64), nullable=False, index=True)
    sequence = db.Column(db.Integer, nullable=False)
    outcome = db.Column(db.String(20), nullable=False, comment="ACCEPTABLE | NEEDS_REVISION | REJECTED")
    reason = db.Column(db.Text, nullable=False)
    reviewer_identity = db.Column(db.String(128), nullable=False)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=False)

    __table_args__ = (
        db.UniqueConstraint("evidence_id", "sequence", name="uq_review_entry_slot"),
    )

    @classmethod
    def from_record(cls, entry: ReviewEntry) -> "ReviewEntryRow":
        return cls(
            evidence_id=entry.evidence_id,
            sequence=entry.sequence,
            outcome=entry.outcome.value,
            reason=entry.reason,
            reviewer_identity=entry.reviewer_identity,
            reviewed_at=entry.reviewed_at,
        )

    def to_record(self) -> ReviewEntry:
        return ReviewEntry(
            evidence_id=self.evidence_id,
            sequence=self.sequence,
            outcome=ReviewOutcome(self.outcome),
            reason=self.reason,
            reviewer_identity=self.reviewer_identity,
            reviewed_at=_utc(self.reviewed_at),
        )


class ApprovalDecisionRow(db.Model):
    __tablename__ = "approval_decisions"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.String(64), nullable=False, index=True)
    period_id = db.Column(db.String(128), nullable=False)
    scope_key = db.Column(db.String(255), nullable=False, index=True)
    sequence = db.Column(db.Integer, nullable=False)
    decision = db.Column(db.String(20), nullable=False, comment="APPROVE_PERIOD | REJECT_APPROVAL")
    reason = db.Column(db.Text, nullable=False)
    decided_by = db.Column(db.String(128), nullable=False)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=False)

    __table_args__ = (
        db.UniqueConstraint("scope_key", "sequence", name="uq_approval_decision_slot"),
    )

    @classmethod
    def from_record(cls, decision: ApprovalDecision) -> "ApprovalDecisionRow":
        return cls(
            project_id=decision.project_id,
            period_id=decision.period_id,
            scope_key=decision.scope_key,
            sequence=decision.sequence,
            decision=decision.decision.value,
            reason=decision.reason,
            decided_by=decision.decided_by,
            decided_at=decision.decided_at,
        )

    def to_record(self) -> ApprovalDecision:
        return ApprovalDecision(
            project_id=self.project_id,
            period_id=self.period_id,
            scope_key=self.scope_key,
            sequence=self.sequence,
            decision=ApprovalDecisionType(self.decision),
            reason=self.reason,
            decided_by=self.decided_by,
            decided_at=_utc(self.decided_at),
        )


class PeriodLockRow(db.Model):
    __tablename__ = "period_locks"

    scope_key = db.Column(db.String(255), primary_key=True)
    project_id = db.Column(db.String(64), nullable=False)
    period_id = db.Column(db.String(128), nullable=False)
    locked_by = db.Column(db.String(128), nullable=False)
    locked_at = db.Column(db.DateTime(timezone=True), nullable=False)

    @classmethod
    def from_record(cls, lock: PeriodLock) -> "PeriodLockRow":
        return cls(
            scope_key=lock.scope_key,
            project_id=lock.project_id,
            period_id=lock.period_id,
            locked_by=lock.locked_by,
            locked_at=lock.locked_at,
        )

    def to_record(self) -> PeriodLock:
        return PeriodLock(
            project_id=self.project_id,
            period_id=self.period_id,
            scope_key=self.scope_key,
            locked_by=self.locked_by,
            locked_at=_utc(self.locked_at),
        )


class SnapshotRow(db.Model):
    """Immutable approval snapshot.  ``id`` preserves append order."""

    __tablename__ = "snapshots"

    id = db.Column(db.Integer, primary_key=True)
    snapshot_id = db.Column(db.String(64), nullable=False, unique=True)
    project_id = db.Column(db.String(64), nullable=False, index=True)
    period_id = db.Column(db.String(128), nullable=False)
    scope_key = db.Column(db.String(255), nullable=False, unique=True)
    approved_by = db.Column(db.String(128), nullable=False)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=False)
    final_score = db.Column(db.Float, nullable=True)
    breakdown = db.Column(db.JSON, nullable=False, default=list)
    evidence_review_counts = db.Column(db.JSON, nullable=False)

    @classmethod
    def from_record(cls, snapshot: Snapshot) -> "SnapshotRow":
        return cls(
            snapshot_id=snapshot.snapshot_id,
            project_id=snapshot.project_id,
            period_id=snapshot.period_id,
            scope_key=snapshot.scope_key,
            approved_by=snapshot.approved_by,
            approved_at=snapshot.approved_at,
            final_score=snapshot.final_score,
            breakdown=[r.to_dict() for r in snapshot.breakdown],
            evidence_review_counts=snapshot.evidence_review_counts.to_dict(),
        )

    def to_record(self) -> Snapshot:
        return Snapshot(
            snapshot_id=self.snapshot_id,
            project_id=self.project_id,
            period_id=self.period_id,
            scope_key=self.scope_key,
            approved_by=self.approved_by,
            approved_at=_utc(self.approved_at),
            final_score=self.final_score,
            breakdown=tuple(BreakdownRow.from_dict(r) for r in (self.breakdown or [])),
            evidence_review_counts=EvidenceReviewCounts.from_dict(self.evidence_review_counts or {}),
        )


class IdempotencyRecordRow(db.Model):
    __tablename__ = "idempotency_records"

    key = db.Column(db.String(255), primary_key=True)
    result = db.Column(db.JSON, nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )


# ── Append-only guards ───────────────────────────────────────────────────────

_APPEND_ONLY_MODELS = (ReviewEntryRow, ApprovalDecisionRow, PeriodLockRow, SnapshotRow, IdempotencyRecordRow)


def _reject_mutation(mapper, connection, target):
    raise AppendOnlyViolation(f"{type(target).__name__} rows are append-only")


for _model in _APPEND_ONLY_MODELS:
    event.listen(_model, "before_update", _reject_mutation)
    event.listen(_model, "before_delete", _reject_mutation)
