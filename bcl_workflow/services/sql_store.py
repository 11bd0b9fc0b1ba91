"""
SQL-backed workflow store (Flask-SQLAlchemy).

Every call runs against ``db.session`` and therefore needs an application
context.  ``transaction(*keys)`` serialises writers per key inside this
process and maps to one database commit; nested transactions join the
outermost one.

Uniqueness and append-only rules are also enforced by the tables themselves
(see ``bcl_workflow.models.workflow``), so a second process racing on the same
scope loses with an IntegrityError that is reported as ``locked`` or
``conflict``.
"""

from __future__ import annotations

import copy
import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from bcl_workflow.core.exceptions import ConflictError, LockedError
from bcl_workflow.models import db
from bcl_workflow.models.workflow import (
    ApprovalDecisionRow,
    EvidenceItemRow,
    IdempotencyRecordRow,
    PeriodLockRow,
    ReviewEntryRow,
    SnapshotRow,
)
from bcl_workflow.services.records import (
    ApprovalDecision,
    EvidenceItem,
    PeriodLock,
    ReviewEntry,
    ReviewLedger,
    Snapshot,
    SnapshotPage,
)
from bcl_workflow.services.store import WorkflowStore

logger = logging.getLogger(__name__)


class _KeyedLocks:
    """Registry of re-entrant locks, one per key, acquired in sorted order."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def _get(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, keys: tuple[str, ...]) -> Iterator[None]:
        acquired = [self._get(k) for k in sorted(set(keys))]
        for lock in acquired:
            lock.acquire()
        try:
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


class SqlAlchemyWorkflowStore(WorkflowStore):
    """Workflow store on the tables in ``bcl_workflow.models.workflow``."""

    def __init__(self) -> None:
        self._keyed = _KeyedLocks()
        self._local = threading.local()

    # ── Transactions ──────────────────────────────────────────────────────

    def _depth(self) -> int:
        return getattr(self._local, "depth", 0)

    @contextmanager
    def transaction(self, *keys: str) -> Iterator[None]:
        if self._depth():
            # Joins the outer commit but still serialises on its own keys
            with self._keyed.hold(keys):
                self._local.depth += 1
                try:
                    yield
                finally:
                    self._local.depth -= 1
            return

        with self._keyed.hold(keys):
            self._local.depth = 1
            try:
                yield
                db.session.commit()
            except BaseException:
                db.session.rollback()
                logger.debug("SQL transaction rolled back", extra={"keys": keys})
                raise
            finally:
                self._local.depth = 0

    def _flush(self, on_integrity) -> None:
        """Flush pending rows; outside a transaction also commit.

        ``on_integrity`` builds the typed error raised when a unique
        constraint rejects the write.
        """
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            raise on_integrity()
        if not self._depth():
            db.session.commit()

    # ── Evidence ──────────────────────────────────────────────────────────

    def get_evidence(self, evidence_id: str) -> EvidenceItem | None:
        row = db.session.get(EvidenceItemRow, evidence_id)
        return row.to_record() if row else None

    def list_evidence(self, scope_key: str) -> list[EvidenceItem]:
        rows = db.session.execute(
            select(EvidenceItemRow)
            .where(EvidenceItemRow.scope_key == scope_key)
            .order_by(EvidenceItemRow.created_at, EvidenceItemRow.id)
        ).scalars()
        return [r.to_record() for r in rows]

    def _stored_version(self, evidence_id: str) -> int | None:
        return db.session.execute(
            select(EvidenceItemRow.version).where(EvidenceItemRow.id == evidence_id)
        ).scalar_one_or_none()

    def save_evidence(self, item: EvidenceItem, expected_version: int | None) -> EvidenceItem:
        def conflict(actual=None):
            return ConflictError(
                "EvidenceItem", item.id,
                expected_version=expected_version, actual_version=actual,
            )

        if expected_version is None:
            actual = self._stored_version(item.id)
            if actual is not None:
                raise conflict(actual)
            db.session.add(EvidenceItemRow.from_record(item))
            self._flush(conflict)
            return item

        result = db.session.execute(
            update(EvidenceItemRow)
            .where(EvidenceItemRow.id == item.id, EvidenceItemRow.version == expected_version)
            .values(**EvidenceItemRow.column_values(item))
        )
        if result.rowcount != 1:
            raise conflict(self._stored_version(item.id))
        self._flush(conflict)
        return item

    # ── Reviews ───────────────────────────────────────────────────────────

    def get_review_ledger(self, evidence_id: str) -> ReviewLedger:
        rows = db.session.execute(
            select(ReviewEntryRow)
            .where(ReviewEntryRow.evidence_id == evidence_id)
            .order_by(ReviewEntryRow.sequence)
        ).scalars()
        return ReviewLedger(evidence_id, tuple(r.to_record() for r in rows))

    def append_review(self, entry: ReviewEntry) -> ReviewEntry:
        length = db.session.execute(
            select(func.count(ReviewEntryRow.id)).where(ReviewEntryRow.evidence_id == entry.evidence_id)
        ).scalar_one()

        def conflict():
            return ConflictError(
                "ReviewLedger", entry.evidence_id,
                expected_version=entry.sequence - 1, actual_version=length,
            )

        if entry.sequence != length + 1:
            raise conflict()
        db.session.add(ReviewEntryRow.from_record(entry))
        self._flush(conflict)
        return entry

    # ── Approval decisions & locks ────────────────────────────────────────

    def list_decisions(self, scope_key: str) -> list[ApprovalDecision]:
        rows = db.session.execute(
            select(ApprovalDecisionRow)
            .where(ApprovalDecisionRow.scope_key == scope_key)
            .order_by(ApprovalDecisionRow.sequence)
        ).scalars()
        return [r.to_record() for r in rows]

    def append_decision(self, decision: ApprovalDecision) -> ApprovalDecision:
        def taken():
            # a committed lock means the slot winner approved
            if db.session.get(PeriodLockRow, decision.scope_key) is not None:
                return LockedError(decision.project_id, decision.period_id)
            return ConflictError(
                "ApprovalDecision", decision.scope_key,
                reason=f"Decision slot {decision.sequence} of {decision.scope_key} already taken",
            )

        db.session.add(ApprovalDecisionRow.from_record(decision))
        self._flush(taken)
        return decision

    def get_period_lock(self, scope_key: str) -> PeriodLock | None:
        row = db.session.get(PeriodLockRow, scope_key)
        return row.to_record() if row else None

    def set_period_lock(self, lock: PeriodLock) -> PeriodLock:
        if db.session.get(PeriodLockRow, lock.scope_key) is not None:
            raise LockedError(lock.project_id, lock.period_id)
        db.session.add(PeriodLockRow.from_record(lock))
        self._flush(lambda: LockedError(lock.project_id, lock.period_id))
        return lock

    # ── Snapshots ─────────────────────────────────────────────────────────

    def append_snapshot(self, snapshot: Snapshot) -> Snapshot:
        def duplicate():
            return LockedError(
                snapshot.project_id, snapshot.period_id,
                detail=f"Snapshot already recorded for {snapshot.scope_key}",
            )

        existing = db.session.execute(
            select(SnapshotRow.id).where(SnapshotRow.scope_key == snapshot.scope_key)
        ).first()
        if existing is not None:
            raise duplicate()
        db.session.add(SnapshotRow.from_record(snapshot))
        self._flush(duplicate)
        return snapshot

    def get_snapshot(self, snapshot_id: str) -> Snapshot | None:
        row = db.session.execute(
            select(SnapshotRow).where(SnapshotRow.snapshot_id == snapshot_id)
        ).scalar_one_or_none()
        return row.to_record() if row else None

    def list_snapshots(
        self,
        *,
        project_id: str | None = None,
        period_id: str | None = None,
        cursor: int = 0,
        limit: int = 50,
    ) -> SnapshotPage:
        cursor = max(0, int(cursor or 0))
        limit = max(1, int(limit))
        stmt = select(SnapshotRow).order_by(SnapshotRow.id)
        if project_id is not None:
            stmt = stmt.where(SnapshotRow.project_id == project_id)
        if period_id is not None:
            stmt = stmt.where(SnapshotRow.period_id == period_id)
        # One extra row tells us whether another page exists
        rows = db.session.execute(stmt.offset(cursor).limit(limit + 1)).scalars().all()
        items = tuple(r.to_record() for r in rows[:limit])
        next_cursor = cursor + limit if len(rows) > limit else None
        return SnapshotPage(items=items, next_cursor=next_cursor)

    # ── Idempotency ───────────────────────────────────────────────────────

    def get_idempotent_result(self, key: str) -> dict | None:
        row = db.session.get(IdempotencyRecordRow, key)
        return copy.deepcopy(row.result) if row else None

    def save_idempotent_result(self, key: str, result: dict) -> None:
        if db.session.get(IdempotencyRecordRow, key) is not None:
            return
        db.session.add(IdempotencyRecordRow(key=key, result=copy.deepcopy(result)))
        self._flush(lambda: ConflictError(
            "IdempotencyRecord", key, reason=f"Idempotency key {key} recorded concurrently",
        ))

    # ── Activity ──────────────────────────────────────────────────────────

    def list_period_ids(self, project_id: str) -> list[str]:
        ids: set[str] = set()
        for model in (EvidenceItemRow, ApprovalDecisionRow, SnapshotRow):
            ids.update(
                db.session.execute(
                    select(model.period_id).where(model.project_id == project_id).distinct()
                ).scalars()
            )
        return sorted(ids, reverse=True)
