"""
Workflow store — the persistence capability the engine depends on.

The engine never constructs a store; ``create_app`` (or a test) injects one.
Two implementations exist:

    InMemoryWorkflowStore     single process, single writer; used by tests and
                              development
    SqlAlchemyWorkflowStore   Flask-SQLAlchemy tables (see sql_store.py)

Contract every implementation honours:
    - ``transaction(*keys)`` is the atomic unit.  It is re-entrant; work under
      the same key is serialised; an exception inside the outermost
      transaction leaves the store exactly as it was before.
    - Evidence writes are compare-and-swap on ``version``.
    - Review entries, approval decisions, locks and snapshots are append-only.
      A period lock is set at most once per scope and a scope holds at most
      one snapshot.
"""

from __future__ import annotations

import copy
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator

from bcl_workflow.core.exceptions import ConflictError, LockedError
from bcl_workflow.services.records import (
    ApprovalDecision,
    EvidenceItem,
    PeriodLock,
    ReviewEntry,
    ReviewLedger,
    Snapshot,
    SnapshotPage,
)

logger = logging.getLogger(__name__)


class WorkflowStore(ABC):
    """Abstract persistence interface for the workflow engine."""

    # ── Transactions ──────────────────────────────────────────────────────

    @abstractmethod
    def transaction(self, *keys: str):
        """Context manager wrapping one atomic unit of work."""

    # ── Evidence ──────────────────────────────────────────────────────────

    @abstractmethod
    def get_evidence(self, evidence_id: str) -> EvidenceItem | None:
        """Return the stored item or None."""

    @abstractmethod
    def list_evidence(self, scope_key: str) -> list[EvidenceItem]:
        """Items of one scope in creation order."""

    @abstractmethod
    def save_evidence(self, item: EvidenceItem, expected_version: int | None) -> EvidenceItem:
        """Compare-and-swap write.

        ``expected_version=None`` means the item must not exist yet.  Raises
        ``ConflictError`` when the stored version differs.
        """

    # ── Reviews ───────────────────────────────────────────────────────────

    @abstractmethod
    def get_review_ledger(self, evidence_id: str) -> ReviewLedger:
        """Full history in acceptance order (empty ledger if none)."""

    @abstractmethod
    def append_review(self, entry: ReviewEntry) -> ReviewEntry:
        """Append at ``entry.sequence``; must equal current length + 1."""

    # ── Approval decisions & locks ────────────────────────────────────────

    @abstractmethod
    def list_decisions(self, scope_key: str) -> list[ApprovalDecision]:
        """Decisions of one scope in append order."""

    @abstractmethod
    def append_decision(self, decision: ApprovalDecision) -> ApprovalDecision:
        """Append one decision."""

    @abstractmethod
    def get_period_lock(self, scope_key: str) -> PeriodLock | None:
        """The scope's lock, or None while OPEN."""

    @abstractmethod
    def set_period_lock(self, lock: PeriodLock) -> PeriodLock:
        """Set once.  Raises ``LockedError`` if the scope is already locked."""

    # ── Snapshots ─────────────────────────────────────────────────────────

    @abstractmethod
    def append_snapshot(self, snapshot: Snapshot) -> Snapshot:
        """Append.  Raises ``LockedError`` if the scope already has a snapshot."""

    @abstractmethod
    def get_snapshot(self, snapshot_id: str) -> Snapshot | None:
        """Lookup by id."""

    @abstractmethod
    def list_snapshots(
        self,
        *,
        project_id: str | None = None,
        period_id: str | None = None,
        cursor: int = 0,
        limit: int = 50,
    ) -> SnapshotPage:
        """Append-ordered page; ``cursor`` is the offset into the filtered sequence."""

    # ── Idempotency ───────────────────────────────────────────────────────

    @abstractmethod
    def get_idempotent_result(self, key: str) -> dict | None:
        """Result recorded for ``key`` by an earlier successful write."""

    @abstractmethod
    def save_idempotent_result(self, key: str, result: dict) -> None:
        """Record the result of a successful write under ``key``."""

    # ── Activity ──────────────────────────────────────────────────────────

    @abstractmethod
    def list_period_ids(self, project_id: str) -> list[str]:
        """Period ids with any recorded activity for a project (newest first)."""

    def has_activity(self, project_id: str, period_id: str) -> bool:
        return period_id in self.list_period_ids(project_id)


def _page(snapshots: list[Snapshot], cursor: int, limit: int) -> SnapshotPage:
    cursor = max(0, int(cursor or 0))
    limit = max(1, int(limit))
    items = snapshots[cursor:cursor + limit]
    next_cursor = cursor + len(items) if cursor + len(items) < len(snapshots) else None
    return SnapshotPage(items=tuple(items), next_cursor=next_cursor)


class InMemoryWorkflowStore(WorkflowStore):
    """Process-local store guarded by one re-entrant lock (single writer).

    The outermost transaction checkpoints the containers; an exception rolls
    them back.  Records are immutable, so shallow container copies suffice.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._depth = 0
        self._evidence: dict[str, EvidenceItem] = {}
        self._reviews: dict[str, list[ReviewEntry]] = {}
        self._decisions: dict[str, list[ApprovalDecision]] = {}
        self._locks: dict[str, PeriodLock] = {}
        self._snapshots: list[Snapshot] = []
        self._idempotency: dict[str, dict] = {}

    # ── Transactions ──────────────────────────────────────────────────────

    @contextmanager
    def transaction(self, *keys: str) -> Iterator[None]:
        with self._lock:
            checkpoint = self._checkpoint() if self._depth == 0 else None
            self._depth += 1
            try:
                yield
            except BaseException:
                if checkpoint is not None:
                    self._restore(checkpoint)
                    logger.debug("In-memory transaction rolled back", extra={"keys": keys})
                raise
            finally:
                self._depth -= 1

    def _checkpoint(self) -> dict:
        return {
            "evidence": dict(self._evidence),
            "reviews": {k: list(v) for k, v in self._reviews.items()},
            "decisions": {k: list(v) for k, v in self._decisions.items()},
            "locks": dict(self._locks),
            "snapshots": list(self._snapshots),
            "idempotency": dict(self._idempotency),
        }

    def _restore(self, state: dict) -> None:
        self._evidence = state["evidence"]
        self._reviews = state["reviews"]
        self._decisions = state["decisions"]
        self._locks = state["locks"]
        self._snapshots = state["snapshots"]
        self._idempotency = state["idempotency"]

    # ── Evidence ──────────────────────────────────────────────────────────

    def get_evidence(self, evidence_id: str) -> EvidenceItem | None:
        with self._lock:
            return self._evidence.get(evidence_id)

    def list_evidence(self, scope_key: str) -> list[EvidenceItem]:
        with self._lock:
            return [e for e in self._evidence.values() if e.scope_key == scope_key]

    def save_evidence(self, item: EvidenceItem, expected_version: int | None) -> EvidenceItem:
        with self._lock:
            current = self._evidence.get(item.id)
            actual = current.version if current else None
            if actual != expected_version:
                raise ConflictError(
                    "EvidenceItem", item.id,
                    expected_version=expected_version, actual_version=actual,
                )
            self._evidence[item.id] = item
            return item

    # ── Reviews ───────────────────────────────────────────────────────────

    def get_review_ledger(self, evidence_id: str) -> ReviewLedger:
        with self._lock:
            return ReviewLedger(evidence_id, tuple(self._reviews.get(evidence_id, ())))

    def append_review(self, entry: ReviewEntry) -> ReviewEntry:
        with self._lock:
            history = self._reviews.setdefault(entry.evidence_id, [])
            if entry.sequence != len(history) + 1:
                raise ConflictError(
                    "ReviewLedger", entry.evidence_id,
                    expected_version=entry.sequence - 1, actual_version=len(history),
                )
            history.append(entry)
            return entry

    # ── Approval decisions & locks ────────────────────────────────────────

    def list_decisions(self, scope_key: str) -> list[ApprovalDecision]:
        with self._lock:
            return list(self._decisions.get(scope_key, ()))

    def append_decision(self, decision: ApprovalDecision) -> ApprovalDecision:
        with self._lock:
            self._decisions.setdefault(decision.scope_key, []).append(decision)
            return decision

    def get_period_lock(self, scope_key: str) -> PeriodLock | None:
        with self._lock:
            return self._locks.get(scope_key)

    def set_period_lock(self, lock: PeriodLock) -> PeriodLock:
        with self._lock:
            if lock.scope_key in self._locks:
                raise LockedError(lock.project_id, lock.period_id)
            self._locks[lock.scope_key] = lock
            return lock

    # ── Snapshots ─────────────────────────────────────────────────────────

    def append_snapshot(self, snapshot: Snapshot) -> Snapshot:
        with self._lock:
            if any(s.scope_key == snapshot.scope_key for s in self._snapshots):
                raise LockedError(
                    snapshot.project_id, snapshot.period_id,
                    detail=f"Snapshot already recorded for {snapshot.scope_key}",
                )
            self._snapshots.append(snapshot)
            return snapshot

    def get_snapshot(self, snapshot_id: str) -> Snapshot | None:
        with self._lock:
            return next((s for s in self._snapshots if s.snapshot_id == snapshot_id), None)

    def list_snapshots(
        self,
        *,
        project_id: str | None = None,
        period_id: str | None = None,
        cursor: int = 0,
        limit: int = 50,
    ) -> SnapshotPage:
        with self._lock:
            rows = [
                s for s in self._snapshots
                if (project_id is None or s.project_id == project_id)
                and (period_id is None or s.period_id == period_id)
            ]
        return _page(rows, cursor, limit)

    # ── Idempotency ───────────────────────────────────────────────────────

    def get_idempotent_result(self, key: str) -> dict | None:
        with self._lock:
            hit = self._idempotency.get(key)
            return copy.deepcopy(hit) if hit is not None else None

    def save_idempotent_result(self, key: str, result: dict) -> None:
        with self._lock:
            self._idempotency.setdefault(key, copy.deepcopy(result))

    # ── Activity ──────────────────────────────────────────────────────────

    def list_period_ids(self, project_id: str) -> list[str]:
        with self._lock:
            ids = {e.period_id for e in self._evidence.values() if e.project_id == project_id}
            ids.update(
                d.period_id for rows in self._decisions.values() for d in rows if d.project_id == project_id
            )
            ids.update(s.period_id for s in self._snapshots if s.project_id == project_id)
        return sorted(ids, reverse=True)
