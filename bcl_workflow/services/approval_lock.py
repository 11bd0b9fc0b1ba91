"""
Approval & Lock Manager

Per (project_id, period_id) scope:

    OPEN ──APPROVE_PERIOD──► LOCKED   (terminal)
     │ ▲
     └─┘ REJECT_APPROVAL

``decide`` runs as one store transaction keyed by the scope:

    1. scope already LOCKED          → LockedError, nothing recorded
    2. blank reason / bad decision   → ValidationError
    3. stale period version          → ConflictError
    4. (optional) approval gates     → ValidationError
    5. append the decision
    6. APPROVE_PERIOD: set the lock, then create the snapshot

The period version is the number of decisions recorded for the scope.  An
approver names the version they last saw, so a second identical rejection
after a re-read is a new decision rather than a retry of the first.

A failure anywhere in 5–6 rolls the whole transaction back, so a lock never
exists without its snapshot and vice versa.  Two concurrent approvals of one
scope serialise on the transaction; the second observes LOCKED.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from bcl_workflow.core.exceptions import ConflictError, LockedError, ValidationError
from bcl_workflow.services.approval_gates import DEFAULT_GATE_POLICY, GatePolicy, evaluate_approval_gates
from bcl_workflow.services.evidence_lifecycle import EvidenceLifecycleManager
from bcl_workflow.services.records import (
    ApprovalDecision,
    PeriodLock,
    ScoreInput,
    Snapshot,
    open_lock_state,
)
from bcl_workflow.services.snapshot_generator import SnapshotGenerator
from bcl_workflow.services.status_model import (
    ApprovalDecisionType,
    PeriodStatus,
    build_scope_key,
    is_known_scope,
    normalize_decision,
)
from bcl_workflow.services.store import WorkflowStore
from bcl_workflow.utils.helpers import utc_now

logger = logging.getLogger(__name__)

ScoreProvider = Callable[[str, str], Any]


@dataclass(frozen=True)
class DecisionOutcome:
    decision: ApprovalDecision
    lock_state: dict
    snapshot: Snapshot | None = None

    def to_dict(self) -> dict:
        return {
            "decision": self.decision.to_dict(),
            "lock_state": dict(self.lock_state),
            "snapshot": self.snapshot.to_dict() if self.snapshot else None,
        }


class ApprovalLockManager:
    """Period-level approval decisions and the lock they set.

    Args:
        store: Injected workflow store.
        evidence: Evidence manager (evidence counts for gates and snapshots).
        snapshots: Snapshot generator invoked on approval.
        clock: Current UTC instant.
        gates_enforced: Require the approval gate policy for APPROVE_PERIOD.
        gate_policy: Thresholds used when gates are enforced.
        score_provider: ``(project_id, period_id) -> score data`` used when a
            decision carries no explicit score input.
    """

    def __init__(
        self,
        store: WorkflowStore,
        evidence: EvidenceLifecycleManager,
        snapshots: SnapshotGenerator,
        clock: Callable[[], datetime] | None = None,
        *,
        gates_enforced: bool = False,
        gate_policy: GatePolicy = DEFAULT_GATE_POLICY,
        score_provider: ScoreProvider | None = None,
    ) -> None:
        self.store = store
        self.evidence = evidence
        self.snapshots = snapshots
        self.clock = clock or utc_now
        self.gates_enforced = gates_enforced
        self.gate_policy = gate_policy
        self.score_provider = score_provider

    # ── Reads ─────────────────────────────────────────────────────────────

    def get_lock_state(self, project_id: str, period_id: str) -> dict:
        scope_key = build_scope_key(project_id, period_id)
        lock = self.store.get_period_lock(scope_key)
        return lock.to_dict() if lock else open_lock_state(project_id, period_id, scope_key)

    def is_locked(self, project_id: str, period_id: str) -> bool:
        return self.store.get_period_lock(build_scope_key(project_id, period_id)) is not None

    def period_status(self, project_id: str, period_id: str) -> PeriodStatus | None:
        """LOCKED, OPEN when the scope has any activity, else None."""
        if self.is_locked(project_id, period_id):
            return PeriodStatus.LOCKED
        if self.store.has_activity(project_id, period_id):
            return PeriodStatus.OPEN
        return None

    def list_decisions(self, project_id: str, period_id: str) -> list[ApprovalDecision]:
        return self.store.list_decisions(build_scope_key(project_id, period_id))

    def latest_decision(self, project_id: str, period_id: str) -> ApprovalDecision | None:
        decisions = self.list_decisions(project_id, period_id)
        return decisions[-1] if decisions else None

    def period_version(self, project_id: str, period_id: str) -> int:
        return len(self.list_decisions(project_id, period_id))

    # ── Write ─────────────────────────────────────────────────────────────

    def _resolve_score(self, project_id: str, period_id: str, score_input: Any) -> ScoreInput:
        if score_input is None and self.score_provider is not None:
            score_input = self.score_provider(project_id, period_id)
        return ScoreInput.from_dict(score_input)

    def _check_gates(self, project_id: str, period_id: str, score: ScoreInput) -> None:
        counts = self.snapshots.counts_for_scope(project_id, period_id)
        result = evaluate_approval_gates(score.breakdown, score.confidence_coverage, counts, self.gate_policy)
        if not result.is_eligible:
            raise ValidationError("Approval gates not met", details=result.to_dict())

    def decide(
        self,
        project_id: str,
        period_id: str,
        decision: Any,
        reason: str | None,
        decided_by: str,
        *,
        score_input: Any = None,
        if_match_version: int | None = None,
    ) -> DecisionOutcome:
        if not is_known_scope(project_id, period_id):
            raise ValidationError(
                "Approval requires a known project period",
                details={"project_id": project_id, "period_id": period_id},
            )
        scope_key = build_scope_key(project_id, period_id)

        with self.store.transaction(scope_key):
            if self.store.get_period_lock(scope_key) is not None:
                raise LockedError(project_id, period_id)

            normalized = normalize_decision(decision)
            if normalized is None:
                raise ValidationError(
                    "decision must be APPROVE_PERIOD or REJECT_APPROVAL",
                    details={"decision": str(decision)},
                )
            reason_text = reason.strip() if isinstance(reason, str) else ""
            if not reason_text:
                raise ValidationError("Decision reason is required", details={"reason": "blank"})

            decisions = self.store.list_decisions(scope_key)
            if if_match_version is not None and int(if_match_version) != len(decisions):
                raise ConflictError(
                    "Period", scope_key,
                    expected_version=int(if_match_version), actual_version=len(decisions),
                )

            score = None
            if normalized == ApprovalDecisionType.APPROVE_PERIOD:
                score = self._resolve_score(project_id, period_id, score_input)
                if self.gates_enforced:
                    self._check_gates(project_id, period_id, score)

            now = self.clock()
            recorded = self.store.append_decision(ApprovalDecision(
                project_id=project_id,
                period_id=period_id,
                scope_key=scope_key,
                sequence=len(decisions) + 1,
                decision=normalized,
                reason=reason_text,
                decided_by=decided_by,
                decided_at=now,
            ))

            snapshot = None
            if normalized == ApprovalDecisionType.APPROVE_PERIOD:
                lock = self.store.set_period_lock(PeriodLock(
                    project_id=project_id,
                    period_id=period_id,
                    scope_key=scope_key,
                    locked_by=decided_by,
                    locked_at=now,
                ))
                snapshot = self.snapshots.create_snapshot(project_id, period_id, decided_by, now, score)
                lock_state = lock.to_dict()
            else:
                lock_state = open_lock_state(project_id, period_id, scope_key)

        logger.info(
            "Approval decision recorded",
            extra={
                "project_id": project_id,
                "period_id": period_id,
                "decision": normalized.value,
                "snapshot_id": snapshot.snapshot_id if snapshot else None,
            },
        )
        return DecisionOutcome(decision=recorded, lock_state=lock_state, snapshot=snapshot)
