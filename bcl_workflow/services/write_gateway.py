"""
Write Gateway — the single boundary role actors use to reach the engine.

For every write it:
    1. checks the actor's role may perform the operation
    2. derives the idempotency key from (scope, canonical payload)
    3. inside one store transaction: replays the recorded result for a key
       already seen, otherwise executes the transition and records its result
    4. reports failures as exactly one ``WorkflowError`` condition; store and
       network failures become ``unavailable``

Results are plain dicts (``to_dict`` shapes) so a replay is indistinguishable
from the original response.

Usage:
    from bcl_workflow.services.write_gateway import Actor, WriteGateway

    gateway = WriteGateway(InMemoryWorkflowStore())
    gateway.submit_evidence(Actor.from_raw("role1", "alice"), payload)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError

from bcl_workflow.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    UnavailableError,
    ValidationError,
    WorkflowError,
)
from bcl_workflow.services.approval_gates import DEFAULT_GATE_POLICY, GatePolicy
from bcl_workflow.services.approval_lock import ApprovalLockManager, ScoreProvider
from bcl_workflow.services.evidence_lifecycle import EvidenceLifecycleManager
from bcl_workflow.services.idempotency import derive_key
from bcl_workflow.services.period_window import (
    DEFAULT_UTC_OFFSET_HOURS,
    WeekAnchor,
    custom_week_of_year,
    list_weekly_windows_around,
    resolve_weekly_window,
)
from bcl_workflow.services.records import EvidenceItem
from bcl_workflow.services.review_ledger import ReviewLedgerService
from bcl_workflow.services.snapshot_generator import SnapshotGenerator
from bcl_workflow.services.status_model import (
    ActorRole,
    ApprovalDecisionType,
    build_scope_key,
    normalize_actor_role,
    normalize_decision,
)
from bcl_workflow.services.store import WorkflowStore
from bcl_workflow.utils.helpers import utc_now

logger = logging.getLogger(__name__)


# Operation → roles allowed to perform it
WRITE_PERMISSIONS: dict[str, frozenset[ActorRole]] = {
    "evidence.write": frozenset({ActorRole.SUBMITTER}),
    "review.write":   frozenset({ActorRole.REVIEWER}),
    "approval.write": frozenset({ActorRole.APPROVER}),
}

# Default idempotency scope per operation
DEFAULT_SCOPES = {
    "evidence_create": "evidence-create",
    "evidence_update": "evidence-update",
    "evidence_submit": "evidence-submit",
    "evidence_resubmit": "evidence-update",
    "review": "evidence-review",
    "approve": "period-approve",
    "reject": "period-reject",
}

# Store / network failures reported as ``unavailable`` (OSError covers
# ConnectionError and TimeoutError)
UNAVAILABLE_ERRORS = (SQLAlchemyError, OSError)


@dataclass(frozen=True)
class Actor:
    """Authenticated caller: normalised role plus identity."""

    role: ActorRole
    identity: str

    @classmethod
    def from_raw(cls, role: Any, identity: Any) -> "Actor":
        """Normalise transport values.

        Raises:
            AuthorizationError: identity or role missing (401) or role not
                recognised (403).
        """
        identity_text = identity.strip() if isinstance(identity, str) else ""
        role_text = role.strip() if isinstance(role, str) else role
        if not identity_text or not role_text:
            raise AuthorizationError("Actor role and identity are required", missing_identity=True)
        normalized = normalize_actor_role(role_text)
        if normalized is None:
            raise AuthorizationError(f"Unknown actor role: {role_text}", details={"role": str(role_text)})
        return cls(role=normalized, identity=identity_text)

    def to_dict(self) -> dict:
        return {"role": self.role.value, "identity": self.identity}


def _parse_version(raw: Any) -> int | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        raise ValidationError("version must be an integer", details={"version": "boolean"})
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationError("version must be an integer", details={"version": str(raw)}) from exc


def _version_arg(payload: dict) -> int | None:
    return _parse_version(payload.get("version"))


def _require_version(raw: Any, subject: str) -> int:
    """Version the caller last saw; writes to existing state must carry one."""
    version = _parse_version(raw)
    if version is None:
        raise ValidationError(f"version of the {subject} is required", details={"version": "required"})
    return version


def _require_payload(payload: Any) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("Request payload must be an object")
    return payload


class WriteGateway:
    """Facade over the workflow managers for role actors.

    Args:
        store: Injected workflow store.
        clock: Current UTC instant for every manager.
        anchor / offset_hours: Period window defaults.
        gates_enforced / gate_policy: Approval gate policy.
        score_provider: Score source for approvals without explicit score data.
    """

    def __init__(
        self,
        store: WorkflowStore,
        *,
        clock: Callable[[], datetime] | None = None,
        anchor: WeekAnchor = WeekAnchor.MONDAY,
        offset_hours: int = DEFAULT_UTC_OFFSET_HOURS,
        gates_enforced: bool = False,
        gate_policy: GatePolicy = DEFAULT_GATE_POLICY,
        score_provider: ScoreProvider | None = None,
    ) -> None:
        self.store = store
        self.clock = clock or utc_now
        self.anchor = anchor
        self.offset_hours = offset_hours
        self.evidence = EvidenceLifecycleManager(store, self.clock)
        self.reviews = ReviewLedgerService(store, self.evidence, self.clock)
        self.snapshots = SnapshotGenerator(store, self.evidence)
        self.approvals = ApprovalLockManager(
            store, self.evidence, self.snapshots, self.clock,
            gates_enforced=gates_enforced,
            gate_policy=gate_policy,
            score_provider=score_provider,
        )

    @classmethod
    def from_config(cls, store: WorkflowStore, config, **kwargs) -> "WriteGateway":
        """Build a gateway from a Flask config mapping."""
        return cls(
            store,
            anchor=WeekAnchor.parse(config.get("WEEK_ANCHOR")),
            offset_hours=int(config.get("PERIOD_UTC_OFFSET_HOURS", DEFAULT_UTC_OFFSET_HOURS)),
            gates_enforced=bool(config.get("APPROVAL_GATES_ENFORCED", False)),
            gate_policy=GatePolicy.from_config(config),
            **kwargs,
        )

    # ── Plumbing ──────────────────────────────────────────────────────────

    @staticmethod
    def _actor(actor: Any) -> Actor:
        if isinstance(actor, Actor):
            return actor
        if isinstance(actor, dict):
            return Actor.from_raw(actor.get("role"), actor.get("identity"))
        raise AuthorizationError("Actor role and identity are required", missing_identity=True)

    def _authorize(self, actor: Any, permission: str | None = None) -> Actor:
        resolved = self._actor(actor)
        if permission is not None and resolved.role not in WRITE_PERMISSIONS[permission]:
            raise AuthorizationError(
                f"Role {resolved.role.value} may not perform {permission}",
                details={"role": resolved.role.value, "permission": permission},
            )
        return resolved

    def _execute(
        self,
        operation: str,
        actor: Actor,
        scope_key: str,
        idempotency_scope: str,
        key_payload: dict,
        action: Callable[[], dict],
        log_extra: dict,
    ) -> dict:
        try:
            key = derive_key(idempotency_scope, key_payload)
        except ValidationError as exc:
            logger.warning(
                "Write rejected: %s", exc.detail,
                extra={"operation": operation, "actor_role": actor.role.value,
                       "condition": exc.condition.value, **log_extra},
            )
            raise
        extra ={"operation": operation, "actor_role": actor.role.value, "idempotency_key": key, **log_extra}
        try:
            with self.store.transaction(scope_key):
                recorded = self.store.get_idempotent_result(key)
                if recorded is not None:
                    logger.info("Idempotent replay", extra=extra)
                    return recorded
                result = action()
                self.store.save_idempotent_result(key, result)
        except WorkflowError as exc:
            logger.warning(
                "Write rejected: %s", exc.detail,
                extra={**extra, "condition": exc.condition.value},
            )
            raise
        except UNAVAILABLE_ERRORS as exc:
            logger.error("Workflow store unavailable", exc_info=True, extra={**extra, "condition": "unavailable"})
            raise UnavailableError(f"Workflow store unavailable during {operation}") from exc

        logger.info("Write accepted", extra=extra)
        return result

    def _read(self, operation: str, fn: Callable[[], Any]) -> Any:
        try:
            return fn()
        except UNAVAILABLE_ERRORS as exc:
            logger.error("Workflow store unavailable", exc_info=True, extra={"operation": operation})
            raise UnavailableError(f"Workflow store unavailable during {operation}") from exc

    def _existing_evidence(self, evidence_id: str) -> EvidenceItem:
        """Evidence targeted by a write; absence is a validation failure."""
        try:
            return self._read("evidence.lookup", lambda: self.evidence.get(evidence_id))
        except NotFoundError as exc:
            raise ValidationError(str(exc), details={"evidence_id": evidence_id}) from exc

    def _evidence_view(self, item: EvidenceItem) -> dict:
        data = item.to_dict()
        data["effective_status"] = self.evidence.effective_status(item).value
        return data

    # ── Evidence writes ───────────────────────────────────────────────────

    def save_evidence_draft(self, actor: Any, payload: dict, *, idempotency_scope: str | None = None) -> dict:
        actor = self._authorize(actor, "evidence.write")
        payload = _require_payload(payload)
        version = _version_arg(payload)
        scope = idempotency_scope or DEFAULT_SCOPES["evidence_create" if version is None else "evidence_update"]
        return self._execute(
            "evidence.save_draft", actor,
            build_scope_key(payload.get("project_id"), payload.get("period_id")),
            scope,
            {"action": "save_draft", "actor": actor.identity, "evidence": payload},
            lambda: self._evidence_view(
                self.evidence.save_draft(payload, actor.identity, if_match_version=version)
            ),
            {"evidence_id": payload.get("id"), "project_id": payload.get("project_id"),
             "period_id": payload.get("period_id")},
        )

    def submit_evidence(self, actor: Any, payload: dict, *, idempotency_scope: str | None = None) -> dict:
        actor = self._authorize(actor, "evidence.write")
        payload = _require_payload(payload)
        version = _version_arg(payload)
        return self._execute(
            "evidence.submit", actor,
            build_scope_key(payload.get("project_id"), payload.get("period_id")),
            idempotency_scope or DEFAULT_SCOPES["evidence_submit"],
            {"action": "submit", "actor": actor.identity, "evidence": payload},
            lambda: self._evidence_view(
                self.evidence.submit(payload, actor.identity, if_match_version=version)
            ),
            {"evidence_id": payload.get("id"), "project_id": payload.get("project_id"),
             "period_id": payload.get("period_id")},
        )

    def resubmit_evidence(
        self,
        actor: Any,
        evidence_id: str,
        payload: dict | None = None,
        *,
        idempotency_scope: str | None = None,
    ) -> dict:
        actor = self._authorize(actor, "evidence.write")
        payload = _require_payload(payload if payload is not None else {})
        version = _require_version(payload.get("version"), "evidence")
        item = self._existing_evidence(evidence_id)
        return self._execute(
            "evidence.resubmit", actor,
            item.scope_key,
            idempotency_scope or DEFAULT_SCOPES["evidence_resubmit"],
            {"action": "resubmit", "actor": actor.identity, "evidence_id": evidence_id,
             "version": version, "changes": payload},
            lambda: self._evidence_view(
                self.evidence.resubmit(evidence_id, payload, actor.identity, if_match_version=version)
            ),
            {"evidence_id": evidence_id, "project_id": item.project_id, "period_id": item.period_id},
        )

    # ── Review writes ─────────────────────────────────────────────────────

    def apply_review(
        self,
        actor: Any,
        evidence_id: str,
        outcome: Any,
        reason: str | None,
        *,
        version: Any = None,
        idempotency_scope: str | None = None,
    ) -> dict:
        """Append a review of the evidence version the reviewer last read."""
        actor = self._authorize(actor, "review.write")
        if_match = _require_version(version, "evidence")
        item = self._existing_evidence(evidence_id)
        return self._execute(
            "review.apply", actor,
            item.scope_key,
            idempotency_scope or DEFAULT_SCOPES["review"],
            {"actor": actor.identity, "evidence_id": evidence_id, "version": if_match,
             "outcome": outcome, "reason": reason},
            lambda: self.reviews.apply_review(
                evidence_id, outcome, reason, actor.identity, if_match_version=if_match,
            ).to_dict(),
            {"evidence_id": evidence_id, "project_id": item.project_id, "period_id": item.period_id},
        )

    # ── Approval writes ───────────────────────────────────────────────────

    def decide_approval(
        self,
        actor: Any,
        project_id: str,
        period_id: str,
        decision: Any,
        reason: str | None,
        *,
        score_input: Any = None,
        version: Any = None,
        idempotency_scope: str | None = None,
    ) -> dict:
        """Record a period decision; returns ``{decision, lock_state, snapshot}``.

        ``version`` is the period version (decision count) the approver last
        read; it separates a deliberate repeat decision from a retry.
        """
        actor = self._authorize(actor, "approval.write")
        if_match = _require_version(version, "period")
        normalized = normalize_decision(decision)
        default_scope = DEFAULT_SCOPES[
            "reject" if normalized == ApprovalDecisionType.REJECT_APPROVAL else "approve"
        ]
        key_payload = {
            "actor": actor.identity,
            "project_id": project_id,
            "period_id": period_id,
            "version": if_match,
            "decision": normalized.value if normalized else decision,
            "reason": reason,
        }
        if score_input is not None:
            key_payload["score_input"] = score_input
        return self._execute(
            "approval.decide", actor,
            build_scope_key(project_id, period_id),
            idempotency_scope or default_scope,
            key_payload,
            lambda: self.approvals.decide(
                project_id, period_id, decision, reason, actor.identity,
                score_input=score_input, if_match_version=if_match,
            ).to_dict(),
            {"project_id": project_id, "period_id": period_id},
        )

    # ── Reads ─────────────────────────────────────────────────────────────

    def get_snapshot(self, actor: Any, snapshot_id: str) -> dict:
        self._authorize(actor)
        return self._read("snapshot.get", lambda: self.snapshots.get_snapshot(snapshot_id).to_dict())

    def list_snapshots(
        self,
        actor: Any,
        *,
        project_id: str | None = None,
        period_id: str | None = None,
        cursor: int = 0,
        limit: int = 50,
    ) -> dict:
        self._authorize(actor)
        return self._read("snapshot.list", lambda: self.snapshots.list_snapshots(
            project_id=project_id, period_id=period_id, cursor=cursor, limit=limit,
        ).to_dict())

    def get_evidence_view(self, actor: Any, evidence_id: str) -> dict:
        self._authorize(actor)

        def build():
            item = self.evidence.get(evidence_id)
            ledger = self.store.get_review_ledger(evidence_id)
            data = item.to_dict()
            data["effective_status"] = self.evidence.effective_status(item, ledger).value
            data["review"] = ledger.to_dict()
            return data

        return self._read("evidence.get", build)

    def get_review_ledger(self, actor: Any, evidence_id: str) -> dict:
        self._authorize(actor)
        return self._read("review.ledger", lambda: self.reviews.get_ledger(evidence_id).to_dict())

    def get_period_view(self, actor: Any, project_id: str, period_id: str) -> dict:
        """Status, lock, decisions and evidence of one scope."""
        self._authorize(actor)

        def build():
            items = self.evidence.list_scope(project_id, period_id)
            status = self.approvals.period_status(project_id, period_id)
            latest = self.approvals.latest_decision(project_id, period_id)
            return {
                "project_id": project_id,
                "period_id": period_id,
                "scope_key": build_scope_key(project_id, period_id),
                "status": status.value if status else None,
                "version": self.approvals.period_version(project_id, period_id),
                "lock_state": self.approvals.get_lock_state(project_id, period_id),
                "decisions": [d.to_dict() for d in self.approvals.list_decisions(project_id, period_id)],
                "latest_decision": latest.to_dict() if latest else None,
                "evidence_review_counts": self.snapshots.compute_evidence_review_counts(items).to_dict(),
                "evidence": [self._evidence_view(i) for i in items],
            }

        return self._read("period.get", build)

    def current_window(
        self,
        now: datetime | None = None,
        *,
        anchor: Any = None,
        back_weeks: int = 0,
        forward_weeks: int = 0,
    ) -> dict:
        """Current weekly window, its custom week number and neighbours."""
        now = now or self.clock()
        week_anchor = WeekAnchor.parse(anchor, self.anchor)
        window = resolve_weekly_window(now, week_anchor, self.offset_hours)
        year, week = custom_week_of_year(window.start_date, week_anchor)
        return {
            "anchor": week_anchor.value,
            "utc_offset_hours": self.offset_hours,
            "window": window.to_dict(),
            "week_year": year,
            "week": week,
            "windows": [
                w.to_dict() for w in list_weekly_windows_around(
                    now, week_anchor, back_weeks, forward_weeks, self.offset_hours,
                )
            ],
        }
