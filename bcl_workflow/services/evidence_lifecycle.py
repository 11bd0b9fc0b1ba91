"""
Evidence Lifecycle Manager

Owns evidence items and their stored status transitions:

    DRAFT ──submit──► SUBMITTED ──review: NEEDS_REVISION──► NEEDS_REVISION
      ▲  │                ▲                                      │
      └──┘ save_draft     └───────────── resubmit ───────────────┘

There is no terminal state; an item may cycle SUBMITTED ⇄ NEEDS_REVISION
indefinitely.  Every accepted mutation bumps ``version`` through a
compare-and-swap on the store.  Writes to an existing item must name the
version the caller last saw, and no write is accepted in a LOCKED scope.

The *effective* status shown to readers overlays the latest review outcome
recorded for the current submission onto the stored status; see
``effective_status``.

Usage:
    from bcl_workflow.services.evidence_lifecycle import EvidenceLifecycleManager

    manager = EvidenceLifecycleManager(store)
    item = manager.submit(payload, actor_identity="alice")
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable

from bcl_workflow.core.exceptions import ConflictError, LockedError, NotFoundError, ValidationError
from bcl_workflow.services.records import EvidenceItem, ReviewLedger
from bcl_workflow.services.status_model import (
    EffectiveStatus,
    EvidenceStatus,
    EvidenceType,
    build_scope_key,
    is_known_scope,
    normalize_evidence_type,
    outcome_to_effective_status,
)
from bcl_workflow.services.store import WorkflowStore
from bcl_workflow.utils.helpers import utc_now

logger = logging.getLogger(__name__)


# Stored status → statuses it may move to
EVIDENCE_TRANSITIONS = {
    EvidenceStatus.DRAFT:          [EvidenceStatus.DRAFT, EvidenceStatus.SUBMITTED],
    EvidenceStatus.SUBMITTED:      [EvidenceStatus.NEEDS_REVISION],
    EvidenceStatus.NEEDS_REVISION: [EvidenceStatus.SUBMITTED],
}

# Content reference fields owned by each evidence type
CONTENT_FIELDS = {
    EvidenceType.URL:  ("external_url",),
    EvidenceType.TEXT: ("text_content",),
    EvidenceType.FILE: ("file_reference_url", "file_view_url", "file_download_url"),
}
_ALL_CONTENT_FIELDS = tuple(f for fields in CONTENT_FIELDS.values() for f in fields)

# Fields a caller may set on create / update
_EDITABLE_FIELDS = ("bim_use_id", "title", "description") + _ALL_CONTENT_FIELDS


def validate_transition(current: EvidenceStatus, target: EvidenceStatus) -> bool:
    return target in EVIDENCE_TRANSITIONS.get(current, [])


def _clean_text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _normalize_indicator_ids(raw: Any) -> tuple[str, ...]:
    """Trimmed, de-duplicated indicator ids (first occurrence wins)."""
    if raw is None:
        return ()
    if isinstance(raw, str):
        raw = [raw]
    elif isinstance(raw, (set, frozenset)):
        raw = sorted(raw)
    elif not isinstance(raw, (list, tuple)):
        raise ValidationError("indicator_ids must be a list of strings", details={"indicator_ids": "not a list"})

    seen: dict[str, None] = {}
    for value in raw:
        if not isinstance(value, str):
            raise ValidationError("indicator_ids must be a list of strings", details={"indicator_ids": repr(value)})
        text = value.strip()
        if text:
            seen.setdefault(text, None)
    return tuple(seen)


def _content_values(item_type: EvidenceType, source: dict, fallback: EvidenceItem | None) -> dict:
    """Content fields for ``item_type``; fields of other types are cleared."""
    values = {}
    for name in _ALL_CONTENT_FIELDS:
        if name not in CONTENT_FIELDS[item_type]:
            values[name] = None
        elif name in source:
            values[name] = _clean_text(source.get(name)) or None
        else:
            values[name] = getattr(fallback, name) if fallback else None
    return values


class EvidenceLifecycleManager:
    """Stored-status state machine for evidence items.

    Args:
        store: Injected workflow store.
        clock: Returns the current UTC instant (tests pass a fixed clock).
    """

    def __init__(self, store: WorkflowStore, clock: Callable[[], datetime] | None = None) -> None:
        self.store = store
        self.clock = clock or utc_now

    # ── Reads ─────────────────────────────────────────────────────────────

    def get(self, evidence_id: str) -> EvidenceItem:
        item = self.store.get_evidence(evidence_id)
        if item is None:
            raise NotFoundError("EvidenceItem", evidence_id)
        return item

    def list_scope(self, project_id: str, period_id: str) -> list[EvidenceItem]:
        return self.store.list_evidence(build_scope_key(project_id, period_id))

    def effective_status(self, item: EvidenceItem, ledger: ReviewLedger | None = None) -> EffectiveStatus:
        """Display status: the latest review of the current submission wins.

        Reviews recorded before the last (re)submission belong to an earlier
        revision, so a resubmitted item reads as AWAITING_REVIEW until it is
        reviewed again.
        """
        if item.status == EvidenceStatus.DRAFT:
            return EffectiveStatus.DRAFT
        if ledger is None:
            ledger = self.store.get_review_ledger(item.id)
        if len(ledger) > item.reviews_at_submit and ledger.current_outcome is not None:
            return outcome_to_effective_status(ledger.current_outcome)
        return EffectiveStatus.AWAITING_REVIEW

    # ── Guards ────────────────────────────────────────────────────────────

    def assert_scope_open(self, project_id: str, period_id: str) -> str:
        """Return the scope key, raising ``LockedError`` if the scope is LOCKED."""
        scope_key = build_scope_key(project_id, period_id)
        if self.store.get_period_lock(scope_key) is not None:
            raise LockedError(project_id, period_id)
        return scope_key

    def _require_transition(self, item: EvidenceItem, target: EvidenceStatus, action: str) -> None:
        if not validate_transition(item.status, target):
            raise ConflictError(
                "EvidenceItem", item.id,
                reason=f"Cannot '{action}' evidence {item.id} (status={item.status.value})",
            )

    @staticmethod
    def _check_version(item: EvidenceItem, if_match_version: int | None) -> int:
        """Compare-and-swap token for a write to an existing item."""
        if if_match_version is None:
            raise ValidationError(
                f"version is required to update evidence {item.id}",
                details={"version": "required", "actual_version": item.version},
            )
        if int(if_match_version) != item.version:
            raise ConflictError(
                "EvidenceItem", item.id,
                expected_version=int(if_match_version), actual_version=item.version,
            )
        return item.version

    @staticmethod
    def _validate_identity(payload: dict) -> tuple[str, str, str, EvidenceType, str]:
        if not isinstance(payload, dict):
            raise ValidationError("Evidence payload must be an object")
        evidence_id = _clean_text(payload.get("id"))
        project_id = _clean_text(payload.get("project_id"))
        period_id = _clean_text(payload.get("period_id"))
        title = _clean_text(payload.get("title"))
        item_type = normalize_evidence_type(payload.get("type"))

        missing = {
            name: "required"
            for name, value in (
                ("id", evidence_id), ("project_id", project_id),
                ("period_id", period_id), ("title", title),
            )
            if not value
        }
        if missing:
            raise ValidationError(f"Missing required field(s): {', '.join(missing)}", details=missing)
        if item_type is None:
            raise ValidationError(
                "type must be one of URL, FILE, TEXT", details={"type": str(payload.get("type"))},
            )
        if not is_known_scope(project_id, period_id):
            raise ValidationError(
                "Evidence must belong to a known project period",
                details={"project_id": project_id, "period_id": period_id},
            )
        return evidence_id, project_id, period_id, item_type, title

    @staticmethod
    def _validate_for_submission(item: EvidenceItem) -> None:
        problems = {}
        if not item.indicator_ids:
            problems["indicator_ids"] = "at least one indicator is required"
        if not any(getattr(item, name) for name in CONTENT_FIELDS[item.type]):
            problems[CONTENT_FIELDS[item.type][0]] = f"{item.type.value} evidence requires content"
        if problems:
            raise ValidationError("Evidence is incomplete for submission", details=problems)

    # ── Construction ──────────────────────────────────────────────────────

    def _merge(
        self,
        payload: dict,
        existing: EvidenceItem | None,
        status: EvidenceStatus,
        actor_identity: str,
        now: datetime,
    ) -> EvidenceItem:
        evidence_id, project_id, period_id, item_type, title = self._validate_identity(payload)
        if existing is not None and (existing.project_id, existing.period_id) != (project_id, period_id):
            raise ValidationError(
                "Evidence cannot move to another project period",
                details={"project_id": existing.project_id, "period_id": existing.period_id},
            )

        fields = {
            name: _clean_text(payload.get(name)) if name in payload else (getattr(existing, name) if existing else "")
            for name in ("bim_use_id", "description")
        }
        if "indicator_ids" in payload or existing is None:
            indicator_ids = _normalize_indicator_ids(payload.get("indicator_ids"))
        else:
            indicator_ids = existing.indicator_ids

        return EvidenceItem(
            id=evidence_id,
            project_id=project_id,
            period_id=period_id,
            scope_key=build_scope_key(project_id, period_id),
            type=item_type,
            title=title,
            status=status,
            version=existing.version + 1 if existing else 1,
            created_at=existing.created_at if existing else now,
            updated_at=now,
            created_by=existing.created_by if existing else actor_identity,
            bim_use_id=fields["bim_use_id"],
            indicator_ids=indicator_ids,
            description=fields["description"],
            submitted_at=existing.submitted_at if existing else None,
            reviews_at_submit=existing.reviews_at_submit if existing else 0,
            **_content_values(item_type, payload, existing),
        )

    # ── Writes ────────────────────────────────────────────────────────────

    def save_draft(self, payload: dict, actor_identity: str, *, if_match_version: int | None = None) -> EvidenceItem:
        """Create an item in DRAFT, or update one that is still DRAFT."""
        evidence_id, project_id, period_id, _, _ = self._validate_identity(payload)
        scope_key = build_scope_key(project_id, period_id)
        with self.store.transaction(scope_key):
            self.assert_scope_open(project_id, period_id)
            existing = self.store.get_evidence(evidence_id)
            expected = None
            if existing is not None:
                self._require_transition(existing, EvidenceStatus.DRAFT, "save_draft")
                expected = self._check_version(existing, if_match_version)
            item = self._merge(payload, existing, EvidenceStatus.DRAFT, actor_identity, self.clock())
            saved = self.store.save_evidence(item, expected)

        logger.info(
            "Evidence draft saved",
            extra={"evidence_id": saved.id, "project_id": project_id, "period_id": period_id},
        )
        return saved

    def submit(self, payload: dict, actor_identity: str, *, if_match_version: int | None = None) -> EvidenceItem:
        """Create an item directly as SUBMITTED, or submit an existing DRAFT."""
        evidence_id, project_id, period_id, _, _ = self._validate_identity(payload)
        scope_key = build_scope_key(project_id, period_id)
        with self.store.transaction(scope_key):
            self.assert_scope_open(project_id, period_id)
            existing = self.store.get_evidence(evidence_id)
            expected = None
            if existing is not None:
                self._require_transition(existing, EvidenceStatus.SUBMITTED, "submit")
                expected = self._check_version(existing, if_match_version)
            now = self.clock()
            item = self._merge(payload, existing, EvidenceStatus.SUBMITTED, actor_identity, now)
            self._validate_for_submission(item)
            item = replace(
                item,
                submitted_at=now,
                reviews_at_submit=len(self.store.get_review_ledger(evidence_id)),
            )
            saved = self.store.save_evidence(item, expected)

        logger.info(
            "Evidence submitted",
            extra={"evidence_id": saved.id, "project_id": project_id, "period_id": period_id},
        )
        return saved

    def resubmit(
        self,
        evidence_id: str,
        changes: dict | None,
        actor_identity: str,
        *,
        if_match_version: int | None = None,
    ) -> EvidenceItem:
        """NEEDS_REVISION → SUBMITTED, applying the submitter's changes."""
        current = self.get(evidence_id)
        with self.store.transaction(current.scope_key):
            current = self.get(evidence_id)
            self.assert_scope_open(current.project_id, current.period_id)
            self._require_transition(current, EvidenceStatus.SUBMITTED, "resubmit")
            expected = self._check_version(current, if_match_version)

            payload = current.to_dict()
            payload.update({
                k: v for k, v in (changes or {}).items()
                if k in _EDITABLE_FIELDS or k in ("type", "indicator_ids")
            })
            now = self.clock()
            item = self._merge(payload, current, EvidenceStatus.SUBMITTED, actor_identity, now)
            self._validate_for_submission(item)
            item = replace(
                item,
                submitted_at=now,
                reviews_at_submit=len(self.store.get_review_ledger(evidence_id)),
            )
            saved = self.store.save_evidence(item, expected)

        logger.info(
            "Evidence resubmitted",
            extra={"evidence_id": saved.id, "project_id": saved.project_id, "period_id": saved.period_id},
        )
        return saved

    def mark_needs_revision(self, item: EvidenceItem) -> EvidenceItem:
        """Apply a NEEDS_REVISION review to the stored status.

        Called by the review ledger inside its transaction; an item already
        in NEEDS_REVISION is returned unchanged.
        """
        if item.status == EvidenceStatus.NEEDS_REVISION:
            return item
        self._require_transition(item, EvidenceStatus.NEEDS_REVISION, "request_revision")
        updated = replace(
            item,
            status=EvidenceStatus.NEEDS_REVISION,
            version=item.version + 1,
            updated_at=self.clock(),
        )
        return self.store.save_evidence(updated, item.version)
