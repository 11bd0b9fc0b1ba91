"""
Evidence lifecycle state-machine tests.

    DRAFT -> DRAFT (save_draft) | SUBMITTED (submit)
    SUBMITTED -> NEEDS_REVISION (review)
    NEEDS_REVISION -> SUBMITTED (resubmit)

Also covers version compare-and-swap, content-field rules, locked and
unknown scopes, and the effective display status.
"""

from datetime import datetime, timezone

import pytest

from bcl_workflow.core.exceptions import ConflictError, LockedError, NotFoundError, ValidationError
from bcl_workflow.services.evidence_lifecycle import (
    EVIDENCE_TRANSITIONS,
    EvidenceLifecycleManager,
    validate_transition,
)
from bcl_workflow.services.records import PeriodLock
from bcl_workflow.services.review_ledger import ReviewLedgerService
from bcl_workflow.services.status_model import EffectiveStatus, EvidenceStatus, EvidenceType, build_scope_key


def _payload(evidence_id="ev-1", **overrides):
    payload = {
        "id": evidence_id,
        "project_id": "p-1",
        "period_id": "w6",
        "bim_use_id": "bu-coordination",
        "indicator_ids": ["ind-1", "ind-2"],
        "type": "URL",
        "title": "Clash detection report",
        "description": "Weekly clash run",
        "external_url": "https://example.org/clash/w6",
    }
    payload.update(overrides)
    return payload


def _lock(store, project_id="p-1", period_id="w6"):
    store.set_period_lock(PeriodLock(
        project_id=project_id,
        period_id=period_id,
        scope_key=build_scope_key(project_id, period_id),
        locked_by="andi.approver",
        locked_at=datetime(2026, 2, 12, tzinfo=timezone.utc),
    ))


@pytest.fixture()
def manager(store, clock):
    return EvidenceLifecycleManager(store, clock)


@pytest.fixture()
def ledger(store, manager, clock):
    return ReviewLedgerService(store, manager, clock)


class TestTransitionTable:
    def test_every_status_has_an_entry(self):
        assert set(EVIDENCE_TRANSITIONS) == set(EvidenceStatus)

    @pytest.mark.parametrize("current,target,valid", [
        (EvidenceStatus.DRAFT, EvidenceStatus.SUBMITTED, True),
        (EvidenceStatus.DRAFT, EvidenceStatus.DRAFT, True),
        (EvidenceStatus.SUBMITTED, EvidenceStatus.NEEDS_REVISION, True),
        (EvidenceStatus.NEEDS_REVISION, EvidenceStatus.SUBMITTED, True),
        (EvidenceStatus.SUBMITTED, EvidenceStatus.SUBMITTED, False),
        (EvidenceStatus.SUBMITTED, EvidenceStatus.DRAFT, False),
        (EvidenceStatus.NEEDS_REVISION, EvidenceStatus.DRAFT, False),
        (EvidenceStatus.DRAFT, EvidenceStatus.NEEDS_REVISION, False),
    ])
    def test_validate_transition(self, current, target, valid):
        assert validate_transition(current, target) is valid


class TestSubmit:
    def test_submit_new_item(self, manager, clock):
        """A new item can be created directly as SUBMITTED."""
        item = manager.submit(_payload(), "sam.submitter")
        assert item.status == EvidenceStatus.SUBMITTED
        assert item.version == 1
        assert item.created_by == "sam.submitter"
        assert item.submitted_at is not None
        assert item.submitted_at == item.updated_at
        assert item.scope_key == "proto:p-1:w6"
        assert item.indicator_ids == ("ind-1", "ind-2")

    def test_submit_existing_draft_bumps_version(self, manager):
        manager.save_draft(_payload(indicator_ids=[]), "sam.submitter")
        item = manager.submit(_payload(), "sam.submitter", if_match_version=1)
        assert item.status == EvidenceStatus.SUBMITTED
        assert item.version == 2

    def test_stale_version_is_a_conflict(self, manager):
        manager.save_draft(_payload(), "sam.submitter")
        manager.save_draft(_payload(title="Renamed"), "sam.submitter", if_match_version=1)
        with pytest.raises(ConflictError) as exc:
            manager.submit(_payload(), "sam.submitter", if_match_version=1)
        assert exc.value.expected_version == 1
        assert exc.value.actual_version == 2
        assert manager.get("ev-1").status == EvidenceStatus.DRAFT

    def test_update_without_version_is_refused(self, manager):
        """Writes to an existing item must name the version last read."""
        manager.save_draft(_payload(), "sam.submitter")
        with pytest.raises(ValidationError) as exc:
            manager.save_draft(_payload(title="Writer B"), "other.submitter")
        assert exc.value.details["version"] == "required"
        with pytest.raises(ValidationError):
            manager.submit(_payload(), "sam.submitter")
        stored = manager.get("ev-1")
        assert (stored.version, stored.title, stored.status) == (1, "Clash detection report", EvidenceStatus.DRAFT)

    def test_concurrent_draft_writers_cannot_both_win(self, manager):
        manager.save_draft(_payload(), "sam.submitter")
        manager.save_draft(_payload(title="Writer A"), "sam.submitter", if_match_version=1)
        with pytest.raises(ConflictError):
            manager.save_draft(_payload(title="Writer B"), "other.submitter", if_match_version=1)
        assert manager.get("ev-1").title == "Writer A"

    def test_indicator_ids_required(self, manager):
        with pytest.raises(ValidationError) as exc:
            manager.submit(_payload(indicator_ids=[]), "sam.submitter")
        assert "indicator_ids" in exc.value.details

    def test_type_specific_content_required(self, manager):
        with pytest.raises(ValidationError) as exc:
            manager.submit(_payload(external_url="  "), "sam.submitter")
        assert "external_url" in exc.value.details

    def test_missing_identity_fields(self, manager):
        with pytest.raises(ValidationError) as exc:
            manager.submit(_payload(title="", id=""), "sam.submitter")
        assert set(exc.value.details) == {"id", "title"}

    def test_unknown_type(self, manager):
        with pytest.raises(ValidationError):
            manager.submit(_payload(type="VIDEO"), "sam.submitter")

    def test_unknown_period_scope_is_rejected(self, manager):
        with pytest.raises(ValidationError):
            manager.submit(_payload(period_id="__NOT_AVAILABLE__"), "sam.submitter")

    def test_resubmitting_via_submit_is_a_conflict(self, manager):
        manager.submit(_payload(), "sam.submitter")
        with pytest.raises(ConflictError):
            manager.submit(_payload(), "sam.submitter")

    def test_locked_scope(self, manager, store):
        _lock(store)
        with pytest.raises(LockedError) as exc:
            manager.submit(_payload(), "sam.submitter")
        assert "LOCKED (read-only)" in exc.value.detail
        assert store.get_evidence("ev-1") is None


class TestContentFields:
    def test_fields_of_other_types_are_cleared(self, manager):
        item = manager.submit(_payload(text_content="stray", file_view_url="https://x"), "sam.submitter")
        assert item.external_url == "https://example.org/clash/w6"
        assert item.text_content is None
        assert item.file_view_url is None

    def test_file_evidence_accepts_any_file_reference(self, manager):
        item = manager.submit(
            _payload(type="file", external_url=None, file_view_url="https://files/view/1"),
            "sam.submitter",
        )
        assert item.type == EvidenceType.FILE
        assert item.file_view_url == "https://files/view/1"
        assert item.external_url is None

    def test_text_evidence(self, manager):
        item = manager.submit(_payload(type="TEXT", text_content="Minutes of meeting"), "sam.submitter")
        assert item.text_content == "Minutes of meeting"

    def test_indicator_ids_are_trimmed_and_deduplicated(self, manager):
        item = manager.submit(_payload(indicator_ids=[" ind-2 ", "ind-1", "ind-2", ""]), "sam.submitter")
        assert item.indicator_ids == ("ind-2", "ind-1")

    def test_indicator_ids_must_be_strings(self, manager):
        with pytest.raises(ValidationError):
            manager.submit(_payload(indicator_ids=[1, 2]), "sam.submitter")


class TestSaveDraft:
    def test_draft_needs_only_identity_fields(self, manager):
        item = manager.save_draft(_payload(indicator_ids=[], external_url=None), "sam.submitter")
        assert item.status == EvidenceStatus.DRAFT
        assert item.indicator_ids == ()

    def test_draft_update_keeps_creation_fields(self, manager):
        first = manager.save_draft(_payload(), "sam.submitter")
        second = manager.save_draft(_payload(title="Clash report v2"), "other.submitter", if_match_version=1)
        assert second.version == 2
        assert second.title == "Clash report v2"
        assert second.created_by == "sam.submitter"
        assert second.created_at == first.created_at

    def test_draft_cannot_overwrite_submitted_item(self, manager):
        manager.submit(_payload(), "sam.submitter")
        with pytest.raises(ConflictError):
            manager.save_draft(_payload(), "sam.submitter")

    def test_item_cannot_change_scope(self, manager):
        manager.save_draft(_payload(), "sam.submitter")
        with pytest.raises(ValidationError):
            manager.save_draft(_payload(period_id="w7"), "sam.submitter", if_match_version=1)


class TestResubmit:
    def test_resubmit_only_from_needs_revision(self, manager):
        manager.submit(_payload(), "sam.submitter")
        with pytest.raises(ConflictError):
            manager.resubmit("ev-1", {}, "sam.submitter")

    def test_resubmit_cycle(self, manager, ledger):
        manager.submit(_payload(), "sam.submitter")
        ledger.apply_review("ev-1", "NEEDS_REVISION", "add link", "rita.reviewer")
        assert manager.get("ev-1").status == EvidenceStatus.NEEDS_REVISION

        item = manager.resubmit(
            "ev-1", {"external_url": "https://example.org/clash/w6-fixed"}, "sam.submitter",
            if_match_version=2,
        )
        assert item.status == EvidenceStatus.SUBMITTED
        assert item.version == 3
        assert item.external_url == "https://example.org/clash/w6-fixed"
        assert item.reviews_at_submit == 1

    def test_resubmit_ignores_identity_changes(self, manager, ledger):
        manager.submit(_payload(), "sam.submitter")
        ledger.apply_review("ev-1", "NEEDS_REVISION", "add link", "rita.reviewer")
        item = manager.resubmit(
            "ev-1", {"id": "ev-99", "period_id": "w7"}, "sam.submitter", if_match_version=2,
        )
        assert item.id == "ev-1"
        assert item.period_id == "w6"

    def test_resubmit_requires_version(self, manager, ledger):
        manager.submit(_payload(), "sam.submitter")
        ledger.apply_review("ev-1", "NEEDS_REVISION", "add link", "rita.reviewer")
        with pytest.raises(ValidationError):
            manager.resubmit("ev-1", {"external_url": "https://example.org/other"}, "sam.submitter")
        assert manager.get("ev-1").status == EvidenceStatus.NEEDS_REVISION

    def test_resubmit_unknown_item(self, manager):
        with pytest.raises(NotFoundError):
            manager.resubmit("missing", {}, "sam.submitter")


class TestEffectiveStatus:
    def test_draft(self, manager):
        item = manager.save_draft(_payload(), "sam.submitter")
        assert manager.effective_status(item) == EffectiveStatus.DRAFT

    def test_submitted_without_review_awaits_review(self, manager):
        item = manager.submit(_payload(), "sam.submitter")
        assert manager.effective_status(item) == EffectiveStatus.AWAITING_REVIEW

    def test_latest_review_overrides_stored_status(self, manager, ledger):
        manager.submit(_payload(), "sam.submitter")
        ledger.apply_review("ev-1", "REJECTED", "wrong project", "rita.reviewer")
        assert manager.effective_status(manager.get("ev-1")) == EffectiveStatus.REJECTED

    def test_resubmission_awaits_a_new_review(self, manager, ledger):
        manager.submit(_payload(), "sam.submitter")
        ledger.apply_review("ev-1", "NEEDS_REVISION", "add link", "rita.reviewer")
        assert manager.effective_status(manager.get("ev-1")) == EffectiveStatus.NEEDS_REVISION
        manager.resubmit("ev-1", {}, "sam.submitter", if_match_version=2)
        assert manager.effective_status(manager.get("ev-1")) == EffectiveStatus.AWAITING_REVIEW
        ledger.apply_review("ev-1", "ACCEPTABLE", "fixed", "rita.reviewer")
        assert manager.effective_status(manager.get("ev-1")) == EffectiveStatus.ACCEPTABLE


class TestStatusInvariant:
    def test_status_stays_within_enum_across_operations(self, manager, ledger):
        """Whatever sequence is attempted, stored status is always a lifecycle state."""
        seen = []

        def latest():
            return manager.get("ev-1").version

        steps = [
            lambda: manager.save_draft(_payload(), "s"),
            lambda: manager.submit(_payload(), "s", if_match_version=latest()),
            lambda: manager.submit(_payload(), "s", if_match_version=latest()),
            lambda: manager.resubmit("ev-1", {}, "s", if_match_version=latest()),
            lambda: ledger.apply_review("ev-1", "NEEDS_REVISION", "more", "r"),
            lambda: ledger.apply_review("ev-1", "NEEDS_REVISION", "still more", "r"),
            lambda: manager.save_draft(_payload(), "s", if_match_version=latest()),
            lambda: manager.resubmit("ev-1", {}, "s", if_match_version=latest()),
            lambda: ledger.apply_review("ev-1", "ACCEPTABLE", "ok", "r"),
        ]
        for step in steps:
            try:
                step()
            except (ConflictError, ValidationError):
                pass
            seen.append(manager.get("ev-1").status)
        assert all(isinstance(s, EvidenceStatus) for s in seen)
        assert seen[-1] == EvidenceStatus.SUBMITTED

    def test_version_increments_on_every_accepted_mutation(self, manager, ledger):
        versions = [manager.save_draft(_payload(), "s").version]
        versions.append(manager.submit(_payload(), "s", if_match_version=1).version)
        ledger.apply_review("ev-1", "NEEDS_REVISION", "more", "r")
        versions.append(manager.get("ev-1").version)
        versions.append(manager.resubmit("ev-1", {}, "s", if_match_version=3).version)
        assert versions == [1, 2, 3, 4]

    def test_get_unknown(self, manager):
        with pytest.raises(NotFoundError):
            manager.get("nope")
