"""
Review ledger tests: append-only history, reason rules, scope lock and
ordering under concurrent reviewers.
"""

import threading
from datetime import datetime, timezone

import pytest

from bcl_workflow.core.exceptions import ConflictError, LockedError, NotFoundError, ValidationError
from bcl_workflow.services.evidence_lifecycle import EvidenceLifecycleManager
from bcl_workflow.services.records import PeriodLock
from bcl_workflow.services.review_ledger import ReviewLedgerService
from bcl_workflow.services.status_model import EvidenceStatus, ReviewOutcome, build_scope_key


def _payload(evidence_id="ev-1", **overrides):
    payload = {
        "id": evidence_id,
        "project_id": "p-1",
        "period_id": "w6",
        "indicator_ids": ["ind-1"],
        "type": "TEXT",
        "title": "Coordination minutes",
        "text_content": "Weekly BIM coordination meeting notes",
    }
    payload.update(overrides)
    return payload


@pytest.fixture()
def manager(store, clock):
    return EvidenceLifecycleManager(store, clock)


@pytest.fixture()
def ledger(store, manager, clock):
    return ReviewLedgerService(store, manager, clock)


@pytest.fixture()
def submitted(manager):
    return manager.submit(_payload(), "sam.submitter")


class TestApplyReview:
    def test_sequence_of_reviews(self, ledger, submitted):
        """NEEDS_REVISION then ACCEPTABLE: two entries, current is ACCEPTABLE."""
        ledger.apply_review("ev-1", "NEEDS_REVISION", "missing link", "rita.reviewer")
        ledger.apply_review("ev-1", "ACCEPTABLE", "ok now", "rita.reviewer")

        history = ledger.get_ledger("ev-1")
        assert [e.outcome for e in history.history] == [ReviewOutcome.NEEDS_REVISION, ReviewOutcome.ACCEPTABLE]
        assert [e.sequence for e in history.history] == [1, 2]
        assert history.history[0].reason == "missing link"
        assert ledger.current_outcome("ev-1") == ReviewOutcome.ACCEPTABLE

    def test_entry_fields(self, ledger, submitted, clock):
        expected_at = clock.now
        entry = ledger.apply_review("ev-1", " acceptable ", "  looks fine  ", "rita.reviewer")
        assert entry.outcome == ReviewOutcome.ACCEPTABLE
        assert entry.reason == "looks fine"
        assert entry.reviewer_identity == "rita.reviewer"
        assert entry.reviewed_at == expected_at
        assert entry.to_dict()["outcome"] == "ACCEPTABLE"

    def test_earlier_entries_are_untouched(self, ledger, submitted):
        first = ledger.apply_review("ev-1", "REJECTED", "wrong scope", "rita.reviewer")
        ledger.apply_review("ev-1", "ACCEPTABLE", "second opinion", "other.reviewer")
        assert ledger.get_ledger("ev-1").history[0] == first

    @pytest.mark.parametrize("reason", ["", "   ", None])
    def test_blank_reason_is_rejected(self, ledger, submitted, reason):
        with pytest.raises(ValidationError) as exc:
            ledger.apply_review("ev-1", "ACCEPTABLE", reason, "rita.reviewer")
        assert exc.value.details == {"reason": "blank"}
        assert len(ledger.get_ledger("ev-1")) == 0

    def test_unknown_outcome(self, ledger, submitted):
        with pytest.raises(ValidationError):
            ledger.apply_review("ev-1", "MAYBE", "not sure", "rita.reviewer")

    def test_draft_cannot_be_reviewed(self, ledger, manager):
        manager.save_draft(_payload(), "sam.submitter")
        with pytest.raises(ConflictError):
            ledger.apply_review("ev-1", "ACCEPTABLE", "early", "rita.reviewer")

    def test_unknown_evidence(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.apply_review("missing", "ACCEPTABLE", "ok", "rita.reviewer")

    def test_locked_scope(self, ledger, submitted, store):
        store.set_period_lock(PeriodLock(
            project_id="p-1", period_id="w6", scope_key=build_scope_key("p-1", "w6"),
            locked_by="andi.approver", locked_at=datetime(2026, 2, 12, tzinfo=timezone.utc),
        ))
        with pytest.raises(LockedError):
            ledger.apply_review("ev-1", "ACCEPTABLE", "ok", "rita.reviewer")
        assert len(ledger.get_ledger("ev-1")) == 0

    def test_needs_revision_moves_stored_status(self, ledger, manager, submitted):
        ledger.apply_review("ev-1", "NEEDS_REVISION", "add photos", "rita.reviewer")
        item = manager.get("ev-1")
        assert item.status == EvidenceStatus.NEEDS_REVISION
        assert item.version == submitted.version + 1

    def test_other_outcomes_keep_stored_status(self, ledger, manager, submitted):
        ledger.apply_review("ev-1", "REJECTED", "irrelevant", "rita.reviewer")
        assert manager.get("ev-1").status == EvidenceStatus.SUBMITTED
        assert manager.get("ev-1").version == submitted.version

    def test_review_of_a_stale_version_is_a_conflict(self, ledger, manager, submitted):
        ledger.apply_review("ev-1", "NEEDS_REVISION", "add photos", "rita.reviewer", if_match_version=1)
        with pytest.raises(ConflictError) as exc:
            ledger.apply_review("ev-1", "ACCEPTABLE", "fine", "other.reviewer", if_match_version=1)
        assert (exc.value.expected_version, exc.value.actual_version) == (1, 2)
        assert len(ledger.get_ledger("ev-1")) == 1

    def test_review_of_the_current_version(self, ledger, manager, submitted):
        ledger.apply_review("ev-1", "NEEDS_REVISION", "add photos", "rita.reviewer", if_match_version=1)
        manager.resubmit("ev-1", {"text_content": "notes and photos"}, "sam.submitter", if_match_version=2)
        entry = ledger.apply_review("ev-1", "NEEDS_REVISION", "add photos", "rita.reviewer", if_match_version=3)
        assert entry.sequence == 2
        assert manager.get("ev-1").status == EvidenceStatus.NEEDS_REVISION


class TestLedgerReads:
    def test_empty_ledger(self, ledger, submitted):
        view = ledger.get_ledger("ev-1").to_dict()
        assert view == {"evidence_id": "ev-1", "current_outcome": None, "current": None, "review_history": []}

    def test_unknown_item(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.get_ledger("missing")


class TestConcurrentReviews:
    def test_every_review_is_appended_once(self, ledger, submitted):
        """Parallel reviewers never lose an entry; sequences stay contiguous."""
        reasons = [f"reviewer {i} verdict" for i in range(8)]
        errors = []

        def review(reason):
            try:
                ledger.apply_review("ev-1", "REJECTED", reason, "rita.reviewer")
            except Exception as exc:  # pragma: no cover - surfaced by the assert below
                errors.append(exc)

        threads = [threading.Thread(target=review, args=(r,)) for r in reasons]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        history = ledger.get_ledger("ev-1").history
        assert [e.sequence for e in history] == list(range(1, 9))
        assert sorted(e.reason for e in history) == sorted(reasons)
