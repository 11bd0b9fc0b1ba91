"""
Approval gate policy for APPROVE_PERIOD.

Layers on top of the approval manager: when gates are enforced, a period may
only be approved once its evidence is fully reviewed and the score data is
sufficiently complete.

Usage:
    from bcl_workflow.services.approval_gates import GatePolicy, evaluate_approval_gates

    result = evaluate_approval_gates(score_input.breakdown, score_input.confidence_coverage, counts)
    # -> GateResult(is_eligible=False, failures=[...], metrics={...})
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Iterable

from bcl_workflow.services.records import BreakdownRow, EvidenceReviewCounts

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatePolicy:
    min_coverage_ratio: float = 0.6
    min_reviewed_evidence: int = 3
    min_scored_perspectives: int = 4

    @classmethod
    def from_config(cls, config) -> "GatePolicy":
        return cls(
            min_coverage_ratio=float(config.get("APPROVAL_GATE_MIN_COVERAGE", cls.min_coverage_ratio)),
            min_reviewed_evidence=int(config.get("APPROVAL_GATE_MIN_REVIEWED", cls.min_reviewed_evidence)),
            min_scored_perspectives=int(
                config.get("APPROVAL_GATE_MIN_SCORED_PERSPECTIVES", cls.min_scored_perspectives)
            ),
        )


DEFAULT_GATE_POLICY = GatePolicy()


@dataclass
class GateResult:
    """Outcome of evaluating every gate; ``failures`` is empty when eligible."""
    is_eligible: bool
    failures: list[str] = field(default_factory=list)
    metrics: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "is_eligible": self.is_eligible,
            "failures": list(self.failures),
            "metrics": dict(self.metrics),
        }


def normalize_coverage_ratio(value: float | None) -> float | None:
    """Coverage as a 0..1 ratio; values above 1 are read as percentages."""
    if value is None or not math.isfinite(value):
        return None
    if value <= 1:
        return max(0.0, min(1.0, value))
    return max(0.0, min(1.0, value / 100))


def evaluate_approval_gates(
    breakdown: Iterable[BreakdownRow],
    confidence_coverage: float | None,
    counts: EvidenceReviewCounts,
    policy: GatePolicy = DEFAULT_GATE_POLICY,
) -> GateResult:
    coverage = normalize_coverage_ratio(confidence_coverage)
    reviewed = counts.reviewed
    scored = sum(
        1 for row in breakdown
        if row.score is not None and math.isfinite(row.score) and row.score > 0
    )

    failures = []
    # GATE-1: nothing may still be waiting for a reviewer
    if counts.awaiting_review > 0:
        failures.append(f"Awaiting review must be 0 (currently {counts.awaiting_review})")
    # GATE-2: score confidence coverage
    if coverage is None or coverage < policy.min_coverage_ratio:
        current = "n/a" if coverage is None else f"{round(coverage * 100)}%"
        failures.append(
            f"Coverage must be at least {round(policy.min_coverage_ratio * 100)}% (currently {current})"
        )
    # GATE-3: reviewed evidence volume
    if reviewed < policy.min_reviewed_evidence:
        failures.append(
            f"At least {policy.min_reviewed_evidence} evidence items must be reviewed (currently {reviewed})"
        )
    # GATE-4: perspectives carrying a positive score
    if scored < policy.min_scored_perspectives:
        failures.append(
            f"At least {policy.min_scored_perspectives} perspectives must be scored (currently {scored})"
        )

    metrics = {
        "coverage_ratio": coverage,
        "reviewed_evidence_count": reviewed,
        "scored_perspectives_count": scored,
        "awaiting_review_count": counts.awaiting_review,
    }
    if failures:
        logger.info("Approval gates not met: %s", "; ".join(failures), extra={"gate_metrics": metrics})
    return GateResult(is_eligible=not failures, failures=failures, metrics=metrics)
