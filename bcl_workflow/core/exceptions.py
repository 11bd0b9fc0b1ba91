"""
Workflow engine exception hierarchy.

Every failed write surfaces as exactly one of five conditions.  Services raise
these typed errors; the boundary layer (blueprints, CLI) turns them into
transport responses.  A condition code and a human-readable detail string are
always present together.

Condition semantics:
    validation     malformed or missing input; caller fixes and resends,
                   never auto-retried
    authorization  actor's role does not permit the transition; never retried
    locked         target period scope is LOCKED; permanent for that scope
    conflict       optimistic-concurrency or state mismatch; re-read, retry
                   with the fresh version
    unavailable    store or network unreachable; safe to retry with backoff

Usage:
    from bcl_workflow.core.exceptions import LockedError, ValidationError

    raise ValidationError("reason is required", details={"reason": "blank"})
    raise LockedError(project_id="p-1", period_id="w6")
"""

from __future__ import annotations

from enum import Enum


class Condition(str, Enum):
    """Closed set of machine-readable failure conditions."""

    AUTHORIZATION = "authorization"
    CONFLICT = "conflict"
    LOCKED = "locked"
    VALIDATION = "validation"
    UNAVAILABLE = "unavailable"


class WorkflowError(Exception):
    """Base class for every write failure the engine reports.

    Args:
        detail: Human-readable explanation. Never empty.
        details: Optional structured breakdown (field -> problem).
    """

    condition: Condition = Condition.VALIDATION

    def __init__(self, detail: str, details: dict | None = None) -> None:
        self.detail = (detail or "").strip() or self.condition.value
        self.details = details or {}
        super().__init__(self.detail)

    def to_dict(self) -> dict:
        body = {"condition": self.condition.value, "detail": self.detail}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(WorkflowError):
    """Input is missing or malformed (blank reason, no indicators, ...)."""

    condition = Condition.VALIDATION


class AuthorizationError(WorkflowError):
    """Actor is unidentified or its role may not perform the transition.

    ``missing_identity`` distinguishes "who are you?" (401) from
    "you may not do this" (403) for the transport mapping.
    """

    condition = Condition.AUTHORIZATION

    def __init__(self, detail: str, *, missing_identity: bool = False, details: dict | None = None) -> None:
        self.missing_identity = missing_identity
        super().__init__(detail, details)


class LockedError(WorkflowError):
    """The (project_id, period_id) scope is already LOCKED."""

    condition = Condition.LOCKED

    def __init__(self, project_id: str, period_id: str, detail: str | None = None) -> None:
        self.project_id = project_id
        self.period_id = period_id
        super().__init__(
            detail or f"Period {period_id} of project {project_id} is LOCKED (read-only)",
            {"project_id": project_id, "period_id": period_id},
        )


class ConflictError(WorkflowError):
    """Stale version or illegal state for the requested transition.

    Args:
        resource: Entity name (e.g. "EvidenceItem").
        resource_id: Identity of the entity.
        expected_version: Version the caller last saw (None for "must not exist").
        actual_version: Version currently stored (None if absent).
        reason: Override for the default stale-version message.
    """

    condition = Condition.CONFLICT

    def __init__(
        self,
        resource: str,
        resource_id: str,
        *,
        expected_version: int | None = None,
        actual_version: int | None = None,
        reason: str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        msg = reason or (
            f"{resource} id={resource_id} version mismatch "
            f"(expected={expected_version}, actual={actual_version})"
        )
        super().__init__(
            msg,
            {
                "resource": resource,
                "resource_id": resource_id,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
        )


class UnavailableError(WorkflowError):
    """The persistent store or network could not be reached."""

    condition = Condition.UNAVAILABLE


class NotFoundError(Exception):
    """Raised by read operations when the requested record does not exist.

    Not part of the write taxonomy: reads report absence, they do not fail a
    transition.
    """

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)
