"""Shared utility functions for the workflow engine and its HTTP adapters.

utc_now:          default clock injected into every manager
parse_datetime:   strict instant parsing, raising ValidationError
parse_int_arg:    bounded integer query arguments
"""
from datetime import datetime, timezone

from bcl_workflow.core.exceptions import ValidationError


def utc_now() -> datetime:
    """Timezone-aware current instant in UTC."""
    return datetime.now(timezone.utc)


def parse_datetime(value, field_name: str = "now") -> datetime | None:
    """Parse an ISO-8601 instant; naive values are taken as UTC.

    Empty input returns None.  Anything unparseable is a validation error.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValidationError(
                f"{field_name} must be an ISO-8601 timestamp",
                details={field_name: str(value)},
            ) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_int_arg(value, field_name: str, *, default: int, minimum: int = 0, maximum: int | None = None) -> int:
    """Integer query argument clamped to [minimum, maximum]."""
    if value is None or value == "":
        return default
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field_name} must be an integer", details={field_name: str(value)}) from exc
    number = max(minimum, number)
    if maximum is not None:
        number = min(maximum, number)
    return number
