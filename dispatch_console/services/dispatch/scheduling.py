"""Schedule-for-later validation."""

from __future__ import annotations

from datetime import date
from typing import Optional, Sequence

from dispatch_console.services.dispatch.errors import WorkflowValidationError
from dispatch_console.services.schedule_time import format_scheduled_time, parse_selected_date


def validate_schedule_selection(
    selected_date: Optional[str],
    selected_time: Optional[str],
    *,
    slots: Sequence[str],
    today: date,
) -> str:
    """Return the scheduled time string or raise WorkflowValidationError."""
    if not selected_date or not selected_time:
        raise WorkflowValidationError("Please select both a date and a time slot")
    if selected_time not in slots:
        raise WorkflowValidationError(f"Invalid time slot: {selected_time}")
    try:
        chosen = parse_selected_date(selected_date)
    except ValueError:
        raise WorkflowValidationError(f"Invalid date: {selected_date}")
    if chosen < today:
        raise WorkflowValidationError("Cannot schedule a visit in the past")
    return format_scheduled_time(chosen.isoformat(), selected_time)
