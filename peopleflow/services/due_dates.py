from datetime import datetime, timedelta, timezone
from typing import Optional

WORKFLOW_START = "workflow_start"
PREVIOUS_STEP_COMPLETION = "previous_step_completion"

# Legacy designer value for the previous-step anchor.
_ANCHOR_ALIASES = {
    "previous_step": PREVIOUS_STEP_COMPLETION,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Timezone-normalize a timestamp. Naive datetimes are treated as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def normalize_anchor(offset_from: Optional[str]) -> str:
    if not offset_from:
        return WORKFLOW_START
    return _ANCHOR_ALIASES.get(offset_from, offset_from)


def workflow_due_at(started_at: datetime, default_due_days: Optional[int]) -> Optional[datetime]:
    if default_due_days is None:
        return None
    return as_utc(started_at) + timedelta(days=int(default_due_days))


def compute_due_at(
    reference: datetime,
    offset_days: Optional[int],
    offset_from: Optional[str],
    predecessor_completed_at: Optional[datetime] = None,
    *,
    has_predecessor: bool = False,
) -> Optional[datetime]:
    """
    Absolute due date for a step, or None when there is no deadline yet.

    workflow_start offsets resolve against ``reference`` (the workflow start).
    previous_step_completion offsets resolve against the predecessor's
    completion time; until the predecessor completes the result is None and
    the state machine calls back in once it does. A step with no predecessor
    anchors on the workflow start.
    """
    if offset_days is None:
        return None

    anchor = normalize_anchor(offset_from)
    offset = timedelta(days=int(offset_days))

    if anchor == WORKFLOW_START:
        return as_utc(reference) + offset

    if anchor == PREVIOUS_STEP_COMPLETION:
        if not has_predecessor:
            return as_utc(reference) + offset
        if predecessor_completed_at is None:
            return None
        return as_utc(predecessor_completed_at) + offset

    raise ValueError(f"Unknown due offset anchor: {offset_from}")


def is_overdue(due_at: Optional[datetime], status: str, now: Optional[datetime] = None) -> bool:
    if due_at is None:
        return False
    if status in ("completed", "skipped", "cancelled"):
        return False
    if now is None:
        now = utcnow()
    return as_utc(now) > as_utc(due_at)
