"""
Annotation and status condition helpers.

Pure functions over an object's metadata and condition list; nothing here
talks to the store.
"""

from datetime import datetime, timezone
from typing import List, Optional

from reconcilekit.objects import Condition


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def get_annotation(obj, name: str) -> str:
    """Return the value of annotation name, or '' if it is not set."""
    return (obj.annotations or {}).get(name, "")


def set_annotation(obj, name: str, value: str) -> None:
    """Add or overwrite annotation name."""
    if obj.annotations is None:
        obj.annotations = {}
    obj.annotations[name] = value


def find_status_condition(
    conditions: List[Condition], condition_type: str
) -> Optional[Condition]:
    for condition in conditions:
        if condition.type == condition_type:
            return condition
    return None


def is_status_condition_present_and_equal(
    conditions: List[Condition], condition_type: str, status: str
) -> bool:
    condition = find_status_condition(conditions, condition_type)
    return condition is not None and condition.status == status


def is_status_condition_true(conditions: List[Condition], condition_type: str) -> bool:
    return is_status_condition_present_and_equal(conditions, condition_type, "True")


def remove_status_condition(conditions: List[Condition], condition_type: str) -> bool:
    """Remove the condition of condition_type. Returns True if one was removed."""
    before = len(conditions)
    conditions[:] = [c for c in conditions if c.type != condition_type]
    return len(conditions) != before


def set_status_condition(conditions: List[Condition], new: Condition) -> bool:
    """
    Upsert new into conditions.

    A condition with the same type and status counts as unchanged and is
    left as is, reason and message included. Otherwise the status changed:
    the existing condition is overwritten and last_transition_time moves to
    new.last_transition_time, or now if unset. New conditions are appended
    with last_transition_time defaulting to now.

    Returns:
        True if conditions changed.
    """
    if is_status_condition_present_and_equal(conditions, new.type, new.status):
        return False

    existing = find_status_condition(conditions, new.type)
    if existing is None:
        conditions.append(
            Condition(
                type=new.type,
                status=new.status,
                reason=new.reason,
                message=new.message,
                observed_generation=new.observed_generation,
                last_transition_time=new.last_transition_time or _now(),
            )
        )
        return True

    # status differs here, so this is a transition
    existing.status = new.status
    existing.last_transition_time = new.last_transition_time or _now()
    existing.reason = new.reason
    existing.message = new.message
    existing.observed_generation = new.observed_generation
    return True
