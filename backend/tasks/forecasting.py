"""Task completion forecasting.

Estimates when a task is likely to be finished from:
- the task's own effort estimate,
- the recent velocity of its assignees (actual vs. estimated hours),
- unresolved dependencies that push back its earliest start.

The forecast is read-only and recomputed from current database state on every call.
"""

import logging
import math
from datetime import date, timedelta
from typing import Any, Dict, Iterable, Optional

from django.utils import timezone

from .models import STATUS_COMPLETED, Task

logger = logging.getLogger(__name__)

WORKDAY_HOURS = 8
HISTORY_SAMPLE_SIZE = 10
DEFAULT_PESSIMISM_FACTOR = 1.2

BASE_CONFIDENCE = 85
DEPENDENCY_PENALTY = 15
UNASSIGNED_PENALTY = 20

RISK_LOW = "low"
RISK_MEDIUM = "medium"
RISK_HIGH = "high"

REASON_DEPENDENCY = "Dependent on incomplete tasks"
REASON_DELAY = "Historical velocity suggests delay"
REASON_UNASSIGNED = "No assignee to gauge velocity"
REASON_DEFAULT = "Based on average team velocity"


def _is_business_day(d: date) -> bool:
    return d.weekday() < 5


def add_business_days(start: date, days: int) -> date:
    """Return `start` moved forward by `days` weekdays.

    Saturdays and Sundays are skipped. Zero days returns `start` unchanged,
    even if it falls on a weekend.
    """
    current = start
    remaining = days
    while remaining > 0:
        current += timedelta(days=1)
        if _is_business_day(current):
            remaining -= 1
    return current


def business_days_between(earlier: date, later: date) -> int:
    """Count the weekdays in the half-open range [earlier, later)."""
    if later <= earlier:
        return 0
    count = 0
    current = earlier
    while current < later:
        if _is_business_day(current):
            count += 1
        current += timedelta(days=1)
    return count


def pessimism_factor(history: Iterable[Task]) -> float:
    """Average actual/estimated ratio over tasks with both values positive.

    Falls back to DEFAULT_PESSIMISM_FACTOR when no task qualifies.
    """
    total = 0.0
    samples = 0
    for t in history:
        if t.estimated_hours and t.estimated_hours > 0 and t.actual_hours and t.actual_hours > 0:
            total += t.actual_hours / t.estimated_hours
            samples += 1
    if samples == 0:
        return DEFAULT_PESSIMISM_FACTOR
    return total / samples


def recent_completed_tasks(assignee_ids: Iterable[int], limit: int = HISTORY_SAMPLE_SIZE):
    """Last `limit` completed tasks assigned to any of the given users, newest first."""
    assigned = Task.objects.filter(assignees__in=list(assignee_ids)).values("pk")
    return list(
        Task.objects.filter(pk__in=assigned, status=STATUS_COMPLETED, completed_at__isnull=False)
        .order_by("-completed_at")
        .only("estimated_hours", "actual_hours", "completed_at")[:limit]
    )


def predict_task_completion(task_id: int, today: Optional[date] = None) -> Optional[Dict[str, Any]]:
    """Forecast the completion date of a task.

    Args:
        task_id: primary key of the task.
        today: date the forecast is made on; defaults to the current local date.

    Returns:
        dict with 'task_id', 'predicted_date', 'risk_level', 'confidence' and
        'explanation', or None if the task does not exist.
    """
    task = (
        Task.objects.filter(pk=task_id)
        .prefetch_related("assignees", "dependencies__depends_on_task")
        .first()
    )
    if task is None:
        return None

    if today is None:
        today = timezone.localdate()

    assignee_ids = [u.pk for u in task.assignees.all()]
    estimate = task.estimated_hours or 0

    duration_days = estimate / WORKDAY_HOURS if estimate > 0 else 1

    if assignee_ids:
        history = recent_completed_tasks(assignee_ids)
        # no history at all keeps the baseline
        if history:
            factor = pessimism_factor(history)
            if estimate > 0:
                duration_days = (estimate * factor) / WORKDAY_HOURS

    start = today
    dependency_risk = False
    for dep in task.dependencies.all():
        blocker = dep.depends_on_task
        if blocker.is_completed:
            continue
        dependency_risk = True
        blocker_end = blocker.due_date or (today + timedelta(days=1))
        if blocker_end > start:
            start = blocker_end

    predicted = add_business_days(start, math.ceil(duration_days))
    late = task.due_date is not None and predicted > task.due_date

    confidence = BASE_CONFIDENCE
    reasons = []

    if dependency_risk:
        confidence -= DEPENDENCY_PENALTY
        reasons.append(REASON_DEPENDENCY)

    if late:
        reasons.append(REASON_DELAY)

    if not assignee_ids:
        confidence -= UNASSIGNED_PENALTY
        reasons.append(REASON_UNASSIGNED)

    risk_level = RISK_LOW
    if late:
        gap = business_days_between(task.due_date, predicted)
        risk_level = RISK_HIGH if gap > 2 else RISK_MEDIUM

    logger.debug(
        "forecast task=%s start=%s duration=%.2f predicted=%s risk=%s",
        task_id, start, duration_days, predicted, risk_level,
    )

    return {
        "task_id": task_id,
        "predicted_date": predicted,
        "risk_level": risk_level,
        "confidence": confidence,
        "explanation": ", ".join(reasons) or REASON_DEFAULT,
    }


def predict_many(task_ids: Iterable[int], today: Optional[date] = None) -> Dict[int, Optional[Dict[str, Any]]]:
    """Forecast several tasks; unknown ids map to None."""
    if today is None:
        today = timezone.localdate()
    return {tid: predict_task_completion(tid, today=today) for tid in task_ids}
