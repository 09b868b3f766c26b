"""Productivity scoring for projects and users.

A report combines five rates (0-100 each) into one weighted score:
- completion: share of the period's tasks that are completed,
- on_time: share of tasks completed in the period by their due date,
- focus: share of tasks planned in the period completed on the planned day,
- dependency: 100 minus 20 points per overdue task that others depend on,
- urgent: how quickly urgent tasks were picked up after creation.

A rate with nothing to measure counts as 100.
"""

import logging
from datetime import date, timedelta
from typing import Any, Dict, Optional, Tuple

from django.db.models import Q, QuerySet
from django.utils import timezone

from .models import STATUS_COMPLETED, Task

logger = logging.getLogger(__name__)

PRODUCTIVITY_WEIGHTS = {
    "completion": 0.30,
    "on_time": 0.25,
    "focus": 0.15,
    "dependency": 0.15,
    "urgent": 0.15,
}

OVERDUE_BLOCKER_PENALTY = 20

# (max hours from creation to start, points)
URGENT_RESPONSE_BANDS = [(2, 100), (4, 80), (8, 50), (24, 20)]

PERIOD_CURRENT_WEEK = "current_week"
PERIOD_LAST_WEEK = "last_week"


def week_period(mode: str = PERIOD_CURRENT_WEEK, today: Optional[date] = None) -> Tuple[date, date]:
    """Monday and Sunday of the current week, or of the previous one for 'last_week'."""
    if today is None:
        today = timezone.localdate()
    if mode == PERIOD_LAST_WEEK:
        today -= timedelta(weeks=1)
    start = today - timedelta(days=today.weekday())
    return start, start + timedelta(days=6)


def _rate(hits: int, total: int) -> float:
    return hits / total * 100 if total else 100.0


def urgent_response_points(hours: float) -> int:
    for limit, points in URGENT_RESPONSE_BANDS:
        if hours <= limit:
            return points
    return 0


def _completion_rate(tasks: QuerySet, start: date, end: date) -> float:
    in_period = tasks.filter(
        Q(due_date__range=(start, end))
        | Q(planned_date__range=(start, end))
        | Q(completed_at__date__range=(start, end))
    ).distinct()
    total = in_period.count()
    done = in_period.filter(status=STATUS_COMPLETED).count()
    return _rate(done, total)


def _on_time_rate(tasks: QuerySet, start: date, end: date) -> float:
    completed = tasks.filter(status=STATUS_COMPLETED, completed_at__date__range=(start, end)).distinct()
    total = 0
    on_time = 0
    for t in completed.only("due_date", "completed_at"):
        total += 1
        if t.due_date is None or timezone.localtime(t.completed_at).date() <= t.due_date:
            on_time += 1
    return _rate(on_time, total)


def _focus_rate(tasks: QuerySet, start: date, end: date) -> float:
    planned = tasks.filter(planned_date__range=(start, end)).distinct()
    total = 0
    hits = 0
    for t in planned.only("planned_date", "completed_at"):
        total += 1
        if t.completed_at is not None and timezone.localtime(t.completed_at).date() == t.planned_date:
            hits += 1
    return _rate(hits, total)


def _urgent_rate(tasks: QuerySet, start: date, end: date) -> float:
    urgent = tasks.filter(
        priority="urgent",
        created_at__date__range=(start, end),
        started_at__isnull=False,
    ).distinct()
    scores = []
    for t in urgent.only("created_at", "started_at"):
        hours = (t.started_at - t.created_at).total_seconds() // 3600
        scores.append(urgent_response_points(hours))
    if not scores:
        return 100.0
    return sum(scores) / len(scores)


def _dependency_rate(tasks: QuerySet, today: date) -> float:
    overdue_blockers = (
        tasks.filter(due_date__lt=today, dependents__isnull=False)
        .exclude(status=STATUS_COMPLETED)
        .distinct()
        .count()
    )
    return max(0, 100 - overdue_blockers * OVERDUE_BLOCKER_PENALTY)


def calculate_productivity(tasks: QuerySet, start: date, end: date,
                           today: Optional[date] = None) -> Dict[str, Any]:
    """Score a set of tasks over the inclusive period [start, end].

    Returns:
        {"score": int, "metrics": {"completion_rate", "on_time_rate", "focus_rate",
        "urgent_rate", "dependency_rate"}} with every value rounded to an int.
    """
    if today is None:
        today = timezone.localdate()

    rates = {
        "completion": _completion_rate(tasks, start, end),
        "on_time": _on_time_rate(tasks, start, end),
        "focus": _focus_rate(tasks, start, end),
        "urgent": _urgent_rate(tasks, start, end),
        "dependency": _dependency_rate(tasks, today),
    }
    score = sum(rates[name] * weight for name, weight in PRODUCTIVITY_WEIGHTS.items())

    return {
        "score": round(score),
        "metrics": {f"{name}_rate": round(value) for name, value in rates.items()},
    }


def project_productivity(project_id: int, start: date, end: date,
                         today: Optional[date] = None) -> Dict[str, Any]:
    report = calculate_productivity(Task.objects.filter(project_id=project_id), start, end, today)
    logger.debug("project %s productivity %s..%s: %s", project_id, start, end, report["score"])
    return report


def user_productivity(user_id: int, start: date, end: date,
                      today: Optional[date] = None) -> Dict[str, Any]:
    report = calculate_productivity(Task.objects.filter(assignees__id=user_id), start, end, today)
    logger.debug("user %s productivity %s..%s: %s", user_id, start, end, report["score"])
    return report
