"""
Daily activity check-ins.

A member checks in to say they are working a task today. Check-ins are only
meaningful once work has started, so tasks still in a TO DO column refuse
them, and only members assigned to the task may check in. The store keeps
at most one check-in per member, task, column and day.
"""
from collections import OrderedDict
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from .schema import (
    FlowError,
    ActivityLogEntry,
    Task,
    TODO_COLUMNS,
    utc_now,
)


class CheckInNotAllowed(FlowError):
    """Raised when a task has not started or the member is not on it."""
    pass


def can_check_in(task: Task) -> bool:
    return task.column not in TODO_COLUMNS


def make_check_in(
    task: Task,
    member_id: str,
    now: Optional[datetime] = None,
) -> ActivityLogEntry:
    """Build a check-in for an assigned member, tagged with their task role."""
    if not can_check_in(task):
        raise CheckInNotAllowed(
            f"Task {task.task_id} is in '{task.column.title}'; move it to WIP before checking in"
        )
    assignment = task.assignment_for(member_id)
    if assignment is None:
        raise CheckInNotAllowed(f"Member {member_id} is not assigned to task {task.task_id}")
    return ActivityLogEntry(
        member_id=member_id,
        division=assignment.division,
        project_id=task.project_id,
        task_id=task.task_id,
        category=task.category,
        column=task.column,
        check_in_time=now or utc_now(),
    )


def daily_summary(entries: Iterable[ActivityLogEntry]) -> Dict[str, Dict[str, List[ActivityLogEntry]]]:
    """Group check-ins by date (newest first) then by member."""
    by_date: Dict[str, Dict[str, List[ActivityLogEntry]]] = {}
    for e in entries:
        by_date.setdefault(e.check_in_date, {}).setdefault(e.member_id, []).append(e)
    return OrderedDict(sorted(by_date.items(), reverse=True))
