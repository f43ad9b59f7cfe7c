"""
Member assignment ledger.

Each task splits its points between assigned members, per division. Within a
division that has any members the percentages must total exactly 100.

Two phases:
  toggle_member()  - keeps every division balanced (even split on each change)
  set_percentage() - free-form edit; totals are only checked by validate()
                     and require_valid() before the assignments are committed
"""
import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple, Union

from .schema import (
    FlowError,
    Column,
    Division,
    MemberAssignment,
    Task,
    TaskCategory,
    utc_now,
)
from .points import allowed_columns, eligible_divisions, parse_category, points_for
from .board import CategoryRestriction


class IneligibleDivision(FlowError):
    """Raised when a division may not be assigned to the task's category."""
    pass


class UnknownMember(FlowError):
    """Raised when editing a member that is not assigned to the task."""
    pass


class DuplicateMember(FlowError):
    """Raised when one member is listed twice for the same task."""
    pass


class InvalidDistribution(FlowError):
    """Raised at commit time when a division's percentages do not total 100."""

    def __init__(self, divisions: List[Division]):
        self.divisions = divisions
        names = ", ".join(d.value for d in divisions)
        super().__init__(
            f"Point distribution for assigned members must total 100% in each division: {names}"
        )


@dataclass(frozen=True)
class DistributionReport:
    """Per-division validity. A division with no members is valid."""
    graphic: bool
    motion: bool
    music: bool

    @property
    def is_valid(self) -> bool:
        return self.graphic and self.motion and self.music

    @property
    def invalid_divisions(self) -> List[Division]:
        return [d for d in Division if not getattr(self, d.value)]

    def to_dict(self):
        return {
            "graphic": self.graphic,
            "motion": self.motion,
            "music": self.music,
            "valid": self.is_valid,
        }


def even_split(n: int) -> List[int]:
    """Split 100 into ``n`` integer shares; the first 100 % n get one extra."""
    if n <= 0:
        return []
    base, remainder = divmod(100, n)
    return [base + 1 if i < remainder else base for i in range(n)]


def _rebalance(assignments: List[MemberAssignment], division: Division) -> None:
    members = [a for a in assignments if a.division == division]
    for a, share in zip(members, even_split(len(members))):
        a.percentage = share


def parse_division(value: Union[str, Division]) -> Division:
    if isinstance(value, Division):
        return value
    try:
        return Division(str(value).strip().lower())
    except ValueError:
        raise IneligibleDivision(f"Unknown division: {value!r}") from None


def _check_eligible(category: TaskCategory, division: Division) -> None:
    if division not in eligible_divisions(category):
        raise IneligibleDivision(
            f"Cannot assign {division.value} team member for {category.value} tasks"
        )


def toggle_member(task: Task, member_id: str, division: Union[str, Division]) -> Task:
    """Add or remove ``member_id`` in ``division`` and re-split that division."""
    division = parse_division(division)
    _check_eligible(task.category, division)

    updated = task.copy(updated_at=utc_now())
    existing = updated.assignment_for(member_id)

    if existing is not None and existing.division == division:
        updated.assignments.remove(existing)
    elif existing is not None:
        # A member holds one role per task; moving roles rebalances both
        updated.assignments.remove(existing)
        _rebalance(updated.assignments, existing.division)
        updated.assignments.append(MemberAssignment(member_id, division))
    else:
        updated.assignments.append(MemberAssignment(member_id, division))

    _rebalance(updated.assignments, division)
    return updated


def set_percentage(task: Task, member_id: str, value) -> Task:
    """Overwrite one member's share, clamped to [0, 100]. No rebalancing."""
    if task.assignment_for(member_id) is None:
        raise UnknownMember(f"Member {member_id} is not assigned to task {task.task_id}")

    updated = task.copy(updated_at=utc_now())
    updated.assignment_for(member_id).percentage = clamp_percentage(value)
    return updated


def clamp_percentage(value) -> int:
    """Coerce any input to a whole share in [0, 100]. Unreadable input and
    NaN become 0; infinities clamp to the nearest bound."""
    if isinstance(value, int):
        return max(0, min(100, value))
    try:
        value = float(value)
    except (TypeError, ValueError, OverflowError):
        return 0
    if math.isnan(value):
        return 0
    return int(max(0.0, min(100.0, value)))


def division_total(task: Task, division: Division) -> int:
    return sum(a.percentage for a in task.members_in(division))


def validate(task: Task) -> DistributionReport:
    def ok(division: Division) -> bool:
        members = task.members_in(division)
        return not members or sum(a.percentage for a in members) == 100

    return DistributionReport(
        graphic=ok(Division.GRAPHIC),
        motion=ok(Division.MOTION),
        music=ok(Division.MUSIC),
    )


def require_valid(task: Task) -> None:
    report = validate(task)
    if not report.is_valid:
        raise InvalidDistribution(report.invalid_divisions)


def member_points(task: Task, member_id: str) -> float:
    a = task.assignment_for(member_id)
    if a is None:
        return 0.0
    return task.points * (a.percentage / 100)


def replace_assignments(
    task: Task,
    assignments: Iterable[Union[MemberAssignment, Tuple[str, Division, int]]],
) -> Task:
    """Swap in a full assignment list (the dialog "save"), checking every
    division is eligible. Totals are left for require_valid()."""
    rows: List[MemberAssignment] = []
    seen = set()
    for a in assignments:
        if not isinstance(a, MemberAssignment):
            member_id, division, percentage = a
            a = MemberAssignment(member_id, parse_division(division), percentage)
        _check_eligible(task.category, a.division)
        if a.member_id in seen:
            raise DuplicateMember(f"Member {a.member_id} assigned twice to task {task.task_id}")
        seen.add(a.member_id)
        rows.append(MemberAssignment(a.member_id, a.division, clamp_percentage(a.percentage)))
    return task.copy(assignments=rows, updated_at=utc_now())


def change_category(task: Task, category: Union[str, TaskCategory]) -> Task:
    """Re-categorise a task. Destructive: points are re-derived and every
    assignment is dropped. Rejected if the current column would be illegal."""
    category = parse_category(category)
    if category == task.category:
        return task
    if task.column not in allowed_columns(category):
        raise CategoryRestriction(
            f"Cannot change to {category.value} while the task is in '{task.column.title}'"
        )
    return task.copy(
        category=category,
        points=points_for(category),
        assignments=[],
        updated_at=utc_now(),
    )


def new_task(
    task_id: str,
    title: str,
    category: Union[str, TaskCategory],
    members: Optional[Iterable[Tuple[str, Union[str, Division]]]] = None,
    **fields,
) -> Task:
    """Create a task in TO DO (Graphics) with points taken from its category.

    ``members`` are (member_id, division) pairs toggled on in order, which
    leaves each division evenly split. A member may appear only once.
    """
    members = list(members or [])
    ids = [member_id for member_id, _ in members]
    for member_id in ids:
        if ids.count(member_id) > 1:
            raise DuplicateMember(f"Member {member_id} listed twice for task {task_id}")

    category = parse_category(category)
    task = Task(
        task_id=task_id,
        title=title,
        category=category,
        column=Column.TODO_GRAPHICS,
        points=points_for(category),
        **fields,
    )
    for member_id, division in members:
        task = toggle_member(task, member_id, division)
    return task
