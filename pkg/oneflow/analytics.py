"""
Performance analytics.

Read-only aggregation over tasks: member points, per-category progress and
project totals. Nothing here mutates a task.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional

from .schema import CategoryGroup, Division, Task, TaskCategory
from .points import GROUPS, category_group, is_completed, is_in_progress
from .ledger import member_points


@dataclass
class MemberStats:
    member_id: str
    division: Division
    tasks_assigned: int = 0
    points: float = 0.0
    by_category: Dict[TaskCategory, Dict[str, float]] = field(default_factory=dict)

    def to_dict(self):
        return {
            "member_id": self.member_id,
            "division": self.division.value,
            "tasks_assigned": self.tasks_assigned,
            "points": round(self.points, 2),
            "by_category": {
                c.value: {"count": int(v["count"]), "points": round(v["points"], 2)}
                for c, v in self.by_category.items()
            },
        }


def member_stats(
    tasks: Iterable[Task],
    division: Optional[Division] = None,
    roster: Optional[Mapping[str, Division]] = None,
) -> List[MemberStats]:
    """Points earned per member, highest first.

    ``division`` keeps only members of that division; a member's division
    comes from ``roster`` when given, else from their assignment role.
    """
    stats: Dict[str, MemberStats] = {}
    for task in tasks:
        for a in task.assignments:
            s = stats.get(a.member_id)
            if s is None:
                role = (roster or {}).get(a.member_id, a.division)
                s = stats[a.member_id] = MemberStats(a.member_id, role)
            earned = member_points(task, a.member_id)
            s.points += earned
            s.tasks_assigned += 1
            bucket = s.by_category.setdefault(task.category, {"count": 0, "points": 0.0})
            bucket["count"] += 1
            bucket["points"] += earned

    result = [s for s in stats.values() if division is None or s.division == division]
    result.sort(key=lambda s: (-s.points, s.member_id))
    return result


def category_stats(tasks: Iterable[Task]) -> Dict[CategoryGroup, Dict[TaskCategory, Dict[str, int]]]:
    """Per group, per category: total, completed and in-progress counts."""
    out: Dict[CategoryGroup, Dict[TaskCategory, Dict[str, int]]] = {g: {} for g in CategoryGroup}
    for category, group in GROUPS.items():
        out[group][category] = {"total": 0, "completed": 0, "in_progress": 0}

    for task in tasks:
        row = out[category_group(task.category)][task.category]
        row["total"] += 1
        if is_completed(task):
            row["completed"] += 1
        elif is_in_progress(task):
            row["in_progress"] += 1
    return out


def division_points(tasks: Iterable[Task]) -> Dict[Division, float]:
    totals = {d: 0.0 for d in Division}
    for task in tasks:
        for a in task.assignments:
            totals[a.division] += member_points(task, a.member_id)
    return totals


def project_summary(tasks: Iterable[Task]) -> Dict[str, float]:
    tasks = list(tasks)
    total = len(tasks)
    completed = sum(1 for t in tasks if is_completed(t))
    return {
        "total_tasks": total,
        "completed_tasks": completed,
        "in_progress_tasks": sum(1 for t in tasks if is_in_progress(t)),
        "total_points": sum(t.points for t in tasks),
        "completion_rate": round(completed / total * 100, 1) if total else 0.0,
    }


def analytics_report(tasks: Iterable[Task], division: Optional[Division] = None,
                     roster: Optional[Mapping[str, Division]] = None) -> Dict:
    """JSON-ready bundle of every aggregate, used by the HTTP API."""
    tasks = list(tasks)
    return {
        "summary": project_summary(tasks),
        "members": [s.to_dict() for s in member_stats(tasks, division, roster)],
        "divisions": {d.value: round(p, 2) for d, p in division_points(tasks).items()},
        "categories": {
            g.value: {c.value: row for c, row in cats.items()}
            for g, cats in category_stats(tasks).items()
        },
    }
