"""
OneFlow task schema.

Column pipeline (left to right):
  TO DO (Graphics) → WIP → QC → REVISION → DONE (Graphics)
  → TO DO (Motion) → WIP → QC → REVISION → FINAL

Graphic-only and decor tasks stop at DONE (Graphics); graphic-motion tasks
run the whole pipeline. Column moves are recorded as append-only transitions.
"""
from enum import Enum
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any
import json


class FlowError(Exception):
    """Base class for every expected, caller-recoverable board error."""
    pass


class CategoryGroup(Enum):
    """Which pipeline a task category follows."""
    GRAPHIC_MOTION = "graphic_motion"
    GRAPHIC_ONLY = "graphic_only"
    DECOR = "decor"


class TaskCategory(Enum):
    """Fixed set of billable task types."""
    # Graphic-Motion
    CLIP = "CLIP"
    PRESENTATION = "PRESENTATION"
    BUMPER = "BUMPER"
    BACKGROUND = "BACKGROUND"
    MINOR_ITEMS_ANIMATION = "MINOR_ITEMS_ANIMATION"
    # Graphic Only
    BRANDING = "BRANDING"
    ADVERTISING = "ADVERTISING"
    MICROSITE_UI_DESIGN = "MICROSITE_UI_DESIGN"
    DIGITAL_MEDIA = "DIGITAL_MEDIA"
    PRINTED_MEDIA_MINOR_DESIGN = "PRINTED_MEDIA_MINOR_DESIGN"
    # Decor
    PRINTED_INFORMATION = "PRINTED_INFORMATION"
    PRINTED_DECORATION = "PRINTED_DECORATION"
    CUTTING_MAL_RESIZE = "CUTTING_MAL_RESIZE"


class Division(Enum):
    """Team division a member works in."""
    GRAPHIC = "graphic"
    MOTION = "motion"
    MUSIC = "music"


class ProjectType(Enum):
    PROJECT = "Project"
    PITCHING = "Pitching"


class ProjectStatus(Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


# Optional reference links a project may carry
ASSET_LINK_KEYS = (
    "deck_link",
    "graphic_assets_link",
    "three_d_assets_link",
    "video_assets_link",
    "final_animation_link",
    "decor_link",
)


class Direction(Enum):
    """Stepper direction on the board."""
    LEFT = "left"
    RIGHT = "right"


class Column(Enum):
    """Board columns. Declaration order is the board order."""
    TODO_GRAPHICS = "todo-graphics"
    WIP_GRAPHICS = "wip-graphics"
    QC_GRAPHICS = "qc-graphics"
    REVISION_GRAPHICS = "revision-graphics"
    DONE_GRAPHICS = "done-graphics"
    TODO_MOTION = "todo-motion"
    WIP_MOTION = "wip-motion"
    QC_MOTION = "qc-motion"
    REVISION_MOTION = "revision-motion"
    FINAL = "final"

    @property
    def index(self) -> int:
        return COLUMN_ORDER.index(self)

    @property
    def title(self) -> str:
        return COLUMN_TITLES[self]


COLUMN_ORDER: List[Column] = list(Column)

COLUMN_TITLES: Dict[Column, str] = {
    Column.TODO_GRAPHICS: "TO DO (Graphics)",
    Column.WIP_GRAPHICS: "WIP (Graphics)",
    Column.QC_GRAPHICS: "QC (Graphics)",
    Column.REVISION_GRAPHICS: "REVISION (Graphics)",
    Column.DONE_GRAPHICS: "DONE (Graphics)",
    Column.TODO_MOTION: "TO DO (Motion)",
    Column.WIP_MOTION: "WIP (Motion)",
    Column.QC_MOTION: "QC (Motion)",
    Column.REVISION_MOTION: "REVISION (Motion)",
    Column.FINAL: "FINAL",
}

# Columns past DONE (Graphics); only graphic-motion tasks may enter them
MOTION_COLUMNS = frozenset({
    Column.TODO_MOTION,
    Column.WIP_MOTION,
    Column.QC_MOTION,
    Column.REVISION_MOTION,
    Column.FINAL,
})

TODO_COLUMNS = frozenset({Column.TODO_GRAPHICS, Column.TODO_MOTION})


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_dt(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass
class MemberAssignment:
    """One member's share of a task's points within a division."""
    member_id: str
    division: Division
    percentage: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "member_id": self.member_id,
            "division": self.division.value,
            "percentage": self.percentage,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MemberAssignment":
        return cls(
            member_id=data["member_id"],
            division=Division(data["division"]),
            percentage=int(data.get("percentage", 0)),
        )


@dataclass
class ColumnTransition:
    """One accepted column move, queued for the store to flush."""
    from_column: Column
    to_column: Column
    reason: Optional[str] = None
    actor: Optional[str] = None
    timestamp: str = field(default_factory=lambda: utc_now().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_column": self.from_column.value,
            "to_column": self.to_column.value,
            "timestamp": self.timestamp,
            "reason": self.reason or "",
            "actor": self.actor or "",
        }


@dataclass
class Task:
    """A board task. Treat instances as values: board and ledger
    operations return updated copies instead of mutating in place."""

    # Identifiers
    task_id: str
    title: str
    category: TaskCategory
    project_id: str = ""

    # Board position and score
    column: Column = Column.TODO_GRAPHICS
    points: int = 0                 # captured from the category at creation
    assignments: List[MemberAssignment] = field(default_factory=list)

    # Content
    description: str = ""
    deadline: Optional[datetime] = None
    image_url: str = ""
    graphic_link: str = ""
    animation_link: str = ""
    music_link: str = ""

    # Concurrency + audit
    version: int = 0                # 0 = never saved
    column_history: List[Dict[str, Any]] = field(default_factory=list)
    _pending_transitions: List[ColumnTransition] = field(default_factory=list, repr=False)

    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def copy(self, **changes) -> "Task":
        """Return a copy with independent lists, applying ``changes``."""
        changes.setdefault("assignments", [replace(a) for a in self.assignments])
        changes.setdefault("column_history", list(self.column_history))
        changes.setdefault("_pending_transitions", list(self._pending_transitions))
        return replace(self, **changes)

    def assignment_for(self, member_id: str) -> Optional[MemberAssignment]:
        for a in self.assignments:
            if a.member_id == member_id:
                return a
        return None

    def members_in(self, division: Division) -> List[MemberAssignment]:
        """Assignments in ``division``, in the order they were added."""
        return [a for a in self.assignments if a.division == division]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "project_id": self.project_id,
            "title": self.title,
            "category": self.category.value,
            "column": self.column.value,
            "points": self.points,
            "assignments": [a.to_dict() for a in self.assignments],
            "description": self.description,
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "image_url": self.image_url,
            "graphic_link": self.graphic_link,
            "animation_link": self.animation_link,
            "music_link": self.music_link,
            "version": self.version,
            "column_history": self.column_history,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        history = data.get("column_history", [])
        if isinstance(history, str):
            history = json.loads(history)

        return cls(
            task_id=data["task_id"],
            project_id=data.get("project_id") or "",
            title=data.get("title", ""),
            category=TaskCategory(data["category"]),
            column=Column(data.get("column", Column.TODO_GRAPHICS.value)),
            points=int(data.get("points", 0)),
            assignments=[MemberAssignment.from_dict(a) for a in data.get("assignments", [])],
            description=data.get("description") or "",
            deadline=_parse_dt(data.get("deadline")),
            image_url=data.get("image_url") or "",
            graphic_link=data.get("graphic_link") or "",
            animation_link=data.get("animation_link") or "",
            music_link=data.get("music_link") or "",
            version=int(data.get("version", 0)),
            column_history=history if isinstance(history, list) else [],
            created_at=_parse_dt(data.get("created_at")) or utc_now(),
            updated_at=_parse_dt(data.get("updated_at")) or utc_now(),
        )


@dataclass
class Project:
    """An event or pitch that owns a board of tasks."""
    project_id: str
    title: str
    project_type: ProjectType
    event_start_date: datetime
    event_end_date: datetime
    status: ProjectStatus = ProjectStatus.ACTIVE

    event_team_name: str = ""
    brief: str = ""
    background_url: str = ""
    asset_links: Dict[str, str] = field(default_factory=dict)
    teams: Dict[Division, List[str]] = field(default_factory=dict)  # role -> team ids

    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def copy(self, **changes) -> "Project":
        changes.setdefault("asset_links", dict(self.asset_links))
        changes.setdefault("teams", {d: list(ids) for d, ids in self.teams.items()})
        return replace(self, **changes)

    def team_ids(self, division: Division) -> List[str]:
        return list(self.teams.get(division, []))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project_id": self.project_id,
            "title": self.title,
            "type": self.project_type.value,
            "status": self.status.value,
            "event_team_name": self.event_team_name,
            "brief": self.brief,
            "event_start_date": self.event_start_date.isoformat(),
            "event_end_date": self.event_end_date.isoformat(),
            "background_url": self.background_url,
            "asset_links": dict(self.asset_links),
            "teams": {d.value: self.team_ids(d) for d in Division},
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Project":
        links = data.get("asset_links") or {}
        if isinstance(links, str):
            links = json.loads(links)
        teams = {
            Division(role): list(ids)
            for role, ids in (data.get("teams") or {}).items()
            if ids
        }
        return cls(
            project_id=data["project_id"],
            title=data.get("title", ""),
            project_type=ProjectType(data.get("type") or data.get("project_type")),
            event_start_date=_parse_dt(data["event_start_date"]),
            event_end_date=_parse_dt(data["event_end_date"]),
            status=ProjectStatus(data.get("status") or ProjectStatus.ACTIVE.value),
            event_team_name=data.get("event_team_name") or "",
            brief=data.get("brief") or "",
            background_url=data.get("background_url") or "",
            asset_links=links,
            teams=teams,
            created_at=_parse_dt(data.get("created_at")) or utc_now(),
            updated_at=_parse_dt(data.get("updated_at")) or utc_now(),
        )


@dataclass
class ActivityLogEntry:
    """A member checking in on a task they are actively working."""
    member_id: str
    division: Division
    project_id: str
    task_id: str
    category: TaskCategory
    column: Column
    check_in_time: datetime = field(default_factory=utc_now)

    @property
    def check_in_date(self) -> str:
        return self.check_in_time.date().isoformat()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "member_id": self.member_id,
            "division": self.division.value,
            "project_id": self.project_id,
            "task_id": self.task_id,
            "category": self.category.value,
            "column": self.column.value,
            "check_in_time": self.check_in_time.isoformat(),
            "check_in_date": self.check_in_date,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActivityLogEntry":
        return cls(
            member_id=data["member_id"],
            division=Division(data["division"]),
            project_id=data.get("project_id") or "",
            task_id=data["task_id"],
            category=TaskCategory(data["category"]),
            column=Column(data["column"]),
            check_in_time=_parse_dt(data["check_in_time"]),
        )
