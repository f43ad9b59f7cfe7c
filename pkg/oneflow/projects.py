"""
Project rules.

A project is the event (or pitch) a board belongs to. It carries its event
dates, a brief, optional asset links and the teams working it, each team in
exactly one role. These helpers build and edit Project values; the store and
service persist them.
"""
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Union

from .schema import (
    FlowError,
    ASSET_LINK_KEYS,
    Division,
    Project,
    ProjectStatus,
    ProjectType,
    utc_now,
)
from .ledger import parse_division


class InvalidProject(FlowError):
    """Raised when project fields are missing or inconsistent."""
    pass


# Fields update_project() may change; status only moves through archive()
UPDATABLE = (
    "title",
    "project_type",
    "event_team_name",
    "brief",
    "event_start_date",
    "event_end_date",
    "background_url",
    "asset_links",
    "teams",
)


def parse_project_type(value: Union[str, ProjectType]) -> ProjectType:
    if isinstance(value, ProjectType):
        return value
    for t in ProjectType:
        if str(value).strip().lower() == t.value.lower():
            return t
    raise InvalidProject(
        f"Unknown project type: {value!r}. Available: {[t.value for t in ProjectType]}"
    )


def parse_status(value: Union[str, ProjectStatus]) -> ProjectStatus:
    if isinstance(value, ProjectStatus):
        return value
    try:
        return ProjectStatus(str(value).strip().lower())
    except ValueError:
        raise InvalidProject(f"Unknown project status: {value!r}") from None


def _parse_date(value, name: str) -> datetime:
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value))
        except ValueError:
            raise InvalidProject(f"{name} must be an ISO date, got {value!r}") from None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _asset_links(raw: Optional[Mapping[str, str]]) -> Dict[str, str]:
    links = {}
    for key, url in (raw or {}).items():
        if key not in ASSET_LINK_KEYS:
            raise InvalidProject(f"Unknown asset link {key!r}. Available: {list(ASSET_LINK_KEYS)}")
        url = str(url or "").strip()
        if url:
            links[key] = url
    return links


def _teams(raw: Optional[Mapping[Union[str, Division], Iterable[str]]]) -> Dict[Division, List[str]]:
    teams: Dict[Division, List[str]] = {}
    seen: Dict[str, Division] = {}
    for role, team_ids in (raw or {}).items():
        division = parse_division(role)
        for team_id in team_ids or []:
            team_id = str(team_id)
            if team_id in seen:
                raise InvalidProject(
                    f"Team {team_id} listed as both {seen[team_id].value} and {division.value}"
                )
            seen[team_id] = division
            teams.setdefault(division, []).append(team_id)
    return teams


def _check(project: Project) -> Project:
    if not project.title.strip():
        raise InvalidProject("Project title is required")
    if project.event_end_date < project.event_start_date:
        raise InvalidProject("Event end date is before the start date")
    return project


def new_project(
    project_id: str,
    title: str,
    project_type: Union[str, ProjectType],
    event_start_date,
    event_end_date,
    asset_links: Optional[Mapping[str, str]] = None,
    teams: Optional[Mapping[Union[str, Division], Iterable[str]]] = None,
    **fields,
) -> Project:
    """Build a validated, active project."""
    return _check(Project(
        project_id=project_id,
        title=(title or "").strip(),
        project_type=parse_project_type(project_type),
        event_start_date=_parse_date(event_start_date, "event_start_date"),
        event_end_date=_parse_date(event_end_date, "event_end_date"),
        asset_links=_asset_links(asset_links),
        teams=_teams(teams),
        **fields,
    ))


def update_project(project: Project, **changes) -> Project:
    """Apply a partial update. None values are ignored; passing ``teams``
    replaces every team assignment."""
    unknown = set(changes) - set(UPDATABLE)
    if unknown:
        raise InvalidProject(f"Cannot update project fields: {sorted(unknown)}")

    updates = {}
    for key, value in changes.items():
        if value is None:
            continue
        if key == "project_type":
            value = parse_project_type(value)
        elif key in ("event_start_date", "event_end_date"):
            value = _parse_date(value, key)
        elif key == "asset_links":
            value = _asset_links(value)
        elif key == "teams":
            value = _teams(value)
        elif key == "title":
            value = str(value).strip()
        updates[key] = value

    if not updates:
        return project
    return _check(project.copy(updated_at=utc_now(), **updates))


def archive(project: Project) -> Project:
    if project.status == ProjectStatus.ARCHIVED:
        return project
    return project.copy(status=ProjectStatus.ARCHIVED, updated_at=utc_now())


def in_month(project: Project, year: int, month: int) -> bool:
    """True when the event starts or ends in ``month`` (1-12) of ``year``."""
    return any(
        d.year == year and d.month == month
        for d in (project.event_start_date, project.event_end_date)
    )


def filter_projects(
    projects: Iterable[Project],
    status: Union[str, ProjectStatus, None] = None,
    year: Optional[int] = None,
    month: Optional[int] = None,
) -> List[Project]:
    """Latest events first. The month filter applies only when both
    ``year`` and ``month`` are given."""
    result = list(projects)
    if status:
        status = parse_status(status)
        result = [p for p in result if p.status == status]
    if year is not None and month is not None:
        if not 1 <= month <= 12:
            raise InvalidProject(f"month must be 1-12, got {month}")
        result = [p for p in result if in_month(p, year, month)]
    result.sort(key=lambda p: p.event_start_date, reverse=True)
    return result
