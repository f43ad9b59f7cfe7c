"""
Board service: load a task, apply one board/ledger operation, save it.

Each call is one read-modify-write. Pass ``expected_version`` to make the
write conditional on the version the caller last saw; otherwise the version
just loaded is used, which still turns a concurrent write into StaleTask
rather than a lost update.

Subscribers are notified after a successful save:
    project_created, project_updated, project_archived, project_deleted,
    task_created, task_moved, assignments_changed, category_changed,
    task_deleted, checked_in
"""
import logging
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .schema import Column, Direction, Division, MemberAssignment, Project, Task, TaskCategory
from .store import TaskStore, StaleTask
from . import board, ledger
from . import projects as project_rules
from .activity import make_check_in
from .ledger import IneligibleDivision, parse_division
from .projects import InvalidProject

logger = logging.getLogger(__name__)


class FlowService:
    """Routes board operations through the store and notifies subscribers.

    ``roster`` maps member id -> division and ``teams`` maps team id ->
    division; when given they are enforced on assignments and projects.
    """

    def __init__(
        self,
        store: TaskStore,
        roster: Optional[Mapping[str, Division]] = None,
        teams: Optional[Mapping[str, Division]] = None,
    ):
        self.store = store
        self.roster = dict(roster or {})
        self.teams = dict(teams or {})
        self.subscribers: Dict[str, list] = {}  # event_type -> list of callbacks

    def subscribe(self, event_type: str, callback: Callable) -> None:
        """Register a callback for an event type."""
        self.subscribers.setdefault(event_type, []).append(callback)

    def _emit(self, event_type: str, **kwargs) -> None:
        """Emit an event to all subscribers."""
        for callback in self.subscribers.get(event_type, []):
            try:
                callback(**kwargs)
            except Exception as e:
                logger.error(f"Error in {event_type} callback: {e}")

    # ── helpers ──────────────────────────────────────────────────────────

    def _load(self, task_id: str, expected_version: Optional[int]) -> Task:
        task = self.store.get_task(task_id)
        if expected_version is not None and expected_version != task.version:
            raise StaleTask(
                f"Task {task_id} is at version {task.version}, not {expected_version}; reload and retry"
            )
        return task

    def _check_roster(self, member_id: str, division: Division) -> None:
        if not self.roster:
            return
        known = self.roster.get(member_id)
        if known is None:
            raise IneligibleDivision(f"Member {member_id} is not on any team")
        if known != division:
            raise IneligibleDivision(
                f"Member {member_id} is in the {known.value} division, not {division.value}"
            )

    def resolve_division(self, member_id: str, division: Union[str, Division, None] = None) -> Division:
        """The division a member acts in: the one given, checked against the
        roster, or else the roster's entry."""
        if division:
            division = parse_division(division)
            self._check_roster(member_id, division)
            return division
        known = self.roster.get(member_id)
        if known is None:
            raise IneligibleDivision(f"Could not determine division for {member_id}")
        return known

    def _check_teams(self, project: Project) -> None:
        if not self.teams:
            return
        for division in Division:
            for team_id in project.team_ids(division):
                known = self.teams.get(team_id)
                if known is None:
                    raise InvalidProject(f"Unknown team {team_id}")
                if known != division:
                    raise InvalidProject(
                        f"Team {team_id} is a {known.value} team and cannot take the {division.value} role"
                    )

    # ── projects ─────────────────────────────────────────────────────────

    def create_project(
        self,
        title: str,
        project_type,
        event_start_date,
        event_end_date,
        project_id: Optional[str] = None,
        **fields,
    ) -> Project:
        project_id = project_id or self.store.next_project_id()
        if self.store.load_project(project_id) is not None:
            raise InvalidProject(f"Project {project_id} already exists")

        project = project_rules.new_project(
            project_id, title, project_type, event_start_date, event_end_date, **fields
        )
        self._check_teams(project)
        project = self.store.save_project(project)
        logger.info(f"Created project {project.project_id} ({project.title})")
        self._emit("project_created", project=project)
        return project

    def update_project(self, project_id: str, **changes) -> Project:
        current = self.store.get_project(project_id)
        updated = project_rules.update_project(current, **changes)
        if updated is current:
            return current
        self._check_teams(updated)
        updated = self.store.save_project(updated)
        self._emit("project_updated", project=updated)
        return updated

    def archive_project(self, project_id: str) -> Project:
        current = self.store.get_project(project_id)
        archived = project_rules.archive(current)
        if archived is current:
            return current
        archived = self.store.save_project(archived)
        logger.info(f"Archived project {project_id}")
        self._emit("project_archived", project=archived)
        return archived

    def delete_project(self, project_id: str) -> None:
        """Delete a project with all of its tasks and their check-ins."""
        self.store.get_project(project_id)
        self.store.delete_project(project_id)
        logger.info(f"Deleted project {project_id}")
        self._emit("project_deleted", project_id=project_id)

    def projects(
        self,
        status=None,
        year: Optional[int] = None,
        month: Optional[int] = None,
    ) -> List[Project]:
        return project_rules.filter_projects(self.store.list_projects(), status, year, month)

    # ── tasks ────────────────────────────────────────────────────────────

    def create_task(
        self,
        project_id: str,
        title: str,
        category: Union[str, TaskCategory],
        assignments: Optional[Iterable[Union[MemberAssignment, Tuple[str, Division, int]]]] = None,
        members: Optional[Iterable[Tuple[str, Union[str, Division]]]] = None,
        task_id: Optional[str] = None,
        **fields,
    ) -> Task:
        """Create and save a task in TO DO (Graphics) of an existing project.

        ``members`` get an even split; ``assignments`` carry explicit
        percentages and must total 100 per division.
        """
        self.store.get_project(project_id)

        members = [(m, parse_division(d)) for m, d in (members or [])]
        for member_id, division in members:
            self._check_roster(member_id, division)

        task = ledger.new_task(
            task_id or self.store.next_task_id(),
            title,
            category,
            members=members,
            project_id=project_id,
            **fields,
        )
        if assignments is not None:
            task = ledger.replace_assignments(task, assignments)
            for a in task.assignments:
                self._check_roster(a.member_id, a.division)
        ledger.require_valid(task)

        task = self.store.save_task(task)
        logger.info(f"Created task {task.task_id} ({task.category.value}, {task.points} pts)")
        self._emit("task_created", task=task)
        return task

    def move_task(
        self,
        task_id: str,
        column: Union[str, Column],
        actor: str = "",
        expected_version: Optional[int] = None,
    ) -> Task:
        task = self._load(task_id, expected_version)
        moved = board.request_move(task, column, reason="Moved", actor=actor)
        return self._save_move(task, moved)

    def step_task(
        self,
        task_id: str,
        direction: Union[str, Direction],
        actor: str = "",
        expected_version: Optional[int] = None,
    ) -> Task:
        task = self._load(task_id, expected_version)
        moved = board.step(task, direction, actor=actor)
        return self._save_move(task, moved)

    def _save_move(self, before: Task, after: Task) -> Task:
        if after is before:
            return before
        saved = self.store.save_task(after)
        logger.info(f"Task {saved.task_id}: {before.column.value} → {saved.column.value}")
        self._emit("task_moved", task=saved, from_column=before.column, to_column=saved.column)
        return saved

    def toggle_member(
        self,
        task_id: str,
        member_id: str,
        division: Union[str, Division, None] = None,
        expected_version: Optional[int] = None,
    ) -> Task:
        """Toggle a member. ``division`` may be omitted when a roster is set."""
        task = self._load(task_id, expected_version)
        division = self.resolve_division(member_id, division)
        return self._save_assignments(ledger.toggle_member(task, member_id, division))

    def set_percentage(
        self,
        task_id: str,
        member_id: str,
        value,
        expected_version: Optional[int] = None,
    ) -> Task:
        """Store a manual percentage. Totals may be off until corrected;
        check validate() before treating the distribution as final."""
        task = self._load(task_id, expected_version)
        return self._save_assignments(ledger.set_percentage(task, member_id, value))

    def commit_assignments(
        self,
        task_id: str,
        assignments: Iterable[Union[MemberAssignment, Tuple[str, Division, int]]],
        expected_version: Optional[int] = None,
    ) -> Task:
        """Replace all assignments at once; rejected unless every division totals 100."""
        task = self._load(task_id, expected_version)
        updated = ledger.replace_assignments(task, assignments)
        for a in updated.assignments:
            self._check_roster(a.member_id, a.division)
        ledger.require_valid(updated)
        return self._save_assignments(updated)

    def _save_assignments(self, task: Task) -> Task:
        saved = self.store.save_task(task)
        self._emit("assignments_changed", task=saved)
        return saved

    def validate(self, task_id: str) -> ledger.DistributionReport:
        return ledger.validate(self.store.get_task(task_id))

    def change_category(
        self,
        task_id: str,
        category: Union[str, TaskCategory],
        expected_version: Optional[int] = None,
    ) -> Task:
        task = self._load(task_id, expected_version)
        updated = ledger.change_category(task, category)
        if updated is task:
            return task
        saved = self.store.save_task(updated)
        logger.info(
            f"Task {saved.task_id} re-categorised {task.category.value} → {saved.category.value}; "
            f"assignments cleared"
        )
        self._emit("category_changed", task=saved, previous=task.category)
        return saved

    def delete_task(self, task_id: str) -> None:
        self.store.get_task(task_id)
        self.store.delete_check_ins(task_id)
        self.store.delete_task(task_id)
        logger.info(f"Deleted task {task_id}")
        self._emit("task_deleted", task_id=task_id)

    def check_in(self, task_id: str, member_id: str) -> bool:
        """Record that an assigned member is working the task today.

        Returns False if they already checked in to this task in its
        current column today.
        """
        entry = make_check_in(self.store.get_task(task_id), member_id)
        if not self.store.add_check_in(entry):
            return False
        self._emit("checked_in", entry=entry)
        return True

    def tasks(self, project_id: Optional[str] = None) -> List[Task]:
        if project_id is None:
            return self.store.list_all()
        return self.store.list_by_project(project_id)
