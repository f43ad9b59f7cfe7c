"""
Task storage backend (SQLite).

Every task row carries a ``version``. save_task() only writes when the stored
version still matches the one the caller loaded, so two editors racing on the
same task cannot silently overwrite each other: the loser gets StaleTask and
must reload.
"""
import json
import logging
import sqlite3
from pathlib import Path
from typing import List, Optional, Dict, Any

from .schema import (
    FlowError,
    ActivityLogEntry,
    Column,
    Division,
    Project,
    Task,
)

logger = logging.getLogger(__name__)


class StaleTask(FlowError):
    """Raised when a save races with another writer."""
    pass


class TaskNotFound(FlowError):
    """Raised when a task id has no stored row."""
    pass


class ProjectNotFound(FlowError):
    """Raised when a project id has no stored row."""
    pass


def _connect(db_path: str) -> sqlite3.Connection:
    """Open a connection with FK enforcement and WAL mode."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


class TaskStore:
    """SQLite-backed store for projects, board tasks and check-ins."""

    def __init__(self, db_path: str = None):
        """Initialize store and create tables if needed."""
        if db_path is None:
            db_path = str(Path.home() / ".local" / "share" / "oneflow" / "oneflow.db")
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _init_schema(self):
        """Create tables if they don't exist."""
        with _connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS projects (
                    project_id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    project_type TEXT NOT NULL,      -- Project, Pitching
                    status TEXT NOT NULL DEFAULT 'active',
                    event_team_name TEXT DEFAULT '',
                    brief TEXT DEFAULT '',
                    event_start_date TEXT NOT NULL,
                    event_end_date TEXT NOT NULL,
                    background_url TEXT DEFAULT '',
                    asset_links TEXT DEFAULT '{}',   -- JSON object
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS project_teams (
                    project_id TEXT NOT NULL,
                    team_id TEXT NOT NULL,
                    role TEXT NOT NULL,              -- graphic, motion, music
                    position INTEGER NOT NULL,
                    PRIMARY KEY (project_id, team_id),
                    FOREIGN KEY (project_id) REFERENCES projects(project_id) ON DELETE CASCADE
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    task_id TEXT PRIMARY KEY,
                    project_id TEXT NOT NULL REFERENCES projects(project_id) ON DELETE CASCADE,
                    title TEXT NOT NULL,
                    description TEXT DEFAULT '',
                    category TEXT NOT NULL,
                    column_id TEXT NOT NULL DEFAULT 'todo-graphics',
                    points INTEGER NOT NULL,
                    deadline TEXT,
                    image_url TEXT DEFAULT '',
                    graphic_link TEXT DEFAULT '',
                    animation_link TEXT DEFAULT '',
                    music_link TEXT DEFAULT '',
                    version INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS task_assignments (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_id TEXT NOT NULL,
                    member_id TEXT NOT NULL,
                    division TEXT NOT NULL,   -- graphic, motion, music
                    percentage INTEGER NOT NULL DEFAULT 100,
                    position INTEGER NOT NULL, -- insertion order drives the even split
                    FOREIGN KEY (task_id) REFERENCES tasks(task_id) ON DELETE CASCADE,
                    UNIQUE (task_id, member_id)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS column_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_id TEXT NOT NULL,
                    from_column TEXT NOT NULL,
                    to_column TEXT NOT NULL,
                    reason TEXT,
                    actor TEXT,
                    timestamp TEXT NOT NULL,
                    FOREIGN KEY (task_id) REFERENCES tasks(task_id) ON DELETE CASCADE
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS activity_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    member_id TEXT NOT NULL,
                    division TEXT NOT NULL,
                    project_id TEXT DEFAULT '',
                    task_id TEXT NOT NULL,
                    category TEXT NOT NULL,
                    column_id TEXT NOT NULL,
                    check_in_time TEXT NOT NULL,
                    check_in_date TEXT NOT NULL,  -- YYYY-MM-DD for daily queries
                    FOREIGN KEY (task_id) REFERENCES tasks(task_id) ON DELETE CASCADE,
                    UNIQUE (member_id, task_id, column_id, check_in_date)
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_project ON tasks(project_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_column ON tasks(column_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_assignments_task ON task_assignments(task_id, position)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_activity_date ON activity_logs(check_in_date)")
            conn.commit()

    # ── Projects ─────────────────────────────────────────────────────────

    def save_project(self, project: Project) -> Project:
        """Insert or update a project and replace its team assignments."""
        data = project.to_dict()
        row = (
            data["title"],
            data["type"],
            data["status"],
            data["event_team_name"],
            data["brief"],
            data["event_start_date"],
            data["event_end_date"],
            data["background_url"],
            json.dumps(data["asset_links"]),
            data["updated_at"],
        )
        with _connect(self.db_path) as conn:
            cur = conn.execute("""
                UPDATE projects SET
                    title = ?, project_type = ?, status = ?, event_team_name = ?, brief = ?,
                    event_start_date = ?, event_end_date = ?, background_url = ?,
                    asset_links = ?, updated_at = ?
                WHERE project_id = ?
            """, row + (project.project_id,))
            if cur.rowcount == 0:
                conn.execute("""
                    INSERT INTO projects
                    (title, project_type, status, event_team_name, brief,
                     event_start_date, event_end_date, background_url,
                     asset_links, updated_at, project_id, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, row + (project.project_id, data["created_at"]))

            conn.execute("DELETE FROM project_teams WHERE project_id = ?", (project.project_id,))
            conn.executemany(
                "INSERT INTO project_teams (project_id, team_id, role, position) VALUES (?,?,?,?)",
                [
                    (project.project_id, team_id, division.value, pos)
                    for division in Division
                    for pos, team_id in enumerate(project.team_ids(division))
                ],
            )
            conn.commit()
        return project

    def load_project(self, project_id: str) -> Optional[Project]:
        try:
            with _connect(self.db_path) as conn:
                row = conn.execute(
                    "SELECT * FROM projects WHERE project_id = ?", (project_id,)
                ).fetchone()
                if not row:
                    return None
                return self._hydrate_project(conn, row)
        except sqlite3.Error as e:
            logger.error(f"Error loading project {project_id}: {e}")
            return None

    def get_project(self, project_id: str) -> Project:
        """Like load_project() but raises ProjectNotFound."""
        project = self.load_project(project_id)
        if project is None:
            raise ProjectNotFound(f"Project {project_id!r} not found")
        return project

    def list_projects(self) -> List[Project]:
        """All projects, latest event first."""
        try:
            with _connect(self.db_path) as conn:
                rows = conn.execute(
                    "SELECT * FROM projects ORDER BY event_start_date DESC"
                ).fetchall()
                return [self._hydrate_project(conn, row) for row in rows]
        except sqlite3.Error as e:
            logger.error(f"Error listing projects: {e}")
            return []

    def delete_project(self, project_id: str) -> bool:
        """Delete a project; its teams, tasks and their check-ins cascade."""
        with _connect(self.db_path) as conn:
            cur = conn.execute("DELETE FROM projects WHERE project_id = ?", (project_id,))
            conn.commit()
            return cur.rowcount > 0

    def next_project_id(self) -> str:
        with _connect(self.db_path) as conn:
            rows = conn.execute("SELECT project_id FROM projects WHERE project_id LIKE 'PRJ-%'").fetchall()
        highest = 0
        for row in rows:
            try:
                highest = max(highest, int(row[0].split("-")[1]))
            except (IndexError, ValueError):
                continue
        return f"PRJ-{highest + 1:03d}"

    def _hydrate_project(self, conn: sqlite3.Connection, row: sqlite3.Row) -> Project:
        data: Dict[str, Any] = dict(row)
        data["type"] = data.pop("project_type")
        teams: Dict[str, List[str]] = {}
        for r in conn.execute(
            "SELECT team_id, role FROM project_teams WHERE project_id = ? ORDER BY position ASC",
            (data["project_id"],)
        ):
            teams.setdefault(r["role"], []).append(r["team_id"])
        data["teams"] = teams
        return Project.from_dict(data)

    # ── Tasks ────────────────────────────────────────────────────────────

    def save_task(self, task: Task) -> Task:
        """Insert or update ``task`` and return it with its new version.

        A task with version 0 is inserted; otherwise the stored row must
        still be at ``task.version``. Pending column transitions are flushed
        to column_history in the same transaction.
        """
        data = task.to_dict()
        new_version = task.version + 1
        row = (
            data["project_id"],
            data["title"],
            data["description"],
            data["category"],
            data["column"],
            data["points"],
            data["deadline"],
            data["image_url"],
            data["graphic_link"],
            data["animation_link"],
            data["music_link"],
            new_version,
            data["updated_at"],
        )

        with _connect(self.db_path) as conn:
            if not conn.execute(
                "SELECT 1 FROM projects WHERE project_id = ?", (task.project_id,)
            ).fetchone():
                raise ProjectNotFound(f"Project {task.project_id!r} not found")

            if task.version == 0:
                try:
                    conn.execute("""
                        INSERT INTO tasks
                        (project_id, title, description, category, column_id, points,
                         deadline, image_url, graphic_link, animation_link, music_link,
                         version, updated_at, task_id, created_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """, row + (task.task_id, data["created_at"]))
                except sqlite3.IntegrityError:
                    raise StaleTask(f"Task {task.task_id} already exists") from None
            else:
                cur = conn.execute("""
                    UPDATE tasks SET
                        project_id = ?, title = ?, description = ?, category = ?,
                        column_id = ?, points = ?, deadline = ?, image_url = ?,
                        graphic_link = ?, animation_link = ?, music_link = ?,
                        version = ?, updated_at = ?
                    WHERE task_id = ? AND version = ?
                """, row + (task.task_id, task.version))
                if cur.rowcount == 0:
                    conn.rollback()
                    raise StaleTask(
                        f"Task {task.task_id} changed since version {task.version}; reload and retry"
                    )

            conn.execute("DELETE FROM task_assignments WHERE task_id = ?", (task.task_id,))
            conn.executemany(
                "INSERT INTO task_assignments (task_id, member_id, division, percentage, position) VALUES (?,?,?,?,?)",
                [
                    (task.task_id, a.member_id, a.division.value, a.percentage, pos)
                    for pos, a in enumerate(task.assignments)
                ],
            )
            for t in task._pending_transitions:
                conn.execute(
                    "INSERT INTO column_history (task_id, from_column, to_column, reason, actor, timestamp) VALUES (?,?,?,?,?,?)",
                    (task.task_id, t.from_column.value, t.to_column.value,
                     t.reason, t.actor, t.timestamp)
                )
            conn.commit()

        return task.copy(version=new_version, _pending_transitions=[])

    def load_task(self, task_id: str) -> Optional[Task]:
        """Retrieve a task by ID with its assignments and column history."""
        try:
            with _connect(self.db_path) as conn:
                row = conn.execute(
                    "SELECT * FROM tasks WHERE task_id = ?", (task_id,)
                ).fetchone()
                if not row:
                    return None
                return self._hydrate(conn, row, with_history=True)
        except sqlite3.Error as e:
            logger.error(f"Error loading task {task_id}: {e}")
            return None

    def get_task(self, task_id: str) -> Task:
        """Like load_task() but raises TaskNotFound."""
        task = self.load_task(task_id)
        if task is None:
            raise TaskNotFound(f"Task {task_id} not found")
        return task

    def delete_task(self, task_id: str) -> bool:
        """Delete a task; assignments, history and check-ins cascade."""
        with _connect(self.db_path) as conn:
            cur = conn.execute("DELETE FROM tasks WHERE task_id = ?", (task_id,))
            conn.commit()
            return cur.rowcount > 0

    def list_by_project(self, project_id: str, limit: int = 500) -> List[Task]:
        return self._list("WHERE project_id = ? ORDER BY created_at ASC LIMIT ?", (project_id, limit))

    def list_by_column(self, column: Column, limit: int = 500) -> List[Task]:
        return self._list("WHERE column_id = ? ORDER BY updated_at DESC LIMIT ?", (column.value, limit))

    def list_all(self, limit: int = 1000) -> List[Task]:
        """List all tasks (oldest first, board order)."""
        return self._list("ORDER BY created_at ASC LIMIT ?", (limit,))

    def task_counts(self) -> Dict[str, int]:
        """Project id -> task count."""
        counts = {}
        try:
            with _connect(self.db_path) as conn:
                for row in conn.execute("SELECT project_id, COUNT(*) FROM tasks GROUP BY project_id"):
                    counts[row[0]] = row[1]
        except sqlite3.Error as e:
            logger.error(f"Error counting tasks: {e}")
        return counts

    def next_task_id(self) -> str:
        """Generate the next task ID from the highest stored number. Single-writer safe."""
        with _connect(self.db_path) as conn:
            rows = conn.execute("SELECT task_id FROM tasks WHERE task_id LIKE 'TASK-%'").fetchall()
        highest = 0
        for row in rows:
            try:
                highest = max(highest, int(row[0].split("-")[1]))
            except (IndexError, ValueError):
                continue
        return f"TASK-{highest + 1:03d}"

    def _list(self, clause: str, params: tuple) -> List[Task]:
        try:
            with _connect(self.db_path) as conn:
                rows = conn.execute(f"SELECT * FROM tasks {clause}", params).fetchall()
                return [self._hydrate(conn, row) for row in rows]
        except sqlite3.Error as e:
            logger.error(f"Error listing tasks: {e}")
            return []

    def _hydrate(self, conn: sqlite3.Connection, row: sqlite3.Row, with_history: bool = False) -> Task:
        """Convert a tasks row plus its child rows into a Task."""
        data: Dict[str, Any] = dict(row)
        data["column"] = data.pop("column_id")
        data["assignments"] = [
            dict(r) for r in conn.execute(
                "SELECT member_id, division, percentage FROM task_assignments WHERE task_id = ? ORDER BY position ASC",
                (data["task_id"],)
            )
        ]
        if with_history:
            data["column_history"] = [
                dict(r) for r in conn.execute(
                    "SELECT from_column, to_column, reason, actor, timestamp FROM column_history WHERE task_id = ? ORDER BY id ASC",
                    (data["task_id"],)
                )
            ]
        return Task.from_dict(data)

    # ── Activity log ─────────────────────────────────────────────────────

    def add_check_in(self, entry: ActivityLogEntry) -> bool:
        """Record a check-in. False if the member already checked in to this
        task in this column on the same day."""
        data = entry.to_dict()
        with _connect(self.db_path) as conn:
            try:
                conn.execute("""
                    INSERT INTO activity_logs
                    (member_id, division, project_id, task_id, category, column_id, check_in_time, check_in_date)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    data["member_id"], data["division"], data["project_id"], data["task_id"],
                    data["category"], data["column"], data["check_in_time"], data["check_in_date"],
                ))
            except sqlite3.IntegrityError:
                return False
            conn.commit()
        return True

    def list_check_ins(
        self,
        date: Optional[str] = None,
        member_id: Optional[str] = None,
        task_id: Optional[str] = None,
        limit: int = 1000,
    ) -> List[ActivityLogEntry]:
        """Check-ins, most recent first, optionally filtered."""
        where, params = [], []
        if date:
            where.append("check_in_date = ?")
            params.append(date)
        if member_id:
            where.append("member_id = ?")
            params.append(member_id)
        if task_id:
            where.append("task_id = ?")
            params.append(task_id)
        clause = f"WHERE {' AND '.join(where)}" if where else ""
        params.append(limit)
        try:
            with _connect(self.db_path) as conn:
                rows = conn.execute(
                    f"SELECT * FROM activity_logs {clause} ORDER BY check_in_time DESC LIMIT ?",
                    params,
                ).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Error listing check-ins: {e}")
            return []

        entries = []
        for row in rows:
            data = dict(row)
            data["column"] = data.pop("column_id")
            entries.append(ActivityLogEntry.from_dict(data))
        return entries

    def delete_check_ins(self, task_id: str, member_id: Optional[str] = None) -> int:
        """Remove a task's check-ins, or only one member's."""
        with _connect(self.db_path) as conn:
            if member_id:
                cur = conn.execute(
                    "DELETE FROM activity_logs WHERE task_id = ? AND member_id = ?",
                    (task_id, member_id),
                )
            else:
                cur = conn.execute("DELETE FROM activity_logs WHERE task_id = ?", (task_id,))
            conn.commit()
            return cur.rowcount
