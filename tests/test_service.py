"""
Tests for FlowService: persistence of board operations, version checks,
roster enforcement, projects and event notifications.
"""
import logging

import pytest

from pkg.oneflow.schema import Column, Division, ProjectStatus, ProjectType, TaskCategory
from pkg.oneflow.board import CategoryRestriction
from pkg.oneflow.ledger import DuplicateMember, IneligibleDivision, InvalidDistribution
from pkg.oneflow.projects import InvalidProject
from pkg.oneflow.store import ProjectNotFound, StaleTask, TaskNotFound
from pkg.oneflow.activity import CheckInNotAllowed


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# projects
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_create_project(service):
    project = service.create_project(
        "Launch", "pitching", "2027-01-10", "2027-01-11",
        brief="Stage visuals", teams={"graphic": ["visual"]},
    )
    assert project.project_id == "PRJ-001"
    assert project.project_type == ProjectType.PITCHING
    assert service.store.get_project("PRJ-001").brief == "Stage visuals"
    assert service.create_project("Next", "Project", "2027-02-01", "2027-02-01").project_id == "PRJ-002"


def test_create_project_rejects_duplicate_id(service):
    with pytest.raises(InvalidProject, match="already exists"):
        service.create_project("Again", "Project", "2027-01-10", "2027-01-10", project_id="expo")
    assert service.store.get_project("expo").title == "Jakarta Expo"


def test_project_teams_checked_against_config(roster_service):
    roster_service.create_project(
        "Launch", "Project", "2027-01-10", "2027-01-10",
        teams={"graphic": ["visual"], "motion": ["animators"]},
    )
    with pytest.raises(InvalidProject, match="Unknown team"):
        roster_service.create_project("X", "Project", "2027-01-10", "2027-01-10", teams={"music": ["choir"]})
    with pytest.raises(InvalidProject, match="cannot take the graphic role"):
        roster_service.update_project("expo", teams={"graphic": ["sound"]})
    assert roster_service.store.get_project("expo").team_ids(Division.GRAPHIC) == []


def test_update_and_archive_project(service):
    events = []
    for name in ("project_updated", "project_archived"):
        service.subscribe(name, lambda _name=name, **kw: events.append(_name))

    updated = service.update_project("expo", title="Expo 2026", brief="Hall B")
    assert updated.title == "Expo 2026"
    assert service.update_project("expo", title=None).title == "Expo 2026"

    archived = service.archive_project("expo")
    assert archived.status == ProjectStatus.ARCHIVED
    assert service.archive_project("expo").status == ProjectStatus.ARCHIVED
    assert events == ["project_updated", "project_archived"]

    with pytest.raises(ProjectNotFound):
        service.update_project("nowhere", title="X")


def test_project_filters(service):
    assert [p.project_id for p in service.projects()] == ["gala", "expo"]
    service.archive_project("gala")
    assert [p.project_id for p in service.projects(status="active")] == ["expo"]
    assert [p.project_id for p in service.projects(year=2026, month=12)] == ["gala"]
    assert [p.project_id for p in service.projects(year=2026)] == ["gala", "expo"]


def test_delete_project_removes_tasks(service):
    task = service.create_task("expo", "Clip", "CLIP")
    service.create_task("gala", "Bumper", "BUMPER")
    service.delete_project("expo")

    assert service.store.load_task(task.task_id) is None
    assert [t.project_id for t in service.tasks()] == ["gala"]
    with pytest.raises(ProjectNotFound):
        service.delete_project("expo")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# create
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_create_with_members(service):
    task = service.create_task(
        "expo", "Opening clip", "clip",
        members=[("gesty", "graphic"), ("wisnu", "graphic"), ("imam", "motion")],
    )
    assert task.task_id == "TASK-001"
    assert task.version == 1
    assert task.project_id == "expo"
    assert task.column == Column.TODO_GRAPHICS
    assert task.points == 20
    assert [a.percentage for a in task.members_in(Division.GRAPHIC)] == [50, 50]

    assert service.store.get_task("TASK-001").title == "Opening clip"
    assert service.create_task("expo", "Second", "BUMPER").task_id == "TASK-002"


def test_create_needs_existing_project(service):
    with pytest.raises(ProjectNotFound):
        service.create_task("nowhere", "Clip", "CLIP")
    assert service.tasks() == []


def test_archived_project_still_takes_tasks(service):
    service.archive_project("expo")
    assert service.create_task("expo", "Late clip", "CLIP").project_id == "expo"


def test_create_with_explicit_assignments(service):
    task = service.create_task("expo", "Clip", "CLIP", assignments=[
        ("gesty", Division.GRAPHIC, 70), ("wisnu", Division.GRAPHIC, 30),
    ])
    assert [a.percentage for a in task.assignments] == [70, 30]


def test_create_rejects_bad_totals(service):
    with pytest.raises(InvalidDistribution):
        service.create_task("expo", "Clip", "CLIP", assignments=[("gesty", Division.GRAPHIC, 70)])
    assert service.tasks() == []


def test_create_rejects_ineligible_division(service):
    with pytest.raises(IneligibleDivision):
        service.create_task("expo", "Brand", "BRANDING", members=[("imam", "motion")])
    assert service.tasks() == []


def test_create_rejects_repeated_member(service):
    with pytest.raises(DuplicateMember):
        service.create_task("expo", "Clip", "CLIP", members=[("gesty", "graphic"), ("gesty", "graphic")])
    assert service.tasks() == []


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# moves
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_move_persists_with_history(service):
    task = service.create_task("expo", "Clip", "CLIP")
    moved = service.move_task(task.task_id, "qc-graphics", actor="gesty")
    assert moved.version == 2

    stored = service.store.get_task(task.task_id)
    assert stored.column == Column.QC_GRAPHICS
    assert stored.column_history[0]["actor"] == "gesty"


def test_restricted_move_leaves_store_untouched(service):
    task = service.create_task("expo", "Brand", "BRANDING")
    service.move_task(task.task_id, Column.DONE_GRAPHICS)
    with pytest.raises(CategoryRestriction):
        service.step_task(task.task_id, "right")
    stored = service.store.get_task(task.task_id)
    assert stored.column == Column.DONE_GRAPHICS
    assert stored.version == 2


def test_noop_move_does_not_save(service):
    task = service.create_task("expo", "Clip", "CLIP")
    same = service.step_task(task.task_id, "left")
    assert same.version == 1
    assert service.move_task(task.task_id, "todo-graphics").version == 1


def test_expected_version_mismatch(service):
    task = service.create_task("expo", "Clip", "CLIP", members=[("gesty", "graphic")])
    service.move_task(task.task_id, "wip-graphics", expected_version=1)
    with pytest.raises(StaleTask):
        service.set_percentage(task.task_id, "gesty", 80, expected_version=1)
    assert service.store.get_task(task.task_id).assignments[0].percentage == 100


def test_missing_task(service):
    with pytest.raises(TaskNotFound):
        service.move_task("TASK-999", "final")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# assignments
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_toggle_and_validate(service):
    task = service.create_task("expo", "Clip", "CLIP")
    for m in ("gesty", "wisnu", "reza"):
        task = service.toggle_member(task.task_id, m, "graphic")
    assert [a.percentage for a in task.assignments] == [34, 33, 33]

    task = service.set_percentage(task.task_id, "gesty", 50)
    report = service.validate(task.task_id)
    assert not report.is_valid
    assert report.invalid_divisions == [Division.GRAPHIC]


def test_set_percentage_non_finite(service):
    task = service.create_task("expo", "Clip", "CLIP", members=[("gesty", "graphic"), ("wisnu", "graphic")])
    assert service.set_percentage(task.task_id, "gesty", float("inf")).assignments[0].percentage == 100
    assert service.set_percentage(task.task_id, "gesty", float("nan")).assignments[0].percentage == 0
    assert service.set_percentage(task.task_id, "wisnu", 10 ** 400).assignments[1].percentage == 100
    assert service.store.get_task(task.task_id).version == 4


def test_commit_assignments_requires_valid_totals(service):
    task = service.create_task("expo", "Clip", "CLIP", members=[("gesty", "graphic")])
    with pytest.raises(InvalidDistribution):
        service.commit_assignments(task.task_id, [("gesty", Division.GRAPHIC, 90)])

    task = service.commit_assignments(task.task_id, [
        ("gesty", Division.GRAPHIC, 60), ("wisnu", Division.GRAPHIC, 40), ("ezza", Division.MUSIC, 100),
    ])
    assert service.validate(task.task_id).is_valid
    assert len(service.store.get_task(task.task_id).assignments) == 3


def test_roster_supplies_division(roster_service):
    task = roster_service.create_task("expo", "Clip", "CLIP")
    task = roster_service.toggle_member(task.task_id, "imam")
    assert task.assignments[0].division == Division.MOTION


def test_roster_accepts_matching_division(roster_service):
    task = roster_service.create_task("expo", "Clip", "CLIP")
    task = roster_service.toggle_member(task.task_id, "imam", "motion")
    assert task.assignments[0].division == Division.MOTION


def test_roster_rejects_wrong_division(roster_service):
    task = roster_service.create_task("expo", "Clip", "CLIP")
    with pytest.raises(IneligibleDivision):
        roster_service.toggle_member(task.task_id, "imam", "graphic")
    with pytest.raises(IneligibleDivision):
        roster_service.toggle_member(task.task_id, "stranger", "graphic")
    with pytest.raises(IneligibleDivision):
        roster_service.create_task("expo", "Clip", "CLIP", members=[("ezza", "motion")])
    with pytest.raises(IneligibleDivision):
        roster_service.commit_assignments(task.task_id, [("ezza", Division.GRAPHIC, 100)])
    assert roster_service.store.get_task(task.task_id).assignments == []


def test_toggle_without_division_or_roster(service):
    task = service.create_task("expo", "Clip", "CLIP")
    with pytest.raises(IneligibleDivision):
        service.toggle_member(task.task_id, "gesty")


def test_change_category(service):
    task = service.create_task("expo", "Clip", "CLIP", members=[("gesty", "graphic"), ("imam", "motion")])
    changed = service.change_category(task.task_id, "BRANDING")
    assert changed.category == TaskCategory.BRANDING
    assert changed.points == 20
    assert changed.assignments == []

    service.create_task("expo", "Bumper", "BUMPER")
    service.move_task("TASK-002", "wip-motion")
    with pytest.raises(CategoryRestriction):
        service.change_category("TASK-002", "DIGITAL_MEDIA")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# check-ins, delete, events
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_check_in(roster_service):
    task = roster_service.create_task("expo", "Clip", "CLIP", members=[("gesty", "graphic")])
    with pytest.raises(CheckInNotAllowed):
        roster_service.check_in(task.task_id, "gesty")

    roster_service.move_task(task.task_id, "wip-graphics")
    assert roster_service.check_in(task.task_id, "gesty")
    assert not roster_service.check_in(task.task_id, "gesty")

    entries = roster_service.store.list_check_ins(task_id=task.task_id)
    assert len(entries) == 1
    assert entries[0].division == Division.GRAPHIC
    assert entries[0].project_id == "expo"


def test_unassigned_member_cannot_check_in(roster_service):
    task = roster_service.create_task("expo", "Clip", "CLIP", members=[("gesty", "graphic")])
    roster_service.move_task(task.task_id, "wip-graphics")
    with pytest.raises(CheckInNotAllowed, match="not assigned"):
        roster_service.check_in(task.task_id, "wisnu")
    with pytest.raises(CheckInNotAllowed):
        roster_service.check_in(task.task_id, "stranger")
    assert roster_service.store.list_check_ins() == []


def test_check_in_uses_task_role(service):
    task = service.create_task("expo", "Clip", "CLIP", members=[("imam", "motion")])
    service.move_task(task.task_id, "wip-motion")
    assert service.check_in(task.task_id, "imam")
    assert service.store.list_check_ins()[0].division == Division.MOTION


def test_delete_removes_check_ins(roster_service):
    task = roster_service.create_task("expo", "Clip", "CLIP", members=[("gesty", "graphic")])
    roster_service.move_task(task.task_id, "wip-graphics")
    roster_service.check_in(task.task_id, "gesty")

    roster_service.delete_task(task.task_id)
    assert roster_service.store.load_task(task.task_id) is None
    assert roster_service.store.list_check_ins() == []
    with pytest.raises(TaskNotFound):
        roster_service.delete_task(task.task_id)


def test_events(service):
    events = []
    for name in ("task_created", "task_moved", "assignments_changed", "category_changed", "task_deleted"):
        service.subscribe(name, lambda _name=name, **kw: events.append(_name))

    task = service.create_task("expo", "Clip", "CLIP")
    service.step_task(task.task_id, "right")
    service.step_task(task.task_id, "left")
    service.step_task(task.task_id, "left")  # no-op, no event
    service.toggle_member(task.task_id, "gesty", "graphic")
    service.change_category(task.task_id, "BUMPER")
    service.delete_task(task.task_id)

    assert events == [
        "task_created", "task_moved", "task_moved",
        "assignments_changed", "category_changed", "task_deleted",
    ]


def test_failing_subscriber_is_logged(service, caplog):
    def broken(**kwargs):
        raise RuntimeError("boom")

    service.subscribe("task_created", broken)
    with caplog.at_level(logging.ERROR):
        task = service.create_task("expo", "Clip", "CLIP")
    assert task.version == 1
    assert "boom" in caplog.text
