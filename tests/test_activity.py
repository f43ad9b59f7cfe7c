"""Tests for daily check-ins."""
from datetime import datetime, timezone

import pytest

from pkg.oneflow.schema import Column, Division, TODO_COLUMNS
from pkg.oneflow.activity import CheckInNotAllowed, can_check_in, make_check_in, daily_summary
from pkg.oneflow.ledger import new_task


def at(day, hour=9):
    return datetime(2026, 10, day, hour, 0, tzinfo=timezone.utc)


def test_todo_columns_refuse_check_in():
    task = new_task("TASK-001", "Clip", "CLIP", project_id="expo", members=[("gesty", "graphic")])
    for column in TODO_COLUMNS:
        started = task.copy(column=column)
        assert not can_check_in(started)
        with pytest.raises(CheckInNotAllowed):
            make_check_in(started, "gesty")


def test_unassigned_member_cannot_check_in():
    task = new_task(
        "TASK-001", "Clip", "CLIP", project_id="expo", members=[("gesty", "graphic")],
    ).copy(column=Column.WIP_GRAPHICS)
    with pytest.raises(CheckInNotAllowed, match="not assigned"):
        make_check_in(task, "wisnu")
    assert make_check_in(task, "gesty").member_id == "gesty"


def test_check_in_copies_task_context():
    task = new_task(
        "TASK-001", "Clip", "CLIP", project_id="expo",
        members=[("gesty", "graphic"), ("imam", "motion")],
    ).copy(column=Column.WIP_MOTION)
    entry = make_check_in(task, "imam", now=at(19, 14))
    assert entry.project_id == "expo"
    assert entry.division == Division.MOTION
    assert entry.column == Column.WIP_MOTION
    assert entry.check_in_date == "2026-10-19"
    assert entry.to_dict()["category"] == "CLIP"


def test_daily_summary_groups_newest_first():
    task = new_task(
        "TASK-001", "Clip", "CLIP", members=[("gesty", "graphic"), ("wisnu", "graphic")],
    ).copy(column=Column.WIP_GRAPHICS)
    entries = [
        make_check_in(task, "gesty", now=at(18)),
        make_check_in(task, "gesty", now=at(19)),
        make_check_in(task, "wisnu", now=at(19, 11)),
    ]
    summary = daily_summary(entries)
    assert list(summary) == ["2026-10-19", "2026-10-18"]
    assert sorted(summary["2026-10-19"]) == ["gesty", "wisnu"]
    assert len(summary["2026-10-18"]["gesty"]) == 1
