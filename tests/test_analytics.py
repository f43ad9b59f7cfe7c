"""Tests for member / category / project analytics."""
import pytest

from pkg.oneflow.schema import CategoryGroup, Column, Division, TaskCategory
from pkg.oneflow.analytics import (
    analytics_report,
    category_stats,
    division_points,
    member_stats,
    project_summary,
)
from pkg.oneflow.ledger import new_task, set_percentage


@pytest.fixture
def tasks():
    clip = new_task("TASK-001", "Clip", "CLIP",
                    members=[("gesty", "graphic"), ("wisnu", "graphic"), ("imam", "motion")])
    clip = clip.copy(column=Column.FINAL)
    brand = new_task("TASK-002", "Brand", "BRANDING", members=[("gesty", "graphic")])
    brand = brand.copy(column=Column.WIP_GRAPHICS)
    bumper = new_task("TASK-003", "Bumper", "BUMPER", members=[("ezza", "music")])
    return [clip, brand, bumper]


def test_member_stats_ranked_by_points(tasks):
    stats = member_stats(tasks)
    assert [s.member_id for s in stats] == ["gesty", "imam", "wisnu", "ezza"]
    gesty = stats[0]
    assert gesty.points == pytest.approx(30.0)
    assert gesty.tasks_assigned == 2
    assert gesty.by_category[TaskCategory.BRANDING]["points"] == pytest.approx(20.0)


def test_member_stats_division_filter(tasks):
    stats = member_stats(tasks, division=Division.MOTION)
    assert [s.member_id for s in stats] == ["imam"]
    assert stats[0].points == pytest.approx(20.0)


def test_member_stats_uses_roster_division(tasks):
    roster = {"gesty": Division.MOTION}
    assert [s.member_id for s in member_stats(tasks, Division.MOTION, roster)] == ["gesty", "imam"]


def test_manual_split_changes_points(tasks):
    clip = set_percentage(set_percentage(tasks[0], "gesty", 80), "wisnu", 20)
    stats = {s.member_id: s.points for s in member_stats([clip])}
    assert stats["gesty"] == pytest.approx(16.0)
    assert stats["wisnu"] == pytest.approx(4.0)


def test_category_stats(tasks):
    stats = category_stats(tasks)
    assert set(stats) == set(CategoryGroup)
    assert stats[CategoryGroup.GRAPHIC_MOTION][TaskCategory.CLIP] == {
        "total": 1, "completed": 1, "in_progress": 0,
    }
    assert stats[CategoryGroup.GRAPHIC_ONLY][TaskCategory.BRANDING]["in_progress"] == 1
    assert stats[CategoryGroup.GRAPHIC_MOTION][TaskCategory.BUMPER]["in_progress"] == 0
    assert stats[CategoryGroup.DECOR][TaskCategory.PRINTED_DECORATION]["total"] == 0


def test_division_points(tasks):
    totals = division_points(tasks)
    assert totals[Division.GRAPHIC] == pytest.approx(40.0)
    assert totals[Division.MOTION] == pytest.approx(20.0)
    assert totals[Division.MUSIC] == pytest.approx(5.0)


def test_project_summary(tasks):
    summary = project_summary(tasks)
    assert summary["total_tasks"] == 3
    assert summary["completed_tasks"] == 1
    assert summary["in_progress_tasks"] == 1
    assert summary["total_points"] == 45
    assert summary["completion_rate"] == pytest.approx(33.3)
    assert project_summary([])["completion_rate"] == 0.0


def test_report_is_json_ready(tasks):
    report = analytics_report(tasks)
    assert report["divisions"] == {"graphic": 40.0, "motion": 20.0, "music": 5.0}
    assert report["members"][0]["member_id"] == "gesty"
    assert report["categories"]["decor"]["CUTTING_MAL_RESIZE"]["total"] == 0
