#!/usr/bin/env python3
"""
Quick verification that the OneFlow board works end-to-end.
"""
import tempfile
from pathlib import Path

from pkg.oneflow.store import TaskStore
from pkg.oneflow.service import FlowService
from pkg.oneflow.schema import Division
from pkg.oneflow.board import CategoryRestriction
from pkg.oneflow.analytics import member_stats, project_summary


def main():
    print("=" * 60)
    print("OneFlow Board Verification")
    print("=" * 60)

    db_path = str(Path(tempfile.gettempdir()) / "oneflow_verify.db")
    Path(db_path).unlink(missing_ok=True)

    print("\n[1/5] Creating SQLite store and service...")
    svc = FlowService(TaskStore(db_path))
    project = svc.create_project("Demo event", "Project", "2026-11-02", "2026-11-03", project_id="demo")
    print(f"✅ Store ready, project {project.project_id} ({project.title})")

    print("\n[2/5] Creating a CLIP task with three graphic members...")
    clip = svc.create_task(
        "demo",
        "Opening clip",
        "CLIP",
        members=[("gesty", Division.GRAPHIC), ("wisnu", Division.GRAPHIC), ("reza", Division.GRAPHIC)],
    )
    print(f"✅ {clip.task_id}: {clip.points} pts, split "
          f"{[a.percentage for a in clip.assignments]}")

    print("\n[3/5] Stepping the clip through the whole pipeline...")
    for _ in range(10):
        clip = svc.step_task(clip.task_id, "right")
    print(f"✅ Column: {clip.column.title} after {len(svc.store.load_task(clip.task_id).column_history)} moves")

    print("\n[4/5] Trying to push a BRANDING task into motion...")
    brand = svc.create_task("demo", "Event branding", "BRANDING",
                            members=[("gesty", Division.GRAPHIC)])
    svc.move_task(brand.task_id, "done-graphics")
    try:
        svc.move_task(brand.task_id, "todo-motion")
        print("❌ Restriction did not fire")
        return
    except CategoryRestriction as e:
        print(f"✅ Rejected: {e}")

    print("\n[5/5] Analytics...")
    tasks = svc.tasks("demo")
    print(f"   Summary: {project_summary(tasks)}")
    for s in member_stats(tasks):
        print(f"   {s.member_id:<8} {s.points:6.2f} pts over {s.tasks_assigned} task(s)")

    print("\n" + "=" * 60)
    print("✅ ALL CHECKS PASSED")
    print("=" * 60)
    print(f"Test database: {db_path}")


if __name__ == "__main__":
    main()
