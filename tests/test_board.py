"""
Tests for the column state machine: request_move, step, restrictions.
"""
import pytest

from pkg.oneflow.schema import Column, COLUMN_ORDER, MOTION_COLUMNS, TaskCategory, Direction
from pkg.oneflow.board import (
    CategoryRestriction,
    UnknownColumn,
    request_move,
    step,
    can_move,
    legal_destinations,
    parse_column,
    parse_direction,
)
from pkg.oneflow.ledger import new_task
from pkg.oneflow.points import category_group
from pkg.oneflow.schema import CategoryGroup


def make(category="CLIP", column=Column.TODO_GRAPHICS):
    return new_task("TASK-001", "Test", category).copy(column=column)


RESTRICTED = [c for c in TaskCategory if category_group(c) != CategoryGroup.GRAPHIC_MOTION]
UNRESTRICTED = [c for c in TaskCategory if category_group(c) == CategoryGroup.GRAPHIC_MOTION]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# request_move
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_new_task_starts_in_todo_graphics():
    task = new_task("TASK-001", "Test", "BUMPER")
    assert task.column == Column.TODO_GRAPHICS
    assert task.points == 5


def test_arbitrary_jump_allowed():
    """Drag and drop may land on any allowed column, not just neighbours."""
    task = make()
    moved = request_move(task, Column.QC_MOTION)
    assert moved.column == Column.QC_MOTION


def test_request_move_does_not_mutate_input():
    task = make()
    moved = request_move(task, "wip-graphics")
    assert task.column == Column.TODO_GRAPHICS
    assert moved.column == Column.WIP_GRAPHICS
    assert moved is not task


def test_request_move_records_transition():
    task = make()
    moved = request_move(task, Column.WIP_GRAPHICS, reason="Started", actor="gesty")
    assert len(moved.column_history) == 1
    assert moved.column_history[0]["from_column"] == "todo-graphics"
    assert moved.column_history[0]["to_column"] == "wip-graphics"
    assert moved.column_history[0]["actor"] == "gesty"
    assert len(moved._pending_transitions) == 1
    assert task.column_history == []


def test_move_to_same_column_is_noop():
    task = make(column=Column.QC_GRAPHICS)
    assert request_move(task, Column.QC_GRAPHICS) is task


@pytest.mark.parametrize("category", RESTRICTED)
@pytest.mark.parametrize("start", [Column.TODO_GRAPHICS, Column.REVISION_GRAPHICS, Column.DONE_GRAPHICS])
def test_restricted_categories_never_enter_motion(category, start):
    task = make(category, start)
    for destination in MOTION_COLUMNS:
        with pytest.raises(CategoryRestriction):
            request_move(task, destination)
        assert task.column == start


@pytest.mark.parametrize("category", UNRESTRICTED)
def test_graphic_motion_accepts_every_column(category):
    task = make(category)
    for destination in COLUMN_ORDER:
        assert request_move(task, destination).column == destination


def test_scenario_branding_blocked_at_done():
    task = make("BRANDING", Column.DONE_GRAPHICS)
    with pytest.raises(CategoryRestriction) as exc:
        request_move(task, "todo-motion")
    assert "DONE (Graphics)" in str(exc.value)
    assert task.column == Column.DONE_GRAPHICS


def test_unknown_column():
    with pytest.raises(UnknownColumn):
        request_move(make(), "backlog")


def test_can_move_and_legal_destinations():
    decor = make("PRINTED_DECORATION", Column.WIP_GRAPHICS)
    assert can_move(decor, Column.DONE_GRAPHICS)
    assert not can_move(decor, Column.FINAL)
    assert legal_destinations(decor) == [
        Column.TODO_GRAPHICS, Column.QC_GRAPHICS, Column.REVISION_GRAPHICS, Column.DONE_GRAPHICS,
    ]
    assert len(legal_destinations(make())) == 9


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# step
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_scenario_clip_steps_to_final():
    """CLIP from TO DO (Graphics) reaches FINAL in nine steps; one more is a no-op."""
    task = make("CLIP")
    for _ in range(9):
        task = step(task, "right")
    assert task.column == Column.FINAL

    again = step(task, Direction.RIGHT)
    assert again is task
    assert again.column == Column.FINAL


def test_step_walks_board_order():
    task = make("PRESENTATION")
    seen = [task.column]
    while task.column != Column.FINAL:
        task = step(task, "right")
        seen.append(task.column)
    assert seen == COLUMN_ORDER
    assert len(task.column_history) == 9


def test_step_left_at_first_column_is_noop():
    task = make()
    assert step(task, "left") is task
    assert task.column == Column.TODO_GRAPHICS


def test_step_left_moves_back():
    task = make(column=Column.TODO_MOTION)
    assert step(task, "left").column == Column.DONE_GRAPHICS


@pytest.mark.parametrize("category", RESTRICTED)
def test_step_right_past_done_is_rejected(category):
    task = make(category, Column.DONE_GRAPHICS)
    with pytest.raises(CategoryRestriction):
        step(task, "right")
    assert task.column == Column.DONE_GRAPHICS


def test_step_left_from_done_allowed_for_restricted():
    task = make("DIGITAL_MEDIA", Column.DONE_GRAPHICS)
    assert step(task, "left").column == Column.REVISION_GRAPHICS


def test_parse_direction():
    assert parse_direction("LEFT") == Direction.LEFT
    with pytest.raises(UnknownColumn):
        parse_direction("up")


def test_parse_column():
    assert parse_column("FINAL") == Column.FINAL
    assert parse_column(Column.QC_MOTION) is Column.QC_MOTION
