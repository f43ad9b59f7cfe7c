"""
Column state machine.

request_move() is the single authority on which columns a task may enter;
step() is the left/right stepper and only ever proposes an adjacent column,
so every move it makes is also a legal request_move().
"""
from typing import List, Union

from .schema import (
    FlowError,
    Column,
    Direction,
    COLUMN_ORDER,
    ColumnTransition,
    Task,
    utc_now,
)
from .points import allowed_columns, terminal_column


class CategoryRestriction(FlowError):
    """Raised when a task's category does not allow the requested column."""
    pass


class UnknownColumn(FlowError):
    """Raised for a column id or direction outside the fixed board."""
    pass


def parse_column(value: Union[str, Column]) -> Column:
    if isinstance(value, Column):
        return value
    try:
        return Column(str(value).strip().lower())
    except ValueError:
        raise UnknownColumn(f"Unknown column: {value!r}") from None


def parse_direction(value: Union[str, Direction]) -> Direction:
    if isinstance(value, Direction):
        return value
    try:
        return Direction(str(value).strip().lower())
    except ValueError:
        raise UnknownColumn(f"Unknown direction: {value!r} (use 'left' or 'right')") from None


def can_move(task: Task, destination: Column) -> bool:
    return destination in allowed_columns(task.category)


def legal_destinations(task: Task) -> List[Column]:
    return [c for c in allowed_columns(task.category) if c != task.column]


def request_move(
    task: Task,
    destination: Union[str, Column],
    reason: str = "",
    actor: str = "",
) -> Task:
    """Move ``task`` to ``destination`` and return the moved copy.

    Any allowed column may be targeted, not only neighbours (drag and drop).
    Raises CategoryRestriction when graphic-only or decor tasks target a
    motion column or FINAL; ``task`` is left untouched.
    """
    destination = parse_column(destination)

    if not can_move(task, destination):
        last = terminal_column(task.category)
        raise CategoryRestriction(
            f"{task.category.value} tasks cannot move past '{last.title}' "
            f"(requested '{destination.title}')"
        )

    if destination == task.column:
        return task

    moved = task.copy(column=destination, updated_at=utc_now())
    t = ColumnTransition(
        from_column=task.column,
        to_column=destination,
        reason=reason or None,
        actor=actor or None,
    )
    moved._pending_transitions.append(t)
    moved.column_history.append(t.to_dict())
    return moved


def step(task: Task, direction: Union[str, Direction], actor: str = "") -> Task:
    """Nudge ``task`` one column left or right.

    At either end of the board this is a no-op. Stepping a graphic-only task
    right from DONE (Graphics) raises CategoryRestriction.
    """
    direction = parse_direction(direction)
    current = task.column.index
    delta = -1 if direction == Direction.LEFT else 1
    new_index = max(0, min(len(COLUMN_ORDER) - 1, current + delta))

    if new_index == current:
        return task

    return request_move(
        task,
        COLUMN_ORDER[new_index],
        reason=f"Stepped {direction.value}",
        actor=actor,
    )
