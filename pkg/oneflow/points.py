"""
Task classification and point resolver.

Pure lookups keyed on TaskCategory: point value, category group, which
divisions may be assigned, and where the category's pipeline ends.
"""
from typing import Dict, FrozenSet, List, Union

from .schema import (
    FlowError,
    TaskCategory,
    CategoryGroup,
    Division,
    Column,
    COLUMN_ORDER,
    MOTION_COLUMNS,
    TODO_COLUMNS,
    Task,
)


class UnknownCategory(FlowError):
    """Raised when a category is outside the fixed enumeration."""
    pass


POINTS: Dict[TaskCategory, int] = {
    # Graphic-Motion
    TaskCategory.CLIP: 20,
    TaskCategory.PRESENTATION: 10,
    TaskCategory.BUMPER: 5,
    TaskCategory.BACKGROUND: 2,
    TaskCategory.MINOR_ITEMS_ANIMATION: 1,
    # Graphic Only
    TaskCategory.BRANDING: 20,
    TaskCategory.ADVERTISING: 10,
    TaskCategory.MICROSITE_UI_DESIGN: 5,
    TaskCategory.DIGITAL_MEDIA: 2,
    TaskCategory.PRINTED_MEDIA_MINOR_DESIGN: 1,
    # Decor
    TaskCategory.PRINTED_INFORMATION: 10,
    TaskCategory.PRINTED_DECORATION: 4,
    TaskCategory.CUTTING_MAL_RESIZE: 1,
}

GROUPS: Dict[TaskCategory, CategoryGroup] = {
    TaskCategory.CLIP: CategoryGroup.GRAPHIC_MOTION,
    TaskCategory.PRESENTATION: CategoryGroup.GRAPHIC_MOTION,
    TaskCategory.BUMPER: CategoryGroup.GRAPHIC_MOTION,
    TaskCategory.BACKGROUND: CategoryGroup.GRAPHIC_MOTION,
    TaskCategory.MINOR_ITEMS_ANIMATION: CategoryGroup.GRAPHIC_MOTION,
    TaskCategory.BRANDING: CategoryGroup.GRAPHIC_ONLY,
    TaskCategory.ADVERTISING: CategoryGroup.GRAPHIC_ONLY,
    TaskCategory.MICROSITE_UI_DESIGN: CategoryGroup.GRAPHIC_ONLY,
    TaskCategory.DIGITAL_MEDIA: CategoryGroup.GRAPHIC_ONLY,
    TaskCategory.PRINTED_MEDIA_MINOR_DESIGN: CategoryGroup.GRAPHIC_ONLY,
    TaskCategory.PRINTED_INFORMATION: CategoryGroup.DECOR,
    TaskCategory.PRINTED_DECORATION: CategoryGroup.DECOR,
    TaskCategory.CUTTING_MAL_RESIZE: CategoryGroup.DECOR,
}

ALL_DIVISIONS: FrozenSet[Division] = frozenset(Division)
GRAPHIC_ONLY: FrozenSet[Division] = frozenset({Division.GRAPHIC})


def parse_category(value: Union[str, TaskCategory]) -> TaskCategory:
    """Accept an enum member or its name in any case."""
    if isinstance(value, TaskCategory):
        return value
    try:
        return TaskCategory[str(value).strip().upper()]
    except KeyError:
        raise UnknownCategory(f"Unknown task category: {value!r}") from None


def _check(category) -> TaskCategory:
    if not isinstance(category, TaskCategory):
        raise UnknownCategory(f"Unknown task category: {category!r}")
    return category


def points_for(category: TaskCategory) -> int:
    return POINTS[_check(category)]


def category_group(category: TaskCategory) -> CategoryGroup:
    return GROUPS[_check(category)]


def eligible_divisions(category: TaskCategory) -> FrozenSet[Division]:
    """Graphic-motion tasks take all three divisions; the rest only graphic."""
    if category_group(category) == CategoryGroup.GRAPHIC_MOTION:
        return ALL_DIVISIONS
    return GRAPHIC_ONLY


def terminal_column(category: TaskCategory) -> Column:
    if category_group(category) == CategoryGroup.GRAPHIC_MOTION:
        return Column.FINAL
    return Column.DONE_GRAPHICS


def allowed_columns(category: TaskCategory) -> List[Column]:
    """Columns a task of this category may occupy, in board order."""
    if category_group(category) == CategoryGroup.GRAPHIC_MOTION:
        return list(COLUMN_ORDER)
    return [c for c in COLUMN_ORDER if c not in MOTION_COLUMNS]


def is_completed(task: Task) -> bool:
    return task.column == terminal_column(task.category)


def is_in_progress(task: Task) -> bool:
    return not is_completed(task) and task.column not in TODO_COLUMNS
