"""
Reconciliation engine: turn drag gestures and move commands into mutation plans.

Every function here is pure. It takes the current board/column/task state
and returns a MutationPlan describing the minimal set of writes. An empty
plan means "nothing changed" and the caller must not write anything.

A move across columns touches two order arrays and the task's column_id;
those requests belong to one plan and are applied together by the store.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Union

from .errors import NotFoundError, ValidationError
from .ordering import insert_item, move_item, reconcile_order, remove_item
from .schema import Board, Column, Task


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Mutation requests
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass(frozen=True)
class SetTaskOrder:
    column_id: str
    task_order: List[str]


@dataclass(frozen=True)
class SetColumnOrder:
    board_id: str
    column_order: List[str]


@dataclass(frozen=True)
class SetTaskColumn:
    task_id: str
    column_id: str


Mutation = Union[SetTaskOrder, SetColumnOrder, SetTaskColumn]


@dataclass(frozen=True)
class WipWarning:
    """A column holds more tasks than its advisory WIP limit."""
    column_id: str
    count: int
    limit: int

    @property
    def message(self) -> str:
        return f"Column {self.column_id} has {self.count} tasks (WIP limit {self.limit})"


@dataclass
class MutationPlan:
    """Writes to apply atomically, plus advisory warnings."""

    mutations: List[Mutation] = field(default_factory=list)
    warnings: List[WipWarning] = field(default_factory=list)

    @property
    def is_noop(self) -> bool:
        return not self.mutations

    def __bool__(self) -> bool:
        return not self.is_noop

    def task_orders(self) -> Dict[str, List[str]]:
        return {m.column_id: m.task_order for m in self.mutations if isinstance(m, SetTaskOrder)}

    def column_orders(self) -> Dict[str, List[str]]:
        return {m.board_id: m.column_order for m in self.mutations if isinstance(m, SetColumnOrder)}


@dataclass(frozen=True)
class WipStatus:
    column_id: str
    count: int
    limit: Optional[int]

    @property
    def over_limit(self) -> bool:
        return self.limit is not None and self.count > self.limit


def wip_status(column: Column, task_count: Optional[int] = None) -> WipStatus:
    """Post-hoc WIP check. Advisory only; never blocks a move."""
    count = len(column.task_order) if task_count is None else task_count
    return WipStatus(column.column_id, count, column.wip_limit)


def _wip_warnings(column: Column, new_order: Sequence[str]) -> List[WipWarning]:
    status = wip_status(column, len(new_order))
    if status.over_limit:
        return [WipWarning(column.column_id, status.count, status.limit)]
    return []


def _current_order(column: Column, members: Optional[Iterable[str]]) -> List[str]:
    """Column order as displayed: reconciled when the real member set is known."""
    if members is None:
        return list(column.task_order)
    return reconcile_order(column.task_order, members)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Operations
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def reorder_within_column(
    column: Column,
    task_id: str,
    target_index: int,
    members: Optional[Iterable[str]] = None,
) -> MutationPlan:
    """Move task_id to target_index inside its own column.

    ``members`` is the set of task ids whose column_id is this column; when
    given, the displayed (reconciled) order is used as the starting point.
    """
    current = _current_order(column, members)
    if task_id not in current:
        raise NotFoundError("task", task_id)
    new_order = move_item(current, task_id, target_index)
    if new_order == current:
        return MutationPlan()
    return MutationPlan([SetTaskOrder(column.column_id, new_order)])


def move_across_column(
    task: Task,
    from_column: Column,
    to_column: Column,
    target_index: Optional[int] = None,
    to_members: Optional[Iterable[str]] = None,
) -> MutationPlan:
    """Move a task into another column of the same board.

    Produces three requests that must be applied together: the source order
    without the task, the destination order with it, and the task's new
    column_id.
    """
    if from_column.column_id == to_column.column_id:
        index = len(from_column.task_order) if target_index is None else target_index
        return reorder_within_column(from_column, task.task_id, index)
    if task.column_id != from_column.column_id:
        raise ValidationError(
            f"Task {task.task_id} belongs to column {task.column_id}, not {from_column.column_id}"
        )
    if from_column.board_id != to_column.board_id:
        raise ValidationError("Use move_across_board for moves between boards")

    source_order = remove_item(from_column.task_order, task.task_id)
    dest_current = remove_item(_current_order(to_column, to_members), task.task_id)
    dest_order = insert_item(dest_current, task.task_id, target_index)

    plan = MutationPlan([
        SetTaskOrder(from_column.column_id, source_order),
        SetTaskOrder(to_column.column_id, dest_order),
        SetTaskColumn(task.task_id, to_column.column_id),
    ])
    plan.warnings.extend(_wip_warnings(to_column, dest_order))
    return plan


def reorder_columns(
    board: Board,
    column_id: str,
    target_index: int,
    members: Optional[Iterable[str]] = None,
) -> MutationPlan:
    """Move a column to target_index in the board's column_order."""
    current = list(board.column_order) if members is None else reconcile_order(board.column_order, members)
    if column_id not in current:
        raise NotFoundError("column", column_id)
    new_order = move_item(current, column_id, target_index)
    if new_order == current:
        return MutationPlan()
    return MutationPlan([SetColumnOrder(board.board_id, new_order)])


def move_across_board(
    task: Task,
    target_board: Board,
    target_column: Column,
    target_index: Optional[int] = None,
    to_members: Optional[Iterable[str]] = None,
) -> MutationPlan:
    """Move a task to a column on another board.

    Boards keep no task list of their own, so only the destination column's
    order and the task's column_id change. The stale id left in the source
    column's order is dropped by read-time reconciliation.
    """
    if target_column.board_id != target_board.board_id:
        raise ValidationError(
            f"Column {target_column.column_id} is not on board {target_board.board_id}"
        )
    if task.column_id == target_column.column_id:
        if target_index is None:
            return MutationPlan()
        return reorder_within_column(target_column, task.task_id, target_index, to_members)

    dest_current = remove_item(_current_order(target_column, to_members), task.task_id)
    dest_order = insert_item(dest_current, task.task_id, target_index)
    plan = MutationPlan([
        SetTaskOrder(target_column.column_id, dest_order),
        SetTaskColumn(task.task_id, target_column.column_id),
    ])
    plan.warnings.extend(_wip_warnings(target_column, dest_order))
    return plan


def replace_task_order(column: Column, proposed: Sequence[str], members: Iterable[str]) -> MutationPlan:
    """Explicit full-list reorder of a column.

    Ids that are not tasks of this column are ignored and member tasks the
    caller left out are appended, so the stored list stays a permutation.
    """
    current = reconcile_order(column.task_order, members)
    new_order = reconcile_order(proposed, current)
    if new_order == column.task_order:
        return MutationPlan()
    return MutationPlan([SetTaskOrder(column.column_id, new_order)])


def replace_column_order(board: Board, proposed: Sequence[str], members: Iterable[str]) -> MutationPlan:
    """Explicit full-list reorder of a board's columns."""
    existing = reconcile_order(board.column_order, members)
    new_order = reconcile_order(proposed, existing)
    if new_order == board.column_order:
        return MutationPlan()
    return MutationPlan([SetColumnOrder(board.board_id, new_order)])


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Drag gestures
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class DragKind(Enum):
    TASK = "task"
    COLUMN = "column"


@dataclass(frozen=True)
class DragGesture:
    """A finished drag: the dragged item and the item it was dropped over."""
    active_id: str
    over_id: Optional[str]
    kind: DragKind = DragKind.TASK


def plan_drag(
    gesture: DragGesture,
    board: Board,
    columns: Sequence[Column],
    tasks: Sequence[Task],
) -> MutationPlan:
    """Resolve a drop on a single board into a mutation plan.

    - column dropped over column: reorder columns to the target's position
    - task dropped over a task of the same column: reorder to its position
    - task dropped over another column, or a task in it: move there (the
      drop index is the hovered task's position, or the end of the column)
    """
    if gesture.over_id is None or gesture.over_id == gesture.active_id:
        return MutationPlan()

    columns_by_id = {c.column_id: c for c in columns}
    column_ids = [c.column_id for c in columns]

    if gesture.kind is DragKind.COLUMN:
        if gesture.over_id not in columns_by_id:
            return MutationPlan()
        displayed = reconcile_order(board.column_order, column_ids)
        if gesture.active_id not in columns_by_id:
            raise NotFoundError("column", gesture.active_id)
        return reorder_columns(board, gesture.active_id, displayed.index(gesture.over_id), column_ids)

    tasks_by_id = {t.task_id: t for t in tasks}
    active = tasks_by_id.get(gesture.active_id)
    if active is None:
        raise NotFoundError("task", gesture.active_id)
    source = columns_by_id.get(active.column_id)
    if source is None:
        raise NotFoundError("column", active.column_id)

    def members_of(column_id: str) -> List[str]:
        return [t.task_id for t in tasks if t.column_id == column_id]

    over_task = tasks_by_id.get(gesture.over_id)
    if over_task is not None:
        target = columns_by_id.get(over_task.column_id)
        if target is None:
            raise NotFoundError("column", over_task.column_id)
        displayed = reconcile_order(target.task_order, members_of(target.column_id))
        target_index = displayed.index(over_task.task_id)
    elif gesture.over_id in columns_by_id:
        target = columns_by_id[gesture.over_id]
        target_index = None
    else:
        return MutationPlan()

    if target.column_id == source.column_id:
        if target_index is None:
            return MutationPlan()
        return reorder_within_column(source, active.task_id, target_index, members_of(source.column_id))
    return move_across_column(active, source, target, target_index, members_of(target.column_id))
