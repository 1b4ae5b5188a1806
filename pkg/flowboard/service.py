"""
Board service: the operation set consumed by the server and other clients.

Each operation validates its input, asks one of the pure engines for a
mutation plan and applies it to the store in one transaction. Subscribers
are notified after a write succeeds:

  board_updated    board_id
  column_updated   column_id
  task_updated     task_id
  task_deleted     task_id
  board_deleted    board_id
  series_advanced  task_id, next_task_id
  habit_updated    habit_id
"""
import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .agenda import AgendaView, Window, build_agenda, habit_streak
from .carryover import CarryOverResult, CarryOverTarget, parse_target, resolve_target
from .config import Config
from .errors import ConflictError, FlowboardError, NotFoundError, ValidationError
from .ordering import arrange, insert_item
from .reconcile import (
    DragGesture,
    DragKind,
    MutationPlan,
    SetTaskOrder,
    SetTaskColumn,
    WipStatus,
    move_across_board,
    move_across_column,
    plan_drag,
    reorder_columns,
    reorder_within_column,
    replace_column_order,
    replace_task_order,
    wip_status,
)
from .recurrence import Advancement, advance, new_task_id, parse_pattern, sweep
from .schema import (
    Board,
    CalendarEvent,
    Column,
    Habit,
    HabitFrequency,
    Priority,
    Subtask,
    Task,
    parse_date,
    parse_datetime,
)
from .store import BoardStore

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = {
    "title", "description", "due_date", "priority", "labels", "subtasks",
    "recurring_pattern", "recurring_end_date", "column_id", "completed",
}


def new_board_id() -> str:
    return f"board-{uuid.uuid4().hex[:12]}"


def new_column_id() -> str:
    return f"col-{uuid.uuid4().hex[:12]}"


def new_habit_id() -> str:
    return f"habit-{uuid.uuid4().hex[:12]}"


@dataclass
class ColumnView:
    column: Column
    tasks: List[Task] = field(default_factory=list)
    wip: Optional[WipStatus] = None

    def to_dict(self) -> Dict[str, Any]:
        data = self.column.to_dict()
        data["task_order"] = [t.task_id for t in self.tasks]
        data["tasks"] = [t.to_dict() for t in self.tasks]
        data["over_wip_limit"] = bool(self.wip and self.wip.over_limit)
        return data


@dataclass
class BoardSnapshot:
    """A board with its columns and tasks in reconciled display order."""

    board: Board
    columns: List[ColumnView] = field(default_factory=list)

    def column(self, column_id: str) -> Optional[ColumnView]:
        for view in self.columns:
            if view.column.column_id == column_id:
                return view
        return None

    def to_dict(self) -> Dict[str, Any]:
        data = self.board.to_dict()
        data["column_order"] = [c.column.column_id for c in self.columns]
        data["columns"] = [c.to_dict() for c in self.columns]
        return data


@dataclass
class Completion:
    """Result of completing a task: the task and what happened to its series."""

    task: Task
    advancement: Advancement = field(default_factory=Advancement)

    def to_dict(self) -> Dict[str, Any]:
        next_task = self.advancement.next_task
        return {
            "task": self.task.to_dict(),
            "next_task": next_task.to_dict() if next_task else None,
            "series_ended": self.advancement.series_ended,
            "already_advanced": self.advancement.already_advanced,
        }


@dataclass
class HabitCheck:
    habit: Habit
    day: date
    completed: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "habit": self.habit.to_dict(),
            "date": self.day.isoformat(),
            "completed": self.completed,
        }


def _parse_wip_limit(value: Any) -> Optional[int]:
    """None clears the limit; anything else must be a non-negative integer."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"Invalid WIP limit: {value!r}")
    try:
        limit = int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid WIP limit: {value!r}") from e
    if limit < 0:
        raise ValidationError(f"Invalid WIP limit: {value!r}")
    return limit


class BoardService:
    """Board, task, carry-over and agenda operations over a BoardStore."""

    def __init__(
        self,
        store: BoardStore,
        config: Optional[Config] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.config = config or Config()
        self.clock = clock
        self.subscribers: Dict[str, list] = {}  # event_type -> list of callbacks

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # Notifications
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def subscribe(self, event_type: str, callback: Callable) -> None:
        """Register a callback for an event type."""
        if event_type not in self.subscribers:
            self.subscribers[event_type] = []
        self.subscribers[event_type].append(callback)

    def _emit(self, event_type: str, **kwargs) -> None:
        """Emit an event to all subscribers. A failing callback never undoes the write."""
        for callback in self.subscribers.get(event_type, []):
            try:
                callback(**kwargs)
            except Exception:
                logger.exception("Error in %s callback", event_type)

    def _emit_plan(self, plan: MutationPlan) -> None:
        for board_id in plan.column_orders():
            self._emit("board_updated", board_id=board_id)
        for column_id in plan.task_orders():
            self._emit("column_updated", column_id=column_id)
        for mutation in plan.mutations:
            if isinstance(mutation, SetTaskColumn):
                self._emit("task_updated", task_id=mutation.task_id)

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # Lookups
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def _require_board(self, board_id: str) -> Board:
        board = self.store.get_board(board_id)
        if board is None:
            raise NotFoundError("board", board_id)
        return board

    def _require_column(self, column_id: str) -> Column:
        column = self.store.get_column(column_id)
        if column is None:
            raise NotFoundError("column", column_id)
        return column

    def _require_task(self, task_id: str) -> Task:
        task = self.store.get_task(task_id)
        if task is None:
            raise NotFoundError("task", task_id)
        return task

    def _require_habit(self, habit_id: str) -> Habit:
        habit = self.store.get_habit(habit_id)
        if habit is None:
            raise NotFoundError("habit", habit_id)
        return habit

    def _member_ids(self, column_id: str) -> List[str]:
        return [t.task_id for t in self.store.list_tasks(column_id)]

    def _find_column(self, board_id: str, name: str) -> Optional[Column]:
        wanted = name.strip().lower()
        for column in self.store.list_columns(board_id):
            if column.name.strip().lower() == wanted:
                return column
        return None

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # Creation
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def create_board(self, name: str, space: str = "work", columns: Optional[Sequence[str]] = None) -> Board:
        """Create a board with its initial columns (configured defaults if None)."""
        if not name or not name.strip():
            raise ValidationError("Board name must not be empty")
        now = self.clock()
        column_names = self.config.default_columns if columns is None else columns
        board = Board(board_id=new_board_id(), name=name.strip(), space=space or "work",
                      created_at=now, updated_at=now)
        created = []
        for column_name in column_names:
            column = Column(column_id=new_column_id(), board_id=board.board_id,
                            name=column_name, created_at=now)
            board.column_order.append(column.column_id)
            created.append(column)
        self.store.apply(boards=[board], columns=created)
        logger.info("Created board %s (%s) with %d columns", board.board_id, board.name, len(created))
        self._emit("board_updated", board_id=board.board_id)
        return board

    def create_column(self, board_id: str, name: str, wip_limit: Optional[int] = None) -> Column:
        """Create a column at the end of the board's column order."""
        if not name or not name.strip():
            raise ValidationError("Column name must not be empty")
        wip_limit = _parse_wip_limit(wip_limit)
        self._require_board(board_id)
        column = Column(
            column_id=new_column_id(),
            board_id=board_id,
            name=name.strip(),
            wip_limit=wip_limit,
            created_at=self.clock(),
        )
        self.store.add_column(column)
        self._emit("board_updated", board_id=board_id)
        return column

    def create_task(
        self,
        column_id: str,
        title: str,
        index: Optional[int] = None,
        description: str = "",
        due_date: Union[str, datetime, None] = None,
        priority: Union[str, Priority, None] = None,
        labels: Iterable[str] = (),
        subtasks: Iterable[Union[Dict[str, Any], Subtask]] = (),
        recurring_pattern: Optional[str] = None,
        recurring_end_date: Union[str, date, None] = None,
    ) -> Task:
        """Create a task in a column at ``index`` (default: append)."""
        now = self.clock()
        due = parse_datetime(due_date)
        pattern = parse_pattern(recurring_pattern)
        task = Task(
            task_id=new_task_id(),
            title=(title or "").strip(),
            column_id=column_id,
            description=description or "",
            due_date=due,
            priority=priority if isinstance(priority, Priority) else Priority.from_str(priority),
            labels=sorted(set(labels)),
            subtasks=[Subtask.from_dict(s) for s in subtasks],
            recurring_pattern=pattern,
            recurring_end_date=parse_date(recurring_end_date),
            instance_date=due.date() if pattern and due else None,
            created_at=now,
            updated_at=now,
        )
        task.validate()
        column = self.store.add_task(task, index)
        logger.info("Created task %s in column %s", task.task_id, column_id)
        self._emit("task_updated", task_id=task.task_id)
        self._emit("column_updated", column_id=column.column_id)
        return task

    def create_habit(
        self,
        name: str,
        space: str = "work",
        frequency: Union[str, HabitFrequency] = HabitFrequency.DAILY,
        target_days: Iterable[int] = (),
        reminder_time: Optional[str] = None,
    ) -> Habit:
        habit = Habit(
            habit_id=new_habit_id(),
            name=(name or "").strip(),
            space=space or "work",
            frequency=HabitFrequency.parse(frequency),
            target_days=sorted({int(d) for d in target_days}),
            reminder_time=reminder_time or None,
        )
        habit.validate()
        self.store.save_habit(habit)
        return habit

    def list_boards(self, space: Optional[str] = None) -> List[Board]:
        return self.store.list_boards(space)

    def list_habits(self, space: Optional[str] = None) -> List[Habit]:
        """Habits of a space with today's completion and streak read from the log."""
        habits = self.store.list_habits(space)
        logs = self.store.completed_days(h.habit_id for h in habits)
        today = self.clock().date()
        return [
            replace(
                h,
                completed_today=today in logs[h.habit_id],
                current_streak=habit_streak(h, logs[h.habit_id], today),
            )
            if logs[h.habit_id] else h
            for h in habits
        ]

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # Reads
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def get_board(self, board_id: str) -> BoardSnapshot:
        """Board with columns and tasks arranged by their reconciled order lists."""
        board = self._require_board(board_id)
        columns = arrange(self.store.list_columns(board_id), board.column_order, key=lambda c: c.column_id)
        by_column: Dict[str, List[Task]] = {}
        for task in self.store.list_board_tasks(board_id):
            by_column.setdefault(task.column_id, []).append(task)

        snapshot = BoardSnapshot(board)
        for column in columns:
            tasks = arrange(by_column.get(column.column_id, []), column.task_order, key=lambda t: t.task_id)
            snapshot.columns.append(ColumnView(column, tasks, wip_status(column, len(tasks))))
        return snapshot

    def list_tasks(self, column_id: str) -> List[Task]:
        column = self._require_column(column_id)
        return arrange(self.store.list_tasks(column_id), column.task_order, key=lambda t: t.task_id)

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # Ordering
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def _commit(
        self,
        plan: MutationPlan,
        expected_versions: Optional[Dict[str, int]] = None,
        tasks: Iterable[Task] = (),
    ) -> MutationPlan:
        """Write a plan (and any task rows) in one transaction, then notify."""
        tasks = list(tasks)
        if plan.is_noop and not tasks:
            logger.debug("No-op plan, nothing written")
            return plan
        self.store.apply_plan(plan, expected_versions, now=self.clock(), tasks=tasks)
        for warning in plan.warnings:
            logger.warning(warning.message)
        self._emit_plan(plan)
        return plan

    @staticmethod
    def _check_version(item_id: str, expected: Optional[int], actual: int) -> None:
        if expected is not None and int(expected) != actual:
            raise ConflictError(item_id, int(expected), actual)

    def reorder_tasks(
        self, column_id: str, task_ids: Sequence[str], expected_version: Optional[int] = None
    ) -> MutationPlan:
        """Replace a column's task order with an explicit list."""
        column = self._require_column(column_id)
        self._check_version(column_id, expected_version, column.order_version)
        plan = replace_task_order(column, list(task_ids), self._member_ids(column_id))
        versions = {column_id: int(expected_version)} if expected_version is not None else None
        return self._commit(plan, versions)

    def reorder_columns(
        self, board_id: str, column_ids: Sequence[str], expected_version: Optional[int] = None
    ) -> MutationPlan:
        """Replace a board's column order with an explicit list."""
        board = self._require_board(board_id)
        self._check_version(board_id, expected_version, board.order_version)
        members = [c.column_id for c in self.store.list_columns(board_id)]
        plan = replace_column_order(board, list(column_ids), members)
        versions = {board_id: int(expected_version)} if expected_version is not None else None
        return self._commit(plan, versions)

    def reorder_within_column(self, column_id: str, task_id: str, target_index: int) -> MutationPlan:
        column = self._require_column(column_id)
        plan = reorder_within_column(column, task_id, target_index, self._member_ids(column_id))
        return self._commit(plan)

    def move_column(self, board_id: str, column_id: str, target_index: int) -> MutationPlan:
        board = self._require_board(board_id)
        members = [c.column_id for c in self.store.list_columns(board_id)]
        return self._commit(reorder_columns(board, column_id, target_index, members))

    def move_task(self, task_id: str, column_id: str, index: Optional[int] = None) -> MutationPlan:
        """Move a task to ``index`` of a column on the same or another board."""
        task = self._require_task(task_id)
        target = self._require_column(column_id)

        if task.column_id == target.column_id:
            if index is None:
                return MutationPlan()
            plan = reorder_within_column(target, task_id, index, self._member_ids(column_id))
            return self._commit(plan)

        source = self._require_column(task.column_id)
        members = self._member_ids(column_id)
        if source.board_id == target.board_id:
            plan = move_across_column(task, source, target, index, members)
        else:
            plan = move_across_board(task, self._require_board(target.board_id), target, index, members)
        logger.info("Moving task %s from %s to %s", task_id, source.column_id, target.column_id)
        return self._commit(plan)

    def apply_drag(
        self,
        board_id: str,
        active_id: str,
        over_id: Optional[str],
        kind: Union[str, DragKind] = DragKind.TASK,
    ) -> MutationPlan:
        """Resolve a finished drag on a board and apply it."""
        board = self._require_board(board_id)
        try:
            gesture = DragGesture(active_id, over_id, DragKind(kind))
        except ValueError as e:
            raise ValidationError(f"Invalid drag kind: {kind!r}") from e
        columns = self.store.list_columns(board_id)
        tasks = self.store.list_board_tasks(board_id)
        return self._commit(plan_drag(gesture, board, columns, tasks))

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # Task lifecycle
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def update_task(self, task_id: str, fields: Mapping[str, Any]) -> Task:
        """Apply a partial update.

        All fields are validated before anything is written. ``column_id`` is
        routed through move_task and ``completed`` through complete_task /
        reopen_task so ordering and recurrence stay consistent.
        """
        task = self._require_task(task_id)
        unknown = set(fields) - _EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown task fields: {', '.join(sorted(unknown))}")
        if "completed" in fields and not isinstance(fields["completed"], bool):
            raise ValidationError(f"completed must be true or false, got {fields['completed']!r}")

        changes: Dict[str, Any] = {}
        if "title" in fields:
            changes["title"] = str(fields["title"] or "").strip()
        if "description" in fields:
            changes["description"] = fields["description"] or ""
        if "due_date" in fields:
            changes["due_date"] = parse_datetime(fields["due_date"])
        if "priority" in fields:
            changes["priority"] = Priority.from_str(fields["priority"])
        if "labels" in fields:
            changes["labels"] = sorted(set(fields["labels"] or []))
        if "subtasks" in fields:
            changes["subtasks"] = [Subtask.from_dict(s) for s in fields["subtasks"] or []]
        if "recurring_pattern" in fields:
            changes["recurring_pattern"] = parse_pattern(fields["recurring_pattern"])
        if "recurring_end_date" in fields:
            changes["recurring_end_date"] = parse_date(fields["recurring_end_date"])

        updated = replace(task, **changes, updated_at=self.clock())
        updated.validate()
        if updated.is_recurring and updated.instance_date is None and updated.due_date:
            updated.instance_date = updated.due_date.date()

        target_column = fields.get("column_id")
        if target_column and target_column != task.column_id:
            self._require_column(target_column)

        if changes:
            self.store.save_task(updated)
            self._emit("task_updated", task_id=task_id)
        if target_column and target_column != task.column_id:
            self.move_task(task_id, target_column)
        if "completed" in fields and fields["completed"] != task.completed:
            if fields["completed"]:
                self.complete_task(task_id)
            else:
                self.reopen_task(task_id)
        return self._require_task(task_id)

    def _auto_move(self, task: Task, column_name: str, extra_members: Sequence[str] = ()) -> MutationPlan:
        """Plan moving ``task`` to the named column of its board, if enabled and present."""
        if not self.config.auto_move_on_complete:
            return MutationPlan()
        source = self.store.get_column(task.column_id)
        if source is None:
            return MutationPlan()
        target = self._find_column(source.board_id, column_name)
        if target is None or target.column_id == source.column_id:
            return MutationPlan()
        members = self._member_ids(target.column_id) + list(extra_members)
        return move_across_column(task, source, target, None, members)

    def complete_task(self, task_id: str) -> Completion:
        """Mark a task done; for a recurring task, advance its series.

        Completing an already completed task changes nothing, and a series
        that already has its next occurrence is not advanced again.
        """
        task = self._require_task(task_id)
        if task.completed:
            return Completion(task)

        now = self.clock()
        done = replace(task, completed=True, updated_at=now)
        advancement = advance(done, self.store.list_series(task), now=now)

        plan = self._auto_move(task, self.config.done_column_name)
        rows = [done]
        if advancement.created:
            next_task = advancement.next_task
            origin = self._require_column(task.column_id)
            plan = self._with_appended(plan, origin, next_task.task_id)
            rows.append(next_task)

        self._commit(plan, tasks=rows)
        self._emit("task_updated", task_id=task_id)
        if advancement.created:
            logger.info("Series of %s advanced to %s (due %s)",
                        task_id, advancement.next_task.task_id, advancement.next_task.due_date)
            self._emit("series_advanced", task_id=task_id, next_task_id=advancement.next_task.task_id)
            self._emit("column_updated", column_id=task.column_id)
        done = self._require_task(task_id)
        return Completion(done, advancement)

    def _with_appended(self, plan: MutationPlan, column: Column, task_id: str) -> MutationPlan:
        """Add task_id at the end of column's order, on top of what the plan already writes."""
        current = plan.task_orders().get(column.column_id)
        if current is None:
            current = arrange(self._member_ids(column.column_id), column.task_order, key=lambda i: i)
        new_order = insert_item(current, task_id)
        mutations = [m for m in plan.mutations
                     if not (isinstance(m, SetTaskOrder) and m.column_id == column.column_id)]
        mutations.insert(0, SetTaskOrder(column.column_id, new_order))
        return MutationPlan(mutations, list(plan.warnings))

    def reopen_task(self, task_id: str) -> Task:
        """Mark a task not done and move it back to the in-progress column."""
        task = self._require_task(task_id)
        if not task.completed:
            return task
        reopened = replace(task, completed=False, updated_at=self.clock())
        plan = self._auto_move(task, self.config.in_progress_column_name)
        self._commit(plan, tasks=[reopened])
        self._emit("task_updated", task_id=task_id)
        return self._require_task(task_id)

    def delete_task(self, task_id: str) -> None:
        """Delete one task. Other occurrences of its series are left alone."""
        if not self.store.delete_task(task_id):
            raise NotFoundError("task", task_id)
        logger.info("Deleted task %s", task_id)
        self._emit("task_deleted", task_id=task_id)

    def delete_column(self, column_id: str) -> None:
        """Delete an empty column. Raises ConstraintError if it still has tasks."""
        board = self.store.delete_column(column_id)
        logger.info("Deleted column %s from board %s", column_id, board.board_id)
        self._emit("board_updated", board_id=board.board_id)

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # Board and column settings
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    @staticmethod
    def _non_empty(fields: Mapping[str, Any], name: str, label: str) -> str:
        value = fields[name]
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"{label} must not be empty")
        return value.strip()

    def update_board(self, board_id: str, fields: Mapping[str, Any]) -> Board:
        """Rename a board or move it to another space (``name``, ``space``)."""
        unknown = set(fields) - {"name", "space"}
        if unknown:
            raise ValidationError(f"Unknown board fields: {', '.join(sorted(unknown))}")
        self._require_board(board_id)
        values: Dict[str, Any] = {}
        if "name" in fields:
            values["name"] = self._non_empty(fields, "name", "Board name")
        if "space" in fields:
            values["space"] = self._non_empty(fields, "space", "Board space")
        if not values:
            return self._require_board(board_id)
        board = self.store.update_board(board_id, values)
        self._emit("board_updated", board_id=board_id)
        return board

    def update_column(self, column_id: str, fields: Mapping[str, Any]) -> Column:
        """Rename a column or change its WIP limit (``name``, ``wip_limit``; null clears it)."""
        unknown = set(fields) - {"name", "wip_limit"}
        if unknown:
            raise ValidationError(f"Unknown column fields: {', '.join(sorted(unknown))}")
        self._require_column(column_id)
        values: Dict[str, Any] = {}
        if "name" in fields:
            values["name"] = self._non_empty(fields, "name", "Column name")
        if "wip_limit" in fields:
            values["wip_limit"] = _parse_wip_limit(fields["wip_limit"])
        column = self.store.update_column(column_id, values)
        if values:
            self._emit("column_updated", column_id=column_id)
        return column

    def delete_board(self, board_id: str) -> None:
        """Delete a board and its empty columns. Raises ConstraintError if any task remains."""
        self.store.delete_board(board_id)
        logger.info("Deleted board %s", board_id)
        self._emit("board_deleted", board_id=board_id)

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # Habits
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def log_habit(self, habit_id: str, day: Union[str, date, None] = None) -> HabitCheck:
        """Toggle a habit's completion for ``day`` (default today).

        ``completed_today`` and ``current_streak`` are recomputed from the
        full log and saved together with the log entry.
        """
        habit = self._require_habit(habit_id)
        today = self.clock().date()
        day = parse_date(day) or today
        if day > today:
            raise ValidationError(f"Cannot log habit '{habit_id}' for a future day ({day.isoformat()})")

        done = self.store.completed_days([habit_id])[habit_id]
        completed = day not in done
        if completed:
            done.add(day)
        else:
            done.discard(day)
        updated = replace(
            habit,
            completed_today=today in done,
            current_streak=habit_streak(habit, done, today),
        )
        self.store.log_habit(updated, day, completed)
        logger.info("Habit %s %s for %s (streak %d)", habit_id,
                    "done" if completed else "undone", day.isoformat(), updated.current_streak)
        self._emit("habit_updated", habit_id=habit_id)
        return HabitCheck(updated, day, completed)

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # Scheduling
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def carry_over(
        self,
        task_ids: Sequence[str],
        target: Union[str, date, datetime, CarryOverTarget],
    ) -> CarryOverResult:
        """Move every listed task's due date to the resolved target.

        Each task is written on its own; a failure is recorded against its id
        and the batch continues.
        """
        due = resolve_target(parse_target(target), self.clock())
        result = CarryOverResult(due)
        for task_id in dict.fromkeys(task_ids):
            try:
                task = self._require_task(task_id)
                self.store.save_task(replace(task, due_date=due, updated_at=self.clock()))
            except FlowboardError as e:
                logger.warning("Carry-over of %s failed: %s", task_id, e)
                result.record_failure(task_id, str(e))
                continue
            result.record_success(task_id)
            self._emit("task_updated", task_id=task_id)

        logger.info("Carried over %d task(s) to %s, %d failed",
                    len(result.succeeded), due.isoformat(), len(result.failed))
        return result

    def get_agenda(
        self,
        space: Optional[str],
        window: Union[str, Window] = "day",
        reference_date: Union[str, date, None] = None,
        external_events: Iterable[CalendarEvent] = (),
        project_recurring: bool = False,
        hide_completed: Optional[bool] = None,
    ) -> AgendaView:
        """Merged tasks, habits and external events of a space for a day or week."""
        now = self.clock()
        if not isinstance(window, Window):
            reference = parse_date(reference_date) or now.date()
            try:
                window = Window.for_kind(window, reference, self.config.week_start_day)
            except ValueError as e:
                raise ValidationError(f"Invalid agenda window: {window!r}") from e

        boards_by_column: Dict[str, Board] = {}
        tasks: List[Task] = []
        for board in self.store.list_boards(space):
            for column in self.store.list_columns(board.board_id):
                boards_by_column[column.column_id] = board
            tasks.extend(self.store.list_board_tasks(board.board_id))

        if hide_completed is None:
            hide_completed = self.config.hide_completed_in_agenda
        habits = self.store.list_habits(space)
        logs = self.store.completed_days(h.habit_id for h in habits)
        return build_agenda(
            tasks,
            habits,
            window,
            now,
            external_events=external_events,
            boards_by_column=boards_by_column,
            hide_completed=hide_completed,
            project_recurring=project_recurring,
            habit_logs={h: days for h, days in logs.items() if days},
        )

    def sweep_recurring(self, now: Optional[datetime] = None) -> List[Task]:
        """Materialise next occurrences of overdue recurring tasks. Idempotent."""
        created = sweep(self.store.list_all_tasks(), now or self.clock())
        for task in created:
            self.store.add_task(task)
            self._emit("series_advanced", task_id=task.parent_task_id, next_task_id=task.task_id)
        if created:
            logger.info("Recurring sweep created %d occurrence(s)", len(created))
        return created
