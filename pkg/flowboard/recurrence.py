"""
Recurring task engine.

A recurring series is a chain of ordinary tasks. Completing the pending
occurrence either ends the series (next date past recurring_end_date) or
materialises the next occurrence:

  pending -> completed -> next occurrence created (pending)
                       -> series ended

Occurrences point at their series root through parent_task_id. The link is
lineage only: deleting an occurrence never touches the series or vice versa.
"""
import calendar
import logging
import uuid
from dataclasses import dataclass, replace
from datetime import date, datetime, time, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from .schema import RecurringPattern, Subtask, Task

logger = logging.getLogger(__name__)

# Upper bound on catch-up iterations (covers ~27 years of daily occurrences)
_MAX_CATCH_UP = 10000


def new_task_id() -> str:
    return f"task-{uuid.uuid4().hex[:12]}"


def parse_pattern(value) -> Optional[RecurringPattern]:
    """Validate a recurring pattern at the boundary. Unknown values raise ValidationError."""
    return RecurringPattern.parse(value)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Date algebra
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def last_day_of_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def add_months(value: datetime, months: int, anchor_day: Optional[int] = None) -> datetime:
    """Same day-of-month ``months`` later, clamped to the target month's last day.

    ``anchor_day`` is the day the series was originally due on, so that
    Jan 31 -> Feb 28 -> Mar 31 instead of drifting to the 28th.
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(anchor_day or value.day, last_day_of_month(year, month))
    return value.replace(year=year, month=month, day=day)


def add_years(value: datetime, years: int) -> datetime:
    """Same date ``years`` later; Feb 29 becomes Feb 28 in non-leap years."""
    year = value.year + years
    day = min(value.day, last_day_of_month(year, value.month))
    return value.replace(year=year, day=day)


def next_occurrence(
    current: datetime,
    pattern: RecurringPattern,
    anchor_day: Optional[int] = None,
) -> datetime:
    """Due date of the occurrence following ``current``. Time of day is kept."""
    if pattern is RecurringPattern.DAILY:
        return current + timedelta(days=1)
    if pattern is RecurringPattern.WEEKLY:
        return current + timedelta(days=7)
    if pattern is RecurringPattern.BIWEEKLY:
        return current + timedelta(days=14)
    if pattern is RecurringPattern.MONTHLY:
        return add_months(current, 1, anchor_day)
    if pattern is RecurringPattern.END_OF_MONTH:
        following = add_months(current.replace(day=1), 1)
        return following.replace(day=last_day_of_month(following.year, following.month))
    if pattern is RecurringPattern.YEARLY:
        return add_years(current, 1)
    raise ValueError(f"Unhandled recurring pattern: {pattern}")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Lineage
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class Lineage:
    """Lookup table from occurrence id to series id.

    Built from a snapshot of tasks. A parent that has been deleted still names
    the series, so surviving occurrences keep grouping together.
    """

    def __init__(self, tasks: Iterable[Task]):
        self._parent: Dict[str, Optional[str]] = {}
        self._tasks: Dict[str, Task] = {}
        for task in tasks:
            self._tasks[task.task_id] = task
            self._parent[task.task_id] = task.parent_task_id

    def series_of(self, task_id: str) -> str:
        """Root id of the series task_id belongs to."""
        current = task_id
        seen = {current}
        while True:
            parent = self._parent.get(current)
            if not parent or parent in seen:
                return current
            if parent not in self._parent:
                return parent
            seen.add(parent)
            current = parent

    def occurrences(self, series_id: str) -> List[Task]:
        """All known occurrences of a series, oldest first."""
        members = [t for tid, t in self._tasks.items() if self.series_of(tid) == series_id]
        return sorted(members, key=lambda t: (t.occurrence_date or date.min, t.created_at))

    def root(self, series_id: str) -> Optional[Task]:
        return self._tasks.get(series_id)

    def successor_of(self, task: Task) -> Optional[Task]:
        """An occurrence of the same series dated after ``task``, if any."""
        series_id = self.series_of(task.task_id)
        anchor = task.occurrence_date or date.min
        for other in self.occurrences(series_id):
            if other.task_id == task.task_id:
                continue
            if (other.occurrence_date or date.min) > anchor:
                return other
        return None


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Advancement
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass(frozen=True)
class Advancement:
    """Outcome of completing one occurrence of a series."""
    next_task: Optional[Task] = None
    series_ended: bool = False
    already_advanced: bool = False

    @property
    def created(self) -> bool:
        return self.next_task is not None and not self.already_advanced


def _anchor(task: Task) -> datetime:
    if task.due_date:
        return task.due_date
    if task.instance_date:
        return datetime.combine(task.instance_date, time.min)
    return task.created_at


def _anchor_day(task: Task, lineage: Lineage) -> Optional[int]:
    if task.recurring_pattern is not RecurringPattern.MONTHLY:
        return None
    root = lineage.root(lineage.series_of(task.task_id))
    source = root if root is not None else task
    return _anchor(source).day


def build_occurrence(
    task: Task,
    due: datetime,
    series_id: str,
    new_id: Callable[[], str] = new_task_id,
    now: Optional[datetime] = None,
) -> Task:
    """A fresh pending occurrence of ``task``'s series due at ``due``."""
    now = now or datetime.now()
    return replace(
        task,
        task_id=new_id(),
        due_date=due,
        instance_date=due.date(),
        completed=False,
        subtasks=[Subtask(s.title, False) for s in task.subtasks],
        labels=list(task.labels),
        parent_task_id=series_id,
        created_at=now,
        updated_at=now,
    )


def advance(
    task: Task,
    existing: Iterable[Task] = (),
    new_id: Callable[[], str] = new_task_id,
    now: Optional[datetime] = None,
) -> Advancement:
    """Compute what completing ``task`` does to its series.

    ``existing`` is every other known task (at least those of the same
    series). If a later occurrence already exists the series was advanced
    before, and it is returned instead of creating a second one.
    """
    if not task.is_recurring:
        return Advancement()

    lineage = Lineage(list(existing) + [task])
    successor = lineage.successor_of(task)
    if successor is not None:
        logger.info("Series of %s already advanced to %s", task.task_id, successor.task_id)
        return Advancement(next_task=successor, already_advanced=True)

    due = next_occurrence(_anchor(task), task.recurring_pattern, _anchor_day(task, lineage))
    if task.recurring_end_date and due.date() > task.recurring_end_date:
        logger.info("Series of %s ended at %s", task.task_id, task.recurring_end_date)
        return Advancement(series_ended=True)

    series_id = lineage.series_of(task.task_id)
    return Advancement(next_task=build_occurrence(task, due, series_id, new_id, now))


def sweep(
    tasks: Iterable[Task],
    now: Optional[datetime] = None,
    new_id: Callable[[], str] = new_task_id,
) -> List[Task]:
    """Materialise the next occurrence of recurring tasks left overdue.

    For each pending recurring occurrence dated before today that has no
    successor, the next occurrence dated today or later is created (skipping
    any dates already in the past). Running it again is a no-op.
    """
    now = now or datetime.now()
    today = now.date()
    known = list(tasks)
    created: List[Task] = []

    for task in list(known):
        if not task.is_recurring or task.completed:
            continue
        # A carried-over occurrence is judged by its new due date
        occurrence = task.due_date.date() if task.due_date else task.instance_date
        if occurrence is None or occurrence >= today:
            continue
        lineage = Lineage(known)
        if lineage.successor_of(task) is not None:
            continue

        due = _anchor(task)
        anchor_day = _anchor_day(task, lineage)
        for _ in range(_MAX_CATCH_UP):
            due = next_occurrence(due, task.recurring_pattern, anchor_day)
            if due.date() >= today:
                break
        if task.recurring_end_date and due.date() > task.recurring_end_date:
            continue

        occurrence_task = build_occurrence(task, due, lineage.series_of(task.task_id), new_id, now)
        known.append(occurrence_task)
        created.append(occurrence_task)
        logger.info("Sweep created %s for series %s", occurrence_task.task_id, occurrence_task.parent_task_id)

    return created


def expand_occurrences(
    task: Task,
    start: date,
    end: date,
    lineage: Optional[Lineage] = None,
) -> List[datetime]:
    """Future due dates of a pending series inside [start, end].

    Only dates after the task's own occurrence are projected; the task itself
    is shown by whoever lists it. Pass the ``lineage`` the task was loaded
    with so monthly series keep the root's day of month.
    """
    if not task.is_recurring or task.completed or end < start:
        return []
    lineage = lineage or Lineage([task])
    anchor_day = _anchor_day(task, lineage)
    due = _anchor(task)
    results: List[datetime] = []
    for _ in range(_MAX_CATCH_UP):
        due = next_occurrence(due, task.recurring_pattern, anchor_day)
        if due.date() > end:
            break
        if task.recurring_end_date and due.date() > task.recurring_end_date:
            break
        if due.date() >= start:
            results.append(due)
    return results
