"""
Agenda aggregation: merge tasks, habits and external events into day views.

Pure, read-only projection. The output is rebuilt from the underlying sets
whenever they change and is never edited in place.

For each day of the window:
  1. tasks due that local day, habits applicable that weekday, and external
     events of that day are selected
  2. everything is merged and sorted by minutes since midnight (habit
     reminder_time, task/event due time); untimed items follow, in input order
  3. single-day windows are additionally bucketed into overdue / morning /
     afternoon / evening / anytime. An overdue task appears only under overdue.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from .recurrence import Lineage, expand_occurrences
from .schema import Board, CalendarEvent, EventType, Habit, HabitFrequency, Task, js_weekday

NOON = 12 * 60
EVENING = 17 * 60


class WindowKind(Enum):
    DAY = "day"
    WEEK = "week"


class Bucket(Enum):
    OVERDUE = "overdue"
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    ANYTIME = "anytime"


@dataclass(frozen=True)
class Window:
    """A single day, or seven days starting on the configured week-start day."""
    start: date
    kind: WindowKind = WindowKind.DAY

    @property
    def days(self) -> int:
        return 7 if self.kind is WindowKind.WEEK else 1

    @property
    def end(self) -> date:
        return self.start + timedelta(days=self.days - 1)

    def dates(self) -> List[date]:
        return [self.start + timedelta(days=i) for i in range(self.days)]

    @classmethod
    def day(cls, reference: date) -> "Window":
        return cls(reference, WindowKind.DAY)

    @classmethod
    def week(cls, reference: date, week_start_day: int = 0) -> "Window":
        """Week containing ``reference``; week_start_day uses 0 = Sunday."""
        offset = (js_weekday(reference) - week_start_day) % 7
        return cls(reference - timedelta(days=offset), WindowKind.WEEK)

    @classmethod
    def for_kind(cls, kind: str, reference: date, week_start_day: int = 0) -> "Window":
        if WindowKind(kind) is WindowKind.WEEK:
            return cls.week(reference, week_start_day)
        return cls.day(reference)


@dataclass
class AgendaDay:
    day: date
    items: List[CalendarEvent] = field(default_factory=list)
    buckets: Optional[Dict[Bucket, List[CalendarEvent]]] = None

    def to_dict(self) -> Dict[str, object]:
        data: Dict[str, object] = {
            "date": self.day.isoformat(),
            "items": [e.to_dict() for e in self.items],
        }
        if self.buckets is not None:
            data["buckets"] = {b.value: [e.to_dict() for e in items] for b, items in self.buckets.items()}
        return data


@dataclass
class AgendaView:
    window: Window
    days: List[AgendaDay] = field(default_factory=list)

    @property
    def items(self) -> List[CalendarEvent]:
        return [item for day in self.days for item in day.items]

    def for_day(self, day: date) -> Optional[AgendaDay]:
        for agenda_day in self.days:
            if agenda_day.day == day:
                return agenda_day
        return None

    def to_dict(self) -> Dict[str, object]:
        return {
            "window": self.window.kind.value,
            "start": self.window.start.isoformat(),
            "end": self.window.end.isoformat(),
            "days": [d.to_dict() for d in self.days],
        }


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Projection helpers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def minutes_since_midnight(value: datetime) -> int:
    return value.hour * 60 + value.minute


def sort_minutes(event: CalendarEvent) -> Optional[int]:
    """Sort key in minutes, or None when the entry has no time of day."""
    if event.due_date is None:
        return None
    return minutes_since_midnight(event.due_date)


def task_to_event(
    task: Task,
    board: Optional[Board] = None,
    due: Optional[datetime] = None,
    completed: Optional[bool] = None,
) -> CalendarEvent:
    due = due or task.due_date
    return CalendarEvent(
        id=task.task_id,
        title=task.title,
        type=EventType.TASK,
        due_date=due,
        completed=task.completed if completed is None else completed,
        priority=task.priority,
        board_id=board.board_id if board else None,
        column_id=task.column_id,
        instance_date=due.date() if due else task.instance_date,
        space=board.space if board else None,
    )


def habit_scheduled(habit: Habit, day: date) -> bool:
    """Whether ``day`` is one of the habit's regular days, ignoring ``check_date``."""
    if habit.frequency is HabitFrequency.DAILY:
        return True
    return js_weekday(day) in habit.target_days


def habit_applies(habit: Habit, day: date) -> bool:
    """Whether a habit is scheduled on ``day``."""
    if not habit.active:
        return False
    if habit.check_date is not None:
        return habit.check_date == day
    return habit_scheduled(habit, day)


def habit_streak(habit: Habit, done_days: Set[date], today: date) -> int:
    """Count consecutive completed scheduled days ending today.

    Today only breaks the streak once it is over, so an unchecked today
    counts back from yesterday.
    """
    if not done_days:
        return 0
    earliest = min(done_days)
    day = today
    if day not in done_days:
        day -= timedelta(days=1)
    streak = 0
    while day >= earliest:
        if habit_scheduled(habit, day):
            if day not in done_days:
                break
            streak += 1
        day -= timedelta(days=1)
    return streak


def habit_to_event(
    habit: Habit,
    day: date,
    today: date,
    done_days: Optional[Set[date]] = None,
) -> CalendarEvent:
    minutes = habit.reminder_minutes
    due = None
    if minutes is not None:
        due = datetime.combine(day, time(minutes // 60, minutes % 60))
    if done_days is not None:
        completed = day in done_days
    else:
        completed = habit.completed_today and (habit.check_date or today) == day
    return CalendarEvent(
        id=habit.habit_id,
        title=habit.name,
        type=EventType.HABIT,
        due_date=due,
        completed=completed,
        instance_date=day,
        space=habit.space,
    )


def merge_sorted(events: Iterable[CalendarEvent]) -> List[CalendarEvent]:
    """De-duplicate by (id, instance_date) and sort timed entries first.

    Python's sort is stable, so entries with the same minute, and all untimed
    entries, keep their input order.
    """
    unique: Dict[Tuple, CalendarEvent] = {}
    for event in events:
        unique.setdefault(event.key, event)

    def key(event: CalendarEvent) -> Tuple[int, int]:
        minutes = sort_minutes(event)
        return (1, 0) if minutes is None else (0, minutes)

    return sorted(unique.values(), key=key)


def is_overdue(event: CalendarEvent, now: datetime) -> bool:
    """Only tasks can be overdue: due strictly before now and not completed."""
    if event.type is not EventType.TASK or event.completed:
        return False
    if event.due_date is not None:
        return event.due_date < now
    return event.instance_date is not None and event.instance_date < now.date()


def bucket_for(event: CalendarEvent, now: datetime) -> Bucket:
    if is_overdue(event, now):
        return Bucket.OVERDUE
    minutes = sort_minutes(event)
    if minutes is None:
        return Bucket.ANYTIME
    if minutes < NOON:
        return Bucket.MORNING
    if minutes < EVENING:
        return Bucket.AFTERNOON
    return Bucket.EVENING


def bucketize(items: Sequence[CalendarEvent], now: datetime) -> Dict[Bucket, List[CalendarEvent]]:
    buckets: Dict[Bucket, List[CalendarEvent]] = {b: [] for b in Bucket}
    for item in items:
        buckets[bucket_for(item, now)].append(item)
    return buckets


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Aggregation
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _projected_instances(
    tasks: Sequence[Task],
    window: Window,
    boards_by_column: Mapping[str, Board],
) -> List[CalendarEvent]:
    """Virtual future occurrences of pending series, minus dates already materialised."""
    lineage = Lineage(tasks)
    taken: Set[Tuple[str, date]] = {
        (lineage.series_of(t.task_id), t.occurrence_date)
        for t in tasks if t.occurrence_date is not None
    }
    projected: List[CalendarEvent] = []
    for task in tasks:
        if not task.is_recurring or task.completed:
            continue
        series_id = lineage.series_of(task.task_id)
        for due in expand_occurrences(task, window.start, window.end, lineage):
            if (series_id, due.date()) in taken:
                continue
            taken.add((series_id, due.date()))
            projected.append(task_to_event(task, boards_by_column.get(task.column_id), due=due, completed=False))
    return projected


def build_agenda(
    tasks: Iterable[Task],
    habits: Iterable[Habit],
    window: Window,
    now: datetime,
    external_events: Iterable[CalendarEvent] = (),
    boards_by_column: Optional[Mapping[str, Board]] = None,
    hide_completed: bool = False,
    project_recurring: bool = False,
    habit_logs: Optional[Mapping[str, Set[date]]] = None,
) -> AgendaView:
    """Merge tasks, habits and external events into an agenda for ``window``.

    ``habit_logs`` maps habit ids to their completed days. A habit missing
    from it falls back to its stored ``completed_today`` flag.
    """
    boards_by_column = boards_by_column or {}
    habit_logs = habit_logs or {}
    tasks = list(tasks)
    habits = list(habits)
    today = now.date()

    task_events = [
        task_to_event(t, boards_by_column.get(t.column_id))
        for t in tasks
        if t.occurrence_date is not None
    ]
    if project_recurring:
        task_events.extend(_projected_instances(tasks, window, boards_by_column))
    if hide_completed:
        task_events = [e for e in task_events if not e.completed]

    externals = [e for e in external_events if e.due_date is not None or e.instance_date is not None]

    view = AgendaView(window)
    for day in window.dates():
        selected: List[CalendarEvent] = [e for e in task_events if e.instance_date == day]
        selected.extend(
            habit_to_event(h, day, today, habit_logs.get(h.habit_id))
            for h in habits
            if habit_applies(h, day)
        )
        selected.extend(
            e for e in externals
            if (e.due_date.date() if e.due_date else e.instance_date) == day
        )
        view.days.append(AgendaDay(day, merge_sorted(selected)))

    if window.kind is WindowKind.DAY:
        agenda_day = view.days[0]
        if agenda_day.day == today:
            # Unfinished work from earlier days shows up in today's overdue list
            carried = [e for e in task_events if e.instance_date and e.instance_date < today and not e.completed]
            agenda_day.items = merge_sorted(carried + agenda_day.items)
        agenda_day.buckets = bucketize(agenda_day.items, now)

    return view
