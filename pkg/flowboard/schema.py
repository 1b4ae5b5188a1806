"""
Board, column, task and habit schema.

Display order is never derived from row order or timestamps: a board owns
``column_order`` and each column owns ``task_order``, both explicit lists of
ids. A task's ``column_id`` is the authoritative parent; the order lists are
reconciled against it on every read (see ordering.py).

All datetimes are naive local times. The "local day" of a datetime is simply
its ``.date()``.
"""
from enum import Enum
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, List, Dict, Any, Union
import json
import re

from .errors import ValidationError


_HHMM = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def parse_datetime(value: Union[str, date, datetime, None]) -> Optional[datetime]:
    """Coerce an ISO string, date or datetime into a naive datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.astimezone().replace(tzinfo=None) if value.tzinfo else value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except ValueError as e:
        raise ValidationError(f"Invalid date/time: {value!r}") from e
    return parsed.astimezone().replace(tzinfo=None) if parsed.tzinfo else parsed


def parse_date(value: Union[str, date, datetime, None]) -> Optional[date]:
    """Coerce an ISO string, date or datetime into a calendar date."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return parse_datetime(value).date()


def parse_hhmm(value: Optional[str]) -> Optional[int]:
    """Convert "HH:mm" to minutes since midnight. None for empty input."""
    if not value:
        return None
    match = _HHMM.match(value.strip())
    if not match:
        raise ValidationError(f"Invalid time of day: {value!r} (expected HH:mm)")
    return int(match.group(1)) * 60 + int(match.group(2))


def js_weekday(day: date) -> int:
    """Weekday number with 0 = Sunday ... 6 = Saturday."""
    return day.isoweekday() % 7


class Priority(Enum):
    """Task priority. Declaration order is the ordinal order."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return list(Priority).index(self)

    def __lt__(self, other: "Priority") -> bool:
        if not isinstance(other, Priority):
            return NotImplemented
        return self.rank < other.rank

    @classmethod
    def from_str(cls, value: Optional[str]) -> "Priority":
        if not value:
            return cls.MEDIUM
        try:
            return cls(str(value).strip().lower())
        except ValueError as e:
            raise ValidationError(f"Invalid priority: {value!r}") from e


class RecurringPattern(Enum):
    """How often a recurring task repeats."""
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    END_OF_MONTH = "end_of_month"
    YEARLY = "yearly"

    @classmethod
    def parse(cls, value: Union[str, "RecurringPattern", None]) -> Optional["RecurringPattern"]:
        """Parse a pattern; empty or "none" means no recurrence.

        Unknown values are rejected rather than silently treated as
        non-recurring.
        """
        if value is None or isinstance(value, RecurringPattern):
            return value
        text = str(value).strip().lower()
        if text in ("", "none"):
            return None
        try:
            return cls(text)
        except ValueError as e:
            raise ValidationError(
                f"Unknown recurring pattern {value!r}. "
                f"Expected one of: {', '.join(p.value for p in cls)}"
            ) from e


class HabitFrequency(Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    CUSTOM = "custom"

    @classmethod
    def parse(cls, value: Union[str, "HabitFrequency", None]) -> "HabitFrequency":
        if isinstance(value, HabitFrequency):
            return value
        try:
            return cls(str(value or "daily").strip().lower())
        except ValueError as e:
            raise ValidationError(f"Invalid habit frequency: {value!r}") from e


class EventType(Enum):
    """Kind of entity behind an agenda entry."""
    TASK = "task"
    HABIT = "habit"
    EXTERNAL = "external"


@dataclass
class Subtask:
    title: str
    completed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"title": self.title, "completed": self.completed}

    @classmethod
    def from_dict(cls, data: Union[Dict[str, Any], "Subtask"]) -> "Subtask":
        if isinstance(data, Subtask):
            return data
        return cls(title=str(data.get("title", "")), completed=bool(data.get("completed", False)))


@dataclass
class Board:
    """A board and the display order of its columns."""

    board_id: str
    name: str
    space: str = "work"
    column_order: List[str] = field(default_factory=list)
    order_version: int = 0
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "board_id": self.board_id,
            "name": self.name,
            "space": self.space,
            "column_order": list(self.column_order),
            "order_version": self.order_version,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Board":
        column_order = data.get("column_order") or []
        if isinstance(column_order, str):
            column_order = json.loads(column_order)
        return cls(
            board_id=data["board_id"],
            name=data.get("name", ""),
            space=data.get("space") or "work",
            column_order=list(column_order),
            order_version=int(data.get("order_version") or 0),
            created_at=parse_datetime(data.get("created_at")) or datetime.now(),
            updated_at=parse_datetime(data.get("updated_at")) or datetime.now(),
        )


@dataclass
class Column:
    """A board column and the display order of its tasks."""

    column_id: str
    board_id: str
    name: str
    task_order: List[str] = field(default_factory=list)
    wip_limit: Optional[int] = None
    order_version: int = 0
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "column_id": self.column_id,
            "board_id": self.board_id,
            "name": self.name,
            "task_order": list(self.task_order),
            "wip_limit": self.wip_limit,
            "order_version": self.order_version,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Column":
        task_order = data.get("task_order") or []
        if isinstance(task_order, str):
            task_order = json.loads(task_order)
        wip_limit = data.get("wip_limit")
        return cls(
            column_id=data["column_id"],
            board_id=data["board_id"],
            name=data.get("name", ""),
            task_order=list(task_order),
            wip_limit=int(wip_limit) if wip_limit is not None else None,
            order_version=int(data.get("order_version") or 0),
            created_at=parse_datetime(data.get("created_at")) or datetime.now(),
        )


@dataclass
class Task:
    """A task card. Recurring occurrences are ordinary tasks linked by parent_task_id."""

    task_id: str
    title: str
    column_id: str
    description: str = ""
    due_date: Optional[datetime] = None
    priority: Priority = Priority.MEDIUM
    completed: bool = False
    labels: List[str] = field(default_factory=list)
    subtasks: List[Subtask] = field(default_factory=list)

    # Recurrence
    recurring_pattern: Optional[RecurringPattern] = None
    recurring_end_date: Optional[date] = None
    parent_task_id: Optional[str] = None  # lineage only, never ownership
    instance_date: Optional[date] = None

    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def validate(self) -> None:
        """Raise ValidationError if the task cannot be persisted."""
        if not self.title or not self.title.strip():
            raise ValidationError("Task title must not be empty")
        if not self.column_id:
            raise ValidationError("Task must belong to a column")
        if self.recurring_pattern is not None and not isinstance(self.recurring_pattern, RecurringPattern):
            self.recurring_pattern = RecurringPattern.parse(self.recurring_pattern)

    @property
    def is_recurring(self) -> bool:
        return self.recurring_pattern is not None

    @property
    def occurrence_date(self) -> Optional[date]:
        """The calendar date this occurrence stands for."""
        if self.instance_date:
            return self.instance_date
        return self.due_date.date() if self.due_date else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "title": self.title,
            "column_id": self.column_id,
            "description": self.description,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "priority": self.priority.value,
            "completed": self.completed,
            "labels": sorted(set(self.labels)),
            "subtasks": [s.to_dict() for s in self.subtasks],
            "recurring_pattern": self.recurring_pattern.value if self.recurring_pattern else None,
            "recurring_end_date": self.recurring_end_date.isoformat() if self.recurring_end_date else None,
            "parent_task_id": self.parent_task_id,
            "instance_date": self.instance_date.isoformat() if self.instance_date else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        labels = data.get("labels") or []
        if isinstance(labels, str):
            labels = json.loads(labels)
        subtasks = data.get("subtasks") or []
        if isinstance(subtasks, str):
            subtasks = json.loads(subtasks)
        return cls(
            task_id=data["task_id"],
            title=data.get("title", ""),
            column_id=data.get("column_id", ""),
            description=data.get("description") or "",
            due_date=parse_datetime(data.get("due_date")),
            priority=Priority.from_str(data.get("priority")),
            completed=bool(data.get("completed", False)),
            labels=list(labels),
            subtasks=[Subtask.from_dict(s) for s in subtasks],
            recurring_pattern=RecurringPattern.parse(data.get("recurring_pattern")),
            recurring_end_date=parse_date(data.get("recurring_end_date")),
            parent_task_id=data.get("parent_task_id") or None,
            instance_date=parse_date(data.get("instance_date")),
            created_at=parse_datetime(data.get("created_at")) or datetime.now(),
            updated_at=parse_datetime(data.get("updated_at")) or datetime.now(),
        )


@dataclass
class Habit:
    """A repeating personal habit shown on the agenda."""

    habit_id: str
    name: str
    space: str = "work"
    frequency: HabitFrequency = HabitFrequency.DAILY
    target_days: List[int] = field(default_factory=list)  # 0 = Sunday
    active: bool = True
    completed_today: bool = False
    current_streak: int = 0
    reminder_time: Optional[str] = None  # "HH:mm" local
    check_date: Optional[date] = None     # pre-resolved day inside a week window

    def validate(self) -> None:
        if not self.name or not self.name.strip():
            raise ValidationError("Habit name must not be empty")
        parse_hhmm(self.reminder_time)
        bad = [d for d in self.target_days if not 0 <= int(d) <= 6]
        if bad:
            raise ValidationError(f"Invalid target days: {bad} (expected 0-6)")

    @property
    def reminder_minutes(self) -> Optional[int]:
        return parse_hhmm(self.reminder_time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "habit_id": self.habit_id,
            "name": self.name,
            "space": self.space,
            "frequency": self.frequency.value,
            "target_days": sorted(set(self.target_days)),
            "active": self.active,
            "completed_today": self.completed_today,
            "current_streak": self.current_streak,
            "reminder_time": self.reminder_time,
            "check_date": self.check_date.isoformat() if self.check_date else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Habit":
        target_days = data.get("target_days") or []
        if isinstance(target_days, str):
            target_days = json.loads(target_days)
        return cls(
            habit_id=data["habit_id"],
            name=data.get("name", ""),
            space=data.get("space") or "work",
            frequency=HabitFrequency.parse(data.get("frequency")),
            target_days=[int(d) for d in target_days],
            active=bool(data.get("active", True)),
            completed_today=bool(data.get("completed_today", False)),
            current_streak=int(data.get("current_streak") or 0),
            reminder_time=data.get("reminder_time") or None,
            check_date=parse_date(data.get("check_date")),
        )


@dataclass(frozen=True)
class CalendarEvent:
    """Read-only agenda entry projected from a task, habit or external event."""

    id: str
    title: str
    type: EventType
    due_date: Optional[datetime] = None
    completed: bool = False
    priority: Optional[Priority] = None
    board_id: Optional[str] = None
    column_id: Optional[str] = None
    instance_date: Optional[date] = None
    space: Optional[str] = None

    @property
    def key(self) -> tuple:
        """De-duplication key for list rendering."""
        return (self.id, self.instance_date)

    @property
    def draggable(self) -> bool:
        return self.type is not EventType.EXTERNAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "type": self.type.value,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "completed": self.completed,
            "priority": self.priority.value if self.priority else None,
            "board_id": self.board_id,
            "column_id": self.column_id,
            "instance_date": self.instance_date.isoformat() if self.instance_date else None,
            "space": self.space,
        }

    @classmethod
    def external(cls, event_id: str, title: str, start: Union[str, datetime]) -> "CalendarEvent":
        """Build an entry for an event from an external (read-only) calendar."""
        due = parse_datetime(start)
        return cls(
            id=event_id,
            title=title,
            type=EventType.EXTERNAL,
            due_date=due,
            instance_date=due.date() if due else None,
        )
