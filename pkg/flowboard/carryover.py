"""
Carry-over: reschedule overdue work to a symbolic target.

Targets form a closed set of variants resolved by one function against the
instant the carry-over is invoked (not against the task's old due date).

Custom targets given as a bare date land at 00:00 of that date; the task's
previous time of day is not kept. A custom target given as a full datetime is
used as-is.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Union

from .errors import PartialBatchFailure, ValidationError
from .recurrence import last_day_of_month
from .schema import parse_datetime


class CarryOverTarget:
    """Base of the closed set of carry-over targets."""
    name = ""


@dataclass(frozen=True)
class EndOfToday(CarryOverTarget):
    name = "end_of_today"


@dataclass(frozen=True)
class Tomorrow(CarryOverTarget):
    name = "tomorrow"


@dataclass(frozen=True)
class NextWeek(CarryOverTarget):
    name = "next_week"


@dataclass(frozen=True)
class EndOfMonth(CarryOverTarget):
    name = "end_of_month"


@dataclass(frozen=True)
class Custom(CarryOverTarget):
    when: Union[date, datetime]
    name = "custom"


_SYMBOLIC = {cls.name: cls for cls in (EndOfToday, Tomorrow, NextWeek, EndOfMonth)}


def end_of_day(day: date) -> datetime:
    return datetime.combine(day, time.max)


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min)


def resolve_target(target: CarryOverTarget, now: datetime) -> datetime:
    """Concrete instant for ``target`` evaluated at ``now``."""
    today = now.date()
    if isinstance(target, EndOfToday):
        return end_of_day(today)
    if isinstance(target, Tomorrow):
        return start_of_day(today + timedelta(days=1))
    if isinstance(target, NextWeek):
        return start_of_day(today + timedelta(days=7))
    if isinstance(target, EndOfMonth):
        return end_of_day(today.replace(day=last_day_of_month(today.year, today.month)))
    if isinstance(target, Custom):
        if isinstance(target.when, datetime):
            return target.when
        return start_of_day(target.when)
    raise ValidationError(f"Unknown carry-over target: {target!r}")


def parse_target(value: Union[str, date, datetime, CarryOverTarget, None]) -> CarryOverTarget:
    """Parse a symbolic name ("tomorrow") or an ISO date/datetime into a target."""
    if isinstance(value, CarryOverTarget):
        return value
    if isinstance(value, (date, datetime)):
        return Custom(value)
    text = str(value or "").strip().lower()
    if not text:
        raise ValidationError("Carry-over target is required")
    if text in _SYMBOLIC:
        return _SYMBOLIC[text]()
    # Date-only strings are a calendar day; anything with a time is an instant
    if len(text) == 10:
        return Custom(parse_datetime(text).date())
    return Custom(parse_datetime(value))


@dataclass
class CarryOverResult:
    """Per-id outcome of a carry-over batch. Partial success is normal."""

    due_date: datetime
    succeeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def partial(self) -> bool:
        return bool(self.succeeded) and bool(self.failed)

    def record_success(self, task_id: str) -> None:
        self.succeeded.append(task_id)

    def record_failure(self, task_id: str, reason: str) -> None:
        self.failed.append(task_id)
        self.errors[task_id] = reason

    def raise_for_failures(self) -> None:
        """Raise PartialBatchFailure if any id failed (opt-in strictness)."""
        if self.failed:
            raise PartialBatchFailure(self.succeeded, self.failed, self.errors)

    def to_dict(self) -> Dict[str, object]:
        return {
            "due_date": self.due_date.isoformat(),
            "succeeded": list(self.succeeded),
            "failed": list(self.failed),
            "errors": dict(self.errors),
        }
