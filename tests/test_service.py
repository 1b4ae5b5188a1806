"""
Tests for BoardService: the operation set over a real SQLite store.
"""
from dataclasses import replace
from datetime import date, datetime

import pytest

from pkg.flowboard.agenda import Bucket
from pkg.flowboard.config import Config
from pkg.flowboard.errors import (
    ConflictError,
    ConstraintError,
    NotFoundError,
    ValidationError,
)
from pkg.flowboard.schema import CalendarEvent
from pkg.flowboard.service import BoardService


def columns_by_name(snapshot):
    return {view.column.name: view.column for view in snapshot.columns}


def task_titles(service, column_id):
    return [t.title for t in service.list_tasks(column_id)]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Boards and ordering
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_create_board_with_default_columns(board):
    assert [v.column.name for v in board.columns] == ["To Do", "In Progress", "Done"]
    assert board.board.column_order == [v.column.column_id for v in board.columns]


def test_create_board_requires_name(service):
    with pytest.raises(ValidationError):
        service.create_board("   ")


def test_create_column_appends(service, board):
    column = service.create_column(board.board.board_id, "Blocked", wip_limit=2)
    snapshot = service.get_board(board.board.board_id)
    assert snapshot.columns[-1].column.column_id == column.column_id
    assert snapshot.columns[-1].column.wip_limit == 2


def test_get_board_reconciles_without_writing(service, store, board):
    todo = columns_by_name(board)["To Do"]
    t1 = service.create_task(todo.column_id, "One")
    t2 = service.create_task(todo.column_id, "Two")
    stale = replace(store.get_column(todo.column_id), task_order=["ghost", t2.task_id])
    store.save_column(stale)

    snapshot = service.get_board(board.board.board_id)
    view = snapshot.column(todo.column_id)
    assert [t.task_id for t in view.tasks] == [t2.task_id, t1.task_id]
    assert store.get_column(todo.column_id).task_order == ["ghost", t2.task_id]


def test_create_task_at_index_after_cross_board_move(service, store, board):
    todo = columns_by_name(board)["To Do"]
    other = service.get_board(service.create_board("Home", space="personal").board_id)
    leaving = service.create_task(todo.column_id, "Leaving")
    service.create_task(todo.column_id, "A")
    service.create_task(todo.column_id, "B")
    service.move_task(leaving.task_id, columns_by_name(other)["To Do"].column_id)
    assert store.get_column(todo.column_id).task_order[0] == leaving.task_id

    service.create_task(todo.column_id, "C", index=1)
    assert task_titles(service, todo.column_id) == ["A", "C", "B"]


def test_get_missing_board(service):
    with pytest.raises(NotFoundError):
        service.get_board("board-nope")


def test_create_task_rejects_empty_title_and_bad_pattern(service, board):
    todo = columns_by_name(board)["To Do"]
    with pytest.raises(ValidationError):
        service.create_task(todo.column_id, "  ")
    with pytest.raises(ValidationError):
        service.create_task(todo.column_id, "Rent", recurring_pattern="fortnightly")
    assert service.list_tasks(todo.column_id) == []


def test_reorder_within_column_and_back(service, board):
    todo = columns_by_name(board)["To Do"]
    ids = [service.create_task(todo.column_id, name).task_id for name in "ABCD"]

    service.reorder_within_column(todo.column_id, ids[1], 3)
    assert task_titles(service, todo.column_id) == ["A", "C", "D", "B"]
    service.reorder_within_column(todo.column_id, ids[1], 1)
    assert task_titles(service, todo.column_id) == ["A", "B", "C", "D"]


def test_noop_reorder_writes_nothing(service, store, board):
    todo = columns_by_name(board)["To Do"]
    task = service.create_task(todo.column_id, "A")
    version = store.get_column(todo.column_id).order_version

    plan = service.reorder_within_column(todo.column_id, task.task_id, 0)
    assert plan.is_noop
    assert store.get_column(todo.column_id).order_version == version


def test_move_across_column_to_front(service, board):
    cols = columns_by_name(board)
    todo, doing = cols["To Do"], cols["In Progress"]
    moving = service.create_task(todo.column_id, "Move me")
    service.create_task(doing.column_id, "Already here")

    service.move_task(moving.task_id, doing.column_id, 0)

    assert service.store.get_task(moving.task_id).column_id == doing.column_id
    assert moving.task_id not in service.store.get_column(todo.column_id).task_order
    assert service.store.get_column(doing.column_id).task_order[0] == moving.task_id


def test_move_across_board(service, board):
    todo = columns_by_name(board)["To Do"]
    other = service.get_board(service.create_board("Home", space="personal").board_id)
    target = columns_by_name(other)["To Do"]
    task = service.create_task(todo.column_id, "Fix sink")

    service.move_task(task.task_id, target.column_id)

    assert task_titles(service, target.column_id) == ["Fix sink"]
    assert task_titles(service, todo.column_id) == []


def test_reorder_tasks_with_version(service, store, board):
    todo = columns_by_name(board)["To Do"]
    a = service.create_task(todo.column_id, "A")
    b = service.create_task(todo.column_id, "B")
    version = store.get_column(todo.column_id).order_version

    service.reorder_tasks(todo.column_id, [b.task_id, a.task_id], expected_version=version)
    assert task_titles(service, todo.column_id) == ["B", "A"]

    with pytest.raises(ConflictError):
        service.reorder_tasks(todo.column_id, [a.task_id, b.task_id], expected_version=version)
    assert task_titles(service, todo.column_id) == ["B", "A"]


def test_reorder_columns(service, board):
    ids = [v.column.column_id for v in board.columns]
    service.reorder_columns(board.board.board_id, [ids[2], ids[0]])
    snapshot = service.get_board(board.board.board_id)
    assert [v.column.name for v in snapshot.columns] == ["Done", "To Do", "In Progress"]

    service.move_column(board.board.board_id, ids[1], 0)
    snapshot = service.get_board(board.board.board_id)
    assert [v.column.name for v in snapshot.columns] == ["In Progress", "Done", "To Do"]


def test_apply_drag(service, board):
    cols = columns_by_name(board)
    a = service.create_task(cols["To Do"].column_id, "A")
    service.create_task(cols["To Do"].column_id, "B")

    service.apply_drag(board.board.board_id, a.task_id, cols["Done"].column_id)
    assert task_titles(service, cols["Done"].column_id) == ["A"]

    with pytest.raises(ValidationError):
        service.apply_drag(board.board.board_id, a.task_id, cols["To Do"].column_id, kind="sideways")


def test_wip_flag_on_snapshot(service, board):
    column = service.create_column(board.board.board_id, "Focus", wip_limit=1)
    service.create_task(column.column_id, "One")
    service.create_task(column.column_id, "Two")
    view = service.get_board(board.board.board_id).column(column.column_id)
    assert view.wip.over_limit
    assert view.to_dict()["over_wip_limit"] is True


def test_delete_column_rules(service, board):
    cols = columns_by_name(board)
    service.create_task(cols["To Do"].column_id, "Keep")

    with pytest.raises(ConstraintError):
        service.delete_column(cols["To Do"].column_id)

    service.delete_column(cols["In Progress"].column_id)
    snapshot = service.get_board(board.board.board_id)
    assert [v.column.name for v in snapshot.columns] == ["To Do", "Done"]
    assert cols["In Progress"].column_id not in snapshot.board.column_order


def test_delete_task(service, board):
    todo = columns_by_name(board)["To Do"]
    task = service.create_task(todo.column_id, "Gone soon")
    service.delete_task(task.task_id)
    assert service.list_tasks(todo.column_id) == []
    with pytest.raises(NotFoundError):
        service.delete_task(task.task_id)


def test_update_column_name_and_wip_limit(service, board):
    todo = columns_by_name(board)["To Do"]
    updated = service.update_column(todo.column_id, {"name": " Backlog ", "wip_limit": 1})
    assert updated.name == "Backlog"
    assert updated.wip_limit == 1

    service.create_task(todo.column_id, "A")
    service.create_task(todo.column_id, "B")
    assert service.get_board(board.board.board_id).column(todo.column_id).wip.over_limit

    cleared = service.update_column(todo.column_id, {"wip_limit": None})
    assert cleared.wip_limit is None
    assert cleared.name == "Backlog"
    assert task_titles(service, todo.column_id) == ["A", "B"]


def test_update_column_rejects_bad_values(service, board):
    todo = columns_by_name(board)["To Do"]
    for fields in ({"name": "  "}, {"wip_limit": -1}, {"wip_limit": "lots"}, {"wip_limit": True}, {"color": "red"}):
        with pytest.raises(ValidationError):
            service.update_column(todo.column_id, fields)
    assert service.store.get_column(todo.column_id).name == "To Do"
    with pytest.raises(NotFoundError):
        service.update_column("col-missing", {"name": "Ghost"})


def test_update_board_keeps_column_order(service, board):
    board_id = board.board.board_id
    service.move_column(board_id, columns_by_name(board)["Done"].column_id, 0)
    before = service.get_board(board_id).board.column_order

    updated = service.update_board(board_id, {"name": "Home", "space": "personal"})
    assert (updated.name, updated.space) == ("Home", "personal")
    assert updated.column_order == before
    assert [b.board_id for b in service.list_boards("personal")] == [board_id]
    assert service.list_boards("work") == []

    with pytest.raises(ValidationError):
        service.update_board(board_id, {"name": ""})
    with pytest.raises(ValidationError):
        service.update_board(board_id, {"column_order": []})
    with pytest.raises(NotFoundError):
        service.update_board("board-missing", {"name": "Nope"})


def test_delete_board_rejects_boards_with_tasks(service, board):
    board_id = board.board.board_id
    todo = columns_by_name(board)["To Do"]
    task = service.create_task(todo.column_id, "Still here")

    with pytest.raises(ConstraintError):
        service.delete_board(board_id)
    assert service.store.get_board(board_id) is not None
    assert len(service.store.list_columns(board_id)) == 3

    service.delete_task(task.task_id)
    events = []
    service.subscribe("board_deleted", lambda board_id: events.append(board_id))
    service.delete_board(board_id)
    assert service.list_boards() == []
    assert service.store.list_columns(board_id) == []
    assert events == [board_id]
    with pytest.raises(NotFoundError):
        service.delete_board(board_id)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Completion and recurrence
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_complete_weekly_task(service, board):
    cols = columns_by_name(board)
    task = service.create_task(cols["To Do"].column_id, "Review finances",
                               due_date="2025-01-01T09:00", recurring_pattern="weekly")

    completion = service.complete_task(task.task_id)

    nxt = completion.advancement.next_task
    assert completion.task.completed
    assert completion.task.column_id == cols["Done"].column_id
    assert nxt.due_date == datetime(2025, 1, 8, 9, 0)
    assert nxt.parent_task_id == task.task_id
    assert task_titles(service, cols["To Do"].column_id) == ["Review finances"]
    assert service.list_tasks(cols["To Do"].column_id)[0].task_id == nxt.task_id


def test_completion_is_not_advanced_twice(service, board):
    todo = columns_by_name(board)["To Do"]
    task = service.create_task(todo.column_id, "Water plants",
                               due_date="2025-01-01T09:00", recurring_pattern="daily")
    first = service.complete_task(task.task_id)
    assert first.advancement.created

    assert not service.complete_task(task.task_id).advancement.created
    service.reopen_task(task.task_id)
    again = service.complete_task(task.task_id)
    assert again.advancement.already_advanced
    assert again.advancement.next_task.task_id == first.advancement.next_task.task_id
    series = [t for t in service.store.list_all_tasks() if t.title == "Water plants"]
    assert len(series) == 2


def test_series_ends_at_end_date(service, board):
    todo = columns_by_name(board)["To Do"]
    task = service.create_task(todo.column_id, "Course", due_date="2025-01-10T09:00",
                               recurring_pattern="daily", recurring_end_date="2025-01-10")
    completion = service.complete_task(task.task_id)
    assert completion.advancement.series_ended
    assert len(service.store.list_all_tasks()) == 1


def test_reopen_moves_to_in_progress(service, board):
    cols = columns_by_name(board)
    task = service.create_task(cols["To Do"].column_id, "Draft")
    service.complete_task(task.task_id)
    assert task_titles(service, cols["Done"].column_id) == ["Draft"]

    reopened = service.reopen_task(task.task_id)
    assert not reopened.completed
    assert reopened.column_id == cols["In Progress"].column_id


def test_auto_move_can_be_disabled(store, clock):
    service = BoardService(store, Config(auto_move_on_complete=False), clock=clock)
    board = service.get_board(service.create_board("Plain").board_id)
    todo = columns_by_name(board)["To Do"]
    task = service.create_task(todo.column_id, "Stay put")
    assert service.complete_task(task.task_id).task.column_id == todo.column_id


def test_update_task_validates_before_writing(service, board):
    todo = columns_by_name(board)["To Do"]
    task = service.create_task(todo.column_id, "Original", priority="low")

    with pytest.raises(ValidationError):
        service.update_task(task.task_id, {"title": "", "priority": "high"})
    with pytest.raises(ValidationError):
        service.update_task(task.task_id, {"recurring_pattern": "hourly"})
    with pytest.raises(ValidationError):
        service.update_task(task.task_id, {"owner": "me"})
    assert service.store.get_task(task.task_id).title == "Original"

    updated = service.update_task(task.task_id, {"title": "Renamed", "priority": "urgent",
                                                 "labels": ["b", "a", "b"]})
    assert updated.title == "Renamed"
    assert updated.priority.value == "urgent"
    assert updated.labels == ["a", "b"]


def test_update_task_routes_column_and_completion(service, board):
    cols = columns_by_name(board)
    task = service.create_task(cols["To Do"].column_id, "Route me")
    updated = service.update_task(task.task_id, {"column_id": cols["In Progress"].column_id})
    assert updated.column_id == cols["In Progress"].column_id
    assert task_titles(service, cols["In Progress"].column_id) == ["Route me"]

    updated = service.update_task(task.task_id, {"completed": True})
    assert updated.completed
    assert updated.column_id == cols["Done"].column_id


def test_update_task_requires_real_bool_for_completed(service, board):
    todo = columns_by_name(board)["To Do"]
    task = service.create_task(todo.column_id, "Not done yet")

    for value in ("false", "true", 1, None):
        with pytest.raises(ValidationError):
            service.update_task(task.task_id, {"completed": value, "title": "Changed"})
    stored = service.store.get_task(task.task_id)
    assert not stored.completed
    assert stored.title == "Not done yet"
    assert stored.column_id == todo.column_id

    assert not service.update_task(task.task_id, {"completed": False}).completed


def test_sweep_recurring_is_idempotent(service, board, clock):
    todo = columns_by_name(board)["To Do"]
    service.create_task(todo.column_id, "Standup notes", due_date="2025-03-05T09:00",
                        recurring_pattern="daily")

    created = service.sweep_recurring()
    assert [t.due_date for t in created] == [datetime(2025, 3, 10, 9, 0)]
    assert len(service.list_tasks(todo.column_id)) == 2
    assert service.sweep_recurring() == []


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Carry-over
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_carry_over_partial_batch(service, board):
    """3 ids, 1 missing: 2 succeeded, 1 failed, no exception"""
    todo = columns_by_name(board)["To Do"]
    a = service.create_task(todo.column_id, "A", due_date="2025-03-01T09:00")
    b = service.create_task(todo.column_id, "B", due_date="2025-03-02T14:00")

    result = service.carry_over([a.task_id, "task-missing", b.task_id], "tomorrow")

    assert result.succeeded == [a.task_id, b.task_id]
    assert result.failed == ["task-missing"]
    assert result.due_date == datetime(2025, 3, 11, 0, 0)
    assert service.store.get_task(a.task_id).due_date == datetime(2025, 3, 11, 0, 0)
    assert service.store.get_task(b.task_id).due_date == datetime(2025, 3, 11, 0, 0)


def test_carry_over_custom_date(service, board):
    todo = columns_by_name(board)["To Do"]
    a = service.create_task(todo.column_id, "A", due_date="2025-03-01T09:45")
    service.carry_over([a.task_id], "2025-03-20")
    assert service.store.get_task(a.task_id).due_date == datetime(2025, 3, 20, 0, 0)


def test_carry_over_invalid_target(service):
    with pytest.raises(ValidationError):
        service.carry_over(["t1"], "whenever")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Agenda
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_agenda_is_scoped_to_space(service, board):
    work_todo = columns_by_name(board)["To Do"]
    home = service.get_board(service.create_board("Home", space="personal").board_id)
    home_todo = columns_by_name(home)["To Do"]

    service.create_task(work_todo.column_id, "Deploy", due_date="2025-03-10T16:00")
    service.create_task(home_todo.column_id, "Groceries", due_date="2025-03-10T18:00")
    service.create_habit("Stretch", space="personal", reminder_time="08:30")

    view = service.get_agenda("personal", "day", "2025-03-10")
    items = view.days[0].items
    assert [i.title for i in items] == ["Stretch", "Groceries"]
    assert items[1].board_id == home.board.board_id
    assert [i.title for i in view.days[0].buckets[Bucket.EVENING]] == ["Groceries"]


def test_agenda_week_and_external_events(service, board):
    todo = columns_by_name(board)["To Do"]
    service.create_task(todo.column_id, "Report", due_date="2025-03-12T10:00")
    meeting = CalendarEvent.external("cal-1", "Dentist", datetime(2025, 3, 13, 9, 0))

    view = service.get_agenda("work", "week", date(2025, 3, 12), external_events=[meeting])
    assert view.window.start == date(2025, 3, 9)
    assert [i.title for i in view.for_day(date(2025, 3, 12)).items] == ["Report"]
    assert [i.title for i in view.for_day(date(2025, 3, 13)).items] == ["Dentist"]


def test_agenda_rejects_unknown_window(service):
    with pytest.raises(ValidationError):
        service.get_agenda("work", "month")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Habits
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_log_habit_toggles_today(service):
    habit = service.create_habit("Stretch")

    check = service.log_habit(habit.habit_id)
    assert check.completed
    assert check.day == date(2025, 3, 10)
    assert check.habit.completed_today
    assert check.habit.current_streak == 1
    assert service.store.get_habit(habit.habit_id).current_streak == 1

    check = service.log_habit(habit.habit_id, "2025-03-10")
    assert not check.completed
    assert not check.habit.completed_today
    assert check.habit.current_streak == 0


def test_log_habit_builds_streak_over_days(service, clock):
    habit = service.create_habit("Read")
    service.log_habit(habit.habit_id, date(2025, 3, 8))
    service.log_habit(habit.habit_id, date(2025, 3, 9))

    stored = service.list_habits()[0]
    assert stored.current_streak == 2
    assert not stored.completed_today

    assert service.log_habit(habit.habit_id).habit.current_streak == 3

    clock.now = datetime(2025, 3, 12, 9, 0)
    stored = service.list_habits()[0]
    assert stored.current_streak == 0
    assert not stored.completed_today


def test_weekly_habit_streak_skips_off_days(service):
    # Friday and Monday, 0 = Sunday
    habit = service.create_habit("Gym", frequency="weekly", target_days=[5, 1])
    service.log_habit(habit.habit_id, date(2025, 3, 7))
    assert service.log_habit(habit.habit_id).habit.current_streak == 2


def test_log_habit_rejects_future_and_unknown(service):
    habit = service.create_habit("Stretch")
    with pytest.raises(ValidationError):
        service.log_habit(habit.habit_id, "2025-03-11")
    with pytest.raises(ValidationError):
        service.log_habit(habit.habit_id, "someday")
    with pytest.raises(NotFoundError):
        service.log_habit("habit-missing")


def test_logged_habit_shows_completed_in_agenda(service):
    habit = service.create_habit("Stretch", reminder_time="07:00")
    service.log_habit(habit.habit_id, date(2025, 3, 9))
    service.log_habit(habit.habit_id)

    view = service.get_agenda("work", "week", date(2025, 3, 10))
    completed = {d.day: d.items[0].completed for d in view.days}
    assert completed[date(2025, 3, 9)]
    assert completed[date(2025, 3, 10)]
    assert not completed[date(2025, 3, 11)]

    service.log_habit(habit.habit_id)
    today = service.get_agenda("work", "day", date(2025, 3, 10)).days[0]
    assert [(i.title, i.completed) for i in today.items] == [("Stretch", False)]


def test_habit_updated_event(service):
    habit = service.create_habit("Stretch")
    events = []
    service.subscribe("habit_updated", lambda habit_id: events.append(habit_id))
    service.log_habit(habit.habit_id)
    assert events == [habit.habit_id]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Notifications
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_subscribers_are_notified_after_writes(service, board):
    cols = columns_by_name(board)
    seen = []
    service.subscribe("column_updated", lambda column_id: seen.append(column_id))
    service.subscribe("task_updated", lambda task_id: seen.append(task_id))
    task = service.create_task(cols["To Do"].column_id, "Watch me")
    seen.clear()

    service.move_task(task.task_id, cols["Done"].column_id)
    assert cols["To Do"].column_id in seen
    assert cols["Done"].column_id in seen
    assert task.task_id in seen


def test_failing_subscriber_does_not_break_operation(service, board):
    todo = columns_by_name(board)["To Do"]

    def broken(**kwargs):
        raise RuntimeError("listener crashed")

    service.subscribe("task_updated", broken)
    task = service.create_task(todo.column_id, "Still saved")
    assert service.store.get_task(task.task_id) is not None


def test_series_advanced_event(service, board):
    todo = columns_by_name(board)["To Do"]
    events = []
    service.subscribe("series_advanced", lambda task_id, next_task_id: events.append((task_id, next_task_id)))
    task = service.create_task(todo.column_id, "Gym", due_date="2025-03-10T07:00", recurring_pattern="daily")
    completion = service.complete_task(task.task_id)
    assert events == [(task.task_id, completion.advancement.next_task.task_id)]
