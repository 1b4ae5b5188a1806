"""
Tests for the reconciliation engine: reorder, move and drag plans.
"""
import pytest

from pkg.flowboard.errors import NotFoundError, ValidationError
from pkg.flowboard.reconcile import (
    DragGesture,
    DragKind,
    SetColumnOrder,
    SetTaskColumn,
    SetTaskOrder,
    move_across_board,
    move_across_column,
    plan_drag,
    reorder_columns,
    reorder_within_column,
    replace_column_order,
    replace_task_order,
    wip_status,
)
from pkg.flowboard.schema import Board, Column, Task


def make_column(column_id, task_ids, board_id="b1", wip_limit=None):
    return Column(column_id=column_id, board_id=board_id, name=column_id,
                  task_order=list(task_ids), wip_limit=wip_limit)


def make_task(task_id, column_id):
    return Task(task_id=task_id, title=task_id.upper(), column_id=column_id)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Within a column
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_reorder_within_column_and_back_restores_order():
    column = make_column("c1", ["a", "b", "c", "d"])
    plan = reorder_within_column(column, "b", 3)
    assert plan.task_orders() == {"c1": ["a", "c", "d", "b"]}

    column.task_order = plan.task_orders()["c1"]
    back = reorder_within_column(column, "b", 1)
    assert back.task_orders() == {"c1": ["a", "b", "c", "d"]}


def test_reorder_to_same_index_is_noop():
    column = make_column("c1", ["a", "b", "c"])
    plan = reorder_within_column(column, "b", 1)
    assert plan.is_noop
    assert not plan


def test_reorder_index_is_clamped():
    column = make_column("c1", ["a", "b", "c"])
    assert reorder_within_column(column, "a", 99).task_orders()["c1"] == ["b", "c", "a"]
    assert reorder_within_column(column, "a", -3).is_noop


def test_reorder_unknown_task():
    with pytest.raises(NotFoundError):
        reorder_within_column(make_column("c1", ["a"]), "zzz", 0)


def test_reorder_uses_displayed_order_when_members_given():
    # "n" belongs to the column but is missing from the stored list
    column = make_column("c1", ["a", "ghost", "b"])
    plan = reorder_within_column(column, "n", 0, members=["a", "b", "n"])
    assert plan.task_orders()["c1"] == ["n", "a", "b"]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Across columns and boards
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_move_across_column_to_front():
    a = make_column("A", ["t1", "t2"])
    b = make_column("B", ["t3"])
    plan = move_across_column(make_task("t1", "A"), a, b, 0)

    orders = plan.task_orders()
    assert "t1" not in orders["A"]
    assert orders["B"][0] == "t1"
    assert SetTaskColumn("t1", "B") in plan.mutations
    assert len(plan.mutations) == 3


def test_move_across_column_defaults_to_append():
    a = make_column("A", ["t1"])
    b = make_column("B", ["t3", "t4"])
    plan = move_across_column(make_task("t1", "A"), a, b)
    assert plan.task_orders()["B"] == ["t3", "t4", "t1"]


def test_move_across_column_wrong_source():
    a = make_column("A", ["t1"])
    b = make_column("B", [])
    with pytest.raises(ValidationError):
        move_across_column(make_task("t1", "B"), a, b, 0)


def test_move_across_column_rejects_other_board():
    a = make_column("A", ["t1"], board_id="b1")
    b = make_column("B", [], board_id="b2")
    with pytest.raises(ValidationError):
        move_across_column(make_task("t1", "A"), a, b)


def test_wip_limit_is_advisory():
    a = make_column("A", ["t1"])
    b = make_column("B", ["t2"], wip_limit=1)
    plan = move_across_column(make_task("t1", "A"), a, b)

    assert plan.task_orders()["B"] == ["t2", "t1"]
    assert len(plan.warnings) == 1
    assert plan.warnings[0].count == 2
    assert plan.warnings[0].limit == 1


def test_wip_status():
    assert not wip_status(make_column("A", ["t1"], wip_limit=1)).over_limit
    assert wip_status(make_column("A", ["t1", "t2"], wip_limit=1)).over_limit
    assert not wip_status(make_column("A", ["t1", "t2"])).over_limit


def test_move_across_board_only_touches_destination():
    target_board = Board(board_id="b2", name="Other", column_order=["X"])
    target = make_column("X", ["t9"], board_id="b2")
    plan = move_across_board(make_task("t1", "A"), target_board, target, 0)

    assert plan.task_orders() == {"X": ["t1", "t9"]}
    assert SetTaskColumn("t1", "X") in plan.mutations


def test_move_across_board_column_mismatch():
    target_board = Board(board_id="b2", name="Other")
    with pytest.raises(ValidationError):
        move_across_board(make_task("t1", "A"), target_board, make_column("X", [], board_id="b3"))


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Columns and explicit lists
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_reorder_columns():
    board = Board(board_id="b1", name="Work", column_order=["c1", "c2", "c3"])
    plan = reorder_columns(board, "c3", 0)
    assert plan.mutations == [SetColumnOrder("b1", ["c3", "c1", "c2"])]
    assert reorder_columns(board, "c2", 1).is_noop


def test_replace_task_order_repairs_proposed_list():
    column = make_column("c1", ["a", "b", "c"])
    plan = replace_task_order(column, ["c", "zzz", "a"], members=["a", "b", "c"])
    assert plan.mutations == [SetTaskOrder("c1", ["c", "a", "b"])]


def test_replace_task_order_unchanged_is_noop():
    column = make_column("c1", ["a", "b"])
    assert replace_task_order(column, ["a", "b"], members=["a", "b"]).is_noop


def test_replace_column_order_appends_missing():
    board = Board(board_id="b1", name="Work", column_order=["c1", "c2"])
    plan = replace_column_order(board, ["c2"], members=["c1", "c2", "c3"])
    assert plan.column_orders() == {"b1": ["c2", "c1", "c3"]}


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Drag gestures
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestPlanDrag:

    def setup_method(self):
        self.board = Board(board_id="b1", name="Work", column_order=["A", "B"])
        self.columns = [make_column("A", ["a1", "a2", "a3"]), make_column("B", ["b1"])]
        self.tasks = [
            make_task("a1", "A"), make_task("a2", "A"), make_task("a3", "A"), make_task("b1", "B"),
        ]

    def drag(self, active, over, kind=DragKind.TASK):
        return plan_drag(DragGesture(active, over, kind), self.board, self.columns, self.tasks)

    def test_task_over_task_same_column(self):
        plan = self.drag("a1", "a3")
        assert plan.task_orders() == {"A": ["a2", "a3", "a1"]}

    def test_task_over_task_other_column(self):
        plan = self.drag("a2", "b1")
        assert plan.task_orders()["B"] == ["a2", "b1"]
        assert plan.task_orders()["A"] == ["a1", "a3"]
        assert SetTaskColumn("a2", "B") in plan.mutations

    def test_task_over_other_column_appends(self):
        plan = self.drag("a1", "B")
        assert plan.task_orders()["B"] == ["b1", "a1"]

    def test_task_over_own_column_is_noop(self):
        assert self.drag("a1", "A").is_noop

    def test_drop_on_itself_or_nowhere_is_noop(self):
        assert self.drag("a1", "a1").is_noop
        assert self.drag("a1", None).is_noop

    def test_column_over_column(self):
        plan = self.drag("B", "A", DragKind.COLUMN)
        assert plan.column_orders() == {"b1": ["B", "A"]}

    def test_unknown_active_task(self):
        with pytest.raises(NotFoundError):
            self.drag("nope", "a1")
