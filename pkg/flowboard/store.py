"""
Board storage backend (SQLite).

Boards, columns, tasks and habits live in one database. Display order is
stored explicitly: ``boards.column_order`` and ``board_columns.task_order``
are JSON arrays of ids, each with an ``order_version`` counter that is bumped
on every write of the array.

Multi-row changes (a move across columns touches two order arrays and a
task row) go through ``apply_plan`` / ``apply`` and commit in a single
transaction, or not at all.
"""
import sqlite3
import json
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Set, Any
from datetime import date, datetime

from .errors import ConflictError, ConstraintError, NotFoundError, StoreError
from .ordering import insert_item, reconcile_order
from .reconcile import MutationPlan, SetColumnOrder, SetTaskColumn, SetTaskOrder
from .schema import Board, Column, Habit, Task

logger = logging.getLogger(__name__)


def _connect(db_path: str) -> sqlite3.Connection:
    """Open a connection with FK enforcement and WAL mode."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


def _loads(value: Optional[str], default: Any) -> Any:
    if not value:
        return default
    try:
        return json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return default


class BoardStore:
    """SQLite-backed store for boards, columns, tasks and habits."""

    def __init__(self, db_path: str = None):
        """Initialize store and create tables if needed."""
        if db_path is None:
            db_path = str(Path.home() / ".local" / "share" / "flowboard" / "flowboard.db")
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _init_schema(self):
        """Create tables if they don't exist."""
        with self.transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS boards (
                    board_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    space TEXT DEFAULT 'work',
                    column_order TEXT,  -- JSON list of column ids
                    order_version INTEGER DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS board_columns (
                    column_id TEXT PRIMARY KEY,
                    board_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    task_order TEXT,  -- JSON list of task ids
                    wip_limit INTEGER,
                    order_version INTEGER DEFAULT 0,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (board_id) REFERENCES boards(board_id)
                )
            """)
            # parent_task_id is lineage only: no foreign key, no cascade
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    task_id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    column_id TEXT NOT NULL,
                    description TEXT DEFAULT '',
                    due_date TEXT,
                    priority TEXT DEFAULT 'medium',
                    completed INTEGER DEFAULT 0,
                    labels TEXT,    -- JSON list
                    subtasks TEXT,  -- JSON list of {title, completed}
                    recurring_pattern TEXT,
                    recurring_end_date TEXT,
                    parent_task_id TEXT,
                    instance_date TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY (column_id) REFERENCES board_columns(column_id)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS habits (
                    habit_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    space TEXT DEFAULT 'work',
                    frequency TEXT DEFAULT 'daily',
                    target_days TEXT,  -- JSON list, 0 = Sunday
                    active INTEGER DEFAULT 1,
                    completed_today INTEGER DEFAULT 0,
                    current_streak INTEGER DEFAULT 0,
                    reminder_time TEXT,
                    check_date TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS habit_logs (
                    habit_id TEXT NOT NULL,
                    day TEXT NOT NULL,
                    completed INTEGER DEFAULT 1,
                    logged_at TEXT NOT NULL,
                    PRIMARY KEY (habit_id, day),
                    FOREIGN KEY (habit_id) REFERENCES habits(habit_id)
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_columns_board ON board_columns(board_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_column ON tasks(column_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_parent ON tasks(parent_task_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_due ON tasks(due_date)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_habits_space ON habits(space)")

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # Connections
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside one write transaction.

        Commits on success. Rolls back on any error; SQLite errors are logged
        and re-raised as StoreError, domain errors propagate unchanged.
        """
        conn = _connect(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error("Store write failed: %s", e)
            raise StoreError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _query(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        conn = _connect(self.db_path)
        try:
            return conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            logger.error("Store read failed: %s", e)
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # Row writers (inside a transaction)
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    # Rows are updated in place, never deleted and re-inserted, so child
    # foreign keys stay valid.

    @staticmethod
    def _upsert(conn: sqlite3.Connection, table: str, key: str, row: Dict[str, Any]) -> None:
        names = list(row)
        updates = ", ".join(f"{n} = excluded.{n}" for n in names if n != key)
        conn.execute(
            f"INSERT INTO {table} ({', '.join(names)}) VALUES ({', '.join('?' for _ in names)}) "
            f"ON CONFLICT({key}) DO UPDATE SET {updates}",
            [row[n] for n in names],
        )

    def _put_board(self, conn: sqlite3.Connection, board: Board) -> None:
        data = board.to_dict()
        data["column_order"] = json.dumps(data["column_order"])
        self._upsert(conn, "boards", "board_id", data)

    def _put_column(self, conn: sqlite3.Connection, column: Column) -> None:
        data = column.to_dict()
        data["task_order"] = json.dumps(data["task_order"])
        self._upsert(conn, "board_columns", "column_id", data)

    def _put_task(self, conn: sqlite3.Connection, task: Task) -> None:
        data = task.to_dict()
        data["completed"] = 1 if data["completed"] else 0
        data["labels"] = json.dumps(data["labels"])
        data["subtasks"] = json.dumps(data["subtasks"])
        self._upsert(conn, "tasks", "task_id", data)

    def _put_habit(self, conn: sqlite3.Connection, habit: Habit) -> None:
        data = habit.to_dict()
        data["target_days"] = json.dumps(data["target_days"])
        data["active"] = 1 if data["active"] else 0
        data["completed_today"] = 1 if data["completed_today"] else 0
        self._upsert(conn, "habits", "habit_id", data)

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # Writes
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def apply(
        self,
        boards: Iterable[Board] = (),
        columns: Iterable[Column] = (),
        tasks: Iterable[Task] = (),
        habits: Iterable[Habit] = (),
    ) -> None:
        """Insert or replace any mix of rows in one transaction."""
        with self.transaction() as conn:
            for board in boards:
                self._put_board(conn, board)
            for column in columns:
                self._put_column(conn, column)
            for task in tasks:
                self._put_task(conn, task)
            for habit in habits:
                self._put_habit(conn, habit)

    def save_board(self, board: Board) -> None:
        self.apply(boards=[board])

    def save_column(self, column: Column) -> None:
        self.apply(columns=[column])

    def save_task(self, task: Task) -> None:
        self.apply(tasks=[task])

    def save_habit(self, habit: Habit) -> None:
        self.apply(habits=[habit])

    def apply_plan(
        self,
        plan: MutationPlan,
        expected_versions: Optional[Dict[str, int]] = None,
        now: Optional[datetime] = None,
        tasks: Iterable[Task] = (),
    ) -> None:
        """Apply every request of a mutation plan atomically.

        ``expected_versions`` maps a column or board id to the order_version
        the caller last read. A mismatch raises ConflictError and nothing is
        written. ``tasks`` are upserted in the same transaction, before the
        plan.
        """
        tasks = list(tasks)
        if plan.is_noop and not tasks:
            return
        expected_versions = expected_versions or {}
        stamp = (now or datetime.now()).isoformat()

        with self.transaction() as conn:
            for task in tasks:
                self._put_task(conn, task)
            for mutation in plan.mutations:
                if isinstance(mutation, SetTaskOrder):
                    self._write_order(
                        conn, "board_columns", "column_id", "task_order",
                        mutation.column_id, mutation.task_order,
                        expected_versions.get(mutation.column_id),
                    )
                elif isinstance(mutation, SetColumnOrder):
                    self._write_order(
                        conn, "boards", "board_id", "column_order",
                        mutation.board_id, mutation.column_order,
                        expected_versions.get(mutation.board_id),
                    )
                    conn.execute(
                        "UPDATE boards SET updated_at = ? WHERE board_id = ?",
                        (stamp, mutation.board_id),
                    )
                elif isinstance(mutation, SetTaskColumn):
                    cur = conn.execute(
                        "UPDATE tasks SET column_id = ?, updated_at = ? WHERE task_id = ?",
                        (mutation.column_id, stamp, mutation.task_id),
                    )
                    if cur.rowcount == 0:
                        raise NotFoundError("task", mutation.task_id)

    @staticmethod
    def _write_order(
        conn: sqlite3.Connection,
        table: str,
        key: str,
        field: str,
        item_id: str,
        order: List[str],
        expected: Optional[int],
    ) -> None:
        """Compare-and-swap write of one order array."""
        cur = conn.execute(
            f"UPDATE {table} SET {field} = ?, order_version = order_version + 1 "
            f"WHERE {key} = ? AND (? IS NULL OR order_version = ?)",
            (json.dumps(order), item_id, expected, expected),
        )
        if cur.rowcount:
            return
        row = conn.execute(f"SELECT order_version FROM {table} WHERE {key} = ?", (item_id,)).fetchone()
        if row is None:
            raise NotFoundError("column" if table == "board_columns" else "board", item_id)
        raise ConflictError(item_id, expected, row["order_version"])

    def add_column(self, column: Column) -> Board:
        """Insert a column and append it to its board's column_order."""
        with self.transaction() as conn:
            row = conn.execute("SELECT * FROM boards WHERE board_id = ?", (column.board_id,)).fetchone()
            if not row:
                raise NotFoundError("board", column.board_id)
            board = self._row_to_board(row)
            if column.column_id not in board.column_order:
                board.column_order.append(column.column_id)
                board.order_version += 1
            board.updated_at = datetime.now()
            self._put_column(conn, column)
            self._put_board(conn, board)
            return board

    def add_task(self, task: Task, index: Optional[int] = None) -> Column:
        """Insert a task and place it in its column's task_order (default: append)."""
        with self.transaction() as conn:
            row = conn.execute("SELECT * FROM board_columns WHERE column_id = ?", (task.column_id,)).fetchone()
            if not row:
                raise NotFoundError("column", task.column_id)
            column = self._row_to_column(row)
            members = [r["task_id"] for r in conn.execute(
                "SELECT task_id FROM tasks WHERE column_id = ? ORDER BY created_at, rowid", (task.column_id,)
            )]
            # index is a position in the displayed (reconciled) order
            current = reconcile_order(column.task_order, members)
            column.task_order = insert_item(current, task.task_id, index)
            column.order_version += 1
            self._put_task(conn, task)
            self._put_column(conn, column)
            return column

    def delete_task(self, task_id: str) -> bool:
        """Delete one task and drop it from its column's task_order.

        Other occurrences of the same series are never touched.
        """
        with self.transaction() as conn:
            row = conn.execute("SELECT column_id FROM tasks WHERE task_id = ?", (task_id,)).fetchone()
            if not row:
                return False
            col = conn.execute(
                "SELECT task_order FROM board_columns WHERE column_id = ?", (row["column_id"],)
            ).fetchone()
            if col:
                order = [i for i in _loads(col["task_order"], []) if i != task_id]
                conn.execute(
                    "UPDATE board_columns SET task_order = ?, order_version = order_version + 1 "
                    "WHERE column_id = ?",
                    (json.dumps(order), row["column_id"]),
                )
            conn.execute("DELETE FROM tasks WHERE task_id = ?", (task_id,))
            return True

    def delete_column(self, column_id: str) -> Board:
        """Delete an empty column and drop it from its board's column_order.

        Raises ConstraintError if any task still belongs to the column.
        """
        with self.transaction() as conn:
            row = conn.execute("SELECT board_id FROM board_columns WHERE column_id = ?", (column_id,)).fetchone()
            if not row:
                raise NotFoundError("column", column_id)
            count = conn.execute("SELECT COUNT(*) FROM tasks WHERE column_id = ?", (column_id,)).fetchone()[0]
            if count:
                raise ConstraintError(
                    f"Column '{column_id}' still contains {count} task(s); move or delete them first"
                )
            board = self._row_to_board(
                conn.execute("SELECT * FROM boards WHERE board_id = ?", (row["board_id"],)).fetchone()
            )
            if column_id in board.column_order:
                board.column_order = [c for c in board.column_order if c != column_id]
                board.order_version += 1
            board.updated_at = datetime.now()
            self._put_board(conn, board)
            conn.execute("DELETE FROM board_columns WHERE column_id = ?", (column_id,))
            return board


    def _update_fields(self, table: str, key: str, item_id: str, values: Dict[str, Any], kind: str) -> None:
        """UPDATE named columns of one row. Raises NotFoundError if the row is missing."""
        sets = ", ".join(f"{name} = ?" for name in values)
        with self.transaction() as conn:
            cur = conn.execute(
                f"UPDATE {table} SET {sets} WHERE {key} = ?",
                (*values.values(), item_id),
            )
            if cur.rowcount == 0:
                raise NotFoundError(kind, item_id)

    def update_board(self, board_id: str, values: Dict[str, Any]) -> Board:
        """Rename a board or move it to another space. Order arrays are left alone."""
        values = dict(values, updated_at=datetime.now().isoformat())
        self._update_fields("boards", "board_id", board_id, values, "board")
        return self.get_board(board_id)

    def update_column(self, column_id: str, values: Dict[str, Any]) -> Column:
        """Rename a column or change its WIP limit."""
        if values:
            self._update_fields("board_columns", "column_id", column_id, values, "column")
        column = self.get_column(column_id)
        if column is None:
            raise NotFoundError("column", column_id)
        return column

    def delete_board(self, board_id: str) -> None:
        """Delete a board and its columns.

        Raises ConstraintError while any task still lives on the board; tasks
        are never deleted as a side effect.
        """
        with self.transaction() as conn:
            if not conn.execute("SELECT 1 FROM boards WHERE board_id = ?", (board_id,)).fetchone():
                raise NotFoundError("board", board_id)
            count = conn.execute("""
                SELECT COUNT(*) FROM tasks t
                JOIN board_columns c ON c.column_id = t.column_id
                WHERE c.board_id = ?
            """, (board_id,)).fetchone()[0]
            if count:
                raise ConstraintError(
                    f"Board '{board_id}' still contains {count} task(s); move or delete them first"
                )
            conn.execute("DELETE FROM board_columns WHERE board_id = ?", (board_id,))
            conn.execute("DELETE FROM boards WHERE board_id = ?", (board_id,))

    def log_habit(self, habit: Habit, day: date, completed: bool) -> None:
        """Record a habit's completion state for ``day`` and save the habit row."""
        with self.transaction() as conn:
            self._put_habit(conn, habit)
            conn.execute("""
                INSERT INTO habit_logs (habit_id, day, completed, logged_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(habit_id, day) DO UPDATE SET
                    completed = excluded.completed,
                    logged_at = excluded.logged_at
            """, (habit.habit_id, day.isoformat(), int(completed), datetime.now().isoformat()))

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # Reads
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def get_board(self, board_id: str) -> Optional[Board]:
        rows = self._query("SELECT * FROM boards WHERE board_id = ?", (board_id,))
        return self._row_to_board(rows[0]) if rows else None

    def list_boards(self, space: Optional[str] = None) -> List[Board]:
        if space:
            rows = self._query("SELECT * FROM boards WHERE space = ? ORDER BY created_at", (space,))
        else:
            rows = self._query("SELECT * FROM boards ORDER BY created_at")
        return [self._row_to_board(r) for r in rows]

    def get_column(self, column_id: str) -> Optional[Column]:
        rows = self._query("SELECT * FROM board_columns WHERE column_id = ?", (column_id,))
        return self._row_to_column(rows[0]) if rows else None

    def list_columns(self, board_id: str) -> List[Column]:
        """Columns of a board in discovery (creation) order; callers arrange them."""
        rows = self._query(
            "SELECT * FROM board_columns WHERE board_id = ? ORDER BY created_at, rowid", (board_id,)
        )
        return [self._row_to_column(r) for r in rows]

    def get_task(self, task_id: str) -> Optional[Task]:
        rows = self._query("SELECT * FROM tasks WHERE task_id = ?", (task_id,))
        return self._row_to_task(rows[0]) if rows else None

    def list_tasks(self, column_id: str) -> List[Task]:
        """Tasks whose column_id is this column, in discovery order."""
        rows = self._query(
            "SELECT * FROM tasks WHERE column_id = ? ORDER BY created_at, rowid", (column_id,)
        )
        return [self._row_to_task(r) for r in rows]

    def list_board_tasks(self, board_id: str) -> List[Task]:
        rows = self._query("""
            SELECT t.* FROM tasks t
            JOIN board_columns c ON c.column_id = t.column_id
            WHERE c.board_id = ?
            ORDER BY t.created_at, t.rowid
        """, (board_id,))
        return [self._row_to_task(r) for r in rows]

    def list_all_tasks(self) -> List[Task]:
        rows = self._query("SELECT * FROM tasks ORDER BY created_at, rowid")
        return [self._row_to_task(r) for r in rows]

    def list_series(self, task: Task) -> List[Task]:
        """Every task sharing a lineage with ``task`` (same root or parent)."""
        root = task.parent_task_id or task.task_id
        rows = self._query(
            "SELECT * FROM tasks WHERE task_id IN (?, ?) OR parent_task_id IN (?, ?) "
            "ORDER BY created_at, rowid",
            (root, task.task_id, root, task.task_id),
        )
        return [self._row_to_task(r) for r in rows]

    def get_habit(self, habit_id: str) -> Optional[Habit]:
        rows = self._query("SELECT * FROM habits WHERE habit_id = ?", (habit_id,))
        return self._row_to_habit(rows[0]) if rows else None

    def list_habits(self, space: Optional[str] = None) -> List[Habit]:
        if space:
            rows = self._query("SELECT * FROM habits WHERE space = ? ORDER BY rowid", (space,))
        else:
            rows = self._query("SELECT * FROM habits ORDER BY rowid")
        return [self._row_to_habit(r) for r in rows]


    def completed_days(
        self,
        habit_ids: Iterable[str],
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> Dict[str, Set[date]]:
        """Days each habit was logged as done, optionally within [start, end]."""
        habit_ids = list(habit_ids)
        result: Dict[str, Set[date]] = {h: set() for h in habit_ids}
        if not habit_ids:
            return result
        placeholders = ", ".join("?" for _ in habit_ids)
        sql = f"SELECT habit_id, day FROM habit_logs WHERE completed = 1 AND habit_id IN ({placeholders})"
        params: List[Any] = list(habit_ids)
        if start is not None:
            sql += " AND day >= ?"
            params.append(start.isoformat())
        if end is not None:
            sql += " AND day <= ?"
            params.append(end.isoformat())
        for row in self._query(sql, params):
            result[row["habit_id"]].add(date.fromisoformat(row["day"]))
        return result

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # Row conversion
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def _row_to_board(self, row: sqlite3.Row) -> Board:
        data = dict(row)
        data["column_order"] = _loads(data.get("column_order"), [])
        return Board.from_dict(data)

    def _row_to_column(self, row: sqlite3.Row) -> Column:
        data = dict(row)
        data["task_order"] = _loads(data.get("task_order"), [])
        return Column.from_dict(data)

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        data = dict(row)
        data["labels"] = _loads(data.get("labels"), [])
        data["subtasks"] = _loads(data.get("subtasks"), [])
        data["completed"] = bool(data.get("completed", 0))
        return Task.from_dict(data)

    def _row_to_habit(self, row: sqlite3.Row) -> Habit:
        data = dict(row)
        data["target_days"] = _loads(data.get("target_days"), [])
        data["active"] = bool(data.get("active", 1))
        data["completed_today"] = bool(data.get("completed_today", 0))
        return Habit.from_dict(data)
