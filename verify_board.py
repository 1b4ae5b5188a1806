#!/usr/bin/env python3
"""
Quick verification that the board core works end-to-end.
"""
import argparse
import os
import tempfile
from datetime import datetime

from pkg.flowboard.client import FlowboardClient
from pkg.flowboard.config import Config
from pkg.flowboard.service import BoardService
from pkg.flowboard.store import BoardStore


def main():
    print("=" * 60)
    print("Flowboard Core Verification")
    print("=" * 60)

    db_path = os.path.join(tempfile.mkdtemp(prefix="flowboard-"), "verify.db")
    now = datetime(2025, 3, 10, 15, 0)

    print("\n[1/6] Creating SQLite store and service...")
    service = BoardService(BoardStore(db_path), Config(), clock=lambda: now)
    print(f"✅ Store created at {db_path}")

    print("\n[2/6] Creating board with default columns...")
    board = service.create_board("Personal", space="personal")
    snapshot = service.get_board(board.board_id)
    names = [c.column.name for c in snapshot.columns]
    print(f"✅ Board {board.board_id}: {' | '.join(names)}")
    todo, doing, done = (c.column for c in snapshot.columns)

    print("\n[3/6] Adding and reordering tasks...")
    a = service.create_task(todo.column_id, "Write report", due_date="2025-03-10T09:00")
    b = service.create_task(todo.column_id, "Call plumber")
    c = service.create_task(todo.column_id, "Pay rent", due_date="2025-03-01T10:00",
                            recurring_pattern="monthly")
    service.reorder_within_column(todo.column_id, c.task_id, 0)
    order = [t.title for t in service.list_tasks(todo.column_id)]
    print(f"✅ To Do order: {order}")

    print("\n[4/6] Moving a task across columns...")
    service.move_task(b.task_id, doing.column_id, 0)
    print(f"✅ In Progress: {[t.title for t in service.list_tasks(doing.column_id)]}")

    print("\n[5/6] Completing a recurring task...")
    completion = service.complete_task(c.task_id)
    nxt = completion.advancement.next_task
    print(f"✅ Completed {c.task_id}; next occurrence {nxt.task_id if nxt else None} "
          f"due {nxt.due_date if nxt else None}")
    print(f"   Done column: {[t.title for t in service.list_tasks(done.column_id)]}")

    print("\n[6/6] Carry-over and agenda...")
    result = service.carry_over([a.task_id, "task-missing"], "tomorrow")
    print(f"✅ Carry-over: {len(result.succeeded)} succeeded, {len(result.failed)} failed "
          f"→ {result.due_date.isoformat()}")
    service.create_habit("Stretch", space="personal", reminder_time="08:30")
    agenda = service.get_agenda("personal", "day", "2025-03-11")
    for item in agenda.days[0].items:
        when = item.due_date.strftime("%H:%M") if item.due_date else "--:--"
        print(f"   {when}  [{item.type.value}] {item.title}")

    print("\n" + "=" * 60)
    print("✅ Verification complete")
    print("=" * 60)


def check_server(url: str, api_key: str):
    """Smoke-check a running board_server over HTTP."""
    print(f"\nChecking server at {url}...")
    client = FlowboardClient(url, api_key=api_key)
    if not client.health():
        print("❌ Server not reachable")
        return False
    boards = client.list_boards()
    print(f"✅ Server up, {len(boards)} board(s)")
    agenda = client.agenda()
    if agenda is not None:
        items = sum(len(d["items"]) for d in agenda["days"])
        print(f"✅ Agenda for {agenda['start']}: {items} item(s)")
    return True


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Flowboard verification")
    parser.add_argument("--server", help="Also check a running server, e.g. http://127.0.0.1:3000")
    parser.add_argument("--api-key", default=os.environ.get("FLOWBOARD_API_SECRET", ""))
    args = parser.parse_args()

    main()
    if args.server:
        check_server(args.server, args.api_key)
