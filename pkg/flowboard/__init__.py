# Flowboard core: board ordering, recurrence, carry-over and agenda aggregation
#
# Components:
#   schema.py      - Data model (Board, Column, Task, Habit, CalendarEvent)
#   errors.py      - Error taxonomy shared by every operation
#   ordering.py    - Explicit ordered id lists and read-time reconciliation
#   reconcile.py   - Drag/move/reorder gestures -> minimal mutation plans
#   recurrence.py  - Recurring task date algebra and series advancement
#   carryover.py   - Symbolic reschedule targets and batch results
#   agenda.py      - Merged day/week agenda of tasks, habits and events
#   config.py      - YAML configuration
#   store.py       - SQLite persistence layer
#   service.py     - Operation set used by the server and other clients
#   client.py      - HTTP client for a running board_server
