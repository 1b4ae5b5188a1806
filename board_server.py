#!/usr/bin/env python3
"""
Flowboard Server
----------------
Serves a JSON API over the board core, backed by a SQLite database.

Usage:
    python board_server.py --config flowboard.yaml
    python board_server.py --db /tmp/flowboard.db --port 3000

API (mutations require the X-API-Key header):
    GET    /health
    GET    /api/boards?space=work            → { boards }
    POST   /api/boards                       { name, space?, columns? }
    GET    /api/boards/<id>                  → board with ordered columns and tasks
    PATCH  /api/boards/<id>                  { name?, space? }
    DELETE /api/boards/<id>                  fails with 400 while the board has tasks
    POST   /api/boards/<id>/columns          { name, wip_limit? }
    POST   /api/boards/<id>/drag             { active_id, over_id, kind: task|column }
    GET    /api/columns/<id>/tasks           → { tasks } in display order
    POST   /api/columns/<id>/tasks           { title, index?, due_date?, ... }
    PATCH  /api/columns/<id>                 { name?, wip_limit? }  (wip_limit null clears it)
    DELETE /api/columns/<id>                 fails with 400 if the column has tasks
    POST   /api/columns/reorder              { board_id, column_ids, expected_version? }
    POST   /api/tasks/reorder                { column_id, task_ids, expected_version? }
    POST   /api/tasks/<id>/move              { column_id, index? }
    PATCH  /api/tasks/<id>                   partial fields
    DELETE /api/tasks/<id>
    POST   /api/tasks/<id>/complete
    POST   /api/tasks/<id>/reopen
    POST   /api/tasks/carry-over             { task_ids, target } → 200, or 207 on partial failure
    GET    /api/agenda?space=&window=day|week&date=YYYY-MM-DD&project_recurring=1
    GET    /api/habits?space=                → { habits }
    POST   /api/habits                       { name, space?, frequency?, target_days?, reminder_time? }
    POST   /api/habits/<id>/log              { date? } toggles completion for the day (default today)
    POST   /api/recurring/sweep
"""

import hmac
import logging
import sys
from functools import wraps

from flask import Flask, current_app, jsonify, request

from pkg.flowboard.config import Config
from pkg.flowboard.errors import (
    ConflictError,
    ConstraintError,
    FlowboardError,
    NotFoundError,
    PartialBatchFailure,
    StoreError,
    ValidationError,
)
from pkg.flowboard.reconcile import MutationPlan
from pkg.flowboard.schema import CalendarEvent
from pkg.flowboard.service import BoardService
from pkg.flowboard.store import BoardStore

logger = logging.getLogger("flowboard.server")

_STATUS = [
    (ValidationError, 400),
    (NotFoundError, 404),
    (ConstraintError, 400),
    (ConflictError, 409),
    (PartialBatchFailure, 207),
    (StoreError, 500),
]


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s [flowboard] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


# ── Auth ─────────────────────────────────────────────────────────────────────


def require_api_key(f):
    """Decorator: reject requests without a valid X-API-Key header."""
    @wraps(f)
    def decorated(*args, **kwargs):
        secret = current_app.config.get("API_SECRET", "")
        if not secret:
            return jsonify({"error": "API_SECRET not set"}), 503
        provided = request.headers.get("X-API-Key", "").strip()
        if not hmac.compare_digest(provided, secret):
            code = 401 if not provided else 403
            return jsonify({"error": "Unauthorized"}), code
        return f(*args, **kwargs)
    return decorated


# ── Helpers ──────────────────────────────────────────────────────────────────


def _service() -> BoardService:
    return current_app.config["SERVICE"]


def _body() -> dict:
    data = request.get_json(force=True, silent=True) or {}
    if not isinstance(data, dict):
        raise ValidationError("JSON object body expected")
    return data


def _required(data: dict, key: str):
    value = data.get(key)
    if value is None or value == "":
        raise ValidationError(f"{key} is required")
    return value


def _optional_int(data: dict, key: str):
    value = data.get(key)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{key} must be an integer") from e


def _plan_response(plan: MutationPlan):
    return jsonify({
        "changed": not plan.is_noop,
        "warnings": [w.message for w in plan.warnings],
    })


def _truthy(value) -> bool:
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


# ── App ──────────────────────────────────────────────────────────────────────


def create_app(config: Config = None, service: BoardService = None) -> Flask:
    """Build the Flask app around a BoardService."""
    config = config or Config.load()
    if service is None:
        service = BoardService(BoardStore(config.db_path), config)

    app = Flask(__name__)
    app.config["API_SECRET"] = config.api_secret
    app.config["SERVICE"] = service
    app.config["FLOWBOARD"] = config

    @app.errorhandler(FlowboardError)
    def handle_flowboard_error(e):
        status = 400
        for error_type, code in _STATUS:
            if isinstance(e, error_type):
                status = code
                break
        payload = {"error": str(e), "type": type(e).__name__}
        if isinstance(e, PartialBatchFailure):
            payload.update(succeeded=e.succeeded, failed=e.failed, errors=e.errors)
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.path, e)
        return jsonify(payload), status

    # ── Boards ───────────────────────────────────────────────────────────────

    @app.route("/api/boards", methods=["GET"])
    def api_boards():
        boards = _service().list_boards(request.args.get("space") or None)
        return jsonify({"boards": [b.to_dict() for b in boards], "count": len(boards)})

    @app.route("/api/boards", methods=["POST"])
    @require_api_key
    def api_create_board():
        data = _body()
        board = _service().create_board(
            _required(data, "name"),
            space=data.get("space") or "work",
            columns=data.get("columns"),
        )
        return jsonify({"board": _service().get_board(board.board_id).to_dict()}), 201

    @app.route("/api/boards/<board_id>")
    def api_board(board_id):
        return jsonify({"board": _service().get_board(board_id).to_dict()})

    @app.route("/api/boards/<board_id>", methods=["PATCH"])
    @require_api_key
    def api_update_board(board_id):
        board = _service().update_board(board_id, _body())
        return jsonify({"board": board.to_dict()})

    @app.route("/api/boards/<board_id>", methods=["DELETE"])
    @require_api_key
    def api_delete_board(board_id):
        _service().delete_board(board_id)
        return jsonify({"deleted": board_id})

    @app.route("/api/boards/<board_id>/columns", methods=["POST"])
    @require_api_key
    def api_create_column(board_id):
        data = _body()
        column = _service().create_column(board_id, _required(data, "name"), _optional_int(data, "wip_limit"))
        return jsonify({"column": column.to_dict()}), 201

    @app.route("/api/boards/<board_id>/drag", methods=["POST"])
    @require_api_key
    def api_drag(board_id):
        data = _body()
        plan = _service().apply_drag(
            board_id, _required(data, "active_id"), data.get("over_id"), data.get("kind") or "task"
        )
        return _plan_response(plan)

    # ── Columns ──────────────────────────────────────────────────────────────

    @app.route("/api/columns/<column_id>/tasks", methods=["GET"])
    def api_column_tasks(column_id):
        tasks = _service().list_tasks(column_id)
        return jsonify({"tasks": [t.to_dict() for t in tasks], "count": len(tasks)})

    @app.route("/api/columns/<column_id>/tasks", methods=["POST"])
    @require_api_key
    def api_create_task(column_id):
        data = _body()
        task = _service().create_task(
            column_id,
            _required(data, "title"),
            index=_optional_int(data, "index"),
            description=data.get("description", ""),
            due_date=data.get("due_date"),
            priority=data.get("priority"),
            labels=data.get("labels") or [],
            subtasks=data.get("subtasks") or [],
            recurring_pattern=data.get("recurring_pattern"),
            recurring_end_date=data.get("recurring_end_date"),
        )
        return jsonify({"task": task.to_dict(), "id": task.task_id}), 201

    @app.route("/api/columns/<column_id>", methods=["PATCH"])
    @require_api_key
    def api_update_column(column_id):
        column = _service().update_column(column_id, _body())
        return jsonify({"column": column.to_dict()})

    @app.route("/api/columns/<column_id>", methods=["DELETE"])
    @require_api_key
    def api_delete_column(column_id):
        _service().delete_column(column_id)
        return jsonify({"deleted": column_id})

    @app.route("/api/columns/reorder", methods=["POST"])
    @require_api_key
    def api_reorder_columns():
        data = _body()
        plan = _service().reorder_columns(
            _required(data, "board_id"),
            data.get("column_ids") or [],
            expected_version=_optional_int(data, "expected_version"),
        )
        return _plan_response(plan)

    # ── Tasks ────────────────────────────────────────────────────────────────

    @app.route("/api/tasks/reorder", methods=["POST"])
    @require_api_key
    def api_reorder_tasks():
        data = _body()
        plan = _service().reorder_tasks(
            _required(data, "column_id"),
            data.get("task_ids") or [],
            expected_version=_optional_int(data, "expected_version"),
        )
        return _plan_response(plan)

    @app.route("/api/tasks/carry-over", methods=["POST"])
    @require_api_key
    def api_carry_over():
        data = _body()
        task_ids = data.get("task_ids") or []
        if not isinstance(task_ids, list):
            raise ValidationError("task_ids must be a list")
        result = _service().carry_over(task_ids, _required(data, "target"))
        return jsonify(result.to_dict()), (207 if result.failed else 200)

    @app.route("/api/tasks/<task_id>/move", methods=["POST"])
    @require_api_key
    def api_move_task(task_id):
        data = _body()
        plan = _service().move_task(task_id, _required(data, "column_id"), _optional_int(data, "index"))
        return _plan_response(plan)

    @app.route("/api/tasks/<task_id>", methods=["PATCH"])
    @require_api_key
    def api_update_task(task_id):
        task = _service().update_task(task_id, _body())
        return jsonify({"task": task.to_dict()})

    @app.route("/api/tasks/<task_id>", methods=["DELETE"])
    @require_api_key
    def api_delete_task(task_id):
        _service().delete_task(task_id)
        return jsonify({"deleted": task_id})

    @app.route("/api/tasks/<task_id>/complete", methods=["POST"])
    @require_api_key
    def api_complete_task(task_id):
        return jsonify(_service().complete_task(task_id).to_dict())

    @app.route("/api/tasks/<task_id>/reopen", methods=["POST"])
    @require_api_key
    def api_reopen_task(task_id):
        return jsonify({"task": _service().reopen_task(task_id).to_dict()})

    # ── Agenda & habits ──────────────────────────────────────────────────────

    @app.route("/api/agenda")
    def api_agenda():
        view = _service().get_agenda(
            request.args.get("space") or None,
            window=request.args.get("window") or "day",
            reference_date=request.args.get("date") or None,
            project_recurring=_truthy(request.args.get("project_recurring")),
        )
        return jsonify(view.to_dict())

    @app.route("/api/agenda", methods=["POST"])
    def api_agenda_with_events():
        """Same as GET, with external calendar events supplied in the body."""
        data = _body()
        events = [
            CalendarEvent.external(str(_required(e, "id")), e.get("title", ""), _required(e, "start"))
            for e in data.get("external_events") or []
        ]
        view = _service().get_agenda(
            data.get("space") or None,
            window=data.get("window") or "day",
            reference_date=data.get("date") or None,
            external_events=events,
            project_recurring=bool(data.get("project_recurring")),
        )
        return jsonify(view.to_dict())

    @app.route("/api/habits", methods=["GET"])
    def api_habits():
        habits = _service().list_habits(request.args.get("space") or None)
        return jsonify({"habits": [h.to_dict() for h in habits], "count": len(habits)})

    @app.route("/api/habits", methods=["POST"])
    @require_api_key
    def api_create_habit():
        data = _body()
        habit = _service().create_habit(
            _required(data, "name"),
            space=data.get("space") or "work",
            frequency=data.get("frequency") or "daily",
            target_days=data.get("target_days") or [],
            reminder_time=data.get("reminder_time"),
        )
        return jsonify({"habit": habit.to_dict()}), 201

    @app.route("/api/habits/<habit_id>/log", methods=["POST"])
    @require_api_key
    def api_log_habit(habit_id):
        data = _body()
        return jsonify(_service().log_habit(habit_id, data.get("date") or None).to_dict())

    @app.route("/api/recurring/sweep", methods=["POST"])
    @require_api_key
    def api_sweep():
        created = _service().sweep_recurring()
        return jsonify({"created": [t.to_dict() for t in created], "count": len(created)})

    @app.route("/health")
    def health():
        return jsonify({"status": "ok", "db": str(_service().store.db_path)})

    return app


# ── Main ─────────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Flowboard Server")
    parser.add_argument("--config", help="Path to flowboard.yaml")
    parser.add_argument("--host", help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int)
    parser.add_argument("--db", help="Path to flowboard.db (overrides FLOWBOARD_DB env var)")
    args = parser.parse_args()

    cfg = Config.load(args.config)
    if args.db:
        cfg.db_path = args.db
    host = args.host or cfg.host
    port = args.port or cfg.port

    configure_logging(cfg.log_level)
    if not cfg.api_secret:
        logger.warning("FLOWBOARD_API_SECRET not set: all mutations will be rejected")
    logger.info("Serving on http://%s:%s (db: %s)", host, port, cfg.db_path)

    create_app(cfg).run(host=host, port=port, debug=False, threaded=True)
