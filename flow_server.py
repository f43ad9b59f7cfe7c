#!/usr/bin/env python3
"""
OneFlow Board Server
--------------------
JSON API over the board service, backed by SQLite.

Usage:
    python flow_server.py --config oneflow.yaml
    python flow_server.py --db /tmp/oneflow.db --port 3001

API (writes need an X-API-Key header matching ONEFLOW_API_SECRET):
    GET    /api/projects?status=&year=&month=                 → { projects, count }
    POST   /api/projects                                      → 201 { project }
    GET    /api/projects/<project>                            → { project, summary }
    PATCH  /api/projects/<project>                            ← { title?, type?, dates?, teams?, ... }
    POST   /api/projects/<project>/archive                    → { project }
    DELETE /api/projects/<project>                            → 204
    GET    /api/projects/<project>/tasks                      → { tasks, count }
    POST   /api/projects/<project>/tasks                      → 201 { task }
    GET    /api/projects/<project>/tasks/<id>                 → { task, validation }
    PATCH  /api/projects/<project>/tasks/<id>/move            ← { column, expected_version? }
    POST   /api/projects/<project>/tasks/<id>/step            ← { direction: left|right }
    POST   /api/projects/<project>/tasks/<id>/assignments/toggle   ← { member_id, division? }
    PATCH  /api/projects/<project>/tasks/<id>/assignments/<member> ← { percentage }
    PUT    /api/projects/<project>/tasks/<id>/assignments     ← { assignments: [...] }
    GET    /api/projects/<project>/tasks/<id>/validation      → { graphic, motion, music, valid }
    PATCH  /api/projects/<project>/tasks/<id>/category        ← { category }
    DELETE /api/projects/<project>/tasks/<id>                 → 204
    POST   /api/projects/<project>/tasks/<id>/check-ins       ← { member_id }
    GET    /api/analytics?project=&division=
    GET    /api/check-ins?date=&member=
    GET    /api/columns, /api/categories, /health
"""

import argparse
import hmac
import logging
import os
import sys
from datetime import datetime
from functools import wraps

from flask import Flask, Blueprint, current_app, jsonify, request

from pkg.oneflow.config import Config
from pkg.oneflow.schema import FlowError, COLUMN_ORDER, TaskCategory
from pkg.oneflow.points import (
    UnknownCategory, points_for, category_group, eligible_divisions, terminal_column,
)
from pkg.oneflow.board import CategoryRestriction, UnknownColumn
from pkg.oneflow.ledger import (
    IneligibleDivision, InvalidDistribution, UnknownMember, parse_division, validate,
)
from pkg.oneflow.projects import InvalidProject
from pkg.oneflow.store import TaskStore, StaleTask, TaskNotFound, ProjectNotFound
from pkg.oneflow.activity import CheckInNotAllowed, daily_summary
from pkg.oneflow.analytics import analytics_report, project_summary
from pkg.oneflow.service import FlowService

logger = logging.getLogger("flow_server")

api = Blueprint("api", __name__)

# FlowError subclass → HTTP status; anything unlisted is a 400
ERROR_STATUS = {
    TaskNotFound: 404,
    ProjectNotFound: 404,
    StaleTask: 409,
    CategoryRestriction: 422,
    IneligibleDivision: 422,
    InvalidDistribution: 422,
    CheckInNotAllowed: 422,
    InvalidProject: 422,
    UnknownCategory: 400,
    UnknownColumn: 400,
    UnknownMember: 400,
}


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

def service() -> FlowService:
    return current_app.extensions["oneflow"]


def body() -> dict:
    """The JSON request body; anything but an object is a 400."""
    data = request.get_json(force=True, silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("request body must be a JSON object")
    return data


def rows(data: dict, key: str) -> list:
    """A list of JSON objects under ``key``."""
    value = data.get(key) or []
    if not isinstance(value, list) or not all(isinstance(r, dict) for r in value):
        raise ValueError(f"{key} must be a list of objects")
    return value


def int_arg(name: str):
    value = request.args.get(name)
    return int(value) if value else None


def project_task(project_id: str, task_id: str):
    """Load a task and 404 unless it belongs to ``project_id``."""
    task = service().store.get_task(task_id)
    if task.project_id != project_id:
        raise TaskNotFound(f"Task {task_id} not found in project {project_id}")
    return task


def parse_assignments(data: dict) -> list:
    """Percentages pass through untouched; the ledger clamps them."""
    return [
        (r["member_id"], parse_division(r["division"]), r.get("percentage", 0))
        for r in rows(data, "assignments")
    ]


def project_fields(data: dict) -> dict:
    """Map a project JSON body onto Project field names; absent keys are None."""
    return {
        "title": data.get("title"),
        "project_type": data.get("type"),
        "event_team_name": data.get("event_team_name"),
        "brief": data.get("brief"),
        "event_start_date": data.get("event_start_date"),
        "event_end_date": data.get("event_end_date"),
        "background_url": data.get("background_url"),
        "asset_links": data.get("asset_links"),
        "teams": data.get("teams"),
    }


def project_payload(project) -> dict:
    return {"project": project.to_dict(), "summary": project_summary(service().tasks(project.project_id))}


def task_payload(task) -> dict:
    return {"task": task.to_dict(), "validation": validate(task).to_dict()}


# ── Routes: projects ─────────────────────────────────────────────────────────

@api.route("/api/projects", methods=["GET"])
def list_projects():
    svc = service()
    projects = svc.projects(
        status=request.args.get("status"),
        year=int_arg("year"),
        month=int_arg("month"),
    )
    counts = svc.store.task_counts()
    return jsonify({
        "projects": [dict(p.to_dict(), task_count=counts.get(p.project_id, 0)) for p in projects],
        "count": len(projects),
    })


@api.route("/api/projects", methods=["POST"])
@require_api_key
def create_project():
    data = body()
    if not (data.get("title") or "").strip():
        return jsonify({"error": "title is required"}), 400
    for key in ("type", "event_start_date", "event_end_date"):
        if not data.get(key):
            return jsonify({"error": f"{key} is required"}), 400

    fields = {k: v for k, v in project_fields(data).items() if v is not None}
    project = service().create_project(project_id=data.get("project_id"), **fields)
    return jsonify(project_payload(project)), 201


@api.route("/api/projects/<project_id>", methods=["GET"])
def get_project(project_id):
    return jsonify(project_payload(service().store.get_project(project_id)))


@api.route("/api/projects/<project_id>", methods=["PATCH"])
@require_api_key
def update_project(project_id):
    project = service().update_project(project_id, **project_fields(body()))
    return jsonify(project_payload(project))


@api.route("/api/projects/<project_id>/archive", methods=["POST"])
@require_api_key
def archive_project(project_id):
    return jsonify(project_payload(service().archive_project(project_id)))


@api.route("/api/projects/<project_id>", methods=["DELETE"])
@require_api_key
def delete_project(project_id):
    service().delete_project(project_id)
    return "", 204


# ── Routes: tasks ────────────────────────────────────────────────────────────

@api.route("/api/projects/<project_id>/tasks", methods=["GET"])
def list_tasks(project_id):
    service().store.get_project(project_id)
    tasks = service().tasks(project_id)
    column = request.args.get("column")
    category = request.args.get("category")
    if column:
        tasks = [t for t in tasks if t.column.value == column]
    if category:
        tasks = [t for t in tasks if t.category.value == category.upper()]
    return jsonify({"tasks": [t.to_dict() for t in tasks], "count": len(tasks)})


@api.route("/api/projects/<project_id>/tasks", methods=["POST"])
@require_api_key
def create_task(project_id):
    data = body()
    title = (data.get("title") or "").strip()
    if not title:
        return jsonify({"error": "title is required"}), 400
    if not data.get("category"):
        return jsonify({"error": "category is required"}), 400

    task = service().create_task(
        project_id,
        title,
        data["category"],
        members=[(m["member_id"], m["division"]) for m in rows(data, "members")],
        assignments=parse_assignments(data) if data.get("assignments") is not None else None,
        description=data.get("description", ""),
        deadline=datetime.fromisoformat(data["deadline"]) if data.get("deadline") else None,
        image_url=data.get("image_url", ""),
        graphic_link=data.get("graphic_link", ""),
        animation_link=data.get("animation_link", ""),
        music_link=data.get("music_link", ""),
    )
    return jsonify(task_payload(task)), 201


@api.route("/api/projects/<project_id>/tasks/<task_id>", methods=["GET"])
def get_task(project_id, task_id):
    return jsonify(task_payload(project_task(project_id, task_id)))


@api.route("/api/projects/<project_id>/tasks/<task_id>/move", methods=["PATCH"])
@require_api_key
def move_task(project_id, task_id):
    data = body()
    if not data.get("column"):
        return jsonify({"error": "column is required"}), 400
    project_task(project_id, task_id)
    task = service().move_task(
        task_id,
        data["column"],
        actor=data.get("actor", "api"),
        expected_version=data.get("expected_version"),
    )
    return jsonify(task_payload(task))


@api.route("/api/projects/<project_id>/tasks/<task_id>/step", methods=["POST"])
@require_api_key
def step_task(project_id, task_id):
    data = body()
    project_task(project_id, task_id)
    task = service().step_task(
        task_id,
        data.get("direction", ""),
        actor=data.get("actor", "api"),
        expected_version=data.get("expected_version"),
    )
    return jsonify(task_payload(task))


@api.route("/api/projects/<project_id>/tasks/<task_id>/assignments/toggle", methods=["POST"])
@require_api_key
def toggle_member(project_id, task_id):
    data = body()
    if not data.get("member_id"):
        return jsonify({"error": "member_id is required"}), 400
    project_task(project_id, task_id)
    task = service().toggle_member(
        task_id,
        data["member_id"],
        data.get("division"),
        expected_version=data.get("expected_version"),
    )
    return jsonify(task_payload(task))


@api.route("/api/projects/<project_id>/tasks/<task_id>/assignments/<member_id>", methods=["PATCH"])
@require_api_key
def set_percentage(project_id, task_id, member_id):
    data = body()
    if "percentage" not in data:
        return jsonify({"error": "percentage is required"}), 400
    project_task(project_id, task_id)
    task = service().set_percentage(
        task_id, member_id, data["percentage"],
        expected_version=data.get("expected_version"),
    )
    return jsonify(task_payload(task))


@api.route("/api/projects/<project_id>/tasks/<task_id>/assignments", methods=["PUT"])
@require_api_key
def commit_assignments(project_id, task_id):
    data = body()
    project_task(project_id, task_id)
    task = service().commit_assignments(
        task_id,
        parse_assignments(data),
        expected_version=data.get("expected_version"),
    )
    return jsonify(task_payload(task))


@api.route("/api/projects/<project_id>/tasks/<task_id>/validation", methods=["GET"])
def validate_task(project_id, task_id):
    project_task(project_id, task_id)
    return jsonify(service().validate(task_id).to_dict())


@api.route("/api/projects/<project_id>/tasks/<task_id>/category", methods=["PATCH"])
@require_api_key
def change_category(project_id, task_id):
    data = body()
    if not data.get("category"):
        return jsonify({"error": "category is required"}), 400
    project_task(project_id, task_id)
    task = service().change_category(
        task_id, data["category"], expected_version=data.get("expected_version"),
    )
    return jsonify(task_payload(task))


@api.route("/api/projects/<project_id>/tasks/<task_id>", methods=["DELETE"])
@require_api_key
def delete_task(project_id, task_id):
    project_task(project_id, task_id)
    service().delete_task(task_id)
    return "", 204


@api.route("/api/projects/<project_id>/tasks/<task_id>/check-ins", methods=["POST"])
@require_api_key
def check_in(project_id, task_id):
    data = body()
    if not data.get("member_id"):
        return jsonify({"error": "member_id is required"}), 400
    project_task(project_id, task_id)
    created = service().check_in(task_id, data["member_id"])
    return jsonify({"checked_in": created}), 201 if created else 200


# ── Routes: read-only views ──────────────────────────────────────────────────

@api.route("/api/analytics")
def analytics():
    project = request.args.get("project")
    division = request.args.get("division")
    svc = service()
    return jsonify(analytics_report(
        svc.tasks(project),
        division=parse_division(division) if division and division != "all" else None,
        roster=svc.roster,
    ))


@api.route("/api/check-ins")
def check_ins():
    entries = service().store.list_check_ins(
        date=request.args.get("date"),
        member_id=request.args.get("member"),
    )
    return jsonify({
        date: {member: [e.to_dict() for e in rows] for member, rows in members.items()}
        for date, members in daily_summary(entries).items()
    })


@api.route("/api/columns")
def columns():
    return jsonify({"columns": [{"id": c.value, "title": c.title} for c in COLUMN_ORDER]})


@api.route("/api/categories")
def categories():
    return jsonify({"categories": [
        {
            "category": c.value,
            "group": category_group(c).value,
            "points": points_for(c),
            "divisions": sorted(d.value for d in eligible_divisions(c)),
            "terminal_column": terminal_column(c).value,
        }
        for c in TaskCategory
    ]})


@api.route("/health")
def health():
    return jsonify({"status": "ok", "db": service().store.db_path})


# ── App factory ──────────────────────────────────────────────────────────────

def create_app(config: Config = None) -> Flask:
    config = config or Config.load()
    app = Flask(__name__)
    app.config["API_SECRET"] = config.api_secret

    store = TaskStore(config.db_path)
    app.extensions["oneflow"] = FlowService(store, roster=config.roster, teams=config.team_divisions)
    app.register_blueprint(api)

    @app.errorhandler(FlowError)
    def flow_error(e):
        status = ERROR_STATUS.get(type(e), 400)
        payload = {"error": str(e), "kind": type(e).__name__}
        if isinstance(e, InvalidDistribution):
            payload["divisions"] = [d.value for d in e.divisions]
        return jsonify(payload), status

    @app.errorhandler(ValueError)
    @app.errorhandler(KeyError)
    def bad_request(e):
        return jsonify({"error": f"Validation failed: {e}"}), 400

    @app.errorhandler(500)
    def internal_error(e):
        logger.error(f"Unhandled error on {request.method} {request.path}: {e}")
        return jsonify({"error": "Internal server error"}), 500

    return app


# ── Main ─────────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="OneFlow Board Server")
    parser.add_argument("--config", help="Path to oneflow.yaml")
    parser.add_argument("--host", help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int)
    parser.add_argument("--db", help="Path to oneflow.db (overrides ONEFLOW_DB env var)")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [flow_server] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    if args.db:
        os.environ["ONEFLOW_DB"] = args.db

    cfg = Config.load(args.config)
    host = args.host or cfg.host
    port = args.port or cfg.port

    logger.info(f"OneFlow board server on http://{host}:{port} (db: {cfg.db_path})")
    if not cfg.api_secret:
        logger.warning("ONEFLOW_API_SECRET not set; write endpoints will return 503")

    create_app(cfg).run(host=host, port=port, debug=False, threaded=True)
