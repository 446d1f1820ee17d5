#!/usr/bin/env python3
"""
Backlog Board Server
--------------------
JSON API for shared-secret project boards. Storage is a JSON document by
default, or SQLite when DATABASE_URL is set (see pkg/backlog/config.py).

Usage:
    python backlog_server.py --port 5000
    DATABASE_URL=sqlite:////var/lib/backlog/backlog.db python backlog_server.py

API (all under /api; project routes need the X-Project-Secret header):
    GET    /health
    POST   /projects                       {name, secretKey}
    GET    /projects
    POST   /access                         {secretKey}
    GET    /projects/<id>
    DELETE /projects/<id>
    GET    /projects/<id>/items            → {columns}
    POST   /projects/<id>/items            {title, description?, status?}
    PATCH  /projects/<id>/items/<itemId>   {title?, description?, status?}
    DELETE /projects/<id>/items/<itemId>
    POST   /projects/<id>/items/reorder    {columns: {status: [itemId, ...]}}
"""

import hmac
import logging
import sys
from functools import wraps

from flask import Blueprint, Flask, current_app, g, jsonify, request
from werkzeug.exceptions import HTTPException

from pkg.backlog.config import Config, ConfigError, open_store
from pkg.backlog.schema import BacklogError, ForbiddenError, NotFoundError, ValidationError
from pkg.backlog.store import BacklogStore

SECRET_HEADER = "X-Project-Secret"

api = Blueprint("api", __name__, url_prefix="/api")


def get_store() -> BacklogStore:
    return current_app.config["BACKLOG_STORE"]


def json_body() -> dict:
    """Request JSON as a dict; a missing or malformed body counts as {}."""
    data = request.get_json(force=True, silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def secrets_match(provided: str, expected: str) -> bool:
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


# ── Auth ─────────────────────────────────────────────────────────────────────


def require_project_secret(f):
    """Decorator: resolve <project_id> and check the X-Project-Secret header.

    Unknown project → 404, wrong or missing secret → 403.
    """
    @wraps(f)
    def decorated(project_id, *args, **kwargs):
        project = get_store().get_project(project_id)
        if project is None:
            raise NotFoundError("Project not found.")
        provided = request.headers.get(SECRET_HEADER, "").strip()
        if not secrets_match(provided, project.secret_key):
            current_app.logger.warning(f"Rejected secret for project {project_id}")
            raise ForbiddenError("Invalid secret key for this project.")
        g.project = project
        return f(project_id, *args, **kwargs)
    return decorated


# ── Routes ───────────────────────────────────────────────────────────────────


@api.route("/health")
def health():
    return jsonify({"status": "ok", "backend": get_store().backend})


@api.route("/projects", methods=["POST"])
def api_create_project():
    data = json_body()
    project = get_store().create_project(data.get("name"), data.get("secretKey"))
    return jsonify({"project": project.to_dict()}), 201


@api.route("/projects", methods=["GET"])
def api_list_projects():
    projects = [p.to_dict() for p in get_store().list_projects()]
    return jsonify({"projects": projects})


@api.route("/access", methods=["POST"])
def api_access():
    """Resolve a project from its secret alone."""
    data = json_body()
    secret = data.get("secretKey")
    project = get_store().get_project_by_secret(secret if isinstance(secret, str) else "")
    if project is None:
        raise NotFoundError("Invalid secret key.")
    return jsonify({"project": project.to_dict()})


@api.route("/projects/<project_id>", methods=["GET"])
@require_project_secret
def api_get_project(project_id):
    return jsonify({"project": g.project.to_dict()})


@api.route("/projects/<project_id>", methods=["DELETE"])
@require_project_secret
def api_delete_project(project_id):
    if not get_store().delete_project(project_id):
        raise NotFoundError("Project not found.")
    return "", 204


@api.route("/projects/<project_id>/items", methods=["GET"])
@require_project_secret
def api_list_items(project_id):
    return jsonify({"columns": get_store().get_board(project_id)})


@api.route("/projects/<project_id>/items", methods=["POST"])
@require_project_secret
def api_create_item(project_id):
    data = json_body()
    item = get_store().create_item(
        project_id,
        title=data.get("title"),
        description=data.get("description"),
        status=data.get("status"),
    )
    return jsonify({"item": item.to_dict()}), 201


@api.route("/projects/<project_id>/items/reorder", methods=["POST"])
@require_project_secret
def api_reorder_items(project_id):
    data = json_body()
    columns = get_store().reorder_items(project_id, data.get("columns"))
    return jsonify({"columns": columns})


@api.route("/projects/<project_id>/items/<item_id>", methods=["PATCH"])
@require_project_secret
def api_update_item(project_id, item_id):
    item = get_store().update_item(project_id, item_id, json_body())
    return jsonify({"item": item.to_dict()})


@api.route("/projects/<project_id>/items/<item_id>", methods=["DELETE"])
@require_project_secret
def api_delete_item(project_id, item_id):
    get_store().delete_item(project_id, item_id)
    return "", 204


# ── Errors ───────────────────────────────────────────────────────────────────


def handle_backlog_error(e: BacklogError):
    return jsonify({"error": e.message}), e.status_code


def handle_http_error(e: HTTPException):
    return jsonify({"error": e.description}), e.code


def handle_unexpected_error(e: Exception):
    current_app.logger.exception(f"Unhandled error on {request.method} {request.path}")
    return jsonify({"error": "Internal server error."}), 500


# ── App factory ──────────────────────────────────────────────────────────────


def create_app(store: BacklogStore = None, config: Config = None) -> Flask:
    """Build the Flask app. The store is resolved once and shared by all requests."""
    config = config or Config.load()
    app = Flask(__name__)
    app.config["BACKLOG_CONFIG"] = config
    app.config["BACKLOG_STORE"] = store if store is not None else open_store(config)

    app.register_blueprint(api)
    app.register_error_handler(BacklogError, handle_backlog_error)
    app.register_error_handler(HTTPException, handle_http_error)
    app.register_error_handler(Exception, handle_unexpected_error)

    @app.after_request
    def add_cors_headers(response):
        response.headers["Access-Control-Allow-Origin"] = config.cors_origins
        response.headers["Access-Control-Allow-Headers"] = f"Content-Type, {SECRET_HEADER}"
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, PATCH, DELETE, OPTIONS"
        return response

    return app


# ── Main ─────────────────────────────────────────────────────────────────────


def main(argv=None):
    import argparse

    parser = argparse.ArgumentParser(description="Backlog Board Server")
    parser.add_argument("--config", help="Path to backlog.yaml")
    parser.add_argument("--host", help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int)
    parser.add_argument("--db-file", help="JSON data file (overrides BACKLOG_DB_FILE)")
    parser.add_argument("--database-url", help="sqlite:///path (overrides DATABASE_URL)")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ...")
    args = parser.parse_args(argv)

    try:
        config = Config.load(args.config)
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 2
    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    if args.db_file:
        config.data_file = args.db_file
    if args.database_url:
        config.database_url = args.database_url
    if args.log_level:
        config.log_level = args.log_level

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [backlog] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    try:
        app = create_app(config=config)
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 2
    store = app.config["BACKLOG_STORE"]
    location = getattr(store, "db_path", None) or getattr(store, "path", "")

    print(f"""
╔═══════════════════════════════════════╗
║  Backlog Board Server                 ║
╠═══════════════════════════════════════╣
║  URL:   http://{config.host}:{config.port:<18}║
║  Store: {store.backend:<30}║
║  Path:  {str(location):<30}║
╚═══════════════════════════════════════╝
""")

    app.run(host=config.host, port=config.port, debug=False, threaded=True)
    return 0


if __name__ == "__main__":
    sys.exit(main())
