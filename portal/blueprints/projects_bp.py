"""
Projects Blueprint.

Endpoints:
    POST   /api/v1/projects                              create (internal)
    GET    /api/v1/projects/<pid>                        detail
    PATCH  /api/v1/projects/<pid>                        edit; phase change cascades
    POST   /api/v1/projects/<pid>/phase                  { "phase": "BUILD" }
    POST   /api/v1/projects/<pid>/members                { "user_id": 7, "role": "member" }
    GET    /api/v1/projects/<pid>/updates                feed (clients: client-visible only)
"""

import logging

from flask import Blueprint, jsonify, request

from portal.blueprints import current_actor, json_body
from portal.services import project_updates
from portal.services.transition_engine import get_engine

logger = logging.getLogger(__name__)

projects_bp = Blueprint("projects", __name__, url_prefix="/api/v1")


@projects_bp.route("/projects", methods=["POST"])
def create_project():
    project = get_engine().create_project(current_actor(), json_body())
    return jsonify(project), 201


@projects_bp.route("/projects/<int:project_id>", methods=["GET"])
def get_project(project_id):
    return jsonify(get_engine().get_project(current_actor(), project_id))


@projects_bp.route("/projects/<int:project_id>", methods=["PATCH", "PUT"])
def update_project(project_id):
    return jsonify(get_engine().update_project(current_actor(), project_id, json_body()))


@projects_bp.route("/projects/<int:project_id>/phase", methods=["POST"])
def change_phase(project_id):
    data = json_body()
    return jsonify(get_engine().change_phase(current_actor(), project_id, data.get("phase")))


@projects_bp.route("/projects/<int:project_id>/members", methods=["POST"])
def add_member(project_id):
    data = json_body()
    member = get_engine().add_member(
        current_actor(), project_id, data.get("user_id"), data.get("role", "member"),
    )
    return jsonify(member), 201


@projects_bp.route("/projects/<int:project_id>/updates", methods=["GET"])
def list_updates(project_id):
    """Project feed, newest first. ?limit= caps the page (default 50, clamped to 1..200)."""
    actor = current_actor()
    project = get_engine().get_project(actor, project_id)
    try:
        limit = max(1, min(int(request.args.get("limit", 50)), 200))
    except (ValueError, TypeError):
        limit = 50
    updates = project_updates.list_updates(
        project["id"], client_visible_only=actor.is_client, limit=limit,
    )
    return jsonify([u.to_dict() for u in updates])
