"""
Sprints Blueprint.

Endpoints:
    GET    /api/v1/projects/<pid>/sprints                  newest first, with progress
    POST   /api/v1/projects/<pid>/sprints                  { "name": "...", "start_date": "YYYY-MM-DD" }
    GET    /api/v1/projects/<pid>/sprints/active           200 with sprint or null
    GET    /api/v1/projects/<pid>/sprints/<sid>
    PATCH  /api/v1/projects/<pid>/sprints/<sid>            rename / retime
    DELETE /api/v1/projects/<pid>/sprints/<sid>
    POST   /api/v1/projects/<pid>/sprints/check-completion release notes for ended sprints
"""

from flask import Blueprint, jsonify

from portal.blueprints import current_actor, json_body
from portal.services.transition_engine import get_engine

sprints_bp = Blueprint("sprints", __name__, url_prefix="/api/v1")


@sprints_bp.route("/projects/<int:project_id>/sprints", methods=["GET"])
def list_sprints(project_id):
    return jsonify(get_engine().list_sprints(current_actor(), project_id))


@sprints_bp.route("/projects/<int:project_id>/sprints", methods=["POST"])
def create_sprint(project_id):
    return jsonify(get_engine().create_sprint(current_actor(), project_id, json_body())), 201


@sprints_bp.route("/projects/<int:project_id>/sprints/active", methods=["GET"])
def active_sprint(project_id):
    return jsonify({"sprint": get_engine().active_sprint(current_actor(), project_id)})


@sprints_bp.route("/projects/<int:project_id>/sprints/check-completion", methods=["POST"])
def check_sprint_completion(project_id):
    return jsonify(get_engine().check_sprint_completion(current_actor(), project_id))


@sprints_bp.route("/projects/<int:project_id>/sprints/<int:sprint_id>", methods=["GET"])
def get_sprint(project_id, sprint_id):
    return jsonify(get_engine().get_sprint(current_actor(), project_id, sprint_id))


@sprints_bp.route("/projects/<int:project_id>/sprints/<int:sprint_id>", methods=["PATCH", "PUT"])
def update_sprint(project_id, sprint_id):
    return jsonify(get_engine().update_sprint(current_actor(), project_id, sprint_id, json_body()))


@sprints_bp.route("/projects/<int:project_id>/sprints/<int:sprint_id>", methods=["DELETE"])
def delete_sprint(project_id, sprint_id):
    return jsonify(get_engine().delete_sprint(current_actor(), project_id, sprint_id))
