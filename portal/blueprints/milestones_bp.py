"""
Milestones Blueprint.

Endpoints:
    GET    /api/v1/projects/<pid>/milestones                     with derived progress
    POST   /api/v1/projects/<pid>/milestones                     internal
    GET    /api/v1/projects/<pid>/milestones/<mid>
    PATCH  /api/v1/projects/<pid>/milestones/<mid>               internal
    DELETE /api/v1/projects/<pid>/milestones/<mid>               internal
    GET    /api/v1/projects/<pid>/milestones/<mid>/progress
    POST   /api/v1/projects/<pid>/milestones/<mid>/approve       client, { "notes": "..." }
    POST   /api/v1/projects/<pid>/milestones/<mid>/request-changes
           client, { "notes": "..." } (required)
"""

from flask import Blueprint, jsonify

from portal.blueprints import current_actor, json_body
from portal.services.transition_engine import get_engine

milestones_bp = Blueprint("milestones", __name__, url_prefix="/api/v1")


@milestones_bp.route("/projects/<int:project_id>/milestones", methods=["GET"])
def list_milestones(project_id):
    return jsonify(get_engine().list_milestones(current_actor(), project_id))


@milestones_bp.route("/projects/<int:project_id>/milestones", methods=["POST"])
def create_milestone(project_id):
    return jsonify(get_engine().create_milestone(current_actor(), project_id, json_body())), 201


@milestones_bp.route("/projects/<int:project_id>/milestones/<int:milestone_id>", methods=["GET"])
def get_milestone(project_id, milestone_id):
    return jsonify(get_engine().get_milestone(current_actor(), project_id, milestone_id))


@milestones_bp.route(
    "/projects/<int:project_id>/milestones/<int:milestone_id>", methods=["PATCH", "PUT"],
)
def update_milestone(project_id, milestone_id):
    return jsonify(get_engine().update_milestone(
        current_actor(), project_id, milestone_id, json_body(),
    ))


@milestones_bp.route(
    "/projects/<int:project_id>/milestones/<int:milestone_id>", methods=["DELETE"],
)
def delete_milestone(project_id, milestone_id):
    return jsonify(get_engine().delete_milestone(current_actor(), project_id, milestone_id))


@milestones_bp.route(
    "/projects/<int:project_id>/milestones/<int:milestone_id>/progress", methods=["GET"],
)
def milestone_progress(project_id, milestone_id):
    return jsonify(get_engine().milestone_progress(current_actor(), project_id, milestone_id))


@milestones_bp.route(
    "/projects/<int:project_id>/milestones/<int:milestone_id>/approve", methods=["POST"],
)
def approve_milestone(project_id, milestone_id):
    data = json_body()
    return jsonify(get_engine().approve_milestone(
        current_actor(), project_id, milestone_id, notes=data.get("notes"),
    ))


@milestones_bp.route(
    "/projects/<int:project_id>/milestones/<int:milestone_id>/request-changes", methods=["POST"],
)
def request_milestone_changes(project_id, milestone_id):
    data = json_body()
    return jsonify(get_engine().request_milestone_changes(
        current_actor(), project_id, milestone_id, data.get("notes"),
    ))
