"""
Epics Blueprint.

Endpoints:
    GET    /api/v1/projects/<pid>/epics                 ordered by order_index
    POST   /api/v1/projects/<pid>/epics                 internal
    GET    /api/v1/projects/<pid>/epics/<eid>           with its deliverables
    PATCH  /api/v1/projects/<pid>/epics/<eid>           internal
    DELETE /api/v1/projects/<pid>/epics/<eid>           internal, deliverables are kept
"""

from flask import Blueprint, jsonify

from portal.blueprints import current_actor, json_body
from portal.services.transition_engine import get_engine

epics_bp = Blueprint("epics", __name__, url_prefix="/api/v1")


@epics_bp.route("/projects/<int:project_id>/epics", methods=["GET"])
def list_epics(project_id):
    return jsonify(get_engine().list_epics(current_actor(), project_id))


@epics_bp.route("/projects/<int:project_id>/epics", methods=["POST"])
def create_epic(project_id):
    return jsonify(get_engine().create_epic(current_actor(), project_id, json_body())), 201


@epics_bp.route("/projects/<int:project_id>/epics/<int:epic_id>", methods=["GET"])
def get_epic(project_id, epic_id):
    return jsonify(get_engine().get_epic(current_actor(), project_id, epic_id))


@epics_bp.route("/projects/<int:project_id>/epics/<int:epic_id>", methods=["PATCH", "PUT"])
def update_epic(project_id, epic_id):
    return jsonify(get_engine().update_epic(current_actor(), project_id, epic_id, json_body()))


@epics_bp.route("/projects/<int:project_id>/epics/<int:epic_id>", methods=["DELETE"])
def delete_epic(project_id, epic_id):
    return jsonify(get_engine().delete_epic(current_actor(), project_id, epic_id))
