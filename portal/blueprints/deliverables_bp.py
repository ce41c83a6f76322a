"""
Deliverables (kanban) Blueprint.

Endpoints:
    GET    /api/v1/projects/<pid>/deliverables
    POST   /api/v1/projects/<pid>/deliverables
    PATCH  /api/v1/projects/<pid>/deliverables/<did>
    DELETE /api/v1/projects/<pid>/deliverables/<did>
    POST   /api/v1/projects/<pid>/deliverables/<did>/move
           Body: { "status": "DONE", "order_index": 0 }
    GET    /api/v1/projects/<pid>/deliverables/<did>/comments    threaded tree
    POST   /api/v1/projects/<pid>/deliverables/<did>/comments
           Body: { "content": "...", "parent_id": <int optional> }
    GET    /api/v1/projects/<pid>/deliverables/<did>/tasks       checklist, ordered
    POST   /api/v1/projects/<pid>/deliverables/<did>/tasks       internal, { "title": "..." }
    PATCH  /api/v1/projects/<pid>/deliverables/<did>/tasks/<tid> internal, title / completed
    DELETE /api/v1/projects/<pid>/deliverables/<did>/tasks/<tid> internal
"""

from flask import Blueprint, jsonify

from portal.blueprints import current_actor, json_body
from portal.services.transition_engine import get_engine

deliverables_bp = Blueprint("deliverables", __name__, url_prefix="/api/v1")


@deliverables_bp.route("/projects/<int:project_id>/deliverables", methods=["GET"])
def list_deliverables(project_id):
    return jsonify(get_engine().list_deliverables(current_actor(), project_id))


@deliverables_bp.route("/projects/<int:project_id>/deliverables", methods=["POST"])
def create_deliverable(project_id):
    deliverable = get_engine().create_deliverable(current_actor(), project_id, json_body())
    return jsonify(deliverable), 201


@deliverables_bp.route(
    "/projects/<int:project_id>/deliverables/<int:deliverable_id>", methods=["PATCH", "PUT"],
)
def update_deliverable(project_id, deliverable_id):
    return jsonify(get_engine().update_deliverable(
        current_actor(), project_id, deliverable_id, json_body(),
    ))


@deliverables_bp.route(
    "/projects/<int:project_id>/deliverables/<int:deliverable_id>", methods=["DELETE"],
)
def delete_deliverable(project_id, deliverable_id):
    return jsonify(get_engine().delete_deliverable(current_actor(), project_id, deliverable_id))


@deliverables_bp.route(
    "/projects/<int:project_id>/deliverables/<int:deliverable_id>/move", methods=["POST"],
)
def move_deliverable(project_id, deliverable_id):
    data = json_body()
    return jsonify(get_engine().move_deliverable(
        current_actor(), project_id, deliverable_id,
        status=data.get("status"), order_index=data.get("order_index"),
    ))


@deliverables_bp.route(
    "/projects/<int:project_id>/deliverables/<int:deliverable_id>/comments", methods=["GET"],
)
def list_comments(project_id, deliverable_id):
    return jsonify(get_engine().comment_tree(current_actor(), project_id, deliverable_id))


@deliverables_bp.route(
    "/projects/<int:project_id>/deliverables/<int:deliverable_id>/comments", methods=["POST"],
)
def add_comment(project_id, deliverable_id):
    data = json_body()
    comment = get_engine().add_comment(
        current_actor(), project_id, deliverable_id,
        data.get("content"), parent_id=data.get("parent_id"),
    )
    return jsonify(comment), 201


@deliverables_bp.route(
    "/projects/<int:project_id>/deliverables/<int:deliverable_id>/tasks", methods=["GET"],
)
def list_tasks(project_id, deliverable_id):
    return jsonify(get_engine().list_tasks(current_actor(), project_id, deliverable_id))


@deliverables_bp.route(
    "/projects/<int:project_id>/deliverables/<int:deliverable_id>/tasks", methods=["POST"],
)
def create_task(project_id, deliverable_id):
    task = get_engine().create_task(current_actor(), project_id, deliverable_id, json_body())
    return jsonify(task), 201


@deliverables_bp.route(
    "/projects/<int:project_id>/deliverables/<int:deliverable_id>/tasks/<int:task_id>",
    methods=["PATCH", "PUT"],
)
def update_task(project_id, deliverable_id, task_id):
    return jsonify(get_engine().update_task(
        current_actor(), project_id, deliverable_id, task_id, json_body(),
    ))


@deliverables_bp.route(
    "/projects/<int:project_id>/deliverables/<int:deliverable_id>/tasks/<int:task_id>",
    methods=["DELETE"],
)
def delete_task(project_id, deliverable_id, task_id):
    return jsonify(get_engine().delete_task(
        current_actor(), project_id, deliverable_id, task_id,
    ))
