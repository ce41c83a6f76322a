"""
Change Requests Blueprint.

Endpoints:
    GET    /api/v1/projects/<pid>/change-requests          internal: all, client: own
    POST   /api/v1/projects/<pid>/change-requests
           Body: { "title": "...", "description": "...", "type": "NEW_FEATURE" }
           429 with details.retry_after when a client's weekly quota is used.
    GET    /api/v1/projects/<pid>/change-requests/<cid>
    PATCH  /api/v1/projects/<pid>/change-requests/<cid>    internal triage
           Body: any of status, scope, priority, estimate_hours,
                 estimate_cost_cents, impact_notes
    GET    /api/v1/projects/<pid>/change-requests/<cid>/impact
           Human-readable delay / due date for the stored estimate.
"""

from flask import Blueprint, jsonify

from portal.blueprints import current_actor, json_body
from portal.services.timeline_impact import TimelineImpact, format_timeline_impact
from portal.services.transition_engine import get_engine
from portal.utils.helpers import parse_date

change_requests_bp = Blueprint("change_requests", __name__, url_prefix="/api/v1")


@change_requests_bp.route("/projects/<int:project_id>/change-requests", methods=["GET"])
def list_change_requests(project_id):
    return jsonify(get_engine().list_change_requests(current_actor(), project_id))


@change_requests_bp.route("/projects/<int:project_id>/change-requests", methods=["POST"])
def create_change_request(project_id):
    cr = get_engine().create_change_request(current_actor(), project_id, json_body())
    return jsonify(cr), 201


@change_requests_bp.route(
    "/projects/<int:project_id>/change-requests/<int:change_request_id>", methods=["GET"],
)
def get_change_request(project_id, change_request_id):
    return jsonify(get_engine().get_change_request(current_actor(), project_id, change_request_id))


@change_requests_bp.route(
    "/projects/<int:project_id>/change-requests/<int:change_request_id>", methods=["PATCH", "PUT"],
)
def update_change_request(project_id, change_request_id):
    return jsonify(get_engine().update_change_request(
        current_actor(), project_id, change_request_id, json_body(),
    ))


@change_requests_bp.route(
    "/projects/<int:project_id>/change-requests/<int:change_request_id>/impact", methods=["GET"],
)
def change_request_impact(project_id, change_request_id):
    cr = get_engine().get_change_request(current_actor(), project_id, change_request_id)
    if cr["estimated_timeline_delay_days"] is None or cr["new_project_due_date"] is None:
        return jsonify({"delay_days": None, "new_due_date": None})
    impact = TimelineImpact(
        delay_days=cr["estimated_timeline_delay_days"],
        new_due_date=parse_date(cr["new_project_due_date"]),
    )
    return jsonify({
        "delay_days": impact.delay_days,
        "new_due_date": cr["new_project_due_date"],
        **format_timeline_impact(impact),
    })
