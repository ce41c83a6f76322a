"""
Studio Portal
Notification inbox Blueprint.

Pull-based: the UI polls these endpoints. Every route acts on the
acting user's own notifications.

Endpoints:
    GET    /api/v1/notifications                    newest 50 (?limit=)
    GET    /api/v1/notifications/unread-count
    PATCH  /api/v1/notifications/<nid>/read
    POST   /api/v1/notifications/mark-all-read
"""

import logging

from flask import Blueprint, jsonify, request

from portal.blueprints import current_actor
from portal.core.exceptions import UnauthorizedError
from portal.services.notification import INBOX_LIMIT, NotificationService

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notifications", __name__, url_prefix="/api/v1")


def _require_actor():
    actor = current_actor()
    if actor is None:
        raise UnauthorizedError("Authentication required")
    return actor


@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    actor = _require_actor()
    try:
        limit = max(1, min(int(request.args.get("limit", INBOX_LIMIT)), 200))
    except (ValueError, TypeError):
        limit = INBOX_LIMIT
    items = NotificationService.list_for_user(actor.id, limit=limit)
    return jsonify({
        "items": [n.to_dict() for n in items],
        "unread_count": NotificationService.unread_count(actor.id),
    })


@notification_bp.route("/notifications/unread-count", methods=["GET"])
def unread_count():
    actor = _require_actor()
    return jsonify({"unread_count": NotificationService.unread_count(actor.id)})


@notification_bp.route("/notifications/<int:notification_id>/read", methods=["PATCH", "POST"])
def mark_read(notification_id):
    actor = _require_actor()
    notif = NotificationService.mark_read(notification_id, actor.id)
    return jsonify(notif.to_dict())


@notification_bp.route("/notifications/mark-all-read", methods=["POST"])
def mark_all_read():
    actor = _require_actor()
    count = NotificationService.mark_all_read(actor.id)
    return jsonify({"marked_read": count})
