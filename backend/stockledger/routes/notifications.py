# Overview: Flask API routes for alert notifications.

# backend/stockledger/routes/notifications.py

from flask import Blueprint, request, jsonify, current_app

from ..services import alert_service


notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


def _ids_from_body():
    """None means every notification; otherwise a list of integer ids."""
    payload = request.get_json(silent=True) or {}
    ids = payload.get("ids")
    if ids is None:
        return None
    if not isinstance(ids, list) or not all(isinstance(i, int) and not isinstance(i, bool) for i in ids):
        raise ValueError("ids must be a list of integers")
    return ids


@notifications_bp.get("")
@notifications_bp.get("/")
def list_notifications_route():
    """Query: is_read=true|false, type, priority, page, limit"""
    is_read_arg = request.args.get("is_read")
    is_read = None
    if is_read_arg is not None:
        is_read = is_read_arg.lower() in ("1", "true", "yes")

    result = alert_service.list_notifications(
        is_read=is_read,
        notification_type=request.args.get("type") or None,
        priority=request.args.get("priority") or None,
        page=request.args.get("page", default=1, type=int),
        limit=request.args.get("limit", default=20, type=int),
    )
    return jsonify(result), 200


@notifications_bp.get("/counts")
def notification_counts_route():
    return jsonify(alert_service.notification_counts()), 200


@notifications_bp.post("/mark-read")
def mark_read_route():
    """Body {"ids": [1, 2]}; omit ids to mark everything read."""
    try:
        count = alert_service.mark_read(_ids_from_body())
        return jsonify({"updated": count}), 200
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to mark notifications read")
        return jsonify({"error": "Internal server error"}), 500


@notifications_bp.delete("")
@notifications_bp.delete("/")
def delete_notifications_route():
    """Body {"ids": [1, 2]}; omit ids to delete everything."""
    try:
        count = alert_service.delete_notifications(_ids_from_body())
        return jsonify({"deleted": count}), 200
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to delete notifications")
        return jsonify({"error": "Internal server error"}), 500


@notifications_bp.post("/refresh")
def refresh_route():
    """Run the stock and expiration sweeps now."""
    try:
        return jsonify(alert_service.refresh_alerts()), 200
    except Exception:
        current_app.logger.exception("Failed to refresh alerts")
        return jsonify({"error": "Internal server error"}), 500
