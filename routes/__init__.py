"""Blueprint registration, health, points and notification routes."""
from flask import Blueprint, abort, current_app, jsonify, request
from flask_login import current_user, login_required

from utils.notifications import mark_all_read, mark_read, notifications_for_user
from utils.points_ledger import leaderboard, user_history
from .admin import admin_bp
from .auth import auth_bp
from .issues import issues_bp

main_bp = Blueprint("main", __name__)


@main_bp.route("/health", methods=["GET"])
def health():
    return jsonify({"status": "ok"})


@main_bp.route("/points/me", methods=["GET"])
@login_required
def my_points():
    history = user_history(current_user.id, limit=50)
    return jsonify(
        {
            "points_total": current_user.points_total or 0,
            "history": [entry.to_payload() for entry in history],
        }
    )


@main_bp.route("/points/leaderboard", methods=["GET"])
@login_required
def points_leaderboard():
    size = int(current_app.config.get("LEADERBOARD_SIZE", 20))
    return jsonify({"leaderboard": leaderboard(limit=size)})


@main_bp.route("/notifications", methods=["GET"])
@login_required
def notifications_feed():
    unread_only = request.args.get("unread") in ("1", "true", "yes")
    items = notifications_for_user(current_user, unread_only=unread_only)
    return jsonify({"notifications": [n.to_payload() for n in items]})


@main_bp.route("/notifications/<string:notification_id>/read", methods=["POST"])
@login_required
def read_notification(notification_id):
    if not mark_read(notification_id, current_user):
        abort(404)
    return jsonify({"status": "read"})


@main_bp.route("/notifications/read-all", methods=["POST"])
@login_required
def read_all_notifications():
    updated = mark_all_read(current_user)
    return jsonify({"updated": updated})


__all__ = ["main_bp", "auth_bp", "issues_bp", "admin_bp"]
