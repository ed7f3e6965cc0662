"""Issue intake, lifecycle actions and community upvotes."""
from flask import Blueprint, abort, current_app, jsonify, request
from flask_login import current_user, login_required

from extensions import db
from models import ISSUE_CATEGORIES, ISSUE_STATUSES, Issue, Upvote
from utils.access import issue_visible_to, scope_issue_query
from utils.decorators import roles_required
from utils.intake import submit_issue
from utils.lifecycle import (
    accept_issue,
    cancel_issue,
    decline_issue,
    edit_issue,
    remove_upvote,
    start_work,
    update_progress,
    upvote_issue,
)

issues_bp = Blueprint("issues", __name__, url_prefix="/issues")


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _issue_or_404(issue_id: str) -> Issue:
    issue = db.session.get(Issue, str(issue_id))
    if not issue:
        abort(404)
    if not issue_visible_to(issue, current_user):
        abort(403)
    return issue


def _issue_response(issue: Issue, status: int = 200):
    payload = issue.to_payload(detailed=True)
    payload["has_upvoted"] = bool(
        Upvote.query.filter_by(user_id=current_user.id, issue_id=issue.id).first()
    )
    return jsonify({"issue": payload}), status


@issues_bp.route("", methods=["POST"])
@roles_required("Citizen")
def create_issue():
    body = _json_body()
    result = submit_issue(
        current_user._get_current_object(),
        title=body.get("title"),
        description=body.get("description"),
        category=body.get("category"),
        severity=body.get("severity"),
        lat=body.get("lat"),
        lng=body.get("lng"),
        image_url=body.get("image_url"),
    )
    issue_id = result.get("created") or result.get("merged")
    issue = db.session.get(Issue, issue_id)
    return jsonify({**result, "issue": issue.to_payload()}), 201 if "created" in result else 200


@issues_bp.route("", methods=["GET"])
@login_required
def list_issues():
    try:
        page = max(1, int(request.args.get("page", 1)))
    except (TypeError, ValueError):
        page = 1
    per_page = max(1, min(int(current_app.config.get("ISSUES_PER_PAGE", 20)), 100))

    query = scope_issue_query(Issue.query, current_user)
    status_filter = request.args.get("status")
    category_filter = request.args.get("category")
    if status_filter in ISSUE_STATUSES:
        query = query.filter(Issue.status == status_filter)
    if category_filter in ISSUE_CATEGORIES:
        query = query.filter(Issue.category == category_filter)

    pagination = query.order_by(Issue.priority_score.desc(), Issue.created_at.desc()).paginate(
        page=page, per_page=per_page, error_out=False
    )
    return jsonify(
        {
            "issues": [issue.to_payload() for issue in pagination.items],
            "page": pagination.page,
            "pages": pagination.pages,
            "total": pagination.total,
        }
    )


@issues_bp.route("/<string:issue_id>", methods=["GET"])
@login_required
def view_issue(issue_id):
    return _issue_response(_issue_or_404(issue_id))


@issues_bp.route("/<string:issue_id>", methods=["PATCH"])
@roles_required("Citizen")
def update_issue(issue_id):
    issue = _issue_or_404(issue_id)
    body = _json_body()
    edit_issue(
        issue,
        current_user._get_current_object(),
        title=body.get("title", issue.title),
        description=body.get("description", issue.description),
        category=body.get("category", issue.category),
        severity=body.get("severity", issue.severity),
    )
    return _issue_response(issue)


@issues_bp.route("/<string:issue_id>", methods=["DELETE"])
@roles_required("Citizen")
def delete_issue(issue_id):
    issue = _issue_or_404(issue_id)
    cancelled_id = cancel_issue(issue, current_user._get_current_object(), reason=_json_body().get("reason"))
    return jsonify({"cancelled": cancelled_id})


@issues_bp.route("/<string:issue_id>/upvote", methods=["POST"])
@roles_required("Citizen")
def add_upvote(issue_id):
    issue = upvote_issue(_issue_or_404(issue_id), current_user._get_current_object())
    return jsonify({"upvote_count": issue.upvote_count, "priority_score": issue.priority_score, "has_upvoted": True})


@issues_bp.route("/<string:issue_id>/upvote", methods=["DELETE"])
@roles_required("Citizen")
def delete_upvote(issue_id):
    issue = remove_upvote(_issue_or_404(issue_id), current_user._get_current_object())
    return jsonify({"upvote_count": issue.upvote_count, "priority_score": issue.priority_score, "has_upvoted": False})


@issues_bp.route("/<string:issue_id>/accept", methods=["POST"])
@roles_required("Authority", "Admin")
def accept(issue_id):
    body = _json_body()
    issue = accept_issue(
        _issue_or_404(issue_id),
        current_user._get_current_object(),
        budget=body.get("budget"),
        estimated_days=body.get("estimated_days"),
        start_date=body.get("start_date"),
    )
    return _issue_response(issue)


@issues_bp.route("/<string:issue_id>/decline", methods=["POST"])
@roles_required("Authority", "Admin")
def decline(issue_id):
    body = _json_body()
    issue = decline_issue(
        _issue_or_404(issue_id),
        current_user._get_current_object(),
        category=body.get("category"),
        reason=body.get("reason"),
    )
    return _issue_response(issue)


@issues_bp.route("/<string:issue_id>/start", methods=["POST"])
@roles_required("Authority", "Admin")
def start(issue_id):
    issue = start_work(_issue_or_404(issue_id), current_user._get_current_object())
    return _issue_response(issue)


@issues_bp.route("/<string:issue_id>/progress", methods=["POST"])
@roles_required("Authority", "Admin")
def progress(issue_id):
    body = _json_body()
    issue = update_progress(
        _issue_or_404(issue_id),
        current_user._get_current_object(),
        percentage=body.get("percentage"),
        amount_used=body.get("amount_used"),
        extension_reason=body.get("extension_reason"),
        extended_date=body.get("extended_date"),
    )
    return _issue_response(issue)
