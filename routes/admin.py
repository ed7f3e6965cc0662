"""Admin oversight: escalations, department SLAs and on-demand sweeps."""
from flask import Blueprint, abort, current_app, jsonify, request
from flask_login import current_user

from extensions import db
from models import AuditLog, Department, Issue
from utils.decorators import roles_required
from utils.department_stats import all_department_stats, compute_department_stats
from utils.errors import ValidationError
from utils.priority import recalculate_priorities
from utils.sla_sweeper import run_sla_sweep

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


@admin_bp.route("/escalations", methods=["GET"])
@roles_required("Admin")
def escalations():
    issues = (
        Issue.query.filter(Issue.status == "escalated")
        .order_by(Issue.priority_score.desc(), Issue.created_at.asc())
        .all()
    )
    return jsonify({"issues": [issue.to_payload() for issue in issues]})


@admin_bp.route("/departments", methods=["GET"])
@roles_required("Admin")
def departments():
    return jsonify({"departments": all_department_stats()})


@admin_bp.route("/departments/<int:department_id>", methods=["PATCH"])
@roles_required("Admin")
def update_department(department_id):
    department = db.session.get(Department, department_id)
    if not department:
        abort(404)

    body = request.get_json(silent=True) or {}
    try:
        sla_hours = int(body.get("sla_hours"))
    except (TypeError, ValueError):
        sla_hours = 0
    if sla_hours < 1:
        raise ValidationError({"sla_hours": "Must be a whole number of hours, at least 1."})

    previous = department.sla_hours
    department.sla_hours = sla_hours
    db.session.add(
        AuditLog(
            user_id=current_user.id,
            action_type="DEPARTMENT_SLA_UPDATED",
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent", "unknown"),
            context_entity=f"department:{department.id}",
        )
    )
    db.session.commit()
    current_app.logger.info(
        "Department SLA updated",
        extra={"department": department.name, "previous": previous, "sla_hours": sla_hours},
    )
    return jsonify({"department": compute_department_stats(department)})


@admin_bp.route("/sweeps/escalations", methods=["POST"])
@roles_required("Admin")
def sweep_escalations():
    return jsonify({"escalated": run_sla_sweep()})


@admin_bp.route("/sweeps/priorities", methods=["POST"])
@roles_required("Admin")
def sweep_priorities():
    return jsonify({"recalculated": recalculate_priorities()})
