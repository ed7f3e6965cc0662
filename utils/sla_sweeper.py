"""Automated SLA enforcement: escalate issues left unresolved past their department window."""
from datetime import datetime, timedelta
from typing import List, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from extensions import db
from models import SLA_TRACKED_STATUSES, Department, Issue, StatusLog, utcnow
from utils.errors import PersistenceError
from utils.notifications import notify_admins
from utils.priority import recalculate_priorities

ESCALATION_NOTE = "Auto-escalated: SLA exceeded"


def _overdue_issues(department: Department, now: datetime) -> List[Issue]:
    """Overdue tracked issues that have never been escalated.

    Resuming work clears the escalated status but not the log entry, so an issue escalates at most once.
    """
    cutoff = now - timedelta(hours=department.sla_hours)
    already_escalated = (
        db.session.query(StatusLog.id)
        .filter(StatusLog.issue_id == Issue.id, StatusLog.new_status == "escalated")
        .exists()
    )
    return (
        Issue.query.filter(
            Issue.department_id == department.id,
            Issue.status.in_(SLA_TRACKED_STATUSES),
            Issue.created_at < cutoff,
            ~already_escalated,
        )
        .order_by(Issue.created_at.asc())
        .all()
    )


def _escalate(issue: Issue, now: datetime) -> None:
    previous = issue.status
    issue.escalated_from = previous
    issue.status = "escalated"
    db.session.add(
        StatusLog(
            issue_id=issue.id,
            old_status=previous,
            new_status="escalated",
            note=ESCALATION_NOTE,
            created_at=now,
        )
    )
    notify_admins(f"Issue \"{issue.title}\" has been escalated - SLA exceeded", "issue_escalated", issue_id=issue.id)


def run_sla_sweep(now: Optional[datetime] = None) -> int:
    """Escalate every overdue issue once. Returns how many were escalated in this run.

    Each issue commits on its own so one failure does not hold back the rest.
    """
    now = now or utcnow()
    escalated = 0
    try:
        departments = Department.query.order_by(Department.id).all()
    except SQLAlchemyError as exc:
        current_app.logger.exception("SLA sweep could not load departments")
        raise PersistenceError("SLA sweep failed") from exc

    for department in departments:
        for issue in _overdue_issues(department, now):
            issue_id = issue.id
            try:
                _escalate(issue, now)
                db.session.commit()
                escalated += 1
                current_app.logger.info(
                    "Issue auto-escalated",
                    extra={"issue_id": issue_id, "department": department.name, "sla_hours": department.sla_hours},
                )
            except StaleDataError:
                db.session.rollback()
                current_app.logger.warning(
                    "Escalation skipped; issue changed concurrently",
                    extra={"issue_id": issue_id},
                )
            except SQLAlchemyError:
                db.session.rollback()
                current_app.logger.exception("Escalation failed", extra={"issue_id": issue_id})

    current_app.logger.info("SLA sweep complete", extra={"escalated": escalated})
    return escalated


def run_sla_cycle(app) -> int:
    with app.app_context():
        return run_sla_sweep()


def run_priority_cycle(app) -> int:
    with app.app_context():
        return recalculate_priorities()
