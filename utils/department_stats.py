"""Department performance figures for the admin console."""
from __future__ import annotations

from typing import Dict, List

from models import Department, Issue, StatusLog


def _resolution_hours(issue: Issue) -> float | None:
    details = issue.work_details
    if issue.status != "completed" or details is None or not details.completed_at or not issue.created_at:
        return None
    return (details.completed_at - issue.created_at).total_seconds() / 3600


def compute_department_stats(department: Department) -> Dict:
    issues = department.issues.all()
    total = len(issues)
    resolved = [i for i in issues if i.status == "completed"]
    escalated_ids = {
        row.issue_id
        for row in StatusLog.query.with_entities(StatusLog.issue_id)
        .join(Issue)
        .filter(Issue.department_id == department.id, StatusLog.new_status == "escalated")
        .distinct()
    }
    hours = [h for h in (_resolution_hours(i) for i in resolved) if h is not None]
    avg_hours = round(sum(hours) / len(hours), 1) if hours else None
    compliance = round((total - len(escalated_ids)) / total * 100, 1) if total else 100.0
    return {
        **department.to_payload(),
        "total": total,
        "open": sum(1 for i in issues if i.status == "open"),
        "in_progress": sum(1 for i in issues if i.display_status == "in_progress"),
        "resolved": len(resolved),
        "declined": sum(1 for i in issues if i.status == "declined"),
        "escalated": sum(1 for i in issues if i.status == "escalated"),
        "avg_resolution_hours": avg_hours,
        "sla_compliance_pct": compliance,
    }


def all_department_stats() -> List[Dict]:
    return [compute_department_stats(d) for d in Department.query.order_by(Department.name).all()]
