"""Deterministic issue priority scoring and the batch recalculation sweep."""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import CLOSED_STATUSES, Issue, utcnow
from utils.errors import PersistenceError

REPORT_WEIGHT = 2

# (minimum score, label), highest first
PRIORITY_TIERS: tuple[tuple[int, str], ...] = (
    (16, "Critical"),
    (11, "High"),
    (6, "Medium"),
)


def days_unresolved(created_at: datetime, now: datetime) -> int:
    """Whole days since creation, never negative."""
    if created_at is None:
        return 0
    return max(0, (now - created_at) // timedelta(days=1))


def score(report_count: int, severity: int, created_at: datetime, upvote_count: int, now: Optional[datetime] = None) -> int:
    now = now or utcnow()
    return (
        int(report_count) * REPORT_WEIGHT
        + int(severity)
        + days_unresolved(created_at, now)
        + int(upvote_count or 0)
    )


def priority_label(value: int | None) -> str:
    for threshold, label in PRIORITY_TIERS:
        if (value or 0) >= threshold:
            return label
    return "Low"


def score_issue(issue: Issue, now: Optional[datetime] = None) -> int:
    return score(issue.report_count, issue.severity, issue.created_at or now or utcnow(), issue.upvote_count, now)


def refresh_priority(issue: Issue, now: Optional[datetime] = None) -> int:
    """Recompute and assign the score in the caller's transaction; does not commit."""
    issue.priority_score = score_issue(issue, now)
    return issue.priority_score


def recalculate_priorities(now: Optional[datetime] = None) -> int:
    """Rescore every unresolved issue. Running it twice without changes is a no-op."""
    now = now or utcnow()
    updated = 0
    try:
        issues = Issue.query.filter(Issue.status.notin_(CLOSED_STATUSES)).all()
        for issue in issues:
            new_score = score_issue(issue, now)
            if issue.priority_score != new_score:
                issue.priority_score = new_score
                updated += 1
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Priority recalculation failed")
        raise PersistenceError("Priority recalculation failed") from exc

    current_app.logger.info(
        "Priority recalculation complete",
        extra={"scanned": len(issues), "updated": updated},
    )
    return len(issues)
