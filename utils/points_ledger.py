"""Append-only points ledger with a co-updated cached total per user."""
from __future__ import annotations

from typing import Dict, List, Optional

from sqlalchemy import func

from extensions import db
from models import PointsLedgerEntry, User

REASON_NEW_ISSUE = "New issue reported"
REASON_DUPLICATE_REPORT = "Duplicate issue report"
REASON_DECLINED = "Issue declined by authority"
REASON_CANCELLED = "Issue cancelled by reporter"


def record_points(user_id: str, points: int, reason: str, issue_id: Optional[str] = None) -> PointsLedgerEntry:
    """Append an entry and bump the cached total in the same unit of work.

    The total is moved with a SQL-side increment so concurrent awards cannot lose an update.
    Does not commit; the calling service owns the transaction.
    """
    entry = PointsLedgerEntry(user_id=user_id, points=int(points), reason=reason, issue_id=issue_id)
    db.session.add(entry)
    db.session.query(User).filter(User.id == user_id).update(
        {User.points_total: User.points_total + int(points)},
        synchronize_session="fetch",
    )
    return entry


def ledger_total(user_id: str) -> int:
    total = db.session.query(func.coalesce(func.sum(PointsLedgerEntry.points), 0)).filter(
        PointsLedgerEntry.user_id == user_id
    ).scalar()
    return int(total or 0)


def issue_points_for_user(user_id: str, issue_id: str) -> int:
    """Net points a user holds for one issue (every signed entry tied to it)."""
    total = db.session.query(func.coalesce(func.sum(PointsLedgerEntry.points), 0)).filter(
        PointsLedgerEntry.user_id == user_id,
        PointsLedgerEntry.issue_id == issue_id,
    ).scalar()
    return int(total or 0)


def reverse_issue_points(user_id: str, issue_id: str, reason: str = REASON_DECLINED) -> Optional[PointsLedgerEntry]:
    """Offset whatever the user still holds for the issue; no entry when nothing is held."""
    held = issue_points_for_user(user_id, issue_id)
    if held <= 0:
        return None
    return record_points(user_id, -held, reason, issue_id=issue_id)


def reconcile_total(user: User) -> int:
    """Reset the cached total from the ledger. Returns the corrected value; does not commit."""
    user.points_total = ledger_total(user.id)
    return user.points_total


def user_history(user_id: str, limit: int = 50) -> List[PointsLedgerEntry]:
    return (
        PointsLedgerEntry.query.filter_by(user_id=user_id)
        .order_by(PointsLedgerEntry.created_at.desc(), PointsLedgerEntry.id.desc())
        .limit(limit)
        .all()
    )


def leaderboard(limit: int = 20) -> List[Dict]:
    total = func.coalesce(func.sum(PointsLedgerEntry.points), 0).label("total")
    rows = (
        db.session.query(User.id, User.full_name, total)
        .outerjoin(PointsLedgerEntry, PointsLedgerEntry.user_id == User.id)
        .group_by(User.id, User.full_name)
        .having(total > 0)
        .order_by(total.desc(), User.full_name.asc())
        .limit(limit)
        .all()
    )
    return [
        {"rank": rank, "user_id": row.id, "full_name": row.full_name, "points": int(row.total)}
        for rank, row in enumerate(rows, start=1)
    ]
