"""Fire-and-forget notification sink backed by the notifications table."""
from __future__ import annotations

from typing import List, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import NOTIFICATION_TYPES, Notification, Role, User


def notify(user_id: str, message: str, type: str, issue_id: Optional[str] = None) -> Optional[Notification]:
    """Queue a notification inside a savepoint.

    A failed insert is logged and discarded; it never rolls back the caller's transition.
    """
    if type not in NOTIFICATION_TYPES:
        current_app.logger.warning("Unknown notification type dropped", extra={"type": type})
        return None
    try:
        with db.session.begin_nested():
            notification = Notification(user_id=user_id, message=message[:500], type=type, issue_id=issue_id)
            db.session.add(notification)
        return notification
    except SQLAlchemyError:
        current_app.logger.warning(
            "Notification delivery failed",
            extra={"user_id": user_id, "type": type, "issue_id": issue_id},
            exc_info=True,
        )
        return None


def admin_user_ids() -> List[str]:
    rows = (
        db.session.query(User.id)
        .join(Role)
        .filter(db.func.lower(Role.name) == "admin", User.is_active.is_(True))
        .all()
    )
    return [row.id for row in rows]


def notify_admins(message: str, type: str, issue_id: Optional[str] = None) -> int:
    sent = 0
    for user_id in admin_user_ids():
        if notify(user_id, message, type, issue_id=issue_id):
            sent += 1
    return sent


def notifications_for_user(user, unread_only: bool = False, limit: int = 50) -> List[Notification]:
    query = Notification.query.filter_by(user_id=user.id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    return query.order_by(Notification.created_at.desc()).limit(limit).all()


def mark_read(notification_id: str, user) -> bool:
    notification = Notification.query.filter_by(id=notification_id, user_id=user.id).first()
    if not notification:
        return False
    notification.is_read = True
    db.session.commit()
    return True


def mark_all_read(user) -> int:
    updated = Notification.query.filter_by(user_id=user.id, is_read=False).update(
        {Notification.is_read: True}, synchronize_session=False
    )
    db.session.commit()
    return updated
