"""Issue lifecycle: authority and citizen transitions gated by role, ownership and status.

Canonical flow::

    open -> accepted -> work_started -> completed
    open -> declined

``completed`` and ``declined`` are terminal. An extension is a marker on the
work details, not a status. ``escalated`` is applied only by the SLA sweeper;
it records the status it interrupted and authorities keep acting on that
status, which clears the escalation.
"""
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from extensions import db
from models import DECLINE_CATEGORIES, AuditLog, Issue, IssueWorkDetails, Upvote, User, utcnow
from utils.errors import ConflictError, PersistenceError, ValidationError
from utils.intake import clean_text, department_for_category, validate_issue_fields
from utils.notifications import notify
from utils.points_ledger import REASON_CANCELLED, reverse_issue_points
from utils.priority import refresh_priority

AUTHORITY_ROLES = ("authority", "admin")


# ── guards ────────────────────────────────────────────────────────────────────
def _require_role(actor: User, roles: Iterable[str]) -> None:
    if actor is None or actor.role_name not in roles:
        raise ConflictError("role_forbidden", "Your role cannot perform this action.")


def _require_department(issue: Issue, authority: User) -> None:
    if authority.is_admin or issue.department_id is None:
        return
    if authority.department_id != issue.department_id:
        raise ConflictError("outside_department", "This issue belongs to another department.")


def _require_status(issue: Issue, allowed: Iterable[str]) -> None:
    if issue.effective_status not in allowed:
        raise ConflictError(
            "invalid_status",
            f"Action not allowed while the issue is {issue.status}.",
            current_status=issue.status,
        )


def _require_owner(issue: Issue, citizen: User) -> None:
    if citizen is None or issue.reporter_id != citizen.id:
        raise ConflictError("not_owner", "Only the reporter can change this issue.")


def _authorize_authority(issue: Issue, authority: User, allowed_statuses: Iterable[str]) -> None:
    _require_role(authority, AUTHORITY_ROLES)
    _require_department(issue, authority)
    _require_status(issue, allowed_statuses)


# ── parsing ───────────────────────────────────────────────────────────────────
def _parse_amount(value: Any, field: str, errors: Dict[str, str], required: bool = True) -> Optional[Decimal]:
    if value is None or value == "":
        if required:
            errors[field] = "This field is required."
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        errors[field] = "Must be a number."
        return None
    if not amount.is_finite() or amount < 0:
        errors[field] = "Must be zero or a positive number."
        return None
    return amount


def _parse_int(value: Any, field: str, errors: Dict[str, str], low: int, high: Optional[int] = None) -> Optional[int]:
    if value is None or value == "":
        errors[field] = "This field is required."
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        errors[field] = "Must be a whole number."
        return None
    if number < low or (high is not None and number > high):
        errors[field] = f"Must be between {low} and {high}." if high is not None else f"Must be at least {low}."
        return None
    return number


def _parse_date(value: Any, field: str, errors: Dict[str, str]) -> Optional[date]:
    if value is None or value == "":
        errors[field] = "This field is required."
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        errors[field] = "Use the YYYY-MM-DD format."
        return None


# ── persistence ───────────────────────────────────────────────────────────────
def _commit(action: str, issue_id: str) -> None:
    try:
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        current_app.logger.warning("Stale issue write rejected", extra={"action": action, "issue_id": issue_id})
        raise ConflictError("stale_issue", "The issue was changed by someone else. Reload and retry.") from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Database error during issue transition", extra={"action": action, "issue_id": issue_id})
        raise PersistenceError(f"Unable to {action} issue") from exc
    current_app.logger.info("Issue transition applied", extra={"action": action, "issue_id": issue_id})


def _set_status(issue: Issue, new_status: str) -> None:
    issue.status = new_status
    issue.escalated_from = None


# ── authority transitions ─────────────────────────────────────────────────────
def accept_issue(issue: Issue, authority: User, budget, estimated_days, start_date, now: Optional[datetime] = None) -> Issue:
    _authorize_authority(issue, authority, ("open",))
    if issue.work_details is not None:
        raise ConflictError("work_details_exist", "Work details already exist for this issue.", current_status=issue.status)

    errors: Dict[str, str] = {}
    budget_value = _parse_amount(budget, "budget", errors)
    days_value = _parse_int(estimated_days, "estimated_days", errors, low=1)
    start_value = _parse_date(start_date, "start_date", errors)
    if errors:
        raise ValidationError(errors)

    issue.work_details = IssueWorkDetails(
        budget_allocated=budget_value,
        estimated_days=days_value,
        work_start_date=start_value,
        accepted_at=now or utcnow(),
        accepted_by=authority.id,
        progress_percentage=0,
        amount_used=Decimal("0"),
    )
    issue.assigned_authority_id = authority.id
    _set_status(issue, "accepted")
    notify(issue.reporter_id, f"Your issue \"{issue.title}\" was accepted", "issue_accepted", issue_id=issue.id)
    _commit("accept", issue.id)
    return issue


def decline_issue(issue: Issue, authority: User, category, reason) -> Issue:
    _authorize_authority(issue, authority, ("open",))
    if issue.work_details is not None:
        raise ConflictError("work_details_exist", "Work details already exist for this issue.", current_status=issue.status)

    errors: Dict[str, str] = {}
    clean_category = clean_text(category).lower()
    clean_reason = clean_text(reason)
    if not clean_category:
        errors["category"] = "This field is required."
    elif clean_category not in DECLINE_CATEGORIES:
        errors["category"] = "Unknown decline category."
    if not clean_reason:
        errors["reason"] = "This field is required."
    if errors:
        raise ValidationError(errors)

    issue.work_details = IssueWorkDetails(
        decline_category=clean_category,
        decline_reason=clean_reason,
        accepted_by=authority.id,
    )
    issue.assigned_authority_id = authority.id
    _set_status(issue, "declined")
    reversal = reverse_issue_points(issue.reporter_id, issue.id)
    notify(
        issue.reporter_id,
        f"Your issue \"{issue.title}\" was declined: {clean_reason}",
        "issue_declined",
        issue_id=issue.id,
    )
    _commit("decline", issue.id)
    if reversal is not None:
        current_app.logger.info(
            "Reporter points reversed on decline",
            extra={"issue_id": issue.id, "user_id": issue.reporter_id, "points": reversal.points},
        )
    return issue


def start_work(issue: Issue, authority: User) -> Issue:
    _authorize_authority(issue, authority, ("accepted",))
    _set_status(issue, "work_started")
    _commit("start", issue.id)
    return issue


def update_progress(
    issue: Issue,
    authority: User,
    percentage=None,
    amount_used=None,
    extension_reason=None,
    extended_date=None,
    now: Optional[datetime] = None,
) -> Issue:
    """Record progress, spend or a schedule extension.

    Progress never decreases. An extension keeps the current percentage. 100% completes the issue.
    """
    _authorize_authority(issue, authority, ("accepted", "work_started"))
    details = issue.work_details
    if details is None:
        raise ConflictError("missing_work_details", "Accept the issue before reporting progress.", current_status=issue.status)

    errors: Dict[str, str] = {}
    wants_extension = bool(clean_text(extension_reason)) or extended_date not in (None, "")
    current = details.progress_percentage or 0
    new_progress = current
    new_reason = None
    new_date = None
    if wants_extension:
        new_reason = clean_text(extension_reason)
        if not new_reason:
            errors["extension_reason"] = "This field is required."
        new_date = _parse_date(extended_date, "extended_date", errors)
    else:
        new_progress = _parse_int(percentage, "percentage", errors, low=0, high=100)
        if new_progress is not None and new_progress < current:
            errors["percentage"] = f"Progress cannot go below the current {current}%."
    spent = _parse_amount(amount_used, "amount_used", errors, required=False)
    if errors:
        raise ValidationError(errors)

    details.progress_percentage = new_progress
    if spent is not None:
        details.amount_used = spent
    if wants_extension:
        details.extension_reason = new_reason
        details.extended_date = new_date

    if new_progress == 100:
        _set_status(issue, "completed")
        details.completed_at = now or utcnow()
        notify(issue.reporter_id, f"Work on \"{issue.title}\" is complete", "issue_completed", issue_id=issue.id)
    elif new_progress > 0 and issue.effective_status == "accepted":
        _set_status(issue, "work_started")
    elif issue.status == "escalated":
        _set_status(issue, issue.effective_status)

    _commit("extend" if wants_extension else "update progress", issue.id)
    return issue


# ── citizen transitions ───────────────────────────────────────────────────────
def _lock(issue: Issue) -> None:
    db.session.refresh(issue, with_for_update=True)


def upvote_issue(issue: Issue, citizen: User, now: Optional[datetime] = None) -> Issue:
    if citizen is None:
        raise ConflictError("role_forbidden", "Sign in to upvote.")
    if issue.reporter_id == citizen.id:
        raise ConflictError("self_upvote", "You cannot upvote your own issue.")
    if Upvote.query.filter_by(user_id=citizen.id, issue_id=issue.id).first():
        raise ConflictError("already_upvoted", "You already upvoted this issue.")

    try:
        _lock(issue)
        db.session.add(Upvote(user_id=citizen.id, issue_id=issue.id))
        issue.upvote_count = (issue.upvote_count or 0) + 1
        refresh_priority(issue, now)
        db.session.flush()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError("already_upvoted", "You already upvoted this issue.") from exc
    _commit("upvote", issue.id)
    return issue


def remove_upvote(issue: Issue, citizen: User, now: Optional[datetime] = None) -> Issue:
    if citizen is None:
        raise ConflictError("role_forbidden", "Sign in to manage upvotes.")
    _lock(issue)
    vote = Upvote.query.filter_by(user_id=citizen.id, issue_id=issue.id).first()
    if vote is None:
        raise ConflictError("not_upvoted", "You have not upvoted this issue.")
    db.session.delete(vote)
    issue.upvote_count = max(0, (issue.upvote_count or 0) - 1)
    refresh_priority(issue, now)
    _commit("remove upvote", issue.id)
    return issue


def toggle_upvote(issue: Issue, citizen: User, now: Optional[datetime] = None) -> bool:
    """Returns True when the caller now has an upvote on the issue."""
    if citizen is not None and Upvote.query.filter_by(user_id=citizen.id, issue_id=issue.id).first():
        remove_upvote(issue, citizen, now)
        return False
    upvote_issue(issue, citizen, now)
    return True


def edit_issue(issue: Issue, citizen: User, title, description, category, severity, now: Optional[datetime] = None) -> Issue:
    """Owner edits while open, or accepted/started with no progress yet. No status change."""
    _require_owner(issue, citizen)
    status = issue.effective_status
    progress = issue.work_details.progress_percentage if issue.work_details else 0
    if status not in ("open", "accepted", "work_started") or (status != "open" and progress):
        raise ConflictError(
            "invalid_status",
            "This issue can no longer be edited.",
            current_status=issue.status,
        )
    values = validate_issue_fields(title, description, category, severity)

    if values["category"] != issue.category and status == "open":
        department = department_for_category(values["category"])
        issue.department_id = department.id if department else None
    issue.title = values["title"]
    issue.description = values["description"]
    issue.category = values["category"]
    issue.severity = values["severity"]
    refresh_priority(issue, now)
    _commit("edit", issue.id)
    return issue


def cancel_issue(issue: Issue, citizen: User, reason: Optional[str] = None) -> str:
    """Owner deletes an open issue. Points earned for it are offset; ledger rows and notifications keep no reference to it."""
    _require_owner(issue, citizen)
    if issue.status != "open":
        raise ConflictError("invalid_status", "Only open issues can be cancelled.", current_status=issue.status)

    issue_id = issue.id
    note = clean_text(reason)
    db.session.add(
        AuditLog(
            user_id=citizen.id,
            action_type="ISSUE_CANCELLED",
            context_entity=f"issue:{issue_id}" + (f" reason:{note}"[:200] if note else ""),
        )
    )
    reverse_issue_points(citizen.id, issue_id, reason=REASON_CANCELLED)
    db.session.flush()
    db.session.delete(issue)
    _commit("cancel", issue_id)
    return issue_id
