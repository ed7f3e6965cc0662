"""Issue intake: proximity pre-filter, duplicate judgement, then merge or create."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

import bleach
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from extensions import db
from models import CLOSED_STATUSES, ISSUE_CATEGORIES, Department, Issue, IssueReport, StatusLog, User, utcnow
from utils.duplicate_oracle import DuplicateOracle, get_duplicate_oracle, normalize_judgement
from utils.errors import ConflictError, DependencyError, PersistenceError, ValidationError
from utils.geo_matcher import find_nearby_candidates
from utils.notifications import notify
from utils.points_ledger import REASON_DUPLICATE_REPORT, REASON_NEW_ISSUE, record_points
from utils.priority import refresh_priority

CATEGORY_DEPARTMENTS: Dict[str, str] = {
    "roads": "Roads & Infrastructure",
    "water": "Water & Sanitation",
    "sanitation": "Water & Sanitation",
    "electricity": "Electricity & Power",
}
DEFAULT_DEPARTMENT = "Roads & Infrastructure"
DEFAULT_SEVERITY = 3


def clean_text(value: Any) -> str:
    if value is None:
        return ""
    return bleach.clean(str(value), tags=[], attributes={}, strip=True).strip()


def _coerce_coordinate(value: Any, field: str, bound: float, errors: Dict[str, str]) -> Optional[float]:
    if value is None or value == "":
        errors[field] = "This field is required."
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        errors[field] = "Must be a number."
        return None
    if not -bound <= number <= bound:
        errors[field] = f"Must be between -{bound:g} and {bound:g}."
        return None
    return number


def _coerce_severity(value: Any, errors: Dict[str, str]) -> Optional[int]:
    if value is None or value == "":
        return DEFAULT_SEVERITY
    try:
        severity = int(value)
    except (TypeError, ValueError):
        errors["severity"] = "Must be a whole number between 1 and 5."
        return None
    if not 1 <= severity <= 5:
        errors["severity"] = "Must be a whole number between 1 and 5."
        return None
    return severity


def _validate_text_fields(title, description, category, severity, errors: Dict[str, str]) -> Dict[str, Any]:
    clean_title = clean_text(title)
    clean_description = clean_text(description)
    clean_category = clean_text(category).lower()
    if not clean_title:
        errors["title"] = "This field is required."
    elif len(clean_title) > 255:
        errors["title"] = "Must be 255 characters or fewer."
    if not clean_description:
        errors["description"] = "This field is required."
    if not clean_category:
        errors["category"] = "This field is required."
    elif clean_category not in ISSUE_CATEGORIES:
        errors["category"] = "Unknown category."
    return {
        "title": clean_title,
        "description": clean_description,
        "category": clean_category,
        "severity": _coerce_severity(severity, errors),
    }


def validate_issue_fields(title: Any, description: Any, category: Any, severity: Any) -> Dict[str, Any]:
    """Shared by submission and owner edits. Raises ValidationError listing every bad field."""
    errors: Dict[str, str] = {}
    values = _validate_text_fields(title, description, category, severity, errors)
    if errors:
        raise ValidationError(errors)
    return values


def validate_submission(title, description, category, severity, lat, lng, image_url=None) -> Dict[str, Any]:
    errors: Dict[str, str] = {}
    values = _validate_text_fields(title, description, category, severity, errors)
    values["lat"] = _coerce_coordinate(lat, "lat", 90.0, errors)
    values["lng"] = _coerce_coordinate(lng, "lng", 180.0, errors)
    values["image_url"] = clean_text(image_url) or None
    if errors:
        raise ValidationError(errors)
    return values


def department_for_category(category: str) -> Optional[Department]:
    name = CATEGORY_DEPARTMENTS.get(category, DEFAULT_DEPARTMENT)
    return Department.query.filter_by(name=name).first()


def _candidate_payloads(candidates: List[Issue]) -> List[Dict[str, str]]:
    return [{"id": c.id, "title": c.title, "description": c.description} for c in candidates]


def _consult_oracle(oracle: DuplicateOracle, values: Dict[str, Any], candidates: List[Issue]) -> Optional[str]:
    """Return the matched issue id, or None. Oracle failures never block a submission."""
    payloads = _candidate_payloads(candidates)
    new_issue_text = f"\"{values['title']}\" - \"{values['description']}\""
    try:
        judgement = oracle.judge(new_issue_text, payloads)
    except DependencyError as exc:
        current_app.logger.warning(
            "Duplicate oracle unavailable; creating a new issue",
            extra={"error": str(exc), "candidates": len(payloads)},
        )
        return None
    except Exception:
        current_app.logger.warning(
            "Duplicate oracle raised unexpectedly; creating a new issue",
            extra={"candidates": len(payloads)},
            exc_info=True,
        )
        return None
    if not isinstance(judgement, dict):
        current_app.logger.warning("Duplicate oracle returned an unexpected payload; creating a new issue")
        return None
    return normalize_judgement(judgement, payloads)["matched_id"]


def _merge_into(issue_id: str, reporter: User, values: Dict[str, Any], now: datetime) -> Optional[Issue]:
    """Fold the submission into an existing issue; None if the target closed meanwhile."""
    issue = Issue.query.filter(Issue.id == issue_id).with_for_update().first()
    if issue is None or issue.status in CLOSED_STATUSES:
        return None

    db.session.add(
        IssueReport(
            issue_id=issue.id,
            reporter_id=reporter.id,
            description=values["description"],
            image_url=values["image_url"],
            created_at=now,
        )
    )
    issue.report_count = (issue.report_count or 1) + 1
    refresh_priority(issue, now)
    record_points(reporter.id, current_app.config.get("POINTS_DUPLICATE_REPORT", 10), REASON_DUPLICATE_REPORT, issue.id)
    if issue.reporter_id != reporter.id:
        notify(
            issue.reporter_id,
            f"Another citizen reported the same problem as \"{issue.title}\"",
            "duplicate_merged",
            issue_id=issue.id,
        )
    return issue


def _create_issue(reporter: User, values: Dict[str, Any], now: datetime) -> Issue:
    department = department_for_category(values["category"])
    issue = Issue(
        title=values["title"],
        description=values["description"],
        category=values["category"],
        severity=values["severity"],
        lat=values["lat"],
        lng=values["lng"],
        image_url=values["image_url"],
        status="open",
        report_count=1,
        upvote_count=0,
        reporter_id=reporter.id,
        department_id=department.id if department else None,
        created_at=now,
        updated_at=now,
    )
    refresh_priority(issue, now)
    db.session.add(issue)
    db.session.flush()

    db.session.add(StatusLog(issue_id=issue.id, old_status=None, new_status="open", changed_by=reporter.id, created_at=now))
    record_points(reporter.id, current_app.config.get("POINTS_NEW_ISSUE", 10), REASON_NEW_ISSUE, issue.id)
    return issue


def submit_issue(
    reporter: User,
    title,
    description,
    category,
    severity,
    lat,
    lng,
    image_url=None,
    oracle: Optional[DuplicateOracle] = None,
    now: Optional[datetime] = None,
) -> Dict[str, str]:
    """Returns {"created": issue_id} or {"merged": issue_id}.

    Each branch commits once; any store failure rolls the whole branch back.
    """
    values = validate_submission(title, description, category, severity, lat, lng, image_url)
    now = now or utcnow()

    candidates = find_nearby_candidates(values["lat"], values["lng"], values["category"])
    matched_id = None
    if candidates:
        matched_id = _consult_oracle(oracle or get_duplicate_oracle(), values, candidates)

    try:
        merged = _merge_into(matched_id, reporter, values, now) if matched_id else None
        if merged is not None:
            db.session.commit()
            current_app.logger.info(
                "Duplicate report merged",
                extra={"issue_id": merged.id, "report_count": merged.report_count, "reporter_id": reporter.id},
            )
            return {"merged": merged.id}

        issue = _create_issue(reporter, values, now)
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        current_app.logger.warning("Concurrent update while merging report", extra={"issue_id": matched_id})
        raise ConflictError("stale_issue", "The issue changed while your report was being filed. Please retry.") from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Database error while submitting issue")
        raise PersistenceError("Unable to save issue") from exc

    current_app.logger.info(
        "New issue created",
        extra={
            "issue_id": issue.id,
            "category": issue.category,
            "department_id": issue.department_id,
            "priority_score": issue.priority_score,
            "candidates": len(candidates),
        },
    )
    return {"created": issue.id}
