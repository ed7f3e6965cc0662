"""Core data models for identity, issues, work tracking, audit trails and the points ledger."""
import uuid
from datetime import datetime, timezone

from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from extensions import db


def generate_uuid() -> str:
	return str(uuid.uuid4())


def utcnow() -> datetime:
	"""Naive UTC timestamp, matching how every DateTime column is stored."""
	return datetime.now(timezone.utc).replace(tzinfo=None)


ROLE_NAMES: tuple[str, ...] = (
	"Citizen",
	"Authority",
	"Admin",
)

ISSUE_CATEGORIES: tuple[str, ...] = (
	"roads",
	"water",
	"electricity",
	"sanitation",
	"public_safety",
	"parks",
	"other",
)

ISSUE_STATUSES: tuple[str, ...] = (
	"open",
	"accepted",
	"declined",
	"work_started",
	"completed",
	"escalated",
)

# Statuses that no longer take part in duplicate matching or priority sweeps.
CLOSED_STATUSES: tuple[str, ...] = (
	"completed",
	"declined",
)

# "open" and "in_progress" of the simple vocabulary, in stored terms.
SLA_TRACKED_STATUSES: tuple[str, ...] = (
	"open",
	"accepted",
	"work_started",
)

DISPLAY_STATUSES: dict[str, str] = {
	"open": "open",
	"accepted": "in_progress",
	"work_started": "in_progress",
	"completed": "resolved",
	"declined": "declined",
	"escalated": "escalated",
}

DECLINE_CATEGORIES: tuple[str, ...] = (
	"duplicate",
	"invalid",
	"outside_jurisdiction",
	"insufficient_evidence",
	"other",
)

NOTIFICATION_TYPES: tuple[str, ...] = (
	"issue_escalated",
	"issue_accepted",
	"issue_declined",
	"issue_completed",
	"duplicate_merged",
)


def _in_clause(values) -> str:
	return ",".join(f"'{v}'" for v in values)


class Role(db.Model):
	__tablename__ = "roles"

	id = db.Column(db.Integer, primary_key=True)
	name = db.Column(db.String(50), unique=True, nullable=False, index=True)
	description = db.Column(db.String(255), nullable=True)

	users = db.relationship("User", back_populates="role", lazy="dynamic")

	@staticmethod
	def get_or_create(name: str, description: str = ""):
		role = Role.query.filter_by(name=name).first()
		if role:
			return role
		role = Role(name=name, description=description)
		db.session.add(role)
		db.session.commit()
		return role


class Department(db.Model):
	__tablename__ = "departments"

	id = db.Column(db.Integer, primary_key=True)
	name = db.Column(db.String(150), unique=True, nullable=False, index=True)
	description = db.Column(db.String(500), nullable=True)
	sla_hours = db.Column(db.Integer, nullable=False, default=72)
	created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

	__table_args__ = (
		db.CheckConstraint("sla_hours > 0", name="ck_department_sla_positive"),
	)

	issues = db.relationship("Issue", back_populates="department", lazy="dynamic")
	authorities = db.relationship("User", back_populates="department", lazy="dynamic")

	def to_payload(self) -> dict:
		return {
			"id": self.id,
			"name": self.name,
			"description": self.description,
			"sla_hours": self.sla_hours,
		}


class User(UserMixin, db.Model):
	__tablename__ = "users"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	full_name = db.Column(db.String(150), nullable=False)
	email = db.Column(db.String(255), unique=True, nullable=False, index=True)
	password_hash = db.Column(db.String(255), nullable=False)
	role_id = db.Column(db.Integer, db.ForeignKey("roles.id"), nullable=False)
	department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=True, index=True)
	# Denormalized ledger sum; only utils.points_ledger writes it.
	points_total = db.Column(db.Integer, nullable=False, default=0)
	is_active = db.Column(db.Boolean, default=True, nullable=False)
	created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
	last_login_at = db.Column(db.DateTime, nullable=True)

	role = db.relationship("Role", back_populates="users")
	department = db.relationship("Department", back_populates="authorities")
	audit_logs = db.relationship("AuditLog", back_populates="user", lazy="dynamic")
	issues = db.relationship("Issue", back_populates="reporter", lazy="dynamic", foreign_keys="Issue.reporter_id")
	ledger_entries = db.relationship("PointsLedgerEntry", back_populates="user", lazy="dynamic")
	notifications = db.relationship("Notification", back_populates="user", lazy="dynamic")

	def set_password(self, password: str) -> None:
		self.password_hash = generate_password_hash(password, method="pbkdf2:sha256", salt_length=16)

	def check_password(self, password: str) -> bool:
		return check_password_hash(self.password_hash, password)

	@property
	def role_name(self) -> str:
		return (self.role.name if self.role else "").lower()

	@property
	def is_admin(self) -> bool:
		return self.role_name == "admin"

	@property
	def is_authority(self) -> bool:
		return self.role_name == "authority"

	@property
	def active(self) -> bool:  # Flask-Login compatibility alias
		return self.is_active

	def to_payload(self) -> dict:
		return {
			"id": self.id,
			"full_name": self.full_name,
			"email": self.email,
			"role": self.role_name,
			"department_id": self.department_id,
			"points_total": self.points_total,
		}


class AuditLog(db.Model):
	__tablename__ = "audit_logs"

	id = db.Column(db.Integer, primary_key=True)
	user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
	action_type = db.Column(db.String(50), nullable=False)
	ip_address = db.Column(db.String(64), nullable=True)
	user_agent = db.Column(db.String(255), nullable=True)
	context_entity = db.Column(db.String(255), nullable=True)
	timestamp = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)

	user = db.relationship("User", back_populates="audit_logs")


class Issue(db.Model):
	__tablename__ = "issues"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	title = db.Column(db.String(255), nullable=False)
	description = db.Column(db.Text, nullable=False)
	category = db.Column(db.String(30), nullable=False, index=True)
	severity = db.Column(db.Integer, nullable=False, default=3)
	lat = db.Column(db.Float, nullable=False)
	lng = db.Column(db.Float, nullable=False)
	status = db.Column(db.String(20), nullable=False, default="open", index=True)
	escalated_from = db.Column(db.String(20), nullable=True)
	report_count = db.Column(db.Integer, nullable=False, default=1)
	upvote_count = db.Column(db.Integer, nullable=False, default=0)
	priority_score = db.Column(db.Integer, nullable=False, default=0, index=True)
	department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=True, index=True)
	reporter_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
	assigned_authority_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True, index=True)
	image_url = db.Column(db.String(1024), nullable=True)
	version = db.Column(db.Integer, nullable=False)
	created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
	updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

	__table_args__ = (
		db.CheckConstraint(f"category IN ({_in_clause(ISSUE_CATEGORIES)})", name="ck_issue_category_valid"),
		db.CheckConstraint(f"status IN ({_in_clause(ISSUE_STATUSES)})", name="ck_issue_status_valid"),
		db.CheckConstraint("severity BETWEEN 1 AND 5", name="ck_issue_severity_range"),
		db.CheckConstraint("report_count >= 1", name="ck_issue_report_count"),
		db.CheckConstraint("upvote_count >= 0", name="ck_issue_upvote_count"),
		db.Index("ix_issue_proximity", "category", "lat", "lng"),
		db.Index("ix_issue_sla", "department_id", "status", "created_at"),
	)

	__mapper_args__ = {"version_id_col": version}

	reporter = db.relationship("User", back_populates="issues", foreign_keys=[reporter_id])
	assigned_authority = db.relationship("User", foreign_keys=[assigned_authority_id])
	department = db.relationship("Department", back_populates="issues")
	reports = db.relationship(
		"IssueReport",
		back_populates="issue",
		order_by="IssueReport.created_at",
		cascade="all, delete-orphan",
	)
	work_details = db.relationship(
		"IssueWorkDetails",
		back_populates="issue",
		uselist=False,
		cascade="all, delete-orphan",
	)
	status_logs = db.relationship(
		"StatusLog",
		back_populates="issue",
		order_by="StatusLog.created_at",
		cascade="all, delete-orphan",
	)
	upvotes = db.relationship("Upvote", back_populates="issue", cascade="all, delete-orphan")
	# Ledger rows and notifications outlive the issue; deleting it nulls their reference.
	ledger_entries = db.relationship("PointsLedgerEntry", back_populates="issue")
	notifications = db.relationship("Notification", back_populates="issue")

	@property
	def effective_status(self) -> str:
		"""The lifecycle status authorities act on; escalation is layered on top of it."""
		if self.status == "escalated" and self.escalated_from:
			return self.escalated_from
		return self.status

	@property
	def display_status(self) -> str:
		return DISPLAY_STATUSES.get(self.status, self.status)

	@property
	def has_extension(self) -> bool:
		return bool(self.work_details and self.work_details.extension_reason)

	def to_payload(self, detailed: bool = False) -> dict:
		from utils.priority import priority_label  # Local import to avoid circular dependency

		payload = {
			"id": self.id,
			"title": self.title,
			"description": self.description,
			"category": self.category,
			"severity": self.severity,
			"lat": self.lat,
			"lng": self.lng,
			"status": self.status,
			"display_status": self.display_status,
			"report_count": self.report_count,
			"upvote_count": self.upvote_count,
			"priority_score": self.priority_score,
			"priority_label": priority_label(self.priority_score),
			"department": self.department.name if self.department else None,
			"reporter_id": self.reporter_id,
			"assigned_authority_id": self.assigned_authority_id,
			"image_url": self.image_url,
			"has_extension": self.has_extension,
			"created_at": self.created_at.isoformat() if self.created_at else None,
			"updated_at": self.updated_at.isoformat() if self.updated_at else None,
		}
		if detailed:
			payload["work_details"] = self.work_details.to_payload() if self.work_details else None
			payload["status_logs"] = [log.to_payload() for log in self.status_logs]
			payload["reports"] = [report.to_payload() for report in self.reports]
		return payload


class IssueReport(db.Model):
	__tablename__ = "issue_reports"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	issue_id = db.Column(db.String(36), db.ForeignKey("issues.id"), nullable=False, index=True)
	reporter_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
	description = db.Column(db.Text, nullable=False)
	image_url = db.Column(db.String(1024), nullable=True)
	created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)

	issue = db.relationship("Issue", back_populates="reports")
	reporter = db.relationship("User")

	def to_payload(self) -> dict:
		return {
			"id": self.id,
			"reporter_id": self.reporter_id,
			"description": self.description,
			"image_url": self.image_url,
			"created_at": self.created_at.isoformat() if self.created_at else None,
		}


class IssueWorkDetails(db.Model):
	__tablename__ = "issue_work_details"

	id = db.Column(db.Integer, primary_key=True)
	issue_id = db.Column(db.String(36), db.ForeignKey("issues.id"), nullable=False, unique=True)
	budget_allocated = db.Column(db.Numeric(14, 2), nullable=True)
	amount_used = db.Column(db.Numeric(14, 2), nullable=True)
	estimated_days = db.Column(db.Integer, nullable=True)
	work_start_date = db.Column(db.Date, nullable=True)
	accepted_at = db.Column(db.DateTime, nullable=True)
	accepted_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
	progress_percentage = db.Column(db.Integer, nullable=False, default=0)
	completed_at = db.Column(db.DateTime, nullable=True)
	extension_reason = db.Column(db.Text, nullable=True)
	extended_date = db.Column(db.Date, nullable=True)
	decline_category = db.Column(db.String(40), nullable=True)
	decline_reason = db.Column(db.Text, nullable=True)
	created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
	updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

	__table_args__ = (
		db.CheckConstraint("progress_percentage BETWEEN 0 AND 100", name="ck_work_progress_range"),
		db.CheckConstraint(
			f"decline_category IS NULL OR decline_category IN ({_in_clause(DECLINE_CATEGORIES)})",
			name="ck_work_decline_category",
		),
	)

	issue = db.relationship("Issue", back_populates="work_details")
	acceptor = db.relationship("User")

	def to_payload(self) -> dict:
		return {
			"budget_allocated": float(self.budget_allocated) if self.budget_allocated is not None else None,
			"amount_used": float(self.amount_used) if self.amount_used is not None else None,
			"estimated_days": self.estimated_days,
			"work_start_date": self.work_start_date.isoformat() if self.work_start_date else None,
			"accepted_at": self.accepted_at.isoformat() if self.accepted_at else None,
			"accepted_by": self.accepted_by,
			"progress_percentage": self.progress_percentage,
			"completed_at": self.completed_at.isoformat() if self.completed_at else None,
			"extension_reason": self.extension_reason,
			"extended_date": self.extended_date.isoformat() if self.extended_date else None,
			"decline_category": self.decline_category,
			"decline_reason": self.decline_reason,
		}


class StatusLog(db.Model):
	__tablename__ = "status_logs"

	id = db.Column(db.Integer, primary_key=True)
	issue_id = db.Column(db.String(36), db.ForeignKey("issues.id"), nullable=False, index=True)
	old_status = db.Column(db.String(20), nullable=True)
	new_status = db.Column(db.String(20), nullable=False, index=True)
	note = db.Column(db.String(500), nullable=True)
	changed_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
	created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)

	__table_args__ = (
		db.CheckConstraint(f"new_status IN ({_in_clause(ISSUE_STATUSES)})", name="ck_status_log_valid"),
	)

	issue = db.relationship("Issue", back_populates="status_logs")
	actor = db.relationship("User")

	def to_payload(self) -> dict:
		return {
			"old_status": self.old_status,
			"new_status": self.new_status,
			"note": self.note,
			"changed_by": self.changed_by,
			"created_at": self.created_at.isoformat() if self.created_at else None,
		}


class PointsLedgerEntry(db.Model):
	__tablename__ = "points_ledger"

	id = db.Column(db.Integer, primary_key=True)
	user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
	points = db.Column(db.Integer, nullable=False)
	reason = db.Column(db.String(255), nullable=False)
	issue_id = db.Column(db.String(36), db.ForeignKey("issues.id", ondelete="SET NULL"), nullable=True, index=True)
	created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)

	__table_args__ = (
		db.Index("ix_points_user_issue", "user_id", "issue_id"),
	)

	user = db.relationship("User", back_populates="ledger_entries")
	issue = db.relationship("Issue", back_populates="ledger_entries")

	def to_payload(self) -> dict:
		return {
			"points": self.points,
			"reason": self.reason,
			"issue_id": self.issue_id,
			"created_at": self.created_at.isoformat() if self.created_at else None,
		}


class Upvote(db.Model):
	__tablename__ = "upvotes"

	id = db.Column(db.Integer, primary_key=True)
	user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
	issue_id = db.Column(db.String(36), db.ForeignKey("issues.id"), nullable=False, index=True)
	created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

	__table_args__ = (
		db.UniqueConstraint("user_id", "issue_id", name="uq_upvote_user_issue"),
	)

	issue = db.relationship("Issue", back_populates="upvotes")
	user = db.relationship("User")


class Notification(db.Model):
	__tablename__ = "notifications"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
	message = db.Column(db.String(500), nullable=False)
	type = db.Column(db.String(40), nullable=False, index=True)
	issue_id = db.Column(db.String(36), db.ForeignKey("issues.id", ondelete="SET NULL"), nullable=True, index=True)
	is_read = db.Column(db.Boolean, nullable=False, default=False, index=True)
	created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)

	__table_args__ = (
		db.CheckConstraint(f"type IN ({_in_clause(NOTIFICATION_TYPES)})", name="ck_notification_type"),
		db.Index("ix_notification_inbox", "user_id", "is_read", "created_at"),
	)

	user = db.relationship("User", back_populates="notifications")
	issue = db.relationship("Issue", back_populates="notifications")

	def to_payload(self) -> dict:
		return {
			"id": self.id,
			"message": self.message,
			"type": self.type,
			"issue_id": self.issue_id,
			"is_read": self.is_read,
			"created_at": self.created_at.isoformat() if self.created_at else None,
		}
