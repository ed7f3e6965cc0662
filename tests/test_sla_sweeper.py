"""SLA escalation sweep."""
from datetime import timedelta

from extensions import db
from models import Department, Issue, Notification, StatusLog, User
from utils.lifecycle import accept_issue, decline_issue, update_progress
from utils.notifications import admin_user_ids
from utils.sla_sweeper import ESCALATION_NOTE, run_sla_sweep

from conftest import T0


def _water_issue(submit, reporter, hours_ago):
    return db.session.get(Issue, submit(reporter, category="water", now=T0 - timedelta(hours=hours_ago))["created"])


class TestSweep:
    def test_overdue_issue_is_escalated_once(self, new_user, submit):
        new_user("Admin", email="second.admin@civic.gov.in")
        issue = _water_issue(submit, new_user(), hours_ago=50)

        assert run_sla_sweep(now=T0) == 1

        issue = db.session.get(Issue, issue.id)
        assert issue.status == "escalated"
        assert issue.escalated_from == "open"
        log = StatusLog.query.filter_by(issue_id=issue.id, new_status="escalated").one()
        assert (log.old_status, log.note) == ("open", ESCALATION_NOTE)

        admins = admin_user_ids()
        assert len(admins) == 2
        for admin_id in admins:
            note = Notification.query.filter_by(user_id=admin_id, issue_id=issue.id).one()
            assert note.type == "issue_escalated"
            assert note.message == f"Issue \"{issue.title}\" has been escalated - SLA exceeded"

    def test_second_run_escalates_nothing(self, new_user, submit):
        _water_issue(submit, new_user(), hours_ago=50)

        assert run_sla_sweep(now=T0) == 1
        assert run_sla_sweep(now=T0 + timedelta(minutes=5)) == 0
        assert StatusLog.query.filter_by(new_status="escalated").count() == 1

    def test_within_window_is_left_alone(self, new_user, submit):
        issue = _water_issue(submit, new_user(), hours_ago=47)
        assert run_sla_sweep(now=T0) == 0
        assert db.session.get(Issue, issue.id).status == "open"

    def test_each_department_uses_its_own_window(self, new_user, submit):
        reporter = new_user()
        lights = db.session.get(
            Issue, submit(reporter, category="electricity", now=T0 - timedelta(hours=30))["created"]
        )
        road = db.session.get(Issue, submit(reporter, category="roads", lat=12.9, now=T0 - timedelta(hours=30))["created"])

        assert run_sla_sweep(now=T0) == 1
        assert db.session.get(Issue, lights.id).status == "escalated"
        assert db.session.get(Issue, road.id).status == "open"

    def test_in_progress_issues_escalate_and_closed_do_not(self, new_user, submit):
        reporter = new_user()
        authority = new_user("Authority", department="Water & Sanitation")
        accepted = _water_issue(submit, reporter, hours_ago=60)
        accept_issue(accepted, authority, budget=100, estimated_days=2, start_date="2026-02-27")
        declined = _water_issue(submit, reporter, hours_ago=60)
        decline_issue(declined, authority, category="invalid", reason="Private property")

        assert run_sla_sweep(now=T0) == 1
        assert db.session.get(Issue, accepted.id).effective_status == "accepted"
        assert db.session.get(Issue, declined.id).status == "declined"

    def test_sla_change_applies_on_next_sweep(self, new_user, submit):
        issue = _water_issue(submit, new_user(), hours_ago=30)
        Department.query.filter_by(name="Water & Sanitation").one().sla_hours = 24
        db.session.commit()

        assert run_sla_sweep(now=T0) == 1
        assert db.session.get(Issue, issue.id).status == "escalated"

    def test_admins_only_are_notified(self, new_user, submit):
        reporter = new_user()
        _water_issue(submit, reporter, hours_ago=50)
        run_sla_sweep(now=T0)
        assert Notification.query.filter_by(user_id=reporter.id).count() == 0
        assert db.session.get(User, reporter.id).points_total == 10

    def test_cleared_escalation_is_not_raised_again(self, new_user, submit):
        authority = new_user("Authority", department="Water & Sanitation")
        issue = _water_issue(submit, new_user(), hours_ago=100)

        assert run_sla_sweep(now=T0) == 1
        accept_issue(db.session.get(Issue, issue.id), authority, budget=500, estimated_days=3, start_date="2026-03-01")
        assert db.session.get(Issue, issue.id).status == "accepted"

        assert run_sla_sweep(now=T0 + timedelta(minutes=5)) == 0
        update_progress(db.session.get(Issue, issue.id), authority, percentage=40)
        assert run_sla_sweep(now=T0 + timedelta(minutes=10)) == 0

        assert db.session.get(Issue, issue.id).status == "work_started"
        assert StatusLog.query.filter_by(issue_id=issue.id, new_status="escalated").count() == 1
        for admin_id in admin_user_ids():
            assert Notification.query.filter_by(user_id=admin_id, type="issue_escalated").count() == 1
