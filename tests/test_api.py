"""HTTP surface: auth, issue routes, points, notifications and admin tools."""
from datetime import timedelta

from extensions import db
from models import Issue, Notification, User, utcnow

ISSUE = {
    "title": "Deep pothole near bus stop",
    "description": "Large pothole damaging two-wheelers",
    "category": "roads",
    "severity": 4,
    "lat": 28.6000,
    "lng": 77.2000,
}


def _file(client, **overrides):
    resp = client.post("/issues", json={**ISSUE, **overrides})
    assert resp.status_code in (200, 201), resp.get_json()
    return resp.get_json()


# ═══════════════════════════════════════════════════════════════════════════════
# AUTH
# ═══════════════════════════════════════════════════════════════════════════════

class TestAuth:
    def test_register_and_login(self, app):
        client = app.test_client()
        resp = client.post(
            "/auth/register",
            json={"full_name": "Meera Das", "email": "meera@civic.gov.in", "password": "Sup3r$ecretPass"},
        )
        assert resp.status_code == 201
        assert resp.get_json()["user"]["role"] == "citizen"

        resp = client.post("/auth/login", json={"email": "meera@civic.gov.in", "password": "Sup3r$ecretPass"})
        assert resp.status_code == 200
        assert client.get("/auth/me").get_json()["user"]["email"] == "meera@civic.gov.in"

    def test_register_rejects_weak_password_and_duplicate_email(self, app, make_user):
        make_user(email="taken@civic.gov.in")
        resp = app.test_client().post(
            "/auth/register",
            json={"full_name": "X", "email": "taken@civic.gov.in", "password": "short"},
        )
        assert resp.status_code == 422
        assert set(resp.get_json()["fields"]) == {"email", "password"}

    def test_bad_password_is_unauthorized(self, app, make_user):
        make_user(email="asha@civic.gov.in")
        resp = app.test_client().post("/auth/login", json={"email": "asha@civic.gov.in", "password": "Wrong$Pass123"})
        assert resp.status_code == 401

    def test_authorities_use_their_own_portal(self, app, make_user, login):
        officer = make_user("Authority", email="officer@civic.gov.in", department="Roads & Infrastructure")
        citizen = make_user(email="asha@civic.gov.in")
        client = app.test_client()

        resp = client.post("/auth/login", json={"email": "officer@civic.gov.in", "password": "Sup3r$ecretPass"})
        assert resp.get_json()["error"] == "wrong_portal"
        resp = client.post("/auth/authority-login", json={"email": "asha@civic.gov.in", "password": "Sup3r$ecretPass"})
        assert resp.get_json()["error"] == "not_authority"
        assert login(officer, portal="authority-login")
        assert citizen

    def test_authority_login_is_rate_limited(self, app, make_user):
        make_user("Authority", email="officer@civic.gov.in", department="Roads & Infrastructure")
        client = app.test_client()
        bad = {"email": "officer@civic.gov.in", "password": "Wrong$Pass123"}

        statuses = [client.post("/auth/authority-login", json=bad).status_code for _ in range(6)]

        assert statuses == [401] * 5 + [429]

    def test_forwarded_header_does_not_reset_the_limit(self, app, make_user):
        make_user("Authority", email="officer@civic.gov.in", department="Roads & Infrastructure")
        client = app.test_client()
        bad = {"email": "officer@civic.gov.in", "password": "Wrong$Pass123"}

        statuses = [
            client.post("/auth/authority-login", json=bad, headers={"X-Forwarded-For": f"10.0.0.{i}"}).status_code
            for i in range(6)
        ]

        assert statuses == [401] * 5 + [429]

    def test_anonymous_calls_get_json_401(self, app):
        resp = app.test_client().get("/issues")
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "unauthenticated"


# ═══════════════════════════════════════════════════════════════════════════════
# ISSUES
# ═══════════════════════════════════════════════════════════════════════════════

class TestIssueRoutes:
    def test_create_returns_201_with_payload(self, citizen_client):
        _, client = citizen_client
        resp = client.post("/issues", json=ISSUE)

        assert resp.status_code == 201
        body = resp.get_json()
        assert body["issue"]["id"] == body["created"]
        assert body["issue"]["department"] == "Roads & Infrastructure"
        assert body["issue"]["display_status"] == "open"

    def test_merge_returns_200(self, citizen_client, second_citizen_client, fake_oracle):
        _, first = citizen_client
        _, second = second_citizen_client
        issue_id = _file(first)["created"]
        fake_oracle.matched_id = issue_id

        resp = second.post("/issues", json={**ISSUE, "lat": 28.6003, "lng": 77.2002})

        assert resp.status_code == 200
        assert resp.get_json()["merged"] == issue_id
        assert resp.get_json()["issue"]["report_count"] == 2

    def test_validation_errors_are_field_level(self, citizen_client):
        _, client = citizen_client
        resp = client.post("/issues", json={"title": "Broken"})

        assert resp.status_code == 422
        body = resp.get_json()
        assert body["error"] == "validation_error"
        assert {"description", "category", "lat", "lng"} <= set(body["fields"])

    def test_authorities_cannot_file_issues(self, roads_authority_client):
        _, client = roads_authority_client
        assert client.post("/issues", json=ISSUE).status_code == 403

    def test_list_is_scoped_by_role(self, citizen_client, second_citizen_client, roads_authority_client, admin_client):
        _, first = citizen_client
        _, second = second_citizen_client
        _file(first)
        _file(second, category="water", lat=19.07, lng=72.87)

        assert first.get("/issues").get_json()["total"] == 1
        roads = roads_authority_client[1].get("/issues").get_json()
        assert [i["category"] for i in roads["issues"]] == ["roads"]
        assert admin_client[1].get("/issues").get_json()["total"] == 2
        assert admin_client[1].get("/issues?category=water").get_json()["total"] == 1

    def test_detail_includes_upvote_state_and_logs(self, citizen_client, second_citizen_client):
        _, owner = citizen_client
        _, voter = second_citizen_client
        issue_id = _file(owner)["created"]

        assert voter.post(f"/issues/{issue_id}/upvote").get_json()["upvote_count"] == 1
        detail = voter.get(f"/issues/{issue_id}").get_json()["issue"]
        assert detail["has_upvoted"] is True
        assert detail["status_logs"][0]["new_status"] == "open"

        resp = voter.delete(f"/issues/{issue_id}/upvote")
        assert resp.get_json() == {"upvote_count": 0, "priority_score": 6, "has_upvoted": False}

    def test_self_upvote_conflict_payload(self, citizen_client):
        _, owner = citizen_client
        issue_id = _file(owner)["created"]

        resp = owner.post(f"/issues/{issue_id}/upvote")

        assert resp.status_code == 409
        assert resp.get_json()["reason"] == "self_upvote"

    def test_unknown_issue_is_404(self, citizen_client):
        resp = citizen_client[1].get("/issues/does-not-exist")
        assert resp.status_code == 404
        assert resp.get_json()["error"] == "not_found"

    def test_owner_edit_and_cancel(self, citizen_client, second_citizen_client):
        _, owner = citizen_client
        issue_id = _file(owner)["created"]

        resp = owner.patch(f"/issues/{issue_id}", json={"severity": 5})
        assert resp.get_json()["issue"]["severity"] == 5
        assert second_citizen_client[1].delete(f"/issues/{issue_id}").get_json()["reason"] == "not_owner"

        assert owner.delete(f"/issues/{issue_id}", json={"reason": "Fixed"}).get_json() == {"cancelled": issue_id}
        assert owner.get("/points/me").get_json()["points_total"] == 0
        assert owner.get(f"/issues/{issue_id}").status_code == 404


# ═══════════════════════════════════════════════════════════════════════════════
# AUTHORITY WORKFLOW
# ═══════════════════════════════════════════════════════════════════════════════

class TestAuthorityWorkflow:
    def test_accept_start_progress_complete(self, citizen_client, roads_authority_client):
        reporter_id, citizen = citizen_client
        _, officer = roads_authority_client
        issue_id = _file(citizen)["created"]

        resp = officer.post(
            f"/issues/{issue_id}/accept",
            json={"budget": 50000, "estimated_days": 10, "start_date": "2026-03-02"},
        )
        assert resp.status_code == 200
        assert resp.get_json()["issue"]["status"] == "accepted"

        assert officer.post(f"/issues/{issue_id}/start").get_json()["issue"]["status"] == "work_started"
        resp = officer.post(f"/issues/{issue_id}/progress", json={"percentage": 100, "amount_used": 48000})
        issue = resp.get_json()["issue"]
        assert issue["status"] == "completed"
        assert issue["work_details"]["amount_used"] == 48000.0

        types = [n["type"] for n in citizen.get("/notifications").get_json()["notifications"]]
        assert sorted(types) == ["issue_accepted", "issue_completed"]

    def test_second_accept_is_a_conflict(self, citizen_client, roads_authority_client):
        _, citizen = citizen_client
        _, officer = roads_authority_client
        issue_id = _file(citizen)["created"]
        body = {"budget": 100, "estimated_days": 1, "start_date": "2026-03-02"}
        officer.post(f"/issues/{issue_id}/accept", json=body)

        resp = officer.post(f"/issues/{issue_id}/accept", json=body)

        assert resp.status_code == 409
        assert resp.get_json()["current_status"] == "accepted"

    def test_decline_zeroes_reporter_points(self, citizen_client, roads_authority_client):
        _, citizen = citizen_client
        _, officer = roads_authority_client
        issue_id = _file(citizen)["created"]
        assert citizen.get("/points/me").get_json()["points_total"] == 10

        resp = officer.post(
            f"/issues/{issue_id}/decline",
            json={"category": "insufficient_evidence", "reason": "No visible damage"},
        )

        assert resp.get_json()["issue"]["status"] == "declined"
        points = citizen.get("/points/me").get_json()
        assert points["points_total"] == 0
        assert [e["points"] for e in points["history"]] == [-10, 10]

    def test_citizens_cannot_accept(self, citizen_client, second_citizen_client):
        issue_id = _file(citizen_client[1])["created"]
        resp = second_citizen_client[1].post(f"/issues/{issue_id}/accept", json={})
        assert resp.status_code == 403

    def test_other_department_cannot_see_issue(self, app, citizen_client, make_user, login):
        issue_id = _file(citizen_client[1])["created"]
        water = login(make_user("Authority", email="water@civic.gov.in", department="Water & Sanitation"), "authority-login")
        assert water.get(f"/issues/{issue_id}").status_code == 403


# ═══════════════════════════════════════════════════════════════════════════════
# POINTS & NOTIFICATIONS
# ═══════════════════════════════════════════════════════════════════════════════

class TestPointsAndNotifications:
    def test_leaderboard_ranks_by_points(self, citizen_client, second_citizen_client):
        _, asha = citizen_client
        _, ravi = second_citizen_client
        _file(asha)
        _file(asha, lat=12.97, lng=77.59)
        _file(ravi, lat=13.08, lng=80.27)

        board = asha.get("/points/leaderboard").get_json()["leaderboard"]

        assert [(row["rank"], row["full_name"], row["points"]) for row in board] == [
            (1, "Asha Rao", 20),
            (2, "Ravi Iyer", 10),
        ]

    def test_mark_read(self, app, citizen_client, second_citizen_client, fake_oracle):
        owner_id, owner = citizen_client
        issue_id = _file(owner)["created"]
        fake_oracle.matched_id = issue_id
        _file(second_citizen_client[1], lat=28.6001)

        feed = owner.get("/notifications?unread=1").get_json()["notifications"]
        assert [n["type"] for n in feed] == ["duplicate_merged"]

        assert owner.post(f"/notifications/{feed[0]['id']}/read").status_code == 200
        assert owner.get("/notifications?unread=1").get_json()["notifications"] == []
        assert second_citizen_client[1].post(f"/notifications/{feed[0]['id']}/read").status_code == 404
        assert owner.post("/notifications/read-all").get_json() == {"updated": 0}
        with app.app_context():
            assert Notification.query.filter_by(user_id=owner_id, is_read=True).count() == 1


# ═══════════════════════════════════════════════════════════════════════════════
# ADMIN
# ═══════════════════════════════════════════════════════════════════════════════

class TestAdmin:
    def test_escalation_sweep_and_list(self, app, citizen_client, admin_client):
        _, citizen = citizen_client
        _, admin = admin_client
        issue_id = _file(citizen, category="water")["created"]
        with app.app_context():
            issue = db.session.get(Issue, issue_id)
            issue.created_at = utcnow() - timedelta(hours=50)
            db.session.commit()

        assert admin.post("/admin/sweeps/escalations").get_json() == {"escalated": 1}
        escalated = admin.get("/admin/escalations").get_json()["issues"]
        assert [i["id"] for i in escalated] == [issue_id]
        stats = {d["name"]: d for d in admin.get("/admin/departments").get_json()["departments"]}
        assert stats["Water & Sanitation"]["escalated"] == 1
        assert stats["Water & Sanitation"]["sla_compliance_pct"] == 0.0
        assert admin.get("/notifications").get_json()["notifications"][0]["type"] == "issue_escalated"

    def test_priority_sweep(self, citizen_client, admin_client):
        _file(citizen_client[1])
        assert admin_client[1].post("/admin/sweeps/priorities").get_json() == {"recalculated": 1}

    def test_update_department_sla(self, app, admin_client):
        _, admin = admin_client
        with app.app_context():
            from models import Department

            dept_id = Department.query.filter_by(name="Electricity & Power").one().id

        assert admin.patch(f"/admin/departments/{dept_id}", json={"sla_hours": 0}).status_code == 422
        resp = admin.patch(f"/admin/departments/{dept_id}", json={"sla_hours": 12})
        assert resp.get_json()["department"]["sla_hours"] == 12

    def test_admin_routes_are_admin_only(self, citizen_client, roads_authority_client):
        assert citizen_client[1].get("/admin/escalations").status_code == 403
        assert roads_authority_client[1].post("/admin/sweeps/escalations").status_code == 403

    def test_cli_sweep(self, app):
        result = app.test_cli_runner().invoke(args=["sla-sweep"])
        assert "Escalated 0 issue(s)." in result.output

    def test_security_headers(self, app):
        resp = app.test_client().get("/health")
        assert resp.get_json() == {"status": "ok"}
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        with app.app_context():
            assert User.query.filter_by(email="admin@civic.gov.in").count() == 1
