"""
HTTP layer tests: actor resolution, error envelope, and a pass over
the main routes.
"""
from datetime import datetime, timezone

import pytest

from portal import limiter
from portal.middleware.rate_limiter import actor_or_ip_key
from portal.models.notification import Notification
from portal.models.project_update import ProjectUpdate

CR_BODY = {"title": "Add blog", "description": "A blog with categories", "type": "NEW_FEATURE"}


def _cr_url(project, cid=None):
    base = f"/api/v1/projects/{project.id}/change-requests"
    return base if cid is None else f"{base}/{cid}"


class TestHealth:
    def test_ready(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        assert res.get_json() == {"status": "ok", "app": "Studio Portal"}

    def test_live_checks_database(self, client):
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        assert res.get_json()["checks"]["database"]["status"] == "ok"


class TestActorAndErrors:
    def test_non_numeric_header_is_401(self, client, project):
        res = client.get(f"/api/v1/projects/{project.id}", headers={"X-User-Id": "abc"})
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHENTICATED"

    def test_unknown_user_is_401(self, client, project):
        res = client.get(f"/api/v1/projects/{project.id}", headers={"X-User-Id": "9999"})
        assert res.status_code == 401

    def test_inactive_user_is_401(self, client, project, make_user, as_user):
        gone = make_user("INTERNAL", is_active=False)
        res = client.get(f"/api/v1/projects/{project.id}", headers=as_user(gone))
        assert res.status_code == 401

    def test_missing_actor_is_403(self, client, project):
        res = client.get(f"/api/v1/projects/{project.id}")
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_wrong_role_is_403(self, client, project, client_user, as_user):
        res = client.post(f"/api/v1/projects/{project.id}/sprints",
                          json={"name": "S1", "start_date": "2025-01-06"},
                          headers=as_user(client_user))
        assert res.status_code == 403

    def test_non_member_client_gets_404(self, client, project, make_user, as_user):
        stranger = make_user("CLIENT")
        res = client.get(f"/api/v1/projects/{project.id}", headers=as_user(stranger))
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_unknown_route_is_404(self, client):
        res = client.get("/api/v1/nothing-here")
        assert res.status_code == 404
        assert res.get_json()["details"] == {"path": "/api/v1/nothing-here"}

    def test_validation_is_422_with_details(self, client, project, staff, as_user):
        res = client.post(f"/api/v1/projects/{project.id}/sprints",
                          json={"name": "S1", "start_date": "not-a-date"},
                          headers=as_user(staff))
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_CONSTRAINT"
        assert "start_date" in body["details"]

    def test_malformed_json_is_400(self, client, project, staff, as_user):
        res = client.post(f"/api/v1/projects/{project.id}/sprints", data="{not json",
                          content_type="application/json", headers=as_user(staff))
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_json_array_is_400(self, client, project, staff, as_user):
        res = client.post(f"/api/v1/projects/{project.id}/sprints", json=[1, 2],
                          headers=as_user(staff))
        assert res.status_code == 400


class TestProjects:
    def test_create_adds_creator_as_member(self, client, staff, as_user):
        res = client.post("/api/v1/projects",
                          json={"name": "Shop", "due_date": "2025-06-30"},
                          headers=as_user(staff))
        assert res.status_code == 201
        pid = res.get_json()["id"]
        assert client.get(f"/api/v1/projects/{pid}", headers=as_user(staff)).status_code == 200

    def test_phase_route_and_feed(self, client, project, staff, client_user, as_user):
        res = client.post(f"/api/v1/projects/{project.id}/phase", json={"phase": "DESIGN"},
                          headers=as_user(staff))
        assert res.status_code == 200
        assert res.get_json()["phase"] == "DESIGN"
        feed = client.get(f"/api/v1/projects/{project.id}/updates",
                          headers=as_user(client_user)).get_json()
        assert [u["title"] for u in feed] == ["Project Phase Changed"]

    @pytest.mark.parametrize("limit,expected", [("-1", 1), ("0", 1), ("2", 2), ("abc", 3)])
    def test_feed_limit_is_clamped(self, client, project, staff, as_user, limit, expected):
        from portal.models import db
        from portal.services import project_updates
        for i in range(3):
            project_updates.create_project_update(project.id, f"note {i}")
        db.session.commit()
        feed = client.get(f"/api/v1/projects/{project.id}/updates?limit={limit}",
                          headers=as_user(staff)).get_json()
        assert len(feed) == expected


class TestDeliverables:
    def test_move_route(self, client, project, staff, as_user, make_deliverable):
        d = make_deliverable(project, title="Search", status="IN_PROGRESS")
        res = client.post(f"/api/v1/projects/{project.id}/deliverables/{d.id}/move",
                          json={"status": "QA", "order_index": 2}, headers=as_user(staff))
        assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == "QA"
        assert body["order_index"] == 2
        assert ProjectUpdate.query.count() == 1

    def test_move_requires_valid_status(self, client, project, staff, as_user,
                                        make_deliverable):
        d = make_deliverable(project)
        res = client.post(f"/api/v1/projects/{project.id}/deliverables/{d.id}/move",
                          json={"status": "SHIPPED", "order_index": 0}, headers=as_user(staff))
        assert res.status_code == 422

    def test_list_valued_priority_is_422(self, client, project, staff, as_user, make_deliverable):
        d = make_deliverable(project)
        res = client.patch(f"/api/v1/projects/{project.id}/deliverables/{d.id}",
                           json={"priority": ["HIGH"]}, headers=as_user(staff))
        assert res.status_code == 422
        assert "priority" in res.get_json()["details"]

    def test_comment_thread_over_http(self, client, project, staff, client_user, as_user,
                                      make_deliverable):
        d = make_deliverable(project)
        url = f"/api/v1/projects/{project.id}/deliverables/{d.id}/comments"
        root = client.post(url, json={"content": "Looks good"}, headers=as_user(staff))
        assert root.status_code == 201
        client.post(url, json={"content": "Agreed", "parent_id": root.get_json()["id"]},
                    headers=as_user(client_user))
        tree = client.get(url, headers=as_user(staff)).get_json()
        assert len(tree) == 1
        assert tree[0]["replies"][0]["content"] == "Agreed"


class TestNotificationsInbox:
    def test_inbox_and_mark_read(self, client, project, staff, client_user, as_user,
                                 make_deliverable):
        d = make_deliverable(project, title="Homepage")
        client.post(f"/api/v1/projects/{project.id}/deliverables/{d.id}/comments",
                    json={"content": "First draft is up"}, headers=as_user(staff))

        inbox = client.get("/api/v1/notifications", headers=as_user(client_user)).get_json()
        assert inbox["unread_count"] == 1
        assert inbox["items"][0]["title"] == 'Sam Staff commented on "Homepage"'

        nid = inbox["items"][0]["id"]
        res = client.patch(f"/api/v1/notifications/{nid}/read", headers=as_user(client_user))
        assert res.status_code == 200
        count = client.get("/api/v1/notifications/unread-count",
                           headers=as_user(client_user)).get_json()
        assert count == {"unread_count": 0}

    def test_mark_all_read(self, client, client_user, as_user):
        from portal.models import db
        for i in range(3):
            db.session.add(Notification(user_id=client_user.id, type="PROJECT_UPDATE",
                                        title=f"n{i}", message=""))
        db.session.commit()
        res = client.post("/api/v1/notifications/mark-all-read", headers=as_user(client_user))
        assert res.get_json() == {"marked_read": 3}

    def test_inbox_requires_actor(self, client):
        assert client.get("/api/v1/notifications").status_code == 403


class TestSprintsOverHttp:
    def test_active_sprint_null(self, client, project, staff, as_user):
        res = client.get(f"/api/v1/projects/{project.id}/sprints/active", headers=as_user(staff))
        assert res.get_json() == {"sprint": None}

    def test_check_completion(self, client, project, staff, as_user):
        client.post(f"/api/v1/projects/{project.id}/sprints",
                    json={"name": "Sprint 1", "start_date": "2025-01-06"}, headers=as_user(staff))
        res = client.post(f"/api/v1/projects/{project.id}/sprints/check-completion",
                          headers=as_user(staff))
        assert res.status_code == 200
        assert res.get_json()["processed"] == 0

    def test_overlap_is_422(self, client, project, staff, as_user):
        url = f"/api/v1/projects/{project.id}/sprints"
        client.post(url, json={"name": "A", "start_date": "2025-01-06"}, headers=as_user(staff))
        res = client.post(url, json={"name": "B", "start_date": "2025-01-10"},
                          headers=as_user(staff))
        assert res.status_code == 422


class TestChangeRequestsOverHttp:
    def test_quota_is_429_with_retry_after(self, client, project, client_user, as_user):
        first = client.post(_cr_url(project), json=CR_BODY, headers=as_user(client_user))
        assert first.status_code == 201
        res = client.post(_cr_url(project), json=CR_BODY, headers=as_user(client_user))
        assert res.status_code == 429
        body = res.get_json()
        assert body["code"] == "ERR_RATE_LIMITED"
        assert body["details"]["retry_after"] == "2025-01-13T00:00:00+00:00"

    def test_quota_resets_next_week(self, client, project, client_user, as_user, clock):
        client.post(_cr_url(project), json=CR_BODY, headers=as_user(client_user))
        clock.set(datetime(2025, 1, 13, 9, 0, tzinfo=timezone.utc))
        res = client.post(_cr_url(project), json=CR_BODY, headers=as_user(client_user))
        assert res.status_code == 201

    def test_impact_endpoint(self, client, project, staff, client_user, as_user):
        cid = client.post(_cr_url(project), json=CR_BODY,
                          headers=as_user(client_user)).get_json()["id"]
        client.patch(_cr_url(project, cid), json={"estimate_hours": 80}, headers=as_user(staff))
        res = client.get(f"{_cr_url(project, cid)}/impact", headers=as_user(client_user))
        assert res.get_json() == {
            "delay_days": 14,
            "new_due_date": "2025-03-15",
            "delay_text": "2 weeks",
            "new_due_date_text": "March 15, 2025",
        }

    def test_client_cannot_triage(self, client, project, client_user, as_user):
        cid = client.post(_cr_url(project), json=CR_BODY,
                          headers=as_user(client_user)).get_json()["id"]
        res = client.patch(_cr_url(project, cid), json={"status": "APPROVED"},
                           headers=as_user(client_user))
        assert res.status_code == 403


class TestRateLimitKey:
    def test_key_is_acting_user_after_request_hooks(self, app, staff):
        with app.test_request_context("/api/v1/projects/1", headers={"X-User-Id": str(staff.id)}):
            app.preprocess_request()
            assert actor_or_ip_key() == f"user:{staff.id}"

    def test_key_falls_back_to_remote_address(self, app):
        with app.test_request_context("/api/v1/notifications",
                                      environ_base={"REMOTE_ADDR": "10.0.0.7"}):
            app.preprocess_request()
            assert actor_or_ip_key() == "10.0.0.7"

    def test_actor_hook_runs_before_limiter(self, app):
        funcs = app.before_request_funcs[None]
        actor_at = [getattr(f, "__name__", "") for f in funcs].index("_actor_context")
        limiter_hooks = [i for i, f in enumerate(funcs) if getattr(f, "__self__", None) is limiter]
        assert all(actor_at < i for i in limiter_hooks)
