"""HTTP API tests.

Tests cover:
- Sign-in flow (admin, new student, unknown email)
- Per-client sessions keyed by bearer token
- Tab locking and the plan-required response
- Admin-only student management and content editing
- Student content views
"""

from fastapi.testclient import TestClient

from conftest import ADMIN_EMAIL
from main import Portal, app


def _add_student(client: TestClient, name="Ana Silva", email="ana@example.com"):
    return client.post("/admin/students", json={"name": name, "email": email, "notes": "VIP"})


def _login(client: TestClient, email: str):
    """Start a fresh sign-in and keep the token it hands out."""
    client.headers.pop("Authorization", None)
    response = client.post("/auth/login", json={"email": email})
    if response.status_code == 200:
        client.headers["Authorization"] = f"Bearer {response.json()['token']}"
    return response


def _sign_in_student(client: TestClient, email="ana@example.com"):
    """Enroll a student as admin, then sign in as that student."""
    assert _add_student(client, email=email).status_code == 200
    client.post("/auth/logout")
    response = _login(client, email)
    assert response.json()["step"] == "password"
    response = client.post("/auth/password", json={"password": "secret1", "confirmation": "secret1"})
    assert response.status_code == 200, response.text
    return response.json()


class TestAuth:
    def test_root(self, client: TestClient):
        assert client.get("/").status_code == 200

    def test_status_report(self, client: TestClient):
        body = client.get("/test").json()
        assert body["student_backend"] == "local"

    def test_requires_session(self, client: TestClient):
        for path in ("/auth/me", "/tabs", "/onboarding/videos", "/bonuses"):
            assert client.get(path).status_code == 401, path

    def test_unknown_email_forbidden(self, client: TestClient):
        response = client.post("/auth/login", json={"email": "nobody@example.com"})
        assert response.status_code == 403

    def test_invalid_email_rejected(self, client: TestClient):
        response = client.post("/auth/login", json={"email": "not-an-email"})
        assert response.status_code == 422

    def test_admin_login(self, admin_client: TestClient):
        body = admin_client.get("/auth/me").json()
        assert body["view"] == "admin"
        assert body["is_admin"] is True
        assert body["locked_tabs"] == []
        assert body["user"]["hasGeneratedPlan"] is True

    def test_student_sign_up(self, admin_client: TestClient):
        shell = _sign_in_student(admin_client)

        assert shell["view"] == "student"
        assert shell["user"]["firstAccess"] is True
        assert shell["show_welcome"] is True
        assert shell["locked_tabs"] == ["teacher-poli", "resources"]

    def test_password_mismatch(self, admin_client: TestClient):
        _add_student(admin_client)
        admin_client.post("/auth/logout")
        _login(admin_client, "ana@example.com")

        response = admin_client.post("/auth/password", json={"password": "secret1", "confirmation": "other12"})

        assert response.status_code == 400

    def test_logout(self, admin_client: TestClient):
        assert admin_client.post("/auth/logout").status_code == 200
        assert admin_client.get("/auth/me").status_code == 401


class TestSessions:
    def test_login_hands_out_token(self, client: TestClient):
        body = client.post("/auth/login", json={"email": ADMIN_EMAIL}).json()
        assert len(body["token"]) >= 32

        assert client.get("/auth/me").status_code == 401
        me = client.get("/auth/me", headers={"Authorization": f"Bearer {body['token']}"})
        assert me.json()["view"] == "admin"

    def test_unknown_token_rejected(self, client: TestClient):
        response = client.get("/auth/me", headers={"Authorization": "Bearer not-a-session"})
        assert response.status_code == 401

    def test_other_client_does_not_share_admin_session(self, admin_client: TestClient):
        with TestClient(app) as other:
            assert other.get("/auth/me").status_code == 401
            assert _add_student(other, email="eve@example.com").status_code == 401
            assert other.get("/admin/students").status_code == 401

        assert admin_client.get("/admin/students").json()["items"] == []

    def test_student_and_admin_side_by_side(self, admin_client: TestClient):
        _add_student(admin_client)

        with TestClient(app) as student:
            assert _login(student, "ana@example.com").json()["step"] == "password"
            student.post("/auth/password", json={"password": "secret1", "confirmation": "secret1"})

            assert student.get("/auth/me").json()["view"] == "student"
            assert student.get("/admin/students").status_code == 403
            assert student.post("/tabs/resources").status_code == 423

        assert admin_client.get("/auth/me").json()["view"] == "admin"
        assert len(admin_client.get("/admin/students").json()["items"]) == 1

    def test_session_survives_restart(self, admin_client: TestClient, portal: Portal):
        app.state.portal = Portal(portal.storage, None, admin_emails=[ADMIN_EMAIL], delay=0)

        response = admin_client.get("/auth/me")

        assert response.status_code == 200
        assert response.json()["view"] == "admin"

    def test_logout_forgets_stored_session(self, admin_client: TestClient, portal: Portal):
        admin_client.post("/auth/logout")
        app.state.portal = Portal(portal.storage, None, admin_emails=[ADMIN_EMAIL], delay=0)

        assert admin_client.get("/auth/me").status_code == 401


class TestTabs:
    def test_locked_tab_returns_plan_required(self, admin_client: TestClient):
        _sign_in_student(admin_client)

        response = admin_client.post("/tabs/resources")

        assert response.status_code == 423
        assert response.json()["detail"]["shortcut"] == "ai-assistant"
        assert admin_client.get("/tabs").json()["active"] == "onboarding"

    def test_plan_shortcut(self, admin_client: TestClient):
        _sign_in_student(admin_client)
        assert admin_client.post("/tabs/plan-shortcut").json()["active"] == "ai-assistant"

    def test_generating_plan_unlocks_tabs(self, admin_client: TestClient):
        _sign_in_student(admin_client)

        response = admin_client.post("/assistant/messages", json={"content": "I am a beginner"})

        assert response.status_code == 200
        assert response.json()["shell"]["locked_tabs"] == []
        assert admin_client.post("/tabs/teacher-poli").json()["active"] == "teacher-poli"
        tabs = admin_client.get("/tabs").json()["items"]
        assert not any(t["locked"] for t in tabs)

    def test_plan_download(self, admin_client: TestClient):
        _sign_in_student(admin_client)
        assert admin_client.get("/assistant/plan").status_code == 404

        admin_client.post("/assistant/messages", json={"content": "Hello"})

        response = admin_client.get("/assistant/plan/download")
        assert response.status_code == 200
        assert "attachment" in response.headers["content-disposition"]
        assert "Personalized Study Plan" in response.text

    def test_support(self, admin_client: TestClient):
        items = admin_client.post("/support").json()["items"]
        assert len(items) == 2


class TestAdminStudents:
    def test_student_management(self, admin_client: TestClient):
        created = _add_student(admin_client).json()
        assert created["email"] == "ana@example.com"
        assert created["added_by"] == ADMIN_EMAIL

        duplicate = _add_student(admin_client, name="Other", email="ANA@example.com")
        assert duplicate.status_code == 409

        _add_student(admin_client, name="Bruno", email="mariana@example.com")
        _add_student(admin_client, name="Carlos", email="carlos@example.com")

        found = admin_client.get("/admin/students", params={"q": "ana"}).json()["items"]
        assert {s["name"] for s in found} == {"Ana Silva", "Bruno"}

        toggled = admin_client.post(f"/admin/students/{created['id']}/toggle", json={"status": "active"})
        assert toggled.json()["status"] == "inactive"

        stats = admin_client.get("/admin/students/stats").json()
        assert stats == {"total": 3, "active": 2, "inactive": 1, "addedThisMonth": 3}

        assert admin_client.delete(f"/admin/students/{created['id']}").status_code == 200
        ids = [s["id"] for s in admin_client.get("/admin/students").json()["items"]]
        assert created["id"] not in ids
        assert admin_client.delete(f"/admin/students/{created['id']}").status_code == 404

    def test_set_status(self, admin_client: TestClient):
        created = _add_student(admin_client).json()

        response = admin_client.patch(f"/admin/students/{created['id']}/status", json={"status": "inactive"})

        assert response.json()["status"] == "inactive"

    def test_missing_name(self, admin_client: TestClient):
        response = admin_client.post("/admin/students", json={"name": " ", "email": "ana@example.com"})
        assert response.status_code == 400

    def test_students_require_admin(self, admin_client: TestClient):
        _sign_in_student(admin_client)

        assert admin_client.get("/admin/students").status_code == 403
        assert _add_student(admin_client, email="new@example.com").status_code == 403
        assert admin_client.post("/admin/panel/open").status_code == 403


class TestContent:
    def test_complete_video(self, admin_client: TestClient):
        _sign_in_student(admin_client)

        assert admin_client.post("/onboarding/videos/1/complete").json()["completed"] is True
        videos = admin_client.get("/onboarding/videos").json()["items"]
        assert videos[0]["completed"] is True
        assert admin_client.post("/onboarding/videos/missing/complete").status_code == 404

    def test_admin_edits_reach_students(self, admin_client: TestClient):
        admin_client.put("/admin/onboarding/videos/2", json={"title": "Plan walkthrough"})
        admin_client.put("/admin/popups/welcome", json={"buttonText": "Start"})
        bonus = admin_client.post("/admin/bonuses", json={"title": "Idioms"}).json()
        lesson = admin_client.post(
            f"/admin/bonuses/{bonus['id']}/lessons",
            json={
                "title": "Break a leg",
                "exercises": [{"question": "Means?", "options": ["a", "b", "c", "d"], "correctAnswer": 2}],
            },
        ).json()

        _sign_in_student(admin_client)

        assert admin_client.get("/onboarding/videos").json()["items"][1]["title"] == "Plan walkthrough"
        assert admin_client.get("/popups").json()["items"][0]["buttonText"] == "Start"

        detail = admin_client.get(f"/bonuses/{bonus['id']}").json()
        assert detail["totalLessons"] == 1
        assert detail["progress"] == {"completed": 0, "total": 1}

        graded = admin_client.post(f"/bonuses/{bonus['id']}/lessons/{lesson['id']}/quiz", json={"answers": [2]})
        assert graded.json()["score"] == 1

        admin_client.post(f"/bonuses/{bonus['id']}/lessons/{lesson['id']}/complete")
        detail = admin_client.get(f"/bonuses/{bonus['id']}").json()
        assert detail["progress"] == {"completed": 1, "total": 1}
        assert detail["lessons"][0]["completed"] is True

    def test_admin_bonus_crud(self, admin_client: TestClient):
        bonus = admin_client.post("/admin/bonuses", json={"title": "Idioms"}).json()
        lesson = admin_client.post(f"/admin/bonuses/{bonus['id']}/lessons", json={"title": "One"}).json()

        updated = admin_client.put(
            f"/admin/bonuses/{bonus['id']}/lessons/{lesson['id']}", json={"title": "Uno"}
        )
        assert updated.json()["title"] == "Uno"

        assert admin_client.delete(f"/admin/bonuses/{bonus['id']}/lessons/{lesson['id']}").status_code == 200
        assert admin_client.put(f"/admin/bonuses/{bonus['id']}", json={"title": "Idioms 2"}).json()["title"] == "Idioms 2"
        assert admin_client.delete(f"/admin/bonuses/{bonus['id']}").status_code == 200
        assert admin_client.get(f"/bonuses/{bonus['id']}").status_code == 404

    def test_content_edits_require_admin(self, admin_client: TestClient):
        _sign_in_student(admin_client)
        assert admin_client.post("/admin/bonuses", json={"title": "Idioms"}).status_code == 403
