"""
Route tests against an in-memory database seeded from rimo/catalog_seed.json.
"""

from datetime import timedelta
import pytest
from sqlalchemy.exc import OperationalError

from rimo import llm_gateway
from rimo.crud import create_purchase
from rimo.llm_gateway import GatewayError
from rimo.models_db import utcnow

TOKEN = "device-token-0001"
BASE = f"/v1/assessment/sessions/{TOKEN}"


def answer(client, question_id, **value):
    return client.put(f"{BASE}/responses", json={"question_id": question_id, **value})


def visible_ids(body):
    return [q["id"] for q in body["questions"]]


@pytest.fixture
def started(client):
    r = client.post("/v1/assessment/sessions", json={"session_token": TOKEN})
    assert r.status_code == 200
    return r.json()


class TestAssessmentFlow:

    def test_health_and_modules(self, client):
        assert client.get("/v1/health").json() == {"status": "ok"}
        modules = client.get("/v1/assessment/modules").json()["modules"]
        assert [m["id"] for m in modules] == ["m-calibration", "m-strategy", "m-influence"]

    def test_start_is_idempotent_per_token(self, client, started):
        assert started["session"]["status"] == "in_progress"
        assert started["progress"] == 0
        again = client.post("/v1/assessment/sessions", json={"session_token": TOKEN}).json()
        assert again["session"]["id"] == started["session"]["id"]

    def test_short_token_rejected(self, client):
        assert client.post("/v1/assessment/sessions", json={"session_token": "abc"}).status_code == 422

    def test_unknown_session(self, client):
        assert client.get("/v1/assessment/sessions/no-such-device").status_code == 404

    def test_pre_level_questions(self, started):
        ids = visible_ids(started)
        assert ids[0] == "q-cal-role"
        assert "q-str-vision" not in ids
        assert "q-str-portfolio" not in ids
        assert "q-str-basics" in ids
        assert "q-inf-coalition" not in ids

    def test_calibration_answer_sets_level(self, client, started):
        body = answer(client, "q-cal-role", selected_option_id="o-cal-role-d").json()
        assert body["session"]["inferred_level"] == "Senior"
        ids = visible_ids(body)
        assert "q-str-vision" in ids
        assert "q-str-portfolio" in ids
        assert "q-str-basics" not in ids
        assert body["progress"] == round(100 / body["visible_count"])

    def test_branch_question_appears_after_scores(self, client, started):
        answer(client, "q-str-roadmap", selected_option_id="o-str-roadmap-b")
        body = answer(client, "q-inf-exec", selected_option_id="o-inf-exec-a").json()
        assert body["dimension_scores"]["influence"] == 7.0
        assert "q-inf-coalition" in visible_ids(body)

    def test_module_filter(self, client, started):
        body = client.get(BASE, params={"module_id": "m-influence"}).json()
        assert set(visible_ids(body)) == {"q-inf-exec", "q-inf-confidence", "q-inf-story"}

    def test_module_filter_progress_stays_in_range(self, client, started):
        answer(client, "q-cal-years", numeric_value=3)
        answer(client, "q-str-roadmap", selected_option_id="o-str-roadmap-a")
        answer(client, "q-str-metrics", selected_option_id="o-str-metrics-a")
        answer(client, "q-str-basics", selected_option_id="o-str-basics-a")
        full = answer(client, "q-inf-story", text_value="Shipped onboarding").json()

        body = client.get(BASE, params={"module_id": "m-influence"}).json()
        assert body["answered_count"] == 5
        assert len(body["questions"]) == 3
        assert body["visible_count"] == full["visible_count"]
        assert body["progress"] == full["progress"]
        assert body["progress"] <= 100

    def test_answer_replaces_previous(self, client, started):
        answer(client, "q-cal-years", numeric_value=2)
        body = answer(client, "q-cal-years", numeric_value=5).json()
        assert body["answered_count"] == 1
        assert body["dimension_scores"]["execution"] == 10.0

    @pytest.mark.parametrize("payload", [
        {"question_id": "q-cal-years", "numeric_value": 9},
        {"question_id": "q-cal-years", "text_value": "ten"},
        {"question_id": "q-str-roadmap", "selected_option_id": "o-inf-exec-a"},
        {"question_id": "q-str-roadmap"},
        {"question_id": "q-missing", "numeric_value": 3},
    ])
    def test_bad_answers(self, client, started, payload):
        assert client.put(f"{BASE}/responses", json=payload).status_code == 400

    def test_signup_gate_and_email(self, client, started):
        answer(client, "q-cal-years", numeric_value=3)
        answer(client, "q-str-roadmap", selected_option_id="o-str-roadmap-a")
        answer(client, "q-str-metrics", selected_option_id="o-str-metrics-a")
        answer(client, "q-str-basics", selected_option_id="o-str-basics-a")
        body = answer(client, "q-inf-confidence", numeric_value=4).json()
        assert body["should_show_signup_gate"] is False
        body = answer(client, "q-inf-story", text_value="Launched a pricing page").json()
        assert body["answered_count"] == 6
        assert body["should_show_signup_gate"] is True

        body = client.put(f"{BASE}/email", json={"email": "  Jane@Example.COM "}).json()
        assert body["session"]["email"] == "jane@example.com"
        assert body["should_show_signup_gate"] is False

    def test_invalid_email(self, client, started):
        assert client.put(f"{BASE}/email", json={"email": "not-an-email"}).status_code == 422

    def test_level(self, client, started):
        assert client.put(f"{BASE}/level", json={"level": "Wizard"}).status_code == 400
        body = client.put(f"{BASE}/level", json={"level": "Principal"}).json()
        assert body["session"]["inferred_level"] == "Principal"

    def test_progress_pointers(self, client, started):
        body = client.put(f"{BASE}/progress", json={"module_index": 1, "question_index": 3}).json()
        assert body["session"]["current_module_index"] == 1
        assert body["session"]["current_question_index"] == 3
        assert client.put(f"{BASE}/progress", json={"module_index": -1, "question_index": 0}).status_code == 422

    def test_submit_is_terminal(self, client, started):
        answer(client, "q-cal-years", numeric_value=3)
        first = client.post(f"{BASE}/submit").json()
        assert first["session"]["status"] == "submitted"
        assert first["session"]["submitted_at"]
        second = client.post(f"{BASE}/submit").json()
        assert second["session"]["submitted_at"] == first["session"]["submitted_at"]

        assert answer(client, "q-cal-years", numeric_value=4).status_code == 409
        assert client.put(f"{BASE}/progress", json={"module_index": 0, "question_index": 0}).status_code == 409

    def test_persistence_failure(self, client, started, monkeypatch):
        def broken(*a, **kw):
            raise OperationalError("UPDATE assessment_sessions", {}, Exception("connection lost"))

        monkeypatch.setattr("rimo.main.save_email", broken)
        r = client.put(f"{BASE}/email", json={"email": "jane@example.com"})
        assert r.status_code == 503
        assert r.json()["detail"] == "Failed to save, please try again."
        assert client.get(BASE).json()["session"]["email"] is None


class TestReport:

    def test_requires_submission(self, client, started):
        assert client.post(f"{BASE}/report").status_code == 409
        assert client.get(f"{BASE}/report").status_code == 404

    def test_generate_and_read(self, client, started):
        answer(client, "q-cal-role", selected_option_id="o-cal-role-d")
        answer(client, "q-str-roadmap", selected_option_id="o-str-roadmap-b")
        answer(client, "q-inf-confidence", numeric_value=2)
        client.post(f"{BASE}/submit")

        r = client.post(f"{BASE}/report")
        assert r.status_code == 200
        report = r.json()["report"]
        assert 0 <= report["overall_score"] <= 100
        assert "strategy" in report["dimension_scores"]

        stored = client.get(f"{BASE}/report").json()
        assert stored["report_id"] == r.json()["report_id"]
        assert client.get(BASE).json()["session"]["status"] == "scored"

    def test_report_rate_limit(self, client, started, monkeypatch):
        monkeypatch.setattr("rimo.main.REPORT_RATE_LIMIT_MAX_REQUESTS", 1)
        client.post(f"{BASE}/submit")
        headers = {"x-forwarded-for": "203.0.113.7, 10.0.0.1"}
        assert client.post(f"{BASE}/report", headers=headers).status_code == 200
        r = client.post(f"{BASE}/report", headers=headers)
        assert r.status_code == 429
        assert int(r.headers["Retry-After"]) >= 5
        assert client.post(f"{BASE}/report", headers={"x-forwarded-for": "198.51.100.1"}).status_code == 200


class TestToolRoutes:

    def grant(self, client, email="pm@example.com", tool_type="resume_suite", headers=None):
        return client.post("/v1/tools/access/grant", json={"email": email, "tool_type": tool_type}, headers=headers)

    def test_grant_requires_admin_key(self, client, monkeypatch):
        monkeypatch.setattr("rimo.main.RIMO_API_KEY", "admin-key")
        assert self.grant(client).status_code == 401
        assert self.grant(client, headers={"Authorization": "Bearer nope"}).status_code == 403
        r = self.grant(client, headers={"Authorization": "Bearer admin-key"})
        assert r.status_code == 200
        assert r.json()["status"] == "active"

    def test_grant_unknown_tool(self, client):
        assert self.grant(client, tool_type="time_machine").status_code == 400

    def test_verify_link_and_check(self, client):
        granted = self.grant(client, email="PM@Example.com").json()
        token = granted["access_link"].split("verify=")[1].split("&")[0]

        verified = client.post("/v1/tools/access/verify", json={"access_token": token}).json()
        assert verified["valid"] is True
        assert verified["tool_type"] == "resume_suite"
        assert verified["days_remaining"] == 30

        bad = client.post("/v1/tools/access/verify", json={"access_token": "nope"}).json()
        assert bad == {"valid": False, "error": "Invalid access token", "expired": False}

        check = client.post("/v1/tools/access/check", json={"email": "pm@example.com", "tool_type": "resume_suite"}).json()
        assert check["has_access"] is True
        none = client.post("/v1/tools/access/check", json={"email": "pm@example.com", "tool_type": "linkedin_signal"}).json()
        assert none == {"has_access": False, "expired": False}

    def test_check_unknown_tool_type(self, client):
        r = client.post("/v1/tools/access/check", json={"email": "pm@example.com", "tool_type": "nope"})
        assert r.status_code == 400

    def test_run_tool(self, client, monkeypatch):
        self.grant(client)
        monkeypatch.setattr(llm_gateway, "chat", lambda messages, **kw: '{"coverLetter": "Dear team"}')
        r = client.post("/v1/tools/run/cover_letter", json={
            "email": "pm@example.com",
            "input": {"resume_text": "cv", "job_description": "jd"},
        })
        assert r.status_code == 200
        assert r.json()["result"] == {"coverLetter": "Dear team"}

    def test_run_tool_errors(self, client, monkeypatch):
        called = []
        monkeypatch.setattr(llm_gateway, "chat", lambda messages, **kw: called.append(1) or "{}")

        assert client.post("/v1/tools/run/time_machine", json={"input": {}}).status_code == 404
        assert client.post("/v1/tools/run/enhance_resume", json={"input": {}}).status_code == 400

        r = client.post("/v1/tools/run/enhance_resume", json={"email": "x@example.com", "input": {"resume_text": "cv"}})
        assert r.status_code == 403
        assert r.json() == {"detail": "No active access found for this email", "expired": False}
        assert called == []

    def test_run_tool_expired(self, client, db):
        create_purchase(
            db, "pm@example.com", "resume_suite", status="active",
            access_token="old", expires_at=utcnow() - timedelta(days=1),
        )
        r = client.post("/v1/tools/run/enhance_resume", json={"access_token": "old", "input": {"resume_text": "cv"}})
        assert r.status_code == 403
        assert r.json()["expired"] is True

    @pytest.mark.parametrize("status,expected", [(402, 402), (429, 429), (503, 502)])
    def test_gateway_errors(self, client, monkeypatch, status, expected):
        self.grant(client)

        def failing(messages, **kw):
            raise GatewayError(status, "gateway said no")

        monkeypatch.setattr(llm_gateway, "chat", failing)
        r = client.post("/v1/tools/run/parse_resume", json={"email": "pm@example.com", "input": {"resume_text": "cv"}})
        assert r.status_code == expected

    def test_unparseable_tool_output(self, client, monkeypatch):
        self.grant(client)
        monkeypatch.setattr(llm_gateway, "chat", lambda messages, **kw: "sorry")
        r = client.post("/v1/tools/run/parse_resume", json={"email": "pm@example.com", "input": {"resume_text": "cv"}})
        assert r.status_code == 502
