"""
tests/test_api_routes.py — FastAPI Route Integration Tests
============================================================
Exercises the admin and public routers through the FastAPI TestClient
against an in-memory SQLite database and a mocked Discord guild.

These tests verify:
- Auth guards on admin and submitter endpoints
- The form builder round trip (create, questions, publish, share link)
- Submission, status lookup, review and CSV export
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from conftest import make_admin_token, make_client, make_guild, make_member, make_user_token
from formkeeper.api.main import create_app
from formkeeper.services.forms_service import FormsService

GUILD_ID = 1
SUBMITTER_ID = 4242


@pytest.fixture
def client(db_engine):
    guild = make_guild(GUILD_ID, members=[make_member(SUBMITTER_ID)])
    service = FormsService(make_client(guild), db_engine)
    return TestClient(create_app(forms=service))


@pytest.fixture
def user_token():
    return make_user_token(str(SUBMITTER_ID), "submitter")


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _create_form(client, admin_token, **fields):
    resp = client.post(f"/api/forms/guild/{GUILD_ID}", json={"name": "Survey", **fields},
                       headers=_auth(admin_token))
    assert resp.status_code == 201
    return resp.json()


def _add_question(client, admin_token, form_id, **fields):
    resp = client.post(f"/api/forms/{form_id}/questions", json=fields,
                       headers=_auth(admin_token))
    assert resp.status_code == 201, resp.text
    return resp.json()


def _open_form(client, admin_token, **fields):
    """Create, publish and activate a form with one required dropdown."""
    form = _create_form(client, admin_token, **fields)
    question = _add_question(
        client, admin_token, form["id"],
        question_text="Color", question_type="dropdown", is_required=True,
        options=[{"option_text": "Red"}, {"option_text": "Blue", "option_value": "b"}],
    )
    client.post(f"/api/forms/{form['id']}/publish", headers=_auth(admin_token))
    client.patch(f"/api/forms/{form['id']}/active", json={"is_active": True},
                 headers=_auth(admin_token))
    return form, question


# ===========================================================================
# Health & auth
# ===========================================================================
class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


class TestServiceWiring:
    def test_app_without_service_is_unavailable(self, admin_token):
        client = TestClient(create_app())
        resp = client.get(f"/api/forms/guild/{GUILD_ID}", headers=_auth(admin_token))
        assert resp.status_code == 503
        assert resp.json()["detail"] == "Forms service not available"
        assert client.get("/api/health").status_code == 200


class TestAuthGuards:
    ADMIN_ENDPOINTS = [
        ("get", f"/api/forms/guild/{GUILD_ID}"),
        ("get", "/api/forms/1"),
        ("get", "/api/forms/1/responses"),
        ("get", "/api/forms/1/responses/export"),
        ("post", "/api/forms/responses/1/approve"),
    ]

    @pytest.mark.parametrize("method,endpoint", ADMIN_ENDPOINTS)
    def test_rejects_no_auth(self, client, method, endpoint):
        resp = getattr(client, method)(endpoint)
        assert resp.status_code == 401

    @pytest.mark.parametrize("method,endpoint", ADMIN_ENDPOINTS)
    def test_rejects_non_admin(self, client, user_token, method, endpoint):
        resp = getattr(client, method)(endpoint, headers=_auth(user_token))
        assert resp.status_code == 403

    def test_rejects_invalid_token(self, client):
        resp = client.get(f"/api/forms/guild/{GUILD_ID}", headers=_auth("garbage"))
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Invalid token"

    def test_rejects_non_numeric_subject(self, client):
        token = make_user_token("not-a-snowflake")
        resp = client.post("/api/forms/1/render", json={}, headers=_auth(token))
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Invalid token subject"

    def test_submit_requires_user(self, client):
        assert client.post("/api/forms/1/submit", json={}).status_code == 401


# ===========================================================================
# Form builder
# ===========================================================================
class TestFormBuilder:
    def test_create_starts_as_inactive_draft(self, client, admin_token):
        form = _create_form(client, admin_token, description="About you")
        assert form["is_draft"] is True
        assert form["is_active"] is False
        assert form["created_by"] == 99999
        assert form["guild_id"] == GUILD_ID

        resp = client.get(f"/api/forms/guild/{GUILD_ID}", headers=_auth(admin_token))
        assert [f["id"] for f in resp.json()["forms"]] == [form["id"]]

    def test_create_validates(self, client, admin_token):
        resp = client.post(f"/api/forms/guild/{GUILD_ID}", json={"name": "  "},
                           headers=_auth(admin_token))
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Form name is required"

    def test_update(self, client, admin_token):
        form = _create_form(client, admin_token)
        resp = client.put(f"/api/forms/{form['id']}", json={}, headers=_auth(admin_token))
        assert resp.status_code == 400
        assert resp.json()["detail"] == "No fields to update"

        resp = client.put(f"/api/forms/{form['id']}", json={"max_responses": 0},
                          headers=_auth(admin_token))
        assert resp.status_code == 400

        resp = client.put(f"/api/forms/{form['id']}", json={"name": "Renamed"},
                          headers=_auth(admin_token))
        assert resp.status_code == 200
        assert resp.json()["name"] == "Renamed"

    def test_update_clears_limits_with_null(self, client, admin_token):
        form = _create_form(client, admin_token, max_responses=5,
                            expires_at="2030-01-01T00:00:00+00:00")
        assert form["max_responses"] == 5
        assert form["expires_at"] is not None

        resp = client.put(f"/api/forms/{form['id']}",
                          json={"max_responses": None, "expires_at": None},
                          headers=_auth(admin_token))
        assert resp.status_code == 200
        assert resp.json()["max_responses"] is None
        assert resp.json()["expires_at"] is None

        stored = client.get(f"/api/forms/{form['id']}", headers=_auth(admin_token)).json()
        assert stored["max_responses"] is None
        assert stored["expires_at"] is None
        assert stored["name"] == "Survey"

    def test_update_refuses_null_for_required_columns(self, client, admin_token):
        form = _create_form(client, admin_token)
        resp = client.put(f"/api/forms/{form['id']}",
                          json={"require_captcha": None, "name": None},
                          headers=_auth(admin_token))
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Cannot clear name, require_captcha"

    def test_get_and_delete(self, client, admin_token):
        form = _create_form(client, admin_token)
        resp = client.get(f"/api/forms/{form['id']}", headers=_auth(admin_token))
        assert resp.json()["response_count"] == 0

        assert client.delete(f"/api/forms/{form['id']}",
                             headers=_auth(admin_token)).status_code == 204
        assert client.get(f"/api/forms/{form['id']}",
                          headers=_auth(admin_token)).status_code == 404

    def test_questions_with_options(self, client, admin_token):
        form = _create_form(client, admin_token)
        question = _add_question(
            client, admin_token, form["id"],
            question_text="Color", question_type="dropdown",
            options=[{"option_text": "Red"}, {"option_text": "Blue", "option_value": "b"}],
        )
        assert [o["option_value"] for o in question["options"]] == ["Red", "b"]

        resp = client.post(f"/api/forms/questions/{question['id']}/options",
                           json={"option_text": "Green"}, headers=_auth(admin_token))
        assert resp.status_code == 201
        assert resp.json()["display_order"] == 2

        resp = client.get(f"/api/forms/{form['id']}/questions", headers=_auth(admin_token))
        [listed] = resp.json()["questions"]
        assert [o["option_text"] for o in listed["options"]] == ["Red", "Blue", "Green"]
        assert listed["conditions"] == []

    def test_choice_question_needs_options(self, client, admin_token):
        form = _create_form(client, admin_token)
        resp = client.post(f"/api/forms/{form['id']}/questions",
                           json={"question_text": "Pick", "question_type": "dropdown"},
                           headers=_auth(admin_token))
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Dropdown questions must have at least one option"

    def test_update_question_replaces_options(self, client, admin_token):
        form = _create_form(client, admin_token)
        question = _add_question(
            client, admin_token, form["id"], question_text="Pick", question_type="dropdown",
            options=[{"option_text": "A"}],
        )
        resp = client.put(
            f"/api/forms/questions/{question['id']}",
            json={"question_text": "Pick one", "options": [{"option_text": "X"},
                                                           {"option_text": "Y"}]},
            headers=_auth(admin_token),
        )
        assert resp.status_code == 200
        assert resp.json()["question_text"] == "Pick one"
        assert [o["option_text"] for o in resp.json()["options"]] == ["X", "Y"]

    def test_update_question_clears_limit_with_null(self, client, admin_token):
        form = _create_form(client, admin_token)
        question = _add_question(client, admin_token, form["id"], question_text="Bio",
                                 max_length=50)
        assert question["max_length"] == 50

        resp = client.put(f"/api/forms/questions/{question['id']}",
                          json={"max_length": None}, headers=_auth(admin_token))
        assert resp.status_code == 200
        assert resp.json()["max_length"] is None
        assert resp.json()["question_text"] == "Bio"

        resp = client.put(f"/api/forms/questions/{question['id']}",
                          json={"question_text": None}, headers=_auth(admin_token))
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Cannot clear question_text"

    def test_conditions(self, client, admin_token):
        form = _create_form(client, admin_token)
        parent = _add_question(client, admin_token, form["id"], question_text="Staff?")
        child = _add_question(client, admin_token, form["id"], question_text="Team",
                              conditional_type=5)

        resp = client.post(f"/api/forms/questions/{child['id']}/conditions",
                           json={"target_question_id": parent["id"], "operator": "equals",
                                 "expected_value": "yes", "logic_type": "XOR"},
                           headers=_auth(admin_token))
        assert resp.status_code == 422

        resp = client.post(f"/api/forms/questions/{child['id']}/conditions",
                           json={"target_question_id": parent["id"], "operator": "equals",
                                 "expected_value": "yes"},
                           headers=_auth(admin_token))
        assert resp.status_code == 201
        clause = resp.json()
        assert clause["logic_type"] == "AND"

        assert client.delete(f"/api/forms/conditions/{clause['id']}",
                             headers=_auth(admin_token)).status_code == 204
        resp = client.get(f"/api/forms/questions/{child['id']}/conditions",
                          headers=_auth(admin_token))
        assert resp.json() == {"conditions": []}

    def test_duplicate(self, client, admin_token):
        form, _ = _open_form(client, admin_token)
        resp = client.post(f"/api/forms/{form['id']}/duplicate", headers=_auth(admin_token))
        assert resp.status_code == 201
        assert resp.json()["name"] == "Survey (Copy)"
        assert resp.json()["is_draft"] is True

        assert client.post("/api/forms/999/duplicate",
                           headers=_auth(admin_token)).status_code == 404


# ===========================================================================
# Share links & public rendering
# ===========================================================================
class TestPublicEndpoints:
    def test_share_link_hidden_until_published(self, client, admin_token):
        form = _create_form(client, admin_token)
        code = client.post(f"/api/forms/{form['id']}/share-link",
                           headers=_auth(admin_token)).json()["share_code"]
        assert client.get(f"/api/forms/share/{code}").status_code == 404

        client.post(f"/api/forms/{form['id']}/publish", headers=_auth(admin_token))
        resp = client.get(f"/api/forms/share/{code}")
        assert resp.status_code == 200
        assert resp.json()["instance_identifier"] == "main"
        assert resp.json()["form"]["form_type"] == "regular"

    def test_unknown_share_code(self, client):
        resp = client.get("/api/forms/share/nope")
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Share link not found or expired"

    def test_render_marks_required(self, client, admin_token, user_token):
        form, question = _open_form(client, admin_token)
        resp = client.post(f"/api/forms/{form['id']}/render", json={"answers": {}},
                           headers=_auth(user_token))
        assert resp.status_code == 200
        [rendered] = resp.json()["questions"]
        assert rendered["id"] == question["id"]
        assert rendered["is_required"] is True
        assert len(rendered["options"]) == 2

    def test_draft_cannot_be_rendered(self, client, admin_token, user_token):
        form = _create_form(client, admin_token)
        resp = client.post(f"/api/forms/{form['id']}/render", json={},
                           headers=_auth(user_token))
        assert resp.status_code == 404


# ===========================================================================
# Submission & review
# ===========================================================================
class TestSubmissionAndReview:
    def _submit(self, client, token, form_id, answers):
        return client.post(f"/api/forms/{form_id}/submit", json={"answers": answers},
                           headers=_auth(token))

    def test_full_flow(self, client, admin_token, user_token):
        form, question = _open_form(client, admin_token, success_message="Thanks!")

        resp = self._submit(client, user_token, form["id"], {})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Please answer the required questions: Color"

        resp = self._submit(client, user_token, form["id"], {str(question["id"]): "Red"})
        assert resp.status_code == 201, resp.text
        body = resp.json()
        assert body["success_message"] == "Thanks!"
        response_id, token = body["response_id"], body["status_token"]

        resp = self._submit(client, user_token, form["id"], {str(question["id"]): "Red"})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "You have already submitted a response to this form"

        status = client.get(f"/api/forms/status/{token}").json()
        assert status["response_id"] == response_id
        assert status["status"] == "pending"

        pending = client.get(f"/api/forms/{form['id']}/responses/pending",
                             headers=_auth(admin_token)).json()
        assert [r["id"] for r in pending["responses"]] == [response_id]

        resp = client.post(f"/api/forms/responses/{response_id}/approve",
                           json={"notes": "Welcome"}, headers=_auth(admin_token))
        assert resp.status_code == 200
        assert resp.json() == {"id": response_id, "status": "approved", "invite_code": None}

        resp = client.post(f"/api/forms/responses/{response_id}/approve",
                           headers=_auth(admin_token))
        assert resp.status_code == 409
        resp = client.post(f"/api/forms/responses/{response_id}/reject",
                           headers=_auth(admin_token))
        assert resp.status_code == 409

        status = client.get(f"/api/forms/status/{token}").json()
        assert status["status"] == "approved"
        assert status["review_notes"] == "Welcome"

        detail = client.get(f"/api/forms/responses/{response_id}",
                            headers=_auth(admin_token)).json()
        assert detail["user_id"] == SUBMITTER_ID
        assert detail["answers"][0]["answer_text"] == "Red"
        assert detail["workflow"]["reviewed_by"] == 99999

    def test_review_unknown_response(self, client, admin_token):
        for action in ("approve", "reject"):
            resp = client.post(f"/api/forms/responses/999/{action}", headers=_auth(admin_token))
            assert resp.status_code == 404

    def test_unknown_status_token(self, client):
        assert client.get("/api/forms/status/missing").status_code == 404

    def test_invalid_pending_status(self, client, admin_token):
        form = _create_form(client, admin_token)
        resp = client.get(f"/api/forms/{form['id']}/responses/pending?status=9",
                          headers=_auth(admin_token))
        assert resp.status_code == 400

    def test_listing_and_export(self, client, admin_token, user_token):
        form, question = _open_form(client, admin_token)
        self._submit(client, user_token, form["id"], {str(question["id"]): "Blue"})

        listing = client.get(f"/api/forms/{form['id']}/responses?page=1&page_size=10",
                             headers=_auth(admin_token)).json()
        assert listing["total"] == 1
        assert listing["page_size"] == 10
        assert listing["responses"][0]["username"] == "submitter"

        resp = client.get(f"/api/forms/{form['id']}/responses/export",
                          headers=_auth(admin_token))
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert resp.headers["content-disposition"] == (
            f'attachment; filename="form-{form["id"]}-responses.csv"'
        )
        header, row = resp.text.strip().splitlines()
        assert header.endswith(",Color")
        assert row.endswith(",Blue")

        assert client.get("/api/forms/999/responses/export",
                          headers=_auth(admin_token)).status_code == 404

    def test_delete_response(self, client, admin_token, user_token):
        form, question = _open_form(client, admin_token)
        response_id = self._submit(
            client, user_token, form["id"], {str(question["id"]): "Red"}
        ).json()["response_id"]

        assert client.delete(f"/api/forms/responses/{response_id}",
                             headers=_auth(admin_token)).status_code == 204
        assert client.get(f"/api/forms/responses/{response_id}",
                          headers=_auth(admin_token)).status_code == 404

    def test_check_eligibility(self, client, admin_token):
        form, _ = _open_form(client, admin_token)
        resp = client.post(f"/api/forms/{form['id']}/check-eligibility",
                           json={"user_id": 1}, headers=_auth(admin_token))
        assert resp.json() == {
            "eligible": False,
            "reason": "You must be a member of this server to submit this form",
            "can_submit": True,
            "submit_reason": None,
        }
