"""
Test Suite for the HTTP API
===========================
Endpoint behavior through Flask's test client.
"""

from __future__ import annotations

import pytest

from conftest import count_rows
from qbank import interactions
from qbank.errors import TransientError
from qbank.server import create_app

USER = {"X-User-Id": "user-1"}


@pytest.fixture
def client(tmp_db):
    app = create_app({"DB_PATH": tmp_db, "TESTING": True})
    return app.test_client()


class TestHealth:

    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.get_json()["status"] == "healthy"


class TestFavoriteEndpoint:

    def test_toggle(self, client, make_question):
        qid = make_question()

        first = client.post(f"/favorites/{qid}", headers=USER)
        second = client.post(f"/favorites/{qid}", headers=USER)

        assert first.status_code == 200
        assert first.get_json() == {"question_id": qid, "favorited": True}
        assert second.get_json()["favorited"] is False

    def test_missing_identity(self, client, tmp_db, make_question):
        qid = make_question()
        response = client.post(f"/favorites/{qid}")

        assert response.status_code == 401
        assert "error" in response.get_json()
        assert count_rows(tmp_db, "favorites") == 0

    def test_unknown_question(self, client):
        response = client.post("/favorites/999", headers=USER)
        assert response.status_code == 404
        assert "999" in response.get_json()["error"]

    def test_transient_conflict(self, client, make_question, monkeypatch):
        qid = make_question()

        def always_conflicting(*args, **kwargs):
            raise TransientError("kept conflicting")

        monkeypatch.setattr(interactions, "toggle_favorite", always_conflicting)
        response = client.post(f"/favorites/{qid}", headers=USER)
        assert response.status_code == 503

    def test_list(self, client, make_question):
        qid = make_question()
        client.post(f"/favorites/{qid}", headers=USER)

        favorites = client.get("/favorites", headers=USER).get_json()
        assert [f["question_id"] for f in favorites] == [qid]


class TestProgressEndpoint:

    def test_toggle_and_summary(self, client, make_question):
        qid = make_question("First")
        make_question("Second")

        response = client.post(f"/progress/{qid}", headers=USER)
        assert response.get_json() == {"question_id": qid, "completed": True}

        progress = client.get("/progress", headers=USER).get_json()
        assert progress["summary"] == {
            "completed_count": 1,
            "total_count": 2,
            "percent": 50.0,
        }
        assert [c["question_id"] for c in progress["completed"]] == [qid]

    def test_attempts(self, client, make_question):
        qid = make_question()
        client.post(f"/progress/{qid}/attempts", headers=USER)
        response = client.post(f"/progress/{qid}/attempts", headers=USER)
        assert response.get_json()["attempts"] == 2

    def test_unpublished_question(self, client, make_question):
        qid = make_question(published=False)
        response = client.post(f"/progress/{qid}", headers=USER)
        assert response.status_code == 404


class TestQuestionEndpoint:

    def test_read_counts_view(self, client, make_question):
        qid = make_question()
        client.post(f"/favorites/{qid}", headers=USER)

        data = client.get(f"/questions/{qid}", headers=USER).get_json()
        assert data["view_count"] == 1
        assert data["is_favorite"] is True

    def test_anonymous_read(self, client, make_question):
        qid = make_question()
        response = client.get(f"/questions/{qid}")
        assert response.status_code == 200
        assert response.get_json()["is_favorite"] is False

    def test_categories(self, client, make_question):
        make_question()
        categories = client.get("/categories").get_json()
        assert categories[0]["name"] == "C#"
        assert categories[0]["question_count"] == 1
