"""Integration tests for the user profile and todo endpoints."""

import pytest
from fastapi.testclient import TestClient

from tasknest import app as app_module
from tasknest.service.runtime import get_runtime, reset_runtime_for_tests

PASSWORD = "TestPassword123!"


@pytest.fixture
def client():
    return TestClient(app_module.app)


def _account(client, email, user_name="tester"):
    runtime = get_runtime()
    runtime.store.create_user(email, runtime.hashing.hash(PASSWORD), user_name)
    response = client.post("/auth/login", json={"email": email, "password": PASSWORD})
    return {"Authorization": f"Bearer {response.json()['data']['access_token']}"}


@pytest.fixture
def auth_headers(client):
    return _account(client, "owner@example.com", "owner")


class TestUserEndpoints:
    def test_get_profile(self, client, auth_headers):
        response = client.get("/user", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["email"] == "owner@example.com"
        assert data["user_name"] == "owner"
        assert "password" not in data

    def test_rename(self, client, auth_headers):
        response = client.patch("/user", json={"user_name": "renamed"}, headers=auth_headers)

        assert response.status_code == 204
        assert client.get("/user", headers=auth_headers).json()["data"]["user_name"] == "renamed"

    def test_rename_too_short(self, client, auth_headers):
        response = client.patch("/user", json={"user_name": "x"}, headers=auth_headers)
        assert response.status_code == 400

    def test_change_password(self, client, auth_headers):
        response = client.patch(
            "/user/change-password",
            json={"password": PASSWORD, "new_password": "Another123"},
            headers=auth_headers,
        )
        assert response.status_code == 204

        old = client.post(
            "/auth/login", json={"email": "owner@example.com", "password": PASSWORD}
        )
        new = client.post(
            "/auth/login", json={"email": "owner@example.com", "password": "Another123"}
        )
        assert (old.status_code, new.status_code) == (401, 200)

    def test_change_password_wrong_current(self, client, auth_headers):
        response = client.patch(
            "/user/change-password",
            json={"password": "NotMine123", "new_password": "Another123"},
            headers=auth_headers,
        )
        assert response.status_code == 400

    def test_change_password_is_rate_limited(self, client, monkeypatch):
        monkeypatch.setenv("RATE_LIMIT_MAX_REQUESTS", "3")
        reset_runtime_for_tests()
        # the login below spends one request of the window
        headers = _account(client, "limited@example.com")

        statuses = [
            client.patch(
                "/user/change-password",
                json={"password": "NotMine123", "new_password": "Another123"},
                headers=headers,
            ).status_code
            for _ in range(3)
        ]

        assert statuses == [400, 400, 429]


class TestTodoEndpoints:
    def _create(self, client, headers, **body):
        payload = {"title": "write tests", **body}
        response = client.post("/todos", json=payload, headers=headers)
        assert response.status_code == 201
        return response.json()["data"]["todo_id"]

    def test_create_and_get(self, client, auth_headers):
        todo_id = self._create(
            client, auth_headers, content="cover the api", color="green", due_at="2030-01-31"
        )

        response = client.get(f"/todos/{todo_id}", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["todo_id"] == todo_id
        assert data["color"] == "green"
        assert data["due_at"] == "2030-01-31"
        assert data["sequence"] == 1
        assert data["completed_at"] is None

    def test_create_rejects_bad_color(self, client, auth_headers):
        response = client.post(
            "/todos", json={"title": "x", "color": "orange"}, headers=auth_headers
        )
        assert response.status_code == 400

    def test_update_and_patch(self, client, auth_headers):
        todo_id = self._create(client, auth_headers)

        put = client.put(
            f"/todos/{todo_id}", json={"title": "renamed", "color": "red"}, headers=auth_headers
        )
        patch = client.patch(
            f"/todos/{todo_id}", json={"completed": True, "sequence": 7}, headers=auth_headers
        )

        assert (put.status_code, patch.status_code) == (204, 204)
        data = client.get(f"/todos/{todo_id}", headers=auth_headers).json()["data"]
        assert data["title"] == "renamed"
        assert data["sequence"] == 7
        assert data["completed_at"] is not None

    def test_empty_patch(self, client, auth_headers):
        todo_id = self._create(client, auth_headers)
        response = client.patch(f"/todos/{todo_id}", json={}, headers=auth_headers)
        assert response.status_code == 400

    def test_delete(self, client, auth_headers):
        todo_id = self._create(client, auth_headers)

        assert client.delete(f"/todos/{todo_id}", headers=auth_headers).status_code == 204
        assert client.get(f"/todos/{todo_id}", headers=auth_headers).status_code == 404

    def test_other_users_todo_forbidden(self, client, auth_headers):
        todo_id = self._create(client, auth_headers)
        intruder = _account(client, "intruder@example.com")

        response = client.get(f"/todos/{todo_id}", headers=intruder)

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "forbidden"

    def test_list_with_filters(self, client, auth_headers):
        ids = [self._create(client, auth_headers, title=f"task {i}") for i in range(12)]
        client.patch(f"/todos/{ids[0]}", json={"completed": True}, headers=auth_headers)

        first_page = client.get("/todos", headers=auth_headers).json()["data"]
        second_page = client.get(
            "/todos", params={"page": 2, "size": 10}, headers=auth_headers
        ).json()["data"]
        done = client.get(
            "/todos", params={"status": "complete"}, headers=auth_headers
        ).json()["data"]
        search = client.get(
            "/todos",
            params={"search_type": "title", "keyword": "TASK 1"},
            headers=auth_headers,
        ).json()["data"]

        assert first_page["total_count"] == 12
        assert len(first_page["list"]) == 10
        assert [t["sequence"] for t in first_page["list"]] == list(range(1, 11))
        assert len(second_page["list"]) == 2
        assert [t["todo_id"] for t in done["list"]] == [ids[0]]
        # "task 1", "task 10", "task 11"
        assert search["total_count"] == 3

    def test_list_rejects_bad_size(self, client, auth_headers):
        response = client.get("/todos", params={"size": 5}, headers=auth_headers)
        assert response.status_code == 400

    def test_statistics(self, client, auth_headers):
        ids = [self._create(client, auth_headers) for _ in range(3)]
        client.patch(f"/todos/{ids[1]}", json={"completed": True}, headers=auth_headers)

        response = client.get("/todos/statistics", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["data"] == {
            "total_count": 3,
            "completed_count": 1,
            "today_completed_count": 1,
        }
