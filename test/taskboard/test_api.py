"""
Tests for the FastAPI backend: auth gate, per-user task/group/workflow
routes and whole-board replacement.
"""

from unittest.mock import patch

from conftest import register_user


class TestHealth:

    def test_healthz(self, client):
        response = client.get("/healthz")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database_connected"] is True


class TestAuth:

    def test_register_returns_token_and_user(self, client):
        response = client.post("/api/auth/register", json={
            "username": "bob", "email": "bob@example.com", "password": "pw"})
        assert response.status_code == 201
        data = response.json()
        assert data["message"] == "User registered successfully"
        assert data["token"]
        assert data["user"]["username"] == "bob"
        assert "password_hash" not in data["user"]

    def test_register_missing_field(self, client):
        response = client.post("/api/auth/register", json={"username": "bob", "password": "pw"})
        assert response.status_code == 400
        assert response.json()["detail"] == "All fields required"

    def test_register_duplicate(self, client):
        register_user(client, "bob")
        response = client.post("/api/auth/register", json={
            "username": "bob", "email": "other@example.com", "password": "pw"})
        assert response.status_code == 400
        assert response.json()["detail"] == "User already exists"

    def test_login(self, client):
        register_user(client, "carol", password="hunter2")
        ok = client.post("/api/auth/login", json={"username": "carol", "password": "hunter2"})
        assert ok.status_code == 200
        assert ok.json()["token"]
        bad = client.post("/api/auth/login", json={"username": "carol", "password": "nope"})
        assert bad.status_code == 401
        assert bad.json()["detail"] == "Invalid credentials"

    def test_me_and_logout(self, client, auth):
        token, headers = auth
        me = client.get("/api/auth/me", headers=headers)
        assert me.json()["user"]["username"] == "alice"
        assert client.post("/api/auth/logout", headers=headers).json() == {"success": True}
        assert client.get("/api/auth/me", headers=headers).status_code == 401

    def test_missing_or_bad_token(self, client):
        assert client.get("/api/tasks").status_code == 401
        response = client.get("/api/tasks", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401
        assert response.json() == {"detail": "Not authenticated"}

    def test_expired_token_rejected(self, client, db):
        register_user(client, "dave")
        user = db.get_user_by_username("dave")
        db.create_session("stale", user["id"], ttl_seconds=-1)
        response = client.get("/api/tasks", headers={"Authorization": "Bearer stale"})
        assert response.status_code == 401


class TestTasks:

    def test_create_defaults(self, client, auth):
        _, headers = auth
        response = client.post("/api/tasks", json={"text": "  First  "}, headers=headers)
        assert response.status_code == 201
        task = response.json()
        assert task["text"] == "First"
        assert task["emoji"] == "📝"
        assert task["status"] == "not-started"
        assert task["group"] is None
        assert task["createdAt"].endswith("Z")
        assert isinstance(task["id"], str)

    def test_create_blank_text_is_422(self, client, auth):
        _, headers = auth
        response = client.post("/api/tasks", json={"text": "   "}, headers=headers)
        assert response.status_code == 422

    def test_create_bad_status_is_422(self, client, auth):
        _, headers = auth
        response = client.post("/api/tasks", json={"text": "x", "status": "blocked"}, headers=headers)
        assert response.status_code == 422

    def test_create_registers_unseen_group(self, client, auth):
        _, headers = auth
        client.post("/api/groups", json={"name": "First"}, headers=headers)
        client.post("/api/tasks", json={"text": "x", "group": "Second"}, headers=headers)
        client.post("/api/tasks", json={"text": "y", "group": "First"}, headers=headers)
        assert client.get("/api/groups", headers=headers).json() == ["First", "Second"]

    def test_partial_update(self, client, auth):
        _, headers = auth
        task = client.post("/api/tasks", json={"text": "x", "group": "G"}, headers=headers).json()

        moved = client.put(f"/api/tasks/{task['id']}", json={"status": "done"}, headers=headers).json()
        assert moved["status"] == "done"
        assert moved["group"] == "G"
        assert moved["text"] == "x"

        ungrouped = client.put(f"/api/tasks/{task['id']}", json={"group": None}, headers=headers).json()
        assert ungrouped["group"] is None
        assert ungrouped["status"] == "done"

    def test_update_null_text_is_ignored(self, client, auth):
        _, headers = auth
        task = client.post("/api/tasks", json={"text": "keep"}, headers=headers).json()
        response = client.put(f"/api/tasks/{task['id']}", json={"text": None, "emoji": "🔥"},
                              headers=headers)
        assert response.status_code == 200
        assert response.json()["text"] == "keep"
        assert response.json()["emoji"] == "🔥"

    def test_update_and_delete_unknown(self, client, auth):
        _, headers = auth
        assert client.put("/api/tasks/999", json={"status": "done"}, headers=headers).status_code == 404
        assert client.delete("/api/tasks/999", headers=headers).status_code == 404

    def test_delete(self, client, auth):
        _, headers = auth
        task = client.post("/api/tasks", json={"text": "x"}, headers=headers).json()
        response = client.delete(f"/api/tasks/{task['id']}", headers=headers)
        assert response.json() == {"success": True, "task_id": task["id"]}
        assert client.get("/api/tasks", headers=headers).json() == []

    def test_users_are_isolated(self, client, auth):
        _, alice = auth
        _, bob = register_user(client, "bob")
        task = client.post("/api/tasks", json={"text": "alice only"}, headers=alice).json()

        assert client.get("/api/tasks", headers=bob).json() == []
        assert client.put(f"/api/tasks/{task['id']}", json={"text": "hijack"}, headers=bob).status_code == 404
        assert client.delete(f"/api/tasks/{task['id']}", headers=bob).status_code == 404
        assert client.get("/api/tasks", headers=alice).json()[0]["text"] == "alice only"

    def test_database_error_is_500(self, client, auth):
        _, headers = auth
        with patch("taskboard.database.TaskDatabase.list_tasks", side_effect=RuntimeError("disk")):
            response = client.get("/api/tasks", headers=headers)
        assert response.status_code == 500
        assert response.json()["detail"] == "Failed to retrieve tasks"


class TestGroups:

    def test_create_duplicate_and_blank(self, client, auth):
        _, headers = auth
        assert client.post("/api/groups", json={"name": "Docs"}, headers=headers).status_code == 201
        dup = client.post("/api/groups", json={"name": "Docs"}, headers=headers)
        assert dup.status_code == 409
        assert client.post("/api/groups", json={"name": "docs"}, headers=headers).status_code == 201
        assert client.post("/api/groups", json={"name": " "}, headers=headers).status_code == 422

    def test_delete_cascades_for_owner_only(self, client, auth):
        _, alice = auth
        _, bob = register_user(client, "bob")
        mine = client.post("/api/tasks", json={"text": "a", "group": "Docs"}, headers=alice).json()
        theirs = client.post("/api/tasks", json={"text": "b", "group": "Docs"}, headers=bob).json()

        response = client.delete("/api/groups/Docs", headers=alice)
        assert response.json() == {"success": True, "name": "Docs", "ungrouped_tasks": 1}

        assert client.get("/api/tasks", headers=alice).json()[0]["group"] is None
        assert client.get("/api/tasks", headers=bob).json()[0]["group"] == "Docs"
        assert client.get("/api/groups", headers=bob).json() == ["Docs"]
        assert mine["id"] != theirs["id"]

    def test_delete_unknown_group(self, client, auth):
        _, headers = auth
        assert client.delete("/api/groups/Nope", headers=headers).status_code == 404

    def test_group_name_with_slash(self, client, auth):
        _, headers = auth
        client.post("/api/groups", json={"name": "a/b"}, headers=headers)
        response = client.delete("/api/groups/a%2Fb", headers=headers)
        assert response.status_code == 200
        assert response.json()["name"] == "a/b"


class TestWorkflow:

    def test_created_empty_on_first_access(self, client, auth):
        _, headers = auth
        assert client.get("/api/workflow", headers=headers).json() == {"tasks": [], "connections": []}

    def test_save_and_reload(self, client, auth):
        _, headers = auth
        document = {
            "tasks": [{"id": "1", "title": "A", "emoji": "", "description": "", "x": 150.0, "y": 120.0},
                      {"id": "2", "title": "B", "emoji": "🅱️", "description": "d", "x": 0, "y": 0}],
            "connections": [{"from": "1", "to": "2"}],
        }
        saved = client.post("/api/workflow", json=document, headers=headers)
        assert saved.status_code == 200
        loaded = client.get("/api/workflow", headers=headers).json()
        assert loaded["connections"] == [{"from": "1", "to": "2"}]
        assert [t["title"] for t in loaded["tasks"]] == ["A", "B"]

    def test_invalid_document_is_422(self, client, auth):
        _, headers = auth
        response = client.post("/api/workflow", json={"tasks": [{"title": "no id"}]}, headers=headers)
        assert response.status_code == 422


class TestBoard:

    def test_replace_and_fetch(self, client, auth):
        _, headers = auth
        client.post("/api/tasks", json={"text": "old"}, headers=headers)
        snapshot = {
            "tasks": [{"id": "x", "text": "new", "emoji": "🆕", "status": "done", "group": "G",
                       "createdAt": "2024-01-01T00:00:00.000000Z"}],
            "groups": ["H"],
            "workflowTasks": [{"id": "n", "title": "Node", "x": 1, "y": 2}],
            "connections": [],
        }
        response = client.put("/api/board", json=snapshot, headers=headers)
        assert response.status_code == 200
        assert response.json()["tasks"] == 1

        board = client.get("/api/board", headers=headers).json()
        assert [t["text"] for t in board["tasks"]] == ["new"]
        assert board["tasks"][0]["createdAt"] == "2024-01-01T00:00:00.000000Z"
        assert board["groups"] == ["H", "G"]
        assert board["workflowTasks"][0]["title"] == "Node"
