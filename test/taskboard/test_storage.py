"""
Tests for the local key-value file, LocalStorage and Session.
"""

import json

from taskboard.context import Session
from taskboard.models import Connection, Snapshot, Task, TaskStatus, WorkflowTask
from taskboard.storage import (
    CONNECTIONS_KEY, GROUPS_KEY, TASKS_KEY, WORKFLOW_TASKS_KEY, KeyValueFile, LocalStorage,
)


def sample_snapshot():
    return Snapshot(
        tasks=[
            Task(id="1", text="Write", emoji="✍️", status=TaskStatus.IN_PROGRESS, group="Docs"),
            Task(id="2", text="Ship", status=TaskStatus.DONE),
        ],
        groups=["Docs", "Release"],
        workflow_tasks=[
            WorkflowTask(id="a", title="Draft", x=120.5, y=200),
            WorkflowTask(id="b", title="Review", emoji="👀", description="peer", x=0, y=10),
        ],
        connections=[Connection(from_="a", to="b"), Connection(from_="b", to="a")],
    )


class TestKeyValueFile:

    def test_missing_file_reads_empty(self, tmp_path):
        kv = KeyValueFile(tmp_path / "nested" / "state.json")
        assert kv.get("anything") is None

    def test_set_get_remove(self, tmp_path):
        kv = KeyValueFile(tmp_path / "state.json")
        kv.set("token", "abc")
        kv.update({"a": "1", "b": "2"})
        assert kv.get("token") == "abc"
        assert kv.get("b") == "2"
        kv.remove("token")
        kv.remove("not-there")
        assert kv.get("token") is None
        assert json.loads((tmp_path / "state.json").read_text()) == {"a": "1", "b": "2"}

    def test_corrupt_file_reads_empty(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")
        kv = KeyValueFile(path)
        assert kv.get("token") is None
        kv.set("token", "fresh")
        assert kv.get("token") == "fresh"

    def test_no_temp_files_left_behind(self, tmp_path):
        kv = KeyValueFile(tmp_path / "state.json")
        for i in range(5):
            kv.set("k", str(i))
        assert sorted(p.name for p in tmp_path.iterdir()) == ["state.json"]


class TestLocalStorage:

    def test_save_all_then_load_all_round_trip(self, kv):
        storage = LocalStorage(kv)
        snapshot = sample_snapshot()
        storage.save_all(snapshot)
        loaded = storage.load_all()

        assert {t.id: t for t in loaded.tasks} == {t.id: t for t in snapshot.tasks}
        assert set(loaded.groups) == set(snapshot.groups)
        assert {t.id: t for t in loaded.workflow_tasks} == {t.id: t for t in snapshot.workflow_tasks}
        assert set(loaded.connections) == set(snapshot.connections)

    def test_uses_browser_storage_keys(self, kv):
        LocalStorage(kv).save_all(sample_snapshot())
        assert json.loads(kv.get(TASKS_KEY))[0]["createdAt"]
        assert json.loads(kv.get(GROUPS_KEY)) == ["Docs", "Release"]
        assert json.loads(kv.get(WORKFLOW_TASKS_KEY))[0]["title"] == "Draft"
        assert json.loads(kv.get(CONNECTIONS_KEY))[0] == {"from": "a", "to": "b"}

    def test_empty_state_loads_empty_snapshot(self, kv):
        assert LocalStorage(kv).load_all() == Snapshot()

    def test_corrupt_collection_loads_empty(self, kv):
        kv.set(TASKS_KEY, "[{broken")
        kv.set(GROUPS_KEY, json.dumps({"not": "a list"}))
        kv.set(CONNECTIONS_KEY, json.dumps([{"from": "a", "to": "b"}, {"oops": 1}]))
        loaded = LocalStorage(kv).load_all()
        assert loaded.tasks == []
        assert loaded.groups == []
        assert loaded.connections == [Connection(from_="a", to="b")]

    def test_non_string_group_entries_are_skipped(self, kv, caplog):
        kv.set(GROUPS_KEY, json.dumps(["Docs", None, 7, "Code"]))
        assert LocalStorage(kv).load_all().groups == ["Docs", "Code"]
        assert "Skipping non-string entry" in caplog.text

    def test_numeric_legacy_ids_load_as_strings(self, kv):
        kv.set(TASKS_KEY, json.dumps([{"id": 1712345678901, "text": "old", "emoji": "📝",
                                        "status": "done", "group": None,
                                        "createdAt": "2024-04-05T12:00:00.000Z"}]))
        loaded = LocalStorage(kv).load_all()
        assert loaded.tasks[0].id == "1712345678901"

    def test_board_hooks_leave_workflow_keys_alone(self, kv, local_app):
        local_app.workflow.create_workflow_task("Node")
        before = kv.get(WORKFLOW_TASKS_KEY)
        local_app.board.create("Card")
        assert kv.get(WORKFLOW_TASKS_KEY) == before
        assert len(json.loads(kv.get(TASKS_KEY))) == 1


class TestSession:

    def test_save_and_clear(self, kv):
        session = Session(kv)
        assert not session.is_authenticated
        session.save("tok", {"id": "1", "username": "alice", "email": "a@example.com"})
        assert session.token == "tok"
        assert session.user["username"] == "alice"
        session.clear()
        assert session.token is None
        assert session.user == {}

    def test_corrupt_user_profile(self, kv):
        kv.set("user", "{nope")
        assert Session(kv).user == {}
