"""
Tests for WorkflowStore and WorkflowController: node lifecycle, drag clamping,
the click-to-connect state machine and connection cascades.
"""

import random
from unittest.mock import MagicMock

import pytest

from taskboard.context import AppContext, ScriptedPrompter
from taskboard.models import Connection
from taskboard.workflow import WorkflowController


@pytest.fixture
def storage():
    return MagicMock()


@pytest.fixture
def controller(storage):
    context = AppContext(storage=storage, prompter=ScriptedPrompter(answer=True))
    return WorkflowController(context, rng=random.Random(3))


def pairs(controller):
    return [(c.from_, c.to) for c in controller.store.connections]


class TestWorkflowTasks:

    def test_create_places_node_in_spawn_range(self, controller, storage):
        for i in range(20):
            node = controller.create_workflow_task(f"Step {i}")
            assert 100 <= node.x < 300
            assert 100 <= node.y < 300
        assert storage.workflow_changed.call_count == 20

    def test_create_rejects_blank_title(self, controller, storage):
        assert controller.create_workflow_task("  ") is None
        assert controller.store.tasks == []
        assert controller.context.prompter.alerts == ["Please enter a task name!"]
        storage.workflow_changed.assert_not_called()

    def test_create_ids_are_unique(self, controller):
        ids = {controller.create_workflow_task(f"n{i}").id for i in range(10)}
        assert len(ids) == 10

    def test_update_leaves_none_fields(self, controller):
        node = controller.create_workflow_task("Plan", emoji="🗺️", description="outline")
        updated = controller.update_workflow_task(node.id, description="detailed")
        assert updated.title == "Plan"
        assert updated.emoji == "🗺️"
        assert updated.description == "detailed"
        assert (updated.x, updated.y) == (node.x, node.y)

    def test_update_unknown_id_is_noop(self, controller, storage):
        assert controller.update_workflow_task("missing", title="x") is None
        storage.workflow_changed.assert_not_called()

    def test_delete_cascades_only_touching_connections(self, controller):
        a, b, c = (controller.create_workflow_task(t) for t in "ABC")
        controller.connect(a.id, b.id)
        controller.connect(c.id, a.id)
        controller.connect(b.id, c.id)

        assert controller.delete_workflow_task(a.id) is True
        assert controller.context.prompter.confirmations == ["Delete this workflow task?"]
        assert pairs(controller) == [(b.id, c.id)]

    def test_delete_declined(self, controller):
        node = controller.create_workflow_task("Keep")
        controller.context.prompter.answer = False
        assert controller.delete_workflow_task(node.id) is False
        assert controller.store.get(node.id) is not None


class TestDragging:

    def test_reposition_clamps_at_zero_without_upper_bound(self, controller, storage):
        node = controller.create_workflow_task("Drag")
        storage.reset_mock()
        moved = controller.reposition(node.id, -50, 5000)
        assert (moved.x, moved.y) == (0.0, 5000.0)
        storage.workflow_changed.assert_not_called()

    def test_commit_position_persists_once(self, controller, storage):
        node = controller.create_workflow_task("Drag")
        storage.reset_mock()
        for step in range(5):
            controller.reposition(node.id, 10 * step, 10 * step)
        assert controller.commit_position(node.id) is True
        storage.workflow_changed.assert_called_once()

    def test_reposition_ignored_in_connection_mode(self, controller):
        node = controller.create_workflow_task("Pinned")
        controller.enter_connection_mode()
        assert controller.reposition(node.id, 1, 1) is None
        assert controller.store.get(node.id).x == node.x


class TestConnectionMode:

    def test_select_outside_connection_mode_is_noop(self, controller):
        a = controller.create_workflow_task("A")
        assert controller.select_for_connection(a.id) is None
        assert controller.state.source is None

    def test_entering_and_exiting_clear_pending_source(self, controller):
        a = controller.create_workflow_task("A")
        controller.enter_connection_mode()
        controller.select_for_connection(a.id)
        assert controller.state.source == a.id
        controller.exit_connection_mode()
        assert controller.state.source is None
        assert controller.toggle_connection_mode() is True
        assert controller.state.source is None

    def test_same_node_twice_stays_pending(self, controller):
        a = controller.create_workflow_task("A")
        controller.enter_connection_mode()
        controller.select_for_connection(a.id)
        assert controller.select_for_connection(a.id) is None
        assert controller.state.source == a.id
        assert controller.store.connections == []

    def test_duplicate_edges_rejected_reverse_allowed(self, controller):
        a = controller.create_workflow_task("A")
        b = controller.create_workflow_task("B")
        controller.enter_connection_mode()

        assert controller.select_for_connection(a.id) is None
        assert controller.select_for_connection(b.id) == Connection(from_=a.id, to=b.id)
        assert controller.state.source is None

        controller.select_for_connection(a.id)
        assert controller.select_for_connection(b.id) is None
        assert controller.state.source is None

        controller.select_for_connection(b.id)
        controller.select_for_connection(a.id)
        assert pairs(controller) == [(a.id, b.id), (b.id, a.id)]

    def test_unknown_id_does_not_change_state(self, controller):
        controller.enter_connection_mode()
        assert controller.select_for_connection("ghost") is None
        assert controller.state.source is None

    def test_clear_connections(self, controller):
        a = controller.create_workflow_task("A")
        b = controller.create_workflow_task("B")
        controller.connect(a.id, b.id)
        controller.context.prompter.answer = False
        assert controller.clear_connections() is False
        assert len(controller.store.connections) == 1
        controller.context.prompter.answer = True
        assert controller.clear_connections() is True
        assert controller.store.connections == []
        assert controller.context.prompter.confirmations == ["Clear all connections?"] * 2


class TestConnectScenario:

    def test_connect_then_delete_source(self, local_app):
        workflow = local_app.workflow
        a = workflow.create_workflow_task("A")
        b = workflow.create_workflow_task("B")
        workflow.enter_connection_mode()
        workflow.select_for_connection(a.id)
        workflow.select_for_connection(b.id)
        assert pairs(workflow) == [(a.id, b.id)]

        workflow.delete_workflow_task(a.id)
        assert workflow.store.connections == []
        assert local_app.context.storage.load_all().connections == []
