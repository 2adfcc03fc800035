"""
Workflow Store and Workflow Controller

Positioned workflow nodes, the directed connections between them, and the
click-to-connect state machine used while connection mode is active.
"""

import logging
import random
import time
from dataclasses import dataclass
from typing import List, Optional

from .context import AppContext
from .errors import ValidationFailure
from .models import Connection, WorkflowTask, require_text

logger = logging.getLogger(__name__)

SPAWN_OFFSET = 100
SPAWN_RANGE = 200


class WorkflowStore:
    """In-memory WorkflowTask collection and Connection set."""

    def __init__(self, tasks: Optional[List[WorkflowTask]] = None,
                 connections: Optional[List[Connection]] = None):
        self.tasks: List[WorkflowTask] = list(tasks or [])
        self.connections: List[Connection] = list(connections or [])

    def replace_all(self, tasks: List[WorkflowTask], connections: List[Connection]) -> None:
        self.tasks = list(tasks)
        self.connections = list(connections)

    def new_id(self) -> str:
        candidate = int(time.time() * 1000)
        taken = {t.id for t in self.tasks}
        while str(candidate) in taken:
            candidate += 1
        return str(candidate)

    def get(self, task_id: str) -> Optional[WorkflowTask]:
        task_id = str(task_id)
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def add(self, task: WorkflowTask) -> WorkflowTask:
        self.tasks.append(task)
        return task

    def replace(self, task: WorkflowTask) -> None:
        for index, existing in enumerate(self.tasks):
            if existing.id == task.id:
                self.tasks[index] = task
                return

    def remove(self, task_id: str) -> Optional[WorkflowTask]:
        """Delete a node and every connection touching it."""
        task = self.get(task_id)
        if task is None:
            return None
        self.tasks = [t for t in self.tasks if t.id != task.id]
        self.connections = [c for c in self.connections
                            if c.from_ != task.id and c.to != task.id]
        return task

    def has_connection(self, from_id: str, to_id: str) -> bool:
        return any(c.from_ == from_id and c.to == to_id for c in self.connections)

    def connect(self, from_id: str, to_id: str) -> Optional[Connection]:
        """Insert a directed edge. An identical ordered pair is rejected with None."""
        if self.has_connection(from_id, to_id):
            return None
        connection = Connection(from_=from_id, to=to_id)
        self.connections.append(connection)
        return connection


@dataclass
class ConnectionState:
    """Connection mode flag plus the pending source of a click-to-connect gesture."""

    active: bool = False
    source: Optional[str] = None


class WorkflowController:
    """
    Orchestrates Workflow Store mutations.

    Node drags are split in two: ``reposition`` follows the pointer and only
    refreshes, ``commit_position`` runs on drop and persists once.
    """

    def __init__(self, context: AppContext, store: Optional[WorkflowStore] = None,
                 rng: Optional[random.Random] = None):
        self.context = context
        self.store = store or WorkflowStore()
        self.state = ConnectionState()
        self.rng = rng or random.Random()

    def _persist(self) -> None:
        self.context.storage.workflow_changed(self.store)
        self.context.refresh()

    def create_workflow_task(self, title: str, emoji: Optional[str] = "",
                             description: Optional[str] = "") -> Optional[WorkflowTask]:
        try:
            title = require_text(title)
        except ValidationFailure as e:
            self.context.alert(str(e))
            return None

        task = self.store.add(WorkflowTask(
            id=self.store.new_id(),
            title=title,
            emoji=(emoji or "").strip(),
            description=(description or "").strip(),
            x=SPAWN_OFFSET + self.rng.random() * SPAWN_RANGE,
            y=SPAWN_OFFSET + self.rng.random() * SPAWN_RANGE,
        ))
        self._persist()
        return task

    def update_workflow_task(self, task_id: str, title: Optional[str] = None,
                             emoji: Optional[str] = None,
                             description: Optional[str] = None) -> Optional[WorkflowTask]:
        """Edit title/emoji/description in place; None leaves a field unchanged."""
        task = self.store.get(task_id)
        if task is None:
            return None
        changes = {}
        if title is not None:
            try:
                changes["title"] = require_text(title)
            except ValidationFailure as e:
                self.context.alert(str(e))
                return None
        if emoji is not None:
            changes["emoji"] = emoji.strip()
        if description is not None:
            changes["description"] = description.strip()

        updated = task.model_copy(update=changes)
        self.store.replace(updated)
        self._persist()
        return updated

    def delete_workflow_task(self, task_id: str) -> bool:
        if self.store.get(task_id) is None:
            return False
        if not self.context.confirm("Delete this workflow task?"):
            return False
        self.store.remove(task_id)
        if self.state.source == str(task_id):
            self.state.source = None
        self._persist()
        return True

    def reposition(self, task_id: str, x: float, y: float) -> Optional[WorkflowTask]:
        if self.state.active:
            return None
        task = self.store.get(task_id)
        if task is None:
            return None
        moved = task.model_copy(update={"x": max(0.0, float(x)), "y": max(0.0, float(y))})
        self.store.replace(moved)
        self.context.refresh()
        return moved

    def commit_position(self, task_id: str) -> bool:
        """Persist the node's current position at the end of a drag."""
        if self.store.get(task_id) is None:
            return False
        self._persist()
        return True

    def place(self, task_id: str, x: float, y: float) -> Optional[WorkflowTask]:
        """A whole drag gesture in one call: move, then drop."""
        moved = self.reposition(task_id, x, y)
        if moved is not None:
            self.commit_position(task_id)
        return moved

    def enter_connection_mode(self) -> None:
        self.state.active = True
        self.state.source = None
        self.context.refresh()

    def exit_connection_mode(self) -> None:
        self.state.active = False
        self.state.source = None
        self.context.refresh()

    def toggle_connection_mode(self) -> bool:
        if self.state.active:
            self.exit_connection_mode()
        else:
            self.enter_connection_mode()
        return self.state.active

    def select_for_connection(self, task_id: str) -> Optional[Connection]:
        """
        Advance the click-to-connect state machine.

        Idle -> Pending(task_id). Pending(s) with the same id stays pending.
        Pending(s) with another id t tries to insert s->t and returns to Idle
        whether or not the insert happened.

        Returns:
            The new Connection, or None when nothing was inserted
        """
        if not self.state.active:
            return None
        task_id = str(task_id)
        if self.store.get(task_id) is None:
            return None

        source = self.state.source
        if source is None:
            self.state.source = task_id
            self.context.refresh()
            return None
        if source == task_id:
            return None

        connection = self.store.connect(source, task_id)
        self.state.source = None
        if connection is None:
            logger.debug(f"Connection {source} -> {task_id} already exists")
            self.context.refresh()
            return None
        self._persist()
        return connection

    def connect(self, from_id: str, to_id: str) -> Optional[Connection]:
        """Run a full two-click selection, entering connection mode if needed."""
        was_active = self.state.active
        if not was_active:
            self.enter_connection_mode()
        self.state.source = None
        self.select_for_connection(from_id)
        connection = self.select_for_connection(to_id)
        if not was_active:
            self.exit_connection_mode()
        return connection

    def clear_connections(self) -> bool:
        if not self.context.confirm("Clear all connections?"):
            return False
        self.store.connections = []
        self._persist()
        return True
