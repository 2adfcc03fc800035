"""
Task Store and Board Controller

TaskStore is the in-memory kanban collection plus the ordered group
registry. BoardController validates user input, gates destructive actions
behind confirmation, persists through the storage adapter and asks the
renderer to refresh.
"""

import logging
import time
from typing import Any, Dict, List, Optional

from .context import AppContext
from .errors import TransportError, ValidationFailure
from .models import (
    GROUP_EXISTS, GROUP_NAME_REQUIRED, STATUS_ORDER, Task, TaskStatus,
    normalize_emoji, require_text,
)

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("text", "emoji", "status", "group")


class TaskStore:
    """In-memory Task collection and Group registry."""

    def __init__(self, tasks: Optional[List[Task]] = None, groups: Optional[List[str]] = None):
        self.tasks: List[Task] = list(tasks or [])
        self.groups: List[str] = list(groups or [])

    def replace_all(self, tasks: List[Task], groups: List[str]) -> None:
        self.tasks = list(tasks)
        self.groups = list(groups)

    def new_id(self) -> str:
        """Millisecond timestamp, bumped past any id already in use."""
        candidate = int(time.time() * 1000)
        taken = {t.id for t in self.tasks}
        while str(candidate) in taken:
            candidate += 1
        return str(candidate)

    def get(self, task_id: str) -> Optional[Task]:
        task_id = str(task_id)
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def list_by_status(self, status: TaskStatus) -> List[Task]:
        return [t for t in self.tasks if t.status == status]

    def list_by_status_and_group(self, status: TaskStatus, group: Optional[str]) -> List[Task]:
        """
        Tasks in ``status`` belonging to ``group``.

        ``group=None`` selects the ungrouped section, which also holds tasks
        whose group is not in the registry.
        """
        status = TaskStatus(status)
        if group is None:
            return [t for t in self.tasks
                    if t.status == status and (t.group is None or t.group not in self.groups)]
        return [t for t in self.tasks if t.status == status and t.group == group]

    def counts(self) -> Dict[TaskStatus, int]:
        return {status: len(self.list_by_status(status)) for status in STATUS_ORDER}

    def add(self, task: Task) -> Task:
        self.tasks.append(task)
        return task

    def swap(self, old_id: str, task: Task) -> None:
        """Replace the task stored under ``old_id`` (e.g. with a server-assigned copy)."""
        for index, existing in enumerate(self.tasks):
            if existing.id == old_id:
                self.tasks[index] = task
                return

    def apply(self, task_id: str, fields: Dict[str, Any]) -> Optional[Task]:
        task = self.get(task_id)
        if task is None:
            return None
        updated = task.model_copy(update=fields)
        self.swap(task.id, updated)
        return updated

    def remove(self, task_id: str) -> Optional[Task]:
        task = self.get(task_id)
        if task is not None:
            self.tasks = [t for t in self.tasks if t.id != task.id]
        return task

    def add_group(self, name: str) -> str:
        """
        Register a group name.

        Raises:
            ValidationFailure: name trims empty or already exists verbatim
        """
        name = require_text(name, GROUP_NAME_REQUIRED)
        if name in self.groups:
            raise ValidationFailure(GROUP_EXISTS)
        self.groups.append(name)
        return name

    def remove_group(self, name: str) -> Optional[List[Task]]:
        """Drop a group and ungroup its members. Returns the affected tasks, or None if unknown."""
        if name not in self.groups:
            return None
        self.groups = [g for g in self.groups if g != name]
        affected = []
        for index, task in enumerate(self.tasks):
            if task.group == name:
                self.tasks[index] = task.model_copy(update={"group": None})
                affected.append(self.tasks[index])
        return affected


def quick_move_targets(status: TaskStatus) -> List[TaskStatus]:
    """The two statuses a card's quick-move buttons point at, in column order."""
    status = TaskStatus(status)
    return [s for s in STATUS_ORDER if s != status]


class BoardController:
    """
    Orchestrates Task Store mutations for the kanban board.

    Every successful mutation is persisted through ``context.storage`` and
    followed by ``context.refresh()``.
    """

    def __init__(self, context: AppContext, store: Optional[TaskStore] = None):
        self.context = context
        self.store = store or TaskStore()

    @property
    def storage(self):
        return self.context.storage

    def list_by_status_and_group(self, status: TaskStatus, group: Optional[str] = None) -> List[Task]:
        return self.store.list_by_status_and_group(status, group)

    def _register_group(self, group: Optional[str]) -> Optional[str]:
        """Trim a task's group name, registering it first if it is new."""
        group = (group or "").strip() or None
        if group is not None and group not in self.store.groups:
            self.store.add_group(group)
            self.storage.group_created(group, self.store)
        return group

    def create(self, text: str, emoji: Optional[str] = None,
               status: TaskStatus = TaskStatus.NOT_STARTED, group: Optional[str] = None) -> Optional[Task]:
        """
        Add a task.

        Returns:
            The stored task, or None after a validation or transport failure
        """
        try:
            text = require_text(text)
        except ValidationFailure as e:
            self.context.alert(str(e))
            return None

        draft = self.store.add(Task(
            id=self.store.new_id(),
            text=text,
            emoji=normalize_emoji(emoji),
            status=TaskStatus(status),
            group=self._register_group(group),
        ))
        try:
            saved = self.storage.task_created(draft, self.store)
        except TransportError as e:
            logger.error(f"Error saving task: {e}")
            self.store.remove(draft.id)
            self.context.alert("Failed to create task")
            return None
        if saved.id != draft.id or saved != draft:
            self.store.swap(draft.id, saved)
        self.context.refresh()
        return saved

    def update(self, task_id: str, **fields) -> Optional[Task]:
        """
        Partially update text, emoji, status and/or group.

        Unknown ids are a silent no-op. Passing ``group=None`` ungroups; an
        unseen group name is registered first.
        """
        unknown = set(fields) - set(EDITABLE_FIELDS)
        if unknown:
            raise TypeError(f"Cannot update task fields: {sorted(unknown)}")
        if self.store.get(task_id) is None:
            return None
        if "text" in fields:
            try:
                fields["text"] = require_text(fields["text"])
            except ValidationFailure as e:
                self.context.alert(str(e))
                return None
        if "emoji" in fields:
            fields["emoji"] = (fields["emoji"] or "").strip()
        if "status" in fields:
            fields["status"] = TaskStatus(fields["status"])
        if "group" in fields:
            fields["group"] = self._register_group(fields["group"])

        task = self.store.apply(task_id, fields)
        self.storage.task_updated(task, fields, self.store)
        self.context.refresh()
        return task

    def move(self, task_id: str, new_status: TaskStatus) -> Optional[Task]:
        """Change status only; used by drag/drop and the quick-move buttons."""
        if self.store.get(task_id) is None:
            return None
        fields = {"status": TaskStatus(new_status)}
        task = self.store.apply(task_id, fields)
        self.storage.task_updated(task, fields, self.store)
        self.context.refresh()
        return task

    def delete(self, task_id: str) -> bool:
        if self.store.get(task_id) is None:
            return False
        if not self.context.confirm("Delete this task?"):
            return False
        task = self.store.remove(task_id)
        self.storage.task_deleted(task.id, self.store)
        self.context.refresh()
        return True

    def create_group(self, name: str) -> Optional[str]:
        try:
            name = self.store.add_group(name)
        except ValidationFailure as e:
            self.context.alert(str(e))
            return None
        self.storage.group_created(name, self.store)
        self.context.refresh()
        return name

    def delete_group(self, name: str) -> bool:
        """Remove a group after confirmation; its tasks fall back to ungrouped."""
        if name not in self.store.groups:
            return False
        if not self.context.confirm(f'Delete group "{name}" and move all tasks to ungrouped?'):
            return False
        affected = self.store.remove_group(name)
        logger.info(f"Deleted group {name!r}; {len(affected)} tasks ungrouped")
        self.storage.group_deleted(name, self.store)
        self.context.refresh()
        return True

    def counts(self) -> Dict[TaskStatus, int]:
        return self.store.counts()
