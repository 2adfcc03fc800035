"""
Typed user commands and the dispatcher that routes them to the controllers.

Each gesture the renderer can produce is a frozen dataclass. Handlers are
looked up in a registry keyed by command type.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Type

from .models import TaskStatus

logger = logging.getLogger(__name__)

BOARD_VIEW = "board"
WORKFLOW_VIEW = "workflow"
VIEWS = (BOARD_VIEW, WORKFLOW_VIEW)

_UNSET = object()


@dataclass(frozen=True)
class CreateTask:
    text: str
    emoji: Optional[str] = None
    status: TaskStatus = TaskStatus.NOT_STARTED
    group: Optional[str] = None


@dataclass(frozen=True)
class UpdateTask:
    """Fields left as ``_UNSET`` are not touched; ``group=None`` ungroups."""
    task_id: str
    text: Any = _UNSET
    emoji: Any = _UNSET
    status: Any = _UNSET
    group: Any = _UNSET

    def changes(self) -> Dict[str, Any]:
        fields = {
            "text": self.text,
            "emoji": self.emoji,
            "status": self.status,
            "group": self.group,
        }
        return {k: v for k, v in fields.items() if v is not _UNSET}


@dataclass(frozen=True)
class MoveTask:
    task_id: str
    status: TaskStatus


@dataclass(frozen=True)
class DeleteTask:
    task_id: str


@dataclass(frozen=True)
class CreateGroup:
    name: str


@dataclass(frozen=True)
class DeleteGroup:
    name: str


@dataclass(frozen=True)
class CreateWorkflowTask:
    title: str
    emoji: str = ""
    description: str = ""


@dataclass(frozen=True)
class UpdateWorkflowTask:
    task_id: str
    title: Optional[str] = None
    emoji: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class DeleteWorkflowTask:
    task_id: str


@dataclass(frozen=True)
class RepositionWorkflowTask:
    task_id: str
    x: float
    y: float


@dataclass(frozen=True)
class CommitWorkflowPosition:
    task_id: str


@dataclass(frozen=True)
class ToggleConnectionMode:
    pass


@dataclass(frozen=True)
class SelectForConnection:
    task_id: str


@dataclass(frozen=True)
class ClearConnections:
    pass


@dataclass(frozen=True)
class SwitchView:
    view: str


class CommandDispatcher:
    """Registry from command type to handler."""

    def __init__(self):
        self._handlers: Dict[Type, Callable[[Any], Any]] = {}

    def register(self, command_type: Type, handler: Callable[[Any], Any]) -> None:
        self._handlers[command_type] = handler

    def dispatch(self, command) -> Any:
        handler = self._handlers.get(type(command))
        if handler is None:
            raise TypeError(f"No handler registered for {type(command).__name__}")
        logger.debug(f"Dispatching {command!r}")
        return handler(command)


def build_dispatcher(app) -> CommandDispatcher:
    """Wire every command type to the controllers of ``app`` (a BoardApplication)."""
    board = app.board
    workflow = app.workflow
    dispatcher = CommandDispatcher()

    dispatcher.register(CreateTask, lambda c: board.create(c.text, c.emoji, c.status, c.group))
    dispatcher.register(UpdateTask, lambda c: board.update(c.task_id, **c.changes()))
    dispatcher.register(MoveTask, lambda c: board.move(c.task_id, c.status))
    dispatcher.register(DeleteTask, lambda c: board.delete(c.task_id))
    dispatcher.register(CreateGroup, lambda c: board.create_group(c.name))
    dispatcher.register(DeleteGroup, lambda c: board.delete_group(c.name))

    dispatcher.register(CreateWorkflowTask,
                        lambda c: workflow.create_workflow_task(c.title, c.emoji, c.description))
    dispatcher.register(UpdateWorkflowTask,
                        lambda c: workflow.update_workflow_task(c.task_id, c.title, c.emoji, c.description))
    dispatcher.register(DeleteWorkflowTask, lambda c: workflow.delete_workflow_task(c.task_id))
    dispatcher.register(RepositionWorkflowTask, lambda c: workflow.reposition(c.task_id, c.x, c.y))
    dispatcher.register(CommitWorkflowPosition, lambda c: workflow.commit_position(c.task_id))
    dispatcher.register(ToggleConnectionMode, lambda c: workflow.toggle_connection_mode())
    dispatcher.register(SelectForConnection, lambda c: workflow.select_for_connection(c.task_id))
    dispatcher.register(ClearConnections, lambda c: workflow.clear_connections())

    dispatcher.register(SwitchView, lambda c: app.switch_view(c.view))
    return dispatcher
