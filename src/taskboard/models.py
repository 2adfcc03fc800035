"""
Pydantic models for the taskboard data model and API payloads.

Wire names follow the browser client (``createdAt``, ``from``); Python code
uses the snake_case attribute names. Always dump with ``by_alias=True`` when
producing JSON for storage or the API.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import ValidationFailure

DEFAULT_EMOJI = "📝"

TASK_NAME_REQUIRED = "Please enter a task name!"
GROUP_NAME_REQUIRED = "Please enter a group name!"
GROUP_EXISTS = "This group already exists!"


class TaskStatus(str, Enum):
    """Kanban columns, in display order."""
    NOT_STARTED = "not-started"
    IN_PROGRESS = "in-progress"
    DONE = "done"


STATUS_ORDER = (TaskStatus.NOT_STARTED, TaskStatus.IN_PROGRESS, TaskStatus.DONE)


def utc_now_str() -> str:
    """Current UTC time as an ISO-8601 string with a ``Z`` suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def require_text(value: Optional[str], message: str = TASK_NAME_REQUIRED) -> str:
    """Trim ``value`` and reject it when nothing is left."""
    text = (value or "").strip()
    if not text:
        raise ValidationFailure(message)
    return text


def normalize_emoji(value: Optional[str]) -> str:
    """Trimmed emoji, falling back to the placeholder glyph when blank."""
    return (value or "").strip() or DEFAULT_EMOJI


class Task(BaseModel):
    """A kanban card."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    text: str
    emoji: str = DEFAULT_EMOJI
    status: TaskStatus = TaskStatus.NOT_STARTED
    group: Optional[str] = None
    created_at: str = Field(default_factory=utc_now_str, alias="createdAt")

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        """Local ids were numeric timestamps in older state files."""
        return str(v)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class WorkflowTask(BaseModel):
    """A positioned node in the workflow diagram."""

    id: str
    title: str
    emoji: str = ""
    description: str = ""
    x: float = 0.0
    y: float = 0.0

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return str(v)

    @field_validator("emoji", "description", mode="before")
    @classmethod
    def none_to_blank(cls, v):
        return "" if v is None else v

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class Connection(BaseModel):
    """Directed edge between two workflow task ids."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    from_: str = Field(alias="from")
    to: str

    @field_validator("from_", "to", mode="before")
    @classmethod
    def coerce_ids(cls, v):
        return v if v is None else str(v)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class WorkflowDocument(BaseModel):
    """The per-user workflow document: every node plus every edge."""

    tasks: List[WorkflowTask] = Field(default_factory=list)
    connections: List[Connection] = Field(default_factory=list)

    def to_wire(self) -> Dict[str, Any]:
        return {
            "tasks": [t.to_wire() for t in self.tasks],
            "connections": [c.to_wire() for c in self.connections],
        }


class Snapshot(BaseModel):
    """Everything a storage adapter loads or saves in one go."""

    model_config = ConfigDict(populate_by_name=True)

    tasks: List[Task] = Field(default_factory=list)
    groups: List[str] = Field(default_factory=list)
    workflow_tasks: List[WorkflowTask] = Field(default_factory=list, alias="workflowTasks")
    connections: List[Connection] = Field(default_factory=list)

    def to_wire(self) -> Dict[str, Any]:
        return {
            "tasks": [t.to_wire() for t in self.tasks],
            "groups": list(self.groups),
            "workflowTasks": [t.to_wire() for t in self.workflow_tasks],
            "connections": [c.to_wire() for c in self.connections],
        }


# API request/response models

class TaskCreateRequest(BaseModel):
    """Request body for POST /api/tasks."""
    text: str
    emoji: Optional[str] = None
    status: TaskStatus = TaskStatus.NOT_STARTED
    group: Optional[str] = None

    @field_validator("text")
    @classmethod
    def validate_text(cls, v):
        return require_text(v)

    @field_validator("group")
    @classmethod
    def blank_group_is_none(cls, v):
        if v is None:
            return None
        return v.strip() or None


class TaskUpdateRequest(BaseModel):
    """Request body for PUT /api/tasks/{id}; only the fields sent are applied."""
    text: Optional[str] = None
    emoji: Optional[str] = None
    status: Optional[TaskStatus] = None
    group: Optional[str] = None

    @field_validator("text")
    @classmethod
    def validate_text(cls, v):
        if v is None:
            return v
        return require_text(v)

    @field_validator("group")
    @classmethod
    def blank_group_is_none(cls, v):
        if v is None:
            return None
        return v.strip() or None


class GroupCreateRequest(BaseModel):
    """Request body for POST /api/groups."""
    name: str

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        return require_text(v, GROUP_NAME_REQUIRED)


class RegisterRequest(BaseModel):
    """Request body for POST /api/auth/register."""
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(BaseModel):
    """Request body for POST /api/auth/login."""
    username: Optional[str] = None
    password: Optional[str] = None


class UserInfo(BaseModel):
    id: str
    username: str
    email: str


class AuthResponse(BaseModel):
    message: str
    token: str
    user: UserInfo


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""
    status: str
    database_connected: bool
    timestamp: str
