"""
YAML Snapshot Import/Export

Serializes a whole board (tasks, groups, workflow nodes and connections) to
YAML and back. Import validates the top-level structure strictly, skips
individual malformed entries, and reports what happened in a stats dict.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Tuple

import yaml
from pydantic import ValidationError

from .models import Connection, Snapshot, Task, WorkflowTask

logger = logging.getLogger(__name__)

COLLECTIONS = ("tasks", "groups", "workflowTasks", "connections")


def snapshot_to_dict(snapshot: Snapshot) -> Dict[str, Any]:
    """Plain-data form of a snapshot, using wire field names."""
    return snapshot.to_wire()


def dump_snapshot_file(snapshot: Snapshot, file_path) -> Path:
    path = Path(file_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(snapshot_to_dict(snapshot), f, sort_keys=False, allow_unicode=True)
    logger.info(f"Exported snapshot to {path}")
    return path


def _entry_label(entry: Any, key: str) -> str:
    if isinstance(entry, dict):
        return str(entry.get(key, "unnamed"))
    return "invalid"


def import_snapshot(data: Any) -> Tuple[Snapshot, Dict[str, Any]]:
    """
    Build a Snapshot from parsed YAML data.

    Args:
        data: Parsed YAML document

    Returns:
        (snapshot, stats) where stats holds per-collection created counts and
        an ``errors`` list describing every skipped entry

    Raises:
        ValueError: The document is not a mapping or a collection is not a list
    """
    if not isinstance(data, dict):
        raise ValueError("Snapshot file must contain a YAML mapping")
    for key in COLLECTIONS:
        value = data.get(key, [])
        if value is not None and not isinstance(value, list):
            raise ValueError(f"YAML '{key}' must be a list")

    stats = {
        "tasks_created": 0,
        "groups_created": 0,
        "workflow_tasks_created": 0,
        "connections_created": 0,
        "errors": [],
    }

    tasks: List[Task] = []
    seen_task_ids = set()
    for entry in data.get("tasks") or []:
        try:
            task = Task.model_validate(entry)
            if not task.text.strip():
                raise ValueError("text must not be blank")
            if task.id in seen_task_ids:
                raise ValueError(f"duplicate id {task.id}")
        except (ValidationError, ValueError, TypeError) as e:
            stats["errors"].append(f"Failed to import task '{_entry_label(entry, 'text')}': {e}")
            continue
        seen_task_ids.add(task.id)
        tasks.append(task)
        stats["tasks_created"] += 1

    groups: List[str] = []
    for entry in data.get("groups") or []:
        name = str(entry).strip() if isinstance(entry, (str, int, float)) else ""
        if not name:
            stats["errors"].append(f"Failed to import group {entry!r}: name must be a non-empty string")
            continue
        if name in groups:
            stats["errors"].append(f"Failed to import group '{name}': duplicate name")
            continue
        groups.append(name)
        stats["groups_created"] += 1

    workflow_tasks: List[WorkflowTask] = []
    for entry in data.get("workflowTasks") or []:
        try:
            node = WorkflowTask.model_validate(entry)
            if not node.title.strip():
                raise ValueError("title must not be blank")
        except (ValidationError, ValueError, TypeError) as e:
            stats["errors"].append(f"Failed to import workflow task '{_entry_label(entry, 'title')}': {e}")
            continue
        workflow_tasks.append(node.model_copy(update={"x": max(0.0, node.x), "y": max(0.0, node.y)}))
        stats["workflow_tasks_created"] += 1

    node_ids = {n.id for n in workflow_tasks}
    connections: List[Connection] = []
    for entry in data.get("connections") or []:
        try:
            conn = Connection.model_validate(entry)
        except (ValidationError, TypeError) as e:
            stats["errors"].append(f"Failed to import connection {entry!r}: {e}")
            continue
        if conn.from_ not in node_ids or conn.to not in node_ids:
            stats["errors"].append(f"Dropped connection {conn.from_} -> {conn.to}: unknown workflow task")
            continue
        if conn in connections:
            stats["errors"].append(f"Dropped connection {conn.from_} -> {conn.to}: duplicate")
            continue
        connections.append(conn)
        stats["connections_created"] += 1

    snapshot = Snapshot(tasks=tasks, groups=groups, workflow_tasks=workflow_tasks, connections=connections)
    return snapshot, stats


def load_snapshot_file(file_path) -> Tuple[Snapshot, Dict[str, Any]]:
    """
    Read and import a YAML snapshot file.

    Raises:
        FileNotFoundError: The file does not exist
        ValueError: The file is not valid YAML or has the wrong structure
    """
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"Snapshot file not found: {file_path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {file_path}: {e}")

    snapshot, stats = import_snapshot(data)
    if stats["errors"]:
        logger.warning(f"Import of {file_path} skipped {len(stats['errors'])} entries")
    return snapshot, stats
