"""
Storage adapters for the client core.

``StorageAdapter`` is the contract both persistence variants honor: a bulk
``load_all``/``save_all`` pair plus mutation hooks the controllers call right
after they change a store. ``LocalStorage`` keeps everything in a JSON
key-value file; the remote variant lives in ``taskboard.remote``.
"""

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .models import Connection, Snapshot, Task, WorkflowTask

logger = logging.getLogger(__name__)

TASKS_KEY = "kanban-tasks"
GROUPS_KEY = "kanban-groups"
WORKFLOW_TASKS_KEY = "workflowTasks"
CONNECTIONS_KEY = "workflowConnections"


class StorageAdapter(ABC):
    """Persistence contract shared by the local and remote variants."""

    @abstractmethod
    def load_all(self) -> Snapshot:
        pass

    @abstractmethod
    def save_all(self, snapshot: Snapshot) -> None:
        pass

    @abstractmethod
    def task_created(self, task: Task, store) -> Task:
        """Persist a new task and return the stored copy (which may carry a new id)."""

    @abstractmethod
    def task_updated(self, task: Task, fields: Dict[str, Any], store) -> None:
        pass

    @abstractmethod
    def task_deleted(self, task_id: str, store) -> None:
        pass

    @abstractmethod
    def group_created(self, name: str, store) -> None:
        pass

    @abstractmethod
    def group_deleted(self, name: str, store) -> None:
        pass

    @abstractmethod
    def workflow_changed(self, store) -> None:
        """Persist the whole workflow document (nodes and connections)."""

    def flush(self) -> None:
        """Wait for outstanding writes. Synchronous adapters have none."""

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class KeyValueFile:
    """
    A JSON object file mapping string keys to string values.

    Mirrors browser local storage: values are opaque strings (usually JSON
    documents themselves). Every write replaces the file atomically.
    """

    def __init__(self, path):
        self.path = Path(path)
        self._lock = threading.RLock()

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read state file {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"State file {self.path} is not a JSON object; ignoring it")
            return {}
        return data

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=".state-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            value = self._read().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        self.update({key: value})

    def update(self, values: Dict[str, str]) -> None:
        """Set several keys in one atomic write."""
        with self._lock:
            data = self._read()
            data.update(values)
            self._write(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if key in data:
                del data[key]
                self._write(data)


def _load_list(kv: KeyValueFile, key: str, model=None) -> List[Any]:
    """Decode one stored collection; corrupt values load as empty."""
    raw = kv.get(key)
    if not raw:
        return []
    try:
        items = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Stored value for '{key}' is not valid JSON; starting empty")
        return []
    if not isinstance(items, list):
        logger.warning(f"Stored value for '{key}' is not a list; starting empty")
        return []
    loaded = []
    for item in items:
        if model is None:
            if isinstance(item, str):
                loaded.append(item)
            else:
                logger.warning(f"Skipping non-string entry under '{key}': {item!r}")
            continue
        try:
            loaded.append(model.model_validate(item))
        except ValidationError as e:
            logger.warning(f"Skipping malformed entry under '{key}': {e.error_count()} errors")
    return loaded


class LocalStorage(StorageAdapter):
    """Synchronous adapter writing the four collections to a KeyValueFile."""

    def __init__(self, kv: KeyValueFile):
        self.kv = kv

    def load_all(self) -> Snapshot:
        return Snapshot(
            tasks=_load_list(self.kv, TASKS_KEY, Task),
            groups=_load_list(self.kv, GROUPS_KEY),
            workflow_tasks=_load_list(self.kv, WORKFLOW_TASKS_KEY, WorkflowTask),
            connections=_load_list(self.kv, CONNECTIONS_KEY, Connection),
        )

    def save_all(self, snapshot: Snapshot) -> None:
        wire = snapshot.to_wire()
        self.kv.update({
            TASKS_KEY: json.dumps(wire["tasks"], ensure_ascii=False),
            GROUPS_KEY: json.dumps(wire["groups"], ensure_ascii=False),
            WORKFLOW_TASKS_KEY: json.dumps(wire["workflowTasks"], ensure_ascii=False),
            CONNECTIONS_KEY: json.dumps(wire["connections"], ensure_ascii=False),
        })

    def _save_board(self, store) -> None:
        self.kv.update({
            TASKS_KEY: json.dumps([t.to_wire() for t in store.tasks], ensure_ascii=False),
            GROUPS_KEY: json.dumps(list(store.groups), ensure_ascii=False),
        })

    def _save_workflow(self, store) -> None:
        self.kv.update({
            WORKFLOW_TASKS_KEY: json.dumps([t.to_wire() for t in store.tasks], ensure_ascii=False),
            CONNECTIONS_KEY: json.dumps([c.to_wire() for c in store.connections], ensure_ascii=False),
        })

    def task_created(self, task: Task, store) -> Task:
        self._save_board(store)
        return task

    def task_updated(self, task: Task, fields: Dict[str, Any], store) -> None:
        self._save_board(store)

    def task_deleted(self, task_id: str, store) -> None:
        self._save_board(store)

    def group_created(self, name: str, store) -> None:
        self._save_board(store)

    def group_deleted(self, name: str, store) -> None:
        self._save_board(store)

    def workflow_changed(self, store) -> None:
        self._save_workflow(store)
