"""
Remote storage adapter and auth client for the Taskboard HTTP API.

Task creation is a synchronous round trip because the server assigns ids.
Every other write is fire-and-forget: it goes through a single-worker
``WriteQueue``, so writes reach the server in the order they were issued and
a failure is logged rather than raised.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx

from .context import Session
from .errors import AuthenticationError, TransportError
from .models import Connection, Snapshot, Task, TaskStatus, WorkflowTask
from .storage import StorageAdapter

logger = logging.getLogger(__name__)


class WriteQueue:
    """Runs submitted writes one at a time, in submission order."""

    def __init__(self):
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="taskboard-write")
        self._pending: List[Future] = []
        self._lock = threading.Lock()

    def _run(self, description: str, fn: Callable[[], Any]) -> None:
        try:
            fn()
        except (TransportError, httpx.HTTPError) as e:
            logger.error(f"Remote write failed ({description}): {e}")

    def submit(self, description: str, fn: Callable[[], Any]) -> Future:
        future = self._executor.submit(self._run, description, fn)
        with self._lock:
            self._pending = [f for f in self._pending if not f.done()]
            self._pending.append(future)
        return future

    def flush(self) -> None:
        """
        Block until every write submitted so far has finished.

        Transport failures were already logged by the worker; anything else a
        write raised is re-raised here.
        """
        with self._lock:
            pending = list(self._pending)
        wait(pending)
        with self._lock:
            self._pending = [f for f in self._pending if f not in pending]
        for future in pending:
            error = future.exception()
            if error is not None:
                raise error

    def close(self) -> None:
        try:
            self.flush()
        finally:
            self._executor.shutdown(wait=True)


class ApiClient:
    """
    Thin httpx wrapper for the ``/api`` routes.

    Args:
        base_url: API root, e.g. ``http://localhost:5000/api``
        client: Pre-built httpx.Client (its own base_url is used as-is)
        timeout: Request timeout in seconds when the client is built here
    """

    def __init__(self, base_url: Optional[str] = None, client: Optional[httpx.Client] = None,
                 timeout: float = 10.0):
        if client is None:
            if not base_url:
                raise ValueError("base_url is required when no client is supplied")
            client = httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout)
            self._owns_client = True
        else:
            self._owns_client = False
        self.client = client

    def _headers(self, token: Optional[str]) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _request(self, method: str, path: str, token: Optional[str] = None,
                 json: Optional[Any] = None) -> Any:
        """
        Send one request and decode its JSON body.

        Raises:
            AuthenticationError: the server answered 401
            TransportError: network failure or any other error status
        """
        try:
            response = self.client.request(method, path, json=json, headers=self._headers(token))
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {path} failed: {e}")

        if response.status_code == 401:
            raise AuthenticationError(self._detail(response, "Not authenticated"), 401)
        if response.is_error:
            raise TransportError(
                f"{method} {path} returned {response.status_code}: "
                f"{self._detail(response, response.reason_phrase)}",
                response.status_code,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            raise TransportError(f"{method} {path} returned a non-JSON body", response.status_code)

    @staticmethod
    def _detail(response: httpx.Response, fallback: str) -> str:
        try:
            detail = response.json().get("detail")
        except (ValueError, AttributeError):
            detail = None
        return str(detail) if detail else fallback

    def close(self) -> None:
        if self._owns_client:
            self.client.close()


class AuthClient(ApiClient):
    """Register, log in and inspect the current user."""

    def register(self, username: str, email: str, password: str) -> Tuple[str, Dict[str, Any]]:
        data = self._request("POST", "/auth/register",
                             json={"username": username, "email": email, "password": password})
        return data["token"], data["user"]

    def login(self, username: str, password: str) -> Tuple[str, Dict[str, Any]]:
        data = self._request("POST", "/auth/login", json={"username": username, "password": password})
        return data["token"], data["user"]

    def me(self, token: str) -> Dict[str, Any]:
        return self._request("GET", "/auth/me", token=token)["user"]

    def logout(self, token: str) -> None:
        self._request("POST", "/auth/logout", token=token)


def _wire_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    wire = {}
    for key, value in fields.items():
        wire[key] = value.value if isinstance(value, TaskStatus) else value
    return wire


class RemoteStorage(ApiClient, StorageAdapter):
    """
    Storage adapter backed by the Taskboard API.

    The bearer token is read from ``session`` on every request, so a login
    after construction is picked up; a fixed ``token`` may be given instead.
    """

    def __init__(self, base_url: Optional[str] = None, token: Optional[str] = None,
                 session: Optional[Session] = None, client: Optional[httpx.Client] = None,
                 timeout: float = 10.0):
        super().__init__(base_url=base_url, client=client, timeout=timeout)
        self._token = token
        self.session = session
        self.writes = WriteQueue()

    @property
    def token(self) -> Optional[str]:
        if self._token:
            return self._token
        return self.session.token if self.session is not None else None

    def _call(self, method: str, path: str, json: Optional[Any] = None) -> Any:
        return self._request(method, path, token=self.token, json=json)

    def _enqueue(self, description: str, method: str, path: str, json: Optional[Any] = None) -> None:
        self.writes.submit(description, lambda: self._call(method, path, json))

    def load_all(self) -> Snapshot:
        self.writes.flush()
        tasks = self._call("GET", "/tasks") or []
        groups = self._call("GET", "/groups") or []
        workflow = self._call("GET", "/workflow") or {}
        return Snapshot(
            tasks=[Task.model_validate(t) for t in tasks],
            groups=[str(g) for g in groups],
            workflow_tasks=[WorkflowTask.model_validate(t) for t in workflow.get("tasks", [])],
            connections=[Connection.model_validate(c) for c in workflow.get("connections", [])],
        )

    def save_all(self, snapshot: Snapshot) -> None:
        self.writes.flush()
        result = self._call("PUT", "/board", snapshot.to_wire())
        logger.info(f"Replaced remote board: {result}")

    def task_created(self, task: Task, store) -> Task:
        body = {
            "text": task.text,
            "emoji": task.emoji,
            "status": task.status.value,
            "group": task.group,
        }
        # Earlier queued writes (e.g. the group this task joins) must land first
        self.writes.flush()
        return Task.model_validate(self._call("POST", "/tasks", body))

    def task_updated(self, task: Task, fields: Dict[str, Any], store) -> None:
        self._enqueue(f"update task {task.id}", "PUT", f"/tasks/{quote(task.id, safe='')}",
                      _wire_fields(fields))

    def task_deleted(self, task_id: str, store) -> None:
        self._enqueue(f"delete task {task_id}", "DELETE", f"/tasks/{quote(str(task_id), safe='')}")

    def group_created(self, name: str, store) -> None:
        self._enqueue(f"create group {name!r}", "POST", "/groups", {"name": name})

    def group_deleted(self, name: str, store) -> None:
        self._enqueue(f"delete group {name!r}", "DELETE", f"/groups/{quote(name, safe='')}")

    def workflow_changed(self, store) -> None:
        # Serialize now; the store may change again before the write runs
        document = {
            "tasks": [t.to_wire() for t in store.tasks],
            "connections": [c.to_wire() for c in store.connections],
        }
        self._enqueue("save workflow", "POST", "/workflow", document)

    def flush(self) -> None:
        self.writes.flush()

    def close(self) -> None:
        try:
            self.writes.close()
        finally:
            super().close()
