"""
FastAPI Backend for the Taskboard

Provides the REST endpoints the remote storage adapter talks to: per-user
task CRUD, the group registry, the workflow document, whole-board
snapshots, and the bearer-token Auth Gate. Integrates with the TaskDatabase
layer for persistent storage.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from .auth import AuthFailure, AuthGate
from .config import Settings
from .database import TaskDatabase
from .models import (
    AuthResponse, GroupCreateRequest, HealthResponse, LoginRequest, RegisterRequest,
    Snapshot, TaskCreateRequest, TaskUpdateRequest, WorkflowDocument,
)

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


class DeleteResponse(BaseModel):
    success: bool
    task_id: str


# Dependencies

def get_database(request: Request) -> TaskDatabase:
    """
    FastAPI dependency to provide the application's database instance.

    Raises:
        HTTPException: If database is not available
    """
    db = getattr(request.app.state, "db", None)
    if db is None:
        raise HTTPException(status_code=503, detail="Database not available")
    return db


def get_auth_gate(request: Request, db: TaskDatabase = Depends(get_database)) -> AuthGate:
    return AuthGate(db, request.app.state.settings.token_ttl_days)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    gate: AuthGate = Depends(get_auth_gate),
) -> Dict[str, Any]:
    """Resolve the bearer token to a user or reject with 401."""
    token = credentials.credentials if credentials else None
    user = gate.resolve(token)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


# Auth routes

auth_router = APIRouter(prefix="/api/auth", tags=["auth"])


@auth_router.post("/register", response_model=AuthResponse, status_code=201)
async def register(body: RegisterRequest, gate: AuthGate = Depends(get_auth_gate)):
    """Create an account and return a bearer token for it."""
    try:
        token, user = gate.register(body.username, body.email, body.password)
    except AuthFailure as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return AuthResponse(message="User registered successfully", token=token, user=user)


@auth_router.post("/login", response_model=AuthResponse)
async def login(body: LoginRequest, gate: AuthGate = Depends(get_auth_gate)):
    """Exchange username and password for a bearer token."""
    try:
        token, user = gate.login(body.username, body.password)
    except AuthFailure as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return AuthResponse(message="Login successful", token=token, user=user)


@auth_router.get("/me")
async def me(user: Dict[str, Any] = Depends(get_current_user)):
    return {"user": {"id": str(user["id"]), "username": user["username"], "email": user["email"]}}


@auth_router.post("/logout")
async def logout(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    user: Dict[str, Any] = Depends(get_current_user),
    gate: AuthGate = Depends(get_auth_gate),
):
    gate.logout(credentials.credentials)
    return {"success": True}


# Task routes

tasks_router = APIRouter(prefix="/api/tasks", tags=["tasks"])


@tasks_router.get("")
async def list_tasks(
    user: Dict[str, Any] = Depends(get_current_user),
    db: TaskDatabase = Depends(get_database),
) -> List[Dict[str, Any]]:
    """Every task owned by the caller, oldest first."""
    try:
        return db.list_tasks(user["id"])
    except Exception as e:
        logger.error(f"Failed to list tasks for user {user['id']}: {e}")
        raise HTTPException(status_code=500, detail="Failed to retrieve tasks")


@tasks_router.post("", status_code=201)
async def create_task(
    body: TaskCreateRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    db: TaskDatabase = Depends(get_database),
) -> Dict[str, Any]:
    """Create a task; an unseen group name is registered on the way."""
    try:
        task = db.create_task(user["id"], body.text, body.emoji, body.status.value, body.group)
    except Exception as e:
        logger.error(f"Failed to create task for user {user['id']}: {e}")
        raise HTTPException(status_code=500, detail="Failed to create task")
    logger.info(f"Created task {task['id']} for user {user['id']}")
    return task


@tasks_router.put("/{task_id}")
async def update_task(
    task_id: int,
    body: TaskUpdateRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    db: TaskDatabase = Depends(get_database),
) -> Dict[str, Any]:
    """
    Partially update a task.

    Only fields present in the request body are applied, so ``{"group": null}``
    ungroups a task while an absent ``group`` leaves it untouched.
    """
    fields = body.model_dump(exclude_unset=True, mode="json")
    for key in ("text", "emoji", "status"):
        if fields.get(key) is None:
            fields.pop(key, None)
    try:
        task = db.update_task(user["id"], task_id, fields)
    except Exception as e:
        logger.error(f"Failed to update task {task_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to update task")
    if task is None:
        raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
    return task


@tasks_router.delete("/{task_id}", response_model=DeleteResponse)
async def delete_task(
    task_id: int,
    user: Dict[str, Any] = Depends(get_current_user),
    db: TaskDatabase = Depends(get_database),
):
    try:
        deleted = db.delete_task(user["id"], task_id)
    except Exception as e:
        logger.error(f"Failed to delete task {task_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to delete task")
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
    return DeleteResponse(success=True, task_id=str(task_id))


# Group routes

groups_router = APIRouter(prefix="/api/groups", tags=["groups"])


@groups_router.get("")
async def list_groups(
    user: Dict[str, Any] = Depends(get_current_user),
    db: TaskDatabase = Depends(get_database),
) -> List[str]:
    return db.list_groups(user["id"])


@groups_router.post("", status_code=201)
async def create_group(
    body: GroupCreateRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    db: TaskDatabase = Depends(get_database),
) -> Dict[str, str]:
    if not db.create_group(user["id"], body.name):
        raise HTTPException(status_code=409, detail="This group already exists!")
    return {"name": body.name}


@groups_router.delete("/{name:path}")
async def delete_group(
    name: str,
    user: Dict[str, Any] = Depends(get_current_user),
    db: TaskDatabase = Depends(get_database),
) -> Dict[str, Any]:
    """Remove a group; its member tasks become ungrouped."""
    ungrouped = db.delete_group(user["id"], name)
    if ungrouped is None:
        raise HTTPException(status_code=404, detail=f"Group '{name}' not found")
    return {"success": True, "name": name, "ungrouped_tasks": ungrouped}


# Workflow routes

workflow_router = APIRouter(prefix="/api/workflow", tags=["workflow"])


@workflow_router.get("")
async def get_workflow(
    user: Dict[str, Any] = Depends(get_current_user),
    db: TaskDatabase = Depends(get_database),
) -> Dict[str, Any]:
    """The caller's workflow document, created empty on first access."""
    try:
        return db.get_workflow(user["id"])
    except Exception as e:
        logger.error(f"Failed to load workflow for user {user['id']}: {e}")
        raise HTTPException(status_code=500, detail="Failed to retrieve workflow")


@workflow_router.post("")
async def save_workflow(
    body: WorkflowDocument,
    user: Dict[str, Any] = Depends(get_current_user),
    db: TaskDatabase = Depends(get_database),
) -> Dict[str, Any]:
    """Replace the caller's workflow document wholesale."""
    try:
        return db.save_workflow(user["id"], body.to_wire())
    except Exception as e:
        logger.error(f"Failed to save workflow for user {user['id']}: {e}")
        raise HTTPException(status_code=500, detail="Failed to save workflow")


# Whole-board routes

board_router = APIRouter(prefix="/api/board", tags=["board"])


@board_router.get("")
async def get_board(
    user: Dict[str, Any] = Depends(get_current_user),
    db: TaskDatabase = Depends(get_database),
) -> Dict[str, Any]:
    workflow = db.get_workflow(user["id"])
    return {
        "tasks": db.list_tasks(user["id"]),
        "groups": db.list_groups(user["id"]),
        "workflowTasks": workflow.get("tasks", []),
        "connections": workflow.get("connections", []),
    }


@board_router.put("")
async def replace_board(
    body: Snapshot,
    user: Dict[str, Any] = Depends(get_current_user),
    db: TaskDatabase = Depends(get_database),
) -> Dict[str, Any]:
    """Replace every task, group and the workflow document in one transaction."""
    wire = body.to_wire()
    try:
        counts = db.replace_board(
            user["id"], wire["tasks"], wire["groups"],
            {"tasks": wire["workflowTasks"], "connections": wire["connections"]},
        )
    except Exception as e:
        logger.error(f"Failed to replace board for user {user['id']}: {e}")
        raise HTTPException(status_code=500, detail="Failed to replace board")
    logger.info(f"Replaced board for user {user['id']}: {counts}")
    return {"success": True, **counts}


def create_app(settings: Optional[Settings] = None, database: Optional[TaskDatabase] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Configuration; defaults to ``Settings.from_env()``
        database: Already-open database to serve. When omitted, one is opened
            from ``settings.database_path`` at startup and closed at shutdown.
    """
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_db = app.state.db is None
        if owns_db:
            try:
                app.state.db = TaskDatabase(settings.database_path)
                logger.info(f"Database initialized: {settings.database_path}")
            except Exception as e:
                logger.error(f"Failed to initialize database: {e}")
                raise
        app.state.db.cleanup_expired_sessions()
        logger.info("Taskboard API starting up...")

        yield

        if owns_db and app.state.db is not None:
            app.state.db.close()
            app.state.db = None
            logger.info("Database connection closed")

    app = FastAPI(
        title="Taskboard API",
        description="Per-user kanban tasks, groups and workflow diagrams",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.db = database

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/healthz", response_model=HealthResponse)
    async def health_check(request: Request):
        """Health check endpoint for service monitoring."""
        database_connected = True
        try:
            get_database(request).ping()
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            database_connected = False
        return HealthResponse(
            status="healthy" if database_connected else "degraded",
            database_connected=database_connected,
            timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request, exc):
        """Global exception handler for unhandled errors."""
        logger.error(f"Unhandled exception: {exc}")
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    for router in (auth_router, tasks_router, groups_router, workflow_router, board_router):
        app.include_router(router)

    return app
