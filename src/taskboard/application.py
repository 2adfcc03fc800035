"""
BoardApplication: the composition root of the client core.
"""

import logging
from typing import Any

from .board import BoardController, TaskStore
from .commands import BOARD_VIEW, VIEWS, build_dispatcher
from .context import AppContext
from .errors import AuthenticationError, TransportError
from .models import Snapshot
from .workflow import WorkflowController, WorkflowStore

logger = logging.getLogger(__name__)

LOAD_FAILED = "Failed to load data. Check backend connection."


class BoardApplication:
    """Owns both controllers and routes typed commands to them."""

    def __init__(self, context: AppContext, rng=None):
        self.context = context
        self.board = BoardController(context, TaskStore())
        self.workflow = WorkflowController(context, WorkflowStore(), rng=rng)
        self.current_view = BOARD_VIEW
        self.dispatcher = build_dispatcher(self)

    def load(self) -> bool:
        """
        Replace both stores with what the storage adapter holds.

        A 401 logs the user out. Any other transport failure alerts and keeps
        the current state.
        """
        try:
            snapshot = self.context.storage.load_all()
        except AuthenticationError as e:
            logger.warning(f"Authentication rejected while loading: {e}")
            self.context.logout()
            return False
        except TransportError as e:
            logger.error(f"Error loading data: {e}")
            self.context.alert(LOAD_FAILED)
            return False

        self.board.store.replace_all(snapshot.tasks, snapshot.groups)
        self.workflow.store.replace_all(snapshot.workflow_tasks, snapshot.connections)
        logger.info(f"Loaded {len(snapshot.tasks)} tasks, {len(snapshot.groups)} groups, "
                    f"{len(snapshot.workflow_tasks)} workflow tasks")
        self.context.refresh()
        return True

    def snapshot(self) -> Snapshot:
        return Snapshot(
            tasks=list(self.board.store.tasks),
            groups=list(self.board.store.groups),
            workflow_tasks=list(self.workflow.store.tasks),
            connections=list(self.workflow.store.connections),
        )

    def dispatch(self, command) -> Any:
        return self.dispatcher.dispatch(command)

    def switch_view(self, view: str) -> str:
        if view not in VIEWS:
            raise ValueError(f"Unknown view '{view}', expected one of {VIEWS}")
        self.current_view = view
        self.context.refresh()
        return view

    def close(self) -> None:
        self.context.storage.close()
