"""
Application context shared by the controllers.

Everything a controller needs from the outside world (storage, user prompts,
the credential, the renderer refresh hook) is reached through one
``AppContext`` constructed at startup and passed in explicitly.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .storage import StorageAdapter

logger = logging.getLogger(__name__)


class Prompter(ABC):
    """Blocking yes/no confirmation and alert channel to the user."""

    @abstractmethod
    def confirm(self, message: str) -> bool:
        pass

    @abstractmethod
    def alert(self, message: str) -> None:
        pass


class ScriptedPrompter(Prompter):
    """
    Non-interactive prompter answering every confirmation with ``answer``.

    Records every message so callers (tests, scripted CLI runs) can inspect
    what the user would have seen.
    """

    def __init__(self, answer: bool = True):
        self.answer = answer
        self.confirmations: List[str] = []
        self.alerts: List[str] = []

    def confirm(self, message: str) -> bool:
        self.confirmations.append(message)
        return self.answer

    def alert(self, message: str) -> None:
        self.alerts.append(message)


class Session:
    """
    The bearer credential and user profile, kept in a key-value backend.

    The backend only needs ``get(key)``, ``set(key, value)`` and ``remove(key)``
    with string values (see ``storage.KeyValueFile``).
    """

    TOKEN_KEY = "token"
    USER_KEY = "user"

    def __init__(self, backend):
        self.backend = backend

    @property
    def token(self) -> Optional[str]:
        return self.backend.get(self.TOKEN_KEY)

    @property
    def user(self) -> Dict[str, Any]:
        raw = self.backend.get(self.USER_KEY)
        if not raw:
            return {}
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Stored user profile is not valid JSON; ignoring it")
            return {}

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    def save(self, token: str, user: Dict[str, Any]) -> None:
        self.backend.set(self.TOKEN_KEY, token)
        self.backend.set(self.USER_KEY, json.dumps(user))

    def clear(self) -> None:
        self.backend.remove(self.TOKEN_KEY)
        self.backend.remove(self.USER_KEY)


def _noop() -> None:
    return None


@dataclass
class AppContext:
    """Collaborators handed to BoardController and WorkflowController."""

    storage: StorageAdapter
    prompter: Prompter = field(default_factory=ScriptedPrompter)
    session: Optional[Session] = None
    on_refresh: Callable[[], None] = _noop
    on_logout: Callable[[], None] = _noop

    def confirm(self, message: str) -> bool:
        return self.prompter.confirm(message)

    def alert(self, message: str) -> None:
        self.prompter.alert(message)

    def refresh(self) -> None:
        """Ask the renderer to redraw from current store state."""
        self.on_refresh()

    def logout(self) -> None:
        """Drop the credential and hand control back to the login flow."""
        if self.session is not None:
            self.session.clear()
        logger.info("Session cleared after authentication failure")
        self.on_logout()
