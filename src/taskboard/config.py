"""
Runtime configuration for the taskboard server, client and CLI.

Values come from TASKBOARD_* environment variables; CLI options override them.
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import List


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class Settings:
    """Resolved configuration values."""

    database_path: str = "taskboard.db"
    host: str = "127.0.0.1"
    port: int = 5000
    api_url: str = "http://localhost:5000/api"
    state_path: str = str(Path.home() / ".taskboard" / "state.json")
    storage: str = "local"
    token_ttl_days: int = 7
    http_timeout: float = 10.0
    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment."""
        defaults = cls()
        storage = os.getenv("TASKBOARD_STORAGE", defaults.storage).lower()
        if storage not in ("local", "remote"):
            raise ValueError(f"TASKBOARD_STORAGE must be 'local' or 'remote', got '{storage}'")
        return cls(
            database_path=os.getenv("TASKBOARD_DATABASE_PATH", defaults.database_path),
            host=os.getenv("TASKBOARD_HOST", defaults.host),
            port=int(os.getenv("TASKBOARD_PORT", str(defaults.port))),
            api_url=os.getenv("TASKBOARD_API_URL", defaults.api_url),
            state_path=os.path.expanduser(os.getenv("TASKBOARD_STATE_PATH", defaults.state_path)),
            storage=storage,
            token_ttl_days=int(os.getenv("TASKBOARD_TOKEN_TTL_DAYS", str(defaults.token_ttl_days))),
            http_timeout=float(os.getenv("TASKBOARD_HTTP_TIMEOUT", str(defaults.http_timeout))),
            log_level=os.getenv("TASKBOARD_LOG_LEVEL", defaults.log_level).upper(),
            cors_origins=_env_list("TASKBOARD_CORS_ORIGINS", "*"),
        )

    def override(self, **values) -> "Settings":
        """Return a copy with the non-None values applied."""
        return replace(self, **{k: v for k, v in values.items() if v is not None})
