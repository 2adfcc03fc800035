"""
Auth Gate for the Taskboard API

Issues and validates opaque bearer tokens backed by the ``sessions`` table.
Passwords are stored as salted PBKDF2-SHA256 hashes.
"""

import hashlib
import hmac
import logging
import secrets
import sqlite3
from typing import Any, Dict, Optional, Tuple

from .database import TaskDatabase

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 200_000


class AuthFailure(Exception):
    """Registration or login was rejected; ``status_code`` is the HTTP status to report."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def hash_password(password: str, salt: Optional[str] = None) -> str:
    """Return ``pbkdf2_sha256$iterations$salt$hexdigest`` for ``password``."""
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), PBKDF2_ITERATIONS)
    return f"pbkdf2_sha256${PBKDF2_ITERATIONS}${salt}${digest.hex()}"


def verify_password(password: str, encoded: str) -> bool:
    """Constant-time check of ``password`` against an encoded hash."""
    try:
        algorithm, iterations, salt, expected = encoded.split("$")
    except ValueError:
        return False
    if algorithm != "pbkdf2_sha256":
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), int(iterations))
    return hmac.compare_digest(digest.hex(), expected)


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {"id": str(user["id"]), "username": user["username"], "email": user["email"]}


class AuthGate:
    """Registration, login and token resolution over a TaskDatabase."""

    def __init__(self, db: TaskDatabase, token_ttl_days: int = 7):
        self.db = db
        self.token_ttl_seconds = token_ttl_days * 24 * 3600

    def _issue_token(self, user_id: int) -> str:
        token = secrets.token_urlsafe(32)
        self.db.create_session(token, user_id, self.token_ttl_seconds)
        return token

    def register(self, username: Optional[str], email: Optional[str],
                 password: Optional[str]) -> Tuple[str, Dict[str, Any]]:
        """
        Create an account and log it in.

        Returns:
            (token, public user dict)

        Raises:
            AuthFailure: 400 when a field is missing or the user already exists
        """
        if not username or not email or not password:
            raise AuthFailure("All fields required", 400)
        if self.db.find_user_conflict(username, email):
            raise AuthFailure("User already exists", 400)
        try:
            user_id = self.db.create_user(username, email, hash_password(password))
        except sqlite3.IntegrityError:
            # Lost a race with a concurrent registration
            raise AuthFailure("User already exists", 400)
        logger.info(f"Registered user {username} (id={user_id})")
        return self._issue_token(user_id), public_user(self.db.get_user(user_id))

    def login(self, username: Optional[str], password: Optional[str]) -> Tuple[str, Dict[str, Any]]:
        """
        Exchange credentials for a fresh token.

        Raises:
            AuthFailure: 400 when a field is missing, 401 on bad credentials
        """
        if not username or not password:
            raise AuthFailure("Username and password required", 400)
        user = self.db.get_user_by_username(username)
        if not user or not verify_password(password, user["password_hash"]):
            raise AuthFailure("Invalid credentials", 401)
        return self._issue_token(user["id"]), public_user(user)

    def resolve(self, token: Optional[str]) -> Optional[Dict[str, Any]]:
        """Return the user a token belongs to, or None if it is unknown or expired."""
        if not token:
            return None
        user_id = self.db.get_session_user_id(token)
        if user_id is None:
            return None
        return self.db.get_user(user_id)

    def logout(self, token: str) -> bool:
        return self.db.delete_session(token)
