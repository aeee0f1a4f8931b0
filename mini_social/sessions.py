"""
Session store: opaque cookie token -> user, kept in the database.

Sessions are never kept in the cache, so a cache flush or a Redis outage
does not log anybody out. Expired sessions are deleted by the lookup that
finds them; ``purge_expired`` is an optional sweep for storage hygiene.
"""

import logging
import secrets
import time
from typing import Callable, Optional

from .config import SESSION_LIFETIME_SECONDS
from .db import execute_db, query_db

logger = logging.getLogger("mini-social.sessions")

TOKEN_BYTES = 32


def generate_session_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


class SessionStore:
    def __init__(
        self,
        find_user: Callable[[int], Optional[dict]],
        lifetime: int = SESSION_LIFETIME_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._find_user = find_user
        self.lifetime = lifetime
        self._clock = clock

    def create(self, user_id: int, token: Optional[str] = None) -> str:
        token = token or generate_session_token()
        now = self._clock()
        execute_db(
            "INSERT INTO sessions (token, user_id, created_at, expires_at) VALUES (?, ?, ?, ?)",
            (token, user_id, now, now + self.lifetime),
        )
        logger.info("Session created for user %s", user_id)
        return token

    def resolve(self, token: Optional[str]) -> Optional[dict]:
        """Return the public user record for ``token``, or None.

        A session found past its expiry is deleted before returning None.
        """
        if not token:
            return None
        row = query_db("SELECT id, user_id, expires_at FROM sessions WHERE token = ?", (token,), one=True)
        if row is None:
            return None
        if self._clock() > row["expires_at"]:
            execute_db("DELETE FROM sessions WHERE id = ?", (row["id"],))
            logger.info("Expired session for user %s removed", row["user_id"])
            return None
        return self._find_user(row["user_id"])

    def revoke(self, token: Optional[str]):
        if not token:
            return
        _, removed = execute_db("DELETE FROM sessions WHERE token = ?", (token,))
        if removed:
            logger.info("Session revoked")

    def revoke_all(self, user_id: int) -> int:
        _, removed = execute_db("DELETE FROM sessions WHERE user_id = ?", (user_id,))
        return removed

    def purge_expired(self) -> int:
        _, removed = execute_db("DELETE FROM sessions WHERE expires_at < ?", (self._clock(),))
        logger.info("Purged %s expired session(s)", removed)
        return removed
