"""
Session inactivity tracking backed by Redis.

Each authenticated user has a `session:<user_id>` key holding the timestamp of
their last request. A session idle for longer than SESSION_TIMEOUT_MINUTES is
marked expired and stays rejected until the user logs in again.
"""
import logging
import time
from typing import Optional

from redis import Redis
from redis.exceptions import RedisError

from budget_app.config import settings
from budget_app.services.job_queue import get_redis_connection

logger = logging.getLogger(__name__)

EXPIRED_MARKER = "expired"


class SessionTracker:
    def __init__(self, client: Redis, timeout_seconds: Optional[int] = None, clock=time.time):
        self.client = client
        self.timeout_seconds = timeout_seconds or settings.SESSION_TIMEOUT_MINUTES * 60
        # Keys outlive the access token so stale entries clean themselves up
        self.key_ttl_seconds = max(self.timeout_seconds, settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60)
        self.clock = clock

    def _key(self, user_id: str) -> str:
        return f"session:{user_id}"

    def start(self, user_id: str) -> None:
        try:
            self.client.set(self._key(user_id), str(self.clock()), ex=self.key_ttl_seconds)
        except RedisError as e:
            logger.warning("Could not start session for user %s: %s", user_id, e)

    def touch(self, user_id: str) -> bool:
        """
        Record activity for the user.

        Returns False when the session has timed out. A missing key starts a
        new session. Redis failures never lock users out.
        """
        key = self._key(user_id)
        now = self.clock()
        try:
            raw = self.client.get(key)
            if raw is not None:
                value = raw.decode() if isinstance(raw, bytes) else str(raw)
                if value == EXPIRED_MARKER:
                    return False
                if now - float(value) > self.timeout_seconds:
                    self.client.set(key, EXPIRED_MARKER, ex=self.key_ttl_seconds)
                    logger.info("Session for user %s timed out due to inactivity", user_id)
                    return False
            self.client.set(key, str(now), ex=self.key_ttl_seconds)
        except RedisError as e:
            logger.warning("Session tracking unavailable for user %s: %s", user_id, e)
        return True

    def clear(self, user_id: str) -> None:
        try:
            self.client.delete(self._key(user_id))
        except RedisError as e:
            logger.warning("Could not clear session for user %s: %s", user_id, e)


_session_tracker: Optional[SessionTracker] = None


def get_session_tracker() -> SessionTracker:
    """FastAPI dependency returning the shared session tracker."""
    global _session_tracker
    if _session_tracker is None:
        _session_tracker = SessionTracker(get_redis_connection())
    return _session_tracker
