"""
Redis cache for report payloads.
"""
import json
import logging
from typing import Any, Optional

from redis import Redis
from redis.exceptions import RedisError

from budget_app.config import settings
from budget_app.services.job_queue import get_redis_connection

logger = logging.getLogger(__name__)


class ReportCache:
    def __init__(self, client: Redis, ttl_seconds: Optional[int] = None):
        self.client = client
        self.ttl_seconds = ttl_seconds or settings.REPORT_CACHE_TTL_SECONDS

    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self.client.get(key)
        except RedisError as e:
            logger.warning("Report cache read failed for %s: %s", key, e)
            return None
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        try:
            self.client.set(key, json.dumps(value, default=str), ex=self.ttl_seconds)
        except RedisError as e:
            logger.warning("Report cache write failed for %s: %s", key, e)


_report_cache: Optional[ReportCache] = None


def get_report_cache() -> ReportCache:
    """FastAPI dependency returning the shared report cache."""
    global _report_cache
    if _report_cache is None:
        _report_cache = ReportCache(get_redis_connection())
    return _report_cache
