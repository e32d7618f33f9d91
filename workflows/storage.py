"""Redis-based snapshot storage for the itinerary map service."""

from __future__ import annotations

import logging
from typing import Optional

import redis
from pydantic import ValidationError
from redis.exceptions import ConnectionError, RedisError

from config import REDIS_URL, SNAPSHOT_TTL_SECONDS
from workflows.schemas import MapSnapshot

logger = logging.getLogger(__name__)


class SnapshotStorage:
    """Redis-based snapshot storage with fallback to in-memory storage."""

    def __init__(self, redis_url: Optional[str] = REDIS_URL) -> None:
        self._redis_client: Optional[redis.Redis] = None
        self._fallback_storage: dict[str, MapSnapshot] = {}
        self._use_redis = False

        if redis_url:
            try:
                self._redis_client = redis.from_url(
                    redis_url,
                    decode_responses=False,
                    socket_connect_timeout=5,
                    socket_timeout=5,
                    health_check_interval=30,
                )
                # Test connection
                self._redis_client.ping()
                self._use_redis = True
                logger.info("Connected to Redis for snapshot storage")
            except (ConnectionError, RedisError, OSError) as e:
                logger.warning(f"Failed to connect to Redis: {e}. Using in-memory storage.")
                self._redis_client = None
                self._use_redis = False
        else:
            logger.info("REDIS_URL not set. Using in-memory storage.")

    @property
    def uses_redis(self) -> bool:
        return self._use_redis

    @staticmethod
    def _key(session_id: str) -> str:
        return f"snapshot:{session_id}"

    def get(self, session_id: str) -> Optional[MapSnapshot]:
        """Retrieve the last snapshot for a session."""
        if self._use_redis and self._redis_client:
            try:
                data = self._redis_client.get(self._key(session_id))
                if data:
                    return MapSnapshot.model_validate_json(data)
                return None
            except (RedisError, ValidationError) as e:
                logger.error(f"Error retrieving snapshot {session_id} from Redis: {e}")
                return self._fallback_storage.get(session_id)
        return self._fallback_storage.get(session_id)

    def set(self, session_id: str, snapshot: MapSnapshot) -> None:
        """Store a snapshot with TTL."""
        if self._use_redis and self._redis_client:
            try:
                self._redis_client.setex(
                    self._key(session_id),
                    SNAPSHOT_TTL_SECONDS,
                    snapshot.model_dump_json(),
                )
                return
            except RedisError as e:
                logger.error(f"Error storing snapshot {session_id} in Redis: {e}")
        # Fallback to in-memory
        self._fallback_storage[session_id] = snapshot

    def delete(self, session_id: str) -> None:
        """Delete a snapshot."""
        self._fallback_storage.pop(session_id, None)
        if self._use_redis and self._redis_client:
            try:
                self._redis_client.delete(self._key(session_id))
            except RedisError as e:
                logger.error(f"Error deleting snapshot {session_id} from Redis: {e}")

    def exists(self, session_id: str) -> bool:
        if self._use_redis and self._redis_client:
            try:
                return bool(self._redis_client.exists(self._key(session_id)))
            except RedisError as e:
                logger.error(f"Error checking snapshot {session_id} in Redis: {e}")
        return session_id in self._fallback_storage


# Global snapshot storage instance
_snapshot_storage: Optional[SnapshotStorage] = None


def get_snapshot_storage() -> SnapshotStorage:
    """Get or create the global snapshot storage instance."""
    global _snapshot_storage
    if _snapshot_storage is None:
        _snapshot_storage = SnapshotStorage()
    return _snapshot_storage
