"""
Redis helpers for detection runs: per-user run lock and Pub/Sub status events.
Published events are consumed by the notification layer to surface new
pending detections for review.
"""
import json
import os
import logging
from datetime import datetime, timezone
from typing import Optional

import redis
from redis.lock import Lock

logger = logging.getLogger(__name__)


class EventPublisher:
    """
    Publishes detection run events to Redis Pub/Sub channels.

    Channel format: detection:{user_id}

    Event types:
    - detection_completed: Run applied; carries the run summary
    - detection_failed: Run failed with error
    """

    def __init__(self, redis_url: Optional[str] = None):
        """
        Initialize the event publisher.

        Args:
            redis_url: Redis connection URL. If not provided, uses REDIS_URL env var.
        """
        self.redis_url = redis_url or os.getenv("REDIS_URL", "redis://localhost:6379/0")
        self._redis: Optional[redis.Redis] = None

    @property
    def redis(self) -> redis.Redis:
        """Lazy-load Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url, decode_responses=True)
        return self._redis

    @staticmethod
    def _channel(user_id: str) -> str:
        return f"detection:{user_id}"

    @staticmethod
    def lock_key(user_id: str) -> str:
        return f"detection_lock:{user_id}"

    def run_lock(self, user_id: str, timeout: int) -> Lock:
        """
        Lock guaranteeing at most one detection run per user.

        The lock expires after `timeout` seconds so a crashed worker cannot
        block the user forever.
        """
        return self.redis.lock(self.lock_key(user_id), timeout=timeout, blocking=False)

    def _publish(self, user_id: str, event_data: dict) -> None:
        # Notifications are best effort; a lost event never fails the run
        try:
            channel = self._channel(user_id)
            self.redis.publish(channel, json.dumps(event_data))
            logger.debug(f"Published event to {channel}: {event_data.get('type')}")
        except redis.RedisError as e:
            logger.error(f"Failed to publish event: {e}")

    def publish_detection_completed(self, user_id: str, summary: dict) -> None:
        """
        Publish a detection_completed event.

        Args:
            user_id: The user ID
            summary: Run summary (created/updated/unchanged counts)
        """
        self._publish(user_id, {
            "type": "detection_completed",
            "summary": summary,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })
        logger.info(
            f"Detection completed for {user_id}: {summary.get('created_count', 0)} created, "
            f"{summary.get('updated_count', 0)} updated"
        )

    def publish_detection_failed(self, user_id: str, error: str) -> None:
        self._publish(user_id, {
            "type": "detection_failed",
            "error": error,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })
        logger.error(f"Detection failed for {user_id}: {error}")

    def close(self) -> None:
        """Close the Redis connection."""
        if self._redis:
            self._redis.close()
            self._redis = None
