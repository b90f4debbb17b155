"""
Redis client for the render task queue and status pub/sub
"""

import json
import time
import uuid
import structlog
from typing import Optional, Dict, Any
from redis import Redis, ConnectionPool
from redis.exceptions import RedisError, ConnectionError
from config import settings

logger = structlog.get_logger()

PRIORITY_HIGH = 100
PRIORITY_NORMAL = 50
PRIORITY_LOW = 10

PRIORITY_LEVELS = {
    "high": PRIORITY_HIGH,
    "normal": PRIORITY_NORMAL,
    "low": PRIORITY_LOW,
}

# Scores order by priority first, then FIFO by enqueue time (ms)
PRIORITY_SCORE_WEIGHT = 1e13

TASK_KEY_PREFIX = "render_task:"


def queue_score(priority: int, enqueued_ms: int) -> float:
    """Sorted-set score; lower pops first."""
    return -priority * PRIORITY_SCORE_WEIGHT + enqueued_ms


def resolve_priority(priority) -> int:
    """Accept a named level or an integer priority."""
    if priority is None:
        return settings.QUEUE_DEFAULT_PRIORITY
    if isinstance(priority, str):
        if priority.lower() in PRIORITY_LEVELS:
            return PRIORITY_LEVELS[priority.lower()]
        return int(priority)
    return int(priority)


class RenderQueue:
    """Redis-backed priority queue of render tasks with connection pooling"""

    def __init__(self, client: Optional[Redis] = None):
        """
        Args:
            client: Pre-built Redis client (tests); a pooled client is
                created on first use otherwise
        """
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = client

    def _connect(self):
        """Establish Redis connection with connection pool"""
        try:
            self._pool = ConnectionPool.from_url(
                settings.REDIS_URL,
                max_connections=settings.REDIS_MAX_CONNECTIONS,
                socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
                socket_connect_timeout=settings.REDIS_SOCKET_CONNECT_TIMEOUT,
                retry_on_timeout=settings.REDIS_RETRY_ON_TIMEOUT,
                health_check_interval=settings.REDIS_HEALTH_CHECK_INTERVAL,
                decode_responses=True
            )
            self._client = Redis(connection_pool=self._pool)

            # Test connection
            self._client.ping()
            logger.info("redis_connected", url=settings.REDIS_URL)

        except ConnectionError as e:
            self._client = None
            logger.error("redis_connection_failed", error=str(e))
            raise

    @property
    def client(self) -> Redis:
        """Redis client instance, connecting on first use"""
        if self._client is None:
            self._connect()
        return self._client

    def ping(self) -> bool:
        """Check if Redis is connected"""
        try:
            return bool(self.client.ping())
        except RedisError as e:
            logger.error("redis_ping_failed", error=str(e))
            return False

    def close(self):
        """Close Redis connection"""
        if self._client:
            self._client.close()
            self._client = None
            logger.info("redis_connection_closed")

    @staticmethod
    def task_key(task_id: str) -> str:
        return f"{TASK_KEY_PREFIX}{task_id}"

    # ===== Queue Operations =====

    def enqueue(
        self,
        payload: Dict[str, Any],
        priority=None,
        max_attempts: Optional[int] = None,
        task_id: Optional[str] = None
    ) -> str:
        """
        Add a render task to the queue

        Args:
            payload: Render task body (RenderTask or retry request fields)
            priority: Integer priority or "high" / "normal" / "low"
            max_attempts: Attempts before the task is marked failed
            task_id: Explicit id; generated when omitted

        Returns:
            str: Task id

        Raises:
            RedisError: Queue unavailable
        """
        task_id = task_id or str(uuid.uuid4())
        priority = resolve_priority(priority)
        max_attempts = max_attempts or settings.QUEUE_MAX_ATTEMPTS
        now_ms = int(time.time() * 1000)
        key = self.task_key(task_id)

        pipe = self.client.pipeline()
        pipe.hset(key, mapping={
            "id": task_id,
            "status": "queued",
            "priority": priority,
            "attempts": 0,
            "max_attempts": max_attempts,
            "payload": json.dumps(payload),
            "enqueued_at": now_ms,
        })
        pipe.expire(key, settings.RENDER_TASK_TTL)
        pipe.zadd(settings.RENDER_QUEUE_NAME, {task_id: queue_score(priority, now_ms)})
        pipe.execute()

        logger.info("task_enqueued", task_id=task_id, priority=priority, max_attempts=max_attempts)
        self.publish_status(task_id, "queued")
        return task_id

    def claim(self, timeout: Optional[int] = None) -> Optional[Dict[str, Any]]:
        """
        Pop the highest-priority task and mark it running

        Args:
            timeout: Seconds to block waiting for a task

        Returns:
            Optional[Dict]: {"id", "payload", "attempts", "max_attempts", "priority"}
            or None if the queue stayed empty
        """
        result = self.client.bzpopmin(
            settings.RENDER_QUEUE_NAME,
            timeout=timeout if timeout is not None else settings.QUEUE_CLAIM_TIMEOUT
        )
        if not result:
            return None

        _, task_id, _ = result
        key = self.task_key(task_id)
        attempts = self.client.hincrby(key, "attempts", 1)
        self.client.hset(key, mapping={"status": "running", "started_at": int(time.time() * 1000)})
        data = self.client.hgetall(key)
        if not data or "payload" not in data:
            # Hash expired while queued
            logger.warning("task_missing_on_claim", task_id=task_id)
            self.client.delete(key)
            return None

        self.publish_status(task_id, "running", attempts=attempts)
        logger.info("task_claimed", task_id=task_id, attempts=attempts)
        return {
            "id": task_id,
            "payload": json.loads(data["payload"]),
            "attempts": int(attempts),
            "max_attempts": int(data.get("max_attempts", settings.QUEUE_MAX_ATTEMPTS)),
            "priority": int(data.get("priority", settings.QUEUE_DEFAULT_PRIORITY)),
        }

    def complete(self, task_id: str, result: Dict[str, Any]) -> None:
        """Store a task's result and mark it completed"""
        self.client.hset(self.task_key(task_id), mapping={
            "status": "completed",
            "result": json.dumps(result),
            "finished_at": int(time.time() * 1000),
        })
        self.publish_status(task_id, "completed")
        logger.info("task_completed", task_id=task_id)

    def fail(self, task_id: str, error: Dict[str, Any], retryable: bool = False) -> bool:
        """
        Record a failure; requeue when retryable and attempts remain

        Returns:
            bool: True if the task went back on the queue
        """
        key = self.task_key(task_id)
        data = self.client.hgetall(key)
        attempts = int(data.get("attempts", 0))
        max_attempts = int(data.get("max_attempts", settings.QUEUE_MAX_ATTEMPTS))
        priority = int(data.get("priority", settings.QUEUE_DEFAULT_PRIORITY))

        if retryable and attempts < max_attempts:
            self.client.hset(key, mapping={"status": "queued", "error": json.dumps(error)})
            self.client.zadd(settings.RENDER_QUEUE_NAME, {task_id: queue_score(priority, int(time.time() * 1000))})
            self.publish_status(task_id, "queued", attempts=attempts)
            logger.warning("task_requeued", task_id=task_id, attempts=attempts, max_attempts=max_attempts)
            return True

        self.client.hset(key, mapping={
            "status": "failed",
            "error": json.dumps(error),
            "finished_at": int(time.time() * 1000),
        })
        self.publish_status(task_id, "failed", attempts=attempts)
        logger.error("task_failed", task_id=task_id, attempts=attempts, error_type=error.get("errorType"))
        return False

    def get_status(self, task_id: str) -> Optional[Dict[str, Any]]:
        """
        Get task status and metadata

        Returns:
            Optional[Dict]: Decoded task record or None if not found
        """
        data = self.client.hgetall(self.task_key(task_id))
        if not data:
            return None

        status = {
            "id": data.get("id", task_id),
            "status": data.get("status"),
            "priority": int(data.get("priority", settings.QUEUE_DEFAULT_PRIORITY)),
            "attempts": int(data.get("attempts", 0)),
            "max_attempts": int(data.get("max_attempts", settings.QUEUE_MAX_ATTEMPTS)),
            "result": None,
            "error": None,
        }
        for field in ("result", "error"):
            if data.get(field):
                status[field] = json.loads(data[field])
        return status

    def depth(self) -> int:
        """Number of tasks waiting"""
        return int(self.client.zcard(settings.RENDER_QUEUE_NAME))

    # ===== Pub/Sub Operations =====

    def publish_status(self, task_id: str, status: str, **kwargs) -> bool:
        """
        Publish task status update to subscribers

        Returns:
            bool: Success status
        """
        try:
            message = json.dumps({
                "task_id": task_id,
                "status": status,
                **kwargs
            })

            self.client.publish(self.task_key(task_id), message)
            self.client.publish(settings.RENDER_STATUS_CHANNEL, message)
            return True

        except RedisError as e:
            logger.error("publish_status_failed", task_id=task_id, error=str(e))
            return False

    def subscribe_to_status(self, task_id: Optional[str] = None):
        """
        Subscribe to status updates for one task, or for all tasks

        Returns:
            PubSub: Redis PubSub instance
        """
        pubsub = self.client.pubsub()
        pubsub.subscribe(self.task_key(task_id) if task_id else settings.RENDER_STATUS_CHANNEL)
        return pubsub


# Global render queue instance (connects lazily)
render_queue = RenderQueue()


def get_render_queue() -> RenderQueue:
    """FastAPI dependency for the render queue"""
    return render_queue
