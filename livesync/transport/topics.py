import asyncio
from typing import List, Optional, Set
from .connection import ConnectionManager
from .contracts import Topic
from ..util.const import CHAT_TOPIC_PREFIX, CONTROL_EVENTS, JOB_TOPIC_PREFIX
from ..util.types import Result
from ..util.logging import log


def job_topic(job_id: str) -> Topic:
    return f"{JOB_TOPIC_PREFIX}{job_id}"


def chat_topic(session_id: str) -> Topic:
    return f"{CHAT_TOPIC_PREFIX}{session_id}"


class TopicRegistry:
    """Tracks the topics the connection must be joined to.

    ``active`` is caller interest and survives reconnects; ``joined`` is what the
    current connection instance has actually been told and is emptied whenever
    that connection goes away.
    """

    def __init__(self, connection: ConnectionManager) -> None:
        self._connection = connection
        self._active: Set[Topic] = set()
        self._joined: Set[Topic] = set()
        self._pending: Set[asyncio.Task] = set()
        connection.add_connect_hook(self.rejoin_all)
        connection.add_disconnect_hook(self._forget_joined)

    @property
    def active(self) -> Set[Topic]:
        return set(self._active)

    @property
    def joined(self) -> Set[Topic]:
        return set(self._joined)

    def is_active(self, topic: Topic) -> bool:
        return topic in self._active

    async def join(self, topic: Topic) -> Result[None]:
        """Register interest in ``topic``; sends join-topic now if connected. Idempotent."""
        if topic in self._active:
            return Result.success()
        self._active.add(topic)
        log("DEBUG", "topics", "join", topic=topic)
        if self._connection.connected:
            return await self._send_join(topic)
        return Result.success()

    async def leave(self, topic: Topic) -> Result[None]:
        """Drop interest in ``topic``; sends leave-topic if it was joined. Idempotent."""
        if topic not in self._active:
            return Result.success()
        self._active.discard(topic)
        log("DEBUG", "topics", "leave", topic=topic)
        if topic in self._joined:
            self._joined.discard(topic)
            result = await self._connection.send(CONTROL_EVENTS["LEAVE_TOPIC"], topic)
            if not result.ok:
                return Result.failure("topics.send_failed", result.error.message, topic=topic)
        return Result.success()

    def discard(self, topic: Topic) -> Optional[asyncio.Task]:
        """Drop interest in ``topic`` right away; leave-topic goes out in the background.

        For synchronous callers. Without a running loop the server is not told.
        """
        if topic not in self._active:
            return None
        self._active.discard(topic)
        log("DEBUG", "topics", "discard", topic=topic)
        if topic not in self._joined:
            return None
        self._joined.discard(topic)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return None
        task = loop.create_task(self._connection.send(CONTROL_EVENTS["LEAVE_TOPIC"], topic))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def rejoin_all(self) -> None:
        """Issue join-topic for every active topic on the current connection."""
        topics: List[Topic] = sorted(self._active)
        failed = 0
        for topic in topics:
            result = await self._send_join(topic)
            if not result.ok:
                failed += 1
        log("INFO", "topics", "rejoined", count=len(topics) - failed, failed=failed)

    async def _send_join(self, topic: Topic) -> Result[None]:
        result = await self._connection.send(CONTROL_EVENTS["JOIN_TOPIC"], topic)
        if not result.ok:
            log("WARN", "topics", "join_failed", topic=topic, error=result.error.message)
            return Result.failure("topics.send_failed", result.error.message, topic=topic)
        self._joined.add(topic)
        return Result.success()

    def _forget_joined(self) -> None:
        if self._joined:
            log("DEBUG", "topics", "connection_lost", dropped=len(self._joined))
        self._joined.clear()
