import asyncio
import msgpack
from typing import Iterable, List, Optional, Set
from .redis_transport import RedisTransport
from ..transport.contracts import QueuedAction
from ..util.const import MIRROR_MESSAGE_TYPE
from ..util.types import Result
from ..util.logging import log


def mirror_key(record_name: str) -> str:
    return f"livesync:queue:{record_name}"


class RedisMirror:
    """Best-effort secondary copy of queued actions, kept in a Redis list.

    Every entry is a msgpack envelope ``{"type": "queue-action", "action": {...}}``.
    Nothing here is allowed to fail an enqueue: errors are logged and returned.
    """

    def __init__(self, transport: RedisTransport, record_name: str) -> None:
        self._transport = transport
        self.key = mirror_key(record_name)
        self._pending: Set[asyncio.Task] = set()

    async def _ensure_connected(self) -> Result[None]:
        if self._transport.connected:
            return Result.success()
        return await self._transport.connect()

    async def forward(self, action: QueuedAction) -> Result[None]:
        try:
            conn = await self._ensure_connected()
            if not conn.ok:
                raise ConnectionError(conn.error.message)
            envelope = msgpack.packb({"type": MIRROR_MESSAGE_TYPE, "action": action.to_record()}, use_bin_type=True)
            pushed = await self._transport.push(self.key, envelope)
            if not pushed.ok:
                raise ConnectionError(pushed.error.message)
            log("DEBUG", "mirror", "forwarded", id=action.id)
            return Result.success()
        except Exception as e:
            log("WARN", "mirror", "forward_failed", id=action.id, error=str(e))
            return Result.failure("mirror.forward_failed", str(e), id=action.id)

    def schedule(self, action: QueuedAction) -> Optional[asyncio.Task]:
        """Forward in the background when an event loop is running; otherwise skip."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log("DEBUG", "mirror", "skipped_no_loop", id=action.id)
            return None
        task = loop.create_task(self.forward(action))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def flush(self) -> None:
        """Wait for scheduled forwards to settle."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def list_actions(self) -> Result[List[QueuedAction]]:
        try:
            conn = await self._ensure_connected()
            if not conn.ok:
                return Result(ok=False, error=conn.error)
            items = await self._transport.range(self.key)
            if not items.ok:
                return Result(ok=False, error=items.error)

            actions: List[QueuedAction] = []
            for raw in items.value:
                try:
                    envelope = msgpack.unpackb(raw, raw=False)
                    if envelope.get("type") != MIRROR_MESSAGE_TYPE:
                        continue
                    actions.append(QueuedAction.from_record(envelope["action"]))
                except Exception as e:
                    log("WARN", "mirror", "parse_failed", error=str(e))
            return Result.success(actions)
        except Exception as e:
            return Result.failure("mirror.list_failed", str(e))

    async def discard(self, ids: Iterable[str]) -> Result[int]:
        """Remove the envelopes of exactly ``ids``; others, mirrored meanwhile, stay."""
        wanted = set(ids)
        if not wanted:
            return Result.success(0)
        try:
            conn = await self._ensure_connected()
            if not conn.ok:
                return Result(ok=False, error=conn.error)
            items = await self._transport.range(self.key)
            if not items.ok:
                return Result(ok=False, error=items.error)

            removed = 0
            for raw in items.value:
                try:
                    envelope = msgpack.unpackb(raw, raw=False)
                    action_id = envelope["action"]["id"]
                except Exception as e:
                    log("DEBUG", "mirror", "skipped_entry", error=str(e))
                    continue
                if action_id not in wanted:
                    continue
                result = await self._transport.remove(self.key, raw)
                if not result.ok:
                    return Result(ok=False, error=result.error)
                removed += result.value
            log("DEBUG", "mirror", "discarded", key=self.key, count=removed)
            return Result.success(removed)
        except Exception as e:
            return Result.failure("mirror.discard_failed", str(e))

    async def clear(self) -> Result[None]:
        try:
            conn = await self._ensure_connected()
            if not conn.ok:
                return Result(ok=False, error=conn.error)
            result = await self._transport.delete_key(self.key)
            if result.ok:
                log("DEBUG", "mirror", "cleared", key=self.key)
            return result
        except Exception as e:
            return Result.failure("mirror.clear_failed", str(e))

    async def close(self) -> None:
        await self.flush()
        if self._transport.connected:
            await self._transport.disconnect()
