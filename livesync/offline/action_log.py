import json
import os
import tempfile
import threading
import time
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional
from ..transport.bus import EventBus, Subscription
from ..transport.contracts import QueuedAction
from ..util.const import DEFAULTS
from ..util.types import Result
from ..util.logging import log


class ActionLog:
    """Append-only durable list of writes captured while offline.

    The whole list lives in one named record inside a JSON file. Every mutation
    is a locked read-modify-write ending in an atomic file replace, so an
    enqueue racing a drain cannot lose either side's update.
    """

    def __init__(self, path: str, record_name: str = DEFAULTS["QUEUE_RECORD_NAME"]) -> None:
        self.path = os.path.expanduser(path)
        self.record_name = record_name
        self._lock = threading.RLock()
        self._watchers = EventBus("action_log")
        self._forwarders: List[Callable[[QueuedAction], Any]] = []

    def watch(self, callback: Callable[[int], None]) -> Subscription:
        """Observe the queue length after every change."""
        return self._watchers.subscribe("size", callback)

    def add_forwarder(self, forwarder: Callable[[QueuedAction], Any]) -> None:
        """Register a best-effort secondary sink for newly queued actions."""
        self._forwarders.append(forwarder)

    def enqueue(self, target: str, method: str = "POST", payload: Any = None,
                headers: Optional[Dict[str, str]] = None) -> Result[QueuedAction]:
        """Append one action. Never touches the network."""
        action = QueuedAction(
            id=str(uuid.uuid4()),
            target=target,
            method=method.upper(),
            payload=payload,
            enqueued_at=time.time(),
            headers=dict(headers) if headers else None,
        )
        try:
            with self._lock:
                records = self._read()
                records.append(action.to_record())
                self._write(records)
                size = len(records)
        except Exception as e:
            log("ERROR", "action_log", "append_failed", target=target, error=str(e))
            return Result.failure("action_log.write_failed", str(e))

        log("INFO", "action_log", "queued", id=action.id, target=target, method=action.method, size=size)
        self._watchers.publish("size", size)

        for forward in self._forwarders:
            try:
                forward(action)
            except Exception as e:
                log("WARN", "action_log", "forward_failed", id=action.id, error=str(e))
        return Result.success(action)

    def list(self) -> List[QueuedAction]:
        with self._lock:
            records = self._read()
        actions = []
        for record in records:
            try:
                actions.append(QueuedAction.from_record(record))
            except (KeyError, TypeError) as e:
                log("WARN", "action_log", "parse_record_failed", error=str(e))
        return actions

    def size(self) -> int:
        with self._lock:
            return len(self._read())

    def remove(self, ids: Iterable[str]) -> Result[int]:
        """Atomically drop the given ids, keeping anything appended meanwhile."""
        drop = set(ids)
        try:
            with self._lock:
                records = self._read()
                kept = [r for r in records if r.get("id") not in drop]
                removed = len(records) - len(kept)
                if kept:
                    self._write(kept)
                else:
                    self._empty()
        except Exception as e:
            log("ERROR", "action_log", "remove_failed", error=str(e))
            return Result.failure("action_log.write_failed", str(e))
        log("DEBUG", "action_log", "removed", count=removed, remaining=len(kept))
        self._watchers.publish("size", len(kept))
        return Result.success(removed)

    def clear(self) -> Result[None]:
        try:
            with self._lock:
                self._empty()
        except Exception as e:
            log("ERROR", "action_log", "clear_failed", error=str(e))
            return Result.failure("action_log.clear_failed", str(e))
        log("INFO", "action_log", "cleared")
        self._watchers.publish("size", 0)
        return Result.success()

    def _read(self) -> List[Dict[str, Any]]:
        if not os.path.exists(self.path):
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                doc = json.load(f)
        except ValueError as e:
            # Keep the unreadable file for inspection and start over
            aside = f"{self.path}.corrupt-{int(time.time())}"
            os.replace(self.path, aside)
            log("ERROR", "action_log", "corrupt_record", moved_to=aside, error=str(e))
            return []
        records = doc.get(self.record_name, []) if isinstance(doc, dict) else []
        return [r for r in records if isinstance(r, dict)]

    def _write(self, records: List[Dict[str, Any]]) -> None:
        directory = os.path.dirname(self.path) or "."
        os.makedirs(directory, exist_ok=True)

        doc: Dict[str, Any] = {}
        if os.path.exists(self.path):
            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    existing = json.load(f)
                if isinstance(existing, dict):
                    doc = existing
            except ValueError:
                doc = {}
        doc[self.record_name] = records

        fd, tmp = tempfile.mkstemp(prefix=".livesync-", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(doc, f, ensure_ascii=False, default=str)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise

    def _empty(self) -> None:
        if not os.path.exists(self.path):
            return
        self._write([])
