from typing import Any, Dict, Optional
import httpx
from .config.schema import ClientCfg
from .events.normalize import EventNormalizer
from .offline import ActionLog, ConnectivityMonitor, RedisMirror, ReplayCoordinator
from .offline.redis_transport import RedisTransport
from .tracking import JobTracker, StreamTracker
from .transport.bus import EventBus
from .transport.connection import ConnectionManager, Connector, TokenProvider
from .transport.contracts import Identity, QueuedAction
from .transport.topics import TopicRegistry
from .util.types import Result
from .util.logging import log


class LiveSyncClient:
    """One connection, its topic registry, the trackers riding on it and the offline queue.

    Every component is constructed here and handed its collaborators explicitly;
    nothing is looked up through module globals.
    """

    def __init__(self, cfg: Optional[ClientCfg] = None, connector: Optional[Connector] = None,
                 token_provider: Optional[TokenProvider] = None,
                 http: Optional[httpx.AsyncClient] = None,
                 mirror_transport: Optional[RedisTransport] = None) -> None:
        self.cfg = cfg or ClientCfg()

        self.connection = ConnectionManager(self.cfg.push, connector=connector, token_provider=token_provider)
        self.topics = TopicRegistry(self.connection)
        self.events = EventBus("canonical")
        self.normalizer = EventNormalizer()
        self._relay = self.normalizer.attach(self.connection.events, self.events)

        self.action_log = ActionLog(self.cfg.queue.path, self.cfg.queue.record_name)
        self.mirror: Optional[RedisMirror] = None
        if self.cfg.mirror.enabled or mirror_transport is not None:
            transport = mirror_transport or RedisTransport(self.cfg.mirror)
            self.mirror = RedisMirror(transport, self.cfg.queue.record_name)
            self.action_log.add_forwarder(self.mirror.schedule)

        self.replay = ReplayCoordinator(
            self.action_log, self.cfg.requests,
            synced_display_sec=self.cfg.queue.synced_display_sec,
            http=http, mirror=self.mirror,
        )
        self.connectivity = ConnectivityMonitor(self.cfg.connectivity, self.cfg.requests.base_url, http=http)
        self.connectivity.on_online(lambda _online: self.replay.trigger())

        self._jobs: Dict[str, JobTracker] = {}
        self._streams: Dict[str, StreamTracker] = {}

    async def connect(self, identity: Identity) -> Result[None]:
        result = await self.connection.connect(identity)
        if result.ok and self.cfg.connectivity.probe:
            self.connectivity.start()
        return result

    async def disconnect(self) -> Result[None]:
        return await self.connection.disconnect()

    async def track_job(self, job_id: str) -> JobTracker:
        tracker = self._jobs.get(job_id)
        if tracker is None:
            tracker = JobTracker(self.events, self.topics)
            self._jobs[job_id] = tracker
        result = await tracker.start(job_id)
        if not result.ok:
            log("WARN", "client", "job_join_failed", job_id=job_id, error=result.error.message)
        return tracker

    async def untrack_job(self, job_id: str) -> Result[None]:
        tracker = self._jobs.pop(job_id, None)
        if tracker is None:
            return Result.success()
        return await tracker.stop()

    async def track_stream(self, session_id: str) -> StreamTracker:
        tracker = self._streams.get(session_id)
        if tracker is None:
            tracker = StreamTracker(self.events, self.topics, self.connection)
            self._streams[session_id] = tracker
        result = await tracker.start(session_id)
        if not result.ok:
            log("WARN", "client", "stream_join_failed", session_id=session_id, error=result.error.message)
        return tracker

    async def untrack_stream(self, session_id: str) -> Result[None]:
        tracker = self._streams.pop(session_id, None)
        if tracker is None:
            return Result.success()
        return await tracker.stop()

    async def write(self, target: str, method: str = "POST", payload: Any = None,
                    headers: Optional[Dict[str, str]] = None) -> Result[Any]:
        """Send a write now when online; capture it in the action log when offline.

        Online writes return the HTTP status code; captured writes return the QueuedAction.
        """
        if not self.connectivity.online:
            return self.action_log.enqueue(target, method, payload, headers)
        action = QueuedAction(id="direct", target=target, method=method.upper(), payload=payload,
                              enqueued_at=0.0, headers=headers)
        return await self.replay.send(action)

    def set_online(self, online: bool) -> bool:
        return self.connectivity.set_online(online)

    async def close(self) -> None:
        for job_id in list(self._jobs):
            await self.untrack_job(job_id)
        for session_id in list(self._streams):
            await self.untrack_stream(session_id)
        await self.connection.disconnect()
        await self.connectivity.stop()
        await self.replay.close()
        if self.mirror is not None:
            await self.mirror.close()
        self._relay.unsubscribe()

    async def __aenter__(self) -> "LiveSyncClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()
