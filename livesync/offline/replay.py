import asyncio
from typing import Awaitable, Callable, Dict, Optional
import httpx
from .action_log import ActionLog
from .mirror import RedisMirror
from ..config.schema import RequestCfg
from ..transport.bus import EventBus, Subscription
from ..transport.contracts import QueuedAction
from ..util.const import DEFAULTS, SyncStatus
from ..util.types import Result
from ..util.logging import log


class ReplayCoordinator:
    """Replays the action log, in order and one request at a time, over plain HTTP.

    All-or-nothing per pass: the log is only trimmed after every entry went
    through. On the first failure the pass stops and the log is left exactly as
    it was, including entries that already succeeded, which are sent again on
    the next pass.
    """

    def __init__(self, action_log: ActionLog, cfg: Optional[RequestCfg] = None,
                 synced_display_sec: float = DEFAULTS["SYNCED_DISPLAY_SEC"],
                 http: Optional[httpx.AsyncClient] = None, mirror: Optional[RedisMirror] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> None:
        self._log = action_log
        self.cfg = cfg or RequestCfg()
        self.synced_display_sec = synced_display_sec
        self._http = http
        self._owns_http = http is None
        self._mirror = mirror
        self._sleep = sleep
        self._status = SyncStatus.IDLE
        self._watchers = EventBus("replay")
        self._draining = False
        self._revert_task: Optional[asyncio.Task] = None
        self._drain_task: Optional[asyncio.Task] = None

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def draining(self) -> bool:
        return self._draining

    def watch(self, callback: Callable[[SyncStatus], None]) -> Subscription:
        return self._watchers.subscribe("status", callback)

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.cfg.timeout)
            self._owns_http = True
        return self._http

    async def drain(self) -> Result[int]:
        """Replay every queued action. Returns how many were replayed."""
        if self._draining:
            log("DEBUG", "replay", "already_draining")
            return Result.failure("replay.in_progress", "A drain is already running")

        actions = self._log.list()
        if not actions:
            return Result.success(0)

        self._draining = True
        self._cancel_revert()
        self._set_status(SyncStatus.SYNCING)
        log("INFO", "replay", "drain_started", count=len(actions))
        try:
            for index, action in enumerate(actions):
                result = await self.send(action)
                if not result.ok:
                    self._set_status(SyncStatus.ERROR)
                    log("ERROR", "replay", "drain_failed", id=action.id, index=index,
                        code=result.error.code, error=result.error.message)
                    return Result.failure(result.error.code, result.error.message,
                                          id=action.id, index=index, replayed=index)

            removed = self._log.remove(a.id for a in actions)
            if not removed.ok:
                self._set_status(SyncStatus.ERROR)
                return Result(ok=False, error=removed.error)
        finally:
            self._draining = False

        if self._mirror is not None:
            discarded = await self._mirror.discard([a.id for a in actions])
            if not discarded.ok:
                log("WARN", "replay", "mirror_discard_failed", error=discarded.error.message)

        self._set_status(SyncStatus.SYNCED)
        log("INFO", "replay", "drain_complete", count=len(actions))
        self._schedule_revert()
        return Result.success(len(actions))

    def trigger(self) -> Optional[asyncio.Task]:
        """Start a drain in the background (used for offline→online transitions)."""
        if self._draining:
            return self._drain_task
        self._drain_task = asyncio.get_running_loop().create_task(self.drain())
        return self._drain_task

    async def send(self, action: QueuedAction) -> Result[int]:
        """Perform one captured write; non-2xx responses count as failures."""
        url = self._url(action.target)
        headers: Dict[str, str] = dict(self.cfg.headers)
        if action.headers:
            headers.update(action.headers)

        kwargs = {"headers": headers}
        if action.payload is not None:
            kwargs["json"] = action.payload
        try:
            response = await self._client().request(action.method, url, **kwargs)
            response.raise_for_status()
            log("DEBUG", "replay", "replayed", id=action.id, method=action.method, url=url,
                status=response.status_code)
            return Result.success(response.status_code)
        except httpx.HTTPStatusError as e:
            return Result.failure("replay.http_error", str(e), status=e.response.status_code)
        except httpx.HTTPError as e:
            return Result.failure("replay.request_failed", str(e) or type(e).__name__)
        except (httpx.InvalidURL, ValueError, TypeError) as e:
            # Malformed target or a payload that cannot be encoded
            log("WARN", "replay", "request_rejected", id=action.id, url=url, error=str(e))
            return Result.failure("replay.request_failed", str(e) or type(e).__name__)

    def _url(self, target: str) -> str:
        if target.startswith(("http://", "https://")):
            return target
        return f"{self.cfg.base_url.rstrip('/')}/{target.lstrip('/')}"

    def _set_status(self, status: SyncStatus) -> None:
        if status == self._status:
            return
        self._status = status
        self._watchers.publish("status", status)

    def _schedule_revert(self) -> None:
        self._cancel_revert()
        self._revert_task = asyncio.get_running_loop().create_task(self._revert_after_delay())

    async def _revert_after_delay(self) -> None:
        await self._sleep(self.synced_display_sec)
        if self._status == SyncStatus.SYNCED:
            self._set_status(SyncStatus.IDLE)

    def _cancel_revert(self) -> None:
        if self._revert_task is not None and not self._revert_task.done():
            self._revert_task.cancel()
        self._revert_task = None

    async def wait_idle(self) -> None:
        """Wait for a pending synced→idle revert (mostly for callers that exit right after a drain)."""
        task = self._revert_task
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def close(self) -> None:
        self._cancel_revert()
        if self._drain_task is not None and not self._drain_task.done():
            self._drain_task.cancel()
            try:
                await self._drain_task
            except asyncio.CancelledError:
                pass
        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None
