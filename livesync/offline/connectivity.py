import asyncio
from typing import Awaitable, Callable, Optional
import httpx
from ..config.schema import ConnectivityCfg
from ..transport.bus import EventBus, Subscription
from ..util.logging import log


class ConnectivityMonitor:
    """Online/offline signal. Set explicitly or derived from a periodic HTTP probe."""

    def __init__(self, cfg: Optional[ConnectivityCfg] = None, base_url: str = "",
                 online: bool = True, http: Optional[httpx.AsyncClient] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> None:
        self.cfg = cfg or ConnectivityCfg()
        self.base_url = base_url
        self._online = online
        self._watchers = EventBus("connectivity")
        self._http = http
        self._owns_http = http is None
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    @property
    def online(self) -> bool:
        return self._online

    def watch(self, callback: Callable[[bool], None]) -> Subscription:
        """Observe every transition; the callback receives the new online flag."""
        return self._watchers.subscribe("change", callback)

    def on_online(self, callback: Callable[[bool], None]) -> Subscription:
        """Observe offline→online transitions only."""
        return self._watchers.subscribe("online", callback)

    def set_online(self, online: bool) -> bool:
        """Record the current connectivity. Returns True if it changed."""
        online = bool(online)
        if online == self._online:
            return False
        self._online = online
        log("INFO", "connectivity", "online" if online else "offline")
        self._watchers.publish("change", online)
        if online:
            self._watchers.publish("online", True)
        return True

    async def probe_once(self) -> bool:
        url = f"{self.base_url.rstrip('/')}/{self.cfg.probe_path.lstrip('/')}"
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=5.0)
            self._owns_http = True
        try:
            response = await self._http.get(url)
            reachable = response.status_code < 500
        except httpx.HTTPError as e:
            log("DEBUG", "connectivity", "probe_failed", url=url, error=str(e) or type(e).__name__)
            reachable = False
        self.set_online(reachable)
        return reachable

    async def _probe_loop(self) -> None:
        while True:
            await self.probe_once()
            await self._sleep(self.cfg.probe_interval)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._probe_loop())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None
