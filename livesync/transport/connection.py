import asyncio
import random
from typing import Any, Awaitable, Callable, Dict, List, Optional
import websockets
from websockets.exceptions import ConnectionClosed
from .bus import EventBus, Subscription
from .codec import FrameError, decode_frame, encode_frame
from .contracts import Identity
from ..config.schema import PushCfg
from ..util.const import CONTROL_EVENTS, ConnectionState
from ..util.types import Result
from ..util.logging import log

Connector = Callable[[str], Awaitable[Any]]
TokenProvider = Callable[[], Awaitable[str]]
ConnectHook = Callable[[], Awaitable[None]]
DisconnectHook = Callable[[], None]


class ConnectionManager:
    """Owns the authenticated push-channel connection.

    ``connect`` performs the first handshake and reports failure to the caller
    without retrying. Once established, a dropped connection is re-opened in the
    background with exponential backoff; every successful handshake runs the
    registered connect hooks (topic re-join) before the state flips to connected.
    ``disconnect`` may run at any time; a handshake still in flight is abandoned
    and its socket closed.
    """

    def __init__(self, cfg: Optional[PushCfg] = None, connector: Optional[Connector] = None,
                 token_provider: Optional[TokenProvider] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 rng: Callable[[], float] = random.random) -> None:
        self.cfg = cfg or PushCfg()
        self.url = str(self.cfg.url)
        self.events = EventBus("push")
        self._state_bus = EventBus("connection")
        self._connector = connector or self._default_connector
        self._token_provider = token_provider
        self._sleep = sleep
        self._rng = rng

        self._state = ConnectionState.DISCONNECTED
        self._identity: Optional[Identity] = None
        self._ws: Any = None
        self._reader_task: Optional[asyncio.Task] = None
        self._closing = False
        self._lock = asyncio.Lock()
        self._acks: Dict[int, asyncio.Future] = {}
        self._next_ack = 0
        self._connect_hooks: List[ConnectHook] = []
        self._disconnect_hooks: List[DisconnectHook] = []

    async def _default_connector(self, url: str) -> Any:
        return await websockets.connect(url, max_size=self.cfg.max_frame_bytes)

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    def watch(self, callback: Callable[[ConnectionState], None]) -> Subscription:
        """Observe state changes; the callback receives the new ConnectionState."""
        return self._state_bus.subscribe("state", callback)

    def on_reconnect_failed(self, callback: Callable[[int], None]) -> Subscription:
        return self._state_bus.subscribe("reconnect_failed", callback)

    def add_connect_hook(self, hook: ConnectHook) -> None:
        self._connect_hooks.append(hook)

    def add_disconnect_hook(self, hook: DisconnectHook) -> None:
        self._disconnect_hooks.append(hook)

    async def connect(self, identity: Identity) -> Result[None]:
        """Establish the session for ``identity``. No-op if already connected."""
        async with self._lock:
            if self._state == ConnectionState.CONNECTED:
                return Result.success()
            if identity is None or not identity.token:
                log("ERROR", "connection", "missing_identity")
                return Result.failure("connection.missing_identity", "Cannot connect: not authenticated")

            # A reconnect loop in backoff would open a socket of its own
            if self._reader_task is not None:
                if not self._reader_task.done():
                    log("INFO", "connection", "reconnect_superseded")
                await self._stop_reader()

            self._identity = identity
            self._closing = False
            self._set_state(ConnectionState.CONNECTING)

            result = await self._open(identity.token)
            if not result.ok:
                if not self._closing:
                    self._set_state(ConnectionState.DISCONNECTED)
                log("ERROR", "connection", "connect_failed", code=result.error.code, error=result.error.message)
                return result

            self._reader_task = asyncio.create_task(self._read_loop(self._ws))
            log("INFO", "connection", "connected", url=self.url, user_id=identity.user_id)
            return Result.success()

    async def disconnect(self) -> Result[None]:
        """Tear the session down and forget the identity."""
        self._closing = True
        ws, self._ws = self._ws, None

        error = None
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                error = str(e)
                log("WARN", "connection", "close_failed", error=error)

        await self._stop_reader()
        self._fail_acks()
        self._identity = None
        self._run_disconnect_hooks()
        self._set_state(ConnectionState.DISCONNECTED)
        log("INFO", "connection", "disconnected")
        if error:
            return Result.failure("connection.disconnect_failed", error)
        return Result.success()

    async def send(self, event: str, data: Any = None) -> Result[None]:
        ws = self._ws
        if ws is None:
            return Result.failure("connection.not_connected", "Not connected")
        try:
            await ws.send(encode_frame(event, data))
            return Result.success()
        except Exception as e:
            log("WARN", "connection", "send_failed", event=event, error=str(e))
            return Result.failure("connection.send_failed", str(e))

    async def request(self, event: str, data: Any = None, timeout: Optional[float] = None) -> Result[Dict[str, Any]]:
        """Send ``event`` and wait for the producer's ``ack`` frame; the value is its data."""
        ws = self._ws
        if ws is None:
            return Result.failure("connection.not_connected", "Not connected")

        self._next_ack += 1
        ack_id = self._next_ack
        fut = asyncio.get_running_loop().create_future()
        self._acks[ack_id] = fut
        try:
            await ws.send(encode_frame(event, data, ack=ack_id))
            reply = await asyncio.wait_for(fut, timeout=timeout or self.cfg.ack_timeout)
        except asyncio.TimeoutError:
            log("WARN", "connection", "ack_timeout", event=event, ack=ack_id)
            return Result.failure("connection.ack_timeout", f"No reply to {event}")
        except Exception as e:
            log("WARN", "connection", "send_failed", event=event, error=str(e))
            return Result.failure("connection.send_failed", str(e))
        finally:
            self._acks.pop(ack_id, None)

        if reply is None:
            return Result.failure("connection.closed", f"Connection lost before the reply to {event}")
        return Result.success(reply)

    async def _open(self, token: str) -> Result[None]:
        """Open a socket and run the auth handshake. On success the socket becomes current.

        Gives up with ``connection.cancelled`` when ``disconnect`` runs meanwhile.
        """
        try:
            ws = await self._connector(self.url)
        except Exception as e:
            return Result.failure("connection.open_failed", str(e))
        if self._closing:
            await self._close_quietly(ws)
            return self._cancelled()

        try:
            await ws.send(encode_frame(CONTROL_EVENTS["AUTHENTICATE"], {"token": token}))
            raw = await asyncio.wait_for(ws.recv(), timeout=self.cfg.handshake_timeout)
            reply = decode_frame(raw, self.cfg.max_frame_bytes)
        except asyncio.CancelledError:
            await self._close_quietly(ws)
            raise
        except asyncio.TimeoutError:
            await self._close_quietly(ws)
            return Result.failure("connection.handshake_timeout", "No handshake reply")
        except (ConnectionClosed, FrameError) as e:
            await self._close_quietly(ws)
            return Result.failure("connection.handshake_failed", str(e))
        except Exception as e:
            await self._close_quietly(ws)
            return Result.failure("connection.handshake_failed", str(e))

        if reply.name == CONTROL_EVENTS["AUTH_ERROR"]:
            await self._close_quietly(ws)
            message = reply.data.get("error") or "Authentication rejected"
            return Result.failure("connection.auth_failed", message)
        if reply.name != CONTROL_EVENTS["AUTHENTICATED"]:
            await self._close_quietly(ws)
            return Result.failure("connection.handshake_failed", f"Unexpected handshake frame: {reply.name}")
        if self._closing:
            await self._close_quietly(ws)
            return self._cancelled()

        self._ws = ws
        try:
            for hook in list(self._connect_hooks):
                try:
                    await hook()
                except Exception as e:
                    log("ERROR", "connection", "connect_hook_failed", error=str(e))
        except asyncio.CancelledError:
            if self._ws is ws:
                self._ws = None
            await self._close_quietly(ws)
            raise
        if self._closing:
            if self._ws is ws:
                self._ws = None
            await self._close_quietly(ws)
            return self._cancelled()
        self._set_state(ConnectionState.CONNECTED)
        return Result.success()

    def _cancelled(self) -> Result[None]:
        log("INFO", "connection", "handshake_abandoned")
        return Result.failure("connection.cancelled", "Disconnected during the handshake")

    async def _read_loop(self, ws: Any) -> None:
        try:
            async for raw in ws:
                try:
                    event = decode_frame(raw, self.cfg.max_frame_bytes)
                except FrameError as e:
                    log("WARN", "connection", "bad_frame", error=str(e))
                    continue
                if event.name == CONTROL_EVENTS["ACK"] and event.ack is not None:
                    self._resolve_ack(event.ack, event.data)
                    continue
                self.events.publish(event.name, event)
        except ConnectionClosed as e:
            log("WARN", "connection", "closed", reason=str(e))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log("ERROR", "connection", "read_failed", error=str(e))

        if self._closing or ws is not self._ws:
            return

        log("WARN", "connection", "dropped", url=self.url)
        self._ws = None
        self._fail_acks()
        self._run_disconnect_hooks()
        if not self.cfg.reconnection or self.cfg.reconnection_attempts == 0:
            self._set_state(ConnectionState.DISCONNECTED)
            return
        await self._reconnect()

    async def _reconnect(self) -> None:
        attempts = self.cfg.reconnection_attempts
        for attempt in range(1, attempts + 1):
            self._set_state(ConnectionState.CONNECTING)
            await self._sleep(self.backoff_delay(attempt))
            if self._closing or self._identity is None:
                return

            try:
                token = await self._token_provider() if self._token_provider else self._identity.token
            except Exception as e:
                log("WARN", "connection", "token_refresh_failed", attempt=attempt, error=str(e))
                continue

            result = await self._open(token)
            if self._closing:
                return
            if result.ok:
                self._reader_task = asyncio.create_task(self._read_loop(self._ws))
                log("INFO", "connection", "reconnected", attempt=attempt)
                return
            log("WARN", "connection", "reconnect_attempt_failed", attempt=attempt,
                code=result.error.code, error=result.error.message)

        self._set_state(ConnectionState.DISCONNECTED)
        log("ERROR", "connection", "reconnect_exhausted", attempts=attempts)
        self._state_bus.publish("reconnect_failed", attempts)

    def backoff_delay(self, attempt: int) -> float:
        """Delay before reconnect ``attempt`` (1-based): doubling from the base, jittered, capped."""
        delay = self.cfg.reconnection_delay * (2 ** (attempt - 1))
        factor = self.cfg.randomization_factor
        if factor:
            delay *= 1 + factor * (2 * self._rng() - 1)
        return min(delay, self.cfg.reconnection_delay_max)

    async def _stop_reader(self) -> None:
        """Cancel the reader task, and with it any reconnect loop it is running."""
        task, self._reader_task = self._reader_task, None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _resolve_ack(self, ack_id: int, data: Dict[str, Any]) -> None:
        fut = self._acks.pop(ack_id, None)
        if fut is None or fut.done():
            log("DEBUG", "connection", "unexpected_ack", ack=ack_id)
            return
        fut.set_result(data)

    def _fail_acks(self) -> None:
        pending = list(self._acks.values())
        self._acks.clear()
        for fut in pending:
            if not fut.done():
                fut.set_result(None)

    def _run_disconnect_hooks(self) -> None:
        for hook in list(self._disconnect_hooks):
            try:
                hook()
            except Exception as e:
                log("ERROR", "connection", "disconnect_hook_failed", error=str(e))

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        self._state = state
        log("DEBUG", "connection", "state", state=state.value)
        self._state_bus.publish("state", state)

    async def _close_quietly(self, ws: Any) -> None:
        try:
            await ws.close()
        except Exception as e:
            log("DEBUG", "connection", "close_failed", error=str(e))
