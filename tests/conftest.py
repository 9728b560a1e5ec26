"""Pytest configuration for LiveSync tests."""

import asyncio
import json
import pytest
from livesync.config.schema import PushCfg
from livesync.transport.codec import encode_frame
from livesync.transport.connection import ConnectionManager
from livesync.offline.action_log import ActionLog

_CLOSED = object()


class FakeSocket:
    """In-memory stand-in for a websocket client connection.

    ``reply`` is the handshake answer as ``(event, data)``; None never answers.
    With a ``gate`` event set, the answer waits until the gate opens.
    Frames the client sends are recorded decoded in ``sent``.
    """

    def __init__(self, reply=("authenticated", {}), gate=None):
        self.reply = reply
        self.gate = gate
        self.sent = []
        self.closed = False
        self._incoming = asyncio.Queue()

    async def send(self, raw):
        self.sent.append(json.loads(raw))

    async def recv(self):
        if self.gate is not None:
            await self.gate.wait()
        if self.reply is None:
            await asyncio.sleep(3600)
        return encode_frame(*self.reply)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    async def close(self):
        if not self.closed:
            self.closed = True
            self._incoming.put_nowait(_CLOSED)

    def push(self, event, data=None, topic=None):
        """Deliver a server frame to the client."""
        self._incoming.put_nowait(encode_frame(event, data, topic))

    def push_raw(self, raw):
        self._incoming.put_nowait(raw)

    def drop(self):
        """Simulate the server going away."""
        self._incoming.put_nowait(_CLOSED)

    def ack(self, data=None):
        """Answer the last request frame the client sent."""
        request = [f for f in self.sent if "ack" in f][-1]
        self.push_raw(json.dumps({"event": "ack", "ack": request["ack"], "data": data}))

    def events(self, name):
        return [f["data"] for f in self.sent if f["event"] == name]


class FakeConnector:
    """Connector returning FakeSockets; ``plan`` scripts successive opens.

    Each plan entry is a handshake reply tuple, None (no reply) or an exception
    to raise from the open itself. An empty plan accepts.
    """

    def __init__(self, plan=None):
        self.plan = list(plan or [])
        self.sockets = []
        self.urls = []
        self.gate = None

    async def __call__(self, url):
        self.urls.append(url)
        step = self.plan.pop(0) if self.plan else ("authenticated", {})
        if isinstance(step, Exception):
            raise step
        ws = FakeSocket(step, self.gate)
        self.sockets.append(ws)
        return ws

    @property
    def last(self):
        return self.sockets[-1]


async def _settle(rounds: int = 20):
    for _ in range(rounds):
        await asyncio.sleep(0)


async def _no_sleep(_delay):
    return None


@pytest.fixture(autouse=True)
def quiet_logs(monkeypatch):
    monkeypatch.setenv("LIVESYNC_LOG_LEVEL", "ERROR")
    monkeypatch.setenv("LIVESYNC_LOG_FORMAT", "json")


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def settle():
    """Let background reader and reconnect tasks run."""
    return _settle


@pytest.fixture
def push_cfg():
    return PushCfg(reconnection_delay=0, randomization_factor=0, handshake_timeout=0.05)


@pytest.fixture
def make_connection(connector, push_cfg):
    def factory(cfg=None, conn=None, **kwargs):
        kwargs.setdefault("sleep", _no_sleep)
        return ConnectionManager(cfg or push_cfg, connector=conn or connector, **kwargs)
    return factory


@pytest.fixture
def action_log(tmp_path):
    return ActionLog(str(tmp_path / "queue.json"), "test-queue")
