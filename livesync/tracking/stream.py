import uuid
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Tuple
from ..transport.bus import EventBus, Subscription, SubscriptionScope
from ..transport.connection import ConnectionManager
from ..transport.contracts import CanonicalEvent, FinalizedMessage, SessionId, StreamSession, ToolEntry
from ..transport.topics import TopicRegistry, chat_topic
from ..util.const import CONTROL_EVENTS, StreamState, ToolStatus
from ..util.types import Result
from ..util.logging import log

STREAM_KINDS = (
    "stream-start", "stream-delta", "stream-end", "session-error",
    "tool-start", "tool-complete", "tool-error", "side-event",
)

DEFAULT_SESSION_ERROR = "An error occurred."

SideEvent = Tuple[str, Dict[str, Any]]


def _copy(session: StreamSession) -> StreamSession:
    return replace(
        session,
        active_tools={name: replace(tool) for name, tool in session.active_tools.items()},
        messages=list(session.messages),
    )


class StreamTracker:
    """State machine for one conversation: idle → streaming → finalized, or error.

    Content deltas accumulate in arrival order. Tool invocations are tracked by
    name beside the content stream and are only ever updated, never removed,
    until the next stream-start.
    """

    def __init__(self, events: EventBus, topics: TopicRegistry, connection: ConnectionManager) -> None:
        self._events = events
        self._topics = topics
        self._connection = connection
        self._scope: Optional[SubscriptionScope] = None
        self._topic: Optional[str] = None
        self._watchers = EventBus("stream")
        self.session: Optional[StreamSession] = None

    @property
    def session_id(self) -> Optional[SessionId]:
        return self.session.session_id if self.session else None

    @property
    def tracking(self) -> bool:
        return self._scope is not None and not self._scope.closed

    def watch(self, callback: Callable[[StreamSession], None]) -> Subscription:
        return self._watchers.subscribe("session", callback)

    def on_side_event(self, callback: Callable[[SideEvent], None]) -> Subscription:
        """Observe side-channel events (brand updates, navigation hints) as (name, data)."""
        return self._watchers.subscribe("side-event", callback)

    async def start(self, session_id: SessionId) -> Result[None]:
        if not session_id:
            return Result.failure("stream.invalid_session", "session id is required")
        if self.tracking and self.session_id == session_id:
            return Result.success()
        if self._scope is not None or self._topic is not None:
            await self.stop()

        self.session = StreamSession(session_id=session_id)
        self._scope = SubscriptionScope(chat_topic(session_id))
        for kind in STREAM_KINDS:
            self._events.subscribe(kind, self.apply, scope=self._scope)

        self._topic = chat_topic(session_id)
        result = await self._topics.join(self._topic)
        log("INFO", "stream", "tracking", session_id=session_id)
        self._notify()
        return result

    async def stop(self) -> Result[None]:
        session_id = self.session_id
        self._release()
        result: Result[None] = Result.success()
        if self._topic is not None:
            result = await self._topics.leave(self._topic)
            self._topic = None
        if session_id is not None:
            log("INFO", "stream", "stopped", session_id=session_id)
        self.session = None
        return result

    def reset(self) -> None:
        """Back to an idle session with nothing accumulated; keeps tracking."""
        if self.session is None:
            return
        self.session = StreamSession(session_id=self.session.session_id)
        self._notify()

    def apply(self, event: CanonicalEvent) -> bool:
        session = self.session
        if session is None or not self.tracking:
            return False
        if event.session_id is not None and event.session_id != session.session_id:
            return False

        if event.kind == "side-event":
            self._watchers.publish("side-event", (event.raw_name, dict(event.data)))
            return False

        handler = {
            "stream-start": self._on_start,
            "stream-delta": self._on_delta,
            "stream-end": self._on_end,
            "session-error": self._on_session_error,
            "tool-start": self._on_tool_start,
            "tool-complete": self._on_tool_complete,
            "tool-error": self._on_tool_error,
        }.get(event.kind)
        if handler is None:
            return False

        changed = handler(session, event.data)
        if changed:
            self._notify()
        return changed

    async def send_message(self, content: str, **context: Any) -> Result[None]:
        """Send a user message on the conversation; fails when not connected."""
        if self.session is None:
            return Result.failure("stream.not_tracking", "No conversation is being tracked")
        if not self._connection.connected:
            return Result.failure("connection.not_connected", "Not connected")
        payload = {"content": content, "sessionId": self.session.session_id}
        payload.update({k: v for k, v in context.items() if v is not None})
        return await self._connection.send(CONTROL_EVENTS["CHAT_SEND"], payload)

    async def create_session(self, **context: Any) -> Result[SessionId]:
        """Open a new conversation and start tracking it.

        Connected, the producer assigns the id; offline, a local uuid4 is used.
        """
        if self._connection.connected:
            payload = {k: v for k, v in context.items() if v is not None}
            reply = await self._connection.request(CONTROL_EVENTS["CHAT_NEW_SESSION"], payload)
            if not reply.ok:
                return Result(ok=False, error=reply.error)
            session_id = reply.value.get("sessionId")
            if not session_id:
                return Result.failure("stream.bad_reply", "new-session reply carries no sessionId")
            session_id = str(session_id)
        else:
            session_id = str(uuid.uuid4())
            log("INFO", "stream", "local_session", session_id=session_id)

        started = await self.start(session_id)
        if not started.ok:
            return Result(ok=False, error=started.error)
        return Result.success(session_id)

    async def load_history(self, before: Optional[str] = None) -> Result[int]:
        """Replace the session's messages with the stored history; the value is how many."""
        session = self.session
        if session is None:
            return Result.failure("stream.not_tracking", "No conversation is being tracked")
        if not self._connection.connected:
            return Result.failure("connection.not_connected", "Not connected")

        payload = {"sessionId": session.session_id}
        if before:
            payload["before"] = before
        reply = await self._connection.request(CONTROL_EVENTS["CHAT_HISTORY"], payload)
        if not reply.ok:
            return Result(ok=False, error=reply.error)
        if reply.value.get("error"):
            return Result.failure("stream.history_failed", str(reply.value["error"]))
        if self.session is not session:
            return Result.failure("stream.session_changed", "Tracked conversation changed while loading")

        messages: List[FinalizedMessage] = []
        for item in reply.value.get("messages") or []:
            if not isinstance(item, dict):
                continue
            content = item.get("content")
            messages.append(FinalizedMessage(
                id=item.get("id"),
                content=content if isinstance(content, str) else "",
                role=item.get("role") or "assistant",
                created_at=item.get("created_at") or item.get("createdAt"),
            ))
        session.messages = messages
        log("DEBUG", "stream", "history_loaded", session_id=session.session_id, count=len(messages))
        self._notify()
        return Result.success(len(messages))

    async def cancel(self) -> Result[None]:
        """Ask the producer to stop and clear local streaming flags immediately."""
        if self.session is None:
            return Result.success()
        session = self.session
        if session.state == StreamState.STREAMING:
            session.state = StreamState.IDLE
            session.accumulated_content = ""
            session.message_id = None
            self._notify()
        if not self._connection.connected:
            return Result.failure("connection.not_connected", "Not connected")
        return await self._connection.send(CONTROL_EVENTS["CHAT_CANCEL"], {"sessionId": session.session_id})

    def _on_start(self, session: StreamSession, data: Dict[str, Any]) -> bool:
        session.state = StreamState.STREAMING
        session.message_id = data.get("messageId")
        session.accumulated_content = ""
        session.active_tools = {}
        session.model = None
        session.tokens_used = None
        session.final_content = None
        session.error = None
        log("DEBUG", "stream", "started", session_id=session.session_id, message_id=session.message_id)
        return True

    def _on_delta(self, session: StreamSession, data: Dict[str, Any]) -> bool:
        if session.state != StreamState.STREAMING:
            return False
        message_id = data.get("messageId")
        if message_id and session.message_id and message_id != session.message_id:
            return False
        delta = data.get("delta")
        if not isinstance(delta, str) or not delta:
            return False
        session.accumulated_content += delta
        return True

    def _on_end(self, session: StreamSession, data: Dict[str, Any]) -> bool:
        message_id = data.get("messageId")
        if message_id and session.message_id and message_id != session.message_id:
            return False
        if session.state not in (StreamState.STREAMING, StreamState.IDLE):
            return False
        content = data.get("content")
        session.state = StreamState.FINALIZED
        session.final_content = content if isinstance(content, str) else None
        session.model = data.get("model")
        tokens = data.get("tokensUsed")
        session.tokens_used = tokens if isinstance(tokens, int) and not isinstance(tokens, bool) else None
        session.messages.append(FinalizedMessage(
            id=session.message_id,
            content=session.final_content if session.final_content is not None else session.accumulated_content,
            model=session.model,
            tokens_used=session.tokens_used,
        ))
        log("DEBUG", "stream", "finalized", session_id=session.session_id,
            chars=len(session.accumulated_content), model=session.model)
        return True

    def _on_session_error(self, session: StreamSession, data: Dict[str, Any]) -> bool:
        error = data.get("error")
        session.state = StreamState.ERROR
        session.error = str(error) if error else DEFAULT_SESSION_ERROR
        session.message_id = None
        session.accumulated_content = ""
        log("WARN", "stream", "session_error", session_id=session.session_id,
            error=session.error, code=data.get("code"))
        return True

    def _on_tool_start(self, session: StreamSession, data: Dict[str, Any]) -> bool:
        name = data.get("toolName")
        if not name:
            return False
        tool_input = data.get("toolInput")
        session.active_tools[name] = ToolEntry(
            name=name, status=ToolStatus.RUNNING,
            input=tool_input if isinstance(tool_input, dict) else None,
        )
        return True

    def _on_tool_complete(self, session: StreamSession, data: Dict[str, Any]) -> bool:
        name = data.get("toolName")
        if not name:
            return False
        entry = session.active_tools.get(name)
        if entry is None:
            entry = session.active_tools[name] = ToolEntry(name=name, status=ToolStatus.COMPLETE)
        entry.status = ToolStatus.COMPLETE
        entry.error = None
        return True

    def _on_tool_error(self, session: StreamSession, data: Dict[str, Any]) -> bool:
        name = data.get("toolName")
        if not name:
            return False
        entry = session.active_tools.get(name)
        if entry is None:
            entry = session.active_tools[name] = ToolEntry(name=name, status=ToolStatus.ERROR)
        entry.status = ToolStatus.ERROR
        error = data.get("error")
        entry.error = str(error) if error else None
        log("WARN", "stream", "tool_error", session_id=session.session_id, tool=name, error=entry.error)
        return True

    def _release(self) -> None:
        if self._scope is not None:
            self._scope.close()
            self._scope = None

    def _notify(self) -> None:
        if self.session is not None:
            self._watchers.publish("session", _copy(self.session))
