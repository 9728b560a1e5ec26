from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Literal, Optional
from ..util.const import JobStatus, StreamState, ToolStatus

JobId = str
SessionId = str
Topic = str
Canonical = Literal[
    "progress", "complete", "failure",
    "stream-start", "stream-delta", "stream-end", "session-error",
    "tool-start", "tool-complete", "tool-error",
    "side-event",
]

@dataclass
class Identity:
    user_id: str
    token: str

@dataclass
class RawEvent:
    name: str
    data: Dict[str, Any]
    topic: Optional[Topic] = None
    ack: Optional[int] = None            # set on replies to a request

@dataclass
class CanonicalEvent:
    kind: Canonical
    raw_name: str
    data: Dict[str, Any]
    job_id: Optional[JobId] = None
    session_id: Optional[SessionId] = None

@dataclass
class Job:
    id: Optional[JobId] = None
    status: JobStatus = JobStatus.IDLE
    progress: int = 0
    message: str = ""
    stage: Optional[str] = None          # producer-specific status label
    result: Any = None
    error: Optional[str] = None
    retries_left: Optional[int] = None

    @property
    def is_complete(self) -> bool:
        return self.status == JobStatus.COMPLETE

    @property
    def is_error(self) -> bool:
        return self.status == JobStatus.ERROR

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETE, JobStatus.ERROR)

@dataclass
class ToolEntry:
    name: str
    status: ToolStatus
    input: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

@dataclass
class FinalizedMessage:
    id: Optional[str]
    content: str
    model: Optional[str] = None
    tokens_used: Optional[int] = None
    role: str = "assistant"
    created_at: Optional[str] = None

@dataclass
class StreamSession:
    session_id: SessionId
    state: StreamState = StreamState.IDLE
    message_id: Optional[str] = None
    accumulated_content: str = ""
    active_tools: Dict[str, ToolEntry] = field(default_factory=dict)
    model: Optional[str] = None
    tokens_used: Optional[int] = None
    final_content: Optional[str] = None
    error: Optional[str] = None
    messages: List[FinalizedMessage] = field(default_factory=list)

    @property
    def is_streaming(self) -> bool:
        return self.state == StreamState.STREAMING

@dataclass
class QueuedAction:
    id: str
    target: str
    method: str
    payload: Any
    enqueued_at: float
    headers: Optional[Dict[str, str]] = None

    def to_record(self) -> Dict[str, Any]:
        record = {
            "id": self.id,
            "target": self.target,
            "method": self.method,
            "payload": self.payload,
            "enqueuedAt": self.enqueued_at,
        }
        if self.headers:
            record["headers"] = dict(self.headers)
        return record

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "QueuedAction":
        return cls(
            id=data["id"],
            target=data["target"],
            method=data.get("method", "POST"),
            payload=data.get("payload"),
            enqueued_at=data.get("enqueuedAt", 0.0),
            headers=data.get("headers"),
        )

def snapshot(obj: Any) -> Dict[str, Any]:
    """Plain-dict copy of a contract dataclass, enums flattened to their values."""
    def _plain(value: Any) -> Any:
        if isinstance(value, dict):
            return {k: _plain(v) for k, v in value.items()}
        if isinstance(value, list):
            return [_plain(v) for v in value]
        if isinstance(value, Enum):
            return value.value
        return value
    return _plain(asdict(obj))
