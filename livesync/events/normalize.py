"""Mapping from producer event names to canonical transitions.

Different pipelines emit differently-named events for the same transition
(``generation:progress`` from the image workers, ``job:progress`` from the
wizard queue, ``agent:tool:complete`` from the agent runner). All of them are
folded here so the trackers only ever see the canonical vocabulary.
"""

from typing import Any, Dict, Optional
from ..transport.bus import EventBus, Subscription, WILDCARD
from ..transport.contracts import Canonical, CanonicalEvent, RawEvent
from ..util.const import CHAT_TOPIC_PREFIX, JOB_TOPIC_PREFIX
from ..util.logging import log

JOB_KINDS = {"progress", "complete", "failure"}

RAW_EVENT_TABLE: Dict[str, Canonical] = {
    # job progress-update
    "job-progress": "progress",
    "generation-progress": "progress",
    "agent-tool-complete": "progress",
    # job completion
    "job-complete": "complete",
    "generation-complete": "complete",
    "agent-complete": "complete",
    # job failure
    "job-failed": "failure",
    "generation-error": "failure",
    "agent-tool-error": "failure",
    # conversational stream
    "message-start": "stream-start",
    "message-delta": "stream-delta",
    "message-end": "stream-end",
    "session-error": "session-error",
    "chat-error": "session-error",
    "tool-start": "tool-start",
    "tool-complete": "tool-complete",
    "tool-error": "tool-error",
    # conversational side channel
    "brand-updated": "side-event",
    "navigate": "side-event",
}

CHAT_NAMESPACE = "chat-"


def canonical_name(raw_name: str) -> str:
    return raw_name.strip().lower().replace(":", "-")


def lookup(raw_name: str, table: Optional[Dict[str, Canonical]] = None) -> Optional[Canonical]:
    table = RAW_EVENT_TABLE if table is None else table
    name = canonical_name(raw_name)
    kind = table.get(name)
    if kind is None and name.startswith(CHAT_NAMESPACE):
        kind = table.get(name[len(CHAT_NAMESPACE):])
    return kind


def _topic_suffix(topic: Optional[str], prefix: str) -> Optional[str]:
    if topic and topic.startswith(prefix) and len(topic) > len(prefix):
        return topic[len(prefix):]
    return None


def _first(data: Dict[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return str(value)
    return None


def normalize(raw: RawEvent, table: Optional[Dict[str, Canonical]] = None) -> Optional[CanonicalEvent]:
    """Map one raw event to its canonical form, or None if the name is not recognised."""
    kind = lookup(raw.name, table)
    if kind is None:
        return None

    data = raw.data or {}
    if kind in JOB_KINDS:
        job_id = _first(data, "jobId", "job_id") or _topic_suffix(raw.topic, JOB_TOPIC_PREFIX)
        return CanonicalEvent(kind=kind, raw_name=raw.name, data=data, job_id=job_id)

    session_id = _first(data, "sessionId", "session_id") or _topic_suffix(raw.topic, CHAT_TOPIC_PREFIX)
    return CanonicalEvent(kind=kind, raw_name=raw.name, data=data, session_id=session_id)


class EventNormalizer:
    """Relays raw push events onto a bus keyed by canonical kind."""

    def __init__(self, table: Optional[Dict[str, Canonical]] = None) -> None:
        self.table: Dict[str, Canonical] = dict(RAW_EVENT_TABLE if table is None else table)

    def register(self, raw_name: str, kind: Canonical) -> None:
        self.table[canonical_name(raw_name)] = kind

    def attach(self, source: EventBus, sink: EventBus) -> Subscription:
        def relay(raw: RawEvent) -> None:
            event = normalize(raw, self.table)
            if event is None:
                log("DEBUG", "normalize", "unmapped", event=raw.name)
                return
            sink.publish(event.kind, event)

        return source.subscribe(WILDCARD, relay)
