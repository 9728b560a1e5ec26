"""Tests for raw-to-canonical event normalization."""

import pytest
from livesync.events.normalize import EventNormalizer, canonical_name, lookup, normalize
from livesync.transport.bus import EventBus
from livesync.transport.contracts import RawEvent


@pytest.mark.parametrize("raw_name,kind", [
    ("job:progress", "progress"),
    ("generation:progress", "progress"),
    ("agent:tool:complete", "progress"),
    ("job:complete", "complete"),
    ("generation-complete", "complete"),
    ("agent:complete", "complete"),
    ("job:failed", "failure"),
    ("generation:error", "failure"),
    ("agent:tool:error", "failure"),
    ("chat:message-start", "stream-start"),
    ("message-delta", "stream-delta"),
    ("chat:message-end", "stream-end"),
    ("chat:error", "session-error"),
    ("chat:tool-start", "tool-start"),
    ("tool-complete", "tool-complete"),
    ("chat:tool-error", "tool-error"),
    ("chat:brand-updated", "side-event"),
    ("chat:navigate", "side-event"),
])
def test_lookup_table(raw_name, kind):
    assert lookup(raw_name) == kind


def test_unknown_names_are_not_mapped():
    assert lookup("presence:update") is None
    assert normalize(RawEvent("presence:update", {})) is None


def test_canonical_name():
    assert canonical_name(" Job:Progress ") == "job-progress"


def test_job_id_from_payload_then_topic():
    event = normalize(RawEvent("job:progress", {"jobId": "J1", "progress": 40}, topic="job:other"))
    assert event.kind == "progress"
    assert event.job_id == "J1"
    assert event.session_id is None

    assert normalize(RawEvent("job-failed", {"job_id": 7})).job_id == "7"
    assert normalize(RawEvent("job-failed", {}, topic="job:J9")).job_id == "J9"
    assert normalize(RawEvent("job-failed", {})).job_id is None


def test_session_id_from_payload_then_topic():
    assert normalize(RawEvent("chat:message-delta", {"sessionId": "S1"})).session_id == "S1"
    assert normalize(RawEvent("message-delta", {}, topic="chat:S2")).session_id == "S2"
    assert normalize(RawEvent("message-delta", {}, topic="job:J1")).session_id is None


def test_normalizer_relays_to_sink_by_kind():
    source, sink = EventBus("raw"), EventBus("canonical")
    normalizer = EventNormalizer()
    normalizer.register("render:percent", "progress")
    relay = normalizer.attach(source, sink)
    seen = []
    sink.subscribe("progress", seen.append)

    source.publish("generation:progress", RawEvent("generation:progress", {"jobId": "J1"}))
    source.publish("render:percent", RawEvent("render:percent", {"jobId": "J2"}))
    source.publish("unrelated", RawEvent("unrelated", {}))

    assert [(e.raw_name, e.job_id) for e in seen] == [("generation:progress", "J1"), ("render:percent", "J2")]

    relay.unsubscribe()
    source.publish("job:progress", RawEvent("job:progress", {}))
    assert len(seen) == 2
