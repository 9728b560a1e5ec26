"""Tests for the job progress tracker."""

import asyncio
import pytest
import pytest_asyncio
from livesync.tracking.progress import JobTracker
from livesync.transport.bus import EventBus
from livesync.transport.connection import ConnectionManager
from livesync.transport.contracts import CanonicalEvent, Job
from livesync.transport.topics import TopicRegistry
from livesync.util.const import JobStatus


@pytest.fixture
def bus():
    return EventBus("canonical")


@pytest.fixture
def topics():
    return TopicRegistry(ConnectionManager())


def ev(kind, job_id="J1", **data):
    return CanonicalEvent(kind=kind, raw_name=f"job-{kind}", data=data, job_id=job_id)


@pytest_asyncio.fixture
async def tracker(bus, topics):
    t = JobTracker(bus, topics)
    await t.start("J1")
    return t


@pytest.mark.asyncio
async def test_start_is_optimistically_queued(tracker, topics):
    assert tracker.job.status == JobStatus.QUEUED
    assert tracker.job.message == "Starting..."
    assert tracker.job.progress == 0
    assert topics.active == {"job:J1"}


@pytest.mark.asyncio
async def test_start_requires_job_id(bus, topics):
    result = await JobTracker(bus, topics).start("")
    assert result.error.code == "progress.invalid_job"


@pytest.mark.asyncio
async def test_progress_then_complete(tracker, bus):
    bus.publish("progress", ev("progress", progress=40, message="Rendering"))
    assert tracker.job.status == JobStatus.PROCESSING
    assert tracker.job.progress == 40
    assert tracker.job.message == "Rendering"

    bus.publish("complete", ev("complete", result={"url": "https://cdn/x.png"}))
    job = tracker.job
    assert job.status == JobStatus.COMPLETE
    assert job.progress == 100
    assert job.message == "Complete!"
    assert job.result == {"url": "https://cdn/x.png"}


@pytest.mark.asyncio
async def test_complete_without_result_keeps_payload(tracker, bus):
    bus.publish("complete", ev("complete", images=["a"]))
    assert tracker.job.result == {"images": ["a"]}


@pytest.mark.asyncio
async def test_progress_is_monotonic_and_clamped(tracker, bus):
    bus.publish("progress", ev("progress", progress=60))
    bus.publish("progress", ev("progress", progress=30))
    assert tracker.job.progress == 60

    bus.publish("progress", ev("progress", message="no percentage"))
    assert tracker.job.progress == 60

    bus.publish("progress", ev("progress", progress=250))
    assert tracker.job.progress == 100
    assert tracker.job.status == JobStatus.PROCESSING


@pytest.mark.asyncio
async def test_queued_labels_keep_queued(tracker, bus):
    bus.publish("progress", ev("progress", status="waiting"))
    assert tracker.job.status == JobStatus.QUEUED
    assert tracker.job.stage == "waiting"

    bus.publish("progress", ev("progress", status="active", progress=5))
    assert tracker.job.status == JobStatus.PROCESSING
    assert tracker.job.stage == "active"


@pytest.mark.asyncio
async def test_terminal_states_ignore_later_events(tracker, bus):
    bus.publish("complete", ev("complete"))
    bus.publish("progress", ev("progress", progress=10))
    bus.publish("failure", ev("failure", error="late"))

    assert tracker.job.status == JobStatus.COMPLETE
    assert tracker.job.progress == 100
    assert tracker.job.error is None


@pytest.mark.asyncio
async def test_failure_sets_error(tracker, bus):
    bus.publish("failure", ev("failure", error="GPU out of memory"))
    assert tracker.job.status == JobStatus.ERROR
    assert tracker.job.error == "GPU out of memory"

    bus.publish("progress", ev("progress", progress=50))
    assert tracker.job.status == JobStatus.ERROR


@pytest.mark.asyncio
async def test_failure_without_message_uses_default(tracker, bus):
    bus.publish("failure", ev("failure"))
    assert tracker.job.error == "An error occurred"


@pytest.mark.asyncio
async def test_failure_with_retries_can_resume(tracker, bus):
    bus.publish("failure", ev("failure", error="worker lost", retriesLeft=2))
    assert tracker.job.status == JobStatus.ERROR
    assert tracker.job.retries_left == 2

    bus.publish("progress", ev("progress", progress=20))
    assert tracker.job.status == JobStatus.PROCESSING
    assert tracker.job.error is None


@pytest.mark.asyncio
async def test_events_for_other_jobs_are_ignored(bus, topics):
    first, second = JobTracker(bus, topics), JobTracker(bus, topics)
    await first.start("J1")
    await second.start("J2")

    bus.publish("progress", ev("progress", job_id="J2", progress=70))

    assert first.job.progress == 0
    assert first.job.status == JobStatus.QUEUED
    assert second.job.progress == 70


@pytest.mark.asyncio
async def test_event_without_id_applies(tracker, bus):
    bus.publish("progress", ev("progress", job_id=None, progress=15))
    assert tracker.job.progress == 15


@pytest.mark.asyncio
async def test_watchers_receive_copies(tracker, bus):
    seen = []
    tracker.watch(seen.append)

    bus.publish("progress", ev("progress", progress=10))
    seen[0].progress = 99

    assert tracker.job.progress == 10


@pytest.mark.asyncio
async def test_stop_unsubscribes_and_leaves(tracker, bus, topics):
    await tracker.stop()

    assert not tracker.tracking
    assert tracker.job == Job()
    assert topics.active == set()
    assert bus.subscriber_count() == 0

    bus.publish("progress", ev("progress", progress=50))
    assert tracker.job.progress == 0


@pytest.mark.asyncio
async def test_reset_is_idempotent(tracker, bus, topics):
    bus.publish("progress", ev("progress", progress=30))
    notified = []
    tracker.watch(notified.append)

    tracker.reset()
    tracker.reset()

    assert tracker.job == Job()
    assert len(notified) == 1
    assert bus.subscriber_count() == 0
    assert topics.active == set()
    assert not tracker.tracking


@pytest.mark.asyncio
@pytest.mark.parametrize("kind,data", [("complete", {"result": {"url": "x"}}), ("failure", {"error": "boom"})])
async def test_reset_from_terminal_state(tracker, bus, kind, data):
    bus.publish(kind, ev(kind, **data))

    tracker.reset()
    first = tracker.job
    tracker.reset()

    assert first == tracker.job == Job()


@pytest.mark.asyncio
async def test_restart_with_new_id_switches_topic(tracker, topics):
    await tracker.start("J2")
    assert topics.active == {"job:J2"}
    assert tracker.job.id == "J2"


@pytest.mark.asyncio
async def test_wait_returns_final_job(tracker, bus):
    waiter = asyncio.ensure_future(tracker.wait(timeout=1))
    await asyncio.sleep(0)

    bus.publish("failure", ev("failure", error="retrying", retriesLeft=1))
    await asyncio.sleep(0)
    assert not waiter.done()

    bus.publish("complete", ev("complete", result=1))
    job = await waiter
    assert job.status == JobStatus.COMPLETE
    assert job.result == 1
