import asyncio
from dataclasses import replace
from typing import Any, Callable, List, Optional
from ..transport.bus import EventBus, Subscription, SubscriptionScope
from ..transport.contracts import CanonicalEvent, Job, JobId
from ..transport.topics import TopicRegistry, job_topic
from ..util.const import JobStatus
from ..util.types import Result
from ..util.logging import log

# Producer labels that still mean "waiting to be picked up"
QUEUED_LABELS = {"pending", "waiting", "queued", "delayed"}

START_MESSAGE = "Starting..."
COMPLETE_MESSAGE = "Complete!"
DEFAULT_ERROR = "An error occurred"
DEFAULT_FAILURE_MESSAGE = "Generation failed"


def _percent(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        pct = int(round(float(value)))
    except (TypeError, ValueError):
        return None
    return max(0, min(100, pct))


def _retries(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class JobTracker:
    """State machine for one remote job: idle → queued → processing → complete | error.

    Fed by canonical events from the normalization bus. Events addressed to a
    different job id are dropped; events carrying no id at all are applied.
    """

    def __init__(self, events: EventBus, topics: TopicRegistry) -> None:
        self._events = events
        self._topics = topics
        self._scope: Optional[SubscriptionScope] = None
        self._topic: Optional[str] = None
        self._watchers = EventBus("progress")
        self._waiters: List[asyncio.Future] = []
        self.job = Job()

    @property
    def job_id(self) -> Optional[JobId]:
        return self.job.id

    @property
    def tracking(self) -> bool:
        return self._scope is not None and not self._scope.closed

    def watch(self, callback: Callable[[Job], None]) -> Subscription:
        """Observe every state change; the callback receives a copy of the job."""
        return self._watchers.subscribe("job", callback)

    async def start(self, job_id: JobId) -> Result[None]:
        """Begin tracking ``job_id``: optimistic queued state, handlers, topic join."""
        if not job_id:
            return Result.failure("progress.invalid_job", "job id is required")
        if self.tracking and self.job.id == job_id:
            return Result.success()
        if self._scope is not None or self._topic is not None:
            await self.stop()

        self.job = Job(id=job_id, status=JobStatus.QUEUED, message=START_MESSAGE)
        self._scope = SubscriptionScope(job_topic(job_id))
        for kind in ("progress", "complete", "failure"):
            self._events.subscribe(kind, self.apply, scope=self._scope)

        self._topic = job_topic(job_id)
        result = await self._topics.join(self._topic)
        log("INFO", "progress", "tracking", job_id=job_id)
        self._notify()
        return result

    async def stop(self) -> Result[None]:
        """Stop tracking: release handlers, leave the topic, discard local state.

        The remote job is not cancelled.
        """
        job_id = self.job.id
        self._release()
        result: Result[None] = Result.success()
        if self._topic is not None:
            result = await self._topics.leave(self._topic)
            self._topic = None
        if job_id is not None:
            log("INFO", "progress", "stopped", job_id=job_id)
        self.reset()
        return result

    def reset(self) -> None:
        """Return to idle with every field cleared and stop tracking. Safe in any state."""
        self._release()
        if self._topic is not None:
            self._topics.discard(self._topic)
            self._topic = None
        was_idle = self.job == Job()
        self.job = Job()
        self._release_waiters()
        if not was_idle:
            self._notify()

    def apply(self, event: CanonicalEvent) -> bool:
        """Apply one canonical event. Returns True if the job state changed."""
        if self.job.id is None or not self.tracking:
            return False
        if event.job_id is not None and event.job_id != self.job.id:
            return False

        if event.kind == "progress":
            changed = self._on_progress(event)
        elif event.kind == "complete":
            changed = self._on_complete(event)
        elif event.kind == "failure":
            changed = self._on_failure(event)
        else:
            return False

        if changed:
            self._notify()
        return changed

    async def wait(self, timeout: Optional[float] = None) -> Job:
        """Wait until the job reaches complete or error; returns the final job copy."""
        if self.job.is_terminal and not self.job.retries_left:
            return replace(self.job)
        fut = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        try:
            return await asyncio.wait_for(fut, timeout=timeout)
        finally:
            if fut in self._waiters:
                self._waiters.remove(fut)

    def _on_progress(self, event: CanonicalEvent) -> bool:
        job = self.job
        if job.is_terminal:
            if job.status == JobStatus.ERROR and job.retries_left:
                # Producer announced a retry; the job is live again
                job.error = None
            else:
                log("DEBUG", "progress", "ignored_after_terminal", job_id=job.id, event=event.raw_name)
                return False

        data = event.data
        pct = _percent(data.get("progress"))
        if pct is not None:
            job.progress = max(job.progress, pct)

        label = data.get("status")
        if isinstance(label, str) and label:
            job.stage = label
        still_queued = job.status == JobStatus.QUEUED and isinstance(label, str) and label.lower() in QUEUED_LABELS
        if not still_queued:
            job.status = JobStatus.PROCESSING

        message = data.get("message")
        if isinstance(message, str):
            job.message = message
        return True

    def _on_complete(self, event: CanonicalEvent) -> bool:
        job = self.job
        if job.is_terminal and not (job.status == JobStatus.ERROR and job.retries_left):
            return False
        data = event.data
        job.status = JobStatus.COMPLETE
        job.progress = 100
        job.message = COMPLETE_MESSAGE
        job.result = data["result"] if data.get("result") is not None else data
        job.error = None
        log("INFO", "progress", "complete", job_id=job.id)
        self._resolve_waiters()
        return True

    def _on_failure(self, event: CanonicalEvent) -> bool:
        job = self.job
        if job.is_terminal and not (job.status == JobStatus.ERROR and job.retries_left):
            return False
        data = event.data
        error = data.get("error")
        job.status = JobStatus.ERROR
        job.error = str(error) if error else DEFAULT_ERROR
        job.message = str(error) if error else DEFAULT_FAILURE_MESSAGE
        job.retries_left = _retries(data.get("retriesLeft"))
        log("WARN", "progress", "failed", job_id=job.id, error=job.error, retries_left=job.retries_left)
        if not job.retries_left:
            self._resolve_waiters()
        return True

    def _release(self) -> None:
        if self._scope is not None:
            self._scope.close()
            self._scope = None

    def _notify(self) -> None:
        self._watchers.publish("job", replace(self.job))

    def _resolve_waiters(self) -> None:
        for fut in self._waiters:
            if not fut.done():
                fut.set_result(replace(self.job))
        self._waiters.clear()

    def _release_waiters(self) -> None:
        for fut in self._waiters:
            if not fut.done():
                fut.set_result(replace(self.job))
        self._waiters.clear()
