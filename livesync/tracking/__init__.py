"""Per-job and per-conversation state machines."""

from .progress import JobTracker
from .stream import StreamTracker

__all__ = ["JobTracker", "StreamTracker"]
