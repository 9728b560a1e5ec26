"""Real-time job progress, streamed conversations and offline write replay over one push channel."""

__version__ = "0.1.0"

from .client import LiveSyncClient
from .transport.contracts import Identity, Job, StreamSession, QueuedAction
from .util.types import Result, ErrorInfo

__all__ = ["LiveSyncClient", "Identity", "Job", "StreamSession", "QueuedAction", "Result", "ErrorInfo"]
