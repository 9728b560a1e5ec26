from enum import Enum

class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"

class JobStatus(str, Enum):
    IDLE = "idle"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"

class StreamState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    FINALIZED = "finalized"
    ERROR = "error"

class ToolStatus(str, Enum):
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"

class SyncStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    SYNCED = "synced"
    ERROR = "error"

# Control frames exchanged on the push channel
CONTROL_EVENTS = {
    "AUTHENTICATE": "authenticate",
    "AUTHENTICATED": "authenticated",
    "AUTH_ERROR": "auth-error",
    "JOIN_TOPIC": "join-topic",
    "LEAVE_TOPIC": "leave-topic",
    "CHAT_SEND": "chat-send",
    "CHAT_CANCEL": "chat-cancel",
    "CHAT_NEW_SESSION": "chat-new-session",
    "CHAT_HISTORY": "chat-history",
    "ACK": "ack",
}

# Mirror envelope type for queued actions
MIRROR_MESSAGE_TYPE = "queue-action"

JOB_TOPIC_PREFIX = "job:"
CHAT_TOPIC_PREFIX = "chat:"

DEFAULTS = {
    "RECONNECTION_ATTEMPTS": 10,
    "RECONNECTION_DELAY_SEC": 1.0,
    "RECONNECTION_DELAY_MAX_SEC": 30.0,
    "RANDOMIZATION_FACTOR": 0.5,
    "HANDSHAKE_TIMEOUT_SEC": 10.0,
    "ACK_TIMEOUT_SEC": 10.0,
    "SYNCED_DISPLAY_SEC": 2.0,
    "QUEUE_RECORD_NAME": "livesync-offline-queue",
    "QUEUE_PATH": "~/.livesync/offline-queue.json",
    "REQUEST_TIMEOUT_SEC": 30.0,
    "PROBE_INTERVAL_SEC": 15.0,
    "MAX_FRAME_BYTES": 1024 * 1024,         # 1 MiB
}
