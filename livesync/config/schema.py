from pydantic import BaseModel, Field, AnyUrl
from typing import Dict, Optional
from ..util.const import DEFAULTS

class PushCfg(BaseModel):
    url: AnyUrl = Field(default="ws://127.0.0.1:8000/socket", description="Push channel websocket URL")
    handshake_timeout: float = Field(DEFAULTS["HANDSHAKE_TIMEOUT_SEC"], gt=0, description="Seconds to wait for the auth acknowledgement")
    ack_timeout: float = Field(DEFAULTS["ACK_TIMEOUT_SEC"], gt=0, description="Seconds to wait for the reply to a request frame")
    reconnection: bool = Field(True, description="Reconnect automatically after an established connection drops")
    reconnection_attempts: int = Field(DEFAULTS["RECONNECTION_ATTEMPTS"], ge=0)
    reconnection_delay: float = Field(DEFAULTS["RECONNECTION_DELAY_SEC"], ge=0)
    reconnection_delay_max: float = Field(DEFAULTS["RECONNECTION_DELAY_MAX_SEC"], ge=0)
    randomization_factor: float = Field(DEFAULTS["RANDOMIZATION_FACTOR"], ge=0, le=1)
    max_frame_bytes: int = Field(DEFAULTS["MAX_FRAME_BYTES"], ge=1024)

class RequestCfg(BaseModel):
    base_url: str = Field("http://127.0.0.1:8000", description="Prefix for queued action targets")
    timeout: Optional[float] = Field(DEFAULTS["REQUEST_TIMEOUT_SEC"], description="Per-request timeout; None disables it")
    headers: Dict[str, str] = Field(default_factory=dict, description="Headers sent with every replayed request")

class QueueCfg(BaseModel):
    path: str = Field(DEFAULTS["QUEUE_PATH"], description="File holding the durable action record")
    record_name: str = Field(DEFAULTS["QUEUE_RECORD_NAME"], min_length=1)
    synced_display_sec: float = Field(DEFAULTS["SYNCED_DISPLAY_SEC"], ge=0)

class MirrorCfg(BaseModel):
    enabled: bool = False
    url: AnyUrl = Field(default="redis://127.0.0.1:6379/0", description="Redis URL")
    username: Optional[str] = None
    password: Optional[str] = None
    tls: bool = False
    socket_timeout: Optional[float] = None
    socket_connect_timeout: Optional[float] = None

class ConnectivityCfg(BaseModel):
    probe: bool = Field(False, description="Poll the request channel to detect connectivity")
    probe_path: str = "/health"
    probe_interval: float = Field(DEFAULTS["PROBE_INTERVAL_SEC"], gt=0)

class ClientCfg(BaseModel):
    push: PushCfg = Field(default_factory=PushCfg)
    requests: RequestCfg = Field(default_factory=RequestCfg)
    queue: QueueCfg = Field(default_factory=QueueCfg)
    mirror: MirrorCfg = Field(default_factory=MirrorCfg)
    connectivity: ConnectivityCfg = Field(default_factory=ConnectivityCfg)
