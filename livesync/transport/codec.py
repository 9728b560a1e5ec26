import json
import msgpack
from typing import Any, Optional, Union
from .contracts import RawEvent
from ..util.const import DEFAULTS


class FrameError(ValueError):
    """A push-channel frame that cannot be decoded into an event."""


def encode_frame(event: str, data: Any = None, topic: Optional[str] = None, ack: Optional[int] = None) -> str:
    frame = {"event": event, "data": data}
    if topic:
        frame["topic"] = topic
    if ack is not None:
        frame["ack"] = ack
    return json.dumps(frame, ensure_ascii=False, default=str)


def decode_frame(raw: Union[str, bytes], max_bytes: int = DEFAULTS["MAX_FRAME_BYTES"]) -> RawEvent:
    """Decode one frame: text frames are JSON, binary frames are msgpack.

    Accepted shapes are ``{"event", "data", "topic"?, "ack"?}`` and ``[event, data]``.
    """
    if len(raw) > max_bytes:
        raise FrameError(f"frame of {len(raw)} bytes exceeds limit of {max_bytes}")

    try:
        if isinstance(raw, (bytes, bytearray)):
            frame = msgpack.unpackb(raw, raw=False)
        else:
            frame = json.loads(raw)
    except ValueError as e:
        raise FrameError(f"undecodable frame: {e}") from e

    if isinstance(frame, list) and frame and isinstance(frame[0], str):
        name, data, topic, ack = frame[0], frame[1] if len(frame) > 1 else None, None, None
    elif isinstance(frame, dict) and isinstance(frame.get("event"), str):
        name, data, topic, ack = frame["event"], frame.get("data"), frame.get("topic"), frame.get("ack")
    else:
        raise FrameError("frame has no event name")

    if data is None:
        data = {}
    elif not isinstance(data, dict):
        # Bare scalars (e.g. a topic name on control frames)
        data = {"value": data}

    if isinstance(ack, bool) or not isinstance(ack, int):
        ack = None
    return RawEvent(name=name, data=data, topic=topic if isinstance(topic, str) else None, ack=ack)
