import json, sys, time, os
from .secrets import redact, redact_dict

_LEVELS = {"DEBUG": 10, "INFO": 20, "WARN": 30, "ERROR": 40}

def _threshold() -> int:
    return _LEVELS.get(os.getenv("LIVESYNC_LOG_LEVEL", "INFO").upper(), 20)

def set_level(lvl: str) -> None:
    """Set the process-wide log threshold (DEBUG, INFO, WARN, ERROR)."""
    lvl = lvl.upper()
    if lvl == "WARNING":
        lvl = "WARN"
    if lvl not in _LEVELS:
        raise ValueError(f"unknown log level: {lvl}")
    os.environ["LIVESYNC_LOG_LEVEL"] = lvl

def log(lvl: str, where: str, msg: str, **kw):
    if _LEVELS.get(lvl, 20) < _threshold():
        return

    redacted_kw = redact_dict(kw)

    if os.getenv("LIVESYNC_LOG_FORMAT", "json") == "json":
        rec = {"ts": time.time(), "lvl": lvl, "where": where, "msg": redact(msg)}
        rec.update(redacted_kw)
        sys.stdout.write(json.dumps(rec, ensure_ascii=False, default=str) + "\n")
    else:
        sys.stdout.write(f"[{lvl}] {where}: {redact(msg)} {redacted_kw}\n")
    sys.stdout.flush()
