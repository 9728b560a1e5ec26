"""Offline capture and replay of user writes."""

from .action_log import ActionLog
from .connectivity import ConnectivityMonitor
from .mirror import RedisMirror
from .replay import ReplayCoordinator

__all__ = ["ActionLog", "ConnectivityMonitor", "RedisMirror", "ReplayCoordinator"]
