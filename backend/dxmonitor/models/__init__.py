"""Database models."""
from .monitor import Monitor, MonitorState
from .ping_result import PingResult

__all__ = ["Monitor", "MonitorState", "PingResult"]
