"""Services for probing, analysis, storage and scheduling."""
from .analyzer import SiteAnalyzer
from .checker import CheckerService, ProbeResult
from .ping_service import PingService
from .reliability import ReliabilityAggregator
from .storage import MonitorStore

__all__ = ["SiteAnalyzer", "CheckerService", "ProbeResult", "PingService", "ReliabilityAggregator", "MonitorStore"]
