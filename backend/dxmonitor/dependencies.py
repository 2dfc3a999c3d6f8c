"""FastAPI dependencies resolving the service singletons.

Routes depend on these instead of importing the globals directly so tests can
swap in instances bound to a scratch database via ``app.dependency_overrides``.
"""
from .services.analyzer import SiteAnalyzer, site_analyzer
from .services.ping_service import PingService, ping_service
from .services.storage import MonitorStore, monitor_store


def get_store() -> MonitorStore:
    return monitor_store


def get_ping_service() -> PingService:
    return ping_service


def get_analyzer() -> SiteAnalyzer:
    return site_analyzer
