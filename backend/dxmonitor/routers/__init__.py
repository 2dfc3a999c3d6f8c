"""API routers."""
from .monitors import router as monitors_router
from .ping_results import router as ping_results_router
from .site_test import router as site_test_router
from .status import router as status_router

__all__ = ["monitors_router", "ping_results_router", "site_test_router", "status_router"]
