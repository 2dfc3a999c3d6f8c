"""Status overview API for dashboard."""
from fastapi import APIRouter, Depends

from ..dependencies import get_store
from ..models import MonitorState
from ..schemas.status import StatusOverview
from ..services.storage import MonitorStore
from ..utils.mathutils import round_half_up

router = APIRouter(prefix="/api/status", tags=["status"])


@router.get("/overview", response_model=StatusOverview)
async def get_status_overview(store: MonitorStore = Depends(get_store)):
    """Get dashboard overview data."""
    monitors = await store.get_all_monitors()

    counts = {state: 0 for state in MonitorState}
    for monitor in monitors:
        counts[monitor.status] += 1

    average_uptime = 100
    if monitors:
        average_uptime = round_half_up(sum(m.uptime_percentage for m in monitors) / len(monitors))

    # Only monitors with a measured latency count towards the average
    response_times = [m.response_time for m in monitors if m.response_time is not None]
    average_response = round_half_up(sum(response_times) / len(response_times)) if response_times else None

    return StatusOverview(
        total_monitors=len(monitors),
        monitors_up=counts[MonitorState.UP],
        monitors_down=counts[MonitorState.DOWN],
        monitors_checking=counts[MonitorState.CHECKING],
        average_uptime=average_uptime,
        average_response_time=average_response,
    )
