"""Monitor CRUD API endpoints."""
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response

from ..dependencies import get_ping_service, get_store
from ..schemas.monitor import (
    MonitorCreate,
    MonitorDelete,
    MonitorResponse,
    MonitorUpdate,
)
from ..services.ping_service import PingService
from ..services.storage import DuplicateURLError, MonitorStore, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/monitors", tags=["monitors"])

DUPLICATE_URL_DETAIL = "This URL is already being monitored"


@router.get("", response_model=List[MonitorResponse])
async def list_monitors(store: MonitorStore = Depends(get_store)):
    """List all monitors with their current status."""
    return await store.get_all_monitors()


@router.get("/{monitor_id}", response_model=MonitorResponse)
async def get_monitor(monitor_id: str, store: MonitorStore = Depends(get_store)):
    """Get a specific monitor by ID."""
    monitor = await store.get_monitor(monitor_id)
    if not monitor:
        raise HTTPException(status_code=404, detail="Monitor not found")
    return monitor


@router.post("", response_model=MonitorResponse, status_code=201)
async def create_monitor(
    monitor: MonitorCreate,
    store: MonitorStore = Depends(get_store),
    pinger: PingService = Depends(get_ping_service),
):
    """Create a new monitor and kick off its first check in the background."""
    if await store.check_duplicate_url(monitor.url):
        raise HTTPException(status_code=409, detail=DUPLICATE_URL_DETAIL)

    try:
        db_monitor = await store.create_monitor(
            name=monitor.name,
            url=monitor.url,
            interval=monitor.interval,
            password=monitor.password,
        )
    except DuplicateURLError:
        raise HTTPException(status_code=409, detail=DUPLICATE_URL_DETAIL)

    # Gives the monitor a status before the next scheduler tick
    pinger.dispatch_check(db_monitor.id)

    return db_monitor


@router.patch("/{monitor_id}", response_model=MonitorResponse)
async def update_monitor(
    monitor_id: str,
    update: MonitorUpdate,
    store: MonitorStore = Depends(get_store),
    pinger: PingService = Depends(get_ping_service),
):
    """Update name, URL or interval of a monitor."""
    existing = await store.get_monitor(monitor_id)
    if not existing:
        raise HTTPException(status_code=404, detail="Monitor not found")

    url_changed = update.url is not None and update.url != existing.url
    if url_changed and await store.check_duplicate_url(update.url, exclude_id=monitor_id):
        raise HTTPException(status_code=409, detail=DUPLICATE_URL_DETAIL)

    try:
        monitor = await store.update_monitor(monitor_id, **update.model_dump(exclude_unset=True))
    except DuplicateURLError:
        raise HTTPException(status_code=409, detail=DUPLICATE_URL_DETAIL)
    if not monitor:
        raise HTTPException(status_code=404, detail="Monitor not found")

    if url_changed:
        pinger.dispatch_check(monitor_id)

    return monitor


@router.delete("/{monitor_id}", status_code=204)
async def delete_monitor(
    monitor_id: str,
    body: MonitorDelete,
    store: MonitorStore = Depends(get_store),
):
    """Delete a monitor and its ping history; requires the monitor's password."""
    monitor = await store.get_monitor(monitor_id)
    if not monitor:
        raise HTTPException(status_code=404, detail="Monitor not found")

    if not await verify_password(monitor, body.password):
        logger.info(f"Rejected deletion of monitor {monitor_id}: wrong password")
        raise HTTPException(status_code=401, detail="Incorrect password")

    await store.delete_monitor(monitor_id)
    return Response(status_code=204)
