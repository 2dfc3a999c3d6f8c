"""Ping history API endpoints."""
from typing import Dict, List

from fastapi import APIRouter, Depends

from ..dependencies import get_store
from ..schemas.monitor import PingResultResponse
from ..services.storage import MonitorStore

router = APIRouter(prefix="/api/ping-results", tags=["ping-results"])


@router.get("", response_model=Dict[str, List[PingResultResponse]])
async def list_ping_results(store: MonitorStore = Depends(get_store)):
    """Recent ping history of every monitor, keyed by monitor id, oldest first."""
    return await store.get_all_ping_results()


@router.get("/{monitor_id}", response_model=List[PingResultResponse])
async def get_ping_results(monitor_id: str, store: MonitorStore = Depends(get_store)):
    """Recent ping history of one monitor, oldest first. Unknown ids yield []."""
    return await store.get_ping_results(monitor_id)
