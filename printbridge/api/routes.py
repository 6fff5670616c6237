"""
API routes for the status API.

Base URL: /v1
"""

from fastapi import APIRouter, HTTPException, Query

from printbridge.api.dependencies import get_state
from printbridge.registry import NEVER

router = APIRouter(prefix="/v1")


@router.get("/health")
async def health_check(detailed: bool = Query(default=False)):
    """
    Health check endpoint.

    Args:
        detailed: If true, include registry counts and auto-shutdown state
    """
    if not detailed:
        return {"status": "ok"}

    state = get_state()
    scheduler = state.scheduler
    mirror = state.mirror

    return {
        "status": "ok" if mirror.last_refresh is not None else "degraded",
        "uptime_seconds": state.uptime_seconds,
        "printers": {
            "total": len(state.registry),
            "by_status": state.registry.count_by_status(),
        },
        "local_queues": len(mirror.list_all()),
        "reconcile": {
            "passes": scheduler.passes,
            "next_run": None if scheduler.next_run == NEVER else scheduler.next_run,
        },
        "autoshutdown": {
            "mode": state.config.autoshutdown,
            "enabled": state.autoshutdown.enabled,
            "pending": state.autoshutdown.pending,
            "timeout": state.autoshutdown.timeout,
        },
        "peers": len(state.pollers),
    }


@router.get("/printers")
async def list_printers():
    """List all registry entries, duplicates included."""
    state = get_state()
    return {"printers": [p.to_dict() for p in state.registry.list_all()]}


@router.get("/printers/{name}")
async def get_printer(name: str):
    """Get the entries sharing a queue name; the served one comes first."""
    state = get_state()
    entries = state.registry.with_name(name)
    if not entries:
        raise HTTPException(status_code=404, detail=f"Printer not found: {name}")
    entries.sort(key=lambda p: p.is_duplicate)
    return {
        "name": entries[0].name,
        "printer": entries[0].to_dict(),
        "duplicates": [p.to_dict() for p in entries[1:]],
    }


@router.get("/local-queues")
async def list_local_queues():
    """Queues of the local spooler as last seen."""
    mirror = get_state().mirror
    return {
        "last_refresh": mirror.last_refresh,
        "queues": [
            {"name": q.name, "device_uri": q.device_uri, "owned": q.owned_by_us}
            for q in mirror.list_all()
        ],
    }


@router.get("/peers")
async def list_peers():
    """BrowsePoll peers and their subscription state."""
    state = get_state()
    return {"peers": [poller.context.to_dict() for poller in state.pollers]}
