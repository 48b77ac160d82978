"""Admin endpoints for pool inspection."""

from typing import Dict

from fastapi import APIRouter, Request, HTTPException

admin_router = APIRouter(prefix="/admin", tags=["admin"])


@admin_router.get("/status")
async def get_all_status(request: Request) -> Dict[str, object]:
    """Get status of all API keys in the pool."""
    scheduler = request.app.state.scheduler
    return await scheduler.get_status()


@admin_router.get("/status/{key_id}")
async def get_key_status(request: Request, key_id: str) -> Dict[str, object]:
    """Get status of a specific API key."""
    scheduler = request.app.state.scheduler
    status = await scheduler.get_key_status(key_id)
    if status is None:
        raise HTTPException(status_code=404, detail=f"Key {key_id} not found")
    return status


@admin_router.get("/tiers")
async def get_tiers(request: Request) -> Dict[str, Dict[str, int]]:
    """List the configured quota limits per model tier."""
    return request.app.state.scheduler.policy.as_dict()


@admin_router.get("/aliases")
async def get_aliases(request: Request) -> Dict[str, str]:
    """List request aliases and the model tier each one runs on."""
    return request.app.state.scheduler.policy.aliases()


@admin_router.post("/reset")
async def reset_counters(request: Request) -> Dict[str, str]:
    """Reset daily counters for all keys."""
    scheduler = request.app.state.scheduler
    await scheduler.force_reset()
    return {"message": "Counters reset successfully"}
