"""Health and public config endpoints."""

from fastapi import APIRouter, Depends

from auth import verify_api_key, get_core
from profile import get_profile

router = APIRouter()


@router.get("/health")
def health():
    core = get_core()
    return {"status": "ok", "agent_ready": core.ready}


@router.get("/api/health", dependencies=[Depends(verify_api_key)])
async def api_health():
    status = await get_core().get_status()
    status["status"] = "ok" if status["ready"] and status["redis"] else "degraded"
    return status


@router.get("/api/config")
async def get_public_config():
    """Return system name and agent types. No auth required."""
    profile = get_profile()
    return {
        "system_name": profile.system.name,
        "version": "1.0.0",
        "agent_types": sorted(get_core().agents),
    }
