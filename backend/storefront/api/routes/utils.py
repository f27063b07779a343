"""Utility routes"""
from fastapi import APIRouter

router = APIRouter(prefix="/utils", tags=["utils"])


@router.get("/health-check/")
async def health_check() -> bool:
    """
    Liveness probe

    GET /api/v1/utils/health-check/ always answers ``true`` while the
    process is serving requests.
    """
    return True
