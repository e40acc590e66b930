"""
Stats API Endpoints
===================

Endpoints:
- GET /api/user/stats?fid= - Per-user staking totals
- GET /api/network/stats - Network-wide totals over ACTIVE casts
"""

import logging

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_services
from models.api.stats import NetworkStatsResponse, UserStatsResponse
from services.wiring import ServiceBundle

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/user/stats", response_model=UserStatsResponse)
async def get_user_stats(
    fid: int = Query(..., ge=1),
    services: ServiceBundle = Depends(get_services),
):
    stats = await services.projector.get_user_stats(fid)
    return UserStatsResponse.from_stats(stats)


@router.get("/network/stats", response_model=NetworkStatsResponse)
async def get_network_stats(services: ServiceBundle = Depends(get_services)):
    stats = await services.projector.get_network_stats()
    return NetworkStatsResponse.from_stats(stats)
