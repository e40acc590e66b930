"""
Leaderboard API Endpoints
=========================

Read views over the persisted leaderboard.

Endpoints:
- GET /api/leaderboard - ACTIVE casts in rank order
- GET /api/cast/{cast_hash} - Stored entry or live validation result
- GET /api/cast/{cast_hash}/supporters - Per-supporter totals for a cast
"""

import logging

import asyncpg
from fastapi import APIRouter, Depends, HTTPException, Query

from api.dependencies import get_services
from models.api.leaderboard import (
    CastResponse,
    EntryResponse,
    LeaderboardResponse,
    SupporterOut,
    SupportersResponse,
)
from models.domain.content_entry import ContentState, CorruptEntryError
from services.aggregation import aggregate_supporters
from services.wiring import ServiceBundle
from utils.hash_utils import normalize_content_hash

logger = logging.getLogger(__name__)
router = APIRouter()


def _require_hash(cast_hash: str) -> str:
    normalized = normalize_content_hash(cast_hash)
    if normalized is None:
        raise HTTPException(status_code=400, detail="Invalid cast hash")
    return normalized


@router.get("/leaderboard", response_model=LeaderboardResponse)
async def get_leaderboard(
    limit: int = Query(100, ge=1, le=1000),
    services: ServiceBundle = Depends(get_services),
):
    """Top ACTIVE casts by total staked"""
    try:
        entries = await services.repository.list_leaderboard(limit)
    except (asyncpg.PostgresError, OSError) as e:
        logger.error(f"Leaderboard read failed: {e}")
        raise HTTPException(status_code=503, detail="Leaderboard unavailable")

    return LeaderboardResponse(
        entries=[EntryResponse.from_entry(e) for e in entries],
        count=len(entries),
    )


@router.get("/cast/{cast_hash}", response_model=CastResponse)
async def get_cast(cast_hash: str, services: ServiceBundle = Depends(get_services)):
    """
    Stored entry for a cast; unknown casts are validated live.

    Returns 404 when the cast cannot be found at all.
    """
    content_hash = _require_hash(cast_hash)

    try:
        entry = await services.repository.get(content_hash)
    except CorruptEntryError as e:
        logger.error(f"Corrupt entry {content_hash}: {e}")
        raise HTTPException(status_code=500, detail="Stored entry is corrupt")

    if entry is not None:
        return CastResponse(
            cast_hash=content_hash,
            valid=entry.state != ContentState.INVALID,
            stored=True,
            creator_fid=entry.owner_identity,
            creator_username=entry.owner_username,
            description=entry.description,
            entry=EntryResponse.from_entry(entry),
        )

    validation = await services.validator.validate(content_hash)
    if validation is None:
        raise HTTPException(status_code=404, detail="Cast not found")

    return CastResponse(
        cast_hash=content_hash,
        valid=validation.valid,
        stored=False,
        reason=validation.reason,
        creator_fid=validation.owner_identity,
        creator_username=validation.owner_username,
        description=validation.description,
    )


@router.get("/cast/{cast_hash}/supporters", response_model=SupportersResponse)
async def get_cast_supporters(
    cast_hash: str,
    limit: int = Query(10, ge=1, le=100),
    services: ServiceBundle = Depends(get_services),
):
    """Valid supporter stakes grouped by supporter, largest first"""
    content_hash = _require_hash(cast_hash)

    entry = await services.repository.get(content_hash)
    if entry is None:
        raise HTTPException(status_code=404, detail="Cast not found")

    totals = aggregate_supporters(entry, limit=limit)
    return SupportersResponse(
        cast_hash=content_hash,
        supporters=[SupporterOut.from_total(t) for t in totals],
    )
