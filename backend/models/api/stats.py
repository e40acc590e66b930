"""
Pydantic models for user and network statistics
"""

from typing import List, Optional

from pydantic import BaseModel

from models.domain.stats import NetworkStats, UserStats
from utils.amounts import format_amount


class SupportedCastOut(BaseModel):
    cast_hash: str
    creator_fid: int
    total_amount: str
    description: str = ""
    rank: Optional[int] = None
    state: str = ""


class UserStatsResponse(BaseModel):
    fid: int
    total_user_staked: str
    total_caster_staked: str
    total_supporter_staked: str
    total_builders_supported: int
    top_supported_casts: List[SupportedCastOut] = []
    total_staked_on_user_casts: str
    total_caster_stakes_on_user_casts: str
    total_supporter_stakes_on_user_casts: str
    total_supporters: int

    @classmethod
    def from_stats(cls, stats: UserStats) -> 'UserStatsResponse':
        return cls(
            fid=stats.identity_id,
            total_user_staked=format_amount(stats.total_user_staked),
            total_caster_staked=format_amount(stats.total_caster_staked),
            total_supporter_staked=format_amount(stats.total_supporter_staked),
            total_builders_supported=len(stats.supported_owners),
            top_supported_casts=[
                SupportedCastOut(
                    cast_hash=c.content_hash,
                    creator_fid=c.owner_identity,
                    total_amount=format_amount(c.total_amount),
                    description=c.description,
                    rank=c.rank,
                    state=c.state,
                )
                for c in stats.top_supported
            ],
            total_staked_on_user_casts=format_amount(stats.total_staked_on_own_content),
            total_caster_stakes_on_user_casts=format_amount(stats.total_caster_stakes_on_own_content),
            total_supporter_stakes_on_user_casts=format_amount(stats.total_supporter_stakes_received),
            total_supporters=len(stats.supporters),
        )


class NetworkStatsResponse(BaseModel):
    total_staked: str
    total_caster_staked: str
    total_supporter_staked: str
    active_casts: int

    @classmethod
    def from_stats(cls, stats: NetworkStats) -> 'NetworkStatsResponse':
        return cls(
            total_staked=format_amount(stats.total_staked),
            total_caster_staked=format_amount(stats.total_caster_staked),
            total_supporter_staked=format_amount(stats.total_supporter_staked),
            active_casts=stats.active_entries,
        )
