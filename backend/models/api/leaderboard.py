"""
Pydantic models for leaderboard and cast endpoints

Amounts are serialized as plain decimal strings ("1.5") so clients never
see float rounding.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from models.domain.content_entry import CasterStake, ContentEntry, SupporterStake
from models.domain.stats import SupporterTotal
from services.aggregation import is_valid_supporter_stake
from utils.amounts import format_amount, sum_amounts


class CasterStakeOut(BaseModel):
    lockup_id: int
    amount: str
    unlock_time: int
    unlocked: bool
    lock_time: Optional[int] = None

    @classmethod
    def from_stake(cls, stake: CasterStake) -> 'CasterStakeOut':
        return cls(
            lockup_id=stake.lockup_id,
            amount=format_amount(stake.amount),
            unlock_time=stake.unlock_time,
            unlocked=stake.unlocked,
            lock_time=stake.lock_time,
        )


class SupporterStakeOut(BaseModel):
    lockup_id: int
    amount: str
    unlock_time: int
    unlocked: bool
    supporter_fid: Optional[int] = None
    pfp_url: str = ""
    lock_time: Optional[int] = None
    counted: bool = False

    @classmethod
    def from_stake(cls, stake: SupporterStake, counted: bool) -> 'SupporterStakeOut':
        return cls(
            lockup_id=stake.lockup_id,
            amount=format_amount(stake.amount),
            unlock_time=stake.unlock_time,
            unlocked=stake.unlocked,
            supporter_fid=stake.supporter_identity,
            pfp_url=stake.supporter_pfp_url,
            lock_time=stake.lock_time,
            counted=counted,
        )


class EntryResponse(BaseModel):
    """One leaderboard row"""
    cast_hash: str
    creator_fid: int
    creator_username: str = ""
    creator_display_name: str = ""
    creator_pfp_url: str = ""
    cast_text: str = ""
    description: str = ""
    cast_timestamp: Optional[datetime] = None
    state: str
    rank: Optional[int] = None
    total_staked: str
    active_supporter_total: str
    usd_value: Optional[str] = None
    caster_stakes: List[CasterStakeOut] = []
    supporter_stakes: List[SupporterStakeOut] = []
    updated_at: Optional[datetime] = None

    @classmethod
    def from_entry(cls, entry: ContentEntry) -> 'EntryResponse':
        unlock_times = entry.caster_unlock_times
        supporters = [
            SupporterStakeOut.from_stake(s, is_valid_supporter_stake(s, unlock_times))
            for s in entry.supporter_stakes
        ]
        active_supporter_total = sum_amounts(
            s.amount for s in entry.supporter_stakes if is_valid_supporter_stake(s, unlock_times)
        )
        return cls(
            cast_hash=entry.content_hash,
            creator_fid=entry.owner_identity,
            creator_username=entry.owner_username,
            creator_display_name=entry.owner_display_name,
            creator_pfp_url=entry.owner_pfp_url,
            cast_text=entry.content_text,
            description=entry.description,
            cast_timestamp=entry.content_timestamp,
            state=entry.state.value,
            rank=entry.rank,
            total_staked=format_amount(entry.total_staked),
            active_supporter_total=format_amount(active_supporter_total),
            usd_value=str(entry.usd_value) if entry.usd_value is not None else None,
            caster_stakes=[CasterStakeOut.from_stake(s) for s in entry.caster_stakes],
            supporter_stakes=supporters,
            updated_at=entry.updated_at,
        )


class LeaderboardResponse(BaseModel):
    entries: List[EntryResponse]
    count: int


class CastResponse(BaseModel):
    """Stored entry, or the live validation result for an unknown cast"""
    cast_hash: str
    valid: bool
    stored: bool
    reason: str = ""
    creator_fid: Optional[int] = None
    creator_username: str = ""
    description: str = ""
    entry: Optional[EntryResponse] = None


class SupporterOut(BaseModel):
    fid: int
    total_amount: str
    weighted_stake: float
    pfp_url: str = ""
    stake_count: int

    @classmethod
    def from_total(cls, total: SupporterTotal) -> 'SupporterOut':
        return cls(
            fid=total.supporter_identity,
            total_amount=format_amount(total.total_amount),
            weighted_stake=round(total.weighted_stake, 4),
            pfp_url=total.pfp_url,
            stake_count=total.stake_count,
        )


class SupportersResponse(BaseModel):
    cast_hash: str
    supporters: List[SupporterOut]
