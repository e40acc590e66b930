"""
ContentEntry domain model - one leaderboard row per staked cast

Storage: PostgreSQL (leaderboard_entries table, parallel array columns)

Stakes are held here as lists of stake objects; the repository maps them
to and from the parallel `*_stake_*` array columns.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Set

from utils.amounts import sum_amounts


class ContentState(str, Enum):
    """
    Cast lifecycle, derived from the stake arrays on every pass.

    ACTIVE is persisted as 'higher' (the name the leaderboard has always
    used for casts with a live caster stake).
    """
    INVALID = "invalid"
    VALID = "valid"
    ACTIVE = "higher"
    EXPIRED = "expired"


class CorruptEntryError(ValueError):
    """Raised when stored parallel stake arrays disagree in length"""


@dataclass
class CasterStake:
    """Lockup funded by the cast author's own wallet"""
    lockup_id: int
    amount: Decimal
    unlock_time: int
    unlocked: bool = False
    lock_time: Optional[int] = None


@dataclass
class SupporterStake:
    """Lockup funded by anyone other than the cast author"""
    lockup_id: int
    amount: Decimal
    unlock_time: int
    supporter_identity: Optional[int] = None  # None when the funder has no known fid
    unlocked: bool = False
    lock_time: Optional[int] = None
    supporter_pfp_url: str = ""


DISPLAY_FIELDS = (
    'owner_username',
    'owner_display_name',
    'owner_pfp_url',
    'content_text',
    'description',
)


@dataclass
class ContentEntry:
    """
    Aggregate root for a staked cast.

    Invariant: total_staked == sum of every caster + supporter amount.
    Call recompute_total() after touching either stake list.
    """
    content_hash: str
    owner_identity: int

    # Denormalized identity / cast data (refreshed opportunistically)
    owner_username: str = ""
    owner_display_name: str = ""
    owner_pfp_url: str = ""
    content_text: str = ""
    description: str = ""
    content_timestamp: Optional[datetime] = None

    # Stakes
    caster_stakes: List[CasterStake] = field(default_factory=list)
    supporter_stakes: List[SupporterStake] = field(default_factory=list)

    # Derived
    total_staked: Decimal = Decimal(0)
    usd_value: Optional[Decimal] = None
    rank: Optional[int] = None
    state: ContentState = ContentState.VALID

    updated_at: Optional[datetime] = None

    def recompute_total(self) -> Decimal:
        """Recompute total_staked from the stake lists"""
        self.total_staked = sum_amounts(
            [s.amount for s in self.caster_stakes] + [s.amount for s in self.supporter_stakes]
        )
        return self.total_staked

    @property
    def caster_unlock_times(self) -> Set[int]:
        """All caster unlock times, regardless of unlocked status"""
        return {s.unlock_time for s in self.caster_stakes}

    @property
    def lockup_ids(self) -> Set[int]:
        return {s.lockup_id for s in self.caster_stakes} | {s.lockup_id for s in self.supporter_stakes}

    @property
    def is_active(self) -> bool:
        return self.state == ContentState.ACTIVE

    def merge_display_fields(self, existing: Optional['ContentEntry']) -> 'ContentEntry':
        """
        Apply the upsert merge policy against the stored row.

        Display fields never regress to empty: an empty incoming value keeps
        the stored non-empty one. Numeric, array and state fields are left
        as computed.
        """
        if existing is None:
            return self
        for name in DISPLAY_FIELDS:
            if not getattr(self, name) and getattr(existing, name):
                setattr(self, name, getattr(existing, name))
        if self.content_timestamp is None:
            self.content_timestamp = existing.content_timestamp
        return self
