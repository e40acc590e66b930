"""
Read-side projections over the leaderboard aggregate
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Set


@dataclass
class SupporterTotal:
    """One supporter's valid stakes on a cast, summed"""
    supporter_identity: int
    total_amount: Decimal
    weighted_stake: float = 0.0  # token-days
    pfp_url: str = ""
    stake_count: int = 0


@dataclass
class SupportedContent:
    """A cast the user supports, with the user's valid stake total on it"""
    content_hash: str
    owner_identity: int
    total_amount: Decimal
    description: str = ""
    rank: Optional[int] = None
    state: str = ""


@dataclass
class UserStats:
    """Per-user totals; every sum excludes unlocked stakes"""
    identity_id: int

    # Stakes the user made
    total_caster_staked: Decimal = Decimal(0)
    total_supporter_staked: Decimal = Decimal(0)
    supported_owners: Set[int] = field(default_factory=set)
    top_supported: List[SupportedContent] = field(default_factory=list)

    # Stakes on the user's own casts
    total_caster_stakes_on_own_content: Decimal = Decimal(0)
    total_supporter_stakes_received: Decimal = Decimal(0)
    supporters: Set[int] = field(default_factory=set)

    @property
    def total_user_staked(self) -> Decimal:
        return self.total_caster_staked + self.total_supporter_staked

    @property
    def total_staked_on_own_content(self) -> Decimal:
        return self.total_caster_stakes_on_own_content + self.total_supporter_stakes_received


@dataclass
class NetworkStats:
    """Network-wide totals over ACTIVE casts"""
    total_caster_staked: Decimal = Decimal(0)
    total_supporter_staked: Decimal = Decimal(0)
    active_entries: int = 0

    @property
    def total_staked(self) -> Decimal:
        return self.total_caster_staked + self.total_supporter_staked
