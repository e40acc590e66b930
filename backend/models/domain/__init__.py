"""
Domain Models - Storage-agnostic data structures

These models represent the core domain entities independent of storage layer.
Workers and services operate on these models, not raw database rows.

Architecture:
- Domain models are pure Python objects (dataclasses)
- Storage details (PostgreSQL) are abstracted via repositories
- Business logic operates on these models, not database rows

Staking Pipeline Models:
- LockupRecord: Upstream lockup observation (never persisted as-is)
- ContentEntry: Leaderboard row per cast (persisted)
- IdentityRecord: Farcaster user view (read-through only)
"""

from .lockup import LockupRecord, MalformedLockupError, parse_lockup_record
from .content_entry import (
    ContentEntry,
    ContentState,
    CasterStake,
    SupporterStake,
    CorruptEntryError,
)
from .identity import IdentityRecord, OwnerWallets
from .stats import UserStats, NetworkStats, SupporterTotal, SupportedContent

__all__ = [
    # Upstream input
    'LockupRecord',
    'MalformedLockupError',
    'parse_lockup_record',

    # Aggregate
    'ContentEntry',
    'ContentState',
    'CasterStake',
    'SupporterStake',
    'CorruptEntryError',

    # Identity
    'IdentityRecord',
    'OwnerWallets',

    # Projections
    'UserStats',
    'NetworkStats',
    'SupporterTotal',
    'SupportedContent',
]
