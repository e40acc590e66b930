"""
Models package

- models.domain: storage-agnostic dataclasses (ContentEntry, LockupRecord, ...)
- models.api: pydantic request/response models for the HTTP layer
"""

from .domain import (
    LockupRecord,
    ContentEntry,
    ContentState,
    CasterStake,
    SupporterStake,
    IdentityRecord,
    UserStats,
    NetworkStats,
)

__all__ = [
    'LockupRecord',
    'ContentEntry',
    'ContentState',
    'CasterStake',
    'SupporterStake',
    'IdentityRecord',
    'UserStats',
    'NetworkStats',
]
