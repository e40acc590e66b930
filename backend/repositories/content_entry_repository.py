"""
ContentEntry Repository - PostgreSQL storage for leaderboard rows

Storage: PostgreSQL (leaderboard_entries table)

Stakes are stored as parallel array columns, one array per stake field:
    caster_stake_lockup_ids[i], caster_stake_amounts[i], ... describe the
    i-th caster stake. Arrays of unequal length mean the row is corrupt;
    it is logged and skipped by list reads.
"""
import logging
from typing import List, Optional

import asyncpg

from models.domain.content_entry import (
    CasterStake,
    ContentEntry,
    ContentState,
    CorruptEntryError,
    SupporterStake,
)
from utils.amounts import to_decimal

logger = logging.getLogger(__name__)


ENTRY_COLUMNS = """
    cast_hash, creator_fid, creator_username, creator_display_name, creator_pfp_url,
    cast_text, description, cast_timestamp,
    total_higher_staked, usd_value, rank, cast_state,
    caster_stake_lockup_ids, caster_stake_amounts, caster_stake_unlock_times,
    caster_stake_unlocked, caster_stake_lock_times,
    supporter_stake_lockup_ids, supporter_stake_amounts, supporter_stake_fids,
    supporter_stake_pfps, supporter_stake_unlock_times, supporter_stake_unlocked,
    supporter_stake_lock_times,
    staker_fids, updated_at
"""


def _keep_nonempty(column: str) -> str:
    return f"COALESCE(NULLIF(EXCLUDED.{column}, ''), leaderboard_entries.{column})"


# (column, value on conflict). Display fields never regress to empty;
# everything else is replaced by the incoming value.
MERGE_RULES = [
    ('creator_fid', 'EXCLUDED.creator_fid'),
    ('creator_username', _keep_nonempty('creator_username')),
    ('creator_display_name', _keep_nonempty('creator_display_name')),
    ('creator_pfp_url', _keep_nonempty('creator_pfp_url')),
    ('cast_text', _keep_nonempty('cast_text')),
    ('description', _keep_nonempty('description')),
    ('cast_timestamp', 'COALESCE(EXCLUDED.cast_timestamp, leaderboard_entries.cast_timestamp)'),
] + [
    (column, f'EXCLUDED.{column}')
    for column in (
        'total_higher_staked', 'usd_value', 'rank', 'cast_state',
        'caster_stake_lockup_ids', 'caster_stake_amounts', 'caster_stake_unlock_times',
        'caster_stake_unlocked', 'caster_stake_lock_times',
        'supporter_stake_lockup_ids', 'supporter_stake_amounts', 'supporter_stake_fids',
        'supporter_stake_pfps', 'supporter_stake_unlock_times', 'supporter_stake_unlocked',
        'supporter_stake_lock_times',
        'staker_fids',
    )
]

# The WHERE guard skips the write when the merged row equals the stored one,
# so re-applying the same entry leaves the row (updated_at included) untouched.
UPSERT_SQL = f"""
    INSERT INTO leaderboard_entries (
        cast_hash, {', '.join(column for column, _ in MERGE_RULES)}, updated_at
    )
    VALUES ({', '.join(f'${i}' for i in range(1, len(MERGE_RULES) + 2))}, NOW())
    ON CONFLICT (cast_hash) DO UPDATE SET
        {', '.join(f'{column} = {value}' for column, value in MERGE_RULES)},
        updated_at = NOW()
    WHERE ({', '.join(f'leaderboard_entries.{column}' for column, _ in MERGE_RULES)})
        IS DISTINCT FROM ({', '.join(value for _, value in MERGE_RULES)})
"""


class ContentEntryRepository:
    """
    Repository for the ContentEntry aggregate

    One row per cast hash. Every write is a single-row atomic upsert.
    """

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    # =========================================================================
    # READ OPERATIONS
    # =========================================================================

    async def get(self, content_hash: str) -> Optional[ContentEntry]:
        """
        Retrieve entry by cast hash.

        Args:
            content_hash: Normalized cast hash

        Returns:
            ContentEntry or None

        Raises:
            CorruptEntryError: if the stored stake arrays are inconsistent
        """
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(f"""
                SELECT {ENTRY_COLUMNS}
                FROM leaderboard_entries
                WHERE cast_hash = $1
            """, content_hash)

        if not row:
            return None
        return self._row_to_entry(row)

    async def find_by_lockup_id(self, lockup_id: int) -> Optional[ContentEntry]:
        """Find the entry holding a lockup in either stake array"""
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(f"""
                SELECT {ENTRY_COLUMNS}
                FROM leaderboard_entries
                WHERE $1 = ANY(caster_stake_lockup_ids)
                   OR $1 = ANY(supporter_stake_lockup_ids)
                LIMIT 1
            """, lockup_id)

        if not row:
            return None
        return self._row_to_entry(row)

    async def list_by_state(self, state: ContentState) -> List[ContentEntry]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(f"""
                SELECT {ENTRY_COLUMNS}
                FROM leaderboard_entries
                WHERE cast_state = $1
                ORDER BY cast_hash
            """, state.value)
        return self._rows_to_entries(rows)

    async def list_leaderboard(self, limit: int = 100) -> List[ContentEntry]:
        """
        ACTIVE entries in rank order.

        Args:
            limit: Max rows to return

        Returns:
            List of ContentEntry, rank 1 first
        """
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(f"""
                SELECT {ENTRY_COLUMNS}
                FROM leaderboard_entries
                WHERE cast_state = $1
                ORDER BY rank ASC NULLS LAST, total_higher_staked DESC, cast_hash
                LIMIT $2
            """, ContentState.ACTIVE.value, limit)
        return self._rows_to_entries(rows)

    async def list_by_owner(self, owner_identity: int) -> List[ContentEntry]:
        """All entries authored by a user (any state)"""
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(f"""
                SELECT {ENTRY_COLUMNS}
                FROM leaderboard_entries
                WHERE creator_fid = $1
                ORDER BY cast_hash
            """, owner_identity)
        return self._rows_to_entries(rows)

    async def list_supported_by(self, identity_id: int) -> List[ContentEntry]:
        """Entries where the user appears among the supporter stakes"""
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(f"""
                SELECT {ENTRY_COLUMNS}
                FROM leaderboard_entries
                WHERE $1 = ANY(staker_fids)
                ORDER BY cast_hash
            """, identity_id)
        return self._rows_to_entries(rows)

    # =========================================================================
    # WRITE OPERATIONS
    # =========================================================================

    async def upsert(self, entry: ContentEntry) -> None:
        """
        Insert or update an entry.

        Display fields keep the stored value when the incoming one is empty;
        numeric, array and state columns are always overwritten. A write that
        would leave the row unchanged is skipped, so updated_at only moves
        when something else did.
        """
        casters = entry.caster_stakes
        supporters = entry.supporter_stakes
        staker_fids = sorted({
            s.supporter_identity for s in supporters if s.supporter_identity is not None
        })

        async with self.db_pool.acquire() as conn:
            await conn.execute(UPSERT_SQL,
                entry.content_hash,
                entry.owner_identity,
                entry.owner_username,
                entry.owner_display_name,
                entry.owner_pfp_url,
                entry.content_text,
                entry.description,
                entry.content_timestamp,
                entry.total_staked,
                entry.usd_value,
                entry.rank,
                entry.state.value,
                [s.lockup_id for s in casters],
                [s.amount for s in casters],
                [s.unlock_time for s in casters],
                [s.unlocked for s in casters],
                [s.lock_time for s in casters],
                [s.lockup_id for s in supporters],
                [s.amount for s in supporters],
                [s.supporter_identity for s in supporters],
                [s.supporter_pfp_url for s in supporters],
                [s.unlock_time for s in supporters],
                [s.unlocked for s in supporters],
                [s.lock_time for s in supporters],
                staker_fids,
            )

        logger.debug(f"Upserted {entry.content_hash} state={entry.state.value} rank={entry.rank}")

    # =========================================================================
    # ROW MAPPING
    # =========================================================================

    def _rows_to_entries(self, rows) -> List[ContentEntry]:
        entries = []
        for row in rows:
            try:
                entries.append(self._row_to_entry(row))
            except CorruptEntryError as e:
                logger.error(f"Skipping corrupt entry {row['cast_hash']}: {e}")
        return entries

    def _row_to_entry(self, row) -> ContentEntry:
        """Convert a leaderboard_entries row to ContentEntry"""
        content_hash = row['cast_hash']

        caster_ids = list(row['caster_stake_lockup_ids'] or [])
        caster_amounts = list(row['caster_stake_amounts'] or [])
        caster_unlocks = list(row['caster_stake_unlock_times'] or [])
        caster_unlocked = list(row['caster_stake_unlocked'] or [])
        caster_locks = list(row['caster_stake_lock_times'] or [])

        if not (len(caster_ids) == len(caster_amounts) == len(caster_unlocks)):
            raise CorruptEntryError(
                f"caster arrays differ in length: ids={len(caster_ids)} "
                f"amounts={len(caster_amounts)} unlock_times={len(caster_unlocks)}"
            )

        caster_stakes = [
            CasterStake(
                lockup_id=int(lockup_id),
                amount=to_decimal(caster_amounts[i]),
                unlock_time=int(caster_unlocks[i]),
                unlocked=bool(caster_unlocked[i]) if i < len(caster_unlocked) else False,
                lock_time=caster_locks[i] if i < len(caster_locks) else None,
            )
            for i, lockup_id in enumerate(caster_ids)
        ]

        supporter_ids = list(row['supporter_stake_lockup_ids'] or [])
        supporter_amounts = list(row['supporter_stake_amounts'] or [])
        supporter_fids = list(row['supporter_stake_fids'] or [])
        supporter_unlocks = list(row['supporter_stake_unlock_times'] or [])
        supporter_unlocked = list(row['supporter_stake_unlocked'] or [])
        supporter_pfps = list(row['supporter_stake_pfps'] or [])
        supporter_locks = list(row['supporter_stake_lock_times'] or [])

        if not (len(supporter_ids) == len(supporter_amounts) == len(supporter_fids) == len(supporter_unlocks)):
            raise CorruptEntryError(
                f"supporter arrays differ in length: ids={len(supporter_ids)} "
                f"amounts={len(supporter_amounts)} fids={len(supporter_fids)} "
                f"unlock_times={len(supporter_unlocks)}"
            )

        supporter_stakes = [
            SupporterStake(
                lockup_id=int(lockup_id),
                amount=to_decimal(supporter_amounts[i]),
                unlock_time=int(supporter_unlocks[i]),
                supporter_identity=supporter_fids[i],
                unlocked=bool(supporter_unlocked[i]) if i < len(supporter_unlocked) else False,
                lock_time=supporter_locks[i] if i < len(supporter_locks) else None,
                supporter_pfp_url=(supporter_pfps[i] or "") if i < len(supporter_pfps) else "",
            )
            for i, lockup_id in enumerate(supporter_ids)
        ]

        try:
            state = ContentState(row['cast_state'])
        except ValueError:
            raise CorruptEntryError(f"unknown cast_state {row['cast_state']!r}")

        return ContentEntry(
            content_hash=content_hash,
            owner_identity=row['creator_fid'],
            owner_username=row['creator_username'] or "",
            owner_display_name=row['creator_display_name'] or "",
            owner_pfp_url=row['creator_pfp_url'] or "",
            content_text=row['cast_text'] or "",
            description=row['description'] or "",
            content_timestamp=row['cast_timestamp'],
            caster_stakes=caster_stakes,
            supporter_stakes=supporter_stakes,
            total_staked=to_decimal(row['total_higher_staked']),
            usd_value=row['usd_value'],
            rank=row['rank'],
            state=state,
            updated_at=row['updated_at'],
        )
