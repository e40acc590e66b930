"""
Test: Reconciliation
====================

Full re-sync (authoritative, idempotent) and the optimistic push-event path.
"""

import asyncio
import copy
from decimal import Decimal

import pytest

from models.domain.content_entry import CasterStake, ContentEntry, ContentState, SupporterStake
from models.domain.lockup import parse_lockup_record
from services.external import ExternalServiceError
from utils.amounts import AmountUnit

from conftest import (
    CASTER_FID, CASTER_VERIFIED, CASTER_WALLET, HALF_TOKEN, HASH_A, HASH_B, HASH_C,
    NOW, OTHER_FID, OTHER_WALLET, SUPPORTER_FID, SUPPORTER_WALLET, UNKNOWN_WALLET,
    lockup_row, make_cast,
)


def record(lockup_id, sender, title=HASH_A, **kwargs):
    return parse_lockup_record(lockup_row(lockup_id, sender, title, **kwargs), AmountUnit.BASE)


def active_entry(content_hash, lockup_id=50, unlock_time=NOW + 3600, rank=1):
    entry = ContentEntry(
        content_hash=content_hash,
        owner_identity=CASTER_FID,
        owner_username='caster',
        description='stored',
        caster_stakes=[CasterStake(lockup_id=lockup_id, amount=Decimal(2), unlock_time=unlock_time)],
        state=ContentState.ACTIVE,
        rank=rank,
    )
    entry.recompute_total()
    return entry


@pytest.mark.asyncio
class TestSyncAll:

    async def test_builds_ranked_entry(self, orchestrator, source, repository):
        source.records = [
            record(1, CASTER_WALLET),
            record(2, SUPPORTER_WALLET, amount=HALF_TOKEN),
        ]
        result = await orchestrator.sync_all()

        assert result.success
        assert result.entries_upserted == 1
        entry = repository.rows[HASH_A]
        assert entry.state == ContentState.ACTIVE
        assert entry.rank == 1
        assert entry.total_staked == Decimal("1.5")
        assert entry.usd_value == Decimal("0.02")
        assert entry.supporter_stakes[0].supporter_identity == SUPPORTER_FID
        assert entry.supporter_stakes[0].supporter_pfp_url == 'https://pfp.example/200.png'

    async def test_verified_wallet_counts_as_caster(self, orchestrator, source, repository):
        source.records = [record(1, CASTER_VERIFIED)]
        await orchestrator.sync_all()
        assert len(repository.rows[HASH_A].caster_stakes) == 1

    async def test_rerun_is_idempotent(self, orchestrator, source, repository):
        source.records = [
            record(1, CASTER_WALLET),
            record(2, SUPPORTER_WALLET),
            record(3, UNKNOWN_WALLET),
        ]
        await orchestrator.sync_all()
        first = copy.deepcopy(repository.rows)
        await orchestrator.sync_all()
        assert repository.rows == first

    async def test_ranks_across_casts(self, orchestrator, source, repository, neynar):
        neynar.casts[HASH_B] = make_cast(CASTER_FID)
        source.records = [
            record(1, CASTER_WALLET, HASH_A),
            record(2, CASTER_WALLET, HASH_B, amount=str(3 * 10 ** 18)),
        ]
        await orchestrator.sync_all()
        assert repository.rows[HASH_B].rank == 1
        assert repository.rows[HASH_A].rank == 2

    async def test_unusable_records_dropped(self, orchestrator, source, repository):
        source.records = [
            record(1, CASTER_WALLET),
            record(2, CASTER_WALLET, title="not a hash"),
            record(3, CASTER_WALLET, amount="garbage"),
        ]
        result = await orchestrator.sync_all()
        assert result.records_dropped == 2
        assert [s.lockup_id for s in repository.rows[HASH_A].caster_stakes] == [1]

    async def test_unknown_cast_skipped(self, orchestrator, source, repository):
        source.records = [record(1, CASTER_WALLET, HASH_C)]
        result = await orchestrator.sync_all()
        assert result.hashes_skipped == 1
        assert HASH_C not in repository.rows

    async def test_invalid_cast_stored_as_invalid(self, orchestrator, source, repository, neynar):
        neynar.casts[HASH_B] = make_cast(CASTER_FID, channel='base')
        source.records = [record(1, CASTER_WALLET, HASH_B)]
        await orchestrator.sync_all()
        entry = repository.rows[HASH_B]
        assert entry.state == ContentState.INVALID
        assert entry.rank is None

    async def test_partial_upsert_failure(self, orchestrator, source, repository, neynar):
        neynar.casts[HASH_B] = make_cast(CASTER_FID)
        repository.fail_hashes = {HASH_A}
        source.records = [record(1, CASTER_WALLET, HASH_A), record(2, CASTER_WALLET, HASH_B)]

        result = await orchestrator.sync_all()

        assert result.entries_failed == 1
        assert result.entries_upserted == 1
        assert HASH_B in repository.rows

    async def test_stored_active_entries_folded_in(self, orchestrator, source, repository):
        repository.seed(active_entry(HASH_B, lockup_id=50, unlock_time=NOW + 60, rank=1))
        repository.seed(active_entry(HASH_C, lockup_id=51, unlock_time=NOW - 60, rank=2))
        source.records = [record(1, CASTER_WALLET)]

        await orchestrator.sync_all()

        assert repository.rows[HASH_B].rank == 1   # 2 tokens
        assert repository.rows[HASH_A].rank == 2   # 1 token
        assert repository.rows[HASH_C].state == ContentState.EXPIRED
        assert repository.rows[HASH_C].rank is None

    async def test_skipped_active_entry_keeps_ranks_dense(self, orchestrator, source, repository, neynar):
        neynar.casts[HASH_B] = make_cast(OTHER_FID)
        source.records = [
            record(1, CASTER_WALLET, HASH_A, amount=str(3 * 10 ** 18)),
            record(2, OTHER_WALLET, HASH_B),
        ]
        await orchestrator.sync_all()
        assert (repository.rows[HASH_A].rank, repository.rows[HASH_B].rank) == (1, 2)

        del neynar.users[CASTER_FID]
        result = await orchestrator.sync_all()

        assert result.hashes_skipped == 1
        assert result.entries_upserted == 2
        ranks = sorted(r.rank for r in repository.rows.values() if r.state == ContentState.ACTIVE)
        assert ranks == [1, 2]
        assert repository.rows[HASH_A].rank == 1

    async def test_missing_author_pfp_falls_back_to_identity(self, orchestrator, source, repository, neynar):
        repository.seed(ContentEntry(
            content_hash=HASH_A, owner_identity=CASTER_FID,
            owner_pfp_url='https://pfp.example/old.png', description='stored',
        ))
        neynar.casts[HASH_A]['author']['pfp_url'] = None
        source.records = [record(1, CASTER_WALLET)]

        await orchestrator.sync_all()

        entry = repository.rows[HASH_A]
        assert entry.owner_pfp_url == 'https://pfp.example/100.png'  # identity fallback
        assert entry.description == 'shipped the app'

    async def test_empty_display_value_keeps_stored(self, repository):
        repository.seed(ContentEntry(content_hash=HASH_A, owner_identity=CASTER_FID, description='kept'))
        await repository.upsert(ContentEntry(content_hash=HASH_A, owner_identity=CASTER_FID))
        assert repository.rows[HASH_A].description == 'kept'


@pytest.mark.asyncio
class TestSyncBudget:

    async def test_source_failure_reported(self, orchestrator, source, repository):
        source.error = ExternalServiceError('dune', 'query failed', status_code=500)
        result = await orchestrator.run_sync_with_budget()
        assert not result.success
        assert 'query failed' in result.error
        assert repository.upserts == 0

    async def test_malformed_author_fid_skips_only_that_cast(self, orchestrator, source, repository, neynar):
        bad_cast = make_cast(CASTER_FID)
        bad_cast['author']['fid'] = 'not-a-fid'
        neynar.casts[HASH_B] = bad_cast
        source.records = [record(1, CASTER_WALLET, HASH_A), record(2, CASTER_WALLET, HASH_B)]

        result = await orchestrator.run_sync_with_budget()

        assert result.success
        assert result.hashes_skipped == 1
        assert repository.rows[HASH_A].state == ContentState.ACTIVE
        assert HASH_B not in repository.rows

    async def test_budget_exceeded(self, orchestrator, source):
        async def slow(filters=None):
            await asyncio.sleep(5)
            return []

        source.fetch_lockups = slow
        orchestrator.budget_seconds = 0.05
        result = await orchestrator.run_sync_with_budget()
        assert not result.success
        assert 'budget' in result.error

    async def test_success_to_dict(self, orchestrator, source):
        source.records = [record(1, CASTER_WALLET)]
        summary = (await orchestrator.run_sync_with_budget()).to_dict()
        assert summary['success'] is True
        assert summary['entries_upserted'] == 1


@pytest.mark.asyncio
class TestOptimisticLockup:

    async def test_first_caster_stake_creates_active_entry(self, orchestrator, repository):
        assert await orchestrator.apply_optimistic_lockup(record(1, CASTER_WALLET))
        entry = repository.rows[HASH_A]
        assert entry.state == ContentState.ACTIVE
        assert entry.usd_value == Decimal("0.01")

    async def test_supporter_appended(self, orchestrator, repository):
        repository.seed(active_entry(HASH_A, lockup_id=50, unlock_time=NOW + 3600, rank=4))
        assert await orchestrator.apply_optimistic_lockup(record(2, SUPPORTER_WALLET))

        entry = repository.rows[HASH_A]
        assert entry.supporter_stakes[0].supporter_identity == SUPPORTER_FID
        assert entry.supporter_stakes[0].supporter_pfp_url == 'https://pfp.example/200.png'
        assert entry.total_staked == Decimal(3)
        assert entry.rank == 4

    async def test_duplicate_lockup_ignored(self, orchestrator, repository):
        assert await orchestrator.apply_optimistic_lockup(record(1, CASTER_WALLET))
        writes = repository.upserts
        assert not await orchestrator.apply_optimistic_lockup(record(1, CASTER_WALLET))
        assert repository.upserts == writes

    @pytest.mark.parametrize("kwargs", [
        {'unlocked': True},
        {'unlock_time': NOW},
        {'unlock_time': NOW - 10},
    ])
    async def test_unlocked_or_expired_ignored(self, orchestrator, repository, kwargs):
        assert not await orchestrator.apply_optimistic_lockup(record(1, CASTER_WALLET, **kwargs))
        assert repository.rows == {}

    async def test_invalid_cast_ignored(self, orchestrator, repository, neynar):
        neynar.casts[HASH_B] = make_cast(CASTER_FID, text="gm")
        assert not await orchestrator.apply_optimistic_lockup(record(1, CASTER_WALLET, HASH_B))
        assert not await orchestrator.apply_optimistic_lockup(record(2, CASTER_WALLET, HASH_C))
        assert repository.rows == {}

    async def test_unresolved_supporter_ignored(self, orchestrator, repository):
        assert not await orchestrator.apply_optimistic_lockup(record(1, UNKNOWN_WALLET))
        assert repository.rows == {}

    async def test_write_failure_returns_false(self, orchestrator, repository):
        repository.fail_hashes = {HASH_A}
        assert not await orchestrator.apply_optimistic_lockup(record(1, CASTER_WALLET))

    async def test_supporter_on_cast_without_caster_stake_is_valid_state(self, orchestrator, repository):
        assert await orchestrator.apply_optimistic_lockup(record(2, OTHER_WALLET))
        entry = repository.rows[HASH_A]
        assert entry.state == ContentState.VALID
        assert entry.rank is None


@pytest.mark.asyncio
class TestApplyUnlock:

    async def test_last_caster_stake_unlocked_expires_entry(self, orchestrator, repository):
        repository.seed(active_entry(HASH_A, lockup_id=50))
        assert await orchestrator.apply_unlock(50, HASH_A)

        entry = repository.rows[HASH_A]
        assert entry.caster_stakes[0].unlocked
        assert entry.state == ContentState.EXPIRED
        assert entry.rank is None
        assert entry.total_staked == Decimal(2)

    async def test_located_by_lockup_id(self, orchestrator, repository):
        entry = active_entry(HASH_B, lockup_id=50)
        entry.supporter_stakes.append(SupporterStake(
            lockup_id=77, amount=Decimal(1), unlock_time=NOW + 3600, supporter_identity=SUPPORTER_FID,
        ))
        repository.seed(entry)

        assert await orchestrator.apply_unlock(77)
        stored = repository.rows[HASH_B]
        assert stored.supporter_stakes[0].unlocked
        assert stored.state == ContentState.ACTIVE

    async def test_wrong_hash_falls_back_to_lockup_id(self, orchestrator, repository):
        repository.seed(active_entry(HASH_B, lockup_id=50))
        repository.seed(active_entry(HASH_C, lockup_id=60))
        assert await orchestrator.apply_unlock(50, HASH_C)
        assert repository.rows[HASH_B].caster_stakes[0].unlocked
        assert not repository.rows[HASH_C].caster_stakes[0].unlocked

    async def test_unknown_lockup(self, orchestrator):
        assert not await orchestrator.apply_unlock(12345, HASH_A)

    async def test_repeat_unlock_is_noop(self, orchestrator, repository):
        repository.seed(active_entry(HASH_A, lockup_id=50))
        assert await orchestrator.apply_unlock(50, HASH_A)
        writes = repository.upserts
        assert not await orchestrator.apply_unlock(50, HASH_A)
        assert repository.upserts == writes
