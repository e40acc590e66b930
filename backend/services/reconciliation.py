"""
ReconciliationOrchestrator - the two write paths into the leaderboard

1. sync_all(): authoritative full re-sync from the batch lockup source.
   Every touched entry is rebuilt from scratch and upserted; ranks are
   recomputed globally. Running it twice on unchanged input writes
   identical rows.

2. apply_optimistic_lockup() / apply_unlock(): advisory single-event
   updates driven by push events. Best-effort: any failure is logged and
   reported as False, and the next re-sync converges the row.

Both paths write through ContentEntryRepository.upsert (atomic per row).
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import asyncpg

from models.domain.content_entry import ContentEntry, ContentState, CorruptEntryError
from models.domain.lockup import LockupRecord
from repositories.content_entry_repository import ContentEntryRepository
from services.aggregation import assign_ranks, build_entry, compute_usd_value, refresh_entry
from services.content_validator import ContentValidator
from services.dune_client import DuneLockupSource
from services.external import ExternalServiceError
from services.identity_resolver import IdentityResolver
from services.lockup_classifier import ClassifiedLockup, StakeKind, classify, content_hash_of
from services.price_client import PriceClient
from utils.datetime_utils import unix_now

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Outcome of one re-sync pass"""
    entries_upserted: int = 0
    entries_failed: int = 0
    hashes_seen: int = 0
    hashes_skipped: int = 0
    records_dropped: int = 0
    duration_seconds: float = 0.0
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        return {
            'success': self.success,
            'entries_upserted': self.entries_upserted,
            'entries_failed': self.entries_failed,
            'hashes_seen': self.hashes_seen,
            'hashes_skipped': self.hashes_skipped,
            'records_dropped': self.records_dropped,
            'duration_seconds': round(self.duration_seconds, 3),
            'error': self.error,
        }


class ReconciliationOrchestrator:
    """
    Drives both ingestion paths against the aggregation engine.

    Usage:
        orchestrator = ReconciliationOrchestrator(repository, source, validator,
                                                  resolver_factory, price_client)
        result = await orchestrator.run_sync_with_budget()
    """

    def __init__(
        self,
        repository: ContentEntryRepository,
        lockup_source: DuneLockupSource,
        validator: ContentValidator,
        resolver_factory: Callable[[], IdentityResolver],
        price_client: Optional[PriceClient] = None,
        budget_seconds: float = 300.0,
        clock: Callable[[], int] = unix_now,
    ):
        self.repository = repository
        self.lockup_source = lockup_source
        self.validator = validator
        self.resolver_factory = resolver_factory
        self.price_client = price_client
        self.budget_seconds = budget_seconds
        self.clock = clock

    async def _get_price(self):
        if self.price_client is None:
            return None
        return await self.price_client.get_token_price()

    # =========================================================================
    # FULL RE-SYNC
    # =========================================================================

    async def run_sync_with_budget(self) -> SyncResult:
        """
        Run sync_all() within the execution budget.

        A pass that exceeds the budget or cannot reach the batch source is
        reported as failed; the next scheduled run retries.
        """
        started = time.monotonic()
        try:
            result = await asyncio.wait_for(self.sync_all(), timeout=self.budget_seconds)
        except asyncio.TimeoutError:
            logger.error(f"Re-sync exceeded budget of {self.budget_seconds}s")
            result = SyncResult(error=f"budget of {self.budget_seconds}s exceeded")
        except ExternalServiceError as e:
            logger.error(f"Re-sync aborted, batch source unavailable: {e}")
            result = SyncResult(error=str(e))

        result.duration_seconds = time.monotonic() - started
        return result

    async def sync_all(self) -> SyncResult:
        """
        Authoritative full re-sync.

        Returns:
            SyncResult with per-pass counters

        Raises:
            ExternalServiceError: if the batch source is unreachable
        """
        result = SyncResult()
        now = self.clock()

        records = await self.lockup_source.fetch_lockups()
        logger.info(f"Re-sync: {len(records)} lockup records")

        # Group by cast hash, first-seen order
        groups: Dict[str, List[LockupRecord]] = {}
        for record in records:
            content_hash = content_hash_of(record)
            if content_hash is None:
                result.records_dropped += 1
                continue
            groups.setdefault(content_hash, []).append(record)
        result.hashes_seen = len(groups)

        validations = await self.validator.validate_many(groups.keys())

        resolver = self.resolver_factory()
        owners = await resolver.resolve_owners_and_wallets(groups.keys(), validations)

        funders = {
            record.funding_address
            for content_hash, group in groups.items()
            if owners.get(content_hash) is not None
            for record in group
            if record.funding_address.lower() not in owners[content_hash].wallets
        }
        address_to_identity = await resolver.resolve_identities_by_address(funders)

        entries: List[ContentEntry] = []
        for content_hash, group in groups.items():
            validation = validations.get(content_hash)
            owner = owners.get(content_hash)
            if validation is None or owner is None:
                result.hashes_skipped += 1
                continue

            classified: List[ClassifiedLockup] = []
            for record in group:
                item = classify(record, owner.wallets, address_to_identity)
                if item is None:
                    result.records_dropped += 1
                    continue
                classified.append(item)

            supporter_pfps = {
                item.supporter_identity: resolver.identities[item.supporter_identity].pfp_url
                for item in classified
                if item.supporter_identity in resolver.identities
            }
            entries.append(build_entry(content_hash, validation, owner, classified, now, supporter_pfps))

        entries.extend(await self._carry_over_active({e.content_hash for e in entries}, now))

        assign_ranks(entries)

        price = await self._get_price()
        for entry in entries:
            entry.usd_value = compute_usd_value(entry.total_staked, price)

        for entry in entries:
            try:
                await self.repository.upsert(entry)
                result.entries_upserted += 1
            except Exception as e:
                result.entries_failed += 1
                logger.error(f"Upsert failed for {entry.content_hash}: {e}", exc_info=True)

        logger.info(
            f"Re-sync done: {result.entries_upserted} upserted, {result.entries_failed} failed, "
            f"{result.hashes_skipped} skipped, {result.records_dropped} records dropped"
        )
        return result

    async def _carry_over_active(self, rebuilt_hashes: set, now: int) -> List[ContentEntry]:
        """
        Stored ACTIVE entries not rebuilt in this pass: absent from the batch
        (e.g. only known via a push event so far) or skipped because their
        cast or owner could not be resolved. Their state is re-derived so
        they drop out of the ranking once their caster stakes lapse, and
        they are ranked together with the rebuilt entries.
        """
        try:
            stored = await self.repository.list_by_state(ContentState.ACTIVE)
        except (asyncpg.PostgresError, OSError) as e:
            logger.warning(f"Could not load stored ACTIVE entries, ranking batch only: {e!r}")
            return []
        return [refresh_entry(e, now) for e in stored if e.content_hash not in rebuilt_hashes]

    # =========================================================================
    # OPTIMISTIC PATH
    # =========================================================================

    async def apply_optimistic_lockup(self, record: LockupRecord) -> bool:
        """
        Append one freshly observed lockup to its entry.

        Returns:
            True if the entry was written; False if the update was skipped
            or failed (never raises)
        """
        try:
            return await self._apply_optimistic_lockup(record)
        except Exception as e:
            logger.error(f"Optimistic update for lockup {record.lockup_id} failed: {e}", exc_info=True)
            return False

    async def _apply_optimistic_lockup(self, record: LockupRecord) -> bool:
        now = self.clock()

        content_hash = content_hash_of(record)
        if content_hash is None:
            logger.info(f"Lockup {record.lockup_id}: no cast hash in {record.content_reference!r}")
            return False

        if record.unlocked or record.unlock_time <= now:
            logger.info(f"Lockup {record.lockup_id}: already unlocked or expired, skipping")
            return False

        validation = await self.validator.validate(content_hash)
        if validation is None or not validation.valid:
            logger.info(f"Lockup {record.lockup_id}: cast {content_hash} not eligible")
            return False

        resolver = self.resolver_factory()
        owner = (await resolver.resolve_owners_and_wallets([content_hash], {content_hash: validation}))[content_hash]
        if owner is None:
            logger.info(f"Lockup {record.lockup_id}: owner of {content_hash} unresolved")
            return False

        address_to_identity = {}
        if record.funding_address.lower() not in owner.wallets:
            address_to_identity = await resolver.resolve_identities_by_address([record.funding_address])

        item = classify(record, owner.wallets, address_to_identity)
        if item is None:
            return False
        if item.kind == StakeKind.SUPPORTER and item.supporter_identity is None:
            logger.info(f"Lockup {record.lockup_id}: funder {record.funding_address} unresolved")
            return False

        try:
            entry = await self.repository.get(content_hash)
        except CorruptEntryError as e:
            logger.error(f"Stored entry {content_hash} is corrupt, leaving to re-sync: {e}")
            return False

        if entry is None:
            entry = build_entry(content_hash, validation, owner, [], now)
        elif record.lockup_id in entry.lockup_ids:
            logger.debug(f"Lockup {record.lockup_id} already on {content_hash}")
            return False

        if item.kind == StakeKind.CASTER:
            entry.caster_stakes.append(item.to_caster_stake())
        else:
            identity = resolver.get_identity(item.supporter_identity)
            entry.supporter_stakes.append(item.to_supporter_stake(pfp_url=identity.pfp_url if identity else ""))

        refresh_entry(entry, now, content_valid=True)
        entry.usd_value = compute_usd_value(entry.total_staked, await self._get_price())

        await self.repository.upsert(entry)
        logger.info(
            f"Applied {item.kind.value} lockup {record.lockup_id} to {content_hash} "
            f"(state={entry.state.value}, total={entry.total_staked})"
        )
        return True

    # =========================================================================
    # UNLOCK CONFIRMATION
    # =========================================================================

    async def apply_unlock(self, lockup_id: int, content_hash: Optional[str] = None) -> bool:
        """
        Mark a lockup as unlocked and re-derive its entry's state.

        Args:
            lockup_id: Unlocked lockup
            content_hash: Cast hash if known; otherwise the entry is located
                by lockup id

        Returns:
            True if an entry was updated (never raises)
        """
        try:
            return await self._apply_unlock(lockup_id, content_hash)
        except Exception as e:
            logger.error(f"Unlock of lockup {lockup_id} failed: {e}", exc_info=True)
            return False

    async def _apply_unlock(self, lockup_id: int, content_hash: Optional[str]) -> bool:
        entry = None
        if content_hash:
            entry = await self.repository.get(content_hash)
            if entry is not None and lockup_id not in entry.lockup_ids:
                entry = None
        if entry is None:
            entry = await self.repository.find_by_lockup_id(lockup_id)
        if entry is None:
            logger.info(f"Unlock: no entry holds lockup {lockup_id}")
            return False

        changed = False
        for stake in entry.caster_stakes + entry.supporter_stakes:
            if stake.lockup_id == lockup_id and not stake.unlocked:
                stake.unlocked = True
                changed = True

        if not changed:
            logger.debug(f"Unlock: lockup {lockup_id} already unlocked on {entry.content_hash}")
            return False

        refresh_entry(entry, self.clock())
        await self.repository.upsert(entry)
        logger.info(f"Unlocked {lockup_id} on {entry.content_hash} (state={entry.state.value})")
        return True
