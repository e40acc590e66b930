"""
StatsProjector - read-only user and network statistics

Projects persisted ContentEntry rows into summary numbers. Uses the same
validity predicates as the aggregation engine; no classification happens
here.
"""
import logging
from decimal import Decimal
from typing import Dict, List

from models.domain.content_entry import ContentState
from models.domain.stats import NetworkStats, SupportedContent, UserStats
from repositories.content_entry_repository import ContentEntryRepository
from services.aggregation import is_active_caster_stake, valid_supporter_stakes
from utils.amounts import sum_amounts
from utils.datetime_utils import unix_now

logger = logging.getLogger(__name__)

TOP_SUPPORTED_LIMIT = 10


class StatsProjector:
    """Read-side projections over the leaderboard repository"""

    def __init__(self, repository: ContentEntryRepository, clock=unix_now):
        self.repository = repository
        self.clock = clock

    async def get_user_stats(self, identity_id: int) -> UserStats:
        """
        Per-user totals.

        Stakes the user made:
            caster    - active caster stakes on the user's own casts
            supporter - valid supporter stakes on other people's casts
        Stakes on the user's casts:
            caster    - active caster stakes (same predicate as above)
            supporter - valid supporter stakes received from others

        Args:
            identity_id: Farcaster fid

        Returns:
            UserStats (all zero for an unknown user)
        """
        now = self.clock()
        stats = UserStats(identity_id=identity_id)

        own_entries = await self.repository.list_by_owner(identity_id)
        active_caster = sum_amounts(
            s.amount
            for entry in own_entries
            for s in entry.caster_stakes
            if is_active_caster_stake(s, now)
        )
        stats.total_caster_staked = active_caster
        stats.total_caster_stakes_on_own_content = active_caster

        received: List[Decimal] = []
        for entry in own_entries:
            for stake in valid_supporter_stakes(entry):
                if stake.supporter_identity == identity_id:
                    continue
                received.append(stake.amount)
                if stake.supporter_identity is not None:
                    stats.supporters.add(stake.supporter_identity)
        stats.total_supporter_stakes_received = sum_amounts(received)

        per_content: Dict[str, SupportedContent] = {}
        for entry in await self.repository.list_supported_by(identity_id):
            if entry.owner_identity == identity_id:
                continue
            mine = [s.amount for s in valid_supporter_stakes(entry) if s.supporter_identity == identity_id]
            if not mine:
                continue
            per_content[entry.content_hash] = SupportedContent(
                content_hash=entry.content_hash,
                owner_identity=entry.owner_identity,
                total_amount=sum_amounts(mine),
                description=entry.description,
                rank=entry.rank,
                state=entry.state.value,
            )
            stats.supported_owners.add(entry.owner_identity)

        stats.total_supporter_staked = sum_amounts(c.total_amount for c in per_content.values())
        stats.top_supported = sorted(
            per_content.values(), key=lambda c: c.total_amount, reverse=True
        )[:TOP_SUPPORTED_LIMIT]

        logger.debug(
            f"User {identity_id}: caster={stats.total_caster_staked} "
            f"supporter={stats.total_supporter_staked} received={stats.total_supporter_stakes_received}"
        )
        return stats

    async def get_network_stats(self) -> NetworkStats:
        """Totals over ACTIVE entries"""
        now = self.clock()
        entries = await self.repository.list_by_state(ContentState.ACTIVE)

        caster = []
        supporter = []
        for entry in entries:
            caster.extend(s.amount for s in entry.caster_stakes if is_active_caster_stake(s, now))
            supporter.extend(s.amount for s in valid_supporter_stakes(entry))

        return NetworkStats(
            total_caster_staked=sum_amounts(caster),
            total_supporter_staked=sum_amounts(supporter),
            active_entries=len(entries),
        )
