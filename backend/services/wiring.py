"""
Service wiring - builds the reconciliation stack from Settings

Shared by the API process, the sync worker and the lockup event worker so
that all three talk to upstreams with the same configuration.
"""
import logging
from dataclasses import dataclass
from functools import partial

import asyncpg

from config.settings import Settings
from repositories.content_entry_repository import ContentEntryRepository
from services.cache import price_cache
from services.content_validator import ContentValidator
from services.dune_client import DuneClient, DuneLockupSource
from services.identity_resolver import IdentityResolver
from services.neynar_client import NeynarClient
from services.price_client import PriceClient
from services.reconciliation import ReconciliationOrchestrator
from services.stats_projector import StatsProjector
from utils.amounts import AmountUnit

logger = logging.getLogger(__name__)


@dataclass
class ServiceBundle:
    repository: ContentEntryRepository
    neynar: NeynarClient
    dune: DuneClient
    price_client: PriceClient
    validator: ContentValidator
    orchestrator: ReconciliationOrchestrator
    projector: StatsProjector

    async def close(self):
        """Close outbound HTTP clients (the db pool is owned by the caller)"""
        await self.neynar.close()
        await self.dune.close()
        await self.price_client.close()


def build_services(settings: Settings, db_pool: asyncpg.Pool) -> ServiceBundle:
    timeout = settings.external_timeout_seconds

    repository = ContentEntryRepository(db_pool)
    neynar = NeynarClient(
        api_key=settings.neynar_api_key,
        base_url=settings.neynar_base_url,
        timeout=timeout,
    )
    dune = DuneClient(
        api_key=settings.dune_api_key,
        base_url=settings.dune_base_url,
        timeout=max(timeout, 30.0),
    )
    price_client = PriceClient(
        token_address=settings.token_address,
        url=settings.coingecko_url,
        timeout=timeout,
        cache=price_cache,
    )

    source = DuneLockupSource(
        dune,
        query_id=settings.dune_query_id,
        amount_unit=AmountUnit(settings.dune_amount_unit),
        page_size=settings.dune_page_size,
        max_pages=settings.dune_max_pages,
    )
    validator = ContentValidator(
        repository,
        neynar,
        marker_pattern=settings.marker_pattern,
        required_channel=settings.required_channel,
        timeout=timeout,
        concurrency=settings.resolver_concurrency,
    )
    resolver_factory = partial(
        IdentityResolver,
        neynar,
        address_batch_size=settings.neynar_address_batch_size,
        user_batch_size=settings.neynar_user_batch_size,
        concurrency=settings.resolver_concurrency,
        timeout=timeout,
    )
    orchestrator = ReconciliationOrchestrator(
        repository,
        source,
        validator,
        resolver_factory,
        price_client=price_client,
        budget_seconds=settings.sync_budget_seconds,
    )

    logger.debug(f"Services built (environment={settings.environment})")
    return ServiceBundle(
        repository=repository,
        neynar=neynar,
        dune=dune,
        price_client=price_client,
        validator=validator,
        orchestrator=orchestrator,
        projector=StatsProjector(repository),
    )
