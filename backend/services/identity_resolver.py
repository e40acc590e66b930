"""
IdentityResolver - wallet address / fid -> Farcaster identity

Resolves, per reconciliation pass:
- cast owners and the wallets that count as their own (caster stakes)
- funding addresses of supporter lockups to supporter fids

Lookups are batched (Neynar limits: 350 addresses, 100 fids per call) and
batches run concurrently under a semaphore. A failed batch leaves its keys
unresolved; other batches proceed. A resolver instance is meant to live for
one pass only: nothing is cached across passes.
"""
import asyncio
import logging
from typing import Dict, Iterable, List, Optional, TYPE_CHECKING

from models.domain.identity import IdentityRecord, OwnerWallets
from services.external import ExternalServiceError
from services.neynar_client import NeynarClient

if TYPE_CHECKING:
    from services.content_validator import ContentValidation

logger = logging.getLogger(__name__)


def _chunks(items: List, size: int) -> List[List]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class IdentityResolver:
    """Batch identity lookups for one pass"""

    def __init__(
        self,
        neynar: NeynarClient,
        address_batch_size: int = 350,
        user_batch_size: int = 100,
        concurrency: int = 8,
        timeout: float = 10.0,
    ):
        self.neynar = neynar
        self.address_batch_size = address_batch_size
        self.user_batch_size = user_batch_size
        self.timeout = timeout
        self._semaphore = asyncio.Semaphore(concurrency)

        # Per-pass lookups, filled as batches complete
        self.identities: Dict[int, IdentityRecord] = {}
        self.address_to_identity: Dict[str, int] = {}

    def get_identity(self, identity_id: Optional[int]) -> Optional[IdentityRecord]:
        if identity_id is None:
            return None
        return self.identities.get(identity_id)

    # =========================================================================
    # ADDRESS -> IDENTITY
    # =========================================================================

    async def resolve_identities_by_address(self, addresses: Iterable[str]) -> Dict[str, int]:
        """
        Map funding addresses to fids.

        Args:
            addresses: Wallet addresses (any case)

        Returns:
            {lower-cased address: fid}; unresolvable addresses are absent
        """
        wanted = sorted({a.lower() for a in addresses if a} - set(self.address_to_identity))
        if wanted:
            batches = _chunks(wanted, self.address_batch_size)
            await asyncio.gather(*(self._resolve_address_batch(b) for b in batches))

        requested = {a.lower() for a in addresses if a}
        return {a: fid for a, fid in self.address_to_identity.items() if a in requested}

    async def _resolve_address_batch(self, batch: List[str]):
        async with self._semaphore:
            try:
                result = await asyncio.wait_for(
                    self.neynar.fetch_users_by_address(batch),
                    timeout=self.timeout,
                )
            except (ExternalServiceError, asyncio.TimeoutError) as e:
                logger.warning(f"Address batch of {len(batch)} unresolved this pass: {e!r}")
                return

        for address, users in result.items():
            if not users:
                continue
            try:
                record = IdentityRecord.from_neynar(users[0])
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Malformed user for {address}: {e}")
                continue
            self.identities.setdefault(record.identity_id, record)
            self.address_to_identity[address.lower()] = record.identity_id

    # =========================================================================
    # FID -> IDENTITY
    # =========================================================================

    async def resolve_identities_by_id(self, identity_ids: Iterable[int]) -> Dict[int, IdentityRecord]:
        """Bulk fetch identities by fid; missing fids are absent from the result"""
        wanted = sorted({i for i in identity_ids if i is not None} - set(self.identities))
        if wanted:
            batches = _chunks(wanted, self.user_batch_size)
            await asyncio.gather(*(self._resolve_id_batch(b) for b in batches))

        return {
            i: self.identities[i]
            for i in {i for i in identity_ids if i is not None}
            if i in self.identities
        }

    async def _resolve_id_batch(self, batch: List[int]):
        async with self._semaphore:
            try:
                users = await asyncio.wait_for(
                    self.neynar.fetch_users_by_id(batch),
                    timeout=self.timeout,
                )
            except (ExternalServiceError, asyncio.TimeoutError) as e:
                logger.warning(f"User batch of {len(batch)} unresolved this pass: {e!r}")
                return

        for user in users:
            try:
                record = IdentityRecord.from_neynar(user)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Malformed user in batch: {e}")
                continue
            self.identities[record.identity_id] = record
            for wallet in record.wallets:
                self.address_to_identity.setdefault(wallet, record.identity_id)

    # =========================================================================
    # CONTENT OWNERS
    # =========================================================================

    async def resolve_owners_and_wallets(
        self,
        content_hashes: Iterable[str],
        validations: Optional[Dict[str, Optional['ContentValidation']]] = None,
    ) -> Dict[str, Optional[OwnerWallets]]:
        """
        Resolve the owner of each cast and the owner's wallet set.

        Owners come from the content validations; wallets from the identity
        service. A hash whose owner or wallets cannot be resolved maps to
        None and is skipped for the pass.

        Args:
            content_hashes: Normalized cast hashes
            validations: {hash: ContentValidation | None} from the validator

        Returns:
            {hash: OwnerWallets | None}
        """
        validations = validations or {}
        hashes = list(content_hashes)

        owners = {
            h: validations[h].owner_identity
            for h in hashes
            if validations.get(h) is not None and validations[h].owner_identity is not None
        }
        identities = await self.resolve_identities_by_id(owners.values())

        result: Dict[str, Optional[OwnerWallets]] = {}
        for h in hashes:
            owner = owners.get(h)
            identity = identities.get(owner) if owner is not None else None
            if identity is None:
                if owner is not None:
                    logger.warning(f"Owner {owner} of {h} unresolved this pass")
                result[h] = None
                continue
            result[h] = OwnerWallets(
                owner_identity=owner,
                wallets=identity.wallets,
                identity=identity,
            )
        return result
