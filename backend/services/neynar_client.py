"""
NeynarClient - Farcaster identity and cast lookups.

Backs two collaborators of the reconciliation core:
- identity service: users by fid, users by wallet address
- content service: cast by hash

Usage:
    client = NeynarClient(api_key=settings.neynar_api_key)
    cast = await client.lookup_cast("0xabc...")
    users = await client.fetch_users_by_id([3, 191780])
    by_address = await client.fetch_users_by_address(["0x12..."])

Batching is the caller's job (see IdentityResolver); each method issues a
single request.
"""
import logging
from typing import Dict, List, Optional

import httpx

from services.external import ExternalServiceError, HttpServiceClient

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.neynar.com/v2/farcaster"


class NeynarClient(HttpServiceClient):
    """Neynar v2 REST client"""

    service_name = "neynar"

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(
            base_url=base_url,
            headers={'x-api-key': api_key, 'accept': 'application/json'},
            timeout=timeout,
            client=client,
        )
        self.api_key = api_key

    def _require_key(self):
        if not self.api_key:
            raise ExternalServiceError(self.service_name, "NEYNAR_API_KEY not configured")

    async def lookup_cast(self, cast_hash: str) -> Optional[dict]:
        """
        Look up a cast by hash.

        Returns:
            Neynar cast object (text, author, channel, parent_url, timestamp)
            or None if the cast does not exist
        """
        self._require_key()
        data = await self._get_json('/cast', params={'identifier': cast_hash, 'type': 'hash'})
        if not data:
            return None
        return data.get('cast')

    async def fetch_users_by_id(self, fids: List[int]) -> List[dict]:
        """Bulk user lookup by fid (Neynar allows up to 100 per call)"""
        self._require_key()
        if not fids:
            return []
        data = await self._get_json('/user/bulk', params={'fids': ','.join(str(f) for f in fids)})
        if not data:
            return []
        return data.get('users') or []

    async def fetch_users_by_address(self, addresses: List[str]) -> Dict[str, List[dict]]:
        """
        Bulk user lookup by custody/verified address (up to 350 per call).

        Returns:
            {lower-cased address: [user, ...]} for addresses with a match
        """
        self._require_key()
        if not addresses:
            return {}
        data = await self._get_json(
            '/user/bulk-by-address',
            params={'addresses': ','.join(addresses)},
        )
        if not data:
            return {}
        return {
            address.lower(): users
            for address, users in data.items()
            if isinstance(users, list)
        }
