"""
Token price snapshot (CoinGecko simple/token_price on Base)
"""
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

import httpx

from services.cache import SimpleCache
from services.external import ExternalServiceError, HttpServiceClient

logger = logging.getLogger(__name__)

DEFAULT_URL = "https://api.coingecko.com/api/v3/simple/token_price/base"


class PriceClient(HttpServiceClient):
    """USD price for the staked token; None when unavailable"""

    service_name = "coingecko"

    def __init__(
        self,
        token_address: str,
        url: str = DEFAULT_URL,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        cache: Optional[SimpleCache] = None,
    ):
        super().__init__(base_url=url, timeout=timeout, client=client)
        self.token_address = token_address.lower()
        self.cache = cache

    @property
    def cache_key(self) -> str:
        return f"token_price:{self.token_address}"

    async def get_token_price(self) -> Optional[Decimal]:
        if self.cache is not None:
            cached = self.cache.get(self.cache_key)
            if cached is not None:
                return cached

        price = await self._fetch_price()
        if price is not None and self.cache is not None:
            self.cache.set(self.cache_key, price)
        return price

    async def _fetch_price(self) -> Optional[Decimal]:
        try:
            data = await self._get_json('', params={
                'contract_addresses': self.token_address,
                'vs_currencies': 'usd',
            })
        except ExternalServiceError as e:
            logger.warning(f"Token price unavailable: {e}")
            return None

        usd = ((data or {}).get(self.token_address) or {}).get('usd')
        if usd is None:
            return None
        try:
            price = Decimal(str(usd))
        except InvalidOperation:
            logger.warning(f"Unparseable token price: {usd!r}")
            return None
        return price if price > 0 else None
