"""
Dune results API client and the batch lockup source built on it.

The lockup query (DUNE_QUERY_ID) returns one row per lockup with columns:
sender, lockTime, lockUpId, title, amount, receiver, unlockTime, unlocked.

Docs: https://docs.dune.com/api-reference/executions/endpoint/get-query-result
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from models.domain.lockup import LockupRecord, MalformedLockupError, parse_lockup_record
from services.external import ExternalServiceError, HttpServiceClient
from utils.amounts import AmountUnit

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.dune.com/api/v1"

LOCKUP_COLUMNS = [
    'sender',
    'lockTime',
    'lockUpId',
    'title',
    'amount',
    'receiver',
    'unlockTime',
    'unlocked',
]


class DuneClient(HttpServiceClient):
    """Minimal Dune REST client for latest query results with pagination"""

    service_name = "dune"

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(
            base_url=base_url,
            headers={'X-Dune-Api-Key': api_key},
            timeout=timeout,
            client=client,
        )
        self.api_key = api_key

    async def fetch_page(
        self,
        query_id: int,
        limit: int = 1000,
        offset: int = 0,
        columns: Optional[List[str]] = None,
        filters: Optional[str] = None,
        sort_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Fetch one page of the latest results.

        Returns:
            {'rows': [...], 'next_offset': int | None}
        """
        if not self.api_key:
            raise ExternalServiceError(self.service_name, "DUNE_API_KEY not configured")

        params: Dict[str, Any] = {'limit': limit, 'offset': offset}
        if columns:
            params['columns'] = ','.join(columns)
        if filters:
            params['filters'] = filters
        if sort_by:
            params['sort_by'] = sort_by

        data = await self._get_json(f'/query/{query_id}/results', params=params)
        if data is None:
            raise ExternalServiceError(self.service_name, f"query {query_id} not found", status_code=404)

        rows = (data.get('result') or {}).get('rows') or []
        return {'rows': rows, 'next_offset': data.get('next_offset')}

    async def fetch_all_latest_results(
        self,
        query_id: int,
        limit: int = 1000,
        max_pages: int = 1000,
        columns: Optional[List[str]] = None,
        filters: Optional[str] = None,
        sort_by: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Page through every result row (hard capped at max_pages)"""
        all_rows: List[Dict[str, Any]] = []
        offset = 0
        pages = 0

        while pages < max_pages:
            page = await self.fetch_page(
                query_id, limit=limit, offset=offset,
                columns=columns, filters=filters, sort_by=sort_by,
            )
            rows = page['rows']
            if not rows:
                break
            all_rows.extend(rows)
            pages += 1

            next_offset = page.get('next_offset')
            if next_offset is None:
                if len(rows) < limit:
                    break
                offset += limit
            else:
                offset = next_offset

        logger.info(f"Dune query {query_id}: {len(all_rows)} rows in {pages} page(s)")
        return all_rows


class DuneLockupSource:
    """
    Batch lockup source (authoritative input of the periodic re-sync).

    Rows are tagged with the source's amount unit at parse time.
    """

    def __init__(
        self,
        client: DuneClient,
        query_id: int,
        amount_unit: AmountUnit = AmountUnit.BASE,
        page_size: int = 1000,
        max_pages: int = 1000,
    ):
        self.client = client
        self.query_id = query_id
        self.amount_unit = AmountUnit(amount_unit)
        self.page_size = page_size
        self.max_pages = max_pages

    async def fetch_lockups(self, filters: Optional[str] = None) -> List[LockupRecord]:
        """
        Fetch lockup records, newest first.

        Malformed rows are dropped and logged.

        Raises:
            ExternalServiceError: if the source is unreachable
        """
        rows = await self.client.fetch_all_latest_results(
            self.query_id,
            limit=self.page_size,
            max_pages=self.max_pages,
            columns=LOCKUP_COLUMNS,
            filters=filters,
            sort_by='lockUpId desc',
        )

        records: List[LockupRecord] = []
        malformed = 0
        for row in rows:
            try:
                records.append(parse_lockup_record(row, self.amount_unit))
            except MalformedLockupError as e:
                malformed += 1
                logger.warning(f"Dropping malformed lockup row: {e}")

        if malformed:
            logger.info(f"Dune lockups: {len(records)} parsed, {malformed} malformed")
        return records
