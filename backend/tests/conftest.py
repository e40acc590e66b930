"""
Pytest configuration and in-memory fakes for leaderboard tests.
"""

import copy
from decimal import Decimal
from typing import Dict, List, Optional

import pytest

from models.domain.content_entry import ContentEntry, ContentState
from services.content_validator import ContentValidator
from services.external import ExternalServiceError
from services.identity_resolver import IdentityResolver
from services.reconciliation import ReconciliationOrchestrator
from services.stats_projector import StatsProjector


def pytest_configure(config):
    """Configure pytest with asyncio marker."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an async test."
    )


NOW = 1_700_000_000

HASH_A = '0x' + 'a' * 40
HASH_B = '0x' + 'b' * 40
HASH_C = '0x' + 'c' * 40

CASTER_FID = 100
CASTER_WALLET = '0x' + '1' * 40
CASTER_VERIFIED = '0x' + 'A1' * 20
SUPPORTER_FID = 200
SUPPORTER_WALLET = '0x' + '2' * 40
OTHER_FID = 300
OTHER_WALLET = '0x' + '3' * 40
UNKNOWN_WALLET = '0x' + '9' * 40

MARKER_TEXT = "started aiming higher and it worked out! shipped the app"

ONE_TOKEN = str(10 ** 18)
HALF_TOKEN = str(5 * 10 ** 17)


# =============================================================================
# BUILDERS
# =============================================================================

def make_user(fid: int, custody: str, verified: Optional[List[str]] = None, username: str = None) -> dict:
    return {
        'fid': fid,
        'username': username or f'user{fid}',
        'display_name': f'User {fid}',
        'pfp_url': f'https://pfp.example/{fid}.png',
        'custody_address': custody,
        'verified_addresses': {'eth_addresses': verified or []},
    }


def make_cast(fid: int, text: str = MARKER_TEXT, channel: Optional[str] = 'higher',
              parent_url: Optional[str] = None, username: str = None) -> dict:
    return {
        'text': text,
        'author': {
            'fid': fid,
            'username': username or f'user{fid}',
            'display_name': f'User {fid}',
            'pfp_url': f'https://pfp.example/{fid}.png',
        },
        'channel': {'id': channel} if channel else None,
        'parent_url': parent_url,
        'timestamp': '2024-05-01T12:00:00.000Z',
    }


def lockup_row(lockup_id: int, sender: str, title: str, amount: str = ONE_TOKEN,
               unlock_time: int = NOW + 3600, unlocked: bool = False,
               lock_time: Optional[int] = NOW - 86400, receiver: Optional[str] = None) -> dict:
    """Dune-shaped lockup row"""
    return {
        'lockUpId': lockup_id,
        'sender': sender,
        'receiver': receiver or sender,
        'amount': amount,
        'unlockTime': unlock_time,
        'lockTime': lock_time,
        'title': title,
        'unlocked': unlocked,
    }


# =============================================================================
# FAKES
# =============================================================================

class FakeRepository:
    """ContentEntryRepository backed by a dict, with the SQL merge rule"""

    def __init__(self):
        self.rows: Dict[str, ContentEntry] = {}
        self.fail_hashes = set()
        self.upserts = 0

    def seed(self, entry: ContentEntry):
        self.rows[entry.content_hash] = copy.deepcopy(entry)

    async def get(self, content_hash: str) -> Optional[ContentEntry]:
        row = self.rows.get(content_hash)
        return copy.deepcopy(row) if row else None

    async def upsert(self, entry: ContentEntry) -> None:
        if entry.content_hash in self.fail_hashes:
            raise OSError(f"connection lost writing {entry.content_hash}")
        stored = copy.deepcopy(entry).merge_display_fields(self.rows.get(entry.content_hash))
        self.rows[entry.content_hash] = stored
        self.upserts += 1

    async def find_by_lockup_id(self, lockup_id: int) -> Optional[ContentEntry]:
        for row in self.rows.values():
            if lockup_id in row.lockup_ids:
                return copy.deepcopy(row)
        return None

    async def list_by_state(self, state: ContentState) -> List[ContentEntry]:
        return [copy.deepcopy(r) for h, r in sorted(self.rows.items()) if r.state == state]

    async def list_leaderboard(self, limit: int = 100) -> List[ContentEntry]:
        active = [r for r in self.rows.values() if r.state == ContentState.ACTIVE]
        active.sort(key=lambda r: (r.rank is None, r.rank or 0))
        return [copy.deepcopy(r) for r in active[:limit]]

    async def list_by_owner(self, owner_identity: int) -> List[ContentEntry]:
        return [copy.deepcopy(r) for h, r in sorted(self.rows.items()) if r.owner_identity == owner_identity]

    async def list_supported_by(self, identity_id: int) -> List[ContentEntry]:
        return [
            copy.deepcopy(r) for h, r in sorted(self.rows.items())
            if any(s.supporter_identity == identity_id for s in r.supporter_stakes)
        ]


class FakeNeynar:
    """NeynarClient stand-in with call counters and failure switches"""

    def __init__(self):
        self.casts: Dict[str, dict] = {}
        self.users: Dict[int, dict] = {}
        self.fail_casts = False
        self.fail_users = False
        self.fail_addresses = False
        self.cast_lookups: List[str] = []
        self.address_batches: List[List[str]] = []
        self.user_batches: List[List[int]] = []

    def add_user(self, user: dict):
        self.users[user['fid']] = user

    async def lookup_cast(self, cast_hash: str) -> Optional[dict]:
        self.cast_lookups.append(cast_hash)
        if self.fail_casts:
            raise ExternalServiceError('neynar', 'unavailable', status_code=503)
        return self.casts.get(cast_hash)

    async def fetch_users_by_id(self, fids: List[int]) -> List[dict]:
        self.user_batches.append(list(fids))
        if self.fail_users:
            raise ExternalServiceError('neynar', 'unavailable', status_code=503)
        return [self.users[f] for f in fids if f in self.users]

    async def fetch_users_by_address(self, addresses: List[str]) -> Dict[str, List[dict]]:
        self.address_batches.append(list(addresses))
        if self.fail_addresses:
            raise ExternalServiceError('neynar', 'unavailable', status_code=503)
        result = {}
        for address in addresses:
            for user in self.users.values():
                wallets = {user['custody_address'].lower()} | {
                    a.lower() for a in user['verified_addresses']['eth_addresses']
                }
                if address.lower() in wallets:
                    result[address.lower()] = [user]
                    break
        return result


class FakeLockupSource:
    def __init__(self, records=None):
        self.records = list(records or [])
        self.error: Optional[Exception] = None

    async def fetch_lockups(self, filters=None):
        if self.error:
            raise self.error
        return list(self.records)


class FakePriceClient:
    def __init__(self, price: Optional[Decimal] = Decimal('0.01')):
        self.price = price

    async def get_token_price(self) -> Optional[Decimal]:
        return self.price


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def repository():
    return FakeRepository()


@pytest.fixture
def neynar():
    """Neynar with a caster, a supporter and one more user, all on record"""
    fake = FakeNeynar()
    fake.add_user(make_user(CASTER_FID, CASTER_WALLET, [CASTER_VERIFIED]))
    fake.add_user(make_user(SUPPORTER_FID, SUPPORTER_WALLET))
    fake.add_user(make_user(OTHER_FID, OTHER_WALLET))
    fake.casts[HASH_A] = make_cast(CASTER_FID)
    return fake


@pytest.fixture
def source():
    return FakeLockupSource()


@pytest.fixture
def price_client():
    return FakePriceClient()


@pytest.fixture
def validator(repository, neynar):
    return ContentValidator(repository, neynar, timeout=1.0)


@pytest.fixture
def resolver_factory(neynar):
    return lambda: IdentityResolver(neynar, address_batch_size=2, user_batch_size=2, timeout=1.0)


@pytest.fixture
def orchestrator(repository, source, validator, resolver_factory, price_client):
    return ReconciliationOrchestrator(
        repository,
        source,
        validator,
        resolver_factory,
        price_client=price_client,
        budget_seconds=5.0,
        clock=lambda: NOW,
    )


@pytest.fixture
def projector(repository):
    return StatsProjector(repository, clock=lambda: NOW)
