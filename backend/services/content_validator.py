"""
ContentValidator - is a cast eligible for the leaderboard?

A cast qualifies when its text contains the marker phrase and it was posted
in the required channel. The local repository is consulted first: entries
that already carry stakes (ACTIVE / EXPIRED) are settled and never re-checked;
anything else is re-checked against Neynar, falling back to the stored row
when Neynar is unavailable.
"""
import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, Optional

import asyncpg

from models.domain.content_entry import ContentEntry, ContentState, CorruptEntryError
from repositories.content_entry_repository import ContentEntryRepository
from services.external import ExternalServiceError
from services.neynar_client import NeynarClient
from utils.datetime_utils import parse_timestamp

logger = logging.getLogger(__name__)

DEFAULT_MARKER_PATTERN = r'started\s+aiming\s+higher\s+and\s+it\s+worked\s+out!\s*(.+)'
DESCRIPTION_MAX_LENGTH = 120

SETTLED_STATES = (ContentState.ACTIVE, ContentState.EXPIRED)


@dataclass
class ContentValidation:
    """Outcome of validating one cast"""
    content_hash: str
    valid: bool
    owner_identity: Optional[int] = None
    owner_username: str = ""
    owner_display_name: str = ""
    owner_pfp_url: str = ""
    content_text: str = ""
    description: str = ""
    content_timestamp: Optional[datetime] = None
    reason: str = ""
    from_local: bool = False

    @classmethod
    def from_entry(cls, entry: ContentEntry) -> 'ContentValidation':
        return cls(
            content_hash=entry.content_hash,
            valid=entry.state != ContentState.INVALID,
            owner_identity=entry.owner_identity,
            owner_username=entry.owner_username,
            owner_display_name=entry.owner_display_name,
            owner_pfp_url=entry.owner_pfp_url,
            content_text=entry.content_text,
            description=entry.description,
            content_timestamp=entry.content_timestamp,
            from_local=True,
        )


def coerce_fid(value) -> Optional[int]:
    """Author fid as an int, None when absent or not an integer"""
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def extract_description(match: re.Match) -> str:
    description = match.group(1).strip() if match.groups() else ""
    if len(description) > DESCRIPTION_MAX_LENGTH:
        return description[:DESCRIPTION_MAX_LENGTH] + '...'
    return description


class ContentValidator:
    """Local-first cast validation with Neynar fallback"""

    def __init__(
        self,
        repository: ContentEntryRepository,
        neynar: NeynarClient,
        marker_pattern: str = DEFAULT_MARKER_PATTERN,
        required_channel: str = "higher",
        timeout: float = 10.0,
        concurrency: int = 8,
    ):
        self.repository = repository
        self.neynar = neynar
        self.marker = re.compile(marker_pattern, re.IGNORECASE | re.DOTALL)
        self.required_channel = required_channel
        self.timeout = timeout
        self.concurrency = concurrency

    def check_cast(self, content_hash: str, cast: dict) -> ContentValidation:
        """Apply the marker and channel rules to a Neynar cast object"""
        text = cast.get('text') or ""
        author = cast.get('author') or {}
        channel_id = (cast.get('channel') or {}).get('id')
        parent_url = cast.get('parent_url') or ""

        in_channel = (
            channel_id == self.required_channel
            or f'/{self.required_channel}' in parent_url
        )
        match = self.marker.search(text)

        reason = ""
        if not match:
            reason = "missing marker phrase"
        elif not in_channel:
            reason = f"not in /{self.required_channel} channel"

        return ContentValidation(
            content_hash=content_hash,
            valid=not reason,
            owner_identity=coerce_fid(author.get('fid')),
            owner_username=author.get('username') or "",
            owner_display_name=author.get('display_name') or author.get('username') or "",
            owner_pfp_url=author.get('pfp_url') or "",
            content_text=text,
            description=extract_description(match) if match else "",
            content_timestamp=parse_timestamp(cast.get('timestamp')),
            reason=reason,
        )

    async def _get_local(self, content_hash: str) -> Optional[ContentEntry]:
        try:
            return await self.repository.get(content_hash)
        except CorruptEntryError as e:
            logger.error(f"Corrupt stored entry {content_hash}: {e}")
        except (asyncpg.PostgresError, OSError) as e:
            logger.warning(f"Local lookup failed for {content_hash}: {e!r}")
        return None

    async def validate(self, content_hash: str) -> Optional[ContentValidation]:
        """
        Validate a cast.

        Args:
            content_hash: Normalized cast hash

        Returns:
            ContentValidation (valid or not, owner known), or None when the
            cast cannot be found at all
        """
        local = await self._get_local(content_hash)
        if local is not None and local.state in SETTLED_STATES:
            return ContentValidation.from_entry(local)

        try:
            cast = await asyncio.wait_for(self.neynar.lookup_cast(content_hash), timeout=self.timeout)
        except (ExternalServiceError, asyncio.TimeoutError) as e:
            logger.warning(f"Cast lookup failed for {content_hash}: {e!r}")
            return ContentValidation.from_entry(local) if local else None

        if not cast:
            if local is not None:
                return ContentValidation.from_entry(local)
            logger.info(f"Cast {content_hash} not found")
            return None

        validation = self.check_cast(content_hash, cast)
        if validation.owner_identity is None:
            logger.warning(f"Cast {content_hash} has no usable author fid: {(cast.get('author') or {}).get('fid')!r}")
            return None
        if not validation.valid:
            logger.debug(f"Cast {content_hash} invalid: {validation.reason}")
        return validation

    async def validate_many(self, content_hashes: Iterable[str]) -> Dict[str, Optional[ContentValidation]]:
        """Validate concurrently; an item that times out or fails maps to None"""
        semaphore = asyncio.Semaphore(self.concurrency)
        hashes = list(dict.fromkeys(content_hashes))

        async def bounded(content_hash: str) -> Optional[ContentValidation]:
            async with semaphore:
                try:
                    # Local read plus one API call
                    return await asyncio.wait_for(self.validate(content_hash), timeout=self.timeout * 2)
                except asyncio.TimeoutError:
                    logger.warning(f"Validation timed out for {content_hash}")
                    return None
                except Exception as e:
                    logger.error(f"Validation failed for {content_hash}: {e!r}", exc_info=True)
                    return None

        results = await asyncio.gather(*(bounded(h) for h in hashes))
        return dict(zip(hashes, results))
