"""
Lockup classification - CASTER vs SUPPORTER

A lockup is a caster stake when the wallet that funded it belongs to the
cast owner, otherwise a supporter stake. Records that cannot be normalized
(bad amount, bad content reference) are dropped, never raised.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional, Set

from models.domain.content_entry import CasterStake, SupporterStake
from models.domain.lockup import LockupRecord
from utils.amounts import normalize_amount
from utils.hash_utils import normalize_content_hash

logger = logging.getLogger(__name__)


class StakeKind(str, Enum):
    CASTER = "caster"
    SUPPORTER = "supporter"


@dataclass
class ClassifiedLockup:
    """A lockup with its content hash, kind and normalized amount resolved"""
    record: LockupRecord
    content_hash: str
    kind: StakeKind
    amount: Decimal
    supporter_identity: Optional[int] = None

    @property
    def lockup_id(self) -> int:
        return self.record.lockup_id

    def to_caster_stake(self) -> CasterStake:
        return CasterStake(
            lockup_id=self.record.lockup_id,
            amount=self.amount,
            unlock_time=self.record.unlock_time,
            unlocked=self.record.unlocked,
            lock_time=self.record.lock_time,
        )

    def to_supporter_stake(self, pfp_url: str = "") -> SupporterStake:
        return SupporterStake(
            lockup_id=self.record.lockup_id,
            amount=self.amount,
            unlock_time=self.record.unlock_time,
            supporter_identity=self.supporter_identity,
            unlocked=self.record.unlocked,
            lock_time=self.record.lock_time,
            supporter_pfp_url=pfp_url,
        )


def content_hash_of(record: LockupRecord) -> Optional[str]:
    return normalize_content_hash(record.content_reference)


def classify(
    record: LockupRecord,
    owner_wallets: Set[str],
    address_to_identity: Dict[str, int],
) -> Optional[ClassifiedLockup]:
    """
    Classify one lockup against the owner's wallets.

    Args:
        record: Parsed lockup record
        owner_wallets: Owner custody + verified addresses
        address_to_identity: Resolved funding address -> fid

    Returns:
        ClassifiedLockup, or None if the record is dropped
    """
    content_hash = content_hash_of(record)
    if content_hash is None:
        logger.debug(f"Lockup {record.lockup_id}: unusable content reference {record.content_reference!r}")
        return None

    amount = normalize_amount(record.amount, record.amount_unit)
    if amount is None:
        logger.warning(f"Lockup {record.lockup_id}: unparseable amount {record.amount!r}")
        return None

    funder = record.funding_address.lower()
    wallets = {w.lower() for w in owner_wallets}

    if funder in wallets:
        return ClassifiedLockup(
            record=record,
            content_hash=content_hash,
            kind=StakeKind.CASTER,
            amount=amount,
        )

    return ClassifiedLockup(
        record=record,
        content_hash=content_hash,
        kind=StakeKind.SUPPORTER,
        amount=amount,
        supporter_identity=address_to_identity.get(funder),
    )
