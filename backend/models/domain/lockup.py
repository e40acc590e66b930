"""
Lockup domain model

A LockupRecord is one on-chain token lockup as observed by an upstream
source (Dune batch rows, webhook push events). Records are immutable once
observed; the only state change the chain ever reports is `unlocked`.

Upstream payloads are duck-typed. parse_lockup_record() is the single
boundary where they are coerced into the strict shape.
"""
from dataclasses import dataclass
from typing import Any, Optional

from utils.amounts import AmountUnit
from utils.hash_utils import normalize_address


class MalformedLockupError(ValueError):
    """Raised when an upstream payload cannot be coerced into a LockupRecord"""


@dataclass(frozen=True)
class LockupRecord:
    """
    Lockup as reported by an upstream source.

    `amount` is kept raw; `amount_unit` says how to read it.
    `content_reference` is the lockup title, expected to carry a cast hash.
    """
    lockup_id: int
    receiver: str
    amount: str
    amount_unit: AmountUnit
    unlock_time: int
    unlocked: bool = False
    sender: Optional[str] = None
    lock_time: Optional[int] = None
    content_reference: Optional[str] = None

    @property
    def funding_address(self) -> str:
        """Address that funded the lockup (push events only carry the receiver)"""
        return self.sender or self.receiver


def _first(raw: dict, *keys: str) -> Any:
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None


def _to_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool):
        raise MalformedLockupError(f"{field_name} must be an integer, got bool")
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise MalformedLockupError(f"{field_name} must be an integer, got {value!r}")


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ('true', '1')
    if isinstance(value, (int, float)):
        return value != 0
    return False


def parse_lockup_record(raw: dict, unit: AmountUnit) -> LockupRecord:
    """
    Coerce an untyped upstream payload into a LockupRecord.

    Accepts the field spellings used by the Dune query (lockUpId, unlockTime,
    lockTime, title) and by decoded webhook events (lockup_id, unlock_time).

    Args:
        raw: Upstream row / event data
        unit: Amount provenance of the source that produced the payload

    Returns:
        LockupRecord

    Raises:
        MalformedLockupError: if a required field is missing or invalid
    """
    if not isinstance(raw, dict):
        raise MalformedLockupError(f"lockup payload must be an object, got {type(raw).__name__}")

    lockup_id_raw = _first(raw, 'lockUpId', 'lockupId', 'lockup_id', 'lockUpID')
    if lockup_id_raw is None:
        raise MalformedLockupError("missing lockup id")
    lockup_id = _to_int(lockup_id_raw, 'lockup_id')
    if lockup_id < 0:
        raise MalformedLockupError(f"lockup id must be non-negative, got {lockup_id}")

    receiver = normalize_address(_first(raw, 'receiver'))
    if not receiver:
        raise MalformedLockupError(f"lockup {lockup_id}: missing receiver")

    amount = _first(raw, 'amount')
    if amount is None or str(amount).strip() == '':
        raise MalformedLockupError(f"lockup {lockup_id}: missing amount")

    unlock_time_raw = _first(raw, 'unlockTime', 'unlock_time')
    if unlock_time_raw is None:
        raise MalformedLockupError(f"lockup {lockup_id}: missing unlock time")
    unlock_time = _to_int(unlock_time_raw, 'unlock_time')

    lock_time_raw = _first(raw, 'lockTime', 'lock_time')
    lock_time = None
    if lock_time_raw is not None:
        try:
            lock_time = _to_int(lock_time_raw, 'lock_time')
        except MalformedLockupError:
            lock_time = None  # optional field

    reference = _first(raw, 'title', 'contentReference', 'content_reference', 'castHash')

    return LockupRecord(
        lockup_id=lockup_id,
        sender=normalize_address(_first(raw, 'sender')),
        receiver=receiver,
        amount=str(amount).strip(),
        amount_unit=AmountUnit(unit),
        unlock_time=unlock_time,
        lock_time=lock_time,
        content_reference=str(reference) if reference is not None else None,
        unlocked=_to_bool(_first(raw, 'unlocked')),
    )
