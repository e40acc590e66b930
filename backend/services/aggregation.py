"""
Aggregation engine - pure functions over ContentEntry

State, totals, ranks and the stake validity rules live here so that the
write paths (sync, optimistic, unlock) and every read path apply exactly
the same rules.

State derivation:
    content invalid                                  -> INVALID
    no caster stakes                                 -> VALID
    any caster stake not unlocked and unlock > now   -> ACTIVE
    otherwise                                        -> EXPIRED
"""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Sequence, Set

from models.domain.content_entry import CasterStake, ContentEntry, ContentState, SupporterStake
from models.domain.identity import OwnerWallets
from models.domain.stats import SupporterTotal
from services.content_validator import ContentValidation
from services.lockup_classifier import ClassifiedLockup, StakeKind
from utils.amounts import sum_amounts
from utils.datetime_utils import unix_now

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400
CENTS = Decimal('0.01')


# =============================================================================
# VALIDITY RULES
# =============================================================================

def is_active_caster_stake(stake: CasterStake, now: int) -> bool:
    return not stake.unlocked and stake.unlock_time > now


def is_valid_supporter_stake(stake: SupporterStake, caster_unlock_times: Set[int]) -> bool:
    """
    A supporter stake counts only while locked and only if its unlock time
    matches one of the cast's caster stakes (any caster stake, expired or not).
    """
    return not stake.unlocked and stake.unlock_time in caster_unlock_times


def derive_state(content_valid: bool, caster_stakes: Sequence[CasterStake], now: int) -> ContentState:
    if not content_valid:
        return ContentState.INVALID
    if not caster_stakes:
        return ContentState.VALID
    if any(is_active_caster_stake(s, now) for s in caster_stakes):
        return ContentState.ACTIVE
    return ContentState.EXPIRED


def refresh_entry(entry: ContentEntry, now: int, content_valid: Optional[bool] = None) -> ContentEntry:
    """
    Recompute total and state after an in-place stake change.

    The rank survives only while the entry stays ACTIVE; the next full
    re-sync assigns global ranks.
    """
    if content_valid is None:
        content_valid = entry.state != ContentState.INVALID
    entry.recompute_total()
    entry.state = derive_state(content_valid, entry.caster_stakes, now)
    if entry.state != ContentState.ACTIVE:
        entry.rank = None
    return entry


# =============================================================================
# ENTRY CONSTRUCTION
# =============================================================================

def build_entry(
    content_hash: str,
    validation: ContentValidation,
    owner: OwnerWallets,
    classified: Iterable[ClassifiedLockup],
    now: int,
    supporter_pfps: Optional[Dict[int, str]] = None,
) -> ContentEntry:
    """
    Build an entry from scratch for one cast.

    Both stake lists are fully replaced by the classified lockups (first
    occurrence of a lockup id wins); display fields come from the
    validation, falling back to the resolved owner identity.

    Args:
        content_hash: Normalized cast hash
        validation: Content validation (owner known)
        owner: Resolved owner and wallets
        classified: Classified lockups for this hash, in source order
        now: Unix seconds
        supporter_pfps: fid -> pfp url for supporter display

    Returns:
        ContentEntry with total and state derived (rank unset)
    """
    supporter_pfps = supporter_pfps or {}
    identity = owner.identity

    caster_stakes: List[CasterStake] = []
    supporter_stakes: List[SupporterStake] = []
    seen: Set[int] = set()

    for item in classified:
        if item.lockup_id in seen:
            continue
        seen.add(item.lockup_id)
        if item.kind == StakeKind.CASTER:
            caster_stakes.append(item.to_caster_stake())
        else:
            pfp = supporter_pfps.get(item.supporter_identity, "") if item.supporter_identity is not None else ""
            supporter_stakes.append(item.to_supporter_stake(pfp_url=pfp))

    entry = ContentEntry(
        content_hash=content_hash,
        owner_identity=owner.owner_identity,
        owner_username=validation.owner_username or (identity.username if identity else ""),
        owner_display_name=validation.owner_display_name or (identity.display_name if identity else ""),
        owner_pfp_url=validation.owner_pfp_url or (identity.pfp_url if identity else ""),
        content_text=validation.content_text,
        description=validation.description,
        content_timestamp=validation.content_timestamp,
        caster_stakes=caster_stakes,
        supporter_stakes=supporter_stakes,
    )
    entry.recompute_total()
    entry.state = derive_state(validation.valid, caster_stakes, now)
    return entry


def assign_ranks(entries: Sequence[ContentEntry]) -> List[ContentEntry]:
    """
    Rank ACTIVE entries 1..N by total_staked descending.

    The sort is stable: ties keep input order. Non-ACTIVE entries get None.
    """
    active = [e for e in entries if e.state == ContentState.ACTIVE]
    ordered = sorted(active, key=lambda e: e.total_staked, reverse=True)

    for position, entry in enumerate(ordered, start=1):
        entry.rank = position
    for entry in entries:
        if entry.state != ContentState.ACTIVE:
            entry.rank = None
    return ordered


def compute_usd_value(total: Decimal, price: Optional[Decimal]) -> Optional[Decimal]:
    if price is None or price <= 0:
        return None
    return (total * price).quantize(CENTS, rounding=ROUND_HALF_UP)


# =============================================================================
# READ-SIDE AGGREGATION
# =============================================================================

def weighted_stake(stake: SupporterStake, now: int) -> float:
    """Token-days held so far ("higher-days"); 0 when lock time is unknown"""
    if stake.lock_time is None:
        return 0.0
    held = min(now, stake.unlock_time) - stake.lock_time
    if held <= 0:
        return 0.0
    return float(stake.amount) * held / SECONDS_PER_DAY


def valid_supporter_stakes(entry: ContentEntry) -> List[SupporterStake]:
    unlock_times = entry.caster_unlock_times
    return [s for s in entry.supporter_stakes if is_valid_supporter_stake(s, unlock_times)]


def aggregate_supporters(
    entry: ContentEntry,
    limit: Optional[int] = None,
    now: Optional[int] = None,
) -> List[SupporterTotal]:
    """
    Group an entry's valid supporter stakes by supporter.

    Stakes whose supporter identity is unresolved count toward entry totals
    but are left out of the per-supporter grouping.

    Args:
        entry: Content entry
        limit: Top-N cut (None for all)
        now: Unix seconds for weighting (defaults to current time)

    Returns:
        SupporterTotal list, largest total first
    """
    if now is None:
        now = unix_now()

    totals: Dict[int, SupporterTotal] = {}
    for stake in valid_supporter_stakes(entry):
        if stake.supporter_identity is None:
            continue
        total = totals.get(stake.supporter_identity)
        if total is None:
            total = SupporterTotal(
                supporter_identity=stake.supporter_identity,
                total_amount=Decimal(0),
                pfp_url=stake.supporter_pfp_url,
            )
            totals[stake.supporter_identity] = total
        total.total_amount = sum_amounts([total.total_amount, stake.amount])
        total.weighted_stake += weighted_stake(stake, now)
        total.stake_count += 1
        if not total.pfp_url and stake.supporter_pfp_url:
            total.pfp_url = stake.supporter_pfp_url

    ordered = sorted(totals.values(), key=lambda t: t.total_amount, reverse=True)
    if limit is not None:
        ordered = ordered[:limit]
    return ordered
