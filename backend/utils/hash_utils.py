"""
Content hash and address normalization

Cast hashes are the aggregation key: 0x-prefixed, 40 hex chars, lower-case.
Lockup titles carry them, sometimes without the 0x prefix.
"""
import re
from typing import Optional

CONTENT_HASH_LENGTH = 42  # "0x" + 40 hex chars

HEX_PATTERN = re.compile(r'^[0-9a-f]+$')
CONTENT_HASH_PATTERN = re.compile(r'^0x[0-9a-f]{40}$')


def normalize_content_hash(reference: Optional[str]) -> Optional[str]:
    """
    Normalize a lockup content reference to a cast hash.

    Trims whitespace, lower-cases, prepends 0x to bare hex.

    Returns:
        Normalized hash, or None if the reference is absent or malformed
    """
    if reference is None:
        return None

    s = str(reference).strip().lower()
    if not s:
        return None

    if not s.startswith('0x'):
        if not HEX_PATTERN.match(s):
            return None
        s = '0x' + s

    if not CONTENT_HASH_PATTERN.match(s):
        return None
    return s


def is_valid_content_hash(value: Optional[str]) -> bool:
    """Check that a value is already in normalized cast hash form"""
    return bool(value) and bool(CONTENT_HASH_PATTERN.match(value))


def normalize_address(address: Optional[str]) -> Optional[str]:
    """Lower-case an address for comparison; None for empty input"""
    if not address:
        return None
    s = str(address).strip().lower()
    return s or None
