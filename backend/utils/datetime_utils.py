"""
Datetime utility functions for upstream timestamps and unix clock values
"""
from datetime import datetime, timezone
from typing import Optional
import logging
import time

logger = logging.getLogger(__name__)


def parse_timestamp(value) -> Optional[datetime]:
    """
    Convert an upstream timestamp to an aware Python datetime

    Handles multiple cases:
    - None -> None
    - Already Python datetime -> as-is (naive values assumed UTC)
    - int/float -> unix seconds
    - String ISO format (Neynar 'Z' suffix included) -> parsed datetime
    - Other -> None with warning

    Args:
        value: datetime, unix seconds, ISO string, or None

    Returns:
        Python datetime or None
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)

    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
        except ValueError as e:
            logger.warning(f"Failed to parse datetime string '{value}': {e}")
            return None

    logger.warning(f"Cannot convert {type(value)} to Python datetime: {value}")
    return None


def unix_now() -> int:
    """Current unix time in seconds (lockup unlock times use this clock)"""
    return int(time.time())
