"""
Utility functions
"""
from .amounts import AmountUnit, normalize_amount, sum_amounts, to_decimal, format_amount
from .hash_utils import normalize_content_hash, is_valid_content_hash, normalize_address

__all__ = [
    'AmountUnit',
    'normalize_amount',
    'sum_amounts',
    'to_decimal',
    'format_amount',
    'normalize_content_hash',
    'is_valid_content_hash',
    'normalize_address',
]
