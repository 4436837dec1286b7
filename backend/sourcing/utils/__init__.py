"""Utility functions for normalizing and extracting scraped data."""

from .normalizers import (
    norm_text,
    to_absolute,
    canonicalize_url,
    extract_price_and_currency,
    extract_moq,
    parse_moq_quantity,
    parse_moq,
    parse_min_price,
    is_placeholder,
    uniq_by,
)
from .extractors import (
    extract_price_like,
    extract_moq_like,
    extract_moq_loose,
    parse_srcset,
    iter_json_fragments,
    iter_json_ld,
    content_hash,
    select_text,
    select_all_text,
    meta_content,
)

__all__ = [
    'norm_text',
    'to_absolute',
    'canonicalize_url',
    'extract_price_and_currency',
    'extract_moq',
    'parse_moq_quantity',
    'parse_moq',
    'parse_min_price',
    'is_placeholder',
    'uniq_by',
    'extract_price_like',
    'extract_moq_like',
    'extract_moq_loose',
    'parse_srcset',
    'iter_json_fragments',
    'iter_json_ld',
    'content_hash',
    'select_text',
    'select_all_text',
    'meta_content',
]
