"""
Data extraction utilities for marketplace pages.

These functions pull structured values out of free text, srcset attributes
and inline script payloads.
"""

import json
import re
from typing import Any, Dict, Iterator, List, Optional
from bs4 import BeautifulSoup

from .normalizers import norm_text

CURRENCY_TOKEN = r'(?:US\$|\$|USD|RMB|CNY|¥|￥|₹|INR|Rs\.?)'
PRICE_LIKE_RE = re.compile(
    CURRENCY_TOKEN + r'\s*:?\s*\d{1,6}(?:[.,]\d{1,2})?'
    r'(?:\s*[-~–]\s*(?:' + CURRENCY_TOKEN + r'\s*:?\s*)?\d{1,6}(?:[.,]\d{1,2})?)?',
    re.IGNORECASE,
)
MOQ_LIKE_RE = re.compile(
    r'(?:MOQ|Min(?:imum)?\.?\s*Order(?:\s*Quantity)?|≥)\s*:?\s*([\d,]{1,7})(?:\s*(pcs?|pieces?|units?|bags?|sets?))?',
    re.IGNORECASE,
)
MOQ_PAREN_RE = re.compile(
    r'([≥>]?\s*[\d,]{1,7})\s*(pcs?|pieces?|units?|bags?|sets?)\b\s*\(\s*MOQ\s*\)',
    re.IGNORECASE,
)
MOQ_GTE_RE = re.compile(r'≥\s*([\d,]{1,7})\s*(pcs?|pieces?|units?|bags?|sets?)', re.IGNORECASE)
JSON_FRAGMENT_RE = re.compile(r'\{[^{}]*?\}', re.DOTALL)
TRAILING_COMMA_RE = re.compile(r',(\s*[}\]])')
CONTENT_HASH_RE = re.compile(r'([a-f0-9]{40})', re.IGNORECASE)


def _format_qty(qty: str, unit: Optional[str]) -> str:
    return f"{int(qty):,} {(unit or 'PCS').upper()}"


def extract_price_like(text: Optional[str]) -> str:
    """
    Find the first currency-tagged price or price range in text.

    Examples:
        'Price: US$5-8.10 / piece' -> 'US$5-8.10'
        'Rs. 450 per kg'           -> 'Rs. 450'
    """
    match = PRICE_LIKE_RE.search(norm_text(text))
    return match.group(0) if match else ''


def extract_moq_like(text: Optional[str]) -> Optional[str]:
    """
    Find a labelled minimum order and format it as '<qty> <UNIT>'.

    Examples:
        'Minimum order quantity: 10 sets' -> '10 SETS'
        'MOQ 1200'                        -> '1,200 PCS'
    """
    match = MOQ_LIKE_RE.search(norm_text(text))
    if not match:
        return None
    qty = match.group(1).replace(',', '')
    if not qty:
        return None
    return _format_qty(qty, match.group(2))


def extract_moq_loose(text: Optional[str]) -> Optional[str]:
    """Catch '1200 pcs (MOQ)' and '≥ 500 Sets' forms missed by extract_moq_like."""
    t = norm_text(text)
    match = MOQ_PAREN_RE.search(t)
    if match:
        qty = re.sub(r'[≥>\s,]', '', match.group(1))
        return _format_qty(qty, match.group(2))
    match = MOQ_GTE_RE.search(t)
    if match:
        return _format_qty(match.group(1).replace(',', ''), match.group(2))
    return None


def parse_srcset(srcset: Optional[str]) -> List[str]:
    """Return the URL part of every srcset entry, in order."""
    if not srcset:
        return []
    urls = []
    for entry in srcset.split(','):
        parts = entry.strip().split()
        if parts:
            urls.append(parts[0])
    return urls


def iter_json_fragments(script_text: str) -> Iterator[Dict[str, Any]]:
    """
    Yield flat JSON objects embedded in a script body.

    Fragments are cleaned of trailing commas; anything that still fails to
    parse is skipped.
    """
    for frag in JSON_FRAGMENT_RE.findall(script_text or ''):
        cleaned = TRAILING_COMMA_RE.sub(r'\1', frag)
        try:
            obj = json.loads(cleaned)
        except ValueError:
            continue
        if isinstance(obj, dict):
            yield obj


def iter_json_ld(soup: BeautifulSoup) -> Iterator[Any]:
    """Yield parsed JSON-LD payloads; top-level lists are flattened."""
    for tag in soup.find_all('script', attrs={'type': 'application/ld+json'}):
        try:
            data = json.loads(tag.string or tag.get_text() or '')
        except ValueError:
            continue
        if isinstance(data, list):
            for item in data:
                yield item
        else:
            yield data


def content_hash(url: str) -> Optional[str]:
    """40-hex content hash embedded in a CDN URL, lower-cased."""
    match = CONTENT_HASH_RE.search(url or '')
    return match.group(1).lower() if match else None


def select_text(root, selector: str) -> str:
    """Normalized text of the first element matching selector, or ''."""
    found = root.select_one(selector)
    return norm_text(found.get_text(' ')) if found is not None else ''


def select_all_text(root, selector: str) -> str:
    """Normalized text of every element matching selector, joined by spaces."""
    return norm_text(' '.join(el.get_text(' ') for el in root.select(selector)))


def meta_content(soup: BeautifulSoup, selector: str) -> str:
    tag = soup.select_one(selector)
    return (tag.get('content') or '').strip() if tag is not None else ''
