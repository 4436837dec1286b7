"""
Data normalization utilities for scraped marketplace data.

These functions standardize scraped text, URLs, prices and MOQ strings
into consistent formats.
"""

import re
from typing import Callable, Iterable, List, Optional, Tuple, TypeVar
from urllib.parse import urljoin, urlsplit, urlunsplit, parse_qsl, urlencode

T = TypeVar('T')

ZERO_WIDTH_RE = re.compile("[\u200b-\u200d\ufeff]")
WHITESPACE_RE = re.compile(r'\s+')

PRICE_CURRENCY_RE = re.compile(r'(₹|INR|Rs\.?|USD|US\$|\$)\s?([\d,]+(?:\.\d{1,2})?)', re.IGNORECASE)
MOQ_LABELED_RE = re.compile(r'(?:MOQ|Min(?:imum)?\s*Order(?:\s*Quantity)?|≥)\s*:?\s*([\d,]{1,6})', re.IGNORECASE)
MOQ_UNIT_RE = re.compile(r'([\d,]{1,6})\s*(?:pcs?|pieces?|units?|bags?|sets?)', re.IGNORECASE)

# Query parameters that identify a listing; everything else is tracking noise
IDENTITY_PARAMS = ('id', 'kwd')

PLACEHOLDER_VALUES = {
    'customization options',
    'supplier’s customization ability',
    "supplier's customization ability",
    'secure payments',
    'easy return & refund',
    'protections',
    'thumb',
    'thumbnail',
}
PLACEHOLDER_RE = re.compile(r'^(?:lightcustom_.*|default|no[_\s-]?sku|-{2,})$', re.IGNORECASE)


def norm_text(text: Optional[str]) -> str:
    """
    Collapse whitespace and strip zero-width / non-breaking characters.

    Examples:
        '  Steel\\u200b  Pipe\\n' -> 'Steel Pipe'
    """
    if not text:
        return ''
    text = ZERO_WIDTH_RE.sub('', text).replace("\u00a0", " ")
    return WHITESPACE_RE.sub(' ', text).strip()


def to_absolute(url: Optional[str], base: str = 'https://dir.indiamart.com/') -> str:
    """Resolve a possibly relative or protocol-relative URL against base."""
    if not url:
        return ''
    url = url.strip()
    if url.startswith('//'):
        return 'https:' + url
    try:
        return urljoin(base, url)
    except ValueError:
        return url


def canonicalize_url(url: str, base: str = 'https://dir.indiamart.com/') -> str:
    """
    Strip tracking and session query parameters from a listing URL.

    On IndiaMART hosts only the identity parameters (id, kwd) survive;
    /products URLs keep one of each, in id, kwd order. Other hosts keep
    their query. The fragment is always dropped and scheme/host are
    lower-cased, so applying it twice gives the same result.

    Examples:
        https://dir.indiamart.com/products/?id=123&pos=4&kwd=pipe&tags=x
            -> https://dir.indiamart.com/products/?id=123&kwd=pipe
        https://www.indiamart.com/proddetail/steel-pipe-123.html?pos=2
            -> https://www.indiamart.com/proddetail/steel-pipe-123.html
    """
    if not url:
        return ''
    absolute = to_absolute(url, base)
    try:
        parts = urlsplit(absolute)
    except ValueError:
        return url
    if parts.scheme.lower() not in ('http', 'https') or not parts.netloc:
        return absolute

    netloc = parts.netloc.lower()
    host = netloc.split(':')[0]
    query = parts.query
    if host == 'indiamart.com' or host.endswith('.indiamart.com'):
        kept = [(k, v) for k, v in parse_qsl(parts.query) if k in IDENTITY_PARAMS]
        if parts.path.startswith('/products'):
            by_key = {}
            for k, v in kept:
                by_key.setdefault(k, v)
            kept = [(k, by_key[k]) for k in IDENTITY_PARAMS if k in by_key]
        query = urlencode(kept)

    return urlunsplit((parts.scheme.lower(), netloc, parts.path or '/', query, ''))


def extract_price_and_currency(raw: Optional[str]) -> Tuple[str, Optional[str]]:
    """
    Detect the currency of a display price while keeping the original string.

    Examples:
        '₹ 120/Piece' -> ('₹ 120/Piece', 'INR')
        'Rs. 1,200'   -> ('Rs. 1,200', 'INR')
        'US$ 4.50'    -> ('US$ 4.50', 'USD')
        'Ask price'   -> ('Ask price', None)
    """
    text = raw or ''
    match = PRICE_CURRENCY_RE.search(text)
    if not match:
        return text, None
    token = match.group(1)
    if token == '₹' or token.lower().startswith('rs') or token.upper() == 'INR':
        currency = 'INR'
    elif token in ('US$', '$') or token.upper() == 'USD':
        currency = 'USD'
    else:
        currency = token.upper()
    return text, currency


def extract_moq(raw: Optional[str]) -> Optional[str]:
    """
    Normalize a minimum-order string to 'MOQ <n>'.

    Examples:
        'Min Order: 10 Piece'       -> 'MOQ 10'
        'Minimum Order Quantity 5'  -> 'MOQ 5'
        '≥ 50'                      -> 'MOQ 50'
        '1,000 pcs'                 -> 'MOQ 1000'
    """
    if not raw:
        return None
    match = MOQ_LABELED_RE.search(raw)
    if match:
        return f"MOQ {match.group(1).replace(',', '')}"
    match = MOQ_UNIT_RE.search(raw)
    if match:
        return f"MOQ {match.group(1).replace(',', '')}"
    return None


def parse_moq_quantity(raw: Optional[str]) -> Optional[int]:
    """First 1-5 digit number in a MOQ string, or None."""
    match = re.search(r'(\d{1,5})', (raw or '').replace(',', ''))
    return int(match.group(1)) if match else None


def parse_moq(raw: Optional[str]) -> Optional[int]:
    """Parse a stored MOQ with a sanity guardrail (0 < n <= 100000)."""
    match = re.search(r'(\d[\d,]*)', raw or '')
    if not match:
        return None
    try:
        value = int(match.group(1).replace(',', ''))
    except ValueError:
        return None
    if 0 < value <= 100000:
        return value
    return None


def parse_min_price(raw: Optional[str]) -> Optional[float]:
    """Lowest number found in a price string ('₹ 1,200 - 1,500' -> 1200.0)."""
    values = []
    for token in re.findall(r'\d[\d,]*(?:\.\d+)?', raw or ''):
        try:
            values.append(float(token.replace(',', '')))
        except ValueError:
            continue
    return min(values) if values else None


def is_placeholder(text: Optional[str]) -> bool:
    """True for boilerplate labels scraped from widget chrome."""
    value = (text or '').strip().lower()
    if not value:
        return True
    return value in PLACEHOLDER_VALUES or bool(PLACEHOLDER_RE.match(value))


def uniq_by(items: Iterable[T], key: Callable[[T], str]) -> List[T]:
    """
    Keep the first item per case-insensitive key; items with a blank key are dropped.
    """
    seen = set()
    out = []
    for item in items:
        k = (key(item) or '').strip().lower()
        if not k or k in seen:
            continue
        seen.add(k)
        out.append(item)
    return out
