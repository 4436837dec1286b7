"""
Title cleanup, classification and quality gates for scraped listings.

Marketplace titles are noisy: supplier suffixes, marketing tails and generic
words ("new", "best", "quality") that say nothing about the product. These
helpers reduce a title to its informative tokens so near-duplicate listings
collapse onto one canonical key, and flag accessories and banned goods.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .utils import norm_text

TOKEN_RE = re.compile(r'[a-z0-9]+')
BUY_TAIL_RE = re.compile(r'\s*[-|]\s*buy\b.*?\bon\s+[\w.\- ]+$', re.IGNORECASE)
SUPPLIER_TAIL_RE = re.compile(
    r'\s*[|\-]\s*(?:[\w&.\' ]+\s)?(?:supplier|suppliers|manufacturer|manufacturers|exporter|exporters|wholesaler|traders?)\s*$',
    re.IGNORECASE,
)
EDGE_PUNCT_RE = re.compile(r'^[\s\-|,.:;!*#~]+|[\s\-|,.:;!*#~]+$')
MAX_TITLE_LEN = 140

STOPWORDS = {
    'a', 'an', 'and', 'at', 'by', 'for', 'from', 'in', 'of', 'on', 'or', 'the', 'to', 'with',
    'pc', 'pcs', 'piece', 'pieces', 'set', 'sets', 'unit', 'units', 'per', 'x',
}

GENERIC_WORDS = {
    'new', 'best', 'good', 'high', 'quality', 'premium', 'top', 'hot', 'sale', 'selling',
    'cheap', 'price', 'low', 'latest', 'design', 'designer', 'style', 'fashion', 'brand',
    'branded', 'original', 'genuine', 'wholesale', 'factory', 'supplier', 'manufacturer',
    'exporter', 'india', 'indian', 'china', 'custom', 'customized', 'oem', 'odm', 'free',
    'shipping', 'product', 'products', 'item', 'items', 'type', 'model', 'size', 'color',
    'colour', 'various', 'multi', 'all', 'kind', 'kinds', 'available',
}

ACCESSORY_TOKENS = {
    'cover', 'covers', 'case', 'cases', 'strap', 'straps', 'spare', 'spares', 'part', 'parts',
    'refill', 'refills', 'replacement', 'adapter', 'adapters', 'holder', 'holders', 'stand',
    'sticker', 'stickers', 'skin', 'skins', 'pouch', 'charger', 'cable', 'cables', 'tip', 'tips',
}

# Keyword groups mapped to category slugs
KEYWORD_GROUPS = {
    'electronics': {'earbuds', 'earphones', 'headphones', 'speaker', 'speakers', 'bluetooth', 'wireless',
                    'charger', 'usb', 'led', 'smartwatch', 'camera', 'power', 'bank', 'mobile', 'phone'},
    'apparel': {'shirt', 'shirts', 'tshirt', 'kurti', 'kurta', 'saree', 'sarees', 'dress', 'jeans',
                'jacket', 'hoodie', 'leggings', 'trousers', 'cotton', 'denim'},
    'footwear': {'shoes', 'shoe', 'sneakers', 'sandals', 'slippers', 'boots', 'footwear'},
    'kitchen': {'cookware', 'kadai', 'pan', 'pressure', 'cooker', 'utensils', 'bottle', 'bottles',
                'lunch', 'tiffin', 'kitchen', 'mixer', 'grinder'},
    'home-decor': {'curtain', 'curtains', 'cushion', 'lamp', 'vase', 'decor', 'wall', 'rug', 'carpet'},
    'beauty': {'cosmetic', 'cosmetics', 'lipstick', 'serum', 'cream', 'shampoo', 'soap', 'perfume'},
    'bags': {'bag', 'bags', 'backpack', 'handbag', 'wallet', 'purse', 'luggage', 'trolley'},
    'toys': {'toy', 'toys', 'puzzle', 'doll', 'dolls', 'blocks', 'rc'},
    'jewellery': {'jewellery', 'jewelry', 'earrings', 'necklace', 'bangles', 'ring', 'rings', 'pendant'},
}

BANNED_KEYWORDS = [
    'gun', 'guns', 'pistol', 'rifle', 'ammunition', 'ammo', 'firearm', 'explosive', 'grenade',
    'knuckle duster', 'cannabis', 'marijuana', 'weed', 'cocaine', 'heroin', 'opium', 'narcotic',
    'replica', 'counterfeit', 'fake', 'first copy', 'adult toy', 'sex toy', 'porn', 'cigarette',
    'cigarettes', 'tobacco', 'e-cigarette', 'vape', 'hookah', 'gutkha', 'ivory', 'tiger skin',
]
BANNED_RE = [(kw, re.compile(r'\b' + re.escape(kw) + r'\b', re.IGNORECASE)) for kw in BANNED_KEYWORDS]


@dataclass
class Classification:
    """Result of reducing a listing title to comparable tokens."""
    informative_tokens: List[str] = field(default_factory=list)
    canonical_key: str = ''
    is_accessory: bool = False
    groups: List[str] = field(default_factory=list)


def sanitize_title(title: Optional[str]) -> str:
    """
    Normalize a scraped title for storage and comparison.

    Examples:
        'Steel Kadai - Buy Steel Kadai on IndiaMART' -> 'Steel Kadai'
        '  ** Cotton Kurti |  '                      -> 'Cotton Kurti'
    """
    text = norm_text(title)
    text = BUY_TAIL_RE.sub('', text)
    text = SUPPLIER_TAIL_RE.sub('', text)
    text = EDGE_PUNCT_RE.sub('', text)
    return text[:MAX_TITLE_LEN].strip()


def tokenize(text: Optional[str]) -> List[str]:
    """Lower-cased alphanumeric tokens without stopwords or pure numbers."""
    return [
        t for t in TOKEN_RE.findall((text or '').lower())
        if t not in STOPWORDS and not t.isdigit()
    ]


def classify(title: str, term: str = '') -> Classification:
    """
    Classify a sanitized title in the context of the search term.

    Args:
        title: Sanitized listing title
        term: Search term the listing was found with

    Returns:
        Classification with informative tokens, dedup key, accessory flag and groups
    """
    tokens = tokenize(title)
    informative: List[str] = []
    for t in tokens:
        if len(t) >= 3 and t not in GENERIC_WORDS and t not in informative:
            informative.append(t)

    canonical_key = ' '.join(sorted(set(informative))) or norm_text(title).lower()

    term_tokens = set(tokenize(term))
    is_accessory = bool(ACCESSORY_TOKENS & set(tokens)) and not (ACCESSORY_TOKENS & term_tokens)

    token_set = set(tokens)
    groups = [slug for slug, words in KEYWORD_GROUPS.items() if words & token_set]

    return Classification(
        informative_tokens=informative,
        canonical_key=canonical_key,
        is_accessory=is_accessory,
        groups=groups,
    )


def passes_quality(cls: Classification, min_informative: int = 2, allow_accessories: bool = False) -> bool:
    """True when the title is informative enough and not an unwanted accessory."""
    if len(cls.informative_tokens) < min_informative:
        return False
    if cls.is_accessory and not allow_accessories:
        return False
    return True


def term_to_category_slug(term: str) -> str:
    """
    Kebab-case slug for a search term.

    Examples:
        'Pots & Pans' -> 'pots-and-pans'
    """
    text = (term or '').lower().replace('&', ' and ')
    return re.sub(r'[^a-z0-9]+', '-', text).strip('-')


def is_excluded_by_keywords(title: Optional[str], description: Optional[str] = None) -> Tuple[bool, Optional[str]]:
    """
    Check title and description against the banned-goods list.

    Returns:
        (excluded, matched_keyword)
    """
    haystack = f"{title or ''} {description or ''}"
    for keyword, rx in BANNED_RE:
        if rx.search(haystack):
            return True, keyword
    return False, None
