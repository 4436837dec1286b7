"""Product-detail extraction and caching."""

from .models import (
    ProductDetail,
    PriceTier,
    Variation,
    CustomizationOption,
    Protection,
    Attribute,
    Rating,
    SupplierInfo,
    normalize_detail,
)
from .dispatcher import DetailDispatcher
from .cache import DetailCache, ListingRef, build_fallback

__all__ = [
    'ProductDetail',
    'PriceTier',
    'Variation',
    'CustomizationOption',
    'Protection',
    'Attribute',
    'Rating',
    'SupplierInfo',
    'normalize_detail',
    'DetailDispatcher',
    'DetailCache',
    'ListingRef',
    'build_fallback',
]
