"""Per-marketplace detail-page extractors."""

from . import alibaba, indiamart, madeinchina

# Source key -> extractor module
EXTRACTORS = {
    'indiamart': indiamart,
    'alibaba': alibaba,
    'madeinchina': madeinchina,
}

__all__ = ['EXTRACTORS', 'alibaba', 'indiamart', 'madeinchina']
