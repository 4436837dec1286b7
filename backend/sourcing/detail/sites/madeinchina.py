"""Made-in-China product-detail extractor."""

import re
from typing import List
from bs4 import BeautifulSoup

from ..models import ProductDetail, Attribute, SupplierInfo
from ...utils import (
    extract_price_like,
    extract_moq_like,
    meta_content,
    norm_text,
    select_text,
    select_all_text,
)

GALLERY_SRC_RE = re.compile(r'made-in-china|micstatic|image\.', re.IGNORECASE)
GALLERY_ALT_BLOCK_RE = re.compile(r'logo|icon|sprite|qr|avatar')
SPACER_RE = re.compile(r'/common/img/space\.png', re.IGNORECASE)
MAX_GALLERY = 8


def _gallery(soup: BeautifulSoup) -> List[str]:
    gallery: List[str] = []
    for img in soup.find_all('img'):
        src = img.get('data-original') or img.get('src')
        alt = (img.get('alt') or '').lower()
        if not src or not GALLERY_SRC_RE.search(src) or GALLERY_ALT_BLOCK_RE.search(alt):
            continue
        if src.startswith('//'):
            src = 'https:' + src
        if SPACER_RE.search(src):
            continue
        if (src.startswith('http') or src.startswith('/')) and src not in gallery:
            gallery.append(src)
    return gallery[:MAX_GALLERY]


def extract(html: str, url: str) -> ProductDetail:
    """
    Parse a Made-in-China detail page.

    Args:
        html: Page HTML
        url: Page URL

    Returns:
        Normalized ProductDetail
    """
    soup = BeautifulSoup(html, 'html.parser')
    body_text = norm_text(soup.get_text(' '))

    title = select_text(soup, '.sr-proMainInfo-baseInfoH1, h1')
    price_text = (
        extract_price_like(select_text(soup, '.sr-proMainInfo-baseInfo-propertyPrice, .price, .only-one-priceNum'))
        or extract_price_like(body_text)
    )
    moq_text = (
        extract_moq_like(select_all_text(soup, '.sr-proMainInfo-baseInfo-propertyAttr, .baseInfo-price-related'))
        or extract_moq_like(body_text)
        or ''
    )

    attributes = []
    for row in soup.select('.sr-proMainInfo-baseInfo-propertyAttr table tr'):
        label = select_text(row, 'th, .th-label')
        value = select_text(row, 'td')
        if label and value:
            attributes.append(Attribute(label=label.rstrip(':'), value=value))

    gallery = _gallery(soup)
    badges = [norm_text(el.get_text(' ')) for el in soup.select('.sign-item, .verified-item')]

    detail = ProductDetail(
        title=title,
        price_text=price_text,
        moq_text=moq_text,
        attributes=attributes,
        gallery=gallery,
        hero_image=gallery[0] if gallery else meta_content(soup, 'meta[property="og:image"]'),
        supplier=SupplierInfo(
            name=select_text(soup, '.sr-comInfo-title .title-txt a, .sr-comInfo-title a'),
            type=select_text(soup, '.info-businessType'),
            location=select_text(soup, '.company-location .gold-content .tip-con, .company-location, .J-location'),
            member_since=select_text(soup, '.txt-year'),
            badges=[b for b in badges if b],
        ),
        source='made-in-china',
    )
    return detail.normalized()
