"""IndiaMART product-detail extractor."""

from bs4 import BeautifulSoup

from ..models import ProductDetail, Attribute, SupplierInfo
from ...utils import (
    extract_price_like,
    extract_moq_like,
    meta_content,
    norm_text,
    select_text,
)

MAX_ATTRIBUTES = 6


def extract(html: str, url: str) -> ProductDetail:
    """
    Parse an IndiaMART detail page.

    Args:
        html: Page HTML
        url: Page URL

    Returns:
        Normalized ProductDetail
    """
    soup = BeautifulSoup(html, 'html.parser')
    body_text = norm_text(soup.get_text(' '))

    title = select_text(soup, 'h1, .prd-title, .productTitle')
    price_text = extract_price_like(select_text(soup, '.p_price, .price, .pdp-price, .r_price')) or extract_price_like(body_text)
    moq_text = extract_moq_like(select_text(soup, '.moq, .min-order, .order-qty')) or extract_moq_like(body_text) or ''

    attributes = []
    for row in soup.select('.specs table tr, .specs li'):
        label = select_text(row, 'th') or select_text(row, '.label')
        value = select_text(row, 'td') or select_text(row, '.value')
        if label and value:
            attributes.append(Attribute(label=label.rstrip(':'), value=value))

    detail = ProductDetail(
        title=title,
        price_text=price_text,
        moq_text=moq_text,
        attributes=attributes[:MAX_ATTRIBUTES],
        hero_image=meta_content(soup, 'meta[property="og:image"]'),
        supplier=SupplierInfo(
            name=select_text(soup, '.cmp-name, .company-name, .seller-name'),
            location=select_text(soup, '.loc, .location, .cmp-loc'),
        ),
        source='indiamart',
    )
    return detail.normalized()
