"""
Alibaba product-detail extractor.

Alibaba ships several page layouts at once (SSR tables, utility-class grids,
data-testid widgets), so every field is read through a cascade of sources.
Each block is wrapped separately; one broken layout never hides the others.
"""

import re
import logging
from typing import List, Optional
from bs4 import BeautifulSoup

from ..models import (
    ProductDetail,
    PriceTier,
    Variation,
    CustomizationOption,
    Protection,
    Attribute,
    Rating,
    SupplierInfo,
)
from ...utils import (
    extract_price_like,
    extract_moq_like,
    extract_moq_loose,
    iter_json_ld,
    meta_content,
    norm_text,
    select_text,
    select_all_text,
)

logger = logging.getLogger(__name__)

TITLE_TAIL_RE = re.compile(r'\s*-\s*Buy.*?(on\s+Alibaba\.com)?$', re.IGNORECASE)
CURRENCY_HINT_RE = re.compile(r'(US\$|\bUSD\b|\$|¥|₹|INR|Rs\.)', re.IGNORECASE)
PRICE_LINE_RE = re.compile(r'(US\$|\bUSD\b|\$|¥|₹|INR|Rs\.)\s*\d', re.IGNORECASE)
RANGE_LINE_RE = re.compile(r'(?:≥|>=)\s*\d|\d\s*[–-]\s*\d')
LINE_SPLIT_RE = re.compile(r'\n|\r|\t|\s{2,}')
ADDON_RE = re.compile(r'\+\$?\s*[\d.,]+(?:/\w+)?', re.IGNORECASE)
OPTION_MOQ_RE = re.compile(r'\(.*?(?:Min\.?\s*order|MOQ).*?\)', re.IGNORECASE)
VARIATION_HOST_RE = re.compile(r'alicdn|alibaba|aliimg', re.IGNORECASE)
VAR_NAME_THEN_IMG_RE = re.compile(
    r'"(?:name|propertyValueName)"\s*:\s*"([^"]{1,80})"[\s\S]{0,200}?"(?:imageUrl|image|imgUrl|imagePath)"\s*:\s*"([^"]{6,400})"'
)
VAR_IMG_THEN_NAME_RE = re.compile(
    r'"(?:imageUrl|image|imgUrl|imagePath)"\s*:\s*"([^"]{6,400})"[\s\S]{0,200}?"(?:name|propertyValueName)"\s*:\s*"([^"]{1,80})"'
)
SCRIPT_IMAGE_RE = re.compile(r'\bhttps?:[^\s"\']+\.(?:jpg|jpeg|png|webp)\b', re.IGNORECASE)
GALLERY_HOST_RE = re.compile(r'alicdn|alibaba|aliimg', re.IGNORECASE)
ALT_BLOCK_RE = re.compile(r'logo|icon|sprite|qr|avatar')
BACKGROUND_URL_RE = re.compile(r'url\(([\'"]?)(.*?)\1\)', re.IGNORECASE)
NON_PHOTO_RE = re.compile(r'@img|sprite|logo|icon|badge|watermark|trademark|assurance|verified|favicon', re.IGNORECASE)
TPS_ICON_RE = re.compile(r'tps-\d+-\d+\.png$', re.IGNORECASE)
KF_HASH_RE = re.compile(r'/kf/h[a-z0-9]{16,}[a-z]?\.(?:png|jpe?g)(?:$|\?)', re.IGNORECASE)
KF_SIZED_RE = re.compile(r'_\d{2,4}x\d{2,4}')
ATTR_KEY_REJECT_RE = re.compile(r'price|usd|\$|moq|min\.?\s*order|order|sold|review', re.IGNORECASE)
RATING_RE = re.compile(r'(\d+(?:\.\d+)?)')
REVIEWS_RE = re.compile(r'(\d[\d,]*)\s*review', re.IGNORECASE)
SOLD_RE = re.compile(r'(\d[\d,]*)\s*\+?\s*sold\b', re.IGNORECASE)
SOLD_BY_RE = re.compile(r'sold\s+by', re.IGNORECASE)
SCRIPT_SOLD_RES = [
    re.compile(r'"tradeCount"\s*:\s*"?(\d[\d,+]*)"?', re.IGNORECASE),
    re.compile(r'"sold"\s*:\s*(\d[\d,]*)', re.IGNORECASE),
    re.compile(r'"salesCount"\s*:\s*(\d[\d,]*)', re.IGNORECASE),
    re.compile(r'"dealCount"\s*:\s*(\d[\d,]*)', re.IGNORECASE),
]
MAX_ATTRIBUTES = 24
MAX_GALLERY = 10
SCRIPT_SCAN_LIMIT = 800000
TEXT_SCAN_LIMIT = 800


def is_bad_image_url(url: str) -> bool:
    """Badges, icons, sprites and unsized hashed KF images."""
    x = (url or '').lower()
    if not x:
        return True
    if NON_PHOTO_RE.search(x) or TPS_ICON_RE.search(x):
        return True
    if KF_HASH_RE.search(x) and not KF_SIZED_RE.search(x):
        return True
    return False


def _https(src: str) -> str:
    return 'https:' + src if src.startswith('//') else src


def _to_int(raw: str) -> Optional[int]:
    try:
        return int(raw.replace(',', '').replace('+', ''))
    except ValueError:
        return None


class AlibabaExtractor:
    """Single-use parser; call run() once per page."""

    def __init__(self, html: str, url: str):
        self.url = url
        self.soup = BeautifulSoup(html, 'html.parser')
        self.body_text = norm_text(self.soup.get_text(' '))
        self.path: List[str] = []
        self.price_text = ''
        self.moq_text = ''
        self.tiers: List[PriceTier] = []

    # Price cascade

    def _tier_from_text(self, text: str):
        price = extract_price_like(text)
        if price:
            self.tiers.append(PriceTier(range=norm_text(text.replace(price, '')), price=price))

    def _range_price(self):
        rp = self.soup.select_one('[data-testid="range-price"]')
        if rp is None:
            return
        self.path.append('range-price')
        for item in rp.select('.price-item'):
            self._tier_from_text(norm_text(item.get_text(' ')))
        for el in rp.find_all(True):
            text = norm_text(el.get_text(' '))
            if re.search(r'Minimum\s+order\s+quantity', text, re.IGNORECASE):
                self.moq_text = extract_moq_like(text) or self.moq_text
                break
        for el in rp.find_all(['span', 'div']):
            text = norm_text(el.get_text(' '))
            if CURRENCY_HINT_RE.search(text):
                self.price_text = extract_price_like(text) or self.price_text
                break

    def _ladder_price(self):
        if self.price_text and self.tiers:
            return
        lp = self.soup.select_one('[data-testid="ladder-price"]')
        if lp is None:
            return
        self.path.append('ladder-price')
        for item in lp.select('.price-item'):
            self._tier_from_text(norm_text(item.get_text(' ')))
        if not self.price_text and self.tiers:
            self.price_text = self.tiers[0].price
        text = norm_text(lp.get_text(' '))
        if not self.moq_text:
            self.moq_text = extract_moq_like(text) or extract_moq_loose(text) or ''

    def _promotion_price(self):
        if self.price_text:
            return
        pf = self.soup.select_one('[data-testid="promotion-fixed-price"], [data-testid="presentation-fixed-price"]')
        if pf is None:
            return
        self.path.append('promotion-fixed-price')
        strong = select_text(pf, 'strong')
        text = norm_text(pf.get_text(' '))
        self.price_text = extract_price_like(strong or text) or extract_price_like(text)
        if not self.moq_text:
            self.moq_text = extract_moq_like(text) or extract_moq_loose(text) or ''

    def _product_price(self):
        if self.price_text:
            return
        pp = self.soup.select_one('[data-testid="product-price"]')
        if pp is None:
            return
        text = norm_text(pp.get_text(' '))
        strong = select_text(pp, 'strong')
        self.price_text = extract_price_like(strong) if strong else extract_price_like(text)
        if self.price_text:
            self.path.append('product-price')
        if not self.moq_text:
            self.moq_text = extract_moq_like(text) or ''
        if not self.tiers and self.price_text:
            self.tiers.append(PriceTier(range=f"{self.moq_text} and up" if self.moq_text else '', price=self.price_text))

    def _ssr_table(self):
        if self.price_text and self.tiers:
            return
        pairs = []
        for td in self.soup.select('.sr-proMainInfo-baseInfo-propertyPrice .only-one-priceNum-tr td'):
            price = extract_price_like(select_text(td, '.only-one-priceNum-td-left'))
            rng = select_text(td, '.only-one-priceNum-price')
            if price and rng:
                pairs.append(PriceTier(range=rng, price=price))
        if pairs and not self.tiers:
            self.path.append(f"ssr-table:{len(pairs)}")
            self.tiers.extend(pairs)
            if not self.price_text:
                self.price_text = pairs[0].price

    def _pricing_text_scan(self):
        if self.price_text and self.tiers:
            return
        found = 0
        for module in self.soup.select('.module_price, [data-testid="range-price"], [data-testid="ladder-price"], [data-testid="product-price"]'):
            raw = module.get_text('\n')
            lines = [s.strip() for s in LINE_SPLIT_RE.split(raw) if s.strip()][:60]
            for line in lines:
                if PRICE_LINE_RE.search(line) and RANGE_LINE_RE.search(line):
                    price = extract_price_like(line)
                    if price:
                        self.tiers.append(PriceTier(range=norm_text(line.replace(price, '')) or line, price=price))
                        found += 1
        if found:
            self.path.append(f"text-scan:{found}")
            if not self.price_text:
                self.price_text = self.tiers[0].price

    def _json_ld_offers(self):
        if self.price_text:
            return
        for data in iter_json_ld(self.soup):
            if not isinstance(data, dict):
                continue
            offers = data.get('offers')
            if isinstance(offers, list):
                offers = offers[0] if offers else None
            if not isinstance(offers, dict):
                continue
            price = offers.get('price') or offers.get('lowPrice')
            if price:
                self.price_text = f"{offers.get('priceCurrency') or 'USD'} {price}"
                self.path.append('json-ld')
                return

    def _meta_price(self):
        if self.price_text:
            return
        price = meta_content(self.soup, 'meta[itemprop="price"]') or meta_content(self.soup, 'meta[property="og:price:amount"]')
        currency = (
            meta_content(self.soup, 'meta[itemprop="priceCurrency"]')
            or meta_content(self.soup, 'meta[property="og:price:currency"]')
            or 'USD'
        )
        if price:
            self.price_text = f"{currency} {price}"
            self.path.append('meta')

    def _body_price(self):
        if self.price_text:
            return
        self.price_text = (
            extract_price_like(select_text(self.soup, '.price, .offer-price, .product-price, .price-box'))
            or extract_price_like(self.body_text)
        )

    def _moq_fallbacks(self):
        if self.moq_text:
            return
        dd_text = ''
        for dt in self.soup.find_all('dt'):
            if re.search(r'Min\.?\s*order', dt.get_text(' '), re.IGNORECASE):
                dd = dt.find_next_sibling('dd')
                if dd is not None:
                    dd_text += ' ' + dd.get_text(' ')
        loose_root = self.soup.select_one('.product-price, [data-testid="product-price"], [data-testid="range-price"], [data-testid="ladder-price"]')
        self.moq_text = (
            extract_moq_like(select_text(self.soup, '.min-order, .moq, .order-quantity, .sku-min-order, .min-order-quantity'))
            or extract_moq_like(select_all_text(self.soup, '.specification, .key-attributes, .trade-details, .list-unstyled'))
            or extract_moq_like(dd_text)
            or extract_moq_like(self.body_text)
            or extract_moq_loose(norm_text(loose_root.get_text(' ')) if loose_root is not None else self.body_text)
            or ''
        )

    # Merchandising blocks

    def _sample_price(self) -> str:
        return extract_price_like(select_text(self.soup, '[data-testid="fortifiedSample"]'))

    def _variations(self, gallery: List[str]) -> List[Variation]:
        variations: List[Variation] = []
        for i, img in enumerate(self.soup.select('[data-testid="sku-list"] [data-testid="sku-list-item"] img')):
            src = _https(img.get('src') or img.get('data-src') or '')
            label = norm_text(img.get('alt'))
            if not label or label.lower() == 'thumb':
                label = f"Image {i + 1}"
            if src:
                variations.append(Variation(label=label, img=src))

        if not variations:
            for script in self.soup.find_all('script'):
                text = (script.string or '')[:500000]
                if not re.search('sku', text, re.IGNORECASE) or not re.search('image', text, re.IGNORECASE):
                    continue
                pairs = [(m.group(1), m.group(2)) for m in VAR_NAME_THEN_IMG_RE.finditer(text)]
                pairs += [(m.group(2), m.group(1)) for m in VAR_IMG_THEN_NAME_RE.finditer(text)]
                for label, src in pairs:
                    src = _https(norm_text(src).replace('\\/', '/'))
                    if src and VARIATION_HOST_RE.search(src):
                        variations.append(Variation(label=norm_text(label) or 'Variant', img=src))

        selected = self.soup.select_one('[data-testid="last-sku-first-item"]')
        if selected is not None:
            label = select_text(selected, 'span') or norm_text(selected.get_text(' '))
            if label:
                og = _https(meta_content(self.soup, 'meta[property="og:image"]'))
                picked = gallery[0] if gallery else og
                if picked.startswith('/'):
                    picked = ''
                match = next((v for v in variations if v.label.lower() == label.lower()), None)
                if match is None:
                    variations.insert(0, Variation(label=label, img=picked))
                elif picked and not match.img:
                    match.img = picked
        if variations:
            self.path.append(f"var:{len(variations)}")
        return variations

    def _customization_options(self) -> List[CustomizationOption]:
        options = []
        for row in self.soup.select('.module_sku_summary_other_customization .id-flex.id-items-center'):
            line = norm_text(row.get_text(' '))
            if not line:
                continue
            add_on = ADDON_RE.search(line)
            moq = OPTION_MOQ_RE.search(line)
            options.append(CustomizationOption(
                name=line.split('+')[0].strip(),
                add_on=add_on.group(0).lstrip('+') if add_on else '',
                moq=moq.group(0).strip('()') if moq else '',
            ))
        return options

    def _supplier_abilities(self) -> List[str]:
        return [
            norm_text(el.get_text(' '))
            for el in self.soup.select('.module_supplier_customization .id-flex.id-items-center')
        ]

    def _protections(self) -> List[Protection]:
        protections = []
        root = self.soup.select_one('.module_ta_plus')
        if root is not None:
            for block in root.select('.id-flex.id-flex-col.id-gap-2'):
                header, body = select_text(block, 'h4'), select_text(block, 'p')
                if header or body:
                    protections.append(Protection(header=header, body=body))
        for widget in self.soup.select('[data-widget="tradeAssurance"]'):
            for card in widget.select('li, .item, .card'):
                header, body = select_text(card, 'h3, .title, .name'), select_text(card, 'p, .desc, .content')
                if header or body:
                    protections.append(Protection(header=header, body=body))
        return protections

    # Attributes

    @staticmethod
    def _looks_like_attribute_key(key: str) -> bool:
        return bool(key) and len(key) <= 64 and not ATTR_KEY_REJECT_RE.search(key)

    @staticmethod
    def _grid_rows(grid) -> List[Attribute]:
        rows = []
        for row in grid.select('[class*="id-grid-cols-[2fr_3fr]"]'):
            cells = row.select('.id-text-sm.id-p-4')
            left = next((c for c in cells if 'id-bg' in ' '.join(c.get('class', []))), cells[0] if cells else None)
            right = next((c for c in cells if c is not left and 'id-bg' not in ' '.join(c.get('class', []))), None)
            if left is None or right is None:
                continue
            name = norm_text(left.get('title') or left.get_text(' '))
            value = norm_text(right.get('title') or right.get_text(' '))
            if name and value:
                rows.append(Attribute(label=name, value=value))
        return rows

    def _attributes(self):
        attrs: List[Attribute] = []
        packaging: List[Attribute] = []

        for tr in self.soup.select('.product-attributes table tr, .attr-list tr, table tr'):
            th, td = select_text(tr, 'th'), select_text(tr, 'td')
            if th and td:
                attrs.append(Attribute(label=th.rstrip(':'), value=td))

        for dl in self.soup.find_all('dl'):
            dt, dd = select_text(dl, 'dt'), select_text(dl, 'dd')
            if dt and dd:
                attrs.append(Attribute(label=dt.rstrip(':'), value=dd))

        for table in self.soup.select('.sr-attribute table, table'):
            for tr in table.find_all('tr'):
                cells = tr.find_all(['th', 'td'])
                tds = tr.find_all('td')
                if not cells or len(tds) < 2:
                    continue
                key = norm_text(cells[0].get_text(' '))
                value = norm_text(tds[1].get_text(' '))
                if key and value and self._looks_like_attribute_key(key):
                    attrs.append(Attribute(label=key.rstrip(':'), value=value))

        module = self.soup.select_one('[data-module-name="module_attribute"] [data-testid="module-attribute"], .module_attribute, .sr-attribute')
        if module is not None:
            grids = module.select('.id-grid.id-grid-cols-2')
            if grids:
                attrs.extend(self._grid_rows(grids[0]))
            pack_header = next((h for h in module.find_all('h3') if re.search('packaging', h.get_text(), re.IGNORECASE)), None)
            if pack_header is not None:
                pack_grid = pack_header.find_next_sibling(class_='id-grid')
                if pack_grid is not None:
                    packaging.extend(self._grid_rows(pack_grid))
            elif len(grids) > 1:
                packaging.extend(self._grid_rows(grids[1]))

        return attrs[:MAX_ATTRIBUTES] if len(attrs) > MAX_ATTRIBUTES else attrs, packaging

    # Images

    def _gallery(self) -> List[str]:
        gallery: List[str] = []

        def push(src: Optional[str]):
            if not src:
                return
            s = _https(src)
            if (s.startswith('http') or s.startswith('/')) and s not in gallery:
                gallery.append(s)

        for script in self.soup.find_all('script'):
            for m in SCRIPT_IMAGE_RE.findall(script.string or ''):
                push(m)
        for img in self.soup.find_all('img'):
            src = img.get('data-src') or img.get('src')
            alt = (img.get('alt') or '').lower()
            if src and GALLERY_HOST_RE.search(src) and not ALT_BLOCK_RE.search(alt):
                push(src)
        return gallery

    def _hero_image(self, gallery: List[str]) -> str:
        for el in self.soup.select('[style*="background"]'):
            m = BACKGROUND_URL_RE.search(el.get('style') or '')
            if m and m.group(2) and not is_bad_image_url(m.group(2)):
                return _https(m.group(2))
        og = meta_content(self.soup, 'meta[property="og:image"]')
        if og and not is_bad_image_url(og):
            return _https(og)
        for g in gallery:
            if not is_bad_image_url(g):
                return g
        return ''

    # Social proof

    def _rating_and_sold(self):
        rating_value: Optional[float] = None
        rating_count: Optional[int] = None
        sold: Optional[int] = None

        cluster = self.soup.select_one('.detail-product-comment')
        if cluster is not None:
            stars = select_text(cluster, '.detail-review-item.detail-star')
            m = RATING_RE.search(stars)
            if m:
                rating_value = float(m.group(1))
            reviews = select_text(cluster, '.detail-review-item.detail-review') or stars
            m = REVIEWS_RE.search(reviews)
            if m:
                rating_count = _to_int(m.group(1))
            for item in cluster.select('.detail-review-item'):
                m = SOLD_RE.search(norm_text(item.get_text(' ')))
                if m:
                    sold = _to_int(m.group(1))

        if sold is None:
            best = None
            body = self.soup.body or self.soup
            for inspected, el in enumerate(body.find_all(True)):
                if inspected > TEXT_SCAN_LIMIT:
                    break
                text = norm_text(el.get_text(' '))
                if not text or len(text) > 120 or SOLD_BY_RE.search(text):
                    continue
                m = SOLD_RE.search(text)
                if m:
                    n = _to_int(m.group(1))
                    if n is not None and (best is None or n > best):
                        best = n
            sold = best

        if sold is None:
            best = None
            for script in self.soup.find_all('script'):
                text = (script.string or '')[:SCRIPT_SCAN_LIMIT]
                for rx in SCRIPT_SOLD_RES:
                    m = rx.search(text)
                    if m:
                        n = _to_int(m.group(1))
                        if n is not None and (best is None or n > best):
                            best = n
            sold = best

        rating = Rating(value=rating_value, count=rating_count) if (rating_value or rating_count) else None
        return rating, (str(sold) if sold is not None else '')

    def _supplier(self) -> SupplierInfo:
        profile = self.soup.select_one('a.company-name, a.store-name, .company-name-wrapper a')
        logo = self.soup.select_one('img[alt*="logo" i], .company-logo img, .shop-logo img, .sr-com-logo img')
        return SupplierInfo(
            name=select_text(self.soup, '.company-name, .store-name, .seller-name, a[title*="Company"], .title-txt a, .company-name-wrapper a'),
            type=select_text(self.soup, '.business-type, .info-businessType, .supplier-type, .seller-type, .company-type'),
            location=select_text(self.soup, '.location, .company-location, .supplier-address, .company-address, .J-offerdetail-shop-address'),
            profile_link=(profile.get('href') or '') if profile is not None else '',
            logo=_https(logo.get('src') or '') if logo is not None else '',
        )

    def _guard(self, step, default=None):
        try:
            return step()
        except Exception as e:
            logger.debug(f"Alibaba extractor step {getattr(step, '__name__', step)} failed for {self.url}: {e}")
            return default

    def run(self) -> ProductDetail:
        title = select_text(self.soup, 'h1.product-title, h1.title, h1, h2') or meta_content(self.soup, 'meta[property="og:title"]')

        for step in (
            self._range_price,
            self._ladder_price,
            self._promotion_price,
            self._product_price,
            self._ssr_table,
            self._pricing_text_scan,
            self._json_ld_offers,
            self._meta_price,
            self._body_price,
            self._moq_fallbacks,
        ):
            self._guard(step)

        gallery = self._guard(self._gallery, []) or []
        attributes, packaging = self._guard(self._attributes, ([], [])) or ([], [])
        rating, sold = self._guard(self._rating_and_sold, (None, '')) or (None, '')

        detail = ProductDetail(
            title=TITLE_TAIL_RE.sub('', norm_text(title)),
            price_text=self.price_text,
            moq_text=self.moq_text,
            price_tiers=[t for t in self.tiers if t.range],
            sample_price=self._guard(self._sample_price, '') or '',
            variations=self._guard(lambda: self._variations(gallery), []) or [],
            customization_options=self._guard(self._customization_options, []) or [],
            supplier_abilities=self._guard(self._supplier_abilities, []) or [],
            shipping_note=select_text(self.soup, '[data-testid="logistics-no-result-text"]'),
            protections=self._guard(self._protections, []) or [],
            attributes=attributes,
            packaging=packaging,
            gallery=gallery[:MAX_GALLERY],
            hero_image=self._guard(lambda: self._hero_image(gallery), '') or '',
            rating=rating,
            sold_count=sold,
            supplier=self._guard(self._supplier, SupplierInfo()) or SupplierInfo(),
            source='alibaba:' + ('+'.join(self.path) if self.path else 'fallback'),
        )
        return detail.normalized()


def extract(html: str, url: str) -> ProductDetail:
    """
    Parse an Alibaba detail page.

    Args:
        html: Page HTML
        url: Page URL

    Returns:
        Normalized ProductDetail
    """
    return AlibabaExtractor(html, url).run()
