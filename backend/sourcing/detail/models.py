"""
Typed product-detail payload.

Every site extractor produces a ProductDetail and finishes with
normalized(), which cleans text, drops boilerplate, de-duplicates list
fields and applies caps. to_dict()/from_dict() round-trip the JSON persisted
in SavedListing.detail_json.
"""

from dataclasses import dataclass, field, asdict, fields
from typing import Any, Dict, List, Optional

from ..utils import norm_text, is_placeholder, uniq_by, parse_moq_quantity

MAX_ATTRIBUTES = 24
MAX_GALLERY = 10


@dataclass
class PriceTier:
    range: str = ''
    price: str = ''


@dataclass
class Variation:
    label: str = ''
    img: str = ''


@dataclass
class CustomizationOption:
    name: str = ''
    add_on: str = ''
    moq: str = ''


@dataclass
class Protection:
    header: str = ''
    body: str = ''


@dataclass
class Attribute:
    label: str = ''
    value: str = ''


@dataclass
class Rating:
    value: Optional[float] = None
    count: Optional[int] = None


@dataclass
class SupplierInfo:
    name: str = ''
    type: str = ''
    location: str = ''
    member_since: str = ''
    badges: List[str] = field(default_factory=list)
    profile_link: str = ''
    logo: str = ''


def _build(cls, data):
    """Instantiate a dataclass from a dict, ignoring unknown keys."""
    if isinstance(data, cls):
        return data
    if not isinstance(data, dict):
        return None
    names = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in names})


def _build_list(cls, items) -> list:
    if not isinstance(items, list):
        return []
    return [obj for obj in (_build(cls, i) for i in items) if obj is not None]


def _clean(value) -> str:
    return norm_text(value if isinstance(value, str) else ('' if value is None else str(value)))


@dataclass
class ProductDetail:
    """Everything shown on a listing's detail view."""
    title: str = ''
    price_text: str = ''
    moq_text: str = ''
    price_tiers: List[PriceTier] = field(default_factory=list)
    sample_price: str = ''
    variations: List[Variation] = field(default_factory=list)
    customization_options: List[CustomizationOption] = field(default_factory=list)
    supplier_abilities: List[str] = field(default_factory=list)
    shipping_note: str = ''
    protections: List[Protection] = field(default_factory=list)
    attributes: List[Attribute] = field(default_factory=list)
    packaging: List[Attribute] = field(default_factory=list)
    gallery: List[str] = field(default_factory=list)
    hero_image: str = ''
    rating: Optional[Rating] = None
    sold_count: str = ''
    supplier: SupplierInfo = field(default_factory=SupplierInfo)
    source: str = ''

    def normalized(self) -> 'ProductDetail':
        """
        Return a cleaned copy.

        Text is whitespace-normalized, placeholder values are removed, list
        fields are de-duplicated case-insensitively on a composite key,
        attributes and gallery are capped, and a single synthetic tier is
        added when a price is known but no tiers were parsed.
        """
        title = _clean(self.title)
        price_text = _clean(self.price_text)
        moq_text = _clean(self.moq_text)

        tiers = [PriceTier(_clean(t.range), _clean(t.price)) for t in self.price_tiers]
        tiers = uniq_by([t for t in tiers if t.price], lambda t: f"{t.price}|{t.range}")
        if price_text and not tiers:
            qty = parse_moq_quantity(moq_text) or 1
            tiers = [PriceTier(range=f"≥ {qty}", price=price_text)]

        variations = [Variation(_clean(v.label), _clean(v.img)) for v in self.variations]
        variations = uniq_by(
            [v for v in variations if v.img and not is_placeholder(v.label or v.img)],
            lambda v: v.img,
        )

        options = [CustomizationOption(_clean(o.name), _clean(o.add_on), _clean(o.moq)) for o in self.customization_options]
        options = uniq_by(
            [o for o in options if o.name and not is_placeholder(o.name)],
            lambda o: f"{o.name}|{o.add_on}|{o.moq}",
        )

        abilities = uniq_by(
            [a for a in (_clean(a) for a in self.supplier_abilities) if not is_placeholder(a)],
            lambda a: a,
        )

        protections = [Protection(_clean(p.header), _clean(p.body)) for p in self.protections]
        protections = uniq_by(
            [p for p in protections if (p.header and not is_placeholder(p.header)) or p.body],
            lambda p: f"{p.header}|{p.body}",
        )

        attributes = self._clean_attributes(self.attributes)[:MAX_ATTRIBUTES]
        packaging = self._clean_attributes(self.packaging)

        gallery = uniq_by([g for g in (_clean(g) for g in self.gallery) if g], lambda g: g)[:MAX_GALLERY]

        s = self.supplier or SupplierInfo()
        supplier = SupplierInfo(
            name=_clean(s.name),
            type=_clean(s.type),
            location=_clean(s.location),
            member_since=_clean(s.member_since),
            badges=uniq_by([b for b in (_clean(b) for b in s.badges) if not is_placeholder(b)], lambda b: b),
            profile_link=_clean(s.profile_link),
            logo=_clean(s.logo),
        )

        rating = self.rating
        if rating is not None and rating.value is None and rating.count is None:
            rating = None

        return ProductDetail(
            title=title,
            price_text=price_text,
            moq_text=moq_text,
            price_tiers=tiers,
            sample_price=_clean(self.sample_price),
            variations=variations,
            customization_options=options,
            supplier_abilities=abilities,
            shipping_note=_clean(self.shipping_note),
            protections=protections,
            attributes=attributes,
            packaging=packaging,
            gallery=gallery,
            hero_image=_clean(self.hero_image),
            rating=rating,
            sold_count=_clean(self.sold_count),
            supplier=supplier,
            source=self.source,
        )

    @staticmethod
    def _clean_attributes(items: List[Attribute]) -> List[Attribute]:
        cleaned = [Attribute(_clean(a.label), _clean(a.value)) for a in items]
        cleaned = [a for a in cleaned if a.label and a.value and not is_placeholder(a.value)]
        return uniq_by(cleaned, lambda a: f"{a.label}|{a.value}")

    def is_empty(self) -> bool:
        return not (self.title or self.price_text or self.attributes or self.gallery or self.hero_image)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'ProductDetail':
        """Rebuild from persisted JSON; missing keys take defaults, unknown keys are ignored."""
        if not isinstance(data, dict):
            return cls()
        rating = _build(Rating, data.get('rating'))
        supplier = _build(SupplierInfo, data.get('supplier')) or SupplierInfo()
        if not isinstance(supplier.badges, list):
            supplier.badges = []
        return cls(
            title=_clean(data.get('title')),
            price_text=_clean(data.get('price_text')),
            moq_text=_clean(data.get('moq_text')),
            price_tiers=_build_list(PriceTier, data.get('price_tiers')),
            sample_price=_clean(data.get('sample_price')),
            variations=_build_list(Variation, data.get('variations')),
            customization_options=_build_list(CustomizationOption, data.get('customization_options')),
            supplier_abilities=[a for a in data.get('supplier_abilities') or [] if isinstance(a, str)],
            shipping_note=_clean(data.get('shipping_note')),
            protections=_build_list(Protection, data.get('protections')),
            attributes=_build_list(Attribute, data.get('attributes')),
            packaging=_build_list(Attribute, data.get('packaging')),
            gallery=[g for g in data.get('gallery') or [] if isinstance(g, str)],
            hero_image=_clean(data.get('hero_image')),
            rating=rating,
            sold_count=_clean(data.get('sold_count')),
            supplier=supplier,
            source=_clean(data.get('source')),
        )


def normalize_detail(detail: ProductDetail) -> ProductDetail:
    return detail.normalized()
