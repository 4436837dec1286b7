"""
Category tree lookup for batch ingestion.

The tree is a list of CategoryNode groups; leaves carry the search term used
to query marketplaces. A small default tree ships with the package and a JSON
file with the same shape can replace it:

    [{"key": "...", "label": "...", "children": [...], "leaves": [
        {"key": "...", "label": "...", "term": "...", "aliases": ["..."]}
    ]}]
"""

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union


@dataclass
class Leaf:
    key: str
    label: str
    term: str
    aliases: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {'key': self.key, 'label': self.label, 'term': self.term, 'aliases': list(self.aliases)}


@dataclass
class CategoryNode:
    key: str
    label: str
    children: List['CategoryNode'] = field(default_factory=list)
    leaves: List[Leaf] = field(default_factory=list)


def slugify(label: str) -> str:
    """Kebab-case key; '&' reads as 'and'."""
    value = (label or '').lower().replace('&', ' and ')
    value = re.sub(r'[^a-z0-9]+', '-', value)
    return re.sub(r'-{2,}', '-', value).strip('-')


def _leaf(label: str, term: Optional[str] = None, aliases: Sequence[str] = ()) -> Leaf:
    return Leaf(key=slugify(label), label=label, term=term or label, aliases=list(aliases))


def _group(label: str, children: Sequence[CategoryNode] = (), leaves: Sequence[Leaf] = ()) -> CategoryNode:
    return CategoryNode(key=slugify(label), label=label, children=list(children), leaves=list(leaves))


DEFAULT_TAXONOMY: List[CategoryNode] = [
    _group('Consumer Electronics', children=[
        _group('Audio', leaves=[
            _leaf('Wireless Earbuds', aliases=['TWS Earbuds']),
            _leaf('Bluetooth Speaker'),
            _leaf('Neckband Earphones'),
        ]),
        _group('Mobile Accessories', leaves=[
            _leaf('Power Bank'),
            _leaf('Mobile Charger', aliases=['Fast Charger']),
        ]),
    ]),
    _group('Kitchen & Dining', children=[
        _group('Cookware', leaves=[
            _leaf('Steel Kadai', aliases=['Stainless Steel Kadai']),
            _leaf('Pressure Cooker'),
            _leaf('Non Stick Tawa'),
        ]),
        _group('Kitchen Storage', leaves=[
            _leaf('Airtight Containers'),
            _leaf('Steel Water Bottle'),
        ]),
    ]),
    _group('Apparel & Garments', children=[
        _group('Mens Wear', leaves=[
            _leaf('Mens Cotton T Shirt', aliases=['Men T-Shirt']),
            _leaf('Mens Formal Shirt'),
        ]),
        _group('Womens Wear', leaves=[
            _leaf('Cotton Kurti'),
            _leaf('Printed Saree'),
        ]),
    ]),
    _group('Home Decor', children=[
        _group('Lighting', leaves=[
            _leaf('LED Bulb'),
            _leaf('Decorative Wall Lamp'),
        ]),
    ]),
]


def _node_from_dict(data: Dict) -> CategoryNode:
    label = str(data.get('label') or data.get('key') or '')
    leaves = []
    for raw in data.get('leaves') or []:
        leaf_label = str(raw.get('label') or raw.get('term') or '')
        if not leaf_label:
            continue
        leaves.append(Leaf(
            key=str(raw.get('key') or slugify(leaf_label)),
            label=leaf_label,
            term=str(raw.get('term') or leaf_label),
            aliases=[str(a) for a in raw.get('aliases') or []],
        ))
    return CategoryNode(
        key=str(data.get('key') or slugify(label)),
        label=label,
        children=[_node_from_dict(c) for c in data.get('children') or [] if isinstance(c, dict)],
        leaves=leaves,
    )


def load_taxonomy(path: Optional[Union[str, Path]] = None) -> List[CategoryNode]:
    """
    Load a category tree.

    Args:
        path: JSON file; None returns the built-in tree

    Returns:
        Top-level category nodes

    Raises:
        OSError: If the file cannot be read
        ValueError: If the file is not a JSON list of nodes
    """
    if path is None:
        return DEFAULT_TAXONOMY
    data = json.loads(Path(path).read_text(encoding='utf-8'))
    if not isinstance(data, list):
        raise ValueError(f"Taxonomy file must contain a list of nodes: {path}")
    return [_node_from_dict(n) for n in data if isinstance(n, dict)]


def flatten_leaves(nodes: Optional[Sequence[CategoryNode]] = None) -> List[Leaf]:
    """All leaves, depth first, own leaves before children's."""
    out: List[Leaf] = []

    def visit(node: CategoryNode):
        out.extend(node.leaves)
        for child in node.children:
            visit(child)

    for node in (DEFAULT_TAXONOMY if nodes is None else nodes):
        visit(node)
    return out


def find_leaf(key: str, nodes: Optional[Sequence[CategoryNode]] = None) -> Optional[Leaf]:
    return next((leaf for leaf in flatten_leaves(nodes) if leaf.key == key), None)


def get_search_terms(key: str, nodes: Optional[Sequence[CategoryNode]] = None) -> List[str]:
    """
    Search terms for a leaf or group key, most specific first.

    A leaf yields its term and aliases, then its subgroup label, then the
    top-level label. A group yields its own label, its first few leaf terms,
    the first leaf term of each child group, then the top-level label.
    """
    nodes = DEFAULT_TAXONOMY if nodes is None else nodes
    terms: List[str] = []

    def add(term: str):
        if term and term not in terms:
            terms.append(term)

    def add_leaf(leaf: Leaf):
        add(leaf.term)
        for alias in leaf.aliases:
            add(alias)

    def walk(level: Sequence[CategoryNode], parents: List[CategoryNode]) -> bool:
        for node in level:
            if node.key == key:
                add(node.label)
                for leaf in node.leaves[:3]:
                    add_leaf(leaf)
                for child in node.children:
                    if child.leaves:
                        add_leaf(child.leaves[0])
                if parents:
                    add(parents[0].label)
                return True
            leaf = next((l for l in node.leaves if l.key == key), None)
            if leaf is not None:
                add_leaf(leaf)
                add(node.label)
                if parents:
                    add(parents[0].label)
                return True
            if walk(node.children, parents + [node]):
                return True
        return False

    walk(nodes, [])
    return terms
