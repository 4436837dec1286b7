#!/usr/bin/env python3
"""
Batch leaf ingestion.

Walks every taxonomy leaf, searches its terms, keeps quality-filtered unique
listings up to a per-leaf quota and upserts them. A resume file records the
kept count per leaf so an interrupted run picks up where it stopped.

Usage:
    cd backend
    python -m sourcing.ingest [options]

Examples:
    python -m sourcing.ingest --max-leaves 3 --debug --dry
    python -m sourcing.ingest --limit 80 --terms 3 --resume data/ingest-progress.json
    python -m sourcing.ingest --headless --taxonomy data/taxonomy.json
"""

import os
import sys
import json
import asyncio
import argparse
import logging
import tempfile
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from api.config import settings

from .base import Colors, ExternalListing, IngestResult, SearchOptions
from .quality import classify, passes_quality, sanitize_title, term_to_category_slug
from .taxonomy import Leaf, flatten_leaves, get_search_terms, load_taxonomy
from .utils import parse_moq_quantity, uniq_by

logger = logging.getLogger(__name__)

SearchFn = Callable[[str, int, SearchOptions], Awaitable[List[ExternalListing]]]


class Progress:
    """Per-leaf kept counts, optionally backed by a JSON file."""

    def __init__(self, path: Optional[str] = None, counts: Optional[Dict[str, int]] = None):
        self.path = path
        self.counts: Dict[str, int] = dict(counts or {})

    @classmethod
    def load(cls, path: Optional[str]) -> 'Progress':
        """Read a resume file; a missing or unreadable file gives an empty map."""
        if not path:
            return cls()
        try:
            data = json.loads(Path(path).read_text(encoding='utf-8') or '{}')
        except (OSError, ValueError) as e:
            logger.debug(f"No usable progress file at {path}: {e}")
            return cls(path)
        if not isinstance(data, dict):
            return cls(path)
        counts = {}
        for key, value in data.items():
            try:
                counts[str(key)] = int(value)
            except (TypeError, ValueError):
                continue
        return cls(path, counts)

    def get(self, key: str) -> int:
        return self.counts.get(key, 0)

    def add(self, key: str, amount: int):
        if amount > 0:
            self.counts[key] = self.get(key) + amount

    def save(self):
        """Write atomically (temp file, then replace)."""
        if not self.path:
            return
        target = Path(self.path)
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(target.parent), prefix=f".{target.name}.", suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(self.counts, f, indent=2, sort_keys=True)
            os.replace(tmp, target)
        except OSError as e:
            logger.warning(f"Failed to save progress to {self.path}: {e}")
            if os.path.exists(tmp):
                os.unlink(tmp)

    def to_dict(self) -> Dict[str, int]:
        return dict(self.counts)


@dataclass
class IngestOptions:
    """Batch run options; see clamped() for the accepted ranges."""
    limit: int = 160
    terms: int = 2
    prefetch: int = 60
    threshold: int = 30
    floor: int = 10
    headless: bool = False
    min_informative: int = 2
    allow_accessories: bool = False
    debug: bool = False
    dry: bool = False
    resume: Optional[str] = None
    max_leaves: Optional[int] = None
    debug_term: Optional[str] = None

    def clamped(self) -> 'IngestOptions':
        """Copy with every numeric option forced into its valid range."""
        prefetch = min(120, max(20, self.prefetch))
        threshold = min(prefetch, max(5, self.threshold))
        return replace(
            self,
            limit=min(400, max(40, self.limit)),
            terms=min(5, max(1, self.terms)),
            prefetch=prefetch,
            threshold=threshold,
            floor=min(threshold, max(1, self.floor)),
            min_informative=max(0, self.min_informative),
            max_leaves=max(1, self.max_leaves) if self.max_leaves is not None else None,
            debug_term=(self.debug_term or '').strip().lower() or None,
        )


class BatchLeafIngestionController:
    """
    Fill taxonomy leaves with listings, one term at a time.

    Usage:
        controller = BatchLeafIngestionController(
            IngestOptions(limit=80), manager.search, flatten_leaves(),
            get_search_terms, store=manager.store,
        )
        result = await controller.run()
    """

    def __init__(
        self,
        options: IngestOptions,
        search: SearchFn,
        leaves: Sequence[Leaf],
        terms_for: Callable[[str], List[str]] = get_search_terms,
        store=None,
        resume_path: Optional[str] = None,
    ):
        """
        Initialize the controller.

        Args:
            options: Run options, used as given
            search: Async search(term, count, SearchOptions) -> listings
            leaves: Leaves to fill, in order
            terms_for: Leaf key -> ordered search terms
            store: Object with upsert_listings(listings); optional when dry
            resume_path: Progress file; defaults to options.resume
        """
        self.options = options
        self.search = search
        self.leaves = list(leaves)
        self.terms_for = terms_for
        self.store = store
        self.progress = Progress.load(resume_path or options.resume)
        self.result = IngestResult(started_at=datetime.now(timezone.utc))

    @property
    def global_kept(self) -> int:
        return self.result.kept

    async def _search(self, term: str, count: int, options: SearchOptions) -> List[ExternalListing]:
        try:
            return await self.search(term, count, options) or []
        except Exception as e:
            logger.debug(f"Search error for '{term}': {e}")
            return []

    async def fetch_term(self, term: str, leaf_kept: int) -> Optional[List[ExternalListing]]:
        """
        Prefetch a term and decide how much of it to use.

        Returns:
            Items to filter, or None when the term falls below the floor
        """
        opts = self.options
        items = await self._search(term, opts.prefetch, SearchOptions(headless=False, debug=opts.debug))
        if not items and opts.headless:
            retry = await self._search(
                term, opts.prefetch, SearchOptions(headless=True, force_headless=True, debug=opts.debug)
            )
            if retry:
                logger.debug(f"Headless retry recovered {len(retry)} for '{term}'")
                items = retry

        logger.debug(f"Prefetch '{term}' got={len(items)} threshold={opts.threshold} floor={opts.floor}")

        if len(items) < opts.floor:
            logger.debug(f"Below floor ({len(items)} < {opts.floor}), skipping '{term}'")
            return None
        if len(items) < opts.threshold:
            return items

        deeper_limit = min(opts.limit, 3 * (opts.limit - leaf_kept))
        if deeper_limit > len(items):
            deeper = await self._search(term, deeper_limit, SearchOptions(headless=opts.headless, debug=opts.debug))
            if len(deeper) > len(items):
                items = deeper
        return items

    def select(
        self,
        leaf: Leaf,
        term: str,
        items: List[ExternalListing],
        seen: set,
        room: int,
    ) -> List[ExternalListing]:
        """Apply the MOQ, quality and duplicate rules; return at most room records."""
        records: List[ExternalListing] = []
        term_slug = term_to_category_slug(term)
        term_tokens = uniq_by([term] + term.split(), lambda t: t)

        for item in items:
            if len(records) >= room:
                break
            moq = parse_moq_quantity(item.moq)
            if moq is not None and moq <= 1:
                self.result.filtered_moq += 1
                continue

            title = sanitize_title(item.title or 'Product')
            cls = classify(title, term)
            if not passes_quality(cls, self.options.min_informative, self.options.allow_accessories):
                self.result.filtered_quality += 1
                logger.debug(f"Quality reject '{title}'")
                continue
            if cls.canonical_key in seen:
                self.result.duplicates += 1
                continue
            seen.add(cls.canonical_key)

            records.append(replace(
                item,
                title=title,
                categories=uniq_by([leaf.key, term_slug] + list(cls.groups), lambda c: c),
                terms=list(term_tokens),
            ))
        return records

    def persist(self, records: List[ExternalListing]) -> bool:
        if self.options.dry or self.store is None:
            return True
        try:
            self.store.upsert_listings(records)
            return True
        except Exception as e:
            logger.warning(f"Upsert of {len(records)} listings failed: {e}")
            return False

    async def run_leaf(self, leaf: Leaf):
        opts = self.options
        leaf_kept = self.progress.get(leaf.key)
        terms = self.terms_for(leaf.key)[:opts.terms]
        seen: set = set()
        logger.debug(f">>> leaf {leaf.key} terms={'|'.join(terms)} preKept={leaf_kept}")

        for term in terms:
            if leaf_kept >= opts.limit:
                break
            if opts.debug_term and opts.debug_term not in term.lower():
                logger.debug(f"Skip term '{term}' (debug-term filter)")
                continue

            self.result.terms_tried += 1
            items = await self.fetch_term(term, leaf_kept)
            if items is None:
                self.result.terms_skipped += 1
                continue

            records = self.select(leaf, term, items, seen, opts.limit - leaf_kept)
            if records and self.persist(records):
                leaf_kept += len(records)
                self.result.kept += len(records)
                self.result.per_leaf[leaf.key] = self.result.per_leaf.get(leaf.key, 0) + len(records)
                self.progress.add(leaf.key, len(records))
                logger.debug(f"Kept leaf={leaf.key} term='{term}' batch={len(records)} leafKept={leaf_kept}")
            self.progress.save()

    async def run(self) -> IngestResult:
        """
        Process leaves in order until max_leaves is reached.

        Returns:
            IngestResult with counters for the run
        """
        opts = self.options
        total = min(len(self.leaves), opts.max_leaves) if opts.max_leaves else len(self.leaves)
        logger.info(
            f"{Colors.bold('Ingest start')} leaves={total}/{len(self.leaves)} limit={opts.limit} "
            f"terms={opts.terms} prefetch={opts.prefetch} threshold={opts.threshold} "
            f"floor={opts.floor} headless={opts.headless}"
        )

        for idx, leaf in enumerate(self.leaves[:total], 1):
            if self.progress.get(leaf.key) >= opts.limit:
                self.result.leaves_skipped += 1
                logger.debug(f"Skip leaf={leaf.key} already kept={self.progress.get(leaf.key)}")
                continue
            await self.run_leaf(leaf)
            self.result.leaves_processed += 1
            logger.info(
                f"{Colors.bold(f'[{idx}/{total}]')} {leaf.key} "
                f"{Colors.green('+' + str(self.result.per_leaf.get(leaf.key, 0)))} "
                f"{Colors.gray(f'(total {self.progress.get(leaf.key)})')}"
            )

        self.progress.save()
        self.result.finish()
        return self.result


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Fill taxonomy leaves with marketplace listings')
    parser.add_argument('--limit', type=int, default=settings.ingest_limit, help='Target kept listings per leaf (40-400)')
    parser.add_argument('--terms', type=int, default=settings.ingest_terms, help='Search terms tried per leaf (1-5)')
    parser.add_argument('--prefetch', type=int, default=settings.ingest_prefetch, help='Probe size per term (20-120)')
    parser.add_argument('--threshold', type=int, default=settings.ingest_threshold, help='Probe size that triggers a deeper fetch')
    parser.add_argument('--floor', type=int, default=settings.ingest_floor, help='Probe size below which a term is skipped')
    parser.add_argument('--headless', action='store_true', help='Allow headless escalation')
    parser.add_argument('--min-informative', type=int, default=settings.ingest_min_informative, help='Minimum informative title tokens')
    parser.add_argument('--allow-accessories', action='store_true', help='Keep accessory/spare-part listings')
    parser.add_argument('--debug', action='store_true', help='Verbose logging')
    parser.add_argument('--dry', action='store_true', help='Do not persist')
    parser.add_argument('--resume', type=str, default=None, help='JSON progress file')
    parser.add_argument('--max-leaves', type=int, default=None, help='Stop after this many leaves')
    parser.add_argument('--debug-term', type=str, default=None, help='Only run terms containing this text')
    parser.add_argument('--taxonomy', type=str, default=settings.taxonomy_path, help='Load leaves from a JSON taxonomy file')
    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse CLI flags; numeric options are clamped into range."""
    args = build_parser().parse_args(argv)
    args.options = IngestOptions(
        limit=args.limit,
        terms=args.terms,
        prefetch=args.prefetch,
        threshold=args.threshold,
        floor=args.floor,
        headless=args.headless,
        min_informative=args.min_informative,
        allow_accessories=args.allow_accessories,
        debug=args.debug,
        dry=args.dry,
        resume=(args.resume or '').strip() or None,
        max_leaves=args.max_leaves,
        debug_term=args.debug_term,
    ).clamped()
    return args


async def main(argv: Optional[Sequence[str]] = None) -> IngestResult:
    args = parse_args(argv)
    options: IngestOptions = args.options

    logging.basicConfig(
        level=logging.DEBUG if options.debug else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    from api.database import SessionLocal, init_db
    from .manager import SourcingManager

    nodes = load_taxonomy(args.taxonomy)
    leaves = flatten_leaves(nodes)

    if not options.dry:
        init_db()
    manager = SourcingManager.from_settings(
        settings,
        session_factory=None if options.dry else SessionLocal,
        headless=options.headless,
    )
    if options.resume:
        logger.info(f"Resume file: {options.resume}")

    try:
        controller = BatchLeafIngestionController(
            options,
            manager.search,
            leaves,
            terms_for=lambda key: get_search_terms(key, nodes),
            store=manager.store,
        )
        result = await controller.run()
    finally:
        await manager.close()

    logger.info(
        f"Ingest summary: leaves={result.leaves_processed} skipped={result.leaves_skipped} "
        f"terms={result.terms_tried} terms_skipped={result.terms_skipped} "
        f"filtered={{moq:{result.filtered_moq},quality:{result.filtered_quality},dup:{result.duplicates}}}"
    )
    logger.info(f"done global_kept={result.kept}")
    return result


def cli(argv: Optional[Sequence[str]] = None):
    """Console entry point; exit code 1 on any unhandled error."""
    try:
        asyncio.run(main(argv))
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        sys.exit(130)
    except Exception as e:
        logger.exception(f"Ingest failed: {e}")
        sys.exit(1)
    sys.exit(0)


if __name__ == '__main__':
    cli()
