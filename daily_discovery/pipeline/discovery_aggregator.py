"""
Discovery aggregation engine.

For one category: pick the highest-weighted candidate sources, fetch them
concurrently, dedupe and freshness-filter the pool, rebalance it across
sources, then curate it with a language model or format it
deterministically. Every failure along the way degrades the result instead
of raising.
"""

import asyncio
import logging
import math
import re
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional, Sequence
from urllib.parse import urlparse

from daily_discovery.config.settings import DiscoverySettings
from daily_discovery.models.content import (
    CuratedItem,
    DiscoveryMeta,
    DiscoveryResult,
    FetchOutcome,
    FetchStatus,
    RawCandidateItem,
    SourceDefinition,
    SourceStatus,
    format_link,
    isoformat_timestamp,
)
from daily_discovery.services.curation_service import CurationService
from daily_discovery.services.fetch_strategies import build_strategy_registry
from daily_discovery.services.http_client import HttpClient, describe_error
from daily_discovery.services.source_fetcher import DiscoveryState, SourceFetcher
from daily_discovery.services.source_registry import CategoryRegistry, SourceRegistry, sort_sources_by_weight
from daily_discovery.utils.logging_config import PerformanceTracker, log_pipeline_metrics


DEFAULT_LIMIT = 6
MIN_LIMIT = 3
MAX_LIMIT = 16
GENERIC_POOL_SIZE = 12
MAX_FETCHED_SOURCES = 8
MIN_PER_SOURCE_LIMIT = 4
CURATION_POOL_FACTOR = 3

DIRECT_CATEGORIES = ("github", "producthunt")

RECENT_CONTENT_REASON = "recent content"
LAST_RESORT_REASON = "Preset content (no sources available)"

AGGREGATED_ID = "all"
AGGREGATED_TITLE = "AI Highlights"
AGGREGATED_DESCRIPTION = "AI generated picks merged from every category you follow"

DYNAMIC_SITE_WEIGHT = 1.0
DYNAMIC_SEARCH_WEIGHT = 0.9

SLUG_INVALID_PATTERN = re.compile(r"[^a-z0-9-]")
SLUG_SPACE_PATTERN = re.compile(r"\s+")


class AggregationError(Exception):
    """Raised for malformed aggregation requests"""
    pass


def clamp_limit(value: Any, default: int = DEFAULT_LIMIT) -> int:
    """
    Clamp a requested item count into [3, 16], rounding half up.

    Missing, zero, non-numeric, NaN and infinite values give ``default``.
    """
    if value is None or isinstance(value, bool):
        return default
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(numeric) or numeric == 0:
        return default
    return max(MIN_LIMIT, min(int(math.floor(numeric + 0.5)), MAX_LIMIT))


def to_slug(value: str) -> str:
    lowered = SLUG_SPACE_PATTERN.sub("-", (value or "").strip().lower())
    return SLUG_INVALID_PATTERN.sub("", lowered)


def dedupe_items(items: Iterable[RawCandidateItem]) -> List[RawCandidateItem]:
    """First occurrence wins, keyed by link (title when link is empty)."""
    seen = {}
    for item in items:
        key = item.dedupe_key
        if key not in seen:
            seen[key] = item
    return list(seen.values())


def rebalance_by_source(items: List[RawCandidateItem], source_order: Sequence[str],
                        desired: int) -> List[RawCandidateItem]:
    """
    Round-robin over per-source buckets in ``source_order``, one item per
    source per round, until ``desired`` items are picked or every bucket is
    exhausted. Pools already within ``desired`` are returned untouched.
    """
    if len(items) <= desired:
        return items

    buckets: Dict[str, List[RawCandidateItem]] = {}
    for item in items:
        buckets.setdefault(item.source_id, []).append(item)

    result: List[RawCandidateItem] = []
    round_index = 0
    while len(result) < desired:
        added = False
        for source_id in source_order:
            bucket = buckets.get(source_id)
            if not bucket or round_index >= len(bucket):
                continue
            result.append(bucket[round_index])
            added = True
            if len(result) >= desired:
                break
        if not added:
            break
        round_index += 1

    return result


def merge_source_statuses(results: Iterable[DiscoveryResult]) -> List[SourceStatus]:
    """Keep the most severe status per source id; on a tie the later one wins."""
    merged: Dict[str, SourceStatus] = {}
    for result in results:
        for status in result.meta.source_statuses:
            existing = merged.get(status.id)
            if existing is None or status.status.severity >= existing.status.severity:
                merged[status.id] = status
    return list(merged.values())


def build_fallback_highlights(category_id: str, category_name: str, raw_items: List[RawCandidateItem],
                              limit: int) -> List[CuratedItem]:
    """Format raw items as curated items without a model."""
    return [
        CuratedItem(
            title=item.title or f"{category_name} Insight {index}",
            summary=item.summary or f"Latest discussion from {item.source_name}.",
            link=format_link(item.link, "#"),
            category_id=category_id,
            category_name=category_name,
            source_id=item.source_id,
            source_name=item.source_name,
            language=item.language,
            reason=item.reason or f"From {item.source_name}",
        )
        for index, item in enumerate(raw_items[:limit], start=1)
    ]


def annotate_recent(item: RawCandidateItem) -> RawCandidateItem:
    reason = f"{item.reason} · {RECENT_CONTENT_REASON}" if item.reason else RECENT_CONTENT_REASON
    return replace(item, reason=reason)


class DiscoveryAggregator:
    """
    Entry point for category, dynamic-category and cross-category discovery.
    """

    def __init__(
        self,
        sources: SourceRegistry,
        categories: CategoryRegistry,
        fetcher: SourceFetcher,
        curator: Optional[CurationService],
        state: DiscoveryState,
        settings: Optional[DiscoverySettings] = None,
        http: Optional[HttpClient] = None,
    ):
        self.sources = sources
        self.categories = categories
        self.fetcher = fetcher
        self.curator = curator
        self.state = state
        self.settings = settings or DiscoverySettings()
        self.http = http
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_settings(
        cls,
        settings: DiscoverySettings,
        state: Optional[DiscoveryState] = None,
        http: Optional[HttpClient] = None,
    ) -> "DiscoveryAggregator":
        """Wire the default registries, strategies and curation service."""
        state = state or DiscoveryState()
        http = http or HttpClient(retries=settings.fetch_retries)
        categories = CategoryRegistry()
        strategies = build_strategy_registry(http, settings, state.feed_cache, state.search_cache)
        return cls(
            sources=SourceRegistry(),
            categories=categories,
            fetcher=SourceFetcher(strategies, state),
            curator=CurationService(settings, http, categories),
            state=state,
            settings=settings,
            http=http,
        )

    async def close(self) -> None:
        if self.http is not None:
            await self.http.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    def _candidate_sources(self, category_id: str, override: Optional[List[SourceDefinition]]) -> List[SourceDefinition]:
        if override:
            candidates = list(override)
        elif self.categories.get(category_id) is not None:
            candidates = self.sources.by_category(category_id)
        else:
            candidates = []
        if not candidates:
            candidates = self.sources.top_weighted(GENERIC_POOL_SIZE)
        return sort_sources_by_weight(candidates)[:MAX_FETCHED_SOURCES]

    def _status_for(self, source: SourceDefinition, outcome: FetchOutcome) -> SourceStatus:
        health = self.state.health_for(source.id)
        return SourceStatus(
            id=source.id,
            title=source.title,
            status=outcome.status,
            used_fallback=outcome.used_fallback,
            from_cache=outcome.from_cache,
            last_success_at=isoformat_timestamp(health.last_success_at) if health else None,
            last_failure_at=isoformat_timestamp(health.last_failure_at) if health else None,
            message=outcome.message,
        )

    async def _fetch_sources(self, sources: List[SourceDefinition], per_source_limit: int):
        outcomes = await asyncio.gather(
            *(self.fetcher.fetch(source, per_source_limit) for source in sources),
            return_exceptions=True,
        )

        raw_items: List[RawCandidateItem] = []
        statuses: List[SourceStatus] = []
        for source, outcome in zip(sources, outcomes):
            if isinstance(outcome, BaseException):
                message = describe_error(outcome) or "Unexpected error"
                self.logger.error(f"Fetch task for {source.id} raised: {message}")
                self.state.record_failure(source, message)
                outcome = FetchOutcome(
                    status=FetchStatus.ERROR,
                    items=[],
                    used_fallback=False,
                    from_cache=False,
                    fetched_at=self.state.clock(),
                    message=message,
                )
            raw_items.extend(outcome.items)
            statuses.append(self._status_for(source, outcome))
        return raw_items, statuses

    def _last_resort_pool(self, sources: List[SourceDefinition]) -> List[RawCandidateItem]:
        return [
            RawCandidateItem(
                title=item.title,
                link=item.link,
                summary=item.summary,
                source_id=source.id,
                source_name=source.title,
                language=source.language,
                reason=LAST_RESORT_REASON,
                used_fallback=True,
            )
            for source in sources
            for item in source.fallback_items
        ]

    async def aggregate(
        self,
        category_id: str,
        category_name: str,
        user_prompt: str,
        limit: Any = None,
        sources: Optional[List[SourceDefinition]] = None,
    ) -> DiscoveryResult:
        """Run the full discovery pipeline for one category."""
        limit = clamp_limit(limit)
        category = self.categories.get(category_id)
        curated_description = category.description if category else f"AI curated stories for {category_name}"

        selected = self._candidate_sources(category_id, sources)
        per_source_limit = max(MIN_PER_SOURCE_LIMIT, limit)

        with PerformanceTracker(f"fetch {len(selected)} sources for {category_id}", self.logger) as fetch_timer:
            raw_items, statuses = await self._fetch_sources(selected, per_source_limit)

        deduped = dedupe_items(raw_items)
        now = self.state.clock()
        fresh = self.state.ledger.filter_recent(deduped, now)
        pool = fresh if fresh else [annotate_recent(item) for item in deduped]
        log_pipeline_metrics(
            self.logger, f"{category_id}:dedupe+recency", len(raw_items), len(pool), fetch_timer.duration_ms,
            recent_reused=not fresh and bool(deduped),
        )

        if not pool:
            self.logger.warning(f"{category_id}: no items from any source, using last-resort preset content")
            items = build_fallback_highlights(category_id, category_name, self._last_resort_pool(selected), limit)
            self.state.ledger.mark_seen(items, now)
            return self._result(category_id, category_name, curated_description, items,
                                len(statuses), 0, False, statuses)

        candidates = rebalance_by_source(pool, [source.id for source in selected], limit * CURATION_POOL_FACTOR)

        if category_id in DIRECT_CATEGORIES:
            items = build_fallback_highlights(category_id, category_name, candidates, limit)
            self.state.ledger.mark_seen(items, now)
            description = category.description if category else f"Direct API results for {category_name}"
            return self._result(category_id, category_name, description, items,
                                len(selected), len(pool), False, statuses)

        curated = None
        if self.curator is not None and self.curator.enabled:
            curated = await self.curator.curate(category_id, category_name, user_prompt, limit, candidates)
        items = curated if curated else build_fallback_highlights(category_id, category_name, candidates, limit)
        self.state.ledger.mark_seen(items, now)

        return self._result(category_id, category_name, curated_description, items,
                            len(selected), len(pool), bool(curated), statuses)

    def _result(self, result_id: str, title: str, description: str, items: List[CuratedItem],
                fetched_source_count: int, raw_item_count: int, used_ai: bool,
                statuses: List[SourceStatus]) -> DiscoveryResult:
        return DiscoveryResult(
            id=result_id,
            title=title,
            description=description,
            items=items,
            retrieved_at=isoformat_timestamp(self.state.clock()),
            meta=DiscoveryMeta(
                fetched_source_count=fetched_source_count,
                raw_item_count=raw_item_count,
                used_ai=used_ai,
                source_statuses=statuses,
            ),
        )

    async def fetch_category_insights(
        self,
        category_id: str,
        category_name: Optional[str] = None,
        user_prompt: Optional[str] = None,
        limit: Any = None,
    ) -> DiscoveryResult:
        category = self.categories.get(category_id)
        if category_name is None:
            category_name = category.name if category else category_id
        if user_prompt is None:
            user_prompt = category.prompt if category else category_name
        return await self.aggregate(category_id, category_name, user_prompt, limit)

    def build_dynamic_sources(self, slug: str, category_name: str, user_prompt: str,
                              related_sites: Iterable[str]) -> List[SourceDefinition]:
        """Ad-hoc sources for a category that is not in the registry."""
        sources = []
        for index, site in enumerate(related_sites, start=1):
            url = (site or "").strip()
            if not url:
                continue
            if not url.startswith(("http://", "https://")):
                url = f"https://{url}"
            sources.append(SourceDefinition(
                id=f"{slug}-site-{index}",
                title=urlparse(url).netloc or url,
                strategy="jina",
                url=url,
                categories=(slug,),
                weight=DYNAMIC_SITE_WEIGHT,
            ))

        if self.settings.serpapi_api_key:
            sources.append(SourceDefinition(
                id=f"{slug}-search",
                title=category_name,
                strategy="search",
                url="",
                categories=(slug,),
                weight=DYNAMIC_SEARCH_WEIGHT,
                options={"provider": "serpapi", "query": user_prompt or category_name},
            ))
        return sources

    async def fetch_dynamic_category_insights(
        self,
        category_name: str,
        user_prompt: str,
        limit: Any = None,
        related_sites: Optional[Iterable[str]] = None,
    ) -> DiscoveryResult:
        """Discovery for a user-named category, backed by its related sites and search."""
        if not category_name or not category_name.strip():
            raise AggregationError("Dynamic category requires a name")
        category_name = category_name.strip()
        slug = to_slug(category_name) or "custom"
        sources = self.build_dynamic_sources(slug, category_name, user_prompt, related_sites or [])
        self.logger.info(f"Dynamic category '{category_name}' ({slug}) with {len(sources)} ad-hoc sources")
        return await self.aggregate(slug, category_name, user_prompt or category_name, limit, sources=sources or None)

    async def fetch_aggregated_insights(self, categories: List[Dict[str, str]], limit: Any = None) -> DiscoveryResult:
        """Run every category concurrently and merge the results."""
        resolved = await asyncio.gather(*(
            self.fetch_category_insights(
                category["id"],
                category.get("name") or category["id"],
                category.get("prompt") or "",
                limit,
            )
            for category in categories
        ))

        unique: Dict[str, CuratedItem] = {}
        for result in resolved:
            for item in result.items:
                key = item.link or item.title
                if key in unique:
                    continue
                unique[key] = item if item.reason else replace(item, reason=f"From {item.source_name}")

        combined = list(unique.values())
        effective_limit = clamp_limit(limit)
        max_items = max(effective_limit * len(categories), effective_limit * 2)
        log_pipeline_metrics(
            self.logger, "aggregate:merge", sum(len(r.items) for r in resolved), min(len(combined), max_items), 0.0,
            category_count=len(categories),
        )

        return DiscoveryResult(
            id=AGGREGATED_ID,
            title=AGGREGATED_TITLE,
            description=AGGREGATED_DESCRIPTION,
            items=combined[:max_items],
            retrieved_at=isoformat_timestamp(self.state.clock()),
            meta=DiscoveryMeta(
                fetched_source_count=sum(r.meta.fetched_source_count for r in resolved),
                raw_item_count=len(combined),
                used_ai=any(r.meta.used_ai for r in resolved),
                source_statuses=merge_source_statuses(resolved),
            ),
        )

    def get_default_categories_snapshot(self) -> List[Dict[str, str]]:
        return self.categories.snapshot()
