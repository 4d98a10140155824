"""
Per-source fetch orchestration.

``SourceFetcher.fetch`` runs the strategy registered for a source and turns
whatever happens into a ``FetchOutcome``: live items, the source's preset
fallback items, or an error outcome. It never raises.
"""

import logging
import time
from typing import Callable, Dict, Optional

from daily_discovery.models.content import (
    FetchOutcome,
    FetchStatus,
    RawCandidateItem,
    SourceDefinition,
    SourceHealth,
)
from daily_discovery.services.fetch_strategies import (
    FEED_CACHE_TTL_SECONDS,
    SEARCH_CACHE_TTL_SECONDS,
    FetchStrategy,
)
from daily_discovery.services.http_client import describe_error
from daily_discovery.services.recency_ledger import RecencyLedger
from daily_discovery.services.result_cache import ResultCache


EMPTY_RESULT_MESSAGES = {
    "rss": "Feed returned no items",
    "jina": "Jina proxy returned no items",
    "github_trending_api": "GitHub search returned no repositories",
    "producthunt_api": "ProductHunt API returned no products",
    "search": "Search provider returned no articles",
}


class DiscoveryState:
    """
    Process-lifetime state shared by the fetcher and the aggregator:
    source health, the recency ledger and the two result caches.

    Everything reads time from ``clock`` so tests can move it.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self.health: Dict[str, SourceHealth] = {}
        self.ledger = RecencyLedger(clock=clock)
        self.feed_cache = ResultCache(FEED_CACHE_TTL_SECONDS, clock=clock)
        self.search_cache = ResultCache(SEARCH_CACHE_TTL_SECONDS, clock=clock)

    def health_for(self, source_id: str) -> Optional[SourceHealth]:
        return self.health.get(source_id)

    def record_success(self, source: SourceDefinition) -> SourceHealth:
        health = self.health.setdefault(source.id, SourceHealth())
        health.last_success_at = self.clock()
        health.last_error = None
        health.consecutive_failures = 0
        return health

    def record_failure(self, source: SourceDefinition, error: Optional[str]) -> SourceHealth:
        health = self.health.setdefault(source.id, SourceHealth())
        health.last_failure_at = self.clock()
        health.last_error = error
        health.consecutive_failures += 1
        return health


def fallback_reason(source: SourceDefinition) -> str:
    return f"Using preset content; source '{source.title}' is currently unavailable"


class SourceFetcher:
    """Run one source through its strategy with fallback and health bookkeeping."""

    def __init__(self, strategies: Dict[str, FetchStrategy], state: DiscoveryState):
        self.strategies = strategies
        self.state = state
        self.logger = logging.getLogger(__name__)

    async def fetch(self, source: SourceDefinition, limit: int) -> FetchOutcome:
        error_message: Optional[str] = None
        strategy = self.strategies.get(source.strategy)

        if strategy is None:
            error_message = f"Unsupported strategy {source.strategy}"
        else:
            try:
                result = await strategy.execute(source, limit)
                items = result.items[:limit * 2]
                if items:
                    self.state.record_success(source)
                    self.logger.debug(f"{source.id}: {len(items)} items (cache={result.from_cache})")
                    return FetchOutcome(
                        status=FetchStatus.OK,
                        items=items,
                        used_fallback=False,
                        from_cache=result.from_cache,
                        fetched_at=self.state.clock(),
                    )
                error_message = EMPTY_RESULT_MESSAGES.get(source.strategy, "Source returned no items")
            except Exception as e:
                error_message = describe_error(e)
                self.logger.warning(f"Failed to fetch {source.id}: {error_message}")

        self.state.record_failure(source, error_message)

        if source.fallback_items:
            reason = fallback_reason(source)
            items = [
                RawCandidateItem(
                    title=item.title,
                    link=item.link,
                    summary=item.summary,
                    source_id=source.id,
                    source_name=source.title,
                    language=source.language,
                    reason=reason,
                    used_fallback=True,
                )
                for item in source.fallback_items[:limit]
            ]
            self.logger.info(f"{source.id}: using {len(items)} preset items ({error_message})")
            return FetchOutcome(
                status=FetchStatus.FALLBACK,
                items=items,
                used_fallback=True,
                from_cache=False,
                fetched_at=self.state.clock(),
                message=error_message,
            )

        self.logger.warning(f"{source.id}: no items and no preset content ({error_message})")
        return FetchOutcome(
            status=FetchStatus.ERROR,
            items=[],
            used_fallback=False,
            from_cache=False,
            fetched_at=self.state.clock(),
            message=error_message,
        )
