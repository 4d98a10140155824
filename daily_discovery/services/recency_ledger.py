"""
Recency ledger: remembers which links were recently surfaced so repeated
calls do not keep returning the same stories.
"""

import logging
import time
from typing import Callable, Dict, Iterable, List, Optional

from daily_discovery.models.content import CuratedItem, RawCandidateItem


RECENT_HISTORY_TTL_SECONDS = 48 * 60 * 60
EVICTION_THRESHOLD = 2048


class RecencyLedger:
    """
    Map of link -> last-seen timestamp.

    Eviction is lazy: entries older than the TTL are only swept when a
    marking pass leaves the ledger above ``eviction_threshold`` entries, so
    an entry can outlive its TTL until then.
    """

    def __init__(
        self,
        ttl_seconds: float = RECENT_HISTORY_TTL_SECONDS,
        eviction_threshold: int = EVICTION_THRESHOLD,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self.eviction_threshold = eviction_threshold
        self.clock = clock
        self._seen: Dict[str, float] = {}
        self.logger = logging.getLogger(__name__)

    def is_recent(self, link: str, now: Optional[float] = None) -> bool:
        if not link:
            return False
        last_seen = self._seen.get(link)
        if last_seen is None:
            return False
        now = self.clock() if now is None else now
        return now - last_seen <= self.ttl_seconds

    def filter_recent(self, items: Iterable[RawCandidateItem], now: Optional[float] = None) -> List[RawCandidateItem]:
        """Drop items whose link was surfaced within the TTL."""
        now = self.clock() if now is None else now
        return [item for item in items if not self.is_recent(item.link, now)]

    def mark_seen(self, items: Iterable[CuratedItem], now: Optional[float] = None) -> int:
        now = self.clock() if now is None else now
        marks = 0
        for item in items:
            if item.link and item.link != "#":
                self._seen[item.link] = now
                marks += 1

        if marks > 0 and len(self._seen) > self.eviction_threshold:
            self.evict_expired(now)
        return marks

    def evict_expired(self, now: Optional[float] = None) -> int:
        now = self.clock() if now is None else now
        expired = [link for link, seen_at in self._seen.items() if now - seen_at > self.ttl_seconds]
        for link in expired:
            del self._seen[link]
        if expired:
            self.logger.debug(f"Evicted {len(expired)} expired links from recency ledger")
        return len(expired)

    def __contains__(self, link: str) -> bool:
        return link in self._seen

    def __len__(self) -> int:
        return len(self._seen)
