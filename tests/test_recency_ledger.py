from __future__ import annotations

from conftest import FakeClock, make_item
from daily_discovery.models.content import CuratedItem
from daily_discovery.services.recency_ledger import RECENT_HISTORY_TTL_SECONDS, RecencyLedger
from daily_discovery.services.result_cache import ResultCache


def curated(link: str) -> CuratedItem:
    return CuratedItem(
        title="t", summary="s", link=link, category_id="tech", category_name="Tech",
        source_id="src", source_name="Src",
    )


def test_marked_links_are_filtered_until_ttl_elapses() -> None:
    clock = FakeClock()
    ledger = RecencyLedger(clock=clock)
    seen = make_item("a", 1)
    fresh = make_item("a", 2)

    ledger.mark_seen([curated(seen.link)])

    assert ledger.filter_recent([seen, fresh]) == [fresh]
    clock.advance(RECENT_HISTORY_TTL_SECONDS)
    assert ledger.is_recent(seen.link)
    clock.advance(1)
    assert ledger.filter_recent([seen, fresh]) == [seen, fresh]


def test_placeholder_links_are_never_marked() -> None:
    ledger = RecencyLedger(clock=FakeClock())

    assert ledger.mark_seen([curated("#"), curated("")]) == 0
    assert len(ledger) == 0


def test_eviction_only_runs_past_threshold() -> None:
    clock = FakeClock()
    ledger = RecencyLedger(eviction_threshold=3, clock=clock)
    ledger.mark_seen([curated(f"https://x.example.com/{n}") for n in range(3)])
    clock.advance(RECENT_HISTORY_TTL_SECONDS + 10)

    ledger.mark_seen([curated("https://x.example.com/fresh-1")])
    assert len(ledger) == 1
    assert "https://x.example.com/fresh-1" in ledger


def test_expired_entries_linger_below_threshold() -> None:
    clock = FakeClock()
    ledger = RecencyLedger(eviction_threshold=100, clock=clock)
    ledger.mark_seen([curated("https://x.example.com/old")])
    clock.advance(RECENT_HISTORY_TTL_SECONDS + 10)

    ledger.mark_seen([curated("https://x.example.com/new")])

    assert "https://x.example.com/old" in ledger
    assert not ledger.is_recent("https://x.example.com/old")


def test_result_cache_expiry_and_ttl_override() -> None:
    clock = FakeClock()
    cache = ResultCache(60, clock=clock)
    cache.set("k", [1, 2])

    clock.advance(30)
    assert cache.get("k") == [1, 2]
    assert cache.get("k", ttl_seconds=10) is None
    assert "k" not in cache
