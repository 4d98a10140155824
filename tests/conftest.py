from __future__ import annotations

import json
from typing import Dict, List, Optional

import pytest

from daily_discovery.models.content import CategoryDefinition, FallbackItem, RawCandidateItem, SourceDefinition
from daily_discovery.services.fetch_strategies import FetchStrategy, StrategyResult
from daily_discovery.services.http_client import HttpClient
from daily_discovery.services.source_fetcher import DiscoveryState


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedHttpClient(HttpClient):
    """HttpClient whose transport replays scripted (status, body) pairs or exceptions."""

    def __init__(self, responses: Optional[List] = None, **kwargs) -> None:
        self.sleeps: List[float] = []

        async def fake_sleep(delay: float) -> None:
            self.sleeps.append(delay)

        super().__init__(sleep=fake_sleep, **kwargs)
        self.responses = list(responses or [])
        self.requests: List[Dict] = []

    async def _send(self, method, url, params, headers, json_body, timeout):
        self.requests.append({
            "method": method,
            "url": url,
            "params": params,
            "headers": headers,
            "json": json_body,
            "timeout": timeout,
        })
        if not self.responses:
            raise AssertionError(f"Unexpected request to {url}")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        status, body = response
        if not isinstance(body, str):
            body = json.dumps(body)
        return status, body


class FakeStrategy(FetchStrategy):
    """Strategy returning canned items per source id, or raising."""

    def __init__(self, tag: str, items_by_source: Optional[Dict[str, List[RawCandidateItem]]] = None,
                 error: Optional[Exception] = None) -> None:
        super().__init__(http=None)
        self.tag = tag
        self.items_by_source = items_by_source or {}
        self.error = error
        self.calls: List = []

    async def execute(self, source: SourceDefinition, limit: int) -> StrategyResult:
        self.calls.append((source.id, limit))
        if self.error is not None:
            raise self.error
        return StrategyResult(items=list(self.items_by_source.get(source.id, [])))


def make_item(source_id: str, index: int, link: Optional[str] = None, source_name: Optional[str] = None,
              summary: str = "A summary") -> RawCandidateItem:
    return RawCandidateItem(
        title=f"{source_id} story {index}",
        link=link if link is not None else f"https://{source_id}.example.com/news/story-{index}",
        summary=summary,
        source_id=source_id,
        source_name=source_name or source_id.title(),
    )


def make_source(source_id: str, weight: float = 0.5, strategy: str = "rss", categories=("tech",), url: Optional[str] = None,
                fallback_count: int = 0, **options) -> SourceDefinition:
    return SourceDefinition(
        id=source_id,
        title=source_id.title(),
        strategy=strategy,
        url=url if url is not None else f"https://{source_id}.example.com/feed",
        categories=tuple(categories),
        weight=weight,
        options=options,
        fallback_items=tuple(
            FallbackItem(
                title=f"{source_id} preset {n}",
                summary=f"Preset summary {n}",
                link=f"https://{source_id}.example.com/preset-{n}",
            )
            for n in range(1, fallback_count + 1)
        ),
    )


def make_category(category_id: str = "tech", name: str = "Tech & Engineering") -> CategoryDefinition:
    return CategoryDefinition(
        id=category_id,
        name=name,
        description=f"{name} description",
        prompt=f"{name} prompt",
        system_prompt=f"You curate {name}.",
        seed_source_ids=(),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def state(clock: FakeClock) -> DiscoveryState:
    return DiscoveryState(clock=clock)


class EchoStrategy(FetchStrategy):
    """Strategy that invents ``per_source`` items for whatever source it is given."""

    def __init__(self, tag: str, per_source: int = 3) -> None:
        super().__init__(http=None)
        self.tag = tag
        self.per_source = per_source
        self.calls: List = []

    async def execute(self, source: SourceDefinition, limit: int) -> StrategyResult:
        self.calls.append((source.id, limit))
        return StrategyResult(items=[make_item(source.id, n) for n in range(self.per_source)])
