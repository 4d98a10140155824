from __future__ import annotations

import pytest

from conftest import ScriptedHttpClient, make_source
from daily_discovery.config.settings import DiscoverySettings
from daily_discovery.services.fetch_strategies import (
    SERPAPI_ENDPOINT,
    FeedStrategy,
    PayloadShapeError,
    ProxyRenderStrategy,
    SearchStrategy,
    SerpApiProvider,
    StrategyConfigurationError,
    StrategyError,
    TrendingProductStrategy,
    TrendingRepositoryStrategy,
    build_strategy_registry,
    html_to_snippet,
    parse_search_payload,
)
from daily_discovery.services.result_cache import ResultCache


RSS_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Example Blog</title>
    <item>
      <title>First post</title>
      <link>https://blog.example.com/first</link>
      <description>&lt;p&gt;Hello &lt;b&gt;world&lt;/b&gt;&lt;/p&gt;</description>
    </item>
    <item>
      <title></title>
      <link>https://blog.example.com/untitled</link>
    </item>
    <item>
      <title>Second post</title>
      <link>https://blog.example.com/second</link>
      <description>Plain text summary</description>
    </item>
  </channel>
</rss>
"""

PROXY_MARKDOWN = """
Title: Example

[### Big launch announced today](https://www.example.com/news/big-launch-today)
[Same story again](https://www.example.com/news/big-launch-today)
[External story here](https://other.com/news/some-story)
[About us](https://www.example.com/about-us)
[Anchor link here](https://example.com/news/post-1#comments)
[Single](https://example.com/news/single-word)
[Research paper 2024](https://example.com/research/2024/model)
"""


def test_html_to_snippet_strips_markup() -> None:
    assert html_to_snippet("<p>Hi <script>x()</script><b>there</b></p>") == "Hi there"
    assert html_to_snippet("  plain   text ") == "plain text"
    assert html_to_snippet(None) == ""


async def test_feed_strategy_parses_and_caches(clock) -> None:
    client = ScriptedHttpClient([(200, RSS_FEED)])
    strategy = FeedStrategy(client, ResultCache(600, clock=clock))
    source = make_source("blog")

    result = await strategy.execute(source, 4)

    assert [item.title for item in result.items] == ["First post", "Second post"]
    assert result.items[0].summary == "Hello world"
    assert result.items[0].source_id == "blog"
    assert result.from_cache is False
    assert client.requests[0]["timeout"] == 12.0

    cached = await strategy.execute(source, 4)
    assert cached.from_cache is True
    assert len(client.requests) == 1

    clock.advance(601)
    client.responses.append((200, RSS_FEED))
    refreshed = await strategy.execute(source, 4)
    assert refreshed.from_cache is False
    assert len(client.requests) == 2


async def test_proxy_render_keeps_article_links_on_source_domain() -> None:
    client = ScriptedHttpClient([(200, PROXY_MARKDOWN)])
    source = make_source("site", strategy="jina", url="https://www.example.com/blog")

    result = await ProxyRenderStrategy(client).execute(source, 4)

    assert client.requests[0]["url"] == "https://r.jina.ai/https://www.example.com/blog"
    assert [(item.title, item.link) for item in result.items] == [
        ("Big launch announced today", "https://www.example.com/news/big-launch-today"),
        ("Research paper 2024", "https://example.com/research/2024/model"),
    ]


async def test_trending_repositories_mapping() -> None:
    client = ScriptedHttpClient([(200, [
        {"author": "alice", "name": "tool", "url": "https://github.com/alice/tool",
         "description": "Fast tool", "stars": 1200, "language": "Rust"},
        {"name": "orphan", "currentPeriodStars": 42},
    ])])
    source = make_source("gh", strategy="github_trending_api", since="weekly", language="python")

    result = await TrendingRepositoryStrategy(client).execute(source, 4)

    params = client.requests[0]["params"]
    assert params == {"since": "weekly", "limit": "8", "language": "python"}
    assert result.items[0].title == "alice/tool"
    assert result.items[0].summary == "Fast tool ⭐ 1200 | Rust"
    assert result.items[1].title == "unknown/orphan"
    assert result.items[1].link == "#"
    assert result.items[1].summary == "No description ⭐ 42 | n/a"


async def test_trending_repositories_rejects_non_list_payload() -> None:
    client = ScriptedHttpClient([(200, {"message": "rate limited"})])

    with pytest.raises(PayloadShapeError):
        await TrendingRepositoryStrategy(client).execute(make_source("gh", strategy="github_trending_api"), 4)


async def test_trending_products_requires_token_before_any_request() -> None:
    client = ScriptedHttpClient([])

    with pytest.raises(StrategyConfigurationError):
        await TrendingProductStrategy(client, None).execute(make_source("ph", strategy="producthunt_api"), 4)

    assert client.requests == []


async def test_trending_products_graphql_errors_raise() -> None:
    client = ScriptedHttpClient([(200, {"errors": [{"message": "bad token"}]})])

    with pytest.raises(StrategyError, match="bad token"):
        await TrendingProductStrategy(client, "token").execute(make_source("ph", strategy="producthunt_api"), 4)


async def test_trending_products_mapping() -> None:
    topics = {"edges": [{"node": {"name": name}} for name in ("AI", "Dev Tools", "Productivity", "Design")]}
    client = ScriptedHttpClient([(200, {"data": {"posts": {"edges": [
        {"node": {"name": "Widget", "tagline": "Great tagline", "url": "https://www.producthunt.com/posts/widget",
                  "votesCount": 120, "makers": [{"name": "Ann"}, {"name": "Bob"}], "topics": topics}},
        {"node": {"votesCount": 3}},
    ]}}})])

    result = await TrendingProductStrategy(client, "token").execute(make_source("ph", strategy="producthunt_api"), 4)

    request = client.requests[0]
    assert request["method"] == "POST"
    assert request["headers"]["Authorization"] == "Bearer token"
    assert "posts(first: 8, order: VOTES)" in request["json"]["query"]
    assert result.items[0].summary == "Great tagline 🚀 120 votes | By Ann, Bob | AI, Dev Tools, Productivity"
    assert result.items[1].title == "Untitled Product"
    assert result.items[1].link == "https://www.producthunt.com"
    assert result.items[1].summary == "No description 🚀 3 votes | By Unknown"


def test_parse_search_payload_merges_and_dedupes() -> None:
    payload = {
        "news_results": [
            {"title": "One", "link": "https://news.example.com/1", "snippet": "first"},
            {"title": "No link"},
        ],
        "organic_results": [
            {"title": "One again", "link": "https://news.example.com/1"},
            {"name": "Two", "url": "https://news.example.com/2"},
        ],
    }

    assert parse_search_payload(payload) == [
        {"title": "One", "link": "https://news.example.com/1", "summary": "first"},
        {"title": "Two", "link": "https://news.example.com/2", "summary": "Two"},
    ]

    with pytest.raises(PayloadShapeError):
        parse_search_payload(["not", "an", "object"])


async def test_search_strategy_uses_serpapi_and_caches(clock) -> None:
    client = ScriptedHttpClient([(200, {"news_results": [
        {"title": f"Result {n}", "link": f"https://news.example.com/{n}"} for n in range(12)
    ]})])
    cache = ResultCache(24 * 3600, clock=clock)
    strategy = SearchStrategy(client, {"serpapi": SerpApiProvider(client, "serp-key", cache)})
    source = make_source("agent-search", strategy="search", url="", query="ai agents", gl="us")

    result = await strategy.execute(source, 3)

    request = client.requests[0]
    assert request["url"] == SERPAPI_ENDPOINT
    assert request["params"]["q"] == "ai agents"
    assert request["params"]["engine"] == "google_news"
    assert request["params"]["num"] == "12"
    assert request["params"]["gl"] == "us"
    assert "hl" not in request["params"]
    assert len(result.items) == 6
    assert result.from_cache is False

    cached = await strategy.execute(source, 3)
    assert cached.from_cache is True
    assert [item.link for item in cached.items] == [item.link for item in result.items]
    assert len(client.requests) == 1


def test_serpapi_result_count_is_clamped() -> None:
    assert SerpApiProvider.result_count(make_source("s", strategy="search"), 3) == 10
    assert SerpApiProvider.result_count(make_source("s", strategy="search", num=50), 3) == 20
    assert SerpApiProvider.result_count(make_source("s", strategy="search", num=15), 3) == 15


async def test_search_strategy_configuration_errors(clock) -> None:
    client = ScriptedHttpClient([])
    cache = ResultCache(24 * 3600, clock=clock)
    strategy = SearchStrategy(client, {"serpapi": SerpApiProvider(client, None, cache)})

    with pytest.raises(StrategyConfigurationError, match="SERPAPI_API_KEY"):
        await strategy.execute(make_source("s", strategy="search"), 3)

    with pytest.raises(StrategyConfigurationError, match="Unsupported search provider"):
        await strategy.execute(make_source("s", strategy="search", provider="bing"), 3)

    assert client.requests == []


def test_registry_covers_every_strategy_tag(state) -> None:
    registry = build_strategy_registry(ScriptedHttpClient([]), DiscoverySettings(), state.feed_cache, state.search_cache)

    assert set(registry) == {"rss", "jina", "github_trending_api", "producthunt_api", "search"}
