"""
Fetch strategies: each one turns a single external source into a list of
normalized candidate items.

Strategies raise on hard failure. The source fetcher converts those errors
into fallback or error outcomes, so nothing here swallows exceptions.
"""

import json
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set
from urllib.parse import quote, urlparse

import feedparser
from bs4 import BeautifulSoup

from daily_discovery.config.settings import DiscoverySettings
from daily_discovery.models.content import RawCandidateItem, SourceDefinition
from daily_discovery.services.http_client import HttpClient
from daily_discovery.services.result_cache import ResultCache


FEED_CACHE_TTL_SECONDS = 10 * 60
SEARCH_CACHE_TTL_SECONDS = 24 * 60 * 60

FEED_TIMEOUT = 12.0
PROXY_RENDER_TIMEOUT = 15.0
TRENDING_REPOSITORY_TIMEOUT = 10.0
TRENDING_PRODUCT_TIMEOUT = 15.0
SEARCH_TIMEOUT = 12.0

MAX_TRENDING_RESULTS = 100
DEFAULT_TRENDING_RESULTS = 25

PROXY_RENDER_ENDPOINT = "https://r.jina.ai/"
SERPAPI_ENDPOINT = "https://serpapi.com/search.json"

MARKDOWN_LINK_PATTERN = re.compile(r"\[(?!!)([^\]]+?)\]\((https?://[^\s)]+)\)")
ARTICLE_PATH_PATTERN = re.compile(r"(news|index|blog|research|article|stories|posts|insights|202[0-9]|20[0-9]{2})")
SLUG_PATTERN = re.compile(r"[-_]|\d{4}")
HEADING_PREFIX_PATTERN = re.compile(r"^#+\s*")
WHITESPACE_PATTERN = re.compile(r"\s+")


class StrategyError(Exception):
    """Hard failure while fetching from a source"""
    pass


class StrategyConfigurationError(StrategyError):
    """Strategy cannot run because a credential or option is missing"""
    pass


class PayloadShapeError(StrategyError):
    """Provider returned a payload of the wrong shape"""
    pass


@dataclass
class StrategyResult:
    items: List[RawCandidateItem] = field(default_factory=list)
    from_cache: bool = False


def clean_text(value: Any) -> str:
    if value is None:
        return ""
    return WHITESPACE_PATTERN.sub(" ", str(value)).strip()


def html_to_snippet(value: Any) -> str:
    """Plain-text snippet from an HTML (or plain) feed field."""
    text = "" if value is None else str(value)
    if "<" in text and ">" in text:
        soup = BeautifulSoup(text, "html.parser")
        for element in soup(["script", "style"]):
            element.decompose()
        text = soup.get_text(" ", strip=True)
    return clean_text(text)


def trending_request_size(limit: int) -> int:
    return min(limit, MAX_TRENDING_RESULTS) if limit > 0 else DEFAULT_TRENDING_RESULTS


class FetchStrategy:
    """Base class for all strategies."""

    tag = ""

    def __init__(self, http: HttpClient):
        self.http = http
        self.logger = logging.getLogger(__name__)

    async def execute(self, source: SourceDefinition, limit: int) -> StrategyResult:
        raise NotImplementedError

    def _item(self, source: SourceDefinition, title: str, link: str, summary: str,
              language: Optional[str] = None) -> RawCandidateItem:
        return RawCandidateItem(
            title=title,
            link=link,
            summary=summary,
            source_id=source.id,
            source_name=source.title,
            language=language or source.language,
        )


class FeedStrategy(FetchStrategy):
    """RSS/Atom feeds parsed with feedparser."""

    tag = "rss"

    def __init__(self, http: HttpClient, cache: ResultCache):
        super().__init__(http)
        self.cache = cache

    async def execute(self, source: SourceDefinition, limit: int) -> StrategyResult:
        fetch_size = max(limit, 6)
        cache_key = f"{source.url}|{fetch_size}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            self.logger.debug(f"Feed cache hit for {source.url}")
            return StrategyResult(items=list(cached), from_cache=True)

        content = await self.http.get_text(
            source.url,
            headers={"Accept": "application/rss+xml,application/atom+xml,application/xml;q=0.9,*/*;q=0.8"},
            timeout=FEED_TIMEOUT,
        )
        items = self.parse_feed(content, source, fetch_size)
        if items:
            self.cache.set(cache_key, list(items))
        return StrategyResult(items=items, from_cache=False)

    def parse_feed(self, content: str, source: SourceDefinition, max_items: int) -> List[RawCandidateItem]:
        parsed = feedparser.parse(content)
        if parsed.get("bozo") and not parsed.entries:
            raise PayloadShapeError(f"Unparseable feed at {source.url}: {parsed.get('bozo_exception')}")

        items: List[RawCandidateItem] = []
        for entry in parsed.entries[:max_items]:
            title = clean_text(entry.get("title"))
            link = clean_text(entry.get("link"))
            if not title or not link:
                continue
            body = entry.get("summary") or entry.get("description")
            if not body and entry.get("content"):
                body = entry.content[0].get("value")
            items.append(self._item(source, title, link, html_to_snippet(body)))
        return items


class ProxyRenderStrategy(FetchStrategy):
    """
    Scrape a page without a feed by asking a readability proxy for a
    markdown rendering and harvesting article-like links on the source's own
    domain. Trades precision for coverage.
    """

    tag = "jina"

    async def execute(self, source: SourceDefinition, limit: int) -> StrategyResult:
        proxied_url = PROXY_RENDER_ENDPOINT + quote(source.url, safe=":/?#[]@!$&'()*+,;=%~")
        markdown = await self.http.get_text(
            proxied_url,
            headers={"Accept": "text/markdown, text/plain;q=0.9, */*;q=0.8"},
            timeout=PROXY_RENDER_TIMEOUT,
        )
        return StrategyResult(items=self.parse_markdown(markdown, source, limit * 3))

    @staticmethod
    def allowed_hosts(url: str) -> Set[str]:
        host = urlparse(url).netloc
        if not host:
            return set()
        if host.startswith("www."):
            return {host, host[len("www."):]}
        return {host, f"www.{host}"}

    @staticmethod
    def looks_like_article(link: str) -> bool:
        path = urlparse(link).path.lower()
        return bool(ARTICLE_PATH_PATTERN.search(path)) and bool(SLUG_PATTERN.search(path))

    @staticmethod
    def clean_anchor_text(raw_text: str) -> str:
        return HEADING_PREFIX_PATTERN.sub("", clean_text(raw_text)).strip()

    @staticmethod
    def is_meaningful_title(title: str) -> bool:
        return " " in title and any(ch.isalnum() for ch in title)

    def parse_markdown(self, markdown: str, source: SourceDefinition, max_items: int) -> List[RawCandidateItem]:
        hosts = self.allowed_hosts(source.url)
        seen: Set[str] = set()
        items: List[RawCandidateItem] = []

        for match in MARKDOWN_LINK_PATTERN.finditer(markdown or ""):
            if len(items) >= max_items:
                break
            raw_text, link = match.group(1), match.group(2)
            if not raw_text.strip() or link in seen or "#" in link:
                continue
            if hosts and urlparse(link).netloc not in hosts:
                continue
            if not self.looks_like_article(link):
                continue
            seen.add(link)

            title = self.clean_anchor_text(raw_text)
            if not self.is_meaningful_title(title):
                continue
            items.append(self._item(source, title, link, title))

        return items


class TrendingRepositoryStrategy(FetchStrategy):
    """Trending repositories from a GitHub trending API mirror."""

    tag = "github_trending_api"

    async def execute(self, source: SourceDefinition, limit: int) -> StrategyResult:
        request_size = trending_request_size(limit * 2)
        params = {
            "since": str(source.option("since", "daily")),
            "limit": str(request_size),
        }
        language = source.option("language")
        if isinstance(language, str):
            params["language"] = language

        repos = await self.http.get_json(
            source.url,
            params=params,
            headers={"Accept": "application/json"},
            timeout=TRENDING_REPOSITORY_TIMEOUT,
        )
        if not isinstance(repos, list):
            raise PayloadShapeError("Unexpected GitHub trending payload")

        return StrategyResult(items=[self.map_repository(source, repo) for repo in repos[:request_size]
                                     if isinstance(repo, dict)])

    def map_repository(self, source: SourceDefinition, repo: Dict[str, Any]) -> RawCandidateItem:
        stars = repo.get("stars")
        if stars is None:
            stars = repo.get("currentPeriodStars")
        summary = "{description} ⭐ {stars} | {language}".format(
            description=repo.get("description") or "No description",
            stars=stars if stars is not None else 0,
            language=repo.get("language") or "n/a",
        )
        return self._item(
            source,
            title=f"{repo.get('author') or 'unknown'}/{repo.get('name') or 'unknown'}",
            link=repo.get("url") or "#",
            summary=summary.strip(),
            language="en",
        )


PRODUCT_QUERY_TEMPLATE = """
query {
  posts(first: %d, order: VOTES) {
    edges {
      node {
        id
        name
        tagline
        description
        url
        votesCount
        commentsCount
        createdAt
        makers { name }
        topics { edges { node { name } } }
      }
    }
  }
}
"""


class TrendingProductStrategy(FetchStrategy):
    """Top Product Hunt launches through the GraphQL API."""

    tag = "producthunt_api"

    def __init__(self, http: HttpClient, api_token: Optional[str]):
        super().__init__(http)
        self.api_token = api_token

    async def execute(self, source: SourceDefinition, limit: int) -> StrategyResult:
        if not self.api_token:
            raise StrategyConfigurationError("PRODUCTHUNT_API_TOKEN not configured")

        request_size = trending_request_size(limit * 2)
        data = await self.http.post_json(
            source.url,
            {"query": PRODUCT_QUERY_TEMPLATE % request_size},
            headers={
                "Authorization": f"Bearer {self.api_token}",
                "Content-Type": "application/json",
            },
            timeout=TRENDING_PRODUCT_TIMEOUT,
        )
        if not isinstance(data, dict):
            raise PayloadShapeError("Unexpected ProductHunt payload")
        if data.get("errors"):
            messages = ", ".join(str(error.get("message", error)) if isinstance(error, dict) else str(error)
                                 for error in data["errors"])
            raise StrategyError(f"ProductHunt GraphQL error: {messages}")

        edges = ((data.get("data") or {}).get("posts") or {}).get("edges") or []
        if not isinstance(edges, list):
            raise PayloadShapeError("Unexpected ProductHunt posts payload")

        items = []
        for edge in edges[:request_size]:
            post = edge.get("node") if isinstance(edge, dict) else None
            if isinstance(post, dict):
                items.append(self.map_post(source, post))
        return StrategyResult(items=items)

    def map_post(self, source: SourceDefinition, post: Dict[str, Any]) -> RawCandidateItem:
        makers = ", ".join(m.get("name", "") for m in post.get("makers") or [] if isinstance(m, dict)) or "Unknown"
        topic_edges = ((post.get("topics") or {}).get("edges") or [])[:3]
        topics = ", ".join(
            (t.get("node") or {}).get("name", "") for t in topic_edges if isinstance(t, dict)
        )
        summary = f"{post.get('tagline') or post.get('description') or 'No description'} 🚀 {post.get('votesCount') or 0} votes | By {makers}"
        if topics:
            summary += f" | {topics}"
        return self._item(
            source,
            title=post.get("name") or "Untitled Product",
            link=post.get("url") or "https://www.producthunt.com",
            summary=summary.strip(),
            language="en",
        )


class SearchProvider:
    """A concrete search-results API behind the search strategy."""

    name = ""

    async def search(self, source: SourceDefinition, limit: int) -> StrategyResult:
        raise NotImplementedError


def parse_search_payload(payload: Any) -> List[Dict[str, str]]:
    """
    Normalize news/organic/article result arrays into {title, link, summary}
    dicts, deduplicated by link.
    """
    if not isinstance(payload, dict):
        raise PayloadShapeError("Search payload must be a JSON object")

    candidates: List[Any] = []
    for key in ("news_results", "organic_results", "articles_results"):
        value = payload.get(key)
        if isinstance(value, list):
            candidates.extend(value)

    results: List[Dict[str, str]] = []
    seen: Set[str] = set()
    for entry in candidates:
        if not isinstance(entry, dict):
            continue
        title = str(entry.get("title") or entry.get("name") or "").strip()
        link = str(entry.get("link") or entry.get("url") or "").strip()
        summary = str(entry.get("snippet") or entry.get("description") or entry.get("content") or "").strip()
        if not title or not link or link in seen:
            continue
        seen.add(link)
        results.append({"title": title, "link": link, "summary": summary or title})
    return results


class SerpApiProvider(SearchProvider):

    name = "serpapi"

    def __init__(self, http: HttpClient, api_key: Optional[str], cache: ResultCache):
        self.http = http
        self.api_key = api_key
        self.cache = cache
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def result_count(source: SourceDefinition, limit: int) -> int:
        try:
            requested = int(math.floor(float(source.option("num", limit * 2)) + 0.5))
        except (TypeError, ValueError, OverflowError):
            requested = limit * 2
        return min(max(requested, 10), 20)

    async def search(self, source: SourceDefinition, limit: int) -> StrategyResult:
        if not self.api_key:
            raise StrategyConfigurationError("SERPAPI_API_KEY not configured")

        base_url = source.url if source.url.startswith("https://") else SERPAPI_ENDPOINT
        query = str(source.option("query", "")).strip() or source.title
        engine = str(source.option("engine", "")).strip() or "google_news"
        num = self.result_count(source, limit)
        gl = source.option("gl")
        hl = source.option("hl")

        cache_key = json.dumps(
            {"id": source.id, "query": query, "engine": engine, "gl": gl, "hl": hl, "num": num},
            sort_keys=True,
        )
        ttl = source.option("cache_ttl_seconds")
        ttl = float(ttl) if isinstance(ttl, (int, float)) and ttl > 0 else None
        cached = self.cache.get(cache_key, ttl_seconds=ttl)
        if cached is not None:
            return StrategyResult(items=list(cached[:limit]), from_cache=True)

        params = {"api_key": self.api_key, "engine": engine, "q": query, "output": "json", "num": str(num)}
        if isinstance(gl, str):
            params["gl"] = gl
        if isinstance(hl, str):
            params["hl"] = hl

        payload = await self.http.get_json(base_url, params=params, timeout=SEARCH_TIMEOUT)
        items = [
            RawCandidateItem(
                title=article["title"],
                link=article["link"],
                summary=article["summary"],
                source_id=source.id,
                source_name=source.title,
                language=source.language,
            )
            for article in parse_search_payload(payload)
        ]
        self.cache.set(cache_key, items)
        return StrategyResult(items=items[:limit], from_cache=False)


class SearchStrategy(FetchStrategy):
    """Generic search API, dispatched to a provider by ``options.provider``."""

    tag = "search"

    def __init__(self, http: HttpClient, providers: Dict[str, SearchProvider]):
        super().__init__(http)
        self.providers = providers

    async def execute(self, source: SourceDefinition, limit: int) -> StrategyResult:
        provider_name = source.option("provider", "serpapi")
        provider = self.providers.get(provider_name) if isinstance(provider_name, str) else None
        if provider is None:
            raise StrategyConfigurationError(f"Unsupported search provider: {provider_name}")
        return await provider.search(source, limit * 2)


def build_strategy_registry(
    http: HttpClient,
    settings: DiscoverySettings,
    feed_cache: ResultCache,
    search_cache: ResultCache,
) -> Dict[str, FetchStrategy]:
    """Strategy tag -> implementation. Register new strategies here."""
    strategies: List[FetchStrategy] = [
        FeedStrategy(http, feed_cache),
        ProxyRenderStrategy(http),
        TrendingRepositoryStrategy(http),
        TrendingProductStrategy(http, settings.producthunt_api_token),
        SearchStrategy(http, {
            SerpApiProvider.name: SerpApiProvider(http, settings.serpapi_api_key, search_cache),
        }),
    ]
    return {strategy.tag: strategy for strategy in strategies}
