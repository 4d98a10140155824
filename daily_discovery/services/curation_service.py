"""
Language-model curation of candidate items.

Sends the rebalanced candidate pool to an OpenAI-compatible chat completions
endpoint and maps the returned JSON array back onto CuratedItems. Any
failure yields ``None`` so the caller can fall back to deterministic
formatting.
"""

import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from daily_discovery.config.settings import DiscoverySettings
from daily_discovery.models.content import CategoryDefinition, CuratedItem, RawCandidateItem, format_link
from daily_discovery.services.http_client import HttpClient, describe_error
from daily_discovery.services.source_registry import CategoryRegistry
from daily_discovery.utils.logging_config import log_curation_interaction


OPENROUTER_ENDPOINT = "https://openrouter.ai/api/v1/chat/completions"
OPENAI_ENDPOINT = "https://api.openai.com/v1/chat/completions"

CURATION_TIMEOUT = 45.0
MAX_TOKENS = 2000
TEMPERATURE = 0.5

DEFAULT_GENERIC_SYSTEM_PROMPT = (
    "You are a research scout tasked with surfacing timely, high-quality knowledge for the following theme: "
    "{category_name}. Use the supplied source excerpts to identify the most novel, high-signal updates. "
    "Return JSON results, keep tone factual, include original links, and avoid speculation."
)

WHITESPACE_PATTERN = re.compile(r"\s+")


class CurationError(Exception):
    """Model response could not be turned into curated items"""
    pass


@dataclass
class CurationProvider:
    """Chat completions endpoint plus the credentials to call it"""
    name: str
    endpoint: str
    api_key: str
    model: str
    extra_headers: Dict[str, str]


def select_provider(settings: DiscoverySettings) -> Optional[CurationProvider]:
    """OpenRouter when configured, otherwise OpenAI, otherwise nothing."""
    if not settings.has_ai_config():
        return None
    if settings.openrouter_api_key:
        return CurationProvider(
            name="openrouter",
            endpoint=OPENROUTER_ENDPOINT,
            api_key=settings.openrouter_api_key,
            model=settings.openrouter_model,
            extra_headers={
                "HTTP-Referer": "https://daily-discovery.local",
                "X-Title": "Daily Discovery",
            },
        )
    if settings.openai_api_key:
        return CurationProvider(
            name="openai",
            endpoint=OPENAI_ENDPOINT,
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            extra_headers={},
        )
    return None


def extract_content(content: Any) -> str:
    """Assistant text from a message content that may be a string or a list of parts."""
    if not content:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict):
                text = part.get("text") if isinstance(part.get("text"), str) else part.get("content")
                if isinstance(text, str):
                    parts.append(text)
        return "".join(parts)
    if isinstance(content, dict) and isinstance(content.get("text"), str):
        return content["text"]
    return ""


def parse_json_array(raw: str) -> Optional[List[Dict[str, Any]]]:
    """
    Parse model output into a list of objects.

    Accepts a bare JSON array, an object with an ``items`` array, or text
    with an array embedded between the first ``[`` and the last ``]``.
    """
    if not raw:
        return None
    trimmed = raw.strip()

    try:
        parsed = json.loads(trimmed)
    except json.JSONDecodeError:
        start = trimmed.find("[")
        end = trimmed.rfind("]")
        if start < 0 or end <= start:
            return None
        try:
            parsed = json.loads(trimmed[start:end + 1])
        except json.JSONDecodeError:
            return None
        return [entry for entry in parsed if isinstance(entry, dict)] if isinstance(parsed, list) else None

    if isinstance(parsed, dict):
        parsed = parsed.get("items")
    if isinstance(parsed, list):
        return [entry for entry in parsed if isinstance(entry, dict)]
    return None


def format_text(value: Any, fallback: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return fallback


class CurationService:
    """Rerank and rewrite a candidate pool with a chat model."""

    def __init__(self, settings: DiscoverySettings, http: HttpClient, categories: Optional[CategoryRegistry] = None):
        self.settings = settings
        self.http = http
        self.categories = categories
        self.provider = select_provider(settings)
        self.logger = logging.getLogger(__name__)
        if self.enabled:
            self.logger.info(f"Curation enabled via {self.provider.name} ({self.provider.model})")
        else:
            self.logger.info("No model credentials configured; curation disabled")

    @property
    def enabled(self) -> bool:
        return self.provider is not None

    def build_system_prompt(self, category: Optional[CategoryDefinition], category_name: str) -> str:
        if category and category.system_prompt:
            return category.system_prompt
        template = ""
        if self.categories is not None:
            template = self.categories.generic_system_prompt
        return (template or DEFAULT_GENERIC_SYSTEM_PROMPT).replace("{category_name}", category_name)

    @staticmethod
    def build_user_prompt(category_name: str, user_prompt: str, limit: int,
                          source_hints: List[str], candidates: List[RawCandidateItem]) -> str:
        serialized = "\n\n".join(
            f"{index}. Title: {item.title}\n"
            f"   Source: {item.source_name}\n"
            f"   Link: {item.link}\n"
            f"   Summary: {WHITESPACE_PATTERN.sub(' ', item.summary or '').strip()}"
            for index, item in enumerate(candidates, start=1)
        )
        return (
            f"Category: {category_name}\n"
            f"Focus: {user_prompt}\n"
            f"Source hints: {', '.join(source_hints)}\n\n"
            f"You must return {limit} items as a JSON array. Each object must include: title, "
            f"summary (max 2 sentences), link, categoryId, categoryName, sourceName, reason.\n"
            f"Use the original link from the feed whenever possible.\n\n"
            f"Input feed:\n{serialized}"
        )

    async def curate(
        self,
        category_id: str,
        category_name: str,
        user_prompt: str,
        limit: int,
        candidates: List[RawCandidateItem],
    ) -> Optional[List[CuratedItem]]:
        """
        Ask the model for ``limit`` curated items drawn from ``candidates``.

        Returns None when curation is disabled or anything goes wrong.
        """
        if not self.enabled:
            return None

        category = self.categories.get(category_id) if self.categories is not None else None
        payload = {
            "model": self.provider.model,
            "messages": [
                {"role": "system", "content": self.build_system_prompt(category, category_name)},
                {"role": "user", "content": self.build_user_prompt(
                    category_name,
                    user_prompt,
                    limit,
                    list(category.seed_source_ids) if category else [],
                    candidates,
                )},
            ],
            "max_tokens": MAX_TOKENS,
            "temperature": TEMPERATURE,
        }
        headers = {
            "Authorization": f"Bearer {self.provider.api_key}",
            "Content-Type": "application/json",
        }
        headers.update(self.provider.extra_headers)

        started = time.perf_counter()
        try:
            data = await self.http.post_json(
                self.provider.endpoint,
                payload,
                headers=headers,
                timeout=CURATION_TIMEOUT,
                retries=0,
            )
            entries = self._parse_response(data)
        except Exception as e:
            self.logger.error(f"Curation failed for {category_id}: {describe_error(e)}")
            log_curation_interaction(
                self.logger, category_id, self.provider.name, self.provider.model,
                (time.perf_counter() - started) * 1000, success=False,
            )
            return None

        items = self.map_entries(entries, category_id, category_name, limit, candidates)
        log_curation_interaction(
            self.logger, category_id, self.provider.name, self.provider.model,
            (time.perf_counter() - started) * 1000, success=True,
            candidate_count=len(candidates), item_count=len(items),
        )
        return items

    def _parse_response(self, data: Any) -> List[Dict[str, Any]]:
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise CurationError(f"Unexpected response shape: {e}") from e

        entries = parse_json_array(extract_content(content))
        if entries is None:
            raise CurationError("Unable to parse model response as JSON array")
        if not entries:
            raise CurationError("Model returned an empty array")
        return entries

    @staticmethod
    def map_entries(
        entries: List[Dict[str, Any]],
        category_id: str,
        category_name: str,
        limit: int,
        candidates: List[RawCandidateItem],
    ) -> List[CuratedItem]:
        items = []
        for index, entry in enumerate(entries[:limit]):
            fallback = candidates[index] if index < len(candidates) else (candidates[0] if candidates else None)
            source_name = format_text(entry.get("sourceName"), fallback.source_name if fallback else category_name)
            items.append(CuratedItem(
                title=format_text(entry.get("title"), fallback.title if fallback else f"Untitled insight {index + 1}"),
                summary=format_text(entry.get("summary"), fallback.summary if fallback and fallback.summary
                                    else f"Latest discussion from {source_name}."),
                link=format_link(entry.get("link"), format_link(fallback.link, "#") if fallback else "#"),
                category_id=category_id,
                category_name=category_name,
                source_id=format_text(entry.get("sourceId"), fallback.source_id if fallback else category_id),
                source_name=source_name,
                language=fallback.language if fallback else None,
                reason=format_text(entry.get("reason"), f"From {fallback.source_name if fallback else source_name}"),
            ))
        return items
