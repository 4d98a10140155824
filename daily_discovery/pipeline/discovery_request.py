"""
Request boundary: turns raw request parameters into an aggregator call and
converts unexpected failures into a structured error envelope.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from daily_discovery.pipeline.discovery_aggregator import AGGREGATED_ID, DiscoveryAggregator, clamp_limit, to_slug


ERROR_ENVELOPE_ID = "ai_search_error"
ERROR_ENVELOPE_TITLE = "AI Search Error"

LEADING_INTEGER_PATTERN = re.compile(r"^\s*([+-]?\d+)")

logger = logging.getLogger(__name__)


@dataclass
class DiscoveryRequest:
    """Raw, untrusted request parameters (all optional strings)."""
    category_id: Optional[str] = None
    category_name: Optional[str] = None
    prompt: Optional[str] = None
    limit: Optional[str] = None
    categories: Optional[str] = None
    sites: Optional[str] = None


@dataclass
class DiscoveryResponse:
    status_code: int
    body: Dict[str, Any] = field(default_factory=dict)


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def parse_limit_param(raw: Any) -> int:
    """Leading-integer parse of the limit parameter, then clamped."""
    if raw is None:
        return clamp_limit(None)
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return clamp_limit(int(raw))
    match = LEADING_INTEGER_PATTERN.match(str(raw))
    return clamp_limit(int(match.group(1)) if match else None)


def parse_sites_param(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [site.strip() for site in raw.split(",") if site.strip()]


def parse_categories_param(raw: Optional[str], aggregator: DiscoveryAggregator) -> List[Dict[str, str]]:
    """
    Parse a JSON array of ``{id?, name?, prompt?}`` objects.

    Ids are slugged (from the name when no id is given), duplicates are
    dropped, and missing names and prompts come from the built-in category
    of the same id. Malformed input yields an empty list.
    """
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse categories param: {e}")
        return []
    if not isinstance(parsed, list):
        return []

    seen = set()
    categories = []
    for entry in parsed:
        if not isinstance(entry, dict):
            continue
        id_source = _clean(entry.get("id")) if isinstance(entry.get("id"), str) else None
        name_source = _clean(entry.get("name")) if isinstance(entry.get("name"), str) else None
        prompt_source = _clean(entry.get("prompt")) if isinstance(entry.get("prompt"), str) else None

        resolved_id = to_slug(id_source) if id_source else (to_slug(name_source) if name_source else None)
        if not resolved_id or resolved_id in seen:
            continue
        seen.add(resolved_id)

        default = aggregator.categories.get(resolved_id)
        name = name_source or (default.name if default else resolved_id)
        categories.append({
            "id": resolved_id,
            "name": name,
            "prompt": prompt_source or (default.prompt if default else (name_source or resolved_id)),
        })
    return categories


async def resolve_discovery_request(aggregator: DiscoveryAggregator, request: DiscoveryRequest) -> Dict[str, Any]:
    """Route the request to aggregated, dynamic or built-in category discovery."""
    limit = parse_limit_param(request.limit)

    snapshot = aggregator.get_default_categories_snapshot()
    fallback_id = snapshot[0]["id"] if snapshot else "ai"
    category_id = to_slug(_clean(request.category_id) or fallback_id)
    category = aggregator.categories.get(category_id)
    category_name = _clean(request.category_name) or (category.name if category else category_id)
    prompt = _clean(request.prompt) or (category.prompt if category else category_name)

    if category_id == AGGREGATED_ID:
        categories = parse_categories_param(request.categories, aggregator) or snapshot
        result = await aggregator.fetch_aggregated_insights(categories, limit)
    elif category is None:
        result = await aggregator.fetch_dynamic_category_insights(
            category_name, prompt, limit, parse_sites_param(request.sites)
        )
    else:
        result = await aggregator.fetch_category_insights(category_id, category_name, prompt, limit)
    return result.to_dict()


def error_envelope(error: BaseException) -> Dict[str, Any]:
    message = str(error) or "Unknown error"
    return {
        "id": ERROR_ENVELOPE_ID,
        "title": ERROR_ENVELOPE_TITLE,
        "error": f"Failed to perform search: {message}",
        "items": [],
    }


async def handle_discovery_request(aggregator: DiscoveryAggregator, request: DiscoveryRequest) -> DiscoveryResponse:
    """Never raises: unexpected failures become a 500 error envelope."""
    try:
        body = await resolve_discovery_request(aggregator, request)
        return DiscoveryResponse(status_code=200, body=body)
    except Exception as e:
        logger.exception(f"Discovery request failed: {e}")
        return DiscoveryResponse(status_code=500, body=error_envelope(e))
