"""
Source and category registries.

Sources are loaded from config/discovery_sources.json and categories (with
their curation prompts) from config/discovery_categories.yaml. Both are read
once at construction and never mutated afterwards.
"""

import json
import logging
import os
from typing import Any, Dict, Iterable, List, Optional

import yaml

from daily_discovery.models.content import CategoryDefinition, FallbackItem, SourceDefinition


CONFIG_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "config")
DEFAULT_SOURCES_PATH = os.path.join(CONFIG_DIR, "discovery_sources.json")
DEFAULT_CATEGORIES_PATH = os.path.join(CONFIG_DIR, "discovery_categories.yaml")


class RegistryError(Exception):
    """Raised when registry configuration cannot be loaded"""
    pass


def sort_sources_by_weight(sources: Iterable[SourceDefinition]) -> List[SourceDefinition]:
    """Weight-descending, stable for equal weights."""
    return sorted(sources, key=lambda source: source.weight, reverse=True)


def source_from_dict(data: Dict[str, Any]) -> SourceDefinition:
    fallback_items = tuple(
        FallbackItem(
            title=str(item.get("title", "")),
            summary=str(item.get("summary", "")),
            link=str(item.get("link", "")),
        )
        for item in data.get("fallback_items") or []
    )
    weight = data.get("weight")
    return SourceDefinition(
        id=data["id"],
        title=data.get("title") or data["id"],
        strategy=data["strategy"],
        url=data.get("url", ""),
        language=data.get("language", "en"),
        categories=tuple(data.get("categories") or ()),
        weight=float(weight) if weight is not None else 0.5,
        options=dict(data.get("options") or {}),
        fallback_items=fallback_items,
    )


class SourceRegistry:
    """
    Static mapping of source id to source definition.
    """

    def __init__(self, sources: Optional[Iterable[SourceDefinition]] = None, config_path: Optional[str] = None):
        self.logger = logging.getLogger(__name__)
        if sources is None:
            sources = self._load_sources(config_path or DEFAULT_SOURCES_PATH)
        self._sources: List[SourceDefinition] = list(sources)
        self._by_id: Dict[str, SourceDefinition] = {source.id: source for source in self._sources}
        self.logger.debug(f"Source registry loaded with {len(self._sources)} sources")

    def _load_sources(self, config_path: str) -> List[SourceDefinition]:
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise RegistryError(f"Failed to load discovery sources from {config_path}: {e}") from e

        entries = raw.get("sources", []) if isinstance(raw, dict) else raw
        if not isinstance(entries, list):
            raise RegistryError(f"Discovery sources in {config_path} must be a list")
        return [source_from_dict(entry) for entry in entries]

    @property
    def sources(self) -> List[SourceDefinition]:
        return list(self._sources)

    def get(self, source_id: str) -> Optional[SourceDefinition]:
        return self._by_id.get(source_id)

    def by_category(self, category_id: str) -> List[SourceDefinition]:
        return [source for source in self._sources if category_id in source.categories]

    def top_weighted(self, count: int) -> List[SourceDefinition]:
        return sort_sources_by_weight(self._sources)[:count]

    def __len__(self) -> int:
        return len(self._sources)


class CategoryRegistry:
    """
    Built-in categories plus the prompts used when curating them.
    """

    def __init__(self, categories: Optional[Iterable[CategoryDefinition]] = None,
                 config_path: Optional[str] = None, generic_system_prompt: Optional[str] = None):
        self.logger = logging.getLogger(__name__)
        self.generic_system_prompt = generic_system_prompt or ""
        if categories is None:
            categories = self._load_categories(config_path or DEFAULT_CATEGORIES_PATH)
        self._categories: List[CategoryDefinition] = list(categories)
        self._by_id: Dict[str, CategoryDefinition] = {category.id: category for category in self._categories}

    def _load_categories(self, config_path: str) -> List[CategoryDefinition]:
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except FileNotFoundError as e:
            raise RegistryError(f"Categories file not found at {config_path}") from e
        except yaml.YAMLError as e:
            raise RegistryError(f"Error parsing YAML at {config_path}: {e}") from e

        base_prompt = (raw.get("base_system_prompt") or "").strip()
        if not self.generic_system_prompt:
            self.generic_system_prompt = (raw.get("generic_system_prompt") or "").strip()

        categories = []
        for entry in raw.get("categories") or []:
            focus = (entry.get("focus") or "").strip()
            system_prompt = f"{base_prompt}\n{focus}".strip()
            categories.append(CategoryDefinition(
                id=entry["id"],
                name=entry.get("name") or entry["id"],
                description=entry.get("description", ""),
                prompt=entry.get("prompt", ""),
                system_prompt=system_prompt,
                seed_source_ids=tuple(entry.get("seed_source_ids") or ()),
            ))
        return categories

    @property
    def categories(self) -> List[CategoryDefinition]:
        return list(self._categories)

    def get(self, category_id: str) -> Optional[CategoryDefinition]:
        return self._by_id.get(category_id)

    def snapshot(self) -> List[Dict[str, str]]:
        return [
            {
                "id": category.id,
                "name": category.name,
                "description": category.description,
                "prompt": category.prompt,
            }
            for category in self._categories
        ]
