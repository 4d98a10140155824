"""
Content models for the discovery aggregation system.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class FetchStatus(Enum):
    """Outcome of a single source fetch"""
    OK = "ok"
    FALLBACK = "fallback"
    ERROR = "error"

    @property
    def severity(self) -> int:
        return _STATUS_SEVERITY[self]


_STATUS_SEVERITY = {
    FetchStatus.OK: 1,
    FetchStatus.FALLBACK: 2,
    FetchStatus.ERROR: 3,
}


@dataclass(frozen=True)
class FallbackItem:
    """Hand-authored item shipped with a source definition."""
    title: str
    summary: str
    link: str


@dataclass(frozen=True)
class SourceDefinition:
    """One external content provider bound to a fetch strategy."""
    id: str
    title: str
    strategy: str
    url: str
    language: str = "en"
    categories: Tuple[str, ...] = ()
    weight: float = 0.5
    options: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)
    fallback_items: Tuple[FallbackItem, ...] = ()

    def option(self, key: str, default: Any = None) -> Any:
        """Read a strategy option, treating blank strings as missing."""
        value = self.options.get(key, default)
        if isinstance(value, str) and not value.strip():
            return default
        return value


@dataclass
class RawCandidateItem:
    """Candidate item produced by a fetch strategy."""
    title: str
    link: str
    summary: str
    source_id: str
    source_name: str
    language: str = "en"
    reason: Optional[str] = None
    used_fallback: bool = False

    @property
    def dedupe_key(self) -> str:
        return self.link or self.title


@dataclass
class FetchOutcome:
    """Result of one orchestrated source fetch"""
    status: FetchStatus
    items: List[RawCandidateItem]
    used_fallback: bool
    from_cache: bool
    fetched_at: float
    message: Optional[str] = None


@dataclass
class SourceHealth:
    """Process-lifetime health record for a source."""
    last_success_at: Optional[float] = None
    last_failure_at: Optional[float] = None
    last_error: Optional[str] = None
    consecutive_failures: int = 0


@dataclass
class SourceStatus:
    """Per-source outcome summary attached to a discovery result."""
    id: str
    title: str
    status: FetchStatus
    used_fallback: bool
    from_cache: bool
    last_success_at: Optional[str] = None
    last_failure_at: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class CuratedItem:
    """Final output unit returned to callers."""
    title: str
    summary: str
    link: str
    category_id: str
    category_name: str
    source_id: str
    source_name: str
    language: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DiscoveryMeta:
    fetched_source_count: int
    raw_item_count: int
    used_ai: bool
    source_statuses: List[SourceStatus] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fetched_source_count": self.fetched_source_count,
            "raw_item_count": self.raw_item_count,
            "used_ai": self.used_ai,
            "source_statuses": [status.to_dict() for status in self.source_statuses],
        }


@dataclass
class DiscoveryResult:
    """Response envelope for one category (or a merged set of categories)."""
    id: str
    title: str
    description: str
    items: List[CuratedItem]
    retrieved_at: str
    meta: DiscoveryMeta

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "items": [item.to_dict() for item in self.items],
            "retrieved_at": self.retrieved_at,
            "meta": self.meta.to_dict(),
        }


@dataclass(frozen=True)
class CategoryDefinition:
    """Built-in topical category with its curation intent."""
    id: str
    name: str
    description: str
    prompt: str
    system_prompt: str
    seed_source_ids: Tuple[str, ...] = ()


def isoformat_timestamp(timestamp: Optional[float]) -> Optional[str]:
    """Render an epoch timestamp as an ISO-8601 UTC string."""
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def format_link(value: Any, fallback: str) -> str:
    """``value`` stripped when it is an absolute http(s) URL, else ``fallback``."""
    if isinstance(value, str):
        candidate = value.strip()
        if candidate.startswith("http://") or candidate.startswith("https://"):
            return candidate
    return fallback
