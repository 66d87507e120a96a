"""
Chapterwatch - Catalog Models
Typed views over the catalog's JSON payloads.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Any

from core.temporal import parse_iso_timestamp
from catalog.errors import CatalogResponseError


def _text_field(attributes: Dict[str, Any], name: str) -> str:
    """Read an optional string attribute; other JSON types are a malformed item."""
    value = attributes.get(name)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise CatalogResponseError(
            f"Feed item field '{name}' is not a string: {type(value).__name__}"
        )
    return value


@dataclass
class FeedEntry:
    """
    One chapter as listed in a work's feed.

    Timestamps are normalised on construction: a missing readable time
    falls back to the publish time, a missing creation time to the
    readable time, and a missing update time to the creation time.
    """
    source_id: str
    chapter: str = ""
    title: str = ""
    language: str = ""
    published_at: Optional[datetime] = None
    readable_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.chapter = (self.chapter or "").strip()
        self.language = (self.language or "").strip().lower()
        self.title = self.title or ""
        if self.readable_at is None:
            self.readable_at = self.published_at
        if self.created_at is None:
            self.created_at = self.readable_at
        if self.updated_at is None:
            self.updated_at = self.created_at

    @property
    def effective_at(self) -> Optional[datetime]:
        """When the entry became visible: creation, else readable, else publish time."""
        for value in (self.created_at, self.readable_at, self.published_at):
            if value is not None:
                return value
        return None

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> "FeedEntry":
        if not isinstance(item, dict):
            raise CatalogResponseError("Feed item is not an object")
        attributes = item.get("attributes") or {}
        if not isinstance(attributes, dict):
            raise CatalogResponseError("Feed item attributes are not an object")
        return cls(
            source_id=str(item.get("id") or ""),
            chapter=_text_field(attributes, "chapter"),
            title=_text_field(attributes, "title"),
            language=_text_field(attributes, "translatedLanguage"),
            published_at=parse_iso_timestamp(attributes.get("publishAt")),
            readable_at=parse_iso_timestamp(attributes.get("readableAt")),
            created_at=parse_iso_timestamp(attributes.get("createdAt")),
            updated_at=parse_iso_timestamp(attributes.get("updatedAt")),
        )


@dataclass
class FeedPage:
    """A page of the chapter feed plus the feed's total size."""
    entries: List[FeedEntry] = field(default_factory=list)
    total: int = 0
    limit: int = 0
    offset: int = 0

    @classmethod
    def from_api(cls, payload: Dict[str, Any], limit: int = 0, offset: int = 0) -> "FeedPage":
        data = payload.get("data")
        if data is None:
            data = []
        if not isinstance(data, list):
            raise CatalogResponseError("Feed 'data' is not a list")
        entries = [FeedEntry.from_api(item) for item in data]
        try:
            total = int(payload.get("total") or 0)
        except (TypeError, ValueError):
            total = 0
        return cls(entries=entries, total=total, limit=limit, offset=offset)

    def is_last(self) -> bool:
        """True when no further page should be requested."""
        if not self.entries:
            return True
        if self.limit and len(self.entries) < self.limit:
            return True
        return self.total > 0 and self.offset + len(self.entries) >= self.total


@dataclass
class WorkInfo:
    """Catalog metadata for a single work."""
    external_id: str
    titles: Dict[str, str] = field(default_factory=dict)

    def best_title(self, preferred_languages: Optional[List[str]] = None) -> str:
        """Title in the first preferred language available, else any title."""
        for language in preferred_languages or []:
            title = (self.titles.get(language) or "").strip()
            if title:
                return title
        for title in self.titles.values():
            if title and title.strip():
                return title.strip()
        return self.external_id

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "WorkInfo":
        data = payload.get("data")
        if not isinstance(data, dict):
            raise CatalogResponseError("Work payload has no 'data' object")
        attributes = data.get("attributes") or {}
        if not isinstance(attributes, dict):
            raise CatalogResponseError("Work attributes are not an object")
        title_map = attributes.get("title") or {}
        if not isinstance(title_map, dict):
            raise CatalogResponseError("Work 'title' is not an object")
        titles = {
            str(lang).lower(): str(text)
            for lang, text in title_map.items()
            if text
        }
        # Alternative titles only fill languages the main title map lacks
        for alt in attributes.get("altTitles") or []:
            if isinstance(alt, dict):
                for lang, text in alt.items():
                    titles.setdefault(str(lang).lower(), str(text))
        return cls(external_id=str(data.get("id") or ""), titles=titles)
