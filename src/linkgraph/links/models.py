from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

DEFAULT_ENTITY_TYPE = "concept"
DEFAULT_QUALITY = 5.0
DEFAULT_READER_IMPORTANCE = 50.0


class LinkType(str, Enum):
    """Provenance of a link: editorial (`yaml_related`) or machine-derived."""

    YAML_RELATED = "yaml_related"
    ENTITY_LINK = "entity_link"
    NAME_PREFIX = "name_prefix"
    SIMILARITY = "similarity"
    SHARED_TAG = "shared_tag"


@dataclass(frozen=True, slots=True)
class Link:
    """A directed, typed, weighted edge as submitted for ingestion."""

    source_id: str
    target_id: str
    link_type: str
    relationship: str | None = None
    weight: float = 1.0


@dataclass(frozen=True, slots=True)
class LinkRow:
    """A stored edge. `id` is the store's surrogate key, increasing with insertion."""

    id: int
    source_id: str
    target_id: str
    link_type: str
    relationship: str | None
    weight: float


@dataclass(frozen=True, slots=True)
class PageMeta:
    """Display and ranking metadata owned by the page store.

    Any field may be missing; use the accessors for defaulted values.
    """

    id: str
    title: str | None = None
    entity_type: str | None = None
    quality: float | None = None
    reader_importance: float | None = None

    @property
    def display_title(self) -> str:
        return self.title or self.id

    @property
    def display_type(self) -> str:
        return self.entity_type or DEFAULT_ENTITY_TYPE


def display_fields(entity_id: str, meta: PageMeta | None) -> tuple[str, str]:
    """(type, title) for an entity, falling back when metadata is missing."""
    if meta is None:
        return DEFAULT_ENTITY_TYPE, entity_id
    return meta.display_type, meta.display_title


@dataclass(slots=True)
class Backlink:
    id: str
    type: str
    title: str
    link_type: str
    weight: float
    relationship: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"id": self.id, "type": self.type, "title": self.title}
        if self.relationship:
            out["relationship"] = self.relationship
        out["linkType"] = self.link_type
        out["weight"] = self.weight
        return out


@dataclass(slots=True)
class RelatedEntry:
    id: str
    type: str
    title: str
    score: float
    label: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "score": self.score,
        }
        if self.label:
            out["label"] = self.label
        return out


@dataclass(slots=True)
class GraphNode:
    id: str
    type: str
    title: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "type": self.type, "title": self.title}


@dataclass(slots=True)
class GraphEdge:
    source: str
    target: str
    link_type: str
    weight: float
    relationship: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "source": self.source,
            "target": self.target,
            "linkType": self.link_type,
        }
        if self.relationship:
            out["relationship"] = self.relationship
        out["weight"] = self.weight
        return out


@dataclass(slots=True)
class LinkTypeStats:
    link_type: str
    count: int
    avg_weight: float

    def to_dict(self) -> dict[str, Any]:
        return {"linkType": self.link_type, "count": self.count, "avgWeight": self.avg_weight}


@dataclass(slots=True)
class LinkStats:
    total: int
    unique_sources: int
    unique_targets: int
    by_type: list[LinkTypeStats]

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "uniqueSources": self.unique_sources,
            "uniqueTargets": self.unique_targets,
            "byType": [s.to_dict() for s in self.by_type],
        }
