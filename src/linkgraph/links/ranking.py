"""Related-entity ranking.

Edges touching an entity are normalized into direction-tagged incidences,
summed per neighbor, boosted by the neighbor's quality metadata and finally
trimmed to a type-diverse top-K.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass

from .labels import format_relationship_label
from .models import (
    DEFAULT_QUALITY,
    DEFAULT_READER_IMPORTANCE,
    LinkRow,
    LinkType,
    PageMeta,
    RelatedEntry,
    display_fields,
)

MIN_SCORE = 1.0
MIN_PER_TYPE = 2
OVERFETCH_FACTOR = 3


@dataclass(frozen=True, slots=True)
class Incidence:
    """One edge as seen from the entity being ranked."""

    neighbor_id: str
    link_type: str
    relationship: str | None
    weight: float
    is_reverse: bool


@dataclass(slots=True)
class NeighborAggregate:
    neighbor_id: str
    raw_score: float = 0.0
    relationship: str | None = None
    relationship_is_reverse: bool = False


def normalize(entity_id: str, rows: Iterable[LinkRow]) -> list[Incidence]:
    """Fold both edge orientations into neighbor-relative incidences.

    Self-loops carry no neighbor and are dropped.
    """
    out: list[Incidence] = []
    for r in rows:
        if r.source_id == entity_id:
            neighbor, is_reverse = r.target_id, False
        elif r.target_id == entity_id:
            neighbor, is_reverse = r.source_id, True
        else:
            continue
        if neighbor == entity_id:
            continue
        out.append(Incidence(neighbor, r.link_type, r.relationship, float(r.weight), is_reverse))
    return out


def aggregate(incidences: Iterable[Incidence]) -> dict[str, NeighborAggregate]:
    """Sum weights per neighbor across every link type and direction.

    The surfaced relationship is the first labelled `yaml_related` incidence
    in input order.
    """
    out: dict[str, NeighborAggregate] = {}
    for inc in incidences:
        agg = out.get(inc.neighbor_id)
        if agg is None:
            agg = out[inc.neighbor_id] = NeighborAggregate(inc.neighbor_id)
        agg.raw_score += inc.weight
        if (
            agg.relationship is None
            and inc.link_type == LinkType.YAML_RELATED.value
            and inc.relationship is not None
        ):
            agg.relationship = inc.relationship
            agg.relationship_is_reverse = inc.is_reverse
    return out


def quality_boost(meta: PageMeta | None) -> float:
    quality = DEFAULT_QUALITY
    importance = DEFAULT_READER_IMPORTANCE
    if meta is not None:
        if meta.quality is not None:
            quality = float(meta.quality)
        if meta.reader_importance is not None:
            importance = float(meta.reader_importance)
    return 1.0 + quality / 40.0 + importance / 400.0


def round_score(score: float) -> float:
    """Two decimals, halves rounded up."""
    return math.floor(score * 100.0 + 0.5) / 100.0


def boosted_score(raw_score: float, meta: PageMeta | None) -> float:
    return raw_score * quality_boost(meta)


def score_candidates(
    aggregates: Mapping[str, NeighborAggregate],
    pages: Mapping[str, PageMeta],
    *,
    limit: int,
    min_score: float = MIN_SCORE,
) -> list[RelatedEntry]:
    """Boost, floor and sort neighbors, keeping `OVERFETCH_FACTOR * limit` of them."""
    scored: list[tuple[float, RelatedEntry]] = []
    for neighbor_id, agg in aggregates.items():
        meta = pages.get(neighbor_id)
        score = boosted_score(agg.raw_score, meta)
        if score < min_score:
            continue
        entity_type, title = display_fields(neighbor_id, meta)
        entry = RelatedEntry(
            id=neighbor_id,
            type=entity_type,
            title=title,
            score=round_score(score),
            label=format_relationship_label(agg.relationship, agg.relationship_is_reverse),
        )
        scored.append((score, entry))

    # Order on the unrounded score; id keeps ties stable.
    scored.sort(key=lambda x: (-x[0], x[1].id))
    return [entry for _, entry in scored[: limit * OVERFETCH_FACTOR]]


def guarantee_per_type(
    candidates: Sequence[RelatedEntry],
    selected: set[str],
    *,
    per_type: int = MIN_PER_TYPE,
) -> None:
    """Phase 1: reserve the top `per_type` candidates of every entity type."""
    taken: dict[str, int] = {}
    for entry in candidates:
        n = taken.get(entry.type, 0)
        if n < per_type:
            selected.add(entry.id)
            taken[entry.type] = n + 1


def fill_by_score(candidates: Sequence[RelatedEntry], selected: set[str], *, limit: int) -> None:
    """Phase 2: top up `selected` in global score order until it holds `limit` ids."""
    for entry in candidates:
        if len(selected) >= limit:
            break
        selected.add(entry.id)


def type_diverse_select(
    candidates: Sequence[RelatedEntry],
    limit: int,
    *,
    per_type: int = MIN_PER_TYPE,
) -> list[RelatedEntry]:
    """Top-`limit` over score-sorted `candidates` that keeps rare types visible.

    The result stays in global score order. When the per-type reservations
    alone exceed `limit`, the lowest-scored reservations are cut.
    """
    selected: set[str] = set()
    guarantee_per_type(candidates, selected, per_type=per_type)
    fill_by_score(candidates, selected, limit=limit)
    return [e for e in candidates if e.id in selected][:limit]
