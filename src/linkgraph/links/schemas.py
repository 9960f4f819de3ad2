from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import asdict, is_dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import LinkValidationError
from .models import Link, LinkType

MAX_BATCH_SIZE = 5000
MAX_ID_LENGTH = 300
MAX_RELATIONSHIP_LENGTH = 100
MAX_WEIGHT = 100.0

DEFAULT_BACKLINKS_LIMIT = 50
MAX_BACKLINKS_LIMIT = 200
DEFAULT_RELATED_LIMIT = 25
MAX_RELATED_LIMIT = 50


class LinkIn(BaseModel):
    """Wire shape of one link. Accepts camelCase (wire) or snake_case names.

    Scalars are strict: numeric strings and booleans are not coerced.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    source_id: str = Field(alias="sourceId", min_length=1, max_length=MAX_ID_LENGTH, strict=True)
    target_id: str = Field(alias="targetId", min_length=1, max_length=MAX_ID_LENGTH, strict=True)
    link_type: LinkType = Field(alias="linkType")
    relationship: str | None = Field(default=None, max_length=MAX_RELATIONSHIP_LENGTH, strict=True)
    weight: float = Field(default=1.0, ge=0.0, le=MAX_WEIGHT, allow_inf_nan=False, strict=True)

    def to_link(self) -> Link:
        return Link(
            source_id=self.source_id,
            target_id=self.target_id,
            link_type=self.link_type.value,
            relationship=self.relationship,
            weight=self.weight,
        )


class SyncBatch(BaseModel):
    links: list[LinkIn] = Field(min_length=1, max_length=MAX_BATCH_SIZE)
    # Delete every existing link before applying this batch.
    replace: bool = False


def _as_payload(item: Any) -> Any:
    if isinstance(item, LinkIn):
        return item.model_dump(by_alias=True)
    if is_dataclass(item) and not isinstance(item, type):
        return asdict(item)
    return item


def parse_sync_batch(links: Iterable[Link | LinkIn | Mapping[str, Any]], *, replace: bool) -> SyncBatch:
    """Validate a whole batch up front; any bad row rejects all of it."""
    payload = {"links": [_as_payload(x) for x in links], "replace": replace}
    try:
        return SyncBatch.model_validate(payload)
    except ValidationError as e:
        raise LinkValidationError(str(e)) from e


def check_limit(limit: int, *, maximum: int, name: str = "limit") -> int:
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise LinkValidationError(f"{name} must be an integer")
    if limit < 1 or limit > maximum:
        raise LinkValidationError(f"{name} must be between 1 and {maximum}")
    return limit


def check_entity_id(entity_id: str) -> str:
    if not entity_id or not entity_id.strip():
        raise LinkValidationError("Entity ID is required")
    return entity_id
