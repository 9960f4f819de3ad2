"""Link graph core.

This module provides:
- Link/page models and the ingestion schema
- A link store abstraction with SQLite and PostgreSQL implementations
- The related-entity ranker and the `LinkGraph` engine
"""

from .engine import LinkGraph, connect_engine
from .errors import LinkGraphError, LinkValidationError, StoreError, StoreUnavailableError
from .models import Link, LinkType, PageMeta
from .store import LinkStore, PageMetadataSource

__all__ = [
    "Link",
    "LinkGraph",
    "LinkGraphError",
    "LinkStore",
    "LinkType",
    "LinkValidationError",
    "PageMeta",
    "PageMetadataSource",
    "StoreError",
    "StoreUnavailableError",
    "connect_engine",
]
