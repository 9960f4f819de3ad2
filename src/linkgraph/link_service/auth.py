from __future__ import annotations

import hmac
import logging

from fastapi import Header, HTTPException

from linkgraph.settings import settings

logger = logging.getLogger(__name__)


def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
    """Guard for the link routes; open when no `LINKGRAPH_API_KEY` is set."""
    expected = settings.api_key
    if not expected:
        return
    if x_api_key is None:
        raise HTTPException(status_code=401, detail="missing X-API-Key header")
    if not hmac.compare_digest(x_api_key.encode(), expected.encode()):
        logger.warning("Rejected link graph request with an invalid API key")
        raise HTTPException(status_code=401, detail="invalid API key")
