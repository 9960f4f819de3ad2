from __future__ import annotations

import logging
import os
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from linkgraph import __version__
from linkgraph.links.engine import LinkGraph
from linkgraph.links.errors import LinkValidationError, StoreError, StoreUnavailableError
from linkgraph.links.schemas import DEFAULT_BACKLINKS_LIMIT, DEFAULT_RELATED_LIMIT

from .auth import require_api_key

logger = logging.getLogger(__name__)


def _error(status: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"error": error, "message": message})


def build_links_router(engine: LinkGraph) -> APIRouter:
    r = APIRouter(prefix="/api/links", tags=["links"])

    @r.post("/sync")
    async def sync(request: Request, _auth: None = Depends(require_api_key)):
        try:
            body = await request.json()
        except ValueError:
            return _error(400, "invalid_json", "Request body must be valid JSON")
        if not isinstance(body, dict):
            return _error(400, "validation_error", "Request body must be a JSON object")

        links = body.get("links")
        if not isinstance(links, list):
            return _error(400, "validation_error", "links must be an array")
        replace = body.get("replace", False)
        if not isinstance(replace, bool):
            return _error(400, "validation_error", "replace must be a boolean")

        return await engine.sync(links, replace=replace)

    @r.get("/backlinks/{entity_id}")
    async def backlinks(
        entity_id: str,
        limit: int = DEFAULT_BACKLINKS_LIMIT,
        _auth: None = Depends(require_api_key),
    ):
        return await engine.backlinks(entity_id, limit=limit)

    @r.get("/related/{entity_id}")
    async def related(
        entity_id: str,
        limit: int = DEFAULT_RELATED_LIMIT,
        _auth: None = Depends(require_api_key),
    ):
        return await engine.related(entity_id, limit=limit)

    @r.get("/graph/{entity_id}")
    async def graph(entity_id: str, _auth: None = Depends(require_api_key)):
        return await engine.graph(entity_id)

    @r.get("/stats")
    async def stats(_auth: None = Depends(require_api_key)):
        return await engine.stats()

    return r


def create_app(engine: LinkGraph) -> FastAPI:
    app = FastAPI(title="Link Graph Service", version=__version__)

    @app.exception_handler(LinkValidationError)
    async def _validation(_request: Request, exc: LinkValidationError):
        return _error(400, "validation_error", str(exc))

    @app.exception_handler(RequestValidationError)
    async def _request_validation(_request: Request, exc: RequestValidationError):
        return _error(400, "validation_error", str(exc))

    @app.exception_handler(StoreUnavailableError)
    async def _unavailable(_request: Request, exc: StoreUnavailableError):
        logger.error(f"Link store unavailable: {exc}")
        return _error(503, "store_unavailable", str(exc))

    @app.exception_handler(StoreError)
    async def _store(_request: Request, exc: StoreError):
        logger.error(f"Link store error: {exc}")
        return _error(500, "store_error", str(exc))

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"ok": True, "host": os.uname().nodename}

    app.include_router(build_links_router(engine))
    return app
