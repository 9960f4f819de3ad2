from __future__ import annotations

import asyncio
import logging

import uvicorn

from linkgraph.links.engine import connect_engine
from linkgraph.settings import settings

from .app import create_app

logger = logging.getLogger(__name__)


async def serve_links(host: str | None = None, port: int | None = None) -> None:
    """Open the configured store, make sure its tables exist and serve until stopped."""
    engine = await connect_engine(settings)
    try:
        await engine.store.ensure_schema()
        bind = (host or settings.bind_host, port or settings.bind_port)
        logger.info(f"Serving link graph ({settings.backend}) on {bind[0]}:{bind[1]}")
        server = uvicorn.Server(
            uvicorn.Config(
                create_app(engine),
                host=bind[0],
                port=bind[1],
                log_level=(settings.log_level or "info").lower(),
                loop="uvloop",
                http="httptools",
            )
        )
        await server.serve()
    finally:
        await engine.close()


def main(host: str | None = None, port: int | None = None) -> None:
    asyncio.run(serve_links(host, port))


if __name__ == "__main__":
    main()
