"""
SafeCall - Main Entry Point

Starts the WebSocket session gateway with configuration from the
environment (.env supported).
"""

import asyncio
import logging
import sys

import uvicorn

from safecall.api.ws_gateway import create_app
from safecall.config import config
from safecall.utils.logging_context import setup_logging


async def main() -> None:
    setup_logging(config.log_level)
    logger = logging.getLogger("safecall")

    try:
        app = create_app(cfg=config)

        host, port = config.gateway.host, config.gateway.port
        logger.info(f"Session gateway starting on {host}:{port}")
        logger.info(f"   Sessions:  ws://localhost:{port}/ws")
        logger.info(f"   Observers: ws://localhost:{port}/ws/observe")
        logger.info(f"   Health:    GET http://localhost:{port}/health")

        server = uvicorn.Server(uvicorn.Config(
            app=app,
            host=host,
            port=port,
            log_level=config.log_level.lower(),
            access_log=False,
        ))
        await server.serve()
    except Exception as e:
        logger.error(f"FATAL: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
