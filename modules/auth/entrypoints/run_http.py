#!/usr/bin/env python3
"""OAuth2 Login Server - HTTP

Entry point for running the OAuth2 login web server and the token refresh scheduler.
"""

import argparse
import asyncio
import os
import sys
from pathlib import Path

# Add project root to Python path
PROJECT_ROOT = Path(__file__).parent.parent.parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from infra.core.logger import get_logger
from modules.auth.auth_orchestrator import get_auth_orchestrator

logger = get_logger(__name__)


async def serve(host: str, port: int) -> None:
    orchestrator = get_auth_orchestrator()
    await orchestrator.auth_orchestrator_start(host, port)
    try:
        await asyncio.Event().wait()
    finally:
        await orchestrator.auth_orchestrator_shutdown()


def main():
    """Main entry point for the OAuth2 login server"""
    parser = argparse.ArgumentParser(description="OAuth2 Login Server")
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("AUTH2_PORT") or os.getenv("PORT") or "5000"),
        help="Port for HTTP server (default: 5000, or AUTH2_PORT/PORT env var)"
    )
    parser.add_argument(
        "--host",
        default=os.getenv("AUTH2_HOST") or "0.0.0.0",
        help="Host for HTTP server (default: 0.0.0.0, or AUTH2_HOST env var)"
    )

    args = parser.parse_args()

    logger.info("🚀 Starting OAuth2 Login Server")
    logger.info(f"🌐 Server will listen on {args.host}:{args.port}")

    try:
        asyncio.run(serve(args.host, args.port))
    except KeyboardInterrupt:
        logger.info("👋 Server stopped")


if __name__ == "__main__":
    main()
