"""
Process entry point: builds the services, starts the timers and serves the
local control API.

    python -m caresync.runner --host 127.0.0.1 --port 8765
    python -m caresync.runner --headless
"""

from __future__ import annotations

import argparse
import asyncio
import logging

import uvicorn

from caresync.app import create_app
from caresync.config import get_settings
from caresync.dependencies import Services, build_services

logger = logging.getLogger(__name__)


async def run_loop(services: Services, poll_interval_seconds: float = 60.0) -> None:
    """Run the timers without the HTTP API until cancelled."""
    services.sync.start()
    try:
        while True:
            await asyncio.sleep(poll_interval_seconds)
            logger.debug("Queue status: %s", services.sync.get_queue_status())
    finally:
        services.sync.stop()


def main() -> None:
    parser = argparse.ArgumentParser(description="Offline sync service")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8765)
    parser.add_argument("--identity", default=None, help="Caller identity for timer-driven syncs")
    parser.add_argument("--headless", action="store_true", help="Run timers without the HTTP API")
    parser.add_argument(
        "--backend",
        default=None,
        help="Remote backend factory as package.module:factory (overrides CARESYNC_REMOTE_BACKEND)",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    settings = get_settings()
    if args.backend:
        settings = settings.model_copy(update={"remote_backend": args.backend})
    try:
        services = build_services(settings, identity=args.identity)
    except ValueError as e:
        parser.error(str(e))

    if args.headless:
        try:
            asyncio.run(run_loop(services))
        except KeyboardInterrupt:
            logger.info("Shutting down")
        return

    uvicorn.run(create_app(services), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
