"""
Headless entry point: run the live world until SIGINT/SIGTERM.

For the WebSocket-facing service use the API instead:
    uvicorn api.main:app
"""

import asyncio
import signal

import structlog

from worldstate.config import load_settings
from worldstate.logging_config import configure_logging
from worldstate.runtime import WorldRuntime

logger = structlog.get_logger(__name__)


async def run(config_path: str) -> None:
    settings = load_settings(config_path)
    configure_logging(settings.log_level, settings.json_logs)

    runtime = WorldRuntime(settings)
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await runtime.start()
    logger.info("worldstate_running", config_path=config_path)

    try:
        await stop.wait()
        logger.info("shutdown_signal_received")
    finally:
        await runtime.shutdown()


def main():
    """Entry point for the live world service."""
    import argparse

    parser = argparse.ArgumentParser(description="Live world state service")
    parser.add_argument("--config", default="config/settings.yaml")

    args = parser.parse_args()
    asyncio.run(run(args.config))


if __name__ == "__main__":
    main()
