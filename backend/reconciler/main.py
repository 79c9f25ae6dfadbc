"""
Headless reconciler entrypoint: jobs and push feed without the HTTP surface.
Events are still detected and measured; with no subscribers fan-out is a no-op.
"""
from __future__ import annotations

import asyncio
import signal

from shared.config import get_settings
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import start_metrics_server

from reconciler.config import get_reconciler_settings
from reconciler.runtime import ReconcilerRuntime

logger = get_logger(__name__)


async def main() -> None:
    settings = get_settings()
    setup_logging("reconciler")
    start_metrics_server()

    runtime = ReconcilerRuntime(settings, get_reconciler_settings())
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (ValueError, OSError, RuntimeError) as exc:
            logger.warning("signal_handler_unavailable", signal=sig, error=str(exc))

    await runtime.start()
    logger.info("reconciler_service_started", instance_id=settings.instance_id)
    try:
        await stop.wait()
    finally:
        await runtime.stop()
        logger.info("reconciler_service_stopped")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
