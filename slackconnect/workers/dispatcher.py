"""Standalone process that runs the scheduled-message dispatch engine.

Use this when the API runs with ``DISPATCH_IN_API_PROCESS=false`` so exactly one
dispatcher is active per deployment::

    python -m slackconnect.workers.dispatcher
"""

from __future__ import annotations

import asyncio
import logging
import signal

from slackconnect.core.config import get_settings
from slackconnect.core.logging import configure_logging
from slackconnect.dependencies import get_dispatch_engine

logger = logging.getLogger(__name__)


async def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)

    engine = get_dispatch_engine()
    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown.set)
        except NotImplementedError:  # pragma: no cover - Windows event loops
            pass

    engine.start()
    try:
        await shutdown.wait()
    finally:
        await engine.stop(drain=True)


if __name__ == "__main__":  # pragma: no cover - manual execution path
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Dispatcher worker stopped")
