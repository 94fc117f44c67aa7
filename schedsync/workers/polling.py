"""
Shared poll loop for the in-process workers.
Each iteration gets its own correlation id so one batch's log lines group together.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from schedsync.utils.logging import correlation_scope

logger = logging.getLogger(__name__)


async def run_polling_loop(
    name: str,
    batch: Callable[[], Awaitable[object]],
    poll_interval: float,
    stop: Optional[asyncio.Event] = None,
) -> None:
    """Call batch() every poll_interval seconds until stop is set (or forever)."""
    logger.info("%s started", name)
    stop = stop or asyncio.Event()

    while not stop.is_set():
        with correlation_scope():
            try:
                await batch()
            except Exception as e:
                logger.error("%s error: %s", name, str(e), exc_info=True)

        try:
            await asyncio.wait_for(stop.wait(), timeout=poll_interval)
        except asyncio.TimeoutError:
            continue

    logger.info("%s stopped", name)
