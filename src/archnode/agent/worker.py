from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Awaitable, Callable

logger = logging.getLogger("archnode.agent.worker")


def next_deadline(started: float, interval: float, now: float) -> float:
    """First tick of the `started + k * interval` schedule strictly after `now`."""
    elapsed = max(0.0, now - started)
    ticks = math.floor(elapsed / interval) + 1
    return started + ticks * interval


async def run_periodic(
    interval: float,
    body: Callable[[], Awaitable[object]],
    stop: asyncio.Event,
    *,
    name: str = "worker",
    on_stop: Callable[[], Awaitable[None]] | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> None:
    """
    Run `body` on a fixed schedule until `stop` is set.

    Ticks are measured from the moment the loop starts; a body that overruns
    skips the ticks it missed instead of running them back to back. Failures
    of `body` are logged and the loop keeps going.
    """
    if interval <= 0:
        raise ValueError("interval must be positive")

    started = clock()
    deadline = started + interval
    logger.info("%s_started interval_s=%s", name, interval)
    try:
        while not stop.is_set():
            timeout = max(0.0, deadline - clock())
            try:
                await asyncio.wait_for(stop.wait(), timeout=timeout)
                break
            except asyncio.TimeoutError:
                pass

            try:
                await body()
            except Exception:  # noqa: BLE001
                logger.exception("%s_tick_failed", name)
            deadline = next_deadline(started, interval, clock())
    finally:
        if on_stop is not None:
            try:
                await on_stop()
            except Exception:  # noqa: BLE001
                logger.exception("%s_cleanup_failed", name)
        logger.info("%s_stopped", name)
