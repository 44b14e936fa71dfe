"""
Polling Loops
=============

Runs an async function periodically with jitter and a hard timeout.

An iteration that exceeds the hard timeout is abandoned, not cancelled: the
loop stops waiting for it and schedules the next iteration, while the stuck
call keeps running in the background until it finishes on its own.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Set

from ..config import RUN_IN_LOOP_HARD_TIMEOUT_MULTIPLIER
from ..utils import get_percentage_value

logger = logging.getLogger(__name__)

LoopFunction = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class LoopOptions:
    """Scheduling of one loop (seconds)."""
    label: str
    frequency_sec: float
    max_wait_sec: float
    hard_timeout_sec: float
    initial_delay_sec: float


def create_loop_options(
    label: str,
    frequency_sec: float,
    max_wait_percentage: float,
    initial_delay_sec: Optional[float] = None,
) -> LoopOptions:
    """
    Build loop options from a frequency.

    Args:
        label: Name used in logs
        frequency_sec: Target time between iteration starts
        max_wait_percentage: Upper bound of the random extra delay, as % of frequency
        initial_delay_sec: Delay before the first iteration (default: frequency)
    """
    frequency_sec = float(frequency_sec)
    return LoopOptions(
        label=label,
        frequency_sec=frequency_sec,
        max_wait_sec=get_percentage_value(frequency_sec, max_wait_percentage),
        hard_timeout_sec=frequency_sec * RUN_IN_LOOP_HARD_TIMEOUT_MULTIPLIER,
        initial_delay_sec=frequency_sec if initial_delay_sec is None else float(initial_delay_sec),
    )


def should_stop(result: Any) -> bool:
    """An iteration stops its loop by returning {"should_continue_running": False}."""
    return isinstance(result, dict) and result.get("should_continue_running") is False


async def _sleep(seconds: float, stop_event: Optional[asyncio.Event]):
    if seconds <= 0:
        return
    if stop_event is None:
        await asyncio.sleep(seconds)
        return
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        pass


async def run_in_loop(
    fn: LoopFunction,
    options: LoopOptions,
    stop_event: Optional[asyncio.Event] = None,
):
    """
    Call `fn` repeatedly until it asks to stop or `stop_event` is set.

    Exceptions raised by `fn` are logged and the loop carries on. After each
    iteration the loop sleeps for whatever is left of the frequency plus a
    random delay of up to `options.max_wait_sec`.
    """
    abandoned: Set[asyncio.Task] = set()

    def on_abandoned_done(task: asyncio.Task):
        abandoned.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"[{options.label}] Abandoned iteration failed: {task.exception()}")

    loop = asyncio.get_running_loop()
    await _sleep(options.initial_delay_sec, stop_event)

    while not (stop_event and stop_event.is_set()):
        started = loop.time()
        task = asyncio.ensure_future(fn())
        result = None

        try:
            result = await asyncio.wait_for(asyncio.shield(task), timeout=options.hard_timeout_sec)
        except asyncio.TimeoutError:
            logger.warning(
                f"[{options.label}] Iteration exceeded hard timeout of {options.hard_timeout_sec:.1f}s, abandoning it"
            )
            abandoned.add(task)
            task.add_done_callback(on_abandoned_done)
        except Exception:
            logger.exception(f"[{options.label}] Iteration failed")

        if should_stop(result):
            logger.info(f"[{options.label}] Loop finished")
            return

        elapsed = loop.time() - started
        wait = max(0.0, options.frequency_sec - elapsed) + random.uniform(0, options.max_wait_sec)
        logger.debug(f"[{options.label}] Iteration took {elapsed:.2f}s, next in {wait:.2f}s")
        await _sleep(wait, stop_event)
