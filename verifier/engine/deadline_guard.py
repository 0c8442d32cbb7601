"""
TouchGrass Verifier :: Deadline Guard
=====================================

Races one unit of work against a timer. Whichever finishes first decides the
outcome and the other task is cancelled.

Cancelling the work task only abandons it locally: when the work is a
blocking call pushed to a thread (``asyncio.to_thread``), the thread keeps
running until the HTTP client gives up, and the provider may still bill for
it. Nothing awaits the abandoned result.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, TypeVar

from engine.errors import EvaluatorTimeoutError

logger = logging.getLogger("touchgrass.deadline")

T = TypeVar("T")


class SystemClock:
    """Wall clock backed by the running event loop."""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class DeadlineGuard:
    """
    Usage:
        guard = DeadlineGuard(timeout_seconds=60)
        text  = await guard.run(asyncio.to_thread(client.evaluate, title, url))

    Raises EvaluatorTimeoutError when the timer wins. Exceptions raised by the
    work itself propagate unchanged.
    """

    def __init__(self, timeout_seconds: float, clock=None):
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self.timeout_seconds = timeout_seconds
        self.clock = clock or SystemClock()

    async def run(self, work: Awaitable[T], label: str = "evaluator call") -> T:
        work_task  = asyncio.ensure_future(work)
        timer_task = asyncio.ensure_future(self.clock.sleep(self.timeout_seconds))

        try:
            done, _ = await asyncio.wait(
                {work_task, timer_task}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            work_task.cancel()
            timer_task.cancel()
            raise

        # Work wins ties: a result that is already in hand is never discarded.
        if work_task in done:
            timer_task.cancel()
            return work_task.result()

        work_task.cancel()
        logger.warning(
            f"[DEADLINE] {label} exceeded {self.timeout_seconds:g}s, abandoned"
        )
        raise EvaluatorTimeoutError(
            f"{label} did not finish within {self.timeout_seconds:g}s",
            timeout_seconds=self.timeout_seconds,
        )
