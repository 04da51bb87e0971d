import asyncio
import math
import random
from typing import Any, Awaitable, Callable, Optional

from leaddesk.logging_config import get_logger

logger = get_logger("reply_scheduler")

TICK_SECONDS = 1


def pick_smart_delay(low: int, high: int, rng: Optional[random.Random] = None) -> int:
    """Random whole-second delay in [low, high] to mimic human response time."""
    low, high = sorted((max(1, int(low)), max(1, int(high))))
    return (rng or random).randint(low, high)


class ReplyScheduler:
    """Countdown that fires the AI-reply trigger once, cancellable as a unit.

    At most one countdown exists per scheduler; start() replaces the previous one.
    The countdown and the trigger run in the same task, so cancel() also stops a
    trigger that is already awaiting the backend.
    """

    def __init__(
        self,
        trigger: Callable[[], Awaitable[Any]],
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_tick: Optional[Callable[[Optional[int]], None]] = None,
    ):
        self._trigger = trigger
        self._sleep = sleep
        self._on_tick = on_tick
        self._task: Optional[asyncio.Task] = None
        self.countdown: Optional[int] = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, delay_seconds: float) -> asyncio.Task:
        self.cancel()
        delay = max(1, math.ceil(delay_seconds))
        self._set_countdown(delay)
        self._task = asyncio.get_running_loop().create_task(self._run(delay))
        logger.debug(f"AI reply scheduled in {delay}s")
        return self._task

    def cancel(self) -> bool:
        """Stop the pending countdown/trigger. Safe to call at any time."""
        task, self._task = self._task, None
        self._set_countdown(None)
        if task is None or task.done():
            return False
        task.cancel()
        logger.debug("Scheduled AI reply cancelled")
        return True

    async def _run(self, delay: int) -> None:
        me = asyncio.current_task()
        try:
            for remaining in range(delay, 0, -1):
                self._set_countdown(remaining)
                await self._sleep(TICK_SECONDS)
            self._set_countdown(None)
            await self._trigger()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Scheduled AI reply failed")
        finally:
            if self._task is me:
                self._task = None
                self._set_countdown(None)

    def _set_countdown(self, value: Optional[int]) -> None:
        if self.countdown == value:
            return
        self.countdown = value
        if self._on_tick is not None:
            self._on_tick(value)

    async def aclose(self) -> None:
        """Cancel and wait until the pending task has unwound."""
        task = self._task
        self.cancel()
        if task is None or task is asyncio.current_task():
            return
        try:
            await task
        except asyncio.CancelledError:
            pass
