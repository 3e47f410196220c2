import asyncio
import logging
from collections.abc import Awaitable, Callable


logger = logging.getLogger(__name__)


class IntervalTimer:
    """Fixed-period timer that dispatches ``callback`` as its own task each tick.

    A tick never waits for the previous one, so callbacks may overlap. A
    failing callback is logged and the timer keeps running. ``stop()`` cancels
    the schedule and every tick still in flight.
    """

    def __init__(
        self,
        name: str,
        interval_sec: float,
        callback: Callable[[], Awaitable[object]],
        *,
        immediate: bool = True,
    ):
        self.name = name
        self.interval_sec = interval_sec
        self.callback = callback
        self.immediate = immediate
        self._ticker: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._ticker is not None and not self._ticker.done()

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    def start(self) -> "IntervalTimer":
        if self.running:
            return self
        self._ticker = asyncio.create_task(self._run(), name=f"{self.name}-ticker")
        logger.debug("timer started name=%s interval=%s", self.name, self.interval_sec)
        return self

    async def stop(self) -> None:
        current = asyncio.current_task()
        pending: list[asyncio.Task] = []
        if self._ticker is not None and self._ticker is not current:
            self._ticker.cancel()
            pending.append(self._ticker)
        self._ticker = None
        for task in list(self._inflight):
            if task is current:
                continue
            task.cancel()
            pending.append(task)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.debug("timer stopped name=%s", self.name)

    async def _run(self) -> None:
        if self.immediate:
            self._dispatch()
        while True:
            await asyncio.sleep(self.interval_sec)
            self._dispatch()

    def _dispatch(self) -> None:
        task = asyncio.create_task(self._tick(), name=f"{self.name}-tick")
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _tick(self) -> None:
        try:
            await self.callback()
        except Exception as exc:  # noqa: BLE001
            logger.exception("%s tick failed: %s", self.name, exc)
