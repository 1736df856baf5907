# services/rebuild_scheduler.py
import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional

from config import settings
from core.domain import RebuildResult
from core.enums import RebuildState
from services.indexing_pipeline import IndexingPipeline

logger = logging.getLogger(settings.LOGGER_NAME)


class RebuildScheduler:
    """
    Debounced, rate-limited full index rebuilds.

    IDLE → PENDING_DEBOUNCE → RUNNING → IDLE

    - A burst of requests while PENDING shares one future and one run
    - Runs start no sooner than `min_interval` after the previous one finished
    - A request during RUNNING joins the run if the run has not read its chunk
      snapshot yet; otherwise it schedules exactly one follow-up run
    """

    def __init__(
        self,
        pipeline: IndexingPipeline,
        debounce_delay: float = settings.REBUILD_DEBOUNCE_SEC,
        min_interval: float = settings.REBUILD_MIN_INTERVAL_SEC,
        clock: Callable[[], float] = time.monotonic
    ):
        self.pipeline = pipeline
        self.debounce_delay = debounce_delay
        self.min_interval = min_interval
        self._clock = clock

        self.state = RebuildState.IDLE
        self.last_completion: Optional[float] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._pending: Optional[asyncio.Future] = None
        self._running: Optional[asyncio.Future] = None
        self._running_task: Optional[asyncio.Task] = None
        self._snapshot_taken = False
        self._follow_up: Optional[asyncio.Future] = None
        self._closed = False

    def request_rebuild(self) -> "asyncio.Future[RebuildResult]":
        loop = asyncio.get_running_loop()

        if self._closed:
            future = loop.create_future()
            future.cancel()
            return future

        if self.state == RebuildState.RUNNING:
            if not self._snapshot_taken:
                return self._running
            if self._follow_up is None:
                logger.info("[REBUILD] Request during a running rebuild; follow-up scheduled.")
                self._follow_up = loop.create_future()
            return self._follow_up

        if self.state == RebuildState.PENDING_DEBOUNCE:
            self._arm_timer(loop)
            return self._pending

        future = loop.create_future()
        self._schedule(future)
        return future

    async def rebuild_now(self) -> RebuildResult:
        # Shielded: a cancelled caller must not cancel the future other waiters share
        return await asyncio.shield(self.request_rebuild())

    def _schedule(self, future: asyncio.Future) -> None:
        """Handle a fresh request from IDLE: run now, or wait out the minimum interval."""
        now = self._clock()
        if self.last_completion is None or now - self.last_completion >= self.min_interval:
            self._start_run(future)
            return

        self._pending = future
        self.state = RebuildState.PENDING_DEBOUNCE
        self._arm_timer(asyncio.get_running_loop())

    def _arm_timer(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._timer is not None:
            self._timer.cancel()

        now = self._clock()
        due = now + self.debounce_delay
        if self.last_completion is not None:
            due = max(due, self.last_completion + self.min_interval)

        delay = max(0.0, due - now)
        self._timer = loop.call_later(delay, self._on_timer)
        logger.debug(f"[REBUILD] Rebuild scheduled in {delay:.2f}s")

    def _on_timer(self) -> None:
        self._timer = None
        future, self._pending = self._pending, None
        if future is None or future.done():
            self.state = RebuildState.IDLE
            return
        self._start_run(future)

    def _start_run(self, future: asyncio.Future) -> None:
        self.state = RebuildState.RUNNING
        self._running = future
        self._snapshot_taken = False
        self._running_task = asyncio.create_task(self._run(future))

    async def _run(self, future: asyncio.Future) -> None:
        started = self._clock()
        try:
            # Anything committed before this point is in the snapshot
            self._snapshot_taken = True
            chunks = await self.pipeline.load_all_chunks()
            result = await self.pipeline.rebuild_all(chunks)
            logger.info(
                f"[REBUILD] Rebuilt index with {result.rebuilt} vectors "
                f"in {self._clock() - started:.2f}s"
            )
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            logger.error(f"[REBUILD] Rebuild failed: {e}", exc_info=True)
            result = RebuildResult(rebuilt=0, success=False, error=str(e))
        finally:
            self.last_completion = self._clock()
            self.state = RebuildState.IDLE
            self._running = None
            self._running_task = None

        if not future.done():
            future.set_result(result)

        follow_up, self._follow_up = self._follow_up, None
        if follow_up is not None:
            if self._closed:
                follow_up.cancel()
            else:
                self._schedule(follow_up)

    async def close(self) -> None:
        """Drop a pending rebuild and wait for a running one to finish."""
        self._closed = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
            self.state = RebuildState.IDLE

        task = self._running_task
        if task is not None:
            logger.info("[REBUILD] Waiting for the running rebuild to finish...")
            await asyncio.gather(task, return_exceptions=True)

    def status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "last_completion": self.last_completion,
            "follow_up_scheduled": self._follow_up is not None,
            "debounce_delay": self.debounce_delay,
            "min_interval": self.min_interval
        }
