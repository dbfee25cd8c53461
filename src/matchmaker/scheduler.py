"""Leader selection scheduling.

Two independent paths fire ``MatchService.select_leaders`` once the
selection deadline passes:

* **LeaderSelectionScheduler** -- when a draft write enters
  SELECTING_LEADERS, a deferred task is queued for the deadline on the
  ``TaskQueue`` (bounded retries on failure).
* **LeaderSelectionPoller** -- the client-side path: every draft change
  notification re-checks the deadline and either calls the command
  directly or arms a single timer for the remaining time.

Both call the same guarded command, so whichever runs second gets
``Unchanged`` and nothing happens twice.
"""

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    stop_after_attempt,
    wait_exponential_jitter,
)

from matchmaker.models import MatchDraft, MatchState
from matchmaker.results import Outcome
from matchmaker.service import Clock, MatchService, utc_now
from matchmaker.store import DocumentChange

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Deferred tasks
# ---------------------------------------------------------------------------

class TaskQueue:
    """Runs named coroutines at a wall-clock time with bounded retries.

    Each task is an ``asyncio.Task`` that sleeps until ``run_at`` (as seen
    by ``clock``) and then awaits ``fn()``.  Exceptions are retried up to
    ``max_attempts`` in total; the final failure is logged, not raised.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        clock: Clock = utc_now,
        max_wait: float = 5.0,
    ) -> None:
        self.max_attempts = max_attempts
        self.clock = clock
        self.max_wait = max_wait
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        """Tasks scheduled or running."""
        return len(self._tasks)

    def enqueue(
        self,
        name: str,
        fn: Callable[[], Awaitable[object]],
        run_at: datetime,
    ) -> asyncio.Task:
        task = asyncio.create_task(self._run(name, fn, run_at), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug("Queued task %s for %s", name, run_at.isoformat())
        return task

    async def _sleep_until(self, run_at: datetime) -> None:
        while True:
            remaining = (run_at - self.clock()).total_seconds()
            if remaining <= 0:
                return
            await asyncio.sleep(remaining)

    async def _run(self, name: str, fn: Callable[[], Awaitable[object]], run_at: datetime) -> None:
        await self._sleep_until(run_at)
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential_jitter(initial=0.1, max=self.max_wait),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await fn()
        except Exception:
            logger.exception("Task %s failed after %d attempts", name, self.max_attempts)

    async def join(self) -> None:
        """Wait for the tasks pending right now to finish."""
        await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Cancel every pending task and wait for them to finish."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()


# ---------------------------------------------------------------------------
# Path (a): deferred task at queue-fill time
# ---------------------------------------------------------------------------

def _entered_selection(change: DocumentChange) -> MatchDraft | None:
    """The new draft if this write moved it into SELECTING_LEADERS."""
    if change.after is None:
        return None
    after = MatchDraft.from_document(change.after)
    if after.state is not MatchState.SELECTING_LEADERS:
        return None
    if change.before is not None:
        before = MatchDraft.from_document(change.before)
        if before.state is MatchState.SELECTING_LEADERS:
            return None
    return after


class LeaderSelectionScheduler:
    """Queues ``select_leaders`` for the deadline when the queue fills up."""

    def __init__(self, service: MatchService, tasks: TaskQueue) -> None:
        self.service = service
        self.tasks = tasks

    async def on_draft_written(self, change: DocumentChange) -> asyncio.Task | None:
        draft = _entered_selection(change)
        if draft is None:
            return None
        run_at = draft.leader_selection_at or self.service.now()
        logger.info("Queue full, leaders will be drawn at %s", run_at.isoformat())
        return self.tasks.enqueue("select_leaders", self.service.select_leaders, run_at)


# ---------------------------------------------------------------------------
# Path (b): re-check on every change notification
# ---------------------------------------------------------------------------

class LeaderSelectionPoller:
    """Client-side redundant trigger for leader selection.

    Store notifications may arrive on any thread; they are handed to the
    event loop running ``start()``.
    """

    def __init__(self, service: MatchService) -> None:
        self.service = service
        self._loop: asyncio.AbstractEventLoop | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._checks: set[asyncio.Task] = set()

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._unsubscribe = self.service.store.subscribe(
            self.service.config.draft_path, self._on_change
        )
        await self.check()

    def _on_change(self, change: DocumentChange) -> None:
        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._schedule_check)

    def _schedule_check(self) -> None:
        task = asyncio.create_task(self._check_logged())
        self._checks.add(task)
        task.add_done_callback(self._checks.discard)

    async def _check_logged(self) -> None:
        try:
            await self.check()
        except Exception:
            logger.exception("Leader selection check failed")

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def check(self) -> Outcome | None:
        """Select leaders if due, otherwise arm a timer for the deadline."""
        draft = await self.service.draft()
        if (
            draft is None
            or draft.state is not MatchState.SELECTING_LEADERS
            or draft.leaders
        ):
            self._cancel_timer()
            return None

        deadline = draft.leader_selection_at
        if deadline is not None:
            remaining = (deadline - self.service.now()).total_seconds()
            if remaining > 0:
                self._cancel_timer()
                self._timer = asyncio.get_running_loop().call_later(
                    remaining, self._schedule_check
                )
                return None

        self._cancel_timer()
        return await self.service.select_leaders()

    async def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._cancel_timer()
        checks = list(self._checks)
        for task in checks:
            task.cancel()
        await asyncio.gather(*checks, return_exceptions=True)
        self._loop = None
