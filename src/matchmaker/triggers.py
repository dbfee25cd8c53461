"""Background trigger wiring for the matchmaker.

``TriggerRunner`` subscribes to the draft and current-match documents and
routes every committed write to the background handlers:

* draft writes   -> ``LeaderSelectionScheduler`` and ``PublicationPipeline``
* current writes -> ``ServerStartCoordinator``

The runner also owns a ``LeaderSelectionPoller``, so a draft that was
already waiting for its leader draw when the runner started still gets
one.

Store notifications are delivered on whatever thread committed the
write; they are handed to the event loop with ``call_soon_threadsafe``
and processed one at a time, in the order they reach the loop, by a
single worker task.  Writes from different threads may arrive out of
commit order, so every handler re-checks state inside its own
transaction rather than trusting the change it was given.  A failing
handler is logged with its traceback and the worker moves on.

Also provides:

* **ShutdownHandler** -- cross-platform graceful Ctrl+C via
  ``signal.signal(SIGINT, ...)``.  First press sets a flag; second press
  force-exits.
"""

import asyncio
import logging
import signal
from typing import Awaitable, Callable

from matchmaker.publication import PublicationPipeline
from matchmaker.scheduler import LeaderSelectionPoller, LeaderSelectionScheduler, TaskQueue
from matchmaker.server_start import ServerStartCoordinator
from matchmaker.service import MatchService
from matchmaker.store import DocumentChange

logger = logging.getLogger(__name__)

Handler = Callable[[DocumentChange], Awaitable[object]]


# ---------------------------------------------------------------------------
# Graceful shutdown
# ---------------------------------------------------------------------------

class ShutdownHandler:
    """Cross-platform graceful shutdown via Ctrl+C.

    Uses ``signal.signal(SIGINT, ...)`` which works on both Windows and
    Unix (unlike ``loop.add_signal_handler`` which raises
    ``NotImplementedError`` on Windows).

    First Ctrl+C sets a flag so the runner can stop cleanly.
    Second Ctrl+C raises ``SystemExit(1)`` for an immediate exit.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._original_handler = None

    def install(self) -> None:
        """Save the current SIGINT handler and install our own."""
        self._original_handler = signal.getsignal(signal.SIGINT)
        signal.signal(signal.SIGINT, self._handle)

    def _handle(self, sig, frame) -> None:  # noqa: ANN001
        if self._event.is_set():
            logger.warning("Force shutdown")
            raise SystemExit(1)
        logger.info("Shutdown requested. Stopping triggers...")
        self._event.set()

    @property
    def is_set(self) -> bool:
        """Whether a shutdown has been requested."""
        return self._event.is_set()

    async def wait(self, timeout: float | None = None) -> bool:
        """Wait for a shutdown request; return whether one arrived."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    def restore(self) -> None:
        """Restore the original SIGINT handler if one was saved."""
        if self._original_handler is not None:
            signal.signal(signal.SIGINT, self._original_handler)


# ---------------------------------------------------------------------------
# Trigger runner
# ---------------------------------------------------------------------------

class TriggerRunner:
    """Dispatches document change notifications to background handlers.

    Usage::

        runner = TriggerRunner(service)
        await runner.start()
        ...
        await runner.drain()   # wait for notifications and deferred tasks
        await runner.stop()
    """

    def __init__(
        self,
        service: MatchService,
        *,
        publication: PublicationPipeline | None = None,
        starter: ServerStartCoordinator | None = None,
        tasks: TaskQueue | None = None,
    ) -> None:
        self.service = service
        self.config = service.config
        self.tasks = tasks or TaskQueue(self.config.task_max_attempts, service.now)
        self.leader_scheduler = LeaderSelectionScheduler(service, self.tasks)
        self.leader_poller = LeaderSelectionPoller(service)
        self.publication = publication or PublicationPipeline(service)
        self.starter = starter or ServerStartCoordinator(service)

        self._routes: dict[str, list[Handler]] = {
            self.config.draft_path: [
                self.leader_scheduler.on_draft_written,
                self.publication.on_draft_written,
            ],
            self.config.current_path: [self.starter.on_match_written],
        }
        self._queue: asyncio.Queue[DocumentChange] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._worker: asyncio.Task | None = None
        self._unsubscribers: list[Callable[[], None]] = []

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        """Subscribe to the routed documents, start the worker and the poller."""
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        for path in self._routes:
            self._unsubscribers.append(
                self.service.store.subscribe(path, self._on_change, self._on_error)
            )
        self._worker = asyncio.create_task(self._run(), name="trigger-worker")
        await self.leader_poller.start()
        logger.info("Triggers started for %s", ", ".join(self._routes))

    def _on_change(self, change: DocumentChange) -> None:
        loop, queue = self._loop, self._queue
        if loop is None or queue is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(queue.put_nowait, change)

    def _on_error(self, exc: Exception) -> None:
        logger.error("Change notification failed: %s", exc)

    async def _run(self) -> None:
        assert self._queue is not None
        while True:
            change = await self._queue.get()
            try:
                await self.dispatch(change)
            finally:
                self._queue.task_done()

    async def dispatch(self, change: DocumentChange) -> None:
        """Run every handler routed for ``change.path``, in order."""
        for handler in self._routes.get(change.path, ()):
            try:
                await handler(change)
            except Exception:
                logger.exception(
                    "Trigger %s failed for %s v%d",
                    getattr(handler, "__qualname__", handler), change.path, change.version,
                )

    async def poll(self) -> int:
        """Pick up writes committed by other processes; return how many."""
        changes = await asyncio.to_thread(self.service.store.poll_changes)
        return len(changes)

    async def drain(self) -> None:
        """Wait until no notification is queued and no deferred task is pending."""
        if self._queue is None:
            return
        while True:
            await self._queue.join()
            if self.tasks.pending == 0:
                break
            await self.tasks.join()

    async def stop(self) -> None:
        """Unsubscribe, stop the worker and cancel deferred tasks."""
        await self.leader_poller.stop()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        if self._worker is not None:
            self._worker.cancel()
            await asyncio.gather(self._worker, return_exceptions=True)
            self._worker = None
        await self.tasks.close()
        self._queue = None
        self._loop = None
        logger.info("Triggers stopped")
