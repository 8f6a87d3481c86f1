"""
Level-triggered work queue driving reconcile passes.

The controller keeps a queue of cluster resource keys ("namespace/name").
Watch events enqueue keys; workers take keys off the queue and run one
reconcile pass each. The pass result decides what happens next:

- Done: the key is dropped until the next watch event
- RequeueSoon(s): the key is enqueued again after s seconds
- Error(e): the key is enqueued again after exponential backoff

A key is never processed by two workers at once. Enqueuing a key that is
being processed marks it dirty and it is queued again when the pass ends,
so no event is lost. Distinct keys run concurrently up to the worker count.

Shutdown is coordinated through an asyncio.Event set from SIGINT/SIGTERM.
"""

import asyncio
import functools
import logging
import signal
from collections.abc import Awaitable, Callable

from operator_cassandra.backoff import BackoffConfig, KeyBackoff
from operator_cassandra.config import settings
from operator_cassandra.result import ReconcileResult

logger = logging.getLogger(__name__)

ReconcileFunc = Callable[[str, str], Awaitable[ReconcileResult]]


def split_key(key: str) -> tuple[str, str]:
    namespace, _, name = key.partition("/")
    if not name:
        raise ValueError(f"expected key of the form namespace/name, got {key!r}")
    return namespace, name


class ReconcileController:
    """
    Runs reconcile passes for enqueued keys until shutdown.

    Example:
        reconciler = ClusterReconciler(client, mgmt, recorder, factory)
        controller = ReconcileController(reconciler.reconcile, workers=4)
        controller.enqueue("db/dc1")
        await controller.run()  # Runs until SIGINT/SIGTERM
    """

    def __init__(
        self,
        reconcile: ReconcileFunc,
        workers: int = settings.workers,
        backoff: BackoffConfig | None = None,
    ) -> None:
        """
        Initialize the controller.

        Args:
            reconcile: Async callable running one pass for (namespace, name)
            workers: Number of keys processed concurrently
            backoff: Error backoff configuration
        """
        self.reconcile = reconcile
        self.workers = workers
        self.backoff = KeyBackoff(config=backoff or BackoffConfig())

        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._dirty: set[str] = set()
        self._processing: set[str] = set()
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._shutdown = asyncio.Event()

    def enqueue(self, key: str) -> None:
        """Queue a key for processing; a no-op if it is already queued."""
        pending = self._timers.pop(key, None)
        if pending is not None:
            pending.cancel()
        if key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.put_nowait(key)

    def enqueue_after(self, key: str, delay: float) -> None:
        """Queue a key after `delay` seconds, replacing any pending delayed enqueue."""
        existing = self._timers.pop(key, None)
        if existing is not None:
            existing.cancel()
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(max(delay, 0.0), self.enqueue, key)

    def pending_delay_keys(self) -> set[str]:
        return set(self._timers)

    async def run(self, install_signal_handlers: bool = True) -> None:
        """
        Process keys until shutdown.

        Registers SIGINT and SIGTERM handlers for graceful shutdown unless
        told not to (tests and embedding callers stop via stop()).
        """
        if install_signal_handlers:
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, functools.partial(self._handle_signal, sig))

        logger.info(f"controller starting with {self.workers} worker(s)")
        tasks = [asyncio.create_task(self._worker()) for _ in range(self.workers)]
        try:
            await self._shutdown.wait()
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            for handle in self._timers.values():
                handle.cancel()
            self._timers.clear()
        logger.info("controller stopped")

    def stop(self) -> None:
        self._shutdown.set()

    def _handle_signal(self, sig: signal.Signals) -> None:
        """Handle shutdown signal by setting shutdown event."""
        logger.info(f"received {sig.name}, shutting down")
        self._shutdown.set()

    async def _worker(self) -> None:
        while True:
            key = await self._queue.get()
            self._dirty.discard(key)
            self._processing.add(key)
            try:
                await self.process(key)
            finally:
                self._processing.discard(key)
                if key in self._dirty:
                    self._queue.put_nowait(key)
                self._queue.task_done()

    async def process(self, key: str) -> None:
        """Run one pass for `key` and schedule its next pass from the result."""
        namespace, name = split_key(key)
        try:
            result = await self.reconcile(namespace, name)
            output = result.output()
        except Exception as e:
            # Log but keep the worker alive; the key backs off like an Error().
            logger.exception(f"reconcile of {key} raised: {e}")
            self.enqueue_after(key, self.backoff.next_delay(key))
            return

        if output.error is not None:
            delay = self.backoff.next_delay(key)
            logger.warning(f"reconcile of {key} failed, retrying in {delay:.1f}s: {output.error}")
            self.enqueue_after(key, delay)
            return

        self.backoff.reset(key)
        if output.requeue:
            self.enqueue_after(key, output.requeue_after)
