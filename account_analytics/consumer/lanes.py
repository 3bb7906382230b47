"""Per-account processing lanes.

Every account maps to exactly one lane (by a stable hash of its id), and
each lane is a single worker thread draining a FIFO queue. Events for one
account are therefore applied one at a time in submission order, while
different lanes run concurrently against the shared store pools.
"""

import logging
import queue
import threading
import zlib
from concurrent.futures import Future
from typing import Callable

from account_analytics.coordinator import UpdateResult, UpdateStage, UpdateStatus
from account_analytics.logging import event_context
from account_analytics.models.events import EventEnvelope

logger = logging.getLogger(__name__)

Handler = Callable[[EventEnvelope, threading.Event], UpdateResult]

_STOP = object()


class LaneExecutor:
    """Run a handler over events with per-account ordering and exclusivity.

    An account whose update ends ``HALTED`` stays halted until
    ``resume`` is called; its later events are not processed. An account
    whose update ends ``FAILED`` or ``CANCELLED`` is blocked until
    ``unblock_all`` so that no later event overtakes the one that must be
    redelivered. A handler that raises counts as ``FAILED``.
    """

    def __init__(
        self,
        handler: Handler,
        num_lanes: int = 8,
        on_halt: Callable[[UpdateResult], None] | None = None,
    ) -> None:
        """Initialize lanes.

        Parameters
        ----------
        handler : Handler
            Called with ``(event, cancel_event)``; usually ``StoreCoordinator.process``.
        num_lanes : int
            Number of worker threads.
        on_halt : Callable[[UpdateResult], None] | None
            Alert hook invoked once when an account halts.
        """
        if num_lanes < 1:
            raise ValueError("num_lanes must be positive")
        self.handler = handler
        self.num_lanes = num_lanes
        self.on_halt = on_halt
        self.cancel_event = threading.Event()
        self._queues: list[queue.Queue] = [queue.Queue() for _ in range(num_lanes)]
        self._threads: list[threading.Thread] = []
        self._halted: dict[str, UpdateResult] = {}
        self._blocked: set[str] = set()
        self._lock = threading.Lock()
        self._started = False

    def start(self) -> None:
        """Start the lane threads."""
        if self._started:
            return
        for index, lane_queue in enumerate(self._queues):
            thread = threading.Thread(
                target=self._run_lane,
                args=(lane_queue,),
                name=f"lane-{index}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)
        self._started = True
        logger.info("Started %d processing lanes", self.num_lanes)

    def lane_for(self, account_id: str) -> int:
        """Stable lane index for an account."""
        return zlib.crc32(account_id.encode("utf-8")) % self.num_lanes

    def submit(self, event: EventEnvelope) -> "Future[UpdateResult]":
        """Queue an event on its account's lane."""
        if not self._started:
            raise RuntimeError("LaneExecutor is not started")
        future: Future[UpdateResult] = Future()
        self._queues[self.lane_for(event.account_id)].put((event, future))
        return future

    @property
    def halted_accounts(self) -> set[str]:
        with self._lock:
            return set(self._halted)

    def is_halted(self, account_id: str) -> bool:
        with self._lock:
            return account_id in self._halted

    def resume(self, account_id: str) -> bool:
        """Clear the halt on an account after its state has been repaired."""
        with self._lock:
            resumed = self._halted.pop(account_id, None) is not None
        if resumed:
            logger.warning("Lane for account %s resumed", account_id)
        return resumed

    def unblock_all(self) -> None:
        """Allow accounts blocked by a failed update to process again."""
        with self._lock:
            self._blocked.clear()

    def _run_lane(self, lane_queue: queue.Queue) -> None:
        while True:
            item = lane_queue.get()
            try:
                if item is _STOP:
                    return
                event, future = item
                if not future.set_running_or_notify_cancel():
                    continue
                try:
                    future.set_result(self._handle(event))
                except Exception as e:
                    logger.exception("Lane handler crashed on event %s", event.idempotency_key)
                    future.set_exception(e)
            finally:
                lane_queue.task_done()

    def _handle(self, event: EventEnvelope) -> UpdateResult:
        account_id = event.account_id
        with self._lock:
            halted = account_id in self._halted
            blocked = account_id in self._blocked
        if halted:
            return UpdateResult(account_id, event.idempotency_key, UpdateStatus.HALTED, UpdateStage.RECEIVED)
        if blocked or self.cancel_event.is_set():
            return UpdateResult(account_id, event.idempotency_key, UpdateStatus.DEFERRED, UpdateStage.RECEIVED)

        with event_context(account_id=account_id, event_key=event.idempotency_key):
            try:
                result = self.handler(event, self.cancel_event)
            except Exception as e:
                logger.exception("Handler crashed on event %s for account %s", event.idempotency_key, account_id)
                result = UpdateResult(
                    account_id, event.idempotency_key, UpdateStatus.FAILED, UpdateStage.RECEIVED, error=e
                )

        if result.status == UpdateStatus.HALTED:
            with self._lock:
                self._halted[account_id] = result
            if self.on_halt is not None:
                self.on_halt(result)
        elif result.retryable:
            with self._lock:
                self._blocked.add(account_id)
        return result

    def join(self) -> None:
        """Block until every queued event has been handled."""
        for lane_queue in self._queues:
            lane_queue.join()

    def shutdown(self, wait: bool = True, cancel_in_flight: bool = False) -> None:
        """Stop the lanes.

        Parameters
        ----------
        wait : bool
            Wait for queued events to drain and threads to exit.
        cancel_in_flight : bool
            Abandon updates that have not reached their durable write, and
            defer everything still queued.
        """
        if cancel_in_flight:
            self.cancel_event.set()
        for lane_queue in self._queues:
            lane_queue.put(_STOP)
        if wait:
            for thread in self._threads:
                thread.join()
            self._threads.clear()
        self._started = False
        logger.info("Lanes stopped (halted accounts: %d)", len(self._halted))
