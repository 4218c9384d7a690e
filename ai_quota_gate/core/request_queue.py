"""
Priority request queue for a single quota-constrained upstream endpoint.

Many producers submit operations; exactly one drain task dispatches them,
which is what keeps the whole process inside the provider's limits.

Operation lifecycle:
    Pending -> Dispatched -> Succeeded
                          -> Retrying -> Pending (front of the queue)
                          -> PermanentlyFailed

Dispatch rules, applied to the head of the queue:
1. Wait until the minimum interval since the previous dispatch has passed
2. Re-check the rate gate (wait out a full minute window, reject on an
   exhausted day)
3. Record the call in the ledger, then await the invoker
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from .clock import SystemClock
from .errors import (
    ClassifiedError,
    GatewayError,
    QueueCancelledError,
    admission_error,
    classify_exception,
)
from .ledger import QuotaSnapshot, UsageLedger
from .rate_gate import AdmissionDecision, RateGate
from ai_quota_gate.config.loader import GatewayConfig

logger = logging.getLogger(__name__)

Invoker = Callable[[], Awaitable[Any]]


@dataclass
class QueuedOperation:
    """A submitted call and its retry bookkeeping."""
    invoke: Invoker
    future: "asyncio.Future[Any]"
    enqueued_at: datetime
    priority: int = 0
    retry_count: int = 0
    id: str = field(default_factory=lambda: f"req_{uuid.uuid4().hex[:12]}")


def _check_ledger_matches(ledger: UsageLedger, config: GatewayConfig) -> None:
    """Ensure the snapshot reports the same quota the gate enforces."""
    mismatches = [
        f"{name}: ledger={ours!r} config={theirs!r}"
        for name, ours, theirs in (
            ("daily_limit", ledger.daily_limit, config.daily_limit),
            ("reset_timezone", ledger.reset_timezone, config.reset_timezone),
            ("storage_key", ledger.key, config.storage_key),
        )
        if ours != theirs
    ]
    if mismatches:
        raise ValueError(f"Ledger does not match gateway config ({'; '.join(mismatches)})")


class RequestQueue:
    """Single-consumer, multi-producer dispatcher with spacing and retries.

    Must be used from one asyncio event loop. `submit` never blocks; it
    returns a future that settles once the operation finishes its whole
    lifecycle, retries included.
    """

    def __init__(
        self,
        ledger: UsageLedger,
        config: Optional[GatewayConfig] = None,
        gate: Optional[RateGate] = None,
        clock: Optional[SystemClock] = None,
    ):
        """Initialize the queue.

        Args:
            ledger: Usage ledger recording every dispatched call
            config: Limits and retry policy (defaults to the ledger's limit,
                reset timezone and storage key with default retry policy)
            gate: Admission policy (defaults to a RateGate over `ledger`)
            clock: Time source (defaults to the ledger's clock)

        Raises:
            ValueError: If `config` and `ledger` disagree on the daily limit,
                reset timezone or storage key
        """
        if config is None:
            config = GatewayConfig(
                daily_limit=ledger.daily_limit,
                reset_timezone=ledger.reset_timezone,
                storage_key=ledger.key,
            )
        else:
            _check_ledger_matches(ledger, config)
        self.config = config
        self.ledger = ledger
        self.gate = gate or RateGate(
            ledger,
            daily_limit=self.config.daily_limit,
            per_minute_limit=self.config.per_minute_limit,
        )
        self.clock = clock or ledger.clock

        self._pending: List[QueuedOperation] = []
        self._backing_off: Dict[str, QueuedOperation] = {}
        self._backoff_tasks: Set[asyncio.Task] = set()
        self._drain_task: Optional[asyncio.Task] = None
        self._last_dispatch_at: Optional[datetime] = None
        self._cancelled = asyncio.Event()
        self._closed = False

    # Producer side

    def submit(self, invoke: Invoker, priority: int = 0) -> "asyncio.Future[Any]":
        """Queue an upstream call.

        Rejected admissions fail the returned future immediately and never
        reach the queue or the network.

        Args:
            invoke: Zero-argument coroutine function performing the call
            priority: Higher values are dispatched first; ties keep FIFO order

        Returns:
            Future resolving to the invoker's result, or failing with
            GatewayError / QueueCancelledError
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()

        if self._closed:
            future.set_exception(QueueCancelledError("Queue has been cancelled"))
            return future

        decision = self.gate.can_admit()
        if not decision.allowed:
            self.ledger.record_limit_hit()
            logger.warning("Submission rejected: %s", decision.reason)
            future.set_exception(GatewayError(self._admission_error(decision)))
            return future

        operation = QueuedOperation(
            invoke=invoke,
            future=future,
            enqueued_at=self.clock.now(),
            priority=priority,
        )
        self._insert(operation)
        logger.info(
            "Queued %s (priority %d, depth %d)", operation.id, priority, len(self._pending)
        )
        self._ensure_draining()
        return future

    async def run(self, invoke: Invoker, priority: int = 0) -> Any:
        """Submit and wait for the result."""
        return await self.submit(invoke, priority)

    def cancel_all(self) -> int:
        """Reject every operation that has not been dispatched yet.

        Interrupts dispatch-spacing and backoff sleeps and closes the queue.
        A call already awaiting the invoker runs to completion.

        Returns:
            Number of operations rejected
        """
        self._closed = True
        self._cancelled.set()

        dropped = list(self._pending) + list(self._backing_off.values())
        self._pending.clear()
        self._backing_off.clear()

        for operation in dropped:
            self._reject(operation, QueueCancelledError("Queue cleared"))
        if dropped:
            logger.info("Cancelled %d queued operation(s)", len(dropped))
        return len(dropped)

    # Status surface

    @property
    def queue_depth(self) -> int:
        """Operations waiting for dispatch, including those in backoff."""
        return len(self._pending) + len(self._backing_off)

    @property
    def processing(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    def get_snapshot(self) -> QuotaSnapshot:
        """Current quota and queue state for display."""
        return self.ledger.snapshot(queue_depth=self.queue_depth)

    def status(self) -> Dict[str, Any]:
        return {
            "queue_length": self.queue_depth,
            "processing": self.processing,
            "last_dispatch_at": self._last_dispatch_at,
        }

    # Consumer side

    def _insert(self, operation: QueuedOperation) -> None:
        """Insert before the first operation with strictly lower priority."""
        for index, queued in enumerate(self._pending):
            if queued.priority < operation.priority:
                self._pending.insert(index, operation)
                return
        self._pending.append(operation)

    def _ensure_draining(self) -> None:
        if self._closed:
            return
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        while self._pending and not self._closed:
            operation = None
            try:
                # The head is chosen only after waiting, so work submitted
                # meanwhile still competes on priority
                decision = await self._wait_for_turn()
                if decision is None or not self._pending:
                    return

                operation = self._pending.pop(0)
                if operation.future.done():
                    # Abandoned by its caller
                    continue

                if not decision.allowed:
                    self.ledger.record_limit_hit()
                    logger.warning("Dropping %s: %s", operation.id, decision.reason)
                    self._reject(operation, GatewayError(self._admission_error(decision)))
                    continue

                await self._dispatch(operation)
            except Exception as exc:
                if operation is None and self._pending:
                    operation = self._pending.pop(0)
                if operation is None:
                    logger.exception("Drain loop stopped with nothing left to dispatch")
                    return
                logger.exception("Unexpected error dispatching %s", operation.id)
                self._reject(operation, GatewayError(self._classify(exc)))

    async def _wait_for_turn(self) -> Optional[AdmissionDecision]:
        """Wait out dispatch spacing and any full per-minute window.

        Returns:
            Admission decision for the next call (allowed, or refused for the
            day), or None if the queue was cancelled while waiting
        """
        if not await self._wait_for_slot():
            return None

        decision = self.gate.can_admit()
        while not decision.allowed and not decision.daily_exhausted:
            logger.debug("Per-minute window full, waiting %ss", decision.retry_after_seconds)
            if not await self._pause(decision.retry_after_seconds or 1):
                return None
            decision = self.gate.can_admit()
        return decision

    async def _dispatch(self, operation: QueuedOperation) -> None:
        started_at = self.clock.now()
        self.ledger.record_call()
        self._last_dispatch_at = started_at
        logger.info("Dispatching %s (attempt %d)", operation.id, operation.retry_count + 1)

        try:
            result = await operation.invoke()
        except Exception as exc:
            self._handle_failure(operation, exc)
        else:
            if not operation.future.done():
                operation.future.set_result(result)

    async def _wait_for_slot(self) -> bool:
        """Sleep out the rest of the minimum dispatch interval."""
        if self._last_dispatch_at is None:
            return not self._closed
        elapsed = (self.clock.now() - self._last_dispatch_at).total_seconds()
        remaining = self.config.min_dispatch_interval - elapsed
        if remaining > 0:
            logger.debug("Spacing dispatch, sleeping %.2fs", remaining)
            return await self._pause(remaining)
        return not self._closed

    def _handle_failure(self, operation: QueuedOperation, exc: Exception) -> None:
        error = self._classify(exc)

        retryable = (
            error.kind in self.config.retryable_kinds
            and operation.retry_count < self.config.max_retries
        )
        if not retryable:
            logger.error(
                "%s failed permanently after %d attempt(s): %s",
                operation.id,
                operation.retry_count + 1,
                error.kind.value,
            )
            self._reject(operation, GatewayError(error))
            return

        if self._closed:
            self._reject(operation, QueueCancelledError("Queue cleared"))
            return

        operation.retry_count += 1
        delay = self.config.backoff_delay(operation.retry_count)
        logger.warning(
            "%s: %s. Retrying in %.1fs (attempt %d/%d)",
            operation.id,
            error.kind.value,
            delay,
            operation.retry_count,
            self.config.max_retries,
        )

        self._backing_off[operation.id] = operation
        task = asyncio.get_running_loop().create_task(self._requeue_after(operation, delay))
        self._backoff_tasks.add(task)
        task.add_done_callback(self._backoff_tasks.discard)

    async def _requeue_after(self, operation: QueuedOperation, delay: float) -> None:
        if not await self._pause(delay):
            return
        self._backing_off.pop(operation.id, None)
        if operation.future.done():
            return
        self._pending.insert(0, operation)
        self._ensure_draining()

    async def _pause(self, seconds: float) -> bool:
        """Sleep unless cancel_all() is called first.

        Returns:
            False if the queue was cancelled
        """
        if seconds > 0 and not self._closed:
            sleeper = asyncio.ensure_future(self.clock.sleep(seconds))
            waiter = asyncio.ensure_future(self._cancelled.wait())
            try:
                await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for task in (sleeper, waiter):
                    if not task.done():
                        task.cancel()
        return not self._closed

    def _classify(self, exc: Exception) -> ClassifiedError:
        return classify_exception(exc, now=self.clock.now(), **self.config.classifier_options())

    def _admission_error(self, decision: AdmissionDecision) -> ClassifiedError:
        return admission_error(
            decision.reason or "",
            decision.retry_after_seconds,
            decision.daily_exhausted,
            now=self.clock.now(),
            **self.config.classifier_options(),
        )

    @staticmethod
    def _reject(operation: QueuedOperation, exc: Exception) -> None:
        if not operation.future.done():
            operation.future.set_exception(exc)
