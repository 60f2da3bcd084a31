"""
Call queue sequencer.

Serializes call and recall announcements: one request at a time, highest
priority first, FIFO within a priority. Each cycle announces the ticket,
applies the ticket/counter transition, waits for the announcement to settle
and deletes the request.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol, TypeVar

from hospital_queue.broadcast.events import BroadcastEvent, counter_room
from hospital_queue.broadcast.interface import Broadcaster
from hospital_queue.calls.history import FirstCallHistory
from hospital_queue.calls.models import CallKind, CallRequest, CallRequestStatus
from hospital_queue.calls.store import CallRequestStore
from hospital_queue.config import SequencerSettings
from hospital_queue.shared.exceptions import StoreError
from hospital_queue.shared.logging import correlation_id_var, get_logger
from hospital_queue.tickets.interface import CounterRef, TicketCounterGateway, TicketRef

logger = get_logger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes for timezone-aware columns.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class Announcer(Protocol):
    async def resolve_and_broadcast(
        self,
        ticket_number: str,
        counter_number: int | str,
        is_recall: bool = False,
    ) -> bool: ...


@dataclass(frozen=True)
class DuplicateFirstCall:
    """Returned by ``enqueue`` when a first call repeats inside the dedup window."""

    ticket_id: str
    ticket_number: str
    last_called_at: datetime


@dataclass(frozen=True)
class CircuitBreakerPolicy:
    """Stop the sequencer after this many consecutive failed cycles."""

    max_consecutive_failures: int = 3

    def should_trip(self, consecutive_failures: int) -> bool:
        return consecutive_failures >= self.max_consecutive_failures


class CallSequencer:
    """Single-flight processor for the call request queue."""

    def __init__(
        self,
        store: CallRequestStore,
        gateway: TicketCounterGateway,
        announcer: Announcer,
        broadcaster: Broadcaster,
        settings: SequencerSettings | None = None,
        breaker: CircuitBreakerPolicy | None = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize sequencer.

        Args:
            store: Durable call request store; source of truth for ordering.
            gateway: Applies ticket/counter state transitions.
            announcer: Resolves and broadcasts the voice announcement.
            broadcaster: Channel for queue events.
            settings: Timing and window configuration.
            breaker: Consecutive failure policy; defaults from ``settings``.
            clock: Time source.
            sleep: Awaitable used for the settle delay.
        """
        self._store = store
        self._gateway = gateway
        self._announcer = announcer
        self._broadcaster = broadcaster
        self._settings = settings or SequencerSettings()
        self._breaker = breaker or CircuitBreakerPolicy(self._settings.max_consecutive_failures)
        self._clock = clock
        self._sleep = sleep

        self._history = FirstCallHistory(
            retention=timedelta(seconds=self._settings.history_retention_seconds),
            max_entries=self._settings.history_max_entries,
        )
        self._dedup_window = timedelta(seconds=self._settings.dedup_window_seconds)

        self._lock = asyncio.Lock()
        self._running = False
        self._consecutive_failures = 0
        self._current: CallRequest | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._housekeeping_task: asyncio.Task[None] | None = None
        self._cycles: set[asyncio.Task[Any]] = set()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_processing(self) -> bool:
        return self._lock.locked()

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def history(self) -> FirstCallHistory:
        return self._history

    @property
    def breaker(self) -> CircuitBreakerPolicy:
        return self._breaker

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        ticket: TicketRef,
        counter: CounterRef,
        is_recall: bool = False,
        source_label: str = "",
        source_system: str = "counter_interface",
        kind: CallKind | None = None,
    ) -> CallRequest | DuplicateFirstCall:
        """Queue an announcement for ``ticket`` at ``counter``.

        Returns the new request, the already queued request for the same
        ticket and kind, or ``DuplicateFirstCall`` when a first call repeats
        inside the dedup window. Requests are persisted even when the
        sequencer is stopped.
        """
        kind = kind or (CallKind.RECALL if is_recall else CallKind.CALL)
        now = self._clock()

        if not is_recall and self._history.called_within(ticket.id, self._dedup_window, now):
            logger.info(
                "Duplicate first call suppressed",
                extra={"ticket_number": ticket.ticket_number, "counter_number": counter.counter_number},
            )
            return DuplicateFirstCall(
                ticket_id=ticket.id,
                ticket_number=ticket.ticket_number,
                last_called_at=self._history.last_called(ticket.id, now) or now,
            )

        existing = await self._store.find_active(ticket.id, kind)
        if existing is not None and self._is_stale(existing, now):
            logger.warning(
                "Abandoning stale call request",
                extra={"request_id": existing.id, "ticket_number": ticket.ticket_number, "kind": kind.value},
            )
            await self._store.mark_failed(existing.id, "abandoned: processing timed out")
            existing = None
        if existing is not None:
            logger.info(
                "Call request already queued",
                extra={"request_id": existing.id, "ticket_number": ticket.ticket_number, "kind": kind.value},
            )
            return existing

        request = await self._store.insert(
            CallRequest.new(
                ticket=ticket,
                counter=counter,
                kind=kind,
                is_recall=is_recall,
                source_label=source_label or str(counter.counter_number),
                requested_at=now,
                source_system=source_system,
            )
        )
        logger.info(
            "Call request added",
            extra={
                "request_id": request.id,
                "ticket_number": request.ticket_number,
                "counter_number": request.counter_number,
                "is_recall": is_recall,
                "priority": request.priority.value,
            },
        )
        await self._broadcaster.emit(BroadcastEvent.CALL_REQUEST_ADDED, request.summary())

        self._schedule_cycle()
        return request

    async def enqueue_call(
        self,
        ticket: TicketRef,
        counter: CounterRef,
        source_label: str = "",
        source_system: str = "counter_interface",
    ) -> CallRequest | DuplicateFirstCall:
        return await self.enqueue(ticket, counter, False, source_label, source_system)

    async def enqueue_recall(
        self,
        ticket: TicketRef,
        counter: CounterRef,
        source_label: str = "",
        source_system: str = "counter_interface",
    ) -> CallRequest | DuplicateFirstCall:
        return await self.enqueue(ticket, counter, True, source_label, source_system)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start polling; the first attempt runs immediately."""
        if self._running:
            logger.warning("Call sequencer already running")
            return

        self._running = True
        self._consecutive_failures = 0
        if not self._lock.locked():
            await self._requeue_interrupted()
        self._poll_task = asyncio.create_task(self._poll_loop())
        self._housekeeping_task = asyncio.create_task(self._housekeeping_loop())
        self._schedule_cycle()
        logger.info(
            "Call sequencer started",
            extra={"poll_interval_seconds": self._settings.poll_interval_seconds},
        )

    async def stop(self) -> None:
        """Stop polling. A cycle already in flight runs to completion."""
        if not self._running:
            return

        self._running = False
        current = asyncio.current_task()
        for task in (self._poll_task, self._housekeeping_task):
            if task is None or task is current:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._poll_task = None
        self._housekeeping_task = None
        logger.info("Call sequencer stopped")

    async def wait_for_idle(self) -> None:
        """Wait for every scheduled cycle to finish."""
        while self._cycles:
            await asyncio.gather(*list(self._cycles), return_exceptions=True)

    async def _requeue_interrupted(self) -> None:
        # Nothing is in flight here, so any processing row was left by a crash
        # or a cycle whose failure could not be recorded.
        try:
            requeued = await self._store.requeue_processing()
        except Exception as exc:
            logger.error("Could not requeue interrupted call requests", extra={"error": repr(exc)})
            return
        if requeued:
            logger.warning("Requeued interrupted call requests", extra={"requeued": requeued})

    def _is_stale(self, request: CallRequest, now: datetime) -> bool:
        if request.status != CallRequestStatus.PROCESSING or request.processing_started_at is None:
            return False
        if self._current is not None and self._current.id == request.id:
            return False
        age = now - _as_utc(request.processing_started_at)
        return age.total_seconds() > self._settings.stale_processing_seconds

    def _schedule_cycle(self) -> None:
        task = asyncio.create_task(self.process_next_safely())
        self._cycles.add(task)
        task.add_done_callback(self._cycles.discard)

    async def _poll_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._settings.poll_interval_seconds)
            if self._running:
                self._schedule_cycle()

    async def _housekeeping_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._settings.housekeeping_interval_seconds)
            try:
                await self.purge_expired()
            except Exception:
                logger.exception("Call request housekeeping failed")

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def process_next_safely(self) -> CallRequest | None:
        """Run one cycle; failures feed the circuit breaker instead of raising."""
        if not self._running or self._lock.locked():
            return None

        try:
            processed = await self.process_next()
        except Exception as exc:
            self._consecutive_failures += 1
            logger.error(
                "Call processing cycle failed",
                extra={
                    "error": repr(exc),
                    "consecutive_failures": self._consecutive_failures,
                    "threshold": self._breaker.max_consecutive_failures,
                },
            )
            if self._breaker.should_trip(self._consecutive_failures):
                logger.error(
                    "Circuit breaker tripped, stopping call sequencer",
                    extra={"consecutive_failures": self._consecutive_failures},
                )
                await self.stop()
            return None

        self._consecutive_failures = 0
        return processed

    async def process_next(self) -> CallRequest | None:
        """Process the next pending request, if any.

        Returns the dispatched request, or None when nothing was dispatched.

        Raises:
            Exception: Anything raised by the store, gateway or broadcaster,
                after the in-flight request has been marked failed.
        """
        if not self._running or self._lock.locked():
            return None

        async with self._lock:
            request = await self._store.find_next_pending()
            if request is None:
                return None

            token = correlation_id_var.set(request.id)
            try:
                return await self._dispatch(request)
            except Exception as exc:
                await self._mark_failed(request, exc)
                raise
            finally:
                correlation_id_var.reset(token)
                self._current = None

    async def _dispatch(self, request: CallRequest) -> CallRequest | None:
        now = self._clock()

        if not request.is_recall and self._history.last_called(request.ticket_id, now) is not None:
            logger.info(
                "Skipping first call already announced",
                extra={"request_id": request.id, "ticket_number": request.ticket_number},
            )
            await self._store.delete(request.id)
            return None

        await self._store.mark_processing(request.id, now)
        request.status = CallRequestStatus.PROCESSING
        request.processing_started_at = now
        self._current = request

        if not request.is_recall:
            self._history.record(request.ticket_id, now)
            self._history.evict_expired(now)

        logger.info(
            "Processing call request",
            extra={
                "request_id": request.id,
                "ticket_number": request.ticket_number,
                "counter_number": request.counter_number,
                "is_recall": request.is_recall,
            },
        )

        try:
            announced = await self._announcer.resolve_and_broadcast(
                request.ticket_number,
                request.counter_number,
                request.is_recall,
            )
            logger.info(
                "Announcement dispatched",
                extra={"request_id": request.id, "clip": bool(announced)},
            )
        except Exception as exc:
            logger.error(
                "Voice announcement failed",
                extra={"request_id": request.id, "error": repr(exc)},
            )

        if request.is_recall:
            await self._apply_recall(request)
        else:
            await self._apply_first_call(request)

        await self._sleep(self._settings.settle_delay_seconds)

        await self._store.delete(request.id)
        await self._broadcaster.emit(
            BroadcastEvent.CALL_REQUEST_COMPLETED,
            {
                "requestId": request.id,
                "ticketNumber": request.ticket_number,
                "counterNumber": request.counter_number,
                "isRecall": request.is_recall,
            },
        )
        await self._broadcaster.emit(BroadcastEvent.RELOAD_ALL_COUNTERS)
        logger.info(
            "Call request completed",
            extra={"request_id": request.id, "ticket_number": request.ticket_number},
        )
        return request

    async def _bounded(self, op: str, call: Awaitable[T]) -> T:
        timeout = self._settings.gateway_timeout_seconds
        try:
            return await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise StoreError(
                f"Ticket gateway timed out during {op}",
                details={"timeout_seconds": timeout},
            ) from exc

    async def _apply_first_call(self, request: CallRequest) -> None:
        ticket, counter = await self._bounded(
            "mark_called",
            self._gateway.mark_called(request.ticket_id, request.counter_id, self._clock()),
        )
        await self._broadcaster.emit(
            BroadcastEvent.TICKET_STATUS_UPDATED,
            {"ticket": ticket, "counter": counter, "isFirstCall": True},
        )
        await self._broadcaster.emit(
            BroadcastEvent.COUNTER_STATUS_UPDATED,
            {"counter": counter, "activeTicket": ticket},
            room=counter_room(request.counter_id),
        )

    async def _apply_recall(self, request: CallRequest) -> None:
        counter = await self._bounded(
            "touch_counter",
            self._gateway.touch_counter(request.counter_id, self._clock()),
        )
        await self._broadcaster.emit(
            BroadcastEvent.TICKET_RECALLED,
            {
                "counter": counter,
                "ticket": {"id": request.ticket_id, "ticketNumber": request.ticket_number},
            },
        )

    async def _mark_failed(self, request: CallRequest, exc: Exception) -> None:
        try:
            await self._store.mark_failed(request.id, str(exc) or exc.__class__.__name__)
        except Exception as update_exc:
            logger.error(
                "Could not mark call request failed",
                extra={"request_id": request.id, "error": repr(update_exc)},
            )

    # ------------------------------------------------------------------
    # Diagnostics and administration
    # ------------------------------------------------------------------

    async def get_queue_status(self) -> dict[str, Any]:
        try:
            pending = await self._store.count_by_status(CallRequestStatus.PENDING)
            processing = await self._store.count_by_status(CallRequestStatus.PROCESSING)
        except Exception as exc:
            logger.error("Queue status unavailable", extra={"error": repr(exc)})
            pending = processing = 0

        return {
            "pending": pending,
            "processing": processing,
            "total": pending + processing,
            "isRunning": self._running,
            "isProcessing": self.is_processing,
            "firstCallHistorySize": len(self._history),
            "consecutiveFailures": self._consecutive_failures,
        }

    def get_system_status(self) -> dict[str, Any]:
        current = self._current
        return {
            "isRunning": self._running,
            "isProcessing": self.is_processing,
            "currentlyProcessing": (
                {
                    "requestId": current.id,
                    "ticketNumber": current.ticket_number,
                    "counterNumber": current.counter_number,
                    "isRecall": current.is_recall,
                }
                if current is not None
                else None
            ),
            "pollIntervalSeconds": self._settings.poll_interval_seconds,
            "firstCallHistorySize": len(self._history),
            "consecutiveFailures": self._consecutive_failures,
            "maxConsecutiveFailures": self._breaker.max_consecutive_failures,
        }

    def clear_call_history(self) -> int:
        cleared = self._history.clear()
        logger.info("First call history cleared", extra={"cleared": cleared})
        return cleared

    async def purge_expired(self) -> int:
        """Drop requests past their TTL and stale first-call history."""
        now = self._clock()
        self._history.evict_expired(now)
        return await self._store.purge_expired(now - timedelta(hours=self._settings.request_ttl_hours))
