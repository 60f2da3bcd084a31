"""
Resilient print dispatcher.

Best-effort ticket printing decoupled from the call path. Jobs live in a
bounded in-memory FIFO drained by a single worker; periodic sweeps drop stale
jobs and repair stuck state.
"""

import asyncio
import os
import tempfile
from collections import deque
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from hospital_queue.broadcast.events import BroadcastEvent
from hospital_queue.broadcast.interface import Broadcaster
from hospital_queue.config import PrintSettings
from hospital_queue.printing.models import PrintJob, PrintJobStatus, TicketPrintPayload, render_ticket
from hospital_queue.printing.strategies import PrintStrategy, default_print_strategies
from hospital_queue.shared.logging import correlation_id_var, get_logger

logger = get_logger(__name__)

# Extra time on top of a strategy's own timeout before the dispatcher gives up on it.
STRATEGY_TIMEOUT_GRACE_SECONDS = 1.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PrintDispatcher:
    """Single-flight print queue with retry, cleanup and recovery sweeps."""

    def __init__(
        self,
        broadcaster: Broadcaster,
        strategies: Sequence[PrintStrategy] | None = None,
        settings: PrintSettings | None = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._broadcaster = broadcaster
        self._settings = settings or PrintSettings()
        self._strategies = list(
            strategies
            if strategies is not None
            else default_print_strategies(
                printer_name=self._settings.printer_name,
                timeout_seconds=self._settings.strategy_timeout_seconds,
            )
        )
        self._clock = clock
        self._sleep = sleep

        self._queue: deque[PrintJob] = deque()
        self._lock = asyncio.Lock()
        self._busy = False
        self._processed = 0
        self._drain_task: asyncio.Task[None] | None = None
        self._sweep_tasks: list[asyncio.Task[None]] = []

    @property
    def jobs(self) -> deque[PrintJob]:
        return self._queue

    @property
    def is_processing(self) -> bool:
        return self._busy

    @property
    def strategies(self) -> list[PrintStrategy]:
        return list(self._strategies)

    def enqueue(self, payload: TicketPrintPayload) -> str:
        """Queue a ticket for printing and return the job id."""
        if len(self._queue) >= self._settings.max_queue_size:
            keep = self._settings.retain_on_overflow
            dropped = len(self._queue) - keep
            retained = list(self._queue)[-keep:] if keep else []
            self._queue = deque(retained)
            logger.warning(
                "Print queue full, dropped oldest jobs",
                extra={"dropped": dropped, "retained": len(retained)},
            )

        job = PrintJob(payload=payload, added_at=self._clock())
        self._queue.append(job)
        logger.info(
            "Print job added",
            extra={"job_id": job.id, "ticket_number": payload.ticket_number, "queue_length": len(self._queue)},
        )

        if not self._busy:
            self._start_drain()
        return job.id

    def enqueue_print_job(self, payload: TicketPrintPayload) -> str:
        return self.enqueue(payload)

    def _start_drain(self) -> None:
        if self._drain_task is not None and not self._drain_task.done():
            return
        self._drain_task = asyncio.create_task(self.drain())

    async def drain(self) -> None:
        """Print queued jobs until the queue is empty."""
        if self._lock.locked():
            return

        async with self._lock:
            self._busy = True
            try:
                while self._queue:
                    job = self._queue[0]
                    await self._process(job)
                    await self._sleep(self._settings.inter_job_delay_seconds)
            finally:
                self._busy = False
        logger.info("Print queue drained", extra={"total_processed": self._processed})

    async def _process(self, job: PrintJob) -> None:
        job.status = PrintJobStatus.PROCESSING
        token = correlation_id_var.set(job.id)
        try:
            printed = await self._print(job.payload)
        except Exception as exc:
            logger.error(
                "Print job raised",
                extra={"job_id": job.id, "ticket_number": job.payload.ticket_number, "error": repr(exc)},
            )
            printed = False
        finally:
            correlation_id_var.reset(token)

        # A sweep or clear_queue may have removed the job while it was printing.
        if job not in self._queue:
            return

        if printed:
            self._queue.remove(job)
            self._processed += 1
            logger.info("Ticket printed", extra={"job_id": job.id, "ticket_number": job.payload.ticket_number})
            return

        job.retries += 1
        self._queue.remove(job)
        if job.retries >= self._settings.max_retries:
            logger.warning(
                "Print job dropped after max retries",
                extra={"job_id": job.id, "ticket_number": job.payload.ticket_number, "retries": job.retries},
            )
            return

        job.status = PrintJobStatus.PENDING
        self._queue.append(job)
        logger.info(
            "Print job requeued",
            extra={"job_id": job.id, "ticket_number": job.payload.ticket_number, "retries": job.retries},
        )

    async def _print(self, payload: TicketPrintPayload) -> bool:
        content = render_ticket(payload, self._settings.hospital_name)
        fd, name = tempfile.mkstemp(prefix=f"ticket_{payload.ticket_number}_", suffix=".txt")
        path = Path(name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(content)

            for index, strategy in enumerate(self._strategies):
                if index > 0:
                    await self._sleep(self._settings.strategy_pause_seconds)
                if await self._attempt(strategy, path, payload):
                    logger.info(
                        "Print strategy succeeded",
                        extra={"strategy": strategy.name, "ticket_number": payload.ticket_number},
                    )
                    return True
            logger.warning("All print strategies failed", extra={"ticket_number": payload.ticket_number})
            return False
        finally:
            path.unlink(missing_ok=True)

    async def _attempt(self, strategy: PrintStrategy, path: Path, payload: TicketPrintPayload) -> bool:
        timeout = getattr(strategy, "timeout_seconds", self._settings.strategy_timeout_seconds)
        try:
            return await asyncio.wait_for(
                strategy.attempt(path, payload),
                timeout=timeout + STRATEGY_TIMEOUT_GRACE_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Print strategy timed out",
                extra={"strategy": strategy.name, "ticket_number": payload.ticket_number},
            )
        except Exception as exc:
            logger.warning(
                "Print strategy failed",
                extra={"strategy": strategy.name, "ticket_number": payload.ticket_number, "error": repr(exc)},
            )
        return False

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    def cleanup(self) -> int:
        """Drop jobs older than the age ceiling, whatever their status."""
        now = self._clock()
        max_age = self._settings.job_max_age_seconds
        fresh = [job for job in self._queue if (now - job.added_at).total_seconds() <= max_age]
        removed = len(self._queue) - len(fresh)
        if removed:
            self._queue = deque(fresh)
            logger.info("Removed old print jobs", extra={"removed": removed})
        return removed

    async def auto_recover(self) -> int:
        """Force-fail stuck jobs and clear an inconsistent busy flag."""
        now = self._clock()
        recovered = 0
        for job in self._queue:
            if (
                job.status == PrintJobStatus.PROCESSING
                and (now - job.added_at).total_seconds() > self._settings.stuck_timeout_seconds
            ):
                job.status = PrintJobStatus.FAILED
                recovered += 1
                logger.warning(
                    "Recovered stuck print job",
                    extra={"job_id": job.id, "ticket_number": job.payload.ticket_number},
                )

        # A live drain holds the lock between jobs too, when nothing is processing.
        drain_alive = self._lock.locked() and not recovered
        if (
            self._busy
            and not drain_alive
            and not any(j.status == PrintJobStatus.PROCESSING for j in self._queue)
        ):
            self._busy = False
            logger.warning("Reset stuck print processing flag")

        if recovered:
            await self._broadcaster.emit(
                BroadcastEvent.PRINT_QUEUE_CLEAR,
                {
                    "timestamp": now.isoformat(),
                    "recoveredJobs": recovered,
                    "message": "Print system auto-recovered",
                },
            )
        return recovered

    async def watchdog(self) -> int:
        """Clear a backed-up queue that nothing is draining."""
        queued = len(self._queue)
        if queued <= self._settings.watchdog_threshold or self._lock.locked():
            return 0

        self.clear_queue()
        await self._broadcaster.emit(
            BroadcastEvent.SYSTEM_AUTO_RECOVERED,
            {
                "message": "System automatically recovered from stuck state",
                "queueCleared": queued,
                "timestamp": self._clock().isoformat(),
            },
        )
        logger.warning("Watchdog cleared stuck print queue", extra={"cleared": queued})
        return queued

    async def start(self) -> None:
        """Start the periodic sweeps."""
        if self._sweep_tasks:
            return

        async def cleanup() -> None:
            self.cleanup()

        self._sweep_tasks = [
            asyncio.create_task(self._every(self._settings.cleanup_interval_seconds, "cleanup", cleanup)),
            asyncio.create_task(
                self._every(self._settings.recovery_interval_seconds, "auto_recover", self.auto_recover)
            ),
            asyncio.create_task(self._every(self._settings.watchdog_interval_seconds, "watchdog", self.watchdog)),
        ]
        logger.info("Print dispatcher sweeps started")

    async def stop(self) -> None:
        tasks = [*self._sweep_tasks]
        if self._drain_task is not None:
            tasks.append(self._drain_task)
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._sweep_tasks = []
        self._drain_task = None
        logger.info("Print dispatcher stopped")

    @staticmethod
    async def _every(interval: float, name: str, sweep: Callable[[], Awaitable[Any]]) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await sweep()
            except Exception:
                logger.exception("Print sweep failed", extra={"sweep": name})

    # ------------------------------------------------------------------
    # Diagnostics and administration
    # ------------------------------------------------------------------

    def get_status(self) -> dict[str, Any]:
        return {
            "queueLength": len(self._queue),
            "isProcessing": self._busy,
            "totalProcessed": self._processed,
            "pending": sum(1 for j in self._queue if j.status == PrintJobStatus.PENDING),
            "processing": sum(1 for j in self._queue if j.status == PrintJobStatus.PROCESSING),
            "failed": sum(1 for j in self._queue if j.status == PrintJobStatus.FAILED),
            "maxQueueSize": self._settings.max_queue_size,
        }

    def clear_queue(self) -> int:
        cleared = len(self._queue)
        self._queue.clear()
        self._busy = False
        logger.info("Print queue cleared", extra={"cleared": cleared})
        return cleared
