"""
DeadlineScheduler -- Periodic sweep for lapsed step deadlines.

Contract:
    Polls for pending requests whose deadline has lapsed, on a
    configurable interval, and calls ``RequestProgressionService.escalate``
    once per overdue request per sweep.

Architecture: workflow_batch/services.  Uses the kernel's request
    selector for the sweep query and the progression service for every
    state change.  Nothing in the kernel imports from workflow_batch.

Invariants enforced:
    - Each overdue record is escalated in its own session and
      transaction; one failure never aborts the sweep.
    - The sweep does not assume exclusive access to the store: no-op
      outcomes and lost version races are success, not error.
    - Per-record budget: the sweep waits at most ``record_budget_seconds``
      for any one record before recording it as timed out and moving on.
    - All timestamps come from the injected Clock.
    - Graceful shutdown: ``stop()`` is honoured between sweeps, and
      between records within a sweep.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.exceptions import ConcurrentTransitionError
from workflow_kernel.logging_config import LogContext, get_logger
from workflow_kernel.selectors.request_selector import RequestSelector
from workflow_kernel.services.progression_service import RequestProgressionService

from workflow_batch.domain.types import SweepItemResult, SweepItemStatus, SweepResult

logger = get_logger("batch.deadline_scheduler")


class DeadlineScheduler:
    """In-process polling scheduler for SLA deadlines.

    Contract:
        - ``tick()`` runs one sweep and returns its SweepResult.
        - ``start()`` / ``stop()`` for background thread operation.
        - ``run_forever()`` for a foreground process.

    Non-goals:
        - NOT a distributed scheduler (no leader election).  Several
          instances may run; the per-record version check keeps them safe.
        - Cannot interrupt a record that overruns its budget; it is
          abandoned and reported, and its worker thread finishes on its own.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        service_factory: Callable[[Session], RequestProgressionService],
        clock: Clock | None = None,
        interval_seconds: float = 60,
        max_workers: int = 4,
        record_budget_seconds: float = 30.0,
        batch_limit: int = 500,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self._session_factory = session_factory
        self._service_factory = service_factory
        self._clock = clock or SystemClock()
        self._interval = interval_seconds
        self._max_workers = max_workers
        self._record_budget = record_budget_seconds
        self._batch_limit = batch_limit
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> SweepResult:
        """Run one sweep (public for testing)."""
        sweep_id = uuid4()
        as_of = self._clock.now()
        t0 = time.monotonic()

        with LogContext.bind(sweep_id=sweep_id):
            try:
                request_ids = self._collect_overdue(as_of)
            except Exception:
                logger.exception("deadline_sweep_query_failed")
                return SweepResult(sweep_id=sweep_id, as_of=as_of)

            items = self._process(request_ids, sweep_id) if request_ids else ()

            result = SweepResult(
                sweep_id=sweep_id,
                as_of=as_of,
                items=items,
                duration_ms=int((time.monotonic() - t0) * 1000),
            )
            logger.info(
                "deadline_sweep_completed",
                extra={
                    "overdue": result.total,
                    "changed": result.changed,
                    "failed": result.failed,
                    "timed_out": result.timed_out,
                    "duration_ms": result.duration_ms,
                },
            )
            return result

    def start(self) -> None:
        """Start the scheduler in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="deadline-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"interval_seconds": self._interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the scheduler to finish.

        Args:
            timeout: Max seconds to wait for the thread to finish.
        """
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    def run_forever(self) -> None:
        """Sweep in the calling thread until ``stop()`` is called."""
        self._stop_event.clear()
        logger.info("scheduler_started", extra={"interval_seconds": self._interval})
        self._run_loop()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        """Polling loop. Exits when stop_event is set."""
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_exception")
            self._stop_event.wait(timeout=self._interval)

    def _collect_overdue(self, as_of) -> list[UUID]:
        session = self._session_factory()
        try:
            return RequestSelector(session).find_overdue(as_of, limit=self._batch_limit)
        finally:
            session.close()

    def _process(
        self,
        request_ids: list[UUID],
        sweep_id: UUID,
    ) -> tuple[SweepItemResult, ...]:
        pool = ThreadPoolExecutor(
            max_workers=min(self._max_workers, len(request_ids)),
            thread_name_prefix="deadline-sweep",
        )
        results: list[SweepItemResult] = []
        try:
            futures = [
                (rid, pool.submit(self._escalate_one, rid, sweep_id))
                for rid in request_ids
            ]
            for rid, future in futures:
                if self._stop_event.is_set() and future.cancel():
                    results.append(SweepItemResult(rid, SweepItemStatus.SKIPPED))
                    continue
                try:
                    results.append(future.result(timeout=self._record_budget))
                except FutureTimeoutError:
                    future.cancel()
                    logger.error(
                        "escalation_timed_out",
                        extra={
                            "request_id": str(rid),
                            "budget_seconds": self._record_budget,
                        },
                    )
                    results.append(
                        SweepItemResult(
                            rid,
                            SweepItemStatus.TIMED_OUT,
                            error_code="TIMED_OUT",
                            error_message=(
                                f"exceeded {self._record_budget}s per-record budget"
                            ),
                        )
                    )
        finally:
            # A record that overran its budget is abandoned, not awaited
            pool.shutdown(wait=False, cancel_futures=True)
        return tuple(results)

    def _escalate_one(self, request_id: UUID, sweep_id: UUID) -> SweepItemResult:
        """Escalate one request in its own session and transaction."""
        # Queued records picked up after stop() are not started
        if self._stop_event.is_set():
            return SweepItemResult(request_id, SweepItemStatus.SKIPPED)
        t0 = time.monotonic()
        with LogContext.bind(sweep_id=sweep_id, request_id=request_id):
            session = self._session_factory()
            try:
                service = self._service_factory(session)
                outcome = service.escalate(request_id)
                session.commit()
                return SweepItemResult(
                    request_id,
                    SweepItemStatus(outcome.outcome.value),
                    reason=outcome.reason,
                    duration_ms=int((time.monotonic() - t0) * 1000),
                )
            except ConcurrentTransitionError as exc:
                session.rollback()
                logger.info("escalation_superseded")
                return SweepItemResult(
                    request_id,
                    SweepItemStatus.SUPERSEDED,
                    reason=str(exc),
                    duration_ms=int((time.monotonic() - t0) * 1000),
                )
            except Exception as exc:
                session.rollback()
                logger.exception("escalation_failed")
                return SweepItemResult(
                    request_id,
                    SweepItemStatus.FAILED,
                    error_code=getattr(exc, "code", type(exc).__name__),
                    error_message=str(exc),
                    duration_ms=int((time.monotonic() - t0) * 1000),
                )
            finally:
                session.close()
