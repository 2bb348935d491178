"""
SweepExecutor -- one-transaction-per-item sweep execution.

Contract:
    ``run(task_type, as_of)`` prepares the task's candidate items in a
    read-only session, then executes each item in its own session and
    transaction.  SUCCEEDED items are committed and their domain events
    published; every other outcome is rolled back.

Architecture: financing_batch/services.  Imports from financing_batch.domain,
    financing_batch.tasks and kernel infrastructure.

Invariants enforced:
    - Per-item isolation: one failure or conflict never aborts the sweep.
    - Concurrency conflicts are SKIPPED (another writer got there first);
      typed errors are FAILED with their ``code``.
    - All timestamps come from the injected ``as_of`` / Clock.
    - Events are published after commit; a publisher error is logged and
      does not change the item's result.
"""

from __future__ import annotations

import time
from datetime import datetime
from uuid import uuid4

from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from financing_batch.domain.types import (
    SweepItemResult,
    SweepItemStatus,
    SweepRunResult,
    SweepRunStatus,
)
from financing_batch.tasks.base import SweepItemInput, SweepTask, TaskRegistry
from financing_kernel.domain.clock import Clock, SystemClock
from financing_kernel.domain.events import DomainEvent, EventPublisher
from financing_kernel.exceptions import ConcurrencyError, FinancingKernelError
from financing_kernel.logging_config import LogContext, get_logger

logger = get_logger("batch.executor")


class SweepExecutor:
    """Runs registered sweeps item by item.

    Non-goals:
        - Does NOT schedule runs; callers decide when to sweep.
        - Does NOT retry conflicted items; the next run picks them up.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        task_registry: TaskRegistry,
        clock: Clock | None = None,
        publisher: EventPublisher | None = None,
    ):
        self._session_factory = session_factory
        self._task_registry = task_registry
        self._clock = clock or SystemClock()
        self._publisher = publisher

    def run(self, task_type: str, as_of: datetime | None = None) -> SweepRunResult:
        """Execute one sweep.

        Raises:
            KeyError: If task_type is not registered.
        """
        task = self._task_registry.get(task_type)
        as_of = as_of or self._clock.now()
        correlation_id = str(uuid4())
        start_time = time.monotonic()

        with LogContext.bind(correlation_id=correlation_id, operation=task_type):
            session = self._session_factory()
            try:
                items = task.prepare_items(session, as_of)
            finally:
                session.close()

            logger.info(
                "sweep_started",
                extra={
                    "task_type": task_type,
                    "as_of": as_of.isoformat(),
                    "total_items": len(items),
                },
            )

            results = [self._run_item(task, item, as_of) for item in items]

        succeeded = sum(1 for r in results if r.status == SweepItemStatus.SUCCEEDED)
        failed = sum(1 for r in results if r.status == SweepItemStatus.FAILED)
        skipped = sum(1 for r in results if r.status == SweepItemStatus.SKIPPED)

        if failed == 0:
            status = SweepRunStatus.COMPLETED
        elif succeeded == 0 and skipped == 0:
            status = SweepRunStatus.FAILED
        else:
            status = SweepRunStatus.PARTIALLY_COMPLETED

        duration_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(
            "sweep_completed",
            extra={
                "task_type": task_type,
                "correlation_id": correlation_id,
                "status": status.value,
                "succeeded": succeeded,
                "failed": failed,
                "skipped": skipped,
                "duration_ms": duration_ms,
            },
        )

        return SweepRunResult(
            task_type=task_type,
            as_of=as_of,
            status=status,
            total_items=len(items),
            succeeded=succeeded,
            failed=failed,
            skipped=skipped,
            item_results=tuple(results),
            duration_ms=duration_ms,
            correlation_id=correlation_id,
        )

    def _run_item(self, task: SweepTask, item: SweepItemInput, as_of: datetime) -> SweepItemResult:
        item_start = time.monotonic()
        session = self._session_factory()

        with LogContext.bind(invoice_id=item.payload.get("invoice_id")):
            try:
                result = task.execute_item(item, session, as_of)
                if result.status == SweepItemStatus.SUCCEEDED:
                    session.commit()
                else:
                    session.rollback()
            except (ConcurrencyError, StaleDataError) as exc:
                session.rollback()
                logger.info(
                    "sweep_item_skipped",
                    extra={"item_key": item.item_key, "reason": "concurrent_modification"},
                )
                return self._item_result(
                    item, SweepItemStatus.SKIPPED, item_start,
                    error_code=getattr(exc, "code", "CONCURRENT_MODIFICATION"),
                    error_message=str(exc),
                )
            except FinancingKernelError as exc:
                session.rollback()
                logger.warning(
                    "sweep_item_failed",
                    extra={"item_key": item.item_key, "error_code": exc.code},
                    exc_info=True,
                )
                return self._item_result(
                    item, SweepItemStatus.FAILED, item_start,
                    error_code=exc.code, error_message=str(exc),
                )
            except Exception as exc:
                session.rollback()
                logger.exception(
                    "sweep_item_unhandled_exception",
                    extra={"item_key": item.item_key},
                )
                return self._item_result(
                    item, SweepItemStatus.FAILED, item_start,
                    error_code="UNHANDLED_EXCEPTION", error_message=str(exc),
                )
            finally:
                session.close()

            if result.status == SweepItemStatus.SUCCEEDED:
                logger.info(
                    "sweep_item_succeeded",
                    extra={"item_key": item.item_key, "result": result.result_data},
                )
                for event in result.events:
                    self._publish(event)

        return self._item_result(
            item, result.status, item_start,
            error_code=result.error_code,
            error_message=result.error_message,
            result_data=result.result_data,
        )

    def _publish(self, event: DomainEvent) -> None:
        if self._publisher is None:
            return
        try:
            self._publisher.publish(event)
        except Exception:
            logger.error(
                "event_publish_failed",
                extra={"event_type": event.event_type.value, "invoice_id": str(event.invoice_id)},
                exc_info=True,
            )

    @staticmethod
    def _item_result(
        item: SweepItemInput,
        status: SweepItemStatus,
        item_start: float,
        error_code: str | None = None,
        error_message: str | None = None,
        result_data: dict | None = None,
    ) -> SweepItemResult:
        return SweepItemResult(
            item_index=item.item_index,
            item_key=item.item_key,
            status=status,
            error_code=error_code,
            error_message=error_message,
            result_data=result_data,
            duration_ms=int((time.monotonic() - item_start) * 1000),
        )
