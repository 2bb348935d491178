"""
SweepExecutor run/item semantics with stub tasks.

The stubs never touch financing tables; they exercise the executor's
status aggregation, per-item isolation and post-commit publishing.
"""

from datetime import datetime
from uuid import uuid4

import pytest

from financing_batch.domain.types import SweepItemStatus, SweepRunStatus
from financing_batch.services.executor import SweepExecutor
from financing_batch.tasks.base import SweepItemInput, SweepTaskResult, TaskRegistry
from financing_kernel.domain.events import DomainEvent, EventType
from financing_kernel.exceptions import ConcurrentModificationError, ValidationError


class _ScriptedTask:
    """Task whose items map to scripted outcomes."""

    task_type = "test.scripted"
    description = "Scripted outcomes"

    def __init__(self, outcomes):
        self.outcomes = outcomes
        self.seen_as_of = []

    def prepare_items(self, session, as_of):
        return tuple(
            SweepItemInput(item_index=i, item_key=f"item-{i}", payload={"invoice_id": str(uuid4())})
            for i in range(len(self.outcomes))
        )

    def execute_item(self, item, session, as_of):
        self.seen_as_of.append(as_of)
        outcome = self.outcomes[item.item_index]
        if isinstance(outcome, Exception):
            raise outcome
        if outcome == "ok":
            return SweepTaskResult(
                status=SweepItemStatus.SUCCEEDED,
                result_data={"key": item.item_key},
                events=(
                    DomainEvent(
                        event_type=EventType.OFFER_EXPIRED,
                        invoice_id=uuid4(),
                        actor_id=uuid4(),
                        occurred_at=as_of,
                    ),
                ),
            )
        return SweepTaskResult(status=SweepItemStatus.SKIPPED, result_data={"reason": "not_eligible"})


def _executor(session_factory, task, clock, publisher=None):
    registry = TaskRegistry()
    registry.register(task)
    return SweepExecutor(session_factory, registry, clock, publisher)


class TestRunStatus:
    def test_all_succeeded(self, session_factory, deterministic_clock, publisher):
        task = _ScriptedTask(["ok", "ok"])
        result = _executor(session_factory, task, deterministic_clock, publisher).run(task.task_type)
        assert result.status == SweepRunStatus.COMPLETED
        assert (result.succeeded, result.failed, result.skipped) == (2, 0, 0)
        assert result.as_of == deterministic_clock.now()
        assert len(publisher.events) == 2
        assert result.correlation_id

    def test_empty_run_is_completed(self, session_factory, deterministic_clock):
        task = _ScriptedTask([])
        result = _executor(session_factory, task, deterministic_clock).run(task.task_type)
        assert result.status == SweepRunStatus.COMPLETED
        assert result.total_items == 0

    def test_partial(self, session_factory, deterministic_clock, publisher):
        task = _ScriptedTask(["ok", ValidationError("amount", "bad"), "skip"])
        result = _executor(session_factory, task, deterministic_clock, publisher).run(task.task_type)
        assert result.status == SweepRunStatus.PARTIALLY_COMPLETED
        assert [r.status for r in result.item_results] == [
            SweepItemStatus.SUCCEEDED, SweepItemStatus.FAILED, SweepItemStatus.SKIPPED,
        ]
        assert result.item_results[1].error_code == "VALIDATION_ERROR"
        assert len(publisher.events) == 1

    def test_all_failed(self, session_factory, deterministic_clock):
        task = _ScriptedTask([ValidationError("a", "x"), ValidationError("b", "y")])
        result = _executor(session_factory, task, deterministic_clock).run(task.task_type)
        assert result.status == SweepRunStatus.FAILED
        assert result.failed == 2


class TestItemIsolation:
    def test_conflict_is_skipped(self, session_factory, deterministic_clock):
        task = _ScriptedTask([ConcurrentModificationError("Invoice", uuid4()), "ok"])
        result = _executor(session_factory, task, deterministic_clock).run(task.task_type)
        first, second = result.item_results
        assert first.status == SweepItemStatus.SKIPPED
        assert first.error_code == "CONCURRENT_MODIFICATION"
        assert second.status == SweepItemStatus.SUCCEEDED
        assert result.status == SweepRunStatus.COMPLETED

    def test_unhandled_exception_fails_item(self, session_factory, deterministic_clock, captured_logs):
        task = _ScriptedTask([RuntimeError("boom"), "ok"])
        result = _executor(session_factory, task, deterministic_clock).run(task.task_type)
        assert result.item_results[0].error_code == "UNHANDLED_EXCEPTION"
        assert result.item_results[0].error_message == "boom"
        assert result.item_results[1].status == SweepItemStatus.SUCCEEDED
        assert any(r["message"] == "sweep_item_unhandled_exception" for r in captured_logs())

    def test_explicit_as_of_reaches_items(self, session_factory, deterministic_clock):
        task = _ScriptedTask(["ok", "skip"])
        as_of = datetime(2024, 6, 1, tzinfo=deterministic_clock.now().tzinfo)
        result = _executor(session_factory, task, deterministic_clock).run(task.task_type, as_of)
        assert result.as_of == as_of
        assert task.seen_as_of == [as_of, as_of]

    def test_publisher_failure_keeps_result(self, session_factory, deterministic_clock, captured_logs):
        class _Broken:
            def publish(self, event):
                raise RuntimeError("down")

        task = _ScriptedTask(["ok"])
        result = _executor(session_factory, task, deterministic_clock, _Broken()).run(task.task_type)
        assert result.succeeded == 1
        assert any(r["message"] == "event_publish_failed" for r in captured_logs())


class TestRunLogging:
    def test_started_and_completed(self, session_factory, deterministic_clock, captured_logs):
        task = _ScriptedTask(["ok"])
        _executor(session_factory, task, deterministic_clock).run(task.task_type)
        records = captured_logs()
        started = next(r for r in records if r["message"] == "sweep_started")
        completed = next(r for r in records if r["message"] == "sweep_completed")
        assert started["total_items"] == 1
        assert started["operation"] == task.task_type
        assert completed["status"] == "completed"

    def test_unknown_task_type(self, session_factory, deterministic_clock):
        executor = SweepExecutor(session_factory, TaskRegistry(), deterministic_clock)
        with pytest.raises(KeyError):
            executor.run("no.such.task")
