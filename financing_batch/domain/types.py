"""
financing_batch.domain.types -- Pure frozen dataclasses for sweeps.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.

Invariants enforced:
    - A second run with the same ``as_of`` reports zero SUCCEEDED items.
    - Per-item failures carry the ``code`` of the typed error that caused
      them, never a parsed message.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class SweepItemStatus(str, Enum):
    """Per-item outcome within a sweep run."""

    SUCCEEDED = "succeeded"  # State changed and committed
    SKIPPED = "skipped"  # Nothing to do, or lost a race with another writer
    FAILED = "failed"  # Typed error; transaction rolled back


class SweepRunStatus(str, Enum):
    """Run-level outcome."""

    COMPLETED = "completed"  # No item failed
    PARTIALLY_COMPLETED = "partially_completed"  # Some items failed
    FAILED = "failed"  # Every item failed


@dataclass(frozen=True)
class SweepItemResult:
    """Immutable result of processing one sweep item."""

    item_index: int
    item_key: str  # invoice_id or repayment_id
    status: SweepItemStatus
    error_code: str | None = None
    error_message: str | None = None
    result_data: dict[str, Any] | None = None
    duration_ms: int = 0


@dataclass(frozen=True)
class SweepRunResult:
    """Immutable result of one sweep run.  Returned by ``SweepExecutor.run()``."""

    task_type: str
    as_of: datetime
    status: SweepRunStatus
    total_items: int
    succeeded: int
    failed: int
    skipped: int
    item_results: tuple[SweepItemResult, ...] = ()
    duration_ms: int = 0
    correlation_id: str | None = None

    @property
    def changed_keys(self) -> tuple[str, ...]:
        return tuple(
            r.item_key for r in self.item_results
            if r.status == SweepItemStatus.SUCCEEDED
        )
