"""
The sweep contract and the registry the executor looks sweeps up in.

A sweep works in two phases:

1. ``prepare_items`` reads candidate rows (expired offers, lapsed bids,
   repayments past due) without locking anything.
2. ``execute_item`` runs once per candidate inside its own transaction,
   locks the owning invoice, re-checks eligibility against the fresh row
   and applies the transition.  A row that stopped being eligible in the
   meantime comes back SKIPPED.

Sweeps never commit and never catch typed errors; ``SweepExecutor`` owns the
per-item transaction and turns errors into item results.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy.orm import Session

from financing_batch.domain.types import SweepItemStatus
from financing_kernel.domain.actor import Actor
from financing_kernel.domain.events import DomainEvent

# Sweeps write as this actor; it shows up in updated_by_id and event actor_id.
SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")
SYSTEM_ACTOR = Actor.system(SYSTEM_ACTOR_ID)


@dataclass(frozen=True)
class SweepItemInput:
    item_index: int
    item_key: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SweepTaskResult:
    """What one ``execute_item`` call did; ``events`` go out after the item commits."""

    status: SweepItemStatus
    result_data: dict[str, Any] | None = None
    error_code: str | None = None
    error_message: str | None = None
    events: tuple[DomainEvent, ...] = ()


@runtime_checkable
class SweepTask(Protocol):
    @property
    def task_type(self) -> str: ...

    @property
    def description(self) -> str: ...

    def prepare_items(self, session: Session, as_of: datetime) -> tuple[SweepItemInput, ...]: ...

    def execute_item(
        self, item: SweepItemInput, session: Session, as_of: datetime,
    ) -> SweepTaskResult: ...


class TaskRegistry:
    """Sweeps keyed by ``task_type`` (``"offers.expire"``, ``"bids.expire"``, ...)."""

    def __init__(self) -> None:
        self._by_type: dict[str, SweepTask] = {}

    def register(self, task: SweepTask) -> None:
        if task.task_type in self._by_type:
            raise ValueError(f"sweep {task.task_type!r} is already registered")
        self._by_type[task.task_type] = task

    def get(self, task_type: str) -> SweepTask:
        if task_type not in self._by_type:
            raise KeyError(
                f"no sweep registered as {task_type!r}; available: {', '.join(self.list_tasks())}"
            )
        return self._by_type[task_type]

    def list_tasks(self) -> tuple[str, ...]:
        return tuple(sorted(self._by_type))

    def __len__(self) -> int:
        return len(self._by_type)

    def __contains__(self, task_type: object) -> bool:
        return task_type in self._by_type
