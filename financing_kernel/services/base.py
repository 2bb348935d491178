"""
BaseService -- abstract base for all financing module services.

Responsibility:
    Provides the common constructor and session-handling contract for every
    service that mutates invoices, offers, bids, disbursements or repayments.
    Services receive a SQLAlchemy ``Session`` and use ``session.flush()`` --
    never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    Transaction boundaries: services flush within the caller's transaction
    and never commit or rollback themselves.  The workflow orchestrator (or
    test harness) owns commit/rollback, which keeps each operation a single
    atomic unit of work per invoice.

Failure modes:
    - A stale version on flush surfaces as ConcurrentModificationError via
      ``flush()`` below; everything else propagates unchanged.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from financing_kernel.db.base import Base
from financing_kernel.domain.clock import Clock, SystemClock
from financing_kernel.exceptions import ConcurrentModificationError

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all financing services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()

    def flush(self, entity_type: str = "Invoice", entity_id: object = None) -> None:
        """Flush pending writes, translating optimistic lock failures."""
        try:
            self.session.flush()
        except StaleDataError as exc:
            raise ConcurrentModificationError(entity_type, str(entity_id)) from exc
