"""Sweep task protocol, registry and the financing sweeps."""

from financing_batch.tasks.base import (
    SYSTEM_ACTOR,
    SweepItemInput,
    SweepTask,
    SweepTaskResult,
    TaskRegistry,
)
from financing_batch.tasks.sweeps import (
    BidExpiryTask,
    OfferExpiryTask,
    RepaymentOverdueTask,
    default_task_registry,
)

__all__ = [
    "SYSTEM_ACTOR",
    "SweepItemInput",
    "SweepTask",
    "SweepTaskResult",
    "TaskRegistry",
    "BidExpiryTask",
    "OfferExpiryTask",
    "RepaymentOverdueTask",
    "default_task_registry",
]
